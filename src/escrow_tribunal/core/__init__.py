"""Core infrastructure components."""

from escrow_tribunal.core.exceptions import ServiceError
from escrow_tribunal.core.lifespan import build_tribunal, tribunal_lifespan
from escrow_tribunal.core.state import Tribunal, get_tribunal, init_tribunal, reset_tribunal

__all__ = [
    "ServiceError",
    "Tribunal",
    "build_tribunal",
    "get_tribunal",
    "init_tribunal",
    "reset_tribunal",
    "tribunal_lifespan",
]
