"""Error types surfaced by the tribunal facade."""

from __future__ import annotations

from escrow_tribunal.exceptions import (
    DeadlineExpiredError,
    DeadlineNotReachedError,
    EscrowTransferFailedError,
    InsufficientVotesError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    NoValidVotersError,
    ServiceError,
    UnauthorizedError,
)
from escrow_tribunal.schemas import ErrorView

__all__ = [
    "DeadlineExpiredError",
    "DeadlineNotReachedError",
    "EscrowTransferFailedError",
    "InsufficientVotesError",
    "InvalidInputError",
    "InvalidStateError",
    "NoValidVotersError",
    "NotFoundError",
    "ServiceError",
    "UnauthorizedError",
    "to_error_view",
]


def to_error_view(exc: ServiceError) -> ErrorView:
    """Render a service error as the standard error body."""
    return ErrorView(error=exc.error, message=exc.message, details=exc.details)
