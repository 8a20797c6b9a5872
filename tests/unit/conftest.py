"""Unit test fixtures."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

import pytest

from escrow_tribunal.config import clear_settings_cache
from escrow_tribunal.core.state import reset_tribunal
from escrow_tribunal.logging import SERVICE_LOGGER_NAME
from tests.helpers import make_tribunal

if TYPE_CHECKING:
    from collections.abc import Iterator

    from escrow_tribunal.core.state import Tribunal
    from tests.helpers import RecordingCustodian


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache, tribunal state, and log handlers between tests."""
    clear_settings_cache()
    reset_tribunal()
    yield
    clear_settings_cache()
    reset_tribunal()
    os.environ.pop("CONFIG_PATH", None)
    service_logger = logging.getLogger(SERVICE_LOGGER_NAME)
    for handler in list(service_logger.handlers):
        handler.close()
        service_logger.removeHandler(handler)


@pytest.fixture
def wired() -> Iterator[tuple[Tribunal, RecordingCustodian]]:
    """A tribunal over in-memory stores plus its recording custodian."""
    tribunal, custodian = make_tribunal()
    yield tribunal, custodian
    tribunal.close()
