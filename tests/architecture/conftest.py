"""Architecture test fixtures for escrow_tribunal."""

from __future__ import annotations

from pathlib import Path

import pytest
from pytestarch import EvaluableArchitecture, LayeredArchitecture, get_evaluable_architecture

_TESTS_DIR = Path(__file__).resolve().parent.parent
_PROJECT_ROOT = _TESTS_DIR.parent
_PKG_DIR = _PROJECT_ROOT / "src" / "escrow_tribunal"
_REPORTS_DIR = _PROJECT_ROOT / "reports" / "architecture"


@pytest.fixture(scope="session")
def evaluable() -> EvaluableArchitecture:
    """Build the evaluable architecture graph for escrow_tribunal."""
    return get_evaluable_architecture(str(_PKG_DIR), str(_PKG_DIR))


@pytest.fixture(scope="session")
def layered_arch() -> LayeredArchitecture:
    """Define the package's layered architecture."""
    return (
        LayeredArchitecture()
        .layer("core")
        .containing_modules(["escrow_tribunal.core"])
        .layer("services")
        .containing_modules(["escrow_tribunal.services"])
    )


@pytest.fixture(scope="session")
def reports_dir() -> Path:
    """Ensure the architecture reports directory exists and return its path."""
    _REPORTS_DIR.mkdir(parents=True, exist_ok=True)
    return _REPORTS_DIR
