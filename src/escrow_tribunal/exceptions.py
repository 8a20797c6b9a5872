"""Error types shared by every component."""

from __future__ import annotations


class ServiceError(Exception):
    """
    Base error carrying a machine-readable code.

    ``status_code`` is an HTTP-style hint for whatever transport sits in front
    of the engine; the engine itself never interprets it.
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details if details is not None else {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(error={self.error!r}, message={self.message!r})"


class InvalidStateError(ServiceError):
    """Operation attempted outside its required state."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("INVALID_STATE", message, 409, details)


class UnauthorizedError(ServiceError):
    """Caller lacks the capability or party relationship."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("UNAUTHORIZED", message, 403, details)


class InvalidInputError(ServiceError):
    """Out-of-range percentage, zero amount, self-dealing."""

    def __init__(
        self,
        message: str,
        details: dict[str, object] | None = None,
        error: str = "INVALID_INPUT",
    ) -> None:
        super().__init__(error, message, 400, details)


class EscrowTransferFailedError(ServiceError):
    """The ledger custodian rejected a deposit or release."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("ESCROW_TRANSFER_FAILED", message, 502, details)


class DeadlineNotReachedError(ServiceError):
    """Time-gated operation called too early."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("DEADLINE_NOT_REACHED", message, 409, details)


class DeadlineExpiredError(ServiceError):
    """Time-gated operation called too late."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("DEADLINE_EXPIRED", message, 409, details)


class InsufficientVotesError(ServiceError):
    """Finalize attempted below quorum."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("INSUFFICIENT_VOTES", message, 409, details)


class NoValidVotersError(ServiceError):
    """Finalize would distribute the reward pool to an empty voter set."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__("NO_VALID_VOTERS", message, 409, details)


class NotFoundError(ServiceError):
    """Referenced record does not exist."""

    def __init__(
        self,
        error: str,
        message: str,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(error, message, 404, details)
