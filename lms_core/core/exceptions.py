"""Domain error taxonomy shared by the ledger, progress store and coordinator.

Every error carries a stable ``code`` that HTTP adapters map to a status
code; services never raise HTTP exceptions themselves.
"""


class DomainError(Exception):
    """Base domain error."""

    def __init__(self, message: str, code: str = "domain_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(DomainError):
    """Missing course, lecture or purchase reference."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, "not_found")


class AlreadyEnrolledError(DomainError):
    """A completed purchase already exists for the (user, course) pair."""

    def __init__(self, message: str = "User is already enrolled in this course"):
        super().__init__(message, "already_enrolled")


class NotFreeError(DomainError):
    """Free enrollment attempted on a priced course."""

    def __init__(self, message: str = "This course is not free. Please purchase it."):
        super().__init__(message, "not_free")


class InvariantViolationError(DomainError):
    """Persisted state contradicts a structural invariant."""

    def __init__(self, message: str = "Data invariant violated"):
        super().__init__(message, "invariant_violation")


class TransientWriteError(DomainError):
    """Compare-and-set kept conflicting after the bounded number of retries.

    Safe for the caller to retry the whole operation.
    """

    def __init__(self, message: str = "Concurrent update conflict, please retry"):
        super().__init__(message, "transient_write_failure")
