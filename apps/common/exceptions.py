class DomainError(Exception):
    """Base error for billing and enrolment operations."""

    code = "UNKNOWN_ERROR"

    def __init__(self, message: str = "", *, details: dict | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}


class InvalidInput(DomainError):
    code = "VALIDATION_ERROR"


class CoverageConflict(DomainError):
    code = "CONSISTENCY_ERROR"


class NotFound(DomainError):
    code = "NOT_FOUND"


class ConcurrentConflict(DomainError):
    code = "CONCURRENT_CONFLICT"


class CapacityExceeded(DomainError):
    code = "CAPACITY_EXCEEDED"


class HorizonExceeded(DomainError):
    """An occurrence walk needed more than the configured lookahead."""

    code = "HORIZON_EXCEEDED"
