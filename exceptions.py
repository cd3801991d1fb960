class DomainError(Exception):
    """Base exception for business rule violations."""


class Unauthenticated(DomainError):
    """Raised when a request carries no usable session token."""


class TokenError(Unauthenticated):
    """Raised when a session token cannot be accepted."""


class InvalidToken(TokenError):
    """Signature mismatch or malformed token."""


class ExpiredToken(TokenError):
    """Token is past its validity window."""


class Forbidden(DomainError):
    """Raised when an authenticated caller lacks permission for an action."""


class NotFound(DomainError):
    pass


class AccountNotFound(NotFound):
    pass


class RecordNotFound(NotFound):
    pass


class DuplicatePeriod(DomainError):
    """Raised when a payroll or payment period already exists for an employee."""


class NoChangeApplied(DomainError):
    """Raised when a conditional update matched zero rows."""


class ValidationFailure(DomainError, ValueError):
    """Raised when input data is invalid or violates domain rules."""


class StorageFailure(DomainError):
    """Raised when the database is unavailable or rejects an operation."""


class ConsistencyFault(AccountNotFound):
    """Payroll history references an account that no longer exists."""
