"""Ledger error kinds.

Each error carries the API error code and HTTP status the handler reports.
"""


class LedgerError(Exception):
    """Base class for errors reported back to the caller."""
    error = 'internal_error'
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(LedgerError):
    """Referenced record is absent or belongs to another budget."""
    error = 'not_found'
    status_code = 404


class ValidationFailure(LedgerError):
    """Malformed or inconsistent input."""
    error = 'bad_request'
    status_code = 400


class Forbidden(LedgerError):
    """Request references records the budget does not own."""
    error = 'forbidden'
    status_code = 403


class Conflict(LedgerError):
    """Concurrent modification could not be serialized."""
    error = 'conflict'
    status_code = 409
