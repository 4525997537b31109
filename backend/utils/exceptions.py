# backend/utils/exceptions.py
"""Account error taxonomy.

Services raise these; main.py renders them as ``{"error", "code"}`` JSON
with the matching HTTP status.
"""


class AccountError(Exception):
    """Base class for account and role-migration errors."""

    status_code = 500
    code = "SERVER_ERROR"

    def __init__(self, message: str = None, *, code: str = None):
        self.message = message or "Server error"
        if code:
            self.code = code
        super().__init__(self.message)


class NotFound(AccountError):
    """Subject row is absent from every role table (or the claimed one)."""

    status_code = 404
    code = "USER_NOT_FOUND"

    def __init__(self, user_id=None, message: str = None, **kwargs):
        self.user_id = user_id
        super().__init__(message or f"User {user_id} not found", **kwargs)


class Unauthorized(AccountError):
    """Caller's role does not allow the requested change."""

    status_code = 403
    code = "INSUFFICIENT_PERMISSIONS"


class InvalidCredentials(AccountError):
    status_code = 401
    code = "INVALID_CREDENTIALS"


class ValidationError(AccountError):
    status_code = 400
    code = "VALIDATION_ERROR"


class ServerError(AccountError):
    """Database failure inside a transaction; the transaction was rolled back."""


class DuplicateTargetRow(AccountError):
    """A stale row for the subject already sits in the target table.

    Only recorded and logged by the migration; never raised to clients.
    """

    status_code = 409
    code = "DUPLICATE_TARGET_ROW"

    def __init__(self, table_name: str, row_id: int):
        self.table_name = table_name
        self.row_id = row_id
        super().__init__(f"Stale row {row_id} found in {table_name}")
