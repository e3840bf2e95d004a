"""Error taxonomy shared by the service modules.

Services raise these and never build HTTP responses themselves; the FastAPI
app maps every AutotracksError to a `{"error": kind, "detail": message}` body.
"""


class AutotracksError(Exception):
    """Base class for every error a service operation reports to its caller."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(AutotracksError):
    """Malformed or missing input. Raised before any write happens."""

    kind = "validation_error"
    status_code = 400


class NotFoundError(AutotracksError):
    """Referenced entity is absent or soft-deleted."""

    kind = "not_found"
    status_code = 404


class ConflictError(AutotracksError):
    """A unique value (property key, VIN) is already taken."""

    kind = "conflict"
    status_code = 400


class AuthorizationError(AutotracksError):
    """Principal lacks the role or dealership scope the operation needs."""

    kind = "unauthorized"
    status_code = 401


class PersistenceError(AutotracksError):
    """An underlying store operation failed.

    When raised after a fan-out, earlier record writes stay committed; the
    operation is safe to retry because reconciliation is idempotent.
    """

    kind = "persistence_error"
    status_code = 500

    def __init__(self, message: str, failures: int = 0):
        self.failures = failures
        super().__init__(message)
