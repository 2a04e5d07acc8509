"""
Error kinds raised by the catalog core.

Every error carries a stable ``code`` and the HTTP status the API layer
renders it with. Messages are user-facing: a missing document and a private
document owned by someone else both produce the same NotFound message.
"""


class CatalogError(Exception):
    """Base class for all catalog errors."""

    code = "CATALOG_ERROR"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(CatalogError):
    """Malformed input: bad name shape, oversized field, too many tags."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class Unauthenticated(CatalogError):
    """A mutation was attempted without a caller identity."""

    code = "UNAUTHENTICATED"
    http_status = 401


class PermissionDenied(CatalogError):
    """The caller is authenticated but may not perform this mutation."""

    code = "PERMISSION_DENIED"
    http_status = 403


class NotFound(CatalogError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource_type: str):
        super().__init__(f"{resource_type} not found")
        self.resource_type = resource_type


class Conflict(CatalogError):
    code = "CONFLICT"
    http_status = 409


class BackendUnavailable(CatalogError):
    """The relational store failed."""

    code = "BACKEND_UNAVAILABLE"
    http_status = 503

    def __init__(self, message: str, operation: str = "query"):
        super().__init__(f"Database {operation} failed: {message}")
        self.operation = operation
