class ServiceError(RuntimeError):
    """Recoverable service error reported to the caller as-is (never retried here)."""

    code = "error"
    status_code = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message, "code": self.status_code}
        if self.details:
            payload["details"] = self.details
        return payload


class Unauthorized(ServiceError):
    code = "unauthorized"
    status_code = 401


class Forbidden(ServiceError):
    code = "forbidden"
    status_code = 403


class NotFound(ServiceError):
    """Entity absent, or owned by an organization the caller does not belong to."""
    code = "not_found"
    status_code = 404


class InvalidTransition(ServiceError):
    code = "invalid_transition"
    status_code = 409


class Conflict(ServiceError):
    code = "conflict"
    status_code = 409


class InvalidReference(ServiceError):
    code = "invalid_reference"
    status_code = 422


class ValidationError(ServiceError):
    code = "validation_error"
    status_code = 400


class StorageUnavailable(ServiceError):
    """Transient store failure; the only kind a caller may retry."""
    code = "storage_unavailable"
    status_code = 503
