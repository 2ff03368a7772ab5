from typing import List, Optional


class ServiceError(Exception):
    """Base class for errors raised by the core operations.

    Each subclass maps to one machine-readable ``kind`` and an HTTP status;
    the handlers in ``main.py`` turn them into JSON responses.
    """

    kind = "InternalError"
    status_code = 500

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or []


class ValidationFailed(ServiceError):
    kind = "ValidationError"
    status_code = 400


class NotFound(ServiceError):
    kind = "NotFound"
    status_code = 404


class NotAuthorized(ServiceError):
    kind = "NotAuthorized"
    status_code = 403


class InvalidState(ServiceError):
    kind = "InvalidState"
    status_code = 409


class Conflict(ServiceError):
    kind = "Conflict"
    status_code = 409
