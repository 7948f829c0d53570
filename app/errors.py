"""HTTP error types raised by the API layers.

Every error carries a human readable message which is rendered as
``{"status": "error", "message": ...}`` by the handlers in ``main``.
"""

from fastapi import HTTPException, status


class ApiError(HTTPException):
    """Base class for errors that map to a fixed HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, headers: dict[str, str] | None = None):
        super().__init__(status_code=self.status_code, detail=message, headers=headers)
        self.message = message


class BadRequest(ApiError):
    """Malformed request: headers, body shape, filter or identifier."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(ApiError):
    """The entity or endpoint addressed by the URL does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class MethodNotAllowed(ApiError):
    """The endpoint does not implement the HTTP method."""

    status_code = status.HTTP_405_METHOD_NOT_ALLOWED

    def __init__(self, message: str, allowed: list[str]):
        super().__init__(message, headers={"Allow": ", ".join(allowed)})
        self.allowed = allowed


class Conflict(ApiError):
    """A secondary unique key (e.g. a username) is already taken."""

    status_code = status.HTTP_409_CONFLICT


class UnprocessableEntity(ApiError):
    """Well-formed payload that violates a business rule."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
