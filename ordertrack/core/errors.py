from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class OrderTrackError(Exception):
    pass


class InvalidInputError(OrderTrackError, ValueError):
    """Bad pricing or distance input."""


class MalformedOrderError(OrderTrackError, ValueError):
    """Order data is missing a field the core cannot do without."""


class InvalidTransitionError(OrderTrackError):
    def __init__(self, src: str, dst: str):
        super().__init__(f"Cannot move order from {src} to {dst}")
        self.src = src
        self.dst = dst


class ApiErrorType(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ApiError(BaseModel):
    type: ApiErrorType
    message: str
    status: int
    details: Optional[Any] = None


class TransportError(OrderTrackError):
    """Network or backend failure reported by the API client."""

    def __init__(self, error: ApiError):
        super().__init__(error.message)
        self.error = error

    @property
    def status(self) -> int:
        return self.error.status


def create_api_error(status: int, message: str | None = None, details: Any = None) -> ApiError:
    """
    Map an HTTP status to an error type plus a message fit for the user.
    Status 0 means the request never reached the server.
    """
    if status == 0:
        type_ = ApiErrorType.NETWORK_ERROR
        text = "Unable to connect to the server. Please check your internet connection and try again."
    elif status == 401:
        type_ = ApiErrorType.AUTHENTICATION_ERROR
        text = "Your session has expired. Please log in again."
    elif status == 403:
        type_ = ApiErrorType.AUTHORIZATION_ERROR
        text = "You do not have permission to perform this action."
    elif status == 404:
        type_ = ApiErrorType.NOT_FOUND_ERROR
        text = "The requested resource was not found."
    elif status == 408:
        type_ = ApiErrorType.TIMEOUT_ERROR
        text = "Request timed out. Please try again."
    elif status == 422:
        type_ = ApiErrorType.VALIDATION_ERROR
        text = message or "Please check your input and try again."
    elif status in (500, 502, 503, 504):
        type_ = ApiErrorType.SERVER_ERROR
        text = "Server is temporarily unavailable. Please try again in a few moments."
    else:
        type_ = ApiErrorType.UNKNOWN_ERROR
        text = message or "An unexpected error occurred. Please try again."
    return ApiError(type=type_, message=text, status=status, details=details)
