from typing import Any, List, Optional


class ApiError(Exception):
    """Request-level failure rendered as the standard error envelope.

    Raised from services and dependencies; the exception handlers in main.py
    turn it into `{statusCode, data: null, message, success: false, errors}`.
    """

    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        self.errors = list(errors or [])
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "statusCode": self.status_code,
            "data": None,
            "message": self.message,
            "success": False,
            "errors": self.errors,
        }


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = "Unauthorized request"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Already exists"


class InternalError(ApiError):
    status_code = 500
    default_message = "Internal server error"
