from typing import Any, Dict, Optional


class ApiError(Exception):
    """Error that maps onto a JSON response with a ``message`` field."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self, debug: bool = False) -> Dict[str, Any]:
        body = {"message": self.message}
        body.update(self.extra)
        return body


class BusinessRuleError(ApiError):
    status_code = 400


class Unauthenticated(ApiError):
    status_code = 401

    def __init__(self, message: str = "Unauthenticated."):
        super().__init__(message)


class Forbidden(ApiError):
    status_code = 403

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(ApiError):
    status_code = 404

    def __init__(self, what: str = "Resource"):
        super().__init__(f"{what} not found")


class ValidationFailed(ApiError):
    status_code = 422

    def __init__(self, errors: Dict[str, list], message: str = "The given data was invalid."):
        super().__init__(message, errors=errors)

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailed":
        return cls({field: [message]}, message=message)


class OperationFailed(ApiError):
    """Unexpected failure (database/transaction). Raw error only shown in debug mode."""

    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.error = error

    def to_dict(self, debug: bool = False) -> Dict[str, Any]:
        body = {"message": self.message}
        if debug and self.error:
            body["error"] = self.error
        return body
