"""
Error taxonomy shared by every controller.

Each kind is an HTTPException so FastAPI renders it directly; controllers
raise these instead of bare status codes so callers (and tests) can match on
the kind rather than on a number.
"""
from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, headers: dict[str, str] | None = None):
        super().__init__(status_code=self.status_code, detail=detail, headers=headers)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str = "Invalid or missing token"):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT


class RateLimitError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, detail: str, retry_after_seconds: int | None = None):
        headers = None
        if retry_after_seconds is not None:
            headers = {"Retry-After": str(max(int(retry_after_seconds), 1))}
        super().__init__(detail, headers=headers)
        self.retry_after_seconds = retry_after_seconds


class TooManyAttemptsError(RateLimitError):
    pass
