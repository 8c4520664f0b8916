"""
Request-level failures.

Each error is an HTTPException so route and helper code can raise it directly
and FastAPI renders it as {"detail": ...} with the matching status code.
"""
from typing import Any, Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Server error"

    def __init__(self, detail: Optional[Any] = None, headers: Optional[dict] = None):
        super().__init__(status_code=self.status_code, detail=detail or self.detail, headers=headers)


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Not found"


class InvalidCredentials(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid email or password"


class InvalidOrExpiredOtp(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid or expired OTP"


class AlreadyRegistered(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "User already registered"


class AlreadyFavorited(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Car is already in favorites"


class MissingCredential(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Missing unique ID"


class Unauthorized(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Unauthorized"


class ProtectedRecord(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Cannot modify top admin"


class DeliveryFailed(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Failed to send OTP"


class ValidationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid data format"


class Internal(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Server error"
