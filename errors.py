"""
Error taxonomy for the API.

Handlers raise these; the exception handler in main.py turns them into
`{"status": "fail", "message": ...}` responses with the matching status code.
"""


class AppError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    status_code = 400


class PreconditionError(AppError):
    status_code = 400


class ExpiredError(AppError):
    status_code = 400


class AuthError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class PaymentError(AppError):
    status_code = 502
