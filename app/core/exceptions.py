from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if code is not None:
            self.code = code


class ValidationError(ServiceError):
    """Malformed or out-of-range input (bad dates, overlapping terms...)."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST, code)


class InvalidAmountError(ValidationError):
    code = "INVALID_AMOUNT"


class NotFoundError(ServiceError):
    code = "NOT_FOUND"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND, code)


class StudentNotFoundError(NotFoundError):
    code = "STUDENT_NOT_FOUND"


class ConflictError(ServiceError):
    """Duplicate write or lost concurrent update."""

    code = "CONFLICT"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, code)


class AlreadyBilledError(ConflictError):
    code = "ALREADY_BILLED"


class StateError(ServiceError):
    """Operation not allowed for the current status (e.g. paying a WAIVED assignment)."""

    code = "INVALID_STATE"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, code)


class UnavailableError(ServiceError):
    code = "UNAVAILABLE"

    def __init__(self, message: str = "Database temporarily unavailable", code: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, code)
