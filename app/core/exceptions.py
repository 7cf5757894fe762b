from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(ServiceError):
    """Invalid dates: bad ordering, outside the parent range, overlapping, inactive parent."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class ConflictError(ServiceError):
    """Uniqueness violation (duplicate name/sequence) or a blocked delete."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class NotFoundError(ServiceError):
    """Entity is absent or outside the caller's school. The two cases are not distinguished."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class InternalError(ServiceError):
    def __init__(self, message: str = "Unexpected database error") -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
