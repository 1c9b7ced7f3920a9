from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConfigurationError(ServiceError):
    """Remote store identifiers (database / collection) are missing."""

    def __init__(self, message: str = "Remote store is not configured") -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class NotFoundError(ServiceError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ReferenceNotFoundError(NotFoundError):
    """A record references another record that does not exist (e.g. fee -> student)."""


class DuplicateKeyError(ServiceError):
    def __init__(self, message: str = "Duplicate key") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class TransientIOError(ServiceError):
    """Storage or network failure that may succeed on retry."""

    def __init__(self, message: str = "Storage temporarily unavailable") -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class ValidationError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)
