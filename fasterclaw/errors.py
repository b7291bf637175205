"""Service-level exceptions, rendered as ``{"detail": ...}`` by the API layer."""

from fastapi import status


class ServiceError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(ServiceError):
    """Operation not allowed from the resource's current status."""
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT


class ForbiddenError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN


class UnsupportedMediaError(ServiceError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE


class PayloadTooLargeError(ServiceError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class UpstreamError(ServiceError):
    """A provider or third-party API failed. Message is safe to show to clients."""

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(message)
        self.status_code = status_code
