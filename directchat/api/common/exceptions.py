import logging

from fastapi import HTTPException, status

from directchat.core.config import settings
from directchat.services.exceptions import (
    AuthError,
    ConversationNotFoundError,
    DatabaseError,
    MessageNotFoundError,
    NotAuthorizedError,
    PartialWriteError,
    ServiceError,
    UploadPermissionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class APIException(HTTPException):
    """Base class for API specific exceptions."""

    def __init__(
        self, status_code: int, detail: any = None, headers: dict | None = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class NotFoundError(APIException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestError(APIException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class UnauthorizedError(APIException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(APIException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InternalServerError(APIException):
    def __init__(self, detail: str = "Internal server error"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail
        )


class ServiceUnavailableError(APIException):
    """Transient failure. Clients may retry after the advertised delay."""

    def __init__(self, detail: str = "Service temporarily unavailable"):
        retry_after = max(1, round(settings.RETRY_MAX_DELAY))
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            headers={"Retry-After": str(retry_after)},
        )


def handle_service_error(e: ServiceError):
    """
    Maps ServiceError subclasses to the matching APIException.
    Called by @handle_route_errors; always raises.
    """
    message = getattr(e, "message", str(e))
    logger.warning(f"Handling service error: {e.__class__.__name__} - {message}")

    if isinstance(e, (ConversationNotFoundError, MessageNotFoundError)):
        raise NotFoundError(detail=message)
    elif isinstance(e, ValidationError):
        raise BadRequestError(detail=message)
    elif isinstance(e, AuthError):
        raise UnauthorizedError(detail=message)
    elif isinstance(e, (NotAuthorizedError, UploadPermissionError)):
        raise ForbiddenError(detail=message)
    elif e.retryable:
        raise ServiceUnavailableError(detail=message)
    elif isinstance(e, PartialWriteError):
        raise InternalServerError(
            detail={
                "message": message,
                "message_id": str(e.message_id) if e.message_id else None,
                "compensated": e.compensated,
            }
        )
    elif isinstance(e, DatabaseError):
        raise InternalServerError(detail="A database error occurred.")
    else:
        raise APIException(
            status_code=getattr(e, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=message or "A service error occurred.",
        )
