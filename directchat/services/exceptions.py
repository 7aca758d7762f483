import logging
from uuid import UUID

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for service layer errors."""

    retryable = False

    def __init__(self, message="An internal service error occurred.", status_code=500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Rejected locally; the request never reaches the backend."""

    def __init__(self, message="Invalid input."):
        super().__init__(message, status_code=400)


class AuthError(ServiceError):
    """Session missing or invalid. Handled by the session collaborator."""

    def __init__(self, message="Not authenticated."):
        super().__init__(message, status_code=401)


class NotAuthorizedError(ServiceError):
    def __init__(self, message="User not authorized for this action."):
        super().__init__(message, status_code=403)


class UploadPermissionError(ServiceError):
    """Object storage refused the write. Fatal, reported to the user."""

    def __init__(self, message="Permission denied while uploading the image."):
        super().__init__(message, status_code=403)


class ConversationNotFoundError(ServiceError):
    def __init__(self, message="Conversation not found."):
        super().__init__(message, status_code=404)


class MessageNotFoundError(ServiceError):
    def __init__(self, message="Message not found."):
        super().__init__(message, status_code=404)


class NetworkError(ServiceError):
    """Transient backend failure; safe to retry with backoff."""

    retryable = True

    def __init__(self, message="The messaging backend is temporarily unavailable."):
        super().__init__(message, status_code=503)


class SubscriptionLost(ServiceError):
    """The realtime channel dropped; resubscribe and re-fetch to close the gap."""

    retryable = True

    def __init__(self, message="Realtime subscription lost."):
        super().__init__(message, status_code=503)


class PartialWriteError(ServiceError):
    """The attachment could not be linked after its message was created.

    `compensated` tells whether the orphaned message was removed again.
    """

    def __init__(
        self,
        message="The image could not be attached to its message.",
        message_id: UUID | None = None,
        compensated: bool = False,
    ):
        self.message_id = message_id
        self.compensated = compensated
        super().__init__(message, status_code=500)


class DatabaseError(ServiceError):
    """For general database errors during service operations."""

    def __init__(self, message="A database error occurred."):
        super().__init__(message, status_code=500)
