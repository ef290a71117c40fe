"""
Chat client error taxonomy

Every failure the chat layer can surface to a view falls in one of these
categories:
- Transient API errors (fetch/send/assign/close): retryable, state intact
- Validation errors: raised before any network call
- Assignment conflicts: the server kept another admin as assignee
- Invalid state transitions: programming errors in view orchestration
"""

from typing import Optional


class ErrorCategory:
    """Error categories for structured error handling"""
    VALIDATION = "validation_error"
    EXTERNAL_SERVICE = "external_service_error"
    NOT_FOUND = "not_found_error"
    MALFORMED_RESPONSE = "malformed_response_error"
    CONFLICT = "conflict_error"
    INTERNAL = "internal_error"


class ChatError(Exception):
    """Base chat error with structured information"""

    def __init__(
        self,
        message: str,
        category: str = ErrorCategory.INTERNAL,
        details: Optional[dict] = None,
        retry_after: Optional[int] = None
    ):
        self.message = message
        self.category = category
        self.details = details or {}
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.category,
            "message": self.message,
            "details": self.details,
            "retry_after": self.retry_after,
        }


class ChatApiError(ChatError):
    """Non-2xx or unreachable backend. Retryable."""
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
        category: str = ErrorCategory.EXTERNAL_SERVICE,
    ):
        self.status_code = status_code
        super().__init__(
            message=message,
            category=category,
            details={"status_code": status_code, **(details or {})},
            retry_after=5
        )


class NotFoundError(ChatApiError):
    """Backend returned 404"""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            status_code=404,
            details=details,
            category=ErrorCategory.NOT_FOUND,
        )


class MalformedResponseError(ChatApiError):
    """Backend answered 2xx with an absent or unparseable body"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            status_code=status_code,
            category=ErrorCategory.MALFORMED_RESPONSE,
        )


class ChatValidationError(ChatError):
    """Client-side validation errors"""
    def __init__(self, message: str, field: Optional[str] = None, reason: Optional[str] = None):
        self.field = field
        self.reason = reason
        details = {}
        if field:
            details["field"] = field
        if reason:
            details["reason"] = reason
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            details=details
        )


class MessageValidationError(ChatValidationError):
    """Message has no content, attachments or product references"""
    def __init__(self, message: str = "Message must have content, an attachment or a product reference"):
        super().__init__(message, field="content", reason="empty_message")


class AttachmentRejectedError(ChatValidationError):
    """File rejected locally before upload"""
    SIZE_EXCEEDED = "size_exceeded"
    UNSUPPORTED_TYPE = "unsupported_type"
    EMPTY_FILE = "empty_file"

    def __init__(self, file_name: str, reason: str, message: str):
        self.file_name = file_name
        super().__init__(message, field="attachments", reason=reason)


class AssignmentConflict(ChatError):
    """Ticket ended up assigned to someone other than the acting admin"""
    def __init__(self, conversation_id: str, assigned_to: Optional[str], conversation=None):
        self.conversation_id = conversation_id
        self.assigned_to = assigned_to
        self.conversation = conversation
        super().__init__(
            message=f"Conversation {conversation_id} is assigned to {assigned_to}",
            category=ErrorCategory.CONFLICT,
            details={"conversation_id": conversation_id, "assigned_to": assigned_to}
        )


class InvalidStateTransition(ChatError):
    """Conversation view asked to move along an edge it does not have"""
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            message=f"Cannot transition from {current} to {target}",
            details={"current": current, "target": target}
        )


class UnsentMessageError(ChatApiError):
    """Send failed after the view left its conversation; the draft travels with the error"""
    def __init__(self, conversation_id: str, draft, cause: ChatError):
        self.conversation_id = conversation_id
        self.draft = draft
        super().__init__(
            message=f"Message to {conversation_id} was not sent: {cause.message}",
            status_code=getattr(cause, "status_code", None),
            details={"conversation_id": conversation_id},
        )
