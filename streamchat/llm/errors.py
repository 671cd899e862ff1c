"""
Error taxonomy for the chat core.

Every failure the request builder or the streaming client can report is a
``ChatError`` subclass.  Each carries a human-readable ``description`` and a
``recovery_suggestion`` the shell can show next to it.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all chat-core failures."""

    recovery_suggestion: str = "Try sending your message again"

    def __init__(self, description: str) -> None:
        super().__init__(description)
        self.description = description

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.args == other.args and vars(self) == vars(other)

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class InvalidURL(ChatError):
    recovery_suggestion = "Verify the base URL of the active endpoint configuration"

    def __init__(self, url: str) -> None:
        super().__init__(
            f"Invalid URL: {url}. Please check your base URL configuration."
        )
        self.url = url


class AuthenticationError(ChatError):
    recovery_suggestion = "Check the API key configured for this endpoint"

    def __init__(self, message: str = "Invalid API key") -> None:
        super().__init__(
            f"Authentication failed: {message}. Please check your API key."
        )
        self.message = message


class ModelNotFound(ChatError):
    recovery_suggestion = "Check available models in your API documentation"

    def __init__(self, model: str) -> None:
        super().__init__(
            f"Model '{model}' not found. Please check your model ID configuration."
        )
        self.model = model


class RateLimitExceeded(ChatError):
    recovery_suggestion = "Wait a moment before sending another message"

    def __init__(self, retry_after: int = 60) -> None:
        super().__init__(
            f"Rate limit exceeded. Please try again in {retry_after} seconds."
        )
        self.retry_after = retry_after


class ServerError(ChatError):
    recovery_suggestion = "Contact your API provider if this persists"

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(f"Server error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class InvalidResponseFormat(ChatError):
    recovery_suggestion = "This may be a temporary server issue"

    def __init__(self, message: str = "Invalid response format from server.") -> None:
        super().__init__(message)
        self.message = message


class StreamingError(ChatError):
    """Transport-level failure: DNS, TLS, reset connection, broken read."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Streaming error: {message}")
        self.message = message


class NetworkTimeout(StreamingError):
    recovery_suggestion = "Check your internet connection and try again"

    def __init__(self, message: str = "request timed out") -> None:
        super().__init__(message)
        self.description = (
            "Network timeout. Please check your internet connection."
        )


class AttachmentResolutionError(ChatError):
    recovery_suggestion = "Remove the image and attach it again"

    def __init__(self, attachment_id: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Could not read image attachment {attachment_id}{detail}")
        self.attachment_id = attachment_id
        self.reason = reason


class EncodingError(ChatError):
    recovery_suggestion = "Remove unusual characters from the message and retry"

    def __init__(self, message: str = "") -> None:
        detail = f": {message}" if message else ""
        super().__init__(f"Failed to encode request body{detail}")
        self.message = message
