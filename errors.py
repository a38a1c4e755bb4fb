# errors.py
from typing import Optional


class ChatError(Exception):
    """Base class for every failure the chat client reports."""


class EncryptionError(ChatError):
    """Plaintext could not be turned into an envelope."""


class DecryptionError(ChatError):
    """Envelope is malformed, the key is wrong, or the bytes are not text."""


class SendError(ChatError):
    """An optimistic send was rolled back. `draft` holds the text for retry."""

    def __init__(self, message: str, draft: str = ""):
        super().__init__(message)
        self.draft = draft


class LoadError(ChatError):
    """Conversation history could not be loaded."""


class ValidationError(ChatError):
    """Input rejected before any network call."""


class StoreError(ChatError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ConflictError(StoreError):
    """Unique constraint violation reported by the store."""
