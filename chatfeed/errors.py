"""Exception types raised by chatfeed components."""

from enum import Enum


class ChatFeedError(Exception):
    """Base class for all chatfeed errors."""


class TransientFetchError(ChatFeedError):
    """A snapshot or profile fetch failed; the caller may retry."""


class DecodeError(ChatFeedError):
    """A row or push event could not be decoded into a typed value."""


class StoreError(ChatFeedError):
    """The relational store rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BlobStoreError(ChatFeedError):
    """The blob store rejected an upload or could not be reached."""


class SendFailure(Enum):
    """Stage at which a composer submission failed."""

    VALIDATION = "validation"
    STORAGE = "storage"
    WRITE = "write"


class SendError(ChatFeedError):
    """A composer submission failed.

    Attributes:
        reason: Which stage failed (validation, storage or write).
    """

    def __init__(self, reason: SendFailure, message: str):
        super().__init__(f"{reason.value}: {message}")
        self.reason = reason
