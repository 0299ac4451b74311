"""
Exception hierarchy for the message relay.

Validation errors (content too long, bad limit) are raised before any state change.
Dispatch errors never reach an API caller: the scheduler logs them and leaves the
message pending. Cache errors are always treated as non-fatal by callers.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all message relay errors."""


class ContentTooLongError(RelayError, ValueError):
    """Message content exceeds the maximum allowed length."""

    def __init__(self, length: int, max_length: int):
        self.length = length
        self.max_length = max_length
        super().__init__(f"content exceeds {max_length} character limit (got {length})")


class InvalidLimitError(RelayError, ValueError):
    """A list limit was not a positive integer."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"limit must be positive, got {limit}")


class MessageNotFoundError(RelayError):
    """No message exists with the given id."""

    def __init__(self, message_id: int):
        self.message_id = message_id
        super().__init__(f"no message found with ID: {message_id}")


class StoreError(RelayError):
    """The durable message store failed to execute a query."""


class CacheError(RelayError):
    """The recent-sent cache could not be read or written."""


class DispatchError(RelayError):
    """Base class for webhook dispatch failures."""


class DispatchRejectedError(DispatchError):
    """The webhook answered with a status other than 202 Accepted."""

    def __init__(self, status_code: int, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(f"failed to send message, status code: {status_code}")


class DispatchUnreachableError(DispatchError):
    """The webhook could not be reached (connection error or timeout)."""


class MalformedResponseError(DispatchError):
    """The webhook accepted the message but its response could not be parsed."""
