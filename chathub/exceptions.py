"""
Custom exception classes for the chat service.

Every failure the chat core can produce is scoped to a single connection.
Only `Unauthenticated` ever reaches a client (as a close reason); the rest
are logged and handled by the connection lifecycle.
"""


class ChatError(Exception):
    """Base class for chat core failures."""

    pass


class Unauthenticated(ChatError):
    """
    Identity binding failed.

    The connection is rejected and never registered.

    Attributes:
        reason: A machine-readable error code (e.g., 'invalid_session')
        detail: Human-readable error details
    """

    def __init__(self, reason: str, detail: str = "") -> None:
        """
        Initialize the Unauthenticated error.

        Args:
            reason: A machine-readable error code indicating the failure type
            detail: Human-readable description of the error
        """
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class AlreadyRegistered(ChatError):
    """
    A connection was registered twice.

    Signals a broken lifecycle invariant, never a user error.
    """

    pass


class TransportError(ChatError):
    """
    Sending to or closing a single connection failed.

    Contained to that connection; it triggers the connection's close.
    """

    pass


class Backpressure(ChatError):
    """
    A recipient's outbound queue is full.

    The recipient is evicted; the sender is never told.
    """

    pass
