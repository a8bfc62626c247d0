"""
Error taxonomy for the chat relay.

Every relay error is reported back to the originating connection only,
as an ``error`` event carrying ``{"message": ...}``.
"""


class RelayError(Exception):
    """Base class for errors reported to the sending connection."""

    #: Label used for the socket_events_total metric
    result = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"message": self.message}


class Unauthenticated(RelayError):
    """The connection has not established a sending identity."""

    result = "unauthenticated"

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class ValidationFailure(RelayError):
    """The event payload is missing fields or is otherwise malformed."""

    result = "validation_error"


class PersistenceFailure(RelayError):
    """The Chat Store was unavailable or rejected the write."""

    result = "persistence_error"

    def __init__(self, message: str = "Failed to save message"):
        super().__init__(message)
