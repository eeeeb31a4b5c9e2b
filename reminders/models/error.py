from enum import Enum

from pydantic import BaseModel


class ErrorInnerModel(BaseModel):
    message: str
    details: list[str]


class ErrorModel(BaseModel):
    error: ErrorInnerModel


class DispatchFailureEnum(str, Enum):
    CHANNEL_UNAVAILABLE = "channel_unavailable"
    """Channel is missing, unreachable or refuses the credentials."""
    PAYLOAD_REJECTED = "payload_rejected"
    """Channel refused the message itself, sending it again will fail the same way."""
    TRANSIENT = "transient"
    """Network or service error, sending it again may succeed."""


class AcknowledgeFailureEnum(str, Enum):
    NOT_FOUND = "not_found"
    """No reminder matches the key."""
    THROTTLED = "throttled"
    """Store is busy, writing again later may succeed."""
    UNAVAILABLE = "unavailable"
    """Store is unreachable or failing."""


class ReminderError(Exception):
    pass


class FetchError(ReminderError):
    """
    Due reminders cannot be listed, the whole cycle is aborted.
    """


class DispatchError(ReminderError):
    reason: DispatchFailureEnum

    def __init__(self, reason: DispatchFailureEnum, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class AcknowledgeError(ReminderError):
    reason: AcknowledgeFailureEnum

    def __init__(self, reason: AcknowledgeFailureEnum, message: str) -> None:
        super().__init__(message)
        self.reason = reason
