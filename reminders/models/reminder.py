from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_serializer, field_validator


def format_timestamp(value: datetime) -> str:
    """
    Format a timestamp as a fixed-width ISO-8601 UTC string.

    Width is constant (microseconds always present, `Z` suffix), so comparing two strings compares the instants. Stores filter on this representation.

    Naive datetimes are read as UTC.
    """
    if not value.tzinfo:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def due_bound(now: datetime) -> str:
    """
    Upper bound for a store-side `scheduled_at <= bound` filter on UTC ISO-8601 strings.

    Stored keys may omit the fraction (`2024-05-17T09:30:00Z`) and `Z` sorts after `.`, so the bound covers the whole second of `now`, whatever follows the seconds. Result is a superset, rows must be checked again with `ReminderModel.is_due`.
    """
    # "~" sorts after digits, ".", "+" and "Z"
    return format_timestamp(now)[:19] + "~"


class ReminderModel(BaseModel):
    # Immutable fields
    message_body: str = Field(frozen=True)
    owner_id: str = Field(frozen=True)
    scheduled_at: datetime = Field(frozen=True)
    # Editable fields
    sent: bool = False

    @field_validator("scheduled_at")
    @classmethod
    def _validate_scheduled_at(cls, scheduled_at: datetime) -> datetime:
        if not scheduled_at.tzinfo:
            return scheduled_at.replace(tzinfo=UTC)
        return scheduled_at.astimezone(UTC)

    @field_serializer("scheduled_at")
    def _serialize_scheduled_at(self, scheduled_at: datetime) -> str:
        return format_timestamp(scheduled_at)

    def is_due(self, now: datetime) -> bool:
        """
        A reminder is due when its time has come and it has not been sent yet.
        """
        return not self.sent and format_timestamp(self.scheduled_at) <= format_timestamp(
            now
        )

    def render(self, template: str) -> str:
        """
        Render the notification text.

        Template placeholders are `{owner_id}`, `{message_body}` and `{scheduled_at}`.
        """
        return template.format(
            message_body=self.message_body,
            owner_id=self.owner_id,
            scheduled_at=format_timestamp(self.scheduled_at),
        )
