from pydantic import BaseModel


class CycleGetModel(BaseModel):
    processed: int
    """Reminders for which a dispatch was attempted."""
    summary: str
