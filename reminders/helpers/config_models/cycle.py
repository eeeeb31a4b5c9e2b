from pydantic import BaseModel, Field


class CycleModel(BaseModel):
    dispatch_attempts: int = Field(default=1, ge=1)
    """Dispatch attempts per reminder and cycle, 1 disables retries."""
    enabled: bool = True
    """Run cycles in the background, the HTTP trigger is always available."""
    interval_sec: int = Field(default=60, ge=1)
    """Pause between the end of a cycle and the start of the next one."""
