from enum import Enum

from pydantic import BaseModel


class ReadinessEnum(str, Enum):
    FAIL = "fail"
    """The component cannot serve a cycle."""
    OK = "ok"
    """The component is ready."""


class ComponentEnum(str, Enum):
    CHANNEL = "channel"
    """Outbound channel reminders are published to."""
    STORE = "store"
    """Record store reminders are read from and acknowledged in."""


class ReadinessCheckModel(BaseModel):
    id: ComponentEnum
    latency_ms: int
    status: ReadinessEnum


class ReadinessModel(BaseModel):
    checks: list[ReadinessCheckModel]
    status: ReadinessEnum

    @classmethod
    def from_checks(cls, checks: list[ReadinessCheckModel]) -> "ReadinessModel":
        """
        Aggregate component checks, one failing component fails the whole service.
        """
        status = (
            ReadinessEnum.OK
            if all(check.status == ReadinessEnum.OK for check in checks)
            else ReadinessEnum.FAIL
        )
        return cls(
            checks=checks,
            status=status,
        )
