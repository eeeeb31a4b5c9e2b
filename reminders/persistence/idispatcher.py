from abc import ABC, abstractmethod

from reminders.helpers.monitoring import start_as_current_span
from reminders.models.readiness import ReadinessEnum
from reminders.models.reminder import ReminderModel


class IDispatcher(ABC):
    _template: str

    def __init__(self, template: str):
        self._template = template

    @abstractmethod
    @start_as_current_span("dispatcher_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("dispatcher_send")
    async def send(
        self,
        reminder: ReminderModel,
    ) -> None:
        """
        Publish the reminder notification to the channel.

        No retry is made, the caller decides. Raises `DispatchError` if the channel did not accept the message.
        """
        pass

    def _render(self, reminder: ReminderModel) -> str:
        return reminder.render(self._template)
