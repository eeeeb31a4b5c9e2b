from reminders.helpers.logging import logger
from reminders.models.readiness import ReadinessEnum
from reminders.models.reminder import ReminderModel
from reminders.persistence.idispatcher import IDispatcher


class ConsoleDispatcher(IDispatcher):
    def __init__(self, template: str):
        super().__init__(template)
        logger.warning("Using console as channel, no real notification will be sent")

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the console channel.
        """
        return ReadinessEnum.OK  # Always ready, it's the logs :)

    async def send(
        self,
        reminder: ReminderModel,
    ) -> None:
        logger.info("📨 Reminder for %s:\n%s", reminder.owner_id, self._render(reminder))
