from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from datetime import datetime

from reminders.helpers.monitoring import start_as_current_span
from reminders.models.readiness import ReadinessEnum
from reminders.models.reminder import ReminderModel


class IStore(ABC):
    @abstractmethod
    @start_as_current_span("store_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    def fetch_due(
        self,
        now: datetime,
    ) -> AsyncGenerator[ReminderModel]:
        """
        Yield every reminder scheduled at or before `now` and not sent yet.

        The filter is evaluated by the store over all the reminders. Result is lazy, pages are fetched while iterating. The generator can be consumed only once, call again to get a fresh snapshot.

        Raises `FetchError` if the store cannot be queried.
        """
        pass

    @abstractmethod
    @start_as_current_span("store_acknowledge")
    async def acknowledge(
        self,
        owner_id: str,
        scheduled_at: datetime,
    ) -> None:
        """
        Mark the reminder identified by `owner_id` and `scheduled_at` as sent.

        This is a point write on a single reminder. Call it only after the reminder has been dispatched.

        Raises `AcknowledgeError` if the reminder is not marked as sent.
        """
        pass
