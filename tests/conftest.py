import random
import string
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta

import pytest

from reminders.helpers.config_models.channel import DEFAULT_TEMPLATE
from reminders.models.error import FetchError
from reminders.models.readiness import ReadinessEnum
from reminders.models.reminder import ReminderModel, format_timestamp
from reminders.persistence.idispatcher import IDispatcher
from reminders.persistence.istore import IStore


class StoreMock(IStore):
    """
    Reminder store kept in memory.

    Failures are injected per reminder key with `fail_acknowledge`, or for the whole query with `fail_fetch`.
    """

    acknowledge_calls: list[tuple[str, str]]
    fetch_calls: list[datetime]
    _acknowledge_errors: dict[tuple[str, str], list[Exception]]
    _fetch_error: FetchError | None
    _readiness: ReadinessEnum
    _reminders: dict[tuple[str, str], ReminderModel]

    def __init__(self) -> None:
        self.acknowledge_calls = []
        self.fetch_calls = []
        self._acknowledge_errors = {}
        self._fetch_error = None
        self._readiness = ReadinessEnum.OK
        self._reminders = {}

    def add(self, *reminders: ReminderModel) -> None:
        for reminder in reminders:
            self._reminders[self._key(reminder.owner_id, reminder.scheduled_at)] = (
                reminder.model_copy()
            )

    def get(self, reminder: ReminderModel) -> ReminderModel:
        return self._reminders[self._key(reminder.owner_id, reminder.scheduled_at)]

    def fail_acknowledge(self, reminder: ReminderModel, *errors: Exception) -> None:
        self._acknowledge_errors.setdefault(
            self._key(reminder.owner_id, reminder.scheduled_at), []
        ).extend(errors)

    def fail_fetch(self, error: FetchError) -> None:
        self._fetch_error = error

    def fail_readiness(self) -> None:
        self._readiness = ReadinessEnum.FAIL

    async def readiness(self) -> ReadinessEnum:
        return self._readiness

    async def fetch_due(
        self,
        now: datetime,
    ) -> AsyncGenerator[ReminderModel]:
        self.fetch_calls.append(now)
        if self._fetch_error:
            raise self._fetch_error
        for reminder in list(self._reminders.values()):
            if reminder.is_due(now):
                yield reminder.model_copy()

    async def acknowledge(
        self,
        owner_id: str,
        scheduled_at: datetime,
    ) -> None:
        key = self._key(owner_id, scheduled_at)
        self.acknowledge_calls.append(key)
        errors = self._acknowledge_errors.get(key)
        if errors:
            raise errors.pop(0)
        self._reminders[key].sent = True

    @staticmethod
    def _key(owner_id: str, scheduled_at: datetime) -> tuple[str, str]:
        return owner_id, format_timestamp(scheduled_at)


class DispatcherMock(IDispatcher):
    """
    Channel recording the messages it accepts.

    Failures are injected per owner with `fail`, consumed in order, one per send.
    """

    messages: list[str]
    send_calls: list[ReminderModel]
    sent: list[ReminderModel]
    _errors: dict[str, list[Exception]]

    def __init__(self, template: str) -> None:
        super().__init__(template)
        self.messages = []
        self.send_calls = []
        self.sent = []
        self._errors = {}

    def fail(self, owner_id: str, *errors: Exception) -> None:
        self._errors.setdefault(owner_id, []).extend(errors)

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def send(
        self,
        reminder: ReminderModel,
    ) -> None:
        self.send_calls.append(reminder)
        errors = self._errors.get(reminder.owner_id)
        if errors:
            raise errors.pop(0)
        self.messages.append(self._render(reminder))
        self.sent.append(reminder)


@pytest.fixture
def random_text() -> str:
    text = "".join(random.choice(string.ascii_letters) for _ in range(32))
    return text


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 5, 17, 9, 30, tzinfo=UTC)


@pytest.fixture
def make_reminder(
    now: datetime,
    random_text: str,
) -> Callable[..., ReminderModel]:
    """
    Build reminders relative to `now`, negative offsets are due.
    """

    def _make(
        owner_id: str,
        offset: timedelta = timedelta(minutes=-5),
        sent: bool = False,
    ) -> ReminderModel:
        return ReminderModel(
            message_body=f"Call the plumber {random_text}",
            owner_id=owner_id,
            scheduled_at=now + offset,
            sent=sent,
        )

    return _make


@pytest.fixture
def store() -> StoreMock:
    return StoreMock()


@pytest.fixture
def dispatcher() -> DispatcherMock:
    return DispatcherMock(template=DEFAULT_TEMPLATE)
