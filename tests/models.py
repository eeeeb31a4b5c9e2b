from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError
from pytest_assume.plugin import assume

from reminders.helpers.config import load_config, validation_message
from reminders.helpers.config_models.channel import ChannelModel
from reminders.helpers.config_models.channel import ModeEnum as ChannelModeEnum
from reminders.helpers.config_models.cycle import CycleModel
from reminders.helpers.config_models.database import DatabaseModel
from reminders.helpers.config_models.database import ModeEnum as DatabaseModeEnum
from reminders.helpers.config_models.monitoring import LoggingFormatEnum
from reminders.helpers.config_models.root import RootModel
from reminders.models.readiness import (
    ComponentEnum,
    ReadinessCheckModel,
    ReadinessEnum,
    ReadinessModel,
)
from reminders.models.reminder import ReminderModel, due_bound, format_timestamp


@pytest.mark.parametrize(
    "value, expected",
    [
        pytest.param(
            datetime(2024, 5, 17, 9, 30, tzinfo=UTC),
            "2024-05-17T09:30:00.000000Z",
            id="whole_minute",
        ),
        pytest.param(
            datetime(2024, 5, 17, 9, 30, 1, 5, tzinfo=UTC),
            "2024-05-17T09:30:01.000005Z",
            id="microseconds",
        ),
        pytest.param(
            datetime(2024, 5, 17, 11, 30, tzinfo=timezone(timedelta(hours=2))),
            "2024-05-17T09:30:00.000000Z",
            id="offset",
        ),
        pytest.param(
            datetime(2024, 5, 17, 9, 30),
            "2024-05-17T09:30:00.000000Z",
            id="naive",
        ),
    ],
)
def test_format_timestamp(value: datetime, expected: str) -> None:
    assert format_timestamp(value) == expected


def test_format_timestamp_order() -> None:
    """
    Test string order follows time order, the stores filter on it.
    """
    base = datetime(2024, 12, 31, 23, 59, 59, tzinfo=UTC)
    values = [base + timedelta(microseconds=i * 333_333) for i in range(10)]

    formatted = [format_timestamp(value) for value in values]

    assume(len({len(value) for value in formatted}) == 1)
    assume(formatted == sorted(formatted))


def test_due_bound(now: datetime) -> None:
    """
    Test the bound covers every UTC form of the same second, and nothing after it.
    """
    bound = due_bound(now + timedelta(milliseconds=500))

    assume(bound == "2024-05-17T09:30:00~")
    for stored in [
        "2024-05-17T09:30:00Z",
        "2024-05-17T09:30:00+00:00",
        "2024-05-17T09:30:00.999999Z",
    ]:
        assume(stored <= bound)
    assume("2024-05-17T09:30:01Z" > bound)
    assume("2024-05-17T09:30:01.000000Z" > bound)


def test_reminder_utc(now: datetime) -> None:
    """
    Test the schedule is normalized to UTC and serialized in the store format.
    """
    reminder = ReminderModel(
        message_body="Stand-up",
        owner_id="alice",
        scheduled_at=now.astimezone(timezone(timedelta(hours=-7))),
    )

    assume(reminder.scheduled_at == now)
    assume(reminder.scheduled_at.utcoffset() == timedelta(0))
    assume(
        reminder.model_dump(mode="json")
        == {
            "message_body": "Stand-up",
            "owner_id": "alice",
            "scheduled_at": "2024-05-17T09:30:00.000000Z",
            "sent": False,
        }
    )
    # Key fields are immutable
    with pytest.raises(ValidationError):
        reminder.owner_id = "bob"  # pyright: ignore


def test_reminder_parse() -> None:
    reminder = ReminderModel.model_validate(
        {
            "message_body": "Stand-up",
            "owner_id": "alice",
            "scheduled_at": "2024-05-17T09:30:00.000000Z",
        }
    )

    assume(not reminder.sent)
    assume(reminder.scheduled_at == datetime(2024, 5, 17, 9, 30, tzinfo=UTC))


@pytest.mark.parametrize(
    "offset, sent, expected",
    [
        pytest.param(timedelta(minutes=-1), False, True, id="past"),
        pytest.param(timedelta(0), False, True, id="now"),
        pytest.param(timedelta(microseconds=1), False, False, id="future"),
        pytest.param(timedelta(minutes=-1), True, False, id="sent"),
    ],
)
def test_is_due(
    make_reminder,
    now: datetime,
    offset: timedelta,
    sent: bool,
    expected: bool,
) -> None:
    assert make_reminder("alice", offset=offset, sent=sent).is_due(now) is expected


def test_render(make_reminder) -> None:
    reminder = make_reminder("alice", offset=timedelta(0))

    assert (
        reminder.render("{owner_id}|{scheduled_at}")
        == "alice|2024-05-17T09:30:00.000000Z"
    )


@pytest.mark.parametrize(
    "template",
    [
        pytest.param("Hello {name}", id="unknown_placeholder"),
        pytest.param("Hello {}", id="positional"),
        pytest.param("Hello {owner_id", id="unclosed"),
    ],
)
def test_channel_template_invalid(template: str) -> None:
    with pytest.raises(ValidationError):
        ChannelModel(template=template)


def test_channel_mode() -> None:
    # Console by default
    assume(ChannelModel().mode == ChannelModeEnum.CONSOLE)

    with pytest.raises(ValidationError):
        ChannelModel(mode=ChannelModeEnum.AZURE_QUEUE_STORAGE)

    channel = ChannelModel.model_validate(
        {
            "mode": "azure_queue_storage",
            "azure_queue_storage": {
                "account_url": "https://account.queue.core.windows.net",
                "name": "reminders",
            },
        }
    )
    assume(channel.azure_queue_storage)


def test_database_mode() -> None:
    # SQLite by default
    database = DatabaseModel()
    assume(database.mode == DatabaseModeEnum.SQLITE)
    assume(database.sqlite)

    with pytest.raises(ValidationError):
        DatabaseModel(mode=DatabaseModeEnum.COSMOS_DB)


@pytest.mark.parametrize(
    "values",
    [
        pytest.param({"dispatch_attempts": 0}, id="no_attempt"),
        pytest.param({"interval_sec": 0}, id="no_interval"),
    ],
)
def test_cycle_invalid(values: dict) -> None:
    with pytest.raises(ValidationError):
        CycleModel.model_validate(values)


def test_readiness_aggregate() -> None:
    ok = ReadinessCheckModel(
        id=ComponentEnum.STORE,
        latency_ms=3,
        status=ReadinessEnum.OK,
    )
    fail = ReadinessCheckModel(
        id=ComponentEnum.CHANNEL,
        latency_ms=12,
        status=ReadinessEnum.FAIL,
    )

    assume(ReadinessModel.from_checks([ok]).status == ReadinessEnum.OK)
    assume(ReadinessModel.from_checks([ok, fail]).status == ReadinessEnum.FAIL)


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "CONFIG_JSON",
        '{"cycle": {"interval_sec": 5}, "channel": {"mode": "console"}}',
    )
    monkeypatch.setenv("CYCLE__DISPATCH_ATTEMPTS", "3")

    config = load_config()

    assume(config.cycle.interval_sec == 5)
    # Nested env vars override the document
    assume(config.cycle.dispatch_attempts == 3)
    assume(config.database.mode == DatabaseModeEnum.SQLITE)


def test_config_from_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "reminders.yaml"
    path.write_text(
        "cycle:\n  enabled: false\nmonitoring:\n  logging:\n    format: json\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("CONFIG_JSON", raising=False)
    monkeypatch.setenv("CONFIG_FILE", str(path))

    config = load_config()

    assume(not config.cycle.enabled)
    assume(config.monitoring.logging.format == LoggingFormatEnum.JSON)


def test_config_file_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CONFIG_JSON", raising=False)
    monkeypatch.setenv("CONFIG_FILE", "does-not-exist.yaml")

    with pytest.raises(ValueError, match="does-not-exist.yaml"):
        load_config()


def test_config_validation_message() -> None:
    with pytest.raises(ValidationError) as exc_info:
        RootModel.model_validate({"cycle": {"interval_sec": 0}})

    message = validation_message(exc_info.value)

    assume(message.startswith("Config values are not valid:\n1. At cycle.interval_sec:"))
    assume("(input value: 0)" in message)
