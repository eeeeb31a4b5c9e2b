import time
from datetime import UTC, datetime

from structlog.contextvars import unbind_contextvars
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from reminders.helpers.logging import logger
from reminders.helpers.monitoring import (
    SpanAttributeEnum,
    counter_add,
    cycle_duration,
    histogram_record,
    reminder_acknowledge_failed,
    reminder_acknowledge_success,
    reminder_dispatch_failed,
    reminder_dispatch_success,
    start_as_current_span,
    tracer,
)
from reminders.models.error import (
    AcknowledgeError,
    DispatchError,
    DispatchFailureEnum,
)
from reminders.models.reminder import ReminderModel, format_timestamp
from reminders.persistence.idispatcher import IDispatcher
from reminders.persistence.istore import IStore


@start_as_current_span("cycle_run")
async def run_cycle(
    dispatcher: IDispatcher,
    store: IStore,
    now: datetime | None = None,
    dispatch_attempts: int = 1,
) -> int:
    """
    Run one pass over all the due reminders.

    Each due reminder is dispatched then acknowledged, one after the other, in the order the store yields them. A failure on one reminder is logged and the next one is processed.

    Delivery is at-least-once. A reminder dispatched but not acknowledged (store error, crash, overlapping cycle) stays pending and is dispatched again on the next cycle.

    Raises `FetchError` if the due reminders cannot be listed.

    Returns the number of reminders for which a dispatch was attempted, acknowledged or not.
    """
    # Single snapshot for the whole pass
    now = now or datetime.now(UTC)
    start = time.monotonic()
    logger.info("Starting reminder cycle at %s", format_timestamp(now))

    attempted = 0
    acknowledged = 0
    dispatch_failed = 0
    acknowledge_failed = 0

    async for reminder in store.fetch_due(now):
        attempted += 1
        with tracer.start_as_current_span("cycle_reminder"):
            SpanAttributeEnum.REMINDER_OWNER_ID.attribute(reminder.owner_id)
            SpanAttributeEnum.REMINDER_SCHEDULED_AT.attribute(
                format_timestamp(reminder.scheduled_at)
            )
            try:
                # Dispatch
                if not await _dispatch(
                    attempts=dispatch_attempts,
                    dispatcher=dispatcher,
                    reminder=reminder,
                ):
                    dispatch_failed += 1
                    continue

                # Acknowledge
                if await _acknowledge(
                    reminder=reminder,
                    store=store,
                ):
                    acknowledged += 1
                else:
                    acknowledge_failed += 1

            finally:
                unbind_contextvars(
                    SpanAttributeEnum.REMINDER_OWNER_ID.value,
                    SpanAttributeEnum.REMINDER_SCHEDULED_AT.value,
                )

    logger.info(
        "Reminder cycle done, %i attempted, %i acknowledged, %i dispatch failed, %i acknowledge failed",
        attempted,
        acknowledged,
        dispatch_failed,
        acknowledge_failed,
    )
    histogram_record(cycle_duration, time.monotonic() - start)
    return attempted


def cycle_summary(count: int) -> str:
    """
    Human-readable result of a cycle.

    Returns "Processed 1 reminder." for one, "Processed N reminders." otherwise.
    """
    return f"Processed {count} reminder{'' if count == 1 else 's'}."


async def _dispatch(
    attempts: int,
    dispatcher: IDispatcher,
    reminder: ReminderModel,
) -> bool:
    """
    Send the reminder, retrying transient failures up to `attempts` times.

    Returns True if the channel accepted the message.
    """
    try:
        async for attempt in AsyncRetrying(
            reraise=True,
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(attempts),
            wait=wait_random_exponential(multiplier=0.8, max=8),
        ):
            with attempt:
                await dispatcher.send(reminder)
    except DispatchError as e:
        logger.warning(
            "Dispatch failed (%s), reminder stays pending: %s", e.reason.value, e
        )
        counter_add(reminder_dispatch_failed, 1)
        return False
    except Exception:
        logger.exception("Unexpected error while dispatching, reminder stays pending")
        counter_add(reminder_dispatch_failed, 1)
        return False

    logger.debug("Reminder dispatched")
    counter_add(reminder_dispatch_success, 1)
    return True


async def _acknowledge(
    reminder: ReminderModel,
    store: IStore,
) -> bool:
    """
    Mark the dispatched reminder as sent.

    Returns True if the store recorded it. On False the reminder will be dispatched again by the next cycle.
    """
    try:
        await store.acknowledge(
            owner_id=reminder.owner_id,
            scheduled_at=reminder.scheduled_at,
        )
    except AcknowledgeError as e:
        logger.error(
            "Reminder dispatched but not acknowledged (%s), it will be sent again next cycle: %s",
            e.reason.value,
            e,
        )
        counter_add(reminder_acknowledge_failed, 1)
        return False
    except Exception:
        logger.exception(
            "Unexpected error while acknowledging, reminder will be sent again next cycle"
        )
        counter_add(reminder_acknowledge_failed, 1)
        return False

    logger.info("Sent reminder to %s", reminder.owner_id)
    counter_add(reminder_acknowledge_success, 1)
    return True


def _is_transient(e: BaseException) -> bool:
    return isinstance(e, DispatchError) and e.reason == DispatchFailureEnum.TRANSIENT
