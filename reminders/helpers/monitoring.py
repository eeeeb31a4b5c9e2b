from asyncio import iscoroutinefunction
from contextlib import contextmanager
from enum import Enum
from functools import wraps
from os import environ

from azure.monitor.opentelemetry import configure_azure_monitor
from opentelemetry import metrics, trace
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.metrics import Counter, Histogram
from opentelemetry.semconv.attributes import service_attributes
from opentelemetry.trace import Status, StatusCode
from opentelemetry.trace.span import INVALID_SPAN
from opentelemetry.util.types import Attributes, AttributeValue
from structlog.contextvars import bind_contextvars, get_contextvars

MODULE_NAME = "com.github.reminders"
VERSION = environ.get("VERSION", "0.0.0-unknown")


class SpanAttributeEnum(str, Enum):
    """
    OpenTelemetry attributes.

    These attributes are used to track a reminder in the logs and metrics.
    """

    REMINDER_OWNER_ID = "reminder.owner_id"
    """Owner of the reminder, partition key in the store."""
    REMINDER_SCHEDULED_AT = "reminder.scheduled_at"
    """Scheduled time of the reminder, as an ISO-8601 UTC string."""

    def attribute(
        self,
        value: AttributeValue,
    ) -> None:
        """
        Set an attribute on the current span.
        """
        # Enrich logging
        bind_contextvars(**{self.value: value})

        # Enrich span
        span = trace.get_current_span()
        if span == INVALID_SPAN:
            return
        span.set_attribute(self.value, value)


class SpanMeterEnum(str, Enum):
    CYCLE_DURATION = "reminder.cycle.duration"
    """Duration of a whole cycle, from the due query to the last acknowledge."""
    REMINDER_ACKNOWLEDGE_FAILED = "reminder.acknowledge.failed"
    """Reminders dispatched but not marked as sent, they will be dispatched again."""
    REMINDER_ACKNOWLEDGE_SUCCESS = "reminder.acknowledge.success"
    """Reminders marked as sent."""
    REMINDER_DISPATCH_FAILED = "reminder.dispatch.failed"
    """Reminders the channel did not accept."""
    REMINDER_DISPATCH_SUCCESS = "reminder.dispatch.success"
    """Reminders published to the channel."""

    def counter(
        self,
        unit: str,
    ) -> Counter:
        """
        Create a counter metric to track a span counter.
        """
        return meter.create_counter(
            description=self.__doc__ or "",
            name=self.value,
            unit=unit,
        )

    def histogram(
        self,
        unit: str,
    ) -> Histogram:
        """
        Create a histogram metric to track a duration.
        """
        return meter.create_histogram(
            description=self.__doc__ or "",
            name=self.value,
            unit=unit,
        )


try:
    # Configure Azure Application Insights exporter
    configure_azure_monitor()
    # Instrument aiohttp
    AioHttpClientInstrumentor().instrument()
except ValueError as e:
    print(  # noqa: T201
        "Azure Application Insights instrumentation failed, likely due to a missing APPLICATIONINSIGHTS_CONNECTION_STRING environment variable.",
        e,
    )

# Attributes
_default_attributes = {
    service_attributes.SERVICE_NAME: MODULE_NAME,
    service_attributes.SERVICE_VERSION: VERSION,
}

# Create a tracer and meter that will be used across the application
tracer = trace.get_tracer(
    attributes=_default_attributes,
    instrumenting_module_name=MODULE_NAME,
)
meter = metrics.get_meter(
    name=MODULE_NAME,
)

# Init metrics
cycle_duration = SpanMeterEnum.CYCLE_DURATION.histogram("s")
reminder_acknowledge_failed = SpanMeterEnum.REMINDER_ACKNOWLEDGE_FAILED.counter(
    "reminders"
)
reminder_acknowledge_success = SpanMeterEnum.REMINDER_ACKNOWLEDGE_SUCCESS.counter(
    "reminders"
)
reminder_dispatch_failed = SpanMeterEnum.REMINDER_DISPATCH_FAILED.counter("reminders")
reminder_dispatch_success = SpanMeterEnum.REMINDER_DISPATCH_SUCCESS.counter(
    "reminders"
)


def counter_add(
    metric: Counter,
    value: float | int,
):
    """
    Add a counter metric value with context attributes.
    """
    metric.add(
        amount=value,
        attributes=_metric_attributes(),
    )


def histogram_record(
    metric: Histogram,
    value: float | int,
):
    """
    Record a histogram metric value with context attributes.
    """
    metric.record(
        amount=value,
        attributes=_metric_attributes(),
    )


def _metric_attributes() -> Attributes:
    # Context attributes (current reminder) override the defaults
    return {
        **_default_attributes,
        **get_contextvars(),
    }


def start_as_current_span(
    name: str,
    attributes: Attributes = None,
):
    """
    Decorator to start an OTEL span for the function and set it as the current.
    """

    def _wrapper(func):
        @wraps(func)
        def _inner(*args, **kwargs):
            # Start a span
            with tracer.start_as_current_span(
                attributes=attributes,
                name=name,
            ):
                # Call the function
                return func(*args, **kwargs)

        @wraps(func)
        async def _async_inner(*args, **kwargs):
            # Start a span
            with tracer.start_as_current_span(
                attributes=attributes,
                name=name,
            ):
                # Call the function
                return await func(*args, **kwargs)

        return _async_inner if iscoroutinefunction(func) else _inner

    return _wrapper


@contextmanager
def suppress(*exceptions):
    """
    Context manager to suppress exceptions, while also logging them properly in OTEL.

    OTEL span will always be set to OK status, even if an exception occurs. But exception will still be recorded.
    """
    try:
        # Try executing the block
        yield
    # If an exception occurs, set the span status to OK and record the exception
    except exceptions as e:
        span = trace.get_current_span()
        span.set_status(Status(StatusCode.OK))
        span.record_exception(e)
