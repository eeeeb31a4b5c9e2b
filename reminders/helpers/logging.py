from logging import Logger, _nameToLevel, basicConfig

from structlog import (
    configure_once,
    get_logger as structlog_get_logger,
    make_filtering_bound_logger,
)
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import (
    JSONRenderer,
    StackInfoRenderer,
    TimeStamper,
    UnicodeDecoder,
    add_log_level,
    dict_tracebacks,
)
from structlog.stdlib import PositionalArgumentsFormatter
from structlog.typing import Processor

from reminders.helpers.config import CONFIG
from reminders.helpers.config_models.monitoring import LoggingFormatEnum

_config = CONFIG.monitoring.logging


def _renderers() -> list[Processor]:
    """
    Last processors of the chain, depending on who reads the logs.
    """
    if _config.format == LoggingFormatEnum.JSON:
        # One object per line, exceptions as structured data
        return [
            dict_tracebacks,
            JSONRenderer(ensure_ascii=False),
        ]
    return [
        ConsoleRenderer(colors=_config.colors),
    ]


# Dependencies (Azure SDK, aiohttp, uvicorn) log through the standard library
basicConfig(level=_config.sys_level.value)

configure_once(
    cache_logger_on_first_use=True,
    context_class=dict,
    wrapper_class=make_filtering_bound_logger(_nameToLevel[_config.app_level.value]),
    processors=[
        # Reminder attributes bound during a cycle
        merge_contextvars,
        add_log_level,
        # Enable %s-style formatting
        PositionalArgumentsFormatter(),
        TimeStamper(fmt="iso", utc=True),
        StackInfoRenderer(),
        UnicodeDecoder(),
        *_renderers(),
    ],
)

# Framework does not exactly expose Logger, but that's easier to work with
logger: Logger = structlog_get_logger("reminders")
