import asyncio
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from reminders.helpers.config import CONFIG
from reminders.helpers.cycle import cycle_summary, run_cycle
from reminders.helpers.clients import close_clients
from reminders.helpers.logging import logger
from reminders.helpers.monitoring import start_as_current_span
from reminders.models.cycle import CycleGetModel
from reminders.models.error import ErrorInnerModel, ErrorModel, FetchError
from reminders.models.readiness import (
    ComponentEnum,
    ReadinessCheckModel,
    ReadinessEnum,
    ReadinessModel,
)

# First log
logger.info(
    "reminders v%s",
    CONFIG.version,
)

# Persistences
_db = CONFIG.database.instance
_dispatcher = CONFIG.channel.instance


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    cycle_task = None

    try:
        if CONFIG.cycle.enabled:
            cycle_task = asyncio.create_task(_cycle_loop())
        else:
            logger.warning("Background cycles are disabled, use POST /cycle")
        yield

    # Cancel tasks
    finally:
        if cycle_task:
            cycle_task.cancel()

    # Release shared Azure clients
    await close_clients()


# FastAPI
api = FastAPI(
    description="Dispatch due reminders to a notification channel, then mark them as sent.",
    lifespan=lifespan,
    title="reminders",
    version=CONFIG.version,
)


@api.get("/health/liveness")
@start_as_current_span("health_liveness_get")
async def health_liveness_get() -> None:
    """
    Check if the service is running.

    No parameters are expected.

    Returns a 200 OK if the service is technically running.
    """
    return


@api.get(
    "/health/readiness",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("health_readiness_get")
async def health_readiness_get() -> JSONResponse:
    """
    Check if the service is ready to run cycles.

    No parameters are expected. Components tested are: store, channel.

    Returns a 200 OK if the service is ready. If the service is not ready, it returns a 503 Service Unavailable.
    """
    # Check all components in parallel
    checks = await asyncio.gather(
        _timed_check(ComponentEnum.STORE, _db.readiness),
        _timed_check(ComponentEnum.CHANNEL, _dispatcher.readiness),
    )
    readiness = ReadinessModel.from_checks(list(checks))
    return JSONResponse(
        content=readiness.model_dump(mode="json"),
        status_code=(
            HTTPStatus.OK
            if readiness.status == ReadinessEnum.OK
            else HTTPStatus.SERVICE_UNAVAILABLE
        ),
    )


@api.post(
    "/cycle",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("cycle_post")
async def cycle_post() -> CycleGetModel:
    """
    Run a reminder cycle now.

    No parameters are expected. Runs alongside the background cycles, if enabled.

    Returns the number of reminders processed and a summary. If due reminders cannot be listed, it returns a 503 Service Unavailable.
    """
    processed = await run_cycle(
        dispatch_attempts=CONFIG.cycle.dispatch_attempts,
        dispatcher=_dispatcher,
        store=_db,
    )
    return CycleGetModel(
        processed=processed,
        summary=cycle_summary(processed),
    )


async def _cycle_loop() -> None:
    """
    Run cycles forever, pausing `interval_sec` between the end of one and the start of the next.

    A failed cycle is logged, the next one is tried after the pause.
    """
    logger.info("Running reminder cycles every %i secs", CONFIG.cycle.interval_sec)
    try:
        while True:
            try:
                processed = await run_cycle(
                    dispatch_attempts=CONFIG.cycle.dispatch_attempts,
                    dispatcher=_dispatcher,
                    store=_db,
                )
                logger.info(cycle_summary(processed))
            except FetchError:
                logger.exception("Reminder cycle aborted, due reminders unavailable")
            except Exception:
                logger.exception("Unknown error while running reminder cycle")
            await asyncio.sleep(CONFIG.cycle.interval_sec)
    except asyncio.CancelledError:
        logger.debug("Reminder cycle task cancelled")


async def _timed_check(
    component: ComponentEnum,
    check: Callable[[], Awaitable[ReadinessEnum]],
) -> ReadinessCheckModel:
    start = time.monotonic()
    status = await check()
    return ReadinessCheckModel(
        id=component,
        latency_ms=int((time.monotonic() - start) * 1000),
        status=status,
    )


@api.exception_handler(FetchError)
async def fetch_exception_handler(
    request: Request,  # noqa: ARG001
    exc: FetchError,
) -> JSONResponse:
    """
    Handle store failures while listing due reminders.
    """
    logger.error("Reminder cycle aborted: %s", exc)
    return _standard_error(
        message="Due reminders unavailable, cycle aborted",
        status_code=HTTPStatus.SERVICE_UNAVAILABLE,
    )


@api.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle HTTP exceptions and return the error in a standard format.
    """
    return _standard_error(
        message=exc.detail,
        status_code=HTTPStatus(exc.status_code),
    )


@api.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,  # noqa: ARG001
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle validation exceptions and return the error in a standard format.
    """
    return _standard_error(
        details=[str(x) for x in exc.errors()],
        message="Validation error",
        status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
    )


def _standard_error(
    message: str,
    status_code,
    details: list[str] | None = None,
) -> JSONResponse:
    """
    Generate a standard error response.
    """
    model = ErrorModel(
        error=ErrorInnerModel(
            details=details or [],
            message=message,
        )
    )
    return JSONResponse(
        content=model.model_dump(mode="json"),
        status_code=status_code,
    )
