import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from sqlite3 import Error as SqliteError, OperationalError

from aiosqlite import Connection, connect as sqlite_connect
from opentelemetry.instrumentation.sqlite3 import SQLite3Instrumentor
from pydantic import ValidationError

from reminders.helpers.config_models.database import SqliteModel
from reminders.helpers.logging import logger
from reminders.models.error import (
    AcknowledgeError,
    AcknowledgeFailureEnum,
    FetchError,
)
from reminders.models.readiness import ReadinessEnum
from reminders.models.reminder import ReminderModel, due_bound, format_timestamp
from reminders.persistence.istore import IStore

# Instrument sqlite
SQLite3Instrumentor().instrument()


class SqliteStore(IStore):
    """
    Reminders stored in a local SQLite table, keyed by (`owner_id`, `scheduled_at`).

    `scheduled_at` is a UTC ISO-8601 string. Rows written by other producers may use another UTC form (e.g. `2024-05-17T09:30:00Z`), so due rows are checked again on the parsed instant and acknowledge addresses the row by the key as it was read.
    """

    _config: SqliteModel
    _db_path: str
    _init_done: bool = False
    _keys: dict[tuple[str, str], str]

    def __init__(self, config: SqliteModel):
        logger.info(
            "Using SQLite database at %s with table %s", config.path, config.table
        )
        self._config = config
        self._keys = {}
        self._db_path = self._config.full_path()

        # Create folder if does not exist
        db_folder = os.path.dirname(self._db_path)
        if db_folder:
            os.makedirs(name=db_folder, exist_ok=True)

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the SQLite database.

        This checks if the database is reachable and can be queried.
        """
        try:
            async with self._use_db() as db:
                await db.execute("SELECT 1")
            return ReadinessEnum.OK
        except Exception:
            logger.exception("Unknown error while checking SQLite readiness")
        return ReadinessEnum.FAIL

    async def fetch_due(
        self,
        now: datetime,
    ) -> AsyncGenerator[ReminderModel]:
        logger.debug("Fetching reminders due at %s", now)
        try:
            async with self._use_db() as db:
                async with db.execute(
                    f"SELECT owner_id, scheduled_at, message_body, sent FROM {self._config.table} WHERE scheduled_at <= ? AND sent = 0",
                    (due_bound(now),),
                ) as cursor:
                    # Rows are read in batches as the caller iterates
                    async for row in cursor:
                        try:
                            reminder = ReminderModel(
                                message_body=row[2],
                                owner_id=row[0],
                                scheduled_at=row[1],
                                sent=bool(row[3]),
                            )
                        except ValidationError:
                            logger.warning(
                                "Skipping malformed reminder %s/%s",
                                row[0],
                                row[1],
                                exc_info=True,
                            )
                            continue
                        # Later in the same second as now
                        if not reminder.is_due(now):
                            continue
                        # Acknowledge will address the row by its key as stored
                        self._keys[
                            (reminder.owner_id, format_timestamp(reminder.scheduled_at))
                        ] = row[1]
                        yield reminder
        except SqliteError as e:
            raise FetchError(f"Error querying SQLite: {e}") from e

    async def acknowledge(
        self,
        owner_id: str,
        scheduled_at: datetime,
    ) -> None:
        fetched = (owner_id, format_timestamp(scheduled_at))
        key = self._keys.get(fetched, fetched[1])
        logger.debug("Marking reminder %s/%s as sent", owner_id, key)
        try:
            async with self._use_db() as db:
                cursor = await db.execute(
                    f"UPDATE {self._config.table} SET sent = 1 WHERE owner_id = ? AND scheduled_at = ?",
                    (
                        owner_id,  # owner_id
                        key,  # scheduled_at
                    ),
                )
                await db.commit()
                updated = cursor.rowcount
        except OperationalError as e:
            # Raised when another writer holds the lock longer than the timeout
            if "locked" in str(e):
                raise AcknowledgeError(
                    reason=AcknowledgeFailureEnum.THROTTLED,
                    message=f"SQLite database is locked: {e}",
                ) from e
            raise AcknowledgeError(
                reason=AcknowledgeFailureEnum.UNAVAILABLE,
                message=f"Error updating SQLite: {e}",
            ) from e
        except SqliteError as e:
            raise AcknowledgeError(
                reason=AcknowledgeFailureEnum.UNAVAILABLE,
                message=f"Error updating SQLite: {e}",
            ) from e

        self._keys.pop(fetched, None)
        if updated < 1:
            raise AcknowledgeError(
                reason=AcknowledgeFailureEnum.NOT_FOUND,
                message=f"Reminder {owner_id}/{key} not found",
            )

    async def _init_db(self, db: Connection):
        """
        Initialize the database.

        See: https://sqlite.org/cgi/src/doc/wal2/doc/wal2.md
        """
        logger.info("First run, init database")
        # Optimize performance for concurrent writes
        await db.execute("PRAGMA journal_mode=WAL")
        # Create table, keyed by owner and scheduled time
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {self._config.table} (owner_id TEXT NOT NULL, scheduled_at TEXT NOT NULL, message_body TEXT NOT NULL, sent INTEGER NOT NULL DEFAULT 0, PRIMARY KEY (owner_id, scheduled_at))"
        )
        # Write changes to disk
        await db.commit()

    @asynccontextmanager
    async def _use_db(self) -> AsyncGenerator[Connection]:
        """
        Generate the SQLite client and close it after use.
        """
        async with sqlite_connect(
            database=self._db_path,
        ) as client:
            if not self._init_done:
                await self._init_db(client)
                self._init_done = True
            yield client
