from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from http import HTTPStatus
from uuid import uuid4

from azure.core.exceptions import (
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.cosmos import ConsistencyLevel
from azure.cosmos.aio import ContainerProxy, CosmosClient
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError
from pydantic import ValidationError

from reminders.helpers.cache import lru_acache
from reminders.helpers.clients import azure_transport, credential
from reminders.helpers.config_models.database import CosmosDbModel
from reminders.helpers.logging import logger
from reminders.helpers.monitoring import suppress
from reminders.models.error import (
    AcknowledgeError,
    AcknowledgeFailureEnum,
    FetchError,
)
from reminders.models.readiness import ReadinessEnum
from reminders.models.reminder import ReminderModel, due_bound, format_timestamp
from reminders.persistence.istore import IStore


class CosmosDbStore(IStore):
    """
    Reminders stored in a Cosmos DB container.

    Partition key is `/owner_id`. Item `id` is `scheduled_at` as a UTC ISO-8601 string, so the pair (`owner_id`, `scheduled_at`) addresses exactly one item.

    Producers may write another UTC form than ours (e.g. `2024-05-17T09:30:00Z`). Due items are checked again on the parsed instant, and acknowledge patches the `id` as it was read.
    """

    _config: CosmosDbModel
    _ids: dict[tuple[str, str], str]

    def __init__(self, config: CosmosDbModel):
        logger.info("Using Cosmos DB %s/%s", config.database, config.container)
        self._config = config
        self._ids = {}

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Cosmos DB service.

        This will validate the ACID properties of the database: Create, Read, Update, Delete.
        """
        test_id = str(uuid4())
        test_partition = f"readiness-{uuid4()}"
        test_dict = {
            "id": test_id,  # unique id
            "owner_id": test_partition,  # partition key
            "test": "test",
        }
        try:
            # Test the item does not exist
            if await self._item_exists(test_id, test_partition):
                return ReadinessEnum.FAIL
            async with self._use_client() as db:
                # Create a new item
                await db.upsert_item(body=test_dict)
                # Test the item is the same
                read_item = await db.read_item(
                    item=test_id, partition_key=test_partition
                )
                assert (
                    {k: v for k, v in read_item.items() if k in test_dict} == test_dict
                )  # Check only the relevant fields, Cosmos DB adds metadata
                # Delete the item
                await db.delete_item(item=test_id, partition_key=test_partition)
            # Test the item does not exist
            if await self._item_exists(test_id, test_partition):
                return ReadinessEnum.FAIL
            return ReadinessEnum.OK
        except AssertionError:
            logger.exception("Readiness test failed")
        except CosmosHttpResponseError:
            logger.exception("Error requesting CosmosDB")
        except Exception:
            logger.exception("Unknown error while checking Cosmos DB readiness")
        return ReadinessEnum.FAIL

    async def _item_exists(self, test_id: str, partition_key: str) -> bool:
        exist = False
        async with self._use_client() as db:
            with suppress(CosmosResourceNotFoundError):
                await db.read_item(item=test_id, partition_key=partition_key)
                exist = True
        return exist

    async def fetch_due(
        self,
        now: datetime,
    ) -> AsyncGenerator[ReminderModel]:
        logger.debug("Fetching reminders due at %s", now)
        try:
            async with self._use_client() as db:
                # Cross-partition scan, the SDK follows continuation tokens while iterating
                items = db.query_items(
                    query="SELECT * FROM c WHERE c.scheduled_at <= @now AND c.sent = false",
                    parameters=[
                        {
                            "name": "@now",
                            "value": due_bound(now),
                        },
                    ],
                )
                async for raw in items:
                    if not raw:
                        continue
                    try:
                        reminder = ReminderModel.model_validate(raw)
                    except ValidationError:
                        logger.warning(
                            "Skipping malformed reminder %s", raw.get("id"), exc_info=True
                        )
                        continue
                    # Later in the same second as now
                    if not reminder.is_due(now):
                        continue
                    self._ids[
                        (reminder.owner_id, format_timestamp(reminder.scheduled_at))
                    ] = raw.get("id") or format_timestamp(reminder.scheduled_at)
                    yield reminder
        # Cosmos DB errors, and credential errors raised while paging
        except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
            raise FetchError(f"Error querying CosmosDB: {e}") from e

    async def acknowledge(
        self,
        owner_id: str,
        scheduled_at: datetime,
    ) -> None:
        fetched = (owner_id, format_timestamp(scheduled_at))
        key = self._ids.get(fetched, fetched[1])
        logger.debug("Marking reminder %s/%s as sent", owner_id, key)
        try:
            async with self._use_client() as db:
                # See: https://learn.microsoft.com/en-us/azure/cosmos-db/partial-document-update#supported-operations
                await db.patch_item(
                    item=key,
                    partition_key=owner_id,
                    patch_operations=[
                        {
                            "op": "set",
                            "path": "/sent",
                            "value": True,
                        },
                    ],
                )
        except CosmosResourceNotFoundError as e:
            self._ids.pop(fetched, None)
            raise AcknowledgeError(
                reason=AcknowledgeFailureEnum.NOT_FOUND,
                message=f"Reminder {owner_id}/{key} not found",
            ) from e
        # Cosmos DB errors, and credential errors (ClientAuthenticationError)
        except HttpResponseError as e:
            if e.status_code == HTTPStatus.TOO_MANY_REQUESTS:
                raise AcknowledgeError(
                    reason=AcknowledgeFailureEnum.THROTTLED,
                    message=f"CosmosDB throttled the update: {e}",
                ) from e
            raise AcknowledgeError(
                reason=AcknowledgeFailureEnum.UNAVAILABLE,
                message=f"Error accessing CosmosDB: {e}",
            ) from e
        except (ServiceRequestError, ServiceResponseError) as e:
            raise AcknowledgeError(
                reason=AcknowledgeFailureEnum.UNAVAILABLE,
                message=f"Cannot reach CosmosDB: {e}",
            ) from e

        self._ids.pop(fetched, None)

    @lru_acache()
    async def _use_service_client(self) -> CosmosClient:
        """
        Generate the Cosmos DB client.
        """
        logger.debug("Using Cosmos DB service client for %s", self._config.endpoint)

        return CosmosClient(
            # Usage
            consistency_level=ConsistencyLevel.Strong,
            # Reliability
            connection_timeout=10,  # 10 secs
            retry_backoff_factor=0.8,
            retry_backoff_max=8,
            retry_total=3,
            # Performance
            transport=await azure_transport(),
            # Deployment
            url=self._config.endpoint,
            # Authentication
            credential=await credential(),
        )

    @asynccontextmanager
    async def _use_client(self) -> AsyncGenerator[ContainerProxy]:
        """
        Generate the container client.
        """
        async with await self._use_service_client() as client:
            database = client.get_database_client(self._config.database)
            yield database.get_container_client(self._config.container)
