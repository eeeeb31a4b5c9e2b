from base64 import b64encode
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from http import HTTPStatus

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.queue.aio import QueueClient, QueueServiceClient

from reminders.helpers.cache import lru_acache
from reminders.helpers.clients import azure_transport, credential
from reminders.helpers.logging import logger
from reminders.models.error import DispatchError, DispatchFailureEnum
from reminders.models.readiness import ReadinessEnum
from reminders.models.reminder import ReminderModel
from reminders.persistence.idispatcher import IDispatcher


class AzureQueueStorageDispatcher(IDispatcher):
    """
    Publish reminders to an Azure Queue Storage queue.

    Subscribers of the queue (e.g. an email or push worker) own the final delivery.
    """

    _account_url: str
    _encoding = "utf-8"
    _name: str

    def __init__(
        self,
        account_url: str,
        name: str,
        template: str,
    ) -> None:
        super().__init__(template)
        logger.info('Using Azure Queue Storage "%s" at %s', name, account_url)
        self._account_url = account_url
        self._name = name

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the queue.

        Reads the queue properties, no message is sent.
        """
        try:
            async with self._use_client() as client:
                await client.get_queue_properties()
            return ReadinessEnum.OK
        except HttpResponseError:
            logger.exception("Error requesting Azure Queue Storage")
        except Exception:
            logger.exception(
                "Unknown error while checking Azure Queue Storage readiness"
            )
        return ReadinessEnum.FAIL

    async def send(
        self,
        reminder: ReminderModel,
    ) -> None:
        content = self._render(reminder)
        logger.debug("Publishing reminder to queue %s: %s", self._name, content)
        try:
            async with self._use_client() as client:
                await client.send_message(self._escape(content))
        except (ClientAuthenticationError, ResourceNotFoundError) as e:
            raise DispatchError(
                reason=DispatchFailureEnum.CHANNEL_UNAVAILABLE,
                message=f'Queue "{self._name}" is not usable: {e}',
            ) from e
        except (ServiceRequestError, ServiceResponseError) as e:
            raise DispatchError(
                reason=DispatchFailureEnum.TRANSIENT,
                message=f'Cannot reach queue "{self._name}": {e}',
            ) from e
        except HttpResponseError as e:
            # Bad request or payload too large, the same message will always fail
            if e.status_code in (
                HTTPStatus.BAD_REQUEST,
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            ):
                raise DispatchError(
                    reason=DispatchFailureEnum.PAYLOAD_REJECTED,
                    message=f'Queue "{self._name}" rejected the message: {e}',
                ) from e
            raise DispatchError(
                reason=DispatchFailureEnum.TRANSIENT,
                message=f'Error sending to queue "{self._name}": {e}',
            ) from e

    def _escape(self, value: str) -> str:
        """
        Escape value to base64 encoding.

        Queue Storage only accepts XML-safe content, base64 makes any reminder text safe.
        """
        return b64encode(value.encode(self._encoding)).decode(self._encoding)

    @lru_acache()
    async def _use_service_client(self) -> QueueServiceClient:
        """
        Generate a new service client.
        """
        logger.debug("Using Queue Service client for %s", self._account_url)

        return QueueServiceClient(
            # Performance
            transport=await azure_transport(),
            # Deployment
            account_url=self._account_url,
            # Authentication
            credential=await credential(),
        )

    @asynccontextmanager
    async def _use_client(self) -> AsyncGenerator[QueueClient]:
        """
        Generate a queue client.
        """
        async with await self._use_service_client() as client:
            yield client.get_queue_client(
                # Performance
                transport=await azure_transport(),
                # Deployment
                queue=self._name,
            )
