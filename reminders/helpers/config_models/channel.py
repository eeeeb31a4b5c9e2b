from enum import Enum
from functools import cached_property

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from reminders.persistence.idispatcher import IDispatcher

DEFAULT_TEMPLATE = (
    "Hi {owner_id}, \n\nThis is your reminder:\n{message_body}\n\nScheduled at: {scheduled_at}"
)


class ModeEnum(str, Enum):
    AZURE_QUEUE_STORAGE = "azure_queue_storage"
    """Publish to an Azure Queue Storage queue."""
    CONSOLE = "console"
    """Write to the application logs, for local development."""


class AzureQueueStorageModel(BaseModel, frozen=True):
    account_url: str
    name: str


class ChannelModel(BaseModel):
    # Mode first, validators below read it
    mode: ModeEnum = ModeEnum.CONSOLE
    azure_queue_storage: AzureQueueStorageModel | None = Field(
        default=None, validate_default=True
    )
    template: str = DEFAULT_TEMPLATE

    @field_validator("azure_queue_storage")
    @classmethod
    def _validate_azure_queue_storage(
        cls,
        azure_queue_storage: AzureQueueStorageModel | None,
        info: ValidationInfo,
    ) -> AzureQueueStorageModel | None:
        if (
            not azure_queue_storage
            and info.data.get("mode", None) == ModeEnum.AZURE_QUEUE_STORAGE
        ):
            raise ValueError("Azure Queue Storage config required")
        return azure_queue_storage

    @field_validator("template")
    @classmethod
    def _validate_template(cls, template: str) -> str:
        # Fail at startup rather than on the first due reminder
        try:
            template.format(owner_id="", message_body="", scheduled_at="")
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(
                "Template accepts only {owner_id}, {message_body} and {scheduled_at} placeholders"
            ) from e
        return template

    @cached_property
    def instance(self) -> IDispatcher:
        if self.mode == ModeEnum.CONSOLE:
            from reminders.persistence.console import (
                ConsoleDispatcher,
            )

            return ConsoleDispatcher(template=self.template)

        assert self.azure_queue_storage
        from reminders.persistence.azure_queue_storage import (
            AzureQueueStorageDispatcher,
        )

        return AzureQueueStorageDispatcher(
            account_url=self.azure_queue_storage.account_url,
            name=self.azure_queue_storage.name,
            template=self.template,
        )
