from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from reminders.helpers.config_models.channel import ChannelModel
from reminders.helpers.config_models.cycle import CycleModel
from reminders.helpers.config_models.database import DatabaseModel
from reminders.helpers.config_models.monitoring import MonitoringModel


class RootModel(BaseSettings):
    """
    Service config, see `reminders.helpers.config.load_config`.

    Nested env vars override the loaded document, e.g. `DATABASE__MODE=cosmos_db`.
    """

    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        env_nested_delimiter="__",
        env_prefix="",
    )

    # Immutable fields
    version: str = Field(default="0.0.0-unknown", frozen=True)
    # Editable fields
    channel: ChannelModel = ChannelModel()  # Object is fully defined by default
    cycle: CycleModel = CycleModel()  # Object is fully defined by default
    database: DatabaseModel = DatabaseModel()  # Object is fully defined by default
    monitoring: MonitoringModel = (
        MonitoringModel()
    )  # Object is fully defined by default

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],  # noqa: ARG003
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Env vars win, then `.env` and secret files, the loaded document comes last.

        See: https://docs.pydantic.dev/latest/concepts/pydantic_settings/#changing-priority
        """
        return env_settings, dotenv_settings, file_secret_settings, init_settings
