import json
from os import environ
from pathlib import Path

import yaml
from dotenv import find_dotenv
from pydantic import ValidationError

from reminders.helpers.config_models.root import RootModel

CONFIG_ENV = "CONFIG_JSON"
CONFIG_FILE_ENV = "CONFIG_FILE"
CONFIG_FILE_DEFAULT = "config.yaml"


def load_config() -> RootModel:
    """
    Load the service config.

    Sources, first found wins:
    1. JSON document in the `CONFIG_JSON` env var
    2. YAML file named by the `CONFIG_FILE` env var, `config.yaml` by default, looked up from the working directory to the root

    In both cases, env vars with `__` as nested delimiter override the values (e.g. `CYCLE__INTERVAL_SEC=10`).
    """
    if CONFIG_ENV in environ:
        config = RootModel(**json.loads(environ[CONFIG_ENV]))
        print(f'Config loaded from env "{CONFIG_ENV}"')  # noqa: T201
        return config

    name = environ.get(CONFIG_FILE_ENV, CONFIG_FILE_DEFAULT)
    print(f'Cannot find env "{CONFIG_ENV}", trying to load from file "{name}"')  # noqa: T201
    return _load_file(name)


def _load_file(name: str) -> RootModel:
    path = name if Path(name).is_file() else find_dotenv(filename=name, usecwd=True)
    if not path:
        raise ValueError(f'Cannot find config file "{name}"')

    with open(
        encoding="utf-8",
        file=path,
    ) as f:
        # Empty file is valid, env vars override the kwargs
        config = RootModel(**(yaml.safe_load(f) or {}))
    print(f'Config loaded from file "{path}"')  # noqa: T201
    return config


def validation_message(e: ValidationError) -> str:
    """
    Format a config validation error, one line per invalid value.
    """
    lines = ["Config values are not valid:"]
    for i, error in enumerate(e.errors(), start=1):
        location = ".".join(str(loc) for loc in error["loc"])
        lines.append(
            f"{i}. At {location}: {error['msg']} (input value: {error['input']})"
        )
    return "\n".join(lines)


try:
    CONFIG = load_config()
except ValidationError as e:
    raise ValueError(validation_message(e)) from e
