"""
Per-application configuration records.

One JSON file per application, ``<config_dir>/<appname>.json``. No caching
here; workers decide when to re-read.
"""

import asyncio
from pathlib import Path

import structlog
from aiofiles import open as aio_open
from pydantic import ValidationError as PydanticValidationError

from ..models.log_item import LoggerConfig
from .exceptions import ConfigNotFoundError, ConfigParseError

logger = structlog.get_logger(__name__)


class ConfigStore:
    """Reads LoggerConfig records from a directory."""

    def __init__(self, config_dir: Path) -> None:
        self.config_dir = Path(config_dir)

    def path_for(self, appname: str) -> Path:
        return self.config_dir / f"{appname}.json"

    async def load(self, appname: str) -> LoggerConfig:
        """
        Load the record for ``appname``.

        Raises ConfigNotFoundError if there is no record and ConfigParseError
        if it is not a JSON object of string fields. An empty ``dir`` is
        defaulted to the appname.
        """
        path = self.path_for(appname)
        if not await asyncio.to_thread(path.is_file):
            raise ConfigNotFoundError(appname, str(path))

        try:
            async with aio_open(path, "rb") as f:
                raw = await f.read()
        except FileNotFoundError:
            raise ConfigNotFoundError(appname, str(path))
        except OSError as e:
            logger.error("Error reading config", appname=appname, path=str(path), error=str(e))
            raise ConfigParseError(appname, str(path), str(e))

        try:
            config = LoggerConfig.model_validate_json(raw)
        except PydanticValidationError as e:
            reason = e.errors()[0]["msg"] if e.errors() else str(e)
            raise ConfigParseError(appname, str(path), reason)

        if not config.dir:
            config = config.model_copy(update={"dir": appname})
        return config
