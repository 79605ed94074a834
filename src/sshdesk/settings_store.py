"""Application settings document."""

import json
from typing import Any, Dict, Mapping

from .config import Config
from .exceptions import ConfigurationError
from .logger import Logger
from .models import AppSettings


class SettingsStore:
    """Reads and writes the flat settings object."""

    def __init__(self, config: Config):
        self.config = config
        self.logger = Logger.get_logger(__name__)

    def get(self) -> Dict[str, Any]:
        path = self.config.settings_file
        if not path.exists():
            return dict(self.config.default_settings)

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return AppSettings.model_validate(data).model_dump(by_alias=True)
        except (OSError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            self.logger.error(f"Error reading settings: {e}")
            return dict(self.config.default_settings)

    def save(self, settings: Mapping[str, Any]) -> Dict[str, Any]:
        validated = AppSettings.model_validate(dict(settings)).model_dump(by_alias=True)

        self.config.ensure_config_dir()
        try:
            self.config.settings_file.write_text(
                json.dumps(validated, ensure_ascii=False, indent=2), encoding="utf-8"
            )
        except OSError as e:
            self.logger.error(f"Error saving settings: {e}")
            raise ConfigurationError(f"Failed to save settings: {e}") from e
        return validated
