"""Configuration management for SSHDesk."""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from .exceptions import ConfigurationError


class Config:
    """Centralized configuration management."""

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        self.app_name = "sshdesk"
        self.config_dir = Path(config_dir) if config_dir else Path.home() / f".{self.app_name}"
        self.data_dir = self.config_dir / "data"
        self.servers_file = self.data_dir / "servers.json"
        self.settings_file = self.data_dir / "settings.json"
        self.key_file = self.config_dir / "key.dat"
        self.known_hosts_file = self.config_dir / "known_hosts"
        self.log_file = self.config_dir / f"{self.app_name}.log"

        self.config_dir_permissions = 0o700
        self.key_file_permissions = 0o600

        # Connection settings
        self.default_port = 22
        self.connection_timeout = 30  # seconds, whole connect phase
        self.keepalive_interval = 10
        self.transport_check_interval = 1.0  # seconds, SFTP liveness polling

        # Terminal settings
        self.terminal_type = "xterm-256color"
        self.default_cols = 80
        self.default_rows = 24
        self.read_chunk_size = 4096
        self.output_poll_interval = 0.01  # seconds

        # Window settings
        self.window_width = 1200
        self.window_height = 800
        self.window_min_width = 800
        self.window_min_height = 600

    @property
    def default_settings(self) -> Dict[str, Any]:
        """Settings used when no settings document exists yet."""
        return {"darkMode": False, "fontSize": 14}

    def ensure_config_dir(self) -> None:
        """Create the private configuration and data directories."""
        try:
            self.config_dir.mkdir(mode=self.config_dir_permissions, parents=True, exist_ok=True)
            self.data_dir.mkdir(mode=self.config_dir_permissions, parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Failed to create config directory {self.config_dir}: {e}") from e

    def get_app_title(self) -> str:
        return "SSHDesk"
