"""Logging configuration for SSHDesk."""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Logger:
    """Centralized logging management."""

    def __init__(self, log_file: Optional[Union[str, Path]] = None, log_level: int = logging.INFO):
        self.log_file = log_file
        self.log_level = log_level
        self._setup_logging()

    def _setup_logging(self):
        """Attach console and file handlers to the package logger."""
        formatter = logging.Formatter(LOG_FORMAT)

        package_logger = logging.getLogger("sshdesk")
        package_logger.setLevel(self.log_level)
        package_logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

        if self.log_file:
            try:
                log_path = Path(self.log_file)
                log_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(self.log_level)
                file_handler.setFormatter(formatter)
                package_logger.addHandler(file_handler)
            except OSError as e:
                package_logger.warning(f"Could not setup file logging: {e}")

        # paramiko logs every transport packet at DEBUG
        logging.getLogger("paramiko").setLevel(max(self.log_level, logging.WARNING))

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        """Get logger for specific module."""
        return logging.getLogger(name)
