import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from utils.constants import LOGS_DIR, LOG_FILE_NAME


def _parse_size(value, default: int = 5 * 1024 * 1024) -> int:
    """Turn '5MB' / '512KB' / 1048576 into a byte count."""
    text = str(value).strip().upper()
    try:
        if text.endswith('MB'):
            return int(text[:-2]) * 1024 * 1024
        if text.endswith('KB'):
            return int(text[:-2]) * 1024
        return int(text)
    except ValueError:
        return default


class Logger:
    """Console and rotating-file logger shared by every node component."""

    _configured = False

    @classmethod
    def setup(cls, settings: dict):
        """
        Global configuration for all Logger instances.

        Args:
            settings: Dictionary containing 'level', 'rotation', 'backup_count',
                      'file' (bool) and optionally 'directory'.
        """
        if cls._configured:
            return

        level_name = str(settings.get('level', 'INFO')).upper()
        level = getattr(logging, level_name, logging.INFO)

        root = logging.getLogger()
        root.setLevel(level)

        if not root.handlers:
            formatter = logging.Formatter(
                '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            root.addHandler(console_handler)

            if settings.get('file', True):
                try:
                    log_dir = Path(settings.get('directory', LOGS_DIR))
                    log_dir.mkdir(parents=True, exist_ok=True)

                    file_handler = RotatingFileHandler(
                        log_dir / LOG_FILE_NAME,
                        maxBytes=_parse_size(settings.get('rotation', '5MB')),
                        backupCount=settings.get('backup_count', 5)
                    )
                    file_handler.setFormatter(formatter)
                    root.addHandler(file_handler)
                except OSError as e:
                    root.warning(f"Failed to initialize file logger: {e}")

        cls._configured = True

    def __init__(self, name: str = "VisionNode"):
        self.logger = logging.getLogger(name)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def debug(self, message: str):
        self.logger.debug(message)

    def critical(self, message: str):
        self.logger.critical(message)
