import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from dbdump.config import Config


__version__ = '0.4.0'


def configure_logging(root: Optional[str] = None, debug: bool = False):
    """
    Configure application logging.

    Always logs to the console. When a backup root is given, also appends
    to <root>/backups/dbdump.log.

    Args:
        root: Backup root, or None before the configuration is known
        debug: Log at DEBUG level instead of INFO
    """
    log_level = logging.DEBUG if debug else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if root is not None:
        log_file = os.path.join(root, Config.LOG_FILE)
        os.makedirs(os.path.dirname(log_file), exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=Config.LOG_MAX_BYTES,
            backupCount=Config.LOG_BACKUP_COUNT
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger, replacing handlers from an earlier call
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # paramiko logs every channel event at INFO
    logging.getLogger('paramiko').setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
