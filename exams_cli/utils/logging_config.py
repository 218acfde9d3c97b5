import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAIN_LOG_FILE = "exams-cli.log"
AUDIT_LOG_FILE = "audit.log"
AUDIT_LOGGER_NAME = "exams_cli.audit"
ROTATE_AT_BYTES = 10 * 1024 * 1024


def _level(name: Optional[str], default: int = logging.INFO) -> int:
    if not name:
        return default
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else default


def _rotating_handler(
    path: Path, level: int, fmt: str, backups: int, delay: bool = False
) -> logging.handlers.RotatingFileHandler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=ROTATE_AT_BYTES,
        backupCount=backups,
        encoding="utf-8",
        delay=delay,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


class LoggingConfig:
    """Console and rotating-file logging for the exam office CLI."""

    def __init__(self, logs_dir: Optional[str] = None):
        self.logs_dir = Path(logs_dir or os.getenv("EXAMS_LOG_DIR", "logs"))
        self.ready = False

    def setup_logging(
        self,
        log_level: str = "INFO",
        console_level: Optional[str] = None,
        file_level: Optional[str] = None,
        backups: int = 5,
        fmt: str = DEFAULT_FORMAT,
    ) -> None:
        """
        Route the root logger to stderr and to `<logs_dir>/exams-cli.log`.

        Args:
            log_level: Level for both outputs unless overridden
            console_level: Level for the terminal
            file_level: Level for the log file
            backups: Rotated log files kept beside the live one
            fmt: Record format shared by both outputs
        """
        if self.ready:
            return

        base = _level(log_level)
        to_console = _level(console_level, base)
        to_file = _level(file_level, base)

        self.logs_dir.mkdir(parents=True, exist_ok=True)

        root = logging.getLogger()
        root.handlers.clear()
        root.setLevel(min(to_console, to_file))

        terminal = logging.StreamHandler()
        terminal.setLevel(to_console)
        terminal.setFormatter(logging.Formatter(fmt))
        root.addHandler(terminal)
        root.addHandler(
            _rotating_handler(self.logs_dir / MAIN_LOG_FILE, to_file, fmt, backups)
        )

        # engine echo goes through INFO
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

        self.ready = True
        logging.getLogger(__name__).debug(
            f"Logging to {self.logs_dir.absolute() / MAIN_LOG_FILE} "
            f"(console={logging.getLevelName(to_console)}, "
            f"file={logging.getLevelName(to_file)})"
        )

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)

    def audit_logger(self, backups: int = 10) -> logging.Logger:
        """
        Logger for sign-offs and session closes. Records also reach the
        root handlers; the audit file is opened on the first record.
        """
        logger = logging.getLogger(AUDIT_LOGGER_NAME)
        logger.setLevel(logging.INFO)

        path = (self.logs_dir / AUDIT_LOG_FILE).absolute()
        attached = {
            getattr(h, "baseFilename", None) for h in logger.handlers
        }
        if str(path) not in attached:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            logger.addHandler(
                _rotating_handler(
                    path, logging.INFO, DEFAULT_FORMAT, backups, delay=True
                )
            )
        return logger


_config = LoggingConfig()


def setup_logging(**kwargs) -> None:
    _config.setup_logging(**kwargs)


def get_logger(name: str) -> logging.Logger:
    return _config.get_logger(name)


def get_audit_logger() -> logging.Logger:
    return _config.audit_logger()


def configure_from_env() -> None:
    """Configure logging from LOG_LEVEL, CONSOLE_LOG_LEVEL and FILE_LOG_LEVEL."""
    setup_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        console_level=os.getenv("CONSOLE_LOG_LEVEL"),
        file_level=os.getenv("FILE_LOG_LEVEL"),
    )
