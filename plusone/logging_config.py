"""Logging setup: readable console output plus rotated JSON log files."""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from plusone.config import settings

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class LedgerJsonFormatter(jsonlogger.JsonFormatter):
    """One JSON object per record, stamped in UTC with its code location."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["time"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["where"] = f"{record.module}.{record.funcName}:{record.lineno}"


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(base_dir: str | Path | None = None) -> logging.Logger:
    """
    Configure the root logger.

    Records go to stdout and to `<log_dir>/app.log`; errors are also copied
    to `<log_dir>/error.log`. Calling this again replaces the handlers.

    Args:
        base_dir: Directory holding the log folder (defaults to the cwd)
    """
    log_dir = Path(base_dir or Path.cwd()) / settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    json_format = LedgerJsonFormatter("%(message)s")
    root.addHandler(_file_handler(log_dir / "app.log", logging.DEBUG, json_format))
    root.addHandler(_file_handler(log_dir / "error.log", logging.ERROR, json_format))

    # Client libraries log every request at INFO
    for noisy in ("httpx", "openai", "playwright", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root


class ContextAdapter(logging.LoggerAdapter):
    """Adds fixed context fields (component, group...) to every record."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextAdapter:
    """
    Logger carrying context fields into the JSON log.

    Args:
        name: Logger name (usually __name__)
        **context: Fields added to every record, e.g. component="screen_monitor"
    """
    return ContextAdapter(logging.getLogger(name), context)
