from datetime import date, datetime
import logging
from pathlib import Path
from typing import TextIO

from changereport.config import LoggingSettings


LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
PACKAGE_LOGGER = "changereport"

_LEVELS = {
    "Debug": logging.DEBUG,
    "Info": logging.INFO,
    "Warning": logging.WARNING,
    "Error": logging.ERROR,
}


def log_file_path(log_dir: Path, day: date) -> Path:
    return log_dir / f"change-report-{day.isoformat()}.log"


class AppendFileHandler(logging.Handler):
    """Opens, appends and closes the log file for every record."""

    def __init__(self, path: Path, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.path = path

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            with self.path.open("a", encoding="utf-8") as outfile:
                outfile.write(line)
                outfile.write("\n")
        except Exception:
            self.handleError(record)


class RunLog:
    def __init__(self, settings: LoggingSettings, day: date) -> None:
        self.log_dir = Path(settings.log_path)
        self.path = log_file_path(self.log_dir, day)
        self._logger = logging.getLogger(PACKAGE_LOGGER)
        self._previous_level = self._logger.level
        self._handler = AppendFileHandler(self.path, level=_LEVELS.get(settings.log_level, logging.INFO))
        self._handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    @classmethod
    def open(cls, settings: LoggingSettings, day: date) -> "RunLog":
        run_log = cls(settings, day)
        run_log.log_dir.mkdir(parents=True, exist_ok=True)
        run_log._logger.addHandler(run_log._handler)
        run_log._logger.setLevel(min(run_log._handler.level, run_log._logger.getEffectiveLevel()))
        return run_log

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._logger.setLevel(self._previous_level)
        self._handler.close()


def persist_document(log_dir: Path, prefix: str, document: str, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{prefix}-{stamp}.html"
    counter = 1
    while True:
        try:
            # Exclusive create so an artifact is never overwritten.
            with path.open("x", encoding="utf-8") as outfile:
                outfile.write(document)
            return path
        except FileExistsError:
            counter += 1
            path = directory / f"{prefix}-{stamp}-{counter}.html"


def build_stderr_handler(level_name: str, stream: TextIO | None = None) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    return handler
