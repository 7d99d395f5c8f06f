# fmtbridge/utils/logger.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)

import logging
import re
import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional

DEFAULT_RETENTION_DAYS = 7


class DailyFileHandler(logging.Handler):
    """Append records to ``<prefix>-YYYY-MM-DD.log`` and prune old days on rollover.

    Formatting runs are short lived, so every run appends to the current day's
    file. When a new day's file is opened, files of the same prefix older than
    ``retention_days`` are removed. ``retention_days=0`` keeps everything.
    """

    def __init__(self, log_dir: Path, prefix: str, retention_days: int = DEFAULT_RETENTION_DAYS, encoding: str = "utf-8"):
        super().__init__()
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.retention_days = max(0, int(retention_days))
        self.encoding = encoding
        self._pattern = re.compile(rf"^{re.escape(prefix)}-(\d{{4}}-\d{{2}}-\d{{2}})\.log$")
        self._stream = None
        self._opened_for: Optional[date] = None

    def path_for(self, day: date) -> Path:
        return self.log_dir / f"{self.prefix}-{day:%Y-%m-%d}.log"

    def prune(self, today: date) -> int:
        if not self.retention_days:
            return 0
        cutoff = today - timedelta(days=self.retention_days)
        removed = 0
        for candidate in self.log_dir.iterdir():
            match = self._pattern.match(candidate.name)
            if not match or not candidate.is_file():
                continue
            try:
                day = datetime.strptime(match.group(1), "%Y-%m-%d").date()
            except ValueError:
                continue
            if day < cutoff:
                candidate.unlink(missing_ok=True)
                removed += 1
        return removed

    def _ensure_stream(self):
        today = datetime.now().date()
        if self._stream and self._opened_for == today:
            return
        if self._stream:
            self._stream.close()
            self._stream = None
        self.prune(today)
        self._stream = open(self.path_for(today), "a", encoding=self.encoding)
        self._opened_for = today

    def emit(self, record):
        try:
            msg = self.format(record)
            self._ensure_stream()
            self._stream.write(msg + "\n")
            self._stream.flush()
        except Exception:
            self.handleError(record)

    def close(self):
        try:
            if self._stream:
                self._stream.close()
        finally:
            self._stream = None
            self._opened_for = None
            super().close()


def _build_formatter() -> logging.Formatter:
    # Nested format calls hop between pool worker threads; the thread name ties them together.
    return logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level or "INFO").strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logger(
    name: str = "fmtbridge",
    *,
    with_console: bool = True,
    level: int | str = logging.INFO,
    log_dir: str | Path | None = None,
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> logging.Logger:
    """Configure the named logger; child loggers (fmtbridge.pool, ...) inherit its handlers."""
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(level))
    logger.propagate = False

    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = _build_formatter()

    if with_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_dir:
        file_handler = DailyFileHandler(Path(log_dir), prefix=name, retention_days=retention_days)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger
