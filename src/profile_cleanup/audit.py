"""Per-run audit log written alongside each removal session."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import TypeVar

from .models import ProfileRecord, RemovalResult

T = TypeVar("T")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
AUDIT_LOGGER_NAME = "profile-cleanup.audit"


def format_profile(profile: ProfileRecord) -> str:
    last_used = profile.last_use_time.strftime("%Y-%m-%d %H:%M") if profile.last_use_time else "unknown"
    loaded = "loaded" if profile.is_loaded else "not loaded"
    return f"{profile.name} | {profile.security_id} | {profile.storage_path} | last used {last_used} | {loaded}"


def format_result(result: RemovalResult) -> str:
    profile = result.profile
    return f"{profile.name} | {profile.security_id} | {result.action.value} | {result.reason}"


class AuditLog:
    """Append-only text log for one removal session."""

    def __init__(self, directory: Path, host: str, started: datetime | None = None) -> None:
        """Create the log file for a session.

        Args:
            directory: Directory that holds audit logs.
            host: Target host, part of the file name.
            started: Session start time. Defaults to now.

        """
        started = started or datetime.now()
        directory.mkdir(parents=True, exist_ok=True)
        stem = f"remove-profiles_{host}_{started.strftime('%Y%m%d-%H%M%S')}"

        # Never append to an earlier session's file
        attempt = 1
        while True:
            suffix = f"-{attempt}" if attempt > 1 else ""
            self.path = directory / f"{stem}{suffix}.log"
            try:
                self._handler = logging.FileHandler(self.path, mode="x", encoding="utf-8")
            except FileExistsError:
                attempt += 1
                continue
            break
        self._handler.setFormatter(logging.Formatter(LOG_FORMAT))

        # Records go straight to this session's handler, never to the tool log
        self._logger = logging.getLogger(AUDIT_LOGGER_NAME)
        self._logger.propagate = False

    def append_line(self, message: str, severity: str = "INFO") -> None:
        """Write one line at the given severity (a logging level name)."""
        level = logging.getLevelName(severity.upper())
        if not isinstance(level, int):
            level = logging.INFO
        self._emit(level, message)

    def append_section(self, title: str, items: Iterable[T], formatter: Callable[[T], str]) -> None:
        """Write a titled block with one line per item."""
        items = list(items)
        self._emit(logging.INFO, "===== %s (%d) =====", title, len(items))
        if not items:
            self._emit(logging.INFO, "  (none)")
        for item in items:
            self._emit(logging.INFO, "  %s", formatter(item))

    def _emit(self, level: int, message: str, *args: object) -> None:
        record = self._logger.makeRecord(self._logger.name, level, str(self.path), 0, message, args, None)
        self._handler.handle(record)

    def close(self) -> None:
        self._handler.close()

    def __enter__(self) -> AuditLog:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
