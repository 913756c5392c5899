"""Durable per-file processing state.

Every archive the spooler finishes is recorded here as processed or failed.
Each mark call rewrites the full snapshot before returning, so once a mark
returns the file will never be picked up again, even after a crash. A crash
before the rewrite completes leaves the previous snapshot in place and the
file is simply processed again on the next run.
"""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path

import yaml

from ingex.constants import STATUS_FAILED, STATUS_PROCESSED
from ingex.errors import StateError
from ingex.models import FileStateEntry, utc_now
from ingex.utils.logging import get_logger

logger = get_logger("ingex.state")


class ProcessingStateStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._entries: dict[str, FileStateEntry] = {}

    @classmethod
    def open(cls, path: Path | str) -> ProcessingStateStore:
        store = cls(path)
        store.load()
        return store

    def load(self) -> None:
        with self._lock:
            self._entries = {}
            if not self.path.exists():
                logger.info("State file %s does not exist, starting with empty state", self.path)
                return

            try:
                with self.path.open("r", encoding="utf-8") as fh:
                    raw = yaml.safe_load(fh)
            except (OSError, yaml.YAMLError) as exc:
                raise StateError(f"failed to read state file {self.path}: {exc}") from exc

            if not raw:
                logger.info("State file %s is empty, starting with empty state", self.path)
                return
            if not isinstance(raw, list):
                raise StateError(f"state file {self.path} must contain a list of entries")

            for item in raw:
                if not isinstance(item, dict) or "filename" not in item:
                    raise StateError(f"malformed state entry in {self.path}: {item!r}")
                try:
                    entry = FileStateEntry.from_dict(item)
                except ValueError as exc:
                    raise StateError(f"malformed state entry in {self.path}: {exc}") from exc
                self._entries[entry.filename] = entry

            logger.info("Loaded state with %s entries", len(self._entries))

    def is_processed(self, filename: str) -> bool:
        with self._lock:
            entry = self._entries.get(filename)
            return entry is not None and entry.processed

    def is_failed(self, filename: str) -> bool:
        with self._lock:
            entry = self._entries.get(filename)
            return entry is not None and entry.failed

    def is_tracked(self, filename: str) -> bool:
        with self._lock:
            return filename in self._entries

    def get(self, filename: str) -> FileStateEntry | None:
        with self._lock:
            return self._entries.get(filename)

    def entries(self) -> list[FileStateEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda entry: entry.filename)

    def mark_processed(self, filename: str) -> None:
        with self._lock:
            self._entries[filename] = FileStateEntry(
                filename=filename,
                status=STATUS_PROCESSED,
                timestamp=utc_now(),
            )
            self._save_locked()
        logger.info("Marked file as processed: %s", filename)

    def mark_failed(self, filename: str, reason: str) -> None:
        with self._lock:
            self._entries[filename] = FileStateEntry(
                filename=filename,
                status=STATUS_FAILED,
                timestamp=utc_now(),
                error=reason,
            )
            self._save_locked()
        logger.error("Marked file as failed: %s - %s", filename, reason)

    def _save_locked(self) -> None:
        payload = [entry.to_dict() for entry in self._entries.values()]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                yaml.safe_dump(payload, fh, sort_keys=False)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
