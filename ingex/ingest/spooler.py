"""Background discovery and row streaming for snapshot archives.

A spooler owns one producer thread. Each discovery pass lists the source,
skips every file the state store already knows about, and processes the rest
in lexicographic order: fetch, extract the embedded database, and push its
rows into a bounded channel. A full channel blocks the producer, so memory
use does not grow with archive size.

A finished file is marked processed and a broken one is marked failed; both
are terminal. If the run is cancelled mid-file, nothing is recorded for that
file and it will be picked up again by a later run.
"""

from __future__ import annotations

import shutil
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

from ingex.constants import DEFAULT_CHANNEL_SIZE, MODE_LOOP, MODE_ONCE
from ingex.errors import SourceError
from ingex.ingest.archive import extract_database, iter_rows
from ingex.ingest.channel import RowChannel
from ingex.ingest.sources import ArchiveRef, ArchiveSource
from ingex.state import ProcessingStateStore
from ingex.utils.logging import debug_event, get_logger


class SpoolCancelled(Exception):
    """Raised inside a file's processing when the run is cancelled."""


@dataclass(slots=True)
class SpoolStats:
    passes: int = 0
    files_discovered: int = 0
    files_processed: int = 0
    files_failed: int = 0
    rows_queued: int = 0


class Spooler:
    def __init__(
        self,
        source: ArchiveSource,
        state: ProcessingStateStore,
        *,
        mode: str = MODE_ONCE,
        interval_seconds: float = 60.0,
        channel_size: int = DEFAULT_CHANNEL_SIZE,
        scratch_root: Path | None = None,
    ) -> None:
        if mode not in (MODE_ONCE, MODE_LOOP):
            raise ValueError(f"Unsupported spool mode: {mode}")
        self.source = source
        self.state = state
        self.mode = mode
        self.interval_seconds = interval_seconds
        self.scratch_root = scratch_root
        self.channel = RowChannel(maxsize=channel_size)
        self.stats = SpoolStats()
        self.logger = get_logger("ingex.ingest.spooler")
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def rows(self) -> RowChannel:
        return self.channel

    def get_row_channel(self) -> RowChannel:
        return self.channel

    def start(self, cancel: threading.Event | None = None) -> None:
        if self._thread is not None:
            raise RuntimeError("spooler already started")
        if cancel is not None:
            self._cancel = cancel
        self.logger.info(
            "Starting spooler in %s mode (%s)", self.mode, self.source.describe()
        )
        self._thread = threading.Thread(target=self._run, name="ingex-spooler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self.logger.info("Stopping spooler")
        self._cancel.set()

    def join(self, timeout: float | None = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        try:
            while not self._cancel.is_set():
                self.run_pass()
                if self.mode == MODE_ONCE:
                    self.logger.info("Single run complete, exiting spooler")
                    return
                if self._cancel.wait(self.interval_seconds):
                    break
            self.logger.info("Cancellation requested, stopping spooler")
        except Exception:
            self.logger.exception("Spooler stopped unexpectedly")
        finally:
            self.channel.close()

    def run_pass(self) -> None:
        """Run one discovery pass and process every new archive it finds."""
        self.stats.passes += 1
        try:
            refs = self.discover()
        except SourceError as exc:
            self.logger.error("Failed to discover files: %s", exc)
            return

        for ref in refs:
            if self._cancel.is_set():
                self.logger.info("Cancellation requested during file processing")
                return
            self.process_archive(ref)

    def discover(self) -> list[ArchiveRef]:
        pending: list[ArchiveRef] = []
        for ref in self.source.list_archives():
            if self.state.is_processed(ref.filename):
                self.logger.debug("Skipping already processed file: %s", ref.filename)
                continue
            if self.state.is_failed(ref.filename):
                self.logger.debug("Skipping previously failed file: %s", ref.filename)
                continue
            pending.append(ref)

        pending.sort(key=lambda ref: ref.key)
        self.stats.files_discovered += len(pending)
        self.logger.info("Discovered %s unprocessed files", len(pending))
        return pending

    def process_archive(self, ref: ArchiveRef) -> None:
        self.logger.info("Processing file: %s", ref.key)
        scratch = Path(tempfile.mkdtemp(prefix="ingex-", dir=self.scratch_root))
        try:
            local_path = self.source.fetch(ref, scratch)
            db_path = extract_database(local_path, scratch)
            queued = self._stream_database(db_path, ref.filename)
        except SpoolCancelled:
            self.logger.info("Cancelled while processing %s; leaving it unrecorded", ref.filename)
            return
        except Exception as exc:
            self.logger.error("Failed to process file %s: %s", ref.key, exc)
            self.stats.files_failed += 1
            self._record(self.state.mark_failed, ref.filename, str(exc))
            return
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        # Rows are queued, not yet confirmed by the index.
        self.stats.files_processed += 1
        self._record(self.state.mark_processed, ref.filename)
        self.source.release(ref, local_path)
        debug_event(self.logger, "archive_spooled", filename=ref.filename, rows=queued)

    def _stream_database(self, db_path: Path, filename: str) -> int:
        count = 0
        for row in iter_rows(db_path, filename):
            if self._cancel.is_set() or not self.channel.send(row, self._cancel):
                raise SpoolCancelled(filename)
            count += 1
            self.stats.rows_queued += 1
        self.logger.info("Queued %s rows from %s", count, filename)
        return count

    def _record(self, mark, *args: str) -> None:
        try:
            mark(*args)
        except OSError:
            self.logger.exception("Failed to persist state for %s", args[0])
