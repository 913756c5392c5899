"""Batch transformed rows and flush them to the indexer."""

from __future__ import annotations

import enum
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from ingex.constants import DEFAULT_BATCH_SIZE
from ingex.errors import BulkIndexError
from ingex.ingest.channel import ChannelClosed, RowChannel
from ingex.models import ContentRecord, TombstoneRecord
from ingex.transform import RowTransformer
from ingex.utils.logging import debug_event, get_logger


class Indexer(Protocol):
    def bulk_upsert(self, records: Sequence[ContentRecord]) -> int: ...

    def bulk_tombstone(self, records: Sequence[TombstoneRecord]) -> int: ...

    def bulk_delete(self, ids: Sequence[str]) -> int: ...


class DispatchPhase(enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"


@dataclass(slots=True)
class DispatchStats:
    rows_received: int = 0
    rows_dropped: int = 0
    upserts_indexed: int = 0
    tombstones_indexed: int = 0
    deletes_applied: int = 0
    upserts_lost: int = 0
    deletes_lost: int = 0
    failed_flushes: int = 0


class Dispatcher:
    def __init__(
        self,
        indexer: Indexer,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        transformer: RowTransformer | None = None,
        dry_run: bool = False,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.indexer = indexer
        self.batch_size = batch_size
        self.transformer = transformer or RowTransformer()
        self.dry_run = dry_run
        self.phase = DispatchPhase.RUNNING
        self.stats = DispatchStats()
        self.logger = get_logger("ingex.dispatcher")
        self._upserts: list[ContentRecord] = []
        self._tombstones: list[TombstoneRecord] = []
        self._delete_ids: list[str] = []

    def run(self, channel: RowChannel, cancel: threading.Event) -> DispatchStats:
        """Consume rows until the channel closes or ``cancel`` is set, then drain."""
        while self.phase is DispatchPhase.RUNNING:
            if cancel.is_set():
                self.logger.info("Shutdown requested, flushing pending batches")
                self.phase = DispatchPhase.DRAINING
                break
            try:
                row = channel.receive()
            except ChannelClosed:
                self.logger.info("Row channel closed, flushing pending batches")
                self.phase = DispatchPhase.DRAINING
                break
            if row is None:
                continue

            self.stats.rows_received += 1
            if not row.at_uri:
                self.stats.rows_dropped += 1
                debug_event(self.logger, "row_dropped", source=row.source_filename, reason="empty at_uri")
                continue
            self.handle(self.transformer.transform(row))

        self.drain()
        return self.stats

    def handle(self, record: ContentRecord | TombstoneRecord) -> None:
        if isinstance(record, TombstoneRecord):
            self._tombstones.append(record)
            self._delete_ids.append(record.at_uri)
            if len(self._tombstones) >= self.batch_size:
                self.flush_deletes()
        else:
            self._upserts.append(record)
            if len(self._upserts) >= self.batch_size:
                self.flush_upserts()

    def drain(self) -> None:
        self.phase = DispatchPhase.DRAINING
        self.flush_upserts()
        self.flush_deletes()
        self.phase = DispatchPhase.DONE
        self.logger.info(
            "Dispatch complete. Indexed: %s, tombstoned: %s, deleted: %s, dropped rows: %s",
            self.stats.upserts_indexed,
            self.stats.tombstones_indexed,
            self.stats.deletes_applied,
            self.stats.rows_dropped,
        )

    def flush_upserts(self) -> None:
        batch, self._upserts = self._upserts, []
        try:
            written = self.indexer.bulk_upsert(batch)
        except BulkIndexError as exc:
            self.stats.failed_flushes += 1
            self.stats.upserts_lost += len(batch)
            self.logger.error("Failed to bulk index batch of %s documents: %s", len(batch), exc)
            return
        if not batch:
            return
        self.stats.upserts_indexed += written
        prefix = "Dry-run: would index" if self.dry_run else "Indexed"
        self.logger.info(
            "%s batch: %s documents (total: %s)", prefix, len(batch), self.stats.upserts_indexed
        )

    def flush_deletes(self) -> None:
        tombstones, self._tombstones = self._tombstones, []
        ids, self._delete_ids = self._delete_ids, []

        try:
            self.stats.tombstones_indexed += self.indexer.bulk_tombstone(tombstones)
        except BulkIndexError as exc:
            # No delete without its tombstone.
            self.stats.failed_flushes += 1
            self.stats.deletes_lost += len(ids)
            self.logger.error(
                "Failed to bulk index %s tombstones, skipping their deletes: %s", len(tombstones), exc
            )
            return

        try:
            applied = self.indexer.bulk_delete(ids)
        except BulkIndexError as exc:
            self.stats.failed_flushes += 1
            self.stats.deletes_lost += len(ids)
            self.logger.error("Failed to bulk delete %s documents: %s", len(ids), exc)
            return
        if not ids:
            return
        self.stats.deletes_applied += applied
        prefix = "Dry-run: would delete" if self.dry_run else "Deleted"
        self.logger.info("%s batch: %s documents (total: %s)", prefix, len(ids), self.stats.deletes_applied)
