"""Bulk writes to Elasticsearch.

Three operations share one request path: upserting content documents,
inserting tombstones into a separate index, and deleting content documents.
Each call either succeeds as a whole or raises a single ``BulkIndexError``;
per-document outcomes are not reported back to the caller.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import Any

import httpx

from ingex.config import SearchConfig
from ingex.constants import CONTENT_INDEX, TOMBSTONE_INDEX
from ingex.errors import BulkIndexError
from ingex.models import ContentRecord, TombstoneRecord
from ingex.utils.logging import get_logger

NDJSON_CONTENT_TYPE = "application/x-ndjson"


def build_client(config: SearchConfig) -> httpx.Client:
    headers = {"Accept": "application/json"}
    if config.api_key:
        headers["Authorization"] = f"ApiKey {config.api_key}"
    return httpx.Client(
        base_url=config.url,
        headers=headers,
        verify=not config.skip_tls_verify,
        timeout=config.timeout_seconds,
    )


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class ElasticsearchIndexer:
    def __init__(
        self,
        client: httpx.Client | None,
        *,
        content_index: str = CONTENT_INDEX,
        tombstone_index: str = TOMBSTONE_INDEX,
        dry_run: bool = False,
    ) -> None:
        if client is None and not dry_run:
            raise ValueError("an HTTP client is required outside dry-run mode")
        self.client = client
        self.content_index = content_index
        self.tombstone_index = tombstone_index
        self.dry_run = dry_run
        self.logger = get_logger("ingex.indexer")

    @classmethod
    def from_config(cls, config: SearchConfig, *, dry_run: bool = False) -> ElasticsearchIndexer:
        return cls(
            build_client(config),
            content_index=config.content_index,
            tombstone_index=config.tombstone_index,
            dry_run=dry_run,
        )

    def ping(self) -> None:
        """Fail fast when the cluster is unreachable or rejects our credentials."""
        if self.client is None:
            return
        try:
            response = self.client.get("/")
        except httpx.HTTPError as exc:
            raise BulkIndexError(f"failed to connect to Elasticsearch: {exc}") from exc
        if response.status_code >= 400:
            raise BulkIndexError(
                f"Elasticsearch info request failed: HTTP {response.status_code} {response.text[:200]}"
            )
        self.logger.info("Connected to Elasticsearch at %s", self.client.base_url)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def bulk_upsert(self, records: Sequence[ContentRecord]) -> int:
        return self._bulk_index(self.content_index, records, kind="document")

    def bulk_tombstone(self, records: Sequence[TombstoneRecord]) -> int:
        return self._bulk_index(self.tombstone_index, records, kind="tombstone")

    def bulk_delete(self, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        if self.dry_run:
            self.logger.debug(
                "Dry-run: skipping bulk delete of %s documents from index '%s'",
                len(ids),
                self.content_index,
            )
            return len(ids)

        lines: list[str] = []
        kept = 0
        for doc_id in ids:
            if not doc_id:
                self.logger.warning("Skipping delete with empty identifier")
                continue
            lines.append(_dumps({"delete": {"_index": self.content_index, "_id": doc_id}}))
            kept += 1
        if kept == 0:
            raise BulkIndexError("bulk delete failed: every identifier in the batch was empty")

        self._submit(lines, operation="delete", allow_not_found=True)
        return kept

    def _bulk_index(
        self,
        index: str,
        records: Sequence[ContentRecord] | Sequence[TombstoneRecord],
        *,
        kind: str,
    ) -> int:
        if not records:
            return 0
        if self.dry_run:
            self.logger.debug(
                "Dry-run: skipping bulk index of %s %ss to index '%s'", len(records), kind, index
            )
            return len(records)

        lines: list[str] = []
        kept = 0
        for record in records:
            if not record.at_uri:
                self.logger.warning("Skipping %s with empty at_uri", kind)
                continue
            lines.append(_dumps({"index": {"_index": index, "_id": record.at_uri}}))
            lines.append(_dumps(record.to_document()))
            kept += 1
        if kept == 0:
            raise BulkIndexError(f"bulk index of {kind}s failed: every record had an empty at_uri")

        self._submit(lines, operation="index", allow_not_found=False)
        return kept

    def _submit(self, lines: Iterable[str], *, operation: str, allow_not_found: bool) -> None:
        if self.client is None:
            raise BulkIndexError(f"bulk {operation} needs an HTTP client outside dry-run mode")
        body = "\n".join(lines) + "\n"
        try:
            response = self.client.post(
                "/_bulk",
                content=body.encode("utf-8"),
                headers={"Content-Type": NDJSON_CONTENT_TYPE},
            )
        except httpx.HTTPError as exc:
            raise BulkIndexError(f"bulk {operation} request failed: {exc}") from exc

        if response.status_code >= 400:
            raise BulkIndexError(
                f"bulk {operation} request returned HTTP {response.status_code}: {response.text[:500]}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise BulkIndexError(f"failed to parse bulk {operation} response: {exc}") from exc
        if not isinstance(payload, dict):
            raise BulkIndexError(f"unexpected bulk {operation} response: {payload!r}")
        if payload.get("error"):
            raise BulkIndexError(f"bulk {operation} request returned error: {_dumps(payload['error'])}")

        failures = _item_failures(payload.get("items") or [], allow_not_found=allow_not_found)
        if failures or (payload.get("errors") and not allow_not_found):
            self.logger.error(
                "Bulk %s failed with %s item errors: %s", operation, len(failures), _dumps(failures[:20])
            )
            raise BulkIndexError(
                f"bulk {operation} failed: {len(failures)} documents had errors (see logs for details)"
            )


def _item_failures(items: list[Any], *, allow_not_found: bool) -> list[dict[str, Any]]:
    failures: list[dict[str, Any]] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        for action, result in item.items():
            if not isinstance(result, dict):
                continue
            not_found = result.get("status") == 404 or result.get("result") == "not_found"
            if allow_not_found and action == "delete" and not_found:
                continue
            if result.get("error") or (
                isinstance(result.get("status"), int) and result["status"] >= 400
            ):
                failures.append({"action": action, "_id": result.get("_id"), "error": result.get("error")})
    return failures
