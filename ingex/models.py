from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ingex.constants import STATUS_FAILED, STATUS_PROCESSED


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_rfc3339(value: datetime) -> str:
    """Render a timestamp the way documents store it: UTC, second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def datetime_from_ns(value_ns: int) -> datetime:
    seconds, remainder = divmod(value_ns, 1_000_000_000)
    return datetime.fromtimestamp(seconds, UTC).replace(microsecond=remainder // 1000)


@dataclass(slots=True)
class RawRow:
    at_uri: str
    did: str
    raw_post: str
    inferences: str
    source_filename: str


@dataclass(slots=True)
class ContentRecord:
    at_uri: str
    author_did: str
    content: str = ""
    created_at: str = ""
    thread_root_post: str | None = None
    thread_parent_post: str | None = None
    quote_post: str | None = None
    embeddings: dict[str, list[float]] = field(default_factory=dict)
    indexed_at: str = ""

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "at_uri": self.at_uri,
            "author_did": self.author_did,
            "content": self.content,
            "created_at": self.created_at,
        }
        if self.thread_root_post:
            doc["thread_root_post"] = self.thread_root_post
        if self.thread_parent_post:
            doc["thread_parent_post"] = self.thread_parent_post
        if self.quote_post:
            doc["quote_post"] = self.quote_post
        if self.embeddings:
            doc["embeddings"] = self.embeddings
        doc["indexed_at"] = self.indexed_at
        return doc


@dataclass(slots=True)
class TombstoneRecord:
    at_uri: str
    author_did: str
    deleted_at: str
    indexed_at: str

    def to_document(self) -> dict[str, Any]:
        return {
            "at_uri": self.at_uri,
            "author_did": self.author_did,
            "deleted_at": self.deleted_at,
            "indexed_at": self.indexed_at,
        }


@dataclass(slots=True)
class FileStateEntry:
    filename: str
    status: str
    timestamp: datetime
    error: str | None = None

    @property
    def processed(self) -> bool:
        return self.status == STATUS_PROCESSED

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "filename": self.filename,
            "status": self.status,
            "timestamp": self.timestamp.astimezone(UTC).isoformat(),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> FileStateEntry:
        ts_raw = raw.get("timestamp")
        if isinstance(ts_raw, datetime):
            ts = ts_raw
        elif isinstance(ts_raw, str) and ts_raw:
            ts = datetime.fromisoformat(ts_raw.replace("Z", "+00:00"))
        else:
            ts = utc_now()
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        error = raw.get("error")
        return cls(
            filename=str(raw["filename"]),
            status=str(raw.get("status", "")),
            timestamp=ts,
            error=str(error) if error is not None else None,
        )
