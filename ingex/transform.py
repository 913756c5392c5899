"""Turn raw snapshot rows into index records.

Rows carry two loosely-typed JSON payloads: the firehose event envelope
(``raw_post``) and the enrichment output (``inferences``). Both are decoded
once into explicit optional-field structures. Nothing here raises for bad
input: a missing or mistyped field just leaves the matching value empty, and
the row still produces exactly one record.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import struct
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ingex.constants import OPERATION_DELETE
from ingex.models import (
    ContentRecord,
    RawRow,
    TombstoneRecord,
    datetime_from_ns,
    format_rfc3339,
    utc_now,
)
from ingex.utils.logging import debug_event, get_logger

logger = get_logger("ingex.transform")

IndexRecord = ContentRecord | TombstoneRecord

# 9999-12-31T23:59:59Z; anything later cannot become a datetime.
MAX_EVENT_TIME_US = 253_402_300_799_999_999


@dataclass(slots=True)
class PostEnvelope:
    time_us: int | None = None
    operation: str | None = None
    text: str | None = None
    created_at: str | None = None
    reply_root_uri: str | None = None
    parent_uri: str | None = None
    quote_uri: str | None = None

    @property
    def is_delete(self) -> bool:
        return self.operation == OPERATION_DELETE


@dataclass(slots=True)
class InferencePayload:
    text_embeddings: dict[str, str] = field(default_factory=dict)


def _as_dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _loads_object(raw: str) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except (ValueError, TypeError, RecursionError):
        return None
    return _as_dict(value)


def parse_envelope(raw_post: str, *, at_uri: str = "") -> PostEnvelope:
    envelope = PostEnvelope()
    payload = _loads_object(raw_post)
    if payload is None:
        logger.error("Failed to parse raw_post JSON for %s", at_uri)
        return envelope

    message = _as_dict(payload.get("message"))
    if message is None:
        debug_event(logger, "envelope_missing_field", at_uri=at_uri, field="message")
        return envelope

    envelope.time_us = _event_time_us(message.get("time_us"))

    commit = _as_dict(message.get("commit"))
    if commit is None:
        debug_event(logger, "envelope_missing_field", at_uri=at_uri, field="commit")
        return envelope

    envelope.operation = _as_str(commit.get("operation"))
    if envelope.is_delete:
        return envelope

    record = _as_dict(commit.get("record"))
    if record is None:
        debug_event(logger, "envelope_missing_field", at_uri=at_uri, field="record")
        return envelope

    envelope.text = _as_str(record.get("text"))
    envelope.created_at = _as_str(record.get("createdAt"))

    hydrated = _as_dict(payload.get("hydrated_metadata")) or {}
    envelope.reply_root_uri = _nested_uri(hydrated, "reply_post")
    envelope.parent_uri = _nested_uri(hydrated, "parent_post")
    envelope.quote_uri = _nested_uri(hydrated, "quote_post")
    return envelope


def _event_time_us(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if not 0 <= value <= MAX_EVENT_TIME_US:
        return None
    return int(value)


def _nested_uri(container: dict[str, Any], key: str) -> str | None:
    ref = _as_dict(container.get(key))
    if ref is None:
        return None
    return _as_str(ref.get("uri"))


def parse_inferences(raw: str, *, at_uri: str = "") -> InferencePayload:
    payload = _loads_object(raw)
    if payload is None:
        debug_event(logger, "inferences_unparseable", at_uri=at_uri)
        return InferencePayload()
    embeddings = _as_dict(payload.get("text_embeddings")) or {}
    return InferencePayload(
        text_embeddings={name: value for name, value in embeddings.items() if isinstance(value, str)}
    )


def decode_embedding(encoded: str) -> list[float]:
    """Decode base64 text into little-endian float32 components.

    Trailing bytes that do not fill a whole 4-byte group are ignored.
    Raises ``ValueError`` when the text is not valid base64.
    """
    try:
        data = base64.b64decode(encoded, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"base64 decode failed: {exc}") from exc
    count = len(data) // 4
    return list(struct.unpack(f"<{count}f", data[: count * 4]))


def embedding_field_name(name: str) -> str:
    return name.replace("-", "_").replace(".", "_")


class RowTransformer:
    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    def transform(self, row: RawRow) -> IndexRecord:
        envelope = parse_envelope(row.raw_post, at_uri=row.at_uri)
        now = self._clock()

        if envelope.is_delete:
            deleted_at = now
            if envelope.time_us is not None:
                try:
                    deleted_at = datetime_from_ns(envelope.time_us * 1000)
                except (ValueError, OverflowError, OSError):
                    logger.debug("Unusable time_us %s for %s", envelope.time_us, row.at_uri)
            return TombstoneRecord(
                at_uri=row.at_uri,
                author_did=row.did,
                deleted_at=format_rfc3339(deleted_at),
                indexed_at=format_rfc3339(now),
            )

        inferences = parse_inferences(row.inferences, at_uri=row.at_uri)
        return ContentRecord(
            at_uri=row.at_uri,
            author_did=row.did,
            content=envelope.text or "",
            created_at=envelope.created_at or "",
            thread_root_post=envelope.reply_root_uri,
            thread_parent_post=envelope.parent_uri,
            quote_post=envelope.quote_uri,
            embeddings=self._decode_embeddings(inferences, row.at_uri),
            indexed_at=format_rfc3339(now),
        )

    @staticmethod
    def _decode_embeddings(inferences: InferencePayload, at_uri: str) -> dict[str, list[float]]:
        decoded: dict[str, list[float]] = {}
        for name, encoded in inferences.text_embeddings.items():
            try:
                decoded[embedding_field_name(name)] = decode_embedding(encoded)
            except ValueError as exc:
                logger.debug("Failed to decode %s embedding for %s: %s", name, at_uri, exc)
        return decoded
