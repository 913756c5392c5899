from __future__ import annotations

import base64
import json
import struct
from datetime import UTC, datetime

import pytest

from ingex.models import ContentRecord, RawRow, TombstoneRecord, format_rfc3339
from ingex.transform import RowTransformer, decode_embedding, parse_envelope

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
AT_URI = "at://did:plc:abc/app.bsky.feed.post/xyz"
DID = "did:plc:abc"


def _row(raw_post: object, inferences: object = "{}") -> RawRow:
    return RawRow(
        at_uri=AT_URI,
        did=DID,
        raw_post=raw_post if isinstance(raw_post, str) else json.dumps(raw_post),
        inferences=inferences if isinstance(inferences, str) else json.dumps(inferences),
        source_filename="batch.db.zip",
    )


def _encode_floats(*values: float) -> str:
    return base64.b64encode(struct.pack(f"<{len(values)}f", *values)).decode("ascii")


@pytest.fixture
def transformer() -> RowTransformer:
    return RowTransformer(clock=lambda: FIXED_NOW)


def test_delete_operation_yields_tombstone(transformer: RowTransformer) -> None:
    raw = {
        "message": {
            "time_us": 1757450801618621,
            "commit": {"operation": "delete", "record": {"text": "should be ignored"}},
        },
        "hydrated_metadata": {"reply_post": {"uri": "at://root"}},
    }

    record = transformer.transform(_row(raw))

    assert isinstance(record, TombstoneRecord)
    assert record.at_uri == AT_URI
    assert record.author_did == DID
    assert record.deleted_at == format_rfc3339(datetime.fromtimestamp(1757450801, UTC))
    assert record.indexed_at == "2026-01-02T03:04:05Z"
    assert set(record.to_document()) == {"at_uri", "author_did", "deleted_at", "indexed_at"}


def test_delete_without_event_time_uses_wall_clock(transformer: RowTransformer) -> None:
    record = transformer.transform(_row({"message": {"commit": {"operation": "delete"}}}))

    assert isinstance(record, TombstoneRecord)
    assert record.deleted_at == "2026-01-02T03:04:05Z"


def test_create_populates_content_and_thread_fields(transformer: RowTransformer) -> None:
    raw = {
        "message": {
            "commit": {
                "operation": "create",
                "record": {"text": "Hello, world!", "createdAt": "2025-09-09T20:46:41Z"},
            }
        },
        "hydrated_metadata": {
            "reply_post": {"uri": "at://root"},
            "parent_post": {"uri": "at://parent"},
            "quote_post": {"uri": "at://quote"},
        },
    }

    record = transformer.transform(_row(raw))

    assert isinstance(record, ContentRecord)
    assert record.content == "Hello, world!"
    assert record.created_at == "2025-09-09T20:46:41Z"
    assert record.thread_root_post == "at://root"
    assert record.thread_parent_post == "at://parent"
    assert record.quote_post == "at://quote"
    assert record.indexed_at == "2026-01-02T03:04:05Z"


def test_missing_optional_fields_stay_empty(transformer: RowTransformer) -> None:
    raw = {"message": {"commit": {"record": {"text": "no operation here"}}}}

    record = transformer.transform(_row(raw))

    assert isinstance(record, ContentRecord)
    assert record.content == "no operation here"
    assert record.created_at == ""
    assert record.thread_root_post is None
    assert record.thread_parent_post is None
    assert record.quote_post is None
    doc = record.to_document()
    assert "thread_root_post" not in doc
    assert "quote_post" not in doc
    assert "embeddings" not in doc


@pytest.mark.parametrize(
    "raw_post",
    ["{not json", "", "[]", json.dumps({"message": "nope"}), json.dumps({"message": {"commit": 3}})],
)
def test_malformed_envelope_defaults_to_empty_content(
    transformer: RowTransformer, raw_post: str
) -> None:
    record = transformer.transform(_row(raw_post))

    assert isinstance(record, ContentRecord)
    assert record.at_uri == AT_URI
    assert record.content == ""


def test_unparseable_operation_defaults_to_content() -> None:
    envelope = parse_envelope(json.dumps({"message": {"commit": {"operation": 42}}}))

    assert envelope.operation is None
    assert not envelope.is_delete


def test_embeddings_are_decoded_and_renamed(transformer: RowTransformer) -> None:
    inferences = {
        "text_embeddings": {
            "all-MiniLM-L12-v2": _encode_floats(1.0, 2.5, -3.0),
            "all-MiniLM-L6-v2": _encode_floats(0.5),
        }
    }

    record = transformer.transform(_row({"message": {"commit": {"operation": "create"}}}, inferences))

    assert isinstance(record, ContentRecord)
    assert record.embeddings == {
        "all_MiniLM_L12_v2": [1.0, 2.5, -3.0],
        "all_MiniLM_L6_v2": [0.5],
    }


def test_bad_embedding_is_dropped_without_failing_row(transformer: RowTransformer) -> None:
    inferences = {
        "text_embeddings": {
            "all-MiniLM-L12-v2": "!!not base64!!",
            "all-MiniLM-L6-v2": _encode_floats(0.25, 0.75),
            "ignored": 12,
        }
    }

    record = transformer.transform(_row(_row_post("kept"), inferences))

    assert isinstance(record, ContentRecord)
    assert record.content == "kept"
    assert record.embeddings == {"all_MiniLM_L6_v2": [0.25, 0.75]}


def test_unparseable_inferences_leave_embeddings_empty(transformer: RowTransformer) -> None:
    record = transformer.transform(_row(_row_post("text"), "{oops"))

    assert isinstance(record, ContentRecord)
    assert record.embeddings == {}


def test_decode_embedding_length() -> None:
    payload = base64.b64encode(bytes(16)).decode("ascii")
    assert decode_embedding(payload) == [0.0, 0.0, 0.0, 0.0]

    trailing = base64.b64encode(struct.pack("<2f", 1.0, 2.0) + b"\x01\x02").decode("ascii")
    assert decode_embedding(trailing) == [1.0, 2.0]


def test_decode_embedding_rejects_invalid_base64() -> None:
    with pytest.raises(ValueError):
        decode_embedding("abc$")


def _row_post(text: str) -> dict[str, object]:
    return {"message": {"commit": {"operation": "create", "record": {"text": text}}}}


@pytest.mark.parametrize(
    "time_us",
    ["NaN", "Infinity", "-Infinity", str(10**21), "-5", "1.5e300", "true"],
)
def test_unusable_event_time_falls_back_to_wall_clock(
    transformer: RowTransformer, time_us: str
) -> None:
    raw_post = '{"message": {"time_us": %s, "commit": {"operation": "delete"}}}' % time_us

    record = transformer.transform(_row(raw_post))

    assert isinstance(record, TombstoneRecord)
    assert record.deleted_at == "2026-01-02T03:04:05Z"


def test_oversized_integer_payload_degrades_to_empty_record(transformer: RowTransformer) -> None:
    raw_post = '{"message": {"time_us": %s, "commit": {"operation": "delete"}}}' % ("9" * 5000)

    record = transformer.transform(_row(raw_post))

    assert isinstance(record, ContentRecord)
    assert record.content == ""


def test_event_time_accepts_whole_float_microseconds(transformer: RowTransformer) -> None:
    raw_post = '{"message": {"time_us": 1757450801000000.0, "commit": {"operation": "delete"}}}'

    record = transformer.transform(_row(raw_post))

    assert isinstance(record, TombstoneRecord)
    assert record.deleted_at == "2025-09-09T20:46:41Z"
