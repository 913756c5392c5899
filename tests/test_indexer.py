from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from ingex.errors import BulkIndexError
from ingex.indexer import ElasticsearchIndexer
from ingex.models import ContentRecord, TombstoneRecord

Handler = Callable[[httpx.Request], httpx.Response]


def _content(at_uri: str, text: str = "Hello, world!") -> ContentRecord:
    return ContentRecord(
        at_uri=at_uri,
        author_did="did:plc:test",
        content=text,
        created_at="2025-09-09T20:46:41Z",
        indexed_at="2026-01-02T03:04:05Z",
    )


def _tombstone(at_uri: str) -> TombstoneRecord:
    return TombstoneRecord(
        at_uri=at_uri,
        author_did="did:plc:test",
        deleted_at="2025-09-09T20:46:41Z",
        indexed_at="2026-01-02T03:04:05Z",
    )


def _ok(items: list[dict] | None = None) -> httpx.Response:
    return httpx.Response(200, json={"took": 1, "errors": False, "items": items or []})


def _indexer(handler: Handler, requests: list[httpx.Request], *, dry_run: bool = False):
    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.Client(base_url="http://es.test", transport=httpx.MockTransport(recording))
    return ElasticsearchIndexer(client, dry_run=dry_run)


def _lines(request: httpx.Request) -> list[dict]:
    body = request.content.decode("utf-8")
    assert body.endswith("\n")
    return [json.loads(line) for line in body.splitlines()]


def test_dry_run_makes_no_network_calls() -> None:
    requests: list[httpx.Request] = []
    indexer = _indexer(lambda _: _ok(), requests, dry_run=True)

    assert indexer.bulk_upsert([_content("at://a")]) == 1
    assert indexer.bulk_tombstone([_tombstone("at://a")]) == 1
    assert indexer.bulk_delete(["at://a"]) == 1
    assert requests == []


def test_dry_run_needs_no_client() -> None:
    indexer = ElasticsearchIndexer(None, dry_run=True)

    assert indexer.bulk_upsert([_content("at://a")]) == 1
    assert indexer.bulk_delete(["at://a"]) == 1


def test_empty_input_is_a_no_op() -> None:
    requests: list[httpx.Request] = []
    indexer = _indexer(lambda _: _ok(), requests)

    assert indexer.bulk_upsert([]) == 0
    assert indexer.bulk_tombstone([]) == 0
    assert indexer.bulk_delete([]) == 0
    assert requests == []


def test_bulk_upsert_pairs_action_and_document_lines() -> None:
    requests: list[httpx.Request] = []
    indexer = _indexer(lambda _: _ok(), requests)

    written = indexer.bulk_upsert([_content("at://a", "first"), _content("at://b", "second")])

    assert written == 2
    assert len(requests) == 1
    request = requests[0]
    assert request.method == "POST"
    assert request.url.path == "/_bulk"
    assert request.headers["content-type"] == "application/x-ndjson"
    lines = _lines(request)
    assert lines[0] == {"index": {"_index": "posts", "_id": "at://a"}}
    assert lines[1]["content"] == "first"
    assert lines[1]["at_uri"] == "at://a"
    assert lines[2] == {"index": {"_index": "posts", "_id": "at://b"}}
    assert lines[3]["content"] == "second"


def test_bulk_tombstone_targets_tombstone_index_with_same_id() -> None:
    requests: list[httpx.Request] = []
    indexer = _indexer(lambda _: _ok(), requests)

    indexer.bulk_tombstone([_tombstone("at://a")])

    lines = _lines(requests[0])
    assert lines[0] == {"index": {"_index": "post_tombstones", "_id": "at://a"}}
    assert lines[1]["deleted_at"] == "2025-09-09T20:46:41Z"


def test_bulk_delete_sends_pure_delete_actions() -> None:
    requests: list[httpx.Request] = []
    indexer = _indexer(lambda _: _ok(), requests)

    assert indexer.bulk_delete(["at://a", "at://b"]) == 2

    assert _lines(requests[0]) == [
        {"delete": {"_index": "posts", "_id": "at://a"}},
        {"delete": {"_index": "posts", "_id": "at://b"}},
    ]


def test_empty_identifiers_are_excluded() -> None:
    requests: list[httpx.Request] = []
    indexer = _indexer(lambda _: _ok(), requests)

    assert indexer.bulk_upsert([_content(""), _content("at://b")]) == 1
    lines = _lines(requests[0])
    assert len(lines) == 2
    assert lines[0]["index"]["_id"] == "at://b"


def test_all_identifiers_empty_fails() -> None:
    requests: list[httpx.Request] = []
    indexer = _indexer(lambda _: _ok(), requests)

    with pytest.raises(BulkIndexError):
        indexer.bulk_upsert([_content(""), _content("")])
    with pytest.raises(BulkIndexError):
        indexer.bulk_tombstone([_tombstone("")])
    assert requests == []


def test_delete_not_found_counts_as_success() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "errors": False,
                "items": [
                    {"delete": {"_id": "at://a", "status": 200, "result": "deleted"}},
                    {"delete": {"_id": "at://b", "status": 404, "result": "not_found"}},
                ],
            },
        )

    indexer = _indexer(handler, [])
    assert indexer.bulk_delete(["at://a", "at://b"]) == 2


def test_delete_item_error_fails_whole_call() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "errors": True,
                "items": [
                    {
                        "delete": {
                            "_id": "at://a",
                            "status": 429,
                            "error": {"type": "es_rejected_execution_exception", "reason": "busy"},
                        }
                    }
                ],
            },
        )

    with pytest.raises(BulkIndexError):
        _indexer(handler, []).bulk_delete(["at://a"])


def test_upsert_item_error_fails_whole_call() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "errors": True,
                "items": [
                    {"index": {"_id": "at://a", "status": 201, "result": "created"}},
                    {
                        "index": {
                            "_id": "at://b",
                            "status": 400,
                            "error": {"type": "mapper_parsing_exception", "reason": "bad"},
                        }
                    },
                ],
            },
        )

    with pytest.raises(BulkIndexError, match="1 documents had errors"):
        _indexer(handler, []).bulk_upsert([_content("at://a"), _content("at://b")])


def test_http_error_status_fails() -> None:
    indexer = _indexer(lambda _: httpx.Response(500, text="boom"), [])

    with pytest.raises(BulkIndexError, match="HTTP 500"):
        indexer.bulk_upsert([_content("at://a")])


def test_top_level_error_fails() -> None:
    indexer = _indexer(lambda _: httpx.Response(200, json={"error": {"type": "x"}}), [])

    with pytest.raises(BulkIndexError):
        indexer.bulk_tombstone([_tombstone("at://a")])


def test_transport_failure_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BulkIndexError, match="request failed"):
        _indexer(handler, []).bulk_delete(["at://a"])


def test_ping_reports_unreachable_cluster() -> None:
    indexer = _indexer(lambda _: httpx.Response(401, text="unauthorized"), [])

    with pytest.raises(BulkIndexError, match="HTTP 401"):
        indexer.ping()


def test_missing_client_outside_dry_run_fails_cleanly() -> None:
    indexer = ElasticsearchIndexer(None, dry_run=True)
    indexer.dry_run = False

    with pytest.raises(BulkIndexError, match="needs an HTTP client"):
        indexer.bulk_upsert([_content("at://a")])
