"""Package-wide constants and defaults."""

from __future__ import annotations

APP_NAME = "ingex"

ENV_LOG_LEVEL = "INGEX_LOG_LEVEL"

DEFAULT_LOG_LEVEL = "INFO"

ARCHIVE_SUFFIX = ".db.zip"
DATABASE_SUFFIX = ".db"
CONTENT_TABLE = "enriched_posts"

CONTENT_INDEX = "posts"
TOMBSTONE_INDEX = "post_tombstones"

STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"

MODE_ONCE = "once"
MODE_LOOP = "loop"

OPERATION_DELETE = "delete"

DEFAULT_BATCH_SIZE = 100
DEFAULT_CHANNEL_SIZE = 1000
DEFAULT_SPOOL_INTERVAL_SECONDS = 60
DEFAULT_STATE_PATH = ".processed_files.yaml"
DEFAULT_AWS_REGION = "us-east-1"
