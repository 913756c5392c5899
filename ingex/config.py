from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from ingex.constants import (
    CONTENT_INDEX,
    DEFAULT_AWS_REGION,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHANNEL_SIZE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_SPOOL_INTERVAL_SECONDS,
    DEFAULT_STATE_PATH,
    ENV_LOG_LEVEL,
    MODE_LOOP,
    MODE_ONCE,
    TOMBSTONE_INDEX,
)
from ingex.errors import ConfigError


@dataclass(slots=True)
class SearchConfig:
    url: str = ""
    api_key: str = ""
    skip_tls_verify: bool = False
    timeout_seconds: float = 30.0
    content_index: str = CONTENT_INDEX
    tombstone_index: str = TOMBSTONE_INDEX


@dataclass(slots=True)
class SourceConfig:
    local_path: str = ""
    s3_bucket: str = ""
    s3_prefix: str = ""
    aws_region: str = DEFAULT_AWS_REGION


@dataclass(slots=True)
class SpoolConfig:
    mode: str = MODE_ONCE
    interval_seconds: int = DEFAULT_SPOOL_INTERVAL_SECONDS
    state_path: str = DEFAULT_STATE_PATH
    channel_size: int = DEFAULT_CHANNEL_SIZE


@dataclass(slots=True)
class DispatchConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    dry_run: bool = False


@dataclass(slots=True)
class LoggingConfig:
    enabled: bool = True
    level: str = DEFAULT_LOG_LEVEL


@dataclass(slots=True)
class AppConfig:
    search: SearchConfig = field(default_factory=SearchConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    spool: SpoolConfig = field(default_factory=SpoolConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _env_str(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(key, "")
    return value if value else default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key, "").strip().lower()
    if value in ("1", "t", "true", "yes", "on"):
        return True
    if value in ("0", "f", "false", "no", "off"):
        return False
    return default


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load the YAML config (if any), then apply environment overrides."""
    config = _load_yaml_config(path)
    load_dotenv()
    return apply_env_overrides(config, os.environ)


def _load_yaml_config(path: str | Path | None) -> AppConfig:
    if path is None:
        return AppConfig()

    config_path = Path(path)
    if not config_path.exists():
        return AppConfig()

    with config_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    search_raw = raw.get("search", {}) or {}
    source_raw = raw.get("source", {}) or {}
    spool_raw = raw.get("spool", {}) or {}
    dispatch_raw = raw.get("dispatch", {}) or {}
    logging_raw = raw.get("logging", {}) or {}

    return AppConfig(
        search=SearchConfig(
            url=str(search_raw.get("url", "")),
            api_key=str(search_raw.get("api_key", "")),
            skip_tls_verify=bool(search_raw.get("skip_tls_verify", False)),
            timeout_seconds=float(search_raw.get("timeout_seconds", 30.0)),
            content_index=str(search_raw.get("content_index", CONTENT_INDEX)),
            tombstone_index=str(search_raw.get("tombstone_index", TOMBSTONE_INDEX)),
        ),
        source=SourceConfig(
            local_path=str(source_raw.get("local_path", "")),
            s3_bucket=str(source_raw.get("s3_bucket", "")),
            s3_prefix=str(source_raw.get("s3_prefix", "")),
            aws_region=str(source_raw.get("aws_region", DEFAULT_AWS_REGION)),
        ),
        spool=SpoolConfig(
            mode=str(spool_raw.get("mode", MODE_ONCE)),
            interval_seconds=int(spool_raw.get("interval_seconds", DEFAULT_SPOOL_INTERVAL_SECONDS)),
            state_path=str(spool_raw.get("state_path", DEFAULT_STATE_PATH)),
            channel_size=int(spool_raw.get("channel_size", DEFAULT_CHANNEL_SIZE)),
        ),
        dispatch=DispatchConfig(
            batch_size=int(dispatch_raw.get("batch_size", DEFAULT_BATCH_SIZE)),
            dry_run=bool(dispatch_raw.get("dry_run", False)),
        ),
        logging=LoggingConfig(
            enabled=bool(logging_raw.get("enabled", True)),
            level=str(logging_raw.get("level", DEFAULT_LOG_LEVEL)),
        ),
    )


def apply_env_overrides(config: AppConfig, env: Mapping[str, str]) -> AppConfig:
    search = config.search
    search.url = _env_str(env, "ELASTICSEARCH_URL", search.url)
    search.api_key = _env_str(env, "ELASTICSEARCH_API_KEY", search.api_key)
    search.skip_tls_verify = _env_bool(env, "ELASTICSEARCH_SKIP_TLS_VERIFY", search.skip_tls_verify)

    source = config.source
    source.local_path = _env_str(env, "LOCAL_SQLITE_DB_PATH", source.local_path)
    source.s3_bucket = _env_str(env, "S3_SQLITE_DB_BUCKET", source.s3_bucket)
    source.s3_prefix = _env_str(env, "S3_SQLITE_DB_PREFIX", source.s3_prefix)
    source.aws_region = _env_str(env, "AWS_REGION", source.aws_region)

    spool = config.spool
    spool.mode = _env_str(env, "SPOOL_MODE", spool.mode)
    spool.interval_seconds = _env_int(env, "SPOOL_INTERVAL_SEC", spool.interval_seconds)
    spool.state_path = _env_str(env, "SPOOL_STATE_FILE", spool.state_path)

    dispatch = config.dispatch
    dispatch.batch_size = _env_int(env, "INGEX_BATCH_SIZE", dispatch.batch_size)
    dispatch.dry_run = _env_bool(env, "INGEX_DRY_RUN", dispatch.dry_run)

    config.logging.enabled = _env_bool(env, "LOGGING_ENABLED", config.logging.enabled)
    config.logging.level = _env_str(env, ENV_LOG_LEVEL, config.logging.level)
    return config


def validate_config(config: AppConfig) -> None:
    if not config.search.url:
        raise ConfigError("ELASTICSEARCH_URL is required")
    if not config.dispatch.dry_run and not config.search.api_key:
        raise ConfigError("ELASTICSEARCH_API_KEY is required outside dry-run mode")
    if not config.source.local_path and not config.source.s3_bucket:
        raise ConfigError("either LOCAL_SQLITE_DB_PATH or S3_SQLITE_DB_BUCKET is required")
    if config.source.local_path and config.source.s3_bucket:
        raise ConfigError("configure only one of LOCAL_SQLITE_DB_PATH and S3_SQLITE_DB_BUCKET")
    if config.spool.mode not in (MODE_ONCE, MODE_LOOP):
        raise ConfigError(f"unsupported spool mode: {config.spool.mode}")
    if config.spool.interval_seconds <= 0:
        raise ConfigError("SPOOL_INTERVAL_SEC must be positive")
    if config.dispatch.batch_size <= 0:
        raise ConfigError("INGEX_BATCH_SIZE must be positive")


def dump_default_config(path: str | Path) -> None:
    cfg = AppConfig()
    payload: dict[str, Any] = {
        "search": {
            "url": "https://localhost:9200",
            "api_key": "",
            "skip_tls_verify": cfg.search.skip_tls_verify,
            "timeout_seconds": cfg.search.timeout_seconds,
            "content_index": cfg.search.content_index,
            "tombstone_index": cfg.search.tombstone_index,
        },
        "source": {
            "local_path": "./spool",
            "s3_bucket": "",
            "s3_prefix": "",
            "aws_region": cfg.source.aws_region,
        },
        "spool": {
            "mode": cfg.spool.mode,
            "interval_seconds": cfg.spool.interval_seconds,
            "state_path": cfg.spool.state_path,
            "channel_size": cfg.spool.channel_size,
        },
        "dispatch": {
            "batch_size": cfg.dispatch.batch_size,
            "dry_run": cfg.dispatch.dry_run,
        },
        "logging": {
            "enabled": cfg.logging.enabled,
            "level": cfg.logging.level,
        },
    }
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(payload, fh, sort_keys=False)
