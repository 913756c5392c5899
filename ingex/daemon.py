from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

from ingex.api_objects.types import IngestionRunSummary
from ingex.config import AppConfig, dump_default_config, load_config, validate_config
from ingex.dispatcher import Dispatcher, Indexer
from ingex.errors import IngexError
from ingex.indexer import ElasticsearchIndexer
from ingex.ingest.sources import (
    ArchiveSource,
    LocalArchiveSource,
    S3ArchiveSource,
    build_s3_client,
)
from ingex.ingest.spooler import Spooler
from ingex.models import utc_now
from ingex.state import ProcessingStateStore
from ingex.utils.display.terminal import (
    print_file_states,
    print_run_summary,
    print_run_summary_json,
)
from ingex.utils.logging import get_logger, setup_logging


def build_source(config: AppConfig) -> ArchiveSource:
    if config.source.s3_bucket:
        return S3ArchiveSource(
            bucket=config.source.s3_bucket,
            prefix=config.source.s3_prefix,
            client=build_s3_client(config.source.aws_region),
        )
    return LocalArchiveSource(directory=Path(config.source.local_path).expanduser())


class Daemon:
    def __init__(
        self,
        config: AppConfig,
        *,
        indexer: Indexer | None = None,
        source: ArchiveSource | None = None,
    ):
        self.config = config
        self.logger = get_logger("ingex.daemon")
        self.state = ProcessingStateStore.open(config.spool.state_path)
        self.source = source or build_source(config)
        self._owns_indexer = indexer is None
        if indexer is None:
            indexer = ElasticsearchIndexer.from_config(config.search, dry_run=config.dispatch.dry_run)
        self.indexer = indexer
        self.cancel = threading.Event()

    def stop(self, *_args: object) -> None:
        self.logger.info("Received shutdown signal, finishing current batch...")
        self.cancel.set()

    def run(self) -> IngestionRunSummary:
        started = utc_now()
        dry_run = self.config.dispatch.dry_run
        if dry_run:
            self.logger.info("Running in DRY-RUN mode - no writes to Elasticsearch")

        spooler = Spooler(
            self.source,
            self.state,
            mode=self.config.spool.mode,
            interval_seconds=self.config.spool.interval_seconds,
            channel_size=self.config.spool.channel_size,
        )
        dispatcher = Dispatcher(
            self.indexer,
            batch_size=self.config.dispatch.batch_size,
            dry_run=dry_run,
        )

        spooler.start(self.cancel)
        try:
            dispatch_stats = dispatcher.run(spooler.get_row_channel(), self.cancel)
        finally:
            spooler.stop()
            if not spooler.join(timeout=10.0):
                self.logger.warning("Spooler thread did not exit within 10s")
            if self._owns_indexer and isinstance(self.indexer, ElasticsearchIndexer):
                self.indexer.close()

        return IngestionRunSummary(
            started_at=started,
            ended_at=utc_now(),
            mode=self.config.spool.mode,
            dry_run=dry_run,
            spool=spooler.stats,
            dispatch=dispatch_stats,
            cancelled=self.cancel.is_set(),
        )


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest snapshot archives into Elasticsearch")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--init-config", action="store_true", help="Write default config and exit")
    parser.add_argument("--once", action="store_true", help="Run one discovery pass and exit")
    parser.add_argument("--loop", action="store_true", help="Keep polling for new archives")
    parser.add_argument("--dry-run", action="store_true", help="Log writes instead of sending them")
    parser.add_argument(
        "--skip-tls-verify",
        action="store_true",
        help="Skip TLS certificate verification (local development only)",
    )
    parser.add_argument("--status", action="store_true", help="Print tracked archive states and exit")
    parser.add_argument("--log-level", help="Override log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--json-summary", action="store_true", help="Print run summary as JSON")
    return parser.parse_args(argv)


def _apply_args(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.once:
        config.spool.mode = "once"
    elif args.loop:
        config.spool.mode = "loop"
    if args.dry_run:
        config.dispatch.dry_run = True
    if args.skip_tls_verify:
        config.search.skip_tls_verify = True
    if args.log_level:
        config.logging.level = args.log_level
    return config


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])

    if args.init_config:
        dump_default_config(args.config)
        print(f"Wrote default config to {args.config}")
        return 0

    config = _apply_args(load_config(args.config), args)
    setup_logging(level=config.logging.level, enabled=config.logging.enabled)
    logger = get_logger("ingex.daemon")

    if args.status:
        try:
            store = ProcessingStateStore.open(config.spool.state_path)
        except IngexError as exc:
            logger.error("%s", exc)
            return 1
        print_file_states(store.entries())
        return 0

    try:
        validate_config(config)
        daemon = Daemon(config)
        if config.search.skip_tls_verify:
            logger.info("TLS certificate verification disabled (local development mode)")
        if isinstance(daemon.indexer, ElasticsearchIndexer) and not config.dispatch.dry_run:
            daemon.indexer.ping()
    except IngexError as exc:
        logger.error("%s", exc)
        return 1

    signal.signal(signal.SIGINT, daemon.stop)
    signal.signal(signal.SIGTERM, daemon.stop)

    summary = daemon.run()
    if args.json_summary:
        print_run_summary_json(summary)
    else:
        print_run_summary(summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
