"""Where snapshot archives come from: a local directory or an S3 prefix.

Both sources only know how to list, fetch and release archives. Discovery,
state filtering and the per-file lifecycle live in the spooler.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ingex.constants import ARCHIVE_SUFFIX, DEFAULT_AWS_REGION
from ingex.errors import SourceError
from ingex.utils.logging import get_logger

logger = get_logger("ingex.ingest.sources")


@dataclass(slots=True, frozen=True)
class ArchiveRef:
    key: str
    filename: str


class ArchiveSource(Protocol):
    def describe(self) -> str: ...

    def list_archives(self) -> list[ArchiveRef]: ...

    def fetch(self, ref: ArchiveRef, scratch_dir: Path) -> Path: ...

    def release(self, ref: ArchiveRef, local_path: Path) -> None: ...


@dataclass(slots=True)
class LocalArchiveSource:
    directory: Path
    suffix: str = ARCHIVE_SUFFIX

    def describe(self) -> str:
        return f"directory: {self.directory}"

    def list_archives(self) -> list[ArchiveRef]:
        try:
            entries = list(self.directory.iterdir())
        except OSError as exc:
            raise SourceError(f"failed to read directory {self.directory}: {exc}") from exc
        return [
            ArchiveRef(key=str(path), filename=path.name)
            for path in entries
            if path.is_file() and path.name.endswith(self.suffix)
        ]

    def fetch(self, ref: ArchiveRef, scratch_dir: Path) -> Path:
        return Path(ref.key)

    def release(self, ref: ArchiveRef, local_path: Path) -> None:
        try:
            local_path.unlink()
        except OSError as exc:
            logger.error("Failed to remove zip file %s: %s", local_path, exc)
        else:
            logger.debug("Cleaned up zip file: %s", local_path)


@dataclass(slots=True)
class S3ArchiveSource:
    bucket: str
    prefix: str
    client: Any
    suffix: str = ARCHIVE_SUFFIX
    request_payer: str | None = "requester"

    def describe(self) -> str:
        return f"bucket: {self.bucket}, prefix: {self.prefix}"

    def _extra(self) -> dict[str, str]:
        return {"RequestPayer": self.request_payer} if self.request_payer else {}

    def list_archives(self) -> list[ArchiveRef]:
        refs: list[ArchiveRef] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix, **self._extra()):
                for obj in page.get("Contents", []):
                    key = str(obj["Key"])
                    filename = PurePosixPath(key).name
                    if filename.endswith(self.suffix):
                        refs.append(ArchiveRef(key=key, filename=filename))
        except (BotoCoreError, ClientError) as exc:
            raise SourceError(f"failed to list S3 objects: {exc}") from exc
        return refs

    def fetch(self, ref: ArchiveRef, scratch_dir: Path) -> Path:
        dest = scratch_dir / ref.filename
        try:
            self.client.download_file(
                self.bucket, ref.key, str(dest), ExtraArgs=self._extra() or None
            )
        except (BotoCoreError, ClientError) as exc:
            raise SourceError(f"failed to download s3://{self.bucket}/{ref.key}: {exc}") from exc
        logger.debug("Downloaded S3 file to: %s", dest)
        return dest

    def release(self, ref: ArchiveRef, local_path: Path) -> None:
        # Source objects stay in the bucket; the download dies with the scratch dir.
        return None


def build_s3_client(region: str = DEFAULT_AWS_REGION) -> Any:
    return boto3.client("s3", region_name=region)
