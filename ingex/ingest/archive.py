"""Zip extraction and SQLite row streaming for snapshot archives."""

from __future__ import annotations

import shutil
import sqlite3
import zipfile
from collections.abc import Iterator
from pathlib import Path

from ingex.constants import CONTENT_TABLE, DATABASE_SUFFIX
from ingex.errors import ArchiveError
from ingex.models import RawRow


def extract_database(zip_path: Path, dest_dir: Path) -> Path:
    """Extract the first ``.db`` member of ``zip_path`` into ``dest_dir``."""
    try:
        with zipfile.ZipFile(zip_path) as archive:
            members = archive.infolist()
            if not members:
                raise ArchiveError("zip file is empty")

            for member in members:
                if member.is_dir() or not member.filename.endswith(DATABASE_SUFFIX):
                    continue
                target = dest_dir / Path(member.filename).name
                with archive.open(member) as src, target.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
                return target
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"failed to open zip file: {exc}") from exc

    raise ArchiveError(f"no {DATABASE_SUFFIX} file found in zip archive")


def iter_rows(db_path: Path, filename: str) -> Iterator[RawRow]:
    """Yield every content-table row of a snapshot database, opened read-only."""
    conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
    try:
        cursor = conn.execute(
            f"SELECT at_uri, did, raw_post, inferences FROM {CONTENT_TABLE}"
        )
        for at_uri, did, raw_post, inferences in cursor:
            yield RawRow(
                at_uri=_text(at_uri),
                did=_text(did),
                raw_post=_text(raw_post),
                inferences=_text(inferences),
                source_filename=filename,
            )
    finally:
        conn.close()


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
