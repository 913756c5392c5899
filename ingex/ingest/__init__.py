"""Archive discovery, extraction and row spooling."""

from ingex.ingest.channel import ChannelClosed, RowChannel
from ingex.ingest.sources import ArchiveRef, ArchiveSource, LocalArchiveSource, S3ArchiveSource
from ingex.ingest.spooler import Spooler, SpoolStats

__all__ = [
    "ArchiveRef",
    "ArchiveSource",
    "ChannelClosed",
    "LocalArchiveSource",
    "RowChannel",
    "S3ArchiveSource",
    "SpoolStats",
    "Spooler",
]
