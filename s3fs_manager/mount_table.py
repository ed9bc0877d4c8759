"""
Live mount table reader.

Parses /proc/mounts-shaped text (source, mountpoint, fstype, options,
dump, pass) and reports which entries belong to s3fs.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .models import (
    FUSE_TYPE, S3FS_SOURCE_PREFIX,
    MountOrigin, MountRecord,
    normalize_path, unescape_field,
)

log = logging.getLogger(__name__)

DEFAULT_MOUNT_TABLE = "/proc/mounts"


@dataclass(frozen=True)
class MountTableLine:
    """A raw mount table row, any filesystem type."""
    source: str
    path: str
    fstype: str


def is_s3fs_line(source: str, fstype: str, fs_type: str = FUSE_TYPE) -> bool:
    """True if the row was mounted by s3fs (structured source or FUSE type)."""
    return source.startswith(S3FS_SOURCE_PREFIX) or fstype == fs_type


def bucket_from_line(source: str, path: str) -> str:
    """Bucket from ``s3fs#BUCKET``, else the last segment of the mount path."""
    if source.startswith(S3FS_SOURCE_PREFIX):
        name = source[len(S3FS_SOURCE_PREFIX):].split(":", 1)[0]
        if name:
            return name
    return os.path.basename(path.rstrip("/"))


class MountTableReader:
    """Reads the kernel mount table fresh on every call."""

    def __init__(self, path: str = DEFAULT_MOUNT_TABLE):
        self.path = Path(path)

    def entries(self) -> list[MountTableLine]:
        """All mounted filesystems. Empty if the table cannot be read."""
        try:
            text = self.path.read_text()
        except OSError as e:
            log.debug(f"Mount table {self.path} unreadable: {e}")
            return []

        lines = []
        for line in text.splitlines():
            parts = line.split()
            if len(parts) < 3:
                continue
            lines.append(MountTableLine(
                source=unescape_field(parts[0]),
                path=normalize_path(unescape_field(parts[1])),
                fstype=parts[2],
            ))
        return lines

    def list_mounts(self, fs_type: Optional[str] = None) -> list[MountRecord]:
        """s3fs mounts as LIVE records.

        ``fs_type`` overrides the FUSE type name recognised alongside the
        ``s3fs#`` source prefix.
        """
        wanted = fs_type or FUSE_TYPE
        records = []
        for line in self.entries():
            if not is_s3fs_line(line.source, line.fstype, wanted):
                continue
            bucket = bucket_from_line(line.source, line.path)
            if not bucket:
                continue
            records.append(MountRecord(bucket, line.path, MountOrigin.LIVE))
        return records
