"""
Bucket registry: merges the live mount table and fstab into a
bucket -> paths view. Nothing is cached; each call re-reads both sources.
"""

from dataclasses import dataclass
from typing import Optional

from .fstab import PersistedConfigStore
from .models import MountRecord, normalize_path
from .mount_table import MountTableReader, bucket_from_line, is_s3fs_line


@dataclass(frozen=True)
class MountStatusRow:
    """One path of a bucket with where it was seen."""
    bucket: str
    path: str
    active: bool
    configured: bool


class BucketRegistry:
    def __init__(self, mount_table: MountTableReader, store: PersistedConfigStore):
        self.mount_table = mount_table
        self.store = store

    def records(self) -> list[MountRecord]:
        """LIVE records followed by PERSISTED records, unmerged."""
        live = self.mount_table.list_mounts()
        persisted = [e.record() for e in self.store.list_entries()]
        return live + persisted

    def mounts_for_bucket(self, bucket: str) -> list[str]:
        """Sorted, de-duplicated mount paths for ``bucket`` from both sources."""
        paths = {
            normalize_path(r.path)
            for r in self.mount_table.list_mounts()
            if r.bucket == bucket
        }
        paths.update(normalize_path(e.path) for e in self.store.list_by_bucket(bucket))
        return sorted(paths)

    def all_buckets(self) -> set[str]:
        return {r.bucket for r in self.records()}

    def is_path_mounted(self, path: str) -> bool:
        """True if anything (any filesystem) is live at ``path``.

        fstab-only entries are configured, not active, and do not count.
        """
        target = normalize_path(path)
        return any(line.path == target for line in self.mount_table.entries())

    def active_bucket_at(self, path: str) -> Optional[str]:
        """Bucket of the topmost live s3fs mount at ``path``, if any.

        The mount table lists stacked mounts bottom-first, so the last
        row at ``path`` is the one visible there. None when that row is not
        s3fs.
        """
        target = normalize_path(path)
        stacked = [line for line in self.mount_table.entries() if line.path == target]
        if not stacked:
            return None
        top = stacked[-1]
        if not is_s3fs_line(top.source, top.fstype):
            return None
        return bucket_from_line(top.source, top.path) or None

    def overview(self) -> dict[str, list[MountStatusRow]]:
        """Per-bucket rows flagging each path as active and/or configured."""
        live = {(r.bucket, r.path) for r in self.mount_table.list_mounts()}
        configured = {
            (e.bucket, normalize_path(e.path)) for e in self.store.list_entries()
        }
        result: dict[str, list[MountStatusRow]] = {}
        for bucket, path in sorted(live | configured):
            result.setdefault(bucket, []).append(MountStatusRow(
                bucket=bucket,
                path=path,
                active=(bucket, path) in live,
                configured=(bucket, path) in configured,
            ))
        return result
