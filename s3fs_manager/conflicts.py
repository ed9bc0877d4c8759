"""
Conflict resolution for fstab writes.

``resolve`` looks at a snapshot of the store and a proposed entry and
decides what the write should do. It performs no I/O; the operator
executes the returned Decision against a fresh read of the store.

Outcomes, checked in order:
  SKIP     exact canonical line already present
  BLOCKED  path held by another filesystem (ForeignMountConflict) unless
           force_foreign, or by another bucket (BucketPathConflict) unless force
  REPLACE  forced takeover: conflicting entries at the path are deleted
  UPDATE   same bucket and path with different options: old line replaced
  INSERT   nothing at the path

force_foreign is a separate, more dangerous opt-in than force: it deletes
fstab lines for unrelated filesystems (NFS shares, disks) mounted at the
same path.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from .errors import BucketPathConflict, ConflictError, ForeignMountConflict
from .models import FstabEntry, PersistedEntry, PersistOutcome, normalize_path


@dataclass(frozen=True)
class Decision:
    outcome: PersistOutcome
    proposal: PersistedEntry
    remove: tuple[FstabEntry, ...] = ()
    error: Optional[ConflictError] = None
    displaced_buckets: tuple[str, ...] = field(default=())

    @property
    def blocked(self) -> bool:
        return self.outcome == PersistOutcome.BLOCKED


def resolve(
    snapshot: Sequence[FstabEntry],
    proposal: PersistedEntry,
    force: bool = False,
    force_foreign: bool = False,
) -> Decision:
    """Decide how ``proposal`` may be written given the current entries."""
    line = proposal.to_line()
    if any(e.raw == line for e in snapshot):
        return Decision(PersistOutcome.SKIP, proposal)

    target = normalize_path(proposal.path)
    at_path = [e for e in snapshot if e.is_data and normalize_path(e.path) == target]
    if not at_path:
        return Decision(PersistOutcome.INSERT, proposal)

    foreign = [e for e in at_path if not e.is_s3fs]
    other_bucket = [e for e in at_path if e.is_s3fs and e.bucket != proposal.bucket]
    same_bucket = [e for e in at_path if e.is_s3fs and e.bucket == proposal.bucket]

    if foreign and not force_foreign:
        existing = foreign[0]
        return Decision(
            PersistOutcome.BLOCKED, proposal,
            error=ForeignMountConflict(
                f"Mount point {target} is already used by a non-s3fs filesystem "
                f"({existing.source}, type {existing.fstype or 'unknown'})",
                path=target, existing=existing.raw,
            ),
        )

    if other_bucket and not force:
        existing = other_bucket[0]
        return Decision(
            PersistOutcome.BLOCKED, proposal,
            error=BucketPathConflict(
                f"Mount point {target} is already used for bucket {existing.bucket}; "
                f"use --force to override",
                path=target, existing=existing.raw,
            ),
        )

    displaced = tuple(sorted({e.bucket for e in other_bucket}))
    if foreign or other_bucket:
        return Decision(
            PersistOutcome.REPLACE, proposal,
            remove=tuple(at_path), displaced_buckets=displaced,
        )

    return Decision(PersistOutcome.UPDATE, proposal, remove=tuple(same_bucket))
