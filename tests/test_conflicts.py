"""Tests for fstab conflict resolution."""

from s3fs_manager.conflicts import resolve
from s3fs_manager.errors import BucketPathConflict, ForeignMountConflict
from s3fs_manager.models import FstabEntry, PersistedEntry, PersistOutcome


def _entry(bucket="photos", path="/mnt/photos", url="http://localhost:9000") -> PersistedEntry:
    return PersistedEntry(
        bucket=bucket, path=path,
        passwd_file=f"/root/.passwd-s3fs-{bucket}", url=url, uid=0, gid=0,
    )


def _snapshot(*lines: str) -> list[FstabEntry]:
    return [FstabEntry.parse(line) for line in lines]


BASE = (
    "# static information",
    "UUID=1234 / ext4 defaults 0 1",
)
NFS = "server:/export /mnt/photos nfs defaults 0 0"


class TestResolve:
    """Tests for each outcome of resolve()."""

    def test_insert_when_path_free(self):
        decision = resolve(_snapshot(*BASE), _entry())
        assert decision.outcome == PersistOutcome.INSERT
        assert decision.remove == ()

    def test_skip_exact_line(self):
        proposal = _entry()
        decision = resolve(_snapshot(*BASE, proposal.to_line()), proposal)
        assert decision.outcome == PersistOutcome.SKIP

    def test_skip_ignores_force(self):
        proposal = _entry()
        decision = resolve(_snapshot(proposal.to_line()), proposal, force=True, force_foreign=True)
        assert decision.outcome == PersistOutcome.SKIP

    def test_update_same_bucket_different_options(self):
        old = _entry(url="http://old:9000").to_line()
        decision = resolve(_snapshot(*BASE, old), _entry())
        assert decision.outcome == PersistOutcome.UPDATE
        assert [e.raw for e in decision.remove] == [old]
        assert decision.displaced_buckets == ()

    def test_update_matches_unnormalized_path(self):
        old = _entry(path="/mnt/photos/", url="http://old:9000").to_line()
        decision = resolve(_snapshot(old), _entry())
        assert decision.outcome == PersistOutcome.UPDATE

    def test_other_bucket_blocked_without_force(self):
        other = _entry(bucket="docs").to_line()
        decision = resolve(_snapshot(*BASE, other), _entry())
        assert decision.blocked
        assert isinstance(decision.error, BucketPathConflict)
        assert decision.error.path == "/mnt/photos"
        assert decision.error.existing == other
        assert "docs" in str(decision.error)

    def test_other_bucket_replaced_with_force(self):
        other = _entry(bucket="docs").to_line()
        decision = resolve(_snapshot(*BASE, other), _entry(), force=True)
        assert decision.outcome == PersistOutcome.REPLACE
        assert [e.raw for e in decision.remove] == [other]
        assert decision.displaced_buckets == ("docs",)

    def test_foreign_blocked_even_with_force(self):
        decision = resolve(_snapshot(*BASE, NFS), _entry(), force=True)
        assert decision.blocked
        assert isinstance(decision.error, ForeignMountConflict)
        assert "nfs" in str(decision.error)

    def test_foreign_replaced_with_force_foreign(self):
        decision = resolve(_snapshot(*BASE, NFS), _entry(), force=True, force_foreign=True)
        assert decision.outcome == PersistOutcome.REPLACE
        assert [e.raw for e in decision.remove] == [NFS]
        assert decision.displaced_buckets == ()

    def test_foreign_checked_before_other_bucket(self):
        other = _entry(bucket="docs").to_line()
        decision = resolve(_snapshot(NFS, other), _entry())
        assert isinstance(decision.error, ForeignMountConflict)

    def test_replace_removes_every_entry_at_path(self):
        other = _entry(bucket="docs").to_line()
        same = _entry(url="http://old:9000").to_line()
        decision = resolve(_snapshot(other, same), _entry(), force=True)
        assert decision.outcome == PersistOutcome.REPLACE
        assert len(decision.remove) == 2

    def test_entries_at_other_paths_ignored(self):
        elsewhere = _entry(bucket="docs", path="/mnt/docs").to_line()
        decision = resolve(_snapshot(elsewhere), _entry())
        assert decision.outcome == PersistOutcome.INSERT
