"""Tests for fstab line parsing and the canonical s3fs entry."""

from s3fs_manager.models import (
    FstabEntry, MountOrigin, MountRecord, MountResult, MountState,
    PersistedEntry, escape_field, normalize_path, unescape_field,
)

CANONICAL = (
    "s3fs#photos /mnt/photos fuse _netdev,passwd_file=/home/alice/.passwd-s3fs-photos,"
    "url=http://localhost:9000,use_path_request_style,allow_other,uid=1000,gid=1000 0 0"
)


def _photos(**overrides) -> PersistedEntry:
    values = dict(
        bucket="photos",
        path="/mnt/photos",
        passwd_file="/home/alice/.passwd-s3fs-photos",
        url="http://localhost:9000",
        uid=1000,
        gid=1000,
    )
    values.update(overrides)
    return PersistedEntry(**values)


class TestEscaping:
    """Tests for octal escapes in mount table and fstab fields."""

    def test_unescape_space(self):
        assert unescape_field("/mnt/my\\040data") == "/mnt/my data"

    def test_escape_space_and_tab(self):
        assert escape_field("/mnt/a b\tc") == "/mnt/a\\040b\\011c"

    def test_plain_path_untouched(self):
        assert escape_field("/mnt/data") == "/mnt/data"
        assert unescape_field("/mnt/data") == "/mnt/data"


class TestNormalizePath:
    """Tests for path normalization."""

    def test_trailing_slash(self):
        assert normalize_path("/mnt/data/") == "/mnt/data"

    def test_duplicate_slashes(self):
        assert normalize_path("/mnt//data") == "/mnt/data"

    def test_leading_double_slash(self):
        assert normalize_path("//mnt/data") == "/mnt/data"

    def test_empty(self):
        assert normalize_path("") == ""


class TestFstabEntry:
    """Tests for parsing individual fstab lines."""

    def test_comment_keeps_raw_only(self):
        entry = FstabEntry.parse("# static file system information\n")
        assert entry.raw == "# static file system information"
        assert not entry.is_data
        assert not entry.is_s3fs

    def test_blank_line(self):
        entry = FstabEntry.parse("   ")
        assert not entry.is_data

    def test_single_field_is_not_data(self):
        assert not FstabEntry.parse("garbage").is_data

    def test_foreign_line(self):
        entry = FstabEntry.parse("server:/export /mnt/nfs nfs defaults 0 0")
        assert entry.is_data
        assert not entry.is_s3fs
        assert entry.bucket is None
        assert entry.fstype == "nfs"

    def test_legacy_s3fs_line(self):
        entry = FstabEntry.parse(CANONICAL)
        assert entry.is_s3fs
        assert entry.bucket == "photos"
        assert entry.path == "/mnt/photos"
        assert entry.fstype == "fuse"
        assert "_netdev" in entry.options

    def test_modern_s3fs_line(self):
        entry = FstabEntry.parse("photos /mnt/photos fuse.s3fs _netdev,allow_other 0 0")
        assert entry.is_s3fs
        assert entry.bucket == "photos"

    def test_modern_line_with_prefix(self):
        entry = FstabEntry.parse("photos:/2024 /mnt/p fuse.s3fs _netdev 0 0")
        assert entry.bucket == "photos"

    def test_escaped_mount_path(self):
        entry = FstabEntry.parse("s3fs#docs /mnt/my\\040docs fuse _netdev 0 0")
        assert entry.path == "/mnt/my docs"

    def test_missing_dump_and_pass_default(self):
        entry = FstabEntry.parse("s3fs#docs /mnt/docs fuse _netdev")
        assert entry.dump == "0"
        assert entry.passno == "0"


class TestPersistedEntry:
    """Tests for the canonical entry format."""

    def test_to_line_is_canonical(self):
        assert _photos().to_line() == CANONICAL

    def test_to_line_without_ids(self):
        line = _photos(uid=None, gid=None).to_line()
        assert "uid=" not in line
        assert line.endswith("allow_other 0 0")

    def test_to_line_escapes_path(self):
        line = _photos(path="/mnt/my photos").to_line()
        assert " /mnt/my\\040photos " in line

    def test_from_fstab_restores_entry(self):
        entry = PersistedEntry.from_fstab(FstabEntry.parse(CANONICAL))
        assert entry == _photos()

    def test_from_fstab_keeps_unknown_options(self):
        line = CANONICAL.replace("allow_other", "allow_other,ro")
        entry = PersistedEntry.from_fstab(FstabEntry.parse(line))
        assert entry.extra_options == ("ro",)
        assert entry.uid == 1000

    def test_from_fstab_ignores_bad_uid(self):
        entry = PersistedEntry.from_fstab(
            FstabEntry.parse("s3fs#b /mnt/b fuse _netdev,uid=abc 0 0")
        )
        assert entry.uid is None

    def test_from_fstab_foreign_returns_none(self):
        assert PersistedEntry.from_fstab(FstabEntry.parse("/dev/sdb1 /data ext4 defaults 0 2")) is None

    def test_record_is_persisted_origin(self):
        record = _photos(path="/mnt/photos/").record()
        assert record == MountRecord("photos", "/mnt/photos", MountOrigin.PERSISTED)


class TestMountResult:
    """Tests for result state tracking."""

    def test_state_is_last_transition(self):
        result = MountResult(bucket="b", path="/mnt/b", owner="alice")
        assert result.state is None
        result.states.extend([MountState.REQUESTED, MountState.DEPENDENCIES_READY])
        assert result.state == MountState.DEPENDENCIES_READY

    def test_mutable_defaults_isolated(self):
        a = MountResult(bucket="a", path="/a", owner="x")
        b = MountResult(bucket="b", path="/b", owner="x")
        a.warnings.append("w")
        assert b.warnings == []
