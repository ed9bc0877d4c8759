"""Data models shared by the mount table reader, fstab store and operator."""

import posixpath
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# Source prefix used by s3fs in both /etc/fstab and (via fsname=) /proc/mounts
S3FS_SOURCE_PREFIX = "s3fs#"
# Type field written to fstab for the legacy "s3fs#bucket" form
FSTAB_FSTYPE = "fuse"
# Type reported by the kernel for a live s3fs mount
FUSE_TYPE = "fuse.s3fs"

# Options every mount gets, in the order they are serialized
FIXED_FLAGS = ("_netdev", "use_path_request_style", "allow_other")

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")
_NEEDS_ESCAPE = {" ": "\\040", "\t": "\\011", "\n": "\\012", "\\": "\\134"}


def unescape_field(value: str) -> str:
    """Decode the octal escapes used by /proc/mounts and fstab (\\040 = space)."""
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), value)


def escape_field(value: str) -> str:
    """Inverse of unescape_field for whitespace and backslashes."""
    return "".join(_NEEDS_ESCAPE.get(ch, ch) for ch in value)


def normalize_path(path: str) -> str:
    """Collapse duplicate and trailing slashes so paths compare equal."""
    if not path:
        return path
    normalized = posixpath.normpath(path)
    # posixpath keeps a leading double slash, the kernel does not
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized


class MountOrigin(str, Enum):
    LIVE = "live"
    PERSISTED = "persisted"


class BucketStatus(str, Enum):
    EXISTS = "exists"
    CREATED = "created"


class PersistOutcome(str, Enum):
    SKIP = "skip"
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"
    BLOCKED = "blocked"


class UnmountMode(str, Enum):
    GRACEFUL = "graceful"
    FORCED = "forced"
    LAZY = "lazy"


class MountState(str, Enum):
    REQUESTED = "requested"
    DEPENDENCIES_READY = "dependencies_ready"
    BUCKET_VERIFIED = "bucket_verified"
    CREDENTIALS_WRITTEN = "credentials_written"
    MOUNT_ATTEMPTED = "mount_attempted"
    MOUNTED = "mounted"
    MOUNT_FAILED = "mount_failed"
    PERSISTED = "persisted"
    DONE = "done"


class UnmountState(str, Enum):
    IDENTIFY_TARGET = "identify_target"
    UNMOUNT_ATTEMPTED = "unmount_attempted"
    UNMOUNTED = "unmounted"
    BUSY = "busy"
    PERSISTENCE_CLEANED = "persistence_cleaned"
    DIR_CLEANED = "dir_cleaned"
    CREDENTIAL_CLEANED = "credential_cleaned"
    DONE = "done"


@dataclass(frozen=True, order=True)
class MountRecord:
    """One observed (LIVE) or configured (PERSISTED) bucket-to-path binding."""
    bucket: str
    path: str
    origin: MountOrigin


@dataclass(frozen=True)
class FstabEntry:
    """A single fstab line.

    Comment, blank and malformed lines keep only ``raw`` and are written
    back untouched. Data lines are split into their six fields.
    """
    raw: str
    source: str = ""
    path: str = ""
    fstype: str = ""
    options: tuple[str, ...] = ()
    dump: str = "0"
    passno: str = "0"

    @classmethod
    def parse(cls, line: str) -> "FstabEntry":
        raw = line.rstrip("\r\n")
        stripped = raw.strip()
        if not stripped or stripped.startswith("#"):
            return cls(raw=raw)

        parts = stripped.split()
        if len(parts) < 2:
            return cls(raw=raw)

        return cls(
            raw=raw,
            source=unescape_field(parts[0]),
            path=unescape_field(parts[1]),
            fstype=parts[2] if len(parts) > 2 else "",
            options=tuple(parts[3].split(",")) if len(parts) > 3 else (),
            dump=parts[4] if len(parts) > 4 else "0",
            passno=parts[5] if len(parts) > 5 else "0",
        )

    @property
    def is_data(self) -> bool:
        return bool(self.path)

    @property
    def is_s3fs(self) -> bool:
        return self.is_data and (
            self.source.startswith(S3FS_SOURCE_PREFIX) or self.fstype == FUSE_TYPE
        )

    @property
    def bucket(self) -> Optional[str]:
        """Bucket name for s3fs lines, None for anything else."""
        if not self.is_s3fs:
            return None
        if self.source.startswith(S3FS_SOURCE_PREFIX):
            name = self.source[len(S3FS_SOURCE_PREFIX):]
        else:
            # Modern form allows "bucket:/prefix" as the source
            name = self.source
        return name.split(":", 1)[0] or None


@dataclass(frozen=True)
class PersistedEntry:
    """An s3fs fstab entry in canonical form."""
    bucket: str
    path: str
    passwd_file: str
    url: str
    uid: Optional[int] = None
    gid: Optional[int] = None
    extra_options: tuple[str, ...] = ()

    @property
    def options(self) -> tuple[str, ...]:
        opts = [
            "_netdev",
            f"passwd_file={self.passwd_file}",
            f"url={self.url}",
            "use_path_request_style",
            "allow_other",
        ]
        if self.uid is not None:
            opts.append(f"uid={self.uid}")
        if self.gid is not None:
            opts.append(f"gid={self.gid}")
        return tuple(opts) + self.extra_options

    def to_line(self) -> str:
        return (
            f"{S3FS_SOURCE_PREFIX}{escape_field(self.bucket)} {escape_field(self.path)} "
            f"{FSTAB_FSTYPE} {','.join(self.options)} 0 0"
        )

    def record(self) -> MountRecord:
        return MountRecord(self.bucket, normalize_path(self.path), MountOrigin.PERSISTED)

    @classmethod
    def from_fstab(cls, entry: FstabEntry) -> Optional["PersistedEntry"]:
        """Build from a parsed line. Returns None for non-s3fs lines."""
        bucket = entry.bucket
        if bucket is None:
            return None

        values: dict[str, str] = {}
        extra = []
        for opt in entry.options:
            key, sep, value = opt.partition("=")
            if sep and key in ("passwd_file", "url", "uid", "gid"):
                values[key] = value
            elif opt not in FIXED_FLAGS:
                extra.append(opt)

        return cls(
            bucket=bucket,
            path=entry.path,
            passwd_file=values.get("passwd_file", ""),
            url=values.get("url", ""),
            uid=_parse_id(values.get("uid")),
            gid=_parse_id(values.get("gid")),
            extra_options=tuple(extra),
        )


def _parse_id(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass
class MountResult:
    """What a mount request went through and where it ended."""
    bucket: str
    path: str
    owner: str
    states: list[MountState] = field(default_factory=list)
    bucket_status: Optional[BucketStatus] = None
    persist_outcome: Optional[PersistOutcome] = None
    write_verified: Optional[bool] = None
    warnings: list[str] = field(default_factory=list)
    mounts_for_bucket: list[str] = field(default_factory=list)

    @property
    def state(self) -> Optional[MountState]:
        return self.states[-1] if self.states else None


@dataclass
class UnmountResult:
    """Outcome of unmounting a single path."""
    path: str
    bucket: Optional[str]
    states: list[UnmountState] = field(default_factory=list)
    was_active: bool = False
    mode: Optional[UnmountMode] = None
    persisted_removed: int = 0
    dir_removed: bool = False
    credential_removed: bool = False

    @property
    def state(self) -> Optional[UnmountState]:
        return self.states[-1] if self.states else None
