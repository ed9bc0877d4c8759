"""
Error taxonomy for s3fs-manager.

Every error carries a short category label (printed by the CLI before the
message) and, where a host command failed, its captured output verbatim.
"""

from typing import Optional, Sequence


class S3fsManagerError(Exception):
    """Base class for all s3fs-manager failures."""

    category = "Error"
    recoverable = False

    def __init__(self, message: str, diagnostic: str = ""):
        super().__init__(message)
        self.diagnostic = diagnostic


class InsufficientPrivilegeError(S3fsManagerError):
    category = "Insufficient privilege"


class ConfigError(S3fsManagerError):
    category = "Configuration error"


class InvalidTargetError(S3fsManagerError):
    category = "Invalid target"


class MissingDependencyError(S3fsManagerError):
    category = "Missing dependency"


class ConflictError(S3fsManagerError):
    """A proposed fstab write collides with an existing entry."""

    category = "Mount point conflict"

    def __init__(self, message: str, path: str, existing: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.existing = existing


class ForeignMountConflict(ConflictError):
    category = "Foreign mount conflict"


class BucketPathConflict(ConflictError):
    category = "Bucket path conflict"


class MountPointInUseError(S3fsManagerError):
    category = "Mount point in use"


class MountFailure(S3fsManagerError):
    category = "Mount failure"


class UnmountBusyError(S3fsManagerError):
    category = "Unmount busy"
    recoverable = True


class NotMountedError(S3fsManagerError):
    category = "Not mounted"


class PersistenceWriteError(S3fsManagerError):
    category = "Persistence write error"


class BucketVerificationError(S3fsManagerError):
    category = "Bucket verification error"


class AmbiguousTargetError(S3fsManagerError):
    """Bucket is mounted at several paths and the caller must pick."""

    category = "Ambiguous target"
    recoverable = True

    def __init__(self, bucket: str, candidates: Sequence[str]):
        self.bucket = bucket
        self.candidates = list(candidates)
        super().__init__(
            f"Bucket {bucket} is mounted at {len(self.candidates)} locations; "
            f"specify --path or use --all"
        )
