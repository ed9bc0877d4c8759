"""
Credential files for s3fs.

One ``.passwd-s3fs-<bucket>`` per bucket in the mount owner's home,
holding ``ACCESS_KEY:SECRET_KEY``, mode 600, owned by the mount owner.
All mounts of a bucket share the file.
"""

import logging
import os
import stat
from pathlib import Path
from typing import Iterable, Optional

from .system import HostSystem, Owner

log = logging.getLogger(__name__)

CREDENTIAL_PREFIX = ".passwd-s3fs-"


def credential_filename(bucket: str) -> str:
    return f"{CREDENTIAL_PREFIX}{bucket}"


def check_file_permissions(path: Path) -> Optional[str]:
    """Check if a secret-bearing file is readable by group/others.

    Returns warning message or None if OK.
    """
    if not path.exists():
        return None

    mode = path.stat().st_mode
    if mode & (stat.S_IRGRP | stat.S_IROTH):
        return (
            f"Warning: {path} is readable by group/others (mode {oct(mode)[-3:]}).\n"
            f"This file contains credentials. Fix with:\n"
            f"  chmod 600 {path}"
        )
    return None


class CredentialStore:
    def __init__(self, system: Optional[HostSystem] = None):
        self.system = system or HostSystem()

    def path_for(self, bucket: str, owner: Owner) -> Path:
        return Path(owner.home) / credential_filename(bucket)

    def write(self, bucket: str, owner: Owner, access_key: str, secret_key: str) -> Path:
        """Write the credential file for ``bucket`` and return its path."""
        path = self.path_for(bucket, owner)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(f"{access_key}:{secret_key}\n")
        # O_CREAT mode is ignored for an existing file
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
        try:
            os.chown(path, owner.uid, owner.gid)
        except OSError as e:
            log.warning(f"Could not chown {path} to {owner.name}: {e}")
        log.info(f"Wrote credentials for {bucket} to {path}")
        return path

    def find(self, bucket: str) -> list[Path]:
        """Credential files for ``bucket`` across all local home directories."""
        name = credential_filename(bucket)
        return [
            Path(home) / name
            for home in self.system.user_homes()
            if (Path(home) / name).is_file()
        ]

    def remove(self, bucket: str, known_refs: Iterable[str] = ()) -> list[Path]:
        """Delete every credential file for ``bucket``.

        ``known_refs`` adds passwd_file paths recorded in fstab; they are
        only deleted when named like a credential file of this bucket.
        """
        name = credential_filename(bucket)
        candidates = self.find(bucket)
        for ref in known_refs:
            ref_path = Path(ref)
            if ref_path.name == name and ref_path.is_file() and ref_path not in candidates:
                candidates.append(ref_path)

        removed = []
        for path in candidates:
            try:
                path.unlink()
                removed.append(path)
                log.info(f"Removed credentials {path}")
            except FileNotFoundError:
                continue
        return removed
