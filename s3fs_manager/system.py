"""
Host primitives for s3fs-manager.

Privilege and owner lookup, mount path validation, and the commands that
touch the running system: s3fs, umount, the write smoke test, and mount
directory cleanup. Command helpers return (success, output) and leave the
decision of what is fatal to the caller.
"""

import logging
import os
import pwd
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import InvalidTargetError
from .models import S3FS_SOURCE_PREFIX, UnmountMode

log = logging.getLogger(__name__)

# System paths that must never be used as mountpoints
BLOCKED_PATHS = frozenset({
    "/", "/home", "/etc", "/usr", "/var", "/tmp", "/boot",
    "/bin", "/sbin", "/lib", "/lib64", "/dev", "/proc", "/sys",
    "/root", "/opt", "/srv", "/run", "/mnt",
})

SENTINEL_PREFIX = ".s3fs_test_"

BUCKET_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
IP_LIKE_RE = re.compile(r"^\d+\.\d+\.\d+\.\d+$")

# Regular login accounts start at this uid
FIRST_LOGIN_UID = 1000

_UMOUNT_FLAGS = {
    UnmountMode.GRACEFUL: [],
    UnmountMode.FORCED: ["-f"],
    UnmountMode.LAZY: ["-l"],
}


@dataclass(frozen=True)
class Owner:
    """Local account that owns a mount and its credential file."""
    name: str
    uid: int
    gid: int
    home: str


# --- Mount path validation ---

def validate_mount_path(path: str) -> Optional[str]:
    """Validate a mountpoint path. Returns error message or None if OK."""
    if not path:
        return "Mount path is empty."
    if not os.path.isabs(path):
        return f"Mount path must be absolute, got {path!r}."

    # Follow symlinks so a link to a system directory is caught too
    resolved = os.path.realpath(path)
    if resolved in BLOCKED_PATHS:
        return (
            f"Refusing to mount at {resolved}: this is a system directory.\n"
            f"Use a dedicated directory instead, e.g. /mnt/<bucket>."
        )
    return None


def validate_bucket_name(name: str) -> Optional[str]:
    """Validate an S3 bucket name. Returns error message or None if OK."""
    if not BUCKET_NAME_RE.match(name) or ".." in name or IP_LIKE_RE.match(name):
        return (
            f"Invalid bucket name {name!r}: use 3-63 lowercase letters, digits, "
            f"dots or hyphens, starting and ending with a letter or digit."
        )
    return None


def current_login() -> str:
    """Name of the user behind sudo, falling back to the login name, then root."""
    name = os.environ.get("SUDO_USER")
    if name:
        return name
    try:
        return os.getlogin()
    except OSError:
        pass
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return "root"


class HostSystem:
    """Runs privileged host commands. Swapped for a fake in tests."""

    def is_privileged(self) -> bool:
        return os.geteuid() == 0

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def resolve_owner(self, name: Optional[str] = None) -> Owner:
        """Look up ``name`` (or the invoking user for None/'current')."""
        if not name or name == "current":
            name = current_login()
        try:
            entry = pwd.getpwnam(name)
        except KeyError:
            raise InvalidTargetError(f"User '{name}' does not exist") from None
        home = entry.pw_dir or f"/home/{name}"
        return Owner(name=entry.pw_name, uid=entry.pw_uid, gid=entry.pw_gid, home=home)

    def user_homes(self) -> list[str]:
        """Home directories of all local accounts, de-duplicated."""
        homes = []
        for entry in pwd.getpwall():
            if entry.pw_dir and entry.pw_dir not in homes:
                homes.append(entry.pw_dir)
        return homes

    def login_users(self) -> list[str]:
        """Regular login accounts (uid >= 1000, not nobody), sorted by name."""
        return sorted(
            entry.pw_name for entry in pwd.getpwall()
            if entry.pw_uid >= FIRST_LOGIN_UID and entry.pw_name != "nobody"
        )

    def fuse_allows_other(self, fuse_conf: str) -> bool:
        """True if fuse.conf enables user_allow_other."""
        try:
            lines = Path(fuse_conf).read_text().splitlines()
        except OSError:
            return False
        return any(line.strip() == "user_allow_other" for line in lines)

    def dir_has_contents(self, path: str) -> bool:
        try:
            return bool(os.listdir(path))
        except OSError:
            return False

    def prepare_mount_dir(self, path: str, owner: Owner) -> bool:
        """Create the mount directory if missing and hand it to ``owner``.

        Returns True if the directory was created.
        """
        created = False
        if not os.path.isdir(path):
            os.makedirs(path, exist_ok=True)
            created = True
        try:
            os.chown(path, owner.uid, owner.gid)
        except OSError as e:
            log.warning(f"Could not chown {path} to {owner.name}: {e}")
        return created

    def _as_owner(self, cmd: list[str], owner: Owner) -> list[str]:
        if owner.uid == os.geteuid():
            return cmd
        return ["sudo", "-u", owner.name] + cmd

    def mount_s3fs(
        self,
        bucket: str,
        path: str,
        passwd_file: str,
        url: str,
        owner: Owner,
    ) -> tuple[bool, str]:
        """Run s3fs as ``owner``. Returns (exit code was 0, combined output)."""
        cmd = self._as_owner([
            "s3fs", bucket, path,
            "-o", f"passwd_file={passwd_file}",
            "-o", f"url={url}",
            "-o", "use_path_request_style",
            "-o", "allow_other",
            "-o", f"uid={owner.uid}",
            "-o", f"gid={owner.gid}",
            "-o", f"fsname={S3FS_SOURCE_PREFIX}{bucket}",
        ], owner)
        log.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True,
            )
        except FileNotFoundError as e:
            return False, str(e)
        return result.returncode == 0, result.stdout.strip()

    def unmount(self, path: str, mode: UnmountMode = UnmountMode.GRACEFUL) -> tuple[bool, str]:
        """Run umount in the given mode. Returns (success, message)."""
        cmd = ["umount", *_UMOUNT_FLAGS[mode], path]
        log.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            return False, "umount not found"
        if result.returncode == 0:
            return True, f"Unmounted {path} ({mode.value})"
        return False, result.stderr.strip() or f"umount exited with {result.returncode}"

    def write_test(self, path: str, owner: Owner) -> bool:
        """Create and delete a sentinel file as ``owner``."""
        sentinel = os.path.join(path, f"{SENTINEL_PREFIX}{os.getpid()}")
        try:
            touch = subprocess.run(
                self._as_owner(["touch", sentinel], owner), capture_output=True,
            )
            if touch.returncode != 0:
                return False
            subprocess.run(self._as_owner(["rm", "-f", sentinel], owner), capture_output=True)
        except FileNotFoundError:
            return False
        return True

    def remove_dir_if_empty(self, path: str) -> bool:
        """rmdir ``path`` if it exists and is empty. Returns True if removed."""
        if not os.path.isdir(path) or self.dir_has_contents(path):
            return False
        try:
            os.rmdir(path)
            return True
        except OSError as e:
            log.debug(f"Could not remove {path}: {e}")
            return False

    def busy_report(self, path: str) -> str:
        """Processes holding ``path`` open, via lsof when available."""
        if not self.which("lsof"):
            return ""
        try:
            result = subprocess.run(["lsof", path], capture_output=True, text=True)
        except FileNotFoundError:
            return ""
        return "\n".join(result.stdout.splitlines()[:10])
