"""Shared fixtures: a fake host backed by temp-dir mount table and fstab files."""

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from s3fs_manager.config import ManagerConfig
from s3fs_manager.errors import InvalidTargetError
from s3fs_manager.models import BucketStatus, UnmountMode, escape_field
from s3fs_manager.mounter import MountOperator
from s3fs_manager.system import Owner


class FakeSystem:
    """Stands in for HostSystem.

    s3fs mounts append a line to the fake mount table, umount removes it.
    Paths listed in ``busy`` refuse the unmount modes they map to.
    """

    def __init__(self, mount_table: Path, home: Path):
        self.mount_table = mount_table
        self.home = home
        self.privileged = True
        self.installed = {"s3fs"}
        self.allow_other = True
        self.mount_fails = False
        self.writable = True
        self.busy: dict[str, set] = {}
        self.mount_calls = []
        self.unmount_calls = []

    def owner(self) -> Owner:
        return Owner(name="alice", uid=os.getuid(), gid=os.getgid(), home=str(self.home))

    # --- HostSystem interface ---

    def is_privileged(self) -> bool:
        return self.privileged

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.installed else None

    def resolve_owner(self, name=None) -> Owner:
        if name not in (None, "current", "alice"):
            raise InvalidTargetError(f"User '{name}' does not exist")
        return self.owner()

    def user_homes(self):
        return [str(self.home)]

    def fuse_allows_other(self, fuse_conf):
        return self.allow_other

    def dir_has_contents(self, path):
        try:
            return bool(os.listdir(path))
        except OSError:
            return False

    def prepare_mount_dir(self, path, owner):
        created = not os.path.isdir(path)
        os.makedirs(path, exist_ok=True)
        return created

    def mount_s3fs(self, bucket, path, passwd_file, url, owner):
        self.mount_calls.append((bucket, path, passwd_file, url))
        if self.mount_fails:
            return False, "s3fs: could not determine how to establish security credentials"
        self.add_live(f"s3fs#{bucket}", path, "fuse.s3fs")
        return True, ""

    def unmount(self, path, mode=UnmountMode.GRACEFUL):
        self.unmount_calls.append((path, mode))
        if mode in self.busy.get(path, set()):
            return False, f"umount: {path}: target is busy."
        self.remove_live(path)
        return True, f"Unmounted {path} ({mode.value})"

    def write_test(self, path, owner):
        return self.writable

    def remove_dir_if_empty(self, path):
        if not os.path.isdir(path) or self.dir_has_contents(path):
            return False
        os.rmdir(path)
        return True

    def busy_report(self, path):
        if self.busy.get(path):
            return f"COMMAND  PID USER\nbash    4242 alice  cwd DIR {path}"
        return ""

    # --- Test helpers ---

    def add_live(self, source, path, fstype):
        with open(self.mount_table, "a") as f:
            f.write(f"{source} {escape_field(path)} {fstype} rw,nosuid,nodev 0 0\n")

    def remove_live(self, path):
        target = escape_field(path)
        lines = self.mount_table.read_text().splitlines(keepends=True)
        kept = [l for l in lines if l.split()[1] != target]
        self.mount_table.write_text("".join(kept))


@pytest.fixture
def host(tmp_path):
    """Temp files for the mount table, fstab and a home directory."""
    mounts = tmp_path / "mounts"
    mounts.write_text(
        "proc /proc proc rw,nosuid,nodev,noexec 0 0\n"
        "/dev/sda1 / ext4 rw,relatime 0 0\n"
    )
    fstab = tmp_path / "fstab"
    fstab.write_text(
        "# /etc/fstab: static file system information.\n"
        "UUID=1234-abcd / ext4 errors=remount-ro 0 1\n"
        "\n"
    )
    home = tmp_path / "home" / "alice"
    home.mkdir(parents=True)
    return tmp_path


@pytest.fixture
def fake_system(host):
    return FakeSystem(host / "mounts", host / "home" / "alice")


@pytest.fixture
def config(host):
    return ManagerConfig(
        url="http://minio.local:9000",
        access_key="AKIAEXAMPLE",
        secret_key="s3cr3tKEY",
        fstab_path=str(host / "fstab"),
        mount_table_path=str(host / "mounts"),
        fuse_conf_path=str(host / "fuse.conf"),
    )


@pytest.fixture
def verifier():
    mock = MagicMock()
    mock.ensure_bucket.return_value = BucketStatus.EXISTS
    return mock


@pytest.fixture
def operator(config, fake_system, verifier):
    return MountOperator(config=config, system=fake_system, verifier=verifier)


@pytest.fixture
def mnt(host):
    """Factory for mount paths under the temp dir."""
    def make(name: str) -> str:
        return str(host / "mnt" / name)
    return make
