"""
Mount and unmount lifecycle for a single (bucket, path).

Mount:   REQUESTED → DEPENDENCIES_READY → BUCKET_VERIFIED → CREDENTIALS_WRITTEN
         → MOUNT_ATTEMPTED → MOUNTED | MOUNT_FAILED → [PERSISTED] → DONE
Unmount: IDENTIFY_TARGET → UNMOUNT_ATTEMPTED → UNMOUNTED | BUSY
         → PERSISTENCE_CLEANED → DIR_CLEANED → [CREDENTIAL_CLEANED] → DONE

Every check re-reads /proc/mounts and /etc/fstab right before acting.
Everything that can reject the request (privilege, arguments, fstab
conflicts, missing s3fs, bucket verification) runs before the first
change to the host.
"""

import logging
import os
from typing import Iterable, Optional

from .config import ManagerConfig
from .conflicts import Decision, resolve
from .credentials import CredentialStore
from .errors import (
    AmbiguousTargetError, ConfigError, InsufficientPrivilegeError,
    InvalidTargetError, MissingDependencyError, MountFailure,
    MountPointInUseError, NotMountedError, UnmountBusyError,
)
from .fstab import PersistedConfigStore
from .models import (
    MountResult, MountState, PersistedEntry, PersistOutcome,
    UnmountMode, UnmountResult, UnmountState, normalize_path,
)
from .mount_table import MountTableReader
from .registry import BucketRegistry
from .storage import BucketVerifier
from .system import HostSystem, Owner, validate_bucket_name, validate_mount_path

log = logging.getLogger(__name__)


class MountOperator:
    """Runs mount/unmount requests against the host.

    Collaborators default to the real implementations built from
    ``config``; tests pass fakes.
    """

    def __init__(
        self,
        config: Optional[ManagerConfig] = None,
        system: Optional[HostSystem] = None,
        mount_table: Optional[MountTableReader] = None,
        store: Optional[PersistedConfigStore] = None,
        registry: Optional[BucketRegistry] = None,
        credentials: Optional[CredentialStore] = None,
        verifier: Optional[BucketVerifier] = None,
    ):
        self.config = config or ManagerConfig()
        self.system = system or HostSystem()
        self.mount_table = mount_table or MountTableReader(self.config.mount_table_path)
        self.store = store or PersistedConfigStore(self.config.fstab_path)
        self.registry = registry or BucketRegistry(self.mount_table, self.store)
        self.credentials = credentials or CredentialStore(self.system)
        self.verifier = verifier or BucketVerifier()

    def require_privilege(self) -> None:
        if not self.system.is_privileged():
            raise InsufficientPrivilegeError(
                "Mounting and editing /etc/fstab require root. "
                "Run this command with sudo."
            )

    # --- Mount ---

    def mount(
        self,
        bucket: str,
        path: Optional[str] = None,
        owner: Optional[str] = None,
        url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        auto_persist: bool = False,
        force: bool = False,
        force_foreign: bool = False,
    ) -> MountResult:
        """Mount ``bucket`` at ``path`` (default: ``<owner home>/<bucket>``)."""
        self.require_privilege()

        if not bucket:
            raise InvalidTargetError("Bucket name is required")
        error = validate_bucket_name(bucket)
        if error:
            raise InvalidTargetError(error)
        url = url or self.config.url
        access_key = access_key or self.config.access_key
        secret_key = secret_key or self.config.secret_key
        if not access_key or not secret_key:
            raise ConfigError("Mounting requires an access key and a secret key")

        mount_owner = self.system.resolve_owner(owner)
        path = path or os.path.join(mount_owner.home, bucket)
        error = validate_mount_path(path)
        if error:
            raise InvalidTargetError(error)
        path = normalize_path(path)

        result = MountResult(bucket=bucket, path=path, owner=mount_owner.name)
        self._advance(result, MountState.REQUESTED)

        in_use = self.registry.is_path_mounted(path)
        if in_use and not force:
            raise MountPointInUseError(
                f"Mount point {path} is already in use; use --force to remount"
            )

        passwd_file = str(self.credentials.path_for(bucket, mount_owner))
        proposal = PersistedEntry(
            bucket=bucket, path=path, passwd_file=passwd_file, url=url,
            uid=mount_owner.uid, gid=mount_owner.gid,
        )
        if auto_persist:
            # Fail before touching anything if fstab would reject the entry
            decision = resolve(self.store.read_all(), proposal, force, force_foreign)
            if decision.blocked:
                raise decision.error

        self._check_dependencies(mount_owner, result)
        self._advance(result, MountState.DEPENDENCIES_READY)

        if self.config.verify_bucket:
            result.bucket_status = self.verifier.ensure_bucket(
                url, access_key, secret_key, bucket, mount_owner.name,
            )
        else:
            log.info(f"Bucket verification disabled, assuming {bucket} exists")
        self._advance(result, MountState.BUCKET_VERIFIED)

        displaced = set()
        if in_use:
            previous = self.registry.active_bucket_at(path)
            if previous and previous != bucket:
                displaced.add(previous)
            self._release_path(path, result)

        self.credentials.write(bucket, mount_owner, access_key, secret_key)
        self._advance(result, MountState.CREDENTIALS_WRITTEN)

        if self.system.dir_has_contents(path):
            result.warnings.append(
                f"{path} is not empty; its contents are hidden while the bucket is mounted"
            )
        self.system.prepare_mount_dir(path, mount_owner)

        self._advance(result, MountState.MOUNT_ATTEMPTED)
        ok, output = self.system.mount_s3fs(bucket, path, passwd_file, url, mount_owner)
        # s3fs exit codes are unreliable; the mount table decides
        if self.registry.active_bucket_at(path) != bucket:
            self._advance(result, MountState.MOUNT_FAILED)
            self._release_credentials_if_unused(bucket)
            raise MountFailure(f"Failed to mount {bucket} at {path}", diagnostic=output)
        if not ok:
            log.warning(f"s3fs reported failure but {path} is mounted: {output}")
        self._advance(result, MountState.MOUNTED)

        if self.config.write_test:
            result.write_verified = self.system.write_test(path, mount_owner)
            if not result.write_verified:
                result.warnings.append("Mount is read-only or the write test failed")

        if auto_persist:
            decision = self.persist(proposal, force=force, force_foreign=force_foreign)
            result.persist_outcome = decision.outcome
            displaced.update(decision.displaced_buckets)
            self._advance(result, MountState.PERSISTED)

        for other in sorted(displaced - {bucket}):
            self._release_credentials_if_unused(other)

        result.mounts_for_bucket = self.registry.mounts_for_bucket(bucket)
        self._advance(result, MountState.DONE)
        return result

    def persist(
        self,
        entry: PersistedEntry,
        force: bool = False,
        force_foreign: bool = False,
    ) -> Decision:
        """Write ``entry`` to fstab according to the conflict rules."""
        decision = resolve(self.store.read_all(), entry, force, force_foreign)
        if decision.blocked:
            raise decision.error

        if decision.outcome == PersistOutcome.SKIP:
            log.info(f"Exact fstab entry for {entry.bucket} at {entry.path} already exists")
        elif decision.outcome == PersistOutcome.INSERT:
            self.store.insert(entry)
        else:
            if decision.outcome == PersistOutcome.REPLACE:
                log.warning(
                    f"Replacing fstab entries at {entry.path}: "
                    f"{', '.join(e.raw for e in decision.remove)}"
                )
            remove = set(decision.remove)
            self.store.replace(lambda e: e in remove, entry)
        return decision

    def _check_dependencies(self, owner: Owner, result: MountResult) -> None:
        if not self.system.which("s3fs"):
            raise MissingDependencyError(
                "s3fs is not installed. Install it with your package manager, "
                "e.g. apt-get install s3fs"
            )
        if owner.uid != 0 and not self.system.fuse_allows_other(self.config.fuse_conf_path):
            result.warnings.append(
                f"user_allow_other is not enabled in {self.config.fuse_conf_path}; "
                f"allow_other mounts by {owner.name} may fail"
            )

    def _release_path(self, path: str, result: MountResult) -> None:
        """Best-effort unmount of whatever is at ``path`` before a forced remount."""
        log.info(f"Unmounting existing mount at {path}")
        try:
            self._detach(path, force=True)
        except UnmountBusyError as e:
            log.warning(f"Could not unmount {path}: {e} {e.diagnostic}")
            result.warnings.append(f"Existing mount at {path} could not be unmounted")

    # --- Unmount ---

    def unmount(
        self,
        path: Optional[str] = None,
        bucket: Optional[str] = None,
        force: bool = False,
        all_instances: bool = False,
    ) -> list[UnmountResult]:
        """Unmount by path, or by bucket when no path is given.

        A bucket mounted at several paths raises AmbiguousTargetError
        listing them unless ``all_instances`` is set.
        """
        self.require_privilege()

        if path:
            return [self.unmount_path(path, force=force)]
        if not bucket:
            raise InvalidTargetError("Specify a bucket or a path to unmount")

        paths = self.registry.mounts_for_bucket(bucket)
        if not paths:
            raise NotMountedError(f"Bucket {bucket} is not mounted")
        if len(paths) > 1 and not all_instances:
            raise AmbiguousTargetError(bucket, paths)

        return [self.unmount_path(p, force=force) for p in paths]

    def unmount_path(self, path: str, force: bool = False) -> UnmountResult:
        """Unmount one path and clean up fstab, directory and credentials."""
        path = normalize_path(path)
        result = UnmountResult(path=path, bucket=None)
        self._advance(result, UnmountState.IDENTIFY_TARGET)

        active = self.registry.is_path_mounted(path)
        live_bucket = self.registry.active_bucket_at(path)
        persisted = [
            PersistedEntry.from_fstab(e) for e in self.store.read_all()
            if e.is_s3fs and normalize_path(e.path) == path
        ]
        if not active and not persisted:
            raise NotMountedError(f"Path {path} is not mounted")
        foreign_live = active and live_bucket is None
        if foreign_live and not persisted:
            raise InvalidTargetError(f"{path} is not an s3fs mount")

        buckets = {e.bucket for e in persisted}
        if live_bucket:
            buckets.add(live_bucket)
        result.bucket = live_bucket or persisted[0].bucket
        result.was_active = active and not foreign_live

        if foreign_live:
            log.warning(
                f"{path} holds a non-s3fs mount; leaving it mounted and "
                f"cleaning the s3fs configuration only"
            )
        elif active:
            self._advance(result, UnmountState.UNMOUNT_ATTEMPTED)
            try:
                result.mode = self._detach(path, force=force)
            except UnmountBusyError:
                self._advance(result, UnmountState.BUSY)
                raise
            self._advance(result, UnmountState.UNMOUNTED)
        else:
            log.info(f"{path} is configured but not active; cleaning configuration only")

        result.persisted_removed = self.store.delete_matching(
            lambda e: e.is_s3fs and normalize_path(e.path) == path
        )
        self._advance(result, UnmountState.PERSISTENCE_CLEANED)

        # The directory belongs to the other filesystem while it is mounted
        if not foreign_live:
            result.dir_removed = self.system.remove_dir_if_empty(path)
        self._advance(result, UnmountState.DIR_CLEANED)

        refs = [e.passwd_file for e in persisted if e.passwd_file]
        for name in sorted(buckets):
            if self._release_credentials_if_unused(name, refs):
                result.credential_removed = True
        if result.credential_removed:
            self._advance(result, UnmountState.CREDENTIAL_CLEANED)

        self._advance(result, UnmountState.DONE)
        return result

    def _detach(self, path: str, force: bool) -> UnmountMode:
        """Graceful umount, escalating to forced then lazy when ``force`` is set."""
        ok, message = self.system.unmount(path, UnmountMode.GRACEFUL)
        if ok or not self.registry.is_path_mounted(path):
            return UnmountMode.GRACEFUL

        messages = [message]
        if not force:
            raise UnmountBusyError(
                f"Failed to unmount {path} (may be busy); use --force to force unmount",
                diagnostic=self._busy_diagnostic(path, messages),
            )

        for mode in (UnmountMode.FORCED, UnmountMode.LAZY):
            log.info(f"Retrying unmount of {path} ({mode.value})")
            ok, message = self.system.unmount(path, mode)
            if ok or not self.registry.is_path_mounted(path):
                return mode
            messages.append(message)

        raise UnmountBusyError(
            f"Failed to unmount {path} even with force",
            diagnostic=self._busy_diagnostic(path, messages),
        )

    def _busy_diagnostic(self, path: str, messages: list[str]) -> str:
        parts = [m for m in messages if m]
        holders = self.system.busy_report(path)
        if holders:
            parts.append(f"Processes using the mount:\n{holders}")
        return "\n".join(parts)

    def _release_credentials_if_unused(self, bucket: str, refs: Iterable[str] = ()) -> bool:
        if self.registry.mounts_for_bucket(bucket):
            return False
        removed = self.credentials.remove(bucket, refs)
        return bool(removed)

    def _advance(self, result, state) -> None:
        result.states.append(state)
        log.debug(f"{result.path}: {state.value}")
