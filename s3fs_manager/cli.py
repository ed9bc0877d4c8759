"""
Subcommand implementations for s3fs-manager CLI.

Commands: mount, unmount, list, config.
"""

import getpass
import os
import pwd
import shutil
import sys
from argparse import Namespace
from typing import Optional

import httpx

from .config import (
    ManagerConfig, config_to_dict, get_config_path, load_config, set_config_value,
)
from .credentials import check_file_permissions
from .errors import (
    AmbiguousTargetError, ConfigError, InvalidTargetError, NotMountedError,
    S3fsManagerError,
)
from .fstab import PersistedConfigStore
from .models import PersistOutcome
from .mount_table import MountTableReader
from .mounter import MountOperator
from .registry import BucketRegistry
from .system import current_login

RULE = "═" * 55


# --- ANSI formatting helpers ---

_color_disabled = False


def disable_color() -> None:
    global _color_disabled
    _color_disabled = True


def _supports_color() -> bool:
    """Check if terminal supports ANSI colors."""
    if os.environ.get("NO_COLOR"):
        return False
    if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
        return False
    return True


def _use_color() -> bool:
    return not _color_disabled and _supports_color()


def _bold(text: str) -> str:
    return f"\033[1m{text}\033[0m" if _use_color() else text

def _green(text: str) -> str:
    return f"\033[32m{text}\033[0m" if _use_color() else text

def _yellow(text: str) -> str:
    return f"\033[33m{text}\033[0m" if _use_color() else text

def _red(text: str) -> str:
    return f"\033[31m{text}\033[0m" if _use_color() else text

def _dim(text: str) -> str:
    return f"\033[2m{text}\033[0m" if _use_color() else text


def _get_version() -> str:
    """Get package version."""
    from importlib.metadata import version, PackageNotFoundError
    try:
        return version("s3fs-manager")
    except PackageNotFoundError:
        return "dev"


def _test_server(url: str) -> tuple[bool, str]:
    """Probe the MinIO liveness endpoint. Returns (reachable, detail)."""
    try:
        resp = httpx.get(f"{url.rstrip('/')}/minio/health/live", timeout=5)
        if resp.status_code == 200:
            return True, "live"
        return False, f"HTTP {resp.status_code}"
    except httpx.ConnectError:
        return False, "connection refused"
    except httpx.HTTPError as e:
        return False, str(e)


def _mask_secret(secret: str) -> str:
    """Mask a secret, showing only last 4 chars."""
    if len(secret) <= 4:
        return "****"
    return f"****{secret[-4:]}"


def _interactive(args: Namespace) -> bool:
    if getattr(args, "non_interactive", False):
        return False
    return hasattr(sys.stdin, "isatty") and sys.stdin.isatty()


def _prompt(question: str, secret: bool = False) -> str:
    try:
        if secret:
            return getpass.getpass(question).strip()
        return input(question).strip()
    except (EOFError, KeyboardInterrupt):
        print()
        return ""


def _choose(question: str, options: list[str], allow_all: bool = True) -> Optional[int]:
    """Numbered menu. Returns the chosen index, len(options) for 'all', or None."""
    for i, option in enumerate(options, 1):
        print(f"  {i}) {option}")
    if allow_all:
        print(f"  a) All of the above")
    answer = _prompt(question).lower()
    if allow_all and answer in ("a", "all"):
        return len(options)
    if answer.isdigit() and 1 <= int(answer) <= len(options):
        return int(answer) - 1
    return None


def report_error(err: S3fsManagerError) -> None:
    """Print category, cause and any captured command output."""
    print(f"{_red('✗')} {_bold(err.category)}: {err}", file=sys.stderr)
    if isinstance(err, AmbiguousTargetError):
        for path in err.candidates:
            print(f"  • {path}", file=sys.stderr)
    if err.diagnostic:
        print(_dim(err.diagnostic), file=sys.stderr)


def _config_from_args(args: Namespace) -> ManagerConfig:
    return load_config(
        cli_url=getattr(args, "url", None),
        cli_access_key=getattr(args, "access_key", None),
        cli_secret_key=getattr(args, "secret_key", None),
        cli_bucket=getattr(args, "bucket", None),
    )


def build_operator(config: ManagerConfig) -> MountOperator:
    return MountOperator(config)


# --- Subcommands ---

def _select_owner(operator: MountOperator) -> str:
    """Menu of login users, the invoking user first if not already listed."""
    users = operator.system.login_users()
    current = current_login()
    if current not in users:
        users.insert(0, current)
    print("Select the user who will own the mount:")
    choice = _choose("Select user (enter number): ", users, allow_all=False)
    if choice is None:
        raise InvalidTargetError("Invalid user selection")
    return users[choice]


def _select_mount_point(operator: MountOperator, bucket: str, owner: str) -> str:
    """Ask for a mount path, defaulting to ``<owner home>/<bucket>``."""
    default = os.path.join(operator.system.resolve_owner(owner).home, bucket)
    print(f"Default: {default}")
    existing = operator.registry.mounts_for_bucket(bucket)
    if existing:
        print("This bucket is already mounted at:")
        for mp in existing:
            print(f"  • {mp}")
    return _prompt("Press Enter for default or type path: ") or default


def _select_active_mount(operator: MountOperator) -> str:
    records = operator.mount_table.list_mounts()
    if not records:
        raise NotMountedError("No s3fs mounts found")
    print("Active s3fs mounts:")
    choice = _choose(
        "Select mount to unmount: ",
        [f"{r.bucket} → {r.path}" for r in records],
        allow_all=False,
    )
    if choice is None:
        raise InvalidTargetError("No mount selected")
    return records[choice].path


def cmd_mount(args: Namespace) -> None:
    """Mount a bucket, creating it on the server if needed."""
    config = _config_from_args(args)
    operator = build_operator(config)
    owner = args.owner
    path = args.path
    auto_persist = bool(args.auto_mount)

    if _interactive(args):
        if not args.url:
            url = _prompt(f"Server URL [{config.url}] (press Enter for default or type URL): ")
            if url:
                config.url = url
        if not config.access_key:
            config.access_key = _prompt("Access Key ID: ")
        if not config.secret_key:
            config.secret_key = _prompt("Secret Access Key: ", secret=True)
        if not config.bucket:
            config.bucket = _prompt("Bucket name: ")
        if config.bucket:
            if owner is None:
                owner = _select_owner(operator)
            if not path:
                path = _select_mount_point(operator, config.bucket, owner)
            if args.auto_mount is None:
                answer = _prompt("Add to /etc/fstab for auto-mount at boot? (y/N): ")
                auto_persist = answer.lower() in ("y", "yes")

    if not config.bucket:
        raise ConfigError("No bucket given. Use --bucket NAME")

    force = args.force or args.force_foreign

    print(f"\n{_bold('Mount S3/MinIO bucket')}\n{RULE}")
    result = operator.mount(
        bucket=config.bucket,
        path=path,
        owner=owner,
        url=config.url,
        access_key=config.access_key,
        secret_key=config.secret_key,
        auto_persist=auto_persist,
        force=force,
        force_foreign=args.force_foreign,
    )

    if result.bucket_status:
        print(f"  {_green('✓')} Bucket '{result.bucket}' {result.bucket_status.value}")
    print(f"  {_green('✓')} Mounted {result.bucket} at {result.path} (owner {result.owner})")
    if result.write_verified:
        print(f"  {_green('✓')} Write access verified")
    for warning in result.warnings:
        print(f"  {_yellow('⚠')} {warning}")

    if result.persist_outcome == PersistOutcome.SKIP:
        print(f"  {_dim('→ Exact entry already in fstab (skipped)')}")
    elif result.persist_outcome == PersistOutcome.UPDATE:
        print(f"  {_green('✓')} Updated fstab entry for boot mount")
    elif result.persist_outcome == PersistOutcome.REPLACE:
        print(f"  {_yellow('⚠')} Replaced existing fstab entry at {result.path}")
    elif result.persist_outcome == PersistOutcome.INSERT:
        print(f"  {_green('✓')} Added to fstab for auto-mount at boot")

    if len(result.mounts_for_bucket) > 1:
        print(f"\nBucket '{result.bucket}' is now mounted at "
              f"{len(result.mounts_for_bucket)} locations:")
        for mp in result.mounts_for_bucket:
            print(f"  • {mp}")
    print(f"{RULE}\n{_green('Mount complete!')} Files are at {_bold(result.path)}\n")


def cmd_unmount(args: Namespace) -> None:
    """Unmount by path, or every/one instance of a bucket."""
    config = load_config(cli_bucket=getattr(args, "bucket", None))
    operator = build_operator(config)

    print(f"\n{_bold('Unmount S3/MinIO bucket')}\n{RULE}")
    path = args.path
    if not path and not args.bucket and _interactive(args):
        path = _select_active_mount(operator)
    try:
        results = operator.unmount(
            path=path,
            bucket=args.bucket,
            force=args.force,
            all_instances=args.all,
        )
    except AmbiguousTargetError as e:
        if not _interactive(args):
            raise
        print(f"Bucket {e.bucket} is mounted at multiple locations:")
        choice = _choose("Select mount to unmount: ", e.candidates)
        if choice is None:
            raise
        if choice == len(e.candidates):
            results = operator.unmount(bucket=e.bucket, force=args.force, all_instances=True)
        else:
            results = operator.unmount(path=e.candidates[choice], force=args.force)

    for r in results:
        if r.was_active:
            mode = f" ({r.mode.value})" if r.mode and r.mode.value != "graceful" else ""
            print(f"  {_green('✓')} Unmounted {r.bucket} from {r.path}{mode}")
        else:
            print(f"  {_dim('→')} {r.path} was not active")
        if r.persisted_removed:
            print(f"  {_green('✓')} Removed {r.persisted_removed} fstab entr"
                  f"{'ies' if r.persisted_removed != 1 else 'y'}")
        if r.dir_removed:
            print(f"  {_green('✓')} Removed empty mount directory")
        if r.credential_removed:
            print(f"  {_green('✓')} Cleaned up credentials for {r.bucket}")
    print(f"{RULE}\n{_green('Unmount complete!')}\n")


def _mount_details(path: str) -> list[str]:
    details = []
    try:
        usage = shutil.disk_usage(path)
        pct = (usage.used / usage.total * 100) if usage.total else 0
        details.append(
            f"Size: {_human(usage.total)}, Used: {_human(usage.used)} ({pct:.0f}%)"
        )
    except OSError:
        pass
    try:
        details.append(f"Owner: {pwd.getpwuid(os.stat(path).st_uid).pw_name}")
    except (OSError, KeyError):
        pass
    return details


def _human(size: int) -> str:
    value = float(size)
    for unit in ("B", "K", "M", "G", "T"):
        if value < 1024 or unit == "T":
            return f"{value:.0f}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}P"


def cmd_list(args: Namespace) -> None:
    """Show active mounts, fstab entries and a per-bucket summary."""
    config = load_config()
    mount_table = MountTableReader(config.mount_table_path)
    store = PersistedConfigStore(config.fstab_path)
    registry = BucketRegistry(mount_table, store)

    print(f"\n{_bold('S3FS Mount Overview')}\n{RULE}")

    live = mount_table.list_mounts()
    print(f"\n{_green('●')} {_bold('Active mounts:')}")
    if live:
        for record in live:
            print(f"  ► {_bold(f'{record.bucket:<20s}')} → {record.path}")
            for detail in _mount_details(record.path):
                print(f"      {_dim(detail)}")
    else:
        print(f"  {_dim('No active s3fs mounts')}")

    entries = store.list_entries()
    print(f"\n{_green('●')} {_bold(f'Boot mounts ({config.fstab_path}):')}")
    if entries:
        for entry in entries:
            state = (
                _green("[active]") if registry.is_path_mounted(entry.path)
                else _yellow("[inactive]")
            )
            print(f"  ► {_bold(f'{entry.bucket:<20s}')} → {entry.path:<30s} {state}")
    else:
        print(f"  {_dim(f'No s3fs entries in {config.fstab_path}')}")

    overview = registry.overview()
    print(f"\n{_green('●')} {_bold('Bucket summary:')}")
    if not overview:
        print(f"  {_dim('No buckets configured')}")
    for bucket, rows in overview.items():
        count = len(rows)
        print(f"  {_bold(bucket)} ({count} mount point{'s' if count != 1 else ''}):")
        for row in rows:
            mark = _green("✓") if row.active else _yellow("○")
            tags = []
            if row.active:
                tags.append("active")
            if row.configured:
                tags.append("configured")
            print(f"    {mark} {row.path} {_dim('(' + ', '.join(tags) + ')')}")
    print()


def cmd_config(args: Namespace) -> None:
    """Show (or update) configuration with masked secrets."""
    setting = getattr(args, "set", None)
    if setting:
        key, sep, value = setting.partition("=")
        if not sep:
            raise ConfigError(f"Expected key=value, got {setting!r}")
        set_config_value(key.strip(), value.strip())
        print(f"Saved {key.strip()} to {get_config_path()}")
        return

    config = _config_from_args(args)
    path = get_config_path()
    exists = _green("(exists)") if path.exists() else _dim("(not created)")
    print(f"\n{_bold('config:')} {path} {exists}\n")

    for key, value in config_to_dict(config).items():
        if key == "secret_key":
            value = _mask_secret(value) if value else "(not set)"
        elif value == "":
            value = "(not set)"
        print(f"  {key + ':':<18s} {value}")

    warning = check_file_permissions(path)
    if warning:
        print(f"\n  {_yellow(warning)}")

    reachable, detail = _test_server(config.url)
    state = _green(f"({detail})") if reachable else _red(f"({detail})")
    print(f"\n{_bold('Server:')}  {config.url} {state}")

    s3fs = shutil.which("s3fs")
    print(f"{_bold('s3fs:')}    {_green(s3fs) if s3fs else _red('NOT FOUND')}")
    print(f"{_bold('version:')} {_get_version()}\n")
