"""
Configuration management for s3fs-manager.

One JSON file, owned by s3fs-manager:
  ~/.config/s3fs-manager/config.json  (or $S3FS_MANAGER_CONFIG)

Value resolution (highest → lowest):
  1. CLI flags (--url, --access-key, --secret-key, --bucket)
  2. Environment (S3FS_MANAGER_URL, S3FS_MANAGER_ACCESS_KEY, ...)
  3. config.json
  4. Built-in defaults
"""

import fcntl
import json
import logging
import os
import stat
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

from .errors import ConfigError

log = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:9000"

ENV_PREFIX = "S3FS_MANAGER_"
# Keys that may come from the environment
ENV_KEYS = ("url", "access_key", "secret_key", "bucket")


@dataclass
class ManagerConfig:
    """Resolved settings for one invocation."""
    url: str = DEFAULT_URL
    access_key: str = ""
    secret_key: str = ""
    bucket: str = ""
    fstab_path: str = "/etc/fstab"
    mount_table_path: str = "/proc/mounts"
    fuse_conf_path: str = "/etc/fuse.conf"
    verify_bucket: bool = True
    write_test: bool = True


_BOOL_KEYS = {f.name for f in fields(ManagerConfig) if f.type in (bool, "bool")}
_KNOWN_KEYS = {f.name for f in fields(ManagerConfig)}


# --- Path helpers ---

def get_config_dir() -> Path:
    """Get s3fs-manager config directory (~/.config/s3fs-manager/)."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(xdg_config) / "s3fs-manager"


def get_config_path() -> Path:
    override = os.environ.get(f"{ENV_PREFIX}CONFIG")
    if override:
        return Path(override)
    return get_config_dir() / "config.json"


# --- Read/write config.json ---

def read_config_file() -> Optional[dict]:
    """Read config.json. Returns None if not found or unreadable."""
    path = get_config_path()
    if not path.exists():
        return None
    try:
        with open(path, "r") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                data = json.load(f)
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
    except (json.JSONDecodeError, OSError) as e:
        log.warning(f"Could not read config at {path}: {e}")
        return None
    if not isinstance(data, dict):
        log.warning(f"Ignoring config at {path}: top level is not an object")
        return None
    return data


def write_config_file(data: dict) -> None:
    """Atomic write to config.json with file locking.

    The flock is held through the rename so concurrent writers never see a
    partially written file. Enforces 600 permissions (the file may hold a
    secret key).
    """
    path = get_config_path()
    tmp_path = path.with_suffix(".tmp")

    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(data, indent=2, sort_keys=True) + "\n"
    if json.loads(content) != data:
        raise ConfigError("JSON roundtrip validation failed, refusing to write")

    with open(tmp_path, "w") as f:
        fcntl.flock(f, fcntl.LOCK_EX)
        try:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
            os.rename(tmp_path, path)
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)


def _coerce(key: str, value):
    if key in _BOOL_KEYS:
        if isinstance(value, bool):
            return value
        if str(value).strip().lower() in ("1", "true", "yes", "on"):
            return True
        if str(value).strip().lower() in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{key} must be a boolean, got {value!r}")
    return str(value)


# --- High-level loading ---

def load_config(
    cli_url: Optional[str] = None,
    cli_access_key: Optional[str] = None,
    cli_secret_key: Optional[str] = None,
    cli_bucket: Optional[str] = None,
) -> ManagerConfig:
    """Load config with flag > environment > file > default precedence."""
    config = ManagerConfig()

    file_data = read_config_file() or {}
    for key, value in file_data.items():
        if key not in _KNOWN_KEYS:
            log.warning(f"Unknown config key ignored: {key}")
            continue
        setattr(config, key, _coerce(key, value))

    for key in ENV_KEYS:
        env_value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
        if env_value:
            setattr(config, key, env_value)

    cli_values = {
        "url": cli_url,
        "access_key": cli_access_key,
        "secret_key": cli_secret_key,
        "bucket": cli_bucket,
    }
    for key, value in cli_values.items():
        if value:
            setattr(config, key, value)

    return config


def set_config_value(key: str, value: str) -> None:
    """Persist a single key to config.json."""
    if key not in _KNOWN_KEYS:
        raise ConfigError(
            f"Unknown config key: {key} (known: {', '.join(sorted(_KNOWN_KEYS))})"
        )
    data = read_config_file() or {}
    data[key] = _coerce(key, value)
    write_config_file(data)


def config_to_dict(config: ManagerConfig) -> dict:
    return asdict(config)
