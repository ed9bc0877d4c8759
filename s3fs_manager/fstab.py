"""
Boot persistence store (/etc/fstab).

Every call re-reads the file. Comment, blank and foreign lines are kept
byte-for-byte on rewrite; only s3fs lines are ever produced by this module.

Rewrites go through a temp file and an atomic rename, after copying the
current file to ``<fstab>.s3fs-manager.bak``. No lock is taken: callers
running several s3fs-manager processes at once must serialize them.
"""

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Callable, Optional

from .errors import PersistenceWriteError
from .models import FstabEntry, PersistedEntry, normalize_path

log = logging.getLogger(__name__)

DEFAULT_FSTAB = "/etc/fstab"
BACKUP_SUFFIX = ".s3fs-manager.bak"


class PersistedConfigStore:
    """Line-oriented view of an fstab file."""

    def __init__(self, path: str = DEFAULT_FSTAB):
        self.path = Path(path)

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + BACKUP_SUFFIX)

    # --- Reads ---

    def read_all(self) -> list[FstabEntry]:
        """Every line of the file, parsed. Missing file reads as empty."""
        try:
            text = self.path.read_text()
        except FileNotFoundError:
            return []
        except OSError as e:
            log.warning(f"Could not read {self.path}: {e}")
            return []
        return [FstabEntry.parse(line) for line in text.splitlines()]

    def find_exact(self, entry: PersistedEntry) -> bool:
        """True if the canonical line for ``entry`` is present verbatim."""
        line = entry.to_line()
        return any(e.raw == line for e in self.read_all())

    def find_by_path(self, path: str) -> Optional[FstabEntry]:
        """First data line (any filesystem) mounted at ``path``."""
        target = normalize_path(path)
        for e in self.read_all():
            if e.is_data and normalize_path(e.path) == target:
                return e
        return None

    def list_by_bucket(self, bucket: str) -> list[PersistedEntry]:
        entries = []
        for e in self.read_all():
            if e.bucket == bucket:
                entries.append(PersistedEntry.from_fstab(e))
        return entries

    def list_entries(self) -> list[PersistedEntry]:
        """All s3fs entries in file order."""
        return [
            PersistedEntry.from_fstab(e) for e in self.read_all() if e.is_s3fs
        ]

    # --- Writes ---

    def insert(self, entry: PersistedEntry) -> None:
        """Append the canonical line for ``entry``."""
        line = entry.to_line()
        try:
            prefix = ""
            if self.path.exists():
                content = self.path.read_text()
                if content and not content.endswith("\n"):
                    prefix = "\n"
            with open(self.path, "a") as f:
                f.write(f"{prefix}{line}\n")
        except OSError as e:
            raise PersistenceWriteError(f"Cannot append to {self.path}: {e}") from e
        log.info(f"Added fstab entry: {line}")

    def delete_matching(self, predicate: Callable[[FstabEntry], bool]) -> int:
        """Drop every data line matching ``predicate``. Returns the count."""
        return self._rewrite(predicate, None)

    def replace(self, predicate: Callable[[FstabEntry], bool], entry: PersistedEntry) -> int:
        """Drop matching lines and append ``entry`` in one rewrite."""
        return self._rewrite(predicate, entry)

    def _rewrite(
        self,
        predicate: Callable[[FstabEntry], bool],
        append: Optional[PersistedEntry],
    ) -> int:
        entries = self.read_all()
        kept = []
        removed = 0
        for e in entries:
            if e.is_data and predicate(e):
                removed += 1
                log.info(f"Removing fstab entry: {e.raw}")
                continue
            kept.append(e.raw)

        if removed == 0 and append is None:
            return 0
        if append is not None:
            kept.append(append.to_line())

        content = "\n".join(kept) + "\n"
        self._atomic_write(content)
        return removed

    def _atomic_write(self, content: str) -> None:
        """Back up, write to a temp file beside the target, rename over it."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            mode = stat.S_IMODE(self.path.stat().st_mode) if self.path.exists() else 0o644
            if self.path.exists():
                shutil.copy2(self.path, self.backup_path)
            with open(tmp_path, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, mode)
            os.rename(tmp_path, self.path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise PersistenceWriteError(f"Cannot rewrite {self.path}: {e}") from e
