from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import threading
import time
from pathlib import Path

from ciel_pos.domain.errors import NotFoundError, ValidationError

log = logging.getLogger(__name__)


class BackupService:
    """Whole-database copies taken with the sqlite online backup API.

    Backups only ever read committed state, so they can run while the
    application keeps writing.
    """

    def __init__(self, db_path: Path | str, backup_dir: Path | str, max_backups: int = 30):
        self.db_path = Path(db_path)
        self.backup_dir = Path(backup_dir)
        self.max_backups = int(max_backups)

    def create_backup(self) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        target = self._unused_target("ciel_pos")
        self._copy_database(self.db_path, target)
        self._enforce_retention()
        log.info("backup_created path=%s", target)
        return target

    def create_backup_async(self) -> threading.Thread:
        def run():
            try:
                self.create_backup()
            except (OSError, sqlite3.Error):
                log.exception("backup_failed db=%s", self.db_path)

        thread = threading.Thread(target=run, name="ciel-pos-backup", daemon=True)
        thread.start()
        return thread

    def list_backups(self) -> list[Path]:
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob("ciel_pos_*.sqlite"), reverse=True)

    def restore_backup(self, backup_file: Path | str) -> Path:
        backup_path = Path(backup_file).resolve()
        if backup_path.parent != self.backup_dir.resolve():
            raise ValidationError("Backups can only be restored from the backups directory.")
        if not backup_path.is_file():
            raise NotFoundError(f"Backup not found: {backup_path.name}")

        safety = None
        if self.db_path.exists():
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            safety = self._unused_target("ciel_pos_BEFORE_RESTORE")
            self._copy_database(self.db_path, safety)

        tmp = self.db_path.with_name(self.db_path.name + ".restore_tmp")
        shutil.copy2(backup_path, tmp)
        for suffix in ("-wal", "-shm"):
            Path(str(self.db_path) + suffix).unlink(missing_ok=True)
        os.replace(tmp, self.db_path)
        log.info("backup_restored source=%s safety_copy=%s", backup_path, safety)
        return self.db_path

    def _unused_target(self, stem: str) -> Path:
        millis = int(time.time() * 1000)
        while True:
            target = self.backup_dir / f"{stem}_{millis}.sqlite"
            if not target.exists():
                return target
            millis += 1

    def _copy_database(self, source: Path, target: Path) -> None:
        src = sqlite3.connect(str(source))
        dst = sqlite3.connect(str(target))
        try:
            src.backup(dst)
        finally:
            dst.close()
            src.close()

    def _enforce_retention(self) -> None:
        files = sorted(
            p for p in self.backup_dir.glob("ciel_pos_*.sqlite")
            if not p.name.startswith("ciel_pos_BEFORE_RESTORE")
        )
        if len(files) <= self.max_backups:
            return
        for old in files[: len(files) - self.max_backups]:
            old.unlink(missing_ok=True)
