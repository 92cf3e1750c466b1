import sqlite3
from pathlib import Path

import pytest

from conftest import add_product, stock_of
from ciel_pos.domain.errors import NotFoundError, ValidationError
from ciel_pos.domain.models import SaleItem
from ciel_pos.repositories.sqlite_repo import SqliteRepository
from ciel_pos.services.backup_service import BackupService


def test_migrations_are_idempotent_and_versioned(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "m.sqlite")
    repo.init_db()
    repo.init_db()
    assert repo.schema_version() == 2
    assert repo.integrity_check() == "ok"


def test_stock_check_constraint_is_enforced(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "c.sqlite")
    repo.init_db()
    conn = repo._conn()
    conn.execute("INSERT INTO products (barcode, name) VALUES ('A', 'a')")
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("UPDATE products SET store_stock = -1 WHERE barcode = 'A'")
    conn.close()


def test_failed_migration_restores_original_db(tmp_path: Path):
    db = tmp_path / "broken.sqlite"
    repo = SqliteRepository(db)
    repo.init_db()
    conn = sqlite3.connect(db)
    conn.execute("INSERT INTO products (barcode, name) VALUES ('KEEP', 'keep me')")
    conn.execute("DELETE FROM schema_migrations WHERE version = 2")
    conn.commit()
    conn.close()

    class BrokenRepo(SqliteRepository):
        def _migration_v2_returns_cleanup(self, cur):
            raise sqlite3.OperationalError("boom")

    with pytest.raises(RuntimeError, match="restored"):
        BrokenRepo(db).run_migrations()

    assert SqliteRepository(db).get_product("KEEP") is not None


def test_backup_and_restore_roundtrip(app, tmp_path: Path):
    add_product(app, "A", store=5, warehouse=0)
    backup = app.backup.create_backup()
    assert backup.parent == app.backup.backup_dir
    assert backup in app.backup.list_backups()

    app.sales.create_sale([SaleItem("A", 5, 10.0)])
    assert stock_of(app, "A") == (0, 0, 0)

    app.backup.restore_backup(backup)

    assert stock_of(app, "A") == (5, 0, 5)
    safety = [p for p in app.backup.list_backups() if "BEFORE_RESTORE" in p.name]
    assert len(safety) == 1


def test_restore_rejects_files_outside_backup_dir(app, tmp_path: Path):
    stray = tmp_path / "stray.sqlite"
    stray.write_bytes(b"")
    with pytest.raises(ValidationError):
        app.backup.restore_backup(stray)
    with pytest.raises(NotFoundError):
        app.backup.restore_backup(app.backup.backup_dir / "ciel_pos_1.sqlite")


def test_async_backup_runs_in_background(app):
    thread = app.backup.create_backup_async()
    thread.join(timeout=10)
    assert not thread.is_alive()
    assert len(app.backup.list_backups()) == 1


def test_backup_retention(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "r.sqlite")
    repo.init_db()
    service = BackupService(tmp_path / "r.sqlite", tmp_path / "backups", max_backups=2)
    for _ in range(4):
        service.create_backup()
    assert len(service.list_backups()) == 2
