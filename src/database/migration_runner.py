"""
Alembic upgrade for the studio schema.

The baseline revision is PostgreSQL DDL, so only PostgreSQL URLs are migrated.
Concurrent deploys serialize on a session advisory lock keyed by `lock_name`.
"""

import hashlib
import logging
import time
from contextlib import contextmanager

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text

from src.database.connection import is_sqlite_url

logger = logging.getLogger(__name__)

LOCK_POLL_SECONDS = 0.5


def advisory_lock_key(name: str) -> int:
    """bigint estable para pg_advisory_lock a partir del nombre del lock."""
    digest = hashlib.sha256(str(name or "").strip().lower().encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@contextmanager
def _migration_lock(conn, lock_name: str, timeout_seconds: int):
    key = advisory_lock_key(lock_name)
    deadline = time.monotonic() + max(1, int(timeout_seconds))
    while not conn.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": key}).scalar():
        if time.monotonic() >= deadline:
            raise TimeoutError(f"Otra migración tiene el lock '{lock_name}' (key={key})")
        time.sleep(LOCK_POLL_SECONDS)
    try:
        yield
    finally:
        conn.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": key})


def upgrade_head(
    *,
    sqlalchemy_url: str,
    cfg_path: str,
    script_location: str,
    lock_name: str,
    lock_timeout_seconds: int = 120,
    verify_revision: bool = True,
) -> str:
    """Aplica las revisiones pendientes y devuelve la revisión resultante."""
    url = str(sqlalchemy_url or "").strip()
    if not url:
        raise ValueError("sqlalchemy_url vacío")
    if is_sqlite_url(url):
        raise ValueError("Las migraciones requieren PostgreSQL; SQLite usa Base.metadata.create_all")

    cfg = Config(str(cfg_path))
    cfg.set_main_option("script_location", str(script_location))
    cfg.set_main_option("sqlalchemy.url", url)
    head = ScriptDirectory.from_config(cfg).get_current_head()

    engine = create_engine(url, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            with _migration_lock(conn, lock_name, lock_timeout_seconds):
                before = MigrationContext.configure(conn).get_current_revision()
                # env.py reutiliza esta conexión en lugar de abrir otra
                cfg.attributes["connection"] = conn
                command.upgrade(cfg, "head")
                current = MigrationContext.configure(conn).get_current_revision()
                if verify_revision and current != head:
                    raise RuntimeError(f"alembic_version={current} != head={head}")
                conn.commit()
    finally:
        engine.dispose()
    logger.info(f"Migraciones [{lock_name}]: {before or 'vacía'} -> {current}")
    return current
