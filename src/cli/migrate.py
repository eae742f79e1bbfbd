import argparse
import logging
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from src.database.connection import get_database_url
from src.database.migration_runner import upgrade_head

logger = logging.getLogger(__name__)


def migrate_database(
    *,
    url: Optional[str] = None,
    lock_timeout_seconds: int = 120,
    verify_revision: bool = True,
) -> None:
    here = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
    upgrade_head(
        sqlalchemy_url=url or get_database_url(),
        cfg_path=os.path.join(here, "alembic.ini"),
        script_location=os.path.join(here, "alembic"),
        lock_name="aleris-db",
        lock_timeout_seconds=int(lock_timeout_seconds),
        verify_revision=bool(verify_revision),
    )


def main() -> None:
    parser = argparse.ArgumentParser(prog="aleris-migrate")
    parser.add_argument("--database-url", type=str, default=None)
    parser.add_argument("--lock-timeout-seconds", type=int, default=120)
    parser.add_argument("--skip-verify", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    try:
        migrate_database(
            url=args.database_url,
            lock_timeout_seconds=int(args.lock_timeout_seconds),
            verify_revision=not bool(args.skip_verify),
        )
    except Exception as e:
        logger.error(f"Migración fallida: {e}")
        raise SystemExit(f"Migración fallida: {e}")


if __name__ == "__main__":
    main()
