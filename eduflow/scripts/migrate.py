from __future__ import annotations

import logging
import os
import subprocess
import time

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from eduflow.core.config import settings

logger = logging.getLogger("eduflow.migrate")


def wait_for_db(engine, timeout_s: int = 60) -> None:
    """Wait until the database is accepting connections."""
    start = time.time()
    delay = 1.0

    while True:
        try:
            with engine.begin() as conn:
                conn.execute(text("SELECT 1"))
            return
        except OperationalError:
            if time.time() - start > timeout_s:
                raise
            logger.info("database not ready, retrying in %.1fs", delay)
            time.sleep(delay)
            delay = min(delay * 1.5, 5.0)


def run(cmd: list[str]) -> int:
    p = subprocess.run(cmd, check=False)
    return p.returncode


def ensure_admin(db: Session) -> bool:
    """Create the site admin once. Returns True when a user was added."""
    from eduflow.core.security import hash_password
    from eduflow.db.models.user import User

    exists = db.query(User).filter(User.username == settings.DEFAULT_ADMIN_USERNAME).first()
    if exists:
        return False
    db.add(
        User(
            name=settings.DEFAULT_ADMIN_NAME,
            email=settings.DEFAULT_ADMIN_EMAIL,
            username=settings.DEFAULT_ADMIN_USERNAME,
            password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD),
            is_admin=True,
        )
    )
    db.commit()
    return True


def main() -> int:
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

    # Wait for DB readiness (important in docker-compose)
    wait_for_db(engine, timeout_s=int(os.getenv("DB_WAIT_TIMEOUT", "90")))

    tables = set(inspect(engine).get_table_names())
    if "alembic_version" not in tables and "users" in tables:
        # Existing schema without alembic tracking: stamp head
        rc = run(["alembic", "stamp", "head"])
    else:
        rc = run(["alembic", "upgrade", "head"])
    if rc != 0:
        return rc

    if settings.AUTO_CREATE_ADMIN:
        from eduflow.db.session import SessionLocal

        db = SessionLocal()
        try:
            if ensure_admin(db):
                logger.info("default admin %r created", settings.DEFAULT_ADMIN_USERNAME)
        finally:
            db.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
