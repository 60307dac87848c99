"""Block until Postgres accepts connections (containers start the API before the DB is ready)."""
import logging
import os
import time

import psycopg2

from app.core.config import settings

logger = logging.getLogger("wait_for_db")


def wait_for_db(url: str, timeout_s: int = 60) -> None:
    if not url.startswith("postgres"):
        return
    # psycopg2 wants a libpq URL, not the SQLAlchemy dialect form
    dsn = url.replace("postgresql+psycopg2://", "postgresql://")
    start = time.time()
    logger.info("waiting for postgres (timeout=%ss)", timeout_s)
    while True:
        try:
            psycopg2.connect(dsn).close()
            logger.info("postgres is ready")
            return
        except psycopg2.OperationalError:
            if time.time() - start > timeout_s:
                logger.error("timed out waiting for postgres")
                raise
            time.sleep(1)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    wait_for_db(settings.DATABASE_URL, int(os.getenv("DB_WAIT_TIMEOUT", "60")))
