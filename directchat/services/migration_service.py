import logging
import subprocess
import sys
from pathlib import Path

from sqlalchemy.engine import make_url

from directchat.core.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def ensure_sqlite_directory(database_url: str) -> None:
    """SQLite won't create missing parent directories for its database file."""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
        return
    db_dir = Path(url.database).parent
    if not db_dir.exists():
        logger.info(f"Creating database directory: {db_dir}")
        db_dir.mkdir(parents=True, exist_ok=True)


async def run_migrations():
    """Run database migrations using alembic programmatically."""
    try:
        logger.info("Running database migrations...")
        ensure_sqlite_directory(settings.DATABASE_URL)

        try:
            subprocess.run(
                ["alembic", "--version"], check=True, capture_output=True, text=True
            )
            alembic_cmd = ["alembic"]
        except (subprocess.CalledProcessError, FileNotFoundError):
            alembic_cmd = [sys.executable, "-m", "alembic"]

        # alembic.ini lives at the project root
        result = subprocess.run(
            alembic_cmd + ["upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            cwd=str(PROJECT_ROOT),
        )
        logger.info("Migrations completed successfully")
        if result.stdout:
            logger.info(f"Alembic output: {result.stdout}")

    except subprocess.CalledProcessError as e:
        logger.error(f"Migration failed with exit code {e.returncode}")
        if e.stdout:
            logger.error(f"Stdout: {e.stdout}")
        if e.stderr:
            logger.error(f"Stderr: {e.stderr}")
        raise RuntimeError("Database migration failed") from e
    except Exception as e:
        logger.error(f"Unexpected error during migration: {e}")
        raise RuntimeError("Database migration failed") from e
