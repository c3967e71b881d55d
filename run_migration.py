"""
Migration runner
Usage:
    python run_migration.py migrations/<name>.sql
    python run_migration.py migrations/<name>.py [--down]
"""
import importlib.util
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from sqlalchemy import text

from app.database import engine

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


def split_statements(sql: str) -> list[str]:
    """Split a SQL script on ';', dropping blanks and comment-only chunks"""
    statements = []
    for chunk in sql.split(";"):
        lines = [line for line in chunk.splitlines() if not line.strip().startswith("--")]
        stmt = "\n".join(lines).strip()
        if stmt:
            statements.append(stmt)
    return statements


def run_sql_migration(migration_file: Path):
    logger.info(f"Reading migration file: {migration_file}")
    statements = split_statements(migration_file.read_text())
    logger.info(f"Found {len(statements)} SQL statements to execute")

    with engine.connect() as conn:
        for i, stmt in enumerate(statements, 1):
            logger.info(f"Executing statement {i}/{len(statements)}...")
            conn.execute(text(stmt))
        conn.commit()


def run_python_migration(migration_file: Path, down: bool = False):
    spec = importlib.util.spec_from_file_location(migration_file.stem, migration_file)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    step = module.downgrade if down else module.upgrade
    logger.info(f"Running {migration_file.stem}.{step.__name__}()")
    step()


def run_migration(migration_file_path: str, down: bool = False):
    migration_file = Path(migration_file_path)
    if not migration_file.exists():
        logger.error(f"Migration file not found: {migration_file}")
        sys.exit(1)

    if migration_file.suffix == ".py":
        run_python_migration(migration_file, down=down)
    else:
        run_sql_migration(migration_file)

    logger.info("✅ Migration completed successfully!")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        logger.error("Usage: python run_migration.py <migration_file.sql|.py> [--down]")
        sys.exit(1)

    try:
        run_migration(sys.argv[1], down="--down" in sys.argv[2:])
    except Exception as e:
        logger.error(f"❌ Migration failed: {e}")
        sys.exit(1)
