import logging
import os
import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("journaldesk.migrations")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "supabase" / "migrations"


def _get_db_url() -> str:
    for key in ("DATABASE_URL", "SUPABASE_DB_URL"):
        raw = (os.environ.get(key) or "").strip()
        if raw:
            return raw
    return ""


def run_migrations() -> int:
    """
    按文件名顺序执行 supabase/migrations/*.sql。

    中文注释: 迁移脚本全部使用 if not exists，可重复执行。
    """
    load_dotenv()
    db_url = _get_db_url()
    if not db_url:
        logger.error("DATABASE_URL (or SUPABASE_DB_URL) is not configured")
        return 1

    files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    conn = psycopg2.connect(db_url)
    try:
        conn.autocommit = True
        with conn.cursor() as cur:
            for path in files:
                logger.info("Applying %s", path.name)
                cur.execute(path.read_text(encoding="utf-8"))
    finally:
        conn.close()
    logger.info("Applied %s migration file(s)", len(files))
    return 0


if __name__ == "__main__":
    sys.exit(run_migrations())
