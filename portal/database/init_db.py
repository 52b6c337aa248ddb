"""
Apply schema.sql and confirm the critical tables exist.

Run from the project root:
    python -m portal.database.init_db
"""

import logging
import os
import sys
from typing import List

from portal.common.errors import StorageError
from portal.database.db_connection import transaction

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "schema.sql")

CRITICAL_TABLES = [
    "users",
    "event_templates",
    "event_occurrences",
    "registrations",
    "surveys",
    "milestones",
    "donations",
    "support_donation_metadata",
]


def load_schema(path: str = SCHEMA_PATH) -> str:
    with open(path, encoding="utf-8") as fh:
        return fh.read()


def init_db() -> List[str]:
    """
    Create all tables (idempotent) and report which critical tables are missing.

    Returns:
        list[str]: Names of tables that still do not exist. Empty on success.
    """
    schema_sql = load_schema()

    with transaction() as cur:
        cur.execute(schema_sql)

    missing = []
    with transaction() as cur:
        for table in CRITICAL_TABLES:
            cur.execute("SELECT to_regclass(%s) AS found;", (table,))
            row = cur.fetchone()
            if not row or not row["found"]:
                missing.append(table)
                logging.warning(f" - {table}: MISSING")
            else:
                logging.info(f" - {table}: Found")
    return missing


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(asctime)s - %(message)s")
    logging.info("--- Applying database schema ---")
    try:
        missing = init_db()
    except StorageError as e:
        logging.error(f"Schema setup FAILED: {e.__cause__ or e}")
        return 1

    if missing:
        logging.error(f"Schema setup incomplete; missing tables: {', '.join(missing)}")
        return 1

    logging.info("Schema setup complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
