"""
One-off migration: re-hash any stored credential that is not yet Argon2.

Rows that already hold an Argon2 hash are left alone, rows with no usable
value are skipped with a warning, and a failure on one row never stops the
rest. Each update commits on its own.

Run from the project root:
    python -m portal.database.migrate_passwords
"""

import logging
import sys
from typing import Dict

from portal.auth_service.passwords import hash_password, is_password_hash
from portal.common.errors import StorageError
from portal.database.db_connection import transaction

log = logging.getLogger(__name__)


def migrate_passwords() -> Dict[str, int]:
    """
    Scan every account and re-hash legacy credentials in place.

    Returns:
        dict: Counters {"updated", "already_hashed", "skipped_invalid"}.

    Raises:
        StorageError: Only if the initial read of all accounts fails.
    """
    with transaction() as cur:
        cur.execute("SELECT user_id, username, password_hash FROM users ORDER BY user_id;")
        users = [dict(row) for row in cur.fetchall()]

    counts = {"updated": 0, "already_hashed": 0, "skipped_invalid": 0}

    for user in users:
        stored = user["password_hash"]

        if is_password_hash(stored):
            counts["already_hashed"] += 1
            continue

        if not isinstance(stored, str) or not stored.strip():
            counts["skipped_invalid"] += 1
            log.warning(f"Skipping user {user['user_id']} ({user['username']}): missing password value")
            continue

        try:
            new_hash = hash_password(stored)
            with transaction() as cur:
                cur.execute(
                    "UPDATE users SET password_hash = %s WHERE user_id = %s;",
                    (new_hash, user["user_id"]),
                )
        except StorageError as e:
            counts["skipped_invalid"] += 1
            log.warning(f"Skipping user {user['user_id']} ({user['username']}): update failed ({e.__cause__ or e})")
            continue

        counts["updated"] += 1
        log.info(f"Updated password for user {user['user_id']} ({user['username']})")

    return counts


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(asctime)s - %(message)s")
    log.info("Starting password hash migration...")
    try:
        counts = migrate_passwords()
    except StorageError as e:
        log.error(f"Password migration failed: {e.__cause__ or e}")
        return 1

    log.info("Password hash migration complete.")
    log.info(f"Updated: {counts['updated']}")
    log.info(f"Already hashed: {counts['already_hashed']}")
    log.info(f"Skipped (invalid): {counts['skipped_invalid']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
