"""
PostgreSQL connection helper.
Provides get_db() and the transaction() unit of work used by every service.
"""

import logging
import os
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.extras import DictCursor
from dotenv import load_dotenv

from portal.common.errors import StorageError

# Load .env variables from the project root
load_dotenv()

# Get the database URL from environment variable
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set. Please set the environment variable.")


def get_db():
    """
    Returns a new psycopg2 connection with dictionary-based row access.

    Returns:
        psycopg2.extensions.connection: A connection object with DictCursor factory.

    Raises:
        psycopg2.Error: If connection fails.
    """
    try:
        conn = psycopg2.connect(DATABASE_URL)

        # Rows behave like dictionaries (e.g., {"user_id": 1, "email": "..."})
        conn.cursor_factory = DictCursor
        return conn
    except Exception as e:
        logging.error(f"Error connecting to database: {e}")
        raise


@contextmanager
def transaction() -> Iterator[DictCursor]:
    """
    Run a block of statements as one all-or-nothing unit.

    Commits when the block finishes, rolls back when it raises, and always
    closes the connection. Driver errors surface as StorageError; domain
    errors raised inside the block propagate unchanged after the rollback.

    Usage:
        with transaction() as cur:
            cur.execute(...)

    Yields:
        DictCursor: Cursor bound to the open transaction.

    Raises:
        StorageError: On connection or statement failure.
    """
    try:
        conn = get_db()
    except psycopg2.Error as e:
        raise StorageError("Could not connect to the database") from e

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        raise StorageError() from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
