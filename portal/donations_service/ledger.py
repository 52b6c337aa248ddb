"""
Donation ledger.

Each donation row stores a snapshot of the donor's running total. The
donor's users row is locked (SELECT ... FOR UPDATE) before the prior sum is
read, so concurrent donations for one account are serialized and the
snapshots strictly increase in insertion order.

All functions take the cursor of an open transaction (see
portal.database.db_connection.transaction); none of them commit.
"""

import logging
import re
import secrets
import time
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from portal.auth_service.passwords import hash_password
from portal.auth_service.utils import Actor, Role
from portal.common import config
from portal.common.errors import ConfigurationError, InvalidAccount, NotFoundError
from portal.common.validators import round2

log = logging.getLogger(__name__)

USERNAME_SEPARATORS = re.compile(r"[^a-z0-9]+")

DONATION_COLUMNS = "donation_id, user_id, amount, donated_on, cumulative_total"


# --- ACCOUNT LOOKUPS ---
def find_user_by_id(cur, user_id: Any) -> Optional[Dict[str, Any]]:
    if not user_id:
        return None
    cur.execute("SELECT user_id, username, email FROM users WHERE user_id = %s;", (user_id,))
    row = cur.fetchone()
    return dict(row) if row else None


def find_user_by_email(cur, email: Optional[str]) -> Optional[Dict[str, Any]]:
    """Case-insensitive lookup; the oldest account wins if several share an address."""
    if not email:
        return None
    cur.execute(
        """
        SELECT user_id, username, email FROM users
        WHERE LOWER(email) = LOWER(%s)
        ORDER BY user_id
        LIMIT 1;
        """,
        (email,),
    )
    row = cur.fetchone()
    return dict(row) if row else None


def generate_unique_username(cur, base: Optional[str]) -> str:
    """
    Turn an email or name into a username no one has yet.

    "Jane.Doe@Example.org" -> "jane.doe.example.org", then
    "jane.doe.example.org1", "jane.doe.example.org2", ... on collision.
    """
    cleaned = USERNAME_SEPARATORS.sub(".", (base or "").lower()).strip(".")
    if not cleaned:
        cleaned = f"donor{int(time.time() * 1000)}"

    attempt = cleaned
    counter = 1
    while True:
        cur.execute("SELECT user_id FROM users WHERE username = %s;", (attempt,))
        if not cur.fetchone():
            return attempt
        attempt = f"{cleaned}{counter}"
        counter += 1


def create_support_user(cur, first_name: Optional[str], last_name: Optional[str], email: Optional[str]) -> Dict[str, Any]:
    """
    Provision a participant account for a guest donor.

    The random password is hashed and discarded; the donor can be given
    access later by an admin resetting it.
    """
    username_base = email or f"{first_name or 'donor'}.{last_name or 'supporter'}"
    username = generate_unique_username(cur, username_base)
    password_hash = hash_password(secrets.token_hex(8))

    cur.execute(
        """
        INSERT INTO users (username, password_hash, role, first_name, last_name, email)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING user_id, username, email;
        """,
        (username, password_hash, Role.PARTICIPANT.value, first_name, last_name, email),
    )
    created = dict(cur.fetchone())
    log.info(f"Created support account {created['user_id']} ({username}) for a guest donor")
    return created


def find_or_create_support_user(cur, first_name: Optional[str], last_name: Optional[str], email: Optional[str]) -> Dict[str, Any]:
    existing = find_user_by_email(cur, email)
    if existing:
        return existing
    return create_support_user(cur, first_name, last_name, email)


def get_anonymous_donor_user(cur) -> Dict[str, Any]:
    """
    Return the account that receives anonymous donations.

    Raises:
        ConfigurationError: ANONYMOUS_DONOR_USER_ID is not set.
        NotFoundError: The configured id has no account.
    """
    donor_id = config.ANONYMOUS_DONOR_USER_ID
    if not donor_id:
        raise ConfigurationError(
            "Anonymous donor user ID is not configured. Please set ANONYMOUS_DONOR_USER_ID in your environment."
        )
    user = find_user_by_id(cur, donor_id)
    if not user:
        raise NotFoundError(f"Anonymous donor user with ID {donor_id} was not found in the database")
    return user


def resolve_donor(cur, actor: Optional[Actor], first_name: Optional[str] = None,
                  last_name: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
    """
    Pick the account a public donation is credited to.

    Logged-in callers donate as themselves; guests who leave an email get a
    (found or new) support account; everyone else is the anonymous donor.
    """
    if actor is not None:
        user = find_user_by_id(cur, actor.account_id)
        if not user:
            raise NotFoundError("Your account could not be found")
        return user
    if email:
        return find_or_create_support_user(cur, first_name, last_name, email)
    return get_anonymous_donor_user(cur)


# --- LEDGER ---
def _lock_account(cur, user_id: int) -> None:
    cur.execute("SELECT user_id FROM users WHERE user_id = %s FOR UPDATE;", (user_id,))
    if not cur.fetchone():
        raise NotFoundError("User not found")


def record_donation(cur, user_id: Any, amount: Any, donated_on: Optional[str] = None) -> Dict[str, Any]:
    """
    Insert a donation with its cumulative-total snapshot.

    Args:
        cur: Cursor of an open transaction.
        user_id (int): Donor account id.
        amount (Decimal): Positive amount, already sanitized.
        donated_on (str, optional): ISO date; defaults to today.

    Returns:
        dict: The inserted donation row.

    Raises:
        InvalidAccount: user_id is missing.
        NotFoundError: user_id does not resolve to an account.
    """
    if not user_id:
        raise InvalidAccount()

    _lock_account(cur, user_id)

    cur.execute(
        "SELECT COALESCE(SUM(amount), 0) AS prior_total FROM donations WHERE user_id = %s;",
        (user_id,),
    )
    row = cur.fetchone()
    prior_total = Decimal(str(row["prior_total"])) if row and row["prior_total"] is not None else Decimal("0")
    cumulative_total = round2(prior_total + Decimal(str(amount)))

    cur.execute(
        f"""
        INSERT INTO donations (user_id, amount, donated_on, cumulative_total)
        VALUES (%s, %s, %s, %s)
        RETURNING {DONATION_COLUMNS};
        """,
        (user_id, round2(amount), donated_on or date.today().isoformat(), cumulative_total),
    )
    return dict(cur.fetchone())


def record_support_metadata(cur, donation_id: int, first_name: Optional[str], last_name: Optional[str],
                            email: Optional[str], message: Optional[str]) -> bool:
    """Attach donor-supplied details to a donation. Skipped when all are empty."""
    if not any((first_name, last_name, email, message)):
        return False
    cur.execute(
        """
        INSERT INTO support_donation_metadata (donation_id, first_name, last_name, email, message)
        VALUES (%s, %s, %s, %s, %s);
        """,
        (donation_id, first_name, last_name, email, message),
    )
    return True


def rebuild_cumulative_totals(cur, user_id: int) -> int:
    """
    Recompute every snapshot for one account in insertion order.

    Called after an admin edits or deletes a donation so that later
    snapshots do not drift.

    Returns:
        int: Number of rows whose snapshot changed.
    """
    _lock_account(cur, user_id)
    cur.execute(
        "SELECT donation_id, amount, cumulative_total FROM donations WHERE user_id = %s ORDER BY donation_id;",
        (user_id,),
    )
    rows = cur.fetchall()

    running = Decimal("0")
    changed = 0
    for row in rows:
        running = round2(running + Decimal(str(row["amount"])))
        if row["cumulative_total"] is None or Decimal(str(row["cumulative_total"])) != running:
            cur.execute(
                "UPDATE donations SET cumulative_total = %s WHERE donation_id = %s;",
                (running, row["donation_id"]),
            )
            changed += 1
    return changed


def get_donation(cur, donation_id: int) -> Dict[str, Any]:
    cur.execute(
        """
        SELECT d.donation_id, d.user_id, d.amount, d.donated_on, d.cumulative_total,
               u.username, u.first_name, u.last_name
        FROM donations d
        JOIN users u ON d.user_id = u.user_id
        WHERE d.donation_id = %s;
        """,
        (donation_id,),
    )
    row = cur.fetchone()
    if not row:
        raise NotFoundError("Donation not found")
    return dict(row)


def update_donation(cur, donation_id: int, user_id: int, amount: Decimal, donated_on: Optional[str]) -> Dict[str, Any]:
    """Admin edit. Rebuilds snapshots for the old and, if moved, the new donor."""
    existing = get_donation(cur, donation_id)
    _lock_account(cur, user_id)

    cur.execute(
        f"""
        UPDATE donations
        SET user_id = %s, amount = %s, donated_on = COALESCE(%s, donated_on)
        WHERE donation_id = %s
        RETURNING {DONATION_COLUMNS};
        """,
        (user_id, round2(amount), donated_on, donation_id),
    )
    updated = dict(cur.fetchone())

    rebuild_cumulative_totals(cur, user_id)
    if existing["user_id"] != user_id:
        rebuild_cumulative_totals(cur, existing["user_id"])
    return updated


def delete_donation(cur, donation_id: int) -> None:
    existing = get_donation(cur, donation_id)
    cur.execute("DELETE FROM donations WHERE donation_id = %s;", (donation_id,))
    rebuild_cumulative_totals(cur, existing["user_id"])
