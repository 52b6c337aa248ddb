"""
Account helpers: form payload validation and the cascading delete.
"""

import logging
from typing import Any, Dict, List, Mapping, Tuple

from portal.common.errors import CascadeDeleteFailed, InvalidAccountId, NotFoundError, PortalError
from portal.common.validators import (
    has_text,
    sanitize_email,
    sanitize_int,
    sanitize_iso_date,
    sanitize_phone,
    sanitize_text,
    sanitize_zip,
)
from portal.database.db_connection import transaction

log = logging.getLogger(__name__)

PROFILE_TEXT_FIELDS = ["city", "state", "school_or_employer", "field_of_interest"]


def build_account_payload(form: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Clean the profile fields of a user form.

    Names are required. Email, phone, ZIP and date of birth are optional,
    but when filled in they must be valid.

    Returns:
        tuple: (payload, errors). Show errors[0] when the list is not empty.
    """
    payload = {
        "first_name": sanitize_text(form.get("first_name")),
        "last_name": sanitize_text(form.get("last_name")),
        "email": None,
        "phone": None,
        "zip": None,
        "dob": None,
    }
    for field in PROFILE_TEXT_FIELDS:
        payload[field] = sanitize_text(form.get(field))

    errors = []

    if not payload["first_name"] or not payload["last_name"]:
        errors.append("First and last name are required")

    if has_text(form.get("email")):
        payload["email"] = sanitize_email(form.get("email"))
        if not payload["email"]:
            errors.append("Email must be valid")

    if has_text(form.get("phone")):
        payload["phone"] = sanitize_phone(form.get("phone"))
        if not payload["phone"]:
            errors.append("Phone number must include at least 10 digits")

    if has_text(form.get("zip")):
        payload["zip"] = sanitize_zip(form.get("zip"))
        if not payload["zip"]:
            errors.append("ZIP code must be 5 or 9 digits")

    if has_text(form.get("dob")):
        payload["dob"] = sanitize_iso_date(form.get("dob"))
        if not payload["dob"]:
            errors.append("Date of birth must be a valid YYYY-MM-DD value")

    return payload, errors


def delete_account_with_relations(raw_user_id: Any) -> Dict[str, int]:
    """
    Delete a user and every row that depends on it, all or nothing.

    Order: surveys of the user's registrations, registrations, milestones,
    donations, then the user row itself.

    Args:
        raw_user_id: Positive integer id (str or int).

    Returns:
        dict: Number of rows removed per table.

    Raises:
        InvalidAccountId: The id is not a positive integer.
        NotFoundError: No such user.
        CascadeDeleteFailed: Any delete failed; nothing was removed.
    """
    user_id = sanitize_int(raw_user_id, min_value=1)
    if user_id is None:
        raise InvalidAccountId()

    removed = {}
    try:
        with transaction() as cur:
            cur.execute("SELECT user_id FROM users WHERE user_id = %s FOR UPDATE;", (user_id,))
            if not cur.fetchone():
                raise NotFoundError("User not found")

            cur.execute("SELECT registration_id FROM registrations WHERE user_id = %s;", (user_id,))
            registration_ids = [row["registration_id"] for row in cur.fetchall()]

            removed["surveys"] = 0
            if registration_ids:
                cur.execute("DELETE FROM surveys WHERE registration_id = ANY(%s);", (registration_ids,))
                removed["surveys"] = cur.rowcount

            cur.execute("DELETE FROM registrations WHERE user_id = %s;", (user_id,))
            removed["registrations"] = cur.rowcount
            cur.execute("DELETE FROM milestones WHERE user_id = %s;", (user_id,))
            removed["milestones"] = cur.rowcount
            cur.execute("DELETE FROM donations WHERE user_id = %s;", (user_id,))
            removed["donations"] = cur.rowcount
            cur.execute("DELETE FROM users WHERE user_id = %s;", (user_id,))
            removed["users"] = cur.rowcount
    except NotFoundError:
        raise
    except PortalError as e:
        log.error(f"Cascade delete of user {user_id} rolled back: {e.__cause__ or e}")
        raise CascadeDeleteFailed() from e

    log.info(f"Deleted user {user_id} with related rows {removed}")
    return removed
