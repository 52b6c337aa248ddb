"""
Registration rules for event occurrences.

A (user, occurrence) pair is either unregistered or registered. Registering
locks the occurrence row first, so the capacity count and the insert see a
consistent picture even when two people race for the last seat. The unique
(user_id, occurrence_id) constraint is the backstop for duplicates.

Functions take the cursor of an open transaction and never commit.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import psycopg2.errors

from portal.auth_service.utils import Actor
from portal.common.errors import (
    AlreadyRegistered,
    DeadlinePassed,
    EventAlreadyStarted,
    EventFull,
    EventInPast,
    EventNotFound,
    NotFoundError,
    Unauthorized,
)

log = logging.getLogger(__name__)

CONFIRMED = "Confirmed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps from the database as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _lock_occurrence(cur, occurrence_id: int) -> Dict[str, Any]:
    cur.execute(
        """
        SELECT occurrence_id, starts_at, ends_at, capacity, registration_deadline
        FROM event_occurrences
        WHERE occurrence_id = %s
        FOR UPDATE;
        """,
        (occurrence_id,),
    )
    row = cur.fetchone()
    if not row:
        raise EventNotFound()
    return dict(row)


def register(cur, actor: Actor, occurrence_id: int, account_id: Optional[int] = None,
             now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Register an account for an event occurrence.

    Args:
        cur: Cursor of an open transaction.
        actor (Actor): The caller. Participants may only register themselves.
        occurrence_id (int): Target occurrence.
        account_id (int, optional): Account to register; defaults to the caller.
        now (datetime, optional): Clock override for tests.

    Returns:
        dict: The new registration row.

    Raises:
        Unauthorized: A participant tried to register someone else.
        EventNotFound: No such occurrence.
        EventInPast: The occurrence has already started.
        DeadlinePassed: The registration deadline is behind us.
        AlreadyRegistered: The pair already has a registration.
        EventFull: The occurrence is at capacity.
    """
    now = now or utc_now()
    account_id = account_id or actor.account_id
    if not actor.can_act_for(account_id):
        raise Unauthorized()

    occurrence = _lock_occurrence(cur, occurrence_id)

    if as_aware(occurrence["starts_at"]) <= now:
        raise EventInPast()

    deadline = as_aware(occurrence["registration_deadline"])
    if deadline is not None and now > deadline:
        raise DeadlinePassed()

    cur.execute(
        "SELECT registration_id FROM registrations WHERE user_id = %s AND occurrence_id = %s;",
        (account_id, occurrence_id),
    )
    if cur.fetchone():
        raise AlreadyRegistered()

    capacity = occurrence["capacity"]
    if capacity is not None:
        cur.execute(
            "SELECT COUNT(*) AS registered FROM registrations WHERE occurrence_id = %s;",
            (occurrence_id,),
        )
        if cur.fetchone()["registered"] >= capacity:
            raise EventFull()

    try:
        cur.execute(
            """
            INSERT INTO registrations (user_id, occurrence_id, status, created_at, attended, checked_in_at)
            VALUES (%s, %s, %s, %s, FALSE, NULL)
            RETURNING registration_id, user_id, occurrence_id, status, created_at, attended, checked_in_at;
            """,
            (account_id, occurrence_id, CONFIRMED, now),
        )
    except psycopg2.errors.UniqueViolation as e:
        raise AlreadyRegistered() from e

    registration = dict(cur.fetchone())
    log.info(f"User {account_id} registered for occurrence {occurrence_id}")
    return registration


def _lock_registration(cur, registration_id: int) -> Dict[str, Any]:
    cur.execute(
        """
        SELECT r.registration_id, r.user_id, r.occurrence_id, r.attended,
               eo.starts_at, eo.ends_at
        FROM registrations r
        JOIN event_occurrences eo ON r.occurrence_id = eo.occurrence_id
        WHERE r.registration_id = %s
        FOR UPDATE OF r;
        """,
        (registration_id,),
    )
    row = cur.fetchone()
    if not row:
        raise NotFoundError("Registration not found")
    return dict(row)


def unregister(cur, actor: Actor, registration_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Cancel a registration before its event starts. Any survey goes with it.

    Raises:
        NotFoundError: No such registration.
        Unauthorized: Caller is neither the owner nor an admin.
        EventAlreadyStarted: The occurrence has started.
    """
    now = now or utc_now()
    registration = _lock_registration(cur, registration_id)

    if not actor.can_act_for(registration["user_id"]):
        raise Unauthorized()

    if as_aware(registration["starts_at"]) <= now:
        raise EventAlreadyStarted()

    cur.execute("DELETE FROM surveys WHERE registration_id = %s;", (registration_id,))
    cur.execute("DELETE FROM registrations WHERE registration_id = %s;", (registration_id,))
    log.info(f"Registration {registration_id} cancelled by user {actor.account_id}")
    return registration


def record_attendance(cur, actor: Actor, registration_id: int, attended: bool,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
    """Admin check-in: set or clear the attendance flag and check-in time."""
    if not actor.is_admin:
        raise Unauthorized()

    _lock_registration(cur, registration_id)
    checked_in_at = (now or utc_now()) if attended else None
    cur.execute(
        """
        UPDATE registrations
        SET attended = %s, checked_in_at = %s
        WHERE registration_id = %s
        RETURNING registration_id, user_id, occurrence_id, attended, checked_in_at;
        """,
        (attended, checked_in_at, registration_id),
    )
    return dict(cur.fetchone())


def list_registrations_for_account(cur, account_id: int) -> List[Dict[str, Any]]:
    cur.execute(
        """
        SELECT r.registration_id, r.created_at, r.status, r.attended, r.checked_in_at,
               et.name AS event_name, et.event_type, et.description,
               eo.occurrence_id, eo.starts_at, eo.ends_at, eo.location, eo.capacity,
               s.survey_id
        FROM registrations r
        JOIN event_occurrences eo ON r.occurrence_id = eo.occurrence_id
        JOIN event_templates et ON eo.template_id = et.template_id
        LEFT JOIN surveys s ON r.registration_id = s.registration_id
        WHERE r.user_id = %s
        ORDER BY eo.starts_at DESC;
        """,
        (account_id,),
    )
    return [dict(row) for row in cur.fetchall()]


def list_roster(cur, occurrence_id: int) -> List[Dict[str, Any]]:
    cur.execute(
        """
        SELECT r.registration_id, r.user_id, r.status, r.attended, r.checked_in_at, r.created_at,
               u.username, u.first_name, u.last_name, u.email
        FROM registrations r
        JOIN users u ON r.user_id = u.user_id
        WHERE r.occurrence_id = %s
        ORDER BY r.created_at;
        """,
        (occurrence_id,),
    )
    return [dict(row) for row in cur.fetchall()]
