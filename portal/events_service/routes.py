"""
Events service routes: list and view event occurrences, admin management of
templates and occurrences, and registration for an occurrence.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from flask import Blueprint, Response, flash, redirect, render_template, request, url_for

from portal.auth_service.utils import Role, current_actor, get_actor
from portal.common.errors import ConflictError, NotFoundError
from portal.common.mailer import send_email
from portal.common.validators import has_text, sanitize_int, sanitize_text
from portal.database.db_connection import transaction
from portal.registrations_service.capacity import as_aware, list_roster, register

events_bp = Blueprint("events", __name__)

# --- CONSTANTS FOR VALIDATION ---
NAME_MAX_LENGTH = 200

OCCURRENCE_SQL = """
    SELECT
        eo.occurrence_id, eo.template_id, eo.starts_at, eo.ends_at, eo.location,
        eo.capacity, eo.registration_deadline,
        et.name, et.event_type, et.description, et.recurrence_pattern, et.default_capacity,
        (SELECT COUNT(*) FROM registrations r WHERE r.occurrence_id = eo.occurrence_id) AS registered_count
    FROM event_occurrences eo
    JOIN event_templates et ON eo.template_id = et.template_id
"""


def parse_dt(val: Optional[str]) -> Optional[datetime]:
    """
    Safely parse an ISO-8601 or datetime-local string to an aware datetime.

    Args:
        val (str): The date string to parse.

    Returns:
        datetime: The parsed datetime (UTC when no offset was given), or None if invalid.
    """
    if not val:
        return None
    try:
        # Handles 'YYYY-MM-DDTHH:MM' and '...Z' or '...+00:00'
        if val.endswith("Z"):
            val = val[:-1] + "+00:00"
        return as_aware(datetime.fromisoformat(val))
    except (ValueError, TypeError):
        return None


def build_event_payload(form: Mapping[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any], List[str]]:
    """
    Validate the admin event form.

    Returns:
        tuple: (template_fields, occurrence_fields, errors)
    """
    errors = []

    template = {
        "name": sanitize_text(form.get("name")),
        "event_type": sanitize_text(form.get("event_type")),
        "description": sanitize_text(form.get("description")),
        "recurrence_pattern": sanitize_text(form.get("recurrence_pattern")),
        "default_capacity": sanitize_int(form.get("default_capacity"), min_value=1),
    }
    occurrence = {
        "starts_at": parse_dt(form.get("starts_at")),
        "ends_at": parse_dt(form.get("ends_at")),
        "location": sanitize_text(form.get("location")),
        "capacity": sanitize_int(form.get("capacity"), min_value=1),
        "registration_deadline": parse_dt(form.get("registration_deadline")),
    }

    # --- START VALIDATION ---
    if not template["name"]:
        errors.append("Event name is required")
    elif len(template["name"]) > NAME_MAX_LENGTH:
        errors.append(f"Event name must be {NAME_MAX_LENGTH} characters or less.")

    if has_text(form.get("default_capacity")) and template["default_capacity"] is None:
        errors.append("Default capacity must be a positive whole number")
    if has_text(form.get("capacity")) and occurrence["capacity"] is None:
        errors.append("Capacity must be a positive whole number")

    if not occurrence["starts_at"]:
        errors.append("A valid start date and time is required")
    if has_text(form.get("ends_at")) and not occurrence["ends_at"]:
        errors.append("End time must be a valid date and time")
    if has_text(form.get("registration_deadline")) and not occurrence["registration_deadline"]:
        errors.append("Registration deadline must be a valid date and time")

    starts_at = occurrence["starts_at"]
    if starts_at and occurrence["ends_at"] and occurrence["ends_at"] <= starts_at:
        errors.append("End time must be after the start time")
    if starts_at and occurrence["registration_deadline"] and occurrence["registration_deadline"] > starts_at:
        errors.append("Registration deadline cannot be after the start time")
    # --- END VALIDATION ---

    if occurrence["capacity"] is None:
        occurrence["capacity"] = template["default_capacity"]

    return template, occurrence, errors


def fetch_occurrence(cur, occurrence_id: int) -> Dict[str, Any]:
    cur.execute(OCCURRENCE_SQL + " WHERE eo.occurrence_id = %s;", (occurrence_id,))
    row = cur.fetchone()
    if not row:
        raise NotFoundError("Event not found")
    return dict(row)


@events_bp.route("/", methods=["GET"])
def list_events() -> str:
    """
    Public list of all event occurrences with their registration counts,
    soonest first.
    """
    with transaction() as cur:
        cur.execute(OCCURRENCE_SQL + " ORDER BY eo.starts_at;")
        events = [dict(row) for row in cur.fetchall()]
    return render_template("events/index.html", events=events)


@events_bp.route("/<int:occurrence_id>", methods=["GET"])
def show_event(occurrence_id: int) -> str:
    """
    Event detail. Logged-in visitors see their own registration state;
    admins also get the roster with attendance flags.
    """
    actor = get_actor()
    my_registration = None
    roster = []

    with transaction() as cur:
        event = fetch_occurrence(cur, occurrence_id)
        if actor:
            cur.execute(
                "SELECT registration_id FROM registrations WHERE user_id = %s AND occurrence_id = %s;",
                (actor.account_id, occurrence_id),
            )
            row = cur.fetchone()
            my_registration = row["registration_id"] if row else None
            if actor.is_admin:
                roster = list_roster(cur, occurrence_id)

    return render_template("events/show.html", event=event, my_registration=my_registration, roster=roster)


@events_bp.route("/new", methods=["GET"])
def new_event_form() -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code
    return render_template("events/form.html", form={}, error=None, event=None)


@events_bp.route("/new", methods=["POST"])
def create_event() -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: create a template and its first occurrence in one transaction.

    Returns:
        302: Redirect to the new occurrence.
        400: Validation error.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    template, occurrence, errors = build_event_payload(request.form)
    if errors:
        return render_template("events/form.html", form=request.form, error=errors[0], event=None), 400

    with transaction() as cur:
        cur.execute(
            """
            INSERT INTO event_templates (name, event_type, description, recurrence_pattern, default_capacity)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING template_id;
            """,
            (
                template["name"], template["event_type"], template["description"],
                template["recurrence_pattern"], template["default_capacity"],
            ),
        )
        template_id = cur.fetchone()["template_id"]

        cur.execute(
            """
            INSERT INTO event_occurrences (template_id, starts_at, ends_at, location, capacity, registration_deadline)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING occurrence_id;
            """,
            (
                template_id, occurrence["starts_at"], occurrence["ends_at"], occurrence["location"],
                occurrence["capacity"], occurrence["registration_deadline"],
            ),
        )
        occurrence_id = cur.fetchone()["occurrence_id"]

    logging.info(f"[Events] Created occurrence {occurrence_id} of template {template_id}")
    return redirect(url_for("events.show_event", occurrence_id=occurrence_id))


@events_bp.route("/<int:occurrence_id>/edit", methods=["GET"])
def edit_event_form(occurrence_id: int) -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        event = fetch_occurrence(cur, occurrence_id)
    return render_template("events/form.html", form=event, error=None, event=event)


@events_bp.route("/<int:occurrence_id>/edit", methods=["POST"])
def update_event(occurrence_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: update the occurrence and its template together.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    template, occurrence, errors = build_event_payload(request.form)

    with transaction() as cur:
        event = fetch_occurrence(cur, occurrence_id)
        if errors:
            return render_template("events/form.html", form=request.form, error=errors[0], event=event), 400

        cur.execute(
            """
            UPDATE event_templates
            SET name = %s, event_type = %s, description = %s, recurrence_pattern = %s, default_capacity = %s
            WHERE template_id = %s;
            """,
            (
                template["name"], template["event_type"], template["description"],
                template["recurrence_pattern"], template["default_capacity"], event["template_id"],
            ),
        )
        cur.execute(
            """
            UPDATE event_occurrences
            SET starts_at = %s, ends_at = %s, location = %s, capacity = %s, registration_deadline = %s
            WHERE occurrence_id = %s;
            """,
            (
                occurrence["starts_at"], occurrence["ends_at"], occurrence["location"],
                occurrence["capacity"], occurrence["registration_deadline"], occurrence_id,
            ),
        )

    return redirect(url_for("events.show_event", occurrence_id=occurrence_id))


@events_bp.route("/<int:occurrence_id>/delete", methods=["POST"])
def delete_event(occurrence_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: delete an occurrence. Its registrations and surveys go with it.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        cur.execute("DELETE FROM event_occurrences WHERE occurrence_id = %s;", (occurrence_id,))
        if cur.rowcount == 0:
            raise NotFoundError("Event not found")

    return redirect(url_for("events.list_events"))


@events_bp.route("/<int:occurrence_id>/register", methods=["POST"])
def register_for_event(occurrence_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Register the caller (or, for admins, the account in the user_id field).

    Business-rule conflicts (full, past, deadline, duplicate) are flashed on
    the event page. A confirmation email goes out after the commit.
    """
    actor, err, code = current_actor()
    if err:
        return err, code

    account_id = None
    if actor.is_admin:
        account_id = sanitize_int(request.form.get("user_id"), min_value=1)

    try:
        with transaction() as cur:
            registration = register(cur, actor, occurrence_id, account_id=account_id)
            cur.execute(
                """
                SELECT u.email, u.first_name, et.name AS event_name, eo.starts_at
                FROM event_occurrences eo
                JOIN event_templates et ON eo.template_id = et.template_id
                JOIN users u ON u.user_id = %s
                WHERE eo.occurrence_id = %s;
                """,
                (registration["user_id"], occurrence_id),
            )
            details = cur.fetchone()
    except ConflictError as e:
        flash(e.message, "error")
        return redirect(url_for("events.show_event", occurrence_id=occurrence_id))

    if details and details["email"]:
        send_email(
            details["email"],
            f"Registration confirmed: {details['event_name']}",
            f"Hi {details['first_name'] or 'there'},\n\n"
            f"You are registered for {details['event_name']} on {details['starts_at']}.\n",
        )

    flash("You're registered!", "success")
    return redirect(url_for("events.show_event", occurrence_id=occurrence_id))
