"""
Milestone routes: participants see their own achievements, admins manage all.
"""

import logging
from typing import Any, Dict, List, Mapping, Tuple, Union

from flask import Blueprint, Response, redirect, render_template, request, url_for

from portal.auth_service.utils import Role, current_actor
from portal.common.errors import NotFoundError
from portal.common.validators import sanitize_int, sanitize_iso_date, sanitize_text
from portal.database.db_connection import transaction

milestones_bp = Blueprint("milestones", __name__)

TITLE_MAX_LENGTH = 200

MILESTONE_SQL = """
    SELECT m.milestone_id, m.user_id, m.title, m.achieved_on,
           u.username, u.first_name, u.last_name
    FROM milestones m
    JOIN users u ON m.user_id = u.user_id
"""


def build_milestone_payload(form: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    payload = {
        "user_id": sanitize_int(form.get("user_id"), min_value=1),
        "title": sanitize_text(form.get("title")),
        "achieved_on": sanitize_iso_date(form.get("achieved_on")),
    }
    errors = []
    if payload["user_id"] is None:
        errors.append("A valid user ID is required")
    if not payload["title"]:
        errors.append("Title is required")
    elif len(payload["title"]) > TITLE_MAX_LENGTH:
        errors.append(f"Title must be {TITLE_MAX_LENGTH} characters or less.")
    if not payload["achieved_on"]:
        errors.append("Date must be a valid YYYY-MM-DD value")
    return payload, errors


def _user_exists(cur, user_id: int) -> bool:
    cur.execute("SELECT user_id FROM users WHERE user_id = %s;", (user_id,))
    return cur.fetchone() is not None


def fetch_milestone(cur, milestone_id: int) -> Dict[str, Any]:
    cur.execute(MILESTONE_SQL + " WHERE m.milestone_id = %s;", (milestone_id,))
    row = cur.fetchone()
    if not row:
        raise NotFoundError("Milestone not found")
    return dict(row)


@milestones_bp.route("/", methods=["GET"])
def list_milestones() -> Union[str, Tuple[Any, int]]:
    actor, err, code = current_actor()
    if err:
        return err, code

    sql = MILESTONE_SQL
    params = []
    if not actor.is_admin:
        sql += " WHERE m.user_id = %s"
        params.append(actor.account_id)
    sql += " ORDER BY m.achieved_on DESC, m.milestone_id DESC;"

    with transaction() as cur:
        cur.execute(sql, params)
        milestones = [dict(row) for row in cur.fetchall()]
    return render_template("milestones/index.html", milestones=milestones)


@milestones_bp.route("/new", methods=["GET"])
def new_milestone_form() -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code
    return render_template("milestones/form.html", form={"user_id": request.args.get("user_id", "")}, error=None, milestone=None)


@milestones_bp.route("/new", methods=["POST"])
def create_milestone() -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: record a milestone for an existing account.

    Returns:
        302: Redirect to the list.
        400: Validation error or unknown user.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    payload, errors = build_milestone_payload(request.form)
    if errors:
        return render_template("milestones/form.html", form=request.form, error=errors[0], milestone=None), 400

    with transaction() as cur:
        if not _user_exists(cur, payload["user_id"]):
            return render_template("milestones/form.html", form=request.form, error="User not found", milestone=None), 400
        cur.execute(
            "INSERT INTO milestones (user_id, title, achieved_on) VALUES (%s, %s, %s) RETURNING milestone_id;",
            (payload["user_id"], payload["title"], payload["achieved_on"]),
        )
        milestone_id = cur.fetchone()["milestone_id"]

    logging.info(f"[Milestones] Created milestone {milestone_id} for user {payload['user_id']}")
    return redirect(url_for("milestones.list_milestones"))


@milestones_bp.route("/<int:milestone_id>/edit", methods=["GET"])
def edit_milestone_form(milestone_id: int) -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        milestone = fetch_milestone(cur, milestone_id)
    return render_template("milestones/form.html", form=milestone, error=None, milestone=milestone)


@milestones_bp.route("/<int:milestone_id>/edit", methods=["POST"])
def update_milestone(milestone_id: int) -> Union[Response, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    payload, errors = build_milestone_payload(request.form)

    with transaction() as cur:
        milestone = fetch_milestone(cur, milestone_id)
        if not errors and not _user_exists(cur, payload["user_id"]):
            errors.append("User not found")
        if errors:
            return render_template("milestones/form.html", form=request.form, error=errors[0], milestone=milestone), 400
        cur.execute(
            "UPDATE milestones SET user_id = %s, title = %s, achieved_on = %s WHERE milestone_id = %s;",
            (payload["user_id"], payload["title"], payload["achieved_on"], milestone_id),
        )

    return redirect(url_for("milestones.list_milestones"))


@milestones_bp.route("/<int:milestone_id>/delete", methods=["POST"])
def delete_milestone(milestone_id: int) -> Union[Response, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        cur.execute("DELETE FROM milestones WHERE milestone_id = %s;", (milestone_id,))
        if cur.rowcount == 0:
            raise NotFoundError("Milestone not found")

    return redirect(url_for("milestones.list_milestones"))
