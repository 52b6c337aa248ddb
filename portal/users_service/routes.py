"""
User management route handlers.

Provides routes for:
- Admin user listing, creation, detail, edit (including role changes), delete
- Self-service profile view and edit (role is never taken from the form)
"""

import logging
from typing import Any, Dict, Optional, Tuple, Union

import psycopg2.errors
from flask import Blueprint, Response, redirect, render_template, request, session, url_for

from portal.auth_service.passwords import hash_password
from portal.auth_service.utils import Role, current_actor, normalize_role
from portal.common.errors import CascadeDeleteFailed, InvalidAccountId, NotFoundError, StorageError
from portal.common.storage import save_photo
from portal.common.validators import sanitize_text
from portal.database.db_connection import transaction
from portal.users_service.accounts import build_account_payload, delete_account_with_relations

users_bp = Blueprint("users", __name__)
profile_bp = Blueprint("profile", __name__)

USER_COLUMNS = """
    user_id, username, role, first_name, last_name, email, phone, dob,
    city, state, zip, school_or_employer, field_of_interest, photo_url, created_at
"""


def fetch_user(cur, user_id: int) -> Dict[str, Any]:
    cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE user_id = %s;", (user_id,))
    row = cur.fetchone()
    if not row:
        raise NotFoundError("User not found")
    user = dict(row)
    user["role"] = normalize_role(user["role"]).value
    return user


def _is_duplicate_username(error: StorageError) -> bool:
    return isinstance(error.__cause__, psycopg2.errors.UniqueViolation)


# --- LIST USERS (ADMIN ONLY) ---
@users_bp.route("/", methods=["GET"])
def list_users() -> Union[str, Tuple[Any, int]]:
    """
    Admin-only list of accounts.

    Query:
    - ?role=participant|admin : restrict to one role.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    role_filter = request.args.get("role")
    sql = "SELECT user_id, username, role, first_name, last_name, email, photo_url FROM users"
    params = []
    if role_filter:
        sql += " WHERE role = %s"
        params.append(normalize_role(role_filter).value)
    sql += " ORDER BY user_id;"

    with transaction() as cur:
        cur.execute(sql, params)
        users = [dict(row) for row in cur.fetchall()]

    return render_template("users/index.html", users=users, role_filter=role_filter)


# --- CREATE USER (ADMIN ONLY) ---
@users_bp.route("/new", methods=["GET"])
def new_user_form() -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code
    return render_template("users/form.html", form={}, error=None, record=None)


@users_bp.route("/new", methods=["POST"])
def create_user() -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: create an account.

    Form fields: username, password, role, profile fields, photo_file.

    Returns:
        302: Redirect to the user list.
        400: Validation error or duplicate username.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    form = request.form
    username = sanitize_text(form.get("username"))
    password = (form.get("password") or "").strip()
    payload, errors = build_account_payload(form)

    if not username or not password:
        errors.insert(0, "Username and password are required")
    if errors:
        return render_template("users/form.html", form=form, error=errors[0], record=None), 400

    payload["photo_url"] = save_photo(request.files.get("photo_file"))
    payload.update(
        username=username,
        password_hash=hash_password(password),
        role=normalize_role(form.get("role")).value,
    )

    columns = ", ".join(payload)
    placeholders = ", ".join(["%s"] * len(payload))
    sql = f"INSERT INTO users ({columns}) VALUES ({placeholders}) RETURNING user_id;"

    try:
        with transaction() as cur:
            cur.execute(sql, list(payload.values()))
            created = cur.fetchone()
    except StorageError as e:
        if _is_duplicate_username(e):
            return render_template("users/form.html", form=form, error="Username already exists", record=None), 400
        raise

    logging.info(f"[Users] Created user {created['user_id']}")
    return redirect(url_for("users.list_users"))


# --- SHOW USER (ADMIN ONLY) ---
@users_bp.route("/<int:user_id>", methods=["GET"])
def show_user(user_id: int) -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        record = fetch_user(cur, user_id)
        cur.execute(
            "SELECT COALESCE(SUM(amount), 0) AS total FROM donations WHERE user_id = %s;",
            (user_id,),
        )
        total = cur.fetchone()["total"]

    return render_template("users/show.html", record=record, donation_total=total)


# --- EDIT USER (ADMIN ONLY) ---
@users_bp.route("/<int:user_id>/edit", methods=["GET"])
def edit_user_form(user_id: int) -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        record = fetch_user(cur, user_id)
    return render_template("users/form.html", form=record, error=None, record=record)


@users_bp.route("/<int:user_id>/edit", methods=["POST"])
def update_user(user_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: update an account, including its role.
    The password changes only when a new one is supplied.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        record = fetch_user(cur, user_id)

    form = request.form
    username = sanitize_text(form.get("username"))
    password = (form.get("password") or "").strip()
    payload, errors = build_account_payload(form)
    if not username:
        errors.insert(0, "Username is required")
    if errors:
        return render_template("users/form.html", form=form, error=errors[0], record=record), 400

    payload["username"] = username
    payload["role"] = normalize_role(form.get("role")).value
    payload["photo_url"] = save_photo(request.files.get("photo_file")) or record["photo_url"]
    if password:
        payload["password_hash"] = hash_password(password)

    set_clause = ", ".join(f"{k} = %s" for k in payload)
    values = list(payload.values()) + [user_id]

    try:
        with transaction() as cur:
            cur.execute(f"UPDATE users SET {set_clause} WHERE user_id = %s;", values)
    except StorageError as e:
        if _is_duplicate_username(e):
            return render_template("users/form.html", form=form, error="Username already exists", record=record), 400
        raise

    return redirect(url_for("users.show_user", user_id=user_id))


# --- DELETE USER (ADMIN ONLY) ---
@users_bp.route("/<int:user_id>/delete", methods=["POST"])
def delete_user(user_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: remove an account together with its registrations,
    surveys, milestones and donations.

    Returns:
        302: Redirect to the user list.
        400: Invalid id.
        404: No such user.
        500: The cascade failed and was rolled back.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    try:
        delete_account_with_relations(user_id)
    except InvalidAccountId as e:
        return render_template("error.html", message=e.message), 400
    except CascadeDeleteFailed:
        logging.exception(f"[Users] Delete of user {user_id} failed")
        return render_template("error.html", message="Unable to delete this user. Nothing was removed."), 500

    return redirect(url_for("users.list_users"))


# --- PROFILE (SELF) ---
@profile_bp.route("/", methods=["GET"])
def view_profile() -> Union[str, Tuple[Any, int]]:
    actor, err, code = current_actor()
    if err:
        return err, code

    with transaction() as cur:
        record = fetch_user(cur, actor.account_id)
    return render_template("profile/view.html", record=record)


@profile_bp.route("/edit", methods=["GET"])
def edit_profile_form() -> Union[str, Tuple[Any, int]]:
    actor, err, code = current_actor()
    if err:
        return err, code

    with transaction() as cur:
        record = fetch_user(cur, actor.account_id)
    return render_template("profile/edit.html", form=record, error=None, record=record)


@profile_bp.route("/edit", methods=["POST"])
def update_profile() -> Union[Response, Tuple[Any, int]]:
    """
    Update the caller's own profile. Role changes are ignored here;
    only an admin can change a role, from the users pages.
    """
    actor, err, code = current_actor()
    if err:
        return err, code

    with transaction() as cur:
        record = fetch_user(cur, actor.account_id)

    form = request.form
    username = sanitize_text(form.get("username"))
    password = (form.get("password") or "").strip()
    payload, errors = build_account_payload(form)
    if not username:
        errors.insert(0, "Username is required")
    if errors:
        return render_template("profile/edit.html", form=form, error=errors[0], record=record), 400

    payload["username"] = username
    payload["photo_url"] = save_photo(request.files.get("photo_file")) or record["photo_url"]
    if password:
        payload["password_hash"] = hash_password(password)

    set_clause = ", ".join(f"{k} = %s" for k in payload)
    values = list(payload.values()) + [actor.account_id]

    try:
        with transaction() as cur:
            cur.execute(f"UPDATE users SET {set_clause} WHERE user_id = %s;", values)
    except StorageError as e:
        if _is_duplicate_username(e):
            return render_template("profile/edit.html", form=form, error="Username already exists", record=record), 400
        raise

    session_user: Optional[Dict[str, Any]] = session.get("user")
    if session_user:
        session_user["username"] = username
        session_user["photo_url"] = payload["photo_url"]
        session["user"] = session_user

    return redirect(url_for("profile.view_profile"))
