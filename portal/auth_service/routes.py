"""
Authentication route handlers.

Provides routes for:
- Login (username + password)
- Signup (self-service participant accounts)
- Logout
"""

import logging
from typing import Any, Dict, Tuple, Union

import psycopg2.errors
from flask import Blueprint, Response, redirect, render_template, request, url_for

from portal.auth_service.passwords import hash_password, verify_password
from portal.auth_service.utils import Role, login_user, logout_user
from portal.common.errors import PortalError, StorageError
from portal.common.validators import sanitize_text
from portal.database.db_connection import transaction

auth_bp = Blueprint("auth", __name__)

MIN_PASSWORD_LENGTH = 8


# --- LOGIN ---
@auth_bp.route("/login", methods=["GET"])
def login_form() -> str:
    return render_template("auth/login.html", error=None, form={})


@auth_bp.route("/login", methods=["POST"])
def login() -> Union[Response, Tuple[str, int]]:
    """
    Authenticate a user and start a session.

    Form fields:
    - username (str)
    - password (str)

    Returns:
        302: Redirect to the landing page on success.
        400: Missing credentials.
        401: Invalid credentials.
        500: Database error.
    """
    form: Dict[str, Any] = request.form
    username = sanitize_text(form.get("username"))
    password = form.get("password", "")

    if not username or not password:
        return render_template("auth/login.html", error="Username and password are required", form=form), 400

    sql = "SELECT user_id, username, password_hash, role, photo_url FROM users WHERE username = %s;"

    try:
        with transaction() as cur:
            cur.execute(sql, (username,))
            user = cur.fetchone()
    except StorageError:
        logging.exception("[Auth] Login lookup failed")
        return render_template("auth/login.html", error="Server error", form=form), 500

    if not user or not verify_password(password, user["password_hash"]):
        return render_template("auth/login.html", error="Invalid username or password", form=form), 401

    login_user(user)
    logging.info(f"[Auth] User {user['user_id']} logged in")
    return redirect(url_for("landing"))


# --- SIGNUP ---
@auth_bp.route("/signup", methods=["GET"])
def signup_form() -> str:
    return render_template("auth/signup.html", error=None, form={})


@auth_bp.route("/signup", methods=["POST"])
def signup() -> Union[Response, Tuple[str, int]]:
    """
    Create a participant account and log it in.

    Form fields:
    - username (str): Unique.
    - password (str): Minimum 8 characters.
    - confirm_password (str): Must match password.

    Returns:
        302: Redirect to the landing page.
        400: Invalid input or username taken.
        500: Server-side error.
    """
    form: Dict[str, Any] = request.form
    username = sanitize_text(form.get("username"))
    password = form.get("password", "")
    confirm = form.get("confirm_password", "")

    errors = []
    if not username:
        errors.append("Username is required")
    if len(password.strip()) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if password != confirm:
        errors.append("Passwords do not match")
    if errors:
        return render_template("auth/signup.html", error=errors[0], form=form), 400

    sql = """
        INSERT INTO users (username, password_hash, role)
        VALUES (%s, %s, %s)
        RETURNING user_id, username, role, photo_url;
    """

    try:
        pw_hash = hash_password(password)
        with transaction() as cur:
            cur.execute(sql, (username, pw_hash, Role.PARTICIPANT.value))
            user = cur.fetchone()
    except StorageError as e:
        if isinstance(e.__cause__, psycopg2.errors.UniqueViolation):
            return render_template("auth/signup.html", error="Username already taken", form=form), 400
        logging.exception("[Auth] Signup failed")
        return render_template("auth/signup.html", error="Server error", form=form), 500
    except PortalError as e:
        return render_template("auth/signup.html", error=e.message, form=form), 400

    login_user(user)
    logging.info(f"[Auth] New participant {user['user_id']} signed up")
    return redirect(url_for("landing"))


# --- LOGOUT ---
@auth_bp.route("/logout", methods=["GET"])
def logout() -> Response:
    logout_user()
    return redirect(url_for("auth.login_form"))
