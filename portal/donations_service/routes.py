"""
Donation route handlers.

Provides routes for:
- Admin donation ledger: list, create, edit, delete
- Participants' own donation history
- The public support form (logged-in, guest, or anonymous donors)
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from flask import Blueprint, Response, flash, redirect, render_template, request, url_for

from portal.auth_service.utils import Role, current_actor, get_actor
from portal.common.errors import ConfigurationError, NotFoundError, PortalError
from portal.common.mailer import send_email
from portal.common.validators import has_text, sanitize_decimal, sanitize_email, sanitize_int, sanitize_iso_date, sanitize_text
from portal.database.db_connection import transaction
from portal.donations_service.ledger import (
    delete_donation,
    get_donation,
    record_donation,
    record_support_metadata,
    resolve_donor,
    update_donation,
)

donations_bp = Blueprint("donations", __name__)
support_bp = Blueprint("support", __name__)

# --- CONSTANTS FOR VALIDATION ---
MIN_AMOUNT = "0.01"
MAX_AMOUNT = "1000000"
MESSAGE_MAX_LENGTH = 1000

# Sort keys accepted from the query string, mapped to SQL.
SORT_COLUMNS = {
    "date": "d.donated_on",
    "amount": "d.amount",
    "donor": "u.last_name",
    "total": "d.cumulative_total",
    "id": "d.donation_id",
}

USER_NOT_FOUND = "User not found. Please verify the ID from the Users list."
SUPPORT_FAILED = "We could not record your donation. Please try again."


def build_donation_payload(form: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Validate the admin donation form. Returns (payload, errors)."""
    payload = {
        "user_id": sanitize_int(form.get("user_id"), min_value=1),
        "amount": sanitize_decimal(form.get("amount"), min_value=MIN_AMOUNT, max_value=MAX_AMOUNT),
        "donated_on": None,
    }
    errors = []
    if payload["user_id"] is None:
        errors.append("A valid user ID is required")
    if payload["amount"] is None:
        errors.append("Amount must be a number greater than zero")
    if has_text(form.get("donated_on")):
        payload["donated_on"] = sanitize_iso_date(form.get("donated_on"))
        if not payload["donated_on"]:
            errors.append("Date must be a valid YYYY-MM-DD value")
    return payload, errors


# --- LIST DONATIONS ---
@donations_bp.route("/", methods=["GET"])
def list_donations() -> Union[str, Tuple[Any, int]]:
    """
    Admins see every donation; participants see only their own.

    Query:
    - ?sort=date|amount|donor|total|id (default date)
    - ?order=asc|desc (default desc)
    """
    actor, err, code = current_actor()
    if err:
        return err, code

    sort_key = request.args.get("sort", "date")
    sort_column = SORT_COLUMNS.get(sort_key, SORT_COLUMNS["date"])
    direction = "ASC" if request.args.get("order", "desc").lower() == "asc" else "DESC"

    sql = """
        SELECT d.donation_id, d.user_id, d.amount, d.donated_on, d.cumulative_total,
               u.username, u.first_name, u.last_name
        FROM donations d
        JOIN users u ON d.user_id = u.user_id
    """
    params = []
    if not actor.is_admin:
        sql += " WHERE d.user_id = %s"
        params.append(actor.account_id)
    sql += f" ORDER BY {sort_column} {direction}, d.donation_id {direction};"

    with transaction() as cur:
        cur.execute(sql, params)
        donations = [dict(row) for row in cur.fetchall()]

    total = sum((d["amount"] for d in donations), 0)
    return render_template(
        "donations/index.html",
        donations=donations,
        total=total,
        sort=sort_key if sort_key in SORT_COLUMNS else "date",
        order=direction.lower(),
    )


# --- CREATE DONATION (ADMIN ONLY) ---
@donations_bp.route("/new", methods=["GET"])
def new_donation_form() -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code
    return render_template("donations/form.html", form={"user_id": request.args.get("user_id", "")}, error=None, donation=None)


@donations_bp.route("/new", methods=["POST"])
def create_donation() -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: record a donation for an existing account.

    Returns:
        302: Redirect to the ledger.
        400: Validation error, or the user id does not exist.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    payload, errors = build_donation_payload(request.form)
    if errors:
        return render_template("donations/form.html", form=request.form, error=errors[0], donation=None), 400

    try:
        with transaction() as cur:
            donation = record_donation(cur, payload["user_id"], payload["amount"], payload["donated_on"])
    except NotFoundError:
        return render_template("donations/form.html", form=request.form, error=USER_NOT_FOUND, donation=None), 400

    logging.info(f"[Donations] Recorded donation {donation['donation_id']} for user {donation['user_id']}")
    return redirect(url_for("donations.list_donations"))


# --- EDIT DONATION (ADMIN ONLY) ---
@donations_bp.route("/<int:donation_id>/edit", methods=["GET"])
def edit_donation_form(donation_id: int) -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        donation = get_donation(cur, donation_id)
    return render_template("donations/form.html", form=donation, error=None, donation=donation)


@donations_bp.route("/<int:donation_id>/edit", methods=["POST"])
def update_donation_route(donation_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only: change a donation. Running totals of the affected accounts
    are rebuilt in the same transaction.
    """
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    payload, errors = build_donation_payload(request.form)
    if errors:
        with transaction() as cur:
            donation = get_donation(cur, donation_id)
        return render_template("donations/form.html", form=request.form, error=errors[0], donation=donation), 400

    try:
        with transaction() as cur:
            update_donation(cur, donation_id, payload["user_id"], payload["amount"], payload["donated_on"])
    except NotFoundError as e:
        if e.message != "User not found":
            raise
        with transaction() as cur:
            donation = get_donation(cur, donation_id)
        return render_template("donations/form.html", form=request.form, error=USER_NOT_FOUND, donation=donation), 400

    return redirect(url_for("donations.list_donations"))


# --- DELETE DONATION (ADMIN ONLY) ---
@donations_bp.route("/<int:donation_id>/delete", methods=["POST"])
def delete_donation_route(donation_id: int) -> Union[Response, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        delete_donation(cur, donation_id)

    logging.info(f"[Donations] Deleted donation {donation_id}")
    return redirect(url_for("donations.list_donations"))


# --- PUBLIC SUPPORT FORM ---
def _support_form_values(form: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    return {
        "amount": form.get("amount", ""),
        "first_name": form.get("first_name", ""),
        "last_name": form.get("last_name", ""),
        "email": form.get("email", ""),
        "message": form.get("message", ""),
    }


@support_bp.route("/support", methods=["GET"])
def support_form() -> str:
    return render_template("support.html", form={}, error=None)


@support_bp.route("/support", methods=["POST"])
def submit_support() -> Union[Response, Tuple[Any, int]]:
    """
    Public donation.

    Donor resolution, the ledger insert and the metadata row share one
    transaction. Any failure rolls all of it back and re-renders the form
    with the submitted values.

    Returns:
        302: Redirect back to the form with a thank-you flash.
        400: Validation error.
        500: The donation could not be recorded.
    """
    form = request.form
    values = _support_form_values(form)

    amount = sanitize_decimal(form.get("amount"), min_value=MIN_AMOUNT, max_value=MAX_AMOUNT)
    first_name = sanitize_text(form.get("first_name"))
    last_name = sanitize_text(form.get("last_name"))
    email = sanitize_email(form.get("email"))
    message = sanitize_text(form.get("message"))

    error = None
    if amount is None:
        error = "Please enter a donation amount greater than zero"
    elif has_text(form.get("email")) and not email:
        error = "Please enter a valid email address"
    elif message and len(message) > MESSAGE_MAX_LENGTH:
        error = f"Message must be {MESSAGE_MAX_LENGTH} characters or less."
    if error:
        return render_template("support.html", form=values, error=error), 400

    actor = get_actor()
    try:
        with transaction() as cur:
            donor = resolve_donor(cur, actor, first_name, last_name, email)
            donation = record_donation(cur, donor["user_id"], amount)
            record_support_metadata(cur, donation["donation_id"], first_name, last_name, email, message)
    except ConfigurationError as e:
        logging.error(f"[Support] {e.message}")
        return render_template("support.html", form=values, error=SUPPORT_FAILED), 500
    except PortalError:
        logging.exception("[Support] Donation failed and was rolled back")
        return render_template("support.html", form=values, error=SUPPORT_FAILED), 500

    receipt_to = email or donor.get("email")
    if receipt_to:
        send_email(
            receipt_to,
            "Thank you for your donation",
            f"Hi {first_name or 'friend'},\n\n"
            f"We received your donation of ${donation['amount']} on {donation['donated_on']}.\n"
            "Thank you for supporting the program!\n",
        )

    flash("Thank you for your donation!", "success")
    return redirect(url_for("support.support_form"))
