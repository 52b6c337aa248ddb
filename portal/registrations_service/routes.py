"""
Registration routes: the caller's registrations, cancellation, and admin
attendance check-in.
"""

from typing import Any, Tuple, Union

from flask import Blueprint, Response, flash, redirect, render_template, request, url_for

from portal.auth_service.utils import Role, current_actor
from portal.common.errors import ConflictError
from portal.database.db_connection import transaction
from portal.registrations_service.capacity import list_registrations_for_account, record_attendance, unregister
from portal.surveys_service.eligibility import SurveyState, survey_state

registrations_bp = Blueprint("registrations", __name__)


@registrations_bp.route("/", methods=["GET"])
def list_my_registrations() -> Union[str, Tuple[Any, int]]:
    actor, err, code = current_actor()
    if err:
        return err, code

    with transaction() as cur:
        registrations = list_registrations_for_account(cur, actor.account_id)

    for registration in registrations:
        registration["survey_state"] = survey_state(registration).value

    return render_template(
        "registrations/index.html",
        registrations=registrations,
        eligible=SurveyState.ELIGIBLE.value,
    )


@registrations_bp.route("/<int:registration_id>/cancel", methods=["POST"])
def cancel_registration(registration_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Cancel a registration (owner or admin) before the event starts.

    Returns:
        302: Back to the registrations list, with a flash message.
        403: Not the owner.
        404: No such registration.
    """
    actor, err, code = current_actor()
    if err:
        return err, code

    try:
        with transaction() as cur:
            unregister(cur, actor, registration_id)
    except ConflictError as e:
        flash(e.message, "error")
        return redirect(url_for("registrations.list_my_registrations"))

    flash("Registration cancelled.", "success")
    return redirect(url_for("registrations.list_my_registrations"))


@registrations_bp.route("/<int:registration_id>/attendance", methods=["POST"])
def mark_attendance(registration_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only check-in. Form field `attended` = "1" marks, anything else clears.
    """
    actor, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    attended = request.form.get("attended") == "1"
    with transaction() as cur:
        registration = record_attendance(cur, actor, registration_id, attended)

    return redirect(url_for("events.show_event", occurrence_id=registration["occurrence_id"]))
