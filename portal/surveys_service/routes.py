"""
Survey routes.

Participants fill in the post-event survey for their own registration.
Admins list, read, correct and delete submitted surveys.
"""

import logging
from typing import Any, Tuple, Union

from flask import Blueprint, Response, redirect, render_template, request, url_for

from portal.auth_service.utils import Role, current_actor
from portal.common.errors import InvalidScore, NotFoundError, SurveyNotEligible
from portal.database.db_connection import transaction
from portal.surveys_service.eligibility import (
    SurveyState,
    get_survey,
    list_surveys,
    load_registration_for_survey,
    submit_survey,
    survey_state,
    update_survey_scores,
)

surveys_bp = Blueprint("surveys", __name__)


# --- PARTICIPANT SUBMISSION ---
@surveys_bp.route("/registrations/<int:registration_id>", methods=["GET"])
def survey_form(registration_id: int) -> Union[str, Tuple[Any, int]]:
    """
    Show the survey form when the registration is eligible.

    Returns:
        200: The form.
        400: Not eligible (not attended, not over, or already submitted).
        403: Someone else's registration.
        404: No such registration.
    """
    actor, err, code = current_actor()
    if err:
        return err, code

    with transaction() as cur:
        registration = load_registration_for_survey(cur, actor, registration_id)

    if survey_state(registration) is not SurveyState.ELIGIBLE:
        return render_template("error.html", message=SurveyNotEligible().message), 400

    return render_template("surveys/submit.html", registration=registration, form={}, error=None)


@surveys_bp.route("/registrations/<int:registration_id>", methods=["POST"])
def submit_survey_form(registration_id: int) -> Union[Response, Tuple[Any, int]]:
    actor, err, code = current_actor()
    if err:
        return err, code

    try:
        with transaction() as cur:
            submit_survey(cur, actor, registration_id, request.form)
    except (InvalidScore, SurveyNotEligible) as e:
        with transaction() as cur:
            registration = load_registration_for_survey(cur, actor, registration_id)
        return render_template("surveys/submit.html", registration=registration, form=request.form, error=e.message), 400

    return redirect(url_for("registrations.list_my_registrations"))


# --- ADMIN ---
@surveys_bp.route("/", methods=["GET"])
def index() -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        surveys = list_surveys(cur)
    return render_template("surveys/index.html", surveys=surveys)


@surveys_bp.route("/<int:survey_id>", methods=["GET"])
def show(survey_id: int) -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        survey = get_survey(cur, survey_id)
    return render_template("surveys/show.html", survey=survey)


@surveys_bp.route("/<int:survey_id>/edit", methods=["GET"])
def edit_form(survey_id: int) -> Union[str, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        survey = get_survey(cur, survey_id)
    return render_template("surveys/edit.html", survey=survey, form=survey, error=None)


@surveys_bp.route("/<int:survey_id>/edit", methods=["POST"])
def update(survey_id: int) -> Union[Response, Tuple[Any, int]]:
    """
    Admin-only score correction. The overall score is recomputed; the
    participant's survey stays submitted.
    """
    actor, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    try:
        with transaction() as cur:
            update_survey_scores(cur, actor, survey_id, request.form)
    except InvalidScore as e:
        with transaction() as cur:
            survey = get_survey(cur, survey_id)
        return render_template("surveys/edit.html", survey=survey, form=request.form, error=e.message), 400

    return redirect(url_for("surveys.show", survey_id=survey_id))


@surveys_bp.route("/<int:survey_id>/delete", methods=["POST"])
def delete(survey_id: int) -> Union[Response, Tuple[Any, int]]:
    _, err, code = current_actor(required_roles=[Role.ADMIN])
    if err:
        return err, code

    with transaction() as cur:
        cur.execute("DELETE FROM surveys WHERE survey_id = %s;", (survey_id,))
        if cur.rowcount == 0:
            raise NotFoundError("Survey not found")

    logging.info(f"[Surveys] Deleted survey {survey_id}")
    return redirect(url_for("surveys.index"))
