"""
Post-event survey rules.

A registration moves NOT_ELIGIBLE -> ELIGIBLE -> SUBMITTED. It is eligible
once the participant attended and the occurrence has ended, as long as no
survey exists yet. SUBMITTED is terminal for the participant; admins may
still correct scores afterwards.
"""

import enum
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import psycopg2.errors

from portal.auth_service.utils import Actor
from portal.common.errors import InvalidScore, NotFoundError, SurveyNotEligible, Unauthorized
from portal.common.validators import sanitize_int
from portal.registrations_service.capacity import as_aware, utc_now

log = logging.getLogger(__name__)

SCORE_FIELDS = [
    "satisfaction_score",
    "usefulness_score",
    "instructor_score",
    "recommendation_score",
]


class SurveyState(enum.Enum):
    NOT_ELIGIBLE = "not_eligible"
    ELIGIBLE = "eligible"
    SUBMITTED = "submitted"


def survey_state(registration: Mapping[str, Any], now: Optional[datetime] = None) -> SurveyState:
    if registration.get("survey_id"):
        return SurveyState.SUBMITTED

    ends_at = as_aware(registration.get("ends_at"))
    ended = ends_at is not None and ends_at < (now or utc_now())
    if registration.get("attended") and ended:
        return SurveyState.ELIGIBLE
    return SurveyState.NOT_ELIGIBLE


def parse_scores(form: Mapping[str, Any]) -> Dict[str, int]:
    """
    Validate the four 1-5 scores.

    Raises:
        InvalidScore: Naming the first field that is missing or out of range.
    """
    scores = {}
    for field in SCORE_FIELDS:
        value = sanitize_int(form.get(field), min_value=1, max_value=5)
        if value is None:
            raise InvalidScore(field)
        scores[field] = value
    return scores


def overall_score(scores: Mapping[str, int]) -> float:
    return sum(scores[field] for field in SCORE_FIELDS) / len(SCORE_FIELDS)


def load_registration_for_survey(cur, actor: Actor, registration_id: int, lock: bool = False) -> Dict[str, Any]:
    """
    Fetch a registration with its event and survey, enforcing ownership.

    Raises:
        NotFoundError: No such registration.
        Unauthorized: Caller is neither the owner nor an admin.
    """
    cur.execute(
        f"""
        SELECT r.registration_id, r.user_id, r.attended,
               et.name AS event_name, et.description,
               eo.starts_at, eo.ends_at,
               s.survey_id
        FROM registrations r
        JOIN event_occurrences eo ON r.occurrence_id = eo.occurrence_id
        JOIN event_templates et ON eo.template_id = et.template_id
        LEFT JOIN surveys s ON r.registration_id = s.registration_id
        WHERE r.registration_id = %s
        {"FOR UPDATE OF r" if lock else ""};
        """,
        (registration_id,),
    )
    row = cur.fetchone()
    if not row:
        raise NotFoundError("Registration not found")
    registration = dict(row)
    if not actor.can_act_for(registration["user_id"]):
        raise Unauthorized()
    return registration


def submit_survey(cur, actor: Actor, registration_id: int, form: Mapping[str, Any],
                  now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Record the post-event survey for a registration.

    Args:
        cur: Cursor of an open transaction.
        actor (Actor): The caller (owner or admin).
        registration_id (int): Registration being reviewed.
        form (mapping): Raw form values for the four score fields.
        now (datetime, optional): Clock override for tests.

    Returns:
        dict: The inserted survey row.

    Raises:
        NotFoundError, Unauthorized: See load_registration_for_survey.
        SurveyNotEligible: Not attended, not over yet, or already submitted.
        InvalidScore: A score is missing or outside 1-5.
    """
    now = now or utc_now()
    registration = load_registration_for_survey(cur, actor, registration_id, lock=True)

    if survey_state(registration, now) is not SurveyState.ELIGIBLE:
        raise SurveyNotEligible()

    scores = parse_scores(form)
    overall = overall_score(scores)

    try:
        cur.execute(
            """
            INSERT INTO surveys (
                registration_id, satisfaction_score, usefulness_score,
                instructor_score, recommendation_score, overall_score, submitted_on
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING survey_id, registration_id, satisfaction_score, usefulness_score,
                      instructor_score, recommendation_score, overall_score, submitted_on;
            """,
            (
                registration_id,
                scores["satisfaction_score"],
                scores["usefulness_score"],
                scores["instructor_score"],
                scores["recommendation_score"],
                overall,
                now.date(),
            ),
        )
    except psycopg2.errors.UniqueViolation as e:
        raise SurveyNotEligible() from e

    survey = dict(cur.fetchone())
    log.info(f"Survey {survey['survey_id']} submitted for registration {registration_id}")
    return survey


def get_survey(cur, survey_id: int) -> Dict[str, Any]:
    cur.execute(
        """
        SELECT s.*, r.user_id, u.username, et.name AS event_name, eo.starts_at
        FROM surveys s
        JOIN registrations r ON s.registration_id = r.registration_id
        JOIN users u ON r.user_id = u.user_id
        JOIN event_occurrences eo ON r.occurrence_id = eo.occurrence_id
        JOIN event_templates et ON eo.template_id = et.template_id
        WHERE s.survey_id = %s;
        """,
        (survey_id,),
    )
    row = cur.fetchone()
    if not row:
        raise NotFoundError("Survey not found")
    return dict(row)


def update_survey_scores(cur, actor: Actor, survey_id: int, form: Mapping[str, Any]) -> Dict[str, Any]:
    """Admin correction of a submitted survey; overall is recomputed from the new scores."""
    if not actor.is_admin:
        raise Unauthorized()

    get_survey(cur, survey_id)
    scores = parse_scores(form)
    cur.execute(
        """
        UPDATE surveys
        SET satisfaction_score = %s, usefulness_score = %s,
            instructor_score = %s, recommendation_score = %s, overall_score = %s
        WHERE survey_id = %s
        RETURNING survey_id, registration_id, satisfaction_score, usefulness_score,
                  instructor_score, recommendation_score, overall_score, submitted_on;
        """,
        (
            scores["satisfaction_score"],
            scores["usefulness_score"],
            scores["instructor_score"],
            scores["recommendation_score"],
            overall_score(scores),
            survey_id,
        ),
    )
    return dict(cur.fetchone())


def list_surveys(cur) -> List[Dict[str, Any]]:
    cur.execute(
        """
        SELECT s.survey_id, s.registration_id, s.overall_score, s.submitted_on,
               u.username, et.name AS event_name
        FROM surveys s
        JOIN registrations r ON s.registration_id = r.registration_id
        JOIN users u ON r.user_id = u.user_id
        JOIN event_occurrences eo ON r.occurrence_id = eo.occurrence_id
        JOIN event_templates et ON eo.template_id = et.template_id
        ORDER BY s.survey_id;
        """
    )
    rows = [dict(row) for row in cur.fetchall()]
    for row in rows:
        if isinstance(row.get("overall_score"), Decimal):
            row["overall_score"] = float(row["overall_score"])
    return rows
