"""
Shared authentication helpers.
Provides the role enum, the caller context passed to services, session
login/logout, and role enforcement for route handlers.
"""

import enum
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from flask import Response, redirect, render_template, session, url_for


class Role(str, enum.Enum):
    ADMIN = "admin"
    PARTICIPANT = "participant"


# Spellings seen in older rows and forms
_ROLE_ALIASES = {
    "a": Role.ADMIN,
    "admin": Role.ADMIN,
    "administrator": Role.ADMIN,
    "u": Role.PARTICIPANT,
    "user": Role.PARTICIPANT,
    "p": Role.PARTICIPANT,
    "participant": Role.PARTICIPANT,
}


def normalize_role(raw: Any) -> Role:
    """
    Map a stored or submitted role value onto the closed Role enum.
    Unknown values are treated as the least privileged role.
    """
    if isinstance(raw, Role):
        return raw
    if not isinstance(raw, str):
        return Role.PARTICIPANT
    return _ROLE_ALIASES.get(raw.strip().lower(), Role.PARTICIPANT)


@dataclass(frozen=True)
class Actor:
    """Who is making the request. Passed explicitly into every domain operation."""

    account_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def can_act_for(self, account_id: Any) -> bool:
        return self.is_admin or self.account_id == account_id


# --- SESSION ---
def login_user(user: Mapping[str, Any]) -> None:
    """
    Store the authenticated identity on the session.

    Args:
        user: Row with user_id, username, role and (optionally) photo_url.
    """
    session.clear()
    session["user"] = {
        "user_id": user["user_id"],
        "username": user["username"],
        "role": normalize_role(user.get("role")).value,
        "photo_url": user.get("photo_url"),
    }


def logout_user() -> None:
    session.clear()


def session_user() -> Optional[Dict[str, Any]]:
    return session.get("user")


def get_actor() -> Optional[Actor]:
    """Build the caller context from the session, or None when anonymous."""
    user = session_user()
    if not user or not user.get("user_id"):
        return None
    return Actor(account_id=int(user["user_id"]), role=normalize_role(user.get("role")))


def current_actor(required_roles: Optional[Iterable[Role]] = None) -> Tuple[Optional[Actor], Optional[Response], Optional[int]]:
    """
    Resolve the logged-in caller for a route.

    Args:
        required_roles (iterable of Role, optional): Roles allowed through.

    Returns:
        tuple: (actor, error_response, status_code)
               On success error_response and status_code are None.
               Anonymous callers get a redirect to the login page (302);
               callers with the wrong role get the Forbidden page (403).
    """
    actor = get_actor()
    if actor is None:
        return None, redirect(url_for("auth.login_form")), 302

    if required_roles and actor.role not in set(required_roles):
        return None, render_template("error.html", message="Forbidden: Admins only"), 403

    return actor, None, None
