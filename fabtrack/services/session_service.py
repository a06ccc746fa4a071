from __future__ import annotations

import logging
from collections.abc import MutableMapping
from dataclasses import asdict, dataclass
from typing import Any

import jwt

from schemas.records import CurrentUser


AUTH_LOGGER = logging.getLogger("fabtrack.auth")
SESSION_KEY = "fabtrack_auth"
DEFAULT_ROLE = "Student"
ROLES = {"admin": "Admin", "student": "Student"}

_ROLE_CLAIMS = (
    "role",
    "Role",
    "roles",
    "http://schemas.microsoft.com/ws/2008/06/identity/claims/role",
)
_EMAIL_CLAIMS = (
    "email",
    "Email",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress",
)
_NAME_CLAIMS = (
    "name",
    "Name",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name",
)
_ID_CLAIMS = (
    "userID",
    "UserID",
    "sub",
    "nameid",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier",
)


def decode_token_claims(token: str | None) -> dict[str, Any]:
    """Read the token's claims without verifying it; the backend verifies."""
    if not token:
        return {}
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return {}
    return claims if isinstance(claims, dict) else {}


def _first_claim(claims: dict[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        value = claims.get(name)
        if isinstance(value, list):
            value = value[0] if value else None
        if value not in (None, ""):
            return value
    return None


def normalize_role(raw_role: Any) -> str:
    if isinstance(raw_role, list):
        raw_role = raw_role[0] if raw_role else None
    return ROLES.get(str(raw_role or "").strip().lower(), DEFAULT_ROLE)


@dataclass
class PortalSession:
    token: str
    role: str = DEFAULT_ROLE
    user_id: str | None = None
    name: str = ""
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "Admin"

    @property
    def home_path(self) -> str:
        return "/admin" if self.is_admin else "/dashboard"

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0].replace(".", " ")
        return "FabTrack user"


def session_from_token(token: str, *, role: Any = None, user: CurrentUser | None = None) -> PortalSession:
    claims = decode_token_claims(token)
    raw_role = role or (user.role if user else None) or _first_claim(claims, _ROLE_CLAIMS)
    user_id = (user.id if user else None) or _first_claim(claims, _ID_CLAIMS)
    return PortalSession(
        token=token,
        role=normalize_role(raw_role),
        user_id=None if user_id is None else str(user_id),
        name=(user.name if user else "") or str(_first_claim(claims, _NAME_CLAIMS) or ""),
        email=(user.email if user else "") or str(_first_claim(claims, _EMAIL_CLAIMS) or ""),
    )


def open_session(store: MutableMapping[str, Any], token: str, *, role: Any = None, user: CurrentUser | None = None) -> PortalSession:
    session = session_from_token(token, role=role, user=user)
    store[SESSION_KEY] = asdict(session)
    AUTH_LOGGER.info("Session opened role=%s user_id=%s", session.role, session.user_id)
    return session


def load_session(store: MutableMapping[str, Any]) -> PortalSession | None:
    raw = store.get(SESSION_KEY)
    if not isinstance(raw, dict) or not raw.get("token"):
        return None
    try:
        return PortalSession(**raw)
    except TypeError:
        store.pop(SESSION_KEY, None)
        return None


def refresh_session(store: MutableMapping[str, Any], session: PortalSession, user: CurrentUser) -> PortalSession:
    refreshed = PortalSession(
        token=session.token,
        role=normalize_role(user.role) if user.role else session.role,
        user_id=user.id or session.user_id,
        name=user.name or session.name,
        email=user.email or session.email,
    )
    store[SESSION_KEY] = asdict(refreshed)
    return refreshed


def clear_session(store: MutableMapping[str, Any]) -> None:
    store.pop(SESSION_KEY, None)
