"""Session helpers and FastAPI dependencies.

Access tokens are issued by the session provider; this module only
verifies them. A page without a usable session is redirected to the
login page, and the open-study page additionally redirects users whose
role may not open a study back to the study listing.
"""

from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings

bearer_scheme = HTTPBearer(auto_error=False)
TOKEN_COOKIE = "accessToken"


class RedirectRequired(Exception):
    """Raised by dependencies to send the client to another page."""
    def __init__(self, location: str, reason: str = ""):
        self.location = location
        self.reason = reason
        super().__init__(f"redirect to {location}: {reason}")


@dataclass(frozen=True)
class PageSession:
    access_token: str
    user_id: str
    role: Optional[str] = None


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises RedirectRequired
    pointing at the login page on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise RedirectRequired(settings.LOGIN_URL, "token expired")
    except jwt.InvalidTokenError:
        raise RedirectRequired(settings.LOGIN_URL, "invalid token")


def get_page_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> PageSession:
    """FastAPI dependency that returns the caller's session.

    The token comes from the bearer header, falling back to the
    `accessToken` cookie set by the session provider.
    """
    token = credentials.credentials if credentials else request.cookies.get(TOKEN_COOKIE)
    if not token:
        raise RedirectRequired(settings.LOGIN_URL, "no session")
    payload = decode_token(token)
    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        raise RedirectRequired(settings.LOGIN_URL, "invalid token payload")
    return PageSession(access_token=token, user_id=str(user_id), role=payload.get("role"))


def can_open_study(session: PageSession) -> bool:
    return bool(session.role) and session.role in settings.AUTHORIZED_ROLES


def require_study_opener(session: PageSession = Depends(get_page_session)) -> PageSession:
    """Like `get_page_session`, but only for roles allowed to open a study."""
    if not can_open_study(session):
        raise RedirectRequired(settings.STUDY_INDEX_URL, "role may not open a study")
    return session
