"""
Request identity resolution.

Resolution order, first success wins:
  1. Whop user token header -> upsert the local user from the Whop profile
  2. `comvault_user_id` session cookie -> local user lookup
  3. seeded test user, in development mode on localhost only
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from fastapi import Depends, Request, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .database import get_db
from .errors import AuthenticationError, UpstreamError
from .services import Services, get_services
from .whop import WhopClient

logger = logging.getLogger(__name__)

SESSION_COOKIE = "comvault_user_id"
SESSION_MAX_AGE = 30 * 24 * 60 * 60
LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}

# Checked in order; anything unmatched maps to VIEWER
ROLE_MAP: Sequence[Tuple[str, models.UserRole]] = (
    ("admin", models.UserRole.ADMIN),
    ("creator", models.UserRole.CREATOR),
    ("owner", models.UserRole.CREATOR),
)


def resolve_role(profile: Optional[Dict[str, Any]], role_map=ROLE_MAP) -> models.UserRole:
    profile = profile or {}
    tokens = list(profile.get("roles") or [])
    tokens += [profile.get("type"), profile.get("role")]
    lowered = {t.lower() for t in tokens if isinstance(t, str)}

    for token, role in role_map:
        if token in lowered:
            return role
    return models.UserRole.VIEWER


def _first_str(*values) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return None


def profile_fields(profile: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    profile = profile or {}
    avatar = profile.get("avatar") if isinstance(profile.get("avatar"), dict) else {}
    image = profile.get("profileImage") if isinstance(profile.get("profileImage"), dict) else {}
    return {
        "name": _first_str(profile.get("displayName"), profile.get("name"), profile.get("username")),
        "email": _first_str(profile.get("email")),
        "avatar_url": _first_str(
            avatar.get("url"),
            image.get("url"),
            profile.get("profile_pic_url"),
            profile.get("profilePicture"),
        ),
    }


def upsert_user(
    db: Session,
    whop_user_id: str,
    fields: Dict[str, Optional[str]],
    role: Optional[models.UserRole] = None,
    default_role: models.UserRole = models.UserRole.VIEWER,
) -> models.User:
    """
    Create or refresh the local mirror of a Whop user.
    Last write wins; None fields never overwrite stored values.
    """
    user = db.query(models.User).filter(models.User.whop_user_id == whop_user_id).first()
    if user is None:
        user = models.User(whop_user_id=whop_user_id, role=role or default_role, **fields)
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request created the same user first
            db.rollback()
            user = db.query(models.User).filter(models.User.whop_user_id == whop_user_id).one()
        else:
            db.refresh(user)
            return user

    for key, value in fields.items():
        if value is not None:
            setattr(user, key, value)
    if role is not None:
        user.role = role
    db.commit()
    db.refresh(user)
    return user


def set_session_cookie(response: Response, user_id: str, secure: bool) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        user_id,
        max_age=SESSION_MAX_AGE,
        path="/",
        httponly=True,
        secure=secure,
        samesite="none",
    )


class IdentityResolver:
    def __init__(self, whop: WhopClient, is_development: bool, dev_user_whop_id: str,
                 secure_cookies: bool = False, role_map=ROLE_MAP):
        self.whop = whop
        self.is_development = is_development
        self.dev_user_whop_id = dev_user_whop_id
        self.secure_cookies = secure_cookies
        self.role_map = role_map

    @classmethod
    def from_settings(cls, settings, whop: WhopClient) -> "IdentityResolver":
        return cls(
            whop=whop,
            is_development=settings.is_development,
            dev_user_whop_id=settings.dev_user_whop_id,
            secure_cookies=settings.is_production,
        )

    def resolve(self, db: Session, request: Request, response: Optional[Response] = None) -> Optional[models.User]:
        user = self._from_token(db, request)
        if user is not None:
            if response is not None:
                set_session_cookie(response, user.id, self.secure_cookies)
            return user

        user = self._from_cookie(db, request)
        if user is not None:
            return user

        return self._dev_fallback(db, request)

    def _from_token(self, db: Session, request: Request) -> Optional[models.User]:
        whop_user_id = self.whop.verify_user_token(request.headers)
        if not whop_user_id:
            return None

        try:
            profile = self.whop.get_user(whop_user_id)
        except UpstreamError:
            logger.exception("failed to retrieve Whop profile for %s", whop_user_id)
            profile = {}

        return upsert_user(
            db,
            whop_user_id,
            profile_fields(profile),
            role=resolve_role(profile, self.role_map),
        )

    def _from_cookie(self, db: Session, request: Request) -> Optional[models.User]:
        user_id = request.cookies.get(SESSION_COOKIE)
        if not user_id:
            return None
        user = db.get(models.User, user_id)
        if user is None:
            logger.info("session cookie references unknown user %s", user_id)
        return user

    def _dev_fallback(self, db: Session, request: Request) -> Optional[models.User]:
        if not self.is_development:
            return None
        host = (request.url.hostname or "").lower()
        if host not in LOCAL_HOSTS:
            return None
        user = db.query(models.User).filter(models.User.whop_user_id == self.dev_user_whop_id).first()
        if user is not None:
            logger.debug("using development fallback user %s", user.id)
        return user


def get_current_user(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
) -> Optional[models.User]:
    return services.identity.resolve(db, request, response)


def require_user(user: Optional[models.User] = Depends(get_current_user)) -> models.User:
    if user is None:
        raise AuthenticationError()
    return user
