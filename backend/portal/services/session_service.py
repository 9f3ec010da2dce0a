# Overview: Service-layer operations for bearer sessions; encapsulates business logic and database work.

"""
Bearer Sessions

A login mints a random token; only its SHA-256 digest is stored. Every
authenticated request resolves the token to (user, role, partner_id).

Lifetime:
- absolute limit SESSION_ABSOLUTE_HOURS (default 24) from issue
- idle limit SESSION_IDLE_MINUTES (default 120) since last use
- revoked on logout, on user deactivation, or by purge_expired_sessions

partner_id is looked up on every request, never frozen into the token:
membership changes apply to the caller's next call without a new login.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..permissions import Role
from . import partner_service
from portal.time_utils import utcnow


logger = logging.getLogger(__name__)

DEFAULT_ABSOLUTE_HOURS = 24
DEFAULT_IDLE_MINUTES = 120

TOKEN_BYTES = 32


@dataclass
class SessionContext:
    """Identity established for one authenticated request."""
    user: User
    session: SessionToken
    role: Role | None
    partner_id: int | None


def _config_value(key: str, default: int) -> int:
    try:
        return int(current_app.config.get(key, default))
    except RuntimeError:
        # Outside an application context
        return default


def absolute_timeout() -> timedelta:
    return timedelta(hours=_config_value("SESSION_ABSOLUTE_HOURS", DEFAULT_ABSOLUTE_HOURS))


def idle_timeout() -> timedelta:
    return timedelta(minutes=_config_value("SESSION_IDLE_MINUTES", DEFAULT_IDLE_MINUTES))


def generate_token() -> str:
    """64 hex characters from the OS CSPRNG. Handed to the client, never stored."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _find_live(token: str) -> SessionToken | None:
    return db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()


def _mark_revoked(session: SessionToken, reason: str, when: datetime) -> None:
    session.is_revoked = True
    session.revoked_at = when
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Issue a session for an active user.

    Returns (session_row, plaintext_token). Raises ValueError for a
    missing or inactive user.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User is not active")

    token = generate_token()
    issued = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=issued,
        last_used_at=issued,
        expires_at=issued + absolute_timeout(),
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    logger.debug("Session %s issued for user %s", session.id, user.id)
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token, or None when it is unknown, revoked, past
    either time limit, or owned by a deactivated user.

    Idle and deactivated-user sessions are revoked on the spot. A valid
    call bumps last_used_at.
    """
    session = _find_live(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    if now - session.last_used_at > idle_timeout():
        _mark_revoked(session, "Idle timeout", now)
        db.session.commit()
        return None

    user = session.user
    if user is None or not user.is_active:
        _mark_revoked(session, "User account deactivated", now)
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=user,
        session=session,
        role=user.role_enum,
        partner_id=partner_service.get_user_partner_id(user.id),
    )


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """True when a live session was found and revoked."""
    session = _find_live(token)
    if session is None:
        return False
    _mark_revoked(session, reason, utcnow())
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Account deactivated") -> int:
    """Revoke every live session of a user. The caller commits."""
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        _mark_revoked(session, reason, now)
    return len(sessions)


def purge_expired_sessions(now: datetime | None = None) -> int:
    """
    Revoke live sessions that are past either time limit.

    validate_session only notices a stale token when it is presented;
    this sweeps the ones that never come back.
    """
    now = now or utcnow()
    stale = db.session.query(SessionToken).filter(
        SessionToken.is_revoked.is_(False),
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.last_used_at < now - idle_timeout(),
        ),
    ).all()
    for session in stale:
        _mark_revoked(session, "Expired", now)
    db.session.commit()

    if stale:
        logger.info("Purged %s expired sessions", len(stale))
    return len(stale)
