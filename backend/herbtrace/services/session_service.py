# Overview: Bearer-session issuing, validation and revocation for supply-chain actors.

"""
Actor Sessions

Every API call is attributed to one actor: the bearer token resolves to the
User whose user_id is written as actor_id on appended events. The plaintext
token leaves the server exactly once (at login); only its SHA-256 digest is
stored.

Lifetimes come from the Flask config:
    SESSION_ABSOLUTE_TIMEOUT_HOURS   hard cap from login (default 24)
    SESSION_IDLE_TIMEOUT_MINUTES     max gap between requests (default 120)

An idle or orphaned session is revoked the first time it is presented.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app, has_app_context

from ..extensions import db
from ..models import SessionToken, User
from herbtrace.time_utils import utcnow


DEFAULT_ABSOLUTE_TIMEOUT = timedelta(hours=24)
DEFAULT_IDLE_TIMEOUT = timedelta(hours=2)

TOKEN_BYTES = 32


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    permissions: set[str]

    @property
    def actor_id(self) -> str:
        return self.user.user_id

    @property
    def actor_role(self) -> str:
        return self.user.role


def absolute_timeout() -> timedelta:
    if not has_app_context():
        return DEFAULT_ABSOLUTE_TIMEOUT
    hours = current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS")
    return timedelta(hours=float(hours)) if hours else DEFAULT_ABSOLUTE_TIMEOUT


def idle_timeout() -> timedelta:
    if not has_app_context():
        return DEFAULT_IDLE_TIMEOUT
    minutes = current_app.config.get("SESSION_IDLE_TIMEOUT_MINUTES")
    return timedelta(minutes=float(minutes)) if minutes else DEFAULT_IDLE_TIMEOUT


def generate_token() -> str:
    """64 hex characters; handed to the client, never persisted."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user_pk: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Open a session for an active actor.

    Returns (session_row, plaintext_token).

    Raises:
        ValueError: unknown or deactivated user
    """
    user = db.session.get(User, user_pk)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is deactivated")

    token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_pk=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + absolute_timeout(),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    current_app.logger.info("Session opened for %s (%s)", user.user_id, user.role)
    return session, token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def _active_session(token: str) -> SessionToken | None:
    return db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its actor, or None.

    None for unknown, revoked or expired tokens, idle sessions and
    deactivated accounts. A valid call refreshes last_used_at.
    """
    from .permission_service import get_user_permissions

    session = _active_session(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    if now - session.last_used_at > idle_timeout():
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if user is None or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session, permissions=get_user_permissions(user))


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """False when the token is unknown or already revoked."""
    session = _active_session(token)
    if session is None:
        return False
    _revoke(session, reason)
    return True


def revoke_all_user_sessions(user_pk: int, reason: str = "Revoke all sessions") -> int:
    """Revoke every open session of one user; returns how many were open."""
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_pk=user_pk, is_revoked=False).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason
    db.session.commit()
    return len(sessions)
