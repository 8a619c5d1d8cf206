# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Actor accounts: creation, password checks, login and deactivation.

Every event is attributed to exactly one actor, so accounts are never deleted;
they are deactivated. Passwords are stored as bcrypt hashes (cost 12 unless
the caller lowers it, as the test suite does).
"""

import bcrypt
import re
from ..extensions import db
from ..models import User
from ..permissions import ROLES, validate_permission_code
from herbtrace.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


PASSWORD_MIN_LENGTH = 8

# (pattern, failure message)
PASSWORD_RULES = [
    (r"[A-Z]", "Password must contain at least one uppercase letter"),
    (r"[a-z]", "Password must contain at least one lowercase letter"),
    (r"\d", "Password must contain at least one digit"),
    (r"[!@#$%^&*(),.'\":{}|<>]", "Password must contain at least one special character"),
]


def validate_password_strength(password: str) -> None:
    """Raises PasswordValidationError naming the first unmet rule."""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
        )
    for pattern, message in PASSWORD_RULES:
        if not re.search(pattern, password):
            raise PasswordValidationError(message)


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Hash password using bcrypt after validating its strength."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. Malformed hashes never verify.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    user_id: str,
    username: str,
    email: str,
    password: str,
    role: str,
    organization: str,
    extra_permissions: list[str] | None = None,
    *,
    bcrypt_rounds: int = 12,
) -> User:
    """
    Create new supply-chain actor with bcrypt password hashing.

    Raises:
        ValueError: unknown role, unknown permission code, or duplicate identity
        PasswordValidationError: password doesn't meet requirements
    """
    if role not in ROLES:
        raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(ROLES)}")

    for code in extra_permissions or []:
        if not validate_permission_code(code):
            raise ValueError(f"Unknown permission code '{code}'")

    existing = db.session.query(User).filter(
        db.or_(User.user_id == user_id, User.username == username, User.email == email)
    ).first()
    if existing:
        raise ValueError("User ID, username or email already exists")

    user = User(
        user_id=user_id,
        username=username,
        email=email,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        role=role,
        organization=organization,
        extra_permissions=list(extra_permissions or []),
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user by username or email.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def get_user(user_id: str) -> User | None:
    return db.session.query(User).filter_by(user_id=user_id).first()


def deactivate_user(user_id: str, reason: str = "Account deactivated") -> int:
    """
    Disable an actor and revoke every open session they hold.

    Their batches and events stay on record; they simply can no longer log in.
    Returns the number of sessions revoked.

    Raises:
        ValueError: unknown or already-deactivated user
    """
    from .session_service import revoke_all_user_sessions

    user = get_user(user_id)
    if user is None:
        raise ValueError(f"User '{user_id}' not found")
    if not user.is_active:
        raise ValueError(f"User '{user_id}' is already deactivated")

    user.is_active = False
    db.session.commit()
    return revoke_all_user_sessions(user.id, reason=reason)
