# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for secure password
hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)

Registration rules:
- super_admin may create any role, optionally linking a partner-scoped
  account to a partner in the same transaction
- partner_admin may create partner_user / partner_customer accounts only,
  always linked to its own partner
"""

import logging
import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, PartnerUser
from ..permissions import Role, PARTNER_MEMBER_ROLES
from ..validation import ValidationError, ConflictError, NotFoundError, clean_str
from .permission_service import PermissionDeniedError, user_has_permission
from portal.time_utils import utcnow


logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Roles a partner_admin may hand out
PARTNER_ADMIN_CREATABLE_ROLES = frozenset({Role.PARTNER_USER, Role.PARTNER_CUSTOMER})


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password is required")

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def _bcrypt_rounds() -> int:
    try:
        return int(current_app.config.get("BCRYPT_ROUNDS", 12))
    except RuntimeError:
        # No app context (CLI helpers, scripts)
        return 12


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise.
    bcrypt.checkpw() is timing-safe.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: Role | str = Role.END_USER,
    display_name: str | None = None,
    commit: bool = True,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValidationError: bad username/email/role
        ConflictError: username or email already taken
        PasswordValidationError: weak password
    """
    username = clean_str(username, "username", max_length=64, required=True)
    email = clean_str(email, "email", max_length=255, required=True)
    display_name = clean_str(display_name, "display_name", max_length=128)

    if not _EMAIL_RE.match(email):
        raise ValidationError("email is not a valid address")

    parsed_role = Role.parse(role)
    if parsed_role is None:
        raise ValidationError(f"Invalid role: {role}")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        display_name=display_name,
        password_hash=hash_password(password),
        role=parsed_role.value,
        is_active=True,
    )

    db.session.add(user)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return user


def register_user(
    actor: User,
    *,
    username: str,
    email: str,
    password: str,
    role: str,
    display_name: str | None = None,
    partner_id: int | None = None,
    actor_partner_id: int | None = None,
) -> tuple[User, PartnerUser | None]:
    """
    Create an account on behalf of an administrator.

    Returns (user, partner_link or None). The link, when any, is written in
    the same transaction as the user.
    """
    from .partner_service import get_active_partner, create_membership

    if not user_has_permission(actor, "user:create"):
        raise PermissionDeniedError("Permission denied: user:create")

    target_role = Role.parse(role)
    if target_role is None:
        raise ValidationError(f"Invalid role: {role}")

    actor_role = actor.role_enum
    if actor_role == Role.SUPER_ADMIN:
        link_partner_id = partner_id if target_role in PARTNER_MEMBER_ROLES else None
        if partner_id is not None and target_role not in PARTNER_MEMBER_ROLES:
            raise ValidationError("Only partner roles can be linked to a partner")
    elif actor_role == Role.PARTNER_ADMIN:
        if target_role not in PARTNER_ADMIN_CREATABLE_ROLES:
            raise PermissionDeniedError("Partner admins can only create partner users and partner customers")
        if actor_partner_id is None:
            raise PermissionDeniedError("User is not linked to an active partner")
        if partner_id is not None and partner_id != actor_partner_id:
            raise PermissionDeniedError("Partner admins can only create users for their own partner")
        link_partner_id = actor_partner_id
    else:
        raise PermissionDeniedError("Insufficient role to register users")

    if link_partner_id is not None and get_active_partner(link_partner_id) is None:
        raise NotFoundError("Partner not found")

    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=target_role,
            display_name=display_name,
            commit=False,
        )
        link = None
        if link_partner_id is not None:
            link = create_membership(link_partner_id, user, target_role)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "User %s registered with role %s by user %s (partner=%s)",
        user.username, target_role.value, actor.id, link_partner_id,
    )
    return user, link


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    if not username or not password:
        return None

    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user

