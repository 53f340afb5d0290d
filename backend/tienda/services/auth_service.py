# Overview: Service-layer operations for users and authentication.

"""
Authentication and user management

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Email is unique among active users; deactivation keeps the row
- Session tokens are managed separately (see session_service.py)
"""

import logging
import re

import bcrypt

from ..extensions import db
from ..models import User
from ..models.auth import ROLES, ROLE_EMPLOYEE
from ..validation import ValidationError, NotFoundError, ConflictError, ModelValidationPolicy, validate_payload
from .session_service import revoke_all_user_sessions
from tienda.time_utils import utcnow

logger = logging.getLogger(__name__)

USER_POLICY = ModelValidationPolicy(
    writable_fields={
        "first_name",
        "middle_name",
        "last_name",
        "second_last_name",
        "email",
        "phone",
        "role",
        "is_active",
    },
    required_on_create={"first_name", "last_name", "email"},
)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise ValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost factor 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def _normalize_email(email: str) -> str:
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("email is not a valid address")
    return email


def _ensure_email_free(email: str, exclude_id: int | None = None) -> None:
    query = db.session.query(User.id).filter(User.email == email, User.is_active.is_(True))
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"A user with email {email} already exists")


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def list_users(include_inactive: bool = False) -> list[User]:
    query = db.session.query(User)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.last_name.asc(), User.first_name.asc(), User.id.asc()).all()


def create_user(payload: dict, *, password: str, created_by_user_id: int | None = None) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: bad field, weak password, unknown role
        ConflictError: an active user already has that email
    """
    patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)
    patch["email"] = _normalize_email(patch["email"])
    patch.setdefault("role", ROLE_EMPLOYEE)
    if patch["role"] not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(ROLES))}")

    _ensure_email_free(patch["email"])

    user = User(
        **patch,
        password_hash=hash_password(password),
        created_by_user_id=created_by_user_id,
        updated_by_user_id=created_by_user_id,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("User %s created (%s, role %s)", user.id, user.email, user.role)
    return user


def update_user(user_id: int, payload: dict, *, password: str | None = None, updated_by_user_id: int | None = None) -> User:
    user = get_user(user_id)
    patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True)

    if "email" in patch:
        patch["email"] = _normalize_email(patch["email"])
        _ensure_email_free(patch["email"], exclude_id=user_id)
    if "role" in patch and patch["role"] not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(ROLES))}")

    for key, value in patch.items():
        setattr(user, key, value)
    if password:
        user.password_hash = hash_password(password)
    user.updated_by_user_id = updated_by_user_id
    db.session.commit()

    if patch.get("is_active") is False:
        revoke_all_user_sessions(user.id, reason="User account deactivated")
    return user


def deactivate_user(user_id: int, *, updated_by_user_id: int | None = None) -> User:
    user = get_user(user_id)
    user.is_active = False
    user.updated_by_user_id = updated_by_user_id
    db.session.commit()
    revoke_all_user_sessions(user.id, reason="User account deactivated")
    logger.info("User %s deactivated", user.id)
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Returns the active User for the credentials, None otherwise.
    Updates last_login_at on success.
    """
    if not email or not password:
        return None

    user = db.session.query(User).filter(
        User.email == email.strip().lower(),
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
