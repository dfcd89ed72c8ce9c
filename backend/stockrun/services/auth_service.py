# Overview: Service-layer operations for auth; password hashing, user creation and login.

"""
Authentication Service

WHY: Every allocation, reconciliation and sale is attributed to a user, and
field staff must be identifiable to publish locations.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
- Inactive users cannot log in
"""

import re

import bcrypt
from flask import current_app, has_app_context

from ..errors import AuthError, ConflictError, ValidationError
from ..extensions import db
from ..models import User
from ..models.auth import ALL_ROLES
from ..records import normalize_role
from stockrun.time_utils import utcnow


class PasswordValidationError(ValidationError):
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
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", 12))
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

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    name: str,
    email: str,
    password: str,
    role: str,
    phone: str | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValidationError: missing name/email or unknown role
        PasswordValidationError: weak password
        ConflictError: email already registered
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or not email:
        raise ValidationError("name and email are required")

    normalized_role = normalize_role(role)
    if normalized_role is None:
        raise ValidationError("Unknown role", details={"role": role, "allowed": list(ALL_ROLES)})

    existing = db.session.query(User).filter(User.email == email).first()
    if existing:
        raise ConflictError("Email already registered", details={"email": email})

    user = User(
        name=name,
        email=email,
        phone=phone,
        password_hash=hash_password(password),
        role=normalized_role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def login(email: str, password: str) -> User:
    """
    Authenticate by email and password.

    Returns the User and stamps last_login_at. Raises AuthError for unknown
    email, wrong password, or an inactive account (same message for all).
    """
    email = (email or "").strip().lower()
    user = db.session.query(User).filter(User.email == email).first()

    if not user or not user.is_active or not verify_password(password or "", user.password_hash):
        raise AuthError("Invalid email or password")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def list_users(role: str | None = None) -> list[User]:
    query = db.session.query(User)
    if role:
        normalized_role = normalize_role(role)
        if normalized_role is None:
            raise ValidationError("Unknown role", details={"role": role})
        query = query.filter(User.role == normalized_role)
    return query.order_by(User.name.asc(), User.id.asc()).all()
