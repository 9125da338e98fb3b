# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for password hashing and
stateless signed JWTs for request authentication, so no session table has to
be consulted on every request.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters; upper, lower, digit and special char required
- Tokens: HS256 JWT with sub/email/role and an exp claim (JWT_EXPIRES_HOURS)
- Deactivated users are rejected at login and on every authenticated request
"""

import re
from datetime import timedelta, timezone

import bcrypt
import jwt
from flask import current_app

from ..extensions import db
from ..models import User, Role
from ..errors import AuthError, ValidationError
from nexus.time_utils import utcnow


DEFAULT_ROLES = {
    "admin": "Full access, including negative stock overrides and audit logs",
    "manager": "Approves orders, adjusts and transfers stock",
    "staff": "Creates orders and views stock",
}


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, [message])


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

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


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash counts as a
    mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(email: str, password: str, full_name: str | None = None, role_name: str | None = None) -> User:
    """
    Create a user with a bcrypt password hash and an optional role.

    Raises:
        PasswordValidationError: weak password
        ValidationError: email already taken or unknown role
    """
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError(f"User '{email}' already exists")

    user = User(email=email, full_name=full_name, password_hash=hash_password(password))
    if role_name:
        role = db.session.query(Role).filter_by(name=role_name).first()
        if role is None:
            raise ValidationError(f"Role '{role_name}' not found")
        user.roles.append(role)

    db.session.add(user)
    db.session.commit()
    return user


def create_default_roles() -> int:
    """Create the default roles if missing. Returns how many were created."""
    created = 0
    for name, description in DEFAULT_ROLES.items():
        if db.session.query(Role).filter_by(name=name).first() is None:
            db.session.add(Role(name=name, description=description))
            created += 1
    db.session.commit()
    return created


def issue_token(user: User) -> str:
    config = current_app.config
    now = utcnow().replace(tzinfo=timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role_name,
        "iat": now,
        "exp": now + timedelta(hours=config["JWT_EXPIRES_HOURS"]),
    }
    return jwt.encode(payload, config["JWT_SECRET"], algorithm=config["JWT_ALGORITHM"])


def decode_token(token: str) -> dict:
    """Return the verified claims, or raise AuthError for any bad/expired token."""
    config = current_app.config
    try:
        return jwt.decode(token, config["JWT_SECRET"], algorithms=[config["JWT_ALGORITHM"]])
    except jwt.PyJWTError as exc:
        raise AuthError("Unauthorized: Invalid token") from exc


def authenticate(email: str, password: str) -> tuple[User, str]:
    """
    Check credentials and issue a token.

    The same message covers unknown email, wrong password and inactive
    accounts so the response does not reveal which one it was.
    """
    if not email or not password:
        raise ValidationError("email and password required", ["email and password required"])

    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        raise AuthError("Invalid credentials")

    user.last_login_at = utcnow()
    db.session.commit()
    return user, issue_token(user)


def get_user_from_token(token: str) -> User:
    claims = decode_token(token)
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError) as exc:
        raise AuthError("Unauthorized: Invalid token") from exc

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthError("Unauthorized: Invalid token")
    return user
