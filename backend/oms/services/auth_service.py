# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication and Team Management Service with Multi-Tenant Support

Every order move is attributed to a user, so accounts are real: passwords
are bcrypt hashed and checked against a strength policy.

MULTI-TENANT: Users live in the central database. Tenant users (SUPER_ADMIN
owners, ADMIN employees) belong to exactly one tenant; platform operators
(DEV_ADMIN) have none. Usernames are globally unique because login happens
before a tenant is known.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Login fails for inactive users and for users of inactive tenants
- Session handling is upstream; login only returns the user record
"""

import logging
import re

import bcrypt

from ..extensions import db
from ..errors import ConflictError, NotFound, Unauthorized, ValidationError
from ..models import Tenant, User, ROLE_ADMIN, ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN, VALID_ROLES
from oms.time_utils import utcnow

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


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
    if not isinstance(password, str) or len(password) < 8:
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
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash counts as a
    mismatch.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(username: str, password: str) -> User:
    """
    Check credentials and stamp last_login_at.

    Raises:
        Unauthorized: unknown user, wrong password, inactive user or tenant
    """
    username = (username or "").strip()
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()

    if user is None or not verify_password(password or "", user.password_hash):
        logger.info("Login failed for %r", username)
        raise Unauthorized("Invalid credentials")

    if user.tenant_id is not None:
        tenant = db.session.query(Tenant).filter_by(id=user.tenant_id).first()
        if tenant is None or not tenant.is_active:
            logger.info("Login refused for %r: tenant inactive", username)
            raise Unauthorized("Invalid credentials")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def login(username: str, password: str) -> dict:
    """authenticate() and serialize the user with its tenant id and name."""
    user = authenticate(username, password)
    data = user.to_dict()
    data["tenant_name"] = user.tenant.name if user.tenant else None
    return data


def _clean_permissions(permissions) -> list[str]:
    if permissions is None:
        return []
    if not isinstance(permissions, list) or not all(isinstance(p, str) for p in permissions):
        raise ValidationError("permissions must be a list of page ids")
    return [p.strip() for p in permissions if p.strip()]


def _require_username_free(username: str, exclude_id: int | None = None) -> None:
    query = db.session.query(User.id).filter(User.username == username)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Username already exists")


def create_user(
    tenant_id: str | None,
    username: str,
    password: str,
    *,
    email: str | None = None,
    role: str = ROLE_ADMIN,
    permissions: list[str] | None = None,
) -> User:
    """
    Create a user with a bcrypt-hashed password.

    Raises:
        ValidationError: bad role, missing username, weak password
        NotFound: tenant does not exist
        ConflictError: username taken
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username is required")
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(VALID_ROLES))}")

    if tenant_id is not None:
        tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
        if tenant is None:
            raise NotFound("Tenant not found")
    elif role != ROLE_DEV_ADMIN:
        raise ValidationError("Tenant users require a tenant")

    _require_username_free(username)

    user = User(
        tenant_id=tenant_id,
        username=username,
        email=(email or "").strip() or None,
        password_hash=hash_password(password),
        role=role,
        permissions=_clean_permissions(permissions),
    )
    db.session.add(user)
    db.session.commit()
    logger.info("User %s created (tenant=%s, role=%s)", username, tenant_id, role)
    return user


def upsert_tenant_owner(tenant_id: str, admin_user: dict) -> User:
    """
    Create or update the tenant's SUPER_ADMIN account.

    admin_user keys: username, password (optional on update), email.
    The caller commits.
    """
    if not isinstance(admin_user, dict):
        raise ValidationError("adminUser must be an object")

    owner = db.session.query(User).filter_by(
        tenant_id=tenant_id, role=ROLE_SUPER_ADMIN,
    ).order_by(User.id).first()

    username = (admin_user.get("username") or "").strip()
    password = admin_user.get("password")

    if owner is None:
        if not username or not password:
            raise ValidationError("Owner username and password are required")
        _require_username_free(username)
        owner = User(
            tenant_id=tenant_id,
            username=username,
            password_hash=hash_password(password),
            role=ROLE_SUPER_ADMIN,
            permissions=[],
        )
        db.session.add(owner)
    else:
        if username and username != owner.username:
            _require_username_free(username, exclude_id=owner.id)
            owner.username = username
        if password:
            owner.password_hash = hash_password(password)

    if "email" in admin_user:
        owner.email = (admin_user.get("email") or "").strip() or None

    db.session.flush()
    return owner


def list_users(tenant_id: str) -> list[User]:
    return (
        db.session.query(User)
        .filter(User.tenant_id == tenant_id)
        .order_by(User.username)
        .all()
    )


def delete_user(tenant_id: str, user_id: int) -> None:
    user = db.session.query(User).filter_by(id=user_id, tenant_id=tenant_id).first()
    if user is None:
        raise NotFound("User not found")
    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted from tenant %s", user.username, tenant_id)
