# Overview: Service-layer operations for auth; principal model, roles and user lookups.

"""
Authentication Collaborator (core side)

WHY: Every action must be attributable. Credential issuance and sessions
live outside this service; the core receives an already authenticated
Principal and only checks role and ownership.

ROLES:
- owner: catalog, invoices, stock holds, everything a clerk can do
- clerk: invoice intake, assignments, schedules, leave
- dsr: own assignments (mark sold, return) and own attendance
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import User
from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .concurrency import commit_or_conflict


ROLE_OWNER = "owner"
ROLE_CLERK = "clerk"
ROLE_DSR = "dsr"
ROLES = (ROLE_OWNER, ROLE_CLERK, ROLE_DSR)

STAFF_ROLES = (ROLE_OWNER, ROLE_CLERK)


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_dsr(self) -> bool:
        return self.role == ROLE_DSR


def require_role(principal: Principal, *roles: str) -> None:
    if principal.role not in roles:
        raise AuthorizationError(
            f"Role '{principal.role}' may not perform this operation",
            user_id=principal.user_id,
            role=principal.role,
        )


def require_self_or_staff(principal: Principal, owner_user_id: int, **context) -> None:
    """DSRs may only act on their own records; staff may act on anyone's."""
    if principal.is_staff:
        return
    if principal.user_id != owner_user_id:
        raise AuthorizationError(
            "You may only act on your own records",
            user_id=principal.user_id,
            **context,
        )


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)
    return user


def get_active_agent(agent_id: int) -> User:
    """Resolve a field agent. Must exist, be active and carry the dsr role."""
    user = get_user(agent_id)
    if not user.is_active:
        raise ValidationError("Agent account is not active", agent_id=agent_id)
    if user.role != ROLE_DSR:
        raise ValidationError("User is not a DSR", agent_id=agent_id, role=user.role)
    return user


def load_principal(user_id, role: str | None = None) -> Principal:
    """
    Build a Principal for a user id asserted by the gateway.

    The user must exist and be active. If the gateway also asserted a role,
    it must match the stored role.
    """
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise AuthorizationError("Invalid user id")

    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise AuthorizationError("Unknown or inactive user", user_id=user_id)
    if role and role != user.role:
        raise AuthorizationError("Asserted role does not match user", user_id=user_id, role=role)
    return Principal(user_id=user.id, role=user.role)


def create_user(
    *,
    username: str,
    email: str,
    role: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> User:
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise ValidationError("username and email are required")
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}", role=role)

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists", username=username)

    user = User(
        username=username,
        email=email,
        role=role,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
    )
    db.session.add(user)
    commit_or_conflict("Username or email already exists", username=username)
    return user


def list_users(*, role: str | None = None, active_only: bool = False) -> list[User]:
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == role)
    if active_only:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.username.asc()).all()
