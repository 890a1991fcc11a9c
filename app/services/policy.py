"""
Role gate: membership role -> capability checks.

Every call hits the membership table; roles can change between requests, so
nothing is cached.
"""
from __future__ import annotations

import enum
from functools import wraps
from typing import Optional

from flask_login import current_user
from sqlalchemy.orm import Session

from app.models.org_membership import OrgMembership, ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER
from app.services.errors import Forbidden, NotFound, Unauthorized


class Capability(str, enum.Enum):
    READ = "read"
    APPEND_UPDATE = "append_update"
    MUTATE_PLAN = "mutate_plan"
    MUTATE_INCIDENT = "mutate_incident"
    DELETE_PLAN = "delete_plan"
    MANAGE_BILLING = "manage_billing"


CAPABILITY_ROLES = {
    Capability.READ: frozenset({ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER}),
    # Incident logging is open to every member, unlike plan mutation
    Capability.APPEND_UPDATE: frozenset({ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER}),
    Capability.MUTATE_PLAN: frozenset({ROLE_ADMIN, ROLE_EDITOR}),
    Capability.MUTATE_INCIDENT: frozenset({ROLE_ADMIN, ROLE_EDITOR}),
    Capability.DELETE_PLAN: frozenset({ROLE_ADMIN}),
    Capability.MANAGE_BILLING: frozenset({ROLE_ADMIN}),
}


def memberships_for(session: Session, user_id: int):
    return (
        session.query(OrgMembership)
        .filter(OrgMembership.user_id == user_id)
        .order_by(OrgMembership.org_id)
        .all()
    )


def resolve_role(session: Session, org_id: int, user_id: Optional[int]) -> Optional[str]:
    if org_id is None or user_id is None:
        return None
    m = session.query(OrgMembership).filter_by(org_id=org_id, user_id=user_id).one_or_none()
    return m.role if m else None


def authorize(session: Session, org_id: int, user_id: Optional[int], capability: Capability) -> bool:
    role = resolve_role(session, org_id, user_id)
    if role is None:
        return False
    return role in CAPABILITY_ROLES[Capability(capability)]


def require(session: Session, org_id: int, user_id: Optional[int], capability: Capability) -> str:
    """Org-addressed operations: any denial is Forbidden. Returns the caller's role."""
    role = resolve_role(session, org_id, user_id)
    if role is None or role not in CAPABILITY_ROLES[Capability(capability)]:
        raise Forbidden(f"Missing capability {Capability(capability).value!r} in this organization.")
    return role


def require_access(session: Session, org_id: int, user_id: Optional[int], capability: Capability, *, entity: str) -> str:
    """
    Entity-addressed operations: non-members get NotFound (anti-enumeration),
    members without the capability get Forbidden.
    """
    role = resolve_role(session, org_id, user_id)
    if role is None:
        raise NotFound(f"{entity} not found")
    if role not in CAPABILITY_ROLES[Capability(capability)]:
        raise Forbidden(f"Missing capability {Capability(capability).value!r} in this organization.")
    return role


def current_user_id() -> int:
    """Identity of the caller; Unauthorized when no session is present."""
    if not getattr(current_user, "is_authenticated", False):
        raise Unauthorized("Authentication required")
    return current_user.id


def login_required_json(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        current_user_id()
        return fn(*args, **kwargs)
    return _wrap
