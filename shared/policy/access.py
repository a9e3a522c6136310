"""
shared/policy/access.py
Authorization predicate: can_access(viewer, action, target).
Pure functions over already-loaded entities. No I/O.
"""

import uuid
from dataclasses import dataclass
from enum import Enum

from shared.models.models import Booking, Service, SupportTicket, User, UserRole
from shared.policy.roles import can_assign_role, is_admin_tier, is_super_admin, outranks
from shared.utils.errors import Forbidden


class Action(str, Enum):
    READ = "read"
    UPDATE = "update"
    UPDATE_STATUS = "update_status"
    DELETE = "delete"
    ASSIGN_ROLE = "assign_role"


@dataclass(frozen=True)
class Viewer:
    """The {id, role} pair supplied by the session provider."""
    id: uuid.UUID
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "Viewer":
        return cls(id=user.id, role=UserRole(user.role))

    @property
    def is_admin(self) -> bool:
        return is_admin_tier(self.role)


# ── Per-entity rules ──────────────────────────────────────────

def _user_rules(viewer: Viewer, action: Action, target: User, new_role) -> bool:
    is_self = viewer.id == target.id

    if action == Action.READ:
        return is_self or viewer.is_admin

    if action == Action.UPDATE:
        if is_self:
            return True
        return viewer.is_admin and (is_super_admin(viewer.role) or outranks(viewer.role, target.role))

    if action == Action.DELETE:
        if is_self:
            return False
        return viewer.is_admin and (is_super_admin(viewer.role) or outranks(viewer.role, target.role))

    if action == Action.ASSIGN_ROLE:
        if is_self or new_role is None:
            return False
        return can_assign_role(viewer.role, target.role, new_role)

    return False


def _booking_rules(viewer: Viewer, action: Action, target: Booking) -> bool:
    if viewer.is_admin:
        return True
    is_customer = viewer.id == target.user_id
    is_agent = viewer.id == target.agent_id

    if action == Action.UPDATE_STATUS:
        return is_agent
    if action in (Action.READ, Action.UPDATE, Action.DELETE):
        return is_customer or is_agent
    return False


def _service_rules(viewer: Viewer | None, action: Action, target: Service) -> bool:
    is_owner = viewer is not None and viewer.id == target.agent_id
    is_admin = viewer is not None and viewer.is_admin

    if action == Action.READ:
        return target.is_active or is_owner or is_admin
    if action in (Action.UPDATE, Action.DELETE):
        return is_owner or is_admin
    return False


def _ticket_rules(viewer: Viewer, action: Action, target: SupportTicket) -> bool:
    """Owners read, reply and close. Triage (status, priority) is staff work."""
    if viewer.is_admin:
        return action != Action.DELETE
    if action in (Action.READ, Action.UPDATE):
        return viewer.id == target.user_id
    return False


# ── Public API ────────────────────────────────────────────────

def can_access(viewer: Viewer | None, action: Action, target, *, new_role=None) -> bool:
    """
    Decide whether viewer may perform action on target.
    Anonymous viewers (None) may only read active services.
    """
    if isinstance(target, Service):
        return _service_rules(viewer, action, target)
    if viewer is None:
        return False
    if isinstance(target, User):
        return _user_rules(viewer, action, target, new_role)
    if isinstance(target, Booking):
        return _booking_rules(viewer, action, target)
    if isinstance(target, SupportTicket):
        return _ticket_rules(viewer, action, target)
    raise TypeError(f"Unsupported access target: {type(target).__name__}")


def ensure_access(
    viewer: Viewer | None,
    action: Action,
    target,
    message: str | None = None,
    *,
    new_role=None,
) -> None:
    """Raise Forbidden unless can_access allows the action."""
    if not can_access(viewer, action, target, new_role=new_role):
        raise Forbidden(message)
