"""
shared/policy/roles.py
Single ordering of roles. Every role comparison in the codebase goes
through role_rank.
"""

from shared.models.models import UserRole

_RANKS = {
    UserRole.USER: 0,
    UserRole.AGENT: 1,
    UserRole.ADMIN: 2,
    UserRole.SUPER_ADMIN: 3,
}

ADMIN_TIER = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


def parse_role(value) -> UserRole | None:
    """Exact, case-sensitive match against the role names. None if unknown."""
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(value)
    except ValueError:
        return None


def role_rank(role) -> int:
    return _RANKS[UserRole(role)]


def outranks(actor_role, target_role) -> bool:
    return role_rank(actor_role) > role_rank(target_role)


def is_admin_tier(role) -> bool:
    return UserRole(role) in ADMIN_TIER


def is_super_admin(role) -> bool:
    return UserRole(role) == UserRole.SUPER_ADMIN


def can_assign_role(actor_role, target_current_role, new_role) -> bool:
    """
    SUPER_ADMIN may assign any role. Any other actor must be admin-tier and
    strictly outrank both the target's current role and the role being
    assigned, so ADMIN can only move users between USER and AGENT.
    """
    if is_super_admin(actor_role):
        return True
    if not is_admin_tier(actor_role):
        return False
    return outranks(actor_role, target_current_role) and outranks(actor_role, new_role)
