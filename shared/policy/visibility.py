"""
shared/policy/visibility.py
Visibility projector: decides which fields of a User another viewer may
see. Every branch builds its result from an explicit allow-list.
"""

from shared.models.models import ProfileVisibility, User, UserRole
from shared.policy.access import Viewer
from shared.policy.preferences import load_settings
from shared.schemas.schemas import UserResponse
from shared.utils.errors import Forbidden

PROFILE_FORBIDDEN = "You do not have permission to view this profile"


def full_record(user: User) -> dict:
    """Owner/admin view. The password hash is not part of UserResponse."""
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=UserRole(user.role).value,
        phone=user.phone,
        address=user.address,
        is_active=user.is_active,
        settings=load_settings(user.settings),
        last_login=user.last_login,
        created_at=user.created_at,
        updated_at=user.updated_at,
    ).model_dump(mode="json")


def _basic(user: User) -> dict:
    return {"id": str(user.id), "name": user.name, "role": UserRole(user.role).value}


def project(target: User, viewer: Viewer, *, has_booking: bool = False) -> dict:
    """
    has_booking: a booking links viewer and target (either side may be the
    customer). Raises Forbidden when the target is hidden from the viewer.
    """
    if viewer.id == target.id or viewer.is_admin:
        return full_record(target)

    privacy = load_settings(target.settings).privacy
    visibility = ProfileVisibility(privacy.profile_visibility)
    data = _basic(target)

    if target.role == UserRole.AGENT:
        if not has_booking and visibility == ProfileVisibility.PRIVATE:
            raise Forbidden(PROFILE_FORBIDDEN)
        if privacy.share_contact_info or has_booking:
            data["phone"] = target.phone
            data["email"] = target.email
        return data

    if visibility == ProfileVisibility.PRIVATE:
        raise Forbidden(PROFILE_FORBIDDEN)
    if viewer.role == UserRole.AGENT and not has_booking and visibility != ProfileVisibility.PUBLIC:
        raise Forbidden(PROFILE_FORBIDDEN)
    if privacy.share_contact_info:
        data["email"] = target.email
    return data
