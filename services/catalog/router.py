"""
services/catalog/router.py
Service catalog: public browsing, agent-owned create/edit, deactivation.
Services are never removed, so bookings that reference them stay valid.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_optional_user, require_agent
from shared.models.models import AuditAction, Service, User, UserRole
from shared.policy.access import Action, Viewer, can_access, ensure_access
from shared.schemas.schemas import ServiceCreateRequest, ServiceResponse, ServiceUpdateRequest
from shared.utils.audit import append_audit
from shared.utils.errors import NotFound, ValidationFailed
from shared.utils.pagination import ListParams, paginate
from shared.utils.responses import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/services", tags=["Services"])

SERVICE_SORT_FIELDS = {"created_at", "updated_at", "title", "price", "category"}


# ── Helpers ───────────────────────────────────────────────────

async def _get_service_or_404(service_id: UUID, db: AsyncSession) -> Service:
    service = await db.get(Service, service_id)
    if not service:
        raise NotFound("Service not found")
    return service


def _serialize(service: Service) -> dict:
    return ServiceResponse.model_validate(service).model_dump(mode="json")


def _jsonable(value):
    return str(value) if value is not None and not isinstance(value, (str, bool, int)) else value


# ── Public ────────────────────────────────────────────────────

@router.get("")
async def list_services(
    category: Optional[str] = Query(None),
    agent_id: Optional[UUID] = Query(None),
    params: ListParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """Active services only. search matches title and description, case-insensitive."""
    query = select(Service).where(Service.is_active == True)
    if category:
        query = query.where(Service.category == category)
    if agent_id:
        query = query.where(Service.agent_id == agent_id)
    if params.search:
        pattern = f"%{params.search}%"
        query = query.where(or_(Service.title.ilike(pattern), Service.description.ilike(pattern)))

    query = query.order_by(params.order_by(Service, SERVICE_SORT_FIELDS))
    services, pagination = await paginate(db, query, params)
    return ok([_serialize(s) for s in services], pagination=pagination)


@router.get("/{service_id}")
async def get_service(
    service_id: UUID,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Inactive services are visible to their owner and admins only."""
    service = await _get_service_or_404(service_id, db)
    viewer = Viewer.from_user(current_user) if current_user else None
    if not can_access(viewer, Action.READ, service):
        raise NotFound("Service not found")
    return ok(_serialize(service))


# ── Agent / Admin ─────────────────────────────────────────────

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_service(
    data: ServiceCreateRequest,
    request: Request,
    current_user: User = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
):
    """Agents create their own services. Admins may create one on behalf of an agent."""
    viewer = Viewer.from_user(current_user)
    owner_id = current_user.id

    if data.agent_id and data.agent_id != current_user.id:
        if not viewer.is_admin:
            raise ValidationFailed("Agents can only create their own services")
        agent = await db.get(User, data.agent_id)
        if not agent or agent.role != UserRole.AGENT:
            raise ValidationFailed("agent_id must reference an agent")
        owner_id = agent.id
    elif viewer.is_admin:
        raise ValidationFailed("agent_id is required")

    service = Service(
        agent_id=owner_id,
        title=data.title,
        description=data.description,
        price=data.price,
        category=data.category,
    )
    db.add(service)
    await db.commit()
    await db.refresh(service)
    created = _serialize(service)
    logger.info(f"Service {service.id} created by {current_user.id} for agent {owner_id}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.SERVICE_CREATED,
        entity_type="Service",
        entity_id=service.id,
        details={"title": service.title, "agent_id": str(owner_id)},
        request=request,
    )
    return ok(created, message="Service created")


@router.patch("/{service_id}")
async def update_service(
    service_id: UUID,
    data: ServiceUpdateRequest,
    request: Request,
    current_user: User = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
):
    service = await _get_service_or_404(service_id, db)
    ensure_access(Viewer.from_user(current_user), Action.UPDATE, service, "Not authorized to edit this service")

    diff = {}
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None or getattr(service, field) == value:
            continue
        diff[field] = {"before": _jsonable(getattr(service, field)), "after": _jsonable(value)}
        setattr(service, field, value)

    if not diff:
        return ok(_serialize(service), message="No changes")

    await db.commit()
    await db.refresh(service)
    body = _serialize(service)
    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.SERVICE_UPDATED,
        entity_type="Service",
        entity_id=service_id,
        details={"changes": diff},
        request=request,
    )
    return ok(body, message="Service updated")


@router.delete("/{service_id}")
async def delete_service(
    service_id: UUID,
    request: Request,
    current_user: User = Depends(require_agent),
    db: AsyncSession = Depends(get_db),
):
    """Deactivates the service. Existing bookings keep their reference."""
    service = await _get_service_or_404(service_id, db)
    ensure_access(Viewer.from_user(current_user), Action.DELETE, service, "Not authorized to delete this service")

    if not service.is_active:
        return ok(_serialize(service), message="Service already deleted")

    service.is_active = False
    await db.commit()
    await db.refresh(service)
    body = _serialize(service)
    logger.info(f"Service {service_id} deactivated by {current_user.id}")
    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.SERVICE_DELETED,
        entity_type="Service",
        entity_id=service_id,
        request=request,
    )
    return ok(body, message="Service deleted")
