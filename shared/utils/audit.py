"""
shared/utils/audit.py
Append-only audit trail for privileged mutations.

The entry is committed on its own, after the mutation it describes has
been committed. A failed append is logged and never undoes the mutation.
"""

import logging
import uuid

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AuditLog

logger = logging.getLogger(__name__)


async def append_audit(
    db: AsyncSession,
    *,
    actor_id: uuid.UUID,
    action: str,
    entity_type: str,
    entity_id: str | uuid.UUID | None = None,
    details: dict | None = None,
    request: Request | None = None,
) -> AuditLog | None:
    """Write one AuditLog row. Returns None when the write failed."""
    entry = AuditLog(
        user_id=actor_id,
        action=str(getattr(action, "value", action)),
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details or {},
        ip_address=request.client.host if request and request.client else None,
        user_agent=request.headers.get("user-agent") if request else None,
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.error(
            "Audit append failed: action=%s entity=%s:%s actor=%s",
            entry.action, entity_type, entity_id, actor_id,
            exc_info=True,
        )
        return None
    return entry
