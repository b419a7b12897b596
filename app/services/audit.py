"""
app/services/audit.py
Audit sink. Records engine and admin effects as AuditLog rows.

Called after the workflow's own commit; a failing audit write is logged
and rolled back so it never undoes or breaks the work it describes.
"""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from database.models import AuditAction, AuditLog

logger = logging.getLogger(__name__)


async def record_audit(
    session: AsyncSession,
    action: AuditAction,
    payload: dict[str, Any],
    user_id: str | None = None,
    ip: str | None = None,
) -> AuditLog | None:
    """
    Persist one AuditLog row in its own commit.

    Returns None when auditing is disabled or the write failed.
    """
    if not get_settings().AUDIT_ENABLED:
        return None

    entry = AuditLog(user_id=user_id, action=action, payload=payload, ip=ip)
    try:
        session.add(entry)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("Failed to create audit log %s: %s", action.value, exc)
        return None

    logger.debug("Audit %s: %s", action.value, payload)
    return entry
