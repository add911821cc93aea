"""Activity service — audit trail rows written alongside the mutation they describe.

log_activity() only adds the row to the session; the caller's commit makes
the mutation and its audit entry land together or not at all.

Usage:
    from app.services.activity_service import log_activity
    log_activity(db, ctx, ActivityType.SUPPLIER_ADDED, "Supplier added", ...)
    db.commit()
"""

import logging

from sqlalchemy.orm import Session

from app.models import ActivityLog
from app.models.enums import ActivityType

log = logging.getLogger("fleet.activity")


def log_activity(
    db: Session,
    ctx,
    activity_type: ActivityType,
    title: str,
    description: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        organization_id=ctx.organization_id,
        user_id=ctx.user_id,
        type=activity_type.value,
        title=title,
        description=description,
        entity_type=entity_type,
        entity_id=entity_id,
        details=metadata,
    )
    db.add(entry)
    log.debug(f"Activity {activity_type.value} on {entity_type}:{entity_id} by user {ctx.user_id}")
    return entry


def recent_activity(db: Session, ctx, limit: int = 20) -> list[ActivityLog]:
    return (
        db.query(ActivityLog)
        .filter(ActivityLog.organization_id == ctx.organization_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
        .all()
    )
