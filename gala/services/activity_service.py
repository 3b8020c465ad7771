from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from gala.models import ActivityAction, ActivityLog, EntityType


def log_activity(
    db: Session,
    *,
    organization_id: int,
    event_id: int | None,
    actor_id: int | None,
    action: ActivityAction,
    entity_type: EntityType,
    entity_id: int,
    metadata: dict | None = None,
) -> None:
    db.add(
        ActivityLog(
            organization_id=organization_id,
            event_id=event_id,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            meta=metadata or {},
        )
    )


def list_activity(
    db: Session,
    *,
    organization_id: int,
    event_id: int | None = None,
    action: ActivityAction | None = None,
    limit: int = 100,
) -> list[ActivityLog]:
    stmt = select(ActivityLog).where(ActivityLog.organization_id == organization_id)
    if event_id is not None:
        stmt = stmt.where(ActivityLog.event_id == event_id)
    if action is not None:
        stmt = stmt.where(ActivityLog.action == action)
    stmt = stmt.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit)
    return db.execute(stmt).scalars().all()
