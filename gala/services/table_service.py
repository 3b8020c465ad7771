from __future__ import annotations

import logging
import re
import secrets

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gala.errors import ConflictError, NotFoundError, ValidationFailedError
from gala.models import (
    ActivityAction,
    EntityType,
    Event,
    EventTable,
    TableRole,
    TableStatus,
    TableType,
    TableUserRole,
    User,
)
from gala.services.activity_service import log_activity
from gala.services.permission_service import TableAction, check_table_permission, require_permission
from gala.services.reference_code_service import insert_with_reference_code, next_table_reference_code
from gala.services.user_service import find_or_create_user, get_user

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = (TableRole.CO_OWNER, TableRole.CAPTAIN, TableRole.MANAGER, TableRole.STAFF)

_SLUG_STRIP = re.compile(r'[^a-z0-9]+')


def generate_slug(name: str) -> str:
    base = _SLUG_STRIP.sub('-', (name or '').lower()).strip('-')[:30].strip('-') or 'table'
    return f'{base}-{secrets.token_hex(4)}'


def get_event(db: Session, *, event_id: int) -> Event:
    event = db.get(Event, event_id)
    if not event:
        raise NotFoundError('Event not found')
    return event


def get_table(db: Session, *, table_id: int) -> EventTable:
    table = db.get(EventTable, table_id)
    if not table:
        raise NotFoundError('Table not found')
    return table


def get_table_by_slug(db: Session, *, slug: str) -> EventTable:
    table = db.execute(select(EventTable).where(EventTable.slug == slug)).scalar_one_or_none()
    if not table:
        raise NotFoundError('Table not found')
    return table


def create_table(
    db: Session,
    *,
    event: Event,
    owner_id: int,
    name: str,
    table_type: TableType,
    capacity: int,
    owner_role: TableRole,
    internal_name: str | None = None,
    custom_total_price_cents: int | None = None,
    actor_id: int | None = None,
) -> EventTable:
    if capacity < 1:
        raise ValidationFailedError('Table capacity must be at least 1')
    table_name = (name or '').strip() or 'My Table'

    def _build(code: str) -> EventTable:
        return EventTable(
            event_id=event.id,
            primary_owner_id=owner_id,
            name=table_name,
            internal_name=internal_name,
            slug=generate_slug(table_name),
            type=table_type,
            status=TableStatus.ACTIVE,
            capacity=capacity,
            custom_total_price_cents=custom_total_price_cents,
            reference_code=code,
        )

    table = insert_with_reference_code(
        db,
        build=_build,
        next_code=lambda: next_table_reference_code(db, event_id=event.id),
        on_conflict=lambda _exc: ConflictError('Could not create table, please retry'),
    )
    db.add(TableUserRole(table_id=table.id, user_id=owner_id, role=owner_role))
    log_activity(
        db,
        organization_id=event.organization_id,
        event_id=event.id,
        actor_id=actor_id if actor_id is not None else owner_id,
        action=ActivityAction.TABLE_CREATED,
        entity_type=EntityType.TABLE,
        entity_id=table.id,
        metadata={
            'table_name': table.name,
            'table_type': table_type.value,
            'capacity': capacity,
            'reference_code': table.reference_code,
        },
    )
    db.flush()
    logger.info('Created %s table %s (%s) for event %s', table_type.value, table.id, table.reference_code, event.id)
    return table


def list_table_roles(db: Session, *, table_id: int, actor_id: int) -> list[dict]:
    require_permission(check_table_permission(db, user_id=actor_id, table_id=table_id, action=TableAction.VIEW))
    table = get_table(db, table_id=table_id)
    owner = get_user(db, user_id=table.primary_owner_id)
    rows = [
        {
            'user_id': owner.id,
            'email': owner.email,
            'name': owner.full_name,
            'role': TableRole.OWNER.value,
            'is_primary': True,
        }
    ]
    assigned = db.execute(
        select(TableUserRole, User)
        .join(User, User.id == TableUserRole.user_id)
        .where(TableUserRole.table_id == table_id)
        .order_by(TableUserRole.created_at.asc(), TableUserRole.id.asc())
    ).all()
    for role_row, user in assigned:
        if role_row.role == TableRole.OWNER and user.id == owner.id:
            continue
        rows.append(
            {
                'user_id': user.id,
                'email': user.email,
                'name': user.full_name,
                'role': role_row.role.value,
                'is_primary': False,
            }
        )
    return rows


def add_table_role(
    db: Session,
    *,
    table_id: int,
    actor_id: int,
    role: TableRole,
    user_id: int | None = None,
    email: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> TableUserRole:
    require_permission(
        check_table_permission(db, user_id=actor_id, table_id=table_id, action=TableAction.MANAGE_ROLES)
    )
    if role not in ASSIGNABLE_ROLES:
        raise ValidationFailedError(f'Role must be one of {", ".join(r.value for r in ASSIGNABLE_ROLES)}')
    table = get_table(db, table_id=table_id)

    if user_id is not None:
        user = get_user(db, user_id=user_id)
    elif email:
        user = find_or_create_user(db, email=email, first_name=first_name, last_name=last_name)
    else:
        raise ValidationFailedError('Either user_id or email is required')

    existing = db.execute(
        select(TableUserRole.id).where(
            TableUserRole.table_id == table.id,
            TableUserRole.user_id == user.id,
            TableUserRole.role == role,
        )
    ).first()
    if existing is not None:
        raise ConflictError('User already has this role on the table')

    try:
        with db.begin_nested():
            role_row = TableUserRole(table_id=table.id, user_id=user.id, role=role)
            db.add(role_row)
            db.flush()
    except IntegrityError as exc:
        raise ConflictError('User already has this role on the table') from exc

    event = get_event(db, event_id=table.event_id)
    log_activity(
        db,
        organization_id=event.organization_id,
        event_id=event.id,
        actor_id=actor_id,
        action=ActivityAction.TABLE_ROLE_ADDED,
        entity_type=EntityType.TABLE,
        entity_id=table.id,
        metadata={'user_id': user.id, 'email': user.email, 'role': role.value},
    )
    return role_row


def remove_table_role(db: Session, *, table_id: int, actor_id: int, user_id: int, role: TableRole) -> None:
    require_permission(
        check_table_permission(db, user_id=actor_id, table_id=table_id, action=TableAction.MANAGE_ROLES)
    )
    table = get_table(db, table_id=table_id)
    if role == TableRole.OWNER and user_id == table.primary_owner_id:
        raise ValidationFailedError('The primary owner cannot be removed')

    role_row = db.execute(
        select(TableUserRole).where(
            TableUserRole.table_id == table.id,
            TableUserRole.user_id == user_id,
            TableUserRole.role == role,
        )
    ).scalar_one_or_none()
    if not role_row:
        raise NotFoundError('Role assignment not found')
    db.delete(role_row)

    event = get_event(db, event_id=table.event_id)
    log_activity(
        db,
        organization_id=event.organization_id,
        event_id=event.id,
        actor_id=actor_id,
        action=ActivityAction.TABLE_ROLE_REMOVED,
        entity_type=EntityType.TABLE,
        entity_id=table.id,
        metadata={'user_id': user_id, 'role': role.value},
    )
