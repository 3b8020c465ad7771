from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gala.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from gala.models import (
    ActivityAction,
    EntityType,
    Event,
    EventTable,
    GuestAssignment,
    Order,
    Product,
    ProductTier,
    TableStatus,
    TableType,
    User,
)
from gala.services.activity_service import log_activity
from gala.services.permission_service import (
    TableAction,
    check_edit_guest_permission,
    check_guest_view_permission,
    check_remove_guest_permission,
    check_table_permission,
    check_transfer_permission,
    is_admin,
    require_permission,
)
from gala.services.reference_code_service import insert_with_reference_code, next_guest_reference_code
from gala.services.seat_service import (
    ensure_not_seated,
    lock_table,
    resolve_order_for_seat,
    table_seat_stats,
)
from gala.services.table_service import get_event, get_table_by_slug
from gala.services.time_utils import now_utc
from gala.services.user_service import find_or_create_user, get_user

logger = logging.getLogger(__name__)

EDITABLE_GUEST_FIELDS = ('display_name', 'dietary_restrictions', 'bidder_number', 'auction_registered')


def assignment_to_dict(assignment: GuestAssignment, user: User | None = None) -> dict:
    data = {
        'id': assignment.id,
        'event_id': assignment.event_id,
        'table_id': assignment.table_id,
        'user_id': assignment.user_id,
        'order_id': assignment.order_id,
        'display_name': assignment.display_name,
        'dietary_restrictions': assignment.dietary_restrictions,
        'bidder_number': assignment.bidder_number,
        'auction_registered': assignment.auction_registered,
        'checked_in_at': assignment.checked_in_at.isoformat() if assignment.checked_in_at else None,
        'tier': assignment.tier.value,
        'reference_code': assignment.reference_code,
    }
    if user is not None:
        data['email'] = user.email
        data['name'] = user.full_name
    return data


def _get_assignment(db: Session, guest_assignment_id: int) -> GuestAssignment:
    assignment = db.get(GuestAssignment, guest_assignment_id)
    if not assignment:
        raise NotFoundError('Guest not found')
    return assignment


def _order_tier(db: Session, order: Order) -> ProductTier:
    product = db.get(Product, order.product_id)
    return product.tier if product else ProductTier.STANDARD


def create_assignment(
    db: Session,
    *,
    event: Event,
    table: EventTable | None,
    user: User,
    order: Order,
    tier: ProductTier | None = None,
    display_name: str | None = None,
) -> GuestAssignment:
    """Insert a guest assignment with a fresh organization-scoped reference code.

    A concurrent insert for the same (table, user) surfaces as ConflictError.
    """

    def _build(code: str) -> GuestAssignment:
        return GuestAssignment(
            event_id=event.id,
            organization_id=event.organization_id,
            table_id=table.id if table else None,
            user_id=user.id,
            order_id=order.id,
            display_name=display_name or user.full_name,
            tier=tier or _order_tier(db, order),
            reference_code=code,
        )

    return insert_with_reference_code(
        db,
        build=_build,
        next_code=lambda: next_guest_reference_code(db, organization_id=event.organization_id),
        on_conflict=lambda _exc: ConflictError('Guest is already assigned to this table'),
    )


def _seat_guest(
    db: Session,
    *,
    table: EventTable,
    user: User,
    order_id: int | None,
    display_name: str | None,
) -> GuestAssignment:
    if table.status != TableStatus.ACTIVE:
        raise ValidationFailedError('Table is not accepting guests')
    ensure_not_seated(db, table_id=table.id, user_id=user.id)
    order = resolve_order_for_seat(db, table=table, order_id=order_id)
    event = get_event(db, event_id=table.event_id)
    return create_assignment(db, event=event, table=table, user=user, order=order, display_name=display_name)


def add_guest(
    db: Session,
    *,
    table_id: int,
    actor_id: int,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
    display_name: str | None = None,
    order_id: int | None = None,
) -> GuestAssignment:
    require_permission(check_table_permission(db, user_id=actor_id, table_id=table_id, action=TableAction.ADD_GUEST))
    table = lock_table(db, table_id=table_id)
    user = find_or_create_user(db, email=email, first_name=first_name, last_name=last_name, phone=phone)
    assignment = _seat_guest(db, table=table, user=user, order_id=order_id, display_name=display_name)

    log_activity(
        db,
        organization_id=assignment.organization_id,
        event_id=assignment.event_id,
        actor_id=actor_id,
        action=ActivityAction.GUEST_ADDED,
        entity_type=EntityType.GUEST_ASSIGNMENT,
        entity_id=assignment.id,
        metadata={
            'table_id': table.id,
            'guest_email': user.email,
            'guest_name': user.full_name,
            'order_id': assignment.order_id,
            'reference_code': assignment.reference_code,
        },
    )
    return assignment


def claim_seat(
    db: Session,
    *,
    slug: str,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
    display_name: str | None = None,
) -> GuestAssignment:
    """Public self-claim of a placeholder seat on a prepaid table."""
    table = get_table_by_slug(db, slug=slug)
    if table.type != TableType.PREPAID:
        raise ValidationFailedError('Seats can only be claimed at prepaid tables')
    table = lock_table(db, table_id=table.id)
    user = find_or_create_user(db, email=email, first_name=first_name, last_name=last_name, phone=phone)
    assignment = _seat_guest(db, table=table, user=user, order_id=None, display_name=display_name)

    log_activity(
        db,
        organization_id=assignment.organization_id,
        event_id=assignment.event_id,
        actor_id=user.id,
        action=ActivityAction.GUEST_ADDED,
        entity_type=EntityType.GUEST_ASSIGNMENT,
        entity_id=assignment.id,
        metadata={
            'table_id': table.id,
            'guest_email': user.email,
            'guest_name': user.full_name,
            'order_id': assignment.order_id,
            'reference_code': assignment.reference_code,
            'self_claimed': True,
        },
    )
    return assignment


def remove_guest(db: Session, *, guest_assignment_id: int, actor_id: int) -> None:
    require_permission(check_remove_guest_permission(db, user_id=actor_id, guest_assignment_id=guest_assignment_id))
    assignment = _get_assignment(db, guest_assignment_id)
    if assignment.table_id is not None:
        lock_table(db, table_id=assignment.table_id)
    guest = db.get(User, assignment.user_id)

    snapshot = {
        'table_id': assignment.table_id,
        'order_id': assignment.order_id,
        'reference_code': assignment.reference_code,
        'guest_email': guest.email if guest else None,
        'guest_name': guest.full_name if guest else None,
    }
    organization_id = assignment.organization_id
    event_id = assignment.event_id
    db.delete(assignment)
    db.flush()

    log_activity(
        db,
        organization_id=organization_id,
        event_id=event_id,
        actor_id=actor_id,
        action=ActivityAction.GUEST_REMOVED,
        entity_type=EntityType.GUEST_ASSIGNMENT,
        entity_id=guest_assignment_id,
        metadata=snapshot,
    )
    logger.info('Guest assignment %s removed by user %s', guest_assignment_id, actor_id)


def edit_guest(db: Session, *, guest_assignment_id: int, actor_id: int, fields: dict) -> GuestAssignment:
    unknown = sorted(set(fields) - set(EDITABLE_GUEST_FIELDS))
    if unknown:
        raise ValidationFailedError(f'Fields cannot be edited: {", ".join(unknown)}')
    require_permission(check_edit_guest_permission(db, user_id=actor_id, guest_assignment_id=guest_assignment_id))
    assignment = _get_assignment(db, guest_assignment_id)

    changes = {}
    for name in EDITABLE_GUEST_FIELDS:
        if name not in fields:
            continue
        old = getattr(assignment, name)
        new = fields[name]
        if old == new:
            continue
        setattr(assignment, name, new)
        changes[name] = {'from': old, 'to': new}

    if changes:
        assignment.updated_at = now_utc()
        log_activity(
            db,
            organization_id=assignment.organization_id,
            event_id=assignment.event_id,
            actor_id=actor_id,
            action=ActivityAction.GUEST_UPDATED,
            entity_type=EntityType.GUEST_ASSIGNMENT,
            entity_id=assignment.id,
            metadata={'changes': changes},
        )
    return assignment


def transfer_ticket(
    db: Session,
    *,
    guest_assignment_id: int,
    actor_id: int,
    to_user_id: int | None = None,
    to_email: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
    keep_table: bool = True,
    transfer_details: bool = False,
) -> GuestAssignment:
    """Hand an assignment to another user.

    The row, its order and its reference code are kept; only the holder
    changes. Personal details are reset unless ``transfer_details`` is set.
    """
    require_permission(check_transfer_permission(db, user_id=actor_id, guest_assignment_id=guest_assignment_id))
    assignment = _get_assignment(db, guest_assignment_id)

    if to_user_id is not None:
        recipient = get_user(db, user_id=to_user_id)
    elif to_email:
        recipient = find_or_create_user(db, email=to_email, first_name=first_name, last_name=last_name, phone=phone)
    else:
        raise ValidationFailedError('Either to_user_id or to_email is required')
    if recipient.id == assignment.user_id:
        raise ValidationFailedError('Ticket is already assigned to this user')

    previous_user_id = assignment.user_id
    previous_table_id = assignment.table_id
    if previous_table_id is not None:
        lock_table(db, table_id=previous_table_id)
    target_table_id = previous_table_id if keep_table else None
    if target_table_id is not None:
        ensure_not_seated(db, table_id=target_table_id, user_id=recipient.id)

    try:
        with db.begin_nested():
            assignment.user_id = recipient.id
            assignment.table_id = target_table_id
            if not transfer_details:
                assignment.display_name = recipient.full_name
                assignment.dietary_restrictions = None
                assignment.bidder_number = None
                assignment.auction_registered = False
                assignment.checked_in_at = None
            assignment.updated_at = now_utc()
            db.flush()
    except IntegrityError as exc:
        raise ConflictError('Recipient is already assigned to this table') from exc

    log_activity(
        db,
        organization_id=assignment.organization_id,
        event_id=assignment.event_id,
        actor_id=actor_id,
        action=ActivityAction.TICKET_TRANSFERRED,
        entity_type=EntityType.GUEST_ASSIGNMENT,
        entity_id=assignment.id,
        metadata={
            'from_user_id': previous_user_id,
            'to_user_id': recipient.id,
            'to_email': recipient.email,
            'table_id': previous_table_id,
            'keep_table': keep_table,
            'transfer_details': transfer_details,
            'reference_code': assignment.reference_code,
        },
    )
    return assignment


def check_in_guest(db: Session, *, guest_assignment_id: int, actor_id: int) -> GuestAssignment:
    assignment = _get_assignment(db, guest_assignment_id)
    if assignment.table_id is not None:
        require_permission(
            check_table_permission(
                db,
                user_id=actor_id,
                table_id=assignment.table_id,
                action=TableAction.EDIT_GUEST,
            )
        )
    elif not is_admin(db, user_id=actor_id, organization_id=assignment.organization_id):
        raise ForbiddenError('No permission to check in this guest')

    if assignment.checked_in_at is not None:
        raise ConflictError('Guest is already checked in')
    assignment.checked_in_at = now_utc()
    assignment.updated_at = assignment.checked_in_at

    log_activity(
        db,
        organization_id=assignment.organization_id,
        event_id=assignment.event_id,
        actor_id=actor_id,
        action=ActivityAction.GUEST_CHECKED_IN,
        entity_type=EntityType.GUEST_ASSIGNMENT,
        entity_id=assignment.id,
        metadata={'table_id': assignment.table_id, 'reference_code': assignment.reference_code},
    )
    return assignment


def get_guest_detail(db: Session, *, guest_assignment_id: int, actor_id: int) -> dict:
    require_permission(check_guest_view_permission(db, user_id=actor_id, guest_assignment_id=guest_assignment_id))
    assignment = _get_assignment(db, guest_assignment_id)
    user = db.get(User, assignment.user_id)
    return assignment_to_dict(assignment, user)


def list_table_guests(db: Session, *, table_id: int, actor_id: int) -> dict:
    require_permission(check_table_permission(db, user_id=actor_id, table_id=table_id, action=TableAction.VIEW))
    table = db.get(EventTable, table_id)
    rows = db.execute(
        select(GuestAssignment, User)
        .join(User, User.id == GuestAssignment.user_id)
        .where(GuestAssignment.table_id == table_id)
        .order_by(GuestAssignment.created_at.asc(), GuestAssignment.id.asc())
    ).all()
    return {
        'table': {
            'id': table.id,
            'name': table.name,
            'slug': table.slug,
            'type': table.type.value,
            'status': table.status.value,
            'reference_code': table.reference_code,
        },
        'guests': [assignment_to_dict(assignment, user) for assignment, user in rows],
        'stats': table_seat_stats(db, table=table).as_dict(),
    }
