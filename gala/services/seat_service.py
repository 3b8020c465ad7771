from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gala.errors import ConflictError, NotFoundError, ValidationFailedError
from gala.models import EventTable, GuestAssignment, Order, OrderStatus


@dataclass(frozen=True)
class SeatStats:
    capacity: int
    total_purchased: int
    filled_seats: int
    placeholder_seats: int
    remaining_capacity: int

    def as_dict(self) -> dict:
        return {
            'capacity': self.capacity,
            'total_purchased': self.total_purchased,
            'filled_seats': self.filled_seats,
            'placeholder_seats': self.placeholder_seats,
            'remaining_capacity': self.remaining_capacity,
        }


def lock_table(db: Session, *, table_id: int) -> EventTable:
    """Take the row lock that serializes every seat mutation on a table."""
    table = db.execute(
        select(EventTable)
        .where(EventTable.id == table_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not table:
        raise NotFoundError('Table not found')
    return table


def completed_seat_count(db: Session, *, table_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(Order.quantity), 0)).where(
            Order.table_id == table_id,
            Order.status == OrderStatus.COMPLETED,
        )
    ).scalar_one()
    return int(total)


def assigned_seat_count(db: Session, *, table_id: int) -> int:
    return db.execute(
        select(func.count(GuestAssignment.id)).where(GuestAssignment.table_id == table_id)
    ).scalar_one()


def placeholder_seats(db: Session, *, table_id: int) -> int:
    return max(0, completed_seat_count(db, table_id=table_id) - assigned_seat_count(db, table_id=table_id))


def order_assigned_count(db: Session, *, order_id: int) -> int:
    return db.execute(
        select(func.count(GuestAssignment.id)).where(GuestAssignment.order_id == order_id)
    ).scalar_one()


def can_claim_seat(db: Session, *, order: Order) -> bool:
    return order_assigned_count(db, order_id=order.id) < order.quantity


def select_order_for_seat(db: Session, *, table_id: int) -> Order | None:
    assigned = (
        select(GuestAssignment.order_id, func.count(GuestAssignment.id).label('assigned'))
        .group_by(GuestAssignment.order_id)
        .subquery()
    )
    return db.execute(
        select(Order)
        .outerjoin(assigned, assigned.c.order_id == Order.id)
        .where(
            Order.table_id == table_id,
            Order.status == OrderStatus.COMPLETED,
            func.coalesce(assigned.c.assigned, 0) < Order.quantity,
        )
        .order_by(Order.created_at.asc(), Order.id.asc())
        .limit(1)
    ).scalars().first()


def resolve_order_for_seat(db: Session, *, table: EventTable, order_id: int | None = None) -> Order:
    if order_id is None:
        order = select_order_for_seat(db, table_id=table.id)
        if order is None:
            raise ConflictError('No available seats at this table')
        return order

    order = db.get(Order, order_id)
    if not order or order.table_id != table.id:
        raise NotFoundError('Order not found for this table')
    if order.status != OrderStatus.COMPLETED:
        raise ValidationFailedError('Order is not completed')
    if not can_claim_seat(db, order=order):
        raise ConflictError('All seats on this order are already assigned')
    return order


def ensure_capacity(db: Session, *, table: EventTable, requested: int) -> None:
    purchased = completed_seat_count(db, table_id=table.id)
    if purchased + requested > table.capacity:
        remaining = max(0, table.capacity - purchased)
        raise ValidationFailedError(f'Table is full: {remaining} of {table.capacity} seats remaining')


def ensure_not_seated(db: Session, *, table_id: int, user_id: int) -> None:
    existing = db.execute(
        select(GuestAssignment.id).where(
            GuestAssignment.table_id == table_id,
            GuestAssignment.user_id == user_id,
        )
    ).first()
    if existing is not None:
        raise ConflictError('Guest is already assigned to this table')


def table_seat_stats(db: Session, *, table: EventTable) -> SeatStats:
    purchased = completed_seat_count(db, table_id=table.id)
    filled = assigned_seat_count(db, table_id=table.id)
    return SeatStats(
        capacity=table.capacity,
        total_purchased=purchased,
        filled_seats=filled,
        placeholder_seats=max(0, purchased - filled),
        remaining_capacity=max(0, table.capacity - purchased),
    )
