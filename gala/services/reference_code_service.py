from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gala.config import settings
from gala.errors import NotFoundError, ReferenceCodeExhaustedError
from gala.models import Event, EventTable, GuestAssignment

logger = logging.getLogger(__name__)

T = TypeVar('T')

_TABLE_CODE_PATTERN = re.compile(r'^\d{2}-T(\d+)$')
_GUEST_CODE_PATTERN = re.compile(r'^G(\d+)$')


def format_table_code(year: int, sequence: int) -> str:
    return f'{year % 100:02d}-T{sequence:03d}'


def format_guest_code(sequence: int) -> str:
    return f'G{sequence:04d}'


def _highest_code(db: Session, column, *filters) -> str | None:
    # Zero padding keeps lexical order numeric within one width; longer codes sort first.
    return db.execute(
        select(column).where(*filters).order_by(func.length(column).desc(), column.desc()).limit(1)
    ).scalar_one_or_none()


def _sequence_after(code: str | None, pattern: re.Pattern) -> int:
    if not code:
        return 1
    match = pattern.match(code)
    if not match:
        return 1
    return int(match.group(1)) + 1


def next_table_reference_code(db: Session, *, event_id: int) -> str:
    event = db.get(Event, event_id)
    if not event:
        raise NotFoundError('Event not found')
    highest = _highest_code(db, EventTable.reference_code, EventTable.event_id == event_id)
    return format_table_code(event.event_date.year, _sequence_after(highest, _TABLE_CODE_PATTERN))


def next_guest_reference_code(db: Session, *, organization_id: int) -> str:
    highest = _highest_code(db, GuestAssignment.reference_code, GuestAssignment.organization_id == organization_id)
    return format_guest_code(_sequence_after(highest, _GUEST_CODE_PATTERN))


def is_reference_code_conflict(exc: IntegrityError) -> bool:
    return 'reference_code' in str(exc.orig)


def insert_with_reference_code(
    db: Session,
    *,
    build: Callable[[str], T],
    next_code: Callable[[], str],
    on_conflict: Callable[[IntegrityError], Exception] | None = None,
    max_attempts: int | None = None,
) -> T:
    """Insert the entity built by ``build`` with a fresh reference code.

    Each attempt runs in its own savepoint. A collision on the reference code
    re-derives the code and retries; any other integrity error is passed to
    ``on_conflict`` (or re-raised when no hook is given).
    """
    attempts = max_attempts or settings.reference_code_max_attempts
    for attempt in range(1, attempts + 1):
        code = next_code()
        try:
            with db.begin_nested():
                entity = build(code)
                db.add(entity)
                db.flush()
            return entity
        except IntegrityError as exc:
            if not is_reference_code_conflict(exc):
                if on_conflict is None:
                    raise
                raise on_conflict(exc) from exc
            logger.warning('Reference code %s collided (attempt %s of %s)', code, attempt, attempts)

    raise ReferenceCodeExhaustedError(f'Could not allocate a unique reference code after {attempts} attempts')
