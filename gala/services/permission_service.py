from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from gala.errors import ForbiddenError, NotFoundError, ValidationFailedError
from gala.models import (
    Event,
    EventTable,
    GuestAssignment,
    Order,
    OrganizationAdmin,
    TableRole,
    TableType,
    TableUserRole,
    User,
)

ADMIN_ROLE = 'ADMIN'


class TableAction(str, Enum):
    VIEW = 'view'
    EDIT = 'edit'
    ADD_GUEST = 'add_guest'
    REMOVE_GUEST = 'remove_guest'
    EDIT_GUEST = 'edit_guest'
    MANAGE_ROLES = 'manage_roles'
    DELETE = 'delete'
    TRANSFER = 'transfer'


MATRIX_ACTIONS = (
    TableAction.VIEW,
    TableAction.EDIT,
    TableAction.ADD_GUEST,
    TableAction.REMOVE_GUEST,
    TableAction.EDIT_GUEST,
    TableAction.MANAGE_ROLES,
    TableAction.DELETE,
)

# Captain removal of self-paying guests is narrowed by check_remove_guest_permission.
ROLE_PERMISSIONS: dict[TableRole, frozenset[TableAction]] = {
    TableRole.OWNER: frozenset(MATRIX_ACTIONS),
    TableRole.CO_OWNER: frozenset(
        {
            TableAction.VIEW,
            TableAction.EDIT,
            TableAction.ADD_GUEST,
            TableAction.REMOVE_GUEST,
            TableAction.EDIT_GUEST,
        }
    ),
    TableRole.CAPTAIN: frozenset(
        {
            TableAction.VIEW,
            TableAction.EDIT,
            TableAction.ADD_GUEST,
            TableAction.REMOVE_GUEST,
            TableAction.EDIT_GUEST,
        }
    ),
    TableRole.MANAGER: frozenset(
        {
            TableAction.VIEW,
            TableAction.EDIT,
            TableAction.ADD_GUEST,
            TableAction.REMOVE_GUEST,
            TableAction.EDIT_GUEST,
        }
    ),
    TableRole.STAFF: frozenset({TableAction.VIEW, TableAction.EDIT_GUEST}),
}

ROLE_PRECEDENCE = (
    TableRole.OWNER,
    TableRole.CO_OWNER,
    TableRole.CAPTAIN,
    TableRole.MANAGER,
    TableRole.STAFF,
)

TRANSFER_ROLES = frozenset({TableRole.OWNER, TableRole.CO_OWNER})


@dataclass(frozen=True)
class PermissionResult:
    allowed: bool
    reason: str | None = None
    role: str | None = None


def role_allows(role: TableRole, action: TableAction) -> bool:
    return action in ROLE_PERMISSIONS.get(role, frozenset())


def governing_role(roles: list[TableRole], action: TableAction) -> TableRole | None:
    for role in ROLE_PRECEDENCE:
        if role in roles and role_allows(role, action):
            return role
    return None


def _allow(role: TableRole | str | None = None) -> PermissionResult:
    label = role.value if isinstance(role, TableRole) else role
    return PermissionResult(allowed=True, role=label)


def _deny(reason: str, role: TableRole | None = None) -> PermissionResult:
    return PermissionResult(allowed=False, reason=reason, role=role.value if role else None)


def _load_table(db: Session, table_id: int) -> EventTable:
    table = db.get(EventTable, table_id)
    if not table:
        raise NotFoundError('Table not found')
    return table


def _load_assignment(db: Session, guest_assignment_id: int) -> GuestAssignment:
    assignment = db.get(GuestAssignment, guest_assignment_id)
    if not assignment:
        raise NotFoundError('Guest not found')
    return assignment


def table_organization_id(db: Session, table: EventTable) -> int:
    return db.execute(select(Event.organization_id).where(Event.id == table.event_id)).scalar_one()


def is_admin(db: Session, *, user_id: int, organization_id: int) -> bool:
    user = db.get(User, user_id)
    if not user:
        return False
    if user.is_super_admin:
        return True
    membership = db.execute(
        select(OrganizationAdmin.id).where(
            OrganizationAdmin.user_id == user_id,
            OrganizationAdmin.organization_id == organization_id,
        )
    ).first()
    return membership is not None


def get_table_roles(db: Session, *, user_id: int, table: EventTable) -> list[TableRole]:
    roles = set(
        db.execute(
            select(TableUserRole.role).where(
                TableUserRole.table_id == table.id,
                TableUserRole.user_id == user_id,
            )
        ).scalars().all()
    )
    if table.primary_owner_id == user_id:
        roles.add(TableRole.OWNER)
    return [role for role in ROLE_PRECEDENCE if role in roles]


def is_guest_at_table(db: Session, *, user_id: int, table_id: int) -> bool:
    row = db.execute(
        select(GuestAssignment.id).where(
            GuestAssignment.table_id == table_id,
            GuestAssignment.user_id == user_id,
        )
    ).first()
    return row is not None


def _check_table(
    db: Session,
    *,
    user_id: int,
    table: EventTable,
    action: TableAction,
    admin: bool | None = None,
) -> PermissionResult:
    if admin is None:
        admin = is_admin(db, user_id=user_id, organization_id=table_organization_id(db, table))
    if admin:
        return _allow(ADMIN_ROLE)

    roles = get_table_roles(db, user_id=user_id, table=table)
    role = governing_role(roles, action)
    if role is not None:
        return _allow(role)
    if roles:
        return _deny(f'{roles[0].value} cannot {action.value}', roles[0])

    if action == TableAction.VIEW and is_guest_at_table(db, user_id=user_id, table_id=table.id):
        return _allow()
    return _deny('No permission for this table')


def check_table_permission(db: Session, *, user_id: int, table_id: int, action: TableAction) -> PermissionResult:
    if action == TableAction.TRANSFER:
        raise ValidationFailedError('Transfer permission is checked per guest assignment')
    table = _load_table(db, table_id)
    return _check_table(db, user_id=user_id, table=table, action=action)


def _order_buyer_id(db: Session, assignment: GuestAssignment) -> int | None:
    return db.execute(select(Order.user_id).where(Order.id == assignment.order_id)).scalar_one_or_none()


def is_self_paying(db: Session, assignment: GuestAssignment) -> bool:
    return _order_buyer_id(db, assignment) == assignment.user_id


def check_remove_guest_permission(db: Session, *, user_id: int, guest_assignment_id: int) -> PermissionResult:
    """Removal check with the captain-table override.

    On CAPTAIN_PAYG tables a guest who paid for their own seat can only be
    removed by themselves or an admin. Everywhere else the role matrix decides.
    """
    assignment = _load_assignment(db, guest_assignment_id)
    admin = is_admin(db, user_id=user_id, organization_id=assignment.organization_id)
    if admin:
        return _allow(ADMIN_ROLE)

    if assignment.table_id is None:
        if assignment.user_id == user_id:
            return _allow()
        return _deny('No permission to remove this guest')

    table = _load_table(db, assignment.table_id)
    if table.type == TableType.CAPTAIN_PAYG and is_self_paying(db, assignment):
        if assignment.user_id == user_id:
            return _allow()
        roles = get_table_roles(db, user_id=user_id, table=table)
        if roles:
            return _deny(f'{roles[0].value} cannot remove self-paying guest', roles[0])
        return _deny('Cannot remove self-paying guests from captain tables')

    return _check_table(db, user_id=user_id, table=table, action=TableAction.REMOVE_GUEST, admin=False)


def check_edit_guest_permission(db: Session, *, user_id: int, guest_assignment_id: int) -> PermissionResult:
    assignment = _load_assignment(db, guest_assignment_id)
    if assignment.user_id == user_id:
        return _allow()
    admin = is_admin(db, user_id=user_id, organization_id=assignment.organization_id)
    if admin:
        return _allow(ADMIN_ROLE)
    if assignment.table_id is None:
        return _deny('No permission to edit this guest')

    table = _load_table(db, assignment.table_id)
    result = _check_table(db, user_id=user_id, table=table, action=TableAction.EDIT_GUEST, admin=False)
    if not result.allowed and result.role is None:
        return _deny('No permission to edit this guest')
    return result


def check_guest_view_permission(db: Session, *, user_id: int, guest_assignment_id: int) -> PermissionResult:
    assignment = _load_assignment(db, guest_assignment_id)
    if assignment.user_id == user_id:
        return _allow()
    if is_admin(db, user_id=user_id, organization_id=assignment.organization_id):
        return _allow(ADMIN_ROLE)
    if _order_buyer_id(db, assignment) == user_id:
        return _allow()
    if assignment.table_id is None:
        return _deny('No permission to view this guest')

    table = _load_table(db, assignment.table_id)
    result = _check_table(db, user_id=user_id, table=table, action=TableAction.VIEW, admin=False)
    if not result.allowed:
        return _deny('No permission to view this guest')
    return result


def check_transfer_permission(db: Session, *, user_id: int, guest_assignment_id: int) -> PermissionResult:
    assignment = _load_assignment(db, guest_assignment_id)
    if is_admin(db, user_id=user_id, organization_id=assignment.organization_id):
        return _allow(ADMIN_ROLE)
    if assignment.user_id == user_id:
        return _allow()
    if _order_buyer_id(db, assignment) == user_id:
        return _allow()

    if assignment.table_id is not None:
        table = _load_table(db, assignment.table_id)
        if table.type == TableType.PREPAID:
            roles = get_table_roles(db, user_id=user_id, table=table)
            for role in roles:
                if role in TRANSFER_ROLES:
                    return _allow(role)
    return _deny('No permission to transfer this ticket')


def get_table_permissions(db: Session, *, user_id: int, table_id: int) -> dict:
    table = _load_table(db, table_id)
    admin = is_admin(db, user_id=user_id, organization_id=table_organization_id(db, table))
    roles = get_table_roles(db, user_id=user_id, table=table)
    actions = {}
    for action in MATRIX_ACTIONS:
        result = _check_table(db, user_id=user_id, table=table, action=action, admin=admin)
        actions[action.value] = result.allowed
    return {
        'table_id': table.id,
        'is_admin': admin,
        'roles': [role.value for role in roles],
        'actions': actions,
    }


def resolve(
    db: Session,
    *,
    user_id: int,
    action: TableAction,
    table_id: int | None = None,
    guest_assignment_id: int | None = None,
) -> PermissionResult:
    if guest_assignment_id is not None:
        if action == TableAction.REMOVE_GUEST:
            return check_remove_guest_permission(db, user_id=user_id, guest_assignment_id=guest_assignment_id)
        if action == TableAction.EDIT_GUEST:
            return check_edit_guest_permission(db, user_id=user_id, guest_assignment_id=guest_assignment_id)
        if action == TableAction.TRANSFER:
            return check_transfer_permission(db, user_id=user_id, guest_assignment_id=guest_assignment_id)
        if action == TableAction.VIEW:
            return check_guest_view_permission(db, user_id=user_id, guest_assignment_id=guest_assignment_id)
        assignment = _load_assignment(db, guest_assignment_id)
        if assignment.table_id is None:
            raise NotFoundError('Guest is not seated at a table')
        table_id = assignment.table_id

    if table_id is None:
        raise ValidationFailedError('A table or guest assignment is required')
    return check_table_permission(db, user_id=user_id, table_id=table_id, action=action)


def require_permission(result: PermissionResult) -> PermissionResult:
    if not result.allowed:
        raise ForbiddenError(result.reason or 'Forbidden')
    return result
