from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leave_portal.models import (
    ACTIVE_LEAVE_STATUSES,
    ApprovalAction,
    LeaveRequest,
    LeaveSource,
    LeaveStatus,
    User,
    UserRole,
)
from leave_portal.services.audit_service import log_approval, log_audit
from leave_portal.services.availability_service import Requester, get_month_availability
from leave_portal.services.binding_service import bound_assistant_ids
from leave_portal.services.date_utils import is_iso_date
from leave_portal.services.store_config_service import load_config_snapshot

logger = logging.getLogger(__name__)


class LeaveRequestError(ValueError):
    code = 'LEAVE_REQUEST_ERROR'

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class InvalidLeaveDate(LeaveRequestError):
    code = 'INVALID_DATE'


class LeaveAlreadyRequested(LeaveRequestError):
    code = 'ALREADY_REQUESTED'

    def __init__(self, status: LeaveStatus | None = None) -> None:
        super().__init__()
        self.status = status


class LeaveNotAllowed(LeaveRequestError):
    code = 'NOT_ALLOWED'

    def __init__(self, reasons: list[str]) -> None:
        super().__init__()
        self.reasons = reasons


class LeaveNotFound(LeaveRequestError):
    code = 'NOT_FOUND'


class LeaveForbidden(LeaveRequestError):
    code = 'FORBIDDEN'


class LeaveNotCancelable(LeaveRequestError):
    code = 'NOT_CANCELABLE'


class LeaveNotPending(LeaveRequestError):
    code = 'NOT_PENDING'


@dataclass(frozen=True)
class LeaveMutationResult:
    leave_request_id: int
    status: LeaveStatus
    affected_ids: frozenset[int] = field(default_factory=frozenset)


ACTION_RESULT_STATUS = {
    ApprovalAction.APPROVE: LeaveStatus.APPROVED,
    ApprovalAction.FORCE_APPROVE: LeaveStatus.APPROVED,
    ApprovalAction.REJECT: LeaveStatus.REJECTED,
}


def _active_request(db: Session, *, user_id: int, leave_date: str) -> LeaveRequest | None:
    return db.execute(
        select(LeaveRequest).where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.date == leave_date,
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
        )
    ).scalar_one_or_none()


def _flush_or_conflict(db: Session) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        # A concurrent request won the active (user, date) slot; abort the unit of work.
        db.rollback()
        raise LeaveAlreadyRequested() from exc


def request_leave(
    db: Session,
    *,
    store_id: int,
    timezone_name: str,
    requester: Requester,
    leave_date: str,
    now: datetime | None = None,
    ip: str | None = None,
) -> LeaveMutationResult:
    if not is_iso_date(leave_date):
        raise InvalidLeaveDate()

    existing = _active_request(db, user_id=requester.user_id, leave_date=leave_date)
    if existing:
        raise LeaveAlreadyRequested(existing.status)

    availability = get_month_availability(
        db,
        store_id=store_id,
        timezone_name=timezone_name,
        month=leave_date[:7],
        requester=requester,
        now=now,
    )
    day = availability.day(leave_date)
    if day is None:
        raise InvalidLeaveDate('DATE_OUT_OF_RANGE')
    if not day.selectable:
        raise LeaveNotAllowed([reason.value for reason in day.reasons])

    leave_request = LeaveRequest(
        store_id=store_id,
        user_id=requester.user_id,
        date=leave_date,
        status=LeaveStatus.PENDING,
        source=LeaveSource.SELF,
        created_by_user_id=requester.user_id,
    )
    db.add(leave_request)
    _flush_or_conflict(db)

    affected = {leave_request.id}
    if requester.role == UserRole.DESIGNER and load_config_snapshot(db, store_id).mirrors_leave:
        affected |= _create_mirrors(db, store_id=store_id, parent=leave_request)

    log_audit(
        db,
        actor_user_id=requester.user_id,
        action='LEAVE_REQUESTED',
        leave_request_id=leave_request.id,
        ip=ip,
        metadata={'date': leave_date, 'mirror_ids': sorted(affected - {leave_request.id})},
    )
    logger.info('User %s requested leave on %s (request %s)', requester.user_id, leave_date, leave_request.id)
    return LeaveMutationResult(leave_request.id, leave_request.status, frozenset(affected))


def create_manager_leave(
    db: Session,
    *,
    store_id: int,
    manager_id: int,
    user_id: int,
    leave_date: str,
    ip: str | None = None,
) -> LeaveMutationResult:
    """Schedule an already-approved leave for a staff member on the manager's behalf.

    Skips phase, quota and mirror rules; an active request on that date is a conflict.
    """
    if not is_iso_date(leave_date):
        raise InvalidLeaveDate()

    target = db.execute(
        select(User).where(User.id == user_id, User.store_id == store_id, User.active.is_(True))
    ).scalar_one_or_none()
    if not target:
        raise LeaveNotFound('USER_NOT_FOUND')

    existing = _active_request(db, user_id=target.id, leave_date=leave_date)
    if existing:
        raise LeaveAlreadyRequested(existing.status)

    leave_request = LeaveRequest(
        store_id=store_id,
        user_id=target.id,
        date=leave_date,
        status=LeaveStatus.APPROVED,
        source=LeaveSource.MANAGER,
        created_by_user_id=manager_id,
    )
    db.add(leave_request)
    _flush_or_conflict(db)

    log_approval(
        db,
        store_id=store_id,
        leave_request_id=leave_request.id,
        manager_id=manager_id,
        action=ApprovalAction.FORCE_APPROVE,
    )
    log_audit(
        db,
        actor_user_id=manager_id,
        action='LEAVE_MANAGER_CREATED',
        leave_request_id=leave_request.id,
        ip=ip,
        metadata={'date': leave_date, 'user_id': target.id},
    )
    db.flush()
    logger.info('Manager %s scheduled leave for user %s on %s', manager_id, target.id, leave_date)
    return LeaveMutationResult(leave_request.id, leave_request.status, frozenset({leave_request.id}))


def _create_mirrors(db: Session, *, store_id: int, parent: LeaveRequest) -> set[int]:
    created: set[int] = set()
    for assistant_id in bound_assistant_ids(db, store_id=store_id, designer_id=parent.user_id):
        if _active_request(db, user_id=assistant_id, leave_date=parent.date):
            continue
        mirror = LeaveRequest(
            store_id=store_id,
            user_id=assistant_id,
            date=parent.date,
            status=LeaveStatus.PENDING,
            source=LeaveSource.BINDING_MIRROR,
            created_by_user_id=parent.user_id,
            linked_to_id=parent.id,
        )
        db.add(mirror)
        _flush_or_conflict(db)
        created.add(mirror.id)
    return created


def _cascade_status(
    db: Session,
    *,
    parent_id: int,
    from_status: LeaveStatus,
    to_status: LeaveStatus,
    created_by_user_id: int | None = None,
) -> set[int]:
    conditions = [LeaveRequest.linked_to_id == parent_id, LeaveRequest.status == from_status]
    if created_by_user_id is not None:
        conditions.append(LeaveRequest.created_by_user_id == created_by_user_id)

    mirror_ids = set(db.execute(select(LeaveRequest.id).where(*conditions)).scalars().all())
    if mirror_ids:
        db.execute(
            update(LeaveRequest)
            .where(LeaveRequest.id.in_(mirror_ids))
            .values(status=to_status)
            .execution_options(synchronize_session='fetch')
        )
    return mirror_ids


def cancel_leave(
    db: Session, *, store_id: int, user_id: int, leave_date: str, ip: str | None = None
) -> LeaveMutationResult:
    if not is_iso_date(leave_date):
        raise InvalidLeaveDate()

    existing = db.execute(
        select(LeaveRequest).where(
            LeaveRequest.store_id == store_id,
            LeaveRequest.user_id == user_id,
            LeaveRequest.date == leave_date,
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
        )
    ).scalar_one_or_none()
    if not existing:
        raise LeaveNotFound()
    if existing.created_by_user_id != user_id:
        raise LeaveForbidden()
    if existing.status != LeaveStatus.PENDING:
        raise LeaveNotCancelable()

    existing.status = LeaveStatus.CANCELED
    db.flush()
    mirror_ids = _cascade_status(
        db,
        parent_id=existing.id,
        from_status=LeaveStatus.PENDING,
        to_status=LeaveStatus.CANCELED,
        created_by_user_id=user_id,
    )
    log_audit(
        db,
        actor_user_id=user_id,
        action='LEAVE_CANCELED',
        leave_request_id=existing.id,
        ip=ip,
        metadata={'date': leave_date, 'mirror_ids': sorted(mirror_ids)},
    )
    logger.info('User %s canceled leave request %s', user_id, existing.id)
    return LeaveMutationResult(existing.id, existing.status, frozenset({existing.id} | mirror_ids))


def apply_manager_action(
    db: Session,
    *,
    store_id: int,
    manager_id: int,
    leave_request_id: int,
    action: ApprovalAction,
    reason: str | None = None,
    ip: str | None = None,
) -> LeaveMutationResult:
    leave_request = db.execute(
        select(LeaveRequest).where(LeaveRequest.id == leave_request_id, LeaveRequest.store_id == store_id)
    ).scalar_one_or_none()
    if not leave_request:
        raise LeaveNotFound()
    if leave_request.status != LeaveStatus.PENDING:
        raise LeaveNotPending()

    next_status = ACTION_RESULT_STATUS[action]
    leave_request.status = next_status
    db.flush()

    log_approval(
        db,
        store_id=store_id,
        leave_request_id=leave_request.id,
        manager_id=manager_id,
        action=action,
        reason=reason.strip() if reason and reason.strip() else None,
    )
    mirror_ids = _cascade_status(
        db,
        parent_id=leave_request.id,
        from_status=LeaveStatus.PENDING,
        to_status=next_status,
    )
    log_audit(
        db,
        actor_user_id=manager_id,
        action=f'LEAVE_{action.value}',
        leave_request_id=leave_request.id,
        ip=ip,
        metadata={'mirror_ids': sorted(mirror_ids)},
    )
    db.flush()
    logger.info('Manager %s applied %s to leave request %s', manager_id, action.value, leave_request.id)
    return LeaveMutationResult(leave_request.id, next_status, frozenset({leave_request.id} | mirror_ids))


def list_pending(db: Session, *, store_id: int, limit: int = 100) -> list[dict]:
    rows = db.execute(
        select(
            LeaveRequest.id,
            LeaveRequest.date,
            LeaveRequest.status,
            LeaveRequest.source,
            LeaveRequest.created_at,
            LeaveRequest.linked_to_id,
            User.id.label('user_id'),
            User.display_name,
            User.role,
        )
        .join(User, User.id == LeaveRequest.user_id)
        .where(LeaveRequest.store_id == store_id, LeaveRequest.status == LeaveStatus.PENDING)
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        .limit(limit)
    ).all()
    return [
        {
            'id': row.id,
            'date': row.date,
            'status': row.status.value,
            'source': row.source.value,
            'created_at': row.created_at,
            'linked_to_id': row.linked_to_id,
            'user': {'id': row.user_id, 'display_name': row.display_name, 'role': row.role.value},
        }
        for row in rows
    ]
