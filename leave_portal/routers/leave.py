from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from leave_portal.auth import Principal, get_current_principal, require_role
from leave_portal.db import get_db
from leave_portal.dependencies import get_client_ip, get_principal_store
from leave_portal.models import ApprovalAction, Store, UserRole
from leave_portal.services.availability_service import Requester
from leave_portal.services.leave_request_service import (
    InvalidLeaveDate,
    LeaveAlreadyRequested,
    LeaveForbidden,
    LeaveMutationResult,
    LeaveNotAllowed,
    LeaveNotCancelable,
    LeaveNotFound,
    LeaveNotPending,
    LeaveRequestError,
    apply_manager_action,
    cancel_leave,
    create_manager_leave,
    list_pending,
    request_leave,
)
from leave_portal.services.notification_service import notify_leave_status

router = APIRouter(prefix='/leave', tags=['leave'])

ERROR_STATUS_CODES = {
    InvalidLeaveDate: status.HTTP_400_BAD_REQUEST,
    LeaveNotAllowed: status.HTTP_403_FORBIDDEN,
    LeaveForbidden: status.HTTP_403_FORBIDDEN,
    LeaveNotFound: status.HTTP_404_NOT_FOUND,
    LeaveAlreadyRequested: status.HTTP_409_CONFLICT,
    LeaveNotCancelable: status.HTTP_409_CONFLICT,
    LeaveNotPending: status.HTTP_409_CONFLICT,
}


class LeaveDateBody(BaseModel):
    date: str


class ManagerLeaveBody(BaseModel):
    user_id: int
    date: str


class LeaveActionBody(BaseModel):
    action: ApprovalAction
    reason: str | None = None


def _http_error(exc: LeaveRequestError) -> HTTPException:
    detail: dict = {'error': exc.code}
    if isinstance(exc, InvalidLeaveDate):
        detail['message'] = str(exc)
    if isinstance(exc, LeaveAlreadyRequested) and exc.status is not None:
        detail['status'] = exc.status.value
    if isinstance(exc, LeaveNotAllowed):
        detail['reasons'] = exc.reasons
    return HTTPException(status_code=ERROR_STATUS_CODES.get(type(exc), 400), detail=detail)


def _result_payload(result: LeaveMutationResult) -> dict:
    return {
        'leave_request': {'id': result.leave_request_id, 'status': result.status.value},
        'affected_ids': sorted(result.affected_ids),
    }


@router.post('')
def create_leave(
    body: LeaveDateBody,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    store: Store = Depends(get_principal_store),
    db: Session = Depends(get_db),
):
    try:
        result = request_leave(
            db,
            store_id=store.id,
            timezone_name=store.timezone,
            requester=Requester(user_id=principal.id, role=principal.role),
            leave_date=body.date.strip(),
            ip=get_client_ip(request),
        )
    except LeaveRequestError as exc:
        raise _http_error(exc) from exc
    db.commit()

    notify_leave_status(db, leave_request_ids=sorted(result.affected_ids))
    return _result_payload(result)


@router.delete('')
def delete_leave(
    body: LeaveDateBody,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        result = cancel_leave(
            db,
            store_id=principal.store_id,
            user_id=principal.id,
            leave_date=body.date.strip(),
            ip=get_client_ip(request),
        )
    except LeaveRequestError as exc:
        raise _http_error(exc) from exc
    db.commit()

    notify_leave_status(db, leave_request_ids=sorted(result.affected_ids))
    return {'ok': True, **_result_payload(result)}


@router.post('/manager')
def create_leave_for_staff(
    body: ManagerLeaveBody,
    request: Request,
    principal: Principal = Depends(require_role(UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    try:
        result = create_manager_leave(
            db,
            store_id=principal.store_id,
            manager_id=principal.id,
            user_id=body.user_id,
            leave_date=body.date.strip(),
            ip=get_client_ip(request),
        )
    except LeaveRequestError as exc:
        raise _http_error(exc) from exc
    db.commit()

    notify_leave_status(db, leave_request_ids=sorted(result.affected_ids))
    return _result_payload(result)


@router.get('/pending')
def pending_requests(
    principal: Principal = Depends(require_role(UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    return {'requests': list_pending(db, store_id=principal.store_id)}


@router.post('/{leave_request_id}/action')
def leave_action(
    leave_request_id: int,
    body: LeaveActionBody,
    request: Request,
    principal: Principal = Depends(require_role(UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    try:
        result = apply_manager_action(
            db,
            store_id=principal.store_id,
            manager_id=principal.id,
            leave_request_id=leave_request_id,
            action=body.action,
            reason=body.reason,
            ip=get_client_ip(request),
        )
    except LeaveRequestError as exc:
        raise _http_error(exc) from exc
    db.commit()

    notify_leave_status(db, leave_request_ids=sorted(result.affected_ids))
    return _result_payload(result)
