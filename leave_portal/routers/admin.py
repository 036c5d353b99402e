from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from leave_portal.auth import Principal, require_role
from leave_portal.db import get_db
from leave_portal.models import UserRole
from leave_portal.services.binding_service import create_binding, deactivate_binding, list_bindings
from leave_portal.services.notification_service import send_monthly_summary, send_no_leave_reminders, send_test_message
from leave_portal.services.rookie_booking_service import clear_demand_override, set_demand_override
from leave_portal.services.store_config_service import list_current_config, set_config_value, unwrap_config_value
from leave_portal.services.user_service import UserNotFound, bind_line_user, list_staff, update_user_params

router = APIRouter(prefix='/admin', tags=['admin'])
require_manager = require_role(UserRole.MANAGER)


class BindingBody(BaseModel):
    assistant_id: int
    designer_id: int


class ConfigBody(BaseModel):
    key: str
    value: Any = None


class DemandOverrideBody(BaseModel):
    designer_id: int
    date: str
    demand: float | None = None


@router.get('/bindings')
def bindings_list(
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return {'bindings': list_bindings(db, store_id=principal.store_id)}


@router.post('/bindings')
def bindings_create(
    body: BindingBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    try:
        binding = create_binding(
            db,
            store_id=principal.store_id,
            assistant_id=body.assistant_id,
            designer_id=body.designer_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return {'binding': {'id': binding.id}}


@router.post('/bindings/{binding_id}/deactivate')
def bindings_deactivate(
    binding_id: int,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    try:
        binding = deactivate_binding(db, store_id=principal.store_id, binding_id=binding_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return {'binding': {'id': binding.id, 'active': binding.active}}


@router.get('/config')
def config_list(
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return {'configs': list_current_config(db, principal.store_id)}


@router.put('/config')
def config_update(
    body: ConfigBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    try:
        row = set_config_value(db, store_id=principal.store_id, key=body.key, value=body.value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return {'config': {'id': row.id, 'key': row.key, 'value': unwrap_config_value(row.value_json)[1]}}


@router.put('/demand-overrides')
def demand_override_set(
    body: DemandOverrideBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    if body.demand is None:
        raise HTTPException(status_code=400, detail='Demand is required')
    try:
        row = set_demand_override(
            db,
            store_id=principal.store_id,
            designer_id=body.designer_id,
            override_date=body.date,
            demand=body.demand,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return {'override': {'id': row.id, 'designer_id': row.designer_id, 'date': row.date, 'demand': row.demand}}


@router.delete('/demand-overrides')
def demand_override_clear(
    body: DemandOverrideBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    removed = clear_demand_override(
        db,
        store_id=principal.store_id,
        designer_id=body.designer_id,
        override_date=body.date,
    )
    db.commit()
    return {'removed': removed}


class UserParamsBody(BaseModel):
    base_demand: float | None = None
    base_supply: float | None = None


class LineBindBody(BaseModel):
    user_id: int
    line_user_id: str


class LinePushBody(BaseModel):
    user_id: int | None = None
    month: str | None = None


@router.get('/users')
def users_list(
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    return {'users': list_staff(db, store_id=principal.store_id)}


@router.put('/users/{user_id}/params')
def users_update_params(
    user_id: int,
    body: UserParamsBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    try:
        user = update_user_params(
            db,
            store_id=principal.store_id,
            user_id=user_id,
            base_demand=body.base_demand,
            base_supply=body.base_supply,
        )
    except UserNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return {'user': {'id': user.id, 'base_demand': user.base_demand, 'base_supply': user.base_supply}}


@router.post('/line/bind')
def line_bind(
    body: LineBindBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    try:
        user = bind_line_user(db, store_id=principal.store_id, user_id=body.user_id, line_user_id=body.line_user_id)
    except UserNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        status_code = 409 if str(exc) == 'LINE_USER_ID_TAKEN' else 400
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    db.commit()
    return {'user': {'id': user.id, 'line_user_id': user.line_user_id}}


@router.post('/line/test')
def line_test_message(
    body: LinePushBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    if body.user_id is None:
        raise HTTPException(status_code=400, detail='INVALID_BODY')
    sent = send_test_message(db, store_id=principal.store_id, user_id=body.user_id)
    return {'sent': int(sent)}


@router.post('/line/monthly-summary')
def line_monthly_summary(
    body: LinePushBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    if body.user_id is None:
        raise HTTPException(status_code=400, detail='INVALID_BODY')
    try:
        sent = send_monthly_summary(db, store_id=principal.store_id, user_id=body.user_id, month=body.month or '')
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {'sent': int(sent)}


@router.post('/line/no-leave-reminder')
def line_no_leave_reminder(
    body: LinePushBody,
    principal: Principal = Depends(require_manager),
    db: Session = Depends(get_db),
):
    try:
        sent = send_no_leave_reminders(db, store_id=principal.store_id, month=body.month or '')
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {'sent': sent}
