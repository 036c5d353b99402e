from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from leave_portal.auth import Principal, get_current_principal
from leave_portal.db import get_db
from leave_portal.dependencies import get_principal_store
from leave_portal.models import Store
from leave_portal.services.availability_service import Requester, get_month_availability
from leave_portal.services.date_utils import is_iso_month

router = APIRouter(prefix='/calendar', tags=['calendar'])


@router.get('/availability')
def month_availability(
    month: str = Query(...),
    principal: Principal = Depends(get_current_principal),
    store: Store = Depends(get_principal_store),
    db: Session = Depends(get_db),
):
    if not is_iso_month(month):
        raise HTTPException(status_code=400, detail='INVALID_MONTH')

    availability = get_month_availability(
        db,
        store_id=store.id,
        timezone_name=store.timezone,
        month=month,
        requester=Requester(user_id=principal.id, role=principal.role),
    )
    return availability.to_dict()
