from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from leave_portal.auth import Principal, require_role
from leave_portal.db import get_db
from leave_portal.models import UserRole
from leave_portal.services.date_utils import is_iso_month
from leave_portal.services.rookie_booking_service import create_booking, delete_booking, list_bookings

router = APIRouter(prefix='/rookie', tags=['rookie'])
require_rookie = require_role(UserRole.ROOKIE)


class BookingBody(BaseModel):
    date: str
    start_min: int
    end_min: int


def _booking_payload(booking) -> dict:
    return {'id': booking.id, 'date': booking.date, 'start_min': booking.start_min, 'end_min': booking.end_min}


@router.get('/bookings')
def bookings_list(
    month: str = Query(...),
    principal: Principal = Depends(require_rookie),
    db: Session = Depends(get_db),
):
    if not is_iso_month(month):
        raise HTTPException(status_code=400, detail='INVALID_MONTH')
    bookings = list_bookings(db, store_id=principal.store_id, rookie_id=principal.id, month=month)
    return {'bookings': [_booking_payload(booking) for booking in bookings]}


@router.post('/bookings')
def bookings_create(
    body: BookingBody,
    principal: Principal = Depends(require_rookie),
    db: Session = Depends(get_db),
):
    try:
        booking = create_booking(
            db,
            store_id=principal.store_id,
            rookie_id=principal.id,
            booking_date=body.date.strip(),
            start_min=body.start_min,
            end_min=body.end_min,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return {'booking': _booking_payload(booking)}


@router.delete('/bookings')
def bookings_delete(
    booking_id: int = Query(..., alias='id'),
    principal: Principal = Depends(require_rookie),
    db: Session = Depends(get_db),
):
    delete_booking(db, store_id=principal.store_id, rookie_id=principal.id, booking_id=booking_id)
    db.commit()
    return {'ok': True}
