from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from leave_portal.models import DesignerDemandOverride, RookieBooking, User, UserRole
from leave_portal.services.date_utils import is_iso_date, parse_month

MINUTES_PER_DAY = 24 * 60


def list_bookings(db: Session, *, store_id: int, rookie_id: int, month: str) -> list[RookieBooking]:
    parse_month(month)
    return db.execute(
        select(RookieBooking)
        .where(
            RookieBooking.store_id == store_id,
            RookieBooking.rookie_id == rookie_id,
            RookieBooking.date.startswith(f'{month}-'),
        )
        .order_by(RookieBooking.date.asc(), RookieBooking.start_min.asc())
    ).scalars().all()


def create_booking(
    db: Session,
    *,
    store_id: int,
    rookie_id: int,
    booking_date: str,
    start_min: int,
    end_min: int,
) -> RookieBooking:
    if not is_iso_date(booking_date):
        raise ValueError('INVALID_DATE')
    if not (0 <= start_min <= MINUTES_PER_DAY and 0 <= end_min <= MINUTES_PER_DAY):
        raise ValueError('INVALID_RANGE')
    if end_min <= start_min:
        raise ValueError('INVALID_RANGE')

    booking = RookieBooking(
        store_id=store_id,
        rookie_id=rookie_id,
        date=booking_date,
        start_min=start_min,
        end_min=end_min,
    )
    db.add(booking)
    db.flush()
    return booking


def delete_booking(db: Session, *, store_id: int, rookie_id: int, booking_id: int) -> int:
    result = db.execute(
        delete(RookieBooking).where(
            RookieBooking.id == booking_id,
            RookieBooking.store_id == store_id,
            RookieBooking.rookie_id == rookie_id,
        )
    )
    return result.rowcount or 0


def set_demand_override(
    db: Session, *, store_id: int, designer_id: int, override_date: str, demand: float
) -> DesignerDemandOverride:
    if not is_iso_date(override_date):
        raise ValueError('INVALID_DATE')
    if demand < 0:
        raise ValueError('Demand cannot be negative')
    designer = db.execute(
        select(User).where(User.id == designer_id, User.store_id == store_id, User.active.is_(True))
    ).scalar_one_or_none()
    if not designer or designer.role != UserRole.DESIGNER:
        raise ValueError('INVALID_DESIGNER')

    row = db.execute(
        select(DesignerDemandOverride).where(
            DesignerDemandOverride.designer_id == designer_id,
            DesignerDemandOverride.date == override_date,
        )
    ).scalar_one_or_none()
    if row:
        row.demand = demand
    else:
        row = DesignerDemandOverride(store_id=store_id, designer_id=designer_id, date=override_date, demand=demand)
        db.add(row)
    db.flush()
    return row


def clear_demand_override(db: Session, *, store_id: int, designer_id: int, override_date: str) -> int:
    result = db.execute(
        delete(DesignerDemandOverride).where(
            DesignerDemandOverride.store_id == store_id,
            DesignerDemandOverride.designer_id == designer_id,
            DesignerDemandOverride.date == override_date,
        )
    )
    return result.rowcount or 0
