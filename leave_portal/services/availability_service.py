from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from leave_portal.models import (
    ACTIVE_LEAVE_STATUSES,
    Binding,
    DesignerDemandOverride,
    LeaveRequest,
    LeaveStatus,
    RookieBooking,
    User,
    UserRole,
)
from leave_portal.services.date_utils import day_of_month_in_timezone, month_dates, parse_month, weekday_code
from leave_portal.services.store_config_service import StoreConfigSnapshot, load_config_snapshot


class BlockReason(str, Enum):
    PHASE_LOCK = 'PHASE_LOCK'
    STORE_CLOSED = 'STORE_CLOSED'
    QUOTA_FULL = 'QUOTA_FULL'
    SATURDAY_BLOCK = 'SATURDAY_BLOCK'
    MASTER_WORKING_BLOCK = 'MASTER_WORKING_BLOCK'


@dataclass(frozen=True)
class Requester:
    user_id: int
    role: UserRole


@dataclass(frozen=True)
class RosterMember:
    user_id: int
    role: UserRole
    base_demand: float | None = None
    base_supply: float | None = None


@dataclass(frozen=True)
class LeaveEntry:
    user_id: int
    date: str
    status: LeaveStatus
    created_by_user_id: int | None = None
    display_name: str = ''
    role: UserRole | None = None


@dataclass(frozen=True)
class OffUser:
    user_id: int
    display_name: str
    role: UserRole | None
    status: LeaveStatus


@dataclass(frozen=True)
class DayAvailability:
    date: str
    remaining_quota: float
    assistant_supply: float
    rookie_supply: float
    designer_demand: float
    safety_factor: float
    selectable: bool
    reasons: list[BlockReason]
    my_leave_status: LeaveStatus | None
    my_leave_cancelable: bool
    off_users: list[OffUser] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'date': self.date,
            'remaining_quota': self.remaining_quota,
            'assistant_supply': self.assistant_supply,
            'rookie_supply': self.rookie_supply,
            'designer_demand': self.designer_demand,
            'safety_factor': self.safety_factor,
            'selectable': self.selectable,
            'reasons': [reason.value for reason in self.reasons],
            'my_leave_status': self.my_leave_status.value if self.my_leave_status else None,
            'my_leave_cancelable': self.my_leave_cancelable,
            'off_users': [
                {
                    'user_id': off.user_id,
                    'display_name': off.display_name,
                    'role': off.role.value if off.role else None,
                    'status': off.status.value,
                }
                for off in self.off_users
            ],
        }


@dataclass(frozen=True)
class MonthAvailability:
    month: str
    days: list[DayAvailability]

    def day(self, iso_date: str) -> DayAvailability | None:
        return next((day for day in self.days if day.date == iso_date), None)

    def to_dict(self) -> dict:
        return {'month': self.month, 'days': [day.to_dict() for day in self.days]}


def _in_window(today_day: int, start: float, end: float) -> bool:
    return start <= today_day <= end


def _phase_open(role: UserRole, config: StoreConfigSnapshot, today_day: int) -> bool:
    in_phase1 = _in_window(today_day, config.phase1_start_day, config.phase1_end_day)
    in_phase2 = _in_window(today_day, config.phase2_start_day, config.phase2_end_day)
    if role == UserRole.DESIGNER:
        return in_phase1 or in_phase2
    if role in (UserRole.ASSISTANT, UserRole.ROOKIE):
        return in_phase2
    return True


def compute_month_availability(
    *,
    month: str,
    config: StoreConfigSnapshot,
    roster: Iterable[RosterMember],
    leave_entries: Iterable[LeaveEntry],
    requester: Requester,
    today_day: int,
    demand_overrides: Mapping[tuple[int, str], float] | None = None,
    rookie_booking_dates: Iterable[tuple[int, str]] = (),
    bound_designer_ids: Iterable[int] = (),
) -> MonthAvailability:
    """Project supply, demand and the requester's verdict over every day of ``month``.

    ``today_day`` is the current day-of-month in the store timezone; phase windows
    are evaluated against it rather than against each target date.
    """
    members = list(roster)
    assistants = [m for m in members if m.role == UserRole.ASSISTANT]
    rookies = [m for m in members if m.role == UserRole.ROOKIE]
    designers = [m for m in members if m.role == UserRole.DESIGNER]

    overrides = dict(demand_overrides or {})
    booked = set(rookie_booking_dates)
    bound_designers = list(bound_designer_ids)

    off_keys: set[tuple[int, str]] = set()
    mine: dict[str, tuple[LeaveStatus, bool]] = {}
    off_users_by_date: dict[str, list[OffUser]] = {}
    for entry in leave_entries:
        if entry.status not in ACTIVE_LEAVE_STATUSES:
            continue
        off_keys.add((entry.user_id, entry.date))
        if entry.user_id == requester.user_id:
            cancelable = entry.status == LeaveStatus.PENDING and entry.created_by_user_id == requester.user_id
            mine[entry.date] = (entry.status, cancelable)
        listed = off_users_by_date.setdefault(entry.date, [])
        if all(off.user_id != entry.user_id for off in listed):
            listed.append(OffUser(entry.user_id, entry.display_name, entry.role, entry.status))

    phase_open = _phase_open(requester.role, config, today_day)
    is_assistant = requester.role == UserRole.ASSISTANT
    is_designer = requester.role == UserRole.DESIGNER

    days: list[DayAvailability] = []
    for iso_date in month_dates(month):
        weekday = weekday_code(iso_date)
        store_closed = iso_date in config.closed_dates or weekday in config.closed_weekdays

        def is_off(user_id: int) -> bool:
            return (user_id, iso_date) in off_keys

        assistant_supply = 0.0
        for member in assistants:
            if is_off(member.user_id):
                continue
            assistant_supply += member.base_supply if member.base_supply is not None else config.assistant_supply

        rookie_supply = 0.0
        for member in rookies:
            if is_off(member.user_id):
                continue
            if (member.user_id, iso_date) in booked and config.rookie_any_booking_supply_zero:
                rookie_supply += config.rookie_guest_supply
            elif member.base_supply is not None:
                rookie_supply += member.base_supply
            else:
                rookie_supply += config.rookie_support_supply

        designer_demand = 0.0
        for member in designers:
            if is_off(member.user_id):
                continue
            override = overrides.get((member.user_id, iso_date))
            if override is not None:
                designer_demand += override
            elif member.base_demand is not None:
                designer_demand += member.base_demand
            else:
                designer_demand += config.designer_default_demand

        remaining_quota = assistant_supply + rookie_supply - designer_demand * config.safety_factor

        reasons: list[BlockReason] = []
        selectable = True

        if not phase_open:
            selectable = False
            reasons.append(BlockReason.PHASE_LOCK)

        if store_closed:
            selectable = False
            reasons.append(BlockReason.STORE_CLOSED)

        if remaining_quota < 0:
            # Designers may still ask; the manager decides.
            if not is_designer:
                selectable = False
            reasons.append(BlockReason.QUOTA_FULL)

        if is_assistant and config.assistant_block_saturday and weekday == 'SAT':
            selectable = False
            reasons.append(BlockReason.SATURDAY_BLOCK)

        if is_assistant and config.assistant_block_if_master_working and bound_designers:
            if any(not is_off(designer_id) for designer_id in bound_designers):
                selectable = False
                reasons.append(BlockReason.MASTER_WORKING_BLOCK)

        my_status, my_cancelable = mine.get(iso_date, (None, False))
        days.append(
            DayAvailability(
                date=iso_date,
                remaining_quota=remaining_quota,
                assistant_supply=assistant_supply,
                rookie_supply=rookie_supply,
                designer_demand=designer_demand,
                safety_factor=config.safety_factor,
                selectable=selectable,
                reasons=reasons,
                my_leave_status=my_status,
                my_leave_cancelable=my_cancelable,
                off_users=list(off_users_by_date.get(iso_date, [])),
            )
        )

    return MonthAvailability(month=month, days=days)


def load_roster(db: Session, store_id: int) -> list[RosterMember]:
    rows = db.execute(
        select(User.id, User.role, User.base_demand, User.base_supply).where(
            User.store_id == store_id,
            User.active.is_(True),
        )
    ).all()
    return [
        RosterMember(user_id=row.id, role=row.role, base_demand=row.base_demand, base_supply=row.base_supply)
        for row in rows
    ]


def load_month_leave_entries(db: Session, store_id: int, month: str) -> list[LeaveEntry]:
    rows = db.execute(
        select(
            LeaveRequest.user_id,
            LeaveRequest.date,
            LeaveRequest.status,
            LeaveRequest.created_by_user_id,
            User.display_name,
            User.role,
        )
        .join(User, User.id == LeaveRequest.user_id)
        .where(
            LeaveRequest.store_id == store_id,
            LeaveRequest.date.startswith(f'{month}-'),
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
        )
        .order_by(LeaveRequest.date.asc(), LeaveRequest.id.asc())
    ).all()
    return [
        LeaveEntry(
            user_id=row.user_id,
            date=row.date,
            status=row.status,
            created_by_user_id=row.created_by_user_id,
            display_name=row.display_name,
            role=row.role,
        )
        for row in rows
    ]


def load_demand_overrides(db: Session, store_id: int, month: str) -> dict[tuple[int, str], float]:
    rows = db.execute(
        select(DesignerDemandOverride.designer_id, DesignerDemandOverride.date, DesignerDemandOverride.demand).where(
            DesignerDemandOverride.store_id == store_id,
            DesignerDemandOverride.date.startswith(f'{month}-'),
        )
    ).all()
    return {(row.designer_id, row.date): row.demand for row in rows}


def load_rookie_booking_dates(db: Session, store_id: int, month: str) -> set[tuple[int, str]]:
    rows = db.execute(
        select(RookieBooking.rookie_id, RookieBooking.date).where(
            RookieBooking.store_id == store_id,
            RookieBooking.date.startswith(f'{month}-'),
        )
    ).all()
    return {(row.rookie_id, row.date) for row in rows}


def load_bound_designer_ids(db: Session, store_id: int, assistant_id: int) -> list[int]:
    return list(
        db.execute(
            select(Binding.designer_id).where(
                Binding.store_id == store_id,
                Binding.assistant_id == assistant_id,
                Binding.active.is_(True),
            )
        ).scalars().all()
    )


def get_month_availability(
    db: Session,
    *,
    store_id: int,
    timezone_name: str,
    month: str,
    requester: Requester,
    now: datetime | None = None,
) -> MonthAvailability:
    parse_month(month)
    config = load_config_snapshot(db, store_id)

    bound_designer_ids: list[int] = []
    if requester.role == UserRole.ASSISTANT and config.assistant_block_if_master_working:
        bound_designer_ids = load_bound_designer_ids(db, store_id, requester.user_id)

    return compute_month_availability(
        month=month,
        config=config,
        roster=load_roster(db, store_id),
        leave_entries=load_month_leave_entries(db, store_id, month),
        requester=requester,
        today_day=day_of_month_in_timezone(timezone_name, now),
        demand_overrides=load_demand_overrides(db, store_id, month),
        rookie_booking_dates=load_rookie_booking_dates(db, store_id, month),
        bound_designer_ids=bound_designer_ids,
    )
