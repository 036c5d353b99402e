from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from leave_portal.models import User


class UserNotFound(ValueError):
    pass


def _get_member(db: Session, *, store_id: int, user_id: int) -> User:
    user = db.execute(
        select(User).where(User.id == user_id, User.store_id == store_id, User.active.is_(True))
    ).scalar_one_or_none()
    if not user:
        raise UserNotFound('USER_NOT_FOUND')
    return user


def list_staff(db: Session, *, store_id: int) -> list[dict]:
    users = db.execute(
        select(User).where(User.store_id == store_id, User.active.is_(True)).order_by(User.role.asc(), User.id.asc())
    ).scalars().all()
    return [
        {
            'id': user.id,
            'display_name': user.display_name,
            'role': user.role.value,
            'base_demand': user.base_demand,
            'base_supply': user.base_supply,
            'line_bound': bool(user.line_user_id),
        }
        for user in users
    ]


def update_user_params(
    db: Session,
    *,
    store_id: int,
    user_id: int,
    base_demand: float | None,
    base_supply: float | None,
) -> User:
    """Set or clear the per-user demand/supply overrides; ``None`` falls back to store defaults."""
    user = _get_member(db, store_id=store_id, user_id=user_id)
    user.base_demand = base_demand
    user.base_supply = base_supply
    db.flush()
    return user


def bind_line_user(db: Session, *, store_id: int, user_id: int, line_user_id: str) -> User:
    line_user_id = (line_user_id or '').strip()
    if not line_user_id:
        raise ValueError('INVALID_BODY')
    user = _get_member(db, store_id=store_id, user_id=user_id)

    holder = db.execute(select(User.id).where(User.line_user_id == line_user_id)).scalar_one_or_none()
    if holder is not None and holder != user.id:
        raise ValueError('LINE_USER_ID_TAKEN')

    user.line_user_id = line_user_id
    db.flush()
    return user
