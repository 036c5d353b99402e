from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from leave_portal.config import settings
from leave_portal.db import get_db
from leave_portal.models import User, UserRole


@dataclass
class Principal:
    id: int
    store_id: int
    role: UserRole
    display_name: str
    line_user_id: str | None
    active: bool


def _mock_user_id(request: Request) -> int | None:
    raw = request.headers.get(settings.mock_user_header) or request.cookies.get(settings.mock_user_cookie)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    user_id = _mock_user_id(request)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='UNAUTHORIZED')

    user = db.execute(select(User).where(User.id == user_id, User.active.is_(True))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='UNAUTHORIZED')
    return Principal(
        id=user.id,
        store_id=user.store_id,
        role=user.role,
        display_name=user.display_name,
        line_user_id=user.line_user_id,
        active=user.active,
    )


def require_role(*allowed: UserRole):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='FORBIDDEN')
        return principal

    return _dep
