from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from leave_portal.auth import Principal, get_current_principal
from leave_portal.db import get_db
from leave_portal.models import Store


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_principal_store(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> Store:
    store = db.execute(select(Store).where(Store.id == principal.store_id)).scalar_one_or_none()
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='STORE_NOT_FOUND')
    return store
