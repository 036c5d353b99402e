from __future__ import annotations

from fastapi import APIRouter, Depends

from leave_portal.auth import Principal, get_current_principal

router = APIRouter(prefix='/auth', tags=['auth'])


@router.get('/me')
def me(principal: Principal = Depends(get_current_principal)):
    return {
        'user': {
            'id': principal.id,
            'store_id': principal.store_id,
            'role': principal.role.value,
            'display_name': principal.display_name,
            'line_user_id': principal.line_user_id,
        }
    }
