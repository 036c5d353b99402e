from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from leave_portal.models import Binding, User, UserRole


def _get_active_member(db: Session, *, store_id: int, user_id: int) -> User | None:
    return db.execute(
        select(User).where(User.id == user_id, User.store_id == store_id, User.active.is_(True))
    ).scalar_one_or_none()


def list_bindings(db: Session, *, store_id: int) -> list[dict]:
    assistant = aliased(User)
    designer = aliased(User)
    rows = db.execute(
        select(
            Binding.id,
            Binding.created_at,
            assistant.id.label('assistant_id'),
            assistant.display_name.label('assistant_name'),
            designer.id.label('designer_id'),
            designer.display_name.label('designer_name'),
        )
        .join(assistant, assistant.id == Binding.assistant_id)
        .join(designer, designer.id == Binding.designer_id)
        .where(Binding.store_id == store_id, Binding.active.is_(True))
        .order_by(Binding.created_at.desc(), Binding.id.desc())
    ).all()
    return [
        {
            'id': row.id,
            'assistant': {'id': row.assistant_id, 'display_name': row.assistant_name},
            'designer': {'id': row.designer_id, 'display_name': row.designer_name},
            'created_at': row.created_at,
        }
        for row in rows
    ]


def create_binding(db: Session, *, store_id: int, assistant_id: int, designer_id: int) -> Binding:
    assistant = _get_active_member(db, store_id=store_id, user_id=assistant_id)
    if not assistant or assistant.role != UserRole.ASSISTANT:
        raise ValueError('INVALID_ASSISTANT')
    designer = _get_active_member(db, store_id=store_id, user_id=designer_id)
    if not designer or designer.role != UserRole.DESIGNER:
        raise ValueError('INVALID_DESIGNER')

    binding = Binding(store_id=store_id, assistant_id=assistant.id, designer_id=designer.id, active=True)
    db.add(binding)
    db.flush()
    return binding


def deactivate_binding(db: Session, *, store_id: int, binding_id: int) -> Binding:
    binding = db.execute(
        select(Binding).where(Binding.id == binding_id, Binding.store_id == store_id)
    ).scalar_one_or_none()
    if not binding:
        raise ValueError('Binding not found')
    binding.active = False
    db.flush()
    return binding


def bound_assistant_ids(db: Session, *, store_id: int, designer_id: int) -> list[int]:
    return list(
        db.execute(
            select(Binding.assistant_id)
            .where(
                Binding.store_id == store_id,
                Binding.designer_id == designer_id,
                Binding.active.is_(True),
            )
            .order_by(Binding.id.asc())
        ).scalars().all()
    )
