from __future__ import annotations

from sqlalchemy.orm import Session

from leave_portal.models import Approval, ApprovalAction, AuditLog


def log_approval(
    db: Session,
    *,
    store_id: int,
    leave_request_id: int,
    manager_id: int,
    action: ApprovalAction,
    reason: str | None = None,
) -> None:
    db.add(
        Approval(
            store_id=store_id,
            leave_request_id=leave_request_id,
            manager_id=manager_id,
            action=action,
            reason=reason,
        )
    )


def log_audit(
    db: Session,
    *,
    actor_user_id: int | None,
    action: str,
    leave_request_id: int | None,
    ip: str | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            leave_request_id=leave_request_id,
            ip=ip,
            meta=metadata or {},
        )
    )
