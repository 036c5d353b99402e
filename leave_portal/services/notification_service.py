from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from http.client import HTTPException
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from leave_portal.config import settings
from leave_portal.models import LeaveRequest, LeaveSource, LeaveStatus, User, UserRole
from leave_portal.services.date_utils import is_iso_month

logger = logging.getLogger(__name__)

PUSH_PATH = '/v2/bot/message/push'

STATUS_LABELS = {
    LeaveStatus.PENDING: 'submitted',
    LeaveStatus.APPROVED: 'approved',
    LeaveStatus.REJECTED: 'rejected',
    LeaveStatus.CANCELED: 'canceled',
}

SUMMARY_STATUS_LABELS = {
    LeaveStatus.PENDING: 'pending review',
    LeaveStatus.APPROVED: 'approved',
    LeaveStatus.REJECTED: 'rejected',
    LeaveStatus.CANCELED: 'canceled',
}

SOURCE_LABELS = {
    LeaveSource.SELF: 'self request',
    LeaveSource.MANAGER: 'scheduled by manager',
    LeaveSource.BINDING_MIRROR: 'linked to designer',
    LeaveSource.SYSTEM: 'system',
}


@dataclass
class LineClient:
    base_url: str
    headers: dict[str, str]
    timeout_seconds: int

    def post(self, path: str, payload: dict) -> None:
        req = Request(
            url=f'{self.base_url}{path}',
            data=json.dumps(payload).encode('utf-8'),
            headers=self.headers,
            method='POST',
        )
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                response.read()
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            raise RuntimeError(f'LINE API error {exc.code}: {body}') from exc
        except URLError as exc:
            raise RuntimeError(f'LINE API network error: {exc.reason}') from exc
        except (OSError, HTTPException) as exc:
            # getresponse() failures are not wrapped in URLError.
            raise RuntimeError(f'LINE API connection error: {exc!r}') from exc


def get_line_client() -> LineClient | None:
    if not settings.line_push_enabled:
        return None
    return LineClient(
        base_url=settings.line_api_base_url.rstrip('/'),
        headers={
            'Authorization': f'Bearer {settings.line_channel_access_token}',
            'Content-Type': 'application/json',
        },
        timeout_seconds=settings.line_timeout_seconds,
    )


def push_text(client: LineClient, *, line_user_id: str, text: str) -> bool:
    """Send one text message; delivery problems are logged, never raised."""
    try:
        client.post(PUSH_PATH, {'to': line_user_id, 'messages': [{'type': 'text', 'text': text}]})
    except Exception:
        logger.exception('LINE push to %s failed', line_user_id)
        return False
    return True


def notify_leave_status(db: Session, *, leave_request_ids: list[int], client: LineClient | None = None) -> int:
    """Best-effort push of the current status of each request to its owner.

    Runs after the leave transaction commits; failures are logged and never raised.
    Returns the number of messages delivered.
    """
    client = client or get_line_client()
    if client is None or not leave_request_ids:
        return 0

    try:
        rows = db.execute(
            select(LeaveRequest.id, LeaveRequest.date, LeaveRequest.status, User.line_user_id)
            .join(User, User.id == LeaveRequest.user_id)
            .where(LeaveRequest.id.in_(leave_request_ids))
        ).all()
    except Exception:
        logger.exception('Could not load leave requests %s for notification', leave_request_ids)
        return 0

    sent = 0
    for row in rows:
        if not row.line_user_id:
            continue
        text = f'Leave request for {row.date} was {STATUS_LABELS.get(row.status, row.status.value)}.'
        if push_text(client, line_user_id=row.line_user_id, text=text):
            sent += 1
    return sent


def _store_member(db: Session, *, store_id: int, user_id: int) -> User | None:
    return db.execute(
        select(User).where(User.id == user_id, User.store_id == store_id, User.active.is_(True))
    ).scalar_one_or_none()


def send_test_message(db: Session, *, store_id: int, user_id: int, client: LineClient | None = None) -> bool:
    client = client or get_line_client()
    if client is None:
        return False
    target = _store_member(db, store_id=store_id, user_id=user_id)
    if not target or not target.line_user_id:
        return False
    text = f'Reminder: {target.display_name}, this is a test notification from the leave system.'
    return push_text(client, line_user_id=target.line_user_id, text=text)


def build_monthly_summary(display_name: str, month: str, requests: list[tuple[str, LeaveStatus, LeaveSource]]) -> str:
    lines = [f'{display_name}, here is your leave summary for {month}:']
    if not requests:
        lines.append('No leave requests recorded this month.')
    for leave_date, status, source in requests:
        lines.append(f'{leave_date}: {SUMMARY_STATUS_LABELS[status]} ({SOURCE_LABELS[source]})')
    return '\n'.join(lines)


def send_monthly_summary(
    db: Session, *, store_id: int, user_id: int, month: str, client: LineClient | None = None
) -> bool:
    """Push every leave request of ``month`` (any status) to one staff member."""
    if not is_iso_month(month):
        raise ValueError('INVALID_MONTH')
    client = client or get_line_client()
    if client is None:
        return False
    target = _store_member(db, store_id=store_id, user_id=user_id)
    if not target or not target.line_user_id:
        return False

    rows = db.execute(
        select(LeaveRequest.date, LeaveRequest.status, LeaveRequest.source)
        .where(
            LeaveRequest.store_id == store_id,
            LeaveRequest.user_id == target.id,
            LeaveRequest.date.startswith(f'{month}-'),
        )
        .order_by(LeaveRequest.date.asc(), LeaveRequest.id.asc())
    ).all()
    text = build_monthly_summary(target.display_name, month, [(row.date, row.status, row.source) for row in rows])
    return push_text(client, line_user_id=target.line_user_id, text=text)


def send_no_leave_reminders(db: Session, *, store_id: int, month: str, client: LineClient | None = None) -> int:
    """Remind non-manager staff with no leave rows at all in ``month``. Returns messages delivered."""
    if not is_iso_month(month):
        raise ValueError('INVALID_MONTH')
    client = client or get_line_client()
    if client is None:
        return 0

    counts = dict(
        db.execute(
            select(LeaveRequest.user_id, func.count(LeaveRequest.id))
            .where(LeaveRequest.store_id == store_id, LeaveRequest.date.startswith(f'{month}-'))
            .group_by(LeaveRequest.user_id)
        ).all()
    )
    users = db.execute(
        select(User)
        .where(User.store_id == store_id, User.active.is_(True), User.role != UserRole.MANAGER)
        .order_by(User.id.asc())
    ).scalars().all()

    sent = 0
    for user in users:
        if not user.line_user_id or counts.get(user.id, 0) > 0:
            continue
        text = (
            f'Hi {user.display_name}, we have no leave requests from you for {month} yet. '
            'Please sign in and submit any leave you need soon.'
        )
        if push_text(client, line_user_id=user.line_user_id, text=text):
            sent += 1
    return sent
