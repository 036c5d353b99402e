from __future__ import annotations

import json
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from leave_portal.models import StoreConfig
from leave_portal.services.date_utils import ISO_DATE_RE, WEEKDAY_CODES

MIRROR_AUTO_CREATE = 'auto_create'

NUMBER_DEFAULTS: dict[str, float] = {
    'safety_factor': 1.1,
    'assistant_supply': 1.0,
    'rookie_support_supply': 0.7,
    'rookie_guest_supply': 0.0,
    'designer_default_demand': 1.0,
    'phase1_start_day': 1,
    'phase1_end_day': 5,
    'phase2_start_day': 6,
    'phase2_end_day': 31,
}
BOOLEAN_DEFAULTS: dict[str, bool] = {
    'assistant_block_saturday': True,
    'assistant_block_if_master_working': True,
    'rookie_any_booking_supply_zero': True,
}
STRING_DEFAULTS: dict[str, str] = {
    'binding_mirror_leave': MIRROR_AUTO_CREATE,
    'closed_dates': '',
    'closed_weekdays': '',
}


@dataclass(frozen=True)
class StoreConfigSnapshot:
    safety_factor: float = 1.1
    assistant_supply: float = 1.0
    rookie_support_supply: float = 0.7
    rookie_guest_supply: float = 0.0
    designer_default_demand: float = 1.0
    phase1_start_day: float = 1
    phase1_end_day: float = 5
    phase2_start_day: float = 6
    phase2_end_day: float = 31
    assistant_block_saturday: bool = True
    assistant_block_if_master_working: bool = True
    rookie_any_booking_supply_zero: bool = True
    binding_mirror_leave: str = MIRROR_AUTO_CREATE
    closed_dates: frozenset[str] = field(default_factory=frozenset)
    closed_weekdays: frozenset[str] = field(default_factory=frozenset)

    @property
    def mirrors_leave(self) -> bool:
        return self.binding_mirror_leave == MIRROR_AUTO_CREATE


def unwrap_config_value(value_json: str | None) -> tuple[bool, object]:
    """Return ``(found, value)`` for a ``{"value": ...}`` wrapper, tolerating garbage."""
    if value_json is None:
        return False, None
    try:
        parsed = json.loads(value_json)
    except (TypeError, ValueError):
        return False, None
    if not isinstance(parsed, dict) or 'value' not in parsed:
        return False, None
    return True, parsed['value']


def _number(raw: dict[str, str], key: str) -> float:
    found, value = unwrap_config_value(raw.get(key))
    # bool is an int subclass but never a valid number setting.
    if not found or isinstance(value, bool) or not isinstance(value, (int, float)):
        return NUMBER_DEFAULTS[key]
    return value


def _boolean(raw: dict[str, str], key: str) -> bool:
    found, value = unwrap_config_value(raw.get(key))
    if not found or not isinstance(value, bool):
        return BOOLEAN_DEFAULTS[key]
    return value


def _string(raw: dict[str, str], key: str) -> str:
    found, value = unwrap_config_value(raw.get(key))
    if not found or not isinstance(value, str):
        return STRING_DEFAULTS[key]
    return value


def parse_closed_dates(raw: str) -> frozenset[str]:
    return frozenset(token.strip() for token in raw.split(',') if ISO_DATE_RE.match(token.strip()))


def parse_closed_weekdays(raw: str) -> frozenset[str]:
    return frozenset(
        token.strip().upper() for token in raw.split(',') if token.strip().upper() in WEEKDAY_CODES
    )


def build_config_snapshot(raw: dict[str, str]) -> StoreConfigSnapshot:
    """Resolve a key -> value_json mapping into a snapshot, defaulting anything unusable."""
    return StoreConfigSnapshot(
        **{key: _number(raw, key) for key in NUMBER_DEFAULTS},
        **{key: _boolean(raw, key) for key in BOOLEAN_DEFAULTS},
        binding_mirror_leave=_string(raw, 'binding_mirror_leave'),
        closed_dates=parse_closed_dates(_string(raw, 'closed_dates')),
        closed_weekdays=parse_closed_weekdays(_string(raw, 'closed_weekdays')),
    )


def _current_rows(db: Session, store_id: int) -> list[StoreConfig]:
    return db.execute(
        select(StoreConfig)
        .where(StoreConfig.store_id == store_id, StoreConfig.effective_from.is_(None))
        .order_by(StoreConfig.key.asc())
    ).scalars().all()


def load_config_snapshot(db: Session, store_id: int) -> StoreConfigSnapshot:
    return build_config_snapshot({row.key: row.value_json for row in _current_rows(db, store_id)})


def list_current_config(db: Session, store_id: int) -> list[dict]:
    rows = _current_rows(db, store_id)
    return [{'id': row.id, 'key': row.key, 'value': unwrap_config_value(row.value_json)[1]} for row in rows]


def set_config_value(db: Session, *, store_id: int, key: str, value: object) -> StoreConfig:
    clean_key = key.strip()
    if not clean_key:
        raise ValueError('Config key is required')

    value_json = json.dumps({'value': value})
    row = db.execute(
        select(StoreConfig).where(
            StoreConfig.store_id == store_id,
            StoreConfig.key == clean_key,
            StoreConfig.effective_from.is_(None),
        )
    ).scalar_one_or_none()
    if row:
        row.value_json = value_json
    else:
        row = StoreConfig(store_id=store_id, key=clean_key, value_json=value_json)
        db.add(row)
    db.flush()
    return row
