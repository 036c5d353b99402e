from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer, 'sqlite')

ACTIVE_LEAVE_STATUS_SQL = "status IN ('PENDING', 'APPROVED')"


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    DESIGNER = 'DESIGNER'
    ASSISTANT = 'ASSISTANT'
    ROOKIE = 'ROOKIE'
    MANAGER = 'MANAGER'


class LeaveStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    CANCELED = 'CANCELED'


ACTIVE_LEAVE_STATUSES = (LeaveStatus.PENDING, LeaveStatus.APPROVED)


class LeaveSource(str, Enum):
    SELF = 'SELF'
    BINDING_MIRROR = 'BINDING_MIRROR'
    MANAGER = 'MANAGER'
    SYSTEM = 'SYSTEM'


class ApprovalAction(str, Enum):
    APPROVE = 'APPROVE'
    REJECT = 'REJECT'
    FORCE_APPROVE = 'FORCE_APPROVE'


class Store(Base):
    __tablename__ = 'stores'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default='Asia/Taipei', server_default='Asia/Taipei')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    line_user_id: Mapped[str | None] = mapped_column(Text, unique=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole, name='user_role'), nullable=False)
    base_demand: Mapped[float | None] = mapped_column(Float)
    base_supply: Mapped[float | None] = mapped_column(Float)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class StoreConfig(Base):
    __tablename__ = 'store_configs'
    __table_args__ = (
        UniqueConstraint('store_id', 'key', 'effective_from', name='store_configs_store_key_effective_uniq'),
        Index('store_configs_store_key_idx', 'store_id', 'key'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    key: Mapped[str] = mapped_column(Text, nullable=False)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    effective_from: Mapped[str | None] = mapped_column(String(10))
    effective_to: Mapped[str | None] = mapped_column(String(10))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Binding(Base):
    __tablename__ = 'bindings'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False, index=True)
    assistant_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    designer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    start_date: Mapped[str | None] = mapped_column(String(10))
    end_date: Mapped[str | None] = mapped_column(String(10))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LeaveRequest(Base):
    __tablename__ = 'leave_requests'
    __table_args__ = (
        Index('leave_requests_store_date_idx', 'store_id', 'date'),
        Index(
            'leave_requests_active_user_date_uniq',
            'user_id',
            'date',
            unique=True,
            postgresql_where=text(ACTIVE_LEAVE_STATUS_SQL),
            sqlite_where=text(ACTIVE_LEAVE_STATUS_SQL),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[LeaveStatus] = mapped_column(
        SQLEnum(LeaveStatus, name='leave_status'),
        nullable=False,
        default=LeaveStatus.PENDING,
        server_default='PENDING',
        index=True,
    )
    source: Mapped[LeaveSource] = mapped_column(
        SQLEnum(LeaveSource, name='leave_source'), nullable=False, default=LeaveSource.SELF, server_default='SELF'
    )
    created_by_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='SET NULL'))
    linked_to_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey('leave_requests.id', ondelete='SET NULL'), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class Approval(Base):
    __tablename__ = 'approvals'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False, index=True)
    leave_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('leave_requests.id', ondelete='CASCADE'), nullable=False, index=True
    )
    manager_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    action: Mapped[ApprovalAction] = mapped_column(SQLEnum(ApprovalAction, name='approval_action'), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DesignerDemandOverride(Base):
    __tablename__ = 'designer_demand_overrides'
    __table_args__ = (
        UniqueConstraint('designer_id', 'date', name='designer_demand_overrides_designer_date_uniq'),
        Index('designer_demand_overrides_store_date_idx', 'store_id', 'date'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    designer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    demand: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RookieBooking(Base):
    __tablename__ = 'rookie_bookings'
    __table_args__ = (
        CheckConstraint('start_min >= 0 AND end_min <= 1440 AND start_min < end_min', name='rookie_bookings_range_ck'),
        Index('rookie_bookings_store_date_idx', 'store_id', 'date'),
        Index('rookie_bookings_rookie_date_idx', 'rookie_id', 'date'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    rookie_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    start_min: Mapped[int] = mapped_column(Integer, nullable=False)
    end_min: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='SET NULL'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    leave_request_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey('leave_requests.id', ondelete='SET NULL')
    )
    ip: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
