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
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    true,
    false,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class ProductKind(str, Enum):
    INDIVIDUAL_TICKET = 'INDIVIDUAL_TICKET'
    FULL_TABLE = 'FULL_TABLE'
    CAPTAIN_COMMITMENT = 'CAPTAIN_COMMITMENT'


class ProductTier(str, Enum):
    STANDARD = 'STANDARD'
    VIP = 'VIP'
    VVIP = 'VVIP'


class TableType(str, Enum):
    PREPAID = 'PREPAID'
    CAPTAIN_PAYG = 'CAPTAIN_PAYG'


class TableStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    CLOSED = 'CLOSED'
    ARCHIVED = 'ARCHIVED'


class TableRole(str, Enum):
    OWNER = 'OWNER'
    CO_OWNER = 'CO_OWNER'
    CAPTAIN = 'CAPTAIN'
    MANAGER = 'MANAGER'
    STAFF = 'STAFF'


class OrderStatus(str, Enum):
    PENDING = 'PENDING'
    AWAITING_PAYMENT = 'AWAITING_PAYMENT'
    COMPLETED = 'COMPLETED'
    REFUNDED = 'REFUNDED'
    CANCELLED = 'CANCELLED'
    EXPIRED = 'EXPIRED'


class DiscountType(str, Enum):
    PERCENTAGE = 'PERCENTAGE'
    FIXED_AMOUNT = 'FIXED_AMOUNT'


class ActivityAction(str, Enum):
    GUEST_ADDED = 'GUEST_ADDED'
    GUEST_REMOVED = 'GUEST_REMOVED'
    GUEST_UPDATED = 'GUEST_UPDATED'
    GUEST_CHECKED_IN = 'GUEST_CHECKED_IN'
    TICKET_TRANSFERRED = 'TICKET_TRANSFERRED'
    TABLE_CREATED = 'TABLE_CREATED'
    TABLE_ROLE_ADDED = 'TABLE_ROLE_ADDED'
    TABLE_ROLE_REMOVED = 'TABLE_ROLE_REMOVED'
    ORDER_COMPLETED = 'ORDER_COMPLETED'
    ORDER_PAYMENT_FAILED = 'ORDER_PAYMENT_FAILED'


class EntityType(str, Enum):
    USER = 'USER'
    TABLE = 'TABLE'
    GUEST_ASSIGNMENT = 'GUEST_ASSIGNMENT'
    ORDER = 'ORDER'
    EVENT = 'EVENT'
    ORGANIZATION = 'ORGANIZATION'


ProductTierType = SQLEnum(ProductTier, name='product_tier')


class Organization(Base):
    __tablename__ = 'organizations'
    __table_args__ = (
        UniqueConstraint('slug', name='organizations_slug_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class User(Base):
    __tablename__ = 'users'
    __table_args__ = (
        UniqueConstraint('email', name='users_email_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    first_name: Mapped[str | None] = mapped_column(Text)
    last_name: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    is_super_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def full_name(self) -> str:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return ' '.join(parts) if parts else self.email


class OrganizationAdmin(Base):
    __tablename__ = 'organization_admins'
    __table_args__ = (
        UniqueConstraint('user_id', 'organization_id', name='organization_admins_user_org_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    organization_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Event(Base):
    __tablename__ = 'events'
    __table_args__ = (
        UniqueConstraint('organization_id', 'slug', name='events_org_slug_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('organizations.id'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False)
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (
        UniqueConstraint('event_id', 'name', name='products_event_name_key'),
        CheckConstraint('price_cents >= 0', name='products_price_cents_nonneg'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[ProductKind] = mapped_column(SQLEnum(ProductKind, name='product_kind'), nullable=False)
    tier: Mapped[ProductTier] = mapped_column(
        ProductTierType,
        nullable=False,
        default=ProductTier.STANDARD,
    )
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class EventTable(Base):
    __tablename__ = 'tables'
    __table_args__ = (
        UniqueConstraint('slug', name='tables_slug_key'),
        UniqueConstraint('event_id', 'reference_code', name='tables_event_reference_code_key'),
        CheckConstraint('capacity > 0', name='tables_capacity_positive'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    primary_owner_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    internal_name: Mapped[str | None] = mapped_column(Text)
    slug: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[TableType] = mapped_column(SQLEnum(TableType, name='table_type'), nullable=False)
    status: Mapped[TableStatus] = mapped_column(
        SQLEnum(TableStatus, name='table_status'),
        nullable=False,
        default=TableStatus.ACTIVE,
    )
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default='10')
    custom_total_price_cents: Mapped[int | None] = mapped_column(Integer)
    reference_code: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TableUserRole(Base):
    __tablename__ = 'table_user_roles'
    __table_args__ = (
        UniqueConstraint('table_id', 'user_id', 'role', name='table_user_roles_table_user_role_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    table_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('tables.id', ondelete='CASCADE'), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    role: Mapped[TableRole] = mapped_column(SQLEnum(TableRole, name='table_role'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PromoCode(Base):
    __tablename__ = 'promo_codes'
    __table_args__ = (
        UniqueConstraint('event_id', 'code', name='promo_codes_event_code_key'),
        CheckConstraint('discount_value >= 0', name='promo_codes_discount_value_nonneg'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(SQLEnum(DiscountType, name='discount_type'), nullable=False)
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)
    max_uses: Mapped[int | None] = mapped_column(Integer)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        UniqueConstraint('stripe_payment_intent_id', name='orders_stripe_payment_intent_id_key'),
        CheckConstraint('quantity >= 1', name='orders_quantity_positive'),
        CheckConstraint('amount_cents >= 0', name='orders_amount_cents_nonneg'),
        CheckConstraint('discount_cents >= 0', name='orders_discount_cents_nonneg'),
        Index('orders_table_status_idx', 'table_id', 'status'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('events.id'), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    table_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('tables.id', ondelete='SET NULL'))
    promo_code_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('promo_codes.id'))
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status'),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255))
    stripe_charge_id: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class GuestAssignment(Base):
    __tablename__ = 'guest_assignments'
    __table_args__ = (
        UniqueConstraint('table_id', 'user_id', name='guest_assignments_table_user_key'),
        UniqueConstraint('organization_id', 'reference_code', name='guest_assignments_org_reference_code_key'),
        Index('guest_assignments_order_idx', 'order_id'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('events.id'), nullable=False)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('organizations.id'), nullable=False)
    table_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('tables.id', ondelete='SET NULL'))
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id'), nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text)
    dietary_restrictions: Mapped[dict | None] = mapped_column(JSON)
    bidder_number: Mapped[str | None] = mapped_column(String(32))
    auction_registered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    tier: Mapped[ProductTier] = mapped_column(
        ProductTierType,
        nullable=False,
        default=ProductTier.STANDARD,
    )
    reference_code: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ActivityLog(Base):
    __tablename__ = 'activity_log'
    __table_args__ = (
        Index('activity_log_org_created_idx', 'organization_id', 'created_at'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('organizations.id'), nullable=False)
    event_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('events.id'))
    actor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    action: Mapped[ActivityAction] = mapped_column(SQLEnum(ActivityAction, name='activity_action'), nullable=False)
    entity_type: Mapped[EntityType] = mapped_column(SQLEnum(EntityType, name='entity_type'), nullable=False)
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StripeEventLog(Base):
    __tablename__ = 'stripe_event_log'
    __table_args__ = (
        UniqueConstraint('stripe_event_id', name='stripe_event_log_stripe_event_id_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    stripe_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
