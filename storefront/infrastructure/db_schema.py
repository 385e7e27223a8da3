from sqlalchemy import (
    Table, Column, String, Integer, Enum, DateTime, JSON, MetaData, Numeric, Boolean,
    ForeignKey, CheckConstraint,
)
from sqlalchemy.sql import func

from storefront.domain.models import OrderStatus, PaymentStatus, RefundStatus

metadata = MetaData()

Money = Numeric(12, 2, asdecimal=True)


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("price", Money, nullable=False),
    Column("stock_quantity", Integer, nullable=False, default=0),
    Column("reserved_quantity", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    CheckConstraint("reserved_quantity >= 0", name="ck_products_reserved_non_negative"),
)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("status", Enum(OrderStatus, native_enum=False, length=32), nullable=False),
    Column("payment_status", Enum(PaymentStatus, native_enum=False, length=32), nullable=False),
    Column("total", Money, nullable=False),
    Column("customer_name", String, nullable=False),
    Column("customer_email", String, nullable=False, index=True),
    Column("shipping_address", String, nullable=True),
    Column("idempotency_key", String, unique=True, nullable=True),
    Column("payment_ref", String, nullable=True),
    Column("stock_reserved", Boolean, nullable=False, default=True),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("product_id", String, nullable=False),
    Column("product_name", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Money, nullable=False),
    CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
)


refunds_tbl = Table(
    "refunds",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("amount", Money, nullable=False),
    Column("reason", String, nullable=False),
    Column("status", Enum(RefundStatus, native_enum=False, length=32), nullable=False),
    Column("external_ref", String, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    CheckConstraint("amount > 0", name="ck_refunds_amount_positive"),
)


order_transitions_tbl = Table(
    "order_transitions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("field", String, nullable=False),
    Column("from_state", String, nullable=False),
    Column("to_state", String, nullable=False),
    Column("trigger", String, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)
