# ruff: noqa: E501
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace_analytics.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class OrderStatus(PyEnum):
    pending_confirmation = "pending_confirmation"
    confirmed = "confirmed"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    closed = "closed"
    cancelled = "cancelled"
    failed = "failed"
    refunded = "refunded"


class PaymentStatus(PyEnum):
    unpaid = "unpaid"
    authorized = "authorized"
    pending_conf = "pending_conf"
    paid = "paid"
    partially_paid = "partially_paid"
    refunded = "refunded"


class OrderHealthStatus(PyEnum):
    on_track = "on_track"
    at_risk = "at_risk"
    delayed = "delayed"
    critical = "critical"


class RfqStatus(PyEnum):
    new = "new"
    viewed = "viewed"
    under_review = "under_review"
    quoted = "quoted"
    accepted = "accepted"
    rejected = "rejected"
    ignored = "ignored"
    expired = "expired"


class QuoteStatus(PyEnum):
    draft = "draft"
    sent = "sent"
    revised = "revised"
    accepted = "accepted"
    rejected = "rejected"
    expired = "expired"


class InvoiceStatus(PyEnum):
    draft = "draft"
    issued = "issued"
    paid = "paid"
    overdue = "overdue"
    cancelled = "cancelled"


class PaymentRecordStatus(PyEnum):
    pending = "pending"
    confirmed = "confirmed"
    failed = "failed"
    refunded = "refunded"


class SellerProfile(Base):
    __tablename__ = "seller_profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True)
    display_name: Mapped[str | None] = mapped_column(String(255))
    company_name: Mapped[str | None] = mapped_column(String(255))
    country: Mapped[str | None] = mapped_column(String(64))


class Item(Base):
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    seller_id: Mapped[str | None] = mapped_column(String(36), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64))
    category: Mapped[str | None] = mapped_column(String(128))


class ItemRfq(Base):
    __tablename__ = "item_rfqs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    buyer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # NULL seller means a broadcast RFQ visible to the whole marketplace.
    seller_id: Mapped[str | None] = mapped_column(String(36), index=True)
    item_id: Mapped[str | None] = mapped_column(String(36))
    status: Mapped[RfqStatus] = mapped_column(
        Enum(RfqStatus, native_enum=False), default=RfqStatus.new, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)

    quotes = relationship("MarketplaceQuote", back_populates="rfq")


class MarketplaceQuote(Base):
    __tablename__ = "marketplace_quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("item_rfqs.id"), nullable=False, index=True)
    seller_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    status: Mapped[QuoteStatus] = mapped_column(
        Enum(QuoteStatus, native_enum=False), default=QuoteStatus.sent, nullable=False
    )
    total_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)

    rfq = relationship("ItemRfq", back_populates="quotes")


class MarketplaceOrder(Base):
    __tablename__ = "marketplace_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    buyer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    seller_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    item_id: Mapped[str | None] = mapped_column(String(36))
    item_name: Mapped[str | None] = mapped_column(String(255))
    item_sku: Mapped[str | None] = mapped_column(String(64))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # Stored independently of quantity * unit_price; authoritative for spend/revenue totals.
    total_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR")
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, native_enum=False), default=OrderStatus.pending_confirmation, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, native_enum=False), default=PaymentStatus.unpaid, nullable=False
    )
    health_status: Mapped[OrderHealthStatus | None] = mapped_column(
        Enum(OrderHealthStatus, native_enum=False), nullable=True
    )
    # Free text, usually a JSON object with a "city" key.
    shipping_address: Mapped[str | None] = mapped_column(Text)
    buyer_name: Mapped[str | None] = mapped_column(String(255))
    buyer_company: Mapped[str | None] = mapped_column(String(255))
    rfq_id: Mapped[str | None] = mapped_column(ForeignKey("item_rfqs.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    rfq = relationship("ItemRfq", viewonly=True)


class MarketplaceInvoice(Base):
    __tablename__ = "marketplace_invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id: Mapped[str | None] = mapped_column(ForeignKey("marketplace_orders.id"))
    seller_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    buyer_id: Mapped[str | None] = mapped_column(String(36), index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, native_enum=False), default=InvoiceStatus.issued, nullable=False
    )
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)


class MarketplacePayment(Base):
    __tablename__ = "marketplace_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id: Mapped[str | None] = mapped_column(ForeignKey("marketplace_orders.id"))
    seller_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    buyer_id: Mapped[str | None] = mapped_column(String(36), index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[PaymentRecordStatus] = mapped_column(
        Enum(PaymentRecordStatus, native_enum=False), default=PaymentRecordStatus.pending, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
