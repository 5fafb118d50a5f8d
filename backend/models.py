from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime, Boolean, JSON
)
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
import enum

from database import Base


# Money is kept in cents, rates need five places for 9.975%
MONEY = Numeric(12, 2)
RATE = Numeric(7, 5)
QUANTITY = Numeric(12, 2)
# Line totals and subtotals keep extra precision. Only taxes and the total are rounded to cents
LINE_TOTAL = Numeric(14, 4)

ZERO = Decimal("0")


class DocumentKind(str, enum.Enum):
    quote = "quote"
    invoice = "invoice"


class QuoteStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    VIEWED = "VIEWED"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class InvoiceType(str, enum.Enum):
    STANDALONE = "STANDALONE"
    DEPOSIT = "DEPOSIT"
    FINAL = "FINAL"


class BillingMode(str, enum.Enum):
    FIXED = "FIXED"
    HOURLY = "HOURLY"


class QuoteItemType(str, enum.Enum):
    SERVICE = "SERVICE"
    PRODUCT = "PRODUCT"
    FREE = "FREE"  # Shown to the client, never billed
    A_LA_CARTE = "A_LA_CARTE"  # Optional add-on, billed only while selected


class NotificationType(str, enum.Enum):
    QUOTE_VIEWED = "QUOTE_VIEWED"
    QUOTE_ACCEPTED = "QUOTE_ACCEPTED"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    INVOICE_OVERDUE = "INVOICE_OVERDUE"


class TimestampMixin:
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PricedItemMixin:
    """Billing inputs shared by quote, invoice and template items.

    `total` is derived from the inputs and only ever written by
    services.pricing.apply_line_total.
    """
    billing_mode = Column(String, nullable=False, default=BillingMode.FIXED.value)
    quantity = Column(QUANTITY, nullable=False, default=ZERO)
    unit_price = Column(MONEY, nullable=False, default=ZERO)
    hourly_rate = Column(MONEY, nullable=False, default=ZERO)
    hours = Column(QUANTITY, nullable=False, default=ZERO)
    sort_order = Column(Integer, nullable=False, default=0)


class DocumentMixin(TimestampMixin):
    """Columns shared by quotes and invoices: number, status, token, frozen taxes."""
    number = Column(String, unique=True, nullable=False, index=True)
    public_token = Column(String, unique=True, nullable=True, index=True)

    # Tax rates frozen at creation time, never re-read from the studio settings
    tps_rate = Column(RATE, nullable=False, default=ZERO)
    tvq_rate = Column(RATE, nullable=False, default=ZERO)

    # Derived, denormalized, persisted. The subtotal keeps line precision
    subtotal = Column(LINE_TOTAL, nullable=False, default=ZERO)
    tps_amount = Column(MONEY, nullable=False, default=ZERO)
    tvq_amount = Column(MONEY, nullable=False, default=ZERO)
    total = Column(MONEY, nullable=False, default=ZERO)


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False)  # Uppercase, used in document numbers
    company_name = Column(String, nullable=False)

    projects = relationship("Project", back_populates="client")


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey('clients.id'), nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    client = relationship("Client", back_populates="projects")
    quotes = relationship("Quote", back_populates="project", cascade="all, delete-orphan")
    invoices = relationship("Invoice", back_populates="project", cascade="all, delete-orphan")


class StudioSettings(Base):
    __tablename__ = "studio_settings"

    id = Column(String, primary_key=True, default="default")
    company_name = Column(String, nullable=True)
    default_tps_rate = Column(RATE, nullable=False, default=Decimal("0.05"))
    default_tvq_rate = Column(RATE, nullable=False, default=Decimal("0.09975"))
    default_deposit_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("50"))
    default_validity_days = Column(Integer, nullable=False, default=30)
    default_payment_days = Column(Integer, nullable=False, default=30)
    late_fee_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("2"))


class DocumentCounter(Base):
    """Atomic numbering sequence per (kind, client code).

    last_value is incremented in place, so the row lock taken by the UPDATE
    serializes concurrent allocations for the same client.
    """
    __tablename__ = "document_counters"

    kind = Column(String, primary_key=True)
    client_code = Column(String, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


# ===== Quote Models =====

class Quote(DocumentMixin, Base):
    __tablename__ = "quotes"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False)
    status = Column(String, nullable=False, default=QuoteStatus.DRAFT.value)

    # Descriptive fields, copied to and from templates
    cover_title = Column(String, nullable=True)
    cover_subtitle = Column(String, nullable=True)
    introduction = Column(String, nullable=True)
    payment_terms = Column(String, nullable=True)
    late_fee_policy = Column(String, nullable=True)
    end_notes = Column(String, nullable=True)
    deposit_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("50"))
    validity_days = Column(Integer, nullable=False, default=30)
    valid_until = Column(DateTime, nullable=True)

    # [{"type": "PERCENTAGE" | "FIXED", "value": number, "label": str}]
    discounts = Column(JSON, nullable=True)
    discount_amount = Column(MONEY, nullable=False, default=ZERO)

    viewed_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="quotes")
    sections = relationship(
        "QuoteSection", back_populates="quote", cascade="all, delete-orphan",
        order_by="QuoteSection.sort_order"
    )
    invoices = relationship("Invoice", back_populates="quote", order_by="Invoice.created_at")


class QuoteSection(Base):
    __tablename__ = "quote_sections"

    id = Column(Integer, primary_key=True, index=True)
    quote_id = Column(Integer, ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False)
    section_number = Column(Integer, nullable=False, default=1)  # Display label only
    sort_order = Column(Integer, nullable=False, default=0)  # Iteration order
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)

    # Relationships
    quote = relationship("Quote", back_populates="sections")
    items = relationship(
        "QuoteItem", back_populates="section", cascade="all, delete-orphan",
        order_by="QuoteItem.sort_order"
    )


class QuoteItem(PricedItemMixin, Base):
    __tablename__ = "quote_items"

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey('quote_sections.id', ondelete='CASCADE'), nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    item_type = Column(String, nullable=False, default=QuoteItemType.SERVICE.value)
    include_in_total = Column(Boolean, nullable=False, default=True)  # False for optional add-ons
    is_selected = Column(Boolean, nullable=False, default=True)  # Client-facing choice
    total = Column(LINE_TOTAL, nullable=False, default=ZERO)

    # Relationships
    section = relationship("QuoteSection", back_populates="items")


# ===== Invoice Models =====

class Invoice(DocumentMixin, Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=True)
    invoice_type = Column(String, nullable=False, default=InvoiceType.STANDALONE.value)
    status = Column(String, nullable=False, default=InvoiceStatus.DRAFT.value)
    issue_date = Column(DateTime, default=datetime.utcnow)
    due_date = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    amount_paid = Column(MONEY, nullable=False, default=ZERO)
    late_fee_amount = Column(MONEY, nullable=False, default=ZERO)
    notes = Column(String, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="invoices")
    quote = relationship("Quote", back_populates="invoices")
    items = relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan",
        order_by="InvoiceItem.sort_order"
    )


class InvoiceItem(PricedItemMixin, Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    description = Column(String, nullable=False)
    total = Column(LINE_TOTAL, nullable=False, default=ZERO)

    # Relationships
    invoice = relationship("Invoice", back_populates="items")


# ===== Template Models =====

class QuoteTemplate(TimestampMixin, Base):
    __tablename__ = "quote_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    cover_title = Column(String, nullable=True)
    cover_subtitle = Column(String, nullable=True)
    introduction = Column(String, nullable=True)
    payment_terms = Column(String, nullable=True)
    late_fee_policy = Column(String, nullable=True)
    end_notes = Column(String, nullable=True)
    deposit_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("50"))

    sections = relationship(
        "TemplateSection", back_populates="template", cascade="all, delete-orphan",
        order_by="TemplateSection.sort_order"
    )


class TemplateSection(Base):
    __tablename__ = "template_sections"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey('quote_templates.id', ondelete='CASCADE'), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)

    template = relationship("QuoteTemplate", back_populates="sections")
    items = relationship(
        "TemplateItem", back_populates="section", cascade="all, delete-orphan",
        order_by="TemplateItem.sort_order"
    )


class TemplateItem(PricedItemMixin, Base):
    __tablename__ = "template_items"

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey('template_sections.id', ondelete='CASCADE'), nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    item_type = Column(String, nullable=False, default=QuoteItemType.SERVICE.value)
    include_in_total = Column(Boolean, nullable=False, default=True)

    section = relationship("TemplateSection", back_populates="items")


# ===== Notifications =====

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    link = Column(String, nullable=True)
    related_id = Column(Integer, nullable=True)
    related_type = Column(String, nullable=True)  # "quote" or "invoice"
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
