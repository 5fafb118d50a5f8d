from pydantic import BaseModel, validator
from typing import Dict, List, Optional
from datetime import datetime
from enum import Enum

from models import BillingMode, InvoiceStatus, InvoiceType, QuoteItemType, QuoteStatus


class DiscountType(str, Enum):
    percentage = "PERCENTAGE"
    fixed = "FIXED"


def blank_to_none(v):
    # Forms send "" for an emptied number field
    if isinstance(v, str) and not v.strip():
        return None
    return v


PRICE_INPUTS = ('quantity', 'unit_price', 'hourly_rate', 'hours')


# ===== Client / Project Schemas =====
class ClientSummary(BaseModel):
    id: int
    code: str
    company_name: str

    class Config:
        from_attributes = True


class ProjectSummary(BaseModel):
    id: int
    name: str
    client: ClientSummary

    class Config:
        from_attributes = True


# ===== Studio Settings Schemas =====
class StudioSettings(BaseModel):
    company_name: Optional[str] = None
    default_tps_rate: float
    default_tvq_rate: float
    default_deposit_percent: float
    default_validity_days: int
    default_payment_days: int
    late_fee_percent: float

    class Config:
        from_attributes = True


class StudioSettingsUpdate(BaseModel):
    company_name: Optional[str] = None
    default_tps_rate: Optional[float] = None
    default_tvq_rate: Optional[float] = None
    default_deposit_percent: Optional[float] = None
    default_validity_days: Optional[int] = None
    default_payment_days: Optional[int] = None
    late_fee_percent: Optional[float] = None

    @validator('default_tps_rate', 'default_tvq_rate')
    def rate_between_zero_and_one(cls, v):
        if v is not None and not 0 <= v < 1:
            raise ValueError('Tax rates are fractions, e.g. 0.05 for 5%')
        return v


class TaxRates(BaseModel):
    """Optional override of the studio tax rates for a new document."""
    tps_rate: float
    tvq_rate: float


# ===== Shared item pieces =====
class PricedItemInput(BaseModel):
    billing_mode: BillingMode = BillingMode.FIXED
    quantity: Optional[float] = 1
    unit_price: Optional[float] = 0
    hourly_rate: Optional[float] = 0
    hours: Optional[float] = 0

    @validator(*PRICE_INPUTS, pre=True)
    def empty_number_is_none(cls, v):
        return blank_to_none(v)


class PricedItemPatch(BaseModel):
    billing_mode: Optional[BillingMode] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    hourly_rate: Optional[float] = None
    hours: Optional[float] = None

    @validator(*PRICE_INPUTS, pre=True)
    def empty_number_is_none(cls, v):
        return blank_to_none(v)


class PricedItemRead(BaseModel):
    id: int
    billing_mode: str
    quantity: float
    unit_price: float
    hourly_rate: float
    hours: float
    total: float
    sort_order: int

    class Config:
        from_attributes = True


class SortOrderEntry(BaseModel):
    id: int
    sort_order: int


class ReorderRequest(BaseModel):
    order: List[SortOrderEntry]

    def pairs(self):
        return [(entry.id, entry.sort_order) for entry in self.order]


class StatusUpdate(BaseModel):
    status: str


class NextNumber(BaseModel):
    next_number: str


# ===== Quote Item Schemas =====
class QuoteItemCreate(PricedItemInput):
    name: Optional[str] = None
    description: Optional[str] = None
    item_type: QuoteItemType = QuoteItemType.SERVICE
    include_in_total: bool = True
    is_selected: bool = True


class QuoteItemUpdate(PricedItemPatch):
    name: Optional[str] = None
    description: Optional[str] = None
    item_type: Optional[QuoteItemType] = None
    include_in_total: Optional[bool] = None
    is_selected: Optional[bool] = None


class QuoteItem(PricedItemRead):
    section_id: int
    name: str
    description: Optional[str] = None
    item_type: str
    include_in_total: bool
    is_selected: bool


# ===== Quote Section Schemas =====
class QuoteSectionCreate(BaseModel):
    title: Optional[str] = None  # Defaults to "Section N"
    description: Optional[str] = None


class QuoteSectionUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class QuoteSection(BaseModel):
    id: int
    quote_id: int
    section_number: int
    sort_order: int
    title: str
    description: Optional[str] = None
    items: List[QuoteItem] = []

    class Config:
        from_attributes = True


# ===== Quote Schemas =====
class Discount(BaseModel):
    type: DiscountType
    value: float
    label: Optional[str] = None


class QuoteCreate(BaseModel):
    project_id: int
    tax_rates: Optional[TaxRates] = None


class QuoteFromTemplate(BaseModel):
    project_id: int
    tax_rates: Optional[TaxRates] = None


class QuoteUpdate(BaseModel):
    cover_title: Optional[str] = None
    cover_subtitle: Optional[str] = None
    introduction: Optional[str] = None
    payment_terms: Optional[str] = None
    late_fee_policy: Optional[str] = None
    end_notes: Optional[str] = None
    deposit_percent: Optional[float] = None
    validity_days: Optional[int] = None
    valid_until: Optional[datetime] = None
    discounts: Optional[List[Discount]] = None


class QuoteSummary(BaseModel):
    id: int
    number: str
    project_id: int
    status: QuoteStatus
    cover_title: Optional[str] = None
    subtotal: float
    total: float
    valid_until: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Quote(QuoteSummary):
    public_token: Optional[str] = None
    cover_subtitle: Optional[str] = None
    introduction: Optional[str] = None
    payment_terms: Optional[str] = None
    late_fee_policy: Optional[str] = None
    end_notes: Optional[str] = None
    deposit_percent: float
    validity_days: int
    discounts: Optional[List[Discount]] = None
    discount_amount: float
    tps_rate: float
    tvq_rate: float
    tps_amount: float
    tvq_amount: float
    viewed_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    project: ProjectSummary
    sections: List[QuoteSection] = []


class PublicAcceptance(BaseModel):
    # item id -> chosen by the client
    selections: Dict[int, bool] = {}


# ===== Invoice Item Schemas =====
class InvoiceItemCreate(PricedItemInput):
    description: Optional[str] = None


class InvoiceItemUpdate(PricedItemPatch):
    description: Optional[str] = None


class InvoiceItem(PricedItemRead):
    invoice_id: int
    description: str


# ===== Invoice Schemas =====
class InvoiceCreate(BaseModel):
    project_id: int
    tax_rates: Optional[TaxRates] = None


class InvoiceFromQuote(BaseModel):
    invoice_type: InvoiceType

    @validator('invoice_type')
    def must_be_linked_to_quote(cls, v):
        if v == InvoiceType.STANDALONE:
            raise ValueError('Invoices created from a quote are DEPOSIT or FINAL')
        return v


class InvoiceUpdate(BaseModel):
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    late_fee_amount: Optional[float] = None


class InvoiceSummary(BaseModel):
    id: int
    number: str
    project_id: int
    quote_id: Optional[int] = None
    invoice_type: InvoiceType
    status: InvoiceStatus
    subtotal: float
    total: float
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Invoice(InvoiceSummary):
    public_token: Optional[str] = None
    tps_rate: float
    tvq_rate: float
    tps_amount: float
    tvq_amount: float
    late_fee_amount: float
    amount_paid: float
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None
    project: ProjectSummary
    items: List[InvoiceItem] = []


# ===== Template Schemas =====
class TemplateItem(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    item_type: str
    billing_mode: str
    quantity: float
    unit_price: float
    hourly_rate: float
    hours: float
    include_in_total: bool
    sort_order: int

    class Config:
        from_attributes = True


class TemplateSection(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    sort_order: int
    items: List[TemplateItem] = []

    class Config:
        from_attributes = True


class TemplateBase(BaseModel):
    name: str
    description: Optional[str] = None
    cover_title: Optional[str] = None
    cover_subtitle: Optional[str] = None
    introduction: Optional[str] = None
    payment_terms: Optional[str] = None
    late_fee_policy: Optional[str] = None
    end_notes: Optional[str] = None
    deposit_percent: Optional[float] = None


class TemplateCreate(TemplateBase):
    sort_order: Optional[int] = None


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    sort_order: Optional[int] = None
    cover_title: Optional[str] = None
    cover_subtitle: Optional[str] = None
    introduction: Optional[str] = None
    payment_terms: Optional[str] = None
    late_fee_policy: Optional[str] = None
    end_notes: Optional[str] = None
    deposit_percent: Optional[float] = None


class TemplateFromQuote(BaseModel):
    name: str
    description: Optional[str] = None


class Template(TemplateBase):
    id: int
    sort_order: int
    deposit_percent: float
    created_at: datetime
    sections: List[TemplateSection] = []

    class Config:
        from_attributes = True


# ===== Notification Schemas =====
class Notification(BaseModel):
    id: int
    type: str
    title: str
    message: str
    link: Optional[str] = None
    related_id: Optional[int] = None
    related_type: Optional[str] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationList(BaseModel):
    notifications: List[Notification]
    total: int
    unread_count: int


class NotificationUpdate(BaseModel):
    is_read: bool = True


class CheckResult(BaseModel):
    expired_quotes: List[str]
    overdue_invoices: List[str]
