"""Creating, listing, editing and deleting quotes and invoices."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from errors import InvalidTransition, Locked, ValidationError
from models import (
    DocumentKind, Client, Project, Quote, QuoteStatus,
    Invoice, InvoiceItem, InvoiceStatus, InvoiceType,
)
from services.lifecycle import INVOICE_LIFECYCLE, QUOTE_LIFECYCLE
from services.lookup import DOCUMENT_MODELS, as_kind, get_document, get_project, lock_document
from services.numbering import create_numbered
from services.pricing import (
    HUNDRED, TaxPolicy, apply_line_total, counts_toward_total, round_money, to_decimal,
)
from services.studio import get_settings, get_tax_policy
from services.totals import recalculate_totals

logger = logging.getLogger(__name__)

QUOTE_TEXT_FIELDS = (
    "cover_title",
    "cover_subtitle",
    "introduction",
    "payment_terms",
    "late_fee_policy",
    "end_notes",
)
# Fields a quote shares with templates
DESCRIPTIVE_FIELDS = QUOTE_TEXT_FIELDS + ("deposit_percent",)

INVOICE_EDITABLE_FIELDS = ("issue_date", "due_date", "notes", "late_fee_amount")
DISCOUNT_TYPES = ("PERCENTAGE", "FIXED")


def build_quote(project: Project, number: str, settings, tax_policy: TaxPolicy, now: datetime = None) -> Quote:
    """A fresh DRAFT quote, not yet added to the session."""
    now = now or datetime.utcnow()
    quote = Quote(
        project_id=project.id,
        number=number,
        status=QuoteStatus.DRAFT.value,
        deposit_percent=settings.default_deposit_percent,
        validity_days=settings.default_validity_days,
        valid_until=now + timedelta(days=settings.default_validity_days),
        discounts=[],
    )
    tax_policy.apply_to(quote)
    return quote


def build_invoice(
    project: Project,
    number: str,
    settings,
    tax_policy: TaxPolicy,
    invoice_type: str = InvoiceType.STANDALONE.value,
    quote_id: Optional[int] = None,
    now: datetime = None,
) -> Invoice:
    """A fresh DRAFT invoice, not yet added to the session."""
    now = now or datetime.utcnow()
    invoice = Invoice(
        project_id=project.id,
        quote_id=quote_id,
        number=number,
        invoice_type=invoice_type,
        status=InvoiceStatus.DRAFT.value,
        issue_date=now,
        due_date=now + timedelta(days=settings.default_payment_days),
    )
    tax_policy.apply_to(invoice)
    return invoice


def create_document(db: Session, kind, project_id: int, tax_policy: Optional[TaxPolicy] = None):
    """Create an empty DRAFT quote or invoice with a freshly allocated number.

    Tax rates come from the studio settings unless overridden, and are frozen
    on the document from then on.
    """
    kind = as_kind(kind)
    project = get_project(db, project_id)
    client_code = project.client.code

    def build(number):
        settings = get_settings(db)
        policy = tax_policy or get_tax_policy(db)
        builder = build_quote if kind == DocumentKind.quote else build_invoice
        document = builder(get_project(db, project_id), number, settings, policy)
        db.add(document)
        return document

    return create_numbered(db, kind, client_code, build)


def list_documents(
    db: Session,
    kind,
    status: Optional[str] = None,
    project_id: Optional[int] = None,
    client_id: Optional[int] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
):
    kind = as_kind(kind)
    model = DOCUMENT_MODELS[kind]
    query = db.query(model).join(Project, model.project_id == Project.id)

    if status:
        query = query.filter(model.status == status)
    if project_id:
        query = query.filter(model.project_id == project_id)
    if client_id:
        query = query.filter(Project.client_id == client_id)
    if search:
        pattern = f"%{search}%"
        query = query.join(Client, Project.client_id == Client.id).filter(
            or_(model.number.ilike(pattern), Project.name.ilike(pattern), Client.company_name.ilike(pattern))
        )

    return query.order_by(model.created_at.desc(), model.id.desc()).offset(skip).limit(limit).all()


def _validate_discounts(discounts) -> list:
    cleaned = []
    for discount in discounts or []:
        discount_type = getattr(discount.get("type"), "value", discount.get("type"))
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"Discount type must be one of: {', '.join(DISCOUNT_TYPES)}")
        value = to_decimal(discount.get("value"))
        if value < 0:
            raise ValidationError("Discount value cannot be negative")
        if discount_type == "PERCENTAGE" and value > HUNDRED:
            raise ValidationError("Percentage discount cannot exceed 100")
        cleaned.append({"type": discount_type, "value": float(value), "label": discount.get("label")})
    return cleaned


def update_quote(db: Session, quote_id: int, values: dict) -> Quote:
    quote = lock_document(db, DocumentKind.quote, quote_id)
    QUOTE_LIFECYCLE.assert_mutable(quote)

    for field in QUOTE_TEXT_FIELDS:
        if field in values:
            setattr(quote, field, values[field])
    if values.get("deposit_percent") is not None:
        deposit_percent = to_decimal(values["deposit_percent"])
        if not 0 <= deposit_percent <= HUNDRED:
            raise ValidationError("Deposit percent must be between 0 and 100")
        quote.deposit_percent = deposit_percent
    if values.get("validity_days") is not None:
        if values["validity_days"] < 0:
            raise ValidationError("Validity days cannot be negative")
        quote.validity_days = values["validity_days"]
        quote.valid_until = (quote.created_at or datetime.utcnow()) + timedelta(days=quote.validity_days)
    if "valid_until" in values:
        quote.valid_until = values["valid_until"]
    if "discounts" in values:
        quote.discounts = _validate_discounts(values["discounts"])

    recalculate_totals(db, DocumentKind.quote, quote)
    db.commit()
    db.refresh(quote)
    return quote


def update_invoice(db: Session, invoice_id: int, values: dict) -> Invoice:
    """Edit invoice metadata. Paid or cancelled invoices only accept note changes."""
    invoice = lock_document(db, DocumentKind.invoice, invoice_id)
    fields = [field for field in INVOICE_EDITABLE_FIELDS if field in values]
    if INVOICE_LIFECYCLE.is_locked(invoice.status) and any(field != "notes" for field in fields):
        raise Locked(f"Only notes can be changed on a {invoice.status.lower()} invoice")

    for field in fields:
        value = values[field]
        if field == "late_fee_amount":
            value = round_money(value)
        setattr(invoice, field, value)

    recalculate_totals(db, DocumentKind.invoice, invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def delete_document(db: Session, kind, document_id: int) -> None:
    kind = as_kind(kind)
    document = lock_document(db, kind, document_id)

    if kind == DocumentKind.quote and document.invoices:
        raise ValidationError("Cannot delete a quote that has invoices")
    if kind == DocumentKind.invoice and to_decimal(document.amount_paid) > 0:
        raise ValidationError("Cannot delete an invoice with payments")

    number = document.number
    db.delete(document)
    db.commit()
    logger.info("Deleted %s %s", kind.value, number)


# ===== Invoicing an accepted quote =====

def _active_deposits(quote: Quote) -> list:
    return [
        invoice for invoice in quote.invoices
        if invoice.invoice_type == InvoiceType.DEPOSIT.value
        and invoice.status != InvoiceStatus.CANCELLED.value
    ]


def _deposit_lines(quote: Quote, policy: TaxPolicy) -> list:
    # Deposit is a share of the taxed quote total; the line carries its pre-tax part
    percent = to_decimal(quote.deposit_percent)
    amount = to_decimal(quote.total) * percent / HUNDRED / policy.multiplier
    return [InvoiceItem(
        description=f"Deposit {percent.normalize():f}% - Quote {quote.number}",
        quantity=1,
        unit_price=round_money(amount),
    )]


def _final_lines(quote: Quote, policy: TaxPolicy) -> list:
    lines = []
    for section in sorted(quote.sections, key=lambda s: (s.sort_order, s.id)):
        for item in sorted(section.items, key=lambda i: (i.sort_order, i.id)):
            if not counts_toward_total(item):
                continue
            lines.append(InvoiceItem(
                description=f"{section.title} - {item.name}",
                billing_mode=item.billing_mode,
                quantity=item.quantity,
                unit_price=item.unit_price,
                hourly_rate=item.hourly_rate,
                hours=item.hours,
            ))

    deposited = sum((to_decimal(invoice.total) for invoice in _active_deposits(quote)), to_decimal(0))
    if deposited > 0:
        lines.append(InvoiceItem(
            description=f"Deposit already invoiced - Quote {quote.number}",
            quantity=1,
            unit_price=-round_money(deposited / policy.multiplier),
        ))
    return lines


def create_invoice_from_quote(db: Session, quote_id: int, invoice_type) -> Invoice:
    """Bill an accepted quote, either its deposit or the balance.

    The invoice keeps the quote's tax rates. A FINAL invoice bills the
    items the quote bills and deducts deposits already invoiced.
    """
    quote = get_document(db, DocumentKind.quote, quote_id)
    invoice_type = getattr(invoice_type, "value", invoice_type)
    if invoice_type not in (InvoiceType.DEPOSIT.value, InvoiceType.FINAL.value):
        raise ValidationError("Invoice type must be DEPOSIT or FINAL")
    if quote.status != QuoteStatus.ACCEPTED.value:
        raise InvalidTransition(
            "Quote must be accepted before it can be invoiced",
            current=quote.status,
            target=QuoteStatus.ACCEPTED.value,
        )
    if invoice_type == InvoiceType.DEPOSIT.value and _active_deposits(quote):
        raise ValidationError("A deposit invoice already exists for this quote")

    client_code = quote.project.client.code

    def build(number):
        source = get_document(db, DocumentKind.quote, quote_id)
        policy = TaxPolicy.of(source)
        invoice = build_invoice(
            source.project, number, get_settings(db), policy,
            invoice_type=invoice_type, quote_id=source.id,
        )
        make_lines = _deposit_lines if invoice_type == InvoiceType.DEPOSIT.value else _final_lines
        for sort_order, line in enumerate(make_lines(source, policy), start=1):
            line.sort_order = sort_order
            apply_line_total(line)
            invoice.items.append(line)

        db.add(invoice)
        recalculate_totals(db, DocumentKind.invoice, invoice)
        if invoice_type == InvoiceType.FINAL.value and invoice.total <= 0:
            raise ValidationError("Nothing left to invoice on this quote")
        return invoice

    return create_numbered(db, DocumentKind.invoice, client_code, build)
