"""Section and item mutations on quotes and invoices.

Every mutation follows the same steps inside one transaction: lock the
document row, refuse if its status freezes the tree, change the rows,
recompute item and document totals, commit. Quotes hold sections which hold
items; invoices hold items directly.
"""
import logging
from typing import Iterable, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import NotFound, ValidationError
from models import DocumentKind, QuoteSection, QuoteItem, InvoiceItem
from services.lifecycle import lifecycle_for
from services.lookup import as_kind, lock_document
from services.pricing import apply_line_total, parse_billing_mode, parse_item_type, to_decimal
from services.totals import recalculate_totals

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("quantity", "unit_price", "hourly_rate", "hours")
FLAG_FIELDS = ("include_in_total", "is_selected")

QUOTE_ITEM_FIELDS = ("name", "description", "billing_mode", "item_type") + PRICE_FIELDS + FLAG_FIELDS
INVOICE_ITEM_FIELDS = ("description", "billing_mode") + PRICE_FIELDS

DEFAULT_ITEM_NAME = "New item"


def lock_mutable(db: Session, kind, document_id: int):
    """Lock a document and make sure its tree can still change."""
    document = lock_document(db, kind, document_id)
    lifecycle_for(kind).assert_mutable(document)
    return document


def next_sort_order(db: Session, column, *criteria) -> int:
    current = db.query(func.max(column)).filter(*criteria).scalar()
    return (current or 0) + 1


def _assign_item_fields(item, values: dict, allowed: Tuple[str, ...]) -> None:
    """Validate every field of the patch, then assign them all.

    A rejected field leaves the item untouched.
    """
    cleaned = {}
    for field in allowed:
        if field not in values:
            continue
        value = values[field]
        if field in PRICE_FIELDS:
            value = to_decimal(value)
        elif field in FLAG_FIELDS:
            value = True if value is None else bool(value)
        elif field == "billing_mode":
            value = parse_billing_mode(value)
        elif field == "item_type":
            value = parse_item_type(value)
        elif field in ("name", "description") and item_label_field(item) == field:
            if not value or not str(value).strip():
                raise ValidationError(f"Item {field} cannot be empty")
            value = str(value).strip()
        cleaned[field] = value

    for field, value in cleaned.items():
        setattr(item, field, value)


def item_label_field(item) -> str:
    """The required text column of an item: name on quotes, description on invoices."""
    return "description" if isinstance(item, InvoiceItem) else "name"


def _commit(db: Session, kind, document, *refresh):
    recalculate_totals(db, kind, document)
    db.commit()
    for instance in refresh:
        db.refresh(instance)
    db.refresh(document)


# ===== Sections (quotes only) =====

def _get_section(db: Session, section_id: int) -> QuoteSection:
    section = db.query(QuoteSection).filter(QuoteSection.id == section_id).first()
    if not section:
        raise NotFound("Section not found")
    return section


def add_section(db: Session, quote_id: int, title: str = None, description: str = None) -> QuoteSection:
    quote = lock_mutable(db, DocumentKind.quote, quote_id)
    if title is not None and not title.strip():
        raise ValidationError("Section title cannot be empty")

    max_sort, max_number = (
        db.query(func.max(QuoteSection.sort_order), func.max(QuoteSection.section_number))
        .filter(QuoteSection.quote_id == quote.id)
        .one()
    )
    section_number = (max_number or 0) + 1
    section = QuoteSection(
        quote_id=quote.id,
        section_number=section_number,
        sort_order=(max_sort or 0) + 1,
        title=title.strip() if title else f"Section {section_number}",
        description=description,
    )
    db.add(section)
    _commit(db, DocumentKind.quote, quote, section)
    logger.info("Added section %d to quote %s", section.id, quote.number)
    return section


def update_section(db: Session, section_id: int, values: dict) -> QuoteSection:
    section = _get_section(db, section_id)
    quote = lock_mutable(db, DocumentKind.quote, section.quote_id)

    if "title" in values:
        title = values["title"]
        if not title or not title.strip():
            raise ValidationError("Section title cannot be empty")
        section.title = title.strip()
    if "description" in values:
        section.description = values["description"]

    _commit(db, DocumentKind.quote, quote, section)
    return section


def remove_section(db: Session, section_id: int):
    """Delete a section with all its items. Returns the updated quote."""
    section = _get_section(db, section_id)
    quote = lock_mutable(db, DocumentKind.quote, section.quote_id)
    db.delete(section)
    _commit(db, DocumentKind.quote, quote)
    logger.info("Removed section %d from quote %s", section_id, quote.number)
    return quote


# ===== Items =====

def _owning_document_id(db: Session, kind: DocumentKind, item_id: int) -> int:
    """Id of the document an item belongs to, read without loading the item."""
    if kind == DocumentKind.quote:
        document_id = (
            db.query(QuoteSection.quote_id)
            .join(QuoteItem, QuoteItem.section_id == QuoteSection.id)
            .filter(QuoteItem.id == item_id)
            .scalar()
        )
    else:
        document_id = db.query(InvoiceItem.invoice_id).filter(InvoiceItem.id == item_id).scalar()
    if document_id is None:
        raise NotFound("Item not found")
    return document_id


def _lock_item(db: Session, kind: DocumentKind, item_id: int):
    """Lock the owning document, then reload the item under that lock. Returns (item, document)."""
    document = lock_mutable(db, kind, _owning_document_id(db, kind, item_id))
    model = QuoteItem if kind == DocumentKind.quote else InvoiceItem
    item = db.query(model).filter(model.id == item_id).populate_existing().first()
    if not item:
        raise NotFound("Item not found")
    return item, document


def add_item(db: Session, kind, parent_id: int, values: dict):
    """Append an item to a quote section or to an invoice.

    parent_id is a section id for quotes and an invoice id for invoices.
    """
    kind = as_kind(kind)
    values = dict(values)

    if kind == DocumentKind.quote:
        section = _get_section(db, parent_id)
        document = lock_mutable(db, kind, section.quote_id)
        values["name"] = values.get("name") or DEFAULT_ITEM_NAME
        item = QuoteItem(
            section_id=section.id,
            sort_order=next_sort_order(db, QuoteItem.sort_order, QuoteItem.section_id == section.id),
        )
        allowed = QUOTE_ITEM_FIELDS
    else:
        document = lock_mutable(db, kind, parent_id)
        values["description"] = values.get("description") or DEFAULT_ITEM_NAME
        item = InvoiceItem(
            invoice_id=document.id,
            sort_order=next_sort_order(db, InvoiceItem.sort_order, InvoiceItem.invoice_id == document.id),
        )
        allowed = INVOICE_ITEM_FIELDS

    _assign_item_fields(item, values, allowed)
    apply_line_total(item)
    db.add(item)
    _commit(db, kind, document, item)
    return item


def update_item(db: Session, kind, item_id: int, values: dict):
    kind = as_kind(kind)
    item, document = _lock_item(db, kind, item_id)

    _assign_item_fields(item, values, QUOTE_ITEM_FIELDS if kind == DocumentKind.quote else INVOICE_ITEM_FIELDS)
    apply_line_total(item)
    _commit(db, kind, document, item)
    return item


def remove_item(db: Session, kind, item_id: int):
    """Delete an item. Returns the updated document."""
    kind = as_kind(kind)
    item, document = _lock_item(db, kind, item_id)
    db.delete(item)
    _commit(db, kind, document)
    return document


# ===== Reordering =====

def _apply_order(rows: dict, order: Iterable[Tuple[int, int]], label: str) -> None:
    order = [(int(row_id), int(sort_order)) for row_id, sort_order in order]
    # Check the whole batch before touching anything
    for row_id, _ in order:
        if row_id not in rows:
            raise NotFound(f"{label} {row_id} not found")
    for row_id, sort_order in order:
        rows[row_id].sort_order = sort_order


def reorder_sections(db: Session, quote_id: int, order: Iterable[Tuple[int, int]]):
    """Apply (section id, sort_order) pairs in one transaction."""
    quote = lock_mutable(db, DocumentKind.quote, quote_id)
    sections = db.query(QuoteSection).filter(QuoteSection.quote_id == quote.id).all()
    _apply_order({s.id: s for s in sections}, order, "Section")
    _commit(db, DocumentKind.quote, quote)
    return quote


def reorder_items(db: Session, kind, parent_id: int, order: Iterable[Tuple[int, int]]):
    """Apply (item id, sort_order) pairs within one section or one invoice."""
    kind = as_kind(kind)
    if kind == DocumentKind.quote:
        section = _get_section(db, parent_id)
        document = lock_mutable(db, kind, section.quote_id)
        items = db.query(QuoteItem).filter(QuoteItem.section_id == section.id).all()
    else:
        document = lock_mutable(db, kind, parent_id)
        items = db.query(InvoiceItem).filter(InvoiceItem.invoice_id == document.id).all()

    _apply_order({item.id: item for item in items}, order, "Item")
    _commit(db, kind, document)
    return document
