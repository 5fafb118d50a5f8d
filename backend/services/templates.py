"""Quote templates, quote instantiation from templates, and document duplication.

A template is a detached copy of a quote tree: same sections and items,
without numbers, status, token or totals.
"""
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import NotFound, ValidationError
from models import (
    DocumentKind, InvoiceItem, QuoteSection, QuoteItem,
    QuoteTemplate, TemplateSection, TemplateItem,
)
from services.documents import DESCRIPTIVE_FIELDS, build_invoice, build_quote
from services.lookup import as_kind, get_document, get_project
from services.numbering import create_numbered
from services.pricing import TaxPolicy, apply_line_total
from services.studio import get_settings, get_tax_policy
from services.totals import recalculate_totals

logger = logging.getLogger(__name__)

PRICING_FIELDS = ("billing_mode", "quantity", "unit_price", "hourly_rate", "hours")
TEMPLATE_ITEM_FIELDS = ("name", "description", "item_type", "include_in_total") + PRICING_FIELDS
TEMPLATE_FIELDS = ("description", "sort_order") + DESCRIPTIVE_FIELDS


def _ordered(rows):
    return sorted(rows, key=lambda row: (row.sort_order, row.id))


def _require_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        raise ValidationError("Template name is required")
    return name.strip()


def _copy_tree(source_sections, section_model, item_model, **item_overrides) -> list:
    """Copy sections with their items, keeping order and resetting section numbers to 1..N."""
    sections = []
    for position, source in enumerate(_ordered(source_sections), start=1):
        values = {"sort_order": source.sort_order, "title": source.title, "description": source.description}
        if section_model is QuoteSection:
            values["section_number"] = position
        section = section_model(**values)
        for source_item in _ordered(source.items):
            item = item_model(sort_order=source_item.sort_order, **{
                field: getattr(source_item, field) for field in TEMPLATE_ITEM_FIELDS
            }, **item_overrides)
            if item_model is not TemplateItem:
                apply_line_total(item)
            section.items.append(item)
        sections.append(section)
    return sections


# ===== Template CRUD =====

def list_templates(db: Session):
    return db.query(QuoteTemplate).order_by(QuoteTemplate.sort_order, QuoteTemplate.name).all()


def get_template(db: Session, template_id: int) -> QuoteTemplate:
    template = db.query(QuoteTemplate).filter(QuoteTemplate.id == template_id).first()
    if not template:
        raise NotFound("Template not found")
    return template


def _template_sort_order(db: Session) -> int:
    return (db.query(func.max(QuoteTemplate.sort_order)).scalar() or 0) + 1


def create_template(db: Session, name: str, values: Optional[dict] = None) -> QuoteTemplate:
    values = values or {}
    template = QuoteTemplate(name=_require_name(name))
    for field in TEMPLATE_FIELDS:
        if values.get(field) is not None:
            setattr(template, field, values[field])
    if template.sort_order is None:
        template.sort_order = _template_sort_order(db)
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def update_template(db: Session, template_id: int, values: dict) -> QuoteTemplate:
    template = get_template(db, template_id)
    if "name" in values:
        template.name = _require_name(values["name"])
    for field in TEMPLATE_FIELDS:
        if field in values:
            setattr(template, field, values[field])
    db.commit()
    db.refresh(template)
    return template


def delete_template(db: Session, template_id: int) -> None:
    template = get_template(db, template_id)
    db.delete(template)
    db.commit()


def template_from_document(db: Session, quote_id: int, name: str, description: str = None) -> QuoteTemplate:
    """Save a quote's sections, items and descriptive fields as a new template."""
    name = _require_name(name)
    quote = get_document(db, DocumentKind.quote, quote_id)

    template = QuoteTemplate(
        name=name,
        description=description,
        sort_order=_template_sort_order(db),
        **{field: getattr(quote, field) for field in DESCRIPTIVE_FIELDS},
    )
    template.sections = _copy_tree(quote.sections, TemplateSection, TemplateItem)

    db.add(template)
    db.commit()
    db.refresh(template)
    logger.info("Saved quote %s as template '%s'", quote.number, name)
    return template


# ===== Instantiation =====

def document_from_template(
    db: Session,
    template_id: int,
    project_id: int,
    tax_policy: Optional[TaxPolicy] = None,
):
    """Create a DRAFT quote for a project from a template, with a new number."""
    get_template(db, template_id)
    project = get_project(db, project_id)

    def build(number):
        template = get_template(db, template_id)
        quote = build_quote(
            get_project(db, project_id), number, get_settings(db), tax_policy or get_tax_policy(db)
        )
        for field in DESCRIPTIVE_FIELDS:
            setattr(quote, field, getattr(template, field))
        quote.sections = _copy_tree(template.sections, QuoteSection, QuoteItem, is_selected=True)
        db.add(quote)
        recalculate_totals(db, DocumentKind.quote, quote)
        return quote

    return create_numbered(db, DocumentKind.quote, project.client.code, build)


def duplicate(db: Session, kind, document_id: int, tax_policy: Optional[TaxPolicy] = None):
    """Copy a quote or invoice into a new DRAFT of the same project.

    The copy gets a new number, no public token, and the current studio tax
    rates unless others are given.
    """
    kind = as_kind(kind)
    source = get_document(db, kind, document_id)
    client_code = source.project.client.code

    def build(number):
        source = get_document(db, kind, document_id)
        policy = tax_policy or get_tax_policy(db)
        settings = get_settings(db)

        if kind == DocumentKind.quote:
            copy = build_quote(source.project, number, settings, policy)
            for field in DESCRIPTIVE_FIELDS:
                setattr(copy, field, getattr(source, field))
            copy.discounts = list(source.discounts or [])
            copy.sections = _copy_tree(source.sections, QuoteSection, QuoteItem, is_selected=True)
        else:
            copy = build_invoice(source.project, number, settings, policy)
            copy.notes = source.notes
            for source_item in _ordered(source.items):
                item = InvoiceItem(
                    description=source_item.description,
                    sort_order=source_item.sort_order,
                    **{field: getattr(source_item, field) for field in PRICING_FIELDS},
                )
                apply_line_total(item)
                copy.items.append(item)

        db.add(copy)
        recalculate_totals(db, kind, copy)
        return copy

    document = create_numbered(db, kind, client_code, build)
    logger.info("Duplicated %s %s as %s", kind.value, source.number, document.number)
    return document
