"""Recompute and persist the derived totals of a document."""
import logging

from sqlalchemy.orm import Session

from models import DocumentKind, QuoteItem, QuoteSection, InvoiceItem
from services.lookup import as_kind
from services.pricing import Line, TaxPolicy, Totals, compute_totals, counts_toward_total

logger = logging.getLogger(__name__)


def recalculate_totals(db: Session, kind, document) -> Totals:
    """Recompute subtotal, taxes and total from the persisted item set.

    Always reduces over every item from scratch instead of adjusting the
    previous totals, so a missed update path cannot make them drift.
    """
    kind = as_kind(kind)
    db.flush()

    if kind == DocumentKind.quote:
        items = (
            db.query(QuoteItem)
            .join(QuoteSection, QuoteItem.section_id == QuoteSection.id)
            .filter(QuoteSection.quote_id == document.id)
            .all()
        )
        lines = [Line(item.total, counts_toward_total(item)) for item in items]
        totals = compute_totals(lines, TaxPolicy.of(document), discounts=document.discounts)
        document.discount_amount = totals.discount_amount
    else:
        items = db.query(InvoiceItem).filter(InvoiceItem.invoice_id == document.id).all()
        lines = [Line(item.total) for item in items]
        totals = compute_totals(lines, TaxPolicy.of(document), late_fee=document.late_fee_amount)
        document.late_fee_amount = totals.late_fee_amount

    document.subtotal = totals.subtotal
    document.tps_amount = totals.tps_amount
    document.tvq_amount = totals.tvq_amount
    document.total = totals.total

    logger.debug("Recalculated %s %s: subtotal=%s total=%s", kind.value, document.number, totals.subtotal, totals.total)
    return totals
