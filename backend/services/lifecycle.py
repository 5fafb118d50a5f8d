"""Status lifecycles of quotes and invoices.

One Lifecycle class, configured per document kind with its transition table
and the statuses in which the document tree is frozen. The functions below
apply transitions to stored documents: explicit moves by the studio, the
public-link moves made by clients, and the periodic expiry/overdue sweep.
"""
import logging
import secrets
from decimal import Decimal
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, Optional, Type

from sqlalchemy.orm import Session

from errors import InvalidTransition, Locked, NotFound, ValidationError
from models import (
    DocumentKind, Quote, QuoteStatus, QuoteItem, QuoteSection,
    Invoice, InvoiceStatus, NotificationType,
)
from services.lookup import LABELS, as_kind, get_document_by_token, lock_document
from services.notifications import NotificationSink, notify, project_link
from services.pricing import HUNDRED, round_money, to_decimal
from services.studio import get_settings
from services.totals import recalculate_totals

logger = logging.getLogger(__name__)


class Lifecycle:
    def __init__(
        self,
        kind: DocumentKind,
        statuses: Type,
        transitions: Dict[str, FrozenSet[str]],
        locked: Iterable[str],
        resendable: Iterable[str],
        client_only: Iterable[str] = (),
    ):
        self.kind = kind
        self.statuses = statuses
        self.initial = statuses.DRAFT.value
        self.transitions = {k: frozenset(v) for k, v in transitions.items()}
        self.locked = frozenset(locked)
        self.resendable = frozenset(resendable)
        # Reached only through the public link, never by an explicit status change
        self.client_only = frozenset(client_only)

    @property
    def label(self) -> str:
        return LABELS[self.kind].lower()

    def coerce(self, status) -> str:
        try:
            return self.statuses(status).value
        except ValueError:
            allowed = ", ".join(s.value for s in self.statuses)
            raise ValidationError(f"Invalid {self.label} status '{status}'. Allowed: {allowed}")

    def targets(self, current: str) -> FrozenSet[str]:
        return self.transitions.get(current, frozenset())

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.targets(current)

    def assert_transition(self, current: str, target: str) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransition(
                f"Cannot change {self.label} status from {current} to {target}",
                current=current,
                target=target,
            )

    def is_locked(self, status: str) -> bool:
        return status in self.locked

    def assert_mutable(self, document) -> None:
        if self.is_locked(document.status):
            raise Locked(f"Cannot modify a {document.status.lower()} {self.label}")


QUOTE_LIFECYCLE = Lifecycle(
    kind=DocumentKind.quote,
    statuses=QuoteStatus,
    transitions={
        QuoteStatus.DRAFT.value: {QuoteStatus.SENT.value},
        QuoteStatus.SENT.value: {QuoteStatus.VIEWED.value, QuoteStatus.ACCEPTED.value, QuoteStatus.EXPIRED.value},
        QuoteStatus.VIEWED.value: {QuoteStatus.ACCEPTED.value, QuoteStatus.EXPIRED.value},
    },
    locked={QuoteStatus.ACCEPTED.value},
    resendable={QuoteStatus.SENT.value, QuoteStatus.VIEWED.value},
    client_only={QuoteStatus.VIEWED.value},
)

INVOICE_LIFECYCLE = Lifecycle(
    kind=DocumentKind.invoice,
    statuses=InvoiceStatus,
    transitions={
        InvoiceStatus.DRAFT.value: {InvoiceStatus.SENT.value},
        InvoiceStatus.SENT.value: {InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value, InvoiceStatus.OVERDUE.value},
        InvoiceStatus.OVERDUE.value: {InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value},
    },
    locked={InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value},
    resendable={InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value},
)

LIFECYCLES = {
    DocumentKind.quote: QUOTE_LIFECYCLE,
    DocumentKind.invoice: INVOICE_LIFECYCLE,
}


def lifecycle_for(kind) -> Lifecycle:
    return LIFECYCLES[as_kind(kind)]


def issue_public_token() -> str:
    """128 bits of randomness, hex encoded."""
    return secrets.token_hex(16)


def _client_name(document) -> str:
    return document.project.client.company_name


# ===== Studio-side transitions =====

def send(db: Session, kind, document_id: int):
    """Move a draft to SENT and make sure it has a public token.

    Sending again while SENT (or VIEWED/OVERDUE) keeps the status and the
    token, so the same link can be shared again.
    """
    kind = as_kind(kind)
    lifecycle = lifecycle_for(kind)
    document = lock_document(db, kind, document_id)

    if document.status == lifecycle.initial:
        lifecycle.assert_transition(document.status, lifecycle.statuses.SENT.value)
        document.status = lifecycle.statuses.SENT.value
        if kind == DocumentKind.invoice:
            now = datetime.utcnow()
            document.issue_date = now
            if document.due_date is None:
                document.due_date = now + timedelta(days=get_settings(db).default_payment_days)
    elif document.status not in lifecycle.resendable:
        raise InvalidTransition(
            f"Cannot send a {document.status.lower()} {lifecycle.label}",
            current=document.status,
            target=lifecycle.statuses.SENT.value,
        )

    if not document.public_token:
        document.public_token = issue_public_token()

    db.commit()
    db.refresh(document)
    logger.info("Sent %s %s", kind.value, document.number)
    return document


def transition(db: Session, kind, document_id: int, target):
    """Explicit status change requested by the studio."""
    kind = as_kind(kind)
    lifecycle = lifecycle_for(kind)
    target = lifecycle.coerce(target)

    if target == lifecycle.statuses.SENT.value:
        return send(db, kind, document_id)
    if target in lifecycle.client_only:
        raise InvalidTransition(
            f"{target} is only reached when the client opens the {lifecycle.label} link",
            target=target,
        )

    document = lock_document(db, kind, document_id)
    lifecycle.assert_transition(document.status, target)
    previous = document.status
    document.status = target

    now = datetime.utcnow()
    if kind == DocumentKind.quote and target == QuoteStatus.ACCEPTED.value:
        document.accepted_at = now
    if kind == DocumentKind.invoice and target == InvoiceStatus.PAID.value:
        document.paid_at = now
        document.amount_paid = document.total

    db.commit()
    db.refresh(document)
    logger.info("%s %s: %s -> %s", kind.value.capitalize(), document.number, previous, target)
    return document


# ===== Client-side transitions (public token) =====

def view_via_public_token(db: Session, kind, token: str, notifier: Optional[NotificationSink] = None):
    """Load a document for its public page; a SENT quote becomes VIEWED.

    The SENT -> VIEWED move is a guarded UPDATE so only one of several
    simultaneous first views performs it and only that one notifies.
    """
    kind = as_kind(kind)
    document = get_document_by_token(db, kind, token)

    if kind == DocumentKind.quote and document.status == QuoteStatus.SENT.value:
        moved = (
            db.query(Quote)
            .filter(Quote.id == document.id, Quote.status == QuoteStatus.SENT.value)
            .update(
                {Quote.status: QuoteStatus.VIEWED.value, Quote.viewed_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        db.refresh(document)

        if moved:
            logger.info("Quote %s viewed by client", document.number)
            notify(
                notifier,
                type=NotificationType.QUOTE_VIEWED.value,
                title="Quote viewed",
                message=f"{_client_name(document)} opened quote {document.number}",
                link=project_link(document.project_id, "quotes"),
                related_id=document.id,
                related_type=DocumentKind.quote.value,
            )

    return document


def accept_via_public_token(
    db: Session,
    token: str,
    selections: Optional[Dict[int, bool]] = None,
    notifier: Optional[NotificationSink] = None,
) -> Quote:
    """Client acceptance, recording which optional items they picked.

    Deselected A_LA_CARTE items drop out of the accepted totals.
    """
    quote = get_document_by_token(db, DocumentKind.quote, token)
    quote = lock_document(db, DocumentKind.quote, quote.id)
    QUOTE_LIFECYCLE.assert_transition(quote.status, QuoteStatus.ACCEPTED.value)

    if selections:
        items = (
            db.query(QuoteItem)
            .join(QuoteSection, QuoteItem.section_id == QuoteSection.id)
            .filter(QuoteSection.quote_id == quote.id)
            .all()
        )
        by_id = {item.id: item for item in items}
        missing = [item_id for item_id in selections if int(item_id) not in by_id]
        if missing:
            raise NotFound(f"Item {missing[0]} not found in this quote")
        for item_id, selected in selections.items():
            by_id[int(item_id)].is_selected = bool(selected)

    recalculate_totals(db, DocumentKind.quote, quote)
    quote.status = QuoteStatus.ACCEPTED.value
    quote.accepted_at = datetime.utcnow()
    db.commit()
    db.refresh(quote)

    logger.info("Quote %s accepted by client", quote.number)
    notify(
        notifier,
        type=NotificationType.QUOTE_ACCEPTED.value,
        title="Quote accepted",
        message=f"{_client_name(quote)} accepted quote {quote.number}",
        link=project_link(quote.project_id, "quotes"),
        related_id=quote.id,
        related_type=DocumentKind.quote.value,
    )
    return quote


# ===== Scheduled checks =====

def late_fee_for(invoice, percent) -> Decimal:
    """Late fee on the taxed amount, before any previous fee."""
    base = to_decimal(invoice.subtotal) + to_decimal(invoice.tps_amount) + to_decimal(invoice.tvq_amount)
    return round_money(base * to_decimal(percent) / HUNDRED)


def run_scheduled_checks(db: Session, notifier: Optional[NotificationSink] = None, now: datetime = None) -> dict:
    """Expire quotes past valid_until and mark invoices past due_date OVERDUE.

    Meant to be triggered periodically (cron hitting POST /notifications/check).
    Returns the numbers of the documents that changed.
    """
    now = now or datetime.utcnow()

    quotes = (
        db.query(Quote)
        .filter(
            Quote.status.in_([QuoteStatus.SENT.value, QuoteStatus.VIEWED.value]),
            Quote.valid_until.isnot(None),
            Quote.valid_until < now,
        )
        .with_for_update()
        .all()
    )
    for quote in quotes:
        QUOTE_LIFECYCLE.assert_transition(quote.status, QuoteStatus.EXPIRED.value)
        quote.status = QuoteStatus.EXPIRED.value

    invoices = (
        db.query(Invoice)
        .filter(
            Invoice.status == InvoiceStatus.SENT.value,
            Invoice.due_date.isnot(None),
            Invoice.due_date < now,
        )
        .with_for_update()
        .all()
    )
    late_fee_percent = get_settings(db).late_fee_percent
    for invoice in invoices:
        INVOICE_LIFECYCLE.assert_transition(invoice.status, InvoiceStatus.OVERDUE.value)
        invoice.status = InvoiceStatus.OVERDUE.value
        invoice.late_fee_amount = late_fee_for(invoice, late_fee_percent)
        recalculate_totals(db, DocumentKind.invoice, invoice)

    db.commit()

    for quote in quotes:
        notify(
            notifier,
            type=NotificationType.QUOTE_EXPIRED.value,
            title="Quote expired",
            message=f"Quote {quote.number} for {_client_name(quote)} has expired",
            link=project_link(quote.project_id, "quotes"),
            related_id=quote.id,
            related_type=DocumentKind.quote.value,
        )
    for invoice in invoices:
        notify(
            notifier,
            type=NotificationType.INVOICE_OVERDUE.value,
            title="Invoice overdue",
            message=(
                f"Invoice {invoice.number} for {_client_name(invoice)} is overdue, "
                f"late fee of {invoice.late_fee_amount}$ applied"
            ),
            link=project_link(invoice.project_id, "invoices"),
            related_id=invoice.id,
            related_type=DocumentKind.invoice.value,
        )

    if quotes or invoices:
        logger.info("Scheduled checks: %d quote(s) expired, %d invoice(s) overdue", len(quotes), len(invoices))
    return {
        "expired_quotes": [quote.number for quote in quotes],
        "overdue_invoices": [invoice.number for invoice in invoices],
    }
