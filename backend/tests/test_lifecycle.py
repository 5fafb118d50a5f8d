from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from errors import InvalidTransition, NotFound, ValidationError
from models import DocumentKind, Notification, NotificationType
from services import lifecycle, tree
from services.lifecycle import INVOICE_LIFECYCLE, QUOTE_LIFECYCLE
from services.notifications import DatabaseNotificationSink

QUOTE = DocumentKind.quote
INVOICE = DocumentKind.invoice


# --- Transition tables ---

@pytest.mark.parametrize("current,target", [
    ("DRAFT", "SENT"),
    ("SENT", "VIEWED"),
    ("SENT", "ACCEPTED"),
    ("SENT", "EXPIRED"),
    ("VIEWED", "ACCEPTED"),
    ("VIEWED", "EXPIRED"),
])
def test_allowed_quote_transitions(current, target):
    assert QUOTE_LIFECYCLE.can_transition(current, target)


@pytest.mark.parametrize("current,target", [
    ("DRAFT", "ACCEPTED"),
    ("ACCEPTED", "DRAFT"),
    ("EXPIRED", "SENT"),
    ("VIEWED", "SENT"),
])
def test_forbidden_quote_transitions(current, target):
    assert not QUOTE_LIFECYCLE.can_transition(current, target)


def test_invoice_transitions():
    assert INVOICE_LIFECYCLE.can_transition("SENT", "OVERDUE")
    assert INVOICE_LIFECYCLE.can_transition("OVERDUE", "PAID")
    assert not INVOICE_LIFECYCLE.can_transition("PAID", "CANCELLED")
    assert not INVOICE_LIFECYCLE.can_transition("DRAFT", "PAID")


def test_locked_statuses():
    assert QUOTE_LIFECYCLE.is_locked("ACCEPTED")
    assert not QUOTE_LIFECYCLE.is_locked("EXPIRED")
    assert INVOICE_LIFECYCLE.is_locked("PAID")
    assert INVOICE_LIFECYCLE.is_locked("CANCELLED")
    assert not INVOICE_LIFECYCLE.is_locked("OVERDUE")


# --- Sending ---

def test_send_issues_a_token_once(db_session, nova_quote):
    sent = lifecycle.send(db_session, QUOTE, nova_quote.id)
    token = sent.public_token

    assert sent.status == "SENT"
    assert len(token) == 32

    again = lifecycle.send(db_session, QUOTE, nova_quote.id)
    assert again.status == "SENT"
    assert again.public_token == token


def test_sending_an_accepted_quote_fails(db_session, nova_quote):
    lifecycle.send(db_session, QUOTE, nova_quote.id)
    lifecycle.transition(db_session, QUOTE, nova_quote.id, "ACCEPTED")

    with pytest.raises(InvalidTransition):
        lifecycle.send(db_session, QUOTE, nova_quote.id)


def test_send_sets_invoice_dates(db_session, nova_invoice):
    before = datetime.utcnow()
    invoice = lifecycle.send(db_session, INVOICE, nova_invoice.id)

    assert invoice.issue_date >= before
    assert invoice.due_date > invoice.issue_date


# --- Explicit transitions ---

def test_invalid_transition_leaves_status(db_session, nova_quote):
    with pytest.raises(InvalidTransition) as info:
        lifecycle.transition(db_session, QUOTE, nova_quote.id, "ACCEPTED")

    assert info.value.current == "DRAFT"
    db_session.rollback()
    db_session.refresh(nova_quote)
    assert nova_quote.status == "DRAFT"


def test_unknown_status_is_rejected(db_session, nova_quote):
    with pytest.raises(ValidationError):
        lifecycle.transition(db_session, QUOTE, nova_quote.id, "SIGNED")


def test_viewed_cannot_be_set_by_the_studio(db_session, nova_quote):
    lifecycle.send(db_session, QUOTE, nova_quote.id)

    with pytest.raises(InvalidTransition):
        lifecycle.transition(db_session, QUOTE, nova_quote.id, "VIEWED")


def test_paying_an_invoice_records_the_payment(db_session, nova_invoice):
    lifecycle.send(db_session, INVOICE, nova_invoice.id)
    invoice = lifecycle.transition(db_session, INVOICE, nova_invoice.id, "PAID")

    assert invoice.paid_at is not None
    assert invoice.amount_paid == Decimal("229.95")


def test_missing_document(db_session):
    with pytest.raises(NotFound):
        lifecycle.send(db_session, INVOICE, 4242)


# --- Public link ---

def test_first_view_marks_viewed_and_notifies_once(db_session, nova_quote, sink):
    token = lifecycle.send(db_session, QUOTE, nova_quote.id).public_token

    first = lifecycle.view_via_public_token(db_session, QUOTE, token, sink)
    second = lifecycle.view_via_public_token(db_session, QUOTE, token, sink)

    assert first.status == "VIEWED"
    assert first.viewed_at is not None
    assert second.status == "VIEWED"
    assert sink.types == [NotificationType.QUOTE_VIEWED.value]
    assert "Studio Nova" in sink.events[0]["message"]
    assert sink.events[0]["related_id"] == nova_quote.id


def test_viewing_a_draft_changes_nothing(db_session, nova_quote, sink):
    nova_quote.public_token = "preview-token"
    db_session.commit()

    quote = lifecycle.view_via_public_token(db_session, QUOTE, "preview-token", sink)

    assert quote.status == "DRAFT"
    assert sink.events == []


def test_unknown_token(db_session, sink):
    with pytest.raises(NotFound):
        lifecycle.view_via_public_token(db_session, QUOTE, "nope", sink)


def test_failing_sink_does_not_undo_the_view(db_session, nova_quote, failing_sink):
    token = lifecycle.send(db_session, QUOTE, nova_quote.id).public_token

    quote = lifecycle.view_via_public_token(db_session, QUOTE, token, failing_sink)

    assert failing_sink.calls == 1
    db_session.refresh(quote)
    assert quote.status == "VIEWED"


def test_database_sink_stores_notifications(db_session, session_factory, nova_quote):
    token = lifecycle.send(db_session, QUOTE, nova_quote.id).public_token

    lifecycle.view_via_public_token(db_session, QUOTE, token, DatabaseNotificationSink(session_factory))

    notification = db_session.query(Notification).one()
    assert notification.type == "QUOTE_VIEWED"
    assert notification.related_type == "quote"
    assert notification.link.endswith(f"/projects/{nova_quote.project_id}?tab=quotes")


def test_client_acceptance_records_selections(db_session, nova_quote, sink):
    token = lifecycle.send(db_session, QUOTE, nova_quote.id).public_token
    item = nova_quote.sections[0].items[0]

    quote = lifecycle.accept_via_public_token(db_session, token, {str(item.id): False}, sink)

    assert quote.status == "ACCEPTED"
    assert quote.accepted_at is not None
    db_session.refresh(item)
    assert item.is_selected is False
    assert sink.types == ["QUOTE_ACCEPTED"]


def test_declined_a_la_carte_items_leave_the_accepted_total(db_session, nova_quote, sink):
    section = nova_quote.sections[0]
    animation = tree.add_item(db_session, QUOTE, section.id, {
        "name": "Animated logo", "item_type": "A_LA_CARTE", "quantity": 1, "unit_price": 50,
    })
    tree.add_item(db_session, QUOTE, section.id, {
        "name": "Colour palette", "item_type": "FREE", "quantity": 1, "unit_price": 80,
    })
    db_session.refresh(nova_quote)
    assert nova_quote.subtotal == Decimal("250.00")
    token = lifecycle.send(db_session, QUOTE, nova_quote.id).public_token

    quote = lifecycle.accept_via_public_token(db_session, token, {animation.id: False}, sink)

    assert quote.status == "ACCEPTED"
    assert quote.subtotal == Decimal("200.00")
    assert quote.total == Decimal("229.95")


def test_kept_a_la_carte_items_stay_in_the_accepted_total(db_session, nova_quote, sink):
    animation = tree.add_item(db_session, QUOTE, nova_quote.sections[0].id, {
        "name": "Animated logo", "item_type": "A_LA_CARTE", "quantity": 1, "unit_price": 50,
    })
    token = lifecycle.send(db_session, QUOTE, nova_quote.id).public_token

    quote = lifecycle.accept_via_public_token(db_session, token, {animation.id: True}, sink)

    assert quote.subtotal == Decimal("250.00")
    assert quote.total == Decimal("287.44")


def test_acceptance_rejects_items_of_other_quotes(db_session, nova_quote, sink):
    token = lifecycle.send(db_session, QUOTE, nova_quote.id).public_token

    with pytest.raises(NotFound):
        lifecycle.accept_via_public_token(db_session, token, {9999: True}, sink)
    assert sink.events == []


def test_expired_quote_cannot_be_accepted(db_session, nova_quote, sink):
    token = lifecycle.send(db_session, QUOTE, nova_quote.id).public_token
    lifecycle.transition(db_session, QUOTE, nova_quote.id, "EXPIRED")

    with pytest.raises(InvalidTransition):
        lifecycle.accept_via_public_token(db_session, token, {}, sink)


# --- Scheduled checks ---

def test_scheduled_checks(db_session, nova_quote, nova_invoice, sink):
    lifecycle.send(db_session, QUOTE, nova_quote.id)
    lifecycle.send(db_session, INVOICE, nova_invoice.id)

    result = lifecycle.run_scheduled_checks(db_session, sink, now=datetime.utcnow() + timedelta(days=31))

    assert result == {"expired_quotes": ["D-NOVA-001"], "overdue_invoices": ["F-NOVA-001"]}
    db_session.refresh(nova_quote)
    db_session.refresh(nova_invoice)
    assert nova_quote.status == "EXPIRED"
    assert nova_invoice.status == "OVERDUE"
    # 2% of 229.95
    assert nova_invoice.late_fee_amount == Decimal("4.60")
    assert nova_invoice.total == Decimal("234.55")
    assert sorted(sink.types) == ["INVOICE_OVERDUE", "QUOTE_EXPIRED"]


def test_scheduled_checks_skip_drafts_and_current_documents(db_session, nova_quote, nova_invoice, sink):
    lifecycle.send(db_session, INVOICE, nova_invoice.id)

    assert lifecycle.run_scheduled_checks(db_session, sink, now=datetime.utcnow() + timedelta(days=31)) == {
        "expired_quotes": [],
        "overdue_invoices": ["F-NOVA-001"],
    }
    assert lifecycle.run_scheduled_checks(db_session, sink) == {"expired_quotes": [], "overdue_invoices": []}
