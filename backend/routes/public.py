"""Client-facing endpoints, addressed by the document's public token."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models import DocumentKind
from schemas import (
    Quote as QuoteSchema,
    Invoice as InvoiceSchema,
    PublicAcceptance,
)
from services import lifecycle
from services.notifications import NotificationSink, get_notifier

router = APIRouter(prefix="/public", tags=["public"])


@router.get("/quotes/{token}", response_model=QuoteSchema)
def view_quote(token: str, db: Session = Depends(get_db), notifier: NotificationSink = Depends(get_notifier)):
    """Show a quote to the client. The first view of a SENT quote marks it VIEWED."""
    return lifecycle.view_via_public_token(db, DocumentKind.quote, token, notifier)


@router.post("/quotes/{token}/accept", response_model=QuoteSchema)
def accept_quote(
    token: str,
    payload: PublicAcceptance,
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier)
):
    return lifecycle.accept_via_public_token(db, token, payload.selections, notifier)


@router.get("/invoices/{token}", response_model=InvoiceSchema)
def view_invoice(token: str, db: Session = Depends(get_db)):
    return lifecycle.view_via_public_token(db, DocumentKind.invoice, token)
