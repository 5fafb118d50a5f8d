from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from database import get_db
from models import DocumentKind
from schemas import (
    Quote as QuoteSchema,
    QuoteSummary,
    QuoteCreate,
    QuoteUpdate,
    QuoteFromTemplate,
    QuoteSection as QuoteSectionSchema,
    QuoteSectionCreate,
    QuoteSectionUpdate,
    QuoteItem as QuoteItemSchema,
    QuoteItemCreate,
    QuoteItemUpdate,
    ReorderRequest,
    StatusUpdate,
    NextNumber,
    Invoice as InvoiceSchema,
    InvoiceSummary,
    InvoiceFromQuote,
)
from services import documents, lifecycle, numbering, templates, tree
from services.lookup import get_document
from services.pricing import TaxPolicy

router = APIRouter(prefix="/quotes", tags=["quotes"])

QUOTE = DocumentKind.quote


def tax_override(payload) -> Optional[TaxPolicy]:
    return TaxPolicy.of(payload.tax_rates) if payload.tax_rates else None


@router.get("/", response_model=List[QuoteSummary])
def list_quotes(
    status: Optional[str] = None,
    project_id: Optional[int] = None,
    client_id: Optional[int] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = Query(100, le=500),
    db: Session = Depends(get_db)
):
    """List quotes, newest first."""
    return documents.list_documents(db, QUOTE, status, project_id, client_id, search, skip, limit)


@router.post("/", response_model=QuoteSchema, status_code=201)
def create_quote(payload: QuoteCreate, db: Session = Depends(get_db)):
    """Create an empty draft quote for a project."""
    return documents.create_document(db, QUOTE, payload.project_id, tax_override(payload))


@router.get("/next-number", response_model=NextNumber)
def preview_next_number(client_code: str, db: Session = Depends(get_db)):
    """Number the next quote for this client would get. Nothing is reserved."""
    return {"next_number": numbering.next_number(db, QUOTE, client_code)}


@router.post("/from-template/{template_id}", response_model=QuoteSchema, status_code=201)
def create_quote_from_template(template_id: int, payload: QuoteFromTemplate, db: Session = Depends(get_db)):
    return templates.document_from_template(db, template_id, payload.project_id, tax_override(payload))


# ===== Section / item endpoints addressed by their own id =====

@router.patch("/sections/{section_id}", response_model=QuoteSectionSchema)
def update_section(section_id: int, payload: QuoteSectionUpdate, db: Session = Depends(get_db)):
    return tree.update_section(db, section_id, payload.model_dump(exclude_unset=True))


@router.delete("/sections/{section_id}", response_model=QuoteSchema)
def delete_section(section_id: int, db: Session = Depends(get_db)):
    """Delete a section and its items. Returns the updated quote."""
    return tree.remove_section(db, section_id)


@router.post("/sections/{section_id}/items", response_model=QuoteItemSchema, status_code=201)
def add_item(section_id: int, payload: QuoteItemCreate, db: Session = Depends(get_db)):
    return tree.add_item(db, QUOTE, section_id, payload.model_dump())


@router.patch("/sections/{section_id}/items", response_model=QuoteSchema)
def reorder_items(section_id: int, payload: ReorderRequest, db: Session = Depends(get_db)):
    return tree.reorder_items(db, QUOTE, section_id, payload.pairs())


@router.patch("/items/{item_id}", response_model=QuoteItemSchema)
def update_item(item_id: int, payload: QuoteItemUpdate, db: Session = Depends(get_db)):
    return tree.update_item(db, QUOTE, item_id, payload.model_dump(exclude_unset=True))


@router.delete("/items/{item_id}", response_model=QuoteSchema)
def delete_item(item_id: int, db: Session = Depends(get_db)):
    return tree.remove_item(db, QUOTE, item_id)


# ===== Quote endpoints =====

@router.get("/{quote_id}", response_model=QuoteSchema)
def get_quote(quote_id: int, db: Session = Depends(get_db)):
    """Get a single quote with its sections and items."""
    return get_document(db, QUOTE, quote_id)


@router.patch("/{quote_id}", response_model=QuoteSchema)
def update_quote(quote_id: int, payload: QuoteUpdate, db: Session = Depends(get_db)):
    return documents.update_quote(db, quote_id, payload.model_dump(exclude_unset=True))


@router.delete("/{quote_id}", status_code=204)
def delete_quote(quote_id: int, db: Session = Depends(get_db)):
    documents.delete_document(db, QUOTE, quote_id)


@router.post("/{quote_id}/send", response_model=QuoteSchema)
def send_quote(quote_id: int, db: Session = Depends(get_db)):
    """Mark the quote SENT and return it with its public token."""
    return lifecycle.send(db, QUOTE, quote_id)


@router.post("/{quote_id}/status", response_model=QuoteSchema)
def update_quote_status(quote_id: int, payload: StatusUpdate, db: Session = Depends(get_db)):
    return lifecycle.transition(db, QUOTE, quote_id, payload.status)


@router.post("/{quote_id}/duplicate", response_model=QuoteSchema, status_code=201)
def duplicate_quote(quote_id: int, db: Session = Depends(get_db)):
    return templates.duplicate(db, QUOTE, quote_id)


@router.post("/{quote_id}/sections", response_model=QuoteSectionSchema, status_code=201)
def add_section(quote_id: int, payload: QuoteSectionCreate, db: Session = Depends(get_db)):
    return tree.add_section(db, quote_id, payload.title, payload.description)


@router.patch("/{quote_id}/sections", response_model=QuoteSchema)
def reorder_sections(quote_id: int, payload: ReorderRequest, db: Session = Depends(get_db)):
    return tree.reorder_sections(db, quote_id, payload.pairs())


@router.get("/{quote_id}/invoices", response_model=List[InvoiceSummary])
def list_quote_invoices(quote_id: int, db: Session = Depends(get_db)):
    return get_document(db, QUOTE, quote_id).invoices


@router.post("/{quote_id}/invoices", response_model=InvoiceSchema, status_code=201)
def invoice_quote(quote_id: int, payload: InvoiceFromQuote, db: Session = Depends(get_db)):
    """Create the DEPOSIT or FINAL invoice of an accepted quote."""
    return documents.create_invoice_from_quote(db, quote_id, payload.invoice_type)
