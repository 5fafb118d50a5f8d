from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from database import get_db
from models import DocumentKind
from schemas import (
    Invoice as InvoiceSchema,
    InvoiceSummary,
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceItem as InvoiceItemSchema,
    InvoiceItemCreate,
    InvoiceItemUpdate,
    ReorderRequest,
    StatusUpdate,
    NextNumber,
)
from services import documents, lifecycle, numbering, templates, tree
from services.lookup import get_document
from services.pricing import TaxPolicy

router = APIRouter(prefix="/invoices", tags=["invoices"])

INVOICE = DocumentKind.invoice


@router.get("/", response_model=List[InvoiceSummary])
def list_invoices(
    status: Optional[str] = None,
    project_id: Optional[int] = None,
    client_id: Optional[int] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = Query(100, le=500),
    db: Session = Depends(get_db)
):
    return documents.list_documents(db, INVOICE, status, project_id, client_id, search, skip, limit)


@router.post("/", response_model=InvoiceSchema, status_code=201)
def create_invoice(payload: InvoiceCreate, db: Session = Depends(get_db)):
    """Create an empty standalone draft invoice for a project."""
    policy = TaxPolicy.of(payload.tax_rates) if payload.tax_rates else None
    return documents.create_document(db, INVOICE, payload.project_id, policy)


@router.get("/next-number", response_model=NextNumber)
def preview_next_number(client_code: str, db: Session = Depends(get_db)):
    return {"next_number": numbering.next_number(db, INVOICE, client_code)}


@router.patch("/items/{item_id}", response_model=InvoiceItemSchema)
def update_item(item_id: int, payload: InvoiceItemUpdate, db: Session = Depends(get_db)):
    return tree.update_item(db, INVOICE, item_id, payload.model_dump(exclude_unset=True))


@router.delete("/items/{item_id}", response_model=InvoiceSchema)
def delete_item(item_id: int, db: Session = Depends(get_db)):
    return tree.remove_item(db, INVOICE, item_id)


@router.get("/{invoice_id}", response_model=InvoiceSchema)
def get_invoice(invoice_id: int, db: Session = Depends(get_db)):
    """Get a single invoice with all its items."""
    return get_document(db, INVOICE, invoice_id)


@router.patch("/{invoice_id}", response_model=InvoiceSchema)
def update_invoice(invoice_id: int, payload: InvoiceUpdate, db: Session = Depends(get_db)):
    return documents.update_invoice(db, invoice_id, payload.model_dump(exclude_unset=True))


@router.delete("/{invoice_id}", status_code=204)
def delete_invoice(invoice_id: int, db: Session = Depends(get_db)):
    documents.delete_document(db, INVOICE, invoice_id)


@router.post("/{invoice_id}/send", response_model=InvoiceSchema)
def send_invoice(invoice_id: int, db: Session = Depends(get_db)):
    return lifecycle.send(db, INVOICE, invoice_id)


@router.post("/{invoice_id}/status", response_model=InvoiceSchema)
def update_invoice_status(invoice_id: int, payload: StatusUpdate, db: Session = Depends(get_db)):
    """Move the invoice to PAID, CANCELLED, etc."""
    return lifecycle.transition(db, INVOICE, invoice_id, payload.status)


@router.post("/{invoice_id}/duplicate", response_model=InvoiceSchema, status_code=201)
def duplicate_invoice(invoice_id: int, db: Session = Depends(get_db)):
    return templates.duplicate(db, INVOICE, invoice_id)


@router.post("/{invoice_id}/items", response_model=InvoiceItemSchema, status_code=201)
def add_item(invoice_id: int, payload: InvoiceItemCreate, db: Session = Depends(get_db)):
    return tree.add_item(db, INVOICE, invoice_id, payload.model_dump())


@router.patch("/{invoice_id}/items", response_model=InvoiceSchema)
def reorder_items(invoice_id: int, payload: ReorderRequest, db: Session = Depends(get_db)):
    return tree.reorder_items(db, INVOICE, invoice_id, payload.pairs())
