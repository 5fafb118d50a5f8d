"""Loading quotes and invoices by id or public token, with optional row locks."""
from sqlalchemy.orm import Session

from errors import NotFound
from models import DocumentKind, Quote, Invoice, Project

DOCUMENT_MODELS = {
    DocumentKind.quote: Quote,
    DocumentKind.invoice: Invoice,
}

LABELS = {
    DocumentKind.quote: "Quote",
    DocumentKind.invoice: "Invoice",
}


def as_kind(kind) -> DocumentKind:
    return kind if isinstance(kind, DocumentKind) else DocumentKind(kind)


def get_document(db: Session, kind, document_id: int, lock: bool = False):
    """Fetch a quote or invoice, raising NotFound when it does not exist.

    With lock=True the row is selected FOR UPDATE and refreshed, so the caller
    holds the per-document lock until its transaction ends.
    """
    kind = as_kind(kind)
    model = DOCUMENT_MODELS[kind]
    query = db.query(model).filter(model.id == document_id)
    if lock:
        query = query.with_for_update().populate_existing()
    document = query.first()
    if not document:
        raise NotFound(f"{LABELS[kind]} not found")
    return document


def lock_document(db: Session, kind, document_id: int):
    return get_document(db, kind, document_id, lock=True)


def get_document_by_token(db: Session, kind, token: str):
    kind = as_kind(kind)
    model = DOCUMENT_MODELS[kind]
    document = db.query(model).filter(model.public_token == token).first() if token else None
    if not document:
        raise NotFound(f"{LABELS[kind]} not found")
    return document


def get_project(db: Session, project_id: int) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise NotFound("Project not found")
    return project
