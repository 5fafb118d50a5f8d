from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from database import get_db
from schemas import (
    Template as TemplateSchema,
    TemplateCreate,
    TemplateUpdate,
    TemplateFromQuote,
)
from services import templates

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("/", response_model=List[TemplateSchema])
def list_templates(db: Session = Depends(get_db)):
    return templates.list_templates(db)


@router.post("/", response_model=TemplateSchema, status_code=201)
def create_template(payload: TemplateCreate, db: Session = Depends(get_db)):
    """Create an empty template."""
    values = payload.model_dump(exclude={"name"})
    return templates.create_template(db, payload.name, values)


@router.post("/from-quote/{quote_id}", response_model=TemplateSchema, status_code=201)
def create_template_from_quote(quote_id: int, payload: TemplateFromQuote, db: Session = Depends(get_db)):
    """Save a quote's sections and items as a reusable template."""
    return templates.template_from_document(db, quote_id, payload.name, payload.description)


@router.get("/{template_id}", response_model=TemplateSchema)
def get_template(template_id: int, db: Session = Depends(get_db)):
    return templates.get_template(db, template_id)


@router.put("/{template_id}", response_model=TemplateSchema)
def update_template(template_id: int, payload: TemplateUpdate, db: Session = Depends(get_db)):
    return templates.update_template(db, template_id, payload.model_dump(exclude_unset=True))


@router.delete("/{template_id}", status_code=204)
def delete_template(template_id: int, db: Session = Depends(get_db)):
    templates.delete_template(db, template_id)
