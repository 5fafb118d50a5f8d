from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas import StudioSettings as StudioSettingsSchema, StudioSettingsUpdate
from services import studio

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/", response_model=StudioSettingsSchema)
def get_settings(db: Session = Depends(get_db)):
    return studio.get_settings(db)


@router.patch("/", response_model=StudioSettingsSchema)
def update_settings(payload: StudioSettingsUpdate, db: Session = Depends(get_db)):
    """Change studio defaults. Existing documents keep the rates they were created with."""
    return studio.update_settings(db, payload.model_dump(exclude_unset=True))
