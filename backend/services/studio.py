"""Studio-wide defaults: tax rates, deposit, validity and payment delays."""
from sqlalchemy.orm import Session

from models import StudioSettings
from services.pricing import TaxPolicy, to_decimal

SETTINGS_ID = "default"

EDITABLE_FIELDS = (
    "company_name",
    "default_tps_rate",
    "default_tvq_rate",
    "default_deposit_percent",
    "default_validity_days",
    "default_payment_days",
    "late_fee_percent",
)


def get_settings(db: Session) -> StudioSettings:
    """The settings row, or an unsaved row carrying the column defaults."""
    settings = db.query(StudioSettings).filter(StudioSettings.id == SETTINGS_ID).first()
    if settings:
        return settings
    defaults = {
        column.name: column.default.arg
        for column in StudioSettings.__table__.columns
        if column.default is not None
    }
    return StudioSettings(**defaults)


def get_tax_policy(db: Session) -> TaxPolicy:
    """Current studio tax rates, read once when a document is created."""
    settings = get_settings(db)
    return TaxPolicy(to_decimal(settings.default_tps_rate), to_decimal(settings.default_tvq_rate))


def update_settings(db: Session, values: dict) -> StudioSettings:
    settings = db.query(StudioSettings).filter(StudioSettings.id == SETTINGS_ID).first()
    if not settings:
        settings = get_settings(db)
        db.add(settings)
    for field in EDITABLE_FIELDS:
        if field in values and values[field] is not None:
            setattr(settings, field, values[field])
    db.commit()
    db.refresh(settings)
    return settings
