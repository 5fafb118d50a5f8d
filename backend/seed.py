"""
Database seeding for studio defaults.
Run this at application startup so documents always find tax rates to freeze.
"""
import logging
from decimal import Decimal

from sqlalchemy.orm import Session
from models import StudioSettings

logger = logging.getLogger(__name__)

# Quebec: TPS 5%, TVQ 9.975%
DEFAULT_STUDIO_SETTINGS = {
    "id": "default",
    "default_tps_rate": Decimal("0.05"),
    "default_tvq_rate": Decimal("0.09975"),
    "default_deposit_percent": Decimal("50"),
    "default_validity_days": 30,
    "default_payment_days": 30,
    "late_fee_percent": Decimal("2"),
}


def seed_studio_settings(db: Session) -> None:
    """
    Create the studio settings row if it doesn't exist.
    Existing values are never overwritten.
    """
    existing = db.query(StudioSettings).filter(
        StudioSettings.id == DEFAULT_STUDIO_SETTINGS["id"]
    ).first()

    if not existing:
        db.add(StudioSettings(**DEFAULT_STUDIO_SETTINGS))
        db.commit()
        logger.info("[STARTUP] Seeded default studio settings")
