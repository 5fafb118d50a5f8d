from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from errors import NotFound
from models import Notification
from schemas import (
    Notification as NotificationSchema,
    NotificationList,
    NotificationUpdate,
    CheckResult,
)
from services import lifecycle
from services.notifications import NotificationSink, get_notifier, list_notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_or_404(db: Session, notification_id: int) -> Notification:
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if not notification:
        raise NotFound("Notification not found")
    return notification


@router.get("/", response_model=NotificationList)
def get_notifications(
    unread_only: bool = False,
    skip: int = 0,
    limit: int = Query(50, le=200),
    db: Session = Depends(get_db)
):
    notifications, total, unread_count = list_notifications(db, unread_only, skip, limit)
    return {"notifications": notifications, "total": total, "unread_count": unread_count}


@router.post("/check", response_model=CheckResult)
def run_checks(db: Session = Depends(get_db), notifier: NotificationSink = Depends(get_notifier)):
    """Expire quotes and flag overdue invoices. Meant to be called by a scheduler."""
    return lifecycle.run_scheduled_checks(db, notifier)


@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db)):
    updated = db.query(Notification).filter(Notification.is_read == False).update({Notification.is_read: True})
    db.commit()
    return {"updated": updated}


@router.patch("/{notification_id}", response_model=NotificationSchema)
def update_notification(notification_id: int, payload: NotificationUpdate, db: Session = Depends(get_db)):
    notification = get_notification_or_404(db, notification_id)
    notification.is_read = payload.is_read
    db.commit()
    db.refresh(notification)
    return notification


@router.delete("/{notification_id}", status_code=204)
def delete_notification(notification_id: int, db: Session = Depends(get_db)):
    db.delete(get_notification_or_404(db, notification_id))
    db.commit()
