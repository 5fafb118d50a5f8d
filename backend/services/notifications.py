"""Outbound notifications for client-triggered and scheduled transitions.

Delivery is fire-and-forget: a failing sink is logged and never undoes the
transition that produced the event.
"""
import logging
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from config import PUBLIC_BASE_URL
from database import SessionLocal
from models import Notification

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def emit(
        self,
        type: str,
        title: str,
        message: str,
        link: Optional[str] = None,
        related_id: Optional[int] = None,
        related_type: Optional[str] = None,
    ) -> None:
        ...


class DatabaseNotificationSink:
    """Stores events as Notification rows, in a session of its own."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def emit(self, type, title, message, link=None, related_id=None, related_type=None):
        db = self.session_factory()
        try:
            db.add(Notification(
                type=type,
                title=title,
                message=message,
                link=link,
                related_id=related_id,
                related_type=related_type,
            ))
            db.commit()
        finally:
            db.close()


def get_notifier() -> NotificationSink:
    """FastAPI dependency; tests override it with a recording sink."""
    return DatabaseNotificationSink()


def project_link(project_id: int, tab: str) -> str:
    return f"{PUBLIC_BASE_URL}/projects/{project_id}?tab={tab}"


def notify(sink: Optional[NotificationSink], **event) -> bool:
    """Emit an event, logging instead of raising if the sink fails."""
    if sink is None:
        return False
    try:
        sink.emit(**event)
    except Exception:
        logger.exception(
            "Failed to deliver %s notification for %s %s",
            event.get("type"), event.get("related_type"), event.get("related_id"),
        )
        return False
    return True


def list_notifications(db: Session, unread_only: bool = False, skip: int = 0, limit: int = 50):
    query = db.query(Notification)
    if unread_only:
        query = query.filter(Notification.is_read == False)
    total = query.count()
    unread_count = db.query(Notification).filter(Notification.is_read == False).count()
    notifications = query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(skip).limit(limit).all()
    return notifications, total, unread_count
