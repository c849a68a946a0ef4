import html
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import models
from .errors import NotFound
from .mailer import EmailSender

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, email: EmailSender):
        self.email = email

    def notify(
        self,
        db: Session,
        user_id: str,
        type: models.NotificationType,
        payload: Dict[str, Any],
        email_subject: Optional[str] = None,
        email_body: Optional[str] = None,
    ) -> models.Notification:
        """
        Persist an in-app notification and, when possible, email it.
        Email delivery is best-effort and never fails the notification.
        """
        notification = models.Notification(user_id=user_id, type=type, payload=payload)
        db.add(notification)
        db.commit()
        db.refresh(notification)

        if email_subject and email_body:
            user = db.get(models.User, user_id)
            if user is not None and user.email and self.email.configured:
                try:
                    self.email.send(user.email, email_subject, email_body)
                except Exception:
                    logger.exception("failed to email notification %s to user %s", notification.id, user_id)

        return notification

    def notify_purchase(
        self,
        db: Session,
        creator_id: str,
        purchaser_name: str,
        file_title: str,
        amount: Decimal,
        currency: str,
    ) -> models.Notification:
        return self.notify(
            db,
            user_id=creator_id,
            type=models.NotificationType.PURCHASE,
            payload={
                "purchaserName": purchaser_name,
                "fileTitle": file_title,
                "amount": float(amount),
                "currency": currency,
            },
            email_subject=f"\U0001F389 {purchaser_name} purchased {file_title}",
            email_body=(
                f"<p>{html.escape(purchaser_name)} just purchased <strong>{html.escape(file_title)}</strong>"
                f" for {Decimal(amount):.2f} {html.escape(currency)}. Keep the momentum going!</p>"
            ),
        )

    def notify_new_content(
        self,
        db: Session,
        subscriber_id: str,
        file_title: str,
        category: str,
        creator_name: str,
    ) -> models.Notification:
        return self.notify(
            db,
            user_id=subscriber_id,
            type=models.NotificationType.NEW_CONTENT,
            payload={
                "fileTitle": file_title,
                "category": category,
                "creatorName": creator_name,
            },
            email_subject=f"{creator_name} added new content",
            email_body=(
                f"<p>{html.escape(creator_name)} just published <strong>{html.escape(file_title)}</strong>"
                f" in {html.escape(category)}. Log in to start learning.</p>"
            ),
        )


def list_notifications(db: Session, user_id: str, limit: int = 50) -> List[models.Notification]:
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id)
        .order_by(models.Notification.created_at.desc())
        .limit(limit)
        .all()
    )


def mark_read(db: Session, user_id: str, notification_id: str) -> models.Notification:
    # Scoped to the owner so one user can never mark another's notification
    notification = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id, models.Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        raise NotFound("Notification not found")
    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification
