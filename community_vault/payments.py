import json
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .errors import AuthenticationError, NotConfiguredError, NotFound, ValidationFailed
from .notifications import NotificationDispatcher
from .payouts import SplitConfig, calculate_split, to_money
from .whop import verify_signature

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment.succeeded"
MEMBERSHIP_CREATED = "membership.created"


def create_checkout_session(
    db: Session,
    file_id: str,
    purchaser: models.User,
    checkout_url: str,
    app_url: str,
    success_path: str = "/dashboard",
    cancel_path: str = "/dashboard",
) -> Dict[str, str]:
    file = db.get(models.File, file_id)
    if file is None:
        raise NotFound("File not found")
    if not file.is_premium:
        raise ValidationFailed(
            "File is not premium and does not require checkout.",
            errors={"fileId": ["file is not premium"]},
        )

    price_in_cents = int((Decimal(file.price) * 100).to_integral_value())
    metadata = {
        "fileId": file.id,
        "purchaserId": purchaser.id,
        "ownerId": file.owner_id,
        "purchaserWhopId": purchaser.whop_user_id,
        "ownerWhopId": file.owner.whop_user_id,
    }
    query = urlencode({
        "amount": str(price_in_cents),
        "currency": file.currency,
        "title": file.title,
        "description": file.summary or file.description,
        "success_url": f"{app_url}{success_path}?checkout=success&fileId={file.id}",
        "cancel_url": f"{app_url}{cancel_path}?checkout=cancelled",
        "metadata": json.dumps(metadata),
    })
    return {
        "url": f"{checkout_url}?{query}",
        "id": f"session_{int(time.time() * 1000)}_{file.id}",
    }


class WebhookHandler:
    """Applies signed Whop payment events to the ledger."""

    def __init__(self, signing_secret: str, notifications: NotificationDispatcher,
                 split_config: SplitConfig = SplitConfig()):
        self.signing_secret = signing_secret
        self.notifications = notifications
        self.split_config = split_config

    def handle(self, db: Session, raw_body: bytes, signature: Optional[str]) -> Optional[models.Transaction]:
        if not self.signing_secret:
            raise NotConfiguredError("Webhook configuration error")
        if not verify_signature(raw_body, signature, self.signing_secret):
            logger.error("invalid webhook signature")
            raise AuthenticationError("Invalid signature")

        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationFailed("Webhook body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise ValidationFailed("Webhook body must be a JSON object")

        event_type = event.get("type")
        data = event.get("data") or {}
        if not isinstance(data, dict):
            logger.warning("ignoring %s webhook with malformed data: %r", event_type, data)
            return None
        if event_type == PAYMENT_SUCCEEDED:
            return self.handle_payment_succeeded(db, data)
        if event_type == MEMBERSHIP_CREATED:
            logger.info("membership created: %s", data.get("id"))
            return None
        logger.debug("ignoring webhook event type %s", event_type)
        return None

    def _find_transaction(self, db: Session, reference) -> Optional[models.Transaction]:
        if not reference:
            return None
        return (
            db.query(models.Transaction)
            .filter(models.Transaction.external_reference == str(reference))
            .first()
        )

    def handle_payment_succeeded(self, db: Session, payment: Dict[str, Any]) -> Optional[models.Transaction]:
        metadata = payment.get("metadata") or {}
        if not isinstance(metadata, dict):
            logger.warning("malformed metadata in Whop webhook: %r", metadata)
            return None
        file_id = metadata.get("fileId")
        purchaser_id = metadata.get("purchaserId")
        if not (isinstance(file_id, str) and file_id and isinstance(purchaser_id, str) and purchaser_id):
            logger.warning("missing fileId or purchaserId in Whop webhook metadata")
            return None

        file = db.get(models.File, file_id)
        if file is None:
            logger.warning("webhook references unknown file %s", file_id)
            return None
        purchaser = db.get(models.User, purchaser_id)
        if purchaser is None:
            logger.warning("webhook references unknown purchaser %s", purchaser_id)
            return None

        reference = payment.get("id")
        duplicate = self._find_transaction(db, reference)
        if duplicate is not None:
            logger.info("payment %s already recorded as transaction %s", reference, duplicate.id)
            return duplicate

        # Whop reports amounts in cents
        try:
            if payment.get("amount") is not None:
                amount = to_money(Decimal(str(payment["amount"])) / 100)
            else:
                amount = to_money(file.price)
            split = calculate_split(amount, self.split_config)
        except (InvalidOperation, TypeError, ValueError):
            logger.warning("malformed amount %r in payment %s", payment.get("amount"), reference)
            return None

        creator = db.get(models.User, file.owner_id)
        transaction = models.Transaction(
            file_id=file.id,
            purchaser_id=purchaser_id,
            creator_id=file.owner_id,
            amount=amount,
            currency=file.currency,
            creator_share=split.creator,
            community_share=split.community,
            platform_share=split.platform,
            external_reference=str(reference) if reference else None,
        )
        try:
            file.total_purchases = models.File.total_purchases + 1
            creator.earnings = models.User.earnings + split.creator
            db.add(transaction)
            db.commit()
        except IntegrityError:
            # A concurrent delivery of the same payment recorded it first
            db.rollback()
            existing = self._find_transaction(db, reference)
            if existing is None:
                raise
            logger.info("payment %s already recorded as transaction %s", reference, existing.id)
            return existing
        except Exception:
            db.rollback()
            raise
        db.refresh(transaction)
        logger.info(
            "recorded transaction %s file=%s amount=%s creator_share=%s",
            transaction.id, file.id, amount, split.creator,
        )

        self.notifications.notify_purchase(
            db,
            creator_id=file.owner_id,
            purchaser_name=purchaser.name or purchaser_id,
            file_title=file.title,
            amount=amount,
            currency=file.currency,
        )
        return transaction
