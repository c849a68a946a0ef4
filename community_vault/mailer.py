import logging
from typing import Any, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from .errors import NotConfiguredError

logger = logging.getLogger(__name__)


class EmailSender:
    """Transactional email through SendGrid."""

    def __init__(self, api_key: str = "", from_email: str = "", client: Optional[Any] = None):
        self.from_email = from_email
        if client is None and api_key:
            client = SendGridAPIClient(api_key)
        self._client = client
        if not self.configured:
            logger.warning("SENDGRID_API_KEY/EMAIL_FROM not configured - email delivery disabled")

    @classmethod
    def from_settings(cls, settings) -> "EmailSender":
        return cls(api_key=settings.sendgrid_api_key, from_email=settings.email_from)

    @property
    def configured(self) -> bool:
        return self._client is not None and bool(self.from_email)

    def send(self, to_email: str, subject: str, html: str) -> None:
        if not self.configured:
            raise NotConfiguredError("Email provider not configured")
        message = Mail(
            from_email=self.from_email,
            to_emails=to_email,
            subject=subject,
            html_content=html,
        )
        response = self._client.send(message)
        logger.info("email sent to=%s status=%s", to_email, getattr(response, "status_code", None))
