import asyncio
import logging

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from app.core.config import settings
from app.services.notification.base import NotificationChannel

logger = logging.getLogger(__name__)


class EmailNotification(NotificationChannel):
    async def send(self, recipient: str, message: str, **kwargs) -> bool:
        subject = kwargs.get("subject", "Your prescription")

        if not settings.sendgrid_api_key:
            # Demo mode: no provider configured
            logger.info(f"[EMAIL] To: {recipient} | Subject: {subject}")
            return True

        mail = Mail(
            from_email=settings.email_from,
            to_emails=recipient,
            subject=subject,
            plain_text_content=message,
        )

        try:
            sg = SendGridAPIClient(settings.sendgrid_api_key)
            # SendGrid's client is synchronous
            response = await asyncio.to_thread(sg.send, mail)
        except Exception as e:
            logger.error(f"Email send failed: {e}")
            return False

        if response.status_code >= 300:
            logger.error(f"Email rejected by SendGrid: HTTP {response.status_code}")
            return False

        return True
