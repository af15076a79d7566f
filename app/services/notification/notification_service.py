from app.services.notification.email import EmailNotification


def payment_link_message(*, patient_name: str | None, provider_name: str | None,
                         amount: str, payment_url: str, expires_at) -> str:
    greeting = f"Hi {patient_name}," if patient_name else "Hi,"
    from_line = f" from {provider_name}" if provider_name else ""
    return (
        f"{greeting}\n\n"
        f"Your prescription{from_line} is ready for payment.\n"
        f"Amount due: ${amount}\n\n"
        f"Pay securely here: {payment_url}\n"
        f"This link expires on {expires_at:%B %d, %Y}.\n"
    )


def payment_confirmation_message(*, patient_name: str | None, amount: str,
                                 description: str | None) -> str:
    greeting = f"Hi {patient_name}," if patient_name else "Hi,"
    return (
        f"{greeting}\n\n"
        f"We received your payment of ${amount}"
        f"{f' for {description}' if description else ''}.\n"
        "Your prescription has been sent to the pharmacy. "
        "We'll let you know when it ships.\n"
    )


class NotificationService:
    def __init__(self):
        self.channels = {
            "email": EmailNotification(),
        }

    async def notify(
        self,
        *,
        email: str | None,
        subject: str,
        message: str,
        channels: list[str] | None = None,
    ) -> bool:
        """Returns True when every requested channel accepted the message."""
        delivered = True

        for channel in channels or ["email"]:
            if channel == "email":
                if not email:
                    delivered = False
                    continue
                delivered = await self.channels["email"].send(
                    email, message, subject=subject
                ) and delivered

        return delivered
