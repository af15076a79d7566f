import json
import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.encryption import reveal
from app.core.exceptions import AuthorizeNetError, PaymentConfigurationError
from app.db.enums import PaymentEnvironment
from app.models.payment_credentials import PaymentCredentials

logger = logging.getLogger(__name__)

API_URLS = {
    PaymentEnvironment.SANDBOX: "https://apitest.authorize.net/xml/v1/request.api",
    PaymentEnvironment.LIVE: "https://api.authorize.net/xml/v1/request.api",
}

HOSTED_URLS = {
    PaymentEnvironment.SANDBOX: "https://test.authorize.net/payment/payment",
    PaymentEnvironment.LIVE: "https://accept.authorize.net/payment/payment",
}

APPROVED = "1"
DECLINED = "2"


@dataclass(frozen=True)
class MerchantCredentials:
    api_login_id: str
    transaction_key: str
    signature_key: str | None
    environment: PaymentEnvironment


@dataclass(frozen=True)
class CardDetails:
    number: str
    expiration_date: str  # MMYY
    cvv: str
    cardholder_name: str | None = None
    billing_address: dict | None = None

    @property
    def last_four(self) -> str:
        return self.number[-4:]


@dataclass(frozen=True)
class ChargeResult:
    approved: bool
    response_code: str | None
    transaction_id: str | None
    account_type: str | None
    error_code: str | None = None
    error_message: str | None = None


async def load_merchant_credentials(session: AsyncSession) -> MerchantCredentials:
    """Decrypted keys of the single active credentials row."""
    row = await session.scalar(
        select(PaymentCredentials).where(PaymentCredentials.is_active.is_(True)).limit(1)
    )
    if not row:
        raise PaymentConfigurationError("Payment system not configured")

    try:
        transaction_key = reveal(row.transaction_key_encrypted)
        signature_key = (
            reveal(row.signature_key_encrypted) if row.signature_key_encrypted else None
        )
    except ValueError:
        logger.error("Stored Authorize.Net keys failed to decrypt")
        raise PaymentConfigurationError("Payment configuration error") from None

    return MerchantCredentials(
        api_login_id=row.api_login_id,
        transaction_key=transaction_key,
        signature_key=signature_key,
        environment=row.environment,
    )


def _bill_to(card: CardDetails) -> dict:
    name_parts = (card.cardholder_name or "").split()
    first_name = name_parts[0] if name_parts else ""
    last_name = " ".join(name_parts[1:])
    address = card.billing_address or {}

    return {
        "firstName": address.get("first_name") or first_name,
        "lastName": address.get("last_name") or last_name,
        "address": address.get("address", ""),
        "city": address.get("city", ""),
        "state": address.get("state", ""),
        "zip": address.get("zip", ""),
        "country": address.get("country") or "US",
    }


class AuthorizeNetClient:
    """
    JSON API client for the two Authorize.Net calls we make.

    `transport` lets tests swap in an httpx.MockTransport.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    @staticmethod
    def hosted_url(environment: PaymentEnvironment) -> str:
        return HOSTED_URLS[PaymentEnvironment(environment)]

    async def _post(self, environment: PaymentEnvironment, body: dict) -> dict:
        url = API_URLS[PaymentEnvironment(environment)]

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            logger.error(f"Authorize.Net request failed: {exc}")
            raise AuthorizeNetError(f"Payment gateway unreachable: {exc}") from exc

        if response.is_error:
            raise AuthorizeNetError(
                f"Payment gateway error: {response.status_code}",
                status=response.status_code,
            )

        # Authorize.Net prefixes its JSON with a UTF-8 byte order mark
        try:
            return json.loads(response.content.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise AuthorizeNetError("Invalid response from payment gateway") from None

    @staticmethod
    def _merchant(credentials: MerchantCredentials) -> dict:
        return {
            "name": credentials.api_login_id,
            "transactionKey": credentials.transaction_key,
        }

    async def get_hosted_payment_token(
        self,
        credentials: MerchantCredentials,
        *,
        ref_id: str,
        amount: Decimal,
        description: str | None,
        email: str | None,
        return_url: str,
        cancel_url: str,
    ) -> str:
        """Accept Hosted form token for the gateway's own payment page."""
        body = {
            "getHostedPaymentPageRequest": {
                "merchantAuthentication": self._merchant(credentials),
                "refId": ref_id,
                "transactionRequest": {
                    "transactionType": "authCaptureTransaction",
                    "amount": f"{amount:.2f}",
                    "order": {
                        "invoiceNumber": ref_id,
                        "description": description or "Prescription Payment",
                    },
                    "customer": {"email": email or ""},
                },
                "hostedPaymentSettings": {
                    "setting": [
                        {
                            "settingName": "hostedPaymentReturnOptions",
                            "settingValue": json.dumps({
                                "showReceipt": False,
                                "url": return_url,
                                "urlText": "Return to site",
                                "cancelUrl": cancel_url,
                                "cancelUrlText": "Cancel Payment",
                            }),
                        },
                        {
                            "settingName": "hostedPaymentButtonOptions",
                            "settingValue": json.dumps({"text": "Pay Now"}),
                        },
                        {
                            "settingName": "hostedPaymentBillingAddressOptions",
                            "settingValue": json.dumps({"show": True, "required": True}),
                        },
                        {
                            "settingName": "hostedPaymentPaymentOptions",
                            "settingValue": json.dumps({
                                "cardCodeRequired": True,
                                "showCreditCard": True,
                                "showBankAccount": False,
                            }),
                        },
                    ]
                },
            }
        }

        data = await self._post(credentials.environment, body)

        messages = data.get("messages") or {}
        if messages.get("resultCode") != "Ok" or not data.get("token"):
            text = (messages.get("message") or [{}])[0].get("text")
            raise AuthorizeNetError(text or "Failed to get hosted payment token")

        return data["token"]

    async def charge_card(
        self,
        credentials: MerchantCredentials,
        *,
        ref_id: str,
        amount: Decimal,
        card: CardDetails,
        description: str | None,
        email: str | None,
    ) -> ChargeResult:
        body = {
            "createTransactionRequest": {
                "merchantAuthentication": self._merchant(credentials),
                "refId": ref_id,
                "transactionRequest": {
                    "transactionType": "authCaptureTransaction",
                    "amount": f"{amount:.2f}",
                    "payment": {
                        "creditCard": {
                            "cardNumber": card.number,
                            "expirationDate": card.expiration_date,
                            "cardCode": card.cvv,
                        }
                    },
                    "order": {
                        "invoiceNumber": ref_id,
                        "description": description or "Prescription Payment",
                    },
                    "customer": {"email": email or ""},
                    "billTo": _bill_to(card),
                },
            }
        }

        data = await self._post(credentials.environment, body)

        messages = data.get("messages") or {}
        tx = data.get("transactionResponse") or {}
        response_code = tx.get("responseCode")

        if messages.get("resultCode") == "Ok" and response_code == APPROVED:
            return ChargeResult(
                approved=True,
                response_code=response_code,
                transaction_id=tx.get("transId"),
                account_type=tx.get("accountType"),
            )

        error = (tx.get("errors") or [{}])[0]
        text = error.get("errorText") or (messages.get("message") or [{}])[0].get("text")

        return ChargeResult(
            approved=False,
            response_code=response_code,
            transaction_id=tx.get("transId"),
            account_type=tx.get("accountType"),
            error_code=error.get("errorCode"),
            error_message=text or "Payment declined",
        )
