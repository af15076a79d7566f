from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.db.enums import OrderProgress, PaymentStatus


# GENERATE LINK
class GenerateLinkRequest(BaseModel):
    """
    Request body for creating a payment link for a prescription.
    """
    prescription_id: UUID
    consultation_fee_cents: int = Field(0, ge=0)
    medication_cost_cents: int = Field(0, ge=0)
    shipping_fee_cents: int = Field(0, ge=0)
    description: str | None = Field(None, max_length=500)
    patient_email: str | None = Field(None, max_length=255)
    send_email: bool = False


class GenerateLinkResponse(BaseModel):
    success: bool = True
    payment_url: str
    payment_token: str
    transaction_id: UUID
    expires_at: datetime
    email_sent: bool


# HOSTED PAGE
class HostedTokenRequest(BaseModel):
    payment_token: str = Field(..., min_length=1)


class HostedTokenResponse(BaseModel):
    success: bool = True
    form_token: str
    payment_url: str


# DIRECT CARD PAYMENT
class BillingAddress(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = "US"


class ProcessPaymentRequest(BaseModel):
    payment_token: str = Field(..., min_length=1)
    card_number: str
    expiration_date: str = Field(
        ...,
        pattern=r"^\d{4}$",
        description="MMYY",
        json_schema_extra={"example": "1228"},
    )
    cvv: str = Field(..., pattern=r"^\d{3,4}$")
    cardholder_name: str | None = Field(None, max_length=100)
    billing_address: BillingAddress | None = None

    @field_validator("card_number")
    @classmethod
    def normalize_card_number(cls, value: str) -> str:
        digits = "".join(value.split())
        if not digits.isdigit() or not 13 <= len(digits) <= 19:
            raise ValueError("Invalid card number")
        return digits


class ProcessPaymentResponse(BaseModel):
    success: bool = True
    transaction_id: str | None
    amount: str


# PAYMENT PAGE STATUS
class PaymentStatusResponse(BaseModel):
    payment_status: PaymentStatus
    order_progress: OrderProgress
    total_amount_cents: int
    description: str | None = None
    patient_name: str | None = None
    provider_name: str | None = None
    payment_link_expires_at: datetime | None = None
    paid_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
