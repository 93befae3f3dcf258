"""API request/response schemas for settlement endpoints."""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# Amounts go out as JSON numbers in major units.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class InitializeRequest(BaseModel):
    """Body of `POST /paystack/initialize`."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(min_length=1, alias="orderId")
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    amount: Decimal = Field(gt=0, decimal_places=2)
    callback_url: str | None = Field(default=None, alias="callbackUrl")


class InitializeResponse(BaseModel):
    success: bool = True
    authorization_url: str
    access_code: str | None = None
    reference: str


class VerifyRequest(BaseModel):
    """Body of `POST /paystack/verify`."""

    reference: str = Field(min_length=1)


class VerifyResponse(BaseModel):
    success: bool
    status: str
    amount: Money
    currency: str | None = None
    reference: str
    paid_at: str | None = None
    channel: str | None = None


class ChargeData(BaseModel):
    """Charge object shared by verify responses and webhook `data`."""

    model_config = ConfigDict(extra="ignore")

    reference: str = Field(min_length=1)
    amount: int = Field(ge=0)
    status: str | None = None
    currency: str | None = None
    channel: str | None = None
    paid_at: str | None = None
    # Paystack sends an empty string when no metadata was attached.
    metadata: dict | str | None = None

    @property
    def order_id(self) -> str | None:
        if not isinstance(self.metadata, dict):
            return None
        value = self.metadata.get("order_id")
        if value is None or value == "":
            return None
        return str(value)


class WebhookEvent(BaseModel):
    """Raw webhook envelope; `data` is parsed only for charge events."""

    model_config = ConfigDict(extra="ignore")

    event: str = Field(min_length=1)
    data: dict = Field(default_factory=dict)


class WebhookAck(BaseModel):
    received: bool = True


class TransactionStats(BaseModel):
    """Aggregates read by the accountant and admin transaction dashboards."""

    total_revenue: Money
    total_transactions: int
    success_rate: float
    average_amount: Money
    today_revenue: Money
    today_count: int
    pending_count: int
    failed_count: int
    total_commission: Money
    today_commission: Money
    payment_methods: dict[str, int]
