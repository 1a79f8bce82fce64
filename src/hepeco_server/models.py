from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, conint
from pydantic.alias_generators import to_camel


PaymentMethod = Literal["mpamba", "airtel", "bank"]


class CamelModel(BaseModel):
    """Serialises as camelCase, accepts either camelCase or snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    FRAUD_SUSPECTED = "fraud_suspected"


# -----------------------------
# Quotes
# -----------------------------
class Quote(CamelModel):
    service: str = Field(..., example="basic_website")
    timeline_days: int = Field(..., example=7)
    base_price: conint(ge=0) = Field(..., example=250000)
    surcharge: conint(ge=0) = Field(..., example=62500)
    total: conint(ge=0) = Field(..., example=312500)


class QuoteLeadCreate(CamelModel):
    name: str = Field(..., min_length=1, example="Chikondi Banda")
    phone: str = Field(..., min_length=1, example="0991234567")
    email: str = Field("", example="chikondi@example.com")
    service: str = Field(..., min_length=1, example="business_website")
    timeline: Union[int, str] = Field(14, example="7 days")
    budget: conint(ge=0) = Field(0, example=400000)
    message: str = Field("", example="Need a site for my shop")


class QuoteLead(CamelModel):
    id: str = Field(..., example="QUO5F3A9C21B7D4")
    name: str
    phone: str
    email: str = ""
    service: str
    timeline_days: int
    budget: int = 0
    message: str = ""
    status: Literal["new"] = "new"
    created_at: datetime
    estimated_price: int = Field(..., example=562500)


# -----------------------------
# Payments
# -----------------------------
class Payment(CamelModel):
    reference: str = Field(..., example="HEC9F2B61D0A4C3")
    amount: conint(gt=0) = Field(..., example=450000)
    phone: str = Field(..., example="265991234567")
    method: PaymentMethod = "mpamba"
    status: PaymentStatus = PaymentStatus.PENDING
    session_id: Optional[str] = Field(None, exclude=True)
    created_at: datetime
    expires_at: datetime
    verified_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    fraud_reasons: List[str] = []
    verification_attempts: int = 0


class LineItem(CamelModel):
    description: str = Field(..., example="Website Development Service")
    amount: conint(gt=0) = Field(..., example=450000)


class Invoice(CamelModel):
    invoice_number: str = Field(..., example="INV-HEC9F2B61D0A4C3")
    invoice_date: date
    items: List[LineItem]
    subtotal: int
    tax: int = 0
    total: int
    payment_method: PaymentMethod
    status: Literal["paid"] = "paid"


class GeneratePaymentRequest(CamelModel):
    amount: int = Field(..., example=450000)
    phone: str = Field(..., example="099 123 4567")
    method: str = Field("mpamba", example="airtel")
    session_id: str = Field(..., example="session_1718000000000_k3j9x2a1b")


class GeneratedPayment(CamelModel):
    success: bool = True
    reference: str
    qr_data: str = Field(..., example="mpamba:*444*1*0991234567*450000*HEC9F2B61D0A4C3#|1718000000000|3fa2c91b")
    payment: Payment
    instructions: List[str]
    expires_at: datetime


class VerifyPaymentRequest(CamelModel):
    reference: str = Field(..., min_length=1, example="HEC9F2B61D0A4C3")
    phone: Optional[str] = Field(None, example="0991234567")
    session_id: str = Field(..., example="session_1718000000000_k3j9x2a1b")


class VerificationOutcome(CamelModel):
    success: bool
    message: str
    payment: Payment
    invoice: Optional[Invoice] = None


class PaymentLookup(CamelModel):
    success: bool = True
    payment: Payment


class QuoteSaved(CamelModel):
    success: bool = True
    quote_id: str
    message: str = "Quote saved successfully"
    quote: QuoteLead


class PaymentSummary(CamelModel):
    total: int
    by_status: Dict[str, int]
    verified_amount: int


class PaymentListing(CamelModel):
    success: bool = True
    count: int
    summary: PaymentSummary
    payments: List[Payment]


class QuoteListing(CamelModel):
    success: bool = True
    count: int
    by_service: Dict[str, int]
    quotes: List[QuoteLead]


class MobileMoneyNotification(CamelModel):
    reference: str = Field(..., example="HEC9F2B61D0A4C3")
    status: str = Field(..., example="successful")
    transaction_id: Optional[str] = Field(None, example="MP240611.1532.A12345")
    amount: Optional[int] = None
    phone: Optional[str] = None
