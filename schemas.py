"""Request and response models for the ticketing API.

Requests are validated here, before any database access; a failure surfaces
as ``ValidationFailed`` with per-field detail.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DiscountType(str, Enum):
    percentage = "percentage"
    amount = "amount"


class CheckInMethod(str, Enum):
    qr_scan = "qr_scan"
    manual = "manual"


class PaymentMethod(str, Enum):
    card = "card"
    upi = "upi"
    netbanking = "netbanking"
    wallet = "wallet"


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _naive_utc(value):
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ==================== TICKETS ====================

class PurchaseTicketRequest(BaseModel):
    ticket_type_id: int
    event_id: int
    quantity: int = Field(ge=1)
    discount_code: Optional[str] = None
    transaction_id: str = Field(min_length=1)

    @field_validator("discount_code", mode="before")
    @classmethod
    def _blank_discount(cls, value):
        return _blank_to_none(value)


class DiscountQuoteOut(BaseModel):
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: int
    discount_amount: int
    original_price: int
    discounted_price: int


class PurchaseResult(BaseModel):
    ticket_ids: List[str]
    unit_price: int
    discount_amount: int = 0
    total_amount: int


class ValidateDiscountRequest(BaseModel):
    code: str = Field(min_length=1)
    ticket_type_id: int
    event_id: int


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_type_id: int
    event_id: int
    user_id: str
    transaction_id: str
    status: str
    qr_code: str
    purchase_date: datetime
    check_in_date: Optional[datetime] = None
    checked_in_by: Optional[str] = None


class UserTicketOut(TicketOut):
    ticket_type_name: str
    ticket_type_description: Optional[str] = None
    price: int


# ==================== ATTENDANCE ====================

class CheckInRequest(BaseModel):
    ticket_id: str = Field(min_length=1)
    event_id: int
    qr_code: str = Field(min_length=1)
    check_in_method: CheckInMethod = CheckInMethod.qr_scan
    check_in_location: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("check_in_location", "notes", mode="before")
    @classmethod
    def _blank_optional(cls, value):
        return _blank_to_none(value)


class CheckOutRequest(BaseModel):
    ticket_id: str = Field(min_length=1)
    event_id: int
    notes: Optional[str] = None


class AttendanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    user_id: str
    ticket_id: str
    checked_in_at: datetime
    checked_in_by: str
    check_in_method: str
    check_in_location: Optional[str] = None
    verification_status: str
    notes: Optional[str] = None


class AttendanceLogEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    attendance_id: int
    action: str
    timestamp: datetime
    processed_by: Optional[str] = None
    notes: Optional[str] = None


# ==================== ACCESS CODES ====================

class AccessCodeRequest(BaseModel):
    event_id: int
    ticket_id: Optional[str] = None
    expiration_minutes: int = Field(default=15, ge=5, le=60)

    @field_validator("ticket_id", mode="before")
    @classmethod
    def _blank_ticket(cls, value):
        return _blank_to_none(value)


class VerifyAccessCodeRequest(BaseModel):
    event_id: int
    qr_code: str = Field(min_length=1)


# ==================== TRANSACTIONS ====================

class TransactionCreate(BaseModel):
    event_id: int
    amount: int = Field(gt=0)
    payment_method: PaymentMethod
    gateway_transaction_id: str = Field(min_length=1)
    gateway_response: Optional[str] = None
    card_last4: Optional[str] = Field(default=None, pattern=r"^[0-9]{4}$")
    card_brand: Optional[str] = None
    upi_id: Optional[str] = None
    bank_name: Optional[str] = None
    wallet_name: Optional[str] = None
    payment_processor: str = Field(min_length=1)
    receipt_url: Optional[str] = None


class RefundRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1)
    gateway_refund_id: Optional[str] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    event_id: int
    amount: int
    payment_method: str
    status: str
    gateway_transaction_id: Optional[str] = None
    refund_status: str
    refunded_amount: int
    created_at: datetime


# ==================== EVENTS ====================

class CoordinatorIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=5, max_length=20)
    email: Optional[str] = None
    user_id: Optional[str] = None

    @field_validator("email", "user_id", mode="before")
    @classmethod
    def _blank_optional(cls, value):
        return _blank_to_none(value)


class CoordinatorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: str
    email: Optional[str] = None
    user_id: Optional[str] = None


class EventCategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None


class EventCategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None


class EventCoordinatorsUpdate(BaseModel):
    coordinators: List[CoordinatorIn] = []


class EventCategoriesUpdate(BaseModel):
    category_ids: List[int] = []


class EventCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = ""
    hosted_by: Optional[str] = None
    location: str = Field(min_length=1, max_length=200)
    start_date: datetime
    end_date: datetime
    entry_fee: int = Field(default=0, ge=0)
    coordinators: List[CoordinatorIn] = []
    categories: List[int] = []

    @field_validator("start_date", "end_date")
    @classmethod
    def _to_utc(cls, value):
        return _naive_utc(value)

    @model_validator(mode="after")
    def _check_ends_after_starts(self):
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class EventUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    hosted_by: Optional[str] = None
    location: Optional[str] = Field(default=None, min_length=1, max_length=200)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    entry_fee: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _to_utc(cls, value):
        return _naive_utc(value)

    @model_validator(mode="after")
    def _check_ends_after_starts(self):
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    hosted_by: Optional[str] = None
    location: str
    start_date: datetime
    end_date: datetime
    entry_fee: int
    is_active: bool
    created_at: datetime


class EventDetailOut(EventOut):
    coordinators: List[CoordinatorOut] = []
    categories: List[EventCategoryOut] = []


class TicketTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    price: int = Field(ge=0)
    available_quantity: Optional[int] = Field(default=None, ge=0)
    max_per_user: Optional[int] = Field(default=None, ge=1)


class TicketTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    name: str
    description: Optional[str] = None
    price: int
    available_quantity: Optional[int] = None
    max_per_user: Optional[int] = None
    is_active: bool


class DiscountCodeCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None
    ticket_type_id: Optional[int] = None
    discount_type: DiscountType
    discount_value: int = Field(gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _to_utc(cls, value):
        return _naive_utc(value)

    @model_validator(mode="after")
    def _check_value(self):
        if self.discount_type == DiscountType.percentage and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class DiscountCodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    description: Optional[str] = None
    event_id: Optional[int] = None
    ticket_type_id: Optional[int] = None
    discount_type: DiscountType
    discount_value: int
    max_uses: Optional[int] = None
    current_uses: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool


class DashboardStats(BaseModel):
    total_events: int
    active_events: int
    total_tickets: int
    tickets_by_status: dict
    total_check_ins: int
    revenue: int
    refunded: int
