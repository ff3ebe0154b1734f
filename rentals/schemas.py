from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rentals.availability import MAX_STAY_NIGHTS
from rentals.models import BookingStatus, PaymentStatus


def _check_range(check_in: date, check_out: date) -> None:
    if check_out <= check_in:
        raise ValueError("check_out must be after check_in")
    if (check_out - check_in).days > MAX_STAY_NIGHTS:
        raise ValueError(f"Stay cannot exceed {MAX_STAY_NIGHTS} nights")


class BookingCreate(BaseModel):
    apartment_id: UUID
    check_in: date
    check_out: date
    guests: int = Field(ge=1, le=50)
    promo_code: str | None = Field(default=None, max_length=50)

    contact_name: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=50)
    contact_email: str | None = Field(default=None, max_length=255)
    guest_comment: str | None = Field(default=None, max_length=1000)

    @field_validator("promo_code", mode="after")
    @classmethod
    def normalize_promo_code(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None

    @model_validator(mode="after")
    def validate_date_range(self) -> BookingCreate:
        _check_range(self.check_in, self.check_out)
        return self


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    reason: str | None = Field(default=None, max_length=500)


class BookingResponse(BaseModel):
    id: UUID
    booking_number: str
    apartment_id: UUID
    owner_id: UUID
    user_id: UUID
    check_in: date
    check_out: date
    nights: int
    guests: int
    status: BookingStatus
    payment_status: PaymentStatus

    base_total: Decimal
    seasonal_adjustment: Decimal
    weekday_adjustment: Decimal
    discount: Decimal
    promo_discount: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    extra_guest_fee: Decimal
    total_price: Decimal
    currency: str
    promo_code_id: UUID | None

    contact_name: str | None
    contact_phone: str | None
    contact_email: str | None
    guest_comment: str | None

    canceled_at: datetime | None
    cancel_reason: str | None
    refund_amount: Decimal | None

    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingStats(BaseModel):
    total: int
    pending: int
    confirmed: int
    paid: int
    canceled: int
    completed: int
    refunded: int


class StatusHistoryEntry(BaseModel):
    from_status: BookingStatus | None
    to_status: BookingStatus
    actor_id: UUID | None
    reason: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    apartment_id: UUID | None = None
    status: BookingStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


class NightPrice(BaseModel):
    date: dt.date
    base_price: Decimal
    seasonal_multiplier: Decimal
    weekday_multiplier: Decimal
    final_price: Decimal
    season_name: str | None = None


class PriceBreakdown(BaseModel):
    nights: int
    base_price_per_night: Decimal
    base_total: Decimal
    seasonal_adjustment: Decimal
    weekday_adjustment: Decimal
    discount: Decimal
    promo_discount: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    extra_guest_fee: Decimal
    total_price: Decimal
    currency: str
    security_deposit: Decimal
    promo_code: str | None = None
    promo_message: str | None = None
    price_breakdown: list[NightPrice]


# ---------------------------------------------------------------------------
# Availability / calendar
# ---------------------------------------------------------------------------


class AvailabilityResponse(BaseModel):
    available: bool
    conflicting_dates: list[date] = Field(default_factory=list)
    conflicting_booking_ids: list[UUID] = Field(default_factory=list)


class OccupiedRange(BaseModel):
    """Occupied calendar window; reveals no guest identity."""

    start: date
    end: date  # exclusive
    kind: str  # "booking" | "blocked"


class NextAvailableResponse(BaseModel):
    check_in: date | None
    check_out: date | None


class CalendarDay(BaseModel):
    date: dt.date
    available: bool
    price: Decimal | None = None  # nightly price; None when taken or unpriced


class BlockDatesRequest(BaseModel):
    dates: list[date] = Field(min_length=1, max_length=366)
    reason: str | None = Field(default=None, max_length=255)


class UnblockDatesRequest(BaseModel):
    dates: list[date] = Field(min_length=1, max_length=366)


class BlockedDateResponse(BaseModel):
    date: dt.date
    reason: str | None

    @model_validator(mode="before")
    @classmethod
    def from_orm_row(cls, data):
        # BlockedDate stores the day as `.day` to avoid shadowing `datetime.date`
        if hasattr(data, "day"):
            return {"date": data.day, "reason": data.reason}
        return data


# ---------------------------------------------------------------------------
# Promo codes
# ---------------------------------------------------------------------------


class PromoValidationRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    apartment_id: UUID
    amount: Decimal = Field(gt=0)
    nights: int = Field(ge=1)
    user_id: UUID | None = None


class PromoValidationResponse(BaseModel):
    valid: bool
    discount: Decimal
    reason: str | None = None
