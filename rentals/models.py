from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from rentals.db import Base


def _now() -> datetime:
    return datetime.now(UTC)


class ApartmentStatus(StrEnum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"  # only published apartments can be booked
    HIDDEN = "HIDDEN"
    ARCHIVED = "ARCHIVED"


class BookingStatus(StrEnum):
    PENDING = "PENDING"  # just created, awaiting owner confirmation
    CONFIRMED = "CONFIRMED"  # owner accepted, awaiting payment
    PAID = "PAID"  # payment captured
    CANCELED = "CANCELED"  # canceled by guest, owner or admin
    COMPLETED = "COMPLETED"  # stay finished
    REFUNDED = "REFUNDED"  # payment returned in full


# Statuses that occupy the calendar
ACTIVE_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.PAID}
)


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    REFUNDED = "REFUNDED"


class PromoCodeType(StrEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


def _money() -> Numeric:
    return Numeric(10, 2)


class Apartment(Base):
    """Read-only mirror of the listing; owned by the apartment workflow."""

    __tablename__ = "apartments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(index=True)
    title: Mapped[str] = mapped_column(String(255), default="")
    status: Mapped[ApartmentStatus] = mapped_column(
        SQLEnum(ApartmentStatus), default=ApartmentStatus.DRAFT
    )
    max_guests: Mapped[int] = mapped_column(Integer, default=2)
    min_nights: Mapped[int] = mapped_column(Integer, default=1)
    max_nights: Mapped[int] = mapped_column(Integer, default=30)


class ApartmentPricing(Base):
    __tablename__ = "apartment_pricing"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    apartment_id: Mapped[UUID] = mapped_column(
        ForeignKey("apartments.id"), unique=True
    )
    base_price: Mapped[Decimal] = mapped_column(_money())
    currency: Mapped[str] = mapped_column(String(3), default="RUB")
    cleaning_fee: Mapped[Decimal] = mapped_column(_money(), default=Decimal("0"))
    service_fee_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0")
    )
    security_deposit: Mapped[Decimal] = mapped_column(
        _money(), default=Decimal("0")
    )
    weekly_discount_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0")
    )
    monthly_discount_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0")
    )
    extra_guest_fee: Mapped[Decimal] = mapped_column(
        _money(), default=Decimal("0")
    )  # per extra guest per night
    base_guests: Mapped[int] = mapped_column(Integer, default=2)


class SeasonalPrice(Base):
    __tablename__ = "seasonal_prices"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    apartment_id: Mapped[UUID] = mapped_column(
        ForeignKey("apartments.id"), index=True
    )
    name: Mapped[str] = mapped_column(String(100))
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)  # inclusive
    price_multiplier: Mapped[Decimal] = mapped_column(Numeric(6, 3))
    is_active: Mapped[bool] = mapped_column(default=True)


class WeekdayPrice(Base):
    __tablename__ = "weekday_prices"
    __table_args__ = (UniqueConstraint("apartment_id", "day_of_week"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    apartment_id: Mapped[UUID] = mapped_column(ForeignKey("apartments.id"))
    day_of_week: Mapped[int] = mapped_column(Integer)  # 0 = Sunday ... 6 = Saturday
    price_multiplier: Mapped[Decimal] = mapped_column(Numeric(6, 3))


class BlockedDate(Base):
    __tablename__ = "blocked_dates"
    __table_args__ = (UniqueConstraint("apartment_id", "date"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    apartment_id: Mapped[UUID] = mapped_column(ForeignKey("apartments.id"))
    day: Mapped[date] = mapped_column("date", Date)
    reason: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True)  # upper-case
    type: Mapped[PromoCodeType] = mapped_column(SQLEnum(PromoCodeType))
    value: Mapped[Decimal] = mapped_column(_money())

    min_nights: Mapped[int | None] = mapped_column(Integer)
    min_amount: Mapped[Decimal | None] = mapped_column(_money())
    max_discount: Mapped[Decimal | None] = mapped_column(_money())
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)

    usage_limit: Mapped[int | None] = mapped_column(Integer)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    per_user_limit: Mapped[int | None] = mapped_column(Integer)

    apartment_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(default=True)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    booking_number: Mapped[str] = mapped_column(String(32), unique=True)

    apartment_id: Mapped[UUID] = mapped_column(
        ForeignKey("apartments.id"), index=True
    )
    owner_id: Mapped[UUID] = mapped_column(index=True)  # snapshot at booking time
    user_id: Mapped[UUID] = mapped_column(index=True)  # the guest

    check_in: Mapped[date] = mapped_column(Date)
    check_out: Mapped[date] = mapped_column(Date)  # exclusive
    nights: Mapped[int] = mapped_column(Integer)
    guests: Mapped[int] = mapped_column(Integer)

    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus), default=BookingStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.PENDING
    )

    # Price snapshot
    base_total: Mapped[Decimal] = mapped_column(_money())
    seasonal_adjustment: Mapped[Decimal] = mapped_column(
        _money(), default=Decimal("0")
    )
    weekday_adjustment: Mapped[Decimal] = mapped_column(
        _money(), default=Decimal("0")
    )
    discount: Mapped[Decimal] = mapped_column(_money(), default=Decimal("0"))
    promo_discount: Mapped[Decimal] = mapped_column(_money(), default=Decimal("0"))
    cleaning_fee: Mapped[Decimal] = mapped_column(_money(), default=Decimal("0"))
    service_fee: Mapped[Decimal] = mapped_column(_money(), default=Decimal("0"))
    extra_guest_fee: Mapped[Decimal] = mapped_column(
        _money(), default=Decimal("0")
    )
    total_price: Mapped[Decimal] = mapped_column(_money())
    currency: Mapped[str] = mapped_column(String(3))
    promo_code_id: Mapped[UUID | None] = mapped_column(ForeignKey("promo_codes.id"))

    contact_name: Mapped[str | None] = mapped_column(String(255))
    contact_phone: Mapped[str | None] = mapped_column(String(50))
    contact_email: Mapped[str | None] = mapped_column(String(255))
    guest_comment: Mapped[str | None] = mapped_column(Text)

    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    refund_amount: Mapped[Decimal | None] = mapped_column(_money())

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )


class BookingStatusHistory(Base):
    """Append-only audit trail; one row per status change."""

    __tablename__ = "booking_status_history"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    booking_id: Mapped[UUID] = mapped_column(ForeignKey("bookings.id"), index=True)
    from_status: Mapped[BookingStatus | None] = mapped_column(SQLEnum(BookingStatus))
    to_status: Mapped[BookingStatus] = mapped_column(SQLEnum(BookingStatus))
    actor_id: Mapped[UUID | None] = mapped_column()
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
