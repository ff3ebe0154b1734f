"""
Stay pricing.

The arithmetic lives in two pure functions, `night_prices` and
`build_breakdown`, that work on any objects shaped like the pricing models.
`quote_price` only loads configuration and delegates to them, so a quote
never writes anything and can be requested as often as the UI likes.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.availability import (
    conflicting_dates,
    find_blocked_dates,
    find_conflicting_bookings,
    stay_dates,
    validate_range,
)
from rentals.errors import (
    ApartmentNotFound,
    InvalidDateRange,
    InvalidGuests,
    PricingNotConfigured,
)
from rentals.models import Apartment, ApartmentPricing, SeasonalPrice, WeekdayPrice
from rentals.promo import PromoCheck, validate_promo_code
from rentals.schemas import NightPrice, PriceBreakdown

ZERO = Decimal("0")
ONE = Decimal("1")
CENT = Decimal("0.01")

WEEKLY_MIN_NIGHTS = 7
MONTHLY_MIN_NIGHTS = 30

# The service fee is charged on the accommodation total before the
# weekly/monthly discount is taken off.
SERVICE_FEE_AFTER_DISCOUNT = False


def money(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday (the convention WeekdayPrice is stored in)."""
    return (day.weekday() + 1) % 7


def seasonal_multiplier(
    day: date, seasons: Iterable[SeasonalPrice]
) -> tuple[Decimal, str | None]:
    """
    Multiplier of the active season covering `day`. When seasons overlap the
    highest multiplier wins; on a tie the season that starts first wins.
    """
    best: SeasonalPrice | None = None
    for season in sorted(seasons, key=lambda s: (s.start_date, s.name)):
        if not season.is_active:
            continue
        if not season.start_date <= day <= season.end_date:
            continue
        if best is None or season.price_multiplier > best.price_multiplier:
            best = season
    if best is None:
        return ONE, None
    return Decimal(best.price_multiplier), best.name


def night_prices(
    base_price: Decimal,
    check_in: date,
    check_out: date,
    seasons: Iterable[SeasonalPrice],
    weekday_prices: Iterable[WeekdayPrice],
) -> list[NightPrice]:
    seasons = list(seasons)
    by_weekday = {wp.day_of_week: Decimal(wp.price_multiplier) for wp in weekday_prices}

    nights = []
    for day in stay_dates(check_in, check_out):
        season_mult, season_name = seasonal_multiplier(day, seasons)
        weekday_mult = by_weekday.get(day_of_week(day), ONE)
        nights.append(
            NightPrice(
                date=day,
                base_price=money(base_price),
                seasonal_multiplier=season_mult,
                weekday_multiplier=weekday_mult,
                final_price=money(base_price * season_mult * weekday_mult),
                season_name=season_name,
            )
        )
    return nights


def tier_discount_percent(pricing: ApartmentPricing, nights: int) -> Decimal:
    """Monthly beats weekly; only one tier ever applies."""
    if nights >= MONTHLY_MIN_NIGHTS:
        return Decimal(pricing.monthly_discount_percent or 0)
    if nights >= WEEKLY_MIN_NIGHTS:
        return Decimal(pricing.weekly_discount_percent or 0)
    return ZERO


def build_breakdown(
    pricing: ApartmentPricing,
    nights: list[NightPrice],
    guests: int,
    promo_discount: Decimal = ZERO,
    promo_code: str | None = None,
    promo_message: str | None = None,
) -> PriceBreakdown:
    count = len(nights)
    base_total = sum((n.final_price for n in nights), ZERO)

    weekday_adjustment = sum(
        (money(n.base_price * n.weekday_multiplier) - n.base_price for n in nights),
        ZERO,
    )
    seasonal_adjustment = sum(
        (n.final_price - money(n.base_price * n.weekday_multiplier) for n in nights),
        ZERO,
    )

    discount = money(base_total * tier_discount_percent(pricing, count) / 100)

    extra_guests = max(0, guests - pricing.base_guests)
    extra_guest_fee = money(extra_guests * Decimal(pricing.extra_guest_fee) * count)

    fee_base = base_total - discount if SERVICE_FEE_AFTER_DISCOUNT else base_total
    service_fee = money(fee_base * Decimal(pricing.service_fee_percent) / 100)

    cleaning_fee = money(pricing.cleaning_fee)
    promo_discount = money(promo_discount)

    total = (
        base_total
        - discount
        - promo_discount
        + cleaning_fee
        + service_fee
        + extra_guest_fee
    )

    return PriceBreakdown(
        nights=count,
        base_price_per_night=money(pricing.base_price),
        base_total=money(base_total),
        seasonal_adjustment=money(seasonal_adjustment),
        weekday_adjustment=money(weekday_adjustment),
        discount=discount,
        promo_discount=promo_discount,
        cleaning_fee=cleaning_fee,
        service_fee=service_fee,
        extra_guest_fee=extra_guest_fee,
        total_price=money(max(total, ZERO)),
        currency=pricing.currency,
        security_deposit=money(pricing.security_deposit or 0),
        promo_code=promo_code,
        promo_message=promo_message,
        price_breakdown=nights,
    )


def validate_stay(check_in: date, check_out: date, guests: int) -> int:
    nights = validate_range(check_in, check_out)
    if guests < 1:
        raise InvalidGuests("guests must be at least 1", guests=guests)
    return nights


# ---------------------------------------------------------------------------
# Configuration loading
# ---------------------------------------------------------------------------


@dataclass
class PricedStay:
    breakdown: PriceBreakdown
    promo: PromoCheck | None = None

    @property
    def promo_applied(self) -> bool:
        return self.promo is not None and self.promo.valid


async def find_pricing(
    session: AsyncSession, apartment_id: UUID
) -> ApartmentPricing | None:
    return await session.scalar(
        select(ApartmentPricing).where(ApartmentPricing.apartment_id == apartment_id)
    )


async def load_pricing(session: AsyncSession, apartment_id: UUID) -> ApartmentPricing:
    pricing = await find_pricing(session, apartment_id)
    if pricing is None:
        raise PricingNotConfigured(
            "Pricing is not configured for this apartment",
            apartment_id=str(apartment_id),
        )
    return pricing


async def load_multipliers(
    session: AsyncSession, apartment_id: UUID, check_in: date, check_out: date
) -> tuple[list[SeasonalPrice], list[WeekdayPrice]]:
    last_night = check_out - timedelta(days=1)
    seasons = await session.scalars(
        select(SeasonalPrice).where(
            SeasonalPrice.apartment_id == apartment_id,
            SeasonalPrice.is_active.is_(True),
            SeasonalPrice.start_date <= last_night,
            SeasonalPrice.end_date >= check_in,
        )
    )
    weekdays = await session.scalars(
        select(WeekdayPrice).where(WeekdayPrice.apartment_id == apartment_id)
    )
    return list(seasons), list(weekdays)


async def quote_price(
    session: AsyncSession,
    apartment_id: UUID,
    check_in: date,
    check_out: date,
    guests: int,
    promo_code: str | None = None,
    user_id: UUID | None = None,
    today: date | None = None,
) -> PricedStay:
    validate_stay(check_in, check_out, guests)

    if await session.get(Apartment, apartment_id) is None:
        raise ApartmentNotFound("Apartment not found", apartment_id=str(apartment_id))

    pricing = await load_pricing(session, apartment_id)
    seasons, weekdays = await load_multipliers(session, apartment_id, check_in, check_out)
    nights = night_prices(pricing.base_price, check_in, check_out, seasons, weekdays)

    promo = None
    if promo_code:
        base_total = sum((n.final_price for n in nights), ZERO)
        promo = await validate_promo_code(
            session,
            promo_code,
            apartment_id=apartment_id,
            amount=base_total,
            nights=len(nights),
            user_id=user_id,
            today=today,
        )

    breakdown = build_breakdown(
        pricing,
        nights,
        guests,
        promo_discount=promo.discount if promo else ZERO,
        promo_code=promo.promo.code if promo and promo.valid else None,
        promo_message=promo.message if promo else None,
    )
    return PricedStay(breakdown=breakdown, promo=promo)


# ---------------------------------------------------------------------------
# Month calendar
# ---------------------------------------------------------------------------


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First day of the month and first day of the next one."""
    if not 1 <= month <= 12:
        raise InvalidDateRange("month must be between 1 and 12", month=month)
    first = date(year, month, 1)
    return first, first + timedelta(days=calendar.monthrange(year, month)[1])


async def availability_calendar(
    session: AsyncSession, apartment_id: UUID, year: int, month: int
) -> list[dict]:
    """
    One entry per day of the month: whether that night is free and, when it
    is and pricing is configured, what it costs. Taken nights carry no price.
    """
    start, end = month_bounds(year, month)
    if await session.get(Apartment, apartment_id) is None:
        raise ApartmentNotFound("Apartment not found", apartment_id=str(apartment_id))

    bookings = await find_conflicting_bookings(session, apartment_id, start, end)
    blocked = await find_blocked_dates(session, apartment_id, start, end)
    taken = set(
        conflicting_dates(start, end, [(b.check_in, b.check_out) for b in bookings], blocked)
    )

    prices: dict[date, Decimal] = {}
    pricing = await find_pricing(session, apartment_id)
    if pricing is not None:
        seasons, weekdays = await load_multipliers(session, apartment_id, start, end)
        nights = night_prices(pricing.base_price, start, end, seasons, weekdays)
        prices = {n.date: n.final_price for n in nights}

    return [
        {
            "date": day,
            "available": day not in taken,
            "price": None if day in taken else prices.get(day),
        }
        for day in stay_dates(start, end)
    ]
