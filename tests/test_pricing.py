"""
Tests for rentals/pricing.py.

The arithmetic is exercised through the pure functions with transient ORM
objects; quote_price is exercised against the in-memory database.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from rentals import pricing
from rentals.errors import (
    ApartmentNotFound,
    InvalidDateRange,
    InvalidGuests,
    PricingNotConfigured,
)
from rentals.models import BlockedDate
from rentals.pricing import (
    build_breakdown,
    day_of_week,
    night_prices,
    quote_price,
    seasonal_multiplier,
    tier_discount_percent,
)

from .factories import (
    APARTMENT_ID,
    CHECK_IN,
    CHECK_OUT,
    TODAY,
    d,
    make_apartment,
    make_booking,
    make_pricing,
    make_promo,
    make_season,
    make_weekday,
)


def _quote(pricing_cfg, check_in, check_out, guests, seasons=(), weekdays=(), **kw):
    nights = night_prices(pricing_cfg.base_price, check_in, check_out, seasons, weekdays)
    return build_breakdown(pricing_cfg, nights, guests, **kw)


# ---------------------------------------------------------------------------
# Reference quote
# ---------------------------------------------------------------------------


class TestReferenceQuote:
    def test_four_nights_four_guests(self):
        bd = _quote(make_pricing(), CHECK_IN, CHECK_OUT, guests=4)
        assert bd.nights == 4
        assert bd.base_total == Decimal("12000.00")
        assert bd.discount == Decimal("0.00")
        assert bd.extra_guest_fee == Decimal("4000.00")
        assert bd.service_fee == Decimal("1200.00")
        assert bd.cleaning_fee == Decimal("1500.00")
        assert bd.total_price == Decimal("18700.00")
        assert bd.currency == "RUB"

    def test_security_deposit_is_not_part_of_total(self):
        bd = _quote(make_pricing(security_deposit=Decimal("9999")), CHECK_IN, CHECK_OUT, 4)
        assert bd.security_deposit == Decimal("9999.00")
        assert bd.total_price == Decimal("18700.00")

    def test_no_extra_guest_fee_up_to_base_guests(self):
        bd = _quote(make_pricing(), CHECK_IN, CHECK_OUT, guests=2)
        assert bd.extra_guest_fee == Decimal("0.00")
        assert bd.total_price == Decimal("14700.00")

    def test_identical_inputs_give_identical_breakdowns(self):
        seasons = [make_season(d(0), d(1), "1.25")]
        a = _quote(make_pricing(), CHECK_IN, CHECK_OUT, 3, seasons=seasons)
        b = _quote(make_pricing(), CHECK_IN, CHECK_OUT, 3, seasons=seasons)
        assert a == b


# ---------------------------------------------------------------------------
# Per-night prices
# ---------------------------------------------------------------------------


class TestNightPrices:
    def test_one_entry_per_night_checkout_excluded(self):
        nights = night_prices(Decimal("3000"), CHECK_IN, CHECK_OUT, [], [])
        assert [n.date for n in nights] == [d(0), d(1), d(2), d(3)]

    def test_sum_of_final_prices_equals_base_total(self):
        cfg = make_pricing(base_price=Decimal("999.99"))
        seasons = [make_season(d(1), d(2), "1.15")]
        weekdays = [make_weekday(5, "1.333")]  # Friday
        bd = _quote(cfg, CHECK_IN, d(6), 2, seasons=seasons, weekdays=weekdays)
        assert sum(n.final_price for n in bd.price_breakdown) == bd.base_total

    def test_final_price_rounded_to_cents(self):
        nights = night_prices(
            Decimal("999.99"), CHECK_IN, d(1), [make_season(CHECK_IN, CHECK_IN, "1.15")], []
        )
        assert nights[0].final_price == Decimal("1149.99")

    def test_adjustments_add_up(self):
        seasons = [make_season(d(2), d(3), "1.5", name="Peak")]
        weekdays = [make_weekday(6, "1.2"), make_weekday(0, "1.2")]
        bd = _quote(make_pricing(), CHECK_IN, d(7), 2, seasons=seasons, weekdays=weekdays)
        plain = bd.base_price_per_night * bd.nights
        assert plain + bd.seasonal_adjustment + bd.weekday_adjustment == bd.base_total


class TestSeasonalMultiplier:
    def test_no_season_is_neutral(self):
        assert seasonal_multiplier(CHECK_IN, []) == (Decimal("1"), None)

    def test_end_date_is_inclusive(self):
        season = make_season(d(-10), CHECK_IN, "1.3", name="June")
        assert seasonal_multiplier(CHECK_IN, [season]) == (Decimal("1.3"), "June")
        assert seasonal_multiplier(d(1), [season]) == (Decimal("1"), None)

    def test_overlapping_seasons_highest_multiplier_wins(self):
        seasons = [
            make_season(d(-30), d(30), "1.2", name="Summer"),
            make_season(d(0), d(2), "1.5", name="Festival"),
            make_season(d(-5), d(5), "0.9", name="Promo week"),
        ]
        assert seasonal_multiplier(CHECK_IN, seasons) == (Decimal("1.5"), "Festival")

    def test_tie_goes_to_earliest_start(self):
        seasons = [
            make_season(d(0), d(3), "1.4", name="Later"),
            make_season(d(-3), d(3), "1.4", name="Earlier"),
        ]
        assert seasonal_multiplier(CHECK_IN, seasons)[1] == "Earlier"

    def test_inactive_season_ignored(self):
        season = make_season(d(0), d(3), "2.0", is_active=False)
        assert seasonal_multiplier(CHECK_IN, [season]) == (Decimal("1"), None)

    def test_season_name_reported_per_night(self):
        seasons = [make_season(d(2), d(10), "1.1", name="High")]
        nights = night_prices(Decimal("100"), CHECK_IN, CHECK_OUT, seasons, [])
        assert [n.season_name for n in nights] == [None, None, "High", "High"]


class TestWeekdayMultiplier:
    @pytest.mark.parametrize(
        ("day", "expected"),
        [
            (date(2026, 7, 5), 0),  # Sunday
            (date(2026, 7, 6), 1),  # Monday
            (date(2026, 7, 1), 3),  # Wednesday
            (date(2026, 7, 4), 6),  # Saturday
        ],
    )
    def test_day_of_week_counts_from_sunday(self, day, expected):
        assert day_of_week(day) == expected

    def test_weekend_multiplier_applies_to_matching_nights(self):
        weekdays = [make_weekday(6, "1.5"), make_weekday(0, "1.5")]
        # Fri, Sat, Sun nights
        nights = night_prices(Decimal("3000"), date(2026, 7, 3), date(2026, 7, 6), [], weekdays)
        assert [n.final_price for n in nights] == [
            Decimal("3000.00"),
            Decimal("4500.00"),
            Decimal("4500.00"),
        ]

    def test_weekday_adjustment_reported(self):
        bd = _quote(
            make_pricing(),
            date(2026, 7, 4),
            date(2026, 7, 6),
            2,
            weekdays=[make_weekday(0, "1.5")],
        )
        assert bd.base_total == Decimal("7500.00")
        assert bd.weekday_adjustment == Decimal("1500.00")
        assert bd.seasonal_adjustment == Decimal("0.00")

    def test_season_and_weekday_multiply(self):
        nights = night_prices(
            Decimal("1000"),
            date(2026, 7, 5),
            date(2026, 7, 6),
            [make_season(date(2026, 7, 1), date(2026, 7, 31), "1.2")],
            [make_weekday(0, "1.5")],
        )
        assert nights[0].final_price == Decimal("1800.00")


# ---------------------------------------------------------------------------
# Tiered discounts and fees
# ---------------------------------------------------------------------------


class TestTierDiscount:
    def test_four_nights_no_discount(self):
        bd = _quote(make_pricing(), CHECK_IN, d(4), 2)
        assert bd.discount == Decimal("0.00")

    def test_seven_nights_weekly_discount(self):
        bd = _quote(make_pricing(), CHECK_IN, d(7), 2)
        assert bd.base_total == Decimal("21000.00")
        assert bd.discount == Decimal("2100.00")

    def test_thirty_nights_monthly_not_weekly(self):
        bd = _quote(make_pricing(), CHECK_IN, d(30), 2)
        assert bd.base_total == Decimal("90000.00")
        assert bd.discount == Decimal("18000.00")

    def test_tier_percent_thresholds(self):
        cfg = make_pricing()
        assert tier_discount_percent(cfg, 6) == Decimal("0")
        assert tier_discount_percent(cfg, 7) == Decimal("10")
        assert tier_discount_percent(cfg, 29) == Decimal("10")
        assert tier_discount_percent(cfg, 30) == Decimal("20")


class TestServiceFee:
    def test_service_fee_charged_before_tier_discount(self):
        assert pricing.SERVICE_FEE_AFTER_DISCOUNT is False
        bd = _quote(make_pricing(), CHECK_IN, d(7), 2)
        # 10% of 21000, not of 21000 - 2100
        assert bd.service_fee == Decimal("2100.00")
        assert bd.total_price == Decimal("21000") - Decimal("2100") + Decimal("1500") + Decimal("2100")

    def test_service_fee_after_discount_when_switched(self, monkeypatch):
        monkeypatch.setattr(pricing, "SERVICE_FEE_AFTER_DISCOUNT", True)
        bd = _quote(make_pricing(), CHECK_IN, d(7), 2)
        assert bd.service_fee == Decimal("1890.00")


class TestPromoInBreakdown:
    def test_promo_discount_subtracted(self):
        bd = _quote(
            make_pricing(),
            CHECK_IN,
            CHECK_OUT,
            4,
            promo_discount=Decimal("2000"),
            promo_code="SUMMER",
            promo_message="50% off",
        )
        assert bd.promo_discount == Decimal("2000.00")
        assert bd.total_price == Decimal("16700.00")
        assert bd.promo_code == "SUMMER"

    def test_total_never_negative(self):
        cfg = make_pricing(
            base_price=Decimal("100"),
            cleaning_fee=Decimal("0"),
            service_fee_percent=Decimal("0"),
        )
        bd = _quote(cfg, CHECK_IN, d(1), 1, promo_discount=Decimal("500"))
        assert bd.total_price == Decimal("0.00")


class TestValidateStay:
    def test_reversed_range_rejected(self):
        with pytest.raises(InvalidDateRange):
            pricing.validate_stay(CHECK_OUT, CHECK_IN, 2)

    def test_zero_nights_rejected(self):
        with pytest.raises(InvalidDateRange):
            pricing.validate_stay(CHECK_IN, CHECK_IN, 2)

    def test_zero_guests_rejected(self):
        with pytest.raises(InvalidGuests):
            pricing.validate_stay(CHECK_IN, CHECK_OUT, 0)


# ---------------------------------------------------------------------------
# quote_price (database)
# ---------------------------------------------------------------------------


class TestQuotePrice:
    async def _seed(self, session, *extra):
        session.add(make_apartment())
        await session.flush()
        session.add_all([make_pricing(), *extra])
        await session.commit()

    async def test_reference_quote(self, session):
        await self._seed(session)
        priced = await quote_price(session, APARTMENT_ID, CHECK_IN, CHECK_OUT, 4)
        assert priced.breakdown.total_price == Decimal("18700.00")
        assert priced.promo is None
        assert not priced.promo_applied

    async def test_seasons_and_weekdays_loaded(self, session):
        await self._seed(
            session,
            make_season(d(0), d(0), "2.0", name="Opening"),
            make_season(d(100), d(120), "3.0", name="Far away"),
            make_weekday(4, "1.1"),  # Thursday
        )
        priced = await quote_price(session, APARTMENT_ID, CHECK_IN, CHECK_OUT, 2)
        finals = [n.final_price for n in priced.breakdown.price_breakdown]
        assert finals == [
            Decimal("6000.00"),
            Decimal("3300.00"),
            Decimal("3000.00"),
            Decimal("3000.00"),
        ]

    async def test_capped_percentage_promo(self, session):
        await self._seed(
            session,
            make_promo(code="HALF", value=Decimal("50"), max_discount=Decimal("2000")),
        )
        priced = await quote_price(
            session, APARTMENT_ID, CHECK_IN, CHECK_OUT, 4, promo_code="half", today=TODAY
        )
        assert priced.promo_applied
        assert priced.breakdown.promo_discount == Decimal("2000.00")
        assert priced.breakdown.promo_code == "HALF"
        assert priced.breakdown.total_price == Decimal("16700.00")

    async def test_invalid_promo_keeps_full_price(self, session):
        await self._seed(session, make_promo(code="OLD", end_date=d(-60)))
        priced = await quote_price(
            session, APARTMENT_ID, CHECK_IN, CHECK_OUT, 4, promo_code="OLD", today=TODAY
        )
        assert not priced.promo_applied
        assert priced.breakdown.promo_discount == Decimal("0.00")
        assert priced.breakdown.promo_message == "Promo code has expired"
        assert priced.breakdown.total_price == Decimal("18700.00")

    async def test_quote_does_not_redeem(self, session):
        promo = make_promo(code="ONCE", usage_limit=1)
        await self._seed(session, promo)
        for _ in range(3):
            await quote_price(
                session, APARTMENT_ID, CHECK_IN, CHECK_OUT, 2, promo_code="ONCE", today=TODAY
            )
        await session.refresh(promo)
        assert promo.usage_count == 0

    async def test_missing_pricing(self, session):
        session.add(make_apartment())
        await session.commit()
        with pytest.raises(PricingNotConfigured) as exc:
            await quote_price(session, APARTMENT_ID, CHECK_IN, CHECK_OUT, 2)
        assert exc.value.code == "PRICING_NOT_CONFIGURED"

    async def test_missing_apartment(self, session):
        with pytest.raises(ApartmentNotFound):
            await quote_price(session, APARTMENT_ID, CHECK_IN, CHECK_OUT, 2)

    async def test_invalid_range_rejected_before_lookup(self, session):
        with pytest.raises(InvalidDateRange):
            await quote_price(session, APARTMENT_ID, CHECK_OUT, CHECK_IN, 2)

    async def test_century_long_stay_rejected(self, session):
        await self._seed(session)
        with pytest.raises(InvalidDateRange) as exc:
            await quote_price(session, APARTMENT_ID, date(2026, 1, 1), date(2126, 1, 1), 2)
        assert exc.value.extra["max_nights"] == 365


# ---------------------------------------------------------------------------
# availability_calendar (database)
# ---------------------------------------------------------------------------


class TestAvailabilityCalendar:
    async def _seed(self, session, *extra, priced=True):
        session.add(make_apartment())
        await session.flush()
        rows = [make_pricing()] if priced else []
        session.add_all([*rows, *extra])
        await session.commit()

    async def test_one_entry_per_day_of_month(self, session):
        await self._seed(session)
        days = await pricing.availability_calendar(session, APARTMENT_ID, 2026, 7)
        assert len(days) == 31
        assert days[0]["date"] == date(2026, 7, 1)
        assert days[-1]["date"] == date(2026, 7, 31)
        assert all(day["available"] for day in days)
        assert all(day["price"] == Decimal("3000.00") for day in days)

    async def test_booked_and_blocked_nights_taken(self, session):
        await self._seed(
            session,
            make_booking(),
            BlockedDate(apartment_id=APARTMENT_ID, day=d(10)),
        )
        days = {
            day["date"]: day
            for day in await pricing.availability_calendar(session, APARTMENT_ID, 2026, 7)
        }
        for taken in (d(0), d(1), d(2), d(3), d(10)):
            assert days[taken] == {"date": taken, "available": False, "price": None}
        assert days[CHECK_OUT]["available"]
        assert days[CHECK_OUT]["price"] == Decimal("3000.00")

    async def test_seasonal_price_shown(self, session):
        await self._seed(session, make_season(d(5), d(6), "1.5"))
        days = await pricing.availability_calendar(session, APARTMENT_ID, 2026, 7)
        assert days[5]["price"] == Decimal("4500.00")
        assert days[7]["price"] == Decimal("3000.00")

    async def test_february_of_leap_year(self, session):
        await self._seed(session)
        days = await pricing.availability_calendar(session, APARTMENT_ID, 2028, 2)
        assert len(days) == 29

    async def test_unpriced_apartment_has_no_prices(self, session):
        await self._seed(session, priced=False)
        days = await pricing.availability_calendar(session, APARTMENT_ID, 2026, 7)
        assert all(day["available"] and day["price"] is None for day in days)

    async def test_bad_month(self, session):
        with pytest.raises(InvalidDateRange):
            await pricing.availability_calendar(session, APARTMENT_ID, 2026, 13)

    async def test_missing_apartment(self, session):
        with pytest.raises(ApartmentNotFound):
            await pricing.availability_calendar(session, APARTMENT_ID, 2026, 7)
