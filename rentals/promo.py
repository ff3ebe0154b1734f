"""
Promo code validation and redemption.

Validation never raises: an unknown, expired or ineligible code simply
yields `valid=False` and a zero discount, so price quotes keep working.
Redemption and release are single conditional UPDATE statements.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.models import Booking, BookingStatus, PromoCode, PromoCodeType

ZERO = Decimal("0")
CENT = Decimal("0.01")

# Bookings in these states give their promo use back: they neither count
# towards a user's per-code limit nor hold a slot of the global usage_limit
RELEASED_STATUSES = frozenset({BookingStatus.CANCELED, BookingStatus.REFUNDED})


@dataclass
class PromoCheck:
    valid: bool
    discount: Decimal = ZERO
    reason: str | None = None
    promo: PromoCode | None = None

    @property
    def message(self) -> str | None:
        if not self.valid or self.promo is None:
            return self.reason
        if self.promo.type == PromoCodeType.PERCENTAGE:
            return f"{self.promo.value.normalize():f}% off"
        return f"{self.promo.value.normalize():f} off"


def normalize_code(code: str) -> str:
    return code.strip().upper()


def calculate_discount(promo: PromoCode, amount: Decimal) -> Decimal:
    """PERCENTAGE is capped by max_discount; no discount ever exceeds amount."""
    if promo.type == PromoCodeType.PERCENTAGE:
        discount = amount * Decimal(promo.value) / 100
        if promo.max_discount is not None and discount > promo.max_discount:
            discount = Decimal(promo.max_discount)
    else:
        discount = Decimal(promo.value)
    discount = min(discount, amount)
    return max(discount, ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


def evaluate_promo(
    promo: PromoCode | None,
    apartment_id: UUID,
    amount: Decimal,
    nights: int,
    today: date,
    user_redemptions: int | None = None,
) -> PromoCheck:
    """
    Check a promo code against a candidate stay. Rules run in a fixed order
    and the first failing rule is reported:

      1. exists and active
      2. inside its date window (inclusive)
      3. global usage limit not reached
      4. per-user limit not reached (only when the user is known)
      5. applies to this apartment (empty list = all apartments)
      6. minimum nights
      7. minimum amount
    """
    if promo is None:
        return PromoCheck(valid=False, reason="Promo code not found")
    if not promo.is_active:
        return PromoCheck(valid=False, reason="Promo code is inactive", promo=promo)

    if promo.start_date is not None and today < promo.start_date:
        return PromoCheck(valid=False, reason="Promo code is not active yet", promo=promo)
    if promo.end_date is not None and today > promo.end_date:
        return PromoCheck(valid=False, reason="Promo code has expired", promo=promo)

    if promo.usage_limit is not None and promo.usage_count >= promo.usage_limit:
        return PromoCheck(
            valid=False, reason="Promo code usage limit reached", promo=promo
        )

    if (
        promo.per_user_limit is not None
        and user_redemptions is not None
        and user_redemptions >= promo.per_user_limit
    ):
        return PromoCheck(
            valid=False,
            reason="You have already used this promo code the maximum number of times",
            promo=promo,
        )

    if promo.apartment_ids and str(apartment_id) not in promo.apartment_ids:
        return PromoCheck(
            valid=False,
            reason="Promo code does not apply to this apartment",
            promo=promo,
        )

    if promo.min_nights is not None and nights < promo.min_nights:
        return PromoCheck(
            valid=False,
            reason=f"Minimum stay for this promo code is {promo.min_nights} nights",
            promo=promo,
        )

    if promo.min_amount is not None and amount < promo.min_amount:
        return PromoCheck(
            valid=False,
            reason=f"Minimum amount for this promo code is {promo.min_amount}",
            promo=promo,
        )

    return PromoCheck(valid=True, discount=calculate_discount(promo, amount), promo=promo)


async def get_promo_code(session: AsyncSession, code: str) -> PromoCode | None:
    return await session.scalar(
        select(PromoCode).where(PromoCode.code == normalize_code(code))
    )


async def count_user_redemptions(
    session: AsyncSession, promo_code_id: UUID, user_id: UUID
) -> int:
    return await session.scalar(
        select(func.count())
        .select_from(Booking)
        .where(
            Booking.user_id == user_id,
            Booking.promo_code_id == promo_code_id,
            Booking.status.not_in(RELEASED_STATUSES),
        )
    )


async def validate_promo_code(
    session: AsyncSession,
    code: str,
    apartment_id: UUID,
    amount: Decimal,
    nights: int,
    user_id: UUID | None = None,
    today: date | None = None,
) -> PromoCheck:
    promo = await get_promo_code(session, code)

    user_redemptions = None
    if promo is not None and promo.per_user_limit is not None and user_id is not None:
        user_redemptions = await count_user_redemptions(session, promo.id, user_id)

    result = evaluate_promo(
        promo,
        apartment_id=apartment_id,
        amount=amount,
        nights=nights,
        today=today or datetime.now(UTC).date(),
        user_redemptions=user_redemptions,
    )
    if not result.valid:
        logger.debug("Promo code {} rejected: {}", normalize_code(code), result.reason)
    return result


async def redeem_promo_code(session: AsyncSession, promo: PromoCode) -> bool:
    """
    Atomically count one use of `promo`. Returns False when the usage limit
    was reached by a concurrent redemption in the meantime.
    """
    result = await session.execute(
        update(PromoCode)
        .where(
            PromoCode.id == promo.id,
            or_(
                PromoCode.usage_limit.is_(None),
                PromoCode.usage_count < PromoCode.usage_limit,
            ),
        )
        .values(usage_count=PromoCode.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release_promo_code(session: AsyncSession, promo_code_id: UUID) -> None:
    """Give back one use of a promo code, never going below zero."""
    await session.execute(
        update(PromoCode)
        .where(PromoCode.id == promo_code_id, PromoCode.usage_count > 0)
        .values(usage_count=PromoCode.usage_count - 1)
        .execution_options(synchronize_session=False)
    )
