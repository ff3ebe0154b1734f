from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.availability import check_availability, find_conflicting_bookings
from rentals.db import OVERLAP_GUARD, unit_of_work
from rentals.deps import CurrentUser
from rentals.errors import (
    ApartmentNotFound,
    ApartmentUnavailable,
    BookingNotFound,
    DatesUnavailable,
    Forbidden,
    GuestLimitExceeded,
    StayLengthOutOfRange,
)
from rentals.lifecycle import assert_transition, calculate_refund, generate_booking_number
from rentals.models import (
    Apartment,
    ApartmentStatus,
    BlockedDate,
    Booking,
    BookingStatus,
    BookingStatusHistory,
    PaymentStatus,
)
from rentals.pricing import quote_price, validate_stay
from rentals.promo import RELEASED_STATUSES, redeem_promo_code, release_promo_code
from rentals.schemas import BookingCreate, BookingFilters


def _today() -> date:
    return datetime.now(UTC).date()


def _is_overlap_violation(exc: IntegrityError) -> bool:
    return OVERLAP_GUARD in str(exc.orig)


class BookingCRUD:
    async def _lock_apartment(
        self, session: AsyncSession, apartment_id: UUID
    ) -> Apartment:
        """
        Row-lock the apartment for the rest of the transaction. Every write
        that touches an apartment's calendar goes through here, so those
        writes are serialised per apartment.
        """
        apartment = await session.scalar(
            select(Apartment).where(Apartment.id == apartment_id).with_for_update()
        )
        if apartment is None:
            raise ApartmentNotFound(
                "Apartment not found", apartment_id=str(apartment_id)
            )
        return apartment

    async def create_booking(
        self,
        session: AsyncSession,
        user_id: UUID,
        payload: BookingCreate,
        today: date | None = None,
    ) -> Booking:
        """
        Persist a new PENDING booking in one unit of work:
          - apartment exists, is published and accepts this stay length
          - dates are free (application check, then the database guard)
          - guest count fits the apartment
          - price is recomputed server-side; promo redeemed atomically
        Nothing is written unless every step succeeds.
        """
        nights = validate_stay(payload.check_in, payload.check_out, payload.guests)

        try:
            async with unit_of_work(session):
                apartment = await self._lock_apartment(session, payload.apartment_id)

                if apartment.status != ApartmentStatus.PUBLISHED:
                    raise ApartmentUnavailable(
                        "Apartment is not available for booking",
                        status=str(apartment.status),
                    )
                if not apartment.min_nights <= nights <= apartment.max_nights:
                    raise StayLengthOutOfRange(
                        f"Stay must be between {apartment.min_nights} and "
                        f"{apartment.max_nights} nights",
                        nights=nights,
                        min_nights=apartment.min_nights,
                        max_nights=apartment.max_nights,
                    )

                availability = await check_availability(
                    session, apartment.id, payload.check_in, payload.check_out
                )
                if not availability.available:
                    raise DatesUnavailable(
                        "Selected dates are not available",
                        conflicting_dates=[
                            d.isoformat() for d in availability.conflicting_dates
                        ],
                    )

                if payload.guests > apartment.max_guests:
                    raise GuestLimitExceeded(
                        f"Maximum {apartment.max_guests} guests allowed",
                        max_guests=apartment.max_guests,
                    )

                priced = await quote_price(
                    session,
                    apartment.id,
                    payload.check_in,
                    payload.check_out,
                    payload.guests,
                    promo_code=payload.promo_code,
                    user_id=user_id,
                    today=today,
                )
                promo_code_id = None
                if priced.promo_applied:
                    if await redeem_promo_code(session, priced.promo.promo):
                        promo_code_id = priced.promo.promo.id
                    else:
                        logger.info(
                            "Promo code {} ran out during booking; pricing without it",
                            payload.promo_code,
                        )
                        priced = await quote_price(
                            session,
                            apartment.id,
                            payload.check_in,
                            payload.check_out,
                            payload.guests,
                            today=today,
                        )

                bd = priced.breakdown
                booking = Booking(
                    booking_number=generate_booking_number(),
                    apartment_id=apartment.id,
                    owner_id=apartment.owner_id,
                    user_id=user_id,
                    check_in=payload.check_in,
                    check_out=payload.check_out,
                    nights=bd.nights,
                    guests=payload.guests,
                    status=BookingStatus.PENDING,
                    payment_status=PaymentStatus.PENDING,
                    base_total=bd.base_total,
                    seasonal_adjustment=bd.seasonal_adjustment,
                    weekday_adjustment=bd.weekday_adjustment,
                    discount=bd.discount,
                    promo_discount=bd.promo_discount,
                    cleaning_fee=bd.cleaning_fee,
                    service_fee=bd.service_fee,
                    extra_guest_fee=bd.extra_guest_fee,
                    total_price=bd.total_price,
                    currency=bd.currency,
                    promo_code_id=promo_code_id,
                    contact_name=payload.contact_name,
                    contact_phone=payload.contact_phone,
                    contact_email=payload.contact_email,
                    guest_comment=payload.guest_comment,
                )
                session.add(booking)
                await session.flush()

                session.add(
                    BookingStatusHistory(
                        booking_id=booking.id,
                        from_status=None,
                        to_status=BookingStatus.PENDING,
                        actor_id=user_id,
                    )
                )
        except IntegrityError as exc:
            if _is_overlap_violation(exc):
                logger.warning(
                    "Concurrent booking won the race for apartment {} ({} - {})",
                    payload.apartment_id,
                    payload.check_in,
                    payload.check_out,
                )
                raise DatesUnavailable(
                    "Selected dates were just booked by someone else"
                ) from None
            raise

        logger.info(
            "Booking {} created: apartment={} nights={} total={} {}",
            booking.booking_number,
            booking.apartment_id,
            booking.nights,
            booking.total_price,
            booking.currency,
        )
        return booking

    async def update_booking_status(
        self,
        session: AsyncSession,
        booking_id: UUID,
        actor: CurrentUser,
        target: BookingStatus,
        reason: str | None = None,
        today: date | None = None,
    ) -> Booking:
        async with unit_of_work(session):
            booking = await session.scalar(
                select(Booking).where(Booking.id == booking_id).with_for_update()
            )
            if booking is None:
                raise BookingNotFound("Booking not found", booking_id=str(booking_id))

            assert_transition(booking, actor.id, actor.role, target)
            previous = booking.status

            if target == BookingStatus.PAID:
                booking.payment_status = PaymentStatus.COMPLETED

            elif target == BookingStatus.CANCELED:
                refund, payment_status = calculate_refund(booking, today or _today())
                booking.canceled_at = datetime.now(UTC)
                booking.cancel_reason = reason
                booking.refund_amount = refund
                booking.payment_status = payment_status

            elif target == BookingStatus.REFUNDED:
                booking.refund_amount = booking.total_price
                booking.payment_status = PaymentStatus.REFUNDED

            if target in RELEASED_STATUSES and booking.promo_code_id is not None:
                await release_promo_code(session, booking.promo_code_id)

            booking.status = target
            booking.updated_at = datetime.now(UTC)
            session.add(
                BookingStatusHistory(
                    booking_id=booking.id,
                    from_status=previous,
                    to_status=target,
                    actor_id=actor.id,
                    reason=reason,
                )
            )

        logger.info(
            "Booking {} {} -> {} by {} {}",
            booking.booking_number,
            previous,
            target,
            actor.role,
            actor.id,
        )
        return booking

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _scoped(self, stmt, user_id: UUID | None, owner_id: UUID | None):
        if user_id is not None:
            stmt = stmt.where(Booking.user_id == user_id)
        if owner_id is not None:
            stmt = stmt.where(Booking.owner_id == owner_id)
        return stmt

    async def get_booking(
        self,
        session: AsyncSession,
        booking_id: UUID,
        user_id: UUID | None = None,
        owner_id: UUID | None = None,
    ) -> Booking | None:
        stmt = self._scoped(select(Booking).where(Booking.id == booking_id), user_id, owner_id)
        return await session.scalar(stmt)

    async def get_by_number(
        self,
        session: AsyncSession,
        booking_number: str,
        user_id: UUID | None = None,
        owner_id: UUID | None = None,
    ) -> Booking | None:
        stmt = self._scoped(
            select(Booking).where(Booking.booking_number == booking_number.upper()),
            user_id,
            owner_id,
        )
        return await session.scalar(stmt)

    async def list_bookings(
        self,
        session: AsyncSession,
        filters: BookingFilters,
        user_id: UUID | None = None,
        owner_id: UUID | None = None,
    ) -> list[Booking]:
        stmt = self._scoped(select(Booking), user_id, owner_id)

        if filters.apartment_id is not None:
            stmt = stmt.where(Booking.apartment_id == filters.apartment_id)
        if filters.status is not None:
            stmt = stmt.where(Booking.status == filters.status)

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            stmt.order_by(Booking.created_at.desc())
            .offset(offset)
            .limit(filters.page_size)
        )
        return list(await session.scalars(stmt))

    async def booking_stats(
        self,
        session: AsyncSession,
        apartment_id: UUID | None = None,
        owner_id: UUID | None = None,
    ) -> dict[str, int]:
        """Number of bookings per status plus the overall total."""
        stmt = self._scoped(
            select(Booking.status, func.count()).group_by(Booking.status), None, owner_id
        )
        if apartment_id is not None:
            stmt = stmt.where(Booking.apartment_id == apartment_id)

        counts = {s: 0 for s in BookingStatus}
        for status, count in await session.execute(stmt):
            counts[status] = count

        stats = {s.value.lower(): n for s, n in counts.items()}
        stats["total"] = sum(counts.values())
        return stats

    async def list_history(
        self, session: AsyncSession, booking_id: UUID
    ) -> list[BookingStatusHistory]:
        rows = await session.scalars(
            select(BookingStatusHistory)
            .where(BookingStatusHistory.booking_id == booking_id)
            .order_by(BookingStatusHistory.created_at)
        )
        return list(rows)

    # ------------------------------------------------------------------
    # Calendar blocks
    # ------------------------------------------------------------------

    async def _lock_managed_apartment(
        self, session: AsyncSession, apartment_id: UUID, actor: CurrentUser
    ) -> Apartment:
        apartment = await self._lock_apartment(session, apartment_id)
        if not actor.is_admin and apartment.owner_id != actor.id:
            raise Forbidden("You do not manage this apartment")
        return apartment

    async def list_blocked_dates(
        self, session: AsyncSession, apartment_id: UUID
    ) -> list[BlockedDate]:
        rows = await session.scalars(
            select(BlockedDate)
            .where(BlockedDate.apartment_id == apartment_id)
            .order_by(BlockedDate.day)
        )
        return list(rows)

    async def block_dates(
        self,
        session: AsyncSession,
        apartment_id: UUID,
        actor: CurrentUser,
        dates: list[date],
        reason: str | None = None,
    ) -> list[BlockedDate]:
        """
        Block single days on the calendar. Days already blocked are skipped;
        days covered by an active booking are refused as a whole request.
        """
        wanted = sorted(set(dates))
        try:
            async with unit_of_work(session):
                await self._lock_managed_apartment(session, apartment_id, actor)

                taken = []
                for day in wanted:
                    if await find_conflicting_bookings(
                        session, apartment_id, day, day + timedelta(days=1)
                    ):
                        taken.append(day)
                if taken:
                    raise DatesUnavailable(
                        "Some dates are covered by active bookings",
                        conflicting_dates=[d.isoformat() for d in taken],
                    )

                existing = set(
                    await session.scalars(
                        select(BlockedDate.day).where(
                            BlockedDate.apartment_id == apartment_id,
                            BlockedDate.day.in_(wanted),
                        )
                    )
                )
                created = [
                    BlockedDate(apartment_id=apartment_id, day=day, reason=reason)
                    for day in wanted
                    if day not in existing
                ]
                session.add_all(created)
        except IntegrityError as exc:
            if _is_overlap_violation(exc):
                raise DatesUnavailable(
                    "Some dates were just booked by someone else"
                ) from None
            raise

        logger.info(
            "Blocked {} day(s) for apartment {} by {}", len(created), apartment_id, actor.id
        )
        return created

    async def unblock_dates(
        self,
        session: AsyncSession,
        apartment_id: UUID,
        actor: CurrentUser,
        dates: list[date],
    ) -> int:
        async with unit_of_work(session):
            await self._lock_managed_apartment(session, apartment_id, actor)
            result = await session.execute(
                delete(BlockedDate).where(
                    BlockedDate.apartment_id == apartment_id,
                    BlockedDate.day.in_(sorted(set(dates))),
                )
            )
        logger.info(
            "Unblocked {} day(s) for apartment {} by {}",
            result.rowcount,
            apartment_id,
            actor.id,
        )
        return result.rowcount


booking_crud = BookingCRUD()
