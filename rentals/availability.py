from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.errors import InvalidDateRange
from rentals.models import ACTIVE_STATUSES, BlockedDate, Booking

NEXT_AVAILABLE_SEARCH_DAYS = 90
MAX_STAY_NIGHTS = 365


@dataclass
class AvailabilityResult:
    available: bool
    conflicting_dates: list[date] = field(default_factory=list)
    conflicting_booking_ids: list[UUID] = field(default_factory=list)


def validate_range(check_in: date, check_out: date) -> int:
    """Number of nights; raises for an empty, reversed or over-long range."""
    if check_out <= check_in:
        raise InvalidDateRange(
            "check_out must be after check_in",
            check_in=check_in.isoformat(),
            check_out=check_out.isoformat(),
        )
    nights = (check_out - check_in).days
    if nights > MAX_STAY_NIGHTS:
        raise InvalidDateRange(
            f"Stay cannot exceed {MAX_STAY_NIGHTS} nights",
            nights=nights,
            max_nights=MAX_STAY_NIGHTS,
        )
    return nights


def stay_dates(check_in: date, check_out: date) -> list[date]:
    """Every night of the half-open range [check_in, check_out)."""
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """True if [a_start, a_end) and [b_start, b_end) share at least one night."""
    return a_start < b_end and a_end > b_start


def conflicting_dates(
    check_in: date,
    check_out: date,
    bookings: list[tuple[date, date]],
    blocked: list[date],
) -> list[date]:
    """Requested nights that are taken by any booking range or blocked day."""
    taken: set[date] = set()
    for start, end in bookings:
        for day in stay_dates(max(start, check_in), min(end, check_out)):
            taken.add(day)
    taken.update(d for d in blocked if check_in <= d < check_out)
    return sorted(taken)


async def find_conflicting_bookings(
    session: AsyncSession,
    apartment_id: UUID,
    check_in: date,
    check_out: date,
    exclude_booking_id: UUID | None = None,
) -> list[Booking]:
    stmt = select(Booking).where(
        Booking.apartment_id == apartment_id,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.check_in < check_out,
        Booking.check_out > check_in,
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    return list(await session.scalars(stmt))


async def find_blocked_dates(
    session: AsyncSession, apartment_id: UUID, start: date, end: date
) -> list[date]:
    """Blocked days inside [start, end)."""
    rows = await session.scalars(
        select(BlockedDate.day).where(
            BlockedDate.apartment_id == apartment_id,
            BlockedDate.day >= start,
            BlockedDate.day < end,
        )
    )
    return list(rows)


async def check_availability(
    session: AsyncSession,
    apartment_id: UUID,
    check_in: date,
    check_out: date,
    exclude_booking_id: UUID | None = None,
) -> AvailabilityResult:
    validate_range(check_in, check_out)

    bookings = await find_conflicting_bookings(
        session, apartment_id, check_in, check_out, exclude_booking_id
    )
    blocked = await find_blocked_dates(session, apartment_id, check_in, check_out)
    if not bookings and not blocked:
        return AvailabilityResult(available=True)

    return AvailabilityResult(
        available=False,
        conflicting_dates=conflicting_dates(
            check_in, check_out, [(b.check_in, b.check_out) for b in bookings], blocked
        ),
        conflicting_booking_ids=[b.id for b in bookings],
    )


async def list_occupied_ranges(
    session: AsyncSession, apartment_id: UUID
) -> list[dict]:
    """
    Active booking windows and blocked days, ordered by start date.
    Contains no guest identity, so it can be shown on public calendars.
    """
    bookings = await session.execute(
        select(Booking.check_in, Booking.check_out).where(
            Booking.apartment_id == apartment_id,
            Booking.status.in_(ACTIVE_STATUSES),
        )
    )
    blocked = await session.scalars(
        select(BlockedDate.day).where(BlockedDate.apartment_id == apartment_id)
    )
    ranges = [
        {"start": start, "end": end, "kind": "booking"} for start, end in bookings
    ]
    ranges += [
        {"start": day, "end": day + timedelta(days=1), "kind": "blocked"}
        for day in blocked
    ]
    return sorted(ranges, key=lambda r: (r["start"], r["end"]))


async def find_next_available(
    session: AsyncSession,
    apartment_id: UUID,
    preferred_check_in: date,
    nights: int,
    search_days: int = NEXT_AVAILABLE_SEARCH_DAYS,
) -> tuple[date, date] | None:
    """First free window of `nights` nights starting within `search_days`."""
    if not 1 <= nights <= MAX_STAY_NIGHTS:
        raise InvalidDateRange(
            f"nights must be between 1 and {MAX_STAY_NIGHTS}", nights=nights
        )

    horizon = preferred_check_in + timedelta(days=search_days + nights)
    ranges = await list_occupied_ranges(session, apartment_id)
    taken = [
        (r["start"], r["end"])
        for r in ranges
        if overlaps(r["start"], r["end"], preferred_check_in, horizon)
    ]

    for offset in range(search_days):
        check_in = preferred_check_in + timedelta(days=offset)
        check_out = check_in + timedelta(days=nights)
        if not any(overlaps(check_in, check_out, s, e) for s, e in taken):
            return check_in, check_out
    return None
