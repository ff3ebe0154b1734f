from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.availability import (
    NEXT_AVAILABLE_SEARCH_DAYS,
    check_availability,
    find_next_available,
    list_occupied_ranges,
)
from rentals.cache import (
    get_calendar_cache,
    get_occupied_cache,
    invalidate_apartment_cache,
    set_calendar_cache,
    set_occupied_cache,
)
from rentals.crud import booking_crud
from rentals.db import get_session
from rentals.deps import CurrentUser, can_manage_calendar, get_current_user
from rentals.pricing import availability_calendar, quote_price
from rentals.schemas import (
    AvailabilityResponse,
    BlockDatesRequest,
    BlockedDateResponse,
    CalendarDay,
    NextAvailableResponse,
    OccupiedRange,
    PriceBreakdown,
    UnblockDatesRequest,
)

router = APIRouter(prefix="/apartments", tags=["apartments"])


@router.get("/{apartment_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    apartment_id: UUID,
    check_in: date,
    check_out: date,
    _: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityResponse:
    result = await check_availability(session, apartment_id, check_in, check_out)
    return AvailabilityResponse(
        available=result.available,
        conflicting_dates=result.conflicting_dates,
        conflicting_booking_ids=result.conflicting_booking_ids,
    )


@router.get("/{apartment_id}/quote", response_model=PriceBreakdown)
async def get_quote(
    apartment_id: UUID,
    check_in: date,
    check_out: date,
    guests: int = Query(default=1),
    promo_code: str | None = Query(default=None, max_length=50),
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> PriceBreakdown:
    """Live price for a stay. Read-only: promo codes are checked, never redeemed."""
    priced = await quote_price(
        session,
        apartment_id,
        check_in,
        check_out,
        guests,
        promo_code=promo_code,
        user_id=current_user.id,
    )
    return priced.breakdown


@router.get("/{apartment_id}/occupied", response_model=list[OccupiedRange])
async def get_occupied_ranges(
    apartment_id: UUID,
    _: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[OccupiedRange]:
    """
    Occupied calendar windows for an apartment.
    Any authenticated user can call this; the response contains NO guest identity.
    """
    cached = await get_occupied_cache(apartment_id)
    if cached is not None:
        logger.debug("Cache hit for occupied ranges: apartment_id={}", apartment_id)
        return [OccupiedRange(**r) for r in cached]

    logger.debug("Cache miss for occupied ranges: apartment_id={}", apartment_id)
    ranges = [OccupiedRange(**r) for r in await list_occupied_ranges(session, apartment_id)]
    await set_occupied_cache(apartment_id, [r.model_dump(mode="json") for r in ranges])
    return ranges


@router.get("/{apartment_id}/next-available", response_model=NextAvailableResponse)
async def get_next_available(
    apartment_id: UUID,
    check_in: date,
    nights: int = Query(ge=1, le=365),
    search_days: int = Query(default=NEXT_AVAILABLE_SEARCH_DAYS, ge=1, le=365),
    _: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> NextAvailableResponse:
    window = await find_next_available(
        session, apartment_id, check_in, nights, search_days=search_days
    )
    if window is None:
        return NextAvailableResponse(check_in=None, check_out=None)
    return NextAvailableResponse(check_in=window[0], check_out=window[1])


@router.get("/{apartment_id}/calendar", response_model=list[CalendarDay])
async def get_calendar(
    apartment_id: UUID,
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    _: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[CalendarDay]:
    """Day-by-day availability of one month with the price of every free night."""
    cached = await get_calendar_cache(apartment_id, year, month)
    if cached is not None:
        logger.debug(
            "Cache hit for calendar: apartment_id={} {}-{}", apartment_id, year, month
        )
        return [CalendarDay(**day) for day in cached]

    days = [
        CalendarDay(**day)
        for day in await availability_calendar(session, apartment_id, year, month)
    ]
    await set_calendar_cache(
        apartment_id, year, month, [day.model_dump(mode="json") for day in days]
    )
    return days


# ---------------------------------------------------------------------------
# Calendar blocks (owner of the apartment or admin)
# ---------------------------------------------------------------------------


@router.get("/{apartment_id}/blocked-dates", response_model=list[BlockedDateResponse])
async def list_blocked_dates(
    apartment_id: UUID,
    _: CurrentUser = Depends(can_manage_calendar),
    session: AsyncSession = Depends(get_session),
) -> list[BlockedDateResponse]:
    rows = await booking_crud.list_blocked_dates(session, apartment_id)
    return [BlockedDateResponse.model_validate(r) for r in rows]


@router.post(
    "/{apartment_id}/blocked-dates",
    response_model=list[BlockedDateResponse],
    status_code=status.HTTP_201_CREATED,
)
async def block_dates(
    apartment_id: UUID,
    payload: BlockDatesRequest,
    current_user: CurrentUser = Depends(can_manage_calendar),
    session: AsyncSession = Depends(get_session),
) -> list[BlockedDateResponse]:
    created = await booking_crud.block_dates(
        session, apartment_id, current_user, payload.dates, payload.reason
    )
    await invalidate_apartment_cache(apartment_id)
    return [BlockedDateResponse.model_validate(r) for r in created]


@router.delete("/{apartment_id}/blocked-dates")
async def unblock_dates(
    apartment_id: UUID,
    payload: UnblockDatesRequest,
    current_user: CurrentUser = Depends(can_manage_calendar),
    session: AsyncSession = Depends(get_session),
) -> dict[str, int]:
    removed = await booking_crud.unblock_dates(
        session, apartment_id, current_user, payload.dates
    )
    await invalidate_apartment_cache(apartment_id)
    return {"removed": removed}
