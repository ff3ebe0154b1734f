import asyncio
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rentals import messages
from rentals.cache import invalidate_apartment_cache
from rentals.crud import booking_crud
from rentals.db import get_session
from rentals.deps import (
    CurrentUser,
    NotificationsClient,
    can_view_stats,
    get_current_user,
    get_notifications_client,
)
from rentals.errors import BookingNotFound
from rentals.schemas import (
    BookingCreate,
    BookingFilters,
    BookingResponse,
    BookingStats,
    BookingStatusUpdate,
    StatusHistoryEntry,
)

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _scope(current_user: CurrentUser) -> dict[str, UUID]:
    """
    Visibility of bookings per role:
      - admin → everything
      - owner → bookings of apartments they own
      - guest → bookings they made
    """
    if current_user.is_admin:
        return {}
    if current_user.is_owner:
        return {"owner_id": current_user.id}
    return {"user_id": current_user.id}


async def _notify_parties(
    booking,
    event: str,
    text: str,
    current_user: CurrentUser,
    notifications: NotificationsClient,
) -> None:
    """Tell the guest and the owner, except whoever caused the event."""
    recipients = {booking.user_id, booking.owner_id} - {current_user.id}
    await asyncio.gather(
        *(notifications.notify(r, event, text, current_user) for r in recipients)
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[BookingResponse]:
    return await booking_crud.list_bookings(
        session, filters=filters, **_scope(current_user)
    )


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifications: NotificationsClient = Depends(get_notifications_client),
) -> BookingResponse:
    booking = await booking_crud.create_booking(session, current_user.id, payload)
    await invalidate_apartment_cache(payload.apartment_id)

    response = BookingResponse.model_validate(booking, from_attributes=True)
    await _notify_parties(
        response,
        messages.BOOKING_CREATED,
        messages.booking_created_text(response),
        current_user,
        notifications,
    )
    return response


@router.get("/stats", response_model=BookingStats)
async def get_booking_stats(
    apartment_id: UUID | None = None,
    current_user: CurrentUser = Depends(can_view_stats),
    session: AsyncSession = Depends(get_session),
) -> BookingStats:
    """Per-status booking counts; owners only see their own apartments."""
    owner_id = None if current_user.is_admin else current_user.id
    stats = await booking_crud.booking_stats(
        session, apartment_id=apartment_id, owner_id=owner_id
    )
    return BookingStats(**stats)


@router.get("/number/{booking_number}", response_model=BookingResponse)
async def get_booking_by_number(
    booking_number: str,
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> BookingResponse:
    booking = await booking_crud.get_by_number(
        session, booking_number, **_scope(current_user)
    )
    if not booking:
        raise BookingNotFound("Booking not found", booking_number=booking_number)
    return booking


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> BookingResponse:
    booking = await booking_crud.get_booking(
        session, booking_id, **_scope(current_user)
    )
    if not booking:
        raise BookingNotFound("Booking not found", booking_id=str(booking_id))
    return booking


@router.get("/{booking_id}/history", response_model=list[StatusHistoryEntry])
async def get_booking_history(
    booking_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[StatusHistoryEntry]:
    booking = await booking_crud.get_booking(
        session, booking_id, **_scope(current_user)
    )
    if not booking:
        raise BookingNotFound("Booking not found", booking_id=str(booking_id))
    return await booking_crud.list_history(session, booking_id)


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifications: NotificationsClient = Depends(get_notifications_client),
) -> BookingResponse:
    # Ownership, transition and permission checks all happen under the row lock
    booking = await booking_crud.update_booking_status(
        session,
        booking_id,
        actor=current_user,
        target=payload.status,
        reason=payload.reason,
    )
    response = BookingResponse.model_validate(booking, from_attributes=True)
    await invalidate_apartment_cache(response.apartment_id)

    await _notify_parties(
        response,
        messages.BOOKING_STATUS_CHANGED,
        messages.status_changed_text(response),
        current_user,
        notifications,
    )
    return response
