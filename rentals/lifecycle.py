"""
Booking state machine.

    PENDING ──► CONFIRMED ──► PAID ──► COMPLETED
       │            │          │
       └────────────┴──────────┴────► CANCELED
                               └────► REFUNDED

Who may fire which edge lives in one table, TRANSITION_PERMISSIONS, rather
than in role branches spread across handlers.
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from rentals import settings
from rentals.errors import Forbidden, InvalidTransition
from rentals.models import Booking, BookingStatus, PaymentStatus
from rentals.roles import ActorRole

S = BookingStatus

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELED}),
    S.CONFIRMED: frozenset({S.PAID, S.CANCELED}),
    S.PAID: frozenset({S.COMPLETED, S.REFUNDED, S.CANCELED}),
    S.CANCELED: frozenset(),
    S.COMPLETED: frozenset(),
    S.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def _edges() -> list[tuple[BookingStatus, BookingStatus]]:
    return [(cur, tgt) for cur, targets in ALLOWED_TRANSITIONS.items() for tgt in targets]


# (role, current, target) triples an actor may perform, on top of ownership
TRANSITION_PERMISSIONS: frozenset[tuple[ActorRole, BookingStatus, BookingStatus]] = frozenset(
    [(ActorRole.GUEST, cur, tgt) for cur, tgt in _edges() if tgt == S.CANCELED]
    + [(ActorRole.OWNER, cur, tgt) for cur, tgt in _edges()]
    + [(ActorRole.ADMIN, cur, tgt) for cur, tgt in _edges()]
)


def is_party_to(booking: Booking, actor_id: UUID, role: ActorRole) -> bool:
    """Guests act on bookings they made, owners on bookings of their apartments."""
    if role == ActorRole.ADMIN:
        return True
    if role == ActorRole.OWNER:
        return booking.owner_id == actor_id
    return booking.user_id == actor_id


def assert_transition(
    booking: Booking,
    actor_id: UUID,
    role: ActorRole,
    target: BookingStatus,
) -> None:
    """
    Raise if `actor_id` acting as `role` may not move `booking` to `target`.

    Checks run in a fixed order:
      1. the actor is a party to the booking            -> Forbidden
      2. current -> target is an edge of the machine    -> InvalidTransition
      3. the role is allowed to fire that edge          -> Forbidden
    """
    if not is_party_to(booking, actor_id, role):
        raise Forbidden("You are not allowed to manage this booking")

    current = booking.status
    allowed = ALLOWED_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransition(
            f"Cannot transition from '{current}' to '{target}'",
            current=str(current),
            target=str(target),
            allowed=sorted(str(s) for s in allowed),
        )

    if (role, current, target) not in TRANSITION_PERMISSIONS:
        raise Forbidden(
            f"Role '{role}' cannot move a booking from '{current}' to '{target}'",
            current=str(current),
            target=str(target),
        )


# ---------------------------------------------------------------------------
# Cancellation policy
# ---------------------------------------------------------------------------

FULL_REFUND_DAYS = 7
PARTIAL_REFUND_DAYS = 3
PARTIAL_REFUND_PERCENT = Decimal("50")


def calculate_refund(booking: Booking, today: date) -> tuple[Decimal, PaymentStatus]:
    """
    Refund owed when a booking is canceled `today`, and the payment status it
    leaves behind. Nothing is refunded unless the payment was captured.
    """
    if booking.payment_status != PaymentStatus.COMPLETED:
        return Decimal("0.00"), booking.payment_status

    days_until_check_in = (booking.check_in - today).days
    total = Decimal(booking.total_price)

    if days_until_check_in >= FULL_REFUND_DAYS:
        return total.quantize(Decimal("0.01")), PaymentStatus.REFUNDED
    if days_until_check_in >= PARTIAL_REFUND_DAYS:
        refund = (total * PARTIAL_REFUND_PERCENT / 100).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        return refund, PaymentStatus.PARTIAL_REFUND
    return Decimal("0.00"), PaymentStatus.COMPLETED


# ---------------------------------------------------------------------------
# Booking numbers
# ---------------------------------------------------------------------------

_BASE36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    out = ""
    while True:
        n, rem = divmod(n, 36)
        out = _BASE36[rem] + out
        if n == 0:
            return out


def generate_booking_number(now_ms: int | None = None) -> str:
    """Human-friendly reference, e.g. BK-M1ABCDEF-7QZ2."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{settings.BOOKING_NUMBER_PREFIX}-{_base36(now_ms)}-{suffix}"
