"""Plain-text notification bodies. Delivery belongs to notifications-ms."""

from decimal import Decimal

from rentals.models import BookingStatus
from rentals.schemas import BookingResponse

BOOKING_CREATED = "booking.created"
BOOKING_STATUS_CHANGED = "booking.status_changed"

_STATUS_PHRASES: dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: "has been confirmed",
    BookingStatus.PAID: "has been paid",
    BookingStatus.CANCELED: "has been canceled",
    BookingStatus.COMPLETED: "is completed",
    BookingStatus.REFUNDED: "has been refunded",
}


def format_money(amount: Decimal, currency: str) -> str:
    return f"{amount:,.2f} {currency}"


def _stay(booking: BookingResponse) -> str:
    return (
        f"{booking.check_in:%d.%m.%Y} - {booking.check_out:%d.%m.%Y}, "
        f"{booking.nights} night(s), {booking.guests} guest(s)"
    )


def booking_created_text(booking: BookingResponse) -> str:
    lines = [
        f"Booking #{booking.booking_number} received.",
        _stay(booking),
        f"Total: {format_money(booking.total_price, booking.currency)}",
    ]
    if booking.promo_discount:
        lines.append(
            f"Promo discount: {format_money(booking.promo_discount, booking.currency)}"
        )
    lines.append("We will let you know once the host confirms it.")
    return "\n".join(lines)


def status_changed_text(booking: BookingResponse) -> str:
    phrase = _STATUS_PHRASES.get(booking.status, f"is now {booking.status}")
    lines = [f"Booking #{booking.booking_number} {phrase}.", _stay(booking)]

    if booking.status == BookingStatus.CANCELED:
        if booking.cancel_reason:
            lines.append(f"Reason: {booking.cancel_reason}")
        if booking.refund_amount:
            lines.append(
                f"Refund: {format_money(booking.refund_amount, booking.currency)} "
                "will be returned within 5-10 business days."
            )
    elif booking.status == BookingStatus.REFUNDED and booking.refund_amount:
        lines.append(
            f"Refund: {format_money(booking.refund_amount, booking.currency)}"
        )
    return "\n".join(lines)
