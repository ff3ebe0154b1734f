"""
Named error kinds raised by the booking engine.

Every error is an HTTPException, so FastAPI renders it directly as
{"detail": {"code": ..., "message": ..., **extra}} with the right status.
Code that calls the engine outside HTTP can still catch them by class or
inspect `.code`.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class BookingEngineError(HTTPException):
    code: str = "BOOKING_ERROR"
    http_status: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any) -> None:
        self.message = message
        self.extra = extra
        super().__init__(
            status_code=self.http_status,
            detail={"code": self.code, "message": message, **extra},
        )


# Validation -----------------------------------------------------------------


class InvalidDateRange(BookingEngineError):
    code = "INVALID_DATE_RANGE"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidGuests(BookingEngineError):
    code = "INVALID_GUESTS"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


# Business rules ---------------------------------------------------------------


class DatesUnavailable(BookingEngineError):
    code = "DATES_UNAVAILABLE"
    http_status = status.HTTP_409_CONFLICT


class GuestLimitExceeded(BookingEngineError):
    code = "GUEST_LIMIT_EXCEEDED"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class PricingNotConfigured(BookingEngineError):
    code = "PRICING_NOT_CONFIGURED"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class ApartmentUnavailable(BookingEngineError):
    code = "APARTMENT_UNAVAILABLE"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class StayLengthOutOfRange(BookingEngineError):
    code = "STAY_LENGTH_OUT_OF_RANGE"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidTransition(BookingEngineError):
    code = "INVALID_TRANSITION"
    http_status = status.HTTP_400_BAD_REQUEST


class Forbidden(BookingEngineError):
    code = "FORBIDDEN"
    http_status = status.HTTP_403_FORBIDDEN


# Not found --------------------------------------------------------------------


class ApartmentNotFound(BookingEngineError):
    code = "APARTMENT_NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class BookingNotFound(BookingEngineError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
