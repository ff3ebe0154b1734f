import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from rentals import settings
from rentals.db import engine, init_models
from rentals.routers import apartments, booking, promo


def configure_logging() -> None:
    logger.remove()
    logger.add(
        sys.stdout,
        level=settings.LOG_LEVEL,
        serialize=settings.LOG_JSON,
        backtrace=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_models()
    logger.info("Rental bookings service started")
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(title="Rental Bookings", version="0.1.0", lifespan=lifespan)
    app.include_router(apartments.router)
    app.include_router(booking.router)
    app.include_router(promo.router)
    return app


app = create_app()
