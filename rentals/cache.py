"""
Redis cache for public calendar views of an apartment.

Every key lives under `apartment:{id}:`, so a booking or a calendar block
drops all cached views of that apartment in one sweep. Redis being down is
a cache miss, never an error.
"""

import json
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from rentals.settings import CALENDAR_CACHE_TTL, OCCUPIED_CACHE_TTL, REDIS_URL

_redis: Redis | None = None


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _prefix(apartment_id: UUID) -> str:
    return f"apartment:{apartment_id}:"


def occupied_key(apartment_id: UUID) -> str:
    return f"{_prefix(apartment_id)}occupied"


def calendar_key(apartment_id: UUID, year: int, month: int) -> str:
    return f"{_prefix(apartment_id)}calendar:{year:04d}-{month:02d}"


async def _get_json(key: str) -> list | None:
    try:
        data = await get_redis().get(key)
        return json.loads(data) if data else None
    except Exception:
        logger.opt(exception=True).warning("Redis get failed for {}, skipping cache", key)
        return None


async def _set_json(key: str, value: list, ttl: int) -> None:
    try:
        await get_redis().setex(key, ttl, json.dumps(value))
    except Exception:
        logger.opt(exception=True).warning("Redis set failed for {}, skipping cache", key)


async def get_occupied_cache(apartment_id: UUID) -> list | None:
    return await _get_json(occupied_key(apartment_id))


async def set_occupied_cache(apartment_id: UUID, ranges: list) -> None:
    await _set_json(occupied_key(apartment_id), ranges, OCCUPIED_CACHE_TTL)


async def get_calendar_cache(apartment_id: UUID, year: int, month: int) -> list | None:
    return await _get_json(calendar_key(apartment_id, year, month))


async def set_calendar_cache(apartment_id: UUID, year: int, month: int, days: list) -> None:
    await _set_json(calendar_key(apartment_id, year, month), days, CALENDAR_CACHE_TTL)


async def invalidate_apartment_cache(apartment_id: UUID) -> None:
    """Drop the occupied ranges and every cached month of the apartment."""
    try:
        redis = get_redis()
        keys = [k async for k in redis.scan_iter(match=f"{_prefix(apartment_id)}*")]
        if keys:
            await redis.delete(*keys)
    except Exception:
        logger.opt(exception=True).warning(
            "Redis invalidate failed for apartment {}", apartment_id
        )
