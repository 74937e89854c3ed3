from __future__ import annotations

import json
from contextlib import suppress
from datetime import date, datetime
from typing import Any, AsyncIterator
from uuid import UUID

import redis.asyncio as redis

from . import config

_redis = None

async def get_redis():
    global _redis
    if _redis is None:
        if config.is_testing():
            from fakeredis import aioredis
            _redis = aioredis.FakeRedis()
        else:
            _redis = redis.from_url(config.REDIS_URL)
    return _redis

def _json_default(value: Any) -> Any:
    # purpose: convert dates and ids to strings for event payloads
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def _serialize_event(event: dict[str, Any]) -> str:
    return json.dumps(event, default=_json_default)


def classroom_channel(classroom: str) -> str:
    return f"classroom:{classroom}"


async def publish_classroom_event(classroom: str, event: dict[str, Any]) -> None:
    """Broadcast a committed custody transition to the classroom's subscribers."""

    r = await get_redis()
    await r.publish(classroom_channel(classroom), _serialize_event(event))


async def iter_classroom_events(classroom: str) -> AsyncIterator[str]:
    """Yield classroom pub/sub messages as a stream."""

    r = await get_redis()
    channel = classroom_channel(classroom)
    pubsub = r.pubsub()
    await pubsub.subscribe(channel)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                yield data.decode()
            else:
                yield str(data)
    finally:
        with suppress(Exception):
            await pubsub.unsubscribe(channel)
        with suppress(AttributeError):
            await pubsub.close()
