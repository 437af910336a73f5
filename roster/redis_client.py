from redis import asyncio as aioredis
from .config import get_settings

_settings = get_settings()
# connection is lazy; nothing talks to Redis until the first command
redis = aioredis.from_url(_settings.REDIS_URL, encoding="utf-8", decode_responses=True)


def user_channel(user_id) -> str:
    return f"user:{user_id}"


async def redis_health() -> bool:
    try:
        pong = await redis.ping()
        return bool(pong)
    except Exception:
        return False
