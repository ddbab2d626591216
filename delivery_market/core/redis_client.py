"""
Redis connection for the outbound delivery-events channel.

One lazily created client per process. Publishing happens after the
business write has committed, so socket timeouts are kept short and a
failed start-up ping leaves nothing cached; the next event retries.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from delivery_market.core.config import settings
from delivery_market.core.logging import get_logger

logger = get_logger(__name__)

_client: aioredis.Redis | None = None
_connect_lock = asyncio.Lock()


def redacted_url(url: str) -> str:
    """REDIS_URL ללוג - בלי סיסמה"""
    parsed = urlparse(url)
    if not parsed.password:
        return url
    host = parsed.hostname or ""
    if parsed.port:
        host = f"{host}:{parsed.port}"
    user = parsed.username or ""
    return parsed._replace(netloc=f"{user}:****@{host}").geturl()


async def get_redis() -> aioredis.Redis:
    global _client
    if _client is None:
        async with _connect_lock:
            if _client is None:
                client = aioredis.from_url(
                    settings.REDIS_URL,
                    decode_responses=True,
                    socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
                    socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
                )
                try:
                    await client.ping()
                except Exception:
                    await client.aclose()
                    raise
                _client = client
                logger.info(
                    "חיבור לערוץ אירועי המשלוחים",
                    extra_data={
                        "url": redacted_url(settings.REDIS_URL),
                        "channel_prefix": settings.EVENTS_CHANNEL_PREFIX,
                    },
                )
    return _client


async def close_redis() -> None:
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
        logger.info("Events channel connection closed")
