"""
Order Tracking — Redis pub/sub relay for multi-worker deployments

Every worker publishes broadcasts to one channel and delivers whatever it
receives on that channel to its own local rooms. Redis preserves per-publisher
ordering, so a narrow event still arrives before its snapshot.

The listener resubscribes with exponential backoff whenever the subscription
fails or ends; it only stops when cancelled.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

Deliver = Callable[[str, str, dict[str, Any]], Awaitable[int]]


class RedisEventRelay:
    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        deliver: Deliver,
        retry_delay: float = 0.5,
        max_retry_delay: float = 30.0,
    ):
        self._redis = redis
        self._channel = channel
        self._deliver = deliver
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay
        self._listener: asyncio.Task | None = None

    async def publish(self, order_id: str, event: str, data: dict[str, Any]) -> None:
        envelope = json.dumps({"orderId": order_id, "event": event, "data": data})
        await self._redis.publish(self._channel, envelope)

    async def handle_message(self, raw: str | bytes) -> None:
        try:
            envelope = json.loads(raw)
            order_id, event, data = envelope["orderId"], envelope["event"], envelope["data"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed relay message on %s: %r", self._channel, raw)
            return
        await self._deliver(order_id, event, data)

    async def consume(self) -> None:
        """One subscription: deliver messages until the stream ends or fails."""
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        logger.info("Realtime relay subscribed to %s", self._channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    await self.handle_message(message["data"])
                except Exception:
                    logger.exception("Relay delivery failed")
        finally:
            try:
                await pubsub.unsubscribe(self._channel)
                await pubsub.aclose()
            except Exception as exc:
                logger.debug("Relay pub/sub teardown failed: %s", exc)

    async def listen(self) -> None:
        delay = self._retry_delay
        while True:
            try:
                await self.consume()
                logger.warning("Realtime relay subscription to %s ended, resubscribing", self._channel)
                delay = self._retry_delay
            except Exception:
                logger.exception(
                    "Realtime relay subscription to %s failed, retrying in %.1fs", self._channel, delay
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._max_retry_delay)
                continue
            await asyncio.sleep(delay)

    def start(self) -> None:
        if self._listener is None:
            self._listener = asyncio.create_task(self.listen(), name="realtime-relay")

    async def stop(self) -> None:
        if self._listener is None:
            return
        listener, self._listener = self._listener, None
        listener.cancel()
        try:
            await listener
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Realtime relay listener had failed before shutdown")
