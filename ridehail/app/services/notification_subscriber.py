"""Redis pub/sub subscriber delivering fanned-out notifications to local sockets."""

import asyncio
import json
import logging

import redis.asyncio as redis

from ridehail.app.services.matching_notifier import MatchingNotifier

logger = logging.getLogger("ridehail.notifier.subscriber")


class NotificationSubscriber:
    """Listens on the notification channel and hands envelopes to the notifier."""

    def __init__(self, redis_client, notifier: MatchingNotifier, channel: str, reconnect_delay: float = 5):
        self.redis_client = redis_client
        self.notifier = notifier
        self.channel = channel
        self.reconnect_delay = reconnect_delay
        self.task = None

    async def start(self):
        self.task = asyncio.create_task(self._subscribe_and_deliver())

    async def stop(self):
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

    async def handle_message(self, message) -> int:
        if message.get("type") != "message":
            return 0
        try:
            envelope = json.loads(message["data"])
        except (TypeError, json.JSONDecodeError):
            logger.warning("Invalid JSON on %s: %r", self.channel, message.get("data"))
            return 0
        return await self.notifier.deliver_local(envelope)

    async def _subscribe_and_deliver(self):
        while True:
            pubsub = None
            try:
                pubsub = self.redis_client.pubsub()
                await pubsub.subscribe(self.channel)
                logger.info("Subscribed to %s", self.channel)

                async for message in pubsub.listen():
                    await self.handle_message(message)

            except asyncio.CancelledError:
                await self._close(pubsub)
                break
            except redis.RedisError as e:
                logger.error("Redis subscription failed (%s), reconnecting in %ss...", e, self.reconnect_delay)
            except Exception:
                logger.exception("Notification subscriber crashed, reconnecting in %ss...", self.reconnect_delay)

            await self._close(pubsub)
            await asyncio.sleep(self.reconnect_delay)

    async def _close(self, pubsub):
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except Exception as e:
            logger.warning("Closing pubsub on %s failed: %s", self.channel, e)
