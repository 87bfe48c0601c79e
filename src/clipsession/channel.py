#!/usr/bin/env python3
"""Per-session publish/subscribe fan-out of entry changes.

Every subscription owns a queue and a delivery task. publish() enqueues
the event on each current subscription of the session synchronously, so
events reach a given subscriber in the order the store committed them,
and a slow subscriber never delays the others. There is no replay: a
subscription sees only events published after it was created.

The topic table belongs to the event loop that runs the server; all
access happens from that loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
from collections.abc import Awaitable, Callable
from typing import Union

from clipsession.errors import ChannelError
from clipsession.models import ChangeEvent

logger = logging.getLogger(__name__)

Handler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by ChangeChannel.subscribe.

    Attributes:
        id: Identifier unique within the channel.
        session_code: Topic the subscription listens to.
        active: False once unsubscribed.
    """

    def __init__(self, subscription_id: str, session_code: str, handler: Handler) -> None:
        self.id = subscription_id
        self.session_code = session_code
        self.handler = handler
        self.active = True
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._deliver())

    def __repr__(self) -> str:
        state = "active" if self.active else "closed"
        return f"<Subscription {self.id} session={self.session_code} {state}>"

    def _put(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    async def _deliver(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                result = self.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscriber %s failed handling %s event", self.id, event.kind)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every event queued so far has been handled."""
        if self.active:
            await self._queue.join()

    def _close(self) -> None:
        self.active = False
        self._task.cancel()


class ChangeChannel:
    """Topic table mapping session codes to their live subscriptions."""

    def __init__(self) -> None:
        self._topics: dict[str, dict[str, Subscription]] = {}

    def subscribe(
        self,
        session_code: str,
        handler: Handler,
        subscription_id: str | None = None,
    ) -> Subscription:
        """Register handler for events published on a session from now on.

        Must be called from within the running event loop.

        Args:
            session_code: Session to listen to.
            handler: Callable receiving each event; may be a coroutine function.
            subscription_id: Caller-chosen id; generated when omitted.

        Returns:
            The subscription handle to pass to unsubscribe().

        Raises:
            ChannelError: If subscription_id is already in use.
        """
        subscription_id = subscription_id or secrets.token_hex(8)
        if self.find(subscription_id) is not None:
            raise ChannelError(f"Subscription id already in use: {subscription_id}")
        subscription = Subscription(subscription_id, session_code, handler)
        self._topics.setdefault(session_code, {})[subscription_id] = subscription
        logger.debug("Subscribed %s to session %s", subscription_id, session_code)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Stop delivery to a subscription. Idempotent.

        Returns:
            True if the subscription was active, False if already released.
        """
        if not subscription.active:
            return False
        topic = self._topics.get(subscription.session_code, {})
        topic.pop(subscription.id, None)
        if not topic:
            self._topics.pop(subscription.session_code, None)
        subscription._close()
        logger.debug("Unsubscribed %s from session %s", subscription.id, subscription.session_code)
        return True

    def find(self, subscription_id: str) -> Subscription | None:
        for topic in self._topics.values():
            if subscription_id in topic:
                return topic[subscription_id]
        return None

    def publish(self, event: ChangeEvent) -> int:
        """Fan an event out to every current subscriber of its session.

        Returns:
            Number of subscriptions the event was queued for.
        """
        subscriptions = list(self._topics.get(event.session_code, {}).values())
        for subscription in subscriptions:
            subscription._put(event)
        logger.debug(
            "Published %s on %s to %d subscriber(s)",
            event.kind, event.session_code, len(subscriptions),
        )
        return len(subscriptions)

    def subscriber_count(self, session_code: str) -> int:
        return len(self._topics.get(session_code, {}))

    async def join(self) -> None:
        """Wait until all queued events have been handled by every subscriber."""
        for topic in list(self._topics.values()):
            for subscription in list(topic.values()):
                await subscription.join()

    def close(self) -> None:
        """Release every subscription. Used at server shutdown."""
        for topic in list(self._topics.values()):
            for subscription in list(topic.values()):
                self.unsubscribe(subscription)
