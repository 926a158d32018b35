"""Relay of job state changes to live subscribers."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from pydantic import ValidationError

from ..models import JobSnapshot

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """
    Ordered feed of snapshots for one job.

    Iteration ends after the first terminal snapshot or when the subscription
    is closed. Nothing is replayed: only changes published after subscribe()
    are delivered.
    """

    def __init__(self, notifier: ProgressNotifier, job_id: str, loop: asyncio.AbstractEventLoop):
        self.job_id = job_id
        self._notifier = notifier
        self._loop = loop
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._finished = False
        self.closed = False

    def _deliver(self, item: Any) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._queue.put_nowait(item)
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Subscriber's loop is gone
            self._notifier._remove(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> JobSnapshot:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._finished = True
            raise StopAsyncIteration
        if item.status.is_terminal:
            self._finished = True
        return item

    def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self._notifier._remove(self)
        self._deliver(_CLOSED)

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


class ProgressNotifier:
    """
    Fan-out of job snapshots to subscribers keyed by job id.

    publish() accepts raw update dicts as well as snapshots; anything that
    does not validate is dropped with a warning instead of reaching
    subscribers.
    """

    def __init__(self):
        self._subscribers: dict[str, set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, job_id: str) -> Subscription:
        """Subscribe to changes of one job. Must be called from a running event loop."""
        subscription = Subscription(self, job_id, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.setdefault(job_id, set()).add(subscription)
        logger.debug(f"Subscribed to job {job_id}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.job_id)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.job_id]

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, ()))

    def publish(self, update: JobSnapshot | dict[str, Any]) -> bool:
        """
        Deliver an update to the job's subscribers.

        Returns False if the update was malformed and dropped.
        """
        if isinstance(update, JobSnapshot):
            snapshot = update
        else:
            try:
                snapshot = JobSnapshot.model_validate(update)
            except ValidationError as e:
                logger.warning(f"Dropping malformed job update: {e.error_count()} errors, {e.errors()[0]['msg']}")
                return False

        with self._lock:
            subscribers = list(self._subscribers.get(snapshot.id, ()))

        for subscription in subscribers:
            subscription._deliver(snapshot)
        return True

    def __call__(self, snapshot: JobSnapshot) -> None:
        """JobStore listener hook."""
        self.publish(snapshot)
