"""
Polling dispatcher that keeps every subscribed view in sync with the backend.

One timer drives one fetch of the user's order list per cycle. The fresh list
is diffed against the previous snapshot by order id and, when anything
changed, the same payload is handed to every subscriber in registration order
before the next timer is armed.

    tracker = RealTimeTracker(api)
    with tracker.subscription(on_updates):
        ...

Timer ticks that arrive while a fetch is in flight are coalesced into that
fetch. subscribe, unsubscribe and tick may be called from other threads when
the owning loop is passed in; timer and task work is then handed to that loop
with call_soon_threadsafe.

Failed or timed-out fetches are logged and only push the next attempt back
(exponential backoff, capped); subscribers never see the exception.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Iterator, List, Protocol

from pydantic import TypeAdapter, ValidationError

from ordertrack.core.config import settings
from ordertrack.core.errors import TransportError
from ordertrack.core.states import TIMESTAMP_FIELDS, OrderStatus, coerce_status, status_rank
from ordertrack.models.schemas import ApiResponse, OrderSummary, RealTimeUpdatePayload

logger = logging.getLogger(__name__)

Subscriber = Callable[[RealTimeUpdatePayload], None]

_ORDER_LIST = TypeAdapter(List[OrderSummary])


class OrderListTransport(Protocol):
    def list_orders(self) -> Awaitable[ApiResponse]: ...


class TrackerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    FETCHING = "fetching"
    BACKOFF = "backoff"


def _utcnow():
    return datetime.now(timezone.utc)


def order_fingerprint(order: OrderSummary) -> tuple:
    """The fields whose change makes an order count as updated."""
    courier = getattr(order, "assigned_courier", None)
    courier_key = courier.id if courier is not None else order.assigned_courier_name
    stamps = frozenset(
        (field, getattr(order, field))
        for field in TIMESTAMP_FIELDS.values()
        if getattr(order, field, None) is not None
    )
    return (order.status, courier_key, stamps)


class RealTimeTracker:
    def __init__(
        self,
        transport: OrderListTransport,
        *,
        poll_interval: float | None = None,
        fetch_timeout: float | None = None,
        backoff_max: float | None = None,
        poll_immediately: bool | None = None,
        clock: Callable[[], datetime] = _utcnow,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.transport = transport
        self.poll_interval = settings.poll_interval_s if poll_interval is None else poll_interval
        self.fetch_timeout = settings.poll_timeout_s if fetch_timeout is None else fetch_timeout
        self.backoff_max = settings.poll_backoff_max_s if backoff_max is None else backoff_max
        self.poll_immediately = settings.poll_immediately if poll_immediately is None else poll_immediately
        self.clock = clock
        self._loop = loop

        # guards every field below
        self._lock = threading.RLock()
        # dict keeps registration order and set semantics
        self._subscribers: dict[Subscriber, None] = {}
        self._snapshot: dict[int, OrderSummary] = {}
        self._fingerprints: dict[int, tuple] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: asyncio.Task | None = None
        # an arm handed to the loop from another thread, not yet run
        self._arm_scheduled = False
        self._failures = 0

    # ------------------------------------------------------------ properties

    @property
    def state(self) -> TrackerState:
        with self._lock:
            if not self._subscribers:
                return TrackerState.IDLE
            if self._inflight is not None:
                return TrackerState.FETCHING
            if self._failures:
                return TrackerState.BACKOFF
            return TrackerState.POLLING

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None or self._arm_scheduled

    @property
    def orders(self) -> tuple[OrderSummary, ...]:
        with self._lock:
            return tuple(self._snapshot.values())

    @property
    def current_delay(self) -> float:
        """Delay before the next poll: the interval, or the backoff after failures."""
        if not self._failures:
            return self.poll_interval
        return min(self.backoff_max, self.poll_interval * 2 ** self._failures)

    # ---------------------------------------------------------- subscription

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                return
            was_idle = not self._subscribers
            self._subscribers[callback] = None
            if was_idle and self._inflight is None:
                # a fetch left over from the previous session arms the timer when it settles
                self._arm(0 if self.poll_immediately else self.poll_interval)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback not in self._subscribers:
                return
            del self._subscribers[callback]
            if not self._subscribers:
                self._go_idle()

    @contextmanager
    def subscription(self, callback: Subscriber) -> Iterator[Subscriber]:
        self.subscribe(callback)
        try:
            yield callback
        finally:
            self.unsubscribe(callback)

    def _go_idle(self):
        self._cancel_timer()
        # the next session starts from a full list
        self._snapshot.clear()
        self._fingerprints.clear()
        self._failures = 0

    # ----------------------------------------------------------------- timer

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def _on_loop_thread(self) -> bool:
        """True when the caller may touch the loop directly."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            # without an injected loop _get_loop raises the usual error
            return self._loop is None
        return self._loop is None or running is self._loop

    def _arm(self, delay: float):
        self._cancel_timer()
        if self._on_loop_thread():
            self._timer = self._get_loop().call_later(delay, self._on_timer)
        else:
            self._arm_scheduled = True
            self._loop.call_soon_threadsafe(self._arm_from_loop, delay)

    def _arm_from_loop(self, delay: float):
        with self._lock:
            if not self._arm_scheduled:
                return
            self._arm_scheduled = False
            if self._subscribers and self._timer is None and self._inflight is None:
                self._timer = self._loop.call_later(delay, self._on_timer)

    def _cancel_timer(self):
        self._arm_scheduled = False
        handle, self._timer = self._timer, None
        if handle is None:
            return
        if self._on_loop_thread():
            handle.cancel()
        else:
            self._loop.call_soon_threadsafe(handle.cancel)

    def _on_timer(self):
        with self._lock:
            self._timer = None
        self.tick()

    def tick(self) -> asyncio.Task | None:
        """
        Start a poll cycle, or fold into the one already in flight.
        Returns the task doing the fetch, None when nobody is subscribed.
        Called off the loop's thread, the cycle is handed to the loop and
        None is returned.
        """
        with self._lock:
            if not self._subscribers:
                return None
            if self._inflight is not None:
                return self._inflight
            if not self._on_loop_thread():
                self._loop.call_soon_threadsafe(self.tick)
                return None
            self._cancel_timer()
            self._inflight = self._get_loop().create_task(self._poll())
            return self._inflight

    async def refresh(self) -> None:
        """Run one poll cycle now (or join the running one) and wait for it."""
        task = self.tick()
        if task is not None:
            await asyncio.shield(task)

    # ------------------------------------------------------------------ poll

    async def _fetch(self) -> list[OrderSummary]:
        response = await asyncio.wait_for(self.transport.list_orders(), timeout=self.fetch_timeout)
        data = response.unwrap()
        return _ORDER_LIST.validate_python(data)

    async def _poll(self):
        orders = None
        try:
            orders = await self._fetch()
        except asyncio.TimeoutError:
            logger.warning("order poll timed out after %.1fs", self.fetch_timeout)
        except TransportError as exc:
            logger.warning("order poll failed: %s (status %s)", exc, exc.status)
        except ValidationError as exc:
            logger.warning("order poll returned malformed data: %d errors", exc.error_count())
        except Exception:
            logger.exception("order poll failed unexpectedly")
        self._settle(orders)

    def _settle(self, orders: list[OrderSummary] | None):
        with self._lock:
            self._inflight = None
            if not self._subscribers:
                logger.debug("no subscribers left, discarding poll result")
                return
            payload = None
            if orders is None:
                self._failures += 1
                logger.warning("next order poll in %.1fs", self.current_delay)
            else:
                self._failures = 0
                payload = self._apply(orders)
            targets = list(self._subscribers) if payload is not None and payload.has_updates else []

        for callback in targets:
            try:
                callback(payload)
            except Exception:
                logger.exception("subscriber %r raised while handling updates", callback)

        with self._lock:
            if self._subscribers and self._timer is None and self._inflight is None:
                self._arm(self.current_delay)

    def _apply(self, orders: list[OrderSummary]) -> RealTimeUpdatePayload:
        """Replace the snapshot with `orders` and report what changed."""
        changed, fingerprints, snapshot = [], {}, {}
        for order in orders:
            fp = order_fingerprint(order)
            old = self._snapshot.get(order.id)
            if old is None or self._fingerprints.get(order.id) != fp:
                changed.append(order.id)
                if old is not None:
                    self._check_regression(old, order)
            fingerprints[order.id] = fp
            snapshot[order.id] = order
        removed = [oid for oid in self._snapshot if oid not in snapshot]
        self._snapshot = snapshot
        self._fingerprints = fingerprints
        return RealTimeUpdatePayload(
            orders=orders,
            changed_order_ids=changed,
            removed_order_ids=removed,
            timestamp=self.clock(),
        )

    @staticmethod
    def _check_regression(old: OrderSummary, new: OrderSummary):
        before, after = status_rank(old.status), status_rank(new.status)
        if coerce_status(new.status) is OrderStatus.CANCELLED:
            return
        if before is not None and after is not None and after < before:
            # the server stays authoritative; this is only reported
            logger.warning("order %s moved backward from %s to %s", new.id, old.status, new.status)

    # -------------------------------------------------------------- shutdown

    async def aclose(self):
        with self._lock:
            self._subscribers.clear()
            self._go_idle()
            task, self._inflight = self._inflight, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()
