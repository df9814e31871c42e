from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Iterator
from enum import StrEnum

from app.errors import StoreBusy
from app.lock import DEFAULT_LOCK_TIMEOUT_S, new_store_lock, store_lock


logger = logging.getLogger(__name__)


class SubscriptionClosed(Exception):
    """The subscriber was torn down; no further payloads will arrive."""


class Delivery(StrEnum):
    delivered = "delivered"
    full = "full"
    closed = "closed"


class CancelToken:
    """Once-firing cancellation signal, e.g. "the client connection went away".

    Callbacks run on the thread that calls `cancel()`. A callback added after the
    token fired runs immediately.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._callbacks: list[Callable[[], object]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()

    def add_callback(self, cb: Callable[[], object]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)
                return
        cb()

    def remove_callback(self, cb: Callable[[], object]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(cb)
            except ValueError:
                pass

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


_EMPTY = object()


class Outbox:
    """Single-slot mailbox of byte payloads.

    Writers never block: `offer` either fills the empty slot or reports why it could not.
    Readers can block from a thread (`get`) or await from an event loop (`aget`).
    A payload already in the slot is still handed out after `close()`.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._item: object = _EMPTY
        self._closed = False
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, payload: bytes) -> Delivery:
        with self._cond:
            if self._closed:
                return Delivery.closed
            if self._item is not _EMPTY:
                return Delivery.full
            self._item = payload
            self._wake_locked()
        return Delivery.delivered

    def close(self) -> bool:
        with self._cond:
            if self._closed:
                return False
            self._closed = True
            self._wake_locked()
        return True

    def get(self, timeout: float | None = None) -> bytes:
        with self._cond:
            ready = self._cond.wait_for(lambda: self._item is not _EMPTY or self._closed, timeout)
            if not ready:
                raise TimeoutError()
            return self._take_locked()

    async def aget(self, timeout: float | None = None) -> bytes:
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            with self._cond:
                if self._item is not _EMPTY or self._closed:
                    return self._take_locked()
                waiter: asyncio.Future[None] = loop.create_future()
                entry = (loop, waiter)
                self._waiters.append(entry)
            try:
                remaining = None if deadline is None else max(0.0, deadline - loop.time())
                await asyncio.wait_for(waiter, remaining)
            finally:
                with self._cond:
                    if entry in self._waiters:
                        self._waiters.remove(entry)

    def _take_locked(self) -> bytes:
        if self._item is _EMPTY:
            raise SubscriptionClosed()
        item, self._item = self._item, _EMPTY
        return item  # type: ignore[return-value]

    def _wake_locked(self) -> None:
        self._cond.notify_all()
        waiters, self._waiters = self._waiters, []
        for loop, fut in waiters:
            try:
                loop.call_soon_threadsafe(_resolve, fut)
            except RuntimeError:
                # Loop closed under us; nobody is left to await this waiter.
                logger.debug("Skipping waiter on a closed event loop")


def _resolve(fut: asyncio.Future[None]) -> None:
    if not fut.done():
        fut.set_result(None)


class Subscriber:
    """One live stream of a session. Read side handed to the caller of `subscribe`."""

    def __init__(self, *, game_id: str, registry: BroadcastRegistry, cancel: CancelToken | None = None) -> None:
        self.game_id = game_id
        self.outbox = Outbox()
        self._registry = registry
        self._cancel = cancel
        self._teardown_lock = threading.Lock()
        self._torn_down = False

    @property
    def closed(self) -> bool:
        return self._torn_down

    def get(self, timeout: float | None = None) -> bytes:
        return self.outbox.get(timeout)

    async def aget(self, timeout: float | None = None) -> bytes:
        return await self.outbox.aget(timeout)

    def __iter__(self) -> Iterator[bytes]:
        while True:
            try:
                yield self.get()
            except SubscriptionClosed:
                return

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            try:
                yield await self.aget()
            except SubscriptionClosed:
                return

    def unsubscribe(self) -> bool:
        """Tear down exactly once. Returns False if it had already happened."""

        with self._teardown_lock:
            if self._torn_down:
                return False
            self._torn_down = True
        self.outbox.close()
        self._registry._discard(self)
        if self._cancel is not None:
            self._cancel.remove_callback(self.unsubscribe)
        logger.debug("Unsubscribed from game %s", self.game_id)
        return True

    def _watch(self) -> None:
        if self._cancel is not None:
            self._cancel.add_callback(self.unsubscribe)


class BroadcastRegistry:
    """In-process pub/sub of rendered payloads keyed by game_id.

    Contract:
      - `subscribe(game_id, cancel)` registers a subscriber with a one-slot outbox;
        firing `cancel` unsubscribes it.
      - `publish(game_id, payload)` never blocks on a reader: a subscriber whose slot
        is still full from the previous payload is evicted instead of awaited.

    Delivery is lossy on purpose: keeping-up subscribers see every payload in order,
    slow ones get disconnected and are expected to reconnect for the current state.
    """

    def __init__(
        self,
        *,
        lock: threading.RLock | None = None,
        lock_timeout_s: float | None = DEFAULT_LOCK_TIMEOUT_S,
    ) -> None:
        self._lock = lock if lock is not None else new_store_lock()
        self._lock_timeout_s = lock_timeout_s
        self._by_game: dict[str, set[Subscriber]] = defaultdict(set)
        # Guarded by the game's fan-out lock.
        self._last_seq: dict[str, int] = {}
        self._fanout_locks: dict[str, threading.Lock] = {}

    def subscribe(self, game_id: str, cancel: CancelToken | None = None) -> Subscriber:
        sub = Subscriber(game_id=game_id, registry=self, cancel=cancel)
        with self._lock:
            self._by_game[game_id].add(sub)
        logger.debug("Subscribed to game %s", game_id)
        # Registered first so a token that already fired tears this subscriber straight back down.
        sub._watch()
        return sub

    def unsubscribe(self, sub: Subscriber) -> bool:
        return sub.unsubscribe()

    def subscribers(self, game_id: str) -> tuple[Subscriber, ...]:
        with self._lock:
            return tuple(self._by_game.get(game_id, ()))

    def count(self, game_id: str) -> int:
        with self._lock:
            return len(self._by_game.get(game_id, ()))

    def _fanout_lock(self, game_id: str) -> threading.Lock:
        with self._lock:
            fanout = self._fanout_locks.get(game_id)
            if fanout is None:
                fanout = self._fanout_locks[game_id] = threading.Lock()
            return fanout

    def publish(
        self,
        game_id: str,
        payload: bytes,
        *,
        seq: int | None = None,
        subscribers: tuple[Subscriber, ...] | None = None,
    ) -> int:
        """Offer `payload` to each subscriber; returns how many took it.

        `subscribers` is the set captured by the caller together with its snapshot;
        when omitted the current set is used. A `seq` not newer than the last one
        published for the game is stale and dropped.

        The seq check and the offers form one critical section per game, so a
        payload can never land after a newer one. Offers do not block, and
        evictions run once that section is left.
        """

        delivered = 0
        evicted: list[Subscriber] = []
        stale: list[Subscriber] = []
        with self._fanout_lock(game_id):
            if seq is not None:
                if seq <= self._last_seq.get(game_id, -1):
                    logger.debug("Dropping stale payload seq=%s for game %s", seq, game_id)
                    return 0
                self._last_seq[game_id] = seq
            if subscribers is None:
                subscribers = self.subscribers(game_id)

            for sub in subscribers:
                result = sub.outbox.offer(payload)
                if result == Delivery.delivered:
                    delivered += 1
                elif result == Delivery.full:
                    evicted.append(sub)
                else:
                    stale.append(sub)

        for sub in evicted:
            logger.info("Evicting slow subscriber from game %s", game_id)
            sub.unsubscribe()
        for sub in stale:
            # Torn down already; drops any that an earlier busy store left registered.
            self._discard(sub)
        return delivered

    def close(self) -> None:
        with self._lock:
            subs = [s for conns in self._by_game.values() for s in conns]
        for sub in subs:
            sub.unsubscribe()

    def _discard(self, sub: Subscriber) -> None:
        # Reached from cancel callbacks, possibly on an event loop thread: never wait unbounded.
        try:
            with store_lock(self._lock, timeout_s=self._lock_timeout_s):
                conns = self._by_game.get(sub.game_id)
                if not conns:
                    return
                conns.discard(sub)
                if not conns:
                    self._by_game.pop(sub.game_id, None)
        except StoreBusy:
            # Its outbox is already closed, so publish skips it; a later publish drops it.
            logger.warning("Store busy; deferring removal of a subscriber from game %s", sub.game_id)
