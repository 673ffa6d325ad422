"""Subscription manager for change events with reconnect and backoff."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from tenacity import RetryCallState, wait_exponential

from app.core.config import settings
from app.core.logging import get_logger
from app.realtime.channels import ChangeChannel, ChannelFactory
from app.realtime.events import (
    ChangeEvent,
    ChannelStatus,
    ConnectionState,
    SubscriptionFilter,
)

logger = get_logger(__name__)

ChangeHandler = Callable[[ChangeEvent], None]
StateHandler = Callable[[ConnectionState, Optional[str]], None]


class Cancellable(Protocol):
    def cancel(self) -> Any: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, fn: Callable[[], None]) -> Cancellable: ...


class TimerScheduler:
    def call_later(self, delay: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer


@dataclass(frozen=True)
class RetryPolicy:
    base_delay: float = 1.0
    max_delay: float = 10.0
    max_attempts: int = 5

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            base_delay=settings.REALTIME_RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.REALTIME_RETRY_MAX_DELAY_SECONDS,
            max_attempts=settings.REALTIME_MAX_RETRY_ATTEMPTS,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect number `attempt + 1`."""
        state = RetryCallState(None, None, (), {})
        state.attempt_number = attempt + 1
        return wait_exponential(multiplier=self.base_delay, max=self.max_delay)(state)


@dataclass
class _Subscription:
    handle: str
    key: str
    filter: SubscriptionFilter
    on_change: ChangeHandler
    on_state: Optional[StateHandler] = None
    state: ConnectionState = ConnectionState.disconnected
    error: Optional[str] = None
    attempts: int = 0
    generation: int = 0
    channel: Optional[ChangeChannel] = None
    timer: Optional[Cancellable] = field(default=None, repr=False)


class RealtimeBridge:
    """
    Keeps one channel per subscription key alive.

    On CHANNEL_ERROR or TIMED_OUT the channel is torn down and reopened
    after an exponential delay. Once `max_attempts` reconnects have failed
    the subscription parks in the `error` state until `reconnect` is called.
    Callbacks from a channel that has since been replaced are ignored.
    """

    def __init__(
        self,
        channel_factory: ChannelFactory,
        policy: Optional[RetryPolicy] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.channel_factory = channel_factory
        self.policy = policy or RetryPolicy.from_settings()
        self.scheduler = scheduler or TimerScheduler()
        self._lock = threading.RLock()
        self._subs: dict[str, _Subscription] = {}
        self._handles_by_key: dict[str, str] = {}

    # ---------- public API ----------

    def subscribe(
        self,
        key: str,
        filter: SubscriptionFilter,
        on_change: ChangeHandler,
        on_state: Optional[StateHandler] = None,
    ) -> str:
        closing: list[ChangeChannel] = []
        with self._lock:
            self._detach(self._handles_by_key.get(key), closing)

            handle = uuid.uuid4().hex
            sub = _Subscription(
                handle=handle, key=key, filter=filter, on_change=on_change, on_state=on_state
            )
            self._subs[handle] = sub
            self._handles_by_key[key] = handle
            self._open(sub)
        self._close_channels(closing)
        return handle

    def unsubscribe(self, handle: str) -> None:
        closing: list[ChangeChannel] = []
        with self._lock:
            sub = self._detach(handle, closing)
        self._close_channels(closing)
        if sub is not None:
            logger.info("realtime unsubscribed", key=sub.key)

    def reconnect(self, handle: str) -> None:
        """Manual reconnect; resets the attempt counter."""
        closing: list[ChangeChannel] = []
        with self._lock:
            sub = self._subs.get(handle)
            if sub is None:
                return
            self._teardown(sub, closing)
            sub.generation += 1
            sub.attempts = 0
            sub.error = None
            generation = sub.generation
        self._close_channels(closing)

        with self._lock:
            sub = self._current(handle, generation)
            if sub is not None:
                self._open(sub)

    def state(self, handle: str) -> ConnectionState:
        with self._lock:
            sub = self._subs.get(handle)
            return sub.state if sub is not None else ConnectionState.disconnected

    def error(self, handle: str) -> Optional[str]:
        with self._lock:
            sub = self._subs.get(handle)
            return sub.error if sub is not None else None

    def close(self) -> None:
        with self._lock:
            handles = list(self._subs)
        for handle in handles:
            self.unsubscribe(handle)

    # ---------- internals ----------
    # Channels are detached under the lock and closed after it is released;
    # a channel's close may block until its reader thread exits.

    def _open(self, sub: _Subscription) -> None:
        sub.generation += 1
        generation = sub.generation
        self._set_state(sub, ConnectionState.connecting)
        sub.channel = self.channel_factory(sub.key)
        sub.channel.open(
            lambda event: self._on_event(sub.handle, generation, event),
            lambda status, detail=None: self._on_status(sub.handle, generation, status, detail),
        )

    def _detach(
        self, handle: Optional[str], closing: list[ChangeChannel]
    ) -> Optional[_Subscription]:
        sub = self._subs.pop(handle, None) if handle is not None else None
        if sub is None:
            return None
        if self._handles_by_key.get(sub.key) == handle:
            del self._handles_by_key[sub.key]
        self._teardown(sub, closing)
        sub.generation += 1
        self._set_state(sub, ConnectionState.disconnected)
        return sub

    def _teardown(self, sub: _Subscription, closing: list[ChangeChannel]) -> None:
        if sub.timer is not None:
            sub.timer.cancel()
            sub.timer = None
        channel, sub.channel = sub.channel, None
        if channel is not None:
            closing.append(channel)

    @staticmethod
    def _close_channels(channels: list[ChangeChannel]) -> None:
        for channel in channels:
            channel.close()

    def _current(self, handle: str, generation: int) -> Optional[_Subscription]:
        sub = self._subs.get(handle)
        if sub is None or sub.generation != generation:
            return None
        return sub

    def _on_event(self, handle: str, generation: int, event: ChangeEvent) -> None:
        with self._lock:
            sub = self._current(handle, generation)
            if sub is None or not sub.filter.matches(event):
                return
            on_change = sub.on_change
        on_change(event)

    def _on_status(
        self, handle: str, generation: int, status: ChannelStatus, detail: Optional[str]
    ) -> None:
        closing: list[ChangeChannel] = []
        with self._lock:
            sub = self._current(handle, generation)
            if sub is None:
                return

            if status == ChannelStatus.SUBSCRIBED:
                sub.attempts = 0
                sub.error = None
                self._set_state(sub, ConnectionState.connected)
                logger.info("realtime subscribed", key=sub.key)
            elif status in (ChannelStatus.CHANNEL_ERROR, ChannelStatus.TIMED_OUT):
                self._schedule_retry(sub, status, detail, closing)
            elif status == ChannelStatus.CLOSED:
                self._teardown(sub, closing)
                self._set_state(sub, ConnectionState.disconnected)
        self._close_channels(closing)

    def _schedule_retry(
        self,
        sub: _Subscription,
        status: ChannelStatus,
        detail: Optional[str],
        closing: list[ChangeChannel],
    ) -> None:
        self._teardown(sub, closing)
        if sub.attempts >= self.policy.max_attempts:
            sub.error = (
                f"Connection failed after {sub.attempts} attempts. "
                "Please reconnect manually."
            )
            self._set_state(sub, ConnectionState.error)
            logger.error("realtime retries exhausted", key=sub.key, last_error=detail)
            return

        delay = self.policy.delay_for(sub.attempts)
        sub.attempts += 1
        sub.error = detail or status.value
        self._set_state(sub, ConnectionState.reconnecting)
        logger.warning(
            "realtime channel failed, retrying",
            key=sub.key,
            status=status.value,
            attempt=sub.attempts,
            delay=delay,
        )
        generation = sub.generation
        sub.timer = self.scheduler.call_later(
            delay, lambda: self._retry(sub.handle, generation)
        )

    def _retry(self, handle: str, generation: int) -> None:
        with self._lock:
            sub = self._current(handle, generation)
            if sub is None:
                return
            sub.timer = None
            self._open(sub)

    def _set_state(self, sub: _Subscription, state: ConnectionState) -> None:
        sub.state = state
        if sub.on_state is not None:
            sub.on_state(state, sub.error)
