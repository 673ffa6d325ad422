"""Change channels: one live feed of ChangeEvents per subscription."""

from __future__ import annotations

import json
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional

from confluent_kafka import Consumer, KafkaError, KafkaException
from pydantic import ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.realtime.events import ChangeEvent, ChannelStatus

logger = get_logger(__name__)

EventCallback = Callable[[ChangeEvent], None]
StatusCallback = Callable[[ChannelStatus, Optional[str]], None]


class ChangeChannel(ABC):
    @abstractmethod
    def open(self, on_event: EventCallback, on_status: StatusCallback) -> None:
        """Start delivering events; report health through `on_status`."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivering events. Must be safe to call more than once."""


ChannelFactory = Callable[[str], ChangeChannel]


class KafkaChangeChannel(ChangeChannel):
    """
    Reads the realtime topic on a daemon thread.

    Each channel uses its own consumer group so every subscriber sees every
    event, starting from the latest offset.
    """

    def __init__(
        self,
        key: str,
        topic: Optional[str] = None,
        bootstrap_servers: Optional[str] = None,
        connect_timeout: Optional[float] = None,
        poll_timeout: float = 1.0,
    ):
        self.key = key
        self.topic = topic or settings.REALTIME_TOPIC
        self.bootstrap_servers = bootstrap_servers or settings.KAFKA_BOOTSTRAP_SERVERS
        self.connect_timeout = connect_timeout or settings.REALTIME_CONNECT_TIMEOUT_SECONDS
        self.poll_timeout = poll_timeout
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def open(self, on_event: EventCallback, on_status: StatusCallback) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(on_event, on_status),
            daemon=True,
            name=f"realtime-{self.key}",
        )
        self._thread.start()

    def close(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.poll_timeout * 2)

    def _run(self, on_event: EventCallback, on_status: StatusCallback) -> None:
        assigned = threading.Event()
        try:
            consumer = Consumer(
                {
                    "bootstrap.servers": self.bootstrap_servers,
                    "group.id": f"{settings.REALTIME_CONSUMER_GROUP_PREFIX}-{uuid.uuid4().hex}",
                    "auto.offset.reset": "latest",
                    "enable.auto.commit": True,
                }
            )
        except KafkaException as e:
            on_status(ChannelStatus.CHANNEL_ERROR, str(e))
            return

        def on_assign(c, partitions):
            if not assigned.is_set():
                assigned.set()
                on_status(ChannelStatus.SUBSCRIBED, None)

        started = time.monotonic()
        try:
            consumer.subscribe([self.topic], on_assign=on_assign)
            while not self._stop.is_set():
                msg = consumer.poll(self.poll_timeout)
                if msg is None:
                    if not assigned.is_set() and time.monotonic() - started > self.connect_timeout:
                        on_status(ChannelStatus.TIMED_OUT, "Timed out waiting for subscription")
                        return
                    continue
                if msg.error():
                    if msg.error().code() == KafkaError._PARTITION_EOF:
                        continue
                    on_status(ChannelStatus.CHANNEL_ERROR, str(msg.error()))
                    return
                self._deliver(msg.value(), on_event)
        except KafkaException as e:
            on_status(ChannelStatus.CHANNEL_ERROR, str(e))
        except Exception as e:
            logger.exception("realtime channel crashed", channel=self.key)
            on_status(ChannelStatus.CHANNEL_ERROR, str(e) or type(e).__name__)
        finally:
            consumer.close()

    def _deliver(self, raw: Optional[bytes], on_event: EventCallback) -> None:
        if raw is None:
            return
        try:
            event = ChangeEvent.model_validate(json.loads(raw.decode("utf-8")))
        except (ValueError, ValidationError):
            logger.warning("dropping malformed change event", channel=self.key)
            return
        on_event(event)


class KafkaChannelFactory:
    def __init__(self, topic: Optional[str] = None):
        self.topic = topic

    def __call__(self, key: str) -> ChangeChannel:
        return KafkaChangeChannel(key, topic=self.topic)
