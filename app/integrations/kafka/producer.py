from __future__ import annotations

import json
from typing import Any, Optional

from confluent_kafka import Producer

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_producer: Optional[Producer] = None


def get_producer() -> Producer:
    """Process-wide producer, created on first publish."""
    global _producer
    if _producer is None:
        _producer = Producer({"bootstrap.servers": settings.KAFKA_BOOTSTRAP_SERVERS})
    return _producer


def publish_json(
    topic: str,
    key: str,
    value: dict[str, Any],
    producer: Optional[Producer] = None,
    flush_timeout: float = 10.0,
) -> None:
    """
    Publish a JSON message and block until it is delivered.

    Raises RuntimeError when the broker reports a delivery failure or the
    message is still queued after `flush_timeout`.
    """
    p = producer or get_producer()
    payload = json.dumps(value, default=str).encode("utf-8")

    delivery_error: list[Exception] = []

    def delivery_cb(err, msg):
        if err is not None:
            delivery_error.append(RuntimeError(str(err)))

    p.produce(topic=topic, key=key.encode("utf-8"), value=payload, callback=delivery_cb)
    remaining = p.flush(flush_timeout)

    if delivery_error:
        logger.error("kafka delivery failed", topic=topic, key=key, error=str(delivery_error[0]))
        raise delivery_error[0]
    if remaining:
        raise RuntimeError(f"{remaining} message(s) still queued for {topic}")
    logger.debug("message published", topic=topic, key=key)
