"""Delayed reminder delivery through a dead-letter exchange."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Callable

import pika

logger = logging.getLogger(__name__)

EXCHANGE = "clock-exchange12"
DEAD_LETTER_EXCHANGE = "dlx_clock_exchange12"
ROUTING_KEY = "pro-expir-clock-key12"
DEAD_LETTER_QUEUE = "dlx_queue_clock_queue12"
DELAY_QUEUE = "clockP_queue12"
DEAD_LETTER_ROUTING_KEY = "my_routing_dead_key12"
CONSUMER_TAG = "clock-simple-consumer"

_TRANSIENT = 1
_REPEAT_INTERVALS = {
    1: timedelta(days=1),
    2: timedelta(days=7),
    3: timedelta(days=30),
    4: timedelta(days=365),
}


def expiration_ms(delay: timedelta) -> str:
    """Message expiration in whole milliseconds, truncated toward zero."""
    return str(int(delay / timedelta(milliseconds=1)))


def encode_payload(clock_id: int, delay: timedelta) -> bytes:
    """Message body naming the clock; the delay travels as the expiration, not here."""
    return json.dumps({"ID": int(clock_id)}, separators=(",", ":")).encode()


def repeat_interval(reminder_type: int) -> timedelta:
    """Time until a repeating reminder fires again."""
    return _REPEAT_INTERVALS.get(reminder_type, timedelta(seconds=1))


class ClockQueue:
    """Publishes clocks into a delay queue and consumes them when they expire."""

    def __init__(self, connection: Any) -> None:
        self.connection = connection
        self._channel: Any = None

    @property
    def channel(self) -> Any:
        if self._channel is None:
            self._channel = self.connection.channel()
        return self._channel

    def _declare_exchange(self, name: str) -> None:
        self.channel.exchange_declare(
            exchange=name,
            exchange_type="direct",
            durable=True,
            auto_delete=False,
            internal=False,
        )

    def _declare_dead_letter_queue(self) -> None:
        self.channel.queue_declare(queue=DEAD_LETTER_QUEUE, durable=True)
        self.channel.queue_bind(
            queue=DEAD_LETTER_QUEUE,
            exchange=DEAD_LETTER_EXCHANGE,
            routing_key=DEAD_LETTER_ROUTING_KEY,
        )

    def declare(self) -> None:
        """Declare the delay exchange and the dead-letter exchange."""
        self._declare_exchange(EXCHANGE)
        self._declare_exchange(DEAD_LETTER_EXCHANGE)

    def publish(self, clock_id: int, delay: timedelta) -> None:
        """Queue ``clock_id`` so that it is delivered after ``delay``."""
        self.declare()
        self.channel.queue_declare(
            queue=DELAY_QUEUE,
            durable=True,
            arguments={
                "x-dead-letter-exchange": DEAD_LETTER_EXCHANGE,
                "x-dead-letter-routing-key": DEAD_LETTER_ROUTING_KEY,
            },
        )
        self._declare_dead_letter_queue()
        self.channel.queue_bind(queue=DELAY_QUEUE, exchange=EXCHANGE, routing_key=ROUTING_KEY)
        properties = pika.BasicProperties(
            headers={},
            content_type="text/plain",
            delivery_mode=_TRANSIENT,
            priority=0,
            expiration=expiration_ms(delay),
        )
        self.channel.basic_publish(
            exchange=EXCHANGE,
            routing_key=ROUTING_KEY,
            body=encode_payload(clock_id, delay),
            properties=properties,
        )
        logger.info("queued clock %s for %s", clock_id, delay)

    def consume(self, handler: Callable[[int], Any]) -> None:
        """Hand every expired clock id to ``handler``; blocks until consuming stops."""
        self._declare_exchange(DEAD_LETTER_EXCHANGE)
        self._declare_dead_letter_queue()

        def on_message(channel: Any, method: Any, properties: Any, body: bytes) -> None:
            logger.info("got %dB delivery [%s] %r", len(body), method.delivery_tag, body)
            try:
                clock_id = int(json.loads(body)["ID"])
            except (ValueError, TypeError, KeyError) as error:
                logger.error("unreadable delivery %r: %s", body, error)
            else:
                try:
                    handler(clock_id)
                except Exception:
                    logger.exception("handling clock %s failed", clock_id)
            channel.basic_ack(delivery_tag=method.delivery_tag)

        self.channel.basic_consume(
            queue=DEAD_LETTER_QUEUE,
            on_message_callback=on_message,
            auto_ack=False,
            consumer_tag=CONSUMER_TAG,
        )
        self.channel.start_consuming()
        logger.info("deliveries channel closed")