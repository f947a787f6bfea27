import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import pika
from tabsettle.core.config import settings
from .config import rabbitmq_config
from .setup import RabbitMQSetup

logger = logging.getLogger(__name__)


class RabbitMQProducer:
    """Publishes settlement lifecycle messages to the settlement exchange"""

    def __init__(self):
        self.connection: Optional[pika.BlockingConnection] = None
        self.channel = None
        self.setup = RabbitMQSetup()

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and not self.connection.is_closed

    def connect(self) -> None:
        """Open a connection and declare the settlement exchange"""
        try:
            self.connection = self.setup.create_connection()
            self.channel = self.connection.channel()
            self.setup.declare_exchanges(self.channel)
        except Exception as e:
            logger.error(f"Could not connect to RabbitMQ at {rabbitmq_config.host}:{rabbitmq_config.port}: {e}")
            raise
        logger.info(f"Connected to RabbitMQ exchange {rabbitmq_config.settlement_exchange}")

    def disconnect(self) -> None:
        if self.channel is not None and not self.channel.is_closed:
            self.channel.close()
        if self.is_connected:
            self.connection.close()
        self.channel = None
        self.connection = None
        logger.info("Disconnected from RabbitMQ")

    def publish(self, routing_key: str, payload: Dict[str, Any]) -> bool:
        """
        Publish a settlement lifecycle message

        Args:
            routing_key: e.g. "event.status_changed", "payment.completed"
            payload: JSON-serializable message body; a UTC timestamp is added

        Returns:
            bool: False when the broker could not be reached or refused the message
        """
        body = json.dumps(
            {**payload, "timestamp": datetime.now(timezone.utc).isoformat()},
            default=str
        )
        try:
            if not self.is_connected:
                self.connect()
            self.channel.basic_publish(
                exchange=rabbitmq_config.settlement_exchange,
                routing_key=routing_key,
                body=body,
                properties=pika.BasicProperties(
                    content_type="application/json",
                    delivery_mode=pika.DeliveryMode.Persistent,
                )
            )
        except Exception as e:
            logger.warning(f"Dropped {routing_key} message, RabbitMQ publish failed: {e}")
            return False

        logger.debug(f"Published {routing_key} message")
        return True


_producer: Optional[RabbitMQProducer] = None


def get_rabbitmq_producer() -> RabbitMQProducer:
    """Shared producer; it connects on the first publish"""
    global _producer
    if _producer is None:
        _producer = RabbitMQProducer()
    return _producer


def close_rabbitmq_producer() -> None:
    global _producer
    if _producer is not None:
        _producer.disconnect()
        _producer = None


def publish_event(routing_key: str, payload: Dict[str, Any]) -> bool:
    """Best-effort publish: a broker outage never fails the calling request"""
    if not settings.RABBITMQ_ENABLED:
        return False
    return get_rabbitmq_producer().publish(routing_key, payload)
