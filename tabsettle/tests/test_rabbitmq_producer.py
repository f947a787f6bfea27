"""
Tests for best-effort lifecycle message publishing (pika is mocked).
"""
import json
from unittest.mock import MagicMock, patch

from tabsettle.core.config import settings
from tabsettle.rabbitmq.config import rabbitmq_config
from tabsettle.rabbitmq.producer import RabbitMQProducer, publish_event


class TestRabbitMQProducer:

    def test_publish_connects_lazily(self):
        producer = RabbitMQProducer()
        connection = MagicMock()
        connection.is_closed = False
        channel = connection.channel.return_value

        with patch.object(producer.setup, "create_connection", return_value=connection) as create_connection:
            assert producer.publish("payment.completed", {"settlement_id": "S1"}) is True

        create_connection.assert_called_once()
        channel.exchange_declare.assert_called_once_with(
            exchange=rabbitmq_config.settlement_exchange,
            exchange_type="topic",
            durable=True,
        )
        kwargs = channel.basic_publish.call_args.kwargs
        assert kwargs["exchange"] == "settlement.events"
        assert kwargs["routing_key"] == "payment.completed"
        body = json.loads(kwargs["body"])
        assert body["settlement_id"] == "S1"
        assert "timestamp" in body

    def test_broker_failure_is_not_raised(self):
        producer = RabbitMQProducer()

        with patch.object(producer.setup, "create_connection", side_effect=ConnectionError("broker down")):
            assert producer.publish("event.status_changed", {"event_id": "E1"}) is False


class TestPublishEvent:

    def test_disabled(self):
        with patch("tabsettle.rabbitmq.producer.get_rabbitmq_producer") as get_producer:
            assert publish_event("event.status_changed", {"event_id": "E1"}) is False
        get_producer.assert_not_called()

    def test_enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "RABBITMQ_ENABLED", True)

        with patch("tabsettle.rabbitmq.producer.get_rabbitmq_producer") as get_producer:
            get_producer.return_value.publish.return_value = True
            assert publish_event("settlement.generated", {"event_id": "E1"}) is True

        get_producer.return_value.publish.assert_called_once_with("settlement.generated", {"event_id": "E1"})
