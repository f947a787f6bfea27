import logging
import pika
from .config import rabbitmq_config

logger = logging.getLogger(__name__)


class RabbitMQSetup:
    """Creates connections and declares the exchanges this service publishes to"""

    def create_connection(self) -> pika.BlockingConnection:
        credentials = pika.PlainCredentials(rabbitmq_config.username, rabbitmq_config.password)
        parameters = pika.ConnectionParameters(
            host=rabbitmq_config.host,
            port=rabbitmq_config.port,
            virtual_host=rabbitmq_config.virtual_host,
            credentials=credentials,
            heartbeat=rabbitmq_config.heartbeat,
            blocked_connection_timeout=rabbitmq_config.blocked_connection_timeout,
        )
        return pika.BlockingConnection(parameters)

    def declare_exchanges(self, channel) -> None:
        channel.exchange_declare(
            exchange=rabbitmq_config.settlement_exchange,
            exchange_type=rabbitmq_config.exchange_type,
            durable=True,
        )
        logger.info(f"Declared exchange {rabbitmq_config.settlement_exchange}")
