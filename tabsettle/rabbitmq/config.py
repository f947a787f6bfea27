from dataclasses import dataclass
from tabsettle.core.config import settings


@dataclass(frozen=True)
class RabbitMQConfig:
    """Connection and topology settings for the settlement event stream"""
    host: str = settings.RABBITMQ_HOST
    port: int = settings.RABBITMQ_PORT
    username: str = settings.RABBITMQ_USER
    password: str = settings.RABBITMQ_PASSWORD
    virtual_host: str = settings.RABBITMQ_VHOST
    settlement_exchange: str = "settlement.events"
    exchange_type: str = "topic"
    heartbeat: int = 600
    blocked_connection_timeout: int = 300


rabbitmq_config = RabbitMQConfig()
