"""Messaging module for pledge notifications."""

from crowdfund.messaging.schema import (
    PledgeReceivedMessage,
    MessageType,
)
from crowdfund.messaging.routing import (
    RoutingKey,
    EXCHANGE_NAME,
    get_routing_key_for_message,
)
from crowdfund.messaging.rabbitmq import (
    RabbitMQConnection,
    RabbitMQPublisher,
)
from crowdfund.messaging.notifier import (
    Notifier,
    LogNotifier,
    RabbitMQNotifier,
)

__all__ = [
    "PledgeReceivedMessage",
    "MessageType",
    "RoutingKey",
    "EXCHANGE_NAME",
    "get_routing_key_for_message",
    "RabbitMQConnection",
    "RabbitMQPublisher",
    "Notifier",
    "LogNotifier",
    "RabbitMQNotifier",
]
