"""Routing key constants and helpers for RabbitMQ."""

from enum import Enum
from typing import Dict, List


# Exchange configuration
EXCHANGE_NAME = "crowdfund_notifications"
EXCHANGE_TYPE = "topic"


class RoutingKey(str, Enum):
    """Routing key enumeration."""
    PLEDGE_RECEIVED = "campaign.pledge_received"


class QueueName(str, Enum):
    """Queue name enumeration."""
    PLEDGE_NOTIFICATIONS = "queue.pledge_notifications"


# Queue bindings: queue_name -> list of routing keys to bind
QUEUE_BINDINGS: Dict[str, List[str]] = {
    QueueName.PLEDGE_NOTIFICATIONS.value: [RoutingKey.PLEDGE_RECEIVED.value],
}

ALL_QUEUES = [QueueName.PLEDGE_NOTIFICATIONS.value]

# Queue properties
QUEUE_MESSAGE_TTL = 86400000  # 1 day in milliseconds
QUEUE_MAX_LENGTH = 100000


def get_routing_key_for_message(message_type: str) -> str:
    """Get the routing key for a given message type.

    Args:
        message_type: Message type string (e.g., "pledge_received")

    Returns:
        Routing key string
    """
    routing_map = {
        "pledge_received": RoutingKey.PLEDGE_RECEIVED.value,
    }
    return routing_map.get(message_type, "campaign.unknown")


def get_queue_arguments() -> Dict:
    """Get queue arguments (bounded retention for notifications)."""
    return {
        "x-message-ttl": QUEUE_MESSAGE_TTL,
        "x-max-length": QUEUE_MAX_LENGTH,
    }
