"""RabbitMQ plumbing for pledge notifications."""

import time
from typing import Dict, Iterator, Optional

import pika
from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPChannelError, AMQPConnectionError, NackError, UnroutableError

from crowdfund.config import Config
from crowdfund.log import get_logger
from crowdfund.messaging.routing import (
    ALL_QUEUES,
    EXCHANGE_NAME,
    EXCHANGE_TYPE,
    QUEUE_BINDINGS,
    get_queue_arguments,
    get_routing_key_for_message,
)
from crowdfund.messaging.schema import BaseMessage

logger = get_logger(__name__)


def backoff_delays(initial: float, maximum: float) -> Iterator[float]:
    """Yield exponentially growing delays capped at ``maximum``."""
    delay = initial
    while True:
        yield delay
        delay = min(delay * 2, maximum)


class RabbitMQConnection:
    """Blocking connection to the notification broker, reopened on demand."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5672,
        user: str = "guest",
        password: str = "guest",
        vhost: str = "/",
        heartbeat: int = 60,
        max_retries: int = 5,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ):
        """Initialize connection settings (nothing is opened yet).

        Args:
            host: Broker host
            port: Broker port
            user: Username
            password: Password
            vhost: Virtual host
            heartbeat: Heartbeat interval in seconds
            max_retries: Connection attempts before giving up (-1 retries forever)
            retry_delay: First backoff delay in seconds
            max_retry_delay: Backoff ceiling in seconds
        """
        self.params = pika.ConnectionParameters(
            host=host,
            port=port,
            virtual_host=vhost,
            credentials=pika.PlainCredentials(user, password),
            heartbeat=heartbeat,
            blocked_connection_timeout=300,
        )
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay

        self._connection: Optional[pika.BlockingConnection] = None
        self._channel: Optional[BlockingChannel] = None

    @classmethod
    def from_config(cls, config: Config) -> "RabbitMQConnection":
        return cls(**config.get_rabbitmq_connection_params())

    @property
    def address(self) -> str:
        return f"{self.params.host}:{self.params.port}"

    def connect(self) -> None:
        """Open the connection and a channel, backing off between failed attempts."""
        delays = backoff_delays(self.retry_delay, self.max_retry_delay)
        attempt = 0
        while True:
            attempt += 1
            try:
                self._connection = pika.BlockingConnection(self.params)
                self._channel = self._connection.channel()
                logger.info(f"Connected to RabbitMQ at {self.address}")
                return
            except AMQPConnectionError as e:
                if self.max_retries != -1 and attempt > self.max_retries:
                    logger.error(f"Giving up on RabbitMQ at {self.address} after {attempt} attempts")
                    raise
                delay = next(delays)
                logger.warning(f"RabbitMQ unavailable (attempt {attempt}): {e}. Retrying in {delay:.1f}s")
                time.sleep(delay)

    @property
    def channel(self) -> BlockingChannel:
        """Open channel, reconnecting first if the connection or channel dropped."""
        if self._connection is None or self._connection.is_closed:
            self.connect()
        elif self._channel is None or self._channel.is_closed:
            self._channel = self._connection.channel()
        return self._channel

    def close(self) -> None:
        try:
            if self._connection is not None and self._connection.is_open:
                self._connection.close()
            logger.info("RabbitMQ connection closed")
        except Exception as e:
            logger.warning(f"Error closing RabbitMQ connection: {e}")
        finally:
            self._connection = None
            self._channel = None

    def declare_topology(self, exchange: str = EXCHANGE_NAME) -> None:
        """Declare the notification exchange, its queues and their bindings."""
        channel = self.channel
        channel.exchange_declare(exchange=exchange, exchange_type=EXCHANGE_TYPE, durable=True)
        logger.info(f"Declared exchange: {exchange}")

        for queue_name, routing_keys in QUEUE_BINDINGS.items():
            channel.queue_declare(queue=queue_name, durable=True, arguments=get_queue_arguments())
            for routing_key in routing_keys:
                channel.queue_bind(queue=queue_name, exchange=exchange, routing_key=routing_key)
            logger.info(f"Declared queue {queue_name} bound to {', '.join(routing_keys)}")

    def queue_depths(self) -> Dict[str, Dict]:
        """Message and consumer counts per notification queue.

        Returns:
            Queue name to counts, or to ``{"error": ...}`` when the queue cannot be inspected
        """
        depths = {}
        for queue_name in ALL_QUEUES:
            try:
                method = self.channel.queue_declare(queue=queue_name, passive=True).method
                depths[queue_name] = {
                    "message_count": method.message_count,
                    "consumer_count": method.consumer_count,
                }
            except (AMQPChannelError, AMQPConnectionError) as e:
                logger.warning(f"Cannot inspect queue {queue_name}: {e}")
                depths[queue_name] = {"error": str(e)}
        return depths


class RabbitMQPublisher:
    """Publishes notification messages as persistent JSON."""

    def __init__(self, connection: RabbitMQConnection, exchange: str = EXCHANGE_NAME, max_attempts: int = 3):
        """Initialize publisher.

        Args:
            connection: Broker connection
            exchange: Topic exchange to publish to
            max_attempts: Publish attempts, reconnecting between them
        """
        self.connection = connection
        self.exchange = exchange
        self.max_attempts = max_attempts
        self._confirms = False

    def enable_confirm_delivery(self) -> None:
        """Ask the broker to confirm every publish on this channel."""
        if not self._confirms:
            self.connection.channel.confirm_delivery()
            self._confirms = True
            logger.info("Publisher confirms enabled")

    def publish(self, message: BaseMessage, routing_key: Optional[str] = None) -> bool:
        """Publish a message.

        Args:
            message: Notification message
            routing_key: Override the key derived from the message type

        Returns:
            True once the broker accepted the message, False after the last failed attempt
        """
        routing_key = routing_key or get_routing_key_for_message(getattr(message, "message_type", ""))
        body = message.model_dump_json()
        properties = pika.BasicProperties(content_type="application/json", delivery_mode=2)

        for attempt in range(1, self.max_attempts + 1):
            try:
                self.connection.channel.basic_publish(
                    exchange=self.exchange,
                    routing_key=routing_key,
                    body=body,
                    properties=properties,
                    mandatory=self._confirms,
                )
                logger.debug(f"Published {routing_key} to {self.exchange}")
                return True
            except (UnroutableError, NackError) as e:
                logger.error(f"Broker refused {routing_key}: {e}")
                return False
            except (AMQPConnectionError, AMQPChannelError) as e:
                logger.warning(f"Publish of {routing_key} failed (attempt {attempt}/{self.max_attempts}): {e}")
                if attempt == self.max_attempts:
                    break
                self.connection.connect()
                if self._confirms:
                    # Confirm mode is per channel
                    self._confirms = False
                    self.enable_confirm_delivery()

        logger.error(f"Dropping {routing_key} notification after {self.max_attempts} attempts")
        return False
