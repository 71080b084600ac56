"""User notification sinks for pledge events."""

from typing import Optional

from crowdfund.config import Config
from crowdfund.log import get_logger
from crowdfund.messaging.rabbitmq import RabbitMQConnection, RabbitMQPublisher
from crowdfund.messaging.schema import PledgeReceivedMessage

logger = get_logger(__name__)


class Notifier:
    """Delivers notifications to the user watching a campaign."""

    def notify_pledge(self, message: PledgeReceivedMessage) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class LogNotifier(Notifier):
    """Writes notifications to the log."""

    def notify_pledge(self, message: PledgeReceivedMessage) -> None:
        logger.info(
            f"New pledge received for {message.campaign_slug}: {message.display_delta} "
            f"(balance {message.balance})"
        )


class RabbitMQNotifier(Notifier):
    """Publishes notifications to the notification exchange."""

    def __init__(self, config: Config):
        """Initialize notifier.

        Args:
            config: Configuration object with RabbitMQ settings
        """
        self.config = config
        self._connection: Optional[RabbitMQConnection] = None
        self._publisher: Optional[RabbitMQPublisher] = None
        self._published = 0

    def connect(self) -> None:
        """Establish connection to RabbitMQ."""
        self._connection = RabbitMQConnection.from_config(self.config)
        self._connection.connect()
        self._publisher = RabbitMQPublisher(self._connection, exchange=self.config.rabbitmq_exchange)
        self._publisher.enable_confirm_delivery()
        logger.info("Notifier connected to RabbitMQ")

    def ensure_connected(self) -> None:
        """Ensure publisher is connected."""
        if self._connection is None or self._publisher is None:
            self.connect()

    def notify_pledge(self, message: PledgeReceivedMessage) -> None:
        self.ensure_connected()
        if self._publisher.publish(message):
            self._published += 1
            logger.debug(f"Published pledge notification for {message.campaign_slug}")
        else:
            logger.error(f"Failed to publish pledge notification for {message.campaign_slug}")

    def close(self) -> None:
        """Close the connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            self._publisher = None
        logger.info(f"Notifier closed. Total notifications published: {self._published}")
