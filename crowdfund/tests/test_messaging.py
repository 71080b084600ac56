"""Tests for notification messages and publishers (pika mocked)."""

import json
import logging
from unittest.mock import Mock, patch

import pytest
from pika.exceptions import AMQPConnectionError, NackError
from pydantic import ValidationError

from crowdfund.config import Config
from crowdfund.messaging.notifier import LogNotifier, RabbitMQNotifier
from crowdfund.messaging.rabbitmq import RabbitMQConnection, RabbitMQPublisher, backoff_delays
from crowdfund.messaging.routing import (
    EXCHANGE_NAME,
    QUEUE_BINDINGS,
    QueueName,
    RoutingKey,
    get_routing_key_for_message,
)
from crowdfund.messaging.schema import PledgeReceivedMessage, parse_message


def make_message(**overrides):
    values = {
        "campaign_slug": "save-the-reef",
        "deposit_address": "0xABCDEF0000000000000000000000000000000001",
        "delta": 1_500_000,
        "balance": 4_000_000,
        "display_delta": "+$1.50 USDC",
    }
    values.update(overrides)
    return PledgeReceivedMessage(**values)


def test_message_serialization():
    message = make_message(delta=2**80, balance=2**81)
    data = json.loads(message.model_dump_json())

    assert data["message_type"] == "pledge_received"
    assert data["deposit_address"] == "0xabcdef0000000000000000000000000000000001"
    assert data["delta"] == str(2**80)
    assert data["balance"] == str(2**81)

    parsed = parse_message(data)
    assert isinstance(parsed, PledgeReceivedMessage)
    assert parsed.delta == 2**80


def test_message_rejects_non_positive_delta():
    with pytest.raises(ValidationError):
        make_message(delta=0)


def test_parse_unknown_message_type():
    with pytest.raises(ValueError):
        parse_message({"message_type": "refund_claimed"})


def test_routing():
    assert get_routing_key_for_message("pledge_received") == RoutingKey.PLEDGE_RECEIVED.value
    assert get_routing_key_for_message("other") == "campaign.unknown"
    assert any(RoutingKey.PLEDGE_RECEIVED.value in keys for keys in QUEUE_BINDINGS.values())


def test_log_notifier(caplog):
    with caplog.at_level(logging.INFO, logger="crowdfund.messaging.notifier"):
        LogNotifier().notify_pledge(make_message())
    assert "save-the-reef" in caplog.text
    assert "+$1.50 USDC" in caplog.text


def test_publisher_publishes_persistent_json():
    connection = Mock()
    publisher = RabbitMQPublisher(connection)

    assert publisher.publish(make_message(), RoutingKey.PLEDGE_RECEIVED.value)

    kwargs = connection.channel.basic_publish.call_args.kwargs
    assert kwargs["exchange"] == EXCHANGE_NAME
    assert kwargs["routing_key"] == "campaign.pledge_received"
    assert kwargs["properties"].delivery_mode == 2
    assert json.loads(kwargs["body"])["campaign_slug"] == "save-the-reef"


def test_publisher_reconnects_and_retries():
    connection = Mock()
    connection.channel.basic_publish.side_effect = [AMQPConnectionError("closed"), None]
    publisher = RabbitMQPublisher(connection)

    assert publisher.publish(make_message(), RoutingKey.PLEDGE_RECEIVED.value)
    connection.connect.assert_called_once()
    assert connection.channel.basic_publish.call_count == 2


def test_publisher_gives_up():
    connection = Mock()
    connection.channel.basic_publish.side_effect = AMQPConnectionError("closed")
    publisher = RabbitMQPublisher(connection)

    assert publisher.publish(make_message(), "campaign.pledge_received") is False
    assert connection.channel.basic_publish.call_count == 3


def test_publisher_derives_routing_key():
    connection = Mock()
    publisher = RabbitMQPublisher(connection)

    assert publisher.publish(make_message())
    assert connection.channel.basic_publish.call_args.kwargs["routing_key"] == RoutingKey.PLEDGE_RECEIVED.value


def test_publisher_does_not_retry_refused_message():
    connection = Mock()
    connection.channel.basic_publish.side_effect = NackError([])
    publisher = RabbitMQPublisher(connection)
    publisher.enable_confirm_delivery()

    assert publisher.publish(make_message()) is False
    assert connection.channel.basic_publish.call_count == 1
    assert connection.channel.basic_publish.call_args.kwargs["mandatory"] is True
    connection.connect.assert_not_called()


def test_backoff_delays_are_capped():
    delays = backoff_delays(1.0, 5.0)
    assert [next(delays) for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_connect_retries_then_gives_up():
    with patch("crowdfund.messaging.rabbitmq.pika.BlockingConnection") as blocking, patch(
        "crowdfund.messaging.rabbitmq.time.sleep"
    ) as sleep:
        blocking.side_effect = AMQPConnectionError("refused")
        connection = RabbitMQConnection(max_retries=2, retry_delay=0.5)
        with pytest.raises(AMQPConnectionError):
            connection.connect()

    assert blocking.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]


def test_declare_topology_and_queue_depths():
    with patch("crowdfund.messaging.rabbitmq.pika.BlockingConnection") as blocking:
        channel = blocking.return_value.channel.return_value
        channel.is_closed = False
        blocking.return_value.is_closed = False
        channel.queue_declare.return_value.method.message_count = 7
        channel.queue_declare.return_value.method.consumer_count = 1

        connection = RabbitMQConnection()
        connection.declare_topology()
        depths = connection.queue_depths()

    channel.exchange_declare.assert_called_once_with(exchange=EXCHANGE_NAME, exchange_type="topic", durable=True)
    channel.queue_bind.assert_any_call(
        queue=QueueName.PLEDGE_NOTIFICATIONS.value,
        exchange=EXCHANGE_NAME,
        routing_key=RoutingKey.PLEDGE_RECEIVED.value,
    )
    assert depths[QueueName.PLEDGE_NOTIFICATIONS.value] == {"message_count": 7, "consumer_count": 1}


def test_rabbitmq_notifier():
    config = Config(db_url="sqlite://", notifier="rabbitmq", rabbitmq_host="broker")
    with patch("crowdfund.messaging.notifier.RabbitMQConnection") as connection_cls:
        notifier = RabbitMQNotifier(config)
        notifier.notify_pledge(make_message())
        notifier.notify_pledge(make_message())
        notifier.close()

    connection_cls.from_config.assert_called_once_with(config)
    connection = connection_cls.from_config.return_value
    connection.channel.confirm_delivery.assert_called_once()
    assert connection.channel.basic_publish.call_count == 2
    assert connection.channel.basic_publish.call_args.kwargs["exchange"] == "crowdfund_notifications"
    connection.close.assert_called_once()
