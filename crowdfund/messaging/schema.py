"""Pydantic models for notification message schema validation."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal

from pydantic import BaseModel, Field, field_serializer, field_validator


class MessageType(str, Enum):
    """Message type enumeration."""
    PLEDGE_RECEIVED = "pledge_received"


class BaseMessage(BaseModel):
    """Base message model with common fields."""
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("published_at")
    def serialize_published_at(self, value: datetime) -> str:
        return value.isoformat()


class PledgeReceivedMessage(BaseMessage):
    """A deposit address balance increased while a campaign was being watched.

    Attributes:
        message_type: Always "pledge_received"
        campaign_slug: Slug of the watched campaign
        deposit_address: Campaign deposit address
        delta: Balance increase in smallest currency unit
        balance: Balance after the increase
        display_delta: Human-readable increase, e.g. "+$150.00 USDC"
    """
    message_type: Literal["pledge_received"] = "pledge_received"
    campaign_slug: str
    deposit_address: str
    delta: int = Field(gt=0)
    balance: int = Field(ge=0)
    display_delta: str

    @field_validator("deposit_address")
    @classmethod
    def lowercase_hex(cls, v: str) -> str:
        """Ensure hex strings are lowercase."""
        return v.lower() if v else v

    @field_serializer("delta", "balance")
    def serialize_amount(self, value: int) -> str:
        # Amounts can exceed the safe integer range of JSON consumers
        return str(value)


def parse_message(data: Dict[str, Any]) -> BaseMessage:
    """Parse a message dictionary into the appropriate message type.

    Args:
        data: Message data dictionary

    Returns:
        Parsed message object

    Raises:
        ValueError: If message type is unknown
    """
    message_type = data.get("message_type")

    if message_type == MessageType.PLEDGE_RECEIVED.value:
        return PledgeReceivedMessage(**data)
    else:
        raise ValueError(f"Unknown message type: {message_type}")
