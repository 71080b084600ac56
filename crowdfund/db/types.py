"""Column types shared by the ORM models."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator


class Amount(TypeDecorator):
    """Arbitrary-precision integer amount in the smallest currency unit.

    Stored as NUMERIC(78,0) on PostgreSQL. SQLite has no exact wide numeric
    type, so there the value is kept as a decimal string.
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(78))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if dialect.name == "sqlite":
            return str(value)
        return Decimal(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime; naive values read back are treated as UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
