"""SQLAlchemy ORM models for the persistence gateway tables.

NOTE: In production these tables are owned by the managed backend
(profiles, wallets, campaigns, campaign_updates). ``Database.create_schema``
only exists for local development and tests.
"""

import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from crowdfund.db.types import Amount, UTCDateTime, utcnow
from crowdfund.eth.addresses import PLACEHOLDER_ADDRESS

Base = declarative_base()


def _new_uuid() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    """Profile model (maps to 'profiles' table, one row per user)."""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)  # auth user id
    username = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    wallets = relationship("Wallet", back_populates="profile", cascade="all, delete-orphan")


class Wallet(Base):
    """Wallet model (maps to 'wallets' table)."""

    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "address", name="uq_wallets_user_address"),
        UniqueConstraint("chain_id", "address", name="uq_wallets_chain_address"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    address = Column(String(42), nullable=False)  # lowercase, 0x + 40 hex
    chain_id = Column(BigInteger, nullable=False, default=8453)
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    profile = relationship("Profile", back_populates="wallets")


class Campaign(Base):
    """Campaign model (maps to 'campaigns' table).

    ``campaign_index`` is the database-assigned sequence used to derive the
    deposit address. It is the integer primary key so every backend assigns it
    on insert; AUTOINCREMENT keeps SQLite from reusing deleted values.
    ``id`` is the opaque identifier exposed to callers.
    """

    __tablename__ = "campaigns"
    __table_args__ = {"sqlite_autoincrement": True}

    campaign_index = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True, default=_new_uuid)
    creator_user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    campaign_deposit_address = Column(String(42), nullable=False, default=PLACEHOLDER_ADDRESS)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    summary = Column(Text, nullable=True)
    description_md = Column(Text, nullable=True)
    cover_image_url = Column(String(1024), nullable=True)
    chain_id = Column(BigInteger, nullable=False, default=8453)
    currency_address = Column(String(42), nullable=False)
    goal_amount = Column(Amount, nullable=False)
    min_pledge_amount = Column(Amount, nullable=False)
    deadline_at = Column(UTCDateTime, nullable=False)
    is_published = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    updates = relationship("CampaignUpdate", back_populates="campaign", cascade="all, delete-orphan")


class CampaignUpdate(Base):
    """Campaign update model (maps to 'campaign_updates' table)."""

    __tablename__ = "campaign_updates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    author_user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=True)
    body_md = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    campaign = relationship("Campaign", back_populates="updates")
