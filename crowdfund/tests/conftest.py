"""Shared fixtures: in-memory SQLite gateway, fixed clock, in-memory chain."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from crowdfund.config import Config
from crowdfund.db.session import Database
from crowdfund.errors import UpstreamFailure
from crowdfund.eth.chain_adapter import InMemoryChainAdapter
from crowdfund.eth.derivation import AddressDeriver
from crowdfund.messaging.notifier import Notifier
from crowdfund.messaging.schema import PledgeReceivedMessage
from crowdfund.services.auth import StaticSessionProvider
from crowdfund.services.crowdfund import CampaignDraft, CrowdfundService
from crowdfund.services.repository import PersistenceGateway

ALICE = "a11ce000-0000-4000-8000-000000000001"
BOB = "b0b00000-0000-4000-8000-000000000002"

ALICE_WALLET = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"
BOB_WALLET = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeDeriver(AddressDeriver):
    """Maps index n to 0x000...0<n+1> and records every call."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: List[int] = []

    def derive(self, campaign_index: int) -> str:
        self.calls.append(campaign_index)
        if self.failures > 0:
            self.failures -= 1
            raise UpstreamFailure("derivation service unavailable")
        return "0x" + format(campaign_index + 0xC0FFEE, "040x")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages: List[PledgeReceivedMessage] = []

    def notify_pledge(self, message: PledgeReceivedMessage) -> None:
        self.messages.append(message)


@pytest.fixture
def test_config():
    """Test configuration."""
    return Config(
        db_url="sqlite://",
        balance_source="memory",
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def database(test_config):
    database = Database(test_config.db_url)
    database.create_schema()
    yield database
    database.dispose()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sessions():
    return StaticSessionProvider(ALICE)


@pytest.fixture
def gateway(database, sessions):
    gateway = PersistenceGateway(database, sessions)
    for user_id, username in ((BOB, "bob"), (ALICE, "alice")):
        sessions.sign_in(user_id)
        gateway.ensure_profile(username=username)
    return gateway


@pytest.fixture
def chain(clock):
    return InMemoryChainAdapter(clock=clock)


@pytest.fixture
def deriver():
    return FakeDeriver()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(gateway, chain, deriver, test_config, clock):
    return CrowdfundService(gateway, chain, deriver, test_config, clock=clock)


@pytest.fixture
def make_draft(clock):
    """Build a CampaignDraft with a 30-day deadline."""

    def _make(slug: str = "save-the-reef", goal: int = 4_000_000, **kwargs) -> CampaignDraft:
        kwargs.setdefault("title", "Save the Reef")
        kwargs.setdefault("deadline_at", clock.now + timedelta(days=30))
        return CampaignDraft(slug=slug, goal_amount=goal, **kwargs)

    return _make


@pytest.fixture
def live_campaign(service, make_draft):
    """A published campaign owned by Alice."""
    campaign = service.create_draft_campaign(make_draft())
    return service.publish_campaign(campaign.id)
