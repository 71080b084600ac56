"""Tests for the persistence gateway's row-level rules."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from crowdfund.db.healthcheck import check_tables_exist
from crowdfund.db.models import Wallet
from crowdfund.db.session import Database
from crowdfund.errors import InvalidInput, NotFound, Unauthenticated, Unauthorized
from crowdfund.eth.addresses import PLACEHOLDER_ADDRESS

from crowdfund.tests.conftest import ALICE, BOB


@pytest.fixture
def campaign_values(clock):
    return {
        "title": "Save the Reef",
        "slug": "save-the-reef",
        "goal_amount": 4_000_000,
        "min_pledge_amount": 1_000_000,
        "deadline_at": clock.now + timedelta(days=30),
        "currency_address": "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",
        "chain_id": 8453,
    }


def _primary_count(database, user_id):
    with database.session() as session:
        return session.execute(
            select(func.count()).select_from(Wallet).where(Wallet.user_id == user_id, Wallet.is_primary.is_(True))
        ).scalar_one()


def test_schema_check(database):
    check_tables_exist(database)


def test_schema_check_fails_on_empty_database():
    empty = Database("sqlite://")
    with pytest.raises(RuntimeError):
        check_tables_exist(empty)
    empty.dispose()


def test_profile_created_once(gateway, sessions):
    profile = gateway.get_profile()
    assert profile.id == ALICE
    assert profile.username == "alice"
    assert gateway.ensure_profile(username="other").username == "alice"

    sessions.sign_out()
    assert gateway.get_profile() is None


def test_duplicate_username_rejected(gateway, sessions):
    sessions.sign_in("c0ffee00-0000-4000-8000-000000000003")
    with pytest.raises(InvalidInput):
        gateway.ensure_profile(username="alice")


def test_primary_wallet_unique_after_toggles(gateway, database):
    wallets = [gateway.insert_wallet("0x" + format(i, "040x"), 8453) for i in range(1, 4)]

    for wallet in wallets + wallets[::-1]:
        gateway.set_primary_wallet(wallet.id)
        assert _primary_count(database, ALICE) == 1
        primary = [w for w in gateway.list_my_wallets() if w.is_primary]
        assert [w.id for w in primary] == [wallet.id]


def test_primary_wallet_of_other_user_not_found(gateway, sessions):
    wallet = gateway.insert_wallet("0x" + "1" * 40, 8453)
    sessions.sign_in(BOB)
    with pytest.raises(NotFound):
        gateway.set_primary_wallet(wallet.id)
    assert gateway.list_my_wallets() == []


def test_wallet_address_unique_per_chain(gateway, sessions):
    gateway.insert_wallet("0x" + "1" * 40, 8453)
    sessions.sign_in(BOB)
    with pytest.raises(InvalidInput):
        gateway.insert_wallet("0x" + "1" * 40, 8453)
    gateway.insert_wallet("0x" + "1" * 40, 1)


def test_mutations_require_session(gateway, sessions, campaign_values):
    sessions.sign_out()
    with pytest.raises(Unauthenticated):
        gateway.insert_campaign(campaign_values)
    with pytest.raises(Unauthenticated):
        gateway.insert_wallet("0x" + "1" * 40, 8453)
    assert gateway.list_my_wallets() == []


def test_insert_forces_creator_and_placeholder(gateway, campaign_values):
    campaign = gateway.insert_campaign({**campaign_values, "creator_user_id": BOB})
    assert campaign.creator_user_id == ALICE
    assert campaign.campaign_deposit_address == PLACEHOLDER_ADDRESS
    assert campaign.is_published is False
    assert campaign.id


def test_drafts_visible_only_to_creator(gateway, sessions, campaign_values):
    campaign = gateway.insert_campaign(campaign_values)

    sessions.sign_in(BOB)
    assert gateway.get_campaign(campaign.id) is None
    assert gateway.get_campaign_by_slug("save-the-reef") is None
    assert gateway.list_campaigns(published_only=False) == []
    assert gateway.list_updates(campaign.id) == []

    sessions.sign_out()
    assert gateway.get_campaign(campaign.id) is None

    sessions.sign_in(ALICE)
    assert gateway.get_campaign(campaign.id).slug == "save-the-reef"


def test_update_by_non_creator(gateway, sessions, campaign_values):
    campaign = gateway.insert_campaign(campaign_values)
    gateway.update_campaign(campaign.id, {"is_published": True})

    sessions.sign_in(BOB)
    with pytest.raises(Unauthorized):
        gateway.update_campaign(campaign.id, {"title": "Mine now"})
    assert gateway.get_campaign(campaign.id).title == "Save the Reef"


def test_update_missing_campaign(gateway):
    with pytest.raises(NotFound):
        gateway.update_campaign("missing", {"title": "x"})
    with pytest.raises(NotFound):
        gateway.delete_campaign("missing")


def test_update_rejects_unknown_columns(gateway, campaign_values):
    campaign = gateway.insert_campaign(campaign_values)
    with pytest.raises(InvalidInput):
        gateway.update_campaign(campaign.id, {"creator_user_id": BOB})


def test_draft_only_update_after_publish(gateway, campaign_values):
    campaign = gateway.insert_campaign(campaign_values)
    gateway.update_campaign(campaign.id, {"goal_amount": 5_000_000}, require_unpublished=True)
    gateway.update_campaign(campaign.id, {"is_published": True})

    with pytest.raises(InvalidInput):
        gateway.update_campaign(campaign.id, {"goal_amount": 6_000_000}, require_unpublished=True)
    assert gateway.get_campaign(campaign.id).goal_amount == 5_000_000


def test_delete_rules(gateway, sessions, campaign_values):
    draft = gateway.insert_campaign(campaign_values)
    published = gateway.insert_campaign({**campaign_values, "slug": "published"})
    gateway.update_campaign(published.id, {"is_published": True})
    gateway.insert_update(draft.id, "Draft note")

    with pytest.raises(Unauthorized):
        gateway.delete_campaign(published.id)

    sessions.sign_in(BOB)
    with pytest.raises(Unauthorized):
        gateway.delete_campaign(published.id)
    with pytest.raises(NotFound):
        gateway.delete_campaign(draft.id)

    sessions.sign_in(ALICE)
    gateway.delete_campaign(draft.id)
    assert gateway.get_campaign(draft.id) is None
    assert gateway.list_updates(draft.id) == []
    assert gateway.get_campaign(published.id) is not None


def test_deposit_address_assigned_once(gateway, campaign_values):
    campaign = gateway.insert_campaign(campaign_values)
    first = gateway.assign_deposit_address(campaign.id, "0x" + "a" * 40)
    second = gateway.assign_deposit_address(campaign.id, "0x" + "b" * 40)
    assert first.campaign_deposit_address == "0x" + "a" * 40
    assert second.campaign_deposit_address == "0x" + "a" * 40


def test_campaign_index_not_reused(gateway, campaign_values):
    first = gateway.insert_campaign(campaign_values)
    gateway.delete_campaign(first.id)
    second = gateway.insert_campaign(campaign_values)
    assert second.campaign_index > first.campaign_index
