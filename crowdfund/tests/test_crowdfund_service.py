"""Tests for the crowdfund service operations."""

from datetime import timedelta

import pytest

from crowdfund.errors import (
    AlreadyFinalized,
    InvalidInput,
    NotFound,
    OperationNotImplemented,
    Unauthenticated,
    Unauthorized,
    UpstreamFailure,
)
from crowdfund.eth.addresses import PLACEHOLDER_ADDRESS, is_placeholder
from crowdfund.pipeline.lifecycle import CampaignStatus
from crowdfund.services.crowdfund import CrowdfundService, normalize_slug

from crowdfund.tests.conftest import ALICE, ALICE_WALLET, BOB, BOB_WALLET, FakeDeriver


def test_create_draft_with_derived_address(service, deriver, make_draft, clock):
    draft = make_draft(goal=1_000_000)
    campaign = service.create_draft_campaign(draft)

    assert campaign.is_published is False
    assert campaign.creator_user_id == ALICE
    assert campaign.goal_amount == 1_000_000
    assert campaign.min_pledge_amount == 1_000_000  # configured default
    assert campaign.deadline_at == clock.now + timedelta(days=30)
    assert not is_placeholder(campaign.campaign_deposit_address)
    assert deriver.calls == [campaign.campaign_index]
    assert service.get_campaign_status(campaign) == CampaignStatus.DRAFT


def test_campaign_index_increases(service, make_draft):
    first = service.create_draft_campaign(make_draft(slug="first"))
    second = service.create_draft_campaign(make_draft(slug="second"))
    assert second.campaign_index > first.campaign_index
    assert second.campaign_deposit_address != first.campaign_deposit_address


def test_derivation_failure_keeps_placeholder_then_repairs(gateway, chain, test_config, clock, make_draft):
    deriver = FakeDeriver(failures=1)
    service = CrowdfundService(gateway, chain, deriver, test_config, clock=clock)

    campaign = service.create_draft_campaign(make_draft(goal=1_000_000))
    assert campaign.campaign_deposit_address == PLACEHOLDER_ADDRESS
    assert service.get_onchain_state(campaign) is None

    with pytest.raises(InvalidInput):
        service.publish_campaign(campaign.id)

    repaired = service.assign_deposit_address(campaign.id)
    assert not is_placeholder(repaired.campaign_deposit_address)

    # Immutable once assigned
    again = service.assign_deposit_address(campaign.id)
    assert again.campaign_deposit_address == repaired.campaign_deposit_address
    assert len(deriver.calls) == 2

    kept = gateway.assign_deposit_address(campaign.id, "0x" + "9" * 40)
    assert kept.campaign_deposit_address == repaired.campaign_deposit_address


def test_assign_address_propagates_upstream_failure(gateway, chain, test_config, clock, make_draft):
    service = CrowdfundService(gateway, chain, FakeDeriver(failures=2), test_config, clock=clock)
    campaign = service.create_draft_campaign(make_draft())
    with pytest.raises(UpstreamFailure):
        service.assign_deposit_address(campaign.id)


def test_no_deriver_leaves_placeholder(gateway, chain, test_config, clock, make_draft):
    service = CrowdfundService(gateway, chain, None, test_config, clock=clock)
    campaign = service.create_draft_campaign(make_draft())
    assert campaign.campaign_deposit_address == PLACEHOLDER_ADDRESS


def test_draft_validation(service, make_draft, clock):
    with pytest.raises(InvalidInput):
        service.create_draft_campaign(make_draft(title="  "))

    with pytest.raises(InvalidInput):
        service.create_draft_campaign(make_draft(slug=""))

    with pytest.raises(InvalidInput):
        service.create_draft_campaign(make_draft(goal="ten"))

    with pytest.raises(InvalidInput):
        service.create_draft_campaign(make_draft(goal="²"))

    with pytest.raises(InvalidInput):
        service.create_draft_campaign(make_draft(goal=-5))

    with pytest.raises(InvalidInput):
        service.create_draft_campaign(make_draft(deadline_at=clock.now - timedelta(minutes=1)))

    with pytest.raises(InvalidInput):
        service.create_draft_campaign(make_draft(currency_address="0x1234"))


def test_slug_is_normalized_and_unique(service, make_draft):
    assert normalize_slug("  Save The\tReef ") == "save-the-reef"

    campaign = service.create_draft_campaign(make_draft(slug="Save The Reef"))
    assert campaign.slug == "save-the-reef"

    with pytest.raises(InvalidInput):
        service.create_draft_campaign(make_draft(slug="save-the-reef"))


def test_create_requires_session(service, sessions, make_draft):
    sessions.sign_out()
    with pytest.raises(Unauthenticated):
        service.create_draft_campaign(make_draft())


def test_large_goal_round_trips(service, make_draft):
    goal = 10**40
    campaign = service.create_draft_campaign(make_draft(goal=str(goal)))
    assert service.get_campaign_by_slug(campaign.slug).goal_amount == goal


def test_publish_is_noop_when_published(service, live_campaign):
    assert live_campaign.is_published
    again = service.publish_campaign(live_campaign.id)
    assert again.is_published
    assert service.get_campaign_status(again) == CampaignStatus.LIVE


def test_publish_moves_draft_to_live(service, make_draft):
    campaign = service.create_draft_campaign(make_draft())
    assert service.get_campaign_status(campaign) == CampaignStatus.DRAFT

    published = service.publish_campaign(campaign.id)
    assert published.is_published
    assert service.get_campaign_status(published) == CampaignStatus.LIVE


def test_publish_refuses_passed_deadline(service, make_draft, clock):
    campaign = service.create_draft_campaign(make_draft())
    clock.advance(days=31)
    with pytest.raises(InvalidInput):
        service.publish_campaign(campaign.id)
    assert not service.get_campaign_by_slug(campaign.slug).is_published


def test_only_creator_can_publish(service, sessions, make_draft):
    campaign = service.create_draft_campaign(make_draft())
    sessions.sign_in(BOB)
    with pytest.raises(NotFound):
        service.publish_campaign(campaign.id)


def test_economic_fields_frozen_after_publish(service, live_campaign, clock):
    with pytest.raises(InvalidInput):
        service.update_campaign(live_campaign.id, {"goal_amount": 10})

    with pytest.raises(InvalidInput):
        service.update_campaign(live_campaign.id, {"deadline_at": clock.now + timedelta(days=90)})

    updated = service.update_campaign(live_campaign.id, {"title": "Save the Reef 2", "summary": "More coral"})
    assert updated.title == "Save the Reef 2"
    assert updated.summary == "More coral"
    assert updated.goal_amount == live_campaign.goal_amount


def test_drafts_are_fully_editable(service, make_draft, clock):
    campaign = service.create_draft_campaign(make_draft())
    updated = service.update_campaign(
        campaign.id,
        {"goal_amount": "7000000", "slug": "New Slug", "deadline_at": clock.now + timedelta(days=10)},
    )
    assert updated.goal_amount == 7_000_000
    assert updated.slug == "new-slug"
    assert updated.deadline_at == clock.now + timedelta(days=10)


def test_update_rejects_unknown_fields(service, make_draft):
    campaign = service.create_draft_campaign(make_draft())
    with pytest.raises(InvalidInput):
        service.update_campaign(campaign.id, {"campaign_deposit_address": "0x" + "1" * 40})
    with pytest.raises(InvalidInput):
        service.update_campaign(campaign.id, {"is_published": True})


def test_close_early(service, live_campaign, clock):
    closed = service.close_campaign_early(live_campaign.id)

    assert closed.deadline_at == clock.now
    assert closed.deadline_at < live_campaign.deadline_at
    assert service.get_campaign_status(closed) == CampaignStatus.FAILED

    with pytest.raises(InvalidInput):
        service.close_campaign_early(live_campaign.id)


def test_close_early_creator_only(service, sessions, live_campaign):
    sessions.sign_in(BOB)
    with pytest.raises(Unauthorized):
        service.close_campaign_early(live_campaign.id)


def test_delete_draft_only(service, make_draft, live_campaign):
    draft = service.create_draft_campaign(make_draft(slug="to-delete"))
    service.delete_campaign(draft.id)
    assert service.get_campaign_by_slug("to-delete") is None

    with pytest.raises(Unauthorized):
        service.delete_campaign(live_campaign.id)


def test_finalize_successful_campaign(service, chain, clock, live_campaign):
    address = live_campaign.campaign_deposit_address
    chain.pledge(address, ALICE_WALLET, 3_000_000)
    chain.pledge(address, BOB_WALLET, 2_000_000)

    with pytest.raises(InvalidInput):
        service.finalize_campaign(live_campaign.id)

    clock.advance(days=31)
    assert service.get_campaign_status(live_campaign) == CampaignStatus.SUCCESSFUL

    receipt = service.finalize_campaign(live_campaign.id)
    assert receipt.status == "confirmed"
    assert service.get_campaign_status(live_campaign) == CampaignStatus.FINALIZED

    with pytest.raises(AlreadyFinalized):
        service.finalize_campaign(live_campaign.id)


def test_finalize_creator_only(service, sessions, chain, clock, live_campaign):
    chain.pledge(live_campaign.campaign_deposit_address, BOB_WALLET, 5_000_000)
    clock.advance(days=31)
    sessions.sign_in(BOB)
    with pytest.raises(Unauthorized):
        service.finalize_campaign(live_campaign.id)


def test_finalize_failed_campaign_rejected(service, clock, live_campaign):
    clock.advance(days=31)
    with pytest.raises(InvalidInput):
        service.finalize_campaign(live_campaign.id)


def test_refund_contract(service, sessions, chain, live_campaign):
    sessions.sign_in(BOB)
    service.link_wallet(BOB_WALLET)
    chain.pledge(live_campaign.campaign_deposit_address, BOB_WALLET, 1_000_000)

    with pytest.raises(InvalidInput):
        service.claim_refund(live_campaign.id)

    sessions.sign_in(ALICE)
    service.close_campaign_early(live_campaign.id)

    sessions.sign_in(BOB)
    with pytest.raises(OperationNotImplemented):
        service.claim_refund(live_campaign.id)

    with pytest.raises(InvalidInput):
        service.claim_refund(live_campaign.id, wallet_address=ALICE_WALLET)


def test_user_contribution_uses_primary_wallet(service, sessions, chain, live_campaign):
    address = live_campaign.campaign_deposit_address
    sessions.sign_in(BOB)
    assert service.get_user_contribution(live_campaign) == 0

    first = service.link_wallet(BOB_WALLET)
    second = service.link_wallet("0x" + "c" * 40)
    chain.pledge(address, BOB_WALLET, 1_000_000)
    chain.pledge(address, "0x" + "c" * 40, 4_000_000)

    assert service.get_user_contribution(live_campaign) == 1_000_000

    service.set_primary_wallet(second.id)
    assert service.get_user_contribution(live_campaign) == 4_000_000

    service.set_primary_wallet(first.id)
    assert service.get_user_contribution(live_campaign) == 1_000_000
    assert service.get_deposit_balance(live_campaign) == 5_000_000


def test_link_wallet_canonicalizes(service):
    wallet = service.link_wallet("0xF39Fd6e51aad88F6F4ce6aB8827279cffFb92266")
    assert wallet.address == ALICE_WALLET

    with pytest.raises(InvalidInput):
        service.link_wallet("0xF39Fd6e51aad88F6F4ce6aB8827279cffFb92266")

    with pytest.raises(InvalidInput):
        service.link_wallet("f39fd6e51aad88f6f4ce6ab8827279cfffb92266")


def test_updates(service, sessions, live_campaign):
    service.create_update(live_campaign.id, "We reached 10%!", title="Milestone")
    service.create_update(live_campaign.id, "Thanks everyone")

    updates = service.list_updates(live_campaign.id)
    assert [u.body_md for u in updates] == ["Thanks everyone", "We reached 10%!"]

    with pytest.raises(InvalidInput):
        service.create_update(live_campaign.id, "   ")

    sessions.sign_in(BOB)
    with pytest.raises(Unauthorized):
        service.create_update(live_campaign.id, "Not my campaign")
    assert len(service.list_updates(live_campaign.id)) == 2


def test_load_campaign_view(service, sessions, chain, live_campaign):
    sessions.sign_in(BOB)
    service.link_wallet(BOB_WALLET)
    chain.pledge(live_campaign.campaign_deposit_address, BOB_WALLET, 2_000_000)

    view = service.load_campaign_view("Save The Reef")
    assert view.campaign.id == live_campaign.id
    assert view.status == CampaignStatus.LIVE
    assert view.state.total_raised == 2_000_000
    assert view.contribution == 2_000_000
    assert view.is_pollable

    sessions.sign_out()
    anonymous = service.load_campaign_view(live_campaign.slug)
    assert anonymous.contribution == 0

    assert service.load_campaign_view("missing") is None


def test_list_campaigns(service, sessions, make_draft, live_campaign):
    service.create_draft_campaign(make_draft(slug="alice-draft", title="Coral Draft"))

    assert [c.slug for c in service.list_campaigns()] == [live_campaign.slug]
    assert {c.slug for c in service.list_campaigns(published_only=False)} == {live_campaign.slug, "alice-draft"}
    assert [c.slug for c in service.list_campaigns(published_only=False, query="coral")] == ["alice-draft"]
    assert len(service.list_my_campaigns()) == 2

    sessions.sign_in(BOB)
    assert [c.slug for c in service.list_campaigns(published_only=False)] == [live_campaign.slug]
    assert service.list_my_campaigns() == []


def test_list_campaigns_search_is_literal(service, make_draft):
    service.create_draft_campaign(make_draft(slug="full", title="100% Reef"))
    service.create_draft_campaign(make_draft(slug="plain", title="1000 Reefs"))
    service.create_draft_campaign(make_draft(slug="snake", title="reef_watch"))

    assert [c.slug for c in service.list_campaigns(published_only=False, query="0%")] == ["full"]
    assert [c.slug for c in service.list_campaigns(published_only=False, query="f_")] == ["snake"]
    assert [c.slug for c in service.list_campaigns(published_only=False, query="%")] == ["full"]
