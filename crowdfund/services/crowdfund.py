"""Crowdfund service - campaign, wallet and on-chain operations for an outer surface."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from crowdfund.config import Config
from crowdfund.db.models import Campaign, CampaignUpdate, Profile, Wallet
from crowdfund.db.types import utcnow
from crowdfund.errors import InvalidInput, NotFound, Unauthorized, UpstreamFailure
from crowdfund.eth.addresses import is_placeholder, validate_address
from crowdfund.eth.chain_adapter import ChainAdapter, OnchainCampaignState, TxReceipt
from crowdfund.eth.derivation import AddressDeriver
from crowdfund.log import get_logger
from crowdfund.pipeline.lifecycle import (
    CampaignStatus,
    campaign_status,
    check_publishable,
    check_refundable,
    close_early_deadline,
    ensure_transition,
)
from crowdfund.services.repository import PersistenceGateway
from crowdfund.utils.formatting import parse_amount

logger = get_logger(__name__)

# Fields that stay editable after publish
EDITORIAL_FIELDS = {"title", "summary", "description_md", "cover_image_url"}

# Fields frozen once the campaign is published
ECONOMIC_FIELDS = {"slug", "goal_amount", "min_pledge_amount", "deadline_at", "currency_address"}


def normalize_slug(slug: str) -> str:
    """Lowercase a slug and replace whitespace runs with ``-``."""
    return re.sub(r"\s+", "-", slug.strip().lower())


def _as_utc(value: datetime, field_name: str) -> datetime:
    if not isinstance(value, datetime):
        raise InvalidInput(f"{field_name} must be a datetime")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class CampaignDraft:
    """Input for creating a draft campaign.

    Amounts are in the smallest currency unit. ``min_pledge_amount`` and
    ``currency_address`` fall back to the configured defaults.
    """

    title: str
    slug: str
    goal_amount: Union[int, str]
    deadline_at: datetime
    min_pledge_amount: Optional[Union[int, str]] = None
    summary: Optional[str] = None
    description_md: Optional[str] = None
    cover_image_url: Optional[str] = None
    currency_address: Optional[str] = None


@dataclass
class CampaignView:
    """Everything an open campaign page shows, loaded together."""

    campaign: Campaign
    state: Optional[OnchainCampaignState]
    status: CampaignStatus
    contribution: int
    updates: List[CampaignUpdate] = field(default_factory=list)
    loaded_at: datetime = field(default_factory=utcnow)

    @property
    def is_pollable(self) -> bool:
        """Whether the deposit balance should be watched for new pledges."""
        return (
            self.campaign.is_published
            and not is_placeholder(self.campaign.campaign_deposit_address)
            and self.status == CampaignStatus.LIVE
        )


class CrowdfundService:
    """Operations consumed by the CLI (or any other outer surface)."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        chain: ChainAdapter,
        deriver: Optional[AddressDeriver],
        config: Config,
        balance_source=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize service.

        Args:
            gateway: Persistence gateway scoped to the current session
            chain: Chain state adapter
            deriver: Deposit address deriver (None leaves new drafts on the placeholder)
            config: Configuration object
            balance_source: Object with ``get_balance(address)``; defaults to ``chain``
            clock: Source of the current time
        """
        self.gateway = gateway
        self.chain = chain
        self.deriver = deriver
        self.config = config
        self.balance_source = balance_source or chain
        self.clock = clock

    # ============= AUTH / PROFILE =============

    def get_profile(self) -> Optional[Profile]:
        return self.gateway.get_profile()

    def ensure_profile(self, username: Optional[str] = None, display_name: Optional[str] = None) -> Profile:
        return self.gateway.ensure_profile(username=username, display_name=display_name)

    # ============= WALLETS =============

    def list_my_wallets(self) -> List[Wallet]:
        return self.gateway.list_my_wallets()

    def link_wallet(self, address: str) -> Wallet:
        """Link a wallet address (stored lowercase) to the current user.

        Raises:
            InvalidInput: Malformed or already linked address
        """
        address = validate_address(address, "wallet address")
        return self.gateway.insert_wallet(address, self.config.chain_id)

    def set_primary_wallet(self, wallet_id: int) -> None:
        self.gateway.set_primary_wallet(wallet_id)

    def _default_wallet_address(self) -> Optional[str]:
        wallets = self.gateway.list_my_wallets()
        if not wallets:
            return None
        for wallet in wallets:
            if wallet.is_primary:
                return wallet.address
        return wallets[0].address

    # ============= CAMPAIGNS =============

    def list_campaigns(self, published_only: bool = True, query: Optional[str] = None) -> List[Campaign]:
        return self.gateway.list_campaigns(published_only=published_only, query=query)

    def list_my_campaigns(self) -> List[Campaign]:
        return self.gateway.list_my_campaigns()

    def get_campaign_by_slug(self, slug: str) -> Optional[Campaign]:
        return self.gateway.get_campaign_by_slug(normalize_slug(slug))

    def _require_campaign(self, campaign_id: str) -> Campaign:
        campaign = self.gateway.get_campaign(campaign_id)
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        return campaign

    def _require_creator(self, campaign: Campaign, action: str) -> None:
        identity = self.gateway.sessions.require()
        if campaign.creator_user_id != identity.user_id:
            raise Unauthorized(f"Only the creator can {action} this campaign")

    def _clean_values(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and normalize campaign column values."""
        cleaned = dict(values)

        if "title" in cleaned:
            title = (cleaned["title"] or "").strip()
            if not title:
                raise InvalidInput("title is required")
            cleaned["title"] = title

        if "slug" in cleaned:
            slug = normalize_slug(cleaned["slug"] or "")
            if not slug:
                raise InvalidInput("slug is required")
            cleaned["slug"] = slug

        if "goal_amount" in cleaned:
            goal = parse_amount(cleaned["goal_amount"], "goal_amount")
            if goal == 0:
                raise InvalidInput("goal_amount must be greater than zero")
            cleaned["goal_amount"] = goal

        if "min_pledge_amount" in cleaned:
            cleaned["min_pledge_amount"] = parse_amount(cleaned["min_pledge_amount"], "min_pledge_amount")

        if "deadline_at" in cleaned:
            deadline_at = _as_utc(cleaned["deadline_at"], "deadline_at")
            if deadline_at <= self.clock():
                raise InvalidInput("deadline_at must be in the future")
            cleaned["deadline_at"] = deadline_at

        if "currency_address" in cleaned:
            cleaned["currency_address"] = validate_address(cleaned["currency_address"], "currency address")

        return cleaned

    def create_draft_campaign(self, draft: CampaignDraft) -> Campaign:
        """Create an unpublished campaign and derive its deposit address.

        A derivation failure does not roll back the insert: the draft keeps
        the placeholder address until ``assign_deposit_address`` succeeds.

        Args:
            draft: Campaign input

        Returns:
            The stored campaign

        Raises:
            Unauthenticated: Signed out
            InvalidInput: Missing or malformed fields, or slug taken
        """
        min_pledge = draft.min_pledge_amount
        if min_pledge is None:
            min_pledge = self.config.default_min_pledge

        values = self._clean_values({
            "title": draft.title,
            "slug": draft.slug,
            "goal_amount": draft.goal_amount,
            "min_pledge_amount": min_pledge,
            "deadline_at": draft.deadline_at,
            "currency_address": draft.currency_address or self.config.currency_address,
        })
        values.update(
            summary=draft.summary,
            description_md=draft.description_md,
            cover_image_url=draft.cover_image_url,
            chain_id=self.config.chain_id,
            is_published=False,
        )

        campaign = self.gateway.insert_campaign(values)
        logger.info(f"Created draft campaign {campaign.slug} (index {campaign.campaign_index})")

        if self.deriver is None:
            logger.warning(f"No address deriver configured, {campaign.slug} keeps the placeholder address")
            return campaign

        try:
            return self._derive_and_assign(campaign)
        except UpstreamFailure as e:
            logger.error(f"Address derivation failed for {campaign.slug}, keeping placeholder: {e}")
            return campaign

    def _derive_and_assign(self, campaign: Campaign) -> Campaign:
        address = self.deriver.derive(campaign.campaign_index)
        try:
            address = validate_address(address, "derived address")
        except InvalidInput as e:
            raise UpstreamFailure(str(e)) from e
        return self.gateway.assign_deposit_address(campaign.id, address)

    def assign_deposit_address(self, campaign_id: str) -> Campaign:
        """Derive the deposit address of a draft still on the placeholder.

        A campaign that already has an address is returned unchanged.

        Raises:
            NotFound: Campaign missing or not visible
            Unauthorized: Not the creator
            UpstreamFailure: Derivation failed again
        """
        campaign = self._require_campaign(campaign_id)
        self._require_creator(campaign, "modify")
        if not is_placeholder(campaign.campaign_deposit_address):
            return campaign
        if self.deriver is None:
            raise UpstreamFailure("No address deriver configured")
        return self._derive_and_assign(campaign)

    def update_campaign(self, campaign_id: str, patch: Dict[str, Any]) -> Campaign:
        """Edit a campaign.

        Economic terms (slug, goal, minimum pledge, deadline, currency) can
        only change while the campaign is a draft; editorial fields can
        always change.

        Raises:
            InvalidInput: Unknown field, bad value, or economic change after publish
        """
        unknown = set(patch) - EDITORIAL_FIELDS - ECONOMIC_FIELDS
        if unknown:
            raise InvalidInput(f"Cannot update campaign fields: {', '.join(sorted(unknown))}")
        if not patch:
            return self._require_campaign(campaign_id)

        values = self._clean_values(patch)
        economic = bool(set(values) & ECONOMIC_FIELDS)
        return self.gateway.update_campaign(campaign_id, values, require_unpublished=economic)

    def publish_campaign(self, campaign_id: str) -> Campaign:
        """Move a draft to LIVE. Publishing a published campaign is a no-op.

        Raises:
            InvalidInput: Deposit address not assigned yet, or deadline passed
        """
        campaign = self._require_campaign(campaign_id)
        self._require_creator(campaign, "publish")
        if not check_publishable(campaign):
            logger.info(f"Campaign {campaign.slug} is already published")
            return campaign
        if campaign.deadline_at <= self.clock():
            raise InvalidInput("Cannot publish a campaign whose deadline has passed")

        campaign = self.gateway.update_campaign(campaign_id, {"is_published": True}, require_unpublished=True)
        logger.info(f"Published campaign {campaign.slug}")
        return campaign

    def close_campaign_early(self, campaign_id: str) -> Campaign:
        """Move the deadline of a live campaign to now."""
        campaign = self._require_campaign(campaign_id)
        self._require_creator(campaign, "close")
        deadline_at = close_early_deadline(campaign, now=self.clock())
        campaign = self.gateway.update_campaign(campaign_id, {"deadline_at": deadline_at})
        logger.info(f"Closed campaign {campaign.slug} early at {deadline_at.isoformat()}")
        return campaign

    def delete_campaign(self, campaign_id: str) -> None:
        self.gateway.delete_campaign(campaign_id)

    # ============= UPDATES =============

    def list_updates(self, campaign_id: str) -> List[CampaignUpdate]:
        return self.gateway.list_updates(campaign_id)

    def create_update(self, campaign_id: str, body_md: str, title: Optional[str] = None) -> CampaignUpdate:
        if not body_md or not body_md.strip():
            raise InvalidInput("body_md is required")
        return self.gateway.insert_update(campaign_id, body_md.strip(), title=title)

    # ============= ON-CHAIN =============

    def get_onchain_state(self, campaign: Campaign) -> Optional[OnchainCampaignState]:
        """Chain state of a campaign, or None before a deposit address exists."""
        if is_placeholder(campaign.campaign_deposit_address):
            return None
        return self.chain.get_state(
            campaign.campaign_deposit_address,
            campaign.goal_amount,
            campaign.deadline_at,
        )

    def get_campaign_status(self, campaign: Campaign) -> CampaignStatus:
        if not campaign.is_published:
            return CampaignStatus.DRAFT
        state = self.get_onchain_state(campaign)
        return campaign_status(campaign.is_published, state.status if state else None)

    def get_user_contribution(self, campaign: Campaign, wallet_address: Optional[str] = None) -> int:
        """Contribution of a wallet to a campaign.

        Defaults to the primary wallet of the current user, else the first
        linked wallet. Zero when there is no wallet or no deposit address.
        """
        if wallet_address is None:
            wallet_address = self._default_wallet_address()
        if wallet_address is None or is_placeholder(campaign.campaign_deposit_address):
            return 0
        return self.chain.get_contribution(campaign.campaign_deposit_address, wallet_address)

    def get_deposit_balance(self, campaign: Campaign) -> int:
        if is_placeholder(campaign.campaign_deposit_address):
            return 0
        return parse_amount(self.balance_source.get_balance(campaign.campaign_deposit_address), "balance")

    def finalize_campaign(self, campaign_id: str) -> TxReceipt:
        """Finalize a successful campaign.

        Raises:
            Unauthorized: Not the creator
            AlreadyFinalized: Already finalized
            InvalidInput: Campaign is not SUCCESSFUL
        """
        campaign = self._require_campaign(campaign_id)
        self._require_creator(campaign, "finalize")
        ensure_transition(self.get_campaign_status(campaign), CampaignStatus.FINALIZED)
        receipt = self.chain.finalize(campaign.campaign_deposit_address)
        logger.info(f"Finalized campaign {campaign.slug}: {receipt.tx_hash}")
        return receipt

    def claim_refund(self, campaign_id: str, wallet_address: Optional[str] = None) -> TxReceipt:
        """Claim a refund from a failed campaign.

        Raises:
            InvalidInput: Campaign not FAILED, or nothing contributed
            OperationNotImplemented: Refund settlement is not available
        """
        self.gateway.sessions.require()
        campaign = self._require_campaign(campaign_id)
        if wallet_address is None:
            wallet_address = self._default_wallet_address()
        if wallet_address is None:
            raise InvalidInput("Link a wallet before claiming a refund")

        status = self.get_campaign_status(campaign)
        contribution = self.get_user_contribution(campaign, wallet_address)
        check_refundable(status, contribution)
        return self.chain.claim_refund(campaign.campaign_deposit_address, wallet_address)

    def load_campaign_view(self, slug: str) -> Optional[CampaignView]:
        """Load a campaign page by slug, or None if missing or not visible."""
        campaign = self.get_campaign_by_slug(slug)
        if campaign is None:
            return None

        state = self.get_onchain_state(campaign) if campaign.is_published else None
        status = campaign_status(campaign.is_published, state.status if state else None)
        contribution = self.get_user_contribution(campaign) if self.gateway.sessions.current() else 0
        return CampaignView(
            campaign=campaign,
            state=state,
            status=status,
            contribution=contribution,
            updates=self.list_updates(campaign.id),
            loaded_at=self.clock(),
        )
