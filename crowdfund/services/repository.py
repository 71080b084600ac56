"""Persistence gateway - row-based tables with row-level authorization.

Mirrors the policies of the managed backend:

- campaigns: readable when published or owned; writable by the creator;
  deletable by the creator only while unpublished
- wallets: owner only
- campaign_updates: readable when the campaign is readable; insertable by
  the campaign creator
- profiles: readable by everyone, writable by self
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crowdfund.db.models import Campaign, CampaignUpdate, Profile, Wallet
from crowdfund.db.session import Database
from crowdfund.errors import InvalidInput, NotFound, Unauthorized
from crowdfund.eth.addresses import PLACEHOLDER_ADDRESS
from crowdfund.log import get_logger
from crowdfund.services.auth import Identity, SessionProvider

logger = get_logger(__name__)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``text`` matches literally (escape char ``\\``)."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

# Columns callers may set through update_campaign
CAMPAIGN_MUTABLE_COLUMNS = {
    "title",
    "slug",
    "summary",
    "description_md",
    "cover_image_url",
    "currency_address",
    "goal_amount",
    "min_pledge_amount",
    "deadline_at",
    "is_published",
}


class PersistenceGateway:
    """Thin repository over the gateway tables, scoped to the current session."""

    def __init__(self, database: Database, sessions: SessionProvider):
        """Initialize gateway.

        Args:
            database: Database holding the gateway tables
            sessions: Resolves the identity of the current session
        """
        self.database = database
        self.sessions = sessions

    # ============= PROFILES =============

    def get_profile(self) -> Optional[Profile]:
        """Get the current user's profile, or None when signed out."""
        identity = self.sessions.current()
        if identity is None:
            return None
        with self.database.session() as session:
            return session.get(Profile, identity.user_id)

    def ensure_profile(self, username: Optional[str] = None, display_name: Optional[str] = None) -> Profile:
        """Create the current user's profile on first sign-up.

        Args:
            username: Desired username (defaults to ``user_<id prefix>``)
            display_name: Optional display name

        Returns:
            Existing or newly created profile
        """
        identity = self.sessions.require()
        with self.database.session() as session:
            profile = session.get(Profile, identity.user_id)
            if profile is not None:
                return profile
            profile = Profile(
                id=identity.user_id,
                username=username or f"user_{identity.user_id[:8]}",
                display_name=display_name,
            )
            session.add(profile)
            try:
                session.flush()
            except IntegrityError as e:
                raise InvalidInput(f"Username already taken: {profile.username}") from e
            logger.info(f"Created profile for user {identity.user_id}")
            return profile

    # ============= WALLETS =============

    def list_my_wallets(self) -> List[Wallet]:
        """List the current user's wallets, oldest first (empty when signed out)."""
        identity = self.sessions.current()
        if identity is None:
            return []
        with self.database.session() as session:
            return list(
                session.execute(
                    select(Wallet)
                    .where(Wallet.user_id == identity.user_id)
                    .order_by(Wallet.created_at.asc(), Wallet.id.asc())
                ).scalars()
            )

    def insert_wallet(self, address: str, chain_id: int) -> Wallet:
        """Link a wallet address to the current user.

        Args:
            address: Lowercase wallet address
            chain_id: Chain the address belongs to

        Returns:
            New wallet row

        Raises:
            InvalidInput: If the address is already linked
        """
        identity = self.sessions.require()
        with self.database.session() as session:
            wallet = Wallet(user_id=identity.user_id, address=address, chain_id=chain_id, is_primary=False)
            session.add(wallet)
            try:
                session.flush()
            except IntegrityError as e:
                raise InvalidInput(f"Wallet already linked: {address}") from e
            logger.info(f"Linked wallet {address} to user {identity.user_id}")
            return wallet

    def set_primary_wallet(self, wallet_id: int) -> None:
        """Mark one wallet primary and all other wallets of the user non-primary.

        A single UPDATE over the user's wallets, so no reader ever sees zero or
        two primary wallets.

        Args:
            wallet_id: Wallet to make primary

        Raises:
            NotFound: If the wallet does not belong to the current user
        """
        identity = self.sessions.require()
        with self.database.session() as session:
            owned = session.execute(
                select(Wallet.id).where(Wallet.id == wallet_id, Wallet.user_id == identity.user_id)
            ).scalar_one_or_none()
            if owned is None:
                raise NotFound(f"Wallet {wallet_id} not found")

            session.execute(
                update(Wallet)
                .where(Wallet.user_id == identity.user_id)
                .values(is_primary=case((Wallet.id == wallet_id, True), else_=False))
                .execution_options(synchronize_session=False)
            )
            logger.info(f"Wallet {wallet_id} is now primary for user {identity.user_id}")

    # ============= CAMPAIGNS =============

    @staticmethod
    def _visible_to(identity: Optional[Identity]):
        if identity is None:
            return Campaign.is_published.is_(True)
        return or_(Campaign.is_published.is_(True), Campaign.creator_user_id == identity.user_id)

    def _load_visible(self, session: Session, campaign_id: str) -> Optional[Campaign]:
        identity = self.sessions.current()
        return session.execute(
            select(Campaign)
            .where(Campaign.id == campaign_id, self._visible_to(identity))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get a campaign by id, or None if missing or not visible."""
        with self.database.session() as session:
            return self._load_visible(session, campaign_id)

    def get_campaign_by_slug(self, slug: str) -> Optional[Campaign]:
        """Get a campaign by slug, or None if missing or not visible."""
        identity = self.sessions.current()
        with self.database.session() as session:
            return session.execute(
                select(Campaign).where(Campaign.slug == slug, self._visible_to(identity))
            ).scalar_one_or_none()

    def list_campaigns(self, published_only: bool = True, query: Optional[str] = None) -> List[Campaign]:
        """List visible campaigns, newest first.

        Args:
            published_only: Exclude the caller's own drafts
            query: Case-insensitive title substring filter

        Returns:
            Matching campaigns
        """
        identity = self.sessions.current()
        stmt = select(Campaign).where(self._visible_to(identity))
        if published_only:
            stmt = stmt.where(Campaign.is_published.is_(True))
        if query:
            stmt = stmt.where(Campaign.title.ilike(f"%{escape_like(query)}%", escape="\\"))
        stmt = stmt.order_by(Campaign.created_at.desc(), Campaign.campaign_index.desc())
        with self.database.session() as session:
            return list(session.execute(stmt).scalars())

    def list_my_campaigns(self) -> List[Campaign]:
        """List campaigns created by the current user (empty when signed out)."""
        identity = self.sessions.current()
        if identity is None:
            return []
        with self.database.session() as session:
            return list(
                session.execute(
                    select(Campaign)
                    .where(Campaign.creator_user_id == identity.user_id)
                    .order_by(Campaign.created_at.desc(), Campaign.campaign_index.desc())
                ).scalars()
            )

    def insert_campaign(self, values: Dict[str, Any]) -> Campaign:
        """Insert a campaign owned by the current user.

        The database assigns ``campaign_index`` and ``id``.

        Args:
            values: Column values (creator_user_id is forced to the current user)

        Returns:
            New campaign row

        Raises:
            InvalidInput: If the slug is already taken
        """
        identity = self.sessions.require()
        with self.database.session() as session:
            campaign = Campaign(**{**values, "creator_user_id": identity.user_id})
            session.add(campaign)
            try:
                session.flush()
            except IntegrityError as e:
                raise InvalidInput(f"Slug already taken: {values.get('slug')}") from e
            logger.info(f"Inserted campaign {campaign.id} (index {campaign.campaign_index})")
            return campaign

    def _explain_missed_update(self, session: Session, campaign_id: str, require_unpublished: bool) -> None:
        identity = self.sessions.require()
        campaign = self._load_visible(session, campaign_id)
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        if campaign.creator_user_id != identity.user_id:
            raise Unauthorized("Only the creator can modify this campaign")
        if require_unpublished and campaign.is_published:
            raise InvalidInput("Campaign is already published")

    def update_campaign(
        self,
        campaign_id: str,
        values: Dict[str, Any],
        require_unpublished: bool = False,
    ) -> Campaign:
        """Update a campaign owned by the current user.

        Args:
            campaign_id: Campaign to update
            values: Column values to set
            require_unpublished: Only update while the campaign is a draft

        Returns:
            Updated campaign row

        Raises:
            NotFound: Campaign missing or not visible
            Unauthorized: Current user is not the creator
            InvalidInput: Draft-only update on a published campaign, or slug taken
        """
        identity = self.sessions.require()
        unknown = set(values) - CAMPAIGN_MUTABLE_COLUMNS
        if unknown:
            raise InvalidInput(f"Cannot update campaign fields: {', '.join(sorted(unknown))}")

        with self.database.session() as session:
            stmt = update(Campaign).where(
                Campaign.id == campaign_id,
                Campaign.creator_user_id == identity.user_id,
            )
            if require_unpublished:
                stmt = stmt.where(Campaign.is_published.is_(False))
            try:
                result = session.execute(
                    stmt.values(**values).execution_options(synchronize_session=False)
                )
            except IntegrityError as e:
                raise InvalidInput(f"Slug already taken: {values.get('slug')}") from e

            if result.rowcount == 0:
                self._explain_missed_update(session, campaign_id, require_unpublished)
            return self._load_visible(session, campaign_id)

    def assign_deposit_address(self, campaign_id: str, address: str) -> Campaign:
        """Set the deposit address of a campaign that still has the placeholder.

        An already assigned address is never overwritten; the stored row is
        returned unchanged.

        Args:
            campaign_id: Campaign to update
            address: Derived deposit address

        Returns:
            Campaign row as stored
        """
        identity = self.sessions.require()
        with self.database.session() as session:
            result = session.execute(
                update(Campaign)
                .where(
                    Campaign.id == campaign_id,
                    Campaign.creator_user_id == identity.user_id,
                    Campaign.campaign_deposit_address == PLACEHOLDER_ADDRESS,
                )
                .values(campaign_deposit_address=address)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self._explain_missed_update(session, campaign_id, require_unpublished=False)
                logger.warning(f"Campaign {campaign_id} already has a deposit address, keeping it")
            return self._load_visible(session, campaign_id)

    def delete_campaign(self, campaign_id: str) -> None:
        """Delete an unpublished campaign owned by the current user.

        Raises:
            NotFound: Campaign missing or not visible
            Unauthorized: Not the creator, or the campaign is published
        """
        identity = self.sessions.require()
        with self.database.session() as session:
            campaign = self._load_visible(session, campaign_id)
            if campaign is None:
                raise NotFound(f"Campaign {campaign_id} not found")
            if campaign.creator_user_id != identity.user_id:
                raise Unauthorized("Only the creator can delete this campaign")
            if campaign.is_published:
                raise Unauthorized("Published campaigns cannot be deleted")
            session.delete(campaign)
            logger.info(f"Deleted draft campaign {campaign_id}")

    # ============= UPDATES =============

    def list_updates(self, campaign_id: str) -> List[CampaignUpdate]:
        """List updates of a visible campaign, newest first."""
        identity = self.sessions.current()
        with self.database.session() as session:
            return list(
                session.execute(
                    select(CampaignUpdate)
                    .join(Campaign, Campaign.id == CampaignUpdate.campaign_id)
                    .where(CampaignUpdate.campaign_id == campaign_id, self._visible_to(identity))
                    .order_by(CampaignUpdate.created_at.desc(), CampaignUpdate.id.desc())
                ).scalars()
            )

    def insert_update(self, campaign_id: str, body_md: str, title: Optional[str] = None) -> CampaignUpdate:
        """Post an update on a campaign created by the current user.

        Raises:
            NotFound: Campaign missing or not visible
            Unauthorized: Current user is not the creator
        """
        identity = self.sessions.require()
        with self.database.session() as session:
            campaign = self._load_visible(session, campaign_id)
            if campaign is None:
                raise NotFound(f"Campaign {campaign_id} not found")
            if campaign.creator_user_id != identity.user_id:
                raise Unauthorized("Only the creator can post updates")
            entry = CampaignUpdate(
                campaign_id=campaign_id,
                author_user_id=identity.user_id,
                title=title,
                body_md=body_md,
            )
            session.add(entry)
            session.flush()
            return entry
