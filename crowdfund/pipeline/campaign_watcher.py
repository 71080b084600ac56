"""Campaign watcher - ties balance polling to one open campaign view."""

import threading
from typing import Optional

from crowdfund.log import get_logger
from crowdfund.pipeline.balance_poller import BalancePoller
from crowdfund.services.crowdfund import CampaignView, CrowdfundService, normalize_slug

logger = get_logger(__name__)


class CampaignWatcher:
    """Keeps one campaign view fresh while it is open.

    Polling runs only while the viewed campaign is published, has a deposit
    address and is LIVE. A refresh that shows otherwise stops it.

    Example:
        with CampaignWatcher(service, poller) as watcher:
            watcher.open("save-the-reef")
            ...
    """

    def __init__(self, service: CrowdfundService, poller: BalancePoller, background: bool = True):
        """Initialize watcher.

        Args:
            service: Service used to load the campaign view
            poller: Balance poller owned by this watcher
            background: Run polls on the poller thread
        """
        self.service = service
        self.poller = poller
        self.background = background
        self.poller.on_refresh = self.refresh

        self._lock = threading.Lock()
        self._slug: Optional[str] = None
        self._view: Optional[CampaignView] = None

    @property
    def view(self) -> Optional[CampaignView]:
        return self._view

    def open(self, slug: str) -> Optional[CampaignView]:
        """Show a campaign, replacing whatever was open.

        Returns:
            The loaded view, or None if the campaign is missing or not visible
        """
        slug = normalize_slug(slug)
        if self._slug is not None and self._slug != slug:
            self.close()
        with self._lock:
            self._slug = slug
        return self.refresh()

    def refresh(self) -> Optional[CampaignView]:
        """Reload the open campaign and start or stop polling to match it."""
        with self._lock:
            slug = self._slug
        if slug is None:
            return None

        view = self.service.load_campaign_view(slug)

        with self._lock:
            if self._slug != slug:
                logger.debug(f"Dropping refresh of {slug}, view changed")
                return self._view
            self._view = view

        self._sync_polling(view)
        return view

    def _sync_polling(self, view: Optional[CampaignView]) -> None:
        if view is None or not view.is_pollable:
            if self.poller.is_active:
                reason = "not found" if view is None else view.status.value
                logger.info(f"Campaign {self._slug} is {reason}, stopping balance polling")
                self.poller.deactivate()
            return

        address = view.campaign.campaign_deposit_address
        if self.poller.is_active and self.poller.address != address.lower():
            self.poller.deactivate()
        self.poller.activate(address, view.campaign.slug, background=self.background)

    def close(self) -> None:
        """Close the view and stop polling."""
        self.poller.deactivate()
        with self._lock:
            self._slug = None
            self._view = None

    def __enter__(self) -> "CampaignWatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
