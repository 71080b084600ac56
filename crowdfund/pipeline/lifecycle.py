"""Campaign lifecycle state machine.

Status is never stored. It is derived on every read from the publication
flag, the deadline, the raised total, the goal and the finalization flag:

    DRAFT --publish--> LIVE --deadline--> SUCCESSFUL --finalize--> FINALIZED
                            \\--deadline--> FAILED

Closing early moves the deadline to now, so the next derivation resolves
to SUCCESSFUL or FAILED with the same comparison.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from crowdfund.db.types import utcnow
from crowdfund.errors import AlreadyFinalized, InvalidInput
from crowdfund.eth.addresses import is_placeholder


class CampaignStatus(str, Enum):
    """Derived campaign status."""

    DRAFT = "DRAFT"
    LIVE = "LIVE"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"
    FINALIZED = "FINALIZED"


ALLOWED_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.LIVE}),
    CampaignStatus.LIVE: frozenset({CampaignStatus.SUCCESSFUL, CampaignStatus.FAILED}),
    CampaignStatus.SUCCESSFUL: frozenset({CampaignStatus.FINALIZED}),
    CampaignStatus.FAILED: frozenset(),
    CampaignStatus.FINALIZED: frozenset(),
}


def derive_status(
    total_raised: int,
    goal: int,
    deadline_at: datetime,
    is_finalized: bool,
    now: Optional[datetime] = None,
) -> CampaignStatus:
    """Derive the status of a published campaign.

    Finalization dominates; otherwise the campaign is LIVE before the
    deadline and SUCCESSFUL or FAILED after it. Reaching the goal exactly
    counts as SUCCESSFUL.

    Args:
        total_raised: Amount raised in smallest currency unit
        goal: Goal in smallest currency unit
        deadline_at: Aware deadline timestamp
        is_finalized: Finalization flag
        now: Current time (defaults to UTC now)

    Returns:
        LIVE, SUCCESSFUL, FAILED or FINALIZED
    """
    if is_finalized:
        return CampaignStatus.FINALIZED

    now = now or utcnow()
    if now < deadline_at:
        return CampaignStatus.LIVE

    if total_raised >= goal:
        return CampaignStatus.SUCCESSFUL

    return CampaignStatus.FAILED


def campaign_status(is_published: bool, chain_status: Optional[CampaignStatus]) -> CampaignStatus:
    """Overall status: DRAFT while unpublished, otherwise the chain-derived status."""
    if not is_published or chain_status is None:
        return CampaignStatus.DRAFT
    return chain_status


def can_transition(current: CampaignStatus, target: CampaignStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: CampaignStatus, target: CampaignStatus) -> None:
    """Check that ``current -> target`` is a legal edge.

    Raises:
        AlreadyFinalized: If the campaign is finalized and FINALIZED is requested
        InvalidInput: For any other illegal transition
    """
    if can_transition(current, target):
        return
    if current == CampaignStatus.FINALIZED and target == CampaignStatus.FINALIZED:
        raise AlreadyFinalized("Campaign already finalized")
    raise InvalidInput(f"Cannot move campaign from {current.value} to {target.value}")


def check_publishable(campaign) -> bool:
    """Check a campaign can go live.

    Args:
        campaign: Campaign row

    Returns:
        False if already published (publish is a no-op), True otherwise

    Raises:
        InvalidInput: If the deposit address has not been assigned yet
    """
    if campaign.is_published:
        return False
    if is_placeholder(campaign.campaign_deposit_address):
        raise InvalidInput("Cannot publish a campaign without a deposit address")
    return True


def close_early_deadline(campaign, now: Optional[datetime] = None) -> datetime:
    """Deadline to store when the creator closes a live campaign early.

    The deadline only ever moves earlier.

    Raises:
        InvalidInput: If the campaign is not published or already past its deadline
    """
    now = now or utcnow()
    if not campaign.is_published:
        raise InvalidInput("Only published campaigns can be closed early")
    if now >= campaign.deadline_at:
        raise InvalidInput("Campaign deadline has already passed")
    return min(now, campaign.deadline_at)


def check_refundable(status: CampaignStatus, contribution: int) -> None:
    """Refunds are only meaningful for FAILED campaigns with a nonzero contribution.

    Raises:
        InvalidInput: Otherwise
    """
    if status != CampaignStatus.FAILED:
        raise InvalidInput(f"Refunds are only possible for failed campaigns (status is {status.value})")
    if contribution <= 0:
        raise InvalidInput("No contribution to refund")
