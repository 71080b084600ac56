"""Chain state adapter - contribution ledger, derived status, finalize/refund.

``ChainAdapter`` is the capability the service depends on.
``InMemoryChainAdapter`` simulates it in process memory; there is no on-chain
program behind it, so it is a reference implementation and test double.
"""

import random
import secrets
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from crowdfund.db.types import utcnow
from crowdfund.errors import AlreadyFinalized, InvalidInput, OperationNotImplemented
from crowdfund.eth.addresses import validate_address
from crowdfund.log import get_logger
from crowdfund.pipeline.lifecycle import CampaignStatus, derive_status

logger = get_logger(__name__)


@dataclass(frozen=True)
class OnchainCampaignState:
    """Chain-side view of a campaign."""

    total_raised: int
    status: CampaignStatus
    is_finalized: bool
    backer_count: int


@dataclass(frozen=True)
class TxReceipt:
    """Transaction-receipt-like token returned by chain commands."""

    tx_hash: str
    status: str = "confirmed"


@dataclass
class ContributionLedger:
    """Per-address ledger: contributor -> cumulative amount."""

    contributions: Dict[str, int] = field(default_factory=dict)
    total_raised: int = 0
    is_finalized: bool = False

    @property
    def backer_count(self) -> int:
        return sum(1 for amount in self.contributions.values() if amount > 0)

    def add(self, contributor: str, amount: int) -> None:
        self.contributions[contributor] = self.contributions.get(contributor, 0) + amount
        self.total_raised += amount


def generate_tx_hash() -> str:
    return "0x" + secrets.token_hex(32)


class ChainAdapter(ABC):
    """Capability interface over on-chain campaign settlement."""

    @abstractmethod
    def get_state(self, address: str, goal: int, deadline_at: datetime) -> OnchainCampaignState:
        """Derive campaign state for a deposit address. Never mutates."""

    @abstractmethod
    def get_contribution(self, address: str, contributor: str) -> int:
        """Cumulative contribution of ``contributor``; zero when unknown."""

    @abstractmethod
    def finalize(self, address: str) -> TxReceipt:
        """Finalize a campaign; raises AlreadyFinalized on a second call."""

    @abstractmethod
    def claim_refund(self, address: str, contributor: str) -> TxReceipt:
        """Refund a contributor of a failed campaign."""

    @abstractmethod
    def get_balance(self, address: str) -> int:
        """Token balance held at the deposit address."""


class InMemoryChainAdapter(ChainAdapter):
    """In-process simulation of the chain adapter.

    Every ledger read-modify-write happens under one lock, so concurrent
    pledges to the same address never lose an update.
    """

    def __init__(
        self,
        latency_seconds: Tuple[float, float] = (0.0, 0.0),
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize adapter.

        Args:
            latency_seconds: (min, max) simulated network round-trip per call
            clock: Source of the current time
        """
        self.latency_seconds = latency_seconds
        self.clock = clock
        self._ledgers: Dict[str, ContributionLedger] = {}
        self._lock = threading.Lock()

    def _simulate_latency(self) -> None:
        low, high = self.latency_seconds
        if high > 0:
            time.sleep(random.uniform(low, high))

    def _ledger(self, address: str) -> ContributionLedger:
        # Caller holds self._lock
        key = validate_address(address)
        ledger = self._ledgers.get(key)
        if ledger is None:
            ledger = ContributionLedger()
            self._ledgers[key] = ledger
        return ledger

    def get_state(self, address: str, goal: int, deadline_at: datetime) -> OnchainCampaignState:
        self._simulate_latency()
        with self._lock:
            ledger = self._ledger(address)
            total_raised = ledger.total_raised
            is_finalized = ledger.is_finalized
            backer_count = ledger.backer_count

        status = derive_status(total_raised, goal, deadline_at, is_finalized, now=self.clock())
        return OnchainCampaignState(
            total_raised=total_raised,
            status=status,
            is_finalized=is_finalized,
            backer_count=backer_count,
        )

    def get_contribution(self, address: str, contributor: str) -> int:
        self._simulate_latency()
        contributor = validate_address(contributor, "contributor address")
        with self._lock:
            return self._ledger(address).contributions.get(contributor, 0)

    def pledge(
        self,
        address: str,
        contributor: str,
        amount: int,
        min_pledge: int = 0,
        deadline_at: Optional[datetime] = None,
    ) -> TxReceipt:
        """Simulate a contributor transferring funds to a deposit address.

        Args:
            address: Campaign deposit address
            contributor: Sender address
            amount: Amount in smallest currency unit
            min_pledge: Minimum accepted amount
            deadline_at: Campaign deadline; pledges at or after it are rejected

        Returns:
            Receipt of the simulated transfer

        Raises:
            InvalidInput: Amount below minimum, non-positive, or deadline passed
        """
        self._simulate_latency()
        contributor = validate_address(contributor, "contributor address")
        if amount <= 0:
            raise InvalidInput("Pledge amount must be positive")
        if amount < min_pledge:
            raise InvalidInput(f"Pledge amount must be at least {min_pledge}")
        if deadline_at is not None and self.clock() >= deadline_at:
            raise InvalidInput("Campaign deadline has passed")

        with self._lock:
            self._ledger(address).add(contributor, amount)

        receipt = TxReceipt(tx_hash=generate_tx_hash())
        logger.debug(f"Pledge of {amount} from {contributor} to {address}: {receipt.tx_hash}")
        return receipt

    def finalize(self, address: str) -> TxReceipt:
        self._simulate_latency()
        with self._lock:
            ledger = self._ledger(address)
            if ledger.is_finalized:
                raise AlreadyFinalized("Campaign already finalized")
            ledger.is_finalized = True

        receipt = TxReceipt(tx_hash=generate_tx_hash())
        logger.info(f"Finalized campaign at {address}: {receipt.tx_hash}")
        return receipt

    def claim_refund(self, address: str, contributor: str) -> TxReceipt:
        self._simulate_latency()
        raise OperationNotImplemented("Refunds not implemented")

    def get_balance(self, address: str) -> int:
        self._simulate_latency()
        with self._lock:
            return self._ledger(address).total_raised
