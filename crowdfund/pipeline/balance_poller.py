"""Balance poller - detect new pledges by sampling a deposit address balance."""

import threading
from typing import Callable, Optional

from crowdfund.eth.addresses import validate_address
from crowdfund.log import get_logger
from crowdfund.messaging.notifier import Notifier
from crowdfund.messaging.schema import PledgeReceivedMessage
from crowdfund.utils.formatting import format_delta, parse_amount

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


class BalanceReconciler:
    """Diffs each balance sample against the last observation.

    ``last_observed`` is None until the first sample, so the initial load
    never looks like a new pledge.
    """

    def __init__(self):
        self.last_observed: Optional[int] = None

    def reset(self) -> None:
        self.last_observed = None

    def observe(self, balance: int) -> Optional[int]:
        """Record a balance sample.

        Args:
            balance: Current balance in smallest currency unit

        Returns:
            The increase since the previous sample, or None when there is
            nothing to report (first sample, unchanged or decreased balance)
        """
        previous = self.last_observed
        self.last_observed = balance

        if previous is None:
            return None

        delta = balance - previous
        if delta < 0:
            logger.warning(f"Balance decreased from {previous} to {balance}, ignoring")
            return None
        if delta == 0:
            return None
        return delta


class BalancePoller:
    """Polls one deposit address at a fixed interval while activated.

    Each activation runs on its own daemon thread. The next poll is only
    scheduled after the previous one finishes, so two polls never overlap.
    Every activation and deactivation bumps a generation counter; a poll
    whose generation is no longer current drops its result.
    """

    def __init__(
        self,
        balance_source,
        notifier: Notifier,
        on_refresh: Optional[Callable[[], None]] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        decimals: int = 6,
        symbol: str = "USDC",
    ):
        """Initialize poller.

        Args:
            balance_source: Object with ``get_balance(address)`` (balance client or chain adapter)
            notifier: Receives "new pledge received" notifications
            on_refresh: Called after a notification to reload campaign state
            interval: Seconds between the end of one poll and the start of the next
            decimals: Currency decimals for display
            symbol: Currency symbol for display
        """
        self.balance_source = balance_source
        self.notifier = notifier
        self.on_refresh = on_refresh
        self.interval = interval
        self.decimals = decimals
        self.symbol = symbol

        self.reconciler = BalanceReconciler()
        self._lock = threading.Lock()
        self._generation = 0
        self._address: Optional[str] = None
        self._slug: Optional[str] = None
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def is_active(self) -> bool:
        return self._address is not None

    def activate(self, address: str, slug: str, background: bool = True) -> None:
        """Start polling ``address``.

        Resets the snapshot and polls immediately. Activating the address
        that is already being polled does nothing.

        Args:
            address: Deposit address to watch
            slug: Campaign slug (for notifications)
            background: Start the polling thread; when False the caller drives
                ``poll_once`` itself

        Raises:
            InvalidInput: If the address is malformed
        """
        address = validate_address(address, "deposit address")

        with self._lock:
            if self._address == address:
                return
            self._stop_locked()
            self._generation += 1
            generation = self._generation
            self._address = address
            self._slug = slug
            self.reconciler.reset()

            if background:
                stop_event = threading.Event()
                thread = threading.Thread(
                    target=self._run,
                    args=(generation, stop_event),
                    name=f"balance-poller-{slug}",
                    daemon=True,
                )
                self._stop_event = stop_event
                self._thread = thread

        logger.info(f"Polling {address} for {slug} every {self.interval}s")
        if background:
            thread.start()

    def deactivate(self, timeout: Optional[float] = None) -> None:
        """Stop polling and discard the snapshot.

        A poll already in flight finishes but its result is dropped.

        Args:
            timeout: Wait up to this many seconds for the polling thread to exit
        """
        with self._lock:
            if self._address is None and self._thread is None:
                return
            thread = self._thread
            address = self._address
            self._stop_locked()
            self._generation += 1
            self._address = None
            self._slug = None
            self.reconciler.reset()

        logger.info(f"Stopped polling {address}")
        if timeout is not None and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _stop_locked(self) -> None:
        # Caller holds self._lock
        if self._stop_event is not None:
            self._stop_event.set()
        self._stop_event = None
        self._thread = None

    def _run(self, generation: int, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self._poll(generation)
            if stop_event.wait(self.interval):
                break
        logger.debug(f"Polling thread for generation {generation} exited")

    def poll_once(self) -> Optional[int]:
        """Run one poll for the current activation.

        Returns:
            The notified increase, or None
        """
        with self._lock:
            generation = self._generation
        return self._poll(generation)

    def _poll(self, generation: int) -> Optional[int]:
        with self._lock:
            if generation != self._generation or self._address is None:
                return None
            address = self._address
            slug = self._slug

        try:
            balance = parse_amount(self.balance_source.get_balance(address), "balance")
        except Exception as e:
            logger.error(f"Balance poll failed for {address}: {e}")
            return None

        with self._lock:
            if generation != self._generation:
                logger.debug(f"Discarding stale balance {balance} for {address}")
                return None
            delta = self.reconciler.observe(balance)

        if delta is None:
            return None

        display_delta = format_delta(delta, self.decimals, self.symbol)
        logger.info(f"New pledge received for {slug}: {display_delta}")
        try:
            self.notifier.notify_pledge(
                PledgeReceivedMessage(
                    campaign_slug=slug,
                    deposit_address=address,
                    delta=delta,
                    balance=balance,
                    display_delta=display_delta,
                )
            )
        except Exception as e:
            logger.error(f"Failed to notify new pledge for {slug}: {e}")

        # Refresh even when notifying failed, the snapshot is already past this delta
        if self.on_refresh is not None:
            try:
                self.on_refresh()
            except Exception as e:
                logger.error(f"Failed to refresh {slug} after new pledge: {e}")

        return delta
