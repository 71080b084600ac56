"""Application wiring - build the service bundle once from configuration."""

from dataclasses import dataclass
from typing import Optional

from crowdfund.config import Config
from crowdfund.db.session import Database
from crowdfund.eth.chain_adapter import ChainAdapter, InMemoryChainAdapter
from crowdfund.eth.client import Erc20BalanceClient
from crowdfund.eth.derivation import AddressDeriver, HttpAddressDeriver, MnemonicAddressDeriver
from crowdfund.log import get_logger
from crowdfund.messaging.notifier import LogNotifier, Notifier, RabbitMQNotifier
from crowdfund.pipeline.balance_poller import BalancePoller
from crowdfund.pipeline.campaign_watcher import CampaignWatcher
from crowdfund.services.auth import SessionProvider, StaticSessionProvider
from crowdfund.services.crowdfund import CrowdfundService
from crowdfund.services.repository import PersistenceGateway

logger = get_logger(__name__)


@dataclass
class Services:
    """Collaborators shared by every command of one process."""

    config: Config
    database: Database
    sessions: SessionProvider
    gateway: PersistenceGateway
    chain: ChainAdapter
    balance_source: object
    deriver: Optional[AddressDeriver]
    notifier: Notifier
    service: CrowdfundService

    def make_watcher(self, background: bool = True) -> CampaignWatcher:
        """Build a watcher with its own balance poller."""
        poller = BalancePoller(
            self.balance_source,
            self.notifier,
            interval=self.config.poll_interval_seconds,
            decimals=self.config.currency_decimals,
            symbol=self.config.currency_symbol,
        )
        return CampaignWatcher(self.service, poller, background=background)

    def close(self) -> None:
        self.notifier.close()
        if isinstance(self.deriver, HttpAddressDeriver):
            self.deriver.close()
        self.database.dispose()


def build_deriver(config: Config) -> Optional[AddressDeriver]:
    """Pick the address deriver configured by MNEMONIC or DERIVATION_URL."""
    if config.mnemonic:
        return MnemonicAddressDeriver(config.mnemonic)
    if config.derivation_url:
        return HttpAddressDeriver(
            config.derivation_url,
            api_key=config.derivation_api_key,
            timeout=config.derivation_timeout_seconds,
        )
    logger.warning("No address deriver configured (set MNEMONIC or DERIVATION_URL)")
    return None


def build_notifier(config: Config) -> Notifier:
    if config.notifier == "rabbitmq":
        return RabbitMQNotifier(config)
    return LogNotifier()


def build_balance_source(config: Config, chain: ChainAdapter):
    """Balance gateway: the ERC-20 contract over RPC, or the in-memory ledger."""
    if config.balance_source == "memory":
        return chain
    return Erc20BalanceClient(config)


def build_services(
    config: Config,
    database: Optional[Database] = None,
    sessions: Optional[SessionProvider] = None,
    chain: Optional[ChainAdapter] = None,
    deriver: Optional[AddressDeriver] = None,
    notifier: Optional[Notifier] = None,
) -> Services:
    """Build the service bundle.

    Any collaborator passed in is used as is; the rest are built from config.

    Args:
        config: Validated configuration
        database: Database to use instead of one built from DB_URL
        sessions: Session provider (defaults to SESSION_USER_ID)
        chain: Chain state adapter (defaults to the in-memory simulation)
        deriver: Address deriver
        notifier: Notification sink

    Returns:
        Wired services
    """
    database = database or Database.from_config(config)
    sessions = sessions or StaticSessionProvider(config.session_user_id)
    chain = chain or InMemoryChainAdapter()
    if deriver is None:
        deriver = build_deriver(config)
    notifier = notifier or build_notifier(config)
    balance_source = build_balance_source(config, chain)

    gateway = PersistenceGateway(database, sessions)
    service = CrowdfundService(gateway, chain, deriver, config, balance_source=balance_source)

    return Services(
        config=config,
        database=database,
        sessions=sessions,
        gateway=gateway,
        chain=chain,
        balance_source=balance_source,
        deriver=deriver,
        notifier=notifier,
        service=service,
    )
