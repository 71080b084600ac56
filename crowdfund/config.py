"""Configuration management for the crowdfund service."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

# USDC on Base mainnet
DEFAULT_CURRENCY_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

BALANCE_SOURCES = ("rpc", "memory")
NOTIFIERS = ("log", "rabbitmq")


@dataclass
class Config:
    """Crowdfund service configuration."""

    # Required
    db_url: str

    # Chain / currency settings
    rpc_url: str = "https://mainnet.base.org"
    chain_id: int = 8453  # Base mainnet
    currency_address: str = DEFAULT_CURRENCY_ADDRESS
    currency_decimals: int = 6
    currency_symbol: str = "USDC"
    default_min_pledge: int = 1_000_000  # 1 USDC
    rpc_timeout_seconds: int = 10
    balance_source: str = "rpc"

    # Polling
    poll_interval_seconds: float = 5.0

    # Address derivation
    mnemonic: Optional[str] = None
    derivation_url: Optional[str] = None
    derivation_api_key: Optional[str] = None
    derivation_timeout_seconds: int = 15

    # Notifications
    notifier: str = "log"
    rabbitmq_host: str = "localhost"
    rabbitmq_port: int = 5672
    rabbitmq_user: str = "guest"
    rabbitmq_password: str = "guest"
    rabbitmq_vhost: str = "/"
    rabbitmq_exchange: str = "crowdfund_notifications"

    # Session identity used by the CLI
    session_user_id: Optional[str] = None

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_url = os.getenv("DB_URL")
        if not db_url:
            raise ValueError("DB_URL environment variable is required")

        return cls(
            db_url=db_url,
            # Chain / currency settings
            rpc_url=os.getenv("RPC_URL", "https://mainnet.base.org"),
            chain_id=int(os.getenv("CHAIN_ID", "8453")),
            currency_address=os.getenv("CURRENCY_ADDRESS", DEFAULT_CURRENCY_ADDRESS),
            currency_decimals=int(os.getenv("CURRENCY_DECIMALS", "6")),
            currency_symbol=os.getenv("CURRENCY_SYMBOL", "USDC"),
            default_min_pledge=int(os.getenv("DEFAULT_MIN_PLEDGE", "1000000")),
            rpc_timeout_seconds=int(os.getenv("RPC_TIMEOUT_SECONDS", "10")),
            balance_source=os.getenv("BALANCE_SOURCE", "rpc").lower(),
            # Polling
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "5")),
            # Address derivation
            mnemonic=os.getenv("MNEMONIC") or None,
            derivation_url=os.getenv("DERIVATION_URL") or None,
            derivation_api_key=os.getenv("DERIVATION_API_KEY") or None,
            derivation_timeout_seconds=int(os.getenv("DERIVATION_TIMEOUT_SECONDS", "15")),
            # Notifications
            notifier=os.getenv("NOTIFIER", "log").lower(),
            rabbitmq_host=os.getenv("RABBITMQ_HOST", "localhost"),
            rabbitmq_port=int(os.getenv("RABBITMQ_PORT", "5672")),
            rabbitmq_user=os.getenv("RABBITMQ_USER", "guest"),
            rabbitmq_password=os.getenv("RABBITMQ_PASSWORD", "guest"),
            rabbitmq_vhost=os.getenv("RABBITMQ_VHOST", "/"),
            rabbitmq_exchange=os.getenv("RABBITMQ_EXCHANGE", "crowdfund_notifications"),
            session_user_id=os.getenv("SESSION_USER_ID") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.db_url:
            raise ValueError("db_url is required")
        if self.chain_id <= 0:
            raise ValueError("chain_id must be > 0")
        if self.currency_decimals < 0:
            raise ValueError("currency_decimals must be >= 0")
        if self.default_min_pledge < 0:
            raise ValueError("default_min_pledge must be >= 0")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if self.rpc_timeout_seconds <= 0:
            raise ValueError("rpc_timeout_seconds must be > 0")
        if self.derivation_timeout_seconds <= 0:
            raise ValueError("derivation_timeout_seconds must be > 0")
        if self.balance_source not in BALANCE_SOURCES:
            raise ValueError(f"balance_source must be one of {', '.join(BALANCE_SOURCES)}")
        if self.notifier not in NOTIFIERS:
            raise ValueError(f"notifier must be one of {', '.join(NOTIFIERS)}")
        if self.mnemonic and self.derivation_url:
            raise ValueError("configure either MNEMONIC or DERIVATION_URL, not both")
        if self.rabbitmq_port <= 0:
            raise ValueError("rabbitmq_port must be > 0")

    def get_rabbitmq_connection_params(self) -> dict:
        """Get RabbitMQ connection parameters as a dictionary."""
        return {
            "host": self.rabbitmq_host,
            "port": self.rabbitmq_port,
            "user": self.rabbitmq_user,
            "password": self.rabbitmq_password,
            "vhost": self.rabbitmq_vhost,
        }
