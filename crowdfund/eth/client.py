"""Web3 client for reading ERC-20 balances of deposit addresses."""

import time
from typing import Optional

from web3 import Web3

from crowdfund.config import Config
from crowdfund.errors import UpstreamFailure
from crowdfund.eth.addresses import to_checksum
from crowdfund.log import get_logger

logger = get_logger(__name__)

# Minimal ERC-20 ABI: balanceOf(address) -> uint256
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]


class Erc20BalanceClient:
    """Balance gateway backed by an Ethereum JSON-RPC endpoint, with retry logic."""

    def __init__(
        self,
        config: Config,
        web3: Optional[Web3] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """Initialize Web3 client.

        Args:
            config: Configuration object with RPC URL and currency contract
            web3: Preconfigured Web3 instance (built from config.rpc_url if omitted)
            max_retries: Attempts per balance read
            retry_delay: Base delay between attempts in seconds
        """
        self.config = config
        self.web3 = web3 or Web3(
            Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": config.rpc_timeout_seconds})
        )
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.token = self.web3.eth.contract(
            address=Web3.to_checksum_address(config.currency_address),
            abi=ERC20_BALANCE_ABI,
        )

    def is_connected(self) -> bool:
        """Check the RPC endpoint is reachable."""
        try:
            return bool(self.web3.is_connected())
        except Exception as e:
            logger.warning(f"RPC connection check failed: {e}")
            return False

    def get_balance(self, address: str) -> int:
        """Get the currency balance held by an address.

        The address format is validated before any RPC call.

        Args:
            address: Address to query (0x + 40 hex chars)

        Returns:
            Balance in smallest currency unit

        Raises:
            InvalidInput: If the address is malformed
            UpstreamFailure: If the RPC call keeps failing
        """
        owner = to_checksum(address)

        for attempt in range(self.max_retries):
            try:
                balance = int(self.token.functions.balanceOf(owner).call())
                logger.debug(f"Balance of {owner}: {balance} (raw units, {self.config.currency_decimals} decimals)")
                return balance
            except Exception as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"RPC error (attempt {attempt + 1}/{self.max_retries}): {e}. Retrying..."
                    )
                    time.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error(f"Failed to get balance after {self.max_retries} attempts: {e}")
                    raise UpstreamFailure(f"Balance lookup failed for {owner}: {e}") from e

        raise UpstreamFailure(f"Balance lookup failed for {owner}")
