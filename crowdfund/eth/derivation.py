"""Deposit address derivation from a campaign's sequential index."""

from typing import Optional

import httpx
from eth_account import Account

from crowdfund.errors import InvalidInput, UpstreamFailure
from crowdfund.eth.addresses import is_valid_address
from crowdfund.log import get_logger

logger = get_logger(__name__)

# BIP-44 Ethereum path; the campaign index is the address index
DEFAULT_PATH_TEMPLATE = "m/44'/60'/0'/0/{index}"


def _check_index(campaign_index: int) -> None:
    if isinstance(campaign_index, bool) or not isinstance(campaign_index, int) or campaign_index < 0:
        raise InvalidInput(f"campaign_index must be a non-negative integer, got {campaign_index!r}")


class AddressDeriver:
    """Deterministically maps a campaign index to a deposit address."""

    def derive(self, campaign_index: int) -> str:
        """Derive the deposit address for ``campaign_index``."""
        raise NotImplementedError


class MnemonicAddressDeriver(AddressDeriver):
    """Derives addresses from an HD wallet mnemonic."""

    def __init__(self, mnemonic: str, path_template: str = DEFAULT_PATH_TEMPLATE):
        """Initialize deriver.

        Args:
            mnemonic: BIP-39 mnemonic
            path_template: Derivation path with an ``{index}`` placeholder
        """
        if not mnemonic:
            raise ValueError("mnemonic is required")
        Account.enable_unaudited_hdwallet_features()
        self._mnemonic = mnemonic
        self.path_template = path_template

    def derive(self, campaign_index: int) -> str:
        _check_index(campaign_index)
        path = self.path_template.format(index=campaign_index)
        try:
            account = Account.from_mnemonic(self._mnemonic, account_path=path)
        except Exception as e:
            raise UpstreamFailure(f"Address derivation failed for index {campaign_index}: {e}") from e
        logger.info(f"Derived address {account.address} for campaign_index {campaign_index}")
        return account.address


class HttpAddressDeriver(AddressDeriver):
    """Calls a remote signing utility that derives campaign wallets.

    Request: ``POST {"campaign_index": n}``; response: ``{"address": "0x..."}``.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 15,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize deriver.

        Args:
            url: Endpoint URL of the derivation function
            api_key: Bearer token sent in the Authorization header
            timeout: Request timeout in seconds
            client: Preconfigured httpx client (tests)
        """
        self.url = url
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    def derive(self, campaign_index: int) -> str:
        _check_index(campaign_index)
        try:
            response = self._client.post(self.url, json={"campaign_index": campaign_index})
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise UpstreamFailure(f"Derivation request timed out for index {campaign_index}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamFailure(f"Derivation request failed for index {campaign_index}: {e}") from e

        address = payload.get("address") if isinstance(payload, dict) else None
        if not is_valid_address(address):
            raise UpstreamFailure(f"Derivation service returned an invalid address: {address!r}")

        logger.info(f"Derived address {address} for campaign_index {campaign_index}")
        return address

    def close(self) -> None:
        self._client.close()
