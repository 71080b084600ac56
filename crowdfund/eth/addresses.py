"""Address validation helpers."""

import re

from web3 import Web3

from crowdfund.errors import InvalidInput

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")

# Deposit address assigned to a draft before derivation succeeds
PLACEHOLDER_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_valid_address(address: object) -> bool:
    """Check the fixed-length hexadecimal address format."""
    return isinstance(address, str) and ADDRESS_PATTERN.match(address) is not None


def validate_address(address: object, field: str = "address") -> str:
    """Validate and canonicalize an address to lowercase.

    Args:
        address: Candidate address
        field: Field name used in error messages

    Returns:
        Lowercase address

    Raises:
        InvalidInput: If the address is not 0x followed by 40 hex characters
    """
    if not is_valid_address(address):
        raise InvalidInput(f"Invalid {field} format: {address!r}")
    return address.lower()


def to_checksum(address: str) -> str:
    """Validate an address and return its EIP-55 checksum form."""
    return Web3.to_checksum_address(validate_address(address))


def is_placeholder(address: object) -> bool:
    """True if the deposit address has not been assigned yet."""
    if not address:
        return True
    return str(address).lower() == PLACEHOLDER_ADDRESS
