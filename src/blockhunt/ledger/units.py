"""
blockhunt/ledger/units.py

Native coin units and address helpers shared by the contract, the chain and
the orchestrator.
"""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

from ..config import ADDRESS_PATTERN, WEI_PER_ETHER, ZERO_ADDRESS


def is_valid_address(address: object) -> bool:
    """Check that address is a 0x-prefixed 20-byte hex string."""
    return isinstance(address, str) and bool(ADDRESS_PATTERN.fullmatch(address))


def is_zero_address(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


def normalize_address(address: str) -> str:
    """
    Canonical form of an address (lower-case hex).

    Raises:
        ValueError: If the address is malformed
    """
    if not is_valid_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return address.lower()


def to_wei(amount: Union[str, int, Decimal]) -> int:
    """
    Convert an ether amount to wei.

    Floats are rejected; pass a string or Decimal for fractional amounts.

    Args:
        amount: Amount in ether, e.g. "1.5"

    Returns:
        Amount in wei

    Raises:
        ValueError: If the amount is not a number or has more than 18 decimals
    """
    if isinstance(amount, bool) or isinstance(amount, float):
        raise ValueError(f"Use a string or Decimal for ether amounts, got {amount!r}")
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid ether amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid ether amount: {amount!r}")
    # Enough digits for the exact product; the default context rounds at 28
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(value.as_tuple().digits) + 19)
        wei = value * WEI_PER_ETHER
    if wei != wei.to_integral_value():
        raise ValueError(f"Too many decimal places: {amount!r}")
    return int(wei)


def from_wei(amount: int) -> Decimal:
    """Convert wei to ether."""
    return Decimal(amount) / WEI_PER_ETHER
