from decimal import Decimal, InvalidOperation
from typing import Union

from web3 import Web3

from presale_app.services.errors import InvalidAddress, InvalidAmount

# ── Fixed-point scales ──
DECIMALS = 18
WAD = 10 ** DECIMALS

# ── Well-known addresses ──
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEAD_ADDRESS = "0x000000000000000000000000000000000000dEaD"

Number = Union[int, str, Decimal]


def ceil_div(a: int, b: int) -> int:
    """Integer division rounding toward +infinity for non-negative operands."""
    if b <= 0:
        raise ZeroDivisionError("ceil_div requires a positive divisor")
    return -(-a // b)


def parse_ether(value: Number) -> int:
    """'1.5' -> 1500000000000000000"""
    try:
        return int(Web3.to_wei(Decimal(str(value)), "ether"))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"not a valid amount: {value!r}") from exc


def format_ether(amount: int) -> str:
    value = Web3.from_wei(int(amount), "ether")
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def parse_units(value: Number, decimals: int) -> int:
    """Scale a human-readable amount to an integer with `decimals` places."""
    try:
        scaled = Decimal(str(value)) * (Decimal(10) ** decimals)
    except InvalidOperation as exc:
        raise InvalidAmount(f"not a valid amount: {value!r}") from exc
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(f"{value!r} has more than {decimals} decimal places")
    return int(scaled)


def format_units(amount: int, decimals: int) -> str:
    value = Decimal(int(amount)).scaleb(-decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def to_float(amount: int, decimals: int = DECIMALS) -> float:
    """Lossy conversion for reporting only."""
    return float(Decimal(int(amount)).scaleb(-decimals))


def normalize_address(address: str) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddress(f"not a valid address: {address!r}")
    return Web3.to_checksum_address(address)


def is_zero_address(address: str) -> bool:
    return normalize_address(address) == ZERO_ADDRESS
