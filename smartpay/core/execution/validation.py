"""
Local precondition checks. Pure functions, no I/O.

On-ledger preconditions live in the instruction builder because they need
live reads.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional, Union

from solders.pubkey import Pubkey

from ..recovery.errors import InsufficientBalance, InvalidAddress, InvalidAmount


def validate_recipient(text: Optional[str]) -> Pubkey:
    candidate = (text or "").strip()
    if not candidate:
        raise InvalidAddress("Recipient address is required")
    try:
        return Pubkey.from_string(candidate)
    except ValueError as exc:
        raise InvalidAddress(f"Recipient address is not valid base58: {candidate}") from exc


def parse_amount(text: Union[str, int, float, Decimal, None]) -> Decimal:
    """Parse a user-entered amount; must be a finite number greater than zero."""
    if isinstance(text, Decimal):
        amount = text
    else:
        raw = "" if text is None else str(text).strip()
        try:
            amount = Decimal(raw)
        except (InvalidOperation, ValueError):
            raise InvalidAmount("Transfer amount must be a number greater than 0") from None

    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount("Transfer amount must be a number greater than 0")
    return amount


def validate_amount(
    text: Union[str, int, float, Decimal, None],
    cached_balance: Optional[Decimal],
) -> Decimal:
    """Validate an amount against the cached display balance.

    An unknown balance (None) is not checked here; the caller has to
    re-fetch and refuse to send rather than guess.
    """
    amount = parse_amount(text)
    if cached_balance is not None and amount > cached_balance:
        raise InsufficientBalance(
            f"Insufficient balance: current {cached_balance:.2f}",
            required=str(amount),
            available=str(cached_balance),
        )
    return amount


def to_raw_amount(amount: Decimal, decimals: int) -> int:
    """Floor a display amount to base units."""
    raw = int(amount.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))
    if raw <= 0:
        smallest = Decimal(1).scaleb(-decimals)
        raise InvalidAmount(f"Transfer amount is too small (below {smallest})")
    return raw


def format_raw_amount(raw: int, decimals: int) -> str:
    return f"{Decimal(raw).scaleb(-decimals):.{decimals}f}"
