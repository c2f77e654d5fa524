"""
Balance synchronization.

Keeps one cached token balance per (account, asset). Concurrent refreshes
for the same key share a single ledger read, and unforced refreshes inside
the cooldown window return the cached value without touching the ledger.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from solders.pubkey import Pubkey

from ..recovery.errors import FetchError
from .spl import decode_token_amount, get_associated_token_address

if TYPE_CHECKING:
    from ...providers.base import LedgerProvider

logger = logging.getLogger(__name__)

BalanceKey = Tuple[str, str]


@dataclass
class BalanceState:
    """Per-(account, asset) state owned by one synchronizer."""
    value: Optional[Decimal] = None
    error: Optional[FetchError] = None
    last_completed_at: Optional[float] = None
    in_flight: Optional["asyncio.Task[Optional[Decimal]]"] = None


class BalanceSynchronizer:
    """
    Cached balance reads with single-flight and a refresh cooldown.

    ``None`` means "unknown", never zero. There is no push channel, so
    callers must ``refresh(..., force=True)`` after any submission that
    could move the balance.
    """

    def __init__(
        self,
        ledger: "LedgerProvider",
        decimals: int = 6,
        cooldown_seconds: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ledger = ledger
        self._decimals = decimals
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._states: Dict[BalanceKey, BalanceState] = {}

    def _state(self, account: Pubkey, asset: Pubkey) -> BalanceState:
        key = (str(account), str(asset))
        state = self._states.get(key)
        if state is None:
            state = self._states[key] = BalanceState()
        return state

    def current(self, account: Pubkey, asset: Pubkey) -> Optional[Decimal]:
        return self._state(account, asset).value

    def last_error(self, account: Pubkey, asset: Pubkey) -> Optional[FetchError]:
        return self._state(account, asset).error

    def invalidate(self, account: Pubkey, asset: Pubkey) -> None:
        """Drop the cooldown so the next refresh reads the ledger."""
        self._state(account, asset).last_completed_at = None

    async def refresh(
        self,
        account: Pubkey,
        asset: Pubkey,
        force: bool = False,
    ) -> Optional[Decimal]:
        state = self._state(account, asset)

        if state.in_flight is not None:
            return await asyncio.shield(state.in_flight)

        if not force and state.last_completed_at is not None:
            if self._clock() - state.last_completed_at < self._cooldown:
                return state.value

        task = asyncio.ensure_future(self._fetch(account, asset, state))
        state.in_flight = task
        return await asyncio.shield(task)

    async def _fetch(self, account: Pubkey, asset: Pubkey, state: BalanceState) -> Optional[Decimal]:
        try:
            value = await self._read_balance(account, asset)
        except Exception as exc:
            error = exc if isinstance(exc, FetchError) else FetchError(f"Balance read failed: {exc}")
            state.value = None
            state.error = error
            logger.warning(f"Balance refresh for {account} failed: {error}")
            if error is exc:
                raise
            raise error from exc
        else:
            state.value = value
            state.error = None
            return value
        finally:
            state.last_completed_at = self._clock()
            state.in_flight = None

    async def _read_balance(self, account: Pubkey, asset: Pubkey) -> Decimal:
        token_account = get_associated_token_address(asset, account)
        info = await self._ledger.get_account_info(token_account)
        if info is None:
            return Decimal(0)
        try:
            raw = decode_token_amount(info.data)
        except ValueError as exc:
            raise FetchError(f"Unreadable token account {token_account}: {exc}") from exc
        return Decimal(raw).scaleb(-self._decimals)
