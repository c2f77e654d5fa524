"""
Submission orchestration.

Wraps build -> sign -> submit -> confirm in bounded exponential-backoff
retry, splits account creation from the transfer, and refreshes the
sender's balance once the final transaction confirms.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine, List, Optional, Sequence, TypeVar

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..recovery.errors import FetchError
from ..recovery.retry import RetryCallback, RetryConfig, retry_with_backoff
from .models import TransferResult
from .spl import is_create_associated_account

if TYPE_CHECKING:
    from .balance import BalanceSynchronizer
    from .relay import TransactionRelay
    from .tx_builder import InstructionBuilder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SubmissionOrchestrator:
    """
    Retrying submission of transfers.

    ``retry_attempt`` is the number of the last failed attempt that is being
    retried; it resets to 0 at the start of every ``submit`` and exists for
    progress display only.
    """

    def __init__(
        self,
        relay: "TransactionRelay",
        builder: "InstructionBuilder",
        balances: "BalanceSynchronizer",
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.relay = relay
        self.builder = builder
        self.balances = balances
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self._retry_attempt = 0
        self._attempts = 0

    @property
    def retry_attempt(self) -> int:
        return self._retry_attempt

    async def submit(
        self,
        build_fn: Callable[[], Coroutine[Any, Any, T]],
        *,
        max_retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        """Call ``build_fn`` until it succeeds or the attempts run out.

        The last error is re-raised unchanged once the budget is spent.
        """
        base = self.retry_config
        config = RetryConfig(
            max_attempts=max_retries if max_retries is not None else base.max_attempts,
            initial_delay_seconds=initial_delay if initial_delay is not None else base.initial_delay_seconds,
            max_delay_seconds=max_delay if max_delay is not None else base.max_delay_seconds,
            exponential_base=base.exponential_base,
        )
        self._retry_attempt = 0
        self._attempts = 0

        async def attempt() -> T:
            self._attempts += 1
            return await build_fn()

        def observe_retry(number: int, error: BaseException) -> Any:
            self._retry_attempt = number
            if on_retry is not None:
                return on_retry(number, error)
            return None

        return await retry_with_backoff(
            attempt,
            config,
            on_retry=observe_retry,
            sleep=self._sleep,
            operation_name="submission",
        )

    async def send_operations(
        self,
        operations: Sequence[Instruction],
        confirmed: Optional[List[str]] = None,
    ) -> List[str]:
        """Send a built operation list, one confirmed transaction at a time.

        Account creation goes out on its own and must confirm before the
        transfer transaction is built. Each signature is appended to
        ``confirmed`` as soon as it confirms.
        """
        signatures = confirmed if confirmed is not None else []
        if len(operations) >= 2 and is_create_associated_account(operations[0]):
            signatures.append(await self.relay.send_and_confirm([operations[0]]))
            signatures.append(await self.relay.send_and_confirm(list(operations[1:])))
        else:
            signatures.append(await self.relay.send_and_confirm(operations))
        return signatures

    async def transfer(
        self,
        sender: Pubkey,
        recipient: Pubkey,
        amount: Decimal,
        mint: Pubkey,
        *,
        on_retry: Optional[RetryCallback] = None,
    ) -> TransferResult:
        created_account = False
        # confirmed signatures from every attempt, in order
        signatures: List[str] = []

        async def build_and_send() -> List[str]:
            nonlocal created_account
            operations = await self.builder.build(sender, recipient, amount, mint)
            if is_create_associated_account(operations[0]):
                created_account = True
            return await self.send_operations(operations, signatures)

        await self.submit(build_and_send, on_retry=on_retry)
        await self.refresh_after_submit(sender, mint)

        return TransferResult(
            signature=signatures[-1],
            signatures=signatures,
            created_recipient_account=created_account,
            attempts=self._attempts,
            amount=amount,
            recipient=str(recipient),
        )

    async def refresh_after_submit(self, account: Pubkey, mint: Pubkey) -> Optional[Decimal]:
        """Forced refresh; its outcome never changes the submission result."""
        try:
            return await self.balances.refresh(account, mint, force=True)
        except FetchError as exc:
            logger.warning(f"Post-submit balance refresh failed for {account}: {exc}")
            return None
