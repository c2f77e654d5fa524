"""
Transfer service.

The one object the HTTP layer and the CLI talk to. Owns the balance cache,
the retrying orchestrator and the chunked commit coordinator for a single
smart wallet, and refuses overlapping actions on that wallet.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Sequence

import structlog
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..config import settings
from ..core.execution.balance import BalanceSynchronizer
from ..core.execution.chunked import ChunkedCommitCoordinator
from ..core.execution.models import ChunkedCommitResult, SignedMessage, TransferResult
from ..core.execution.orchestrator import SubmissionOrchestrator
from ..core.execution.relay import TransactionRelay
from ..core.execution.spl import memo_instruction
from ..core.execution.tx_builder import InstructionBuilder
from ..core.execution import validation
from ..core.recovery.errors import (
    BalanceUnknown,
    ConfigurationError,
    InvalidAmount,
    InvalidMemo,
    InvalidMessage,
    SubmissionInProgress,
)
from ..core.recovery.retry import RetryCallback, RetryConfig
from ..logging_config import bind_action_context
from ..providers.base import FeeSponsorProvider, LedgerProvider, SignerProvider

_slog = structlog.stdlib.get_logger(__name__)

EXPLORER_BASE_URL = "https://explorer.solana.com"


class TransferService:
    """
    Facade over the transfer pipeline for one smart wallet.

    Usage:
        service = get_transfer_service()
        balance = await service.refresh_balance()
        result = await service.send_value("9xQe...", "2.5")
        print(service.explorer_url(result.signature))
    """

    def __init__(
        self,
        ledger: LedgerProvider,
        signer: SignerProvider,
        sponsor: Optional[FeeSponsorProvider] = None,
        *,
        mint: Pubkey,
        decimals: int = 6,
        cluster: str = "devnet",
        commitment: str = "confirmed",
        retry_config: Optional[RetryConfig] = None,
        balance_cooldown_seconds: float = 3.0,
        max_transaction_size: int = 1232,
        smart_wallet_program_id: Optional[Pubkey] = None,
        chunk_visibility_attempts: int = 3,
        chunk_visibility_interval_seconds: float = 1.5,
        airdrop_lamports: int = 1_000_000_000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = ledger
        self.signer = signer
        self.sponsor = sponsor
        self.mint = mint
        self.decimals = decimals
        self.cluster = cluster
        self.commitment = commitment
        self.airdrop_lamports = airdrop_lamports

        self.balances = BalanceSynchronizer(
            ledger,
            decimals=decimals,
            cooldown_seconds=balance_cooldown_seconds,
            clock=clock,
        )
        self.relay = TransactionRelay(
            ledger,
            signer,
            sponsor,
            commitment=commitment,
            max_transaction_size=max_transaction_size,
        )
        self.orchestrator = SubmissionOrchestrator(
            self.relay,
            InstructionBuilder(ledger, decimals=decimals),
            self.balances,
            retry_config=retry_config,
            sleep=sleep,
        )
        self.chunked: Optional[ChunkedCommitCoordinator] = None
        if smart_wallet_program_id is not None:
            self.chunked = ChunkedCommitCoordinator(
                self.relay,
                smart_wallet_program_id,
                visibility_attempts=chunk_visibility_attempts,
                visibility_interval_seconds=chunk_visibility_interval_seconds,
                sleep=sleep,
            )
        # one action per wallet at a time; a second one is refused, not queued
        self._lock = asyncio.Lock()

    @property
    def wallet(self) -> Pubkey:
        return self.signer.wallet_address

    @property
    def balance(self) -> Optional[Decimal]:
        """Last known balance, or None when unknown."""
        return self.balances.current(self.wallet, self.mint)

    @property
    def retry_attempt(self) -> int:
        return self.orchestrator.retry_attempt

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def _exclusive(self, action: str) -> AsyncIterator[None]:
        wallet = str(self.wallet)
        if self._lock.locked():
            _slog.warning("action_refused_busy", wallet=wallet, action=action)
            raise SubmissionInProgress(wallet)
        async with self._lock:
            bind_action_context(wallet=wallet, action=action, cluster=self.cluster)
            yield

    async def refresh_balance(self, force: bool = False) -> Optional[Decimal]:
        return await self.balances.refresh(self.wallet, self.mint, force=force)

    def validate_recipient(self, text: Optional[str]) -> Pubkey:
        return validation.validate_recipient(text)

    def validate_amount(self, text: Any) -> Decimal:
        return validation.validate_amount(text, self.balance)

    async def send_value(
        self,
        recipient: str,
        amount: Any,
        *,
        on_retry: Optional[RetryCallback] = None,
    ) -> TransferResult:
        """Validate, then transfer ``amount`` of the configured asset.

        Raises the structured error of the step that failed; nothing is
        submitted when a local check fails. An unknown cached balance is
        re-fetched and the send refused with ``BalanceUnknown``, so the
        caller decides again against the fresh figure.
        """
        recipient_key = self.validate_recipient(recipient)
        validation.to_raw_amount(validation.parse_amount(amount), self.decimals)

        async with self._exclusive("send_value"):
            if self.balance is None:
                await self.refresh_balance(force=True)
                raise BalanceUnknown(
                    "Balance was not loaded yet; it has been refreshed, send again"
                )
            value = self.validate_amount(amount)

            _slog.info(
                "transfer_started",
                recipient=str(recipient_key),
                amount=str(value),
                sponsored=self.sponsor is not None,
            )
            try:
                result = await self.orchestrator.transfer(
                    self.wallet,
                    recipient_key,
                    value,
                    self.mint,
                    on_retry=on_retry,
                )
            except Exception as exc:
                _slog.error(
                    "transfer_failed",
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                    attempts=self.retry_attempt + 1,
                )
                raise

            _slog.info(
                "transfer_confirmed",
                signature=result.signature,
                attempts=result.attempts,
                created_recipient_account=result.created_recipient_account,
            )
            return result

    async def send_memo(self, text: str) -> str:
        message = (text or "").strip()
        if not message:
            raise InvalidMemo("Memo text is required")

        async with self._exclusive("send_memo"):
            instruction = memo_instruction(message, self.wallet)
            signature = await self.orchestrator.submit(
                lambda: self.relay.send_and_confirm([instruction])
            )
            _slog.info("memo_confirmed", signature=signature, length=len(message))
            return signature

    async def sign_message(self, text: str) -> SignedMessage:
        """Ask the passkey to sign ``text``; nothing is submitted."""
        if not text or not text.strip():
            raise InvalidMessage("Message text is required")

        async with self._exclusive("sign_message"):
            async with self.relay.signer_session() as handle:
                approval = await self.signer.request_approval(
                    handle,
                    text.encode("utf-8"),
                    f"Sign message:\n{text}",
                )

        signed_payload = approval.signed_material.get("signedPayload")
        _slog.info("message_signed", length=len(text), has_signed_payload=signed_payload is not None)
        return SignedMessage(
            message=text,
            signature=approval.signature,
            signed_payload=signed_payload,
            signed_material=dict(approval.signed_material),
        )

    async def request_test_funds(self, lamports: Optional[int] = None) -> str:
        """Devnet faucet for the wallet's native balance."""
        if self.cluster == "mainnet":
            raise ConfigurationError("Test funds are only available on devnet")
        amount = lamports or self.airdrop_lamports
        if amount <= 0:
            raise InvalidAmount("Airdrop amount must be greater than 0")

        async with self._exclusive("request_test_funds"):
            signature = await self.ledger.request_airdrop(self.wallet, amount)
            await self.ledger.confirm_transaction(signature, self.commitment)
            _slog.info("airdrop_confirmed", signature=signature, lamports=amount)
            return signature

    async def execute_chunked(
        self,
        operations: Sequence[Instruction],
        additional_signers: Sequence[Keypair] = (),
    ) -> ChunkedCommitResult:
        if self.chunked is None:
            raise ConfigurationError("Chunked commits need smart_wallet_program_id to be configured")

        async with self._exclusive("execute_chunked"):
            result = await self.chunked.execute(operations, additional_signers)
            _slog.info(
                "chunk_executed",
                nonce=result.nonce,
                commit_signature=result.commit_signature,
                execute_signature=result.execute_signature,
                chunk_visible=result.chunk_visible,
            )
            await self.orchestrator.refresh_after_submit(self.wallet, self.mint)
            return result

    def explorer_url(self, signature: str) -> str:
        param = "mainnet-beta" if self.cluster == "mainnet" else "devnet"
        return f"{EXPLORER_BASE_URL}/tx/{signature}?cluster={param}"

    async def health_check(self) -> Dict[str, Any]:
        providers: Dict[str, Any] = {
            "ledger": self.ledger,
            "signer": self.signer,
        }
        if self.sponsor is not None:
            providers["sponsor"] = self.sponsor

        results = await asyncio.gather(
            *(provider.health_check() for provider in providers.values()),
            return_exceptions=True,
        )
        status: Dict[str, Any] = {}
        for name, result in zip(providers, results):
            if isinstance(result, Exception):
                status[name] = {"status": "error", "error": str(result)}
            else:
                status[name] = result
        return status


_transfer_service: Optional[TransferService] = None


def get_transfer_service() -> TransferService:
    """Build (once) the service for the configured wallet."""
    global _transfer_service
    if _transfer_service is None:
        from ..providers.paymaster import get_paymaster_provider
        from ..providers.portal import get_portal_signer
        from ..providers.solana import get_solana_provider

        if not settings.has_wallet:
            raise ConfigurationError("WALLET_ADDRESS is not configured")
        try:
            mint = Pubkey.from_string(settings.usdc_mint)
            program_id = (
                Pubkey.from_string(settings.smart_wallet_program_id)
                if settings.smart_wallet_program_id
                else None
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid address in settings: {exc}") from exc

        _transfer_service = TransferService(
            get_solana_provider(),
            get_portal_signer(),
            get_paymaster_provider() if settings.has_paymaster else None,
            mint=mint,
            decimals=settings.token_decimals,
            cluster=settings.cluster,
            commitment=settings.commitment,
            retry_config=RetryConfig(
                max_attempts=settings.retry_max_attempts,
                initial_delay_seconds=settings.retry_initial_delay_seconds,
                max_delay_seconds=settings.retry_max_delay_seconds,
            ),
            balance_cooldown_seconds=settings.balance_refresh_cooldown_seconds,
            max_transaction_size=settings.max_transaction_size,
            smart_wallet_program_id=program_id,
            chunk_visibility_attempts=settings.chunk_visibility_attempts,
            chunk_visibility_interval_seconds=settings.chunk_visibility_interval_seconds,
            airdrop_lamports=settings.airdrop_lamports,
        )
    return _transfer_service
