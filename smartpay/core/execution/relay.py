"""
Default single-phase signing path.

Builds a size-checked transaction, gets the passkey approval over its
message, hands the wire bytes to the fee sponsor (or straight to the
ledger) and waits for confirmation.
"""

from __future__ import annotations

import logging
import struct
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Dict, Mapping, Optional, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from .models import MAX_TRANSACTION_SIZE, Transaction
from .spl import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    MEMO_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    TOKEN_TRANSFER_TAG,
)

if TYPE_CHECKING:
    from ...providers.base import FeeSponsorProvider, LedgerProvider, SignerProvider

logger = logging.getLogger(__name__)


def describe_operation(instruction: Instruction) -> str:
    program = instruction.program_id
    accounts = instruction.accounts
    if program == ASSOCIATED_TOKEN_PROGRAM_ID and len(accounts) >= 3:
        return f"Create token account {accounts[1].pubkey} for {accounts[2].pubkey}"
    if program == TOKEN_PROGRAM_ID and len(instruction.data) == 9 and instruction.data[0] == TOKEN_TRANSFER_TAG:
        (amount,) = struct.unpack_from("<Q", bytes(instruction.data), 1)
        return f"Transfer {amount} base units to token account {accounts[1].pubkey}"
    if program == MEMO_PROGRAM_ID:
        return f"Memo: {bytes(instruction.data).decode('utf-8', errors='replace')}"
    return f"Call program {program} with {len(accounts)} account(s)"


def preview_operations(operations: Sequence[Instruction]) -> str:
    """Human-readable summary shown by the authenticator."""
    return "\n".join(
        f"{index}. {describe_operation(op)}" for index, op in enumerate(operations, start=1)
    )


class TransactionRelay:
    """
    Sign-and-send for operations the smart wallet can authorize itself.

    Usage:
        relay = TransactionRelay(ledger, signer, sponsor)
        signature = await relay.send_and_confirm([memo_ix])
    """

    def __init__(
        self,
        ledger: "LedgerProvider",
        signer: "SignerProvider",
        sponsor: Optional["FeeSponsorProvider"] = None,
        commitment: str = "confirmed",
        max_transaction_size: int = MAX_TRANSACTION_SIZE,
    ):
        self.ledger = ledger
        self.signer = signer
        self.sponsor = sponsor
        self.commitment = commitment
        self.max_transaction_size = max_transaction_size

    async def fee_payer(self) -> Pubkey:
        if self.sponsor is not None:
            return await self.sponsor.get_payer()
        return self.signer.wallet_address

    async def build_transaction(
        self,
        operations: Sequence[Instruction],
        fee_payer: Optional[Pubkey] = None,
    ) -> Transaction:
        payer = fee_payer or await self.fee_payer()
        latest = await self.ledger.get_latest_blockhash()
        return Transaction(
            operations,
            recent_blockhash=latest.blockhash,
            fee_payer=payer,
            max_size=self.max_transaction_size,
        )

    @asynccontextmanager
    async def signer_session(self) -> AsyncIterator[str]:
        """Hold an authenticator session; always released on exit."""
        handle = await self.signer.open_session()
        try:
            yield handle
        finally:
            try:
                await self.signer.close_session(handle)
            except Exception as exc:
                # never mask the error that ended the session
                logger.warning(f"Failed to close signer session {handle}: {exc}")

    async def submit(self, transaction: Transaction, signatures: Mapping[Pubkey, bytes]) -> str:
        wire = transaction.to_wire(signatures)
        if self.sponsor is not None:
            return await self.sponsor.sign_and_send_transaction(wire)
        return await self.ledger.send_transaction(wire)

    async def confirm(self, signature: str) -> None:
        await self.ledger.confirm_transaction(signature, self.commitment)

    async def send_and_confirm(
        self,
        operations: Sequence[Instruction],
        preview: Optional[str] = None,
    ) -> str:
        transaction = await self.build_transaction(operations)
        wallet = self.signer.wallet_address

        async with self.signer_session() as handle:
            approval = await self.signer.request_approval(
                handle,
                transaction.message_bytes,
                preview or preview_operations(operations),
            )

        signatures: Dict[Pubkey, bytes] = {}
        if wallet in transaction.required_signers:
            signatures[wallet] = approval.signature

        signature = await self.submit(transaction, signatures)
        logger.info(f"Submitted transaction {signature} ({len(operations)} operation(s))")
        await self.confirm(signature)
        logger.info(f"Confirmed transaction {signature}")
        return signature
