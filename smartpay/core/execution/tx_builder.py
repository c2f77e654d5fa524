"""
Instruction builder for token transfers.

Front-loads every on-ledger precondition so a doomed transfer fails here
with a specific reason instead of an opaque ledger rejection.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, List

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..recovery.errors import FetchError, InsufficientBalance, PreflightFailed
from .spl import (
    TOKEN_ACCOUNT_SIZE,
    TOKEN_PROGRAM_ID,
    create_associated_token_account_instruction,
    get_associated_token_address,
    transfer_instruction,
)
from .validation import format_raw_amount, to_raw_amount

if TYPE_CHECKING:
    from ...providers.base import LedgerProvider

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

SENDER_HAS_NO_ACCOUNT = "sender has no funds in this asset"
NOT_OWNED_BY_TOKEN_PROGRAM = "not owned by the asset program"
INSUFFICIENT_DEPOSIT = "insufficient deposit for account creation"


class InstructionBuilder:
    """
    Builds the ordered operation list for a token transfer.

    The result is either ``[transfer]`` or ``[create_recipient_account,
    transfer]``; the sender's own token account is never created here.
    """

    def __init__(self, ledger: "LedgerProvider", decimals: int = 6):
        self._ledger = ledger
        self._decimals = decimals

    async def build(
        self,
        sender: Pubkey,
        recipient: Pubkey,
        amount: Decimal,
        mint: Pubkey,
    ) -> List[Instruction]:
        raw_amount = to_raw_amount(amount, self._decimals)

        sender_ata = get_associated_token_address(mint, sender)
        recipient_ata = get_associated_token_address(mint, recipient)

        sender_info = await self._ledger.get_account_info(sender_ata)
        if sender_info is None:
            raise PreflightFailed(
                SENDER_HAS_NO_ACCOUNT,
                f"Token account {sender_ata} does not exist yet. Receive some of this "
                "asset first; the first incoming transfer creates it.",
            )
        if sender_info.owner != TOKEN_PROGRAM_ID:
            raise PreflightFailed(
                NOT_OWNED_BY_TOKEN_PROGRAM,
                f"Token account: {sender_ata}\n"
                f"Owner program: {sender_info.owner}\n"
                "The mint or cluster configuration is probably mismatched.",
            )

        operations: List[Instruction] = []

        recipient_info = await self._ledger.get_account_info(recipient_ata)
        if recipient_info is None:
            await self._ensure_rent_deposit(sender)
            operations.append(
                create_associated_token_account_instruction(
                    payer=sender,
                    ata=recipient_ata,
                    owner=recipient,
                    mint=mint,
                )
            )

        try:
            raw_held = await self._ledger.get_token_account_balance(sender_ata)
        except FetchError:
            raise
        except Exception as exc:
            raise FetchError(f"Could not read token balance of {sender_ata}: {exc}") from exc

        if raw_held < raw_amount:
            have = format_raw_amount(raw_held, self._decimals)
            raise InsufficientBalance(
                f"Insufficient balance: you have {have}, need {amount}",
                required=str(amount),
                available=have,
            )

        operations.append(
            transfer_instruction(
                source=sender_ata,
                destination=recipient_ata,
                owner=sender,
                amount=raw_amount,
            )
        )
        logger.debug(
            f"Built {len(operations)} operation(s) for {raw_amount} raw units "
            f"{sender} -> {recipient}"
        )
        return operations

    async def _ensure_rent_deposit(self, sender: Pubkey) -> None:
        """Creating an account costs a rent deposit; the fee sponsor never pays it."""
        sender_lamports, rent_lamports = await asyncio.gather(
            self._ledger.get_balance(sender),
            self._ledger.get_minimum_balance_for_rent_exemption(TOKEN_ACCOUNT_SIZE),
        )
        if sender_lamports < rent_lamports:
            need = Decimal(rent_lamports) / Decimal(LAMPORTS_PER_SOL)
            raise PreflightFailed(
                INSUFFICIENT_DEPOSIT,
                f"The recipient has no token account yet and creating one needs ~{need:.4f} SOL "
                "of rent from this wallet. Ask the recipient to receive this asset once, "
                "or add a little SOL (fees are still sponsored).",
            )
