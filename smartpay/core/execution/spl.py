"""
SPL token program helpers: program IDs, associated account derivation,
and the handful of instructions the transfer flow needs.
"""

import struct

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

# Token account layout: mint(32) + owner(32) + amount(u64 LE) + ...
TOKEN_ACCOUNT_SIZE = 165
TOKEN_AMOUNT_OFFSET = 64

TOKEN_TRANSFER_TAG = 3


def get_associated_token_address(mint: Pubkey, owner: Pubkey) -> Pubkey:
    """Derive the associated token account for owner+mint.

    Smart wallets are PDAs, so the owner may be off-curve; derivation does
    not care either way.
    """
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def create_associated_token_account_instruction(
    payer: Pubkey,
    ata: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
) -> Instruction:
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        b"",
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(ata, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


def transfer_instruction(
    source: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount: int,
) -> Instruction:
    if amount <= 0:
        raise ValueError("amount must be positive")
    return Instruction(
        TOKEN_PROGRAM_ID,
        struct.pack("<BQ", TOKEN_TRANSFER_TAG, amount),
        [
            AccountMeta(source, is_signer=False, is_writable=True),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
        ],
    )


def memo_instruction(text: str, account: Pubkey) -> Instruction:
    # The wallet signing path rejects instructions without accounts, so the
    # wallet rides along as a readonly, non-signer key.
    return Instruction(
        MEMO_PROGRAM_ID,
        text.encode("utf-8"),
        [AccountMeta(account, is_signer=False, is_writable=False)],
    )


def is_create_associated_account(instruction: Instruction) -> bool:
    return instruction.program_id == ASSOCIATED_TOKEN_PROGRAM_ID


def decode_token_amount(data: bytes) -> int:
    """Read the raw amount out of token account data."""
    end = TOKEN_AMOUNT_OFFSET + 8
    if len(data) < end:
        raise ValueError(f"Token account data too short: {len(data)} bytes")
    (amount,) = struct.unpack_from("<Q", data, TOKEN_AMOUNT_OFFSET)
    return amount
