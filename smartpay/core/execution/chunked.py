"""
Chunked commit: two-phase execution for operations that need signers the
default single-phase signing path cannot attach.

Prepare -> CommitChunk -> AwaitVisibility -> ExecuteChunk, with the signer
session released on every exit path.

Phase 1 records the approved operation set on the ledger as a chunk record
keyed by the wallet's next sequence number. Phase 2 references that record,
carries the original operations with their full signer set, and consumes
it. If phase 2 never succeeds the record is orphaned; nothing here reclaims
it.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..recovery.errors import FetchError, PreflightFailed
from .models import Approval, ChunkedCommitResult, Transaction
from .relay import preview_operations
from .spl import SYSTEM_PROGRAM_ID

if TYPE_CHECKING:
    from .relay import TransactionRelay

logger = logging.getLogger(__name__)

WALLET_STATE_SEED = b"wallet_state"
CHUNK_SEED = b"chunk"
WALLET_STATE_NONCE_OFFSET = 8  # after the 8-byte account discriminator


def _discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


CREATE_CHUNK_DISCRIMINATOR = _discriminator("create_chunk")
EXECUTE_CHUNK_DISCRIMINATOR = _discriminator("execute_chunk")


class ChunkPhase(str, Enum):
    PREPARE = "prepare"
    COMMIT_CHUNK = "commit_chunk"
    AWAIT_VISIBILITY = "await_visibility"
    EXECUTE_CHUNK = "execute_chunk"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


def derive_wallet_state_address(wallet: Pubkey, program_id: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address([WALLET_STATE_SEED, bytes(wallet)], program_id)
    return address


def derive_chunk_address(wallet: Pubkey, nonce: int, program_id: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [CHUNK_SEED, bytes(wallet), struct.pack("<Q", nonce)],
        program_id,
    )
    return address


def decode_wallet_nonce(data: bytes) -> int:
    end = WALLET_STATE_NONCE_OFFSET + 8
    if len(data) < end:
        raise ValueError(f"Wallet state data too short: {len(data)} bytes")
    (nonce,) = struct.unpack_from("<Q", data, WALLET_STATE_NONCE_OFFSET)
    return nonce


def operations_digest(operations: Sequence[Instruction]) -> bytes:
    digest = hashlib.sha256()
    for op in operations:
        digest.update(bytes(op.program_id))
        digest.update(struct.pack("<H", len(op.accounts)))
        for meta in op.accounts:
            digest.update(bytes(meta.pubkey))
            digest.update(bytes([int(meta.is_signer), int(meta.is_writable)]))
        data = bytes(op.data)
        digest.update(struct.pack("<I", len(data)))
        digest.update(data)
    return digest.digest()


def build_authorization_payload(
    operations: Sequence[Instruction],
    signers: Sequence[Pubkey],
    payer: Pubkey,
    timestamp: int,
    nonce: int,
) -> bytes:
    """Bind operations, signer set, payer and time to one sequence number."""
    digest = hashlib.sha256()
    digest.update(operations_digest(operations))
    digest.update(struct.pack("<B", len(signers)))
    for signer in signers:
        digest.update(bytes(signer))
    digest.update(bytes(payer))
    digest.update(struct.pack("<qQ", timestamp, nonce))
    return digest.digest()


def create_chunk_instruction(
    program_id: Pubkey,
    payer: Pubkey,
    wallet: Pubkey,
    wallet_state: Pubkey,
    chunk: Pubkey,
    nonce: int,
    timestamp: int,
    payload: bytes,
    approval: Approval,
) -> Instruction:
    material = json.dumps(approval.signed_material, sort_keys=True, separators=(",", ":")).encode("utf-8")
    data = (
        CREATE_CHUNK_DISCRIMINATOR
        + struct.pack("<Qq", nonce, timestamp)
        + payload
        + struct.pack("<H", len(approval.signature))
        + approval.signature
        + struct.pack("<I", len(material))
        + material
    )
    return Instruction(
        program_id,
        data,
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(wallet, is_signer=False, is_writable=False),
            AccountMeta(wallet_state, is_signer=False, is_writable=True),
            AccountMeta(chunk, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


def execute_chunk_instruction(
    program_id: Pubkey,
    payer: Pubkey,
    wallet: Pubkey,
    wallet_state: Pubkey,
    chunk: Pubkey,
    nonce: int,
    operations: Sequence[Instruction],
) -> Instruction:
    """Embed the original operations after the fixed accounts.

    Each operation contributes its program id followed by its own metas.
    The wallet is signed for by the program, so it never appears as a
    transaction signer.
    """
    remaining: List[AccountMeta] = []
    data = bytearray(EXECUTE_CHUNK_DISCRIMINATOR)
    data += struct.pack("<QB", nonce, len(operations))
    for op in operations:
        remaining.append(AccountMeta(op.program_id, is_signer=False, is_writable=False))
        for meta in op.accounts:
            remaining.append(
                AccountMeta(
                    meta.pubkey,
                    is_signer=meta.is_signer and meta.pubkey != wallet,
                    is_writable=meta.is_writable,
                )
            )
        op_data = bytes(op.data)
        data += struct.pack("<BI", len(op.accounts), len(op_data))
        data += op_data

    return Instruction(
        program_id,
        bytes(data),
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(wallet, is_signer=False, is_writable=True),
            AccountMeta(wallet_state, is_signer=False, is_writable=True),
            AccountMeta(chunk, is_signer=False, is_writable=True),
            *remaining,
        ],
    )


@dataclass
class PreparedChunk:
    wallet: Pubkey
    payer: Pubkey
    wallet_state: Pubkey
    chunk_address: Pubkey
    nonce: int
    timestamp: int
    payload: bytes
    approval: Approval
    operations: List[Instruction] = field(default_factory=list)


class ChunkedCommitCoordinator:
    """
    Runs one chunked commit at a time.

    ``phase`` and ``phase_history`` expose where the state machine is and
    where it has been, for progress display and diagnostics.
    """

    def __init__(
        self,
        relay: "TransactionRelay",
        program_id: Pubkey,
        visibility_attempts: int = 3,
        visibility_interval_seconds: float = 1.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.relay = relay
        self.program_id = program_id
        self.visibility_attempts = max(1, visibility_attempts)
        self.visibility_interval_seconds = visibility_interval_seconds
        self._sleep = sleep
        self.phase: Optional[ChunkPhase] = None
        self.phase_history: List[ChunkPhase] = []

    def _enter(self, phase: ChunkPhase) -> None:
        self.phase = phase
        self.phase_history.append(phase)
        logger.debug(f"Chunked commit entering {phase.value}")

    async def execute(
        self,
        operations: Sequence[Instruction],
        additional_signers: Sequence[Keypair] = (),
    ) -> ChunkedCommitResult:
        if not operations:
            raise ValueError("Chunked commit needs at least one operation")
        self.phase_history = []
        operations = list(operations)
        self._check_signer_set(operations, additional_signers)

        try:
            async with self.relay.signer_session() as handle:
                try:
                    self._enter(ChunkPhase.PREPARE)
                    prepared = await self._prepare(handle, operations, additional_signers)

                    self._enter(ChunkPhase.COMMIT_CHUNK)
                    commit_signature = await self._commit_chunk(handle, prepared)

                    self._enter(ChunkPhase.AWAIT_VISIBILITY)
                    visible = await self._await_visibility(prepared.chunk_address)

                    self._enter(ChunkPhase.EXECUTE_CHUNK)
                    execute_signature = await self._execute_chunk(handle, prepared, additional_signers)
                finally:
                    self._enter(ChunkPhase.CLEANUP)
        except Exception:
            self._enter(ChunkPhase.FAILED)
            raise

        self._enter(ChunkPhase.DONE)
        return ChunkedCommitResult(
            nonce=prepared.nonce,
            chunk_address=prepared.chunk_address,
            commit_signature=commit_signature,
            execute_signature=execute_signature,
            chunk_visible=visible,
        )

    def _check_signer_set(self, operations: Sequence[Instruction], additional_signers: Sequence[Keypair]) -> None:
        available = {kp.pubkey() for kp in additional_signers}
        available.add(self.relay.signer.wallet_address)
        missing = {
            str(meta.pubkey)
            for op in operations
            for meta in op.accounts
            if meta.is_signer and meta.pubkey not in available
        }
        if missing:
            raise PreflightFailed("missing signer for chunked operation", ", ".join(sorted(missing)))

    async def _prepare(
        self,
        handle: str,
        operations: List[Instruction],
        additional_signers: Sequence[Keypair],
    ) -> PreparedChunk:
        ledger = self.relay.ledger
        wallet = self.relay.signer.wallet_address
        payer = await self.relay.fee_payer()
        timestamp = await ledger.get_block_time()

        wallet_state = derive_wallet_state_address(wallet, self.program_id)
        state = await ledger.get_account_info(wallet_state)
        if state is None:
            raise PreflightFailed("smart wallet state not found", f"Expected account {wallet_state}")
        try:
            nonce = decode_wallet_nonce(state.data)
        except ValueError as exc:
            raise FetchError(f"Unreadable wallet state {wallet_state}: {exc}") from exc

        signer_keys = [kp.pubkey() for kp in additional_signers]
        payload = build_authorization_payload(operations, signer_keys, payer, timestamp, nonce)
        preview = preview_operations(operations)
        if signer_keys:
            preview += "\nAdditional signers: " + ", ".join(str(key) for key in signer_keys)

        approval = await self.relay.signer.request_approval(handle, payload, preview)
        return PreparedChunk(
            wallet=wallet,
            payer=payer,
            wallet_state=wallet_state,
            chunk_address=derive_chunk_address(wallet, nonce, self.program_id),
            nonce=nonce,
            timestamp=timestamp,
            payload=payload,
            approval=approval,
            operations=operations,
        )

    async def _sign_submit_confirm(
        self,
        handle: str,
        transaction: Transaction,
        signatures: Dict[Pubkey, bytes],
        preview: str,
    ) -> str:
        wallet = self.relay.signer.wallet_address
        if wallet in transaction.required_signers and wallet not in signatures:
            # no sponsor: the wallet pays and must approve the message itself
            approval = await self.relay.signer.request_approval(handle, transaction.message_bytes, preview)
            signatures[wallet] = approval.signature
        signature = await self.relay.submit(transaction, signatures)
        await self.relay.confirm(signature)
        return signature

    async def _commit_chunk(self, handle: str, prepared: PreparedChunk) -> str:
        instruction = create_chunk_instruction(
            self.program_id,
            payer=prepared.payer,
            wallet=prepared.wallet,
            wallet_state=prepared.wallet_state,
            chunk=prepared.chunk_address,
            nonce=prepared.nonce,
            timestamp=prepared.timestamp,
            payload=prepared.payload,
            approval=prepared.approval,
        )
        transaction = await self.relay.build_transaction([instruction], fee_payer=prepared.payer)
        signature = await self._sign_submit_confirm(
            handle, transaction, {}, f"Record chunk #{prepared.nonce}"
        )
        logger.info(f"Committed chunk #{prepared.nonce} at {prepared.chunk_address} in {signature}")
        return signature

    async def _await_visibility(self, chunk_address: Pubkey) -> bool:
        """Best effort: a missing record makes execution fail cleanly anyway."""
        for attempt in range(1, self.visibility_attempts + 1):
            try:
                if await self.relay.ledger.get_account_info(chunk_address) is not None:
                    return True
            except Exception as exc:
                logger.warning(f"Chunk visibility read {attempt} for {chunk_address} failed: {exc}")
            if attempt < self.visibility_attempts:
                await self._sleep(self.visibility_interval_seconds)

        logger.warning(
            f"Chunk {chunk_address} not visible after {self.visibility_attempts} reads; executing anyway"
        )
        return False

    async def _execute_chunk(
        self,
        handle: str,
        prepared: PreparedChunk,
        additional_signers: Sequence[Keypair],
    ) -> str:
        instruction = execute_chunk_instruction(
            self.program_id,
            payer=prepared.payer,
            wallet=prepared.wallet,
            wallet_state=prepared.wallet_state,
            chunk=prepared.chunk_address,
            nonce=prepared.nonce,
            operations=prepared.operations,
        )
        transaction = await self.relay.build_transaction([instruction], fee_payer=prepared.payer)

        signatures: Dict[Pubkey, bytes] = {}
        message = transaction.message_bytes
        for keypair in additional_signers:
            signatures[keypair.pubkey()] = bytes(keypair.sign_message(message))

        signature = await self._sign_submit_confirm(
            handle, transaction, signatures, f"Execute chunk #{prepared.nonce}"
        )
        logger.info(f"Executed chunk #{prepared.nonce} in {signature}")
        return signature
