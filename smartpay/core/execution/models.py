"""
Transaction execution models and types.
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey

from ..recovery.errors import TransactionTooLarge

SIGNATURE_LENGTH = 64
MAX_TRANSACTION_SIZE = 1232


class TransactionStatus(str, Enum):
    """Status of a submitted transaction."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class AccountInfo:
    """Decoded account state as reported by the ledger."""
    lamports: int
    owner: Pubkey
    data: bytes = b""
    executable: bool = False


@dataclass(frozen=True)
class LatestBlockhash:
    blockhash: str
    last_valid_block_height: Optional[int] = None


@dataclass(frozen=True)
class Approval:
    """Signer output: signature over the payload plus supporting material."""
    signature: bytes
    signed_material: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Confirmation:
    """Result of waiting on a signature."""
    signature: str
    status: TransactionStatus
    slot: Optional[int] = None
    error: Optional[str] = None
    commitment: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status in (TransactionStatus.CONFIRMED, TransactionStatus.FINALIZED)


def encode_length(value: int) -> bytes:
    """Compact-u16 length prefix used by the wire format."""
    out = bytearray()
    remaining = value
    while True:
        byte = remaining & 0x7F
        remaining >>= 7
        if remaining:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


class Transaction:
    """An ordered, non-empty, size-bounded batch of operations.

    Size is checked at construction so an oversized batch never reaches
    the signer.
    """

    def __init__(
        self,
        operations: Sequence[Instruction],
        recent_blockhash: str,
        fee_payer: Pubkey,
        max_size: int = MAX_TRANSACTION_SIZE,
    ):
        if not operations:
            raise ValueError("A transaction needs at least one operation")
        self.operations: Tuple[Instruction, ...] = tuple(operations)
        self.recent_blockhash = recent_blockhash
        self.fee_payer = fee_payer
        self._message = Message.new_with_blockhash(
            list(self.operations),
            fee_payer,
            Hash.from_string(recent_blockhash),
        )
        self._message_bytes = bytes(self._message)

        size = self.serialized_size
        if size > max_size:
            raise TransactionTooLarge(size, max_size)

    @property
    def message(self) -> Message:
        return self._message

    @property
    def message_bytes(self) -> bytes:
        return self._message_bytes

    @property
    def required_signers(self) -> List[Pubkey]:
        count = self._message.header.num_required_signatures
        return list(self._message.account_keys[:count])

    @property
    def serialized_size(self) -> int:
        count = len(self.required_signers)
        return len(encode_length(count)) + count * SIGNATURE_LENGTH + len(self._message_bytes)

    def to_wire(self, signatures: Mapping[Pubkey, bytes]) -> bytes:
        """Serialize with one slot per required signer.

        Slots without a signature are zero-filled; the fee sponsor fills its
        own slot when it relays.
        """
        signers = self.required_signers
        out = bytearray(encode_length(len(signers)))
        for key in signers:
            sig = signatures.get(key, b"")
            if sig and len(sig) != SIGNATURE_LENGTH:
                raise ValueError(f"Signature for {key} must be {SIGNATURE_LENGTH} bytes")
            out += sig or bytes(SIGNATURE_LENGTH)
        out += self._message_bytes
        return bytes(out)


@dataclass
class TransferResult:
    """Outcome of an orchestrated value transfer."""
    signature: str
    signatures: List[str] = field(default_factory=list)
    created_recipient_account: bool = False
    attempts: int = 1
    amount: Optional[Decimal] = None
    recipient: Optional[str] = None
    completed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "signatures": list(self.signatures),
            "createdRecipientAccount": self.created_recipient_account,
            "attempts": self.attempts,
            "amount": str(self.amount) if self.amount is not None else None,
            "recipient": self.recipient,
            "completedAt": self.completed_at.isoformat(),
        }


@dataclass
class ChunkedCommitResult:
    """Outcome of the two-phase chunked commit."""
    nonce: int
    chunk_address: Pubkey
    commit_signature: str
    execute_signature: str
    chunk_visible: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nonce": self.nonce,
            "chunkAddress": str(self.chunk_address),
            "commitSignature": self.commit_signature,
            "executeSignature": self.execute_signature,
            "chunkVisible": self.chunk_visible,
        }


@dataclass
class SignedMessage:
    """A passkey signature over an arbitrary text message.

    Verification needs both the signature and ``signed_payload``: the
    authenticator signs its own envelope around the message, not the raw
    bytes.
    """
    message: str
    signature: bytes
    signed_payload: Optional[str] = None
    signed_material: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "signature": base64.b64encode(self.signature).decode("ascii"),
            "signedPayload": self.signed_payload,
        }
