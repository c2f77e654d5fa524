"""
Transaction Execution Layer

Provides the pieces that move value from the smart wallet:
- BalanceSynchronizer: throttled, single-flight balance reads
- InstructionBuilder: on-ledger preconditions and the transfer operation list
- TransactionRelay: single-phase build -> approve -> sponsor -> confirm
- SubmissionOrchestrator: bounded retry and split account creation
- ChunkedCommitCoordinator: two-phase commit for multi-signer operations

Usage:
    from smartpay.core.execution import (
        BalanceSynchronizer,
        InstructionBuilder,
        TransactionRelay,
        SubmissionOrchestrator,
    )

    relay = TransactionRelay(ledger, signer, sponsor)
    orchestrator = SubmissionOrchestrator(relay, InstructionBuilder(ledger), balances)
    result = await orchestrator.transfer(wallet, recipient, Decimal("2.5"), mint)
"""

from .models import (
    MAX_TRANSACTION_SIZE,
    AccountInfo,
    Approval,
    ChunkedCommitResult,
    Confirmation,
    LatestBlockhash,
    SignedMessage,
    Transaction,
    TransactionStatus,
    TransferResult,
)

from .balance import BalanceState, BalanceSynchronizer

from .validation import (
    format_raw_amount,
    parse_amount,
    to_raw_amount,
    validate_amount,
    validate_recipient,
)

from .tx_builder import InstructionBuilder

from .relay import TransactionRelay, preview_operations

from .orchestrator import SubmissionOrchestrator

from .chunked import ChunkedCommitCoordinator, ChunkPhase

__all__ = [
    # Models
    "MAX_TRANSACTION_SIZE",
    "AccountInfo",
    "Approval",
    "ChunkedCommitResult",
    "Confirmation",
    "LatestBlockhash",
    "SignedMessage",
    "Transaction",
    "TransactionStatus",
    "TransferResult",
    # Balance
    "BalanceState",
    "BalanceSynchronizer",
    # Validation
    "format_raw_amount",
    "parse_amount",
    "to_raw_amount",
    "validate_amount",
    "validate_recipient",
    # Building and submission
    "InstructionBuilder",
    "TransactionRelay",
    "preview_operations",
    "SubmissionOrchestrator",
    "ChunkedCommitCoordinator",
    "ChunkPhase",
]
