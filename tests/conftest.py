"""
In-memory ledger, signer and fee sponsor used across the test suite.

The fake ledger decodes submitted wire bytes and applies token account
creation and token transfers, so end-to-end scenarios can check balances
after confirmation.
"""

import struct
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey

from smartpay.core.execution.models import (
    AccountInfo,
    Approval,
    Confirmation,
    LatestBlockhash,
    TransactionStatus,
)
from smartpay.core.execution.spl import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_ACCOUNT_SIZE,
    TOKEN_AMOUNT_OFFSET,
    TOKEN_PROGRAM_ID,
    TOKEN_TRANSFER_TAG,
    get_associated_token_address,
)
from smartpay.core.recovery.errors import FetchError
from smartpay.core.recovery.retry import RetryConfig
from smartpay.providers.base import FeeSponsorProvider, LedgerProvider, SignerProvider
from smartpay.services.transfer import TransferService

SOL = 1_000_000_000
RENT_EXEMPT_MINIMUM = 2_039_280


def token_account_data(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    data = bytes(mint) + bytes(owner) + struct.pack("<Q", amount)
    return data + bytes(TOKEN_ACCOUNT_SIZE - len(data))


class FakeLedger(LedgerProvider):
    name = "fake-ledger"

    def __init__(self) -> None:
        self.accounts: Dict[Pubkey, AccountInfo] = {}
        self.lamports: Dict[Pubkey, int] = {}
        self.rent_exempt_minimum = RENT_EXEMPT_MINIMUM
        self.block_time = 1_700_000_000
        self.blockhash = str(Hash.default())
        self.submitted: List[Message] = []
        self.confirmed: List[str] = []
        self.reads: List[Pubkey] = []
        self.read_errors: Dict[Pubkey, List[Exception]] = {}
        self.send_errors: List[Exception] = []
        self.confirm_errors: List[Exception] = []
        self.airdrops: List[Tuple[Pubkey, int]] = []
        self._signatures = 0

    # -- test helpers -------------------------------------------------------

    def set_token_balance(
        self,
        owner: Pubkey,
        mint: Pubkey,
        amount: int,
        program_owner: Pubkey = TOKEN_PROGRAM_ID,
    ) -> Pubkey:
        address = get_associated_token_address(mint, owner)
        self.accounts[address] = AccountInfo(
            lamports=RENT_EXEMPT_MINIMUM,
            owner=program_owner,
            data=token_account_data(mint, owner, amount),
        )
        return address

    def token_balance(self, owner: Pubkey, mint: Pubkey) -> Optional[int]:
        info = self.accounts.get(get_associated_token_address(mint, owner))
        if info is None:
            return None
        (amount,) = struct.unpack_from("<Q", info.data, TOKEN_AMOUNT_OFFSET)
        return amount

    def apply_wire(self, wire: bytes) -> str:
        count = wire[0]
        message = Message.from_bytes(wire[1 + 64 * count:])
        self.submitted.append(message)
        keys = list(message.account_keys)
        for ix in message.instructions:
            program = keys[ix.program_id_index]
            accounts = [keys[index] for index in ix.accounts]
            data = bytes(ix.data)
            if program == ASSOCIATED_TOKEN_PROGRAM_ID:
                _payer, ata, owner, mint = accounts[:4]
                self.accounts[ata] = AccountInfo(
                    lamports=RENT_EXEMPT_MINIMUM,
                    owner=TOKEN_PROGRAM_ID,
                    data=token_account_data(mint, owner, 0),
                )
            elif program == TOKEN_PROGRAM_ID and data[0] == TOKEN_TRANSFER_TAG:
                (amount,) = struct.unpack_from("<Q", data, 1)
                self._move(accounts[0], accounts[1], amount)
        self._signatures += 1
        return f"sig{self._signatures}"

    def _move(self, source: Pubkey, destination: Pubkey, amount: int) -> None:
        for address, delta in ((source, -amount), (destination, amount)):
            info = self.accounts[address]
            data = bytearray(info.data)
            (held,) = struct.unpack_from("<Q", data, TOKEN_AMOUNT_OFFSET)
            struct.pack_into("<Q", data, TOKEN_AMOUNT_OFFSET, held + delta)
            self.accounts[address] = AccountInfo(info.lamports, info.owner, bytes(data))

    # -- LedgerProvider -----------------------------------------------------

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy"}

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        self.reads.append(address)
        errors = self.read_errors.get(address)
        if errors:
            raise errors.pop(0)
        return self.accounts.get(address)

    async def get_token_account_balance(self, address: Pubkey) -> int:
        info = self.accounts.get(address)
        if info is None:
            raise FetchError(f"could not find account {address}")
        (amount,) = struct.unpack_from("<Q", info.data, TOKEN_AMOUNT_OFFSET)
        return amount

    async def get_balance(self, address: Pubkey) -> int:
        return self.lamports.get(address, 0)

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return self.rent_exempt_minimum

    async def get_latest_blockhash(self) -> LatestBlockhash:
        return LatestBlockhash(self.blockhash, 1_000)

    async def get_block_time(self) -> int:
        return self.block_time

    async def send_transaction(self, wire: bytes) -> str:
        if self.send_errors:
            raise self.send_errors.pop(0)
        return self.apply_wire(wire)

    async def confirm_transaction(self, signature: str, commitment: Optional[str] = None) -> Confirmation:
        if self.confirm_errors:
            raise self.confirm_errors.pop(0)
        self.confirmed.append(signature)
        return Confirmation(signature, TransactionStatus.CONFIRMED, slot=1, commitment=commitment)

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        self.airdrops.append((address, lamports))
        self.lamports[address] = self.lamports.get(address, 0) + lamports
        return f"airdrop{len(self.airdrops)}"


class FakeSigner(SignerProvider):
    name = "fake-signer"

    def __init__(self, wallet: Pubkey) -> None:
        self._wallet = wallet
        self.opened: List[str] = []
        self.closed: List[str] = []
        self.approvals: List[Tuple[str, bytes, str]] = []
        self.approval_errors: List[Exception] = []

    @property
    def wallet_address(self) -> Pubkey:
        return self._wallet

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy"}

    async def open_session(self) -> str:
        handle = f"session-{len(self.opened) + 1}"
        self.opened.append(handle)
        return handle

    async def close_session(self, handle: str) -> None:
        self.closed.append(handle)

    async def request_approval(self, handle: str, payload: bytes, preview: str) -> Approval:
        self.approvals.append((handle, payload, preview))
        if self.approval_errors:
            raise self.approval_errors.pop(0)
        return Approval(
            signature=b"\x01" * 64,
            signed_material={"clientDataJSON": "e30=", "signedPayload": "c2lnbmVkLXBheWxvYWQ="},
        )


class FakeSponsor(FeeSponsorProvider):
    name = "fake-sponsor"

    def __init__(self, ledger: FakeLedger, payer: Optional[Pubkey] = None) -> None:
        self.ledger = ledger
        self.payer = payer or Pubkey.new_unique()
        self.relayed: List[bytes] = []
        self.errors: List[Exception] = []

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "payer": str(self.payer)}

    async def get_payer(self) -> Pubkey:
        return self.payer

    async def sign_and_send_transaction(self, wire: bytes) -> str:
        self.relayed.append(wire)
        if self.errors:
            raise self.errors.pop(0)
        return self.ledger.apply_wire(wire)


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def wallet() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def mint() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def recipient() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def ledger(wallet: Pubkey) -> FakeLedger:
    ledger = FakeLedger()
    ledger.lamports[wallet] = SOL
    return ledger


@pytest.fixture
def signer(wallet: Pubkey) -> FakeSigner:
    return FakeSigner(wallet)


@pytest.fixture
def sponsor(ledger: FakeLedger) -> FakeSponsor:
    return FakeSponsor(ledger)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def program_id() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def service(ledger, signer, sponsor, mint, program_id, sleeper) -> TransferService:
    return TransferService(
        ledger,
        signer,
        sponsor,
        mint=mint,
        decimals=6,
        retry_config=RetryConfig(max_attempts=3, initial_delay_seconds=1.0, max_delay_seconds=10.0),
        smart_wallet_program_id=program_id,
        sleep=sleeper,
    )


def units(amount: str, decimals: int = 6) -> int:
    return int(Decimal(amount).scaleb(decimals))
