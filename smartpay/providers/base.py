from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from solders.pubkey import Pubkey

from ..core.execution.models import AccountInfo, Approval, Confirmation, LatestBlockhash


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class LedgerProvider(Provider):
    """Read/submit/confirm access to the ledger."""

    @abstractmethod
    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        """Account state, or None when the account does not exist"""
        pass

    @abstractmethod
    async def get_token_account_balance(self, address: Pubkey) -> int:
        """Raw token amount held by a token account"""
        pass

    @abstractmethod
    async def get_balance(self, address: Pubkey) -> int:
        """Native balance in lamports"""
        pass

    @abstractmethod
    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        """Deposit required to keep an account of ``size`` bytes alive"""
        pass

    @abstractmethod
    async def get_latest_blockhash(self) -> LatestBlockhash:
        pass

    @abstractmethod
    async def get_block_time(self) -> int:
        """Unix timestamp of the most recent block"""
        pass

    @abstractmethod
    async def send_transaction(self, wire: bytes) -> str:
        """Submit serialized transaction bytes; returns the signature"""
        pass

    @abstractmethod
    async def confirm_transaction(self, signature: str, commitment: Optional[str] = None) -> Confirmation:
        """Wait until the signature reaches ``commitment``.

        Raises SubmissionFailed if the transaction failed on-ledger and
        ConfirmationTimeout if it never landed.
        """
        pass

    @abstractmethod
    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        """Test-network faucet"""
        pass


class SignerProvider(Provider):
    """External authenticator that approves payloads for a smart wallet."""

    @property
    @abstractmethod
    def wallet_address(self) -> Pubkey:
        pass

    @abstractmethod
    async def open_session(self) -> str:
        """Open a dialog/session with the authenticator; returns a handle"""
        pass

    @abstractmethod
    async def close_session(self, handle: str) -> None:
        pass

    @abstractmethod
    async def request_approval(self, handle: str, payload: bytes, preview: str) -> Approval:
        """Ask the user to approve ``payload``.

        Raises UserRejected or AuthenticatorError.
        """
        pass


class FeeSponsorProvider(Provider):
    """Paymaster that pays fees (never storage deposits) and relays."""

    @abstractmethod
    async def get_payer(self) -> Pubkey:
        pass

    @abstractmethod
    async def sign_and_send_transaction(self, wire: bytes) -> str:
        """Co-sign the fee payer slot and broadcast; returns the signature"""
        pass
