"""
Solana JSON-RPC ledger provider.

Reads account state, submits pre-signed transactions, and waits for
confirmations over plain JSON-RPC.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from solders.pubkey import Pubkey

from ..config import settings
from ..core.execution.models import (
    AccountInfo,
    Confirmation,
    LatestBlockhash,
    TransactionStatus,
)
from ..core.recovery.errors import ConfirmationTimeout, FetchError, SubmissionFailed
from .base import LedgerProvider

logger = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


@dataclass
class SolanaRpcConfig:
    """Configuration for Solana RPC connection."""
    rpc_url: str
    commitment: str = "confirmed"
    timeout_s: float = 30.0
    confirm_timeout_s: float = 60.0
    poll_interval_s: float = 1.0


class SolanaRpcError(Exception):
    """JSON-RPC level error, with any program logs the node attached."""

    def __init__(self, message: str, code: Optional[int] = None, logs: Optional[List[str]] = None):
        super().__init__(message)
        self.code = code
        self.logs = logs or []


class SolanaRpcProvider(LedgerProvider):
    """
    Ledger access for the transfer pipeline.

    Usage:
        ledger = SolanaRpcProvider(SolanaRpcConfig(rpc_url="https://api.devnet.solana.com"))

        info = await ledger.get_account_info(address)
        signature = await ledger.send_transaction(wire_bytes)
        await ledger.confirm_transaction(signature)
    """

    name = "solana-rpc"

    def __init__(
        self,
        config: Optional[SolanaRpcConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or SolanaRpcConfig(
            rpc_url=settings.rpc_url,
            commitment=settings.commitment,
            timeout_s=settings.request_timeout_seconds,
            confirm_timeout_s=settings.confirm_timeout_seconds,
            poll_interval_s=settings.confirm_poll_interval_seconds,
        )
        self.timeout_s = self._config.timeout_s
        self._client = client

    @property
    def commitment(self) -> str:
        return self._config.commitment

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_s)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def ready(self) -> bool:
        return bool(self._config.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "unavailable", "reason": "RPC URL not configured"}
        try:
            result = await self._rpc_call("getHealth", [])
            return {"status": "healthy" if result == "ok" else "degraded", "result": result}
        except (httpx.HTTPError, SolanaRpcError) as exc:
            return {"status": "error", "reason": str(exc)}

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        client = await self._get_client()
        response = await client.post(
            self._config.rpc_url,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        payload = response.json()

        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                data = error.get("data") or {}
                logs = data.get("logs") if isinstance(data, dict) else None
                raise SolanaRpcError(
                    error.get("message", str(error)),
                    code=error.get("code"),
                    logs=list(logs or []),
                )
            raise SolanaRpcError(str(error))
        return payload.get("result")

    async def _read(self, method: str, params: List[Any]) -> Any:
        """RPC call for read paths; transport and node errors become FetchError."""
        try:
            return await self._rpc_call(method, params)
        except (httpx.HTTPError, SolanaRpcError) as exc:
            raise FetchError(f"{method} failed: {exc}") from exc

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        result = await self._read(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None

        raw_data = value.get("data") or ["", "base64"]
        encoded = raw_data[0] if isinstance(raw_data, list) else raw_data
        try:
            data = base64.b64decode(encoded or "")
            owner = Pubkey.from_string(value["owner"])
        except (KeyError, ValueError) as exc:
            raise FetchError(f"Malformed account info for {address}: {exc}") from exc

        return AccountInfo(
            lamports=int(value.get("lamports") or 0),
            owner=owner,
            data=data,
            executable=bool(value.get("executable", False)),
        )

    async def get_token_account_balance(self, address: Pubkey) -> int:
        result = await self._read(
            "getTokenAccountBalance",
            [str(address), {"commitment": self.commitment}],
        )
        try:
            return int(result["value"]["amount"])
        except (KeyError, TypeError, ValueError) as exc:
            raise FetchError(f"Malformed token balance for {address}") from exc

    async def get_balance(self, address: Pubkey) -> int:
        result = await self._read("getBalance", [str(address), {"commitment": self.commitment}])
        return int((result or {}).get("value", 0))

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        result = await self._read("getMinimumBalanceForRentExemption", [size])
        return int(result)

    async def get_latest_blockhash(self) -> LatestBlockhash:
        result = await self._read("getLatestBlockhash", [{"commitment": self.commitment}])
        value = (result or {}).get("value") or {}
        blockhash = value.get("blockhash")
        if not blockhash:
            raise FetchError("getLatestBlockhash returned no blockhash")
        return LatestBlockhash(
            blockhash=blockhash,
            last_valid_block_height=value.get("lastValidBlockHeight"),
        )

    async def get_block_time(self) -> int:
        slot = await self._read("getSlot", [{"commitment": self.commitment}])
        block_time = await self._read("getBlockTime", [slot])
        if block_time is None:
            raise FetchError(f"No block time for slot {slot}")
        return int(block_time)

    # =========================================================================
    # Writes
    # =========================================================================

    async def send_transaction(self, wire: bytes) -> str:
        options = {
            "encoding": "base64",
            "skipPreflight": False,
            "preflightCommitment": self.commitment,
        }
        try:
            signature = await self._rpc_call(
                "sendTransaction",
                [base64.b64encode(wire).decode("ascii"), options],
            )
        except SolanaRpcError as exc:
            raise SubmissionFailed(f"sendTransaction rejected: {exc}", logs=exc.logs) from exc
        except httpx.HTTPError as exc:
            raise SubmissionFailed(f"sendTransaction failed: {exc}") from exc

        if not signature:
            raise SubmissionFailed("No signature returned from sendTransaction")
        return signature

    async def get_signature_status(self, signature: str) -> Confirmation:
        result = await self._read(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        statuses = (result or {}).get("value") or [None]
        status = statuses[0]
        if status is None:
            return Confirmation(signature=signature, status=TransactionStatus.PENDING)
        if status.get("err") is not None:
            return Confirmation(
                signature=signature,
                status=TransactionStatus.FAILED,
                slot=status.get("slot"),
                error=str(status.get("err")),
            )

        level = status.get("confirmationStatus") or "processed"
        mapped = {
            "finalized": TransactionStatus.FINALIZED,
            "confirmed": TransactionStatus.CONFIRMED,
        }.get(level, TransactionStatus.PENDING)
        return Confirmation(
            signature=signature,
            status=mapped,
            slot=status.get("slot"),
            commitment=level,
        )

    async def confirm_transaction(self, signature: str, commitment: Optional[str] = None) -> Confirmation:
        """Poll signature status with backoff until it reaches ``commitment``."""
        target = _COMMITMENT_RANK.get(commitment or self.commitment, 1)
        start = time.monotonic()
        interval = self._config.poll_interval_s

        while (time.monotonic() - start) < self._config.confirm_timeout_s:
            try:
                confirmation = await self.get_signature_status(signature)
            except FetchError as exc:
                logger.warning(f"Status poll for {signature} failed: {exc}")
            else:
                if confirmation.status == TransactionStatus.FAILED:
                    raise SubmissionFailed(
                        f"Transaction {signature} failed: {confirmation.error}",
                        signature=signature,
                    )
                if _COMMITMENT_RANK.get(confirmation.commitment or "processed", 0) >= target:
                    return confirmation

            await asyncio.sleep(interval)
            interval = min(interval * 1.5, 5.0)

        raise ConfirmationTimeout(signature, self._config.confirm_timeout_s)

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        try:
            return await self._rpc_call("requestAirdrop", [str(address), lamports])
        except (httpx.HTTPError, SolanaRpcError) as exc:
            raise SubmissionFailed(f"requestAirdrop failed: {exc}") from exc


_solana_provider: Optional[SolanaRpcProvider] = None


def get_solana_provider() -> SolanaRpcProvider:
    global _solana_provider
    if _solana_provider is None:
        _solana_provider = SolanaRpcProvider()
    return _solana_provider
