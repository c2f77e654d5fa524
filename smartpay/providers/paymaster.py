"""
Paymaster (fee sponsor) provider.

The paymaster covers transaction fees and relays transactions on the
wallet's behalf. It never covers storage deposits (rent).
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from solders.pubkey import Pubkey

from ..config import settings
from ..core.recovery.errors import ConfigurationError, FetchError, SubmissionFailed
from .base import FeeSponsorProvider


class PaymasterError(Exception):
    """Paymaster provider error."""

    def __init__(self, message: Any, logs: Optional[list[str]] = None):
        super().__init__(message)
        self.logs = list(logs or [])


@dataclass
class PaymasterConfig:
    rpc_url: str
    api_key: str = ""


class PaymasterProvider(FeeSponsorProvider):
    name = "paymaster"
    timeout_s = 20

    def __init__(
        self,
        config: Optional[PaymasterConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or PaymasterConfig(
            rpc_url=settings.paymaster_url,
            api_key=settings.paymaster_api_key,
        )
        self._client = client
        self._payer: Optional[Pubkey] = None

    async def ready(self) -> bool:
        return bool(self._config.rpc_url) and settings.enable_paymaster

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Paymaster not configured"}

        try:
            payer = await self.get_payer()
            return {"status": "healthy", "payer": str(payer)}
        except FetchError as exc:
            return {"status": "error", "reason": str(exc)}

    async def get_payer(self) -> Pubkey:
        if self._payer is not None:
            return self._payer

        try:
            result = await self._rpc_call("getPayerSigner", [])
        except PaymasterError as exc:
            raise FetchError(f"Paymaster could not provide a fee payer: {exc}", logs=exc.logs) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Paymaster request failed: {exc}") from exc

        address = None
        if isinstance(result, dict):
            address = result.get("signer_address") or result.get("signerAddress")
        elif isinstance(result, str):
            address = result
        if not address:
            raise FetchError("Invalid paymaster response for getPayerSigner")
        try:
            self._payer = Pubkey.from_string(address)
        except ValueError as exc:
            raise FetchError(f"Paymaster returned an invalid payer: {address}") from exc
        return self._payer

    async def sign_and_send_transaction(self, wire: bytes) -> str:
        if not await self.ready():
            raise ConfigurationError("Paymaster provider is not configured")

        encoded = base64.b64encode(wire).decode("ascii")
        try:
            result = await self._rpc_call("signAndSendTransaction", [{"transaction": encoded}])
        except PaymasterError as exc:
            raise SubmissionFailed(f"Paymaster rejected the transaction: {exc}", logs=exc.logs) from exc
        except httpx.HTTPError as exc:
            raise SubmissionFailed(f"Paymaster request failed: {exc}") from exc

        if isinstance(result, dict):
            signature = result.get("signature")
            if signature:
                return signature
        if isinstance(result, str) and result:
            return result
        raise SubmissionFailed("Invalid paymaster response for signAndSendTransaction")

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)

        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["x-api-key"] = self._config.api_key

        response = await self._client.post(
            self._config.rpc_url,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
            headers=headers,
        )
        response.raise_for_status()
        payload = response.json()
        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                data = error.get("data")
                logs = data.get("logs") if isinstance(data, dict) else None
                raise PaymasterError(error.get("message", str(error)), logs=logs)
            raise PaymasterError(error)
        return payload.get("result")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


_paymaster_provider: Optional[PaymasterProvider] = None


def get_paymaster_provider() -> PaymasterProvider:
    global _paymaster_provider
    if _paymaster_provider is None:
        _paymaster_provider = PaymasterProvider()
    return _paymaster_provider
