"""
Passkey portal signer.

The portal hosts the passkey (P-256) authenticator for a smart wallet.
Every approval happens inside a dialog session: open it, ask for one or
more approvals, close it.

Portal API:
- POST   /api/sessions                     -> {"sessionId": ...}
- POST   /api/sessions/{id}/approve        -> {"signature": b64, ...material}
- DELETE /api/sessions/{id}
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from solders.pubkey import Pubkey

from ..config import settings
from ..core.execution.models import Approval
from ..core.recovery.errors import AuthenticatorError, ConfigurationError, UserRejected
from .base import SignerProvider

logger = logging.getLogger(__name__)

_REJECTION_CODES = {"USER_REJECTED", "USER_CANCELLED", "NOT_ALLOWED"}


@dataclass
class PortalConfig:
    base_url: str
    wallet_address: str
    origin: str = "smartpay"


class PortalSigner(SignerProvider):
    """
    Signer backed by the passkey portal.

    Usage:
        signer = get_portal_signer()
        handle = await signer.open_session()
        try:
            approval = await signer.request_approval(handle, payload, "Send 3 USDC to ...")
        finally:
            await signer.close_session(handle)
    """

    name = "portal"
    timeout_s = 120  # the user has to touch the authenticator

    def __init__(
        self,
        config: Optional[PortalConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or PortalConfig(
            base_url=settings.portal_url,
            wallet_address=settings.wallet_address,
        )
        self._client = client
        self._wallet: Optional[Pubkey] = None

    @property
    def wallet_address(self) -> Pubkey:
        if self._wallet is None:
            if not self._config.wallet_address:
                raise ConfigurationError("No smart wallet address configured for the portal signer")
            try:
                self._wallet = Pubkey.from_string(self._config.wallet_address)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid smart wallet address: {self._config.wallet_address}") from exc
        return self._wallet

    async def ready(self) -> bool:
        return bool(self._config.base_url and self._config.wallet_address)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Portal or wallet not configured"}
        try:
            await self._request("GET", "/api/health")
            return {"status": "healthy", "wallet": self._config.wallet_address}
        except AuthenticatorError as exc:
            return {"status": "error", "reason": str(exc)}

    async def open_session(self) -> str:
        result = await self._request(
            "POST",
            "/api/sessions",
            json={"wallet": self._config.wallet_address, "origin": self._config.origin},
        )
        session_id = result.get("sessionId") if isinstance(result, dict) else None
        if not session_id:
            raise AuthenticatorError("Portal did not return a session id")
        logger.debug(f"Opened portal session {session_id}")
        return session_id

    async def close_session(self, handle: str) -> None:
        await self._request("DELETE", f"/api/sessions/{handle}")
        logger.debug(f"Closed portal session {handle}")

    async def request_approval(self, handle: str, payload: bytes, preview: str) -> Approval:
        result = await self._request(
            "POST",
            f"/api/sessions/{handle}/approve",
            json={
                "payload": base64.b64encode(payload).decode("ascii"),
                "preview": preview,
            },
        )
        if not isinstance(result, dict) or not result.get("signature"):
            raise AuthenticatorError("Portal returned no signature")

        try:
            signature = base64.b64decode(result["signature"], validate=True)
        except (ValueError, binascii.Error) as exc:
            raise AuthenticatorError("Portal returned a malformed signature") from exc

        material = {key: value for key, value in result.items() if key != "signature"}
        return Approval(signature=signature, signed_material=material)

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not self._config.base_url:
            raise ConfigurationError("Portal URL is not configured")

        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)

        url = f"{self._config.base_url.rstrip('/')}{path}"
        try:
            response = await self._client.request(method, url, json=json)
        except httpx.HTTPError as exc:
            raise AuthenticatorError(f"Portal unreachable: {exc}") from exc

        if response.status_code >= 400:
            self._raise_for_portal_error(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _raise_for_portal_error(response: httpx.Response) -> None:
        code = ""
        message = f"Portal error {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = str(body.get("code") or "").upper()
            message = body.get("message") or message

        if code in _REJECTION_CODES:
            raise UserRejected(message)
        raise AuthenticatorError(message)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


_portal_signer: Optional[PortalSigner] = None


def get_portal_signer() -> PortalSigner:
    global _portal_signer
    if _portal_signer is None:
        _portal_signer = PortalSigner()
    return _portal_signer
