"""
Tests for the paymaster fee sponsor and the passkey portal signer.
"""

import base64
import json

import httpx
import pytest
from solders.pubkey import Pubkey

from smartpay.core.execution.relay import TransactionRelay
from smartpay.core.recovery.errors import (
    AuthenticatorError,
    FetchError,
    SmartPayError,
    SubmissionFailed,
    UserRejected,
)
from smartpay.providers.paymaster import PaymasterConfig, PaymasterProvider
from smartpay.providers.portal import PortalConfig, PortalSigner

PAYER = Pubkey.new_unique()
WALLET = Pubkey.new_unique()


def paymaster(handler, api_key="key-123"):
    requests = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(json.loads(request.content))

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return PaymasterProvider(PaymasterConfig(rpc_url="https://paymaster.test", api_key=api_key), client=client), requests


def portal(handler):
    requests = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    signer = PortalSigner(PortalConfig(base_url="https://portal.test", wallet_address=str(WALLET)), client=client)
    return signer, requests


# =============================================================================
# Paymaster
# =============================================================================

class TestPaymaster:
    @pytest.mark.asyncio
    async def test_payer_is_cached(self):
        provider, requests = paymaster(
            lambda body: httpx.Response(200, json={"result": {"signer_address": str(PAYER)}})
        )

        assert await provider.get_payer() == PAYER
        assert await provider.get_payer() == PAYER
        assert len(requests) == 1
        assert requests[0].headers["x-api-key"] == "key-123"

    @pytest.mark.asyncio
    async def test_sign_and_send_returns_signature(self):
        provider, requests = paymaster(lambda body: httpx.Response(200, json={"result": {"signature": "5relayed"}}))

        signature = await provider.sign_and_send_transaction(b"\x01\x02\x03")

        assert signature == "5relayed"
        body = json.loads(requests[0].content)
        assert body["method"] == "signAndSendTransaction"
        assert body["params"] == [{"transaction": base64.b64encode(b"\x01\x02\x03").decode()}]

    @pytest.mark.asyncio
    async def test_rejection_keeps_logs(self):
        provider, _ = paymaster(
            lambda body: httpx.Response(200, json={
                "error": {"code": -32000, "message": "simulation failed", "data": {"logs": ["Program failed"]}},
            })
        )

        with pytest.raises(SubmissionFailed) as exc_info:
            await provider.sign_and_send_transaction(b"\x00")

        assert exc_info.value.logs == ["Program failed"]

    @pytest.mark.asyncio
    async def test_payer_rpc_error_is_fetch_error(self, ledger, signer):
        provider, _ = paymaster(
            lambda body: httpx.Response(200, json={
                "error": {"code": -32000, "message": "down", "data": {"logs": ["paymaster offline"]}},
            })
        )
        relay = TransactionRelay(ledger, signer, provider)

        with pytest.raises(FetchError, match="down") as exc_info:
            await relay.fee_payer()

        assert isinstance(exc_info.value, SmartPayError)
        assert exc_info.value.logs == ["paymaster offline"]

    @pytest.mark.asyncio
    async def test_payer_transport_failure_is_fetch_error(self):
        provider, _ = paymaster(lambda body: httpx.Response(503))

        with pytest.raises(FetchError, match="Paymaster request failed"):
            await provider.get_payer()

    @pytest.mark.asyncio
    async def test_payer_malformed_address(self):
        provider, _ = paymaster(lambda body: httpx.Response(200, json={"result": {"signer_address": "nope"}}))

        with pytest.raises(FetchError, match="invalid payer"):
            await provider.get_payer()

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        provider, _ = paymaster(lambda body: httpx.Response(502))

        with pytest.raises(SubmissionFailed, match="Paymaster request failed"):
            await provider.sign_and_send_transaction(b"\x00")


# =============================================================================
# Portal
# =============================================================================

class TestPortalSigner:
    @pytest.mark.asyncio
    async def test_session_and_approval(self):
        signature = b"\x05" * 64

        def handler(request):
            if request.method == "POST" and request.url.path == "/api/sessions":
                return httpx.Response(200, json={"sessionId": "abc"})
            if request.url.path == "/api/sessions/abc/approve":
                return httpx.Response(200, json={
                    "signature": base64.b64encode(signature).decode(),
                    "authenticatorData": "AAAA",
                })
            return httpx.Response(204)

        signer, requests = portal(handler)

        handle = await signer.open_session()
        approval = await signer.request_approval(handle, b"payload", "Send 1 USDC")
        await signer.close_session(handle)

        assert handle == "abc"
        assert approval.signature == signature
        assert approval.signed_material == {"authenticatorData": "AAAA"}
        approve_body = json.loads(requests[1].content)
        assert approve_body == {"payload": base64.b64encode(b"payload").decode(), "preview": "Send 1 USDC"}
        assert requests[2].method == "DELETE"

    @pytest.mark.asyncio
    async def test_user_cancel_maps_to_rejection(self):
        signer, _ = portal(lambda request: httpx.Response(400, json={"code": "user_cancelled", "message": "Cancelled"}))

        with pytest.raises(UserRejected, match="Cancelled"):
            await signer.request_approval("abc", b"x", "preview")

    @pytest.mark.asyncio
    async def test_other_errors_are_authenticator_errors(self):
        signer, _ = portal(lambda request: httpx.Response(500, json={"code": "INTERNAL", "message": "boom"}))

        with pytest.raises(AuthenticatorError, match="boom"):
            await signer.request_approval("abc", b"x", "preview")

    @pytest.mark.asyncio
    async def test_unreachable_portal(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        signer, _ = portal(handler)

        with pytest.raises(AuthenticatorError, match="unreachable"):
            await signer.open_session()

    def test_wallet_address(self):
        signer, _ = portal(lambda request: httpx.Response(204))

        assert signer.wallet_address == WALLET
