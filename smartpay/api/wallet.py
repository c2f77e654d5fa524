"""
Wallet API

Endpoints for the configured smart wallet:
- Balance (throttled; ``force`` bypasses the cooldown)
- Value transfers with account creation and retry
- Memo transactions
- Message signing with the passkey
- Devnet test funds
"""

from __future__ import annotations

import base64
import logging
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..services.transfer import TransferService, get_transfer_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])


# ============================================================================
# Request/Response Models
# ============================================================================


class BalanceResponse(BaseModel):
    """Balance of the configured asset."""
    wallet_address: str
    mint: str
    balance: Optional[str] = Field(default=None, description="Display units; null when unknown")
    cluster: str


class TransferRequest(BaseModel):
    """Request to send the configured asset."""
    recipient: str = Field(..., description="Recipient wallet address (base58)")
    amount: Union[str, int, float] = Field(..., description="Amount in display units, e.g. \"2.5\"")


class TransferResponse(BaseModel):
    """Confirmed transfer."""
    signature: str
    signatures: List[str] = []
    created_recipient_account: bool = False
    attempts: int = 1
    amount: Optional[str] = None
    recipient: Optional[str] = None
    explorer_url: str


class MemoRequest(BaseModel):
    """Request to write a memo from the wallet."""
    text: str = Field(..., description="Memo text")


class SignatureResponse(BaseModel):
    """A single confirmed transaction."""
    signature: str
    explorer_url: str


class SignMessageRequest(BaseModel):
    """Request for a passkey signature over a text message."""
    message: str = Field(..., description="Text to sign")


class SignMessageResponse(BaseModel):
    """Signature plus the payload the authenticator actually signed."""
    message: str
    signature: str = Field(..., description="Base64 signature")
    signed_payload: Optional[str] = Field(
        default=None,
        description="Authenticator payload; needed together with the signature for verification",
    )


class AirdropRequest(BaseModel):
    """Request for devnet test funds."""
    lamports: Optional[int] = Field(default=None, description="Defaults to the configured airdrop amount")


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/balance",
    response_model=BalanceResponse,
    summary="Get wallet balance",
)
async def get_balance(
    force: bool = Query(default=False, description="Bypass the refresh cooldown"),
    service: TransferService = Depends(get_transfer_service),
) -> BalanceResponse:
    balance = await service.refresh_balance(force=force)
    return BalanceResponse(
        wallet_address=str(service.wallet),
        mint=str(service.mint),
        balance=str(balance) if balance is not None else None,
        cluster=service.cluster,
    )


@router.post(
    "/transfers",
    response_model=TransferResponse,
    summary="Send value",
    description="Validates, creates the recipient's token account when needed, and retries transient failures.",
)
async def create_transfer(
    request: TransferRequest,
    service: TransferService = Depends(get_transfer_service),
) -> TransferResponse:
    result = await service.send_value(request.recipient, request.amount)
    return TransferResponse(
        signature=result.signature,
        signatures=result.signatures,
        created_recipient_account=result.created_recipient_account,
        attempts=result.attempts,
        amount=str(result.amount) if result.amount is not None else None,
        recipient=result.recipient,
        explorer_url=service.explorer_url(result.signature),
    )


@router.post("/memo", response_model=SignatureResponse, summary="Send a memo")
async def send_memo(
    request: MemoRequest,
    service: TransferService = Depends(get_transfer_service),
) -> SignatureResponse:
    signature = await service.send_memo(request.text)
    return SignatureResponse(signature=signature, explorer_url=service.explorer_url(signature))


@router.post("/sign-message", response_model=SignMessageResponse, summary="Sign a message")
async def sign_message(
    request: SignMessageRequest,
    service: TransferService = Depends(get_transfer_service),
) -> SignMessageResponse:
    signed = await service.sign_message(request.message)
    return SignMessageResponse(
        message=signed.message,
        signature=base64.b64encode(signed.signature).decode("ascii"),
        signed_payload=signed.signed_payload,
    )


@router.post("/airdrop", response_model=SignatureResponse, summary="Request devnet test funds")
async def request_airdrop(
    request: AirdropRequest,
    service: TransferService = Depends(get_transfer_service),
) -> SignatureResponse:
    signature = await service.request_test_funds(request.lamports)
    return SignatureResponse(signature=signature, explorer_url=service.explorer_url(signature))
