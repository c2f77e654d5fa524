from fastapi import APIRouter, Depends
from typing import Any, Dict, Optional

from ..core.recovery.errors import ConfigurationError
from ..services.transfer import TransferService, get_transfer_service

router = APIRouter()


def optional_transfer_service() -> Optional[TransferService]:
    try:
        return get_transfer_service()
    except ConfigurationError:
        return None


@router.get("/healthz")
async def health_check(
    service: Optional[TransferService] = Depends(optional_transfer_service),
) -> Dict[str, Any]:
    """Health check endpoint that verifies provider status"""

    if service is None:
        from ..providers.solana import get_solana_provider

        provider_status = {
            "ledger": await get_solana_provider().health_check(),
            "signer": {"status": "unconfigured"},
        }
    else:
        provider_status = await service.health_check()

    # Determine overall health
    all_healthy = all(
        status.get("status") == "healthy"
        for status in provider_status.values()
    )

    return {
        "status": "healthy" if all_healthy else "degraded",
        "providers": provider_status,
        "wallet": str(service.wallet) if service is not None else None,
        "busy": service.busy if service is not None else False,
    }
