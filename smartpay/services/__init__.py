"""Service layer helpers"""

from .transfer import EXPLORER_BASE_URL, TransferService, get_transfer_service

__all__ = [
    "EXPLORER_BASE_URL",
    "TransferService",
    "get_transfer_service",
]
