from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

# Circle devnet USDC
DEVNET_USDC_MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"

SupportedCluster = Literal["devnet", "mainnet"]


def infer_cluster_from_rpc_url(rpc_url: str) -> SupportedCluster:
    if "mainnet" in (rpc_url or "").lower():
        return "mainnet"
    return "devnet"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalise URLs so callers can join paths safely."""

        super().model_post_init(__context)
        for name in ("rpc_url", "portal_url", "paymaster_url"):
            value = getattr(self, name)
            if value:
                object.__setattr__(self, name, value.rstrip("/"))

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    request_timeout_seconds: float = Field(default=30.0, description="HTTP timeout for RPC, portal and paymaster calls")

    # Ledger
    rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        description="Solana JSON-RPC endpoint",
        validation_alias=AliasChoices("rpc_url", "solana_rpc_url", "LAZORKIT_RPC_URL"),
    )
    solana_cluster: Optional[SupportedCluster] = Field(
        default=None,
        description="Explicit cluster; inferred from rpc_url when unset",
    )
    commitment: str = Field(default="confirmed", description="Commitment used for reads and confirmations")
    confirm_timeout_seconds: float = Field(default=60.0, description="Max seconds to wait for a confirmation")
    confirm_poll_interval_seconds: float = Field(default=1.0, description="Initial signature status poll interval")
    max_transaction_size: int = Field(default=1232, description="Ledger hard ceiling for a serialized transaction")

    # Asset
    usdc_mint: str = Field(default=DEVNET_USDC_MINT, description="Mint of the transferred token")
    token_decimals: int = Field(default=6, ge=0, le=18, description="Decimals of the transferred token")

    # Passkey portal / smart wallet
    portal_url: str = Field(
        default="https://portal.lazor.sh",
        description="Passkey portal base URL",
        validation_alias=AliasChoices("portal_url", "LAZORKIT_PORTAL_URL"),
    )
    wallet_address: str = Field(default="", description="Smart wallet address the service acts for")
    smart_wallet_program_id: str = Field(
        default="",
        description="Smart wallet program used for the chunked commit path",
    )

    # Paymaster
    enable_paymaster: bool = Field(default=True, description="Route fees through the paymaster when configured")
    paymaster_url: str = Field(
        default="https://kora.devnet.lazorkit.com",
        description="Paymaster JSON-RPC URL",
        validation_alias=AliasChoices("paymaster_url", "LAZORKIT_PAYMASTER_URL"),
    )
    paymaster_api_key: str = Field(
        default="",
        description="Paymaster API key",
        validation_alias=AliasChoices("paymaster_api_key", "LAZORKIT_PAYMASTER_API_KEY"),
    )

    # Balance sync
    balance_refresh_cooldown_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Minimum spacing between unforced balance refreshes",
    )

    # Retry policy
    retry_max_attempts: int = Field(default=3, ge=1, description="Attempts per orchestrated submission")
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0, description="First backoff delay")
    retry_max_delay_seconds: float = Field(default=10.0, ge=0, description="Backoff delay ceiling")

    # Chunked commit
    chunk_visibility_attempts: int = Field(default=3, ge=1, description="Reads before giving up on chunk visibility")
    chunk_visibility_interval_seconds: float = Field(default=1.5, ge=0, description="Delay between chunk visibility reads")

    # Test funds
    airdrop_lamports: int = Field(default=1_000_000_000, gt=0, description="Lamports requested per devnet airdrop")

    @property
    def cluster(self) -> SupportedCluster:
        return self.solana_cluster or infer_cluster_from_rpc_url(self.rpc_url)

    @property
    def has_paymaster(self) -> bool:
        return self.enable_paymaster and bool(self.paymaster_url)

    @property
    def has_wallet(self) -> bool:
        return bool(self.wallet_address)

    @property
    def explorer_cluster_param(self) -> str:
        return "mainnet-beta" if self.cluster == "mainnet" else "devnet"


# Global settings instance
settings = Settings()
