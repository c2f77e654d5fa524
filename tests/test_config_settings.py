from smartpay.config import DEVNET_USDC_MINT, Settings, infer_cluster_from_rpc_url


def test_defaults(monkeypatch):
    """Defaults target devnet USDC with the standard retry policy."""

    for name in ("RPC_URL", "SOLANA_RPC_URL", "LAZORKIT_RPC_URL", "SOLANA_CLUSTER", "USDC_MINT"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.cluster == "devnet"
    assert settings.usdc_mint == DEVNET_USDC_MINT
    assert settings.retry_max_attempts == 3
    assert settings.balance_refresh_cooldown_seconds == 3.0
    assert settings.chunk_visibility_attempts == 3
    assert settings.chunk_visibility_interval_seconds == 1.5


def test_rpc_url_alias_and_cluster_inference(monkeypatch):
    """LAZORKIT_RPC_URL is accepted and a mainnet URL implies mainnet."""

    monkeypatch.delenv("RPC_URL", raising=False)
    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
    monkeypatch.delenv("SOLANA_CLUSTER", raising=False)
    monkeypatch.setenv("LAZORKIT_RPC_URL", "https://api.mainnet-beta.solana.com/")

    settings = Settings(_env_file=None)

    assert settings.rpc_url == "https://api.mainnet-beta.solana.com"
    assert settings.cluster == "mainnet"
    assert settings.explorer_cluster_param == "mainnet-beta"


def test_explicit_cluster_wins(monkeypatch):
    monkeypatch.setenv("RPC_URL", "https://my-mainnet-node.example")
    monkeypatch.setenv("SOLANA_CLUSTER", "devnet")

    assert Settings(_env_file=None).cluster == "devnet"


def test_paymaster_toggle(monkeypatch):
    monkeypatch.setenv("ENABLE_PAYMASTER", "false")

    assert Settings(_env_file=None).has_paymaster is False


def test_infer_cluster():
    assert infer_cluster_from_rpc_url("https://api.devnet.solana.com") == "devnet"
    assert infer_cluster_from_rpc_url("https://mainnet.helius-rpc.com/?api-key=x") == "mainnet"
    assert infer_cluster_from_rpc_url("") == "devnet"
