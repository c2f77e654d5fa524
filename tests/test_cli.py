import pytest

import cli
from conftest import units


@pytest.fixture(autouse=True)
def cli_service(monkeypatch, service):
    monkeypatch.setattr(cli, "get_transfer_service", lambda: service)
    monkeypatch.setattr(cli, "setup_logging", lambda log_level=None: None)
    return service


@pytest.mark.asyncio
async def test_balance(ledger, wallet, mint, capsys):
    ledger.set_token_balance(wallet, mint, units("12.5"))

    assert await cli.main(["balance", "--force"]) == 0

    out = capsys.readouterr().out
    assert "Balance: 12.50" in out
    assert str(wallet) in out


@pytest.mark.asyncio
async def test_send_prints_explorer_links(ledger, wallet, recipient, mint, capsys):
    ledger.set_token_balance(wallet, mint, units("5"))

    assert await cli.main(["send", str(recipient), "1"]) == 0

    out = capsys.readouterr().out
    assert "Created the recipient's token account first." in out
    assert "explorer.solana.com/tx/sig1" in out
    assert "explorer.solana.com/tx/sig2" in out


@pytest.mark.asyncio
async def test_errors_exit_nonzero(capsys):
    assert await cli.main(["send", "not-an-address", "1"]) == 1

    assert "Error" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_no_command_prints_help(capsys):
    assert await cli.main([]) == 0

    assert "usage" in capsys.readouterr().out.lower()


@pytest.mark.asyncio
async def test_sign_prints_signature_and_signed_payload(signer, capsys):
    assert await cli.main(["sign", "Hello from the CLI"]) == 0

    out = capsys.readouterr().out
    assert "signedPayload: c2lnbmVkLXBheWxvYWQ=" in out
    assert signer.approvals[0][1] == b"Hello from the CLI"
    assert signer.closed == signer.opened
