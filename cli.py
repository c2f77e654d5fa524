#!/usr/bin/env python3
"""Simple CLI for driving the smart wallet locally"""

import argparse
import asyncio
import sys
from typing import Optional

from smartpay.config import settings
from smartpay.core.recovery.errors import SmartPayError, describe_error
from smartpay.logging_config import setup_logging
from smartpay.services.transfer import TransferService, get_transfer_service


def print_retry(attempt: int, error: BaseException) -> None:
    print(f"⚠️  Attempt {attempt} failed: {error}. Retrying...")


async def cli_balance(service: TransferService, force: bool = False):
    """Print the wallet's token balance"""
    balance = await service.refresh_balance(force=force)
    shown = f"{balance:.2f}" if balance is not None else "unknown"
    print(f"Wallet:  {service.wallet}")
    print(f"Cluster: {service.cluster}")
    print(f"Balance: {shown}")


async def cli_send(service: TransferService, recipient: str, amount: str):
    """Send value and print the confirmed signatures"""
    print(f"💸 Sending {amount} to {recipient}...")
    await service.refresh_balance()
    result = await service.send_value(recipient, amount, on_retry=print_retry)

    if result.created_recipient_account:
        print("Created the recipient's token account first.")
    for signature in result.signatures:
        print(f"✅ {signature}")
        print(f"   {service.explorer_url(signature)}")
    print(f"Attempts: {result.attempts}")


async def cli_memo(service: TransferService, text: str):
    """Write a memo from the wallet"""
    signature = await service.send_memo(text)
    print(f"✅ {signature}")
    print(f"   {service.explorer_url(signature)}")


async def cli_sign(service: TransferService, message: str):
    """Sign a message with the passkey"""
    signed = await service.sign_message(message)
    payload = signed.to_dict()
    print(f"🔏 Signed by {service.wallet}")
    print(f"signature:     {payload['signature']}")
    print(f"signedPayload: {payload['signedPayload'] or '(none returned)'}")


async def cli_airdrop(service: TransferService, lamports: Optional[int] = None):
    """Request devnet test funds"""
    signature = await service.request_test_funds(lamports)
    print(f"🚰 Airdrop confirmed: {signature}")
    print(f"   {service.explorer_url(signature)}")


async def cli_health(service: TransferService):
    """Print provider health"""
    for name, status in (await service.health_check()).items():
        marker = "✅" if status.get("status") == "healthy" else "⚠️ "
        reason = status.get("reason")
        print(f"{marker} {name}: {status.get('status')}" + (f" ({reason})" if reason else ""))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SmartPay CLI")
    parser.add_argument("--log-level", default=None, help=f"Log level (default: {settings.log_level})")
    subparsers = parser.add_subparsers(dest="command")

    balance_parser = subparsers.add_parser("balance", help="Show the wallet balance")
    balance_parser.add_argument("--force", action="store_true", help="Bypass the refresh cooldown")

    send_parser = subparsers.add_parser("send", help="Send value to a recipient")
    send_parser.add_argument("recipient", help="Recipient wallet address")
    send_parser.add_argument("amount", help="Amount in display units, e.g. 2.5")

    memo_parser = subparsers.add_parser("memo", help="Write a memo from the wallet")
    memo_parser.add_argument("text", help="Memo text")

    sign_parser = subparsers.add_parser("sign", help="Sign a message with the passkey")
    sign_parser.add_argument("message", help="Message text")

    airdrop_parser = subparsers.add_parser("airdrop", help="Request devnet test funds")
    airdrop_parser.add_argument("--lamports", type=int, default=None, help="Lamports to request")

    subparsers.add_parser("health", help="Check provider health")

    return parser


async def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.log_level)

    try:
        service = get_transfer_service()
        if args.command == "balance":
            await cli_balance(service, args.force)
        elif args.command == "send":
            await cli_send(service, args.recipient, args.amount)
        elif args.command == "memo":
            await cli_memo(service, args.text)
        elif args.command == "sign":
            await cli_sign(service, args.message)
        elif args.command == "airdrop":
            await cli_airdrop(service, args.lamports)
        elif args.command == "health":
            await cli_health(service)
    except SmartPayError as e:
        print(f"❌ Error: {describe_error(e)}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
