"""
CLI entry point for the CastPay relay.
"""

import asyncio
from typing import Optional

import typer
import structlog
from eth_account import Account

from .config import get_settings
from .errors import RelayError
from .evm import ChainGateway
from .signature import build_transfer_message, sign_transfer_intent
from .units import format_units, to_base_units

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="castpay-relay",
    help="CastPay gasless transfer relay",
    add_completion=False,
)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind host (defaults to HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (defaults to PORT)"),
) -> None:
    """
    Start the relay API server.
    """
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "castpay_relay.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.debug,
    )


@app.command("paymaster-status")
def paymaster_status() -> None:
    """
    Show the paymaster contract state.
    """
    settings = get_settings()
    gateway = ChainGateway(settings)

    try:
        snapshot = asyncio.run(gateway.get_paymaster_snapshot())
    except RelayError as e:
        typer.echo(f"✗ {e.message}")
        raise typer.Exit(1)

    decimals = settings.token_decimals
    typer.echo(f"Paymaster: {snapshot.paymaster_address}")
    typer.echo(f"  Balance: {format_units(snapshot.contract_balance, decimals)}")
    typer.echo(f"  Total deposited: {format_units(snapshot.total_deposited, decimals)}")
    typer.echo(f"  Paused: {snapshot.is_paused}")
    typer.echo(f"  Sponsorship enabled: {snapshot.sponsorship_enabled}")
    typer.echo(f"  Users: {snapshot.user_count}")


@app.command()
def sign(
    recipient: str = typer.Argument(..., help="Recipient EVM address"),
    amount: str = typer.Argument(..., help="Token amount as a decimal string"),
    nonce: int = typer.Option(0, "--nonce", "-n", help="Sender's next relay nonce"),
    private_key: str = typer.Option(
        ...,
        "--private-key",
        envvar="SENDER_PRIVATE_KEY",
        help="Sender private key (or SENDER_PRIVATE_KEY)",
    ),
    decimals: int = typer.Option(6, "--decimals", help="Token decimals"),
) -> None:
    """
    Sign a transfer intent for local testing and print the request body.
    """
    try:
        amount_base_units = to_base_units(amount, decimals)
    except ValueError as e:
        typer.echo(f"✗ {e}")
        raise typer.Exit(1)

    sender = Account.from_key(private_key).address
    signature = sign_transfer_intent(private_key, sender, recipient, amount_base_units, nonce)

    typer.echo(f"Message: {build_transfer_message(sender, recipient, amount_base_units, nonce)}")
    typer.echo(f"  sender: {sender}")
    typer.echo(f"  recipient: {recipient}")
    typer.echo(f"  amount: {amount}")
    typer.echo(f"  nonce: {nonce}")
    typer.echo(f"  signature: {signature}")


@app.command()
def version() -> None:
    """Show the relay version."""
    from castpay_relay import __version__
    typer.echo(f"castpay-relay v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
