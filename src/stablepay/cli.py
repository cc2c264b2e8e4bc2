import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

if sys.platform == "win32":
    # httpx over ProactorEventLoop misbehaves on Windows
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from stablepay import create_gateway
from stablepay.config import get_settings
from stablepay.exceptions import StablePayError
from stablepay.logging import configure
from stablepay.networks import NetworkRegistry
from stablepay.utils.cli_utils import format_amount, get_rich_console, networks_table
from stablepay.webhooks import SIGNATURE_HEADER, sign_payload

app = typer.Typer(help="CLI for the stablepay payment gateway.")
logger = logging.getLogger(__name__)
console = get_rich_console()


@app.command()
def networks(mainnet: bool = typer.Option(False, "--mainnet", help="Show mainnet instead of testnet networks.")):
    """Lists supported networks and their stablecoin contracts."""
    registry = NetworkRegistry(rpc_urls=get_settings().rpc_urls)
    testnet = not mainnet
    infos = {key: registry.config(key, testnet).info() for key in sorted(registry.supported_networks(testnet))}
    console.print(networks_table(infos, title="Testnet networks" if testnet else "Mainnet networks"))


@app.command()
def check():
    """Checks RPC connectivity of every configured network."""
    console.rule("[bold cyan]Connection Check[/bold cyan]")

    async def _check() -> bool:
        gateway = create_gateway()
        try:
            statuses = await gateway.check_connections()
        finally:
            await gateway.aclose()
        healthy = True
        for key, result in statuses.items():
            if result.startswith("ok"):
                console.print(f"[bold green]✔[/bold green] {key}: {result}")
            else:
                healthy = False
                console.print(f"[bold red]✖[/bold red] {key}: {result}")
        return healthy

    if not asyncio.run(_check()):
        raise typer.Exit(code=1)


@app.command()
def balance(network: Optional[str] = typer.Option(None, "--network", "-n", help="Single network key.")):
    """Shows native and stablecoin balances of the merchant wallet."""

    async def _balance() -> dict:
        gateway = create_gateway()
        try:
            if network:
                return {network: await gateway.get_balance(network)}
            return await gateway.get_all_balances()
        finally:
            await gateway.aclose()

    try:
        balances = asyncio.run(_balance())
    except StablePayError as e:
        console.print(f"[bold red]✖[/bold red] {e}")
        raise typer.Exit(code=1)

    for key, data in balances.items():
        native = data["native"]
        console.print(f"[bold]{key}[/bold] ({data['network']}): {format_amount(native['amount'])} {native['symbol']}")
        for token in data["tokens"].values():
            console.print(f"  {format_amount(token['amount'])} {token['symbol']}")


@app.command("sign-webhook")
def sign_webhook(
    body_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="File with the exact request body."),
    secret: Optional[str] = typer.Option(None, "--secret", help="Defaults to WEBHOOK_SECRET."),
):
    """Prints the signature header value for a webhook body."""
    secret = secret or get_settings().webhook_secret
    if not secret:
        console.print("[bold red]✖[/bold red] No secret given and WEBHOOK_SECRET is not set.")
        raise typer.Exit(code=1)
    signature = sign_payload(body_file.read_bytes(), secret)
    typer.echo(signature)
    console.print(f"[dim]{SIGNATURE_HEADER}: {signature}[/dim]")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address."),
    port: int = typer.Option(3000, help="Bind port."),
):
    """Runs the HTTP API."""
    import uvicorn

    configure()
    uvicorn.run("stablepay.server.main:create_app", factory=True, host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
