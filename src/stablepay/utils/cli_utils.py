from decimal import Decimal

from rich.console import Console
from rich.table import Table


def get_rich_console() -> Console: return Console(stderr=True)


def networks_table(infos: dict[str, dict], title: str) -> Table:
    """One row per network/token pair, in the order given."""
    table = Table(title=title)
    table.add_column("Network")
    table.add_column("Chain ID", justify="right")
    table.add_column("Confirmations", justify="right")
    table.add_column("Token")
    table.add_column("Contract")
    for key, info in infos.items():
        for token_key, token in info["tokens"].items():
            table.add_row(
                f"{key} ({info['name']})",
                str(info["chainId"]),
                str(info["minConfirmations"]),
                token["symbol"],
                token["address"],
            )
    return table


def format_amount(value: str) -> str:
    """Trims trailing zeros for display, '0' for empty balances."""
    amount = Decimal(value or "0").normalize()
    return format(amount, "f") if amount else "0"
