"""
Daily sales register (control de caja).

daily_sales holds one consolidated row per sale, from the store counter
(local) or from shipped orders (envios). Editing or deleting a row here only
touches the consolidated register, never the original sale.
"""

from datetime import date
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from supabase import Client

from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import RpcError, ValidationError
from fyl.models import DailySaleUpdate

console = Console()

SALE_TYPES = ("local", "envios")


def _amount(row: dict) -> float:
    try:
        return float(row.get("sale_amount") or 0)
    except (TypeError, ValueError):
        return 0.0


def filter_sales(sales: list[dict], sale_type: Optional[str] = None) -> list[dict]:
    """Sales of one type; None or "all" keeps every sale."""
    if not sale_type or sale_type == "all":
        return list(sales)
    return [sale for sale in sales if sale.get("sale_type") == sale_type]


def summarize_sales(sales: list[dict]) -> dict:
    """Count and total amount overall and per sale type."""
    summary = {
        "total_sales": len(sales),
        "total_amount": sum(_amount(sale) for sale in sales),
    }
    for sale_type in SALE_TYPES:
        rows = filter_sales(sales, sale_type)
        summary[sale_type] = {
            "sales": len(rows),
            "amount": sum(_amount(sale) for sale in rows),
        }
    return summary


class DailySalesService:
    """Reads and edits the daily sales register."""

    def __init__(self, client: Client):
        self.client = client

    def load_sales(self, sale_date: Union[date, str], sale_type: Optional[str] = None) -> list[dict]:
        """Sales of a day, latest first, optionally of one type."""
        day = sale_date.isoformat() if isinstance(sale_date, date) else sale_date
        result = (
            self.client.table("daily_sales")
            .select("*")
            .eq("sale_date", day)
            .order("sale_time", desc=True)
            .execute()
        )
        return filter_sales(result.data or [], sale_type)

    def summary(
        self,
        sale_date: Union[date, str],
        sales: Optional[list[dict]] = None,
    ) -> dict:
        """
        Totals for a day.

        Uses the summary procedure and falls back to adding up the rows when
        the procedure fails.
        """
        day = sale_date.isoformat() if isinstance(sale_date, date) else sale_date
        try:
            data = call_rpc(
                self.client,
                procedures.DAILY_SALES_SUMMARY,
                {"p_sale_date": day, "p_sale_type": None},
            )
        except RpcError as e:
            console.print(f"[yellow]Summary procedure failed, computing locally: {e}[/yellow]")
            data = None

        if data:
            return {
                "total_sales": data.get("total_sales") or 0,
                "total_amount": data.get("total_amount") or 0,
                "local": data.get("local") or {"sales": 0, "amount": 0},
                "envios": data.get("envios") or {"sales": 0, "amount": 0},
            }

        if sales is None:
            sales = self.load_sales(day)
        return summarize_sales(sales)

    def update_sale(self, sale_id: str, changes: dict) -> DailySaleUpdate:
        """
        Edit a register row.

        Raises:
            ValidationError: blank customer name or a negative quantity/amount
        """
        try:
            update = DailySaleUpdate(**changes)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid sale: {e.errors()[0]['msg']}") from e

        self.client.table("daily_sales").update(update.model_dump()).eq("id", sale_id).execute()
        console.print(f"[green]✓ Sale {sale_id} updated[/green]")
        return update

    def delete_sale(self, sale_id: str) -> None:
        self.client.table("daily_sales").delete().eq("id", sale_id).execute()
        console.print(f"[green]✓ Sale {sale_id} removed from the register[/green]")
