"""
Order reads and admin actions against Supabase.

State transitions that touch stock (item status, close, send, return) are
delegated to remote procedures, which keep the invariants server-side. The
direct table writes here are limited to cleanup of missing or cancelled
items and to fallbacks for procedures that may not be deployed yet.

Usage:
    from fyl.orders.repository import OrderRepository

    repo = OrderRepository(client)
    orders = repo.load_orders()
    repo.update_item_status(item_id, "picked", checked_by=admin_id)
"""

import time
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from supabase import Client

from config.settings import config
from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import NotFoundError, RpcMissingError, ValidationError
from fyl.models import PaymentMethod
from fyl.orders.status import (
    ITEM_CANCELLED,
    ITEM_MISSING,
    ITEM_PICKED,
    ITEM_RESERVED,
    ITEM_WAITING,
    ORDER_ACTIVE,
    ORDER_CLOSED,
    ORDER_PICKED,
    ORDER_RETURNED,
    ORDER_SENT,
    can_send_to_local,
)

console = Console()

ORDER_COLUMNS = """
    id,
    order_number,
    status,
    total_amount,
    created_at,
    updated_at,
    sent_at,
    customer_id,
    notes,
    order_items (
        id,
        product_name,
        color,
        size,
        quantity,
        price_snapshot,
        status,
        imagen,
        variant_id
    )
"""

CUSTOMER_COLUMNS = "id, customer_number, full_name, phone, city, province, dni, email"

WAREHOUSE_GENERAL = "general"
WAREHOUSE_PUBLIC_SALE = "venta-publico"

# Statuses a concurrent writer may have left behind after a return
_RESTORABLE_STATUSES = [ORDER_PICKED, ORDER_ACTIVE, ORDER_CLOSED, ORDER_SENT]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first(result) -> Optional[dict]:
    return result.data[0] if result.data else None


class OrderRepository:
    """Reads orders with their items and customers, and runs admin actions."""

    def __init__(
        self,
        client: Client,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            client: Supabase client
            sleep: Used between the two status checks after a return
        """
        self.client = client
        self._sleep = sleep
        self._warehouses: dict[str, str] = {}

    # =========================================================================
    # READS
    # =========================================================================

    def load_orders(self, statuses: Optional[list[str]] = None) -> list[dict]:
        """
        Load orders (newest first) with their items and customer.

        Customers are fetched in a second query and merged into each order
        under "customers" ({} when the customer row is missing).
        """
        query = self.client.table("orders").select(ORDER_COLUMNS)
        if statuses:
            query = query.in_("status", statuses)
        orders = query.order("created_at", desc=True).execute().data or []

        customer_ids = sorted({o["customer_id"] for o in orders if o.get("customer_id")})
        customers: dict = {}
        if customer_ids:
            result = (
                self.client.table("customers")
                .select(CUSTOMER_COLUMNS)
                .in_("id", customer_ids)
                .execute()
            )
            customers = {c["id"]: c for c in result.data or []}

            missing = [cid for cid in customer_ids if cid not in customers]
            if missing:
                console.print(
                    f"[yellow]Warning: {len(missing)} orders reference unknown customers[/yellow]"
                )

        return [
            {**order, "customers": customers.get(order.get("customer_id"), {})}
            for order in orders
        ]

    def get_order(self, order_id: str, columns: str = "id, status, total_amount") -> dict:
        row = _first(
            self.client.table("orders").select(columns).eq("id", order_id).limit(1).execute()
        )
        if row is None:
            raise NotFoundError(f"Order {order_id} not found")
        return row

    def get_item(self, item_id: str) -> dict:
        row = _first(
            self.client.table("order_items")
            .select("id, order_id, status, quantity, price_snapshot, variant_id")
            .eq("id", item_id)
            .limit(1)
            .execute()
        )
        if row is None:
            raise NotFoundError(f"Order item {item_id} not found")
        return row

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    def update_item_status(self, item_id: str, status: str, checked_by: str) -> bool:
        """
        Change an item's status.

        Returns:
            True when every item of the order is now picked
        """
        data = call_rpc(
            self.client,
            procedures.UPDATE_ORDER_ITEM_STATUS,
            {"p_item_id": item_id, "p_status": status, "p_checked_by": checked_by},
        )
        return bool(data and data.get("all_items_picked"))

    def close_order(self, order_id: str, payment_method: str) -> None:
        if not payment_method:
            raise ValidationError("A payment method is required to close an order")
        call_rpc(
            self.client,
            procedures.CLOSE_ORDER,
            {"p_order_id": order_id, "p_payment_method": payment_method},
        )

    def mark_as_sent(self, order_id: str) -> None:
        call_rpc(self.client, procedures.MARK_ORDER_AS_SENT, {"p_order_id": order_id})

    def mark_labels_printed(self, order_id: str) -> None:
        """Flag a closed order's shipping labels as printed."""
        try:
            call_rpc(self.client, procedures.MARK_LABELS_PRINTED, {"p_order_id": order_id})
        except RpcMissingError:
            console.print(
                f"[yellow]{procedures.MARK_LABELS_PRINTED} not deployed, updating directly[/yellow]"
            )
            self.client.table("orders").update({"labels_printed": True}).eq(
                "id", order_id
            ).execute()

    def update_labels_count(self, order_id: str, count: int) -> None:
        """Set how many packages (labels) a closed order ships in."""
        try:
            count = int(count)
        except (TypeError, ValueError) as e:
            raise ValidationError("Labels count must be a number") from e
        if count < 1:
            raise ValidationError("Labels count must be at least 1")
        try:
            call_rpc(
                self.client,
                procedures.UPDATE_ORDER_LABELS_COUNT,
                {"p_order_id": order_id, "p_labels_count": count},
            )
        except RpcMissingError:
            console.print(
                f"[yellow]{procedures.UPDATE_ORDER_LABELS_COUNT} not deployed, updating directly[/yellow]"
            )
            self.client.table("orders").update({"labels_count": count}).eq(
                "id", order_id
            ).execute()

    def finalize_order(self, order_id: str) -> None:
        """Move a closed order to sent. Labels must have been printed."""
        order = self.get_order(order_id, columns="id, status, labels_printed")
        if not order.get("labels_printed"):
            raise ValidationError("Labels must be printed before finalizing the order")
        self.mark_as_sent(order_id)

    def send_to_local(self, order: dict) -> Optional[str]:
        """
        Hand a fully picked order over to the store's public sales.

        Returns:
            Order number of the local order created by the procedure
        """
        if not can_send_to_local(order):
            raise ValidationError(
                "Only orders with every item picked and none waiting can be sent to the store"
            )
        data = call_rpc(
            self.client, procedures.SEND_ORDER_TO_LOCAL, {"p_order_id": order["id"]}
        )
        return (data or {}).get("order_number")

    def revert_to_picked(self, order_id: str) -> None:
        """Send a closed order back to picked. Returned orders cannot be reverted."""
        order = self.get_order(order_id, columns="id, status")
        if order.get("status") == ORDER_RETURNED:
            raise ValidationError(
                "Returned orders cannot be reverted; their stock is already back in general"
            )

        try:
            call_rpc(self.client, procedures.REVERT_ORDER_TO_PICKED, {"p_order_id": order_id})
        except RpcMissingError:
            console.print(
                f"[yellow]{procedures.REVERT_ORDER_TO_PICKED} not deployed, updating directly[/yellow]"
            )
            self.client.table("orders").update(
                {"status": ORDER_PICKED, "updated_at": _now_iso()}
            ).eq("id", order_id).execute()

    def mark_as_returned(self, order_id: str) -> str:
        """
        Mark a sent order as returned (devolución).

        The procedure puts the stock back in the general warehouse. The status
        is read back right away and again after a short delay; if something
        overwrote it in between, it is restored.

        Returns:
            The order status after the final check
        """
        order = self.get_order(order_id, columns="id, status")
        if order.get("status") == ORDER_RETURNED:
            raise ValidationError("Order is already marked as returned")

        call_rpc(self.client, procedures.MARK_ORDER_AS_RETURNED, {"p_order_id": order_id})

        status = self.get_order(order_id, columns="id, status").get("status")
        if status != ORDER_RETURNED:
            console.print(
                f"[yellow]Warning: order {order_id} is '{status}' after the return[/yellow]"
            )

        self._sleep(config.orders.return_recheck_delay)

        status = self.get_order(order_id, columns="id, status").get("status")
        if status == ORDER_RETURNED:
            return status

        console.print(
            f"[yellow]Order {order_id} changed to '{status}', restoring return status[/yellow]"
        )
        self.client.table("orders").update(
            {"status": ORDER_RETURNED, "updated_at": _now_iso()}
        ).eq("id", order_id).in_("status", _RESTORABLE_STATUSES).execute()
        return self.get_order(order_id, columns="id, status").get("status")

    # =========================================================================
    # ITEM CLEANUP
    # =========================================================================

    def _subtract_from_total(self, order_id: str, amount: float) -> None:
        if not order_id or amount <= 0:
            return
        try:
            order = self.get_order(order_id, columns="id, total_amount")
        except NotFoundError:
            return
        new_total = max(0.0, float(order.get("total_amount") or 0) - amount)
        self.client.table("orders").update(
            {"total_amount": new_total, "updated_at": _now_iso()}
        ).eq("id", order_id).execute()

    def _delete_item(self, item: dict) -> None:
        self.client.table("order_items").delete().eq("id", item["id"]).execute()
        amount = float(item.get("price_snapshot") or 0) * float(item.get("quantity") or 0)
        self._subtract_from_total(item.get("order_id"), amount)

    def remove_missing_item(self, item_id: str) -> str:
        """Delete an item marked missing and take it off the order total. Returns its order id."""
        item = self.get_item(item_id)
        if item.get("status") != ITEM_MISSING:
            raise ValidationError("Item is not marked as missing")
        self._delete_item(item)
        return item.get("order_id")

    def cleanup_cancelled_item(self, item_id: str) -> str:
        """Delete a cancelled item and take it off the order total. Returns its order id."""
        item = self.get_item(item_id)
        if item.get("status") != ITEM_CANCELLED:
            raise ValidationError("Item is not cancelled")
        self._delete_item(item)
        return item.get("order_id")

    def delete_item_immediate(self, item_id: str) -> None:
        """
        Delete an item in any status, giving its stock back first.

        A picked item returns its quantity to the variant's stock; a reserved
        or waiting item releases its reservation.
        """
        item = self.get_item(item_id)
        quantity = int(item.get("quantity") or 0)
        status = (item.get("status") or "").lower()
        variant_id = item.get("variant_id")

        if variant_id and quantity:
            variant = _first(
                self.client.table("product_variants")
                .select("stock_qty, reserved_qty")
                .eq("id", variant_id)
                .limit(1)
                .execute()
            )
            if variant and status == ITEM_PICKED:
                self.client.table("product_variants").update(
                    {"stock_qty": int(variant.get("stock_qty") or 0) + quantity}
                ).eq("id", variant_id).execute()
            elif variant and status in (ITEM_RESERVED, ITEM_WAITING):
                self.client.table("product_variants").update(
                    {"reserved_qty": max(0, int(variant.get("reserved_qty") or 0) - quantity)}
                ).eq("id", variant_id).execute()

        self._delete_item(item)

    def delete_order_if_empty(self, order_id: str) -> bool:
        """Delete an order that has no items left. Returns True if deleted."""
        result = (
            self.client.table("order_items")
            .select("id", count="exact")
            .eq("order_id", order_id)
            .execute()
        )
        if result.count:
            return False
        self.client.table("orders").delete().eq("id", order_id).execute()
        console.print(f"[dim]Deleted empty order {order_id}[/dim]")
        return True

    # =========================================================================
    # WAREHOUSES
    # =========================================================================

    def _load_warehouses(self) -> dict[str, str]:
        if WAREHOUSE_GENERAL in self._warehouses and WAREHOUSE_PUBLIC_SALE in self._warehouses:
            return self._warehouses
        result = (
            self.client.table("warehouses")
            .select("id, code, name")
            .in_("code", [WAREHOUSE_GENERAL, WAREHOUSE_PUBLIC_SALE])
            .execute()
        )
        for row in result.data or []:
            self._warehouses[row["code"]] = row["id"]
        return self._warehouses

    def item_warehouse(self, item: dict) -> Optional[str]:
        """
        Where a reserved item should be picked from: "General" or "Local".

        Stock is taken from the general warehouse first, so General wins
        whenever it holds any of the units needed. Returns None when the item
        is not reserved or there is not enough stock anywhere.
        """
        if item.get("status") != ITEM_RESERVED or not item.get("variant_id"):
            return None

        warehouses = self._load_warehouses()
        general_id = warehouses.get(WAREHOUSE_GENERAL)
        local_id = warehouses.get(WAREHOUSE_PUBLIC_SALE)
        if not general_id or not local_id:
            return None

        rows = (
            self.client.table("variant_warehouse_stock")
            .select("warehouse_id, stock_qty")
            .eq("variant_id", item["variant_id"])
            .in_("warehouse_id", [general_id, local_id])
            .execute()
        ).data or []

        stock = {row["warehouse_id"]: int(row.get("stock_qty") or 0) for row in rows}
        general = stock.get(general_id, 0)
        local = stock.get(local_id, 0)
        quantity = int(item.get("quantity") or 1)

        if general >= quantity:
            return "General"
        if general > 0 and general + local >= quantity:
            return "General"
        if local >= quantity:
            return "Local"
        return None

    # =========================================================================
    # PAYMENT METHODS
    # =========================================================================

    def list_payment_methods(self) -> list[dict]:
        result = self.client.table("payment_methods").select("id, name").order("name").execute()
        return result.data or []

    def create_payment_method(self, name: str) -> dict:
        """Create a payment method. Blank names are rejected."""
        try:
            method = PaymentMethod(name=name or "")
        except PydanticValidationError as e:
            raise ValidationError("Payment method name is required") from e
        result = (
            self.client.table("payment_methods").insert({"name": method.name}).execute()
        )
        return _first(result) or method.model_dump(exclude_none=True)
