"""
Sent and returned orders, grouped per customer, plus the per-transport
shipping lists built from them.
"""

from datetime import date, datetime, timezone
from typing import Optional, Union

from postgrest.exceptions import APIError
from rich.console import Console
from supabase import Client

from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import RpcMissingError, ValidationError
from fyl.orders.repository import OrderRepository
from fyl.orders.status import ORDER_RETURNED, ORDER_SENT, parse_timestamp

console = Console()

SENT_ORDER_COLUMNS = """
    id,
    order_number,
    customer_id,
    updated_at,
    sent_at,
    total_amount,
    notes,
    transport_id,
    status,
    payment_method,
    order_items (
        id,
        product_name,
        color,
        size,
        quantity,
        price_snapshot,
        imagen,
        status,
        variant_id
    )
"""

SHIPPING_CUSTOMER_COLUMNS = (
    "id, customer_number, full_name, phone, city, province, dni, email, address, transport_id"
)

SHIPPING_LIST_ORDER_COLUMNS = (
    "id, order_number, status, total_amount, labels_count, sent_at, updated_at, "
    "transport_id, customer_id, payment_method"
)

# Undefined table (transports not created yet)
UNDEFINED_TABLE = "42P01"

_MIN_DATE = datetime.min.replace(tzinfo=timezone.utc)


def order_date(order: dict) -> Optional[str]:
    """When an order left: sent_at, or updated_at for older rows."""
    return order.get("sent_at") or order.get("updated_at")


def group_by_customer(orders: list[dict], customers: list[dict]) -> list[dict]:
    """
    Attach orders to their customers, most recently shipped customer first.

    Each customer gets an "orders" list (each order carrying the customer in
    customer_data) and "latestOrderDate". Customers without orders and
    orders without a known customer are left out.
    """
    # customer_data gets the plain row so the result stays a tree (JSON-safe)
    plain = {c["id"]: dict(c) for c in customers}
    grouped = {cid: {**row, "orders": [], "latestOrderDate": None} for cid, row in plain.items()}

    for order in orders:
        customer_id = order.get("customer_id")
        customer = grouped.get(customer_id)
        if customer is None:
            continue
        customer["orders"].append({**order, "customer_data": plain[customer_id]})

        current = parse_timestamp(customer["latestOrderDate"]) or _MIN_DATE
        candidate = parse_timestamp(order_date(order)) or _MIN_DATE
        if customer["latestOrderDate"] is None or candidate > current:
            customer["latestOrderDate"] = order_date(order)

    with_orders = [c for c in grouped.values() if c["orders"]]
    return sorted(
        with_orders,
        key=lambda c: parse_timestamp(c["latestOrderDate"]) or _MIN_DATE,
        reverse=True,
    )


def as_day(value: Union[str, date, None]) -> Optional[date]:
    """Parse a YYYY-MM-DD day (dates pass through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value!r} (expected YYYY-MM-DD)") from e


def shipping_list_row(order: dict, customer: dict, items: list[dict]) -> dict:
    """One line of a transport's shipping list."""
    return {
        "id": order["id"],
        "order_number": order.get("order_number"),
        "customer_name": customer.get("full_name") or "Sin nombre",
        "address": customer.get("address") or "Sin dirección",
        "city": customer.get("city") or "",
        "province": customer.get("province") or "",
        "phone": customer.get("phone") or "Sin teléfono",
        "items_count": sum(item.get("quantity") or 0 for item in items),
        "packages_count": order.get("labels_count") or 1,
        "total_amount": order.get("total_amount") or 0,
        "payment_method": order.get("payment_method"),
    }


class ShipmentsService:
    """Sent-orders history and the return / revert actions on it."""

    def __init__(self, client: Client, repository: Optional[OrderRepository] = None):
        self.client = client
        self.repository = repository or OrderRepository(client)

    def load_sent_orders(self) -> list[dict]:
        """Sent and returned orders grouped per customer."""
        orders = (
            self.client.table("orders")
            .select(SENT_ORDER_COLUMNS)
            .in_("status", [ORDER_SENT, ORDER_RETURNED])
            .order("sent_at", desc=True)
            .execute()
        ).data or []
        if not orders:
            return []

        customer_ids = sorted({o["customer_id"] for o in orders if o.get("customer_id")})
        customers = (
            self.client.table("customers")
            .select(SHIPPING_CUSTOMER_COLUMNS)
            .in_("id", customer_ids)
            .execute()
        ).data or []
        return group_by_customer(orders, customers)

    def mark_as_returned(self, order_id: str) -> str:
        return self.repository.mark_as_returned(order_id)

    def revert_to_picked(self, order_id: str) -> None:
        self.repository.revert_to_picked(order_id)

    def update_labels_count(self, order_id: str, count) -> None:
        self.repository.update_labels_count(order_id, count)

    # =========================================================================
    # TRANSPORTS
    # =========================================================================

    def list_transports(self) -> list[dict]:
        """Scheduled transports by name; empty when the table is not there yet."""
        try:
            result = self.client.table("transports").select("*").order("name").execute()
        except APIError as e:
            if e.code != UNDEFINED_TABLE:
                raise
            console.print("[yellow]transports table does not exist yet[/yellow]")
            return []
        return result.data or []

    def update_customer_transport(self, customer_id: str, transport_id: Optional[str]) -> None:
        """Assign a transport to a customer (None clears it)."""
        transport_id = transport_id or None
        try:
            call_rpc(
                self.client,
                procedures.UPDATE_CUSTOMER_TRANSPORT,
                {"p_customer_id": customer_id, "p_transport_id": transport_id},
            )
        except RpcMissingError:
            console.print(
                f"[yellow]{procedures.UPDATE_CUSTOMER_TRANSPORT} not deployed, updating directly[/yellow]"
            )
            self.client.table("customers").update({"transport_id": transport_id}).eq(
                "id", customer_id
            ).execute()

    # =========================================================================
    # SHIPPING LISTS
    # =========================================================================

    def orders_for_shipping_list(self, transport_id: str, day) -> list[dict]:
        """
        Orders sent on `day` that travel with `transport_id`.

        An order matches when its own transport or its customer's transport is
        the requested one. The day is taken from sent_at (updated_at for older
        rows) in UTC.

        Args:
            transport_id: Transport to list
            day: date or YYYY-MM-DD string

        Returns:
            Shipping-list rows (see shipping_list_row)
        """
        day = as_day(day)
        if not transport_id or day is None:
            raise ValidationError("A transport and a date are required")

        orders = (
            self.client.table("orders")
            .select(SHIPPING_LIST_ORDER_COLUMNS)
            .eq("status", ORDER_SENT)
            .execute()
        ).data or []

        on_day = []
        for order in orders:
            sent = parse_timestamp(order_date(order))
            if sent is not None and sent.astimezone(timezone.utc).date() == day:
                on_day.append(order)
        if not on_day:
            return []

        order_ids = [o["id"] for o in on_day]
        items = (
            self.client.table("order_items")
            .select("order_id, quantity")
            .in_("order_id", order_ids)
            .execute()
        ).data or []
        items_by_order: dict[str, list[dict]] = {}
        for item in items:
            items_by_order.setdefault(item["order_id"], []).append(item)

        customer_ids = sorted({o["customer_id"] for o in on_day if o.get("customer_id")})
        customers = {}
        if customer_ids:
            rows = (
                self.client.table("customers")
                .select("id, full_name, address, city, province, phone, transport_id")
                .in_("id", customer_ids)
                .execute()
            ).data or []
            customers = {c["id"]: c for c in rows}

        listed = []
        for order in on_day:
            customer = customers.get(order.get("customer_id"), {})
            if transport_id not in (order.get("transport_id"), customer.get("transport_id")):
                continue
            listed.append(shipping_list_row(order, customer, items_by_order.get(order["id"], [])))
        return listed

    def save_shipping_list(
        self, transport_id: str, transport_name: str, day, orders: list[dict]
    ):
        """Store a printed shipping list; returns the saved record."""
        day = as_day(day)
        if not transport_id or day is None:
            raise ValidationError("A transport and a date are required")
        if not orders:
            raise ValidationError("Cannot save an empty shipping list")

        return call_rpc(
            self.client,
            procedures.SAVE_SHIPPING_LIST,
            {
                "p_transport_id": transport_id,
                "p_transport_name": transport_name or "Desconocido",
                "p_list_date": day.isoformat(),
                "p_orders_data": orders,
            },
        )

    def shipping_lists(self, start=None, end=None) -> list[dict]:
        """Saved shipping lists, optionally limited to [start, end]."""
        start, end = as_day(start), as_day(end)
        data = call_rpc(
            self.client,
            procedures.GET_SHIPPING_LISTS,
            {
                "p_start_date": start.isoformat() if start else None,
                "p_end_date": end.isoformat() if end else None,
            },
        )
        return data or []
