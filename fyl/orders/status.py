"""
Order and item status model.

Each order item carries one of five statuses. The order's own status only
records the lifecycle milestones (closed, sent, returned); while an order is
still open, what the back-office shows is derived from its items.

Usage:
    from fyl.orders.status import display_state, has_all_items_picked

    if has_all_items_picked(order):
        ...
    state = display_state(order, current_filter="waiting")
"""

from datetime import datetime, timezone
from typing import Optional

# =============================================================================
# STATUS VOCABULARY
# =============================================================================

ITEM_RESERVED = "reserved"
ITEM_PICKED = "picked"
ITEM_WAITING = "waiting"
ITEM_MISSING = "missing"
ITEM_CANCELLED = "cancelled"

ITEM_STATUSES = frozenset(
    {ITEM_RESERVED, ITEM_PICKED, ITEM_WAITING, ITEM_MISSING, ITEM_CANCELLED}
)

ORDER_ACTIVE = "active"
ORDER_PICKED = "picked"
ORDER_WAITING = "waiting"
ORDER_CLOSED = "closed"
ORDER_SENT = "sent"
ORDER_RETURNED = "devolución"

# Orders in these statuses never show up on the working tabs
TERMINAL_ORDER_STATUSES = frozenset({ORDER_CLOSED, ORDER_SENT, ORDER_RETURNED})

ORDER_STATUS_LABELS = {
    "active": "Activo",
    "picked": "Apartado",
    "closed": "Cerrado",
    "sent": "Enviado",
    "pending": "Pendiente",
    "waiting": "Espera",
    "devolución": "Devolución",
}

ITEM_STATUS_LABELS = {
    "reserved": "Reservado",
    "picked": "Apartado",
    "missing": "Falta",
    "cancelled": "Cancelado",
    "waiting": "Espera",
}

UNNAMED_CUSTOMER = "Cliente sin nombre"


# =============================================================================
# ITEM PREDICATES
# =============================================================================


def order_items(order: dict) -> list[dict]:
    """Items of an order, tolerating a missing or null order_items key."""
    return order.get("order_items") or []


def has_all_items_picked(order: dict) -> bool:
    """True when the order has items and every one is picked or waiting."""
    items = order_items(order)
    if not items:
        return False
    return all(item.get("status") in (ITEM_PICKED, ITEM_WAITING) for item in items)


def has_reserved_items(order: dict) -> bool:
    return any(item.get("status") == ITEM_RESERVED for item in order_items(order))


def has_waiting_items(order: dict) -> bool:
    return any(item.get("status") == ITEM_WAITING for item in order_items(order))


def has_cancelled_items(order: dict) -> bool:
    return any(item.get("status") == ITEM_CANCELLED for item in order_items(order))


def has_items_needing_attention(order: dict) -> bool:
    """True when some item is still reserved or marked missing."""
    return any(
        item.get("status") in (ITEM_RESERVED, ITEM_MISSING)
        for item in order_items(order)
    )


def has_only_waiting_items(order: dict) -> bool:
    """True when the order has waiting items and nothing left reserved."""
    return has_waiting_items(order) and not has_reserved_items(order)


def is_terminal(order: dict) -> bool:
    return order.get("status") in TERMINAL_ORDER_STATUSES


# =============================================================================
# DERIVED ORDER STATE
# =============================================================================


def display_state(order: dict, current_filter: Optional[str] = None) -> str:
    """
    Derive the status shown for an order.

    Closed and sent orders keep their own status. Open orders are shown as
    waiting (only while the waiting tab is selected and some item waits),
    picked (everything picked, nothing waiting) or active.

    Args:
        order: Order row with nested order_items
        current_filter: Tab currently selected on the board

    Returns:
        One of active, picked, waiting, closed, sent (or the order's own
        status for returned orders)
    """
    status = order.get("status")
    if status == ORDER_SENT:
        return ORDER_SENT
    if status == ORDER_CLOSED:
        return ORDER_CLOSED
    if status == ORDER_RETURNED:
        return ORDER_RETURNED

    if current_filter == ORDER_WAITING and has_waiting_items(order):
        return ORDER_WAITING
    if has_all_items_picked(order) and not has_waiting_items(order):
        return ORDER_PICKED
    return ORDER_ACTIVE


def display_label(order: dict, current_filter: Optional[str] = None) -> str:
    state = display_state(order, current_filter)
    return ORDER_STATUS_LABELS.get(state, state or "Desconocido")


def item_label(item: dict) -> str:
    return ITEM_STATUS_LABELS.get(item.get("status"), ITEM_STATUS_LABELS[ITEM_RESERVED])


def can_send_to_local(order: dict) -> bool:
    """An order can go to the store once every item is picked and none waits."""
    return (
        display_state(order) == ORDER_PICKED
        and has_all_items_picked(order)
        and not has_waiting_items(order)
    )


# =============================================================================
# CUSTOMER HELPERS
# =============================================================================


def customer_of(order: dict) -> dict:
    """
    Customer embedded in an order row.

    PostgREST returns the relation either as an object or as a one-element
    list depending on how it was joined.
    """
    customers = order.get("customers")
    if isinstance(customers, list):
        return customers[0] if customers else {}
    if isinstance(customers, dict):
        return customers
    return {}


def customer_full_name(customer: dict) -> str:
    return str(customer.get("full_name") or customer.get("name") or "").strip()


def format_customer_display_name(customer: Optional[dict]) -> str:
    """Format a customer name as "Last, First" ("Cliente sin nombre" if empty)."""
    full = customer_full_name(customer or {})
    if not full:
        return UNNAMED_CUSTOMER
    parts = full.split()
    if len(parts) == 1:
        return full
    return f"{parts[-1]}, {' '.join(parts[:-1])}"


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a PostgREST timestamp (ISO 8601, possibly with a trailing Z)."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_since(created_at, now: Optional[datetime] = None) -> Optional[int]:
    """Whole days elapsed since created_at (never negative)."""
    created = parse_timestamp(created_at)
    if created is None:
        return None
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0, (now - created).days)
