"""
Tab filters, badge counts, search and sorting for the orders board.

All functions are pure: they take the in-memory list of order rows (with
nested order_items and an embedded customer) and return a new list or a
count. An order shows up on at most one working tab; waiting takes priority
over picked and active.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from fyl.orders.status import (
    ITEM_CANCELLED,
    ITEM_RESERVED,
    ITEM_WAITING,
    ORDER_CLOSED,
    customer_full_name,
    customer_of,
    has_all_items_picked,
    has_cancelled_items,
    has_reserved_items,
    has_waiting_items,
    is_terminal,
    order_items,
    parse_timestamp,
)

TAB_ACTIVE = "active"
TAB_PICKED = "picked"
TAB_WAITING = "waiting"
TAB_CLOSED = "closed"
TAB_CANCELLED = "cancelled"
TAB_ALL = "all"

BADGE_TABS = (TAB_ACTIVE, TAB_PICKED, TAB_WAITING, TAB_CLOSED, TAB_CANCELLED)

# Search only narrows these tabs
SEARCHABLE_TABS = frozenset({TAB_PICKED, TAB_CLOSED})

SORT_RECENT = "recent"
SORT_OLDEST = "oldest"
SORT_NAME_AZ = "name_az"
SORT_NAME_ZA = "name_za"
SORT_OPTIONS = (SORT_RECENT, SORT_OLDEST, SORT_NAME_AZ, SORT_NAME_ZA)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# TAB PREDICATES
# =============================================================================


def is_active_order(order: dict) -> bool:
    """Open order still being prepared (no waiting items, no cancellations)."""
    if is_terminal(order):
        return False
    if has_waiting_items(order):
        return False
    if has_all_items_picked(order):
        return False
    if has_cancelled_items(order):
        return False
    return True


def is_picked_order(order: dict) -> bool:
    """Open order with every item picked and nothing waiting or reserved."""
    if is_terminal(order):
        return False
    if has_waiting_items(order):
        return False
    if not has_all_items_picked(order):
        return False
    if has_reserved_items(order):
        return False
    return True


def is_waiting_order(order: dict) -> bool:
    return not is_terminal(order) and has_waiting_items(order)


def is_closed_order(order: dict) -> bool:
    return order.get("status") == ORDER_CLOSED


def is_cancelled_order(order: dict) -> bool:
    """Any order with a cancelled item, whatever its status."""
    return has_cancelled_items(order)


TAB_PREDICATES: dict[str, Callable[[dict], bool]] = {
    TAB_ACTIVE: is_active_order,
    TAB_PICKED: is_picked_order,
    TAB_WAITING: is_waiting_order,
    TAB_CLOSED: is_closed_order,
    TAB_CANCELLED: is_cancelled_order,
}


def filter_orders(orders: list[dict], tab: str) -> list[dict]:
    """
    Orders that belong on a tab.

    Unknown tab names fall back to matching the order's own status.
    """
    if tab == TAB_ALL:
        return list(orders)
    predicate = TAB_PREDICATES.get(tab)
    if predicate is None:
        return [order for order in orders if order.get("status") == tab]
    return [order for order in orders if predicate(order)]


# =============================================================================
# BADGES
# =============================================================================


def _needs_work(order: dict) -> bool:
    # The active badge counts every open order that is not fully picked,
    # including ones that also sit on the waiting or cancelled tabs.
    return not is_terminal(order) and not has_all_items_picked(order)


def badge_counts(orders: list[dict]) -> dict[str, int]:
    """Count orders for each tab badge."""
    return {
        TAB_ACTIVE: sum(1 for order in orders if _needs_work(order)),
        TAB_PICKED: sum(1 for order in orders if is_picked_order(order)),
        TAB_WAITING: sum(1 for order in orders if is_waiting_order(order)),
        TAB_CLOSED: sum(1 for order in orders if is_closed_order(order)),
        TAB_CANCELLED: sum(1 for order in orders if is_cancelled_order(order)),
    }


# =============================================================================
# SEARCH & SORT
# =============================================================================


def _customer_name_key(order: dict) -> str:
    return customer_full_name(customer_of(order)).lower()


def _surname_first(name: str) -> str:
    parts = name.strip().split()
    if len(parts) > 1:
        return f"{parts[-1]}, {' '.join(parts[:-1])}".lower()
    return name


def matches_search(order: dict, query: Optional[str]) -> bool:
    """
    Case-insensitive match on customer name, "last, first" name, phone or dni.

    An empty query matches every order.
    """
    q = (query or "").strip().lower()
    if not q:
        return True

    customer = customer_of(order)
    name = _customer_name_key(order)
    phone = str(customer.get("phone") or "").lower()
    dni = str(customer.get("dni") or "").lower()
    return q in name or q in _surname_first(name) or q in phone or q in dni


def _created_at(order: dict) -> datetime:
    return parse_timestamp(order.get("created_at")) or _EPOCH


def sort_orders(orders: list[dict], sort: str = SORT_RECENT) -> list[dict]:
    """Sort orders by creation date or customer name. Unknown keys sort by recent."""
    if sort == SORT_OLDEST:
        return sorted(orders, key=_created_at)
    if sort == SORT_NAME_AZ:
        return sorted(orders, key=_customer_name_key)
    if sort == SORT_NAME_ZA:
        return sorted(orders, key=_customer_name_key, reverse=True)
    return sorted(orders, key=_created_at, reverse=True)


def orders_for_tab(
    orders: list[dict],
    tab: str,
    search: Optional[str] = None,
    sort: str = SORT_RECENT,
) -> list[dict]:
    """Filter by tab, apply search where the tab allows it, then sort."""
    filtered = filter_orders(orders, tab)
    if tab in SEARCHABLE_TABS:
        filtered = [order for order in filtered if matches_search(order, search)]
    return sort_orders(filtered, sort)


# =============================================================================
# ITEM VIEW
# =============================================================================


def visible_items(order: dict, tab: str, full_view: bool = False) -> list[dict]:
    """
    Items to list on an order card.

    The waiting tab lists only waiting items and the active tab only reserved
    ones, unless the card is toggled to full view. Everywhere else the
    cancelled items are hidden.
    """
    items = order_items(order)
    if not full_view:
        if tab == TAB_WAITING:
            return [item for item in items if item.get("status") == ITEM_WAITING]
        if tab == TAB_ACTIVE:
            return [item for item in items if item.get("status") == ITEM_RESERVED]
    return [item for item in items if item.get("status") != ITEM_CANCELLED]
