"""
In-memory state of the admin orders board.

The board owns the loaded order list, the selected tab, search text, sort
order and the per-order full-view toggles. Every change to the order list
goes through reload(), which recomputes the badge counts in the same step.

Reloads can overlap (a realtime notification arrives while an admin action
is still reloading). Each reload takes a ticket when it starts; a reload
that finishes after a newer one has already been applied is discarded.
"""

import threading
from typing import Optional

from rich.console import Console

from config.settings import config
from fyl.orders.filters import (
    SORT_OPTIONS,
    TAB_ALL,
    badge_counts,
    orders_for_tab,
    visible_items,
)
from fyl.orders.repository import OrderRepository
from fyl.orders.status import display_state

console = Console()


class OrderBoard:
    """Orders, badges and view settings for the back-office board."""

    def __init__(self, repository: OrderRepository, full_view: Optional[set] = None):
        self.repository = repository
        self.orders: list[dict] = []
        self.badges: dict[str, int] = {}
        self.current_tab: str = config.orders.default_tab
        self.sort: str = config.orders.default_sort
        self.search: str = ""
        self.full_view: set = set(full_view or ())

        self._lock = threading.Lock()
        self._next_ticket = 0
        self._applied_ticket = 0

    # =========================================================================
    # RELOAD
    # =========================================================================

    def _take_ticket(self) -> int:
        with self._lock:
            self._next_ticket += 1
            return self._next_ticket

    def apply(self, ticket: int, orders: list[dict]) -> bool:
        """
        Install a freshly loaded order list if it is not stale.

        Returns:
            False when a newer reload was already applied
        """
        with self._lock:
            if ticket < self._applied_ticket:
                return False
            self._applied_ticket = ticket
            self.orders = orders
            self.badges = badge_counts(orders)
            return True

    def reload(self) -> bool:
        """Reload every order from the backend and recompute the badges."""
        ticket = self._take_ticket()
        orders = self.repository.load_orders()
        applied = self.apply(ticket, orders)
        if not applied:
            console.print(f"[dim]Discarded stale reload #{ticket}[/dim]")
        return applied

    # =========================================================================
    # VIEW
    # =========================================================================

    def select_tab(self, tab: str) -> None:
        self.current_tab = tab or TAB_ALL

    def set_sort(self, sort: str) -> None:
        if sort not in SORT_OPTIONS:
            raise ValueError(f"Unknown sort '{sort}'. Options: {', '.join(SORT_OPTIONS)}")
        self.sort = sort

    def set_search(self, query: Optional[str]) -> None:
        self.search = (query or "").strip()

    def toggle_full_view(self, order_id: str) -> bool:
        """Flip an order card between filtered and full item list."""
        if order_id in self.full_view:
            self.full_view.discard(order_id)
            return False
        self.full_view.add(order_id)
        return True

    def visible_orders(self) -> list[dict]:
        return orders_for_tab(self.orders, self.current_tab, self.search, self.sort)

    def order_card(self, order: dict) -> dict:
        """Order plus the derived fields a card shows on the current tab."""
        full = order.get("id") in self.full_view
        return {
            **order,
            "display_state": display_state(order, self.current_tab),
            "visible_items": visible_items(order, self.current_tab, full),
            "full_view": full,
        }

    def cards(self) -> list[dict]:
        return [self.order_card(order) for order in self.visible_orders()]
