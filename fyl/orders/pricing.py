"""
Promotions, color offers and extra charges for an order.

Promotions ("2x1", "2x$<amount>") are resolved by a remote procedure per
variant; per-color offers are read from color_price_offers. Promotions win
over offers: an item in an applicable promotion never gets an offer too.

Extra charges are stored by the admin as a JSON blob in orders.notes.
"""

import json
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from rich.console import Console
from supabase import Client

from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import RpcError
from fyl.orders.status import ITEM_CANCELLED, order_items

console = Console()

PROMO_2X1 = "2x1"
PROMO_2X_AMOUNT = "2xMonto"


# =============================================================================
# EXTRA CHARGES
# =============================================================================


@dataclass
class OrderExtras:
    """Extra charges an admin attached to an order."""

    shipping: float = 0.0
    discount: float = 0.0
    extras_amount: float = 0.0
    extras_percentage: float = 0.0


def _to_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def parse_extras(notes: Optional[str]) -> OrderExtras:
    """Read the extras JSON from an order's notes (free text gives no extras)."""
    if not notes:
        return OrderExtras()
    try:
        values = json.loads(notes)
    except (TypeError, ValueError):
        return OrderExtras()
    if not isinstance(values, dict):
        return OrderExtras()

    return OrderExtras(
        shipping=_to_float(values.get("shipping")),
        discount=_to_float(values.get("discount")),
        extras_amount=_to_float(values.get("extras_amount")),
        extras_percentage=_to_float(values.get("extras_percentage")),
    )


def billable_items(order: dict) -> list[dict]:
    return [item for item in order_items(order) if item.get("status") != ITEM_CANCELLED]


def line_total(item: dict) -> float:
    return _to_float(item.get("price_snapshot")) * _to_float(item.get("quantity"))


def products_subtotal(order: dict) -> float:
    """Sum of price snapshot x quantity over non-cancelled items."""
    return sum(line_total(item) for item in billable_items(order))


# =============================================================================
# PROMOTIONS & OFFERS
# =============================================================================


@dataclass
class ItemOffer:
    """Per-color offer price applied to one item."""

    offer_price: float
    original_price: float


@dataclass
class OrderDiscounts:
    """Promotions and offers resolved for an order."""

    item_promos: dict = field(default_factory=dict)  # item id -> promo text
    item_offers: dict = field(default_factory=dict)  # item id -> ItemOffer
    promotions: list = field(default_factory=list)  # [{"type", "count", "discount"}]
    total_discount: float = 0.0


def promo_text(promo: dict) -> Optional[str]:
    if promo.get("promo_type") == PROMO_2X1:
        return "2x1"
    if promo.get("promo_type") == PROMO_2X_AMOUNT and promo.get("fixed_amount"):
        return f"2x${_format_amount(promo['fixed_amount'])}"
    return None


def _format_amount(amount) -> str:
    value = _to_float(amount)
    return str(int(value)) if value.is_integer() else str(value)


def promotion_discount(promo: dict, items: list[dict]) -> float:
    """
    Discount of one promotion over the items it covers.

    Units are grouped in pairs. A 2x1 takes off one average unit price per
    pair; a 2x$<amount> charges the fixed amount per pair instead of the
    list prices. A lone unit gets nothing.
    """
    total_quantity = sum(_to_float(item.get("quantity")) for item in items)
    groups = int(total_quantity // 2)
    if groups <= 0:
        return 0.0

    total_price = sum(line_total(item) for item in items)
    if promo.get("promo_type") == PROMO_2X1:
        return groups * (total_price / total_quantity)
    if promo.get("promo_type") == PROMO_2X_AMOUNT and promo.get("fixed_amount"):
        return max(0.0, total_price - groups * _to_float(promo["fixed_amount"]))
    return 0.0


def resolve_discounts(
    items: list[dict],
    item_variants: dict,
    promotions: list[dict],
    offers: Optional[dict] = None,
) -> OrderDiscounts:
    """
    Combine promotions and offers into per-item labels and a total discount.

    Args:
        items: Non-cancelled order items
        item_variants: item id -> variant id
        promotions: Active promotions, each with a variant_ids list
        offers: item id -> ItemOffer for items with an active color offer

    Returns:
        OrderDiscounts for the order
    """
    result = OrderDiscounts()
    items_by_variant: dict = {}
    for item in items:
        variant_id = item_variants.get(item.get("id"))
        if variant_id:
            items_by_variant.setdefault(variant_id, []).append(item)

    applied: dict = {}
    for promo in promotions:
        covered = []
        for variant_id in promo.get("variant_ids") or []:
            covered.extend(items_by_variant.get(variant_id, []))
        if not covered:
            continue

        total_quantity = sum(_to_float(item.get("quantity")) for item in covered)
        text = promo_text(promo)
        if total_quantity // 2 <= 0 or not text:
            continue

        for item in covered:
            result.item_promos[item.get("id")] = text

        discount = promotion_discount(promo, covered)
        result.total_discount += discount
        summary = applied.setdefault(text, {"type": text, "count": 0, "discount": 0.0})
        summary["count"] += total_quantity
        summary["discount"] += discount

    for item_id, offer in (offers or {}).items():
        if item_id in result.item_promos:
            continue
        item = next((i for i in items if i.get("id") == item_id), None)
        if item is None:
            continue
        result.item_offers[item_id] = offer
        result.total_discount += (offer.original_price - offer.offer_price) * _to_float(
            item.get("quantity")
        )

    result.promotions = list(applied.values())
    return result


def item_prices(item: dict, discounts: OrderDiscounts) -> tuple[float, Optional[float]]:
    """
    Unit price to charge and the struck-through original, if any.

    Promoted items keep their price (the discount applies to the group);
    offered items are charged the offer price.
    """
    price = _to_float(item.get("price_snapshot"))
    item_id = item.get("id")
    if item_id in discounts.item_promos:
        return price, price
    offer = discounts.item_offers.get(item_id)
    if offer:
        return offer.offer_price, offer.original_price
    return price, None


def order_total(order: dict, discounts: Optional[OrderDiscounts] = None) -> float:
    """
    Total to charge for an order.

    The stored total_amount wins when present. Otherwise it is computed from
    the products subtotal plus the extras in notes, minus discounts.
    """
    stored = order.get("total_amount")
    if isinstance(stored, (int, float)) and not isinstance(stored, bool):
        return float(stored)

    subtotal = products_subtotal(order)
    extras = parse_extras(order.get("notes"))
    total_discount = discounts.total_discount if discounts else 0.0
    return (
        subtotal
        + extras.shipping
        - extras.discount
        + extras.extras_amount
        + subtotal * extras.extras_percentage / 100
        - total_discount
    )


# =============================================================================
# SERVICE
# =============================================================================


class PricingService:
    """Looks up promotions and color offers for order items in Supabase."""

    def __init__(self, client: Client):
        self.client = client

    def _active_product_id(self, product_name: str) -> Optional[str]:
        result = (
            self.client.table("products")
            .select("id")
            .eq("name", product_name)
            .eq("status", "active")
            .limit(1)
            .execute()
        )
        return result.data[0]["id"] if result.data else None

    def find_variant_id(
        self, product_name: str, color: str, size: str
    ) -> Optional[str]:
        """Find the active variant for an item that was saved without one."""
        if not product_name or not color or not size:
            return None

        product_id = self._active_product_id(product_name)
        if not product_id:
            return None

        result = (
            self.client.table("product_variants")
            .select("id")
            .eq("product_id", product_id)
            .eq("color", color)
            .eq("size", size)
            .eq("active", True)
            .limit(1)
            .execute()
        )
        return result.data[0]["id"] if result.data else None

    def active_promotions(self, variant_ids: list[str]) -> list[dict]:
        """Active promotions covering any of the variants (empty on error)."""
        if not variant_ids:
            return []
        try:
            data = call_rpc(
                self.client,
                procedures.ACTIVE_PROMOTIONS_FOR_VARIANTS,
                {"p_variant_ids": variant_ids},
            )
        except RpcError as e:
            console.print(f"[yellow]Warning: could not load promotions: {e}[/yellow]")
            return []
        return data or []

    def active_color_offer(
        self, product_name: str, color: str, today: Optional[date] = None
    ) -> Optional[dict]:
        """Newest active color offer for a product whose window includes today."""
        product_id = self._active_product_id(product_name)
        if not product_id:
            return None

        day = (today or date.today()).isoformat()
        result = (
            self.client.table("color_price_offers")
            .select("*")
            .eq("product_id", product_id)
            .eq("color", color)
            .eq("status", "active")
            .lte("start_date", day)
            .gte("end_date", day)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def discounts_for_order(
        self, order: dict, today: Optional[date] = None
    ) -> OrderDiscounts:
        """Resolve promotions first, then color offers for the remaining items."""
        items = billable_items(order)
        if not items:
            return OrderDiscounts()

        item_variants = {}
        for item in items:
            variant_id = item.get("variant_id") or self.find_variant_id(
                item.get("product_name"), item.get("color"), item.get("size")
            )
            if variant_id:
                item_variants[item.get("id")] = variant_id

        if not item_variants:
            return OrderDiscounts()

        promotions = self.active_promotions(list(item_variants.values()))
        promoted = resolve_discounts(items, item_variants, promotions).item_promos

        offers = {}
        for item in items:
            if item.get("id") in promoted:
                continue
            if not item.get("product_name") or not item.get("color"):
                continue
            offer = self.active_color_offer(item["product_name"], item["color"], today)
            if offer:
                offers[item.get("id")] = ItemOffer(
                    offer_price=_to_float(offer.get("offer_price")),
                    original_price=_to_float(item.get("price_snapshot")),
                )

        return resolve_discounts(items, item_variants, promotions, offers)
