"""
Client cart: one open cart per customer, stock-capped quantities, checkout.

Quantities added to a cart are capped at the variant's available stock
(stock minus reservations). The cart itself does not reserve anything;
reservations happen server-side when the cart is checked out.

Usage:
    from fyl.cart.cart import CartService

    cart = CartService(client)
    line = cart.add_item(customer_id, {"articulo": "Bota Texana", "color": "Negro",
                                       "talle": "38", "cantidad": 1})
    order = cart.checkout(customer_id)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from supabase import Client

from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import ValidationError
from fyl.orders.repository import OrderRepository
from fyl.orders.status import ITEM_MISSING

console = Console()

CART_OPEN = "open"
DEFAULT_OPTION = "Único"

VARIANT_COLUMNS = "id, stock_qty, reserved_qty, price, color, size"


@dataclass
class VariantInfo:
    """Stock snapshot of a product variant."""

    id: str
    stock: int
    reserved: int
    price: float
    color: Optional[str] = None
    size: Optional[str] = None

    @property
    def available(self) -> int:
        return max(0, self.stock - self.reserved)

    @classmethod
    def from_row(cls, row: dict) -> "VariantInfo":
        return cls(
            id=row["id"],
            stock=int(row.get("stock_qty") or 0),
            reserved=int(row.get("reserved_qty") or 0),
            price=float(row.get("price") or 0),
            color=row.get("color"),
            size=row.get("size"),
        )


def _number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def normalize_cart_items(items: list[dict]) -> list[dict]:
    """
    Merge cart lines that refer to the same article, color and size.

    Lines may use the storefront keys (articulo, talle, cantidad, precio) or
    the table columns (product_name, size, quantity, price_snapshot).
    Quantities are summed and the ids of every merged row are kept in
    supabaseIds so duplicates can be removed later.
    """
    merged: dict[tuple, dict] = {}
    for item in items:
        key = (
            item.get("articulo") or item.get("product_name") or "",
            item.get("color") or "",
            item.get("talle") or item.get("size") or "",
        )
        quantity = _number(
            next(
                (item[k] for k in ("cantidad", "quantity", "qty") if item.get(k) is not None),
                0,
            )
        )
        price = _number(item["precio"] if item.get("precio") is not None else item.get("price_snapshot"))
        variant_id = item.get("variant_id") or item.get("variantId")

        existing = merged.get(key)
        if existing is None:
            merged[key] = {
                **item,
                "cantidad": quantity,
                "precio": price,
                "supabaseIds": [item["id"]] if item.get("id") else [],
                "variant_id": variant_id,
            }
            continue

        existing["cantidad"] += quantity
        if not existing.get("imagen") and item.get("imagen"):
            existing["imagen"] = item["imagen"]
        if not existing.get("descripcion") and item.get("descripcion"):
            existing["descripcion"] = item["descripcion"]
        existing["precio"] = price or existing.get("precio") or 0
        if item.get("id"):
            if item["id"] not in existing["supabaseIds"]:
                existing["supabaseIds"].append(item["id"])
            existing["id"] = item["id"]
        if not existing.get("variant_id") and variant_id:
            existing["variant_id"] = variant_id

    return list(merged.values())


class CartService:
    """Cart operations for a signed-in customer."""

    def __init__(self, client: Client):
        self.client = client
        self.orders = OrderRepository(client)

    # =========================================================================
    # CUSTOMER & CART
    # =========================================================================

    def link_or_create_customer(
        self,
        user_id: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        full_name: Optional[str] = None,
        dni: Optional[str] = None,
    ) -> dict:
        """
        Link the signed-in user to an existing customer, or create one.

        Returns:
            {"action": "linked" | "created" | "already_linked",
             "customer_id": ..., "match_type": ...}
        """
        result = call_rpc(
            self.client,
            procedures.LINK_OR_CREATE_CUSTOMER,
            {
                "p_user_id": user_id,
                "p_email": email,
                "p_phone": phone,
                "p_full_name": full_name,
                "p_dni": dni,
            },
        )
        if not result:
            raise ValidationError("Customer link returned no result")

        action = result.get("action")
        if action == "linked":
            console.print(
                f"[green]✓ Customer linked by {result.get('match_type')}: "
                f"{result.get('customer_id')}[/green]"
            )
        elif action == "created":
            console.print(f"[green]✓ Customer created: {result.get('customer_id')}[/green]")
        else:
            console.print(f"[dim]Customer already linked: {result.get('customer_id')}[/dim]")
        return result

    def open_cart_id(self, customer_id: str) -> Optional[str]:
        result = (
            self.client.table("carts")
            .select("id, created_at")
            .eq("customer_id", customer_id)
            .eq("status", CART_OPEN)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0]["id"] if result.data else None

    def get_or_create_open_cart(self, customer_id: str) -> str:
        """Id of the customer's open cart, creating one if needed."""
        cart_id = self.open_cart_id(customer_id)
        if cart_id:
            return cart_id

        result = (
            self.client.table("carts")
            .insert(
                {
                    "customer_id": customer_id,
                    "status": CART_OPEN,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .execute()
        )
        return result.data[0]["id"]

    def cart_items(self, customer_id: str) -> list[dict]:
        """Lines of the open cart, merged per article, color and size."""
        cart_id = self.open_cart_id(customer_id)
        if not cart_id:
            return []
        rows = self.client.table("cart_items").select("*").eq("cart_id", cart_id).execute().data or []
        return normalize_cart_items(
            [
                {
                    "id": row.get("id"),
                    "articulo": row.get("product_name"),
                    "color": row.get("color"),
                    "talle": row.get("size"),
                    "cantidad": row.get("quantity"),
                    "precio": row.get("price_snapshot"),
                    "imagen": row.get("imagen"),
                    "descripcion": None,
                    "variant_id": row.get("variant_id"),
                }
                for row in rows
            ]
        )

    # =========================================================================
    # VARIANTS
    # =========================================================================

    def fetch_variant_info(
        self,
        article: str,
        color: str,
        size: str,
        variant_id: Optional[str] = None,
    ) -> Optional[VariantInfo]:
        """
        Stock of the variant behind a cart line.

        Looks the variant up by id when known, otherwise by product name
        (case-insensitive), color (case-insensitive) and exact size.
        """
        article = (article or "").strip()
        color = (color or "").strip()
        size = (size or "").strip()
        if not article or not color or not size:
            return None

        if variant_id:
            rows = (
                self.client.table("product_variants")
                .select(VARIANT_COLUMNS)
                .eq("id", variant_id)
                .limit(1)
                .execute()
            ).data
            if rows:
                return VariantInfo.from_row(rows[0])

        products = (
            self.client.table("products").select("id").ilike("name", article).limit(1).execute()
        ).data
        if not products:
            console.print(f"[yellow]Product not found: {article}[/yellow]")
            return None

        rows = (
            self.client.table("product_variants")
            .select(VARIANT_COLUMNS)
            .eq("product_id", products[0]["id"])
            .ilike("color", color)
            .eq("size", size)
            .limit(1)
            .execute()
        ).data
        if not rows:
            console.print(f"[yellow]Variant not found: {article} ({color} / {size})[/yellow]")
            return None
        return VariantInfo.from_row(rows[0])

    def primary_image(self, article: str, color: str) -> Optional[str]:
        rows = (
            self.client.table("catalog_public_view")
            .select('"Imagen Principal","Imagen 1","Imagen 2"')
            .eq("Articulo", article)
            .eq("Color", color)
            .limit(1)
            .execute()
        ).data
        if not rows:
            return None
        row = rows[0]
        return row.get("Imagen Principal") or row.get("Imagen 1") or row.get("Imagen 2") or None

    # =========================================================================
    # ADD / REMOVE
    # =========================================================================

    def _existing_rows(self, cart_id: str, variant: VariantInfo, line: dict) -> list[dict]:
        rows = (
            self.client.table("cart_items")
            .select("id, quantity")
            .eq("cart_id", cart_id)
            .eq("variant_id", variant.id)
            .execute()
        ).data or []
        if rows or line.get("variant_id"):
            return rows

        # Lines saved before variants were tracked
        return (
            self.client.table("cart_items")
            .select("id, quantity")
            .eq("cart_id", cart_id)
            .eq("product_name", line["articulo"])
            .eq("color", line["color"])
            .eq("size", line["talle"])
            .execute()
        ).data or []

    def add_item(self, customer_id: str, product: dict) -> dict:
        """
        Add units of a product to the customer's open cart.

        The requested quantity is added to whatever the cart already holds
        for the variant and the total is capped at the available stock.
        Duplicate rows for the same variant are collapsed into one.

        Args:
            customer_id: Owner of the cart
            product: articulo, color, talle, cantidad, precio, imagen, variant_id

        Returns:
            {"cart_id", "variant_id", "quantity", "added", "limited"}

        Raises:
            ValidationError: the variant is unknown, sold out, or the request
                exceeds what is available
        """
        article = (product.get("articulo") or "").strip()
        color = product.get("color") or DEFAULT_OPTION
        size = product.get("talle") or DEFAULT_OPTION
        quantity = int(_number(product.get("cantidad")) or 1)
        price = _number(product.get("precio"))

        variant = self.fetch_variant_info(article, color, size, product.get("variant_id"))
        if variant is None:
            raise ValidationError(f"No stock found for {article} ({color} / {size})")
        if variant.available <= 0:
            raise ValidationError(f"{article} ({color} / {size}) is sold out")
        if quantity > variant.available:
            raise ValidationError(
                f"Only {variant.available} unit(s) of {article} ({color} / {size}) available"
            )

        cart_id = self.get_or_create_open_cart(customer_id)
        line = {"articulo": article, "color": color, "talle": size, "variant_id": product.get("variant_id")}
        rows = self._existing_rows(cart_id, variant, line)
        current = sum(int(_number(r.get("quantity"))) for r in rows)

        max_allowed = current + max(0, variant.available - current)
        if max_allowed <= current:
            raise ValidationError(
                f"No more stock for {article} ({color} / {size}); "
                f"{current} unit(s) already in the cart"
            )

        final_total = min(current + quantity, max_allowed)
        added = final_total - current
        image = product.get("imagen") or self.primary_image(article, color)
        price_to_use = price if price > 0 else variant.price

        if rows:
            primary, duplicates = rows[0], rows[1:]
            self.client.table("cart_items").update(
                {
                    "quantity": final_total,
                    "qty": final_total,
                    "price_snapshot": price_to_use or None,
                    "variant_id": variant.id,
                    "imagen": image or None,
                }
            ).eq("id", primary["id"]).execute()
            duplicate_ids = [d["id"] for d in duplicates if d.get("id")]
            if duplicate_ids:
                self.client.table("cart_items").delete().in_("id", duplicate_ids).execute()
        else:
            self.client.table("cart_items").insert(
                {
                    "cart_id": cart_id,
                    "product_name": article,
                    "color": color,
                    "size": size,
                    "quantity": final_total,
                    "qty": final_total,
                    "price_snapshot": price_to_use,
                    "status": "reserved",
                    "imagen": image or None,
                    "variant_id": variant.id,
                }
            ).execute()

        if added < quantity:
            console.print(
                f"[yellow]Limited stock: added {added} of {quantity} (max {max_allowed})[/yellow]"
            )
        return {
            "cart_id": cart_id,
            "variant_id": variant.id,
            "quantity": final_total,
            "added": added,
            "limited": added < quantity,
        }

    def remove_line(self, line: dict) -> int:
        """Delete every row merged into a cart line. Returns rows deleted."""
        ids = line.get("supabaseIds") or ([line["id"]] if line.get("id") else [])
        if not ids:
            return 0
        self.client.table("cart_items").delete().in_("id", ids).execute()
        return len(ids)

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    def stock_check(self, lines: list[dict]) -> list[dict]:
        """
        Annotate cart lines with their live stock.

        A line is out of stock when its quantity exceeds what is available.
        """
        checked = []
        for line in lines:
            variant = self.fetch_variant_info(
                line.get("articulo"), line.get("color"), line.get("talle"), line.get("variant_id")
            )
            quantity = int(_number(line.get("cantidad")))
            available = variant.available if variant else 0
            remaining = max(0, available - quantity)
            checked.append(
                {
                    **line,
                    "realAvailableStock": available,
                    "remainingStock": remaining,
                    "maxQty": quantity + remaining,
                    "isOutOfStock": quantity > available,
                }
            )
        return checked

    def checkout(self, customer_id: str):
        """
        Turn the open cart into an order.

        Raises:
            ValidationError: some line is out of stock or the cart is empty
        """
        lines = self.stock_check(self.cart_items(customer_id))
        if not lines:
            raise ValidationError("The cart is empty")
        sold_out = [line for line in lines if line["isOutOfStock"]]
        if sold_out:
            names = ", ".join(str(line.get("articulo")) for line in sold_out)
            raise ValidationError(f"Remove out-of-stock products before checkout: {names}")
        return call_rpc(self.client, procedures.CHECKOUT_CART)

    # =========================================================================
    # ORDER ITEMS (client side)
    # =========================================================================

    def cancel_order_item(self, item_id: str) -> dict:
        """
        Cancel an item of one of the customer's orders.

        Missing items are deleted outright; anything else goes through the
        cancel procedure, which notifies the admins when the item had already
        been picked. An order left without items is deleted.

        Returns:
            {"was_picked": bool, "order_deleted": bool}
        """
        item = self.orders.get_item(item_id)
        order_id = item.get("order_id")

        if item.get("status") == ITEM_MISSING:
            self.orders.remove_missing_item(item_id)
            was_picked = False
        else:
            data = call_rpc(self.client, procedures.CANCEL_ORDER_ITEM, {"p_item_id": item_id})
            was_picked = bool(data and data.get("was_picked"))

        deleted = self.orders.delete_order_if_empty(order_id) if order_id else False
        return {"was_picked": was_picked, "order_deleted": deleted}
