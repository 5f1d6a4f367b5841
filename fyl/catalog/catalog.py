"""
Public catalog: category listings grouped per article, with live stock.

Rows come from catalog_public_view, one row per article and color, with
spreadsheet-style column names (Articulo, Color, Numeracion, Mostrar, ...).
They are grouped into one product per article holding a list of color
details, and then enriched with per-size stock from product_variants and
variant_warehouse_stock.
"""

from datetime import date, datetime, timedelta
from typing import Optional

from postgrest.exceptions import APIError
from rich.console import Console
from supabase import Client

from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import RpcError

console = Console()

CATALOG_VIEW = "catalog_public_view"

CATEGORIES = ("Calzado", "Ropa", "Lenceria", "Marroquineria")
NEWS = "Novedades"
OFFERS = "Ofertas"
ALL = "all"
SPECIAL_CATEGORIES = frozenset({NEWS, OFFERS, ALL})

NEWS_WINDOW_DAYS = 7
FALLBACK_DATE = datetime(2000, 1, 1)
DEFAULT_COLOR = "Sin color"
DEFAULT_SIZE = "Único"

_TRUTHY = ("TRUE", True, "true", 1)


def truthy(value) -> bool:
    """Catalog flags arrive as booleans, "TRUE"/"true" strings or 1."""
    # 1 == True in Python, so compare by type as well
    return any(value == t and type(value) is type(t) for t in _TRUTHY)


def parse_fecha(value: Optional[str]) -> datetime:
    """Parse a d/m/Y date; anything unparseable sorts as 2000-01-01."""
    if not value:
        return FALLBACK_DATE
    try:
        day, month, year = (int(part) for part in str(value).split("/"))
        return datetime(year, month, day)
    except (TypeError, ValueError):
        return FALLBACK_DATE


def is_new_arrival(row: dict, today: Optional[date] = None) -> bool:
    today = today or date.today()
    cutoff = datetime.combine(today - timedelta(days=NEWS_WINDOW_DAYS), datetime.min.time())
    return (
        truthy(row.get("Mostrar"))
        and bool(row.get("FechaIngreso"))
        and parse_fecha(row.get("FechaIngreso")) >= cutoff
    )


def is_on_offer(row: dict) -> bool:
    return truthy(row.get("Mostrar")) and truthy(row.get("Oferta"))


# =============================================================================
# GROUPING
# =============================================================================


def _offer_active(row: dict) -> bool:
    value = row.get("OfertaActiva")
    return value is True or value == "true"


def _color_detail(row: dict) -> dict:
    sizes = row.get("Numeracion")
    return {
        "color": row.get("Color") or DEFAULT_COLOR,
        "talles": [s.strip() for s in sizes.split(",")] if sizes else [DEFAULT_SIZE],
        "images": [
            row[key]
            for key in row
            if key.lower().startswith("imagen") and row[key]
        ],
        "OfertaActiva": _offer_active(row),
        "PrecioOferta": row.get("PrecioOferta") or "",
        "PromoActiva": row.get("PromoActiva") or "",
    }


def group_by_article(rows: list[dict]) -> list[dict]:
    """
    Group catalog rows into one product per article, newest first.

    The product-level offer price prefers the color whose image is the
    article's main image; otherwise the first offer found is used.
    """
    ordered = sorted(rows, key=lambda r: parse_fecha(r.get("FechaIngreso")), reverse=True)
    products: dict[str, dict] = {}

    for row in ordered:
        article = (row.get("Articulo") or "").strip()
        if not article:
            continue

        product = products.get(article)
        if product is None:
            product = products[article] = {
                "Articulo": article,
                "Descripcion": row.get("Descripcion") or "",
                "Precio": row.get("Precio") or "",
                "VariantePrincipal": row.get("Imagen Principal"),
                "Oferta": row.get("Oferta") or "",
                "FechaIngreso": row.get("FechaIngreso") or "",
                "Filtro1": row.get("Filtro1") or "",
                "Filtro2": row.get("Filtro2") or "",
                "Filtro3": row.get("Filtro3") or "",
                "OfertaActiva": False,
                "PrecioOferta": "",
                "PromoActiva": "",
                "DetalleColor": [],
            }

        if _offer_active(row):
            product["OfertaActiva"] = True
            main_image = row.get("Imagen Principal")
            if main_image and main_image == product["VariantePrincipal"]:
                product["PrecioOferta"] = row.get("PrecioOferta") or product["PrecioOferta"]
            elif not product["PrecioOferta"]:
                product["PrecioOferta"] = row.get("PrecioOferta") or ""

        if row.get("PromoActiva"):
            product["PromoActiva"] = row["PromoActiva"]

        product["DetalleColor"].append(_color_detail(row))

    return list(products.values())


def default_sku(product: dict, color: Optional[str] = None) -> Optional[str]:
    """
    SKU to open a product with: the first size in stock, else the first SKU.

    Only the given color is searched when one is passed.
    """
    wanted = (color or "").strip().lower()
    for detail in product.get("DetalleColor") or []:
        if color is not None and (detail.get("color") or "").strip().lower() != wanted:
            continue
        sizes = detail.get("variantDetails") or []
        in_stock = next(
            (s for s in sizes if s.get("sku") and (s.get("available") is None or s["available"] > 0)),
            None,
        )
        if in_stock:
            return in_stock["sku"]
        first = next((s for s in sizes if s.get("sku")), None)
        if first:
            return first["sku"]
    return None


# =============================================================================
# SERVICE
# =============================================================================


class CatalogService:
    """Loads catalog categories and the stock behind each size."""

    def __init__(self, client: Client):
        self.client = client
        self.sku_index: dict[str, dict] = {}

    def load_rows(self, category: str, today: Optional[date] = None) -> list[dict]:
        """
        Visible catalog rows for a category.

        Novedades and Ofertas are computed over every category; "all"
        returns every row unfiltered.
        """
        query = self.client.table(CATALOG_VIEW).select("*")
        if category in SPECIAL_CATEGORIES:
            rows = query.execute().data or []
            if category == NEWS:
                return [r for r in rows if is_new_arrival(r, today)]
            if category == OFFERS:
                return [r for r in rows if is_on_offer(r)]
            return rows

        rows = query.eq("Categoria", category).execute().data or []
        visible = [r for r in rows if truthy(r.get("Mostrar"))]
        if rows and not visible:
            console.print(
                f"[yellow]Warning: {len(rows)} rows in '{category}' but none marked Mostrar[/yellow]"
            )
        return visible

    def load_category(self, category: str, today: Optional[date] = None) -> list[dict]:
        """Grouped, stock-enriched products for a category."""
        products = group_by_article(self.load_rows(category, today))
        self.enrich_with_stock(products)
        return products

    def _variant_stock(self, variant_ids: list[str]) -> dict[str, int]:
        if not variant_ids:
            return {}
        rows = (
            self.client.table("variant_warehouse_stock")
            .select("variant_id, stock_qty")
            .in_("variant_id", variant_ids)
            .execute()
        ).data or []
        totals: dict[str, int] = {}
        for row in rows:
            totals[row["variant_id"]] = totals.get(row["variant_id"], 0) + int(row.get("stock_qty") or 0)
        return totals

    def enrich_with_stock(self, products: list[dict]) -> None:
        """
        Attach variantDetails (stock per size) to every color and rebuild the
        SKU index. Stock is summed over all warehouses; inactive variants
        count as zero stock.
        """
        self.sku_index = {}
        names = sorted({(p.get("Articulo") or "").strip() for p in products} - {""})
        if not names:
            return

        try:
            result = (
                self.client.table("products")
                .select("name, product_variants(id, color, size, reserved_qty, active, sku)")
                .in_("name", names)
                .execute()
            )
        except APIError as e:
            console.print(f"[yellow]Warning: could not load variants: {e.message}[/yellow]")
            return

        variants_by_product: dict[str, list] = {}
        variant_ids = []
        for row in result.data or []:
            variants = row.get("product_variants") or []
            variant_ids.extend(v["id"] for v in variants if v.get("id"))
            variants_by_product[(row.get("name") or "").strip().lower()] = variants

        stock = self._variant_stock(variant_ids)

        for product in products:
            variants = variants_by_product.get((product.get("Articulo") or "").strip().lower())
            if variants is None:
                continue
            for detail in product.get("DetalleColor") or []:
                detail["variantDetails"] = [
                    self._size_detail(product, detail, size, variants, stock)
                    for size in detail.get("talles") or []
                ]

    def _size_detail(
        self, product: dict, detail: dict, size: str, variants: list[dict], stock: dict
    ) -> dict:
        color = (detail.get("color") or "").strip().lower()
        variant = next(
            (
                v
                for v in variants
                if (v.get("color") or "").strip().lower() == color
                and (v.get("size") or "").strip().lower() == (size or "").strip().lower()
            ),
            None,
        ) or {}

        is_active = variant.get("active") is not False
        on_hand = stock.get(variant.get("id"), 0) if is_active and variant.get("id") else 0
        reserved = int(variant.get("reserved_qty") or 0) if is_active else 0
        available = max(0, on_hand - reserved)

        sku = (variant.get("sku") or "").strip()
        if is_active and sku:
            images = detail.get("images") or []
            self.sku_index[sku] = {
                "producto": product,
                "color": detail.get("color") or variant.get("color") or "",
                "talle": size,
                "variant_id": variant.get("id"),
                "available": available,
                "image": images[0] if images else product.get("VariantePrincipal") or "",
            }

        return {
            "talle": size,
            "stock": on_hand,
            "reserved": reserved,
            "available": available,
            "variant_id": variant.get("id"),
            "sku": variant.get("sku"),
        }

    def find_by_sku(self, sku: str) -> Optional[dict]:
        """
        Resolve a SKU from the loaded index, or straight from the database.

        The database lookup builds a minimal product with a single color and
        size so links to products outside the loaded category still open.
        """
        sku = (sku or "").strip()
        if not sku:
            return None
        if sku in self.sku_index:
            return self.sku_index[sku]

        variant = next(
            iter(
                self.client.table("product_variants")
                .select("id, color, size, reserved_qty, product_id")
                .eq("sku", sku)
                .eq("active", True)
                .limit(1)
                .execute()
                .data
                or []
            ),
            None,
        )
        if not variant or not variant.get("product_id"):
            return None

        product_row = next(
            iter(
                self.client.table("products")
                .select("*")
                .eq("id", variant["product_id"])
                .limit(1)
                .execute()
                .data
                or []
            ),
            None,
        )
        if not product_row:
            return None

        on_hand = self._variant_stock([variant["id"]]).get(variant["id"], 0)
        reserved = int(variant.get("reserved_qty") or 0)
        available = max(0, on_hand - reserved)

        images = (
            self.client.table("variant_images")
            .select("image_url")
            .eq("variant_id", variant["id"])
            .order("position")
            .limit(1)
            .execute()
        ).data or []
        image = images[0].get("image_url") if images else ""

        product = {
            "Articulo": product_row.get("name") or "",
            "Descripcion": product_row.get("description") or "",
            "VariantePrincipal": image,
            "DetalleColor": [
                {
                    "color": variant.get("color") or "",
                    "images": [image] if image else [],
                    "variantDetails": [
                        {
                            "talle": variant.get("size") or "",
                            "sku": sku,
                            "variant_id": variant["id"],
                            "available": available,
                            "stock": on_hand,
                            "reserved": reserved,
                        }
                    ],
                }
            ],
        }
        return {
            "producto": product,
            "color": variant.get("color") or "",
            "talle": variant.get("size") or "",
            "variant_id": variant["id"],
            "available": available,
            "image": image,
        }

    def types_by_category(self, category: str) -> list[dict]:
        """Product types for a category (empty when the lookup fails)."""
        try:
            return call_rpc(self.client, procedures.TYPES_BY_CATEGORY, {"cat": category}) or []
        except RpcError:
            return []

    def attributes_by_type(self, type_id: str) -> list[dict]:
        """Tag attributes defined for a product type (empty when the lookup fails)."""
        try:
            return call_rpc(self.client, procedures.ATTRIBUTES_BY_TYPE, {"type_id": type_id}) or []
        except RpcError:
            return []
