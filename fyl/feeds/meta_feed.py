"""
Meta (Facebook/Instagram) commerce catalog feed.

Rows come ready-made from the get_meta_feed procedure; this module adds the
product link, computes quality metrics and renders CSV (for Meta) or JSON
(for the admin preview).
"""

import csv
import hmac
import io
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote

from rich.console import Console
from supabase import Client

from config.settings import config
from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import FYLError, PermissionDeniedError
from fyl.models import FeedItem

console = Console()

FEED_HEADERS = (
    "id",
    "item_group_id",
    "title",
    "description",
    "price",
    "availability",
    "condition",
    "brand",
    "link",
    "image_link",
    "color",
    "size",
)

PRICE_PATTERN = re.compile(r"\d+\.\d{2}\s+ARS")
PLACEHOLDER_MARKERS = ("/v1/meta-placeholder", "meta-placeholder.jpg")
OUT_OF_STOCK = "out of stock"

# Characters encodeURIComponent leaves alone
URI_SAFE = "-_.!~*'()"


class FeedDataError(FYLError):
    """The feed procedure returned something other than a list of rows."""


# =============================================================================
# ROWS & METRICS
# =============================================================================


def product_link(base_url: str, item_id) -> str:
    """Storefront URL that opens the product modal for a SKU."""
    return f"{base_url.rstrip('/')}/index.html?sku={quote(str(item_id), safe=URI_SAFE)}"


def with_links(rows: list[dict], base_url: str) -> list[dict]:
    return [{**row, "link": product_link(base_url, row.get("id"))} for row in rows]


def feed_metrics(rows: list[dict]) -> dict:
    """Catalog quality counters shown in the admin preview."""

    def image(row):
        return row.get("image_link") or ""

    return {
        "total": len(rows),
        "sin_imagen": sum(1 for r in rows if not image(r) or "placeholder" in image(r)),
        "sin_precio": sum(
            1 for r in rows if not r.get("price") or not PRICE_PATTERN.search(str(r["price"]))
        ),
        "inactivas": sum(1 for r in rows if r.get("availability") == OUT_OF_STOCK),
        "con_placeholder": sum(
            1 for r in rows if any(marker in image(r) for marker in PLACEHOLDER_MARKERS)
        ),
        "sin_descripcion": sum(1 for r in rows if not str(r.get("description") or "").strip()),
    }


def to_csv(rows: list[dict]) -> str:
    """
    Render feed rows as CSV with the Meta column set.

    Lines are joined with "\\n" and there is no trailing newline, except for
    an empty feed which is just the header line.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(FEED_HEADERS)
    if not rows:
        return buf.getvalue()
    for row in rows:
        item = FeedItem(**{key: row.get(key) for key in FEED_HEADERS})
        writer.writerow([getattr(item, key) for key in FEED_HEADERS])
    return buf.getvalue()[: -len("\n")]


# =============================================================================
# SERVICE
# =============================================================================


@dataclass
class FeedResult:
    """Rendered feed plus the metadata the HTTP layer needs."""

    format: str
    rows: list = field(default_factory=list)
    metrics: dict = field(default_factory=dict)
    total: int = 0
    body: Optional[str] = None

    def as_json(self) -> dict:
        return {
            "data": self.rows,
            "metrics": self.metrics,
            "total": self.total,
            "returned": len(self.rows),
        }


class MetaFeedService:
    """Builds the Meta catalog feed from the database."""

    def __init__(
        self,
        client: Client,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
    ):
        self.client = client
        self.base_url = base_url or config.feed.base_url
        self.token = token if token is not None else config.feed.token

    def authorize(self, token: Optional[str]) -> None:
        """
        Check the feed token. Without a configured token the feed is public.

        Raises:
            PermissionDeniedError: a token is configured and does not match
        """
        if not self.token:
            return
        if not token or not hmac.compare_digest(token.encode(), self.token.encode()):
            raise PermissionDeniedError("Token inválido")

    def fetch_rows(self) -> list[dict]:
        data = call_rpc(self.client, procedures.META_FEED)
        if not isinstance(data, list):
            raise FeedDataError("No se obtuvieron datos")
        return with_links(data, self.base_url)

    def build(self, format: str = "csv", limit: Optional[int] = None) -> FeedResult:
        """
        Build the feed.

        Args:
            format: "csv" (default) or "json"
            limit: Return only the first N rows (metrics still cover every row)

        Returns:
            FeedResult; body holds the CSV text for the csv format
        """
        rows = self.fetch_rows()
        selected = rows[:limit] if limit is not None and limit > 0 else rows
        result = FeedResult(
            format=format or "csv",
            rows=selected,
            metrics=feed_metrics(rows),
            total=len(rows),
        )
        if result.format != "json":
            result.body = to_csv(selected)

        console.print(
            f"[green]✓ Feed built: {len(selected)} of {len(rows)} rows[/green] "
            f"[dim]({result.metrics['sin_imagen']} without image, "
            f"{result.metrics['sin_precio']} without price)[/dim]"
        )
        return result
