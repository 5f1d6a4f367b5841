"""
Configuration settings for the FYL back-office.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent

# Load .env file from project root
load_dotenv(PROJECT_ROOT / ".env")


@dataclass
class SupabaseConfig:
    """Configuration for the hosted Supabase backend."""

    url: Optional[str] = field(default_factory=lambda: os.getenv("SUPABASE_URL"))
    key: Optional[str] = field(default_factory=lambda: os.getenv("SUPABASE_KEY"))

    # Only the import scripts and the feed need to bypass row level security
    service_role_key: Optional[str] = field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    )

    # Polling for the shared client handle
    client_wait_attempts: int = 50
    client_wait_interval: float = 0.1  # seconds


@dataclass
class OrdersConfig:
    """Configuration for the orders board."""

    tabs: list = field(
        default_factory=lambda: [
            "active",
            "picked",
            "waiting",
            "closed",
            "cancelled",
            "all",
        ]
    )
    default_tab: str = "active"
    default_sort: str = "recent"

    # Search box is only shown on these tabs
    search_tabs: frozenset = frozenset({"picked", "closed"})

    # Realtime channel
    realtime_channel: str = "orders-changes"
    realtime_tables: tuple = ("orders", "order_items")

    # Seconds to wait before re-reading an order after marking it as returned
    return_recheck_delay: float = 1.0


@dataclass
class ImportConfig:
    """Configuration for the customer import scripts."""

    batch_size: int = 100
    batch_pause_seconds: float = 0.1
    preview_errors: int = 10
    sheets_timeout_seconds: float = 30.0


@dataclass
class FeedConfig:
    """Configuration for the Meta catalog feed."""

    base_url: str = field(
        default_factory=lambda: os.getenv("META_FEED_BASE_URL", "https://fylmoda.com.ar")
    )
    token: str = field(default_factory=lambda: os.getenv("META_FEED_TOKEN", ""))
    filename: str = "meta-feed.csv"
    allowed_origins: list = field(
        default_factory=lambda: [
            "http://localhost:5500",
            "https://fylmoda.com.ar",
            "https://www.fylmoda.com.ar",
        ]
    )


@dataclass
class AutoTagConfig:
    """Configuration for vision-based product tagging."""

    model: str = "gpt-4o-mini"
    max_tokens: int = 500
    temperature: float = 0.2
    default_confidence: float = 0.8
    max_highlights: int = 2


@dataclass
class PermissionsConfig:
    """Configuration for admin permission checks."""

    cache_ttl_seconds: float = 60.0


@dataclass
class LoggingConfig:
    """Configuration for console output."""

    # Show full item lists in listings
    verbose: bool = field(
        default_factory=lambda: os.getenv("FYL_VERBOSE", "").lower() in ("1", "true", "yes")
    )


@dataclass
class AppConfig:
    """Main configuration combining all settings."""

    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    orders: OrdersConfig = field(default_factory=OrdersConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    auto_tags: AutoTagConfig = field(default_factory=AutoTagConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Default configuration instance
config = AppConfig()
