#!/usr/bin/env python3
"""
FYL Back-office - Command Line

Operator tasks against the FYL Supabase backend: customer imports, the
orders board, daily sales, the Meta catalog feed and product auto-tagging.

Usage:
    python main.py --orders                     # Active orders
    python main.py --import-csv clientes.csv    # Bulk customer import
    python main.py --meta-feed meta-feed.csv    # Write the Meta catalog feed
"""
import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from rich.console import Console
from rich.table import Table

from config.settings import config
from fyl.errors import FYLError

console = Console()


class CustomHelpFormatter(argparse.RawDescriptionHelpFormatter):
    """Custom formatter that preserves formatting and adds width."""

    def __init__(self, prog):
        super().__init__(prog, max_help_position=40, width=100)


def parse_args(argv=None):
    """Parse command line arguments."""
    from fyl.orders.filters import BADGE_TABS, SORT_OPTIONS, TAB_ALL

    epilog = """
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
EXAMPLES
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
  Customers:
    python main.py --import-csv clientes.csv --dry-run   Validate only
    python main.py --import-sheet "https://docs.google.com/spreadsheets/d/..."

  Orders:
    python main.py --orders picked --search perez       Picked orders for a customer
    python main.py --orders all --sort name_az          Every order, by customer
    python main.py --badges                              Counts per tab
    python main.py --watch                               Live board (Ctrl+C to stop)

  Sales & shipments:
    python main.py --sales-summary 2026-10-19
    python main.py --sent-orders

  Catalog:
    python main.py --meta-feed feed.csv
    python main.py --meta-feed feed.json --format json --limit 20
    python main.py --auto-tag https://.../foto.jpg --name "Sandalia Lola" --category Calzado

━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
NOTES
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
  • Requires .env with SUPABASE_URL and SUPABASE_KEY
  • Imports and the feed use SUPABASE_SERVICE_ROLE_KEY
  • Auto-tagging needs OPENAI_API_KEY
  • The HTTP back-office (python backoffice.py) serves the same actions as JSON
"""

    parser = argparse.ArgumentParser(
        prog="python main.py",
        description="""
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
                              FYL BACK-OFFICE
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
Operator tools for the FYL store:
  • Customer imports from CSV or a public Google Sheet
  • Orders board listing, badges and live refresh
  • Daily sales totals and shipped orders
  • Meta catalog feed and AI product tags
""",
        epilog=epilog,
        formatter_class=CustomHelpFormatter,
    )

    import_group = parser.add_argument_group("Customer Import", "Bulk-create customers")
    import_group.add_argument(
        "--import-csv",
        type=str,
        metavar="FILE",
        help="Import customers from a CSV file (name, phone, city, province, address)",
    )
    import_group.add_argument(
        "--import-sheet",
        type=str,
        metavar="URL",
        help="Import customers from a public Google Sheet",
    )
    import_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate rows and report, without creating anything",
    )

    orders_group = parser.add_argument_group("Orders", "Orders board")
    orders_group.add_argument(
        "--orders",
        type=str,
        nargs="?",
        const=config.orders.default_tab,
        choices=list(BADGE_TABS) + [TAB_ALL],
        metavar="TAB",
        help=f"List orders of a tab (default: {config.orders.default_tab})",
    )
    orders_group.add_argument(
        "--search",
        type=str,
        metavar="TEXT",
        help="Filter by customer name (picked and closed tabs)",
    )
    orders_group.add_argument(
        "--sort",
        type=str,
        default=config.orders.default_sort,
        choices=list(SORT_OPTIONS),
        metavar="ORDER",
        help=f"Sort order: {', '.join(SORT_OPTIONS)} (default: {config.orders.default_sort})",
    )
    orders_group.add_argument(
        "--badges",
        action="store_true",
        help="Show the order count of every tab",
    )
    orders_group.add_argument(
        "--watch",
        action="store_true",
        help="Keep the board live, reloading on every order change",
    )
    orders_group.add_argument(
        "--payment-methods",
        action="store_true",
        help="List payment methods",
    )
    orders_group.add_argument(
        "--add-payment-method",
        type=str,
        metavar="NAME",
        help="Create a payment method",
    )

    sales_group = parser.add_argument_group("Sales & Shipments")
    sales_group.add_argument(
        "--sales-summary",
        type=str,
        nargs="?",
        const="today",
        metavar="DATE",
        help="Daily sales totals for a date (YYYY-MM-DD, default: today)",
    )
    sales_group.add_argument(
        "--sent-orders",
        action="store_true",
        help="Sent and returned orders grouped by customer",
    )

    feed_group = parser.add_argument_group("Catalog", "Meta feed and AI tags")
    feed_group.add_argument(
        "--meta-feed",
        type=str,
        metavar="OUT",
        help="Write the Meta catalog feed to a file",
    )
    feed_group.add_argument(
        "--format",
        type=str,
        default="csv",
        choices=["csv", "json"],
        help="Feed format (default: csv)",
    )
    feed_group.add_argument(
        "--limit",
        type=int,
        metavar="NUM",
        help="Only the first NUM feed rows",
    )
    feed_group.add_argument(
        "--auto-tag",
        type=str,
        metavar="IMAGE_URL",
        help="Infer product tags from an image",
    )
    feed_group.add_argument("--name", type=str, metavar="NAME", help="Product name for --auto-tag")
    feed_group.add_argument(
        "--category",
        type=str,
        default="Calzado",
        choices=["Calzado", "Ropa", "Otros"],
        help="Category hint for --auto-tag (default: Calzado)",
    )
    feed_group.add_argument(
        "--description", type=str, metavar="TEXT", help="Product description for --auto-tag"
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=config.logging.verbose,
        help="Show full item lists (or set FYL_VERBOSE=1)",
    )

    return parser.parse_args(argv)


# =============================================================================
# CUSTOMERS
# =============================================================================


async def import_customers(csv_path=None, sheet_url=None, dry_run=False) -> int:
    """Import customers from a CSV file or a Google Sheet."""
    from fyl.backend.client import create_backend
    from fyl.customers.importer import (
        CustomerImporter,
        fetch_sheet_csv,
        parse_customers_csv,
    )

    console.print("\n[bold cyan]Customer Import[/bold cyan]\n")

    if csv_path:
        path = Path(csv_path)
        if not path.exists():
            console.print(f"[red]File not found: {path}[/red]")
            return 1
        content = path.read_text(encoding="utf-8")
    else:
        content = await fetch_sheet_csv(sheet_url)

    rows = parse_customers_csv(content)
    if not rows:
        console.print("[yellow]The file has no customer rows[/yellow]")
        return 1

    client = None if dry_run else create_backend(service_role=True)
    summary = CustomerImporter(client).run(rows, dry_run=dry_run)
    if dry_run:
        console.print("[yellow]Dry run: nothing was written[/yellow]")
    return 0 if summary.valid and not summary.errors else 1


# =============================================================================
# ORDERS
# =============================================================================


def _orders_table(title: str, cards: list[dict], verbose: bool = False) -> Table:
    from fyl.orders.pricing import order_total
    from fyl.orders.status import (
        ORDER_STATUS_LABELS,
        customer_of,
        format_customer_display_name,
        item_label,
    )

    table = Table(title=title)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Customer")
    table.add_column("Status")
    table.add_column("Items", justify="right")
    table.add_column("Total", justify="right", style="green")
    table.add_column("Created", style="dim")

    for card in cards:
        items = card["visible_items"]
        if verbose:
            item_text = "\n".join(
                f"{i.get('quantity', 1)}x {i.get('product_name', '')} "
                f"{i.get('color') or ''} {i.get('size') or ''} [{item_label(i)}]"
                for i in items
            )
        else:
            item_text = str(len(items))
        table.add_row(
            str(card.get("order_number") or ""),
            format_customer_display_name(customer_of(card)),
            ORDER_STATUS_LABELS.get(card["display_state"], card["display_state"]),
            item_text,
            f"${order_total(card):,.0f}",
            (card.get("created_at") or "")[:16].replace("T", " "),
        )
    return table


def _badges_table(badges: dict) -> Table:
    table = Table(title="Orders per tab")
    table.add_column("Tab", style="cyan")
    table.add_column("Orders", justify="right")
    for tab, count in badges.items():
        table.add_row(tab, str(count))
    return table


def _build_board(args):
    from fyl.backend.client import create_backend
    from fyl.orders.board import OrderBoard
    from fyl.orders.repository import OrderRepository

    board = OrderBoard(OrderRepository(create_backend()))
    board.select_tab(args.orders or config.orders.default_tab)
    board.set_sort(args.sort)
    board.set_search(args.search)
    return board


def show_orders(args) -> int:
    board = _build_board(args)
    board.reload()

    if args.orders:
        cards = board.cards()
        console.print(_orders_table(f"Orders: {board.current_tab}", cards, args.verbose))
        console.print(f"[dim]{len(cards)} orders[/dim]")
    if args.badges:
        console.print(_badges_table(board.badges))
    return 0


async def watch_orders(args) -> int:
    """Print the board and reload it on every realtime change."""
    from fyl.backend.client import create_async_backend
    from fyl.orders.realtime import OrdersWatcher

    board = _build_board(args)

    def refresh():
        if board.reload():
            console.print(_orders_table(f"Orders: {board.current_tab}", board.cards(), args.verbose))
            console.print(_badges_table(board.badges))

    refresh()
    async_client = await create_async_backend()
    watcher = OrdersWatcher(async_client, on_change=refresh)
    await watcher.start()
    console.print("[dim]Watching for changes (Ctrl+C to stop)...[/dim]")
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        await watcher.stop()


def payment_methods(add_name=None) -> int:
    from fyl.backend.client import create_backend
    from fyl.orders.repository import OrderRepository

    repository = OrderRepository(create_backend())
    if add_name:
        repository.create_payment_method(add_name)

    table = Table(title="Payment methods")
    table.add_column("Name", style="cyan")
    for method in repository.list_payment_methods():
        table.add_row(method.get("name", ""))
    console.print(table)
    return 0


# =============================================================================
# SALES & SHIPMENTS
# =============================================================================


def sales_summary(day: str) -> int:
    from fyl.backend.client import create_backend
    from fyl.sales.daily_sales import DailySalesService

    sale_date = date.today() if day == "today" else date.fromisoformat(day)
    summary = DailySalesService(create_backend()).summary(sale_date)

    table = Table(title=f"Sales {sale_date.isoformat()}")
    table.add_column("Type", style="cyan")
    table.add_column("Sales", justify="right")
    table.add_column("Amount", justify="right", style="green")
    for sale_type in ("local", "envios"):
        table.add_row(
            sale_type,
            str(summary[sale_type]["sales"]),
            f"${float(summary[sale_type]['amount']):,.2f}",
        )
    table.add_row(
        "[bold]total[/bold]",
        str(summary["total_sales"]),
        f"${float(summary['total_amount']):,.2f}",
    )
    console.print(table)
    return 0


def sent_orders() -> int:
    from fyl.backend.client import create_backend
    from fyl.orders.status import ORDER_STATUS_LABELS
    from fyl.shipments.sent_orders import ShipmentsService

    customers = ShipmentsService(create_backend()).load_sent_orders()
    table = Table(title="Sent orders")
    table.add_column("Customer")
    table.add_column("City", style="dim")
    table.add_column("Orders", justify="right")
    table.add_column("Statuses")
    table.add_column("Last shipment", style="dim")
    for customer in customers:
        statuses = sorted({ORDER_STATUS_LABELS.get(o["status"], o["status"]) for o in customer["orders"]})
        table.add_row(
            customer.get("full_name") or "",
            customer.get("city") or "",
            str(len(customer["orders"])),
            ", ".join(statuses),
            (customer.get("latestOrderDate") or "")[:10],
        )
    console.print(table)
    return 0


# =============================================================================
# CATALOG
# =============================================================================


def write_meta_feed(out: str, format: str, limit=None) -> int:
    from fyl.backend.client import create_backend
    from fyl.feeds.meta_feed import MetaFeedService

    result = MetaFeedService(create_backend(service_role=True)).build(format=format, limit=limit)
    path = Path(out)
    if format == "json":
        path.write_text(json.dumps(result.as_json(), ensure_ascii=False, indent=2), encoding="utf-8")
    else:
        path.write_text(result.body, encoding="utf-8")

    console.print(f"[green]✓ Wrote {result.format} feed to {path}[/green]")
    for name, value in result.metrics.items():
        console.print(f"  [dim]{name}:[/dim] {value}")
    return 0


async def auto_tag(image_url: str, name: str, category: str, description=None) -> int:
    from fyl.ai import AutoTagger
    from fyl.models import AutoTagRequest

    if not name:
        console.print("[red]--name is required with --auto-tag[/red]")
        return 1

    request = AutoTagRequest(
        image_url=image_url,
        product_name=name,
        category_hint=category,
        description=description,
    )
    async with AutoTagger() as tagger:
        result = await tagger.tag(request)
    console.print_json(result.model_dump_json())
    return 0


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    try:
        if args.import_csv or args.import_sheet:
            return asyncio.run(
                import_customers(args.import_csv, args.import_sheet, args.dry_run)
            )

        if args.watch:
            return asyncio.run(watch_orders(args))

        if args.orders or args.badges:
            return show_orders(args)

        if args.payment_methods or args.add_payment_method:
            return payment_methods(args.add_payment_method)

        if args.sales_summary:
            return sales_summary(args.sales_summary)

        if args.sent_orders:
            return sent_orders()

        if args.meta_feed:
            return write_meta_feed(args.meta_feed, args.format, args.limit)

        if args.auto_tag:
            return asyncio.run(
                auto_tag(args.auto_tag, args.name, args.category, args.description)
            )

        console.print("[yellow]Nothing to do. Run with --help to see the options.[/yellow]")
        return 0

    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled by user[/yellow]")
        return 130
    except (FYLError, ValueError) as e:
        console.print(f"\n[bold red]Error: {e}[/bold red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
