"""
Realtime refresh trigger for the orders board.

Subscribes to Postgres changes on the orders and order_items tables. Change
payloads are not applied incrementally: any event schedules a full reload,
and the board's reload tickets drop results that arrive out of order.

Usage:
    client = await create_async_backend()
    watcher = OrdersWatcher(client, on_change=board.reload)
    await watcher.start()
    ...
    await watcher.stop()
"""

import asyncio
from typing import Callable, Optional

from rich.console import Console
from supabase import AsyncClient

from config.settings import config

console = Console()


class OrdersWatcher:
    """Runs a callback whenever an order or order item changes."""

    def __init__(
        self,
        client: AsyncClient,
        on_change: Callable[[], object],
        channel_name: Optional[str] = None,
        tables: Optional[tuple[str, ...]] = None,
    ):
        """
        Args:
            client: Async Supabase client (realtime needs the async client)
            on_change: Blocking callable run in a worker thread on each event
            channel_name: Realtime channel name
            tables: Tables in the public schema to listen to
        """
        self.client = client
        self.on_change = on_change
        self.channel_name = channel_name or config.orders.realtime_channel
        self.tables = tables or config.orders.realtime_tables
        self.events_received = 0

        self._channel = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._channel is not None

    async def start(self) -> None:
        """Open the channel and subscribe to every configured table."""
        if self._channel is not None:
            return

        self._loop = asyncio.get_running_loop()
        channel = self.client.channel(self.channel_name)
        for table in self.tables:
            channel = channel.on_postgres_changes(
                "*", schema="public", table=table, callback=self._handle_change
            )
        await channel.subscribe(self._on_subscribe)
        self._channel = channel
        console.print(
            f"[green]✓ Listening for changes on {', '.join(self.tables)}[/green]"
        )

    async def stop(self) -> None:
        """Unsubscribe and wait for reloads already in flight."""
        if self._channel is None:
            return
        channel, self._channel = self._channel, None
        await self.client.remove_channel(channel)
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        console.print("[dim]Realtime channel closed[/dim]")

    def _on_subscribe(self, status, err=None) -> None:
        if err:
            console.print(f"[red]Realtime subscription error: {err}[/red]")
        else:
            console.print(f"[dim]Realtime channel {self.channel_name}: {status}[/dim]")

    def _handle_change(self, payload: dict) -> None:
        self.events_received += 1
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        table = data.get("table", "?") if isinstance(data, dict) else "?"
        console.print(f"[dim]Change on {table}, reloading orders[/dim]")
        self.schedule_reload()

    def schedule_reload(self) -> None:
        """Run on_change in a worker thread without blocking the event loop."""
        if self._loop is None:
            self.on_change()
            return
        task = self._loop.create_task(self._reload())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _reload(self) -> None:
        try:
            await asyncio.to_thread(self.on_change)
        except Exception as e:
            console.print(f"[red]Reload after change failed: {e}[/red]")
