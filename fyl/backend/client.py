"""
Supabase client handle shared by the back-office.

Every table read and remote procedure in this project goes through a
supabase-py client. The client is created once and parked in a
ClientHandle; callers that start before it is ready poll the handle for a
short while instead of failing straight away.

Usage:
    from fyl.backend.client import ClientHandle, call_rpc, wait_for_client

    handle = ClientHandle(factory=create_backend)
    client = wait_for_client(handle)
    rows = call_rpc(client, "get_meta_feed")
"""

import asyncio
import os
import threading
import time
from typing import Any, Callable, Optional

from postgrest.exceptions import APIError
from rich.console import Console
from supabase import AsyncClient, Client, acreate_client, create_client

from config.settings import config
from fyl.errors import (
    UNDEFINED_FUNCTION_CODE,
    BackendUnavailableError,
    RpcError,
    RpcMissingError,
)

console = Console()


def _resolve_credentials(
    url: Optional[str], key: Optional[str], service_role: bool
) -> tuple[str, str]:
    supabase_url = url or config.supabase.url or os.getenv("SUPABASE_URL")
    if service_role:
        supabase_key = (
            key
            or config.supabase.service_role_key
            or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        )
        key_name = "SUPABASE_SERVICE_ROLE_KEY"
    else:
        supabase_key = key or config.supabase.key or os.getenv("SUPABASE_KEY")
        key_name = "SUPABASE_KEY"

    if not supabase_url or not supabase_key:
        raise ValueError(
            f"Supabase credentials required. Set SUPABASE_URL and {key_name} "
            "environment variables or pass them explicitly."
        )
    return supabase_url, supabase_key


def create_backend(
    url: Optional[str] = None,
    key: Optional[str] = None,
    service_role: bool = False,
) -> Client:
    """
    Create a synchronous Supabase client.

    Args:
        url: Supabase project URL (or set SUPABASE_URL env var)
        key: Supabase key (or set SUPABASE_KEY env var)
        service_role: Use SUPABASE_SERVICE_ROLE_KEY, which bypasses row level
            security. Only the import scripts and the feed need it.

    Returns:
        Connected supabase Client
    """
    supabase_url, supabase_key = _resolve_credentials(url, key, service_role)
    return create_client(supabase_url, supabase_key)


async def create_async_backend(
    url: Optional[str] = None,
    key: Optional[str] = None,
) -> AsyncClient:
    """Create an async Supabase client (needed for realtime channels)."""
    supabase_url, supabase_key = _resolve_credentials(url, key, False)
    return await acreate_client(supabase_url, supabase_key)


class ClientHandle:
    """
    Lazily populated holder for the shared Supabase client.

    The client may be set from another thread (the HTTP service connects in
    the background while it starts serving). The optional factory is the
    last resort when nobody sets the client in time.
    """

    def __init__(self, factory: Optional[Callable[[], Client]] = None):
        self._client: Optional[Client] = None
        self._factory = factory
        self._lock = threading.Lock()

    @property
    def client(self) -> Optional[Client]:
        return self._client

    def is_ready(self) -> bool:
        return self._client is not None

    def set(self, client: Client) -> None:
        with self._lock:
            self._client = client

    def clear(self) -> None:
        with self._lock:
            self._client = None

    def build(self) -> Optional[Client]:
        """Create the client with the factory, if one was given."""
        if self._factory is None:
            return None
        with self._lock:
            if self._client is None:
                self._client = self._factory()
            return self._client


def wait_for_client(
    handle: ClientHandle,
    attempts: Optional[int] = None,
    interval: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Client:
    """
    Wait for the shared client handle to become available.

    Polls up to `attempts` times, sleeping `interval` seconds between polls
    (50 x 100ms by default). When the handle is still empty afterwards the
    handle's factory is tried once.

    Raises:
        BackendUnavailableError: if no client could be obtained
    """
    attempts = attempts if attempts is not None else config.supabase.client_wait_attempts
    interval = interval if interval is not None else config.supabase.client_wait_interval

    tries = 0
    while not handle.is_ready() and tries < attempts:
        sleep(interval)
        tries += 1

    if handle.is_ready():
        return handle.client

    console.print(
        f"[yellow]Supabase client not ready after {attempts} attempts, "
        "creating one directly[/yellow]"
    )
    try:
        client = handle.build()
    except ValueError as e:
        raise BackendUnavailableError(str(e)) from e

    if client is None:
        raise BackendUnavailableError(
            f"Supabase client not available after {attempts} attempts"
        )
    return client


async def await_client(
    handle: ClientHandle,
    attempts: Optional[int] = None,
    interval: Optional[float] = None,
) -> Client:
    """Async variant of wait_for_client using asyncio.sleep between polls."""
    attempts = attempts if attempts is not None else config.supabase.client_wait_attempts
    interval = interval if interval is not None else config.supabase.client_wait_interval

    tries = 0
    while not handle.is_ready() and tries < attempts:
        await asyncio.sleep(interval)
        tries += 1

    if handle.is_ready():
        return handle.client

    try:
        client = handle.build()
    except ValueError as e:
        raise BackendUnavailableError(str(e)) from e

    if client is None:
        raise BackendUnavailableError(
            f"Supabase client not available after {attempts} attempts"
        )
    return client


def is_missing_function(error: APIError) -> bool:
    """Check whether a PostgREST error means the function is not deployed."""
    message = getattr(error, "message", None) or str(error)
    return error.code == UNDEFINED_FUNCTION_CODE or "does not exist" in message


def call_rpc(client: Client, name: str, params: Optional[dict] = None) -> Any:
    """
    Execute a remote procedure and return its data.

    Args:
        client: Supabase client
        name: Procedure name, e.g. "rpc_close_order"
        params: Named parameters for the procedure

    Returns:
        The procedure's JSON result

    Raises:
        RpcMissingError: the procedure does not exist in the database
        RpcError: any other failure reported by the server
    """
    try:
        result = client.rpc(name, params or {}).execute()
    except APIError as e:
        message = getattr(e, "message", None) or str(e)
        if is_missing_function(e):
            raise RpcMissingError(name, message, code=e.code) from e
        raise RpcError(name, message, code=e.code, details=e.details) from e

    return result.data
