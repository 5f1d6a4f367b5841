"""
Tests for the shared client handle and remote procedure calls.
"""

import asyncio

import pytest

from conftest import FakeSupabase, api_error
from fyl.backend.client import ClientHandle, await_client, call_rpc, wait_for_client
from fyl.errors import BackendUnavailableError, RpcError, RpcMissingError


class TestWaitForClient:
    """Polling the handle before giving up."""

    def test_ready_client_returned_immediately(self, no_sleep):
        waits, sleep = no_sleep
        client = FakeSupabase()
        handle = ClientHandle()
        handle.set(client)

        assert wait_for_client(handle, attempts=5, interval=0.1, sleep=sleep) is client
        assert waits == []

    def test_client_set_while_waiting(self):
        client = FakeSupabase()
        handle = ClientHandle()
        waits = []

        def sleep(seconds):
            waits.append(seconds)
            if len(waits) == 3:
                handle.set(client)

        assert wait_for_client(handle, attempts=50, interval=0.1, sleep=sleep) is client
        assert waits == [0.1, 0.1, 0.1]

    def test_factory_used_after_polling(self, no_sleep):
        waits, sleep = no_sleep
        client = FakeSupabase()
        handle = ClientHandle(factory=lambda: client)

        assert wait_for_client(handle, attempts=4, interval=0.1, sleep=sleep) is client
        assert len(waits) == 4
        assert handle.client is client

    def test_unavailable_without_factory(self, no_sleep):
        waits, sleep = no_sleep
        with pytest.raises(BackendUnavailableError):
            wait_for_client(ClientHandle(), attempts=2, interval=0.1, sleep=sleep)

    def test_factory_without_credentials(self, no_sleep):
        waits, sleep = no_sleep

        def factory():
            raise ValueError("Supabase credentials required")

        with pytest.raises(BackendUnavailableError, match="credentials"):
            wait_for_client(ClientHandle(factory=factory), attempts=1, interval=0, sleep=sleep)

    def test_async_wait(self):
        client = FakeSupabase()
        handle = ClientHandle(factory=lambda: client)
        assert asyncio.run(await_client(handle, attempts=1, interval=0)) is client

        handle.clear()
        assert not handle.is_ready()


class TestCallRpc:
    """Error mapping for remote procedures."""

    def test_returns_data(self):
        db = FakeSupabase(rpc_handlers={"rpc_close_order": {"ok": True}})
        assert call_rpc(db, "rpc_close_order", {"p_order_id": "o1"}) == {"ok": True}
        assert db.calls_to("rpc_close_order") == [{"p_order_id": "o1"}]

    def test_missing_procedure(self):
        with pytest.raises(RpcMissingError) as exc:
            call_rpc(FakeSupabase(), "rpc_not_deployed")
        assert exc.value.code == "42883"
        assert exc.value.rpc == "rpc_not_deployed"

    def test_server_error(self):
        db = FakeSupabase(rpc_handlers={"rpc_close_order": api_error("order not found", details="o1")})
        with pytest.raises(RpcError) as exc:
            call_rpc(db, "rpc_close_order")
        assert not isinstance(exc.value, RpcMissingError)
        assert exc.value.message == "order not found"
        assert exc.value.details == "o1"
        assert str(exc.value) == "rpc_close_order: order not found"
