"""
pytest configuration and shared fixtures for the FYL back-office tests.

FakeSupabase stands in for a supabase-py client: tables are lists of dicts,
query builders filter them in memory and remote procedures are answered by
per-test handlers. Select column lists are ignored; tests seed rows in the
shape PostgREST would return (including embedded relations).
"""

import copy
import itertools
import re
import sys
from pathlib import Path

import pytest
from postgrest.exceptions import APIError

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def api_error(message: str, code: str = "P0001", details: str = None) -> APIError:
    return APIError({"message": message, "code": code, "details": details, "hint": None})


class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Chainable query builder over one in-memory table."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.order_by = None
        self.limit_to = None
        self.count = None

    # Operations

    def select(self, columns="*", count=None):
        self.op = "select"
        self.count = count
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    # Filters

    def _filter(self, description, predicate):
        self.filters.append((description, predicate))
        return self

    def eq(self, column, value):
        return self._filter(("eq", column, value), lambda r: r.get(column) == value)

    def neq(self, column, value):
        return self._filter(("neq", column, value), lambda r: r.get(column) != value)

    def in_(self, column, values):
        values = list(values)
        return self._filter(("in", column, values), lambda r: r.get(column) in values)

    def lte(self, column, value):
        return self._filter(
            ("lte", column, value),
            lambda r: r.get(column) is not None and r.get(column) <= value,
        )

    def gte(self, column, value):
        return self._filter(
            ("gte", column, value),
            lambda r: r.get(column) is not None and r.get(column) >= value,
        )

    def ilike(self, column, pattern):
        regex = re.compile(
            "^" + re.escape(pattern).replace("%", ".*") + "$", re.IGNORECASE
        )
        return self._filter(
            ("ilike", column, pattern),
            lambda r: r.get(column) is not None and bool(regex.match(str(r.get(column)))),
        )

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_to = n
        return self

    # Execution

    def _matches(self, row):
        return all(predicate(row) for _, predicate in self.filters)

    def execute(self):
        self.db.queries.append(self)
        failure = self.db.failures.get(self.table_name)
        if failure is not None:
            raise failure

        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for values in payload:
                row = dict(values)
                row.setdefault("id", f"{self.table_name}-{next(self.db.ids)}")
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return FakeResult(inserted)

        matching = [row for row in rows if self._matches(row)]

        if self.op == "update":
            for row in matching:
                row.update(self.payload)
            return FakeResult(copy.deepcopy(matching))

        if self.op == "delete":
            self.db.tables[self.table_name] = [row for row in rows if not self._matches(row)]
            return FakeResult(copy.deepcopy(matching))

        if self.order_by:
            column, desc = self.order_by
            matching = sorted(
                matching,
                key=lambda r: (r.get(column) is None, r.get(column)),
                reverse=desc,
            )
        total = len(matching)
        if self.limit_to is not None:
            matching = matching[: self.limit_to]
        return FakeResult(copy.deepcopy(matching), count=total if self.count else None)


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        self.db.rpc_calls.append((self.name, self.params))
        if self.name not in self.db.rpc_handlers:
            raise api_error(f"function public.{self.name} does not exist", code="42883")
        handler = self.db.rpc_handlers[self.name]
        if isinstance(handler, Exception):
            raise handler
        data = handler(self.params) if callable(handler) else handler
        return FakeResult(data)


class FakeSupabase:
    """In-memory stand-in for supabase.Client."""

    def __init__(self, tables=None, rpc_handlers=None):
        self.tables = copy.deepcopy(tables or {})
        self.rpc_handlers = dict(rpc_handlers or {})
        self.failures = {}
        self.queries = []
        self.rpc_calls = []
        self.ids = itertools.count(1)

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        return FakeRpc(self, name, params or {})

    # Helpers for assertions

    def rows(self, table):
        return self.tables.get(table, [])

    def row(self, table, row_id):
        return next((r for r in self.rows(table) if r.get("id") == row_id), None)

    def calls_to(self, name):
        return [params for called, params in self.rpc_calls if called == name]

    def writes(self, table, op):
        return [q for q in self.queries if q.table_name == table and q.op == op]


class FakeChannel:
    def __init__(self, name):
        self.name = name
        self.listeners = []
        self.subscribed = False

    def on_postgres_changes(self, event, schema=None, table=None, callback=None):
        self.listeners.append({"event": event, "schema": schema, "table": table, "callback": callback})
        return self

    async def subscribe(self, callback=None):
        self.subscribed = True
        if callback:
            callback("SUBSCRIBED", None)
        return self

    def emit(self, table, event_type="UPDATE"):
        for listener in self.listeners:
            if listener["table"] == table:
                listener["callback"]({"data": {"table": table, "type": event_type}})


class FakeAsyncClient:
    """Just enough of supabase.AsyncClient for realtime channels."""

    def __init__(self):
        self.channels = []
        self.removed = []

    def channel(self, name):
        channel = FakeChannel(name)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel):
        self.removed.append(channel)


# =============================================================================
# FIXTURES & SAMPLE DATA
# =============================================================================


def make_order(order_id, statuses, status="active", customer=None, created_at=None, **extra):
    """Order row with one item per status in `statuses`."""
    items = [
        {
            "id": f"{order_id}-item-{i}",
            "order_id": order_id,
            "product_name": f"Producto {i}",
            "color": "Negro",
            "size": "38",
            "quantity": 1,
            "price_snapshot": 1000,
            "status": item_status,
            "variant_id": f"var-{i}",
        }
        for i, item_status in enumerate(statuses, start=1)
    ]
    order = {
        "id": order_id,
        "order_number": extra.pop("order_number", order_id.upper()),
        "status": status,
        "created_at": created_at or "2026-10-01T10:00:00+00:00",
        "customer_id": (customer or {}).get("id"),
        "order_items": items,
        "customers": customer or {},
    }
    order.update(extra)
    return order


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def fake_async_client():
    return FakeAsyncClient()


@pytest.fixture
def no_sleep():
    calls = []
    return calls, calls.append
