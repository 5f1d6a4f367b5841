"""
Tests for the bulk customer import.
"""

import asyncio

import httpx
import pytest

from conftest import FakeSupabase, api_error
from fyl.customers import importer
from fyl.customers.importer import (
    CustomerImporter,
    SheetAccessError,
    fetch_sheet_csv,
    normalize_province,
    parse_customers_csv,
    sheet_export_url,
    split_valid,
    to_rpc_payload,
)

CSV = """Nombre,Telefono,Ciudad,Provincia,Direccion
Ana  Pérez,11-5555,Rosario,santa fe,Calle 1
,,,,

Sin Telefono,,Salta,Salta,Calle 2
,123,X,Y,Z
"Luis, Gómez",11-7777,Córdoba,CORDOBA,Calle 3,extra
"""


def customers(n):
    return parse_customers_csv(
        "header\n" + "\n".join(f"Cliente {i},11-{i},Ciudad,Buenos Aires,Calle {i}" for i in range(n))
    )


class TestParsing:
    """Reading rows and checking required fields."""

    def test_parse_skips_blank_and_nameless_rows(self):
        rows = parse_customers_csv(CSV)
        assert [r.full_name for r in rows] == ["Ana Pérez", "Sin Telefono", "Luis, Gómez"]
        assert [r.row_number for r in rows] == [2, 3, 4]
        assert rows[2].address == "Calle 3"

    def test_header_only(self):
        assert parse_customers_csv("Nombre,Telefono\n") == []

    def test_split_valid(self):
        valid, invalid = split_valid(parse_customers_csv(CSV))
        assert [r.full_name for r in valid] == ["Ana Pérez", "Luis, Gómez"]
        assert invalid == [{"row": 3, "full_name": "Sin Telefono", "errors": ["Teléfono requerido"]}]

    def test_provinces(self):
        assert normalize_province(" santa fe ") == "Santa Fe"
        assert normalize_province("Capital Federal") == "CABA"
        assert normalize_province("Atlantis") == "Atlantis"
        assert normalize_province("") is None

    def test_payload(self):
        payload = to_rpc_payload(parse_customers_csv(CSV)[2])
        assert payload["province"] == "Córdoba"
        assert payload["dni"] is None and payload["email"] is None


class TestSheets:
    """Google Sheets links and downloads."""

    @pytest.mark.parametrize(
        "url, gid",
        [
            ("https://docs.google.com/spreadsheets/d/abc-123_X/edit", "0"),
            ("https://docs.google.com/spreadsheets/d/abc-123_X/edit#gid=456", "456"),
            ("https://docs.google.com/spreadsheets/d/abc-123_X/edit?usp=sharing&gid=7", "7"),
        ],
    )
    def test_export_url(self, url, gid):
        assert sheet_export_url(url) == (
            f"https://docs.google.com/spreadsheets/d/abc-123_X/export?format=csv&gid={gid}"
        )

    def test_bad_url(self):
        with pytest.raises(SheetAccessError):
            sheet_export_url("https://example.com/file.csv")

    def _patch_http(self, monkeypatch, status, text=""):
        requested = []
        real_client = httpx.AsyncClient

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(status, text=text)

        monkeypatch.setattr(
            importer.httpx,
            "AsyncClient",
            lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
        )
        return requested

    def test_fetch_public_sheet(self, monkeypatch):
        requested = self._patch_http(monkeypatch, 200, CSV)
        text = asyncio.run(fetch_sheet_csv("https://docs.google.com/spreadsheets/d/abc/edit"))
        assert text == CSV
        assert requested == ["https://docs.google.com/spreadsheets/d/abc/export?format=csv&gid=0"]

    @pytest.mark.parametrize("status, text", [(403, ""), (500, ""), (200, "<html>Sign in</html>")])
    def test_fetch_failures(self, monkeypatch, status, text):
        self._patch_http(monkeypatch, status, text)
        with pytest.raises(SheetAccessError):
            asyncio.run(fetch_sheet_csv("https://docs.google.com/spreadsheets/d/abc/edit"))


class TestCustomerImporter:
    """Batched calls to the bulk-create procedure."""

    def test_batches_with_pause(self, no_sleep):
        waits, sleep = no_sleep
        db = FakeSupabase(
            rpc_handlers={
                "rpc_bulk_create_customers": lambda params: {
                    "created": len(params["p_customers"]),
                    "errors": 0,
                    "processed": len(params["p_customers"]),
                }
            }
        )
        summary = CustomerImporter(db, batch_size=2, pause_seconds=0.5, sleep=sleep).run(customers(5))

        assert summary.batches == 3
        assert summary.created == 5
        assert summary.errors == 0
        assert [len(p["p_customers"]) for p in db.calls_to("rpc_bulk_create_customers")] == [2, 2, 1]
        assert waits == [0.5, 0.5]

    def test_failed_batch_counts_every_row(self, no_sleep):
        waits, sleep = no_sleep
        calls = []

        def handler(params):
            calls.append(params)
            if len(calls) == 1:
                return {"created": 1, "errors": 1, "processed": 2,
                        "error_details": [{"customer": {"full_name": "Cliente 1"}, "error": "duplicado"}]}
            return None

        db = FakeSupabase(rpc_handlers={"rpc_bulk_create_customers": handler})
        summary = CustomerImporter(db, batch_size=2, pause_seconds=0, sleep=sleep).run(customers(4))
        assert summary.created == 1
        assert summary.errors == 3

        db.rpc_handlers["rpc_bulk_create_customers"] = api_error("timeout")
        summary = CustomerImporter(db, batch_size=10, sleep=sleep).run(customers(3))
        assert summary.errors == 3 and summary.created == 0

    def test_dry_run_writes_nothing(self):
        summary = CustomerImporter(None).run(parse_customers_csv(CSV), dry_run=True)
        assert summary.dry_run
        assert summary.total == 3
        assert summary.valid == 2
        assert len(summary.invalid) == 1
        assert summary.batches == 0
