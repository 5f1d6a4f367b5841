"""
Tests for the daily sales register.
"""

from datetime import date

import pytest

from conftest import FakeSupabase, api_error
from fyl.errors import ValidationError
from fyl.sales.daily_sales import DailySalesService, filter_sales, summarize_sales

SALES = [
    {"id": "s1", "sale_date": "2026-10-10", "sale_time": "10:00", "sale_type": "local", "sale_amount": 1500},
    {"id": "s2", "sale_date": "2026-10-10", "sale_time": "12:30", "sale_type": "envios", "sale_amount": "2500"},
    {"id": "s3", "sale_date": "2026-10-10", "sale_time": "11:00", "sale_type": "local", "sale_amount": None},
    {"id": "s4", "sale_date": "2026-10-09", "sale_time": "18:00", "sale_type": "local", "sale_amount": 900},
]


class TestSummaries:
    """Totals added up from register rows."""

    def test_summarize(self):
        summary = summarize_sales(SALES[:3])
        assert summary["total_sales"] == 3
        assert summary["total_amount"] == 4000
        assert summary["local"] == {"sales": 2, "amount": 1500}
        assert summary["envios"] == {"sales": 1, "amount": 2500}

    def test_empty_day(self):
        assert summarize_sales([]) == {
            "total_sales": 0,
            "total_amount": 0,
            "local": {"sales": 0, "amount": 0},
            "envios": {"sales": 0, "amount": 0},
        }

    def test_filter(self):
        assert len(filter_sales(SALES, "all")) == 4
        assert len(filter_sales(SALES, None)) == 4
        assert [s["id"] for s in filter_sales(SALES, "envios")] == ["s2"]


class TestDailySalesService:
    """Reading and editing the register."""

    def test_load_sales_for_day_latest_first(self):
        service = DailySalesService(FakeSupabase(tables={"daily_sales": SALES}))
        sales = service.load_sales(date(2026, 10, 10))
        assert [s["id"] for s in sales] == ["s2", "s3", "s1"]
        assert [s["id"] for s in service.load_sales("2026-10-10", "local")] == ["s3", "s1"]

    def test_summary_from_procedure(self):
        db = FakeSupabase(
            rpc_handlers={
                "get_daily_sales_summary": {"total_sales": 5, "total_amount": 9000, "local": {"sales": 5, "amount": 9000}}
            }
        )
        summary = DailySalesService(db).summary("2026-10-10")
        assert summary["total_sales"] == 5
        assert summary["envios"] == {"sales": 0, "amount": 0}
        assert db.calls_to("get_daily_sales_summary") == [{"p_sale_date": "2026-10-10", "p_sale_type": None}]

    def test_summary_falls_back_to_rows(self):
        db = FakeSupabase(tables={"daily_sales": SALES})
        assert DailySalesService(db).summary("2026-10-10")["total_amount"] == 4000

        db.rpc_handlers["get_daily_sales_summary"] = api_error("boom")
        assert DailySalesService(db).summary("2026-10-09")["total_sales"] == 1

    def test_summary_uses_given_rows(self):
        db = FakeSupabase(rpc_handlers={"get_daily_sales_summary": None})
        assert DailySalesService(db).summary("2026-10-10", sales=SALES[:1])["total_amount"] == 1500
        assert db.writes("daily_sales", "select") == []

    def test_update_sale(self):
        db = FakeSupabase(tables={"daily_sales": SALES})
        DailySalesService(db).update_sale(
            "s1",
            {"sale_type": "envios", "customer_name": "  Ana  ", "product_quantity": 2, "sale_amount": 3000},
        )
        row = db.row("daily_sales", "s1")
        assert row["customer_name"] == "Ana"
        assert row["sale_type"] == "envios"
        assert row["sale_amount"] == 3000

    @pytest.mark.parametrize(
        "changes",
        [
            {"sale_type": "local", "customer_name": "   ", "product_quantity": 1, "sale_amount": 10},
            {"sale_type": "local", "customer_name": "Ana", "product_quantity": -1, "sale_amount": 10},
            {"sale_type": "local", "customer_name": "Ana", "product_quantity": 1, "sale_amount": -5},
            {"sale_type": "mayorista", "customer_name": "Ana", "product_quantity": 1, "sale_amount": 10},
        ],
    )
    def test_invalid_updates_rejected(self, changes):
        db = FakeSupabase(tables={"daily_sales": SALES})
        with pytest.raises(ValidationError):
            DailySalesService(db).update_sale("s1", changes)
        assert db.writes("daily_sales", "update") == []

    def test_delete_sale(self):
        db = FakeSupabase(tables={"daily_sales": SALES})
        DailySalesService(db).delete_sale("s4")
        assert db.row("daily_sales", "s4") is None
        assert len(db.rows("daily_sales")) == 3
