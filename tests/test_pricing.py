"""
Tests for order totals, extras, promotions and color offers.
"""

import json
from datetime import date

from conftest import FakeSupabase, api_error, make_order
from fyl.orders.pricing import (
    ItemOffer,
    OrderDiscounts,
    PricingService,
    item_prices,
    order_total,
    parse_extras,
    products_subtotal,
    promo_text,
    promotion_discount,
    resolve_discounts,
)


def item(item_id, quantity, price, status="picked"):
    return {"id": item_id, "quantity": quantity, "price_snapshot": price, "status": status}


class TestExtras:
    """Extra charges stored as JSON in the order notes."""

    def test_parses_json(self):
        extras = parse_extras(json.dumps({"shipping": 500, "discount": "100", "extras_percentage": 10}))
        assert extras.shipping == 500
        assert extras.discount == 100
        assert extras.extras_percentage == 10
        assert extras.extras_amount == 0

    def test_free_text_or_empty_gives_no_extras(self):
        assert parse_extras("llamar antes").shipping == 0
        assert parse_extras(None).discount == 0
        assert parse_extras("[1, 2]").shipping == 0


class TestOrderTotal:
    """Totals computed from items, extras and discounts."""

    def test_subtotal_skips_cancelled(self):
        order = {"order_items": [item("a", 2, 1000), item("b", 1, 500, status="cancelled")]}
        assert products_subtotal(order) == 2000

    def test_stored_total_wins(self):
        order = {"total_amount": 1234, "order_items": [item("a", 2, 1000)]}
        assert order_total(order) == 1234.0

    def test_computed_total_with_extras_and_discount(self):
        order = {
            "total_amount": None,
            "notes": json.dumps({"shipping": 300, "discount": 100, "extras_amount": 50, "extras_percentage": 10}),
            "order_items": [item("a", 2, 1000)],
        }
        discounts = OrderDiscounts(total_discount=200)
        # 2000 + 300 - 100 + 50 + 200 (10%) - 200
        assert order_total(order, discounts) == 2250


class TestPromotions:
    """2x1 and 2x$ promotions."""

    def test_promo_text(self):
        assert promo_text({"promo_type": "2x1"}) == "2x1"
        assert promo_text({"promo_type": "2xMonto", "fixed_amount": 15000}) == "2x$15000"
        assert promo_text({"promo_type": "2xMonto", "fixed_amount": 99.5}) == "2x$99.5"
        assert promo_text({"promo_type": "other"}) is None

    def test_2x1_takes_one_average_unit_per_pair(self):
        items = [item("a", 1, 1000), item("b", 1, 2000)]
        assert promotion_discount({"promo_type": "2x1"}, items) == 1500

    def test_2x_amount_charges_fixed_price_per_pair(self):
        items = [item("a", 2, 1000)]
        assert promotion_discount({"promo_type": "2xMonto", "fixed_amount": 1500}, items) == 500

    def test_single_unit_gets_nothing(self):
        assert promotion_discount({"promo_type": "2x1"}, [item("a", 1, 1000)]) == 0

    def test_promotion_wins_over_offer(self):
        items = [item("a", 2, 1000), item("b", 1, 800)]
        variants = {"a": "va", "b": "vb"}
        promos = [{"promo_type": "2x1", "variant_ids": ["va"]}]
        offers = {"a": ItemOffer(offer_price=700, original_price=1000), "b": ItemOffer(600, 800)}

        result = resolve_discounts(items, variants, promos, offers)

        assert result.item_promos == {"a": "2x1"}
        assert list(result.item_offers) == ["b"]
        # 1000 from the 2x1 plus 200 off the offered item
        assert result.total_discount == 1200
        assert result.promotions == [{"type": "2x1", "count": 2, "discount": 1000}]

    def test_item_prices(self):
        discounts = OrderDiscounts(item_promos={"a": "2x1"}, item_offers={"b": ItemOffer(600, 800)})
        assert item_prices(item("a", 2, 1000), discounts) == (1000, 1000)
        assert item_prices(item("b", 1, 800), discounts) == (600, 800)
        assert item_prices(item("c", 1, 900), discounts) == (900, None)


class TestPricingService:
    """Lookups against the database."""

    def _db(self):
        return FakeSupabase(
            tables={
                "products": [{"id": "p1", "name": "Producto 1", "status": "active"}],
                "product_variants": [
                    {"id": "var-x", "product_id": "p1", "color": "Negro", "size": "39", "active": True}
                ],
                "color_price_offers": [
                    {
                        "id": "off1",
                        "product_id": "p1",
                        "color": "Negro",
                        "status": "active",
                        "start_date": "2026-10-01",
                        "end_date": "2026-10-31",
                        "offer_price": 800,
                        "created_at": "2026-10-01T00:00:00Z",
                    }
                ],
            }
        )

    def test_find_variant_for_item_without_one(self):
        service = PricingService(self._db())
        assert service.find_variant_id("Producto 1", "Negro", "39") == "var-x"
        assert service.find_variant_id("Producto 1", "Rojo", "39") is None
        assert service.find_variant_id("", "Negro", "39") is None

    def test_offer_window(self):
        service = PricingService(self._db())
        assert service.active_color_offer("Producto 1", "Negro", date(2026, 10, 15))["id"] == "off1"
        assert service.active_color_offer("Producto 1", "Negro", date(2026, 11, 1)) is None

    def test_promotion_errors_give_no_promotions(self):
        db = self._db()
        db.rpc_handlers["get_active_promotions_for_variants"] = api_error("boom")
        assert PricingService(db).active_promotions(["var-x"]) == []

    def test_discounts_for_order(self):
        db = self._db()
        db.rpc_handlers["get_active_promotions_for_variants"] = lambda params: []
        order = make_order("o1", ["picked"])

        discounts = PricingService(db).discounts_for_order(order, date(2026, 10, 15))

        assert db.calls_to("get_active_promotions_for_variants") == [{"p_variant_ids": ["var-1"]}]
        assert discounts.item_offers["o1-item-1"].offer_price == 800
        assert discounts.total_discount == 200
