"""
Tests for the client cart: merging, stock caps and checkout.
"""

import pytest

from conftest import FakeSupabase
from fyl.cart.cart import CartService, VariantInfo, normalize_cart_items
from fyl.errors import ValidationError


def cart_db(stock=5, reserved=1, cart_items=None, carts=None):
    return FakeSupabase(
        tables={
            "products": [{"id": "p1", "name": "Bota Texana"}],
            "product_variants": [
                {"id": "v1", "product_id": "p1", "color": "Negro", "size": "38",
                 "stock_qty": stock, "reserved_qty": reserved, "price": 30000},
            ],
            "carts": carts or [],
            "cart_items": cart_items or [],
            "catalog_public_view": [
                {"Articulo": "Bota Texana", "Color": "Negro", "Imagen Principal": "bota.jpg"}
            ],
        }
    )


PRODUCT = {"articulo": "Bota Texana", "color": "Negro", "talle": "38", "cantidad": 2, "precio": 0}


class TestNormalizeCartItems:
    """Merging duplicate cart lines."""

    def test_merges_same_article_color_size(self):
        merged = normalize_cart_items(
            [
                {"id": "a", "articulo": "Bota", "color": "Negro", "talle": "38", "cantidad": 1, "precio": 100},
                {"id": "b", "product_name": "Bota", "color": "Negro", "size": "38", "quantity": 2,
                 "price_snapshot": 120, "imagen": "x.jpg", "variant_id": "v1"},
                {"id": "c", "articulo": "Bota", "color": "Negro", "talle": "39", "cantidad": 1},
            ]
        )
        assert len(merged) == 2
        line = merged[0]
        assert line["cantidad"] == 3
        assert line["supabaseIds"] == ["a", "b"]
        assert line["imagen"] == "x.jpg"
        assert line["precio"] == 120
        assert line["variant_id"] == "v1"

    def test_variant_available(self):
        assert VariantInfo("v", stock=2, reserved=5, price=0).available == 0


class TestAddItem:
    """Stock-capped adds to the open cart."""

    def test_first_add_creates_cart_and_line(self):
        db = cart_db()
        result = CartService(db).add_item("c1", PRODUCT)

        assert result["added"] == 2 and result["limited"] is False
        assert len(db.rows("carts")) == 1
        line = db.rows("cart_items")[0]
        assert line["quantity"] == 2
        assert line["price_snapshot"] == 30000
        assert line["imagen"] == "bota.jpg"
        assert line["variant_id"] == "v1"

    def test_existing_quantity_is_capped(self):
        db = cart_db(
            carts=[{"id": "cart1", "customer_id": "c1", "status": "open", "created_at": "2026-10-01"}],
            cart_items=[
                {"id": "l1", "cart_id": "cart1", "variant_id": "v1", "quantity": 2},
                {"id": "l2", "cart_id": "cart1", "variant_id": "v1", "quantity": 1},
            ],
        )
        result = CartService(db).add_item("c1", {**PRODUCT, "cantidad": 1})

        # 4 available, 3 already in the cart
        assert result == {"cart_id": "cart1", "variant_id": "v1", "quantity": 4, "added": 1, "limited": False}
        assert [r["id"] for r in db.rows("cart_items")] == ["l1"]
        assert db.row("cart_items", "l1")["quantity"] == 4

    def test_no_room_left(self):
        db = cart_db(
            stock=2,
            reserved=0,
            carts=[{"id": "cart1", "customer_id": "c1", "status": "open", "created_at": "2026-10-01"}],
            cart_items=[{"id": "l1", "cart_id": "cart1", "variant_id": "v1", "quantity": 2}],
        )
        with pytest.raises(ValidationError):
            CartService(db).add_item("c1", {**PRODUCT, "cantidad": 1})

    def test_sold_out_and_unknown(self):
        with pytest.raises(ValidationError):
            CartService(cart_db(stock=1, reserved=1)).add_item("c1", PRODUCT)
        with pytest.raises(ValidationError):
            CartService(cart_db()).add_item("c1", {**PRODUCT, "articulo": "Zapato"})

    def test_request_above_available(self):
        with pytest.raises(ValidationError):
            CartService(cart_db(stock=2, reserved=1)).add_item("c1", PRODUCT)


class TestCheckout:
    """Stock check before the checkout procedure."""

    def _db(self, quantity):
        db = cart_db(
            carts=[{"id": "cart1", "customer_id": "c1", "status": "open", "created_at": "2026-10-01"}],
            cart_items=[
                {"id": "l1", "cart_id": "cart1", "product_name": "Bota Texana", "color": "Negro",
                 "size": "38", "quantity": quantity, "price_snapshot": 30000, "variant_id": "v1"},
            ],
        )
        db.rpc_handlers["rpc_checkout_cart"] = {"order_id": "o1", "order_number": 101}
        return db

    def test_checkout(self):
        db = self._db(2)
        assert CartService(db).checkout("c1") == {"order_id": "o1", "order_number": 101}

    def test_stock_check_fields(self):
        service = CartService(self._db(3))
        line = service.stock_check(service.cart_items("c1"))[0]
        assert line["realAvailableStock"] == 4
        assert line["remainingStock"] == 1
        assert line["maxQty"] == 4
        assert line["isOutOfStock"] is False

    def test_out_of_stock_blocks_checkout(self):
        db = self._db(5)
        with pytest.raises(ValidationError):
            CartService(db).checkout("c1")
        assert db.rpc_calls == []

    def test_empty_cart(self):
        with pytest.raises(ValidationError):
            CartService(cart_db()).checkout("c1")


class TestCustomerAndCancel:
    """Customer linking and client-side item cancellation."""

    def test_link_or_create_customer(self):
        db = FakeSupabase(
            rpc_handlers={"rpc_link_or_create_customer": {"action": "linked", "customer_id": "c9", "match_type": "email"}}
        )
        result = CartService(db).link_or_create_customer("u1", email="ana@example.com")
        assert result["customer_id"] == "c9"
        assert db.calls_to("rpc_link_or_create_customer")[0]["p_email"] == "ana@example.com"

    def test_cancel_missing_item_deletes_it_and_empty_order(self):
        db = FakeSupabase(
            tables={
                "orders": [{"id": "o1", "total_amount": 1000}],
                "order_items": [{"id": "i1", "order_id": "o1", "status": "missing", "quantity": 1, "price_snapshot": 1000}],
            }
        )
        result = CartService(db).cancel_order_item("i1")
        assert result == {"was_picked": False, "order_deleted": True}
        assert db.rpc_calls == []

    def test_cancel_picked_item_uses_procedure(self):
        db = FakeSupabase(
            tables={
                "orders": [{"id": "o1"}],
                "order_items": [
                    {"id": "i1", "order_id": "o1", "status": "picked"},
                    {"id": "i2", "order_id": "o1", "status": "reserved"},
                ],
            },
            rpc_handlers={"rpc_cancel_order_item": {"was_picked": True}},
        )
        assert CartService(db).cancel_order_item("i1") == {"was_picked": True, "order_deleted": False}
