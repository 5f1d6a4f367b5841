"""
Tests for the Meta catalog feed.
"""

import pytest

from conftest import FakeSupabase
from fyl.errors import PermissionDeniedError
from fyl.feeds.meta_feed import (
    FEED_HEADERS,
    FeedDataError,
    MetaFeedService,
    feed_metrics,
    product_link,
    to_csv,
)


def feed_row(item_id, **extra):
    row = {
        "id": item_id,
        "item_group_id": "BOTA",
        "title": "Bota Texana",
        "description": "Cuero",
        "price": "30000.00 ARS",
        "availability": "in stock",
        "condition": "new",
        "brand": "FYL",
        "image_link": "https://cdn.example.com/bota.jpg",
        "color": "Negro",
        "size": "38",
    }
    row.update(extra)
    return row


class TestRows:
    """Links, metrics and CSV rendering."""

    def test_product_link_quotes_sku(self):
        assert product_link("https://fylmoda.com.ar/", "BOT 38/N") == (
            "https://fylmoda.com.ar/index.html?sku=BOT%2038%2FN"
        )
        assert product_link("https://fylmoda.com.ar", "a(b)*!") == (
            "https://fylmoda.com.ar/index.html?sku=a(b)*!"
        )

    def test_metrics(self):
        rows = [
            feed_row("1"),
            feed_row("2", image_link="", price="30000 ARS", description="  "),
            feed_row("3", image_link="https://x/v1/meta-placeholder", availability="out of stock", price=None),
        ]
        assert feed_metrics(rows) == {
            "total": 3,
            "sin_imagen": 2,
            "sin_precio": 2,
            "inactivas": 1,
            "con_placeholder": 1,
            "sin_descripcion": 1,
        }

    @pytest.mark.parametrize(
        "description, expected",
        [
            (None, ""),
            ("plain", "plain"),
            ("a,b", '"a,b"'),
            ('dice "hola"', '"dice ""hola"""'),
            ("dos\nlineas", '"dos\nlineas"'),
        ],
    )
    def test_description_quoting(self, description, expected):
        csv_text = to_csv([feed_row("1", description=description)])
        assert f"Bota Texana,{expected},30000.00 ARS," in csv_text

    def test_empty_feed_is_header_line(self):
        assert to_csv([]) == ",".join(FEED_HEADERS) + "\n"

    def test_csv_rows(self):
        csv_text = to_csv([feed_row("1", description="Cuero, suela", link="https://x/?sku=1", size=None)])
        lines = csv_text.split("\n")
        assert len(lines) == 2
        assert lines[0].startswith("id,item_group_id,title")
        assert lines[1] == (
            '1,BOTA,Bota Texana,"Cuero, suela",30000.00 ARS,in stock,new,FYL,'
            "https://x/?sku=1,https://cdn.example.com/bota.jpg,Negro,"
        )


class TestMetaFeedService:
    """Token check and feed building."""

    def test_authorize(self):
        service = MetaFeedService(FakeSupabase(), token="secret")
        service.authorize("secret")
        with pytest.raises(PermissionDeniedError):
            service.authorize("wrong")
        with pytest.raises(PermissionDeniedError):
            service.authorize(None)

    def test_no_token_means_public(self):
        MetaFeedService(FakeSupabase(), token="").authorize(None)

    def test_build_json_with_limit(self):
        db = FakeSupabase(rpc_handlers={"get_meta_feed": [feed_row("1"), feed_row("2", image_link="")]})
        result = MetaFeedService(db, base_url="https://shop.example").build("json", limit=1)

        body = result.as_json()
        assert body["total"] == 2
        assert body["returned"] == 1
        assert body["metrics"]["sin_imagen"] == 1
        assert body["data"][0]["link"] == "https://shop.example/index.html?sku=1"
        assert result.body is None

    def test_build_csv(self):
        db = FakeSupabase(rpc_handlers={"get_meta_feed": [feed_row("1")]})
        result = MetaFeedService(db, base_url="https://shop.example").build()
        assert result.format == "csv"
        assert "https://shop.example/index.html?sku=1" in result.body

    def test_non_list_result(self):
        db = FakeSupabase(rpc_handlers={"get_meta_feed": {"error": "boom"}})
        with pytest.raises(FeedDataError):
            MetaFeedService(db).build()
