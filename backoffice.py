#!/usr/bin/env python3
"""
JSON back-office service for FYL.

Serves the admin actions of the orders board, daily sales and shipments,
plus the two public endpoints the storefront and Meta use: the catalog
feed (/meta-feed) and image auto-tagging (/auto-tags).

Usage:
    python backoffice.py              # http://localhost:5001
    python backoffice.py --port 8080
"""
import argparse
import asyncio
import threading
from datetime import date
from typing import Callable, Optional

from flask import Flask, Response, jsonify, request
from rich.console import Console

from config.settings import config
from fyl.ai import AutoTagError, AutoTagger
from fyl.auth.permissions import PermissionService
from fyl.backend.client import ClientHandle, create_backend, wait_for_client
from fyl.errors import (
    FYLError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from fyl.feeds.meta_feed import FeedDataError, MetaFeedService
from fyl.models import AutoTagRequest
from fyl.orders.board import OrderBoard
from fyl.orders.repository import ORDER_COLUMNS, OrderRepository
from fyl.sales.daily_sales import DailySalesService
from fyl.shipments.sent_orders import ShipmentsService

console = Console()

CORS_HEADERS = {
    "Access-Control-Allow-Headers": "authorization, content-type, x-client-info, apikey",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Max-Age": "86400",
}


def allowed_origin(origin: Optional[str]) -> str:
    if origin and origin in config.feed.allowed_origins:
        return origin
    return "*"


def error_response(e: Exception):
    """JSON error body with the status code matching the error type."""
    if isinstance(e, ValidationError):
        status = 400
    elif isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, PermissionDeniedError):
        status = 401
    else:
        status = 500
    return jsonify({"error": str(e)}), status


def create_app(
    handle: Optional[ClientHandle] = None,
    feed_handle: Optional[ClientHandle] = None,
    tagger_factory: Callable[[], AutoTagger] = AutoTagger,
) -> Flask:
    """
    Build the Flask app.

    Args:
        handle: Shared client for admin routes (anon key)
        feed_handle: Client for the feed (service role key)
        tagger_factory: Builds the AutoTagger used by /auto-tags
    """
    app = Flask(__name__)
    handle = handle or ClientHandle(factory=create_backend)
    feed_handle = feed_handle or ClientHandle(
        factory=lambda: create_backend(service_role=True)
    )
    # Full-view toggles outlive a request; tab, sort and search never do
    full_view: set = set()
    full_view_lock = threading.Lock()

    def client():
        return wait_for_client(handle)

    def repository() -> OrderRepository:
        return OrderRepository(client())

    def board() -> OrderBoard:
        """A fresh board for this request, seeded with the shared toggles."""
        repo = repository()
        with full_view_lock:
            return OrderBoard(repo, full_view=full_view)

    def shipments() -> ShipmentsService:
        return ShipmentsService(client(), repository())

    # =========================================================================
    # ORDERS
    # =========================================================================

    @app.route("/api/orders")
    def api_orders():
        """Orders of a tab as board cards, plus the badge counts."""
        try:
            current = board()
            current.select_tab(request.args.get("tab", config.orders.default_tab))
            current.set_sort(request.args.get("sort", config.orders.default_sort))
            current.set_search(request.args.get("search"))
            current.reload()
            cards = current.cards()
            return jsonify(
                {
                    "tab": current.current_tab,
                    "orders": cards,
                    "total": len(cards),
                    "badges": current.badges,
                }
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/badges")
    def api_order_badges():
        try:
            current = board()
            current.reload()
            return jsonify(current.badges)
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/<order_id>/full-view", methods=["POST"])
    def api_toggle_full_view(order_id):
        with full_view_lock:
            if order_id in full_view:
                full_view.discard(order_id)
                return jsonify({"full_view": False})
            full_view.add(order_id)
            return jsonify({"full_view": True})

    @app.route("/api/order-items/<item_id>/status", methods=["POST"])
    def api_item_status(item_id):
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        checked_by = data.get("checked_by")
        if not status or not checked_by:
            return jsonify({"error": "status and checked_by required"}), 400
        try:
            all_picked = repository().update_item_status(item_id, status, checked_by)
            return jsonify({"success": True, "all_items_picked": all_picked})
        except Exception as e:
            return error_response(e)

    @app.route("/api/order-items/<item_id>", methods=["DELETE"])
    def api_delete_item(item_id):
        try:
            repo = repository()
            item = repo.get_item(item_id)
            repo.delete_item_immediate(item_id)
            deleted = repo.delete_order_if_empty(item["order_id"])
            return jsonify({"success": True, "order_deleted": deleted})
        except Exception as e:
            return error_response(e)

    @app.route("/api/order-items/<item_id>/remove-missing", methods=["POST"])
    def api_remove_missing_item(item_id):
        """Drop a missing item from its order (and the order, if now empty)."""
        try:
            repo = repository()
            order_id = repo.remove_missing_item(item_id)
            return jsonify({"success": True, "order_deleted": repo.delete_order_if_empty(order_id)})
        except Exception as e:
            return error_response(e)

    @app.route("/api/order-items/<item_id>/cleanup-cancelled", methods=["POST"])
    def api_cleanup_cancelled_item(item_id):
        try:
            repo = repository()
            order_id = repo.cleanup_cancelled_item(item_id)
            return jsonify({"success": True, "order_deleted": repo.delete_order_if_empty(order_id)})
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/<order_id>/close", methods=["POST"])
    def api_close_order(order_id):
        data = request.get_json(silent=True) or {}
        try:
            repository().close_order(order_id, data.get("payment_method"))
            return jsonify({"success": True})
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/<order_id>/labels", methods=["POST"])
    def api_labels_printed(order_id):
        try:
            repository().mark_labels_printed(order_id)
            return jsonify({"success": True})
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/<order_id>/send", methods=["POST"])
    def api_send_order(order_id):
        """Finalize a closed order as sent (labels must be printed)."""
        try:
            repository().finalize_order(order_id)
            return jsonify({"success": True})
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/<order_id>/send-to-local", methods=["POST"])
    def api_send_to_local(order_id):
        try:
            repo = repository()
            order = repo.get_order(order_id, columns=ORDER_COLUMNS)
            order_number = repo.send_to_local(order)
            return jsonify({"success": True, "order_number": order_number})
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/<order_id>/return", methods=["POST"])
    def api_return_order(order_id):
        try:
            status = shipments().mark_as_returned(order_id)
            return jsonify({"success": True, "status": status})
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/<order_id>/revert", methods=["POST"])
    def api_revert_order(order_id):
        try:
            shipments().revert_to_picked(order_id)
            return jsonify({"success": True})
        except Exception as e:
            return error_response(e)

    @app.route("/api/sent-orders")
    def api_sent_orders():
        try:
            return jsonify(shipments().load_sent_orders())
        except Exception as e:
            return error_response(e)

    @app.route("/api/orders/<order_id>/labels-count", methods=["POST"])
    def api_labels_count(order_id):
        data = request.get_json(silent=True) or {}
        try:
            shipments().update_labels_count(order_id, data.get("count"))
            return jsonify({"success": True})
        except Exception as e:
            return error_response(e)

    # =========================================================================
    # TRANSPORTS & SHIPPING LISTS
    # =========================================================================

    @app.route("/api/transports")
    def api_transports():
        try:
            return jsonify(shipments().list_transports())
        except Exception as e:
            return error_response(e)

    @app.route("/api/customers/<customer_id>/transport", methods=["POST"])
    def api_customer_transport(customer_id):
        data = request.get_json(silent=True) or {}
        try:
            shipments().update_customer_transport(customer_id, data.get("transport_id"))
            return jsonify({"success": True})
        except Exception as e:
            return error_response(e)

    @app.route("/api/shipping-lists/orders")
    def api_shipping_list_orders():
        """Orders one transport carried on one day."""
        try:
            orders = shipments().orders_for_shipping_list(
                request.args.get("transport_id"), request.args.get("date")
            )
            return jsonify({"orders": orders, "total": len(orders)})
        except Exception as e:
            return error_response(e)

    @app.route("/api/shipping-lists", methods=["GET"])
    def api_shipping_lists():
        try:
            return jsonify(
                shipments().shipping_lists(request.args.get("start"), request.args.get("end"))
            )
        except Exception as e:
            return error_response(e)

    @app.route("/api/shipping-lists", methods=["POST"])
    def api_save_shipping_list():
        data = request.get_json(silent=True) or {}
        try:
            saved = shipments().save_shipping_list(
                data.get("transport_id"),
                data.get("transport_name"),
                data.get("date"),
                data.get("orders") or [],
            )
            return jsonify({"success": True, "data": saved}), 201
        except Exception as e:
            return error_response(e)

    @app.route("/api/payment-methods", methods=["GET"])
    def api_payment_methods():
        try:
            return jsonify(repository().list_payment_methods())
        except Exception as e:
            return error_response(e)

    @app.route("/api/payment-methods", methods=["POST"])
    def api_create_payment_method():
        data = request.get_json(silent=True) or {}
        try:
            return jsonify(repository().create_payment_method(data.get("name"))), 201
        except Exception as e:
            return error_response(e)

    # =========================================================================
    # SALES
    # =========================================================================

    def _sale_date() -> str:
        return request.args.get("date") or date.today().isoformat()

    @app.route("/api/sales")
    def api_sales():
        try:
            sales = DailySalesService(client()).load_sales(_sale_date(), request.args.get("type"))
            return jsonify(sales)
        except Exception as e:
            return error_response(e)

    @app.route("/api/sales/summary")
    def api_sales_summary():
        try:
            return jsonify(DailySalesService(client()).summary(_sale_date()))
        except Exception as e:
            return error_response(e)

    @app.route("/api/sales/<sale_id>", methods=["PATCH"])
    def api_update_sale(sale_id):
        data = request.get_json(silent=True) or {}
        try:
            update = DailySalesService(client()).update_sale(sale_id, data)
            return jsonify({"success": True, "data": update.model_dump()})
        except Exception as e:
            return error_response(e)

    @app.route("/api/sales/<sale_id>", methods=["DELETE"])
    def api_delete_sale(sale_id):
        try:
            DailySalesService(client()).delete_sale(sale_id)
            return jsonify({"success": True})
        except Exception as e:
            return error_response(e)

    @app.route("/api/permissions/<user_id>")
    def api_permissions(user_id):
        try:
            service = PermissionService(client())
            return jsonify(
                {
                    "is_admin": service.is_admin(user_id),
                    "role": service.user_role(user_id),
                    "permissions": service.user_permissions(user_id),
                }
            )
        except Exception as e:
            return error_response(e)

    # =========================================================================
    # META FEED
    # =========================================================================

    @app.route("/meta-feed", methods=["GET", "OPTIONS"])
    def meta_feed():
        headers = {**CORS_HEADERS, "Access-Control-Allow-Origin": allowed_origin(request.headers.get("Origin"))}
        if request.method == "OPTIONS":
            return Response(status=204, headers=headers)

        limit = request.args.get("limit", type=int)
        try:
            service = MetaFeedService(wait_for_client(feed_handle))
            service.authorize(request.args.get("token"))
            result = service.build(format=request.args.get("format", "csv"), limit=limit)
        except PermissionDeniedError as e:
            return jsonify({"error": str(e)}), 401, headers
        except FeedDataError as e:
            return jsonify({"error": str(e)}), 500, headers
        except FYLError as e:
            return jsonify({"error": "Error obteniendo datos del feed", "details": str(e)}), 500, headers

        if result.format == "json":
            return jsonify(result.as_json()), 200, headers
        return Response(
            result.body,
            status=200,
            mimetype="text/csv",
            headers={
                **headers,
                "Content-Type": "text/csv; charset=utf-8",
                "Content-Disposition": f'attachment; filename="{config.feed.filename}"',
            },
        )

    # =========================================================================
    # AUTO TAGS
    # =========================================================================

    @app.route("/auto-tags", methods=["POST", "OPTIONS"])
    def auto_tags():
        headers = {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Headers": CORS_HEADERS["Access-Control-Allow-Headers"],
        }
        if request.method == "OPTIONS":
            return Response("ok", headers=headers)

        data = request.get_json(silent=True) or {}
        if not all(data.get(k) for k in ("image_url", "product_name", "category_hint")):
            return (
                jsonify({"error": "image_url, product_name y category_hint son requeridos"}),
                400,
                headers,
            )
        try:
            tag_request = AutoTagRequest(**data)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400, headers

        async def run():
            async with tagger_factory() as tagger:
                return await tagger.tag(tag_request)

        try:
            result = asyncio.run(run())
        except (AutoTagError, ValueError) as e:
            return jsonify({"error": str(e)}), 500, headers
        return jsonify(result.model_dump()), 200, headers

    return app


def parse_args():
    parser = argparse.ArgumentParser(description="FYL JSON back-office")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=5001, help="Port (default: 5001)")
    parser.add_argument("--debug", action="store_true", help="Flask debug mode")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    console.print("\n[bold cyan]FYL Back-office[/bold cyan]")
    console.print(f"[dim]Listening on[/dim] http://{args.host}:{args.port}\n")
    create_app().run(host=args.host, port=args.port, debug=args.debug)
