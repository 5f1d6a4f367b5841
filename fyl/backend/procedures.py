"""
Names of the remote procedures the back-office calls.

The procedures live in the database; their contracts (parameters and JSON
results) are documented next to each name.
"""

# =============================================================================
# ORDERS
# =============================================================================

# (p_item_id, p_status, p_checked_by) -> {"all_items_picked": bool}
UPDATE_ORDER_ITEM_STATUS = "rpc_update_order_item_status"

# (p_order_id, p_payment_method)
CLOSE_ORDER = "rpc_close_order"

# (p_order_id)
MARK_ORDER_AS_SENT = "rpc_mark_order_as_sent"

# (p_order_id)
MARK_LABELS_PRINTED = "rpc_mark_labels_printed"

# (p_order_id) -> {"order_number": ...}
SEND_ORDER_TO_LOCAL = "rpc_send_order_to_local"

# (p_order_id)
MARK_ORDER_AS_RETURNED = "rpc_mark_order_as_devolucion"

# (p_order_id)
REVERT_ORDER_TO_PICKED = "rpc_revert_order_to_picked"

# (p_item_id) -> {"was_picked": bool}
CANCEL_ORDER_ITEM = "rpc_cancel_order_item"

# (p_variant_ids) -> [{"promo_type", "fixed_amount", "variant_ids", ...}]
ACTIVE_PROMOTIONS_FOR_VARIANTS = "get_active_promotions_for_variants"

# =============================================================================
# SHIPMENTS
# =============================================================================

# (p_order_id, p_labels_count)
UPDATE_ORDER_LABELS_COUNT = "rpc_update_order_labels_count"

# (p_customer_id, p_transport_id)
UPDATE_CUSTOMER_TRANSPORT = "rpc_update_customer_transport"

# (p_transport_id, p_transport_name, p_list_date, p_orders_data) -> saved list
SAVE_SHIPPING_LIST = "rpc_save_shipping_list"

# (p_start_date, p_end_date) -> [saved lists]
GET_SHIPPING_LISTS = "rpc_get_shipping_lists"

# =============================================================================
# CART & CUSTOMERS
# =============================================================================

# () -> order created from the caller's open cart
CHECKOUT_CART = "rpc_checkout_cart"

# (p_user_id, p_email, p_phone, p_full_name, p_dni)
#   -> {"action": "linked" | "created" | "already_linked", "customer_id", "match_type"}
LINK_OR_CREATE_CUSTOMER = "rpc_link_or_create_customer"

# (p_customers) -> {"created", "errors", "processed", "error_details"}
BULK_CREATE_CUSTOMERS = "rpc_bulk_create_customers"

# =============================================================================
# CATALOG, SALES & FEEDS
# =============================================================================

# (cat) -> [{"id", "name", ...}]
TYPES_BY_CATEGORY = "get_types_by_category"

# (type_id) -> [{"id", "name", ...}]
ATTRIBUTES_BY_TYPE = "get_attributes_by_type"

# (p_sale_date, p_sale_type)
#   -> {"total_sales", "total_amount", "local": {...}, "envios": {...}}
DAILY_SALES_SUMMARY = "get_daily_sales_summary"

# () -> feed rows ready for the Meta catalog
META_FEED = "get_meta_feed"

# =============================================================================
# PERMISSIONS
# =============================================================================

# (check_user_id) -> bool
IS_SUPER_ADMIN = "is_super_admin"

# (check_user_id, permission_key, action) -> bool
HAS_PERMISSION = "has_permission"
