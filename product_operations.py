# product_operations.py (v1.7)
import logging
import re

from app_config import ConfigError
from history_store import HistoryStoreError
from inventory_error_handler import not_authenticated, PROCESSING
from parsers import build_search_filter, parse_non_negative_int, parse_optional_price

HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")
DEFAULT_CATEGORY_COLOR = "#6366f1"
DEFAULT_CATEGORY_ICON = "📦"


def _invalid(message):
    return {"success": False, "message": message, "error_kind": PROCESSING}


def _validate_product_form(form):
    """Turns raw form input into a products row. Returns (payload, error message)."""
    name = (form.get("name") or "").strip()
    code = (form.get("code") or "").strip()
    if not name: return None, "Product name is required."
    if not code: return None, "Product code is required."
    stock, error = parse_non_negative_int(form.get("stock_quantity"), "Stock quantity")
    if error: return None, error
    minimum, error = parse_non_negative_int(form.get("minimum_stock"), "Minimum stock")
    if error: return None, error
    sale_price, error = parse_optional_price(form.get("sale_price"), "Sale price")
    if error: return None, error
    cost_price, error = parse_optional_price(form.get("cost_price"), "Cost price")
    if error: return None, error
    payload = {
        "name": name,
        "code": code,
        "category_id": form.get("category_id") or None,
        "stock_quantity": stock,
        "minimum_stock": minimum,
        "sale_price": sale_price,
        "cost_price": cost_price,
        "unit_of_measure": (form.get("unit_of_measure") or "").strip() or None,
        "active": bool(form.get("active", True)),
    }
    if "image_url" in form:
        payload["image_url"] = form.get("image_url") or None
    return payload, None


def _upload_image(context, image_file):
    if not image_file:
        return None, None
    if not context.storage:
        return None, _invalid("Image uploads are not configured.")
    result = context.storage.upload_product_image(context.user_id, image_file)
    if not result["success"]:
        return None, result
    return result["url"], None


def _discard_image(context, image_url):
    if not image_url or not context.storage:
        return
    result = context.storage.delete_product_image(context.user_id, image_url)
    if not result["success"]:
        logging.warning(f"Could not remove image {image_url}: {result['message']}")


def process_add_product(context, form, image_file=None):
    payload, error = _validate_product_form(form)
    if error: return _invalid(error)
    if not context.session: return not_authenticated()
    image_url, upload_error = _upload_image(context, image_file)
    if upload_error: return upload_error
    if image_url:
        payload["image_url"] = image_url
    result = context.client.insert_product(payload)
    if not result["success"]:
        # The row was never written, so the uploaded image would be orphaned
        _discard_image(context, image_url)
        return result
    logging.info(f"Product '{payload['name']}' ({payload['code']}) added.")
    return {"success": True, "message": f"Product '{payload['name']}' added.", "data": result["data"]}


def process_update_product(context, product, form, image_file=None):
    payload, error = _validate_product_form(form)
    if error: return _invalid(error)
    if not context.session: return not_authenticated()
    old_image_url = product.get("image_url")
    new_image_url, upload_error = _upload_image(context, image_file)
    if upload_error: return upload_error
    if new_image_url:
        payload["image_url"] = new_image_url
    result = context.client.update_product(product["id"], payload)
    if not result["success"]:
        _discard_image(context, new_image_url)
        return result
    if result.get("data") is None:
        _discard_image(context, new_image_url)
        return _invalid("Product not found.")
    replaced = new_image_url or ("image_url" in payload and payload["image_url"] != old_image_url)
    if replaced and old_image_url:
        _discard_image(context, old_image_url)
    return {"success": True, "message": f"Product '{payload['name']}' updated.", "data": result["data"]}


def process_delete_product(context, product):
    result = context.client.delete_product(product["id"])
    if not result["success"]: return result
    _discard_image(context, product.get("image_url"))
    return {"success": True, "message": f"Product '{product.get('name')}' deleted."}


def get_products(context):
    return context.client.list_products()


def search_products(context, query):
    """Case-insensitive match on name or code. A blank query lists everything."""
    search_filter = build_search_filter(query)
    if search_filter is None:
        return get_products(context)
    return context.client.list_products({"or": search_filter})


def summarize_inventory(products):
    total_products = len(products)
    units_in_stock = sum(p.get("stock_quantity") or 0 for p in products)
    stock_value = sum((p.get("sale_price") or 0) * (p.get("stock_quantity") or 0) for p in products)
    low_stock = [p for p in products if 0 < (p.get("stock_quantity") or 0) <= (p.get("minimum_stock") or 0)]
    out_of_stock = [p for p in products if (p.get("stock_quantity") or 0) == 0]
    return {
        "total_products": total_products,
        "units_in_stock": units_in_stock,
        "stock_value": stock_value,
        "average_units": round(units_in_stock / total_products) if total_products else 0,
        "low_stock_count": len(low_stock),
        "out_of_stock_count": len(out_of_stock),
        "low_stock": low_stock,
    }


# --- Categories ---

def _validate_category_form(form):
    name = (form.get("name") or "").strip()
    if not name: return None, "Category name is required."
    color = (form.get("color") or DEFAULT_CATEGORY_COLOR).strip()
    if not HEX_COLOR.match(color): return None, "Color must be a hex value like #6366f1."
    return {
        "name": name,
        "description": (form.get("description") or "").strip() or None,
        "parent_category_id": form.get("parent_category_id") or None,
        "color": color,
        "icon": (form.get("icon") or DEFAULT_CATEGORY_ICON).strip(),
        "active": bool(form.get("active", True)),
    }, None


def get_categories(context):
    return context.client.list_categories()


def process_add_category(context, form):
    payload, error = _validate_category_form(form)
    if error: return _invalid(error)
    result = context.client.insert_category(payload)
    if not result["success"]: return result
    return {"success": True, "message": f"Category '{payload['name']}' added.", "data": result["data"]}


def process_update_category(context, category_id, form):
    payload, error = _validate_category_form(form)
    if error: return _invalid(error)
    if payload["parent_category_id"] == category_id:
        return _invalid("A category cannot be its own parent.")
    result = context.client.update_category(category_id, payload)
    if not result["success"]: return result
    return {"success": True, "message": f"Category '{payload['name']}' updated.", "data": result["data"]}


def process_delete_category(context, category_id):
    count_result = context.client.count_products_in_category(category_id)
    if not count_result["success"]: return count_result
    count = count_result["data"]
    if count > 0:
        return _invalid(f"Cannot delete the category because it has {count} product(s) assigned.")
    result = context.client.delete_category(category_id)
    if not result["success"]: return result
    return {"success": True, "message": "Category deleted."}


# --- Scan history ---

def get_scan_history(context):
    if not context.user_id: return not_authenticated()
    try:
        return {"success": True, "data": context.history.query_inventory_history(context.user_id)}
    except (ConfigError, HistoryStoreError) as e:
        logging.error(f"Error fetching inventory history: {e}")
        return {"success": False, "message": "Could not load the inventory history.", "error_kind": PROCESSING}


def count_scan_history(context):
    if not context.user_id: return not_authenticated()
    try:
        return {"success": True, "data": context.history.count_inventory_history(context.user_id)}
    except (ConfigError, HistoryStoreError) as e:
        logging.error(f"Error counting inventory history: {e}")
        return {"success": False, "message": "Could not count the inventory history.", "error_kind": PROCESSING}


def get_scan_history_entry(context, entry_id):
    """One history record, only if it belongs to the signed-in user."""
    if not context.user_id: return not_authenticated()
    try:
        entry = context.history.get_inventory_history_by_id(entry_id, context.user_id)
    except (ConfigError, HistoryStoreError) as e:
        logging.error(f"Error fetching inventory history entry {entry_id}: {e}")
        return {"success": False, "message": "Could not load the scan record.", "error_kind": PROCESSING}
    if entry is None:
        return _invalid("Scan record not found.")
    return {"success": True, "data": entry}
