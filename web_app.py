# web_app.py (v1.12)
import logging

import extra_streamlit_components as stx
import streamlit as st

from app_config import ConfigError, configure_logging, load_settings, read_secrets
from app_context import AppContext
from camera_component import WebRtcCameraBackend, barcode_scanner_component, vibrate
from camera_session import is_secure_origin
from inventory_error_handler import NETWORK
from parsers import is_valid_ean
from product_operations import (
    count_scan_history,
    get_categories,
    get_products,
    get_scan_history,
    get_scan_history_entry,
    process_add_category,
    process_add_product,
    process_delete_category,
    process_delete_product,
    process_update_category,
    process_update_product,
    search_products,
    summarize_inventory,
)
from scan_filter import ScanFilter
from scan_pipeline import ScanResolutionPipeline
from scanner_controller import ScannerController
from scanner_feedback import SCAN_HAPTIC
from ui_components import (
    category_badge,
    category_form,
    product_form,
    product_stats,
    scan_history_table,
    show_notice,
)

REFRESH_COOKIE = "inventory_refresh_token"
MODES = ("Dashboard", "Inventory", "Scanner", "Categories", "Scan History")

st.set_page_config(page_title="Inventory", layout="wide")

# --- Configuration ---
settings = load_settings()
configure_logging(settings)
try:
    SECRETS = read_secrets(st.secrets)
except ConfigError as e:
    st.error(f"{e}. Add them to .streamlit/secrets.toml or the environment.")
    st.stop()

# --- App State Management ---
if 'context' not in st.session_state: st.session_state.context = AppContext.from_config(SECRETS, settings)
if 'log' not in st.session_state: st.session_state.log = []
if 'last_op_result' not in st.session_state: st.session_state.last_op_result = None
if 'prefill_code' not in st.session_state: st.session_state.prefill_code = None
if 'pending_mode' not in st.session_state: st.session_state.pending_mode = None
if 'scanner_events' not in st.session_state: st.session_state.scanner_events = {"not_found_code": None, "stock_updated": False}

context = st.session_state.context
cookie_manager = stx.CookieManager()


# --- Helper Functions ---
def log_result(result):
    st.session_state.log.insert(0, result['message'])
    st.session_state.last_op_result = result


def run_operation(operation_func, *args):
    with st.spinner("Processing..."):
        result = operation_func(context, *args)
        log_result(result)
    st.rerun()


def restore_session():
    if context.session and not context.session.is_expired():
        return
    refresh_token = (context.session.refresh_token if context.session else None) or cookie_manager.get(cookie=REFRESH_COOKIE)
    if not refresh_token:
        return
    result = context.client.refresh_session(refresh_token)
    if result["success"]:
        return
    if result.get("error_kind") == NETWORK:
        logging.warning(f"Could not reach the auth service to restore the session: {result['message']}")
    else:
        logging.info("Stored session could not be refreshed, signing in again.")
        cookie_manager.delete(REFRESH_COOKIE, key="refresh_cookie_delete")
        st.session_state.persisted_refresh_token = None


def remember_session():
    """Writes the refresh token to the cookie whenever it has been rotated."""
    token = context.session.refresh_token if context.session else None
    if token and token != st.session_state.get("persisted_refresh_token"):
        cookie_manager.set(REFRESH_COOKIE, token, key="refresh_cookie_remember")
        st.session_state.persisted_refresh_token = token


def get_scanner():
    if 'scanner' not in st.session_state:
        events = st.session_state.scanner_events

        def on_product_not_found(code):
            events["not_found_code"] = code

        def on_stock_updated():
            events["stock_updated"] = True

        scanner_settings = settings["scanner"]
        backend = WebRtcCameraBackend(key="inventory_scanner")
        st.session_state.scanner_backend = backend
        st.session_state.scanner = ScannerController(
            ScanResolutionPipeline(context),
            ScanFilter(scanner_settings["cooldown_seconds"], scanner_settings["rearm_delay_seconds"]),
            backend,
            scanner_settings,
            on_product_not_found=on_product_not_found,
            on_stock_updated=on_stock_updated,
            secure_context=is_secure_origin(dict(st.context.headers)),
        )
    return st.session_state.scanner


def auth_screen():
    st.title("Inventory")
    login_tab, register_tab = st.tabs(["Sign in", "Create account"])
    with login_tab:
        with st.form(key="login_form"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign in")
            if submitted:
                result = context.client.sign_in_with_password(email.strip(), password)
                if result["success"]:
                    remember_session()
                    st.rerun()
                else:
                    st.error(result["message"])
    with register_tab:
        with st.form(key="register_form"):
            full_name = st.text_input("Full name")
            email = st.text_input("Email", key="register_email")
            password = st.text_input("Password", type="password", key="register_password")
            submitted = st.form_submit_button("Create account")
            if submitted:
                if len(password) < 6:
                    st.warning("The password must have at least 6 characters.")
                else:
                    result = context.client.sign_up(email.strip(), password, full_name.strip())
                    if not result["success"]:
                        st.error(result["message"])
                    elif context.session:
                        remember_session()
                        st.rerun()
                    else:
                        st.success("Account created. Check your email to confirm it, then sign in.")


def dashboard_page():
    result = get_products(context)
    if not result["success"]:
        st.error(result["message"])
        return
    products = result["data"] or []
    summary = summarize_inventory(products)
    product_stats(summary)
    st.subheader("Low stock")
    if summary["low_stock"]:
        st.dataframe(
            [{"Product": p["name"], "Code": p["code"], "Stock": p["stock_quantity"], "Minimum": p["minimum_stock"]} for p in summary["low_stock"]],
            use_container_width=True, hide_index=True,
        )
    else:
        st.info("Every product is above its minimum stock.")


def inventory_page():
    categories_result = get_categories(context)
    categories = (categories_result.get("data") or []) if categories_result["success"] else []

    with st.popover("📷 Scan a code for a new product"):
        scanned_value = barcode_scanner_component(key="product_code_scanner")
        if scanned_value:
            st.session_state.prefill_code = scanned_value
            st.rerun()

    prefill_code = st.session_state.prefill_code
    with st.expander("Add product", expanded=bool(prefill_code)):
        if prefill_code:
            st.info(f"Code {prefill_code} is ready to use. Complete the form to create the product.")
            if prefill_code.isdigit() and len(prefill_code) in (8, 12, 13) and not is_valid_ean(prefill_code):
                st.warning("The check digit of this code does not match. Verify it before saving.")
        form_data, image_file, submitted = product_form("add_product_form", categories, prefill_code=prefill_code, allow_image=context.storage is not None)
        if submitted:
            st.session_state.prefill_code = None
            run_operation(process_add_product, form_data, image_file)

    query = st.text_input("Search by name or code", placeholder="Search products...", label_visibility="collapsed")
    result = search_products(context, query)
    if not result["success"]:
        st.error(result["message"])
        return
    products = result["data"] or []
    if not products:
        st.info("No products found.")
        return
    for product in products:
        low = product["stock_quantity"] <= product["minimum_stock"]
        header = f"{'⚠️ ' if low else ''}{product['name']}  ·  {product['code']}  ·  stock {product['stock_quantity']}"
        with st.expander(header):
            st.caption(category_badge(product.get("category")))
            form_data, image_file, submitted = product_form(f"edit_{product['id']}", categories, product=product, allow_image=context.storage is not None)
            if submitted:
                run_operation(process_update_product, product, form_data, image_file)
            if st.button("Delete product", key=f"delete_{product['id']}"):
                run_operation(process_delete_product, product)


def categories_page():
    result = get_categories(context)
    if not result["success"]:
        st.error(result["message"])
        return
    categories = result["data"] or []
    with st.expander("Add category"):
        form_data, submitted = category_form("add_category_form", categories)
        if submitted:
            run_operation(process_add_category, form_data)
    if not categories:
        st.info("You have no categories yet.")
    for category in categories:
        with st.expander(category_badge(category)):
            form_data, submitted = category_form(f"edit_category_{category['id']}", categories, category=category)
            if submitted:
                run_operation(process_update_category, category["id"], form_data)
            if st.button("Delete category", key=f"delete_category_{category['id']}"):
                run_operation(process_delete_category, category["id"])


@st.fragment(run_every=1)
def scanner_status(scanner):
    events = st.session_state.scanner_events
    notice = scanner.notice
    if scanner.scanned_code:
        st.info(f"Checking {scanner.scanned_code}...")
    if scanner.scan_count != st.session_state.get("last_scan_count", 0):
        st.session_state.last_scan_count = scanner.scan_count
        vibrate(SCAN_HAPTIC)
    show_notice(notice)
    if notice is not None and st.session_state.get("last_haptic") is not notice:
        st.session_state.last_haptic = notice
        vibrate(notice.haptic)
    if events["stock_updated"]:
        events["stock_updated"] = False
        st.toast(notice.message if notice else "Stock updated", icon="✅")
    if events["not_found_code"]:
        code, events["not_found_code"] = events["not_found_code"], None
        st.session_state.prefill_code = code
        st.session_state.pending_mode = "Inventory"
        st.rerun(scope="app")
    st.subheader("Scanned this session")
    scan_history_table(scanner.history)


def scanner_page():
    scanner = get_scanner()
    col1, col2, col3 = st.columns(3)
    with col1:
        if st.button("Start scanner", disabled=scanner.is_open, use_container_width=True):
            scanner.open()
            st.rerun()
    with col2:
        if st.button("Stop scanner", disabled=not scanner.is_open, use_container_width=True):
            scanner.close()
            st.rerun()
    with col3:
        if st.button("Retry", use_container_width=True):
            scanner.retry()
            st.rerun()
    st.caption("Place the barcode inside the camera frame. Each scan adds one unit to the product's stock.")
    st.session_state.scanner_backend.render()
    scanner_status(scanner)


def history_page():
    result = get_scan_history(context)
    if not result["success"]:
        st.error(result["message"])
        return
    records = result["data"]
    if not records:
        st.info("No scans recorded yet.")
        return
    count_result = count_scan_history(context)
    if count_result["success"]:
        st.metric("Total scans", f"{count_result['data']:,}")
    st.dataframe(
        [
            {"Scanned at": r.get("scanned_at"), "Product": r.get("product_name"), "Barcode": r.get("barcode"),
             "Before": r.get("stock_before"), "After": r.get("stock_after")}
            for r in records
        ],
        use_container_width=True, hide_index=True,
    )
    labels = {r["id"]: f"{r.get('scanned_at')}  ·  {r.get('product_name')}" for r in records}
    entry_id = st.selectbox("Scan details", list(labels.keys()), format_func=lambda eid: labels[eid])
    if entry_id:
        entry_result = get_scan_history_entry(context, entry_id)
        if not entry_result["success"]:
            st.error(entry_result["message"])
            return
        entry = entry_result["data"]
        col1, col2 = st.columns([1, 3])
        with col1:
            if entry.get("image_url"):
                st.image(entry["image_url"], width=120)
        with col2:
            st.markdown(f"**{entry.get('product_name')}** (`{entry.get('barcode')}`)")
            st.caption(f"Stock {entry.get('stock_before')} → {entry.get('stock_after')} at {entry.get('scanned_at')}")


# --- Main App ---
restore_session()
remember_session()

if not context.session:
    auth_screen()
else:
    if st.session_state.pending_mode:
        st.session_state.mode = st.session_state.pending_mode
        st.session_state.pending_mode = None
    st.sidebar.markdown(f"**Signed in:** `{context.session.email or context.user_id}`")
    for warning in context.warnings:
        st.sidebar.warning(warning)
    if st.sidebar.button("Sign out"):
        if 'scanner' in st.session_state:
            st.session_state.scanner.close()
        context.client.sign_out()
        cookie_manager.delete(REFRESH_COOKIE, key="refresh_cookie_signout")
        st.session_state.persisted_refresh_token = None
        st.rerun()
    if st.session_state.last_op_result:
        if st.session_state.last_op_result.get('success'): st.success(st.session_state.last_op_result['message'])
        else: st.error(st.session_state.last_op_result['message'])
        st.session_state.last_op_result = None

    st.sidebar.title("Menu")
    mode = st.sidebar.radio("Go to:", MODES, key="mode")
    if mode != "Scanner" and st.session_state.get('scanner') and st.session_state.scanner.is_open:
        st.session_state.scanner.close()
    st.header(mode)

    if mode == "Dashboard": dashboard_page()
    elif mode == "Inventory": inventory_page()
    elif mode == "Scanner": scanner_page()
    elif mode == "Categories": categories_page()
    elif mode == "Scan History": history_page()

    st.markdown("---")
    st.subheader("Activity Log")
    if st.button("Clear Log"):
        st.session_state.log = []
        st.session_state.last_op_result = None
        st.rerun()
    for entry in st.session_state.log:
        st.info(entry)
