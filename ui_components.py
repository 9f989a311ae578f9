# ui_components.py (v1.6)
import streamlit as st

from scanner_feedback import SUCCESS, INFO

UNITS_OF_MEASURE = ["", "unit", "box", "pack", "kg", "g", "l", "ml", "m"]


def category_badge(category):
    if not category:
        return "-"
    return f"{category.get('icon', '')} {category.get('name', '')}".strip()


def _category_options(categories, exclude_id=None):
    options = {"": "No category"}
    for category in categories:
        if category.get("id") != exclude_id:
            options[category["id"]] = category_badge(category)
    return options


def product_form(form_key, categories, product=None, prefill_code=None, allow_image=True):
    """
    Renders the product form. Returns (form_data, image_file, submitted).
    image_file is a dict in the shape ImageStorage expects, or None.
    """
    product = product or {}
    options = _category_options(categories)
    category_ids = list(options.keys())
    current_category = product.get("category_id") or ""
    with st.form(key=form_key, clear_on_submit=not product):
        col1, col2 = st.columns(2)
        with col1:
            name = st.text_input("Name", value=product.get("name", ""))
            code = st.text_input("Code / barcode", value=prefill_code or product.get("code", ""))
            category_id = st.selectbox(
                "Category", category_ids,
                index=category_ids.index(current_category) if current_category in category_ids else 0,
                format_func=lambda cid: options[cid],
            )
            unit = product.get("unit_of_measure") or ""
            unit_of_measure = st.selectbox("Unit of measure", UNITS_OF_MEASURE,
                                           index=UNITS_OF_MEASURE.index(unit) if unit in UNITS_OF_MEASURE else 0)
        with col2:
            stock_quantity = st.number_input("Stock", min_value=0, step=1, value=int(product.get("stock_quantity") or 0))
            minimum_stock = st.number_input("Minimum stock", min_value=0, step=1, value=int(product.get("minimum_stock") or 0))
            sale_price = st.text_input("Sale price", value="" if product.get("sale_price") is None else str(product["sale_price"]))
            cost_price = st.text_input("Cost price", value="" if product.get("cost_price") is None else str(product["cost_price"]))
        active = st.checkbox("Active", value=product.get("active", True))
        uploaded = None
        if allow_image:
            if product.get("image_url"):
                st.image(product["image_url"], width=120)
            uploaded = st.file_uploader("Product image", type=["jpg", "jpeg", "png", "webp"])
        submitted = st.form_submit_button("Save product")

    form_data = {
        "name": name, "code": code, "category_id": category_id or None,
        "stock_quantity": stock_quantity, "minimum_stock": minimum_stock,
        "sale_price": sale_price, "cost_price": cost_price,
        "unit_of_measure": unit_of_measure, "active": active,
    }
    image_file = None
    if uploaded is not None:
        image_file = {"file_name": uploaded.name, "file_content": uploaded.getvalue(), "content_type": uploaded.type}
    return form_data, image_file, submitted


def category_form(form_key, categories, category=None):
    category = category or {}
    options = _category_options(categories, exclude_id=category.get("id"))
    parent_ids = list(options.keys())
    current_parent = category.get("parent_category_id") or ""
    with st.form(key=form_key, clear_on_submit=not category):
        name = st.text_input("Name", value=category.get("name", ""))
        description = st.text_area("Description", value=category.get("description") or "")
        col1, col2, col3 = st.columns(3)
        with col1:
            color = st.color_picker("Color", value=category.get("color") or "#6366f1")
        with col2:
            icon = st.text_input("Icon", value=category.get("icon") or "📦", max_chars=4)
        with col3:
            parent_category_id = st.selectbox(
                "Parent", parent_ids,
                index=parent_ids.index(current_parent) if current_parent in parent_ids else 0,
                format_func=lambda cid: options[cid],
            )
        active = st.checkbox("Active", value=category.get("active", True))
        submitted = st.form_submit_button("Save category")
    form_data = {
        "name": name, "description": description, "color": color, "icon": icon,
        "parent_category_id": parent_category_id or None, "active": active,
    }
    return form_data, submitted


def product_stats(summary):
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Products", f"{summary['total_products']:,}")
    col2.metric("Stock value", f"${summary['stock_value']:,.0f}")
    col3.metric("Low stock", summary["low_stock_count"])
    col4.metric("Out of stock", summary["out_of_stock_count"])
    st.caption(f"{summary['units_in_stock']:,} units in stock, {summary['average_units']:,} on average per product.")


def show_notice(notice):
    if notice is None:
        return
    text = f"**{notice.title}:** {notice.message}"
    if notice.level == SUCCESS:
        st.success(text)
    elif notice.level == INFO:
        st.info(text)
    else:
        st.error(text)


def scan_history_table(entries):
    """Entries are the scanner's in-memory session history, newest first."""
    if not entries:
        st.info("No scans in this session yet.")
        return
    st.dataframe(
        [
            {
                "Time": entry.timestamp.strftime("%H:%M:%S"),
                "Product": entry.name,
                "Barcode": entry.barcode,
                "Before": entry.stock_before,
                "After": entry.stock_after,
            }
            for entry in entries
        ],
        use_container_width=True,
        hide_index=True,
    )
