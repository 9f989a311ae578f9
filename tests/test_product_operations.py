import unittest
from unittest.mock import MagicMock

from history_store import HistoryStoreError
from product_operations import (
    process_add_product, process_update_product, process_delete_product, search_products, summarize_inventory,
    process_add_category, process_update_category, process_delete_category, get_scan_history,
    count_scan_history, get_scan_history_entry,
)

FORM = {
    "name": "Coffee 500g", "code": " 7701234567890 ", "category_id": "", "stock_quantity": 4, "minimum_stock": 2,
    "sale_price": "12,50", "cost_price": "", "unit_of_measure": "unit", "active": True,
}
IMAGE = {"file_name": "coffee.png", "file_content": b"png", "content_type": "image/png"}


def make_context():
    context = MagicMock()
    context.user_id = "user-1"
    context.session = MagicMock()
    return context


class TestProductOperations(unittest.TestCase):
    def setUp(self):
        self.context = make_context()
        self.client = self.context.client
        self.storage = self.context.storage

    def test_add_product_builds_payload(self):
        self.client.insert_product.return_value = {"success": True, "data": {"id": "p-1"}}

        result = process_add_product(self.context, FORM)

        self.assertTrue(result["success"])
        self.assertEqual(result["message"], "Product 'Coffee 500g' added.")
        payload = self.client.insert_product.call_args[0][0]
        self.assertEqual(payload["code"], "7701234567890")
        self.assertEqual(payload["sale_price"], 12.5)
        self.assertIsNone(payload["cost_price"])
        self.assertIsNone(payload["category_id"])
        self.storage.upload_product_image.assert_not_called()

    def test_zero_price_is_kept(self):
        self.client.insert_product.return_value = {"success": True, "data": {"id": "p-1"}}

        process_add_product(self.context, dict(FORM, sale_price="0", cost_price="0,00"))

        payload = self.client.insert_product.call_args[0][0]
        self.assertEqual(payload["sale_price"], 0.0)
        self.assertEqual(payload["cost_price"], 0.0)
        self.assertIsNotNone(payload["sale_price"])

    def test_add_product_validation(self):
        result = process_add_product(self.context, dict(FORM, name="  "))
        self.assertEqual(result["message"], "Product name is required.")
        result = process_add_product(self.context, dict(FORM, stock_quantity="-2"))
        self.assertEqual(result["message"], "Stock quantity cannot be negative.")
        self.client.insert_product.assert_not_called()

    def test_add_product_with_image(self):
        self.storage.upload_product_image.return_value = {"success": True, "url": "https://img/products/user-1/1-a.webp"}
        self.client.insert_product.return_value = {"success": True, "data": {"id": "p-1"}}

        process_add_product(self.context, FORM, IMAGE)

        self.storage.upload_product_image.assert_called_once_with("user-1", IMAGE)
        self.assertEqual(self.client.insert_product.call_args[0][0]["image_url"], "https://img/products/user-1/1-a.webp")

    def test_failed_insert_removes_uploaded_image(self):
        self.storage.upload_product_image.return_value = {"success": True, "url": "https://img/new.webp"}
        self.storage.delete_product_image.return_value = {"success": True}
        self.client.insert_product.return_value = {"success": False, "message": "duplicate", "error_kind": "duplicate"}

        result = process_add_product(self.context, FORM, IMAGE)

        self.assertEqual(result["error_kind"], "duplicate")
        self.storage.delete_product_image.assert_called_once_with("user-1", "https://img/new.webp")

    def test_upload_failure_stops_insert(self):
        self.storage.upload_product_image.return_value = {"success": False, "message": "Format not allowed. Only JPG, PNG and WebP.", "error_kind": "processing"}
        result = process_add_product(self.context, FORM, IMAGE)
        self.assertFalse(result["success"])
        self.client.insert_product.assert_not_called()

    def test_image_without_storage(self):
        self.context.storage = None
        result = process_add_product(self.context, FORM, IMAGE)
        self.assertEqual(result["message"], "Image uploads are not configured.")

    def test_update_replaces_old_image(self):
        self.storage.upload_product_image.return_value = {"success": True, "url": "https://img/new.webp"}
        self.storage.delete_product_image.return_value = {"success": True}
        self.client.update_product.return_value = {"success": True, "data": {"id": "p-1"}}
        product = {"id": "p-1", "name": "Coffee", "image_url": "https://img/old.webp"}

        result = process_update_product(self.context, product, FORM, IMAGE)

        self.assertTrue(result["success"])
        self.storage.delete_product_image.assert_called_once_with("user-1", "https://img/old.webp")

    def test_update_missing_product(self):
        self.client.update_product.return_value = {"success": True, "data": None}
        result = process_update_product(self.context, {"id": "gone"}, FORM)
        self.assertEqual(result["message"], "Product not found.")

    def test_delete_product_removes_image(self):
        self.client.delete_product.return_value = {"success": True, "data": None}
        self.storage.delete_product_image.return_value = {"success": True}

        result = process_delete_product(self.context, {"id": "p-1", "name": "Coffee", "image_url": "https://img/a.webp"})

        self.assertEqual(result["message"], "Product 'Coffee' deleted.")
        self.storage.delete_product_image.assert_called_once_with("user-1", "https://img/a.webp")

    def test_search(self):
        search_products(self.context, "  ")
        self.client.list_products.assert_called_with()
        search_products(self.context, "cof")
        self.client.list_products.assert_called_with({"or": "(name.ilike.*cof*,code.ilike.*cof*)"})

    def test_summarize_inventory(self):
        products = [
            {"stock_quantity": 10, "minimum_stock": 2, "sale_price": 2.0},
            {"stock_quantity": 1, "minimum_stock": 3, "sale_price": 5.0},
            {"stock_quantity": 0, "minimum_stock": 1, "sale_price": None},
        ]
        summary = summarize_inventory(products)
        self.assertEqual(summary["total_products"], 3)
        self.assertEqual(summary["units_in_stock"], 11)
        self.assertEqual(summary["stock_value"], 25.0)
        self.assertEqual(summary["low_stock_count"], 1)
        self.assertEqual(summary["out_of_stock_count"], 1)
        self.assertEqual(summarize_inventory([])["average_units"], 0)


class TestCategoryOperations(unittest.TestCase):
    def setUp(self):
        self.context = make_context()
        self.client = self.context.client

    def test_add_category_defaults(self):
        self.client.insert_category.return_value = {"success": True, "data": {"id": "c-1"}}
        process_add_category(self.context, {"name": "Drinks", "color": "", "icon": ""})
        payload = self.client.insert_category.call_args[0][0]
        self.assertEqual(payload["color"], "#6366f1")
        self.assertEqual(payload["icon"], "📦")

    def test_invalid_color(self):
        result = process_add_category(self.context, {"name": "Drinks", "color": "red"})
        self.assertFalse(result["success"])
        self.client.insert_category.assert_not_called()

    def test_category_cannot_be_own_parent(self):
        result = process_update_category(self.context, "c-1", {"name": "Drinks", "parent_category_id": "c-1"})
        self.assertEqual(result["message"], "A category cannot be its own parent.")

    def test_delete_category_with_products_is_refused(self):
        self.client.count_products_in_category.return_value = {"success": True, "data": 2}
        result = process_delete_category(self.context, "c-1")
        self.assertEqual(result["message"], "Cannot delete the category because it has 2 product(s) assigned.")
        self.client.delete_category.assert_not_called()

    def test_delete_empty_category(self):
        self.client.count_products_in_category.return_value = {"success": True, "data": 0}
        self.client.delete_category.return_value = {"success": True, "data": None}
        self.assertTrue(process_delete_category(self.context, "c-1")["success"])


class TestScanHistory(unittest.TestCase):
    def test_history_rows(self):
        context = make_context()
        context.history.query_inventory_history.return_value = [{"id": "h-1"}]
        self.assertEqual(get_scan_history(context)["data"], [{"id": "h-1"}])

    def test_history_count(self):
        context = make_context()
        context.history.count_inventory_history.return_value = 7
        self.assertEqual(count_scan_history(context)["data"], 7)
        context.history.count_inventory_history.assert_called_once_with("user-1")

    def test_history_entry_scoped_to_user(self):
        context = make_context()
        context.history.get_inventory_history_by_id.return_value = {"id": "h-1", "product_name": "Coffee"}
        self.assertEqual(get_scan_history_entry(context, "h-1")["data"]["product_name"], "Coffee")
        context.history.get_inventory_history_by_id.assert_called_once_with("h-1", "user-1")

    def test_history_entry_missing(self):
        context = make_context()
        context.history.get_inventory_history_by_id.return_value = None
        self.assertEqual(get_scan_history_entry(context, "h-9")["message"], "Scan record not found.")

    def test_history_failure(self):
        context = make_context()
        context.history.query_inventory_history.side_effect = HistoryStoreError("down")
        result = get_scan_history(context)
        self.assertEqual(result["message"], "Could not load the inventory history.")


if __name__ == '__main__':
    unittest.main()
