# scan_pipeline.py (v1.4)
import logging

import requests

from app_config import ConfigError
from history_store import HistoryStoreError
from inventory_error_handler import NETWORK, PERMISSION, PROCESSING, AUTH

LOOKUP = "lookup"
UPDATE = "update"


class Found:
    def __init__(self, product, stock_before, stock_after):
        self.product = product
        self.stock_before = stock_before
        self.stock_after = stock_after

    @property
    def code(self):
        return self.product.get("code")


class NotFound:
    def __init__(self, code):
        self.code = code


class Failed:
    def __init__(self, error_kind, stage, message, code=None, product_name=None):
        self.error_kind = error_kind
        self.stage = stage
        self.message = message
        self.code = code
        self.product_name = product_name


def _kind_from_result(result):
    kind = result.get("error_kind")
    if kind == NETWORK:
        return NETWORK
    if kind in (PERMISSION, AUTH):
        return PERMISSION
    return PROCESSING


def _kind_from_exception(e):
    if isinstance(e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout, ConnectionError, TimeoutError)):
        return NETWORK
    return PROCESSING


class ScanResolutionPipeline:
    """
    Turns an accepted code into exactly one outcome: look the product up,
    and if it exists increment its stock with a single remote call.
    The lookup always finishes before the increment is attempted.
    """
    def __init__(self, context):
        self.context = context

    def resolve(self, code):
        client = self.context.client
        try:
            lookup = client.find_product_by_code(code)
        except Exception as e:
            logging.error(f"Unexpected error looking up {code}: {e}", exc_info=True)
            return Failed(_kind_from_exception(e), LOOKUP, str(e), code=code)
        if not lookup["success"]:
            return Failed(_kind_from_result(lookup), LOOKUP, lookup.get("message"), code=code)

        product = lookup.get("data")
        if not product:
            logging.info(f"No product with code {code}")
            return NotFound(code)

        stock_before = product.get("stock_quantity") or 0
        try:
            update = client.increment_product_stock(product["id"])
        except Exception as e:
            logging.error(f"Unexpected error incrementing stock for {product.get('id')}: {e}", exc_info=True)
            return Failed(_kind_from_exception(e), UPDATE, str(e), code=code, product_name=product.get("name"))
        if not update["success"]:
            return Failed(_kind_from_result(update), UPDATE, update.get("message"), code=code, product_name=product.get("name"))

        updated = update.get("data") or {}
        stock_after = updated.get("stock_quantity")
        if stock_after is None:
            stock_after = stock_before + 1
        found = Found(dict(product, **updated), stock_before, stock_after)
        logging.info(f"Stock for '{product.get('name')}' {stock_before} -> {stock_after}")
        self._record_history(found, code)
        return found

    def _record_history(self, found, code):
        history = self.context.history
        if history is None or not history.configured:
            return
        try:
            history.insert_inventory_history(
                user_id=self.context.user_id,
                product_id=found.product.get("id"),
                product_name=found.product.get("name"),
                barcode=code,
                stock_before=found.stock_before,
                stock_after=found.stock_after,
                image_url=found.product.get("image_url"),
            )
        except (ConfigError, HistoryStoreError) as e:
            logging.warning(f"Scan of {code} succeeded but history was not saved: {e}")
        except Exception as e:
            # Stock is already incremented at this point
            logging.warning(f"Scan of {code} succeeded but history raised unexpectedly: {e}", exc_info=True)
