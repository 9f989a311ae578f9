# history_store.py (v1.2)
import logging
import uuid

import requests

from app_config import ConfigError

D1_API_URL = "https://api.cloudflare.com/client/v4/accounts/{account_id}/d1/database/{database_id}/query"

SELECT_FOR_USER = "SELECT * FROM inventory_history WHERE user_id = ? ORDER BY scanned_at DESC"
SELECT_BY_ID = "SELECT * FROM inventory_history WHERE id = ? AND user_id = ?"
COUNT_FOR_USER = "SELECT COUNT(*) as count FROM inventory_history WHERE user_id = ?"
INSERT_ENTRY = (
    "INSERT INTO inventory_history "
    "(id, user_id, product_id, product_name, barcode, stock_before, stock_after, image_url, scanned_at) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP) RETURNING *"
)


class HistoryStoreError(Exception):
    """Raised when the D1 API rejects a query or cannot be reached."""


class D1HistoryStore:
    """
    Append-only scan history kept in a Cloudflare D1 table, reached through
    the D1 REST query endpoint.
    """
    def __init__(self, account_id, database_id, api_token):
        self.account_id = account_id
        self.database_id = database_id
        self.api_token = api_token

    @property
    def configured(self):
        return bool(self.account_id and self.database_id and self.api_token)

    def _execute(self, sql, params=None):
        if not self.configured:
            raise ConfigError(
                "Cloudflare D1 credentials not configured. Add CLOUDFLARE_ACCOUNT_ID, "
                "CLOUDFLARE_DATABASE_ID and CLOUDFLARE_D1_TOKEN to your secrets."
            )
        url = D1_API_URL.format(account_id=self.account_id, database_id=self.database_id)
        headers = {"Authorization": f"Bearer {self.api_token}", "Content-Type": "application/json"}
        try:
            response = requests.post(url, headers=headers, json={"sql": sql, "params": params or []}, timeout=30)
        except requests.exceptions.RequestException as e:
            logging.error(f"D1 request failed: {e}")
            raise HistoryStoreError(f"D1 request failed: {e}") from e
        if not response.ok:
            logging.error(f"D1 API Error: {response.status_code} - {response.text}")
            raise HistoryStoreError(f"D1 API Error: {response.status_code} - {response.text}")
        try:
            payload = response.json()
        except ValueError as e:
            logging.error(f"D1 returned an unreadable response: {e}")
            raise HistoryStoreError(f"D1 returned an unreadable response: {e}") from e
        if not isinstance(payload, dict) or not payload.get("success", False) or not payload.get("result"):
            errors = payload.get("errors") if isinstance(payload, dict) else payload
            raise HistoryStoreError(f"D1 query failed: {errors}")
        try:
            return payload["result"][0].get("results") or []
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            raise HistoryStoreError(f"Unexpected D1 result shape: {e}") from e

    def query_inventory_history(self, user_id):
        """All records for a user, newest first."""
        return self._execute(SELECT_FOR_USER, [user_id])

    def insert_inventory_history(self, user_id, product_id, product_name, barcode, stock_before, stock_after, image_url=None):
        rows = self._execute(INSERT_ENTRY, [
            str(uuid.uuid4()), user_id, product_id, product_name, barcode,
            stock_before, stock_after, image_url or None,
        ])
        if not rows:
            raise HistoryStoreError("Failed to insert inventory history record")
        return rows[0]

    def get_inventory_history_by_id(self, entry_id, user_id):
        rows = self._execute(SELECT_BY_ID, [entry_id, user_id])
        return rows[0] if rows else None

    def count_inventory_history(self, user_id):
        rows = self._execute(COUNT_FOR_USER, [user_id])
        return int(rows[0].get("count", 0)) if rows else 0
