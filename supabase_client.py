# supabase_client.py (v1.6)
import logging
import time

import requests

from inventory_error_handler import handle_api_error, not_authenticated, NETWORK, AUTH

PRODUCT_LIST_SELECT = "*,category:categories(id,name,color,icon)"
REQUEST_TIMEOUT = 30


class AuthSession:
    """The signed-in user's tokens. Passed around explicitly, never looked up."""
    def __init__(self, access_token, refresh_token, user_id, email=None, expires_at=None):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.user_id = user_id
        self.email = email
        self.expires_at = expires_at

    @classmethod
    def from_payload(cls, payload):
        user = payload.get("user") or {}
        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in"):
            expires_at = int(time.time()) + int(payload["expires_in"])
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            user_id=user.get("id"),
            email=user.get("email"),
            expires_at=expires_at,
        )

    def is_expired(self, now=None):
        if not self.expires_at:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - 30


class SupabaseClient:
    def __init__(self, base_url, anon_key):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.session = None

    @property
    def user_id(self):
        return self.session.user_id if self.session else None

    def _headers(self, extra=None):
        token = self.session.access_token if self.session else self.anon_key
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _make_request(self, method, endpoint, params=None, data=None, headers=None, _retried=False):
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, headers=self._headers(headers), params=params, json=data, timeout=REQUEST_TIMEOUT)
            if response.status_code == 401 and not _retried and self.session and self.session.refresh_token:
                logging.info(f"Access token rejected on {method} {endpoint}, refreshing session.")
                if self.refresh_session(self.session.refresh_token)["success"]:
                    return self._make_request(method, endpoint, params=params, data=data, headers=headers, _retried=True)
            response.raise_for_status()
            result = {"success": True, "data": None}
            if response.status_code != 204 and response.content:
                result["data"] = response.json()
            content_range = response.headers.get("Content-Range")
            if content_range and "/" in content_range:
                total = content_range.split("/")[-1]
                result["count"] = int(total) if total.isdigit() else None
            return result
        except (requests.exceptions.RequestException, ValueError) as e:
            return handle_api_error(e, f"{method} {endpoint}")

    # --- Auth ---

    def _start_session(self, result):
        payload = result.get("data") or {}
        if payload.get("access_token"):
            self.session = AuthSession.from_payload(payload)
            logging.info(f"Signed in user {self.session.user_id}")
        return result

    def sign_in_with_password(self, email, password):
        result = self._make_request('POST', "/auth/v1/token", params={"grant_type": "password"},
                                    data={"email": email, "password": password})
        if not result["success"]:
            if result.get("error_kind") != NETWORK:
                return {"success": False, "message": "Incorrect email or password.", "error_kind": AUTH}
            return result
        return self._start_session(result)

    def sign_up(self, email, password, full_name):
        result = self._make_request('POST', "/auth/v1/signup",
                                    data={"email": email, "password": password, "data": {"full_name": full_name}})
        if not result["success"]:
            if result.get("error_kind") != NETWORK:
                return {"success": False, "message": "Could not create the account. The email may already be in use.", "error_kind": AUTH}
            return result
        return self._start_session(result)

    def refresh_session(self, refresh_token):
        """
        Exchanges a refresh token for a new session. The current session is
        kept while the request is in flight and when the service cannot be
        reached; it is dropped only when the token is rejected.
        """
        result = self._make_request('POST', "/auth/v1/token", params={"grant_type": "refresh_token"},
                                    data={"refresh_token": refresh_token},
                                    headers={"Authorization": f"Bearer {self.anon_key}"}, _retried=True)
        if not result["success"]:
            if result.get("error_kind") != NETWORK:
                logging.info("Refresh token rejected, signing out.")
                self.session = None
            else:
                logging.warning(f"Session refresh failed, keeping current session: {result['message']}")
            return result
        return self._start_session(result)

    def sign_out(self):
        if not self.session:
            return {"success": True, "data": None}
        result = self._make_request('POST', "/auth/v1/logout", _retried=True)
        if not result["success"]:
            logging.warning(f"Sign out request failed: {result['message']}")
        self.session = None
        return {"success": True, "data": None}

    def get_user(self):
        if not self.session:
            return not_authenticated()
        return self._make_request('GET', "/auth/v1/user")

    # --- Products ---

    def _scoped(self, params=None):
        scoped = {"user_id": f"eq.{self.user_id}"}
        if params:
            scoped.update(params)
        return scoped

    @staticmethod
    def _first_row(result):
        if result["success"] and isinstance(result.get("data"), list):
            result["data"] = result["data"][0] if result["data"] else None
        return result

    def list_products(self, extra_params=None):
        if not self.session: return not_authenticated()
        params = self._scoped({"select": PRODUCT_LIST_SELECT, "order": "created_at.desc"})
        if extra_params:
            params.update(extra_params)
        return self._make_request('GET', "/rest/v1/products", params=params)

    def find_product_by_code(self, code):
        """Exact code match within the signed-in user's products. data is None on a miss."""
        if not self.session: return not_authenticated()
        params = self._scoped({"select": "*", "code": f"eq.{code}", "limit": 1})
        return self._first_row(self._make_request('GET', "/rest/v1/products", params=params))

    def insert_product(self, payload):
        if not self.session: return not_authenticated()
        row = dict(payload, user_id=self.user_id)
        return self._first_row(self._make_request('POST', "/rest/v1/products", data=row,
                                                  headers={"Prefer": "return=representation"}))

    def update_product(self, product_id, payload):
        if not self.session: return not_authenticated()
        return self._first_row(self._make_request('PATCH', "/rest/v1/products", params=self._scoped({"id": f"eq.{product_id}"}),
                                                  data=payload, headers={"Prefer": "return=representation"}))

    def delete_product(self, product_id):
        if not self.session: return not_authenticated()
        return self._make_request('DELETE', "/rest/v1/products", params=self._scoped({"id": f"eq.{product_id}"}))

    def increment_product_stock(self, product_id, amount=1):
        """
        Atomic server-side increment. The database function scopes the update
        to auth.uid() and returns the updated row.
        """
        if not self.session: return not_authenticated()
        result = self._make_request('POST', "/rest/v1/rpc/increment_product_stock",
                                    data={"p_product_id": product_id, "p_amount": amount})
        return self._first_row(result)

    def count_products_in_category(self, category_id):
        if not self.session: return not_authenticated()
        params = self._scoped({"select": "id", "category_id": f"eq.{category_id}"})
        result = self._make_request('HEAD', "/rest/v1/products", params=params, headers={"Prefer": "count=exact"})
        if result["success"]:
            result["data"] = result.get("count") or 0
        return result

    # --- Categories ---

    def list_categories(self):
        if not self.session: return not_authenticated()
        params = self._scoped({"select": "*", "order": "order_index.asc,name.asc"})
        return self._make_request('GET', "/rest/v1/categories", params=params)

    def insert_category(self, payload):
        if not self.session: return not_authenticated()
        row = dict(payload, user_id=self.user_id)
        return self._first_row(self._make_request('POST', "/rest/v1/categories", data=row,
                                                  headers={"Prefer": "return=representation"}))

    def update_category(self, category_id, payload):
        if not self.session: return not_authenticated()
        return self._first_row(self._make_request('PATCH', "/rest/v1/categories", params=self._scoped({"id": f"eq.{category_id}"}),
                                                  data=payload, headers={"Prefer": "return=representation"}))

    def delete_category(self, category_id):
        if not self.session: return not_authenticated()
        return self._make_request('DELETE', "/rest/v1/categories", params=self._scoped({"id": f"eq.{category_id}"}))
