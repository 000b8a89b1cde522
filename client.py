"""
Inventory API client

Used by dashboards and scripts to talk to the REST backend. Only input
checks and refresh-after-write live here; stock bookkeeping belongs to
the server.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from schemas import OrderStatus, Role

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


# Dashboard helpers

def filter_products(products: Iterable[Dict[str, Any]], search: str = "", category: str = "all", in_stock_only: bool = True) -> List[Dict[str, Any]]:
    """Catalog view: name or category contains ``search``, optional category, in stock."""
    needle = search.strip().lower()
    result = []
    for product in products:
        if needle and needle not in (product.get("name") or "").lower() and needle not in (product.get("category") or "").lower():
            continue
        if category != "all" and product.get("category") != category:
            continue
        if in_stock_only and product.get("quantity", 0) <= 0:
            continue
        result.append(product)
    return result


def product_categories(products: Iterable[Dict[str, Any]]) -> List[str]:
    seen = []
    for product in products:
        category = product.get("category")
        if category and category not in seen:
            seen.append(category)
    return seen


def check_order_quantity(product: Dict[str, Any], quantity: int) -> None:
    available = product.get("quantity", 0)
    if quantity < 1 or quantity > available:
        raise ValueError(f"Select between 1 and {available}")


def can_cancel_order(order: Dict[str, Any]) -> bool:
    return order.get("status") == OrderStatus.pending.value


def order_summary(orders: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    orders = list(orders)
    return {
        "total_revenue": sum(float(o.get("total_price") or 0) for o in orders),
        "pending": sum(1 for o in orders if o.get("status") == OrderStatus.pending.value),
        "shipped": sum(1 for o in orders if o.get("status") == OrderStatus.shipped.value),
    }


def user_summary(users: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    users = list(users)
    return {
        "total": len(users),
        "admin": sum(1 for u in users if u.get("role") == Role.admin.value),
        "customer": sum(1 for u in users if u.get("role") == Role.customer.value),
    }


class InventoryClient:
    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, http: Optional[httpx.Client] = None, timeout: float = 10.0):
        if http is None:
            if not base_url:
                raise ValueError("base_url or http client is required")
            http = httpx.Client(base_url=base_url, timeout=timeout)
        self.http = http
        self.token = token
        self.user: Optional[Dict[str, Any]] = None

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self.http.request(method, path, headers=headers, **kwargs)
        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            logger.debug("%s %s failed: %s %s", method, path, response.status_code, message)
            raise ApiError(response.status_code, message)
        return response.json()

    # Auth
    def _remember(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self.token = data["token"]
        self.user = data["user"]
        return data["user"]

    def signup(self, name: str, email: str, password: str, role: Optional[str] = None) -> Dict[str, Any]:
        body = {"name": name, "email": email, "password": password}
        if role:
            body["role"] = role
        return self._remember(self._request("POST", "/auth/signup", json=body))

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self._remember(self._request("POST", "/auth/login", json={"email": email, "password": password}))

    def profile(self) -> Dict[str, Any]:
        return self._request("GET", "/auth/profile")["user"]

    # Products
    def list_products(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/products")

    def get_product(self, product_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/products/{product_id}")

    def create_product(self, name: str, category: str, price: float, quantity: int, description: Optional[str] = None) -> Dict[str, Any]:
        if price < 0 or quantity < 0:
            raise ValueError("price and quantity must not be negative")
        body = {"name": name, "category": category, "price": price, "quantity": quantity}
        if description is not None:
            body["description"] = description
        return self._request("POST", "/products", json=body)

    def update_product(self, product_id: str, **fields) -> Dict[str, Any]:
        return self._request("PUT", f"/products/{product_id}", json=fields)

    def delete_product(self, product_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/products/{product_id}")

    # Orders
    def list_orders(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/orders")

    def list_user_orders(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        user_id = user_id or (self.user or {}).get("id")
        if not user_id:
            raise ValueError("user_id is required when not logged in")
        return self._request("GET", f"/orders/user/{user_id}")

    def place_order(self, product_id: str, quantity: int) -> Dict[str, Any]:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        return self._request("POST", "/orders", json={"product": product_id, "quantity": quantity})

    def update_order(self, order_id: str, status: Optional[str] = None, quantity: Optional[int] = None, product_id: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if status is not None:
            body["status"] = status
        if quantity is not None:
            body["quantity"] = quantity
        if product_id is not None:
            body["product"] = product_id
        return self._request("PUT", f"/orders/{order_id}", json=body)

    def set_order_status(self, order_id: str, status: str) -> Dict[str, Any]:
        return self.update_order(order_id, status=status)

    def delete_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/orders/{order_id}")

    def order_product(self, product: Dict[str, Any], quantity: int) -> Dict[str, Any]:
        """Place an order after checking it against the product's shown stock."""
        check_order_quantity(product, quantity)
        return self.place_order(product["id"], quantity)

    def cancel_order(self, order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Cancel a pending order and return the refreshed product.

        The server puts the reserved units back when the order is deleted,
        so the product is only read here, never written.
        """
        if not can_cancel_order(order):
            raise ValueError("Only pending orders can be cancelled")
        self.delete_order(order["id"])
        product = order.get("product")
        product_id = product.get("id") if isinstance(product, dict) else product
        if not product_id:
            return None
        try:
            return self.get_product(product_id)
        except ApiError as e:
            if e.status_code == 404:
                return None
            raise

    # Users
    def list_users(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/users")
