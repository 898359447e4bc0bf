# storefront/client/api.py
"""Async HTTP client for the storefront REST API.

``ApiClient`` wraps ``httpx.AsyncClient`` with Bearer auth taken from
``LocalStorage``; the entity, auth and admin helpers sit on top of it.
"""
import os
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from storefront.client.storage import LocalStorage, TOKEN_KEY

logger = logging.getLogger(__name__)

DEFAULT_API_URL = os.getenv("STOREFRONT_API_URL", "http://localhost:8000/api")

FALLBACK_MESSAGE = "API request failed"
NETWORK_ERROR_MESSAGE = "Verbindung zum Server fehlgeschlagen. Bitte überprüfe, ob der Server läuft."
LOGIN_FAILED_MESSAGE = "Login fehlgeschlagen"


class ApiError(Exception):
    def __init__(self, status: int, message: str, payload: Optional[dict] = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.payload = payload or {}

    @property
    def network_error(self) -> bool:
        return self.status == 0


def error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


def _query_value(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_params(filters: Optional[dict] = None, sort: Optional[str] = None,
                       limit: Optional[int] = None) -> Dict[str, str]:
    params = {k: _query_value(v) for k, v in (filters or {}).items() if v is not None}
    if sort:
        params["sort"] = str(sort)
    if limit:
        params["limit"] = str(limit)
    return params


def normalize_array(result) -> List[dict]:
    """Coerce list responses (plain array, paginated or keyed) into a list."""
    if isinstance(result, list):
        return result
    if not result:
        return []
    if isinstance(result, dict):
        if "data" in result:
            data = result["data"]
            if isinstance(data, list):
                return data
            return [data] if data else []
        for key in ("products", "users", "requests"):
            if isinstance(result.get(key), list):
                return result[key]
        if result.get("id") or result.get("sku") or result.get("name"):
            return [result]
    return []


class ApiClient:
    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        storage: Optional[LocalStorage] = None,
        on_unauthorized: Optional[Callable[[], Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self.storage = storage if storage is not None else LocalStorage()
        self.on_unauthorized = on_unauthorized
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    @property
    def token(self) -> Optional[str]:
        return self.storage.get_item(TOKEN_KEY)

    def set_token(self, token: Optional[str]):
        if token:
            self.storage.set_item(TOKEN_KEY, token)
        else:
            self.storage.remove_item(TOKEN_KEY)

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    def _force_logout(self):
        logger.info("[API] token rejected, logging out")
        self.set_token(None)
        if self.on_unauthorized:
            self.on_unauthorized()

    async def request(self, method: str, endpoint: str, data: Any = None,
                      params: Optional[dict] = None, files: Optional[dict] = None):
        token = self.token
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        kwargs: Dict[str, Any] = {"headers": headers, "params": params}
        if files is not None:
            kwargs["files"] = files
        elif data is not None:
            kwargs["json"] = data

        try:
            response = await self._http.request(method, endpoint, **kwargs)
        except httpx.TransportError as e:
            logger.error("[API] %s %s failed: %s", method, endpoint, e)
            raise ApiError(0, NETWORK_ERROR_MESSAGE, {"error": str(e)}) from e

        if response.status_code == 401 and token:
            self._force_logout()
        return self._handle_response(method, endpoint, response)

    def _handle_response(self, method: str, endpoint: str, response: httpx.Response):
        is_json = "application/json" in response.headers.get("content-type", "")
        if response.is_error:
            try:
                payload = response.json() if is_json else {"message": response.reason_phrase}
            except ValueError:
                payload = {"message": response.reason_phrase or FALLBACK_MESSAGE}
            if response.status_code >= 500:
                logger.error("[API] server error %s on %s %s: %s", response.status_code, method, endpoint, payload)
            message = error_message(payload, response.reason_phrase or FALLBACK_MESSAGE)
            raise ApiError(response.status_code, message, payload if isinstance(payload, dict) else {"data": payload})

        if response.status_code == 204 or not is_json:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def get(self, endpoint: str, params: Optional[dict] = None):
        return await self.request("GET", endpoint, params=params)

    async def post(self, endpoint: str, data: Any = None, files: Optional[dict] = None):
        return await self.request("POST", endpoint, data=data, files=files)

    async def patch(self, endpoint: str, data: Any = None):
        return await self.request("PATCH", endpoint, data=data)

    async def put(self, endpoint: str, data: Any = None):
        return await self.request("PUT", endpoint, data=data)

    async def delete(self, endpoint: str):
        return await self.request("DELETE", endpoint)


class EntityApi:
    """list/filter/get/create/update/delete against one REST collection."""

    def __init__(self, client: ApiClient, base_path: str):
        self.client = client
        self.base_path = base_path

    async def list(self, sort: Optional[str] = None, limit: Optional[int] = None) -> List[dict]:
        return await self.filter({}, sort, limit)

    async def filter(self, filters: Optional[dict] = None, sort: Optional[str] = None,
                     limit: Optional[int] = None) -> List[dict]:
        params = build_query_params(filters, sort, limit)
        try:
            result = await self.client.get(self.base_path, params)
        except ApiError as e:
            logger.error("[API] list %s failed (%s): %s", self.base_path, e.status, e.message)
            raise
        return normalize_array(result)

    async def get(self, item_id: str):
        return await self.client.get(f"{self.base_path}/{item_id}")

    async def create(self, data: dict):
        return await self.client.post(self.base_path, data)

    async def update(self, item_id: str, data: dict):
        return await self.client.patch(f"{self.base_path}/{item_id}", data)

    async def delete(self, item_id: str):
        return await self.client.delete(f"{self.base_path}/{item_id}")


ENTITY_PATHS = {
    "product": "/products",
    "category": "/categories",
    "brand": "/brands",
    "department": "/departments",
    "user": "/users",
    "cart_item": "/cart-items",
    "request": "/requests",
    "ticket": "/tickets",
    "vip_plan": "/vip-plans",
    "notification_template": "/notification-templates",
}


class AuthApi:
    def __init__(self, client: ApiClient):
        self.client = client

    async def login(self, **credentials) -> dict:
        try:
            result = await self.client.post("/auth/login", credentials)
        except ApiError as e:
            if e.network_error:
                raise
            raise ApiError(e.status, error_message(e.payload, LOGIN_FAILED_MESSAGE), e.payload) from e
        self.client.set_token(result.get("token"))
        return result

    async def register(self, **fields) -> dict:
        result = await self.client.post("/auth/register", fields)
        self.client.set_token(result.get("token"))
        return result

    async def telegram_webapp(self, init_data: str) -> dict:
        result = await self.client.post("/auth/telegram-webapp", {"initData": init_data})
        self.client.set_token(result.get("token"))
        return result

    async def me(self) -> dict:
        return await self.client.get("/auth/me")

    async def update_me(self, **fields) -> dict:
        return await self.client.patch("/auth/me", fields)

    async def logout(self):
        try:
            await self.client.post("/auth/logout")
        finally:
            self.client.set_token(None)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.client.token)


class AdminApi:
    def __init__(self, client: ApiClient):
        self.client = client

    async def get_stats(self):
        return await self.client.get("/admin/stats")

    async def list_users(self, **params):
        return await self.client.get("/admin/users", build_query_params(params))

    async def toggle_vip(self, user_id: str, is_vip: bool):
        return await self.client.patch(f"/admin/users/{user_id}/vip", {"is_vip": is_vip})

    async def get_chat_sessions(self) -> List[dict]:
        return normalize_array(await self.client.get("/admin/chats"))

    async def get_chat_history(self, session_id: str) -> List[dict]:
        return normalize_array(await self.client.get(f"/admin/chats/{session_id}/messages"))

    async def get_top_products(self, limit: int = 10):
        return await self.client.get("/admin/top-products", {"limit": str(limit)})

    async def get_recent_activity(self):
        return await self.client.get("/admin/recent-activity")

    async def get_sales_data(self, days: int = 30):
        return await self.client.get("/admin/sales-data", {"period": str(days)})

    async def get_category_revenue(self, days: int = 30):
        return await self.client.get("/admin/category-revenue", {"period": str(days)})

    async def get_user_growth(self, days: int = 30):
        return await self.client.get("/admin/user-growth", {"period": str(days)})

    async def update_request_status(self, request_id: str, status: str, message: Optional[str] = None):
        body = {"status": status}
        if message:
            body["message"] = message
        return await self.client.patch(f"/requests/{request_id}/status", body)

    async def bulk_import(self, products: List[dict]):
        return await self.client.post("/admin/products/bulk-import", {"products": products})


class StorefrontApi:
    """Entry point bundling the entity, auth and admin helpers."""

    def __init__(self, client: Optional[ApiClient] = None, **client_kwargs):
        self.client = client or ApiClient(**client_kwargs)
        self.auth = AuthApi(self.client)
        self.admin = AdminApi(self.client)
        self.entities = {name: EntityApi(self.client, path) for name, path in ENTITY_PATHS.items()}

    def __getattr__(self, name: str) -> EntityApi:
        entities = self.__dict__.get("entities", {})
        if name in entities:
            return entities[name]
        raise AttributeError(name)

    async def upload_file(self, filename: str, content: bytes, content_type: str = "image/jpeg") -> dict:
        return await self.client.post("/upload", files={"file": (filename, content, content_type)})

    async def aclose(self):
        await self.client.aclose()
