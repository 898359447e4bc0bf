# storefront/client/cart.py
"""Cart state kept in sync with ``/api/cart-items``.

Mutations are applied locally first and reverted when the server call fails.
Guests (no user) keep the cart in ``LocalStorage`` instead.
"""
import copy
import uuid
import asyncio
import logging
import itertools
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from storefront.client.api import ApiClient, ApiError, EntityApi
from storefront.client.labels import cart_totals, utc_timestamp
from storefront.client.storage import LocalStorage, GUEST_CART_KEY

logger = logging.getLogger(__name__)

ERROR_TITLE = "Fehler"

Notifier = Callable[[str, str, str], None]


def log_notifier(variant: str, title: str, description: str):
    level = logging.WARNING if variant == "error" else logging.INFO
    logger.log(level, "[TOAST] %s: %s", title, description)


class CartStore:
    def __init__(self, api: ApiClient, storage: Optional[LocalStorage] = None,
                 notify: Optional[Notifier] = None, user: Optional[dict] = None):
        self.api = api
        self.storage = storage if storage is not None else api.storage
        self.notify = notify or log_notifier
        self.user = user
        self.cart_items = EntityApi(api, "/cart-items")
        self.product_api = EntityApi(api, "/products")
        self.items: List[dict] = []
        self.products: Dict[str, dict] = {}
        self.is_open = False
        self.is_loading = False
        self._temp_ids = itertools.count(1)
        if self.is_guest:
            self.items = list(self.storage.get_item(GUEST_CART_KEY, []))

    @property
    def is_guest(self) -> bool:
        return not (self.user and self.user.get("id"))

    @property
    def total_items(self) -> int:
        return cart_totals(self.items, self.products)[0]

    @property
    def total_price(self) -> Decimal:
        return cart_totals(self.items, self.products)[1]

    def open(self):
        self.is_open = True

    def close(self):
        self.is_open = False

    def _persist_guest(self):
        self.storage.set_item(GUEST_CART_KEY, self.items)

    def _fail(self, description: str, error: ApiError, snapshot: Optional[List[dict]] = None):
        logger.error("[CART] %s (%s): %s", description, error.status, error.message)
        if snapshot is not None:
            self.items = snapshot
        self.notify("error", ERROR_TITLE, description)

    # ---------- loading ----------
    async def set_user(self, user: Optional[dict]):
        self.user = user
        self.products = {}
        if self.is_guest:
            self.items = list(self.storage.get_item(GUEST_CART_KEY, []))
        else:
            self.items = []
        await self.refresh()

    async def refresh(self):
        """Full refetch of the cart, then any products not yet known."""
        self.is_loading = True
        try:
            if not self.is_guest:
                self.items = await self.cart_items.list()
                for item in self.items:
                    if item.get("product"):
                        self.products.setdefault(item["product_id"], item["product"])
            missing = {i["product_id"] for i in self.items} - set(self.products)
            if missing:
                await self.fetch_products(sorted(missing))
        except ApiError as e:
            logger.error("[CART] failed to fetch cart (%s): %s", e.status, e.message)
        finally:
            self.is_loading = False

    async def fetch_products(self, product_ids: List[str]):
        results = await asyncio.gather(
            *(self.product_api.get(pid) for pid in product_ids), return_exceptions=True
        )
        for pid, res in zip(product_ids, results):
            if isinstance(res, ApiError):
                logger.warning("[CART] product %s unavailable: %s", pid, res.message)
            elif isinstance(res, BaseException):
                raise res
            elif res:
                self.products[res["id"]] = res

    # ---------- mutations ----------
    async def add(self, product_id: str, quantity: int = 1, options: Optional[dict] = None) -> Optional[dict]:
        if self.is_guest:
            return await self._add_guest(product_id, quantity, options)

        temp_id = f"temp-{next(self._temp_ids)}"
        self.items.append({
            "id": temp_id,
            "user_id": self.user["id"],
            "product_id": product_id,
            "quantity": quantity,
            "selected_options": options or {},
            "created_at": utc_timestamp(),
        })
        self.is_open = True

        try:
            created = await self.cart_items.create({
                "product_id": product_id,
                "quantity": quantity,
                "selected_options": options or None,
            })
        except ApiError as e:
            self.items = [i for i in self.items if i["id"] != temp_id]
            self._fail("Konnte Artikel nicht hinzufügen.", e)
            return None

        # the server merges quantities into an existing row for the same product
        replaced = []
        for i in self.items:
            if i["id"] == temp_id:
                replaced.append(created)
            elif i["id"] != created["id"]:
                replaced.append(i)
        self.items = replaced

        if created.get("product"):
            self.products[product_id] = created["product"]
        elif product_id not in self.products:
            await self.fetch_products([product_id])
        self.notify("success", "Hinzugefügt! 🛒", "Artikel wurde zum Warenkorb hinzugefügt.")
        return created

    async def _add_guest(self, product_id: str, quantity: int, options: Optional[dict]) -> dict:
        options = options or {}
        for item in self.items:
            if item["product_id"] == product_id and (item.get("selected_options") or {}) == options:
                item["quantity"] = (item.get("quantity") or 1) + quantity
                row = item
                break
        else:
            row = {
                "id": f"guest-{uuid.uuid4().hex[:12]}",
                "product_id": product_id,
                "quantity": quantity,
                "selected_options": options,
                "created_at": utc_timestamp(),
            }
            self.items.append(row)
        self._persist_guest()
        self.is_open = True
        if product_id not in self.products:
            await self.fetch_products([product_id])
        self.notify("success", "Hinzugefügt! 🛒", "Artikel wurde zum Warenkorb hinzugefügt.")
        return row

    async def remove(self, item_id: str):
        snapshot = copy.deepcopy(self.items)
        self.items = [i for i in self.items if i["id"] != item_id]
        if self.is_guest:
            self._persist_guest()
            return
        try:
            await self.cart_items.delete(item_id)
        except ApiError as e:
            self._fail("Konnte Artikel nicht löschen.", e, snapshot)

    async def update_quantity(self, item_id: str, quantity: int):
        if quantity < 1:
            return
        snapshot = copy.deepcopy(self.items)
        self.items = [dict(i, quantity=quantity) if i["id"] == item_id else i for i in self.items]
        if self.is_guest:
            self._persist_guest()
            return
        try:
            await self.cart_items.update(item_id, {"quantity": quantity})
        except ApiError as e:
            self._fail("Konnte Menge nicht aktualisieren.", e, snapshot)

    async def clear(self):
        snapshot = copy.deepcopy(self.items)
        self.items = []
        if self.is_guest:
            self.storage.remove_item(GUEST_CART_KEY)
            return
        try:
            await self.api.delete("/cart-items")
        except ApiError as e:
            self._fail("Konnte Warenkorb nicht leeren.", e, snapshot)

    # ---------- realtime ----------
    def _concerns_user(self, event: str, data) -> bool:
        if self.is_guest or not isinstance(data, dict):
            return False
        user_id = self.user["id"]
        if event == "cart:update":
            return data.get("action") == "refresh" and data.get("user_id") == user_id
        if event == "table:cart_items":
            rows = (data.get("new") or {}, data.get("old") or {})
            return any(r.get("user_id") == user_id for r in rows)
        return False

    async def handle_realtime(self, event: str, data) -> bool:
        """Refetch when a socket event touches this user's cart. Returns whether it did."""
        if not self._concerns_user(event, data):
            return False
        logger.debug("[CART] realtime %s, refetching", event)
        await self.refresh()
        return True
