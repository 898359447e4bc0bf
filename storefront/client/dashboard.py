# storefront/client/dashboard.py
"""Terminal admin dashboard: overview, catalog, orders, customers and notification templates."""
import sys
import json
import asyncio
import getpass
import logging
import argparse
from collections import Counter
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence

from storefront.client.api import ApiError, EntityApi, StorefrontApi, DEFAULT_API_URL
from storefront.client.labels import (
    RANK_LABELS, REQUEST_STATUS_LABELS, format_price, format_status, short_id, to_decimal,
)
from storefront.client.storage import LocalStorage, DEFAULT_STORAGE_FILE

logger = logging.getLogger(__name__)

TRUE_WORDS = {"1", "true", "yes", "ja", "on", "y"}
FALSE_WORDS = {"0", "false", "no", "nein", "off", "n", ""}


def coerce_inline_value(raw, kind: str = "str"):
    """Convert an inline-edit string to the column's type. Raises ValueError."""
    if kind == "str":
        return "" if raw is None else str(raw)
    text = "" if raw is None else str(raw).strip()
    if kind == "int":
        return int(text) if text else None
    if kind == "float":
        return float(text.replace(",", ".")) if text else None
    if kind == "bool":
        lowered = text.lower()
        if lowered in TRUE_WORDS:
            return True
        if lowered in FALSE_WORDS:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if kind == "json":
        return json.loads(text) if text else None
    raise ValueError(f"unknown column type: {kind}")


class AdminTable:
    """One admin list page: every mutation is followed by a full reload."""

    def __init__(self, entity: EntityApi, sort: Optional[str] = None,
                 on_error: Optional[Callable[[str], None]] = None):
        self.entity = entity
        self.sort = sort
        self.on_error = on_error or (lambda msg: logger.error("[DASHBOARD] %s", msg))
        self.rows: List[dict] = []

    async def load(self) -> List[dict]:
        try:
            self.rows = await self.entity.list(sort=self.sort)
        except ApiError as e:
            self.on_error(f"Fehler beim Laden: {e.message}")
        return self.rows

    async def _mutate(self, call, failure: str) -> bool:
        try:
            await call
        except ApiError as e:
            self.on_error(f"{failure}: {e.message}")
            return False
        await self.load()
        return True

    async def create(self, data: dict) -> bool:
        return await self._mutate(self.entity.create(data), "Fehler beim Speichern")

    async def update(self, row_id: str, data: dict) -> bool:
        return await self._mutate(self.entity.update(row_id, data), "Fehler beim Speichern")

    async def commit_inline(self, row_id: str, field: str, raw, kind: str = "str") -> bool:
        try:
            value = coerce_inline_value(raw, kind)
        except ValueError as e:
            self.on_error(f"Ungültiger Wert für {field}: {e}")
            return False
        return await self.update(row_id, {field: value})

    async def delete(self, row_id: str) -> bool:
        return await self._mutate(self.entity.delete(row_id), "Fehler beim Löschen")


def render_table(headers: Sequence[str], rows: Iterable[Sequence]) -> str:
    rows = [["" if c is None else str(c) for c in r] for r in rows]
    widths = [len(h) for h in headers]
    for r in rows:
        widths = [max(w, len(c)) for w, c in zip(widths, r)]

    def line(cells):
        return "  ".join(c.ljust(w) for c, w in zip(cells, widths)).rstrip()

    out = [line(headers), line(["-" * w for w in widths])]
    out.extend(line(r) for r in rows)
    return "\n".join(out)


def customer_name(order: dict) -> str:
    user = order.get("user") or {}
    return user.get("full_name") or user.get("username") or "Unbekannt"


def _date(value: Optional[str]) -> str:
    return (value or "")[:10]


def _preview(text: Optional[str], width: int = 40) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= width else text[: width - 1] + "…"


class Dashboard:
    def __init__(self, api: StorefrontApi, out: Callable[[str], None] = print):
        self.api = api
        self.out = out
        self.categories = AdminTable(api.category, on_error=out)
        self.products = AdminTable(api.product, sort="-created_at", on_error=out)
        self.orders = AdminTable(api.request, sort="-created_at", on_error=out)
        self.customers = AdminTable(api.user, on_error=out)
        self.templates = AdminTable(api.notification_template, on_error=out)

    async def login(self, username: str, password: str) -> Optional[str]:
        """Returns the error shown to the operator, or ``None`` on success."""
        try:
            await self.api.auth.login(username=username, password=password)
        except ApiError as e:
            return "Verbindungsfehler" if e.network_error else e.message
        return None

    def logout(self):
        self.api.client.set_token(None)

    async def load_all(self):
        await asyncio.gather(
            self.categories.load(), self.products.load(), self.orders.load(), self.customers.load(),
        )

    def overview(self) -> dict:
        orders = self.orders.rows
        sales = Counter()
        for order in orders:
            for item in order.get("request_items") or []:
                sales[item.get("name_snapshot")] += item.get("quantity_snapshot") or 0
        recent = sorted(orders, key=lambda o: o.get("created_at") or "", reverse=True)[:5]
        return {
            "total_revenue": sum((to_decimal(o.get("total_sum")) for o in orders), Decimal("0")),
            "total_orders": len(orders),
            "total_customers": len(self.customers.rows),
            "top_product": sales.most_common(1)[0][0] if sales else "-",
            "recent_orders": recent,
        }

    # ---------- views ----------
    def render_overview(self) -> str:
        o = self.overview()
        head = (
            f"Umsatz: {format_price(o['total_revenue'])}   Bestellungen: {o['total_orders']}   "
            f"Kunden: {o['total_customers']}   Top-Produkt: {o['top_product']}"
        )
        rows = [
            (short_id(r["id"]), customer_name(r), format_price(r.get("total_sum")),
             format_status(r.get("status")), _date(r.get("created_at")))
            for r in o["recent_orders"]
        ]
        return head + "\n\n" + render_table(["Nr.", "Kunde", "Summe", "Status", "Datum"], rows)

    def render_products(self) -> str:
        rows = [
            (p["id"], p.get("name"), p.get("sku"), format_price(p.get("price")), p.get("stock") or 0,
             (p.get("category") or {}).get("name") or "-")
            for p in self.products.rows
        ]
        return render_table(["ID", "Name", "SKU", "Preis", "Bestand", "Kategorie"], rows)

    def render_orders(self, status: Optional[str] = None) -> str:
        orders = [o for o in self.orders.rows if not status or o.get("status") == status]
        rows = [
            (short_id(o["id"]), customer_name(o), f"{len(o.get('request_items') or [])} Artikel",
             format_price(o.get("total_sum")), format_status(o.get("status")), _date(o.get("created_at")))
            for o in orders
        ]
        return render_table(["Nr.", "Kunde", "Artikel", "Summe", "Status", "Datum"], rows)

    def render_customers(self) -> str:
        rows = [
            (c.get("telegram_id") or "-", c.get("full_name") or "-", f"@{c.get('username') or '-'}",
             format_status(c.get("rank"), RANK_LABELS) or "-",
             (c.get("_count") or {}).get("requests") or 0, _date(c.get("created_at")))
            for c in self.customers.rows
        ]
        return render_table(["Telegram", "Name", "Username", "Rang", "Bestellungen", "Registriert"], rows)

    def render_templates(self, status: Optional[str] = None) -> str:
        templates = [t for t in self.templates.rows if not status or t.get("trigger_status") == status]
        rows = [
            (t["id"], t.get("name"), format_status(t.get("trigger_status")), "ja" if t.get("is_active") else "nein",
             _preview(t.get("message_template")))
            for t in templates
        ]
        return render_table(["ID", "Name", "Status", "Aktiv", "Nachricht"], rows)

    async def set_order_status(self, order_id: str, status: str, message: Optional[str] = None) -> bool:
        try:
            await self.api.admin.update_request_status(order_id, status, message)
        except ApiError as e:
            self.out(f"Fehler beim Aktualisieren: {e.message}")
            return False
        await self.orders.load()
        return True

    async def set_vip(self, user_id: str, is_vip: bool) -> bool:
        try:
            await self.api.admin.toggle_vip(user_id, is_vip)
        except ApiError as e:
            self.out(f"Fehler beim Aktualisieren: {e.message}")
            return False
        await self.customers.load()
        return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storefront-dashboard", description="Nebula Supply admin dashboard")
    parser.add_argument("--api-url", default=DEFAULT_API_URL)
    parser.add_argument("--storage", default=DEFAULT_STORAGE_FILE, help="token storage file")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login")
    login.add_argument("username")
    login.add_argument("--password")

    sub.add_parser("logout")
    sub.add_parser("overview")
    sub.add_parser("products")
    sub.add_parser("customers")

    orders = sub.add_parser("orders")
    orders.add_argument("--status", choices=sorted(REQUEST_STATUS_LABELS))

    status = sub.add_parser("set-status")
    status.add_argument("order_id")
    status.add_argument("status", choices=sorted(REQUEST_STATUS_LABELS))
    status.add_argument("--message")

    edit = sub.add_parser("edit-product")
    edit.add_argument("product_id")
    edit.add_argument("field")
    edit.add_argument("value")
    edit.add_argument("--type", dest="kind", default="str", choices=["str", "int", "float", "bool", "json"])

    delete = sub.add_parser("delete-product")
    delete.add_argument("product_id")

    vip = sub.add_parser("vip")
    vip.add_argument("user_id")
    vip.add_argument("state", choices=["on", "off"])

    templates = sub.add_parser("templates")
    templates.add_argument("--status", choices=sorted(REQUEST_STATUS_LABELS))
    return parser


async def run(args, out: Callable[[str], None] = print) -> int:
    storage = LocalStorage(args.storage)
    api = StorefrontApi(base_url=args.api_url, storage=storage,
                        on_unauthorized=lambda: out("Sitzung abgelaufen, bitte erneut anmelden."))
    dash = Dashboard(api, out=out)
    try:
        if args.command == "login":
            password = args.password or getpass.getpass("Passwort: ")
            error = await dash.login(args.username, password)
            out(error or "Angemeldet.")
            return 1 if error else 0
        if args.command == "logout":
            dash.logout()
            out("Abgemeldet.")
            return 0
        if not api.auth.is_authenticated:
            out("Nicht angemeldet. Bitte zuerst `storefront-dashboard login <username>` ausführen.")
            return 1

        if args.command == "set-status":
            return 0 if await dash.set_order_status(args.order_id, args.status, args.message) else 1
        if args.command == "edit-product":
            ok = await dash.products.commit_inline(args.product_id, args.field, args.value, args.kind)
            return 0 if ok else 1
        if args.command == "delete-product":
            return 0 if await dash.products.delete(args.product_id) else 1
        if args.command == "vip":
            return 0 if await dash.set_vip(args.user_id, args.state == "on") else 1
        if args.command == "templates":
            await dash.templates.load()
            out(dash.render_templates(args.status))
            return 0

        await dash.load_all()
        if args.command == "overview":
            out(dash.render_overview())
        elif args.command == "products":
            out(dash.render_products())
        elif args.command == "orders":
            out(dash.render_orders(args.status))
        elif args.command == "customers":
            out(dash.render_customers())
        return 0
    finally:
        await api.aclose()


def main(argv: Optional[List[str]] = None):
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(message)s")
    args = build_parser().parse_args(argv)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
