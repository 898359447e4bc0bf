# storefront/client/labels.py
"""Display helpers shared by the cart store, the dashboard and the chat inbox."""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Tuple

REQUEST_STATUS_LABELS = {
    "pending": "Ausstehend",
    "confirmed": "Bestätigt",
    "processing": "In Bearbeitung",
    "shipped": "Versendet",
    "completed": "Abgeschlossen",
    "cancelled": "Storniert",
}

TICKET_STATUS_LABELS = {
    "open": "Offen",
    "in_progress": "In Bearbeitung",
    "solved": "Gelöst",
    "closed": "Geschlossen",
}

VERIFICATION_STATUS_LABELS = {
    "pending": "Ausstehend",
    "approved": "Bestätigt",
    "rejected": "Abgelehnt",
}

RANK_LABELS = {
    "nutzer": "Nutzer",
    "kunde": "Kunde",
    "vip": "VIP",
    "vip_plus": "VIP+",
    "nebula": "Nebula",
}

CENT = Decimal("0.01")


def format_status(status: Optional[str], labels: Dict[str, str] = REQUEST_STATUS_LABELS) -> str:
    if not status:
        return ""
    return labels.get(status, status)


def status_badge(status: str, labels: Dict[str, str] = REQUEST_STATUS_LABELS) -> dict:
    return {"label": format_status(status, labels), "css_class": f"status-{status}"}


def to_decimal(value) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def format_price(value, currency: str = "€") -> str:
    return f"{currency}{to_decimal(value).quantize(CENT)}"


def short_id(value: str) -> str:
    return f"#{(value or '')[:8]}"


def utc_timestamp() -> str:
    """Current time as naive UTC ISO, the format server timestamps use."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()


def unit_price(item: dict, product: Optional[dict]) -> Optional[Decimal]:
    """Price of one unit of a cart row, or ``None`` when the product is unknown.

    A price stored in ``selected_options`` wins over a matching variant's
    ``price_override``, which wins over the product price.
    """
    if not product:
        return None
    options = item.get("selected_options") or {}
    if options.get("price"):
        return to_decimal(options["price"])
    variant_id = options.get("variant_id")
    if variant_id:
        for v in product.get("variants") or []:
            if v.get("id") == variant_id and v.get("price_override"):
                return to_decimal(v["price_override"])
    return to_decimal(product.get("price"))


def item_quantity(item: dict) -> int:
    return item.get("quantity") or 1


def cart_totals(items: Iterable[dict], products: Dict[str, dict]) -> Tuple[int, Decimal]:
    count = 0
    total = Decimal("0")
    for item in items:
        count += item_quantity(item)
        price = unit_price(item, products.get(item.get("product_id")))
        if price is not None:
            total += price * item_quantity(item)
    return count, total.quantize(CENT)
