# billing/invoices.py
"""
Read-only views over Stripe invoice objects.

Amounts are integer minor units (cents); formatting them for display is
left to the caller.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class InvoiceItem:
    """A single line of an invoice."""

    def __init__(self, owner: Any, item: Any):
        self.owner = owner
        self.item = item

    @property
    def description(self) -> Optional[str]:
        return _get(self.item, "description")

    def total(self) -> int:
        return int(_get(self.item, "amount", 0) or 0)

    def period_start(self) -> Optional[datetime]:
        return _timestamp(_get(_get(self.item, "period"), "start"))

    def period_end(self) -> Optional[datetime]:
        return _timestamp(_get(_get(self.item, "period"), "end"))

    def is_subscription(self) -> bool:
        return _get(self.item, "type") == "subscription"

    def as_stripe_invoice_item(self) -> Any:
        return self.item


class Invoice:
    """
    A Stripe invoice belonging to a billable entity.

    Args:
        owner: The billable entity the invoice was issued to
        invoice: Stripe invoice object
    """

    def __init__(self, owner: Any, invoice: Any):
        self.owner = owner
        self.invoice = invoice

    @property
    def id(self) -> str:
        return _get(self.invoice, "id")

    @property
    def charge(self) -> Optional[str]:
        return _get(self.invoice, "charge")

    @property
    def paid(self) -> bool:
        return bool(_get(self.invoice, "paid", False))

    def date(self) -> Optional[datetime]:
        return _timestamp(_get(self.invoice, "created"))

    def total(self) -> int:
        """Total after discounts and starting balance."""
        return int(_get(self.invoice, "total", 0) or 0) + self.raw_starting_balance()

    def subtotal(self) -> int:
        return int(_get(self.invoice, "subtotal", 0) or 0)

    def raw_starting_balance(self) -> int:
        return int(_get(self.invoice, "starting_balance", 0) or 0)

    def has_starting_balance(self) -> bool:
        return self.raw_starting_balance() < 0

    def _discount_coupon(self) -> Any:
        return _get(_get(self.invoice, "discount"), "coupon")

    def has_discount(self) -> bool:
        return self._discount_coupon() is not None and self.subtotal() > int(
            _get(self.invoice, "total", 0) or 0
        )

    def coupon(self) -> Optional[str]:
        return _get(self._discount_coupon(), "id")

    def discount_is_percentage(self) -> bool:
        coupon = self._discount_coupon()
        return coupon is not None and bool(_get(coupon, "percent_off"))

    def percent_off(self) -> Optional[float]:
        return _get(self._discount_coupon(), "percent_off")

    def amount_off(self) -> int:
        """Discount applied, in minor units."""
        coupon = self._discount_coupon()
        if coupon is None:
            return 0
        if _get(coupon, "amount_off"):
            return int(_get(coupon, "amount_off"))
        return self.subtotal() - int(_get(self.invoice, "total", 0) or 0)

    def invoice_items(self) -> List[InvoiceItem]:
        lines = _get(_get(self.invoice, "lines"), "data", []) or []
        return [InvoiceItem(self.owner, line) for line in lines]

    def subscriptions(self) -> List[InvoiceItem]:
        return [item for item in self.invoice_items() if item.is_subscription()]

    def as_stripe_invoice(self) -> Any:
        return self.invoice
