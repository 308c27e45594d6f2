"""
Order pricing.

`price_order` turns a list of line items and an optional coupon code into a
subtotal, a discount and a final total. Amounts are `Decimal` throughout and
quantized to cents at the end; the coupon lookup is passed in so the
computation stays free of persistence.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional

from errors import ExpiredError, NotFoundError, ValidationError

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")

CouponLookup = Callable[[str], Optional[Mapping[str, Any]]]


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    coupon: Optional[Mapping[str, Any]] = None

    @property
    def total_minor(self) -> int:
        return to_minor_units(self.total)


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 19.99 stays 19.99 instead of its binary expansion
    return Decimal(str(value))


def to_minor_units(amount: Any) -> int:
    """Amount in cents, e.g. Decimal("36.00") -> 3600."""
    try:
        return int((to_decimal(amount) * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        raise ValidationError("Order amount too large")


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _as_mapping(item: Any) -> Mapping[str, Any]:
    if isinstance(item, Mapping):
        return item
    if hasattr(item, "model_dump"):
        return item.model_dump()
    raise ValidationError("Invalid order item")


def _end_date(coupon: Mapping[str, Any]) -> Optional[datetime]:
    end = coupon.get("end_date")
    # Mongo hands datetimes back naive (UTC)
    if end is not None and end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return end


def coupon_is_expired(coupon: Mapping[str, Any], now: datetime = None) -> bool:
    end = _end_date(coupon)
    if end is None:
        return False
    return end < (now or datetime.now(timezone.utc))


def coupon_days_left(coupon: Mapping[str, Any], now: datetime = None) -> Optional[int]:
    end = _end_date(coupon)
    if end is None:
        return None
    left = end - (now or datetime.now(timezone.utc))
    return max(math.ceil(left.total_seconds() / 86400), 0)


def subtotal_of(items: Any) -> Decimal:
    if not isinstance(items, list) or not items:
        raise ValidationError("No order items")
    subtotal = Decimal("0")
    for raw in items:
        item = _as_mapping(raw)
        try:
            price = to_decimal(item["price"])
            quantity = int(item["quantity"])
        except (KeyError, TypeError, ValueError, ArithmeticError):
            raise ValidationError("Each order item needs a price and a quantity")
        if price < 0 or quantity < 1:
            raise ValidationError("Order item price must be >= 0 and quantity >= 1")
        subtotal += price * quantity
    return subtotal


def price_order(items: Any, coupon_code: Optional[str] = None,
                find_coupon: Optional[CouponLookup] = None,
                now: datetime = None) -> PriceBreakdown:
    """
    Compute the totals for an order.

    Raises ValidationError for a missing/empty item list, NotFoundError when the
    coupon code is unknown and ExpiredError when the coupon has expired. The
    discount never exceeds the subtotal, so the total floors at zero.
    """
    subtotal = subtotal_of(items)

    coupon = None
    discount = Decimal("0")
    if coupon_code:
        if find_coupon is None:
            raise NotFoundError("Coupon not found")
        coupon = find_coupon(normalize_code(coupon_code))
        if not coupon:
            raise NotFoundError("Coupon not found")
        if coupon_is_expired(coupon, now):
            raise ExpiredError("Coupon is expired")
        discount = subtotal * to_decimal(coupon.get("discount", 0)) / HUNDRED
        discount = min(max(discount, Decimal("0")), subtotal)

    try:
        subtotal = subtotal.quantize(CENTS, rounding=ROUND_HALF_UP)
        discount = discount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # more digits than the decimal context holds
        raise ValidationError("Order amount too large")
    return PriceBreakdown(subtotal=subtotal, discount=discount,
                          total=subtotal - discount, coupon=coupon)


def breakdown_fields(breakdown: PriceBreakdown) -> Dict[str, Any]:
    """Order document fields for a breakdown; Mongo stores amounts as doubles."""
    return {
        "subtotal": float(breakdown.subtotal),
        "discount": float(breakdown.discount),
        "total_price": float(breakdown.total),
        "total_amount_minor": breakdown.total_minor,
    }
