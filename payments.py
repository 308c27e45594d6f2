"""
Stripe hosted checkout.

`CheckoutClient` is the only place that talks to Stripe. Handlers receive it
through the `get_checkout_client` dependency so tests can swap in a mock.
"""
import logging
from typing import Any, Dict, List, Optional

import stripe
from fastapi import Depends

from config import Settings, get_settings
from errors import PaymentError, ValidationError
from pricing import to_minor_units

logger = logging.getLogger(__name__)


class CheckoutClient:
    def __init__(self, settings: Settings):
        self.settings = settings

    def line_items(self, items: List[Dict[str, Any]], total_minor: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Stripe line items for an order.

        When the item prices do not add up to `total_minor` (a coupon was
        applied) the order is charged as a single line for the total, with
        the items listed in its description.
        """
        out = []
        for it in items:
            product_data = {"name": it["name"]}
            if it.get("description"):
                product_data["description"] = it["description"]
            out.append({
                "price_data": {
                    "currency": self.settings.CURRENCY,
                    "product_data": product_data,
                    "unit_amount": to_minor_units(it["price"]),
                },
                "quantity": int(it["quantity"]),
            })
        charged = sum(li["price_data"]["unit_amount"] * li["quantity"] for li in out)
        if total_minor is None or charged == total_minor:
            return out
        summary = ", ".join(f"{it['name']} x{int(it['quantity'])}" for it in items)
        return [{
            "price_data": {
                "currency": self.settings.CURRENCY,
                "product_data": {"name": "Order total (coupon applied)", "description": summary},
                "unit_amount": total_minor,
            },
            "quantity": 1,
        }]

    def create_session(self, order_id: str, items: List[Dict[str, Any]], total_minor: int) -> str:
        """Open a checkout session for an order and return its redirect URL."""
        try:
            session = stripe.checkout.Session.create(
                api_key=self.settings.STRIPE_SECRET_KEY,
                line_items=self.line_items(items, total_minor),
                metadata={"order_id": order_id, "total_price": total_minor},
                mode="payment",
                success_url=self.settings.CHECKOUT_SUCCESS_URL,
                cancel_url=self.settings.CHECKOUT_CANCEL_URL,
            )
        except stripe.StripeError as e:
            logger.error("Checkout session failed for order %s: %s", order_id, e)
            raise PaymentError("Payment provider error, order left pending")
        return session.url

    def parse_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify a webhook payload against the endpoint secret."""
        try:
            return stripe.Webhook.construct_event(payload, signature, self.settings.STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Rejected webhook: %s", e)
            raise ValidationError(f"Webhook error: {e}")


def get_checkout_client(settings: Settings = Depends(get_settings)) -> CheckoutClient:
    return CheckoutClient(settings)
