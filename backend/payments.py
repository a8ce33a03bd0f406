# payments.py — Payment-intent provider (Stripe REST API over httpx)
"""
Given an amount in minor units and a description, returns an opaque handle
the client-side flow uses to complete payment. Confirmation comes back from
the client (PATCH /certificates/{id}/mark-paid), not from a webhook.

When STRIPE_SECRET_KEY is not set the provider returns stub handles so local
development and tests work without network access.
"""
import os
import uuid
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

logger = logging.getLogger("certisphere.payments")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "eur")


class PaymentProviderError(Exception):
    """Raised when the provider rejects or cannot create an intent."""


@dataclass
class PaymentHandle:
    intent_id: str
    client_secret: str
    amount: int
    currency: str


class PaymentProvider:
    def __init__(self, secret_key: str = STRIPE_SECRET_KEY, api_base: str = STRIPE_API_BASE,
                 currency: str = PAYMENT_CURRENCY):
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.currency = currency

    async def create_intent(self, amount: int, description: str,
                            metadata: Optional[Dict[str, str]] = None) -> PaymentHandle:
        if not self.secret_key:
            logger.warning("STRIPE_SECRET_KEY not set, returning stub payment handle")
            intent_id = f"pi_stub_{uuid.uuid4().hex[:24]}"
            return PaymentHandle(intent_id, f"{intent_id}_secret_stub", amount, self.currency)

        form = {
            "amount": str(amount),
            "currency": self.currency,
            "description": description,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in (metadata or {}).items():
            form[f"metadata[{key}]"] = str(value)

        try:
            async with httpx.AsyncClient(timeout=30) as client:
                resp = await client.post(
                    f"{self.api_base}/payment_intents",
                    data=form,
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"Payment intent creation failed: {e}") from e

        return PaymentHandle(
            intent_id=data["id"],
            client_secret=data["client_secret"],
            amount=data.get("amount", amount),
            currency=data.get("currency", self.currency),
        )


_payment_provider = PaymentProvider()


def get_payment_provider() -> PaymentProvider:
    return _payment_provider
