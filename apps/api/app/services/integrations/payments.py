"""Stripe payments - deposit PaymentIntents and webhook signature checks."""

import hashlib
import hmac
import time

import httpx

from app.core.config import settings
from app.core.errors import ProviderError
from app.db.models import Organization
from app.services.integrations.base import PaymentIntent, PaymentProvider
from app.services.integrations.http import DEFAULT_TIMEOUT, call_provider, malformed_response

STRIPE_API = "https://api.stripe.com/v1"


class StripePayments(PaymentProvider):
    provider = "stripe"

    def __init__(
        self,
        secret_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self._transport = transport

    async def create_payment_intent(
        self,
        org: Organization,
        amount_cents: int,
        metadata: dict[str, str],
    ) -> PaymentIntent:
        if not self.secret_key:
            raise ProviderError(self.provider, "STRIPE_SECRET_KEY not configured")

        # Stripe takes form-encoded bodies with bracketed metadata keys
        form = {
            "amount": str(amount_cents),
            "currency": "usd",
            "description": f"Booking deposit - {org.name}",
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = value

        async with httpx.AsyncClient(transport=self._transport, timeout=DEFAULT_TIMEOUT) as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    f"{STRIPE_API}/payment_intents",
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                    data=form,
                ),
            )
        with malformed_response(self.provider):
            data = response.json()
            return PaymentIntent(intent_id=data["id"], client_secret=data["client_secret"])


def verify_stripe_signature(
    payload: bytes,
    header: str,
    secret: str,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> bool:
    """
    Verify a Stripe-Signature header ("t=<ts>,v1=<hex>[,v1=...]").

    The signed content is "<ts>.<raw body>" under HMAC-SHA256. Timestamps
    older than the tolerance are rejected.
    """
    if not header or not secret:
        return False

    timestamp = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if not timestamp or not timestamp.isdigit() or not signatures:
        return False

    tolerance = tolerance_seconds if tolerance_seconds is not None else settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
    current = now if now is not None else time.time()
    if abs(current - int(timestamp)) > tolerance:
        return False

    expected = hmac.new(
        secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256
    ).hexdigest()
    return any(hmac.compare_digest(expected, sig) for sig in signatures)
