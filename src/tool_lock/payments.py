from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
from loguru import logger

from tool_lock.settings import Settings

STRIPE_API_BASE = "https://api.stripe.com/v1"
PAYMENT_INTENT_PREFIX = "pi_"


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    reason: str = ""


class PaymentVerifier(ABC):
    @abstractmethod
    def verify(self, reference: str) -> VerificationResult: ...


class StripeVerifier(PaymentVerifier):
    """Checks a Stripe payment intent has succeeded for at least the bypass amount."""

    def __init__(
        self,
        api_key: str,
        amount: int,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.amount = amount
        self.timeout = timeout
        self._client = client

    def _fetch(self, reference: str) -> httpx.Response:
        path = f"/payment_intents/{reference}"
        if self._client is not None:
            return self._client.get(path, auth=(self.api_key, ""))
        with httpx.Client(base_url=STRIPE_API_BASE, timeout=self.timeout) as client:
            return client.get(path, auth=(self.api_key, ""))

    def verify(self, reference: str) -> VerificationResult:
        if not reference.startswith(PAYMENT_INTENT_PREFIX):
            return VerificationResult(False, "Invalid payment intent ID. Must start with pi_")

        try:
            resp = self._fetch(reference)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Stripe returned HTTP {e.response.status_code} for {reference}")
            return VerificationResult(
                False, f"Payment verification failed: HTTP {e.response.status_code}"
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Stripe request for {reference} failed: {e}")
            return VerificationResult(False, f"Payment verification failed: {e}")

        status = data.get("status")
        if status != "succeeded":
            return VerificationResult(False, f"Payment not completed (status: {status})")

        received = data.get("amount_received") or 0
        if received < self.amount:
            return VerificationResult(
                False, f"Payment amount {received} is less than required {self.amount}"
            )
        return VerificationResult(True)


def build_verifier(cfg: Settings) -> PaymentVerifier | None:
    """A Stripe verifier when a secret key is configured, else None."""
    if not cfg.payment_bypass_stripe_key:
        return None
    return StripeVerifier(cfg.payment_bypass_stripe_key, cfg.payment_bypass_amount)
