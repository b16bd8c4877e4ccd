"""Payment provider client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Any, Dict
from daswos_autoshop.config import settings
from daswos_autoshop.domain.exceptions import PaymentSettlementError
from daswos_autoshop.domain.models import SettlementResult
from daswos_autoshop.infrastructure.observability.metrics import payment_latency_histogram, payment_failure_counter


class PaymentClient:
    """Client for settling and refunding card payments with the external provider"""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.payment_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = settings.payment_max_retries
        self.backoff_base = settings.payment_backoff_base

    async def settle(self, user_id: str, amount: int, payment_method_ref: str) -> SettlementResult:
        """
        Settle an amount against a stored payment method.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base ... (base * 2^(attempt-1))
        - Retries on 5xx errors and network failures
        - A 4xx answer is a decline and is returned without retrying

        Raises:
            PaymentSettlementError: provider still failing after all retries
        """
        payload = {"user_id": user_id, "amount": amount, "payment_method_ref": payment_method_ref}
        return await self._post("/payments/settle", payload)

    async def refund(self, user_id: str, amount: int, reference: str) -> SettlementResult:
        """Give back a settled payment, identified by its provider reference. Same retry rules as settle()."""
        payload = {"user_id": user_id, "amount": amount, "reference": reference}
        return await self._post("/payments/refund", payload)

    async def _post(self, path: str, payload: Dict[str, Any]) -> SettlementResult:
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while True:
                try:
                    with payment_latency_histogram.time():
                        response = await client.post(f"{self.base_url}{path}", json=payload)

                    if 400 <= response.status_code < 500:
                        body = response.json() if response.content else {}
                        return SettlementResult(success=False, reason=body.get("reason") or f"declined ({response.status_code})")

                    response.raise_for_status()
                    body = response.json()
                    if body.get("status") != "succeeded":
                        return SettlementResult(success=False, reason=body.get("reason") or "declined")
                    return SettlementResult(success=True, reference=body.get("reference"))

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    payment_failure_counter.inc()

                    if attempt >= self.max_retries:
                        # Final failure after all retries
                        raise PaymentSettlementError(f"Payment provider unavailable: {e}") from e

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
                except ValueError as e:
                    raise PaymentSettlementError(f"Invalid response from payment provider: {e}") from e
