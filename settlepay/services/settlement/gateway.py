"""Paystack HTTP client.

Translates gateway responses into `ChargeData` / `CheckoutSession` shapes and
every transport or protocol failure into `UpstreamGatewayError`. Calls are
never retried here: a failed initialize is retried by the payer with a new
reference, and verify is safe for the caller to repeat.
"""

from dataclasses import dataclass
from time import perf_counter
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from settlepay.common.errors import GatewayReferenceNotFound, UpstreamGatewayError
from settlepay.common.logging import logger
from settlepay.common.metrics import gateway_latency_seconds
from settlepay.services.settlement.schemas import ChargeData

INITIALIZE_FAILED = "cannot start payment, try again"
VERIFY_FAILED = "payment not confirmed yet, try again"


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout created by a successful initialize call."""

    authorization_url: str
    access_code: str | None
    reference: str


class PaystackClient:
    """Thin synchronous wrapper over the Paystack transaction API."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        service_name: str = "settlement",
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.service_name = service_name

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.secret_key}"},
        )

    def _call(self, operation: str, method: str, path: str, public_message: str, **kwargs) -> dict:
        """Send one request and return the `data` object of a successful reply."""

        start = perf_counter()
        try:
            with self._client() as client:
                resp = client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("gateway_unreachable operation=%s error=%s", operation, exc)
            raise UpstreamGatewayError(f"{operation}: {exc}", public_message) from exc
        finally:
            gateway_latency_seconds.labels(service=self.service_name, operation=operation).observe(
                max(0.0, perf_counter() - start)
            )

        try:
            body = resp.json()
        except ValueError as exc:
            logger.error("gateway_malformed_response operation=%s status_code=%s", operation, resp.status_code)
            raise UpstreamGatewayError(f"{operation}: non-JSON response", public_message) from exc

        if resp.status_code >= 400 or not isinstance(body, dict) or not body.get("status"):
            message = body.get("message") if isinstance(body, dict) else None
            logger.error(
                "gateway_rejected operation=%s status_code=%s message=%s",
                operation,
                resp.status_code,
                message,
            )
            detail = f"{operation}: {message or resp.status_code}"
            # Paystack answers 400 "Transaction reference not found" for unknown references.
            if resp.status_code == 404 or "reference not found" in str(message or "").lower():
                raise GatewayReferenceNotFound(detail, public_message)
            raise UpstreamGatewayError(detail, public_message)

        data = body.get("data")
        if not isinstance(data, dict):
            raise UpstreamGatewayError(f"{operation}: response without data", public_message)
        return data

    def initialize(
        self,
        email: str,
        amount_minor: int,
        reference: str,
        currency: str,
        callback_url: str | None,
        metadata: dict,
    ) -> CheckoutSession:
        """Create a hosted checkout for `amount_minor` under `reference`."""

        payload = {
            "email": email,
            "amount": amount_minor,
            "reference": reference,
            "currency": currency,
            "metadata": metadata,
        }
        if callback_url:
            payload["callback_url"] = callback_url
        data = self._call("initialize", "POST", "/transaction/initialize", INITIALIZE_FAILED, json=payload)
        authorization_url = data.get("authorization_url")
        if not isinstance(authorization_url, str) or not authorization_url:
            raise UpstreamGatewayError("initialize: missing authorization_url", INITIALIZE_FAILED)
        return CheckoutSession(
            authorization_url=authorization_url,
            access_code=data.get("access_code"),
            reference=data.get("reference") or reference,
        )

    def verify(self, reference: str) -> ChargeData:
        """Fetch the gateway's current view of the charge for `reference`."""

        data = self._call(
            "verify",
            "GET",
            f"/transaction/verify/{quote(reference, safe='')}",
            VERIFY_FAILED,
        )
        try:
            return ChargeData.model_validate(data)
        except PydanticValidationError as exc:
            logger.error("gateway_malformed_charge operation=verify error=%s", exc)
            raise UpstreamGatewayError("verify: malformed charge", VERIFY_FAILED) from exc
