"""
PayPal REST client.

Every call fetches a fresh OAuth2 client-credentials token, then performs a
single JSON request. Any non-2xx status, transport failure or malformed
body is logged with the raw provider response and surfaced as a
GatewayError carrying no provider detail for the caller.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from backend.app.core.config import Settings
from backend.app.core.exceptions import GatewayError
from backend.app.core.logging_setup import get_logger
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = get_logger(__name__)

CAPTURE_COMPLETED = "COMPLETED"
PAYOUT_BATCH_SUCCESS = "SUCCESS"


@dataclass
class GatewayOrder:
    order_id: str
    approval_url: str


@dataclass
class GatewayCapture:
    status: Optional[str]
    capture_id: Optional[str]

    @property
    def completed(self) -> bool:
        return self.status == CAPTURE_COMPLETED and bool(self.capture_id)


@dataclass
class GatewayRefund:
    refund_id: Optional[str]
    status: Optional[str]


@dataclass
class GatewayPayoutBatch:
    batch_id: Optional[str]
    batch_status: Optional[str]


class PaymentGateway(Protocol):
    async def create_order(self, amount: float, currency: str, reference_id: str) -> GatewayOrder: ...

    async def capture_order(self, order_id: str) -> GatewayCapture: ...

    async def refund_capture(self, capture_id: str) -> GatewayRefund: ...

    async def create_payout(self, sender_batch_id: str, receiver_email: str, amount: float,
                            currency: str, sender_item_id: str, note: str) -> GatewayPayoutBatch: ...


class PaypalClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        frontend_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.frontend_url = frontend_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.breaker = breaker or CircuitBreaker()

    @classmethod
    def from_settings(cls, settings: Settings,
                      transport: Optional[httpx.AsyncBaseTransport] = None) -> "PaypalClient":
        return cls(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            base_url=settings.paypal_base_url,
            frontend_url=settings.frontend_url,
            timeout=settings.paypal_timeout_seconds,
            transport=transport,
            breaker=CircuitBreaker(
                failure_threshold=settings.gateway_failure_threshold,
                reset_timeout=settings.gateway_reset_timeout,
            ),
        )

    # Orders

    async def create_order(self, amount: float, currency: str, reference_id: str) -> GatewayOrder:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": reference_id,
                    "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
                }
            ],
            "application_context": {
                "return_url": f"{self.frontend_url}/payments/success",
                "cancel_url": f"{self.frontend_url}/payments/cancel",
                "user_action": "PAY_NOW",
            },
        }
        data = await self._request("POST", "/v2/checkout/orders", "create_order", body)

        approval_url = next(
            (link.get("href") for link in data.get("links") or [] if link.get("rel") == "approve"),
            None,
        )
        if not data.get("id") or not approval_url:
            logger.error("PayPal order response without id or approval link: %s", data)
            raise GatewayError("Order response missing approval link", "create_order")

        return GatewayOrder(order_id=data["id"], approval_url=approval_url)

    async def capture_order(self, order_id: str) -> GatewayCapture:
        data = await self._request("POST", f"/v2/checkout/orders/{order_id}/capture", "capture_order")

        capture_id = None
        units = data.get("purchase_units") or []
        if units:
            captures = ((units[0].get("payments") or {}).get("captures")) or []
            if captures:
                capture_id = captures[0].get("id")

        return GatewayCapture(status=data.get("status"), capture_id=capture_id)

    async def refund_capture(self, capture_id: str) -> GatewayRefund:
        data = await self._request("POST", f"/v2/payments/captures/{capture_id}/refund", "refund_capture", {})
        return GatewayRefund(refund_id=data.get("id"), status=data.get("status"))

    # Payouts

    async def create_payout(self, sender_batch_id: str, receiver_email: str, amount: float,
                            currency: str, sender_item_id: str, note: str) -> GatewayPayoutBatch:
        body = {
            "sender_batch_header": {
                "sender_batch_id": sender_batch_id,
                "email_subject": "You have a new payout",
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "receiver": receiver_email,
                    "amount": {"value": f"{amount:.2f}", "currency": currency},
                    "note": note,
                    "sender_item_id": sender_item_id,
                }
            ],
        }
        data = await self._request("POST", "/v1/payments/payouts", "create_payout", body)
        header = data.get("batch_header") or {}
        return GatewayPayoutBatch(
            batch_id=header.get("payout_batch_id"),
            batch_status=header.get("batch_status"),
        )

    # Transport

    async def _access_token(self, client: httpx.AsyncClient, operation: str) -> str:
        response = await client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )
        if response.is_error:
            logger.error("PayPal token error (%s): %s", response.status_code, response.text)
            raise GatewayError(f"Token request failed with HTTP {response.status_code}", operation)

        token = response.json().get("access_token")
        if not token:
            logger.error("PayPal token response without access_token")
            raise GatewayError("Token response missing access_token", operation)
        return token

    async def _send(self, method: str, path: str, operation: str,
                    body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            token = await self._access_token(client, operation)
            response = await client.request(
                method,
                path,
                json=body,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "Prefer": "return=representation",
                },
            )

        if response.is_error:
            logger.error("PayPal %s error (%s): %s", operation, response.status_code, response.text)
            raise GatewayError(f"{operation} failed with HTTP {response.status_code}", operation)

        return response.json() if response.content else {}

    async def _request(self, method: str, path: str, operation: str,
                       body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.client_id or not self.client_secret:
            logger.error("PayPal credentials are not configured")
            raise GatewayError("PayPal credentials are not configured", operation)

        try:
            return await self.breaker.call(self._send, method, path, operation, body)
        except CircuitOpenError:
            logger.warning("PayPal circuit open, rejecting %s", operation)
            raise GatewayError("Payment provider temporarily unavailable", operation)
        except httpx.HTTPError as exc:
            logger.error("PayPal %s transport error: %s", operation, exc)
            raise GatewayError(f"{operation} transport error", operation) from exc
        except ValueError as exc:
            logger.error("PayPal %s returned a non-JSON body: %s", operation, exc)
            raise GatewayError(f"{operation} returned an unreadable body", operation) from exc
