"""Hosted payment gateway adapter (SSLCommerz-style API).

Three calls, all bounded by GATEWAY_TIMEOUT_SECONDS:

  initiate(...)              open a hosted checkout session -> redirect URL
  validate(val_id)           resolve the one-time validation token the
                             gateway hands us on IPN / success redirect
  query_transaction(tran_id) look a transaction up by our own id
                             (status-check reconciliation)

The adapter only speaks HTTP and normalizes answers into
GatewayValidation.  Deciding what a validation MEANS for the payment
(amount checks, state changes) is payment_service's job.

Every transport-level failure (timeout, connection refused, non-2xx,
unparseable body) becomes ExternalDependencyError, which the caller can
retry: nothing has been written locally at that point.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, runtime_checkable

import httpx

from app.core.config import SETTINGS
from app.core.errors import ExternalDependencyError
from app.core.metrics import GATEWAY_REQUEST_DURATION

logger = logging.getLogger(__name__)

# Gateway statuses that mean "money captured".
VALID_STATUSES = frozenset({"VALID", "VALIDATED"})


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    transaction_id: str
    amount: Decimal
    currency: str
    product_name: str
    customer_id: str
    customer_name: str = "Learner"
    customer_email: str = "learner@example.com"
    customer_phone: str = "01700000000"


@dataclass(frozen=True, slots=True)
class GatewayValidation:
    status: str
    transaction_id: str | None
    amount: Decimal | None
    currency: str | None
    val_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.status in VALID_STATUSES


@runtime_checkable
class PaymentGateway(Protocol):
    async def initiate(self, request: CheckoutRequest) -> str: ...
    async def validate(self, val_id: str) -> GatewayValidation: ...
    async def query_transaction(self, transaction_id: str) -> GatewayValidation | None: ...


class SSLCommerzGateway:
    _INIT_PATH = "/gwprocess/v4/api.php"
    _VALIDATE_PATH = "/validator/api/validationserverAPI.php"
    _QUERY_PATH = "/validator/api/merchantTransIDvalidationAPI.php"

    def __init__(
        self,
        *,
        store_id: str,
        store_password: str,
        base_url: str,
        callback_base_url: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store_id = store_id
        self._store_password = store_password
        self._base_url = base_url.rstrip("/")
        self._callback_base_url = callback_base_url.rstrip("/")
        self._timeout = timeout
        # tests inject httpx.MockTransport
        self._transport = transport

    async def initiate(self, request: CheckoutRequest) -> str:
        callbacks = f"{self._callback_base_url}/v1/payments"
        form = {
            "store_id": self._store_id,
            "store_passwd": self._store_password,
            "total_amount": str(request.amount),
            "currency": request.currency,
            "tran_id": request.transaction_id,
            "success_url": f"{callbacks}/success",
            "fail_url": f"{callbacks}/fail",
            "cancel_url": f"{callbacks}/cancel",
            "ipn_url": f"{callbacks}/ipn",
            "shipping_method": "NO",
            "product_name": request.product_name,
            "product_category": "Education",
            "product_profile": "non-physical-goods",
            "cus_name": request.customer_name,
            "cus_email": request.customer_email,
            "cus_phone": request.customer_phone,
            "cus_add1": "N/A",
            "cus_city": "N/A",
            "cus_country": "Bangladesh",
            "value_a": request.customer_id,
        }
        data = await self._request("initiate", "POST", self._INIT_PATH, data=form)

        url = data.get("GatewayPageURL")
        if data.get("status") != "SUCCESS" or not url:
            logger.warning(
                "Gateway refused checkout transaction=%s reason=%s",
                request.transaction_id,
                data.get("failedreason"),
            )
            raise ExternalDependencyError(
                "Payment gateway could not start the checkout",
                {"reason": data.get("failedreason")},
            )
        return url

    async def validate(self, val_id: str) -> GatewayValidation:
        data = await self._request(
            "validate",
            "GET",
            self._VALIDATE_PATH,
            params={
                "val_id": val_id,
                "store_id": self._store_id,
                "store_passwd": self._store_password,
                "format": "json",
            },
        )
        return _to_validation(data)

    async def query_transaction(self, transaction_id: str) -> GatewayValidation | None:
        """Latest gateway record for ``transaction_id``, or None if unknown."""
        data = await self._request(
            "query",
            "GET",
            self._QUERY_PATH,
            params={
                "tran_id": transaction_id,
                "store_id": self._store_id,
                "store_passwd": self._store_password,
                "format": "json",
            },
        )
        elements = data.get("element") or []
        if not elements:
            return None
        # a captured attempt wins over earlier failed ones
        for element in elements:
            if str(element.get("status", "")).upper() in VALID_STATUSES:
                return _to_validation(element)
        return _to_validation(elements[0])

    async def _request(
        self, operation: str, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.error("Gateway %s timed out after %.1fs", operation, self._timeout)
            raise ExternalDependencyError(
                "Payment gateway timed out", {"operation": operation}
            ) from e
        except httpx.HTTPError as e:
            logger.error("Gateway %s failed: %s", operation, e)
            raise ExternalDependencyError(
                "Payment gateway unavailable", {"operation": operation}
            ) from e
        except ValueError as e:
            logger.error("Gateway %s returned a non-JSON body", operation)
            raise ExternalDependencyError(
                "Payment gateway returned an invalid response", {"operation": operation}
            ) from e
        finally:
            GATEWAY_REQUEST_DURATION.labels(operation=operation).observe(
                time.perf_counter() - start
            )

        if not isinstance(data, dict):
            raise ExternalDependencyError(
                "Payment gateway returned an invalid response", {"operation": operation}
            )
        return data


def _to_validation(data: dict[str, Any]) -> GatewayValidation:
    return GatewayValidation(
        status=str(data.get("status", "")).upper(),
        transaction_id=data.get("tran_id"),
        amount=_parse_amount(data.get("amount")),
        currency=data.get("currency") or data.get("currency_type"),
        val_id=data.get("val_id"),
        raw=data,
    )


def _parse_amount(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

gateway: PaymentGateway = SSLCommerzGateway(
    store_id=SETTINGS.ssl_store_id,
    store_password=SETTINGS.ssl_store_password,
    base_url=SETTINGS.gateway_base_url,
    callback_base_url=SETTINGS.server_url,
    timeout=SETTINGS.gateway_timeout_seconds,
)
