"""
Generic REST exchange adapter over httpx.

Maps transport failures and HTTP status codes onto the typed exchange errors.
Venue-specific adapters subclass this and override the path constants and
`_parse_order` where their payloads differ.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

import httpx

from bridgeswap.errors import AuthError, ConnectivityError, ExchangeError, OrderRejected
from bridgeswap.models import OrderResult, OrderStatus, Side, TransferResult
from bridgeswap.trading.adapter import ExchangeAdapter
from bridgeswap.logger import get_logger


logger = get_logger("http_adapter")


_STATUS_MAP = {
    "new": OrderStatus.SUBMITTED,
    "open": OrderStatus.SUBMITTED,
    "submitted": OrderStatus.SUBMITTED,
    "pending": OrderStatus.PENDING,
    "filled": OrderStatus.FILLED,
    "closed": OrderStatus.FILLED,
    "partially_filled": OrderStatus.PARTIALLY_FILLED,
    "cancelled": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    "rejected": OrderStatus.FAILED,
    "failed": OrderStatus.FAILED,
}


class HttpExchangeAdapter(ExchangeAdapter):
    """
    Async client for a JSON REST trading API.

    Requests are signed with HMAC-SHA256 over timestamp + method + path + body
    when an API secret is configured.
    """

    BALANCE_PATH = "/balances/{asset}"
    ORDERS_PATH = "/orders"
    ORDER_PATH = "/orders/{order_id}"
    WITHDRAWALS_PATH = "/withdrawals"

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: str = "",
        api_secret: str = "",
        timeout: float = 30.0,
        supports_transfers: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(name)
        self.base_url = base_url
        self._api_key = api_key
        self._api_secret = api_secret
        self._timeout = timeout
        self._transport = transport
        self.supports_transfers = supports_transfers
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        await super().connect()
        logger.info(f"Connected to {self.name}", base_url=self.base_url)

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        await super().disconnect()

    def _sign_headers(self, method: str, path: str, body: str = "") -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if not self._api_secret:
            return headers

        timestamp = str(int(time.time() * 1000))
        message = timestamp + method.upper() + path + body
        signature = hmac.new(
            self._api_secret.encode(),
            message.encode(),
            hashlib.sha256,
        ).digest()

        headers.update({
            "X-API-KEY": self._api_key,
            "X-API-SIGNATURE": base64.b64encode(signature).decode(),
            "X-API-TIMESTAMP": timestamp,
        })
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Send a signed request and decode the JSON response.

        Raises:
            ConnectivityError: transport failure, timeout or 5xx
            AuthError: 401 or 403
            OrderRejected: any other 4xx
        """
        if self._client is None:
            await self.connect()

        body = json.dumps(payload) if payload is not None else ""
        headers = self._sign_headers(method, path, body)

        try:
            response = await self._client.request(
                method,
                path,
                content=body or None,
                params=params,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"{self.name} timed out: {e}", exchange=self.name) from e
        except httpx.TransportError as e:
            raise ConnectivityError(f"{self.name} unreachable: {e}", exchange=self.name) from e

        if response.status_code in (401, 403):
            raise AuthError(
                f"{self.name} rejected credentials ({response.status_code})",
                exchange=self.name,
            )
        if 400 <= response.status_code < 500:
            raise OrderRejected(
                f"{self.name} rejected request ({response.status_code}): {response.text}",
                exchange=self.name,
            )
        if response.status_code >= 500:
            raise ConnectivityError(
                f"{self.name} server error ({response.status_code})",
                exchange=self.name,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExchangeError(f"{self.name} returned invalid JSON", exchange=self.name) from e

    def _parse_order(self, data: Dict[str, Any]) -> OrderResult:
        status = _STATUS_MAP.get(str(data.get("status", "")).lower(), OrderStatus.SUBMITTED)
        fee = data.get("fee")
        return OrderResult(
            order_id=str(data.get("id") or data.get("order_id")),
            status=status,
            filled_amount=float(data.get("filled_amount") or 0.0),
            filled_price=float(data.get("filled_price") or 0.0),
            fee=float(fee) if fee is not None else None,
        )

    async def fetch_balance(self, asset: str) -> float:
        path = self.BALANCE_PATH.format(asset=asset.upper())
        data = await self._request("GET", path)
        return float(data.get("available", 0.0))

    async def place_order(
        self,
        pair: str,
        side: Side,
        amount: float,
        order_type: str = "market",
    ) -> OrderResult:
        payload = {
            "pair": pair,
            "side": side.value,
            "amount": str(amount),
            "type": order_type,
        }
        data = await self._request("POST", self.ORDERS_PATH, payload=payload)
        order = self._parse_order(data)

        logger.info(
            "Order placed",
            exchange=self.name,
            order_id=order.order_id,
            pair=pair,
            side=side.value,
            amount=amount,
        )
        return order

    async def get_order(self, pair: str, order_id: str) -> OrderResult:
        path = self.ORDER_PATH.format(order_id=order_id)
        data = await self._request("GET", path, params={"pair": pair})
        return self._parse_order(data)

    async def withdraw(
        self,
        asset: str,
        amount: float,
        destination_exchange: str,
    ) -> TransferResult:
        if not self.supports_transfers:
            return await super().withdraw(asset, amount, destination_exchange)

        payload = {
            "asset": asset.upper(),
            "amount": str(amount),
            "destination": destination_exchange,
        }
        data = await self._request("POST", self.WITHDRAWALS_PATH, payload=payload)
        return TransferResult(
            transfer_id=str(data.get("id")),
            amount_sent=float(data.get("amount", amount)),
            fee=float(data.get("fee", 0.0)),
        )
