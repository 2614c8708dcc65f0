"""Bybit v5 REST API async client (spot category).

Handles all communication with Bybit: tickers, klines, instrument filters,
order placement, order status and cancellation.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from urllib.parse import urlencode

import httpx

from supportbot.config import Config
from supportbot.errors import ExchangeError, OrderRejectedError
from supportbot.exchange.models import (
    ORDER_CANCELLED,
    ORDER_FILLED,
    ORDER_NOT_FOUND,
    ORDER_OPEN,
    ORDER_PARTIALLY_FILLED,
    ORDER_REJECTED,
    InstrumentInfo,
    Kline,
    OrderAck,
    OrderSpec,
    OrderStatus,
    Ticker,
    make_client_order_id,
)

logger = logging.getLogger("supportbot.exchange")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}
_RETRYABLE_RET_CODES = {10002, 10006, 10016}  # timestamp drift, rate limit, server error

_CATEGORY = "spot"

_STATUS_MAP = {
    "Created": ORDER_OPEN,
    "New": ORDER_OPEN,
    "Untriggered": ORDER_OPEN,
    "PartiallyFilled": ORDER_PARTIALLY_FILLED,
    "Filled": ORDER_FILLED,
    "Cancelled": ORDER_CANCELLED,
    "PartiallyFilledCanceled": ORDER_CANCELLED,
    "Deactivated": ORDER_CANCELLED,
    "Rejected": ORDER_REJECTED,
}


def _fmt(value: float) -> str:
    """Render a number the way Bybit expects it: plain decimal, no exponent."""
    return format(Decimal(str(value)).normalize(), "f")


class BybitClient:
    """Async client wrapping the Bybit v5 REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.bybit_base_url
        self._api_key = config.bybit_api_key
        self._api_secret = config.bybit_api_secret
        self._recv_window = str(config.recv_window_ms)

    # ── Signing ──────────────────────────────────────────────────────────

    def _signed_headers(self, payload: str) -> dict[str, str]:
        """Return v5 auth headers for a query string or JSON body."""
        timestamp = str(int(time.time() * 1000))
        prehash = timestamp + self._api_key + self._recv_window + payload
        signature = hmac.new(
            self._api_secret.encode("utf-8"),
            prehash.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return {
            "X-BAPI-API-KEY": self._api_key,
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": self._recv_window,
            "X-BAPI-SIGN": signature,
            "Content-Type": "application/json",
        }

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
        signed: bool = False,
        max_attempts: int = _MAX_RETRIES,
    ) -> dict:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504), HTTP rate limits
        (429), transport errors and Bybit's own retryable ``retCode`` values.
        Returns the decoded JSON envelope; callers inspect ``retCode``.

        Raises ``ExchangeError`` once retries are exhausted.
        """
        url = f"{self._base_url}{path}"
        last_exc: Optional[Exception] = None

        for attempt in range(max_attempts):
            delay = _RETRY_BASE_DELAY * (2 ** attempt)
            try:
                async with httpx.AsyncClient() as client:
                    if method == "get":
                        query = urlencode(params or {})
                        headers = self._signed_headers(query) if signed else {}
                        resp = await client.get(
                            url, headers=headers, params=params, timeout=30.0,
                        )
                    else:
                        content = json.dumps(body or {})
                        headers = self._signed_headers(content) if signed else {}
                        resp = await client.post(
                            url, headers=headers, content=content, timeout=30.0,
                        )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    logger.warning(
                        "Bybit %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), path, resp.status_code,
                        attempt + 1, max_attempts, delay,
                    )
                    last_exc = ExchangeError(
                        f"HTTP {resp.status_code} from {path}"
                    )
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                data = resp.json()

                ret_code = data.get("retCode", 0)
                if ret_code in _RETRYABLE_RET_CODES:
                    logger.warning(
                        "Bybit %s %s retCode %s (%s) — retry %d/%d in %.1fs",
                        method.upper(), path, ret_code, data.get("retMsg"),
                        attempt + 1, max_attempts, delay,
                    )
                    last_exc = ExchangeError(
                        f"Bybit retCode {ret_code}: {data.get('retMsg')}",
                        ret_code=ret_code,
                    )
                    await asyncio.sleep(delay)
                    continue

                return data

            except httpx.TransportError as exc:
                logger.warning(
                    "Bybit %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), path, exc,
                    attempt + 1, max_attempts, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)
            except httpx.HTTPStatusError as exc:
                raise ExchangeError(
                    f"Bybit {method.upper()} {path} failed: {exc}"
                ) from exc

        if isinstance(last_exc, ExchangeError):
            raise last_exc
        raise ExchangeError(
            f"Bybit {method.upper()} {path} failed after {max_attempts} attempts"
        ) from last_exc

    @staticmethod
    def _result_list(data: dict, what: str) -> list[dict]:
        if data.get("retCode", 0) != 0:
            raise ExchangeError(
                f"Bybit error fetching {what}: {data.get('retMsg')}",
                ret_code=data.get("retCode"),
            )
        return (data.get("result") or {}).get("list") or []

    # ── Market data ──────────────────────────────────────────────────────

    async def get_market_price(self, symbol: str) -> Ticker:
        """Return the last traded price for *symbol*."""
        data = await self._request_with_retry(
            "get", "/v5/market/tickers",
            params={"category": _CATEGORY, "symbol": symbol},
        )
        rows = self._result_list(data, f"ticker {symbol}")
        if not rows:
            raise ExchangeError(f"No ticker returned for {symbol}")
        row = rows[0]
        price = float(row["lastPrice"])
        if price <= 0:
            raise ExchangeError(f"Non-positive price {price} for {symbol}")
        return Ticker(
            symbol=symbol,
            price=price,
            volume=float(row.get("volume24h") or 0.0),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def fetch_klines(
        self,
        symbol: str,
        interval: str = "60",
        limit: int = 200,
    ) -> list[Kline]:
        """Fetch candlestick data from Bybit.

        Args:
            symbol: e.g. ``"BTCUSDT"``
            interval: Bybit interval code, e.g. ``"60"`` (1h), ``"240"`` (4h)
            limit: number of candles to request (max 1000)

        Returns:
            List of ``Kline`` objects ordered oldest-first.
        """
        data = await self._request_with_retry(
            "get", "/v5/market/kline",
            params={
                "category": _CATEGORY,
                "symbol": symbol,
                "interval": interval,
                "limit": limit,
            },
        )
        rows = self._result_list(data, f"klines {symbol}")
        klines = [
            Kline(
                start_time=int(r[0]),
                open=float(r[1]),
                high=float(r[2]),
                low=float(r[3]),
                close=float(r[4]),
                volume=float(r[5]),
            )
            for r in rows
        ]
        # Bybit returns newest first
        klines.sort(key=lambda k: k.start_time)
        return klines

    async def get_instrument_info(self, symbol: str) -> InstrumentInfo:
        """Return tick size, lot step and minimums for a spot symbol."""
        data = await self._request_with_retry(
            "get", "/v5/market/instruments-info",
            params={"category": _CATEGORY, "symbol": symbol},
        )
        rows = self._result_list(data, f"instrument info {symbol}")
        if not rows:
            raise ExchangeError(f"No instrument data found for {symbol}")
        inst = rows[0]
        price_filter = inst.get("priceFilter") or {}
        lot_filter = inst.get("lotSizeFilter") or {}
        return InstrumentInfo(
            symbol=inst.get("symbol", symbol),
            tick_size=float(price_filter.get("tickSize") or "0.01"),
            lot_step=float(lot_filter.get("basePrecision") or "0.0001"),
            min_qty=float(lot_filter.get("minOrderQty") or "0"),
            min_notional=float(lot_filter.get("minOrderAmt") or "0"),
            max_qty=float(lot_filter.get("maxOrderQty") or "0"),
        )

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_order(self, order: OrderSpec) -> OrderAck:
        """Place a spot order.

        Every order carries an ``orderLinkId``.  The create call is not
        retried blindly: after an unconfirmed attempt the order is looked up
        by that id and only resent when Bybit has no record of it.

        Raises:
            OrderRejectedError: Bybit answered with a non-zero ``retCode``.
            ExchangeError: the request could not be completed.
        """
        body = {
            "category": _CATEGORY,
            "symbol": order.symbol,
            "side": "Buy" if order.side == "buy" else "Sell",
            "orderType": "Limit" if order.order_type == "limit" else "Market",
            "qty": _fmt(order.quantity),
            "orderLinkId": order.client_order_id or make_client_order_id("o"),
        }
        if order.order_type == "limit":
            if order.price is None:
                raise ValueError("price is required for limit orders")
            body["price"] = _fmt(order.price)
            body["timeInForce"] = order.time_in_force
        else:
            body["timeInForce"] = "IOC"
            # Spot market buys default to quote units; pin to base quantity.
            body["marketUnit"] = "baseCoin"

        data = await self._create_order(order.symbol, body)
        if data.get("retCode", 0) != 0:
            raise OrderRejectedError(
                f"Bybit rejected {order.side} {order.symbol}: {data.get('retMsg')}",
                ret_code=data.get("retCode"),
            )
        order_id = (data.get("result") or {}).get("orderId")
        if not order_id:
            raise OrderRejectedError(
                f"Bybit accepted {order.symbol} order without an orderId"
            )
        return OrderAck(
            order_id=order_id,
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=order.price,
        )

    async def _create_order(self, symbol: str, body: dict) -> dict:
        """POST ``/v5/order/create`` without ever placing the same order twice.

        A resend that Bybit refuses (typically as a duplicate ``orderLinkId``)
        is also checked against the order book before it counts as a
        rejection.
        """
        link_id = body["orderLinkId"]
        last_exc: Optional[ExchangeError] = None

        for attempt in range(_MAX_RETRIES):
            data: Optional[dict] = None
            try:
                data = await self._request_with_retry(
                    "post", "/v5/order/create", body=body, signed=True, max_attempts=1,
                )
            except ExchangeError as exc:
                logger.warning(
                    "Bybit order %s unconfirmed (%s) — checking before resend %d/%d",
                    link_id, exc, attempt + 1, _MAX_RETRIES,
                )
                last_exc = exc
            if data is not None and (attempt == 0 or data.get("retCode", 0) == 0):
                return data

            order_id = await self._find_order_id(symbol, link_id)
            if order_id:
                logger.info("Bybit order %s already placed as %s", link_id, order_id)
                return {
                    "retCode": 0,
                    "retMsg": "OK",
                    "result": {"orderId": order_id, "orderLinkId": link_id},
                }
            if data is not None:
                return data

        raise last_exc

    async def _find_order_id(self, symbol: str, link_id: str) -> Optional[str]:
        """Look an order up by ``orderLinkId``; ``None`` if unknown or unreachable."""
        params = {"category": _CATEGORY, "symbol": symbol, "orderLinkId": link_id}
        try:
            for path in ("/v5/order/realtime", "/v5/order/history"):
                data = await self._request_with_retry("get", path, params=params, signed=True)
                rows = self._result_list(data, f"order {link_id}")
                if rows:
                    return rows[0].get("orderId")
        except ExchangeError as exc:
            logger.warning("Bybit lookup of order %s failed: %s", link_id, exc)
        return None

    async def get_order_status(self, symbol: str, order_id: str) -> OrderStatus:
        """Return the normalised state of *order_id*.

        Open orders live under ``/v5/order/realtime``; once an order is
        closed it may only be visible in ``/v5/order/history``.
        """
        params = {"category": _CATEGORY, "symbol": symbol, "orderId": order_id}
        data = await self._request_with_retry(
            "get", "/v5/order/realtime", params=params, signed=True,
        )
        rows = self._result_list(data, f"order {order_id}")
        if not rows:
            data = await self._request_with_retry(
                "get", "/v5/order/history", params=params, signed=True,
            )
            rows = self._result_list(data, f"order history {order_id}")
        if not rows:
            return OrderStatus(order_id=order_id, status=ORDER_NOT_FOUND)

        row = rows[0]
        raw = row.get("orderStatus", "")
        return OrderStatus(
            order_id=order_id,
            status=_STATUS_MAP.get(raw, ORDER_OPEN),
            avg_price=float(row.get("avgPrice") or 0.0),
            executed_qty=float(row.get("cumExecQty") or 0.0),
            raw_status=raw,
        )

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        """Cancel a resting order.

        Raises ``ExchangeError`` when Bybit refuses the cancellation.
        """
        data = await self._request_with_retry(
            "post", "/v5/order/cancel",
            body={"category": _CATEGORY, "symbol": symbol, "orderId": order_id},
            signed=True,
        )
        if data.get("retCode", 0) != 0:
            raise ExchangeError(
                f"Bybit refused to cancel {order_id}: {data.get('retMsg')}",
                ret_code=data.get("retCode"),
            )
