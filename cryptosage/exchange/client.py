"""
MEXC Spot REST Client (Async)

Thin aiohttp wrapper over the spot v3 endpoints the engine consumes:

    GET  /api/v3/ping                 connectivity
    GET  /api/v3/account              balances            (signed)
    GET  /api/v3/klines               candle history
    GET  /api/v3/ticker/bookTicker    best bid / ask
    GET  /api/v3/ticker/price         last prices
    GET  /api/v3/myTrades             own trade history   (signed)
    POST /api/v3/order                order creation      (signed)

Signing: HMAC-SHA256 (hex) over the canonical query string, which always
carries `timestamp` and `recvWindow`. API key goes in X-MEXC-APIKEY.

Retry policy:
- Reads retry on connection failures with exponential backoff.
- Order creation NEVER retries - a duplicate submission costs real money.
"""

import asyncio
import hashlib
import hmac
import logging
import time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import aiohttp
import pandas as pd
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import ExchangeConnectionError, ExchangeError, OrderRejected
from ..market.indicators import candles_to_frame
from ..portfolio.schema import Fill

logger = logging.getLogger(__name__)


def to_symbol(pair: str) -> str:
    """'XRP/USDT' -> 'XRPUSDT'."""
    return pair.replace("/", "").upper()


class MexcClient:
    """
    Async MEXC spot client.

    Usage:
        client = MexcClient(api_key, api_secret)
        if await client.ping():
            balances = await client.get_balances()
            candles = await client.get_klines("XRP/USDT", "1m", 200)
        await client.close()
    """

    BASE_URL = "https://api.mexc.com"
    RECV_WINDOW = 5000

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = BASE_URL,
        timeout_seconds: float = 10.0,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.session = session
        self._own_session = False
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self._timeout)
            self._own_session = True
        return self.session

    async def close(self) -> None:
        """Close the connection session if we own it."""
        if self._own_session and self.session and not self.session.closed:
            await self.session.close()

    # =========================================================================
    # SIGNING
    # =========================================================================

    def _require_keys(self) -> None:
        if not (self.api_key and self.api_secret):
            raise ExchangeError("MEXC API key and secret are required for signed endpoints")

    def sign(self, params: Dict[str, Any], timestamp_ms: Optional[int] = None) -> str:
        """
        Build the signed query string.

        The canonical string is the urlencoded params (insertion order)
        followed by recvWindow and timestamp; the signature is appended last.
        """
        self._require_keys()
        payload = dict(params)
        payload["recvWindow"] = self.RECV_WINDOW
        payload["timestamp"] = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        query = urlencode(payload)
        signature = hmac.new(
            self.api_secret.encode("utf-8"),
            query.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"{query}&signature={signature}"

    def _headers(self, signed: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if signed:
            headers["X-MEXC-APIKEY"] = self.api_key
        return headers

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(ExchangeConnectionError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, signed: bool = False) -> Any:
        """Idempotent GET with automatic retries on connection failures."""
        session = await self._get_session()
        query = self.sign(params or {}) if signed else urlencode(params or {})
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"

        try:
            async with session.get(url, headers=self._headers(signed)) as response:
                if response.status >= 500:
                    text = await response.text()
                    raise ExchangeConnectionError(
                        f"MEXC server error {response.status}: {text}", status=response.status
                    )
                payload = await response.json(content_type=None)
                if response.status >= 400:
                    raise ExchangeError(
                        f"MEXC API error {response.status}: {self._error_message(payload)}",
                        status=response.status,
                        payload=payload,
                    )
                return payload
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExchangeConnectionError(f"MEXC request failed: {path}: {e}") from e

    async def _post_order(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Signed order POST. No retries."""
        session = await self._get_session()
        body = self.sign(params)
        headers = self._headers(True)
        headers["Content-Type"] = "application/x-www-form-urlencoded"

        try:
            async with session.post(f"{self.base_url}/api/v3/order", data=body, headers=headers) as response:
                payload = await response.json(content_type=None)
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExchangeConnectionError(f"MEXC order request failed: {e}") from e

        if status >= 400:
            raise OrderRejected(
                f"MEXC rejected order ({status}): {self._error_message(payload)}",
                status=status,
                payload=payload,
            )
        if not isinstance(payload, dict) or not payload.get("orderId"):
            raise OrderRejected(
                f"MEXC order not acknowledged: {self._error_message(payload)}",
                status=status,
                payload=payload,
            )
        return payload

    @staticmethod
    def _error_message(payload: Any) -> str:
        if isinstance(payload, dict):
            return str(payload.get("msg") or payload.get("message") or payload)
        return str(payload)

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    async def ping(self) -> bool:
        """True if the exchange answers /api/v3/ping."""
        try:
            await self._get("/api/v3/ping")
            return True
        except ExchangeError as e:
            logger.warning(f"MEXC ping failed: {e}")
            return False

    async def get_balances(self) -> Dict[str, Decimal]:
        """Free balance per asset (zero balances omitted)."""
        account = await self._get("/api/v3/account", signed=True)
        if not isinstance(account, dict) or "balances" not in account:
            raise ExchangeError("Invalid account response: missing balances", payload=account)

        balances: Dict[str, Decimal] = {}
        for entry in account["balances"]:
            free = Decimal(str(entry.get("free") or "0"))
            if free > 0:
                balances[entry["asset"]] = free
        return balances

    async def get_klines(self, pair: str, interval: str, limit: int) -> pd.DataFrame:
        """Candle history as a DataFrame, oldest first."""
        rows = await self._get(
            "/api/v3/klines",
            {"symbol": to_symbol(pair), "interval": interval, "limit": limit},
        )
        return candles_to_frame(rows or [])

    async def get_book_ticker(self, pair: str) -> Dict[str, Decimal]:
        """Best bid / ask."""
        data = await self._get("/api/v3/ticker/bookTicker", {"symbol": to_symbol(pair)})
        return {
            "bid": Decimal(str(data.get("bidPrice") or "0")),
            "ask": Decimal(str(data.get("askPrice") or "0")),
        }

    async def get_prices(self, pairs: Iterable[str]) -> Dict[str, Decimal]:
        """Last traded price per pair."""
        wanted = {to_symbol(pair): pair for pair in pairs}
        data = await self._get("/api/v3/ticker/price")
        prices: Dict[str, Decimal] = {}
        for entry in data or []:
            pair = wanted.get(entry.get("symbol"))
            if pair is not None:
                prices[pair] = Decimal(str(entry["price"]))
        return prices

    async def get_my_trades(self, pair: str, limit: int = 100) -> List[Fill]:
        """Own fills for a pair, oldest first."""
        data = await self._get(
            "/api/v3/myTrades",
            {"symbol": to_symbol(pair), "limit": limit},
            signed=True,
        )
        fills = [
            Fill(
                pair=pair,
                is_buy=bool(trade.get("isBuyer")),
                price=Decimal(str(trade["price"])),
                quantity=Decimal(str(trade["qty"])),
                quote_quantity=Decimal(str(trade["quoteQty"])),
                time_ms=int(trade.get("time", 0)),
            )
            for trade in data or []
        ]
        fills.sort(key=lambda f: f.time_ms)
        return fills

    async def create_order(
        self,
        pair: str,
        side: str,
        order_type: str = "MARKET",
        quote_quantity: Optional[Decimal] = None,
        quantity: Optional[Decimal] = None,
        price: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Submit an order.

        MARKET BUY is sized in quote currency (quoteOrderQty); every other
        order is sized in base quantity. LIMIT orders carry a price.

        Raises:
            OrderRejected: non-2xx, embedded error payload or missing orderId
            ExchangeConnectionError: transport failure (state unknown)
        """
        side = side.upper()
        order_type = order_type.upper()
        params: Dict[str, Any] = {"symbol": to_symbol(pair), "side": side, "type": order_type}

        if order_type == "MARKET" and side == "BUY":
            if quote_quantity is None:
                raise ValueError("MARKET BUY requires quote_quantity")
            params["quoteOrderQty"] = str(quote_quantity)
        else:
            if quantity is None:
                raise ValueError(f"{order_type} {side} requires quantity")
            params["quantity"] = str(quantity)

        if order_type == "LIMIT":
            if price is None:
                raise ValueError("LIMIT order requires price")
            params["price"] = str(price)

        logger.info(f"Submitting MEXC order: {params}")
        return await self._post_order(params)
