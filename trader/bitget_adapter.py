import asyncio
import base64
import hashlib
import hmac
import json
import random
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp

from .execution import OrderAction, OrderGateway
from .logging_setup import logger
from .rate_limit_policy import RateLimitManager
from .secrets import BitgetCredentials

SUCCESS_CODE = "00000"
MAX_RATE_LIMIT_ATTEMPTS = 5

# hedge mode: side names the position direction, tradeSide whether it opens or closes
_ORDER_SIDES = {
    OrderAction.OPEN_LONG: ("buy", "open"),
    OrderAction.OPEN_SHORT: ("sell", "open"),
    OrderAction.CLOSE_LONG: ("buy", "close"),
    OrderAction.CLOSE_SHORT: ("sell", "close"),
}


class BitgetAPIError(Exception):
    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status = status


class BitgetRateLimitError(BitgetAPIError):
    """Raised when rate limit is hit and backoff is exhausted."""
    pass


def sign_message(secret: str, message: str) -> str:
    """Base64 HMAC-SHA256 of ``message`` keyed with the raw API secret."""
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class BitgetAdapter(OrderGateway):
    """Async Bitget v2 futures adapter using aiohttp.

    Features:
    - Request signing (ACCESS-* headers) over ``timestamp + METHOD + path [+ ?query] + body``.
    - Per-endpoint client-side rate limiting.
    - Jittered exponential backoff for 429 responses.
    - Envelope checking: any ``code`` other than ``00000`` raises BitgetAPIError.

    Usage:
        async with BitgetAdapter(...) as adapter:
            order_id = await adapter.place_order("BTCUSDT", OrderAction.OPEN_LONG, Decimal("0.001"))
    """

    def __init__(
        self,
        api_key: str,
        secret: str,
        passphrase: str,
        *,
        base_url: str = "https://api.bitget.com",
        product_type: str = "USDT-FUTURES",
        margin_coin: str = "USDT",
        margin_mode: str = "crossed",
        price_precision: int = 1,
        timeout: int = 10,
        max_backoff_seconds: float = 60.0,
        rate_limiter: Optional[RateLimitManager] = None,
    ):
        self.api_key = api_key
        self.secret = secret
        self.passphrase = passphrase
        self.base_url = base_url.rstrip("/")
        self.product_type = product_type
        self.margin_coin = margin_coin
        self.margin_mode = margin_mode
        self.price_precision = price_precision
        self.timeout = timeout
        self.max_backoff_seconds = max_backoff_seconds
        self.rate_limiter = rate_limiter or RateLimitManager()
        self.session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_credentials(cls, credentials: BitgetCredentials, **kwargs) -> "BitgetAdapter":
        return cls(
            api_key=credentials.api_key,
            secret=credentials.api_secret,
            passphrase=credentials.passphrase,
            **kwargs,
        )

    async def __aenter__(self):
        self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()

    def _sign(self, method: str, request_path: str, query: str = "", body: str = "") -> dict:
        timestamp = str(int(time.time() * 1000))
        message = timestamp + method.upper() + request_path + (f"?{query}" if query else "") + body
        return {
            "ACCESS-KEY": self.api_key,
            "ACCESS-SIGN": sign_message(self.secret, message),
            "ACCESS-TIMESTAMP": timestamp,
            "ACCESS-PASSPHRASE": self.passphrase,
            "Content-Type": "application/json",
            "locale": "en-US",
        }

    @staticmethod
    def _jittered_backoff(attempt: int, base: float = 1.0, max_backoff: float = 60.0) -> float:
        delay = base * (2 ** attempt)
        delay = min(delay, max_backoff)
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return max(0, delay + jitter)

    def _format_price(self, price: Decimal) -> str:
        quantum = Decimal(1).scaleb(-self.price_precision)
        return str(price.quantize(quantum, rounding=ROUND_HALF_UP))

    async def _request(self, method: str, path: str, body: Optional[dict] = None, params: Optional[dict] = None, attempt: int = 0) -> Any:
        """Execute a signed request and return the envelope's ``data``."""
        if not self.session:
            raise BitgetAPIError("Session not initialized; use 'async with' context manager")

        request_path = path if path.startswith("/") else f"/{path}"
        query = urlencode(params) if params else ""
        body_str = json.dumps(body) if body is not None else ""
        url = f"{self.base_url}{request_path}" + (f"?{query}" if query else "")

        if not await self.rate_limiter.acquire(request_path):
            raise BitgetRateLimitError(f"Client-side rate limit wait exceeded for {request_path}")
        headers = self._sign(method, request_path, query, body_str)

        try:
            async with self.session.request(method, url, headers=headers, data=body_str or None, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                text = await resp.text()
                if resp.status == 429:
                    if attempt >= MAX_RATE_LIMIT_ATTEMPTS:
                        raise BitgetRateLimitError("Rate limited and max backoff attempts exceeded", status=429)
                    backoff = self._jittered_backoff(attempt, base=1.0, max_backoff=self.max_backoff_seconds)
                    logger.warning(f"429 on {request_path}; retrying in {backoff:.2f}s")
                    await asyncio.sleep(backoff)
                    return await self._request(method, path, body=body, params=params, attempt=attempt + 1)

                payload = self._parse(text)
                code = str(payload.get("code")) if isinstance(payload, dict) else None
                if not (200 <= resp.status < 300) or code != SUCCESS_CODE:
                    msg = payload.get("msg") if isinstance(payload, dict) else text
                    raise BitgetAPIError(f"{resp.status} {code}: {msg}", code=code, status=resp.status)
                return payload.get("data")

        except asyncio.TimeoutError as e:
            raise BitgetAPIError(f"Request timeout: {e}")
        except aiohttp.ClientError as e:
            raise BitgetAPIError(f"Request failed: {e}")

    @staticmethod
    def _parse(text: str) -> Any:
        if not text:
            return {}
        try:
            return json.loads(text)
        except ValueError:
            return {"msg": text}

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        body = {
            "symbol": symbol,
            "productType": self.product_type,
            "marginCoin": self.margin_coin,
            "leverage": str(leverage),
        }
        try:
            await self._request("POST", "/api/v2/mix/account/set-leverage", body=body)
        except BitgetAPIError as e:
            logger.error(f"Set leverage {symbol} x{leverage} failed: {e}")
            raise
        logger.info(f"Leverage set: {symbol} x{leverage}")

    async def place_order(self, symbol: str, action: OrderAction, qty: Decimal) -> str:
        side, trade_side = _ORDER_SIDES[action]
        body = {
            "symbol": symbol,
            "productType": self.product_type,
            "marginMode": self.margin_mode,
            "marginCoin": self.margin_coin,
            "size": str(qty),
            "side": side,
            "tradeSide": trade_side,
            "orderType": "market",
        }
        try:
            data = await self._request("POST", "/api/v2/mix/order/place-order", body=body)
        except BitgetAPIError as e:
            logger.error(f"Order {action.value} {qty} {symbol} failed: {e}")
            raise
        order_id = (data or {}).get("orderId")
        logger.info(f"Order placed: {action.value} {qty} {symbol} (orderId={order_id})")
        return order_id

    async def place_tpsl(self, symbol, hold_side, entry_price, take_profit, stop_loss) -> None:
        body = {
            "symbol": symbol,
            "productType": self.product_type,
            "marginCoin": self.margin_coin,
            "holdSide": hold_side,
            "stopSurplusTriggerPrice": self._format_price(take_profit),
            "stopSurplusTriggerType": "fill_price",
            "stopLossTriggerPrice": self._format_price(stop_loss),
            "stopLossTriggerType": "fill_price",
        }
        try:
            await self._request("POST", "/api/v2/mix/order/place-pos-tpsl", body=body)
        except BitgetAPIError as e:
            logger.error(f"TP/SL for {hold_side} {symbol} failed: {e}")
            raise
        logger.info(
            f"TP/SL placed: {hold_side} {symbol} entry={entry_price} "
            f"tp={body['stopSurplusTriggerPrice']} sl={body['stopLossTriggerPrice']}"
        )

    async def fetch_candles(self, symbol: str, granularity: str, limit: int) -> List[List[str]]:
        params = {
            "symbol": symbol,
            "productType": self.product_type,
            "granularity": granularity,
            "limit": str(limit),
        }
        try:
            rows = await self._request("GET", "/api/v2/mix/market/candles", params=params)
        except BitgetAPIError as e:
            logger.error(f"Candle history for {symbol} failed: {e}")
            raise
        return sorted(rows or [], key=lambda r: int(r[0]))

    async def get_ticker(self, symbol: str) -> Optional[Decimal]:
        params = {"symbol": symbol, "productType": self.product_type}
        data = await self._request("GET", "/api/v2/mix/market/ticker", params=params)
        if not data:
            return None
        last = data[0].get("lastPr") if isinstance(data, list) else data.get("lastPr")
        return Decimal(str(last)) if last is not None else None

    async def get_account(self, symbol: str) -> Dict[str, Any]:
        params = {"symbol": symbol, "productType": self.product_type, "marginCoin": self.margin_coin}
        return await self._request("GET", "/api/v2/mix/account/account", params=params) or {}
