"""Hyperliquid gateway: market data for every mode, order placement for live mode.

Wraps the synchronous hyperliquid-python-sdk. SDK calls run in the default
executor so they never block the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

import pandas as pd
from eth_account import Account
from hyperliquid.exchange import Exchange
from hyperliquid.info import Info

from spreadlab.errors import DataUnavailable, GatewayError
from spreadlab.models.spread import Leg
from spreadlab.services.statistics import Candle

logger = logging.getLogger(__name__)

# Worst acceptable price deviation for market orders
DEFAULT_SLIPPAGE = 0.01

# Returns (wallet_address, api_wallet_secret) or None when no credential is configured
CredentialLoader = Callable[[], tuple[str, str] | None]


@dataclass
class OrderResult:
    success: bool
    coin: str = ""
    order_id: str | None = None
    error: str | None = None
    filled_price: float | None = None
    filled_amount: float | None = None
    raw_response: str | None = None


def _to_hl_ticker(asset: str) -> str:
    """Convert asset name to Hyperliquid ticker format.

    Hyperliquid uses 'kX' instead of '1000X' (e.g. kBONK, kPEPE).
    """
    if asset.startswith("1000"):
        return "k" + asset[4:]
    return asset


def _parse_candles(candles: list[dict]) -> list[Candle]:
    """Parse a candles_snapshot response into Candles sorted by time.

    Each candle dict: {"t": 1772092800000, "s": "SOL", "i": "1d",
                       "o": "87.212", "c": "87.498", "h": "87.811", "l": "87.212", ...}
    Unparseable closes are kept as None so index alignment is preserved.
    """
    if not candles:
        return []

    df = pd.DataFrame([{"t": c.get("t"), "close": c.get("c")} for c in candles])
    df["t"] = pd.to_numeric(df["t"], errors="coerce")
    df["close"] = pd.to_numeric(df["close"], errors="coerce")
    df = df.dropna(subset=["t"]).drop_duplicates(subset="t").sort_values("t")
    return [
        Candle(time=int(t), close=None if pd.isna(close) else float(close))
        for t, close in zip(df["t"], df["close"])
    ]


def _parse_order_response(coin: str, resp) -> OrderResult:
    """Interpret an Exchange order response for a single order.

    {"status": "ok", "response": {"type": "order", "data": {"statuses": [
        {"filled": {"totalSz": "0.02", "avgPx": "1891.4", "oid": 77738308}}]}}}
    """
    if resp is None:
        return OrderResult(success=False, coin=coin, error="empty response")
    if resp.get("status") != "ok":
        return OrderResult(success=False, coin=coin, error=str(resp.get("response")), raw_response=str(resp))

    statuses = resp.get("response", {}).get("data", {}).get("statuses", [])
    if not statuses:
        return OrderResult(success=False, coin=coin, error="no order status", raw_response=str(resp))

    status = statuses[0]
    if "error" in status:
        return OrderResult(success=False, coin=coin, error=status["error"], raw_response=str(resp))
    if "filled" in status:
        filled = status["filled"]
        return OrderResult(
            success=True,
            coin=coin,
            order_id=str(filled.get("oid")),
            filled_price=float(filled.get("avgPx", 0)),
            filled_amount=float(filled.get("totalSz", 0)),
            raw_response=str(resp),
        )
    # Market orders are IOC; a resting status means it did not fill
    return OrderResult(success=False, coin=coin, error=f"not filled: {status}", raw_response=str(resp))


class HyperliquidGateway:
    """Market data and execution against Hyperliquid."""

    def __init__(
        self,
        base_url: str,
        credential_loader: CredentialLoader | None = None,
        slippage: float = DEFAULT_SLIPPAGE,
    ):
        self.base_url = base_url
        self.credential_loader = credential_loader
        self.slippage = slippage
        self._info: Info | None = None
        self._exchange: Exchange | None = None
        self._account_address: str | None = None
        self._sz_decimals: dict[str, int] = {}

    async def _run(self, fn, *args, **kwargs):
        """Run a blocking SDK call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))

    def _get_info(self) -> Info:
        # Public data needs no auth; skip the websocket manager
        if self._info is None:
            self._info = Info(self.base_url, skip_ws=True)
        return self._info

    def _get_exchange(self) -> Exchange:
        if self._exchange is not None:
            return self._exchange
        creds = self.credential_loader() if self.credential_loader else None
        if creds is None:
            raise GatewayError("No active credential for live trading")
        address, secret = creds
        wallet = Account.from_key(secret)
        self._exchange = Exchange(wallet, self.base_url, account_address=address)
        self._account_address = address
        logger.info(f"Hyperliquid exchange client initialized for {address}")
        return self._exchange

    def reset_exchange(self):
        """Drop the cached exchange client so the next order reloads credentials."""
        self._exchange = None
        self._account_address = None

    # -----------------------------------------------------------------------
    # Market data
    # -----------------------------------------------------------------------

    async def get_mid_prices(self, coins: list[str]) -> dict[str, float]:
        """Mid prices for the requested coins. Coins without a quote are omitted."""
        try:
            mids = await self._run(self._get_info().all_mids)
        except Exception as e:
            raise DataUnavailable(",".join(coins), f"all_mids failed: {e}") from e

        prices = {}
        for coin in coins:
            raw = mids.get(_to_hl_ticker(coin))
            if raw is None:
                continue
            price = float(raw)
            if price > 0:
                prices[coin] = price
        return prices

    async def get_mid_price(self, coin: str) -> float:
        prices = await self.get_mid_prices([coin])
        if coin not in prices:
            raise DataUnavailable(coin, "no mid price")
        return prices[coin]

    async def get_candles(self, coin: str, interval: str, start: int, end: int) -> list[Candle]:
        hl_ticker = _to_hl_ticker(coin)
        try:
            raw = await self._run(self._get_info().candles_snapshot, hl_ticker, interval, start, end)
        except Exception as e:
            logger.error(f"Error fetching candles for {coin} ({hl_ticker}): {e}")
            raise DataUnavailable(coin, f"candles_snapshot failed: {e}") from e

        candles = _parse_candles(raw)
        if not candles:
            raise DataUnavailable(coin, "empty candle response")
        return candles

    async def _size_decimals(self, coin: str) -> int:
        """Fetch and cache the size precision of a coin."""
        if not self._sz_decimals:
            meta = await self._run(self._get_info().meta)
            for asset in meta.get("universe", []):
                self._sz_decimals[asset["name"]] = int(asset.get("szDecimals", 0))
        return self._sz_decimals.get(_to_hl_ticker(coin), 0)

    # -----------------------------------------------------------------------
    # Execution (live mode)
    # -----------------------------------------------------------------------

    async def _market_open(self, coin: str, is_buy: bool, size: float) -> OrderResult:
        try:
            exchange = self._get_exchange()
            decimals = await self._size_decimals(coin)
            sz = round(size, decimals)
            if sz <= 0:
                return OrderResult(success=False, coin=coin, error=f"size {size} rounds to zero")
            resp = await self._run(
                exchange.market_open, _to_hl_ticker(coin), is_buy, sz, None, self.slippage
            )
            result = _parse_order_response(coin, resp)
        except GatewayError as e:
            return OrderResult(success=False, coin=coin, error=str(e))
        except Exception as e:
            logger.error(f"Order failed for {coin}: {e}")
            return OrderResult(success=False, coin=coin, error=str(e))

        side = "BUY" if is_buy else "SELL"
        if result.success:
            logger.info(f"{side} {coin} {sz} filled @ {result.filled_price}")
        else:
            logger.error(f"{side} {coin} {sz} rejected: {result.error}")
        return result

    async def _reduce_leg(self, coin: str, side: str, size: float) -> OrderResult:
        """Take `size` off one leg with a reduce-only IOC order on the opposite side.

        Only this leg's own size is traded: another spread holding the same
        coin keeps its exposure.
        """
        is_buy = side == "SHORT"
        ticker = _to_hl_ticker(coin)
        try:
            exchange = self._get_exchange()
            decimals = await self._size_decimals(coin)
            sz = round(size, decimals)
            if sz <= 0:
                return OrderResult(success=False, coin=coin, error=f"size {size} rounds to zero")

            def _send():
                px = exchange._slippage_price(ticker, is_buy, self.slippage)
                return exchange.order(ticker, is_buy, sz, px, {"limit": {"tif": "Ioc"}}, reduce_only=True)

            resp = await self._run(_send)
            result = _parse_order_response(coin, resp)
        except Exception as e:
            logger.error(f"Close failed for {coin}: {e}")
            return OrderResult(success=False, coin=coin, error=str(e))

        if not result.success and result.error and "reduce only" in result.error.lower():
            # Nothing left on this side to reduce
            logger.info(f"{coin} already flat")
            return OrderResult(success=True, coin=coin)
        if result.success:
            logger.info(f"Reduced {side} {coin} by {sz} @ {result.filled_price}")
        else:
            logger.error(f"Reduce {side} {coin} {sz} rejected: {result.error}")
        return result

    async def open_spread(
        self,
        coin_a: str,
        side_a: str,
        size_a: float,
        coin_b: str,
        side_b: str,
        size_b: float,
    ) -> tuple[OrderResult, OrderResult]:
        """Open both legs. If one leg fails, the filled leg is closed again.

        Raises GatewayError when the spread could not be opened.
        """
        result_a, result_b = await asyncio.gather(
            self._market_open(coin_a, side_a == "LONG", size_a),
            self._market_open(coin_b, side_b == "LONG", size_b),
        )
        if result_a.success and result_b.success:
            return result_a, result_b

        await self._rollback_partial_fill((side_a, result_a), (side_b, result_b))
        raise GatewayError(f"Open failed (rolled back): {result_a.error or result_b.error}")

    async def _rollback_partial_fill(self, leg_a: tuple[str, OrderResult], leg_b: tuple[str, OrderResult]):
        """Undo the leg that filled when the other leg failed.

        In pair trading both legs must execute; only the orphaned fill is
        reversed, never the whole venue position in that coin.
        """
        for (side, filled), (_, failed) in ((leg_a, leg_b), (leg_b, leg_a)):
            if filled.success and not failed.success:
                logger.warning(
                    f"Leg {failed.coin} failed, closing filled leg {filled.coin} (order {filled.order_id})"
                )
                undo = await self._reduce_leg(filled.coin, side, filled.filled_amount or 0.0)
                if not undo.success:
                    logger.error(
                        f"CRITICAL: Failed to close orphaned leg {filled.coin}: {undo.error}. "
                        f"Manual intervention required."
                    )

    async def close_spread(self, leg_a: Leg, leg_b: Leg) -> tuple[OrderResult, OrderResult]:
        """Close both legs at market, each by its recorded size.

        Raises GatewayError if either leg is still open afterwards; closing
        again later is safe since a flat leg counts as closed.
        """
        result_a, result_b = await asyncio.gather(
            self._reduce_leg(leg_a.coin, leg_a.side, leg_a.size),
            self._reduce_leg(leg_b.coin, leg_b.side, leg_b.size),
        )
        if not result_a.success or not result_b.success:
            raise GatewayError(f"Close failed: {result_a.error or result_b.error}")
        return result_a, result_b

    async def get_positions(self) -> list[dict]:
        """Open perp positions: coin, side, size, entry_price."""
        self._get_exchange()
        try:
            state = await self._run(self._get_info().user_state, self._account_address)
        except Exception as e:
            raise GatewayError(f"user_state failed: {e}") from e

        positions = []
        for item in state.get("assetPositions", []):
            pos = item.get("position", {})
            size = float(pos.get("szi", 0))
            if abs(size) < 1e-10:
                continue
            positions.append({
                "coin": pos.get("coin"),
                "side": "LONG" if size > 0 else "SHORT",
                "size": abs(size),
                "entry_price": float(pos.get("entryPx") or 0),
            })
        return positions

    async def test_connection(self) -> dict:
        try:
            positions = await self.get_positions()
            return {"status": "ok", "account": self._account_address, "positions": len(positions)}
        except GatewayError as e:
            return {"status": "error", "message": str(e)}
