"""Tests for the Hyperliquid gateway: parsing, price fetches and two-leg execution."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from spreadlab.errors import DataUnavailable, GatewayError
from spreadlab.models.spread import Leg
from spreadlab.services.hyperliquid_client import (
    HyperliquidGateway,
    OrderResult,
    _parse_candles,
    _parse_order_response,
    _to_hl_ticker,
)


ETH_LONG = Leg("ETH", "LONG", 2000.0, 0.025)
BTC_SHORT = Leg("BTC", "SHORT", 50000.0, 0.001)


def _gateway_with_info(**info_methods) -> HyperliquidGateway:
    gateway = HyperliquidGateway("https://mock")
    gateway._info = MagicMock(**info_methods)
    return gateway


def _gateway_with_exchange(**exchange_methods) -> HyperliquidGateway:
    gateway = HyperliquidGateway("https://mock")
    gateway._exchange = MagicMock(_slippage_price=MagicMock(return_value=1900.0), **exchange_methods)
    gateway._sz_decimals = {"ETH": 4, "BTC": 5, "SOL": 2}
    return gateway


def _filled(size="0.025", price="1999.5"):
    return {"status": "ok", "response": {"type": "order", "data": {"statuses": [
        {"filled": {"totalSz": size, "avgPx": price, "oid": 1}}
    ]}}}


# ---------------------------------------------------------------------------
# 1. Parsing
# ---------------------------------------------------------------------------

def test_ticker_mapping():
    assert _to_hl_ticker("1000PEPE") == "kPEPE"
    assert _to_hl_ticker("ETH") == "ETH"


class TestParseCandles:
    def test_sorted_and_deduplicated(self):
        raw = [
            {"t": 2000, "c": "3.5"},
            {"t": 1000, "c": "3.0"},
            {"t": 2000, "c": "3.5"},
        ]
        candles = _parse_candles(raw)
        assert [c.time for c in candles] == [1000, 2000]
        assert [c.close for c in candles] == [3.0, 3.5]

    def test_bad_close_kept_as_none(self):
        candles = _parse_candles([{"t": 1000, "c": "n/a"}, {"t": 2000, "c": "1.5"}])
        assert candles[0].close is None
        assert candles[1].close == 1.5

    def test_empty(self):
        assert _parse_candles([]) == []


class TestParseOrderResponse:
    def test_filled(self):
        resp = {"status": "ok", "response": {"type": "order", "data": {"statuses": [
            {"filled": {"totalSz": "0.02", "avgPx": "1891.4", "oid": 77738308}}]}}}
        result = _parse_order_response("ETH", resp)
        assert result.success is True
        assert result.order_id == "77738308"
        assert result.filled_price == pytest.approx(1891.4)
        assert result.filled_amount == pytest.approx(0.02)

    def test_error_status(self):
        resp = {"status": "ok", "response": {"data": {"statuses": [{"error": "Insufficient margin"}]}}}
        result = _parse_order_response("ETH", resp)
        assert result.success is False
        assert result.error == "Insufficient margin"

    def test_resting_is_not_filled(self):
        resp = {"status": "ok", "response": {"data": {"statuses": [{"resting": {"oid": 1}}]}}}
        assert _parse_order_response("ETH", resp).success is False

    def test_rejected(self):
        assert _parse_order_response("ETH", {"status": "err", "response": "bad"}).error == "bad"

    def test_none(self):
        assert _parse_order_response("ETH", None).success is False


# ---------------------------------------------------------------------------
# 2. Market data
# ---------------------------------------------------------------------------

class TestMarketData:
    @pytest.mark.asyncio
    async def test_mid_prices_skip_unquoted_coins(self):
        gateway = _gateway_with_info(all_mids=MagicMock(return_value={"ETH": "2000.5", "kPEPE": "0.01"}))
        prices = await gateway.get_mid_prices(["ETH", "1000PEPE", "BTC"])
        assert prices == {"ETH": 2000.5, "1000PEPE": 0.01}

    @pytest.mark.asyncio
    async def test_mid_price_missing_raises(self):
        gateway = _gateway_with_info(all_mids=MagicMock(return_value={}))
        with pytest.raises(DataUnavailable) as exc_info:
            await gateway.get_mid_price("BTC")
        assert exc_info.value.asset == "BTC"

    @pytest.mark.asyncio
    async def test_all_mids_failure_raises(self):
        gateway = _gateway_with_info(all_mids=MagicMock(side_effect=ConnectionError("down")))
        with pytest.raises(DataUnavailable):
            await gateway.get_mid_prices(["ETH"])

    @pytest.mark.asyncio
    async def test_candles(self):
        snapshot = MagicMock(return_value=[{"t": 1000, "c": "2.0"}])
        gateway = _gateway_with_info(candles_snapshot=snapshot)
        candles = await gateway.get_candles("ETH", "1d", 0, 5000)
        assert candles[0].close == 2.0
        snapshot.assert_called_once_with("ETH", "1d", 0, 5000)

    @pytest.mark.asyncio
    async def test_empty_candles_raise(self):
        gateway = _gateway_with_info(candles_snapshot=MagicMock(return_value=[]))
        with pytest.raises(DataUnavailable):
            await gateway.get_candles("ETH", "1d", 0, 5000)


# ---------------------------------------------------------------------------
# 3. Execution
# ---------------------------------------------------------------------------

class TestExecution:
    @pytest.mark.asyncio
    async def test_open_spread_both_legs(self):
        gateway = HyperliquidGateway("https://mock")
        gateway._market_open = AsyncMock(side_effect=[
            OrderResult(success=True, coin="ETH", filled_price=2000.0, filled_amount=0.025),
            OrderResult(success=True, coin="BTC", filled_price=50000.0, filled_amount=0.001),
        ])
        result_a, result_b = await gateway.open_spread("ETH", "LONG", 0.025, "BTC", "SHORT", 0.001)

        assert result_a.success and result_b.success
        gateway._market_open.assert_any_await("ETH", True, 0.025)
        gateway._market_open.assert_any_await("BTC", False, 0.001)

    @pytest.mark.asyncio
    async def test_partial_fill_is_rolled_back(self):
        gateway = HyperliquidGateway("https://mock")
        gateway._market_open = AsyncMock(side_effect=[
            OrderResult(success=True, coin="ETH", order_id="1", filled_price=2000.0, filled_amount=0.02),
            OrderResult(success=False, coin="BTC", error="Insufficient margin"),
        ])
        gateway._reduce_leg = AsyncMock(return_value=OrderResult(success=True, coin="ETH"))

        with pytest.raises(GatewayError, match="Insufficient margin"):
            await gateway.open_spread("ETH", "LONG", 0.025, "BTC", "SHORT", 0.001)
        # Only the filled amount is undone
        gateway._reduce_leg.assert_awaited_once_with("ETH", "LONG", 0.02)

    @pytest.mark.asyncio
    async def test_both_legs_failed_needs_no_rollback(self):
        gateway = HyperliquidGateway("https://mock")
        gateway._market_open = AsyncMock(return_value=OrderResult(success=False, error="rejected"))
        gateway._reduce_leg = AsyncMock()

        with pytest.raises(GatewayError):
            await gateway.open_spread("ETH", "LONG", 0.025, "BTC", "SHORT", 0.001)
        gateway._reduce_leg.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_spread_reduces_each_leg_by_its_size(self):
        gateway = _gateway_with_exchange(order=MagicMock(side_effect=[_filled(), _filled()]))

        await gateway.close_spread(ETH_LONG, BTC_SHORT)

        exchange = gateway._exchange
        exchange.order.assert_any_call("ETH", False, 0.025, 1900.0, {"limit": {"tif": "Ioc"}}, reduce_only=True)
        exchange.order.assert_any_call("BTC", True, 0.001, 1900.0, {"limit": {"tif": "Ioc"}}, reduce_only=True)
        exchange.market_close.assert_not_called()

    @pytest.mark.asyncio
    async def test_shared_coin_keeps_other_spread_exposure(self):
        # ETH is held by two spreads; closing one sells only its 0.025
        gateway = _gateway_with_exchange(order=MagicMock(return_value=_filled()))

        await gateway.close_spread(ETH_LONG, Leg("SOL", "SHORT", 100.0, 0.8))

        eth_calls = [c for c in gateway._exchange.order.call_args_list if c.args[0] == "ETH"]
        assert len(eth_calls) == 1
        assert eth_calls[0].args[2] == 0.025

    @pytest.mark.asyncio
    async def test_close_spread_failure_raises(self):
        gateway = HyperliquidGateway("https://mock")
        gateway._reduce_leg = AsyncMock(side_effect=[
            OrderResult(success=True, coin="ETH"),
            OrderResult(success=False, coin="BTC", error="timeout"),
        ])
        with pytest.raises(GatewayError, match="timeout"):
            await gateway.close_spread(ETH_LONG, BTC_SHORT)

    @pytest.mark.asyncio
    async def test_flat_leg_counts_as_closed(self):
        gateway = _gateway_with_exchange(order=MagicMock(return_value={
            "status": "ok",
            "response": {"type": "order", "data": {"statuses": [
                {"error": "Reduce only order would increase position."}
            ]}},
        }))
        result = await gateway._reduce_leg("ETH", "LONG", 0.025)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_no_credential(self):
        gateway = HyperliquidGateway("https://mock", credential_loader=lambda: None)
        result = await gateway._reduce_leg("ETH", "LONG", 0.025)
        assert result.success is False
        assert "No active credential" in result.error

    @pytest.mark.asyncio
    async def test_positions(self):
        gateway = _gateway_with_info(user_state=MagicMock(return_value={"assetPositions": [
            {"position": {"coin": "ETH", "szi": "0.5", "entryPx": "2000"}},
            {"position": {"coin": "BTC", "szi": "-0.01", "entryPx": "50000"}},
            {"position": {"coin": "SOL", "szi": "0", "entryPx": None}},
        ]}))
        gateway._exchange = MagicMock()
        gateway._account_address = "0xabc"

        positions = await gateway.get_positions()
        assert positions == [
            {"coin": "ETH", "side": "LONG", "size": 0.5, "entry_price": 2000.0},
            {"coin": "BTC", "side": "SHORT", "size": 0.01, "entry_price": 50000.0},
        ]
