"""Tests for the startup reconciliation of live spreads against the venue."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from spreadlab.engine.bot import SpreadBot
from spreadlab.engine.position_sync import sync_positions_on_startup
from spreadlab.errors import GatewayError
from spreadlab.services.notifier import Notifier
from factories import NOW, make_spread


def _bot(repo, positions=None, error=None):
    gateway = MagicMock()
    gateway.get_positions = AsyncMock(return_value=positions or [], side_effect=error)
    notifier = Notifier()
    events = []
    notifier.subscribe(events.append)
    return SpreadBot(repo, gateway, notifier, clock=lambda: NOW), events


def _pos(coin, side, size=1.0):
    return {"coin": coin, "side": side, "size": size, "entry_price": 1.0}


@pytest.mark.asyncio
async def test_no_live_spreads_skips_venue(repo):
    repo.record_open(make_spread(), fee=0.1)
    bot, _ = _bot(repo)

    report = await sync_positions_on_startup(bot)

    assert report == {"checked": 0, "issues": []}
    bot.gateway.get_positions.assert_not_awaited()


@pytest.mark.asyncio
async def test_matching_positions(repo):
    repo.record_open(make_spread(id="live-1", mode="live"), fee=0.1)
    bot, events = _bot(repo, [_pos("ETH", "LONG"), _pos("BTC", "SHORT")])

    report = await sync_positions_on_startup(bot)

    assert report == {"checked": 1, "issues": []}
    assert events == []


@pytest.mark.asyncio
async def test_missing_and_wrong_side_legs_are_reported(repo):
    repo.record_open(make_spread(id="live-1", mode="live"), fee=0.1)
    bot, events = _bot(repo, [_pos("ETH", "SHORT")])

    report = await sync_positions_on_startup(bot)

    problems = report["issues"][0]["problems"]
    assert "ETH is SHORT on venue, expected LONG" in problems
    assert "BTC leg missing" in problems
    assert [e.type for e in events] == ["warning"]
    assert repo.get_logs(level="warning")
    # positions are reported, never changed
    assert repo.get_open_spread("live-1") is not None
    assert repo.get_stats().paper_balance == pytest.approx(999.9)


@pytest.mark.asyncio
async def test_untracked_venue_position(repo):
    repo.record_open(make_spread(id="live-1", mode="live"), fee=0.1)
    bot, _ = _bot(repo, [_pos("ETH", "LONG"), _pos("BTC", "SHORT"), _pos("SOL", "LONG", 3.0)])

    report = await sync_positions_on_startup(bot)

    assert report["issues"] == [
        {"spread_id": None, "pair_id": None, "problems": ["untracked LONG 3.0 SOL on venue"]}
    ]


@pytest.mark.asyncio
async def test_venue_error(repo):
    repo.record_open(make_spread(id="live-1", mode="live"), fee=0.1)
    bot, _ = _bot(repo, error=GatewayError("No active credential for live trading"))

    report = await sync_positions_on_startup(bot)

    assert report["checked"] == 0
    assert "No active credential" in report["error"]
