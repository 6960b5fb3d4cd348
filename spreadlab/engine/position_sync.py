"""Position sync: compare live spreads in the DB with Hyperliquid on startup.

After a restart the DB may hold live spreads that no longer match the venue
(legs closed externally, a crash between orders and the DB write). This
module only reports discrepancies; it never deletes spreads or touches the
paper balance, since capital tracking must not change behind the operator's
back.

Cases reported:
1. Both legs present with the expected side → OK
2. One or both legs missing or on the wrong side → warning
3. Venue position on a coin no live spread uses → warning (untracked)
"""

import logging

from spreadlab.engine.bot import SpreadBot
from spreadlab.errors import GatewayError

logger = logging.getLogger(__name__)


async def sync_positions_on_startup(bot: SpreadBot) -> dict:
    """Reconcile live spreads against venue positions. Returns a report dict."""
    live_spreads = [s for s in bot.repository.get_open_spreads() if s.mode == "live"]
    if not live_spreads:
        logger.info("Position sync: no live spreads, skipping")
        return {"checked": 0, "issues": []}

    try:
        venue_positions = await bot.gateway.get_positions()
    except GatewayError as e:
        logger.error(f"Position sync: failed to fetch venue positions: {e}")
        return {"checked": 0, "issues": [], "error": str(e)}

    by_coin = {p["coin"]: p for p in venue_positions}
    logger.info(
        f"Position sync: {len(live_spreads)} live spreads, {len(venue_positions)} venue positions"
    )

    issues = []
    tracked_coins: set[str] = set()
    for spread in live_spreads:
        problems = []
        for leg in (spread.leg_a, spread.leg_b):
            tracked_coins.add(leg.coin)
            pos = by_coin.get(leg.coin)
            if pos is None:
                problems.append(f"{leg.coin} leg missing")
            elif pos["side"] != leg.side:
                problems.append(f"{leg.coin} is {pos['side']} on venue, expected {leg.side}")
        if problems:
            issues.append({"spread_id": spread.id, "pair_id": spread.pair_id, "problems": problems})

    for coin, pos in by_coin.items():
        if coin not in tracked_coins:
            issues.append({"spread_id": None, "pair_id": None, "problems": [
                f"untracked {pos['side']} {pos['size']} {coin} on venue"
            ]})

    for issue in issues:
        label = issue["pair_id"] or "venue"
        message = f"Position sync [{label}]: {'; '.join(issue['problems'])}"
        bot.record_log("warning", message, issue)
        bot.notifier.publish("warning", message=message)

    if not issues:
        logger.info("Position sync: all live spreads match the venue")
    return {"checked": len(live_spreads), "issues": issues}
