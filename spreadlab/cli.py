"""CLI tool for running and inspecting the bot.

Usage:
    python -m spreadlab.cli serve [port]
    python -m spreadlab.cli worker
    python -m spreadlab.cli status
    python -m spreadlab.cli run-once
    python -m spreadlab.cli start
    python -m spreadlab.cli stop
    python -m spreadlab.cli reset [balance]
    python -m spreadlab.cli optimize COIN_A COIN_B
    python -m spreadlab.cli optimize-all
"""

import asyncio
import signal
import sys

from spreadlab.config import settings
from spreadlab.utils.logging import setup_logging
from spreadlab.wiring import Runtime, build_runtime


async def run_worker(runtime: Runtime):
    """Run the scheduler until SIGINT/SIGTERM, then drain and exit."""
    from spreadlab.engine.position_sync import sync_positions_on_startup

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await sync_positions_on_startup(runtime.bot)
    runtime.worker.start()

    telegram_bot = None
    if settings.telegram_bot_token:
        from spreadlab.services.telegram_bot import TelegramBot
        telegram_bot = TelegramBot(settings.telegram_bot_token, settings.telegram_chat_ids, runtime.bot)
        telegram_bot.start()

    await stop_event.wait()
    print("Stopping worker...")
    await runtime.worker.stop()
    await runtime.notifier.flush()
    if telegram_bot:
        telegram_bot.stop()


def show_status(runtime: Runtime):
    state = runtime.bot.get_state(recent_trades=10)
    worker = runtime.repository.get_worker_status(runtime.bot.clock())

    print("\n=== BOT STATUS ===\n")
    print(f"Enabled:    {'YES' if state.config.enabled else 'NO'}")
    print(f"Mode:       {state.config.mode.upper()}")
    print(f"Worker:     {'alive' if worker['alive'] else 'not running'}")
    print(f"Balance:    {state.paper_balance:.2f} USD")
    print(f"Equity:     {state.equity:.2f} USD (drawdown {state.drawdown_pct:.2f}%)")
    print(f"Total PnL:  {state.total_pnl:+.2f} USD")
    print(f"Trades:     {state.total_trades} ({state.win_rate * 100:.1f}% win rate)")

    print(f"\nOpen spreads ({len(state.open_spreads)}):")
    for s in state.open_spreads:
        print(f"  {s.pair_id.upper():<14} {s.signal:<5} ${s.size_usd:.0f}  PnL {s.current_pnl:+.2f}")

    print("\nRecent trades:")
    for t in state.recent_trades:
        print(f"  {t.pair_id.upper():<14} {t.exit_reason:<16} {t.final_pnl:+.2f}")


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m spreadlab.cli <command>")
        print("Commands: serve [port], worker, status, run-once, start, stop, reset [balance], "
              "optimize COIN_A COIN_B, optimize-all")
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]

    if command == "serve":
        # API process; the lifespan builds its own runtime
        import uvicorn
        port = int(sys.argv[2]) if len(sys.argv) > 2 else 8000
        uvicorn.run("spreadlab.main:app", host="0.0.0.0", port=port)
        return

    runtime = build_runtime(settings)

    if command == "worker":
        asyncio.run(run_worker(runtime))
    elif command == "status":
        show_status(runtime)
    elif command == "run-once":
        result = asyncio.run(runtime.bot.run_cycle())
        print(f"Executed: {result.executed} {result.reason or result.error or ''}")
        for action in result.actions:
            print(f"  {action.type} {action.pair_id} {action.signal or action.reason}")
    elif command == "start":
        config = asyncio.run(runtime.bot.start())
        print(f"Bot enabled ({config.mode.upper()}).")
    elif command == "stop":
        asyncio.run(runtime.bot.stop())
        print("Bot disabled.")
    elif command == "reset":
        balance = float(sys.argv[2]) if len(sys.argv) > 2 else settings.initial_balance
        asyncio.run(runtime.bot.reset(balance))
        print(f"Bot reset with balance {balance:.2f}.")
    elif command == "optimize":
        if len(sys.argv) < 4:
            print("Usage: python -m spreadlab.cli optimize COIN_A COIN_B")
            sys.exit(1)
        coin_a, coin_b = sys.argv[2].upper(), sys.argv[3].upper()
        result, saved = asyncio.run(runtime.bot.optimize_pair(coin_a, coin_b))
        if saved is None:
            print(f"No parameters found: {result.error}")
            sys.exit(1)
        print(f"{saved.pair_id}: z_entry={saved.z_entry} z_exit={saved.z_exit} score={saved.score:.2f}")
        if result.improvement_pct is not None:
            print(f"Improvement over defaults: {result.improvement_pct:.1f}%")
    elif command == "optimize-all":
        result = asyncio.run(runtime.bot.optimize_all())
        print(f"Optimized {len(result['optimized'])} pairs, {result['skipped']} without a valid combination")
        for pair_id in result["optimized"]:
            print(f"  {pair_id}")
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
