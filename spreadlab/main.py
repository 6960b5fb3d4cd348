"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from spreadlab.config import settings
from spreadlab.utils.logging import setup_logging
from spreadlab.api import bot, credentials, optimize, system


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    from spreadlab.wiring import build_runtime
    runtime = build_runtime(settings)
    app.state.runtime = runtime

    # Check live spreads against the venue before jobs start
    from spreadlab.engine.position_sync import sync_positions_on_startup
    await sync_positions_on_startup(runtime.bot)

    if settings.run_worker:
        runtime.worker.start()

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from spreadlab.services.telegram_bot import TelegramBot
        telegram_bot = TelegramBot(
            token=settings.telegram_bot_token,
            chat_ids=settings.telegram_chat_ids,
            bot=runtime.bot,
        )
        telegram_bot.start()

    yield

    if telegram_bot:
        telegram_bot.stop()
    await runtime.worker.stop()


app = FastAPI(
    title="SpreadLab",
    description="Pairs mean-reversion spread trading bot with control API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(bot.router)
app.include_router(optimize.router)
app.include_router(credentials.router)
app.include_router(system.router)
