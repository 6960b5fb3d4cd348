"""Bot control API: state, start/stop, config, manual cycle, positions, history."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from spreadlab.api.deps import get_runtime, require_token
from spreadlab.errors import ConfigValidationError, DataUnavailable, GatewayError
from spreadlab.schemas.bot_config import BotConfig, BotConfigUpdate
from spreadlab.wiring import Runtime

router = APIRouter(prefix="/api/bot", tags=["bot"], dependencies=[Depends(require_token)])


class ResetRequest(BaseModel):
    initial_balance: float = Field(default=1000.0, gt=0)


@router.get("/status")
def bot_status(runtime: Runtime = Depends(get_runtime)):
    data = runtime.bot.get_state().to_dict()
    data["worker"] = runtime.repository.get_worker_status(runtime.bot.clock())
    return data


@router.post("/start", response_model=BotConfig)
async def start_bot(runtime: Runtime = Depends(get_runtime)):
    return await runtime.bot.start()


@router.post("/stop", response_model=BotConfig)
async def stop_bot(runtime: Runtime = Depends(get_runtime)):
    return await runtime.bot.stop()


@router.post("/reset")
async def reset_bot(body: ResetRequest, runtime: Runtime = Depends(get_runtime)):
    await runtime.bot.reset(body.initial_balance)
    return runtime.bot.get_state().to_dict()["stats"]


@router.get("/config", response_model=BotConfig)
def get_config(runtime: Runtime = Depends(get_runtime)):
    return runtime.repository.get_config()


@router.put("/config", response_model=BotConfig)
async def update_config(data: BotConfigUpdate, runtime: Runtime = Depends(get_runtime)):
    # Merged validation happens in the store so partial updates cannot bypass cross-field rules
    try:
        return await runtime.bot.update_config(data.model_dump(exclude_unset=True))
    except ConfigValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors)


@router.post("/run")
async def run_cycle(runtime: Runtime = Depends(get_runtime)):
    """Manually trigger one cycle."""
    return asdict(await runtime.bot.run_cycle())


@router.get("/scan")
async def scan(runtime: Runtime = Depends(get_runtime)):
    """Current ranked opportunities, without trading."""
    return [asdict(o) for o in await runtime.bot.scan()]


@router.get("/positions")
def list_positions(runtime: Runtime = Depends(get_runtime)):
    return runtime.repository.get_open_spreads()


@router.post("/positions/{spread_id}/close")
async def close_position(spread_id: str, runtime: Runtime = Depends(get_runtime)):
    try:
        trade = await runtime.bot.close_position(spread_id)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except DataUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    if trade is None:
        raise HTTPException(status_code=404, detail="No open spread with this id")
    return trade


@router.post("/close-all")
async def close_all(runtime: Runtime = Depends(get_runtime)):
    result = await runtime.bot.close_all()
    return {
        "positions_closed": result["positions_closed"],
        "trades": [t.model_dump() for t in result["trades"]],
        "errors": result["errors"],
    }


@router.get("/trades")
def trade_history(limit: int = 50, offset: int = 0, runtime: Runtime = Depends(get_runtime)):
    return runtime.repository.get_trades(limit=limit, offset=offset)


@router.get("/logs")
def bot_logs(limit: int = 100, level: str | None = None, runtime: Runtime = Depends(get_runtime)):
    return runtime.repository.get_logs(limit=limit, level=level)
