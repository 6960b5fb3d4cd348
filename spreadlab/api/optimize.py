"""Parameter optimization API."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from spreadlab.api.deps import get_runtime, require_token
from spreadlab.services.optimizer import summarize
from spreadlab.wiring import Runtime

router = APIRouter(prefix="/api/optimize", tags=["optimize"], dependencies=[Depends(require_token)])


class OptimizeRequest(BaseModel):
    coin_a: str
    coin_b: str
    min_trades: int = Field(default=5, ge=1)
    min_win_rate: float = Field(default=0.5, ge=0, le=1)

    @field_validator("coin_a", "coin_b")
    @classmethod
    def _normalize_coin(cls, value: str) -> str:
        coin = value.strip().upper()
        if not coin:
            raise ValueError("must not be empty")
        return coin


@router.post("/pair")
async def optimize_pair(body: OptimizeRequest, runtime: Runtime = Depends(get_runtime)):
    if body.coin_a == body.coin_b:
        raise HTTPException(status_code=422, detail="coin_a and coin_b must differ")
    result, saved = await runtime.bot.optimize_pair(
        body.coin_a, body.coin_b,
        min_trades=body.min_trades,
        min_win_rate=body.min_win_rate,
    )
    data = summarize(result)
    data["saved"] = saved.model_dump() if saved else None
    return data


@router.post("/all")
async def optimize_all(runtime: Runtime = Depends(get_runtime)):
    return await runtime.bot.optimize_all()


@router.get("/params")
def list_params(runtime: Runtime = Depends(get_runtime)):
    now = runtime.bot.clock()
    return [
        {**p.model_dump(), "valid": p.is_valid(now)}
        for p in runtime.repository.list_optimized_params()
    ]


@router.delete("/params/{pair_id}", status_code=204)
def delete_params(pair_id: str, runtime: Runtime = Depends(get_runtime)):
    if not runtime.repository.delete_optimized_params(pair_id.lower()):
        raise HTTPException(status_code=404, detail="No optimized params for this pair")
