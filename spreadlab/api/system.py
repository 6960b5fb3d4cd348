"""System API: health check, scheduler status, worker heartbeat."""

from fastapi import APIRouter, Depends

from spreadlab.api.deps import get_runtime, require_token
from spreadlab.wiring import Runtime

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler", dependencies=[Depends(require_token)])
def scheduler_status(runtime: Runtime = Depends(get_runtime)):
    """Current scheduler state with job details."""
    return runtime.worker.get_status()


@router.get("/worker", dependencies=[Depends(require_token)])
def worker_status(runtime: Runtime = Depends(get_runtime)):
    """Advisory heartbeat; `alive` is false once the heartbeat is two minutes old."""
    return runtime.repository.get_worker_status(runtime.bot.clock())
