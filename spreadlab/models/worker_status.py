"""WorkerStatus model: advisory heartbeat of the background worker."""

from sqlmodel import SQLModel, Field


class WorkerStatus(SQLModel, table=True):
    __tablename__ = "worker_status"

    id: int = Field(default=1, primary_key=True)
    pid: int | None = None
    started_at: int | None = None
    last_heartbeat: int | None = None
    last_cycle: int | None = None
    cycles_count: int = 0
    status: str = "stopped"  # "running", "stopped"
