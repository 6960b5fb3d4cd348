"""Persistent store for the bot: config, stats, spreads, history, logs, params.

Every public method runs in its own session. Composite state transitions
(open, close, PnL refresh) commit in a single transaction so a failure
leaves no partial state behind. SQLAlchemy errors surface as
PersistenceError after rollback.
"""

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

from pydantic import ValidationError
from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from spreadlab.errors import ConfigValidationError, PersistenceError
from spreadlab.models.bot_config import BotConfigRecord
from spreadlab.models.bot_log import BotLog
from spreadlab.models.bot_stats import BotStats
from spreadlab.models.credential import Credential
from spreadlab.models.optimized_params import OptimizedParams
from spreadlab.models.spread import OpenSpread, TradeRecord
from spreadlab.models.worker_status import WorkerStatus
from spreadlab.schemas.bot_config import BotConfig
from spreadlab.utils.constants import HEARTBEAT_STALE_MS, LOG_RETENTION_MS
from spreadlab.utils.timeutils import now_ms

logger = logging.getLogger(__name__)


class BotRepository:
    def __init__(self, engine: Engine, initial_balance: float = 1000.0):
        self.engine = engine
        self.initial_balance = initial_balance

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Store transaction failed: {e}")
            raise PersistenceError(str(e)) from e
        finally:
            session.close()

    def _config_row(self, session: Session) -> BotConfigRecord:
        row = session.get(BotConfigRecord, 1)
        if row is None:
            row = BotConfigRecord(id=1)
            session.add(row)
        return row

    def _stats_row(self, session: Session) -> BotStats:
        row = session.get(BotStats, 1)
        if row is None:
            row = BotStats(
                id=1,
                paper_balance=self.initial_balance,
                peak_equity=self.initial_balance,
            )
            session.add(row)
        return row

    def ensure_defaults(self):
        """Create the singleton config and stats rows if missing."""
        with self._session() as session:
            self._config_row(session)
            self._stats_row(session)
            session.commit()

    # -----------------------------------------------------------------------
    # Config
    # -----------------------------------------------------------------------

    def get_config(self) -> BotConfig:
        with self._session() as session:
            row = self._config_row(session)
            session.commit()
            return BotConfig.model_validate(row.model_dump(exclude={"id", "updated_at"}))

    def update_config(self, update_data: dict[str, Any], now: int | None = None) -> BotConfig:
        """Merge `update_data` onto the stored config and save it.

        The merged config is validated as a whole; on failure nothing is
        written and ConfigValidationError is raised.
        """
        with self._session() as session:
            row = self._config_row(session)
            merged = {**row.model_dump(exclude={"id", "updated_at"}), **update_data}
            try:
                config = BotConfig.model_validate(merged)
            except ValidationError as e:
                session.rollback()
                raise ConfigValidationError(
                    e.errors(include_url=False, include_context=False, include_input=False)
                ) from e

            for key, value in config.model_dump().items():
                setattr(row, key, value)
            row.updated_at = now or now_ms()
            session.add(row)
            session.commit()
            return config

    def set_enabled(self, enabled: bool, now: int | None = None) -> BotConfig:
        return self.update_config({"enabled": enabled}, now=now)

    # -----------------------------------------------------------------------
    # Stats
    # -----------------------------------------------------------------------

    def get_stats(self) -> BotStats:
        with self._session() as session:
            stats = self._stats_row(session)
            session.commit()
            return stats

    def reset(self, initial_balance: float, now: int | None = None) -> BotStats:
        """Drop open spreads and restart stats from `initial_balance`. History is kept."""
        with self._session() as session:
            session.execute(delete(OpenSpread))
            stats = self._stats_row(session)
            stats.paper_balance = initial_balance
            stats.total_trades = 0
            stats.winning_trades = 0
            stats.total_pnl = 0.0
            stats.peak_equity = initial_balance
            stats.updated_at = now or now_ms()
            session.add(stats)
            session.commit()
            return stats

    # -----------------------------------------------------------------------
    # Spreads
    # -----------------------------------------------------------------------

    def get_open_spreads(self) -> list[OpenSpread]:
        with self._session() as session:
            return list(session.exec(
                select(OpenSpread).order_by(OpenSpread.entry_time)
            ).all())

    def get_open_spread(self, spread_id: str) -> OpenSpread | None:
        with self._session() as session:
            return session.get(OpenSpread, spread_id)

    def count_open_spreads(self) -> int:
        with self._session() as session:
            return session.exec(select(func.count()).select_from(OpenSpread)).one()

    def record_open(self, spread: OpenSpread, fee: float) -> OpenSpread | None:
        """Insert `spread` and deduct the opening fee in one transaction.

        Returns None without changes when the pair already has an open spread.
        """
        with self._session() as session:
            existing = session.exec(
                select(OpenSpread).where(OpenSpread.pair_id == spread.pair_id)
            ).first()
            if existing:
                logger.warning(f"[{spread.pair_id}] Spread already open, not recording")
                return None

            stats = self._stats_row(session)
            stats.paper_balance -= fee
            stats.updated_at = spread.entry_time
            session.add(spread)
            session.add(stats)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.warning(f"[{spread.pair_id}] Spread inserted concurrently, not recording")
                return None
            return spread

    def record_close(
        self,
        spread_id: str,
        exit_price_a: float,
        exit_price_b: float,
        exit_reason: str,
        final_pnl: float,
        exit_time: int,
    ) -> TradeRecord | None:
        """Archive, delete and settle a spread in one transaction.

        Returns None when the spread does not exist (already closed).
        """
        with self._session() as session:
            spread = session.get(OpenSpread, spread_id)
            if spread is None:
                return None

            trade = TradeRecord.from_spread(
                spread,
                exit_price_a=exit_price_a,
                exit_price_b=exit_price_b,
                exit_time=exit_time,
                exit_reason=exit_reason,
                final_pnl=final_pnl,
            )
            stats = self._stats_row(session)
            stats.paper_balance += spread.size_usd + final_pnl
            stats.total_trades += 1
            if final_pnl > 0:
                stats.winning_trades += 1
            stats.total_pnl += final_pnl
            stats.updated_at = exit_time

            session.add(trade)
            session.delete(spread)
            session.add(stats)
            session.commit()
            return trade

    def apply_refresh(
        self,
        updates: list[tuple[str, float, float]],
        now: int,
    ) -> tuple[BotStats, float]:
        """Write (spread_id, pnl, ratio) updates and raise the equity peak.

        Returns the stats row and the resulting equity.
        """
        with self._session() as session:
            for spread_id, pnl, ratio in updates:
                spread = session.get(OpenSpread, spread_id)
                if spread is None:
                    continue
                spread.current_pnl = pnl
                spread.current_ratio = ratio
                spread.last_update = now
                session.add(spread)
            session.flush()

            stats = self._stats_row(session)
            open_pnl = session.exec(
                select(func.coalesce(func.sum(OpenSpread.current_pnl), 0.0))
            ).one()
            equity = stats.paper_balance + float(open_pnl)
            if equity > stats.peak_equity:
                stats.peak_equity = equity
                stats.updated_at = now
                session.add(stats)
            session.commit()
            return stats, equity

    def get_trades(self, limit: int = 50, offset: int = 0) -> list[TradeRecord]:
        with self._session() as session:
            return list(session.exec(
                select(TradeRecord)
                .order_by(TradeRecord.exit_time.desc(), TradeRecord.id.desc())
                .offset(offset)
                .limit(limit)
            ).all())

    # -----------------------------------------------------------------------
    # Logs
    # -----------------------------------------------------------------------

    def log(self, level: str, message: str, data: dict | None = None, now: int | None = None):
        with self._session() as session:
            session.add(BotLog(timestamp=now or now_ms(), level=level, message=message, data=data))
            session.commit()

    def get_logs(self, limit: int = 100, level: str | None = None) -> list[BotLog]:
        with self._session() as session:
            stmt = select(BotLog).order_by(BotLog.timestamp.desc(), BotLog.id.desc())
            if level is not None:
                stmt = stmt.where(BotLog.level == level)
            return list(session.exec(stmt.limit(limit)).all())

    def clean_old_logs(self, now: int, retention_ms: int = LOG_RETENTION_MS) -> int:
        with self._session() as session:
            result = session.execute(delete(BotLog).where(BotLog.timestamp < now - retention_ms))
            session.commit()
            return result.rowcount or 0

    # -----------------------------------------------------------------------
    # Optimized params
    # -----------------------------------------------------------------------

    def get_optimized_params(self, pair_id: str, now: int) -> OptimizedParams | None:
        """Unexpired params for a pair, or None."""
        with self._session() as session:
            row = session.get(OptimizedParams, pair_id)
            if row is None or not row.is_valid(now):
                return None
            return row

    def get_optimized_params_map(self, now: int) -> dict[str, OptimizedParams]:
        with self._session() as session:
            rows = session.exec(
                select(OptimizedParams).where(OptimizedParams.expires_at > now)
            ).all()
            return {row.pair_id: row for row in rows}

    def list_optimized_params(self) -> list[OptimizedParams]:
        with self._session() as session:
            return list(session.exec(
                select(OptimizedParams).order_by(OptimizedParams.score.desc())
            ).all())

    def save_optimized_params(self, params: OptimizedParams) -> OptimizedParams:
        """Insert or overwrite the params row for the pair."""
        with self._session() as session:
            merged = session.merge(params)
            session.commit()
            return merged

    def delete_optimized_params(self, pair_id: str) -> bool:
        with self._session() as session:
            row = session.get(OptimizedParams, pair_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def clean_expired_params(self, now: int) -> int:
        with self._session() as session:
            result = session.execute(
                delete(OptimizedParams).where(OptimizedParams.expires_at <= now)
            )
            session.commit()
            return result.rowcount or 0

    # -----------------------------------------------------------------------
    # Worker heartbeat
    # -----------------------------------------------------------------------

    def _worker_row(self, session: Session) -> WorkerStatus:
        row = session.get(WorkerStatus, 1)
        if row is None:
            row = WorkerStatus(id=1)
            session.add(row)
        return row

    def set_worker_started(self, now: int, pid: int | None = None):
        with self._session() as session:
            row = self._worker_row(session)
            row.pid = pid if pid is not None else os.getpid()
            row.started_at = now
            row.last_heartbeat = now
            row.cycles_count = 0
            row.status = "running"
            session.add(row)
            session.commit()

    def update_heartbeat(self, now: int, cycled: bool = False):
        with self._session() as session:
            row = self._worker_row(session)
            row.last_heartbeat = now
            if cycled:
                row.last_cycle = now
                row.cycles_count += 1
            session.add(row)
            session.commit()

    def set_worker_stopped(self, now: int):
        with self._session() as session:
            row = self._worker_row(session)
            row.status = "stopped"
            row.last_heartbeat = now
            session.add(row)
            session.commit()

    def get_worker_status(self, now: int) -> dict:
        """Heartbeat row plus an advisory `alive` flag (fresh within two minutes)."""
        with self._session() as session:
            row = session.get(WorkerStatus, 1)
            if row is None:
                return {"alive": False, "status": "never_started"}
            data = row.model_dump(exclude={"id"})
            data["alive"] = (
                row.status == "running"
                and row.last_heartbeat is not None
                and now - row.last_heartbeat < HEARTBEAT_STALE_MS
            )
            return data

    # -----------------------------------------------------------------------
    # Credentials
    # -----------------------------------------------------------------------

    def get_active_credential(self) -> Credential | None:
        with self._session() as session:
            return session.exec(
                select(Credential).where(Credential.is_active == True)  # noqa: E712
            ).first()
