"""SQLite-backed usage logger and aggregate queries."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import event, func
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import Session, SQLModel, col, create_engine, select

from portfolio_report.orchestrator.usage import UsageEvent
from portfolio_report.storage.sqlmodel_models import UsageEventRecord


@dataclass(slots=True)
class UsageSummary:
    requests: int = 0
    succeeded: int = 0
    degraded: int = 0
    failed: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float = 0.0


class SqliteUsageLogger:
    """Persists usage events to the `usage_events` table."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = _usage_engine(db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        SQLModel.metadata.create_all(self.engine, tables=[UsageEventRecord.__table__])

    def close(self) -> None:
        self.engine.dispose()

    def record(self, event: UsageEvent) -> None:
        with Session(self.engine) as session:
            session.add(
                UsageEventRecord(
                    request_id=event.request_id,
                    user_id=event.user_id,
                    user_email=event.user_email,
                    report_type=event.report_type,
                    model=event.model,
                    prompt_tokens=event.prompt_tokens,
                    completion_tokens=event.completion_tokens,
                    total_tokens=event.total_tokens,
                    estimated_cost_usd=event.estimated_cost_usd,
                    processing_time_ms=event.processing_time_ms,
                    success=event.success,
                    degraded=event.degraded,
                    error_code=event.error_code,
                    error_message=event.error_message,
                    data_completeness=event.data_completeness,
                    started_at=event.started_at,
                    finished_at=event.finished_at,
                ),
            )
            session.commit()

    def list_recent(self, *, limit: int = 20, user_id: str | None = None) -> list[UsageEventRecord]:
        with Session(self.engine) as session:
            statement = select(UsageEventRecord)
            if user_id is not None:
                statement = statement.where(UsageEventRecord.user_id == user_id)
            statement = statement.order_by(col(UsageEventRecord.event_id).desc()).limit(limit)
            return list(session.exec(statement).all())

    def summarize(self, *, user_id: str | None = None) -> UsageSummary:
        with Session(self.engine) as session:
            statement = select(
                UsageEventRecord.success,
                UsageEventRecord.degraded,
                func.count(),
                func.coalesce(func.sum(UsageEventRecord.total_tokens), 0),
                func.coalesce(func.sum(UsageEventRecord.estimated_cost_usd), 0.0),
            ).group_by(UsageEventRecord.success, UsageEventRecord.degraded)
            if user_id is not None:
                statement = statement.where(UsageEventRecord.user_id == user_id)
            rows = session.exec(statement).all()

        summary = UsageSummary()
        for success, degraded, count, tokens, cost in rows:
            summary.requests += int(count)
            summary.total_tokens += int(tokens)
            summary.estimated_cost_usd += float(cost)
            if not success:
                summary.failed += int(count)
            elif degraded:
                summary.degraded += int(count)
            else:
                summary.succeeded += int(count)
        return summary


def _usage_engine(db_path: Path, *, busy_timeout_ms: int) -> Engine:
    """Engine for the usage store; written from the dispatcher thread, read by the CLI."""

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": busy_timeout_ms / 1000.0},
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: sqlite3.Connection, _record: object) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
        cursor.close()

    return engine
