"""SQLModel ORM tables for usage accounting."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


class UsageEventRecord(SQLModel, table=True):
    __tablename__ = "usage_events"  # type: ignore[bad-override]

    event_id: int | None = Field(default=None, primary_key=True)
    request_id: str = Field(index=True)
    user_id: str | None = Field(default=None, index=True)
    user_email: str | None = None
    report_type: str = Field(index=True)
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float | None = None
    processing_time_ms: int = 0
    success: bool = Field(index=True)
    degraded: bool = False
    error_code: str | None = None
    error_message: str | None = None
    data_completeness: int = 0
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
