"""
Scheduler admin schemas.

``ExecutionSchema`` mirrors ``ExecutionRecord.to_dict()``; the remaining
models are request bodies and action acknowledgements.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ExecutionSchema(BaseModel):
    """One row of the execution ledger."""

    id: str
    execution_key: str
    user_id: str
    job_id: str
    job_name: str = ""
    scheduled_date: str
    trigger_source: str
    status: str
    failure_kind: str | None = None
    error: str | None = None
    topics: list[str] = Field(default_factory=list)
    created_at: str
    started_at: str | None = None
    finished_at: str | None = None
    duration_ms: int | None = None


class ReleaseLockBody(BaseModel):
    holder: str = Field(min_length=1, description="Instance id whose lease should be dropped")


class ActionResult(BaseModel):
    """Acknowledgement for a mutating admin operation."""

    action: str
    actor: str
    affected: int = 0
    detail: str = ""
