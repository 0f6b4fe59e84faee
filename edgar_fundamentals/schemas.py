"""
Pydantic models for control-plane snapshots and the per-issuer snapshot file.
"""

import enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime


class JobStatus(str, enum.Enum):
    """Lifecycle of an on-demand refresh job."""
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    BUSY = "busy"


class JobSnapshot(BaseModel):
    """Point-in-time copy of a refresh job, safe to hand to callers."""
    ticker: str = Field(..., description="Upper-cased ticker")
    status: JobStatus = Field(..., description="Current job state")
    enqueued_at: Optional[datetime] = Field(None, description="When the job was accepted (UTC)")
    started_at: Optional[datetime] = Field(None, description="When a worker picked it up (UTC)")
    finished_at: Optional[datetime] = Field(None, description="When it reached a terminal state (UTC)")
    error: Optional[str] = Field(None, description="Failure message for failed / not_found jobs")
    message: Optional[str] = Field(None, description="Human-readable status detail")
    last_count: Optional[int] = Field(None, description="Periods written by the last successful run")
    retry_after: Optional[datetime] = Field(None, description="not_found cooldown end (UTC)")

    @property
    def pending(self) -> bool:
        return self.status in (JobStatus.QUEUED, JobStatus.RUNNING)


class RegistryEntry(BaseModel):
    """Scheduling state for one ticker."""
    model_config = ConfigDict(from_attributes=True)

    ticker: str
    cik: Optional[str] = None
    company_name: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    last_filing_date: Optional[date] = None
    last_filing_type: Optional[str] = None
    priority: int = 0
    refresh_interval_days: Optional[int] = None
    next_check_at: Optional[datetime] = None
    is_active: bool = True


class FilingEventOut(BaseModel):
    """A filing newer than the registry's last known filing."""
    model_config = ConfigDict(from_attributes=True)

    ticker: str
    filing_type: str
    filing_date: date
    accession: Optional[str] = None
    headline: Optional[str] = None
    created_at: Optional[datetime] = None


class FundamentalsSnapshotFile(BaseModel):
    """
    Per-issuer snapshot file ({TICKER}-fundamentals.json).

    Unknown keys written by other tools are carried through rewrites.
    """
    model_config = ConfigDict(extra="allow")

    ticker: str
    cik: Optional[str] = None
    company_name: Optional[str] = None
    sector: Optional[str] = None
    sic: Optional[int] = None
    sic_description: Optional[str] = None
    currency: Optional[str] = None
    updated_at: datetime
    periods: List[Dict[str, Any]] = Field(default_factory=list)

    filing_signals: Optional[List[Any]] = Field(None, description="Cached risk annotations from the text scanner")
    filing_signals_meta: Optional[Dict[str, Any]] = None
    filing_signals_cached_at: Optional[datetime] = None
    issuer_type: Optional[str] = Field(None, description="domestic | foreign")
    filing_profile: Optional[Dict[str, Any]] = None
    data_basis: Optional[str] = None


class SweepSummary(BaseModel):
    """Outcome of one scheduler pass."""
    mode: str = Field(..., description="incremental | bootstrap")
    due: int = 0
    processed: int = 0
    checked: int = 0
    failed: int = 0
    skipped: int = 0
    paused: bool = False
    backoff_until: Optional[datetime] = None
    errors: Dict[str, str] = Field(default_factory=dict)


class CoreFinancialSnapshot(BaseModel):
    """Cached fundamentals summary for one ticker plus the refresh job it triggered."""
    ticker: str
    source: str = Field(..., description="cache:fresh | cache:stale | none")
    updated_at: Optional[datetime] = None
    snapshot: Optional[Dict[str, Any]] = Field(None, description="TTM, ratios, coverage and notes")
    pending: bool = False
    inactive: bool = False
    job: Optional[JobSnapshot] = None
    periods: List[Dict[str, Any]] = Field(default_factory=list)
