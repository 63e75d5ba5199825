from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, field_validator

# Most recent per-record errors kept on the job; older entries are dropped first
ERROR_LOG_LIMIT = 50


class SyncStatus(str, Enum):
    idle = "idle"
    processing = "processing"
    completed = "completed"
    cancelled = "cancelled"


class SyncErrorEntry(BaseModel):
    record_id: int
    tenant: Optional[str] = None
    message: str
    timestamp: str


class SyncJob(BaseModel):
    status: SyncStatus = SyncStatus.idle
    total: int = 0
    processed: int = 0
    current: int = 0
    cursor: int = 0
    errors: List[SyncErrorEntry] = []
    start_time: float = 0

    @field_validator("errors")
    @classmethod
    def _cap_errors(cls, errors: List[SyncErrorEntry]) -> List[SyncErrorEntry]:
        return errors[-ERROR_LOG_LIMIT:]


class SyncReport(BaseModel):
    status: SyncStatus
    current: int
    total: int
    processed: int
    percentage: int
    errors: List[SyncErrorEntry]
    elapsed: int
    estimated: int


class ChunkResult(BaseModel):
    status: SyncStatus
    synced: int = 0
    remaining: Optional[int] = None
    total_processed: Optional[int] = None
    message: str


class StartSyncResponse(BaseModel):
    total: int
    message: str


class MessageResponse(BaseModel):
    message: str


class TargetTenantsBody(BaseModel):
    tenants: List[str]


class TargetTenantsResponse(BaseModel):
    master: str
    available: List[str]
    selected: List[str]
