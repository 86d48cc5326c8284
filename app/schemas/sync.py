"""Schemas for manual sync triggers and scheduler status."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.core.errors import ErrorCode
from app.models.account import Platform
from app.models.message import SyncResult


class SyncResultResponse(BaseModel):
    account_id: str
    platform: Platform
    success: bool
    new_messages: int = 0
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultResponse":
        return cls(
            account_id=result.account_id,
            platform=result.platform,
            success=result.success,
            new_messages=result.new_messages,
            error=result.error,
            error_code=result.error_code,
        )


class SyncRunResponse(BaseModel):
    total: int
    succeeded: int
    new_messages: int
    results: List[SyncResultResponse] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[SyncResult]) -> "SyncRunResponse":
        return cls(
            total=len(results),
            succeeded=sum(1 for result in results if result.success),
            new_messages=sum(result.new_messages for result in results),
            results=[SyncResultResponse.from_result(result) for result in results],
        )


class SyncStatusResponse(BaseModel):
    is_running: bool
    interval_minutes: Optional[float] = None
    last_run_at: Optional[datetime] = None
    total_accounts: int
    connected_accounts: int
    total_messages: int
    platform_breakdown: Dict[str, int] = Field(default_factory=dict)
    last_sync_times: Dict[str, Optional[datetime]] = Field(default_factory=dict)


__all__ = ["SyncResultResponse", "SyncRunResponse", "SyncStatusResponse"]
