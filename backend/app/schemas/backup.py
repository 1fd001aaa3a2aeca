from __future__ import annotations

import datetime as dt
import math
from typing import Any

from pydantic import Field, field_validator

from app.schemas.common import ApiModel, OkOut
from app.services.retention import DEFAULT_RATIO, PruneMode, clamp_ratio


class SnapshotOut(ApiModel):
    name: str
    size_bytes: int
    created_at: dt.datetime
    reason: str


class BackupListOut(ApiModel):
    backups: list[str]
    items: list[SnapshotOut]


class BackupNowOut(OkOut):
    file: str


class PruneRequest(ApiModel):
    """
    Lenient on purpose: unknown modes mean "latest", non-numeric ratios mean
    0.5 and keep_min is floored at 0, matching what the admin UI sends.
    """

    mode: PruneMode = PruneMode.OLDEST
    ratio: float = DEFAULT_RATIO
    keep_min: int = 1

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, v: Any) -> PruneMode:
        if v is None:
            return PruneMode.OLDEST
        return PruneMode.OLDEST if str(v).strip().lower() == "oldest" else PruneMode.LATEST

    @field_validator("ratio", mode="before")
    @classmethod
    def _parse_ratio(cls, v: Any) -> float:
        try:
            ratio = float(v)
        except (TypeError, ValueError):
            return DEFAULT_RATIO
        return clamp_ratio(ratio) if math.isfinite(ratio) else DEFAULT_RATIO

    @field_validator("keep_min", mode="before")
    @classmethod
    def _parse_keep_min(cls, v: Any) -> int:
        try:
            keep_min = float(v)
        except (TypeError, ValueError):
            return 1
        if not math.isfinite(keep_min):
            return 1
        return max(0, math.floor(keep_min))


class PruneFailureOut(ApiModel):
    file: str
    reason: str


class PruneOut(OkOut):
    mode: PruneMode
    ratio: float
    total: int
    deleted_count: int = 0
    failed_count: int = 0
    deleted: list[str] = Field(default_factory=list)
    failed: list[PruneFailureOut] = Field(default_factory=list)


class DeleteOut(OkOut):
    deleted: str


class ImportTableOut(ApiModel):
    name: str
    rows: int


class ImportOut(OkOut):
    tables: list[ImportTableOut]
    rows_total: int
    skipped_tables: list[str]
    skipped_columns: dict[str, list[str]]
