"""
Guardrails around a sync.

``check_record_count`` is a hard gate applied before the catalog is touched.
``assess_change_rate`` runs after reconciliation and only flags the job.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import STAGE_VALIDATE, SyncError


class RecordCountError(SyncError):
    """Raised when a parse yields fewer records than the source minimum."""

    stage = STAGE_VALIDATE

    def __init__(self, record_count: int, minimum: int):
        super().__init__(
            f"Parsed {record_count} records, below the minimum of {minimum}; catalog left unchanged.",
            details={"record_count": record_count, "min_expected_records": minimum},
        )
        self.record_count = record_count
        self.minimum = minimum


@dataclass(frozen=True)
class ChangeRateAssessment:
    changed: int
    existing: int
    rate: float
    threshold: float

    @property
    def exceeded(self) -> bool:
        return self.rate > self.threshold

    def as_flag(self) -> dict:
        return {
            "change_rate_exceeded": {
                "rate": round(self.rate, 4),
                "threshold": self.threshold,
                "changed": self.changed,
                "existing": self.existing,
            }
        }


def check_record_count(record_count: int, minimum: int) -> None:
    if record_count < (minimum or 0):
        raise RecordCountError(record_count, minimum)


def assess_change_rate(*, changed: int, existing: int, threshold: float) -> ChangeRateAssessment:
    """Fraction of the pre-sync catalog touched by this sync."""
    rate = changed / max(existing, 1)
    return ChangeRateAssessment(changed=changed, existing=existing, rate=rate, threshold=float(threshold))
