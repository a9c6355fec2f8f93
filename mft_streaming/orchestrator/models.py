"""Orchestrator data models."""
from dataclasses import dataclass
from typing import List, Sequence

from ..models import TransferOutcome


@dataclass
class BatchSummary:
    """Totals for a finished batch."""
    total: int
    uploaded: int
    failed: int
    outcomes: List[TransferOutcome]

    @property
    def all_success(self) -> bool:
        return self.failed == 0

    @property
    def uploaded_bytes(self) -> int:
        return sum(o.result.size for o in self.outcomes if o.ok)

    @classmethod
    def from_outcomes(cls, outcomes: Sequence[TransferOutcome]) -> "BatchSummary":
        uploaded = sum(1 for o in outcomes if o.ok)
        return cls(
            total=len(outcomes),
            uploaded=uploaded,
            failed=len(outcomes) - uploaded,
            outcomes=list(outcomes),
        )
