"""Reconciliation job contract and run result."""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DIFFING = "diffing"
    REPAIRING = "repairing"


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation run."""

    job: str
    status: str = "ok"  # ok | error | skipped
    batches: int = 0
    scanned: int = 0
    repaired: int = 0
    start_cursor: int = 0
    end_cursor: int = 0
    duration_ms: float = 0.0
    failures: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class ReconciliationJob(ABC):
    """
    One summary projection to reconcile against its source table.

    The runner drives the keyset loop; a job only knows how to read one page
    after a cursor, work out which summary rows differ, and write those.
    All three steps run in the same per-batch transaction.
    """

    name: str = ""

    def __init__(self, batch_size: int = 1000):
        if batch_size < 1:
            raise ValueError(f"{self.name}: batch_size must be >= 1, got {batch_size}")
        self.batch_size = batch_size

    def row_id(self, row: Any) -> Optional[int]:
        """Primary key of a source row (the keyset cursor)."""
        return getattr(row, "id", None)

    @abstractmethod
    async def fetch_page(self, session: AsyncSession, cursor: int) -> Sequence[Any]:
        """Up to batch_size source rows with id > cursor, ordered by id ascending."""

    @abstractmethod
    async def diff(self, session: AsyncSession, rows: Sequence[Any]) -> list:
        """Repairs needed for this page. Empty when the summary already matches."""

    @abstractmethod
    async def repair(self, session: AsyncSession, repairs: list) -> int:
        """Apply repairs idempotently. Returns rows actually written."""
