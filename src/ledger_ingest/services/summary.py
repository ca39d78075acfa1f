"""Import summary shared by the invoice and statement import services."""

from dataclasses import dataclass, field
from typing import Optional

from ledger_ingest.state_store import BatchStatus


@dataclass
class ImportSummary:
    """Outcome of an import run.

    Only the first ``max_reported_errors`` messages are kept; error_count
    tracks the real total.
    """

    saved: int = 0
    duplicates: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    error_count: int = 0
    max_reported_errors: int = 20
    batch_id: Optional[int] = None

    def add_error(self, message: str) -> None:
        self.error_count += 1
        if len(self.errors) < self.max_reported_errors:
            self.errors.append(message)

    @property
    def status(self) -> BatchStatus:
        """Failed only when errors occurred and nothing was saved."""
        if self.error_count > 0 and self.saved == 0:
            return BatchStatus.FAILED
        return BatchStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "saved": self.saved,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "errors": self.errors,
            "error_count": self.error_count,
        }
