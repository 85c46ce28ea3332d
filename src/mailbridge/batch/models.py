"""Pydantic v2 models for batch operation results."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, model_validator


class ItemOutcome(BaseModel):
    """The result of running a batch operation on one item id."""

    model_config = ConfigDict(frozen=True)

    id: str
    success: bool
    reason: str | None = None  # populated only on failure


class BatchReport(BaseModel):
    """Per-item outcomes of a batch run, in the order the ids were given."""

    model_config = ConfigDict(frozen=True)

    total: int
    per_item: tuple[ItemOutcome, ...] = ()

    @model_validator(mode="after")
    def _total_matches_items(self) -> BatchReport:
        if self.total != len(self.per_item):
            raise ValueError(
                f"total ({self.total}) does not match item count ({len(self.per_item)})"
            )
        return self

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.per_item if item.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def failures(self) -> list[ItemOutcome]:
        """Failed outcomes in input order, e.g. for a caller-side retry."""
        return [item for item in self.per_item if not item.success]

    def summary(self, action: str, verb: str) -> str:
        """Describe the run, e.g. ``summary("modify", "modified")``.

        Failed ids are listed with their reasons after the counts.
        """
        lines = [
            f"Batch {action} completed. "
            f"Successfully {verb}: {self.succeeded}, Failed: {self.failed}"
        ]
        if self.failures:
            lines.append("")
            lines.append("Failures:")
            lines.extend(f"- {item.id}: {item.reason}" for item in self.failures)
        return "\n".join(lines)
