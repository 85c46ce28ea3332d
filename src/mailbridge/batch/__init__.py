"""Batch engine: chunked concurrent execution with per-item outcomes."""

from mailbridge.batch.engine import DEFAULT_CHUNK_SIZE, run_batch
from mailbridge.batch.models import BatchReport, ItemOutcome

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "BatchReport",
    "ItemOutcome",
    "run_batch",
]
