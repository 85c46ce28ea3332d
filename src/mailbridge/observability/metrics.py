"""Prometheus metrics for mailbridge.

Provides:
- ``BATCH_ITEMS``: Counter of batch items processed, labelled by outcome.
- ``AUTH_TRANSITIONS``: Counter of auth state machine transitions.

Counters are updated where the events happen (batch engine, auth state
machine); exposing them is left to the embedding process.
"""

from __future__ import annotations

from prometheus_client import Counter

BATCH_ITEMS: Counter = Counter(
    "mailbridge_batch_items_total",
    "Batch items processed by the batch engine",
    ["outcome"],
)

AUTH_TRANSITIONS: Counter = Counter(
    "mailbridge_auth_transitions_total",
    "Auth state machine transitions",
    ["from_state", "to_state"],
)
