"""Write-time maintenance of denormalized aggregates (avg rating, review count, like count)."""

from clubstats.aggregates.service import (
    AggregateSnapshot,
    ChildMutation,
    MutationKind,
    apply_child_mutation,
    recompute_like_count,
)

__all__ = [
    "AggregateSnapshot",
    "ChildMutation",
    "MutationKind",
    "apply_child_mutation",
    "recompute_like_count",
]
