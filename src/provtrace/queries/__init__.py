"""Read-only listings and statistics over stored records."""

from .listing import list_batches, list_harvests, list_lab_tests, pending_lab_tests
from .stats import batch_stats, harvest_stats, lab_stats

__all__ = [
    "batch_stats",
    "harvest_stats",
    "lab_stats",
    "list_batches",
    "list_harvests",
    "list_lab_tests",
    "pending_lab_tests",
]
