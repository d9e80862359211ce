"""Provenance trail assembly."""

from .assembler import assemble_batch_provenance, assemble_harvest_provenance
from .timeline import TimelineEntry, get_processing_timeline

__all__ = [
    "TimelineEntry",
    "assemble_batch_provenance",
    "assemble_harvest_provenance",
    "get_processing_timeline",
]
