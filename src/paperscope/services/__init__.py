"""Service layer: model calls and backend persistence."""

from paperscope.services.analysis_service import AnalysisClient
from paperscope.services.persistence_service import (
    PersistenceBridge,
    file_reference,
    record_from_wire,
    record_to_wire,
)

__all__ = [
    "AnalysisClient",
    "PersistenceBridge",
    "file_reference",
    "record_from_wire",
    "record_to_wire",
]
