"""Per-record triangulation, batch processing and the service that owns them."""

from .models import (
    AddressRecord,
    ResolutionResult,
    ResolutionMethod,
    Sentinel,
    BatchResult,
    BatchSummary,
    BatchOutcome,
)
from .orchestrator import AddressResolver
from .batch import BatchProcessor
from .state import BatchStateStore, DuckDBBatchStateStore, InMemoryBatchStateStore, SavedBatch
from .service import PostalService

__all__ = [
    'AddressRecord',
    'ResolutionResult',
    'ResolutionMethod',
    'Sentinel',
    'BatchResult',
    'BatchSummary',
    'BatchOutcome',
    'AddressResolver',
    'BatchProcessor',
    'BatchStateStore',
    'DuckDBBatchStateStore',
    'InMemoryBatchStateStore',
    'SavedBatch',
    'PostalService',
]
