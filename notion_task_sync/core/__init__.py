"""同步核心模块"""

from .sync_service import SyncService
from .sync_worker import SyncWorker
from .field_mapper import FieldMapper
from .conflict_detector import ConflictDetector
from .conflict_resolver import ConflictResolver
from .resolution_applier import ResolutionApplier

__all__ = [
    "SyncService", "SyncWorker", "FieldMapper",
    "ConflictDetector", "ConflictResolver", "ResolutionApplier"
]
