"""Client/server synchronization and consistency checks"""

from .store import LocalRecordStore
from .consistency import (
    ConsistencyCheckResult,
    ConsistencyIssue,
    DataConsistencyService,
    RepairResult,
    ValidationRule,
)
from .service import SyncResult, SyncService

__all__ = [
    'LocalRecordStore',
    'ConsistencyCheckResult',
    'ConsistencyIssue',
    'DataConsistencyService',
    'RepairResult',
    'ValidationRule',
    'SyncResult',
    'SyncService',
]
