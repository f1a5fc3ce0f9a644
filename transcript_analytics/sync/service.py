"""Synchronization between the server backend and the local client copy"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from transcript_analytics.data.base import DataService
from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.data.validators import validate_record_fields
from transcript_analytics.sync.consistency import (
    ConsistencyCheckResult,
    DataConsistencyService,
    RepairResult,
)
from transcript_analytics.sync.store import LocalRecordStore
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.errors import SyncInProgressError
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

SYNC_DIRECTIONS = ('pull', 'push', 'bidirectional')
CONFLICT_STRATEGIES = ('server', 'client', 'merge')
CONFLICT_FIELDS = ('transcript_count', 'notes')


@dataclass
class ConflictRecord:
    client_name: str
    month: str
    field: str
    server_value: Any
    client_value: Any
    resolution: str
    resolved_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class SyncResult:
    success: bool = False
    processed: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    conflicts: List[ConflictRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    synced_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'processed': self.processed,
            'added': self.added,
            'updated': self.updated,
            'skipped': self.skipped,
            'conflicts': [c.to_dict() for c in self.conflicts],
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'synced_at': self.synced_at.isoformat(),
        }


def merge_values(field_name: str, server_value: Any, client_value: Any) -> Any:
    """Field-specific merge: max count, joined notes, otherwise the client value"""
    if field_name == 'transcript_count':
        return max(server_value, client_value)
    if field_name == 'notes':
        if server_value and client_value:
            return f"{server_value} | {client_value}"
        return server_value or client_value
    return client_value


def _record_errors(record: TranscriptRecord) -> List[str]:
    return [
        e['message']
        for e in validate_record_fields(record.client_name, record.month, record.transcript_count, record.notes)
    ]


class SyncService:
    """
    Move records between the server backend and the local client copy

    Directions:
    - pull: server records overwrite the local copy
    - push: local records are upserted on the server
    - bidirectional: union of both sides with per-field conflict resolution
    """

    def __init__(
        self,
        data_service: DataService,
        store: Optional[LocalRecordStore] = None,
        config: Optional[ConfigLoader] = None
    ):
        """
        Initialize sync service

        Args:
            data_service: Server backend
            store: Local client copy (built from sync.snapshot_path when omitted)
            config: Configuration loader
        """
        self.config = config if config else ConfigLoader.from_dict({})
        self.data_service = data_service

        if store is None:
            snapshot = self.config.get('sync.snapshot_path')
            store = LocalRecordStore(
                snapshot_path=self.config.get_path('sync.snapshot_path') if snapshot else None
            )
        self.store = store

        self.consistency = DataConsistencyService(
            data_service, self.store,
            max_transcript_count=int(self.config.get('consistency.max_transcript_count', 10000))
        )
        self.default_direction = self.config.get('sync.default_direction', 'pull')
        self.default_resolution = self.config.get('sync.conflict_resolution', 'server')

        self._sync_lock = threading.Lock()
        self._in_progress = False
        self.last_sync_time: Optional[datetime] = None
        self._queue: deque = deque()

    # ------------------------------------------------------------------
    # Sync

    def background_sync(
        self,
        direction: Optional[str] = None,
        validate_data: bool = True,
        conflict_resolution: Optional[str] = None
    ) -> SyncResult:
        """
        Run one synchronization pass

        Args:
            direction: 'pull', 'push' or 'bidirectional'
            validate_data: Skip records failing field validation
            conflict_resolution: 'server', 'client' or 'merge'

        Returns:
            SyncResult; failures are reported in ``errors``

        Raises:
            SyncInProgressError: If another sync is running
            ValueError: If direction or conflict resolution is unknown
        """
        direction = direction or self.default_direction
        conflict_resolution = conflict_resolution or self.default_resolution

        if direction not in SYNC_DIRECTIONS:
            raise ValueError(f"Invalid sync direction '{direction}', must be one of: {', '.join(SYNC_DIRECTIONS)}")
        if conflict_resolution not in CONFLICT_STRATEGIES:
            raise ValueError(
                f"Invalid conflict resolution '{conflict_resolution}', "
                f"must be one of: {', '.join(CONFLICT_STRATEGIES)}"
            )

        with self._sync_lock:
            if self._in_progress:
                raise SyncInProgressError()
            self._in_progress = True

        started = datetime.now()
        try:
            result = self._perform_sync(direction, validate_data, conflict_resolution)
            self.last_sync_time = started
            return result
        finally:
            with self._sync_lock:
                self._in_progress = False
            self.process_queue()

    def _perform_sync(self, direction: str, validate_data: bool, resolution: str) -> SyncResult:
        result = SyncResult()
        logger.info(f"Starting {direction} sync with {self.data_service.source_type}")

        try:
            if not self.data_service.health_check():
                result.errors.append(f"Failed to connect to {self.data_service.source_type} data source")
                return result

            server = self.data_service.fetch_transcripts()
            result.processed = len(server)

            if direction == 'pull':
                self._pull(server, result, validate_data)
            elif direction == 'push':
                self._push(result, validate_data)
            else:
                self._bidirectional(server, result, resolution, validate_data)

            self.store.save()
        except Exception as e:
            logger.error(f"❌ Sync failed: {e}")
            result.errors.append(str(e))

        result.success = not result.errors
        logger.info(
            f"{'✅' if result.success else '❌'} Sync {direction}: "
            f"{result.added} added, {result.updated} updated, {result.skipped} skipped, "
            f"{len(result.conflicts)} conflicts"
        )
        return result

    def _pull(self, server: List[TranscriptRecord], result: SyncResult, validate_data: bool):
        for record in server:
            if validate_data:
                errors = _record_errors(record)
                if errors:
                    result.warnings.append(f"Validation failed for record {record.id}: {', '.join(errors)}")
                    result.skipped += 1
                    continue

            if self.store.upsert(record):
                result.added += 1
            else:
                result.updated += 1

    def _push(self, result: SyncResult, validate_data: bool):
        existing = {r.key for r in self.data_service.fetch_transcripts()}

        for record in self.store.all():
            if validate_data:
                errors = _record_errors(record)
                if errors:
                    result.warnings.append(
                        f"Validation failed for record {record.client_name} {record.month}: {', '.join(errors)}"
                    )
                    result.skipped += 1
                    continue

            try:
                self.data_service.add_transcript(record)
            except Exception as e:
                result.errors.append(f"Failed to sync record {record.client_name} {record.month}: {e}")
                result.skipped += 1
                continue

            if record.key in existing:
                result.updated += 1
            else:
                result.added += 1

    def _bidirectional(self, server: List[TranscriptRecord], result: SyncResult,
                       resolution: str, validate_data: bool):
        server_map = {r.key: r for r in server}
        local_map = {r.key: r for r in self.store.all()}

        for key in sorted(set(server_map) | set(local_map)):
            server_record = server_map.get(key)
            local_record = local_map.get(key)

            try:
                if server_record and local_record:
                    conflicts = self._resolve_conflicts(server_record, local_record, resolution)
                    if not conflicts:
                        continue
                    resolved = {c.field: c.resolved_value for c in conflicts}
                    self.data_service.update_transcript(key[0], key[1], **resolved)
                    for name, value in resolved.items():
                        setattr(server_record, name, value)
                    server_record.updated_at = datetime.now()
                    self.store.upsert(server_record)
                    result.conflicts.extend(conflicts)
                    result.updated += 1

                elif server_record:
                    if validate_data and _record_errors(server_record):
                        result.skipped += 1
                        continue
                    self.store.upsert(server_record)
                    result.added += 1

                else:
                    if validate_data and _record_errors(local_record):
                        result.skipped += 1
                        continue
                    stored = self.data_service.add_transcript(local_record)
                    self.store.upsert(stored)
                    result.added += 1

            except Exception as e:
                result.errors.append(f"Failed to sync record {key[0]} {key[1]}: {e}")
                result.skipped += 1

    @staticmethod
    def _resolve_conflicts(server_record: TranscriptRecord, local_record: TranscriptRecord,
                           resolution: str) -> List[ConflictRecord]:
        conflicts = []
        for name in CONFLICT_FIELDS:
            server_value = getattr(server_record, name)
            client_value = getattr(local_record, name)
            if server_value == client_value:
                continue

            if resolution == 'server':
                resolved = server_value
            elif resolution == 'client':
                resolved = client_value
            else:
                resolved = merge_values(name, server_value, client_value)

            conflicts.append(ConflictRecord(
                client_name=server_record.client_name,
                month=server_record.month,
                field=name,
                server_value=server_value,
                client_value=client_value,
                resolution=resolution,
                resolved_value=resolved,
            ))
        return conflicts

    # ------------------------------------------------------------------
    # Queue

    def queue_sync(self, operation: Callable[[], Any]) -> int:
        """
        Queue an operation and drain the queue unless a sync is running

        Returns:
            Number of operations executed now
        """
        self._queue.append(operation)
        return self.process_queue()

    def process_queue(self) -> int:
        """Run queued operations one at a time; failures are logged and skipped"""
        executed = 0
        while self._queue and not self._in_progress:
            operation = self._queue.popleft()
            try:
                operation()
            except Exception as e:
                logger.error(f"Queued sync operation failed: {e}")
            executed += 1
        return executed

    # ------------------------------------------------------------------
    # Consistency

    def validate_data_consistency(self) -> ConsistencyCheckResult:
        return self.consistency.perform_consistency_check()

    def repair_data_inconsistencies(self, report: ConsistencyCheckResult) -> RepairResult:
        return self.consistency.repair_consistency_issues(report.issues, strategy='auto')

    def get_sync_status(self) -> Dict[str, Any]:
        return {
            'in_progress': self._in_progress,
            'last_sync_time': self.last_sync_time.isoformat() if self.last_sync_time else None,
            'queue_length': len(self._queue),
            'local_records': len(self.store),
        }
