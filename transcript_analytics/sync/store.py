"""Local client copy of transcript records"""

import json
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


class LocalRecordStore:
    """
    In-memory client copy keyed by (client_name, month)

    Optionally snapshotted to a JSON file so the copy survives restarts.
    """

    def __init__(self, records: Iterable[TranscriptRecord] = (), snapshot_path: Optional[str] = None):
        """
        Initialize store

        Args:
            records: Initial records
            snapshot_path: JSON file to load from (if present) and save to
        """
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._records: Dict[Tuple[str, str], TranscriptRecord] = {}
        self._lock = threading.RLock()

        if self.snapshot_path and self.snapshot_path.exists():
            self.load()
        for record in records:
            self.upsert(record)

    def all(self) -> List[TranscriptRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.key)

    def get(self, client_name: str, month: str) -> Optional[TranscriptRecord]:
        return self._records.get((client_name, month))

    def find_by_id(self, record_id: str) -> Optional[TranscriptRecord]:
        with self._lock:
            for record in self._records.values():
                if record.id == record_id:
                    return record
        return None

    def upsert(self, record: TranscriptRecord) -> bool:
        """
        Store a copy of the record

        Returns:
            True when the key was new, False when it replaced a record
        """
        with self._lock:
            is_new = record.key not in self._records
            self._records[record.key] = TranscriptRecord(**record.__dict__)
            return is_new

    def update_by_id(self, record_id: str, **fields) -> bool:
        """Set fields on the record with ``record_id``, re-keying if needed"""
        with self._lock:
            record = self.find_by_id(record_id)
            if record is None:
                return False
            del self._records[record.key]
            for name, value in fields.items():
                setattr(record, name, value)
            self._records[record.key] = record
            return True

    def adopt_ids(self, records: Iterable[TranscriptRecord]) -> int:
        """Copy ids from ``records`` onto stored records with the same key; returns ids changed"""
        changed = 0
        with self._lock:
            for record in records:
                local = self._records.get(record.key)
                if local is not None and local.id != record.id:
                    local.id = record.id
                    changed += 1
        return changed

    def remove(self, client_name: str, month: str) -> bool:
        with self._lock:
            return self._records.pop((client_name, month), None) is not None

    def replace_all(self, records: Iterable[TranscriptRecord]):
        with self._lock:
            self._records.clear()
            for record in records:
                self.upsert(record)

    def clear(self):
        with self._lock:
            self._records.clear()

    def save(self, path: Optional[str] = None) -> Optional[Path]:
        """
        Write the snapshot as JSON

        Args:
            path: Target file (defaults to snapshot_path)

        Returns:
            Path written, or None when no path is configured
        """
        target = Path(path) if path else self.snapshot_path
        if target is None:
            return None

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as f:
            json.dump([r.to_dict() for r in self.all()], f, indent=2, default=str)

        logger.debug(f"Saved {len(self)} local records to {target}")
        return target

    def load(self, path: Optional[str] = None) -> int:
        """Replace the contents with a JSON snapshot; returns records loaded"""
        source = Path(path) if path else self.snapshot_path
        with open(source, 'r', encoding='utf-8') as f:
            rows = json.load(f)

        records = []
        for row in rows:
            row.pop('year', None)
            records.append(TranscriptRecord.from_dict(row))
        self.replace_all(records)

        logger.debug(f"Loaded {len(records)} local records from {source}")
        return len(records)

    def __len__(self) -> int:
        return len(self._records)
