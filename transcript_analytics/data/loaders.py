"""CSV / Excel import of transcript records"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from transcript_analytics.data.base import DataService
from transcript_analytics.data.models import TranscriptRecord, normalize_month
from transcript_analytics.data.validators import validate_record_fields
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

# Accepted header spellings (after lower-casing and collapsing separators)
COLUMN_ALIASES = {
    'client_name': ['client', 'client name', 'client_name', 'customer', 'name'],
    'month': ['month', 'date', 'period', 'year month', 'year_month'],
    'transcript_count': ['count', 'transcript count', 'transcript_count', 'transcripts', 'total'],
    'notes': ['notes', 'note', 'comment', 'comments'],
}

CONFLICT_STRATEGIES = ('replace', 'skip', 'merge')


@dataclass
class ImportResult:
    total_rows: int = 0
    success_count: int = 0
    error_count: int = 0
    duplicate_count: int = 0
    skipped_count: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    records: List[TranscriptRecord] = field(default_factory=list)
    # File row (1-based, header excluded) of each entry in records
    source_rows: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_rows': self.total_rows,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'duplicate_count': self.duplicate_count,
            'skipped_count': self.skipped_count,
            'errors': self.errors,
        }


class TranscriptFileLoader:
    """
    Load transcript records from CSV or Excel files

    Expected columns (header aliases accepted):
    - Client / Client Name
    - Month (YYYY-MM) or Date (any parseable date)
    - Count / Transcript Count
    - Notes (optional)
    """

    def __init__(self, column_mapping: Optional[Dict[str, str]] = None):
        """
        Initialize loader

        Args:
            column_mapping: Explicit {field: source column} mapping that
                overrides alias detection
        """
        self.column_mapping = column_mapping or {}

    def read_file(self, path: str) -> pd.DataFrame:
        """
        Read a CSV or Excel file into a DataFrame

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the extension is not supported
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Import file not found: {path}")

        suffix = path.suffix.lower()
        if suffix == '.csv':
            df = pd.read_csv(path, dtype=str, keep_default_na=False)
        elif suffix in ('.xlsx', '.xlsm'):
            df = pd.read_excel(path, dtype=str, engine='openpyxl').fillna('')
        else:
            raise ValueError(f"Unsupported file type '{suffix}', expected .csv or .xlsx")

        df.columns = [str(c).strip() for c in df.columns]
        logger.info(f"Read {len(df)} rows from {path.name}")
        return df

    def resolve_columns(self, df: pd.DataFrame) -> Dict[str, str]:
        """Map each field to a source column using the explicit mapping, then aliases"""
        normalized = {
            str(col).strip().lower().replace('-', ' ').replace('.', ''): col
            for col in df.columns
        }
        resolved = {}
        for field_name, aliases in COLUMN_ALIASES.items():
            if field_name in self.column_mapping:
                resolved[field_name] = self.column_mapping[field_name]
                continue
            for alias in aliases:
                if alias in normalized:
                    resolved[field_name] = normalized[alias]
                    break

        missing = [f for f in ('client_name', 'month', 'transcript_count') if f not in resolved]
        if missing:
            raise ValueError(f"Missing required columns: {', '.join(missing)}")
        return resolved

    def parse_dataframe(self, df: pd.DataFrame) -> ImportResult:
        """
        Convert rows into records, collecting per-row errors

        Rows repeating a (client, month) already seen in the file are
        counted as duplicates and dropped.

        Args:
            df: Raw DataFrame (string cells)

        Returns:
            ImportResult with parsed records
        """
        columns = self.resolve_columns(df)
        result = ImportResult(total_rows=len(df))
        seen = set()

        for position, row in enumerate(df.to_dict('records'), start=1):
            client = str(row.get(columns['client_name'], '')).strip()
            raw_month = row.get(columns['month'], '')
            raw_count = row.get(columns['transcript_count'], '')
            notes = str(row.get(columns['notes'], '')).strip() if 'notes' in columns else ''

            try:
                month = normalize_month(raw_month)
            except ValueError:
                try:
                    month = normalize_month(pd.to_datetime(raw_month))
                except (ValueError, TypeError):
                    month = str(raw_month)

            try:
                count = int(float(str(raw_count).replace(',', '').strip()))
            except ValueError:
                count = raw_count

            errors = validate_record_fields(client, month, count, notes or None)
            if errors:
                for e in errors:
                    result.errors.append({'row': position, **e})
                result.error_count += 1
                continue

            key = (client, month)
            if key in seen:
                result.duplicate_count += 1
                continue
            seen.add(key)

            result.records.append(TranscriptRecord(
                client_name=client,
                month=month,
                transcript_count=count,
                notes=notes or None,
            ))
            result.source_rows.append(position)

        logger.info(
            f"Parsed {len(result.records)} records "
            f"({result.error_count} errors, {result.duplicate_count} duplicates)"
        )
        return result

    def load_file(self, path: str) -> ImportResult:
        return self.parse_dataframe(self.read_file(path))


def import_records(
    service: DataService,
    result: ImportResult,
    conflict_resolution: str = 'replace',
    created_by: Optional[str] = None
) -> ImportResult:
    """
    Write parsed records to a data service

    Args:
        service: Target backend
        result: ImportResult from TranscriptFileLoader
        conflict_resolution: What to do when (client, month) already exists:
            'replace' overwrites, 'skip' leaves the stored record,
            'merge' keeps the higher count and joins notes with ' | '
        created_by: Author recorded on new rows

    Returns:
        The same ImportResult with success/duplicate/skip counts updated
    """
    if conflict_resolution not in CONFLICT_STRATEGIES:
        raise ValueError(
            f"Invalid conflict resolution '{conflict_resolution}', "
            f"must be one of: {', '.join(CONFLICT_STRATEGIES)}"
        )

    existing = {r.key: r for r in service.fetch_transcripts()}

    rows = result.source_rows
    if len(rows) != len(result.records):
        rows = range(1, len(result.records) + 1)

    for position, record in zip(rows, result.records):
        current = existing.get(record.key)
        if current is not None:
            result.duplicate_count += 1
            if conflict_resolution == 'skip':
                result.skipped_count += 1
                continue
            if conflict_resolution == 'merge':
                record.transcript_count = max(record.transcript_count, current.transcript_count)
                record.notes = ' | '.join(n for n in (current.notes, record.notes) if n) or None

        record.created_by = created_by
        try:
            service.add_transcript(record)
            result.success_count += 1
        except Exception as e:
            logger.error(f"Failed to import row {position}: {e}")
            result.errors.append({
                'row': position, 'field': 'general',
                'value': record.to_dict(), 'message': str(e),
            })
            result.error_count += 1

    logger.info(f"✅ Imported {result.success_count}/{result.total_rows} rows")
    return result
