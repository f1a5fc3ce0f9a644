"""Spreadsheet backend storing transcripts in an Excel workbook"""

import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import Workbook, load_workbook

from transcript_analytics.data.base import DataService
from transcript_analytics.data.models import TranscriptRecord, normalize_month
from transcript_analytics.utils.errors import DataSourceError, RecordNotFoundError
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

HEADER = ['Client Name', 'Month', 'Transcript Count', 'Created At', 'Updated At', 'Notes']
PREDICTION_HEADER = [
    'Client Name', 'Predicted Month', 'Predicted Count',
    'Confidence Lower', 'Confidence Upper', 'Model Type', 'Accuracy', 'Created At',
]
HEADER_MARKERS = ('client name', 'client', 'name')


def is_header_row(row: Tuple[Any, ...]) -> bool:
    """A row is a header when its first cell reads like a client column title"""
    if not row or row[0] is None:
        return False
    return str(row[0]).strip().lower() in HEADER_MARKERS


class WorkbookDataService(DataService):
    """
    Transcript storage in a local ``.xlsx`` workbook

    Sheet layout (one row per record):
        Client Name | Month | Transcript Count | Created At | Updated At | Notes

    Record ids are ``row_<n>`` with ``n`` the 0-based position among data
    rows, so ids shift when rows are deleted.
    """

    source_type = 'workbook'

    def __init__(
        self,
        path: str,
        sheet_name: str = 'Transcripts',
        predictions_sheet: str = 'Predictions'
    ):
        """
        Initialize workbook backend

        Args:
            path: Path to the .xlsx file (created on first use)
            sheet_name: Sheet holding transcript rows
            predictions_sheet: Sheet holding persisted predictions
        """
        self.path = Path(path)
        self.sheet_name = sheet_name
        self.predictions_sheet = predictions_sheet
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Workbook access

    def _load(self):
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            wb = Workbook()
            ws = wb.active
            ws.title = self.sheet_name
            ws.append(HEADER)
            wb.save(self.path)
            logger.info(f"Created workbook: {self.path}")

        try:
            wb = load_workbook(self.path)
        except Exception as e:
            raise DataSourceError(f"Failed to open workbook {self.path}", e)

        if self.sheet_name not in wb.sheetnames:
            ws = wb.create_sheet(self.sheet_name)
            ws.append(HEADER)
        return wb

    def _save(self, wb):
        try:
            wb.save(self.path)
        except Exception as e:
            raise DataSourceError(f"Failed to save workbook {self.path}", e)

    def _data_rows(self, ws) -> List[Tuple[int, Tuple[Any, ...]]]:
        """Return (sheet row number, values) for every non-header, non-empty row"""
        rows = []
        for row_number, values in enumerate(ws.iter_rows(values_only=True), start=1):
            if row_number == 1 and is_header_row(values):
                continue
            if all(v is None or v == '' for v in values):
                continue
            rows.append((row_number, values))
        return rows

    def _find_row(self, ws, client_name: str, month: str) -> Optional[int]:
        for row_number, values in self._data_rows(ws):
            if _cell_str(values, 0) == client_name and _cell_month(values, 1) == month:
                return row_number
        return None

    # ------------------------------------------------------------------
    # DataService

    def fetch_transcripts(self) -> List[TranscriptRecord]:
        with self._lock:
            wb = self._load()
            ws = wb[self.sheet_name]
            records = [
                _row_to_record(values, index)
                for index, (_, values) in enumerate(self._data_rows(ws))
            ]

        logger.debug(f"Fetched {len(records)} records from workbook")
        return records

    def add_transcript(self, record: TranscriptRecord) -> TranscriptRecord:
        month = normalize_month(record.month)
        now = datetime.now()

        with self._lock:
            wb = self._load()
            ws = wb[self.sheet_name]
            existing = self._find_row(ws, record.client_name, month)

            if existing is not None:
                ws.cell(row=existing, column=3, value=int(record.transcript_count))
                ws.cell(row=existing, column=5, value=now.isoformat())
                ws.cell(row=existing, column=6, value=record.notes or '')
            else:
                ws.append([
                    record.client_name,
                    month,
                    int(record.transcript_count),
                    now.isoformat(),
                    now.isoformat(),
                    record.notes or '',
                ])
            self._save(wb)

            rows = self._data_rows(ws)
            target = existing if existing is not None else ws.max_row
            index = next(i for i, (n, _) in enumerate(rows) if n == target)

        logger.debug(f"Upserted {record.client_name} {month} -> {record.transcript_count}")
        return _row_to_record(rows[index][1], index)

    def update_transcript(self, client_name: str, month: str, **fields) -> None:
        updates = self._clean_update_fields(fields)
        month = normalize_month(month)

        with self._lock:
            wb = self._load()
            ws = wb[self.sheet_name]
            row_number = self._find_row(ws, client_name, month)
            if row_number is None:
                raise RecordNotFoundError(f"Record not found for {client_name} {month}")
            if not updates:
                return

            if 'transcript_count' in updates:
                ws.cell(row=row_number, column=3, value=int(updates['transcript_count']))
            if 'notes' in updates:
                ws.cell(row=row_number, column=6, value=updates['notes'])
            ws.cell(row=row_number, column=5, value=datetime.now().isoformat())
            self._save(wb)

    def delete_transcript(self, client_name: str, month: str) -> None:
        month = normalize_month(month)
        with self._lock:
            wb = self._load()
            ws = wb[self.sheet_name]
            row_number = self._find_row(ws, client_name, month)
            if row_number is None:
                raise RecordNotFoundError(f"Record not found for {client_name} {month}")
            ws.delete_rows(row_number)
            self._save(wb)

        logger.info(f"Deleted {client_name} {month} from workbook")

    def delete_record(self, record_id: str) -> None:
        try:
            index = int(str(record_id).replace('row_', ''))
        except ValueError:
            raise RecordNotFoundError(f"Invalid workbook record id '{record_id}'")

        with self._lock:
            wb = self._load()
            ws = wb[self.sheet_name]
            rows = self._data_rows(ws)
            if index < 0 or index >= len(rows):
                raise RecordNotFoundError(f"Record {record_id} not found")
            ws.delete_rows(rows[index][0])
            self._save(wb)

    def batch_import(self, records) -> int:
        """Append all records in one workbook write (no upsert, like a sheet append)"""
        now = datetime.now().isoformat()
        count = 0
        with self._lock:
            wb = self._load()
            ws = wb[self.sheet_name]
            for record in records:
                ws.append([
                    record.client_name,
                    normalize_month(record.month),
                    int(record.transcript_count),
                    now,
                    now,
                    record.notes or '',
                ])
                count += 1
            self._save(wb)

        logger.info(f"✅ Appended {count} records to workbook")
        return count

    def save_predictions(self, client_name: str, model_type: str,
                         predictions: List[Dict[str, Any]],
                         accuracy: Optional[float] = None) -> int:
        now = datetime.now().isoformat()
        with self._lock:
            wb = self._load()
            if self.predictions_sheet not in wb.sheetnames:
                wb.create_sheet(self.predictions_sheet).append(PREDICTION_HEADER)
            ws = wb[self.predictions_sheet]

            # Keep one row per (client, month, model)
            index = {}
            for row_number, values in enumerate(ws.iter_rows(values_only=True), start=1):
                if row_number == 1:
                    continue
                index[(_cell_str(values, 0), _cell_str(values, 1), _cell_str(values, 5))] = row_number

            for p in predictions:
                month = normalize_month(p['date'])
                values = [
                    client_name, month, int(p['predicted_count']),
                    int(p['lower']), int(p['upper']), model_type, accuracy, now,
                ]
                row_number = index.get((client_name, month, model_type))
                if row_number is None:
                    ws.append(values)
                else:
                    for col, value in enumerate(values, start=1):
                        ws.cell(row=row_number, column=col, value=value)
            self._save(wb)

        return len(predictions)

    def get_predictions(self, client_name: Optional[str] = None,
                        model_type: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            wb = self._load()
            if self.predictions_sheet not in wb.sheetnames:
                return []
            ws = wb[self.predictions_sheet]
            rows = list(ws.iter_rows(min_row=2, values_only=True))

        results = []
        for values in rows:
            if values[0] is None:
                continue
            if client_name and values[0] != client_name:
                continue
            if model_type and values[5] != model_type:
                continue
            results.append({
                'client_name': values[0],
                'month': values[1],
                'predicted_count': int(values[2] or 0),
                'lower': int(values[3] or 0),
                'upper': int(values[4] or 0),
                'model_type': values[5],
                'accuracy': values[6],
            })
        return sorted(results, key=lambda r: (r['client_name'], r['month']))

    def health_check(self) -> bool:
        try:
            with self._lock:
                self._load()
            return True
        except Exception as e:
            logger.error(f"Workbook health check failed: {e}")
            return False


def _cell_str(values: Tuple[Any, ...], i: int) -> str:
    if i >= len(values) or values[i] is None:
        return ''
    return str(values[i]).strip()


def _cell_month(values: Tuple[Any, ...], i: int) -> str:
    if i >= len(values) or values[i] is None:
        return ''
    value = values[i]
    if isinstance(value, datetime):
        return f"{value.year:04d}-{value.month:02d}"
    return str(value).strip()


def _parse_cell_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value))
        except ValueError:
            pass
    return datetime.now()


def _row_to_record(values: Tuple[Any, ...], index: int) -> TranscriptRecord:
    try:
        count = int(float(values[2])) if len(values) > 2 and values[2] not in (None, '') else 0
    except (TypeError, ValueError):
        count = 0

    notes = _cell_str(values, 5)
    return TranscriptRecord(
        id=f"row_{index}",
        client_name=_cell_str(values, 0),
        month=_cell_month(values, 1),
        transcript_count=count,
        created_at=_parse_cell_timestamp(values[3] if len(values) > 3 else None),
        updated_at=_parse_cell_timestamp(values[4] if len(values) > 4 else None),
        notes=notes or None,
    )
