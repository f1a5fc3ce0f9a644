"""Domain records shared by every data backend"""

import re
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd


MONTH_PATTERN = re.compile(r'^\d{4}-\d{2}$')

RECORD_COLUMNS = [
    'id', 'client_name', 'month', 'date', 'year',
    'transcript_count', 'notes', 'created_at', 'updated_at',
]


def is_valid_month(value: Any) -> bool:
    """True when ``value`` is a ``YYYY-MM`` string with a real month"""
    if not isinstance(value, str) or not MONTH_PATTERN.match(value):
        return False
    return 1 <= int(value[5:7]) <= 12


def normalize_month(value: Any) -> str:
    """
    Coerce a month-like value to ``YYYY-MM``

    Accepts ``YYYY-MM`` and ``YYYY-MM-DD`` strings, dates, datetimes and
    pandas timestamps.

    Raises:
        ValueError: If the value cannot be interpreted as a month
    """
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return f"{value.year:04d}-{value.month:02d}"

    text = str(value).strip()
    if is_valid_month(text):
        return text
    if len(text) >= 10 and is_valid_month(text[:7]) and text[7] == '-':
        return text[:7]

    raise ValueError(f"Invalid month '{value}', expected YYYY-MM")


def month_to_date(month: str) -> date:
    """First day of a ``YYYY-MM`` month"""
    return date(int(month[:4]), int(month[5:7]), 1)


@dataclass
class TranscriptRecord:
    """
    Monthly transcript count for one client

    Records are identified logically by ``(client_name, month)``; ``id`` is
    whatever identity the backend uses for the physical row.
    """

    client_name: str
    month: str
    transcript_count: int
    id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    created_by: Optional[str] = None

    @property
    def key(self):
        return (self.client_name, self.month)

    @property
    def year(self) -> Optional[int]:
        """Year of ``month``; the current year while month is blank, None when malformed"""
        if is_valid_month(self.month):
            return int(self.month[:4])
        if not self.month:
            return datetime.now().year
        return None

    @property
    def date(self) -> Optional[date]:
        if is_valid_month(self.month):
            return month_to_date(self.month)
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['year'] = self.year
        data['created_at'] = self.created_at.isoformat() if isinstance(self.created_at, datetime) else self.created_at
        data['updated_at'] = self.updated_at.isoformat() if isinstance(self.updated_at, datetime) else self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TranscriptRecord':
        """Build a record from a plain dict (timestamps may be ISO strings)"""
        now = datetime.now()
        return cls(
            id=data.get('id'),
            client_name=data.get('client_name', ''),
            month=data.get('month', ''),
            transcript_count=data.get('transcript_count', 0),
            notes=data.get('notes'),
            created_at=_parse_timestamp(data.get('created_at'), now),
            updated_at=_parse_timestamp(data.get('updated_at'), now),
            created_by=data.get('created_by'),
        )


@dataclass
class Client:
    name: str
    id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }


def _parse_timestamp(value: Any, default: datetime) -> Any:
    if value is None or value == '':
        return default
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        # Leave unparseable values in place so consistency rules can flag them
        return value


def records_to_dataframe(records: Iterable[TranscriptRecord]) -> pd.DataFrame:
    """
    Convert records into a DataFrame sorted by client and date

    Args:
        records: Transcript records

    Returns:
        DataFrame with RECORD_COLUMNS (``date`` as datetime64)
    """
    rows = [
        {
            'id': r.id,
            'client_name': r.client_name,
            'month': r.month,
            'date': pd.Timestamp(r.date) if r.date else pd.NaT,
            'year': r.year,
            'transcript_count': r.transcript_count,
            'notes': r.notes,
            'created_at': r.created_at,
            'updated_at': r.updated_at,
        }
        for r in records
    ]

    if not rows:
        df = pd.DataFrame(columns=RECORD_COLUMNS)
        df['date'] = pd.to_datetime(df['date'])
        return df

    df = pd.DataFrame(rows, columns=RECORD_COLUMNS)
    return df.sort_values(['client_name', 'date']).reset_index(drop=True)


def dataframe_to_records(df: pd.DataFrame) -> List[TranscriptRecord]:
    """Inverse of records_to_dataframe for frames with client/month/count columns"""
    records = []
    for row in df.to_dict('records'):
        month = row.get('month')
        if not month and row.get('date') is not None:
            month = normalize_month(row['date'])
        notes = row.get('notes')
        records.append(TranscriptRecord(
            id=row.get('id'),
            client_name=str(row['client_name']),
            month=month,
            transcript_count=int(row['transcript_count']),
            notes=None if pd.isna(notes) else notes,
        ))
    return records
