"""Abstract data service shared by the workbook and database backends"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from transcript_analytics.data.models import (
    Client,
    TranscriptRecord,
    records_to_dataframe,
)
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

UPDATABLE_FIELDS = ('transcript_count', 'notes')


class DataService(ABC):
    """
    Abstract base class for transcript storage backends

    All backends must implement:
    - fetch_transcripts(): Read every record
    - add_transcript(): Upsert by (client_name, month)
    - update_transcript(): Partial update of count/notes
    - delete_transcript(): Remove one (client_name, month) record
    - delete_record(): Remove one physical row by id
    - save_predictions() / get_predictions(): Persist forecasts
    - health_check(): Report availability without raising
    """

    source_type: str = 'abstract'

    @abstractmethod
    def fetch_transcripts(self) -> List[TranscriptRecord]:
        pass

    @abstractmethod
    def add_transcript(self, record: TranscriptRecord) -> TranscriptRecord:
        """
        Insert a record, or overwrite the existing one for the same
        (client_name, month)

        Args:
            record: Record to store

        Returns:
            The stored record with its backend id
        """
        pass

    @abstractmethod
    def update_transcript(self, client_name: str, month: str, **fields) -> None:
        """
        Update count and/or notes of an existing record

        Args:
            client_name: Client name
            month: Month in YYYY-MM format
            **fields: transcript_count and/or notes

        Raises:
            RecordNotFoundError: If the client or record does not exist
        """
        pass

    @abstractmethod
    def delete_transcript(self, client_name: str, month: str) -> None:
        pass

    @abstractmethod
    def delete_record(self, record_id: str) -> None:
        pass

    @abstractmethod
    def save_predictions(self, client_name: str, model_type: str,
                         predictions: List[Dict[str, Any]],
                         accuracy: Optional[float] = None) -> int:
        pass

    @abstractmethod
    def get_predictions(self, client_name: Optional[str] = None,
                        model_type: Optional[str] = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def health_check(self) -> bool:
        pass

    def get_transcripts_by_client(self, client_name: str) -> List[TranscriptRecord]:
        return [r for r in self.fetch_transcripts() if r.client_name == client_name]

    def get_clients(self) -> List[Client]:
        """Distinct clients derived from the stored records, sorted by name"""
        names = sorted({r.client_name for r in self.fetch_transcripts() if r.client_name})
        return [Client(id=str(i + 1), name=name) for i, name in enumerate(names)]

    def batch_import(self, records: Iterable[TranscriptRecord]) -> int:
        """
        Upsert many records

        Args:
            records: Records to write

        Returns:
            Number of records written
        """
        count = 0
        for record in records:
            self.add_transcript(record)
            count += 1
        logger.info(f"✅ Imported {count} records into {self.source_type}")
        return count

    def sync(self) -> List[TranscriptRecord]:
        """Refresh hook; backends without a remote copy simply re-read"""
        return self.fetch_transcripts()

    def to_dataframe(self) -> pd.DataFrame:
        return records_to_dataframe(self.fetch_transcripts())

    def _clean_update_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS and v is not None}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(source_type='{self.source_type}')"
