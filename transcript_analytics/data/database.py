"""Relational backend storing transcripts in SQLite"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from transcript_analytics.data.base import DataService
from transcript_analytics.data.models import Client, TranscriptRecord, normalize_month
from transcript_analytics.utils.errors import DataSourceError, RecordNotFoundError
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


# Ordered schema migrations: (version, description, sql)
MIGRATIONS = [
    (1, "initial schema", """
CREATE TABLE IF NOT EXISTS clients (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT UNIQUE NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transcripts (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id        INTEGER NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    month            TEXT NOT NULL,
    transcript_count INTEGER NOT NULL DEFAULT 0 CHECK (transcript_count >= 0),
    notes            TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    created_by       TEXT,
    UNIQUE (client_id, month)
);

CREATE INDEX IF NOT EXISTS idx_transcripts_client_id ON transcripts(client_id);
CREATE INDEX IF NOT EXISTS idx_transcripts_month ON transcripts(month);
"""),
    (2, "predictions table", """
CREATE TABLE IF NOT EXISTS predictions (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id         INTEGER NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
    predicted_month   TEXT NOT NULL,
    predicted_count   INTEGER NOT NULL,
    confidence_lower  INTEGER NOT NULL,
    confidence_upper  INTEGER NOT NULL,
    model_type        TEXT NOT NULL DEFAULT 'neural',
    accuracy          REAL,
    created_at        TEXT NOT NULL,
    UNIQUE (client_id, predicted_month, model_type)
);

CREATE INDEX IF NOT EXISTS idx_predictions_client_id ON predictions(client_id);
"""),
]


def _statements(sql: str) -> List[str]:
    return [s.strip() for s in sql.split(';') if s.strip()]


class DatabaseDataService(DataService):
    """
    Transcript storage in a SQLite database

    Months are stored as ``YYYY-MM-01`` date text and exposed as ``YYYY-MM``.
    Every write runs inside a transaction that rolls back on error.
    """

    source_type = 'database'

    def __init__(self, path: str, timeout: float = 10.0):
        """
        Initialize database backend and apply pending migrations

        Args:
            path: SQLite database file
            timeout: Lock wait timeout in seconds
        """
        self.path = Path(path)
        self.timeout = timeout
        self._lock = threading.RLock()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.run_migrations()

    @contextmanager
    def connection(self):
        """Serialized connection with foreign keys on; commits or rolls back"""
        with self._lock:
            conn = sqlite3.connect(str(self.path), timeout=self.timeout)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def run_migrations(self) -> List[int]:
        """
        Apply migrations that have not been recorded yet

        Returns:
            Versions applied in this call
        """
        applied = []
        try:
            with self.connection() as conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS migrations ("
                    " version INTEGER PRIMARY KEY,"
                    " description TEXT NOT NULL,"
                    " executed_at TEXT NOT NULL)"
                )
                done = {row['version'] for row in conn.execute("SELECT version FROM migrations")}
                conn.commit()

                for version, description, sql in MIGRATIONS:
                    if version in done:
                        continue
                    # Statements and the migrations row commit together
                    conn.execute("BEGIN")
                    try:
                        for statement in _statements(sql):
                            conn.execute(statement)
                        conn.execute(
                            "INSERT INTO migrations (version, description, executed_at) VALUES (?, ?, ?)",
                            (version, description, datetime.now().isoformat()),
                        )
                        conn.execute("COMMIT")
                    except sqlite3.Error:
                        conn.execute("ROLLBACK")
                        raise
                    applied.append(version)
                    logger.info(f"✓ Applied migration {version}: {description}")
        except sqlite3.Error as e:
            raise DataSourceError("Failed to run database migrations", e)

        return applied

    # ------------------------------------------------------------------
    # helpers

    def _client_id(self, conn, client_name: str) -> Optional[int]:
        row = conn.execute("SELECT id FROM clients WHERE name = ?", (client_name,)).fetchone()
        return row['id'] if row else None

    def _ensure_client(self, conn, client_name: str) -> int:
        now = datetime.now().isoformat()
        conn.execute(
            "INSERT INTO clients (name, created_at, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(name) DO NOTHING",
            (client_name, now, now),
        )
        return self._client_id(conn, client_name)

    def _select_records(self, where: str = "", params=()) -> List[TranscriptRecord]:
        sql = (
            "SELECT t.id, c.name AS client_name, t.month, t.transcript_count, t.notes,"
            " t.created_at, t.updated_at, t.created_by"
            " FROM transcripts t JOIN clients c ON t.client_id = c.id"
            f" {where} ORDER BY c.name, t.month"
        )
        try:
            with self.connection() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DataSourceError("Failed to fetch transcripts from database", e)
        return [_row_to_record(row) for row in rows]

    # ------------------------------------------------------------------
    # DataService

    def fetch_transcripts(self) -> List[TranscriptRecord]:
        return self._select_records()

    def get_transcripts_by_client(self, client_name: str) -> List[TranscriptRecord]:
        return self._select_records("WHERE c.name = ?", (client_name,))

    def get_clients(self) -> List[Client]:
        try:
            with self.connection() as conn:
                rows = conn.execute(
                    "SELECT id, name, created_at, updated_at FROM clients ORDER BY name"
                ).fetchall()
        except sqlite3.Error as e:
            raise DataSourceError("Failed to fetch clients from database", e)

        return [
            Client(
                id=str(row['id']),
                name=row['name'],
                created_at=datetime.fromisoformat(row['created_at']),
                updated_at=datetime.fromisoformat(row['updated_at']),
            )
            for row in rows
        ]

    def add_transcript(self, record: TranscriptRecord) -> TranscriptRecord:
        month = normalize_month(record.month)
        now = datetime.now().isoformat()
        try:
            with self.connection() as conn:
                client_id = self._ensure_client(conn, record.client_name)
                conn.execute(
                    "INSERT INTO transcripts"
                    " (client_id, month, transcript_count, notes, created_at, updated_at, created_by)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?)"
                    " ON CONFLICT(client_id, month) DO UPDATE SET"
                    " transcript_count = excluded.transcript_count,"
                    " notes = excluded.notes,"
                    " updated_at = excluded.updated_at",
                    (client_id, f"{month}-01", int(record.transcript_count),
                     record.notes, now, now, record.created_by),
                )
        except sqlite3.IntegrityError as e:
            raise DataSourceError(f"Failed to save transcript for {record.client_name} {month}", e)
        except sqlite3.Error as e:
            raise DataSourceError("Failed to add transcript", e)

        stored = self._select_records("WHERE c.name = ? AND t.month = ?",
                                      (record.client_name, f"{month}-01"))
        logger.debug(f"Upserted {record.client_name} {month} -> {record.transcript_count}")
        return stored[0]

    def update_transcript(self, client_name: str, month: str, **fields) -> None:
        updates = self._clean_update_fields(fields)
        month = normalize_month(month)

        try:
            with self.connection() as conn:
                client_id = self._client_id(conn, client_name)
                if client_id is None:
                    raise RecordNotFoundError(f"Client '{client_name}' not found")

                exists = conn.execute(
                    "SELECT 1 FROM transcripts WHERE client_id = ? AND month = ?",
                    (client_id, f"{month}-01"),
                ).fetchone()
                if not exists:
                    raise RecordNotFoundError(f"Record not found for {client_name} {month}")
                if not updates:
                    return

                assignments = ", ".join(f"{name} = ?" for name in updates)
                params = list(updates.values()) + [datetime.now().isoformat(), client_id, f"{month}-01"]
                conn.execute(
                    f"UPDATE transcripts SET {assignments}, updated_at = ?"
                    " WHERE client_id = ? AND month = ?",
                    params,
                )
        except sqlite3.Error as e:
            raise DataSourceError("Failed to update transcript", e)

    def delete_transcript(self, client_name: str, month: str) -> None:
        month = normalize_month(month)
        try:
            with self.connection() as conn:
                client_id = self._client_id(conn, client_name)
                if client_id is None:
                    raise RecordNotFoundError(f"Client '{client_name}' not found")

                cursor = conn.execute(
                    "DELETE FROM transcripts WHERE client_id = ? AND month = ?",
                    (client_id, f"{month}-01"),
                )
                if cursor.rowcount == 0:
                    raise RecordNotFoundError(f"Record not found for {client_name} {month}")
        except sqlite3.Error as e:
            raise DataSourceError("Failed to delete transcript", e)

        logger.info(f"Deleted {client_name} {month} from database")

    def delete_record(self, record_id: str) -> None:
        try:
            with self.connection() as conn:
                cursor = conn.execute("DELETE FROM transcripts WHERE id = ?", (int(record_id),))
                if cursor.rowcount == 0:
                    raise RecordNotFoundError(f"Record {record_id} not found")
        except ValueError:
            raise RecordNotFoundError(f"Invalid database record id '{record_id}'")
        except sqlite3.Error as e:
            raise DataSourceError("Failed to delete record", e)

    def batch_import(self, records) -> int:
        """Upsert all records in a single transaction"""
        now = datetime.now().isoformat()
        count = 0
        try:
            with self.connection() as conn:
                for record in records:
                    client_id = self._ensure_client(conn, record.client_name)
                    conn.execute(
                        "INSERT INTO transcripts"
                        " (client_id, month, transcript_count, notes, created_at, updated_at, created_by)"
                        " VALUES (?, ?, ?, ?, ?, ?, ?)"
                        " ON CONFLICT(client_id, month) DO UPDATE SET"
                        " transcript_count = excluded.transcript_count,"
                        " notes = excluded.notes,"
                        " updated_at = excluded.updated_at",
                        (client_id, f"{normalize_month(record.month)}-01",
                         int(record.transcript_count), record.notes, now, now, record.created_by),
                    )
                    count += 1
        except sqlite3.Error as e:
            raise DataSourceError("Batch import failed, no records were written", e)

        logger.info(f"✅ Imported {count} records into database")
        return count

    def save_predictions(self, client_name: str, model_type: str,
                         predictions: List[Dict[str, Any]],
                         accuracy: Optional[float] = None) -> int:
        now = datetime.now().isoformat()
        try:
            with self.connection() as conn:
                client_id = self._ensure_client(conn, client_name)
                for p in predictions:
                    conn.execute(
                        "INSERT INTO predictions"
                        " (client_id, predicted_month, predicted_count, confidence_lower,"
                        "  confidence_upper, model_type, accuracy, created_at)"
                        " VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
                        " ON CONFLICT(client_id, predicted_month, model_type) DO UPDATE SET"
                        " predicted_count = excluded.predicted_count,"
                        " confidence_lower = excluded.confidence_lower,"
                        " confidence_upper = excluded.confidence_upper,"
                        " accuracy = excluded.accuracy,"
                        " created_at = excluded.created_at",
                        (client_id, f"{normalize_month(p['date'])}-01", int(p['predicted_count']),
                         int(p['lower']), int(p['upper']), model_type, accuracy, now),
                    )
        except sqlite3.Error as e:
            raise DataSourceError("Failed to save predictions", e)

        return len(predictions)

    def get_predictions(self, client_name: Optional[str] = None,
                        model_type: Optional[str] = None) -> List[Dict[str, Any]]:
        clauses, params = [], []
        if client_name:
            clauses.append("c.name = ?")
            params.append(client_name)
        if model_type:
            clauses.append("p.model_type = ?")
            params.append(model_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        try:
            with self.connection() as conn:
                rows = conn.execute(
                    "SELECT c.name AS client_name, p.predicted_month, p.predicted_count,"
                    " p.confidence_lower, p.confidence_upper, p.model_type, p.accuracy"
                    " FROM predictions p JOIN clients c ON p.client_id = c.id"
                    f" {where} ORDER BY c.name, p.predicted_month",
                    params,
                ).fetchall()
        except sqlite3.Error as e:
            raise DataSourceError("Failed to fetch predictions", e)

        return [
            {
                'client_name': row['client_name'],
                'month': row['predicted_month'][:7],
                'predicted_count': row['predicted_count'],
                'lower': row['confidence_lower'],
                'upper': row['confidence_upper'],
                'model_type': row['model_type'],
                'accuracy': row['accuracy'],
            }
            for row in rows
        ]

    def health_check(self) -> bool:
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


def _row_to_record(row: sqlite3.Row) -> TranscriptRecord:
    return TranscriptRecord(
        id=str(row['id']),
        client_name=row['client_name'],
        month=row['month'][:7],
        transcript_count=int(row['transcript_count']),
        notes=row['notes'],
        created_at=datetime.fromisoformat(row['created_at']),
        updated_at=datetime.fromisoformat(row['updated_at']),
        created_by=row['created_by'],
    )
