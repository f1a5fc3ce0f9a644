"""Recurring exports on a daily, weekly or monthly schedule"""

import calendar
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import yaml

from transcript_analytics.data.base import DataService
from transcript_analytics.export.service import ExportOptions, ExportService
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

FREQUENCIES = ('daily', 'weekly', 'monthly')


@dataclass
class ScheduleConfig:
    """
    When an export runs

    ``day_of_week`` counts from 0 = Sunday; ``day_of_month`` is clamped to
    the length of short months.
    """

    frequency: str = 'daily'
    time: str = '09:00'
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    timezone: str = 'UTC'

    def validate(self) -> List[str]:
        errors = []
        if self.frequency not in FREQUENCIES:
            errors.append(f"frequency must be one of: {', '.join(FREQUENCIES)}")
        try:
            hours, minutes = (int(part) for part in self.time.split(':'))
            if not (0 <= hours <= 23 and 0 <= minutes <= 59):
                raise ValueError(self.time)
        except ValueError:
            errors.append("time must be in HH:MM format")
        if self.day_of_week is not None and not 0 <= self.day_of_week <= 6:
            errors.append("day_of_week must be between 0 (Sunday) and 6")
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            errors.append("day_of_month must be between 1 and 31")
        try:
            ZoneInfo(self.timezone)
        except (KeyError, ValueError):
            errors.append(f"unknown timezone '{self.timezone}'")
        return errors

    @property
    def hour_minute(self):
        hours, minutes = self.time.split(':')
        return int(hours), int(minutes)


@dataclass
class ScheduledExport:
    id: str
    name: str
    schedule: ScheduleConfig
    export_options: ExportOptions
    description: Optional[str] = None
    recipients: List[str] = field(default_factory=list)
    is_active: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    created_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        options = self.export_options
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'schedule': dict(self.schedule.__dict__),
            'export_options': {
                'format': options.format,
                'start': options.start.isoformat() if options.start else None,
                'end': options.end.isoformat() if options.end else None,
                'clients': list(options.clients),
                'include_analytics': options.include_analytics,
                'include_predictions': options.include_predictions,
                'include_charts': options.include_charts,
            },
            'recipients': list(self.recipients),
            'is_active': self.is_active,
            'last_run': self.last_run.isoformat() if self.last_run else None,
            'next_run': self.next_run.isoformat() if self.next_run else None,
            'created_at': self.created_at.isoformat(),
            'created_by': self.created_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduledExport':
        options = dict(data.get('export_options') or {})
        for key in ('start', 'end'):
            if options.get(key):
                options[key] = date.fromisoformat(str(options[key]))
        return cls(
            id=data['id'],
            name=data['name'],
            description=data.get('description'),
            schedule=ScheduleConfig(**(data.get('schedule') or {})),
            export_options=ExportOptions(**options),
            recipients=list(data.get('recipients') or []),
            is_active=data.get('is_active', True),
            last_run=_parse_datetime(data.get('last_run')),
            next_run=_parse_datetime(data.get('next_run')),
            created_at=_parse_datetime(data.get('created_at')) or datetime.now(),
            created_by=data.get('created_by'),
        )


@dataclass
class ScheduledExportResult:
    export_id: str
    success: bool
    executed_at: datetime
    filename: Optional[str] = None
    path: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {**self.__dict__, 'executed_at': self.executed_at.isoformat()}


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _localize(now: Optional[datetime], tz: ZoneInfo) -> datetime:
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def _clamped(year: int, month: int, day: int) -> int:
    return min(day, calendar.monthrange(year, month)[1])


def calculate_next_run(schedule: ScheduleConfig, now: Optional[datetime] = None) -> datetime:
    """
    Next run strictly after ``now`` in the schedule's timezone

    Args:
        schedule: Schedule configuration
        now: Reference time (naive values are taken as schedule-local)

    Returns:
        Timezone-aware datetime
    """
    tz = ZoneInfo(schedule.timezone)
    now = _localize(now, tz)
    hours, minutes = schedule.hour_minute
    candidate = now.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    if schedule.frequency == 'daily':
        if candidate <= now:
            candidate += timedelta(days=1)

    elif schedule.frequency == 'weekly':
        target = schedule.day_of_week or 0
        current = (candidate.weekday() + 1) % 7
        days_until = target - current
        if days_until < 0 or (days_until == 0 and candidate <= now):
            days_until += 7
        candidate += timedelta(days=days_until)

    elif schedule.frequency == 'monthly':
        target = schedule.day_of_month or 1
        candidate = candidate.replace(day=_clamped(candidate.year, candidate.month, target))
        if candidate <= now:
            year, month = (candidate.year + 1, 1) if candidate.month == 12 else (candidate.year, candidate.month + 1)
            candidate = candidate.replace(year=year, month=month, day=_clamped(year, month, target))

    else:
        raise ValueError(f"Invalid frequency '{schedule.frequency}', must be one of: {', '.join(FREQUENCIES)}")

    return candidate


class ScheduledExportService:
    """
    Keep a set of recurring exports and run them when due

    Exports are written to the configured output directory. ``start()``
    polls ``run_pending()`` from a daemon thread.
    """

    def __init__(
        self,
        data_service: DataService,
        export_service: Optional[ExportService] = None,
        config: Optional[ConfigLoader] = None,
        output_dir: Optional[str] = None
    ):
        """
        Initialize scheduler

        Args:
            data_service: Source of transcript records and stored predictions
            export_service: Renderer (a default ExportService when omitted)
            config: Configuration loader
            output_dir: Where files are written (default export.output_dir)
        """
        self.config = config if config else ConfigLoader.from_dict({})
        self.data_service = data_service
        self.export_service = export_service if export_service else ExportService()
        self.output_dir = Path(output_dir) if output_dir else self.config.get_path(
            'export.output_dir', 'outputs/exports'
        )
        self.default_range_days = int(self.config.get('export.default_range_days', 30))
        self.poll_interval = float(self.config.get('scheduler.poll_interval_seconds', 60))

        self.exports: Dict[str, ScheduledExport] = {}
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # CRUD

    def create_scheduled_export(
        self,
        name: str,
        schedule: ScheduleConfig,
        export_options: ExportOptions,
        description: Optional[str] = None,
        recipients: Optional[List[str]] = None,
        is_active: bool = True,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> str:
        """
        Register a new export

        Returns:
            Id of the scheduled export

        Raises:
            ValueError: If the schedule is invalid
        """
        errors = schedule.validate()
        if errors:
            raise ValueError(f"Invalid schedule: {', '.join(errors)}")

        export_id = f"export_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self.exports[export_id] = ScheduledExport(
                id=export_id,
                name=name,
                description=description,
                schedule=schedule,
                export_options=export_options,
                recipients=list(recipients or []),
                is_active=is_active,
                created_by=created_by,
                next_run=calculate_next_run(schedule, now),
            )

        logger.info(f"Scheduled export '{name}' ({schedule.frequency} at {schedule.time})")
        return export_id

    def update_scheduled_export(self, export_id: str, now: Optional[datetime] = None, **updates) -> bool:
        """Apply field updates; the next run is recomputed when the schedule changes"""
        with self._lock:
            existing = self.exports.get(export_id)
            if existing is None:
                return False

            updated = replace(existing, **updates)
            if 'schedule' in updates:
                errors = updated.schedule.validate()
                if errors:
                    raise ValueError(f"Invalid schedule: {', '.join(errors)}")
                updated.next_run = calculate_next_run(updated.schedule, now)

            self.exports[export_id] = updated
            return True

    def delete_scheduled_export(self, export_id: str) -> bool:
        with self._lock:
            return self.exports.pop(export_id, None) is not None

    def get_scheduled_export(self, export_id: str) -> Optional[ScheduledExport]:
        return self.exports.get(export_id)

    def get_scheduled_exports(self) -> List[ScheduledExport]:
        with self._lock:
            return list(self.exports.values())

    # ------------------------------------------------------------------
    # Execution

    def _options_for_run(self, options: ExportOptions, now: datetime) -> ExportOptions:
        if options.has_date_range:
            return options
        end = now.date()
        return replace(options, start=end - timedelta(days=self.default_range_days), end=end)

    def execute_scheduled_export(self, export_id: str, now: Optional[datetime] = None) -> ScheduledExportResult:
        """
        Run one export immediately and write the file

        Args:
            export_id: Scheduled export id
            now: Execution time (defaults to now in the schedule's timezone)

        Returns:
            ScheduledExportResult; failures are returned, not raised
        """
        scheduled = self.exports.get(export_id)
        if scheduled is None:
            return ScheduledExportResult(
                export_id=export_id, success=False, executed_at=now or datetime.now(),
                error='Scheduled export not found',
            )

        now = _localize(now, ZoneInfo(scheduled.schedule.timezone))
        try:
            options = self._options_for_run(scheduled.export_options, now)
            records = self.data_service.fetch_transcripts()
            predictions = self.data_service.get_predictions() if options.include_predictions else None

            data = self.export_service.prepare_analytics_data(records, options, predictions)
            result = self.export_service.export_data(data, options, now=now.replace(tzinfo=None))
            if not result.success:
                raise RuntimeError(result.error or 'Export failed')

            path = result.save(self.output_dir)
            if options.include_charts:
                self.export_service.save_chart(data, path.with_suffix('.html'))

        except Exception as e:
            logger.error(f"❌ Scheduled export {export_id} failed: {e}")
            return ScheduledExportResult(export_id=export_id, success=False, executed_at=now, error=str(e))

        with self._lock:
            scheduled.last_run = now
            scheduled.next_run = calculate_next_run(scheduled.schedule, now)

        logger.info(f"✅ Scheduled export {export_id} completed: {result.filename}")
        return ScheduledExportResult(
            export_id=export_id, success=True, executed_at=now,
            filename=result.filename, path=str(path),
        )

    def run_pending(self, now: Optional[datetime] = None) -> List[ScheduledExportResult]:
        """Execute every active export whose next run is due"""
        results = []
        for scheduled in self.get_scheduled_exports():
            if not scheduled.is_active or scheduled.next_run is None:
                continue
            local_now = _localize(now, ZoneInfo(scheduled.schedule.timezone))
            if scheduled.next_run <= local_now:
                results.append(self.execute_scheduled_export(scheduled.id, local_now))
        return results

    def start(self, poll_interval: Optional[float] = None):
        """Poll for due exports in a daemon thread"""
        if self._thread is not None and self._thread.is_alive():
            return

        interval = poll_interval or self.poll_interval
        self._stop_event.clear()

        def loop():
            while not self._stop_event.is_set():
                try:
                    self.run_pending()
                except Exception as e:
                    logger.exception(f"Scheduler iteration failed: {e}")
                self._stop_event.wait(interval)

        self._thread = threading.Thread(target=loop, name='export-scheduler', daemon=True)
        self._thread.start()
        logger.info(f"Export scheduler started ({len(self.exports)} exports, every {interval:.0f}s)")

    def stop(self, timeout: float = 5.0):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Export scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Persistence

    def _schedules_path(self, path: Optional[str]) -> Path:
        if path:
            return Path(path)
        return self.config.get_path('scheduler.schedules_file', 'config/schedules.yaml')

    def save(self, path: Optional[str] = None) -> Path:
        target = self._schedules_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as f:
            yaml.safe_dump(
                {'exports': [e.to_dict() for e in self.get_scheduled_exports()]},
                f, sort_keys=False, allow_unicode=True
            )
        logger.debug(f"Saved {len(self.exports)} scheduled exports to {target}")
        return target

    def load(self, path: Optional[str] = None) -> int:
        """Load schedules from YAML; a missing file loads nothing"""
        source = self._schedules_path(path)
        if not source.exists():
            return 0

        with open(source, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        with self._lock:
            for item in data.get('exports', []):
                scheduled = ScheduledExport.from_dict(item)
                self.exports[scheduled.id] = scheduled

        logger.debug(f"Loaded {len(data.get('exports', []))} scheduled exports from {source}")
        return len(data.get('exports', []))
