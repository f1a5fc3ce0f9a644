from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from transcript_analytics.export.scheduler import (
    ScheduleConfig,
    ScheduledExportService,
    calculate_next_run,
)
from transcript_analytics.export.service import ExportOptions


UTC = ZoneInfo('UTC')


def _utc(*args):
    return datetime(*args, tzinfo=UTC)


@pytest.fixture
def scheduler(seeded_workbook, config, tmp_path):
    return ScheduledExportService(seeded_workbook, config=config, output_dir=str(tmp_path / 'scheduled'))


@pytest.mark.parametrize("now,expected", [
    (datetime(2024, 5, 6, 8, 0), _utc(2024, 5, 6, 9, 0)),
    (datetime(2024, 5, 6, 9, 0), _utc(2024, 5, 7, 9, 0)),
    (datetime(2024, 12, 31, 23, 0), _utc(2025, 1, 1, 9, 0)),
])
def test_daily_next_run(now, expected):
    assert calculate_next_run(ScheduleConfig('daily', '09:00'), now) == expected


@pytest.mark.parametrize("day_of_week,now,expected", [
    (0, datetime(2024, 5, 6, 10, 0), _utc(2024, 5, 12, 9, 0)),  # Monday -> Sunday
    (1, datetime(2024, 5, 6, 8, 0), _utc(2024, 5, 6, 9, 0)),
    (1, datetime(2024, 5, 6, 10, 0), _utc(2024, 5, 13, 9, 0)),
    (6, datetime(2024, 5, 6, 10, 0), _utc(2024, 5, 11, 9, 0)),
])
def test_weekly_next_run_counts_from_sunday(day_of_week, now, expected):
    schedule = ScheduleConfig('weekly', '09:00', day_of_week=day_of_week)
    assert calculate_next_run(schedule, now) == expected


@pytest.mark.parametrize("day_of_month,now,expected", [
    (31, datetime(2024, 2, 10, 12, 0), _utc(2024, 2, 29, 9, 0)),
    (31, datetime(2024, 1, 31, 10, 0), _utc(2024, 2, 29, 9, 0)),
    (15, datetime(2024, 12, 31, 10, 0), _utc(2025, 1, 15, 9, 0)),
    (None, datetime(2024, 3, 1, 8, 0), _utc(2024, 3, 1, 9, 0)),
])
def test_monthly_next_run_clamps_short_months(day_of_month, now, expected):
    schedule = ScheduleConfig('monthly', '09:00', day_of_month=day_of_month)
    assert calculate_next_run(schedule, now) == expected


def test_next_run_in_schedule_timezone():
    schedule = ScheduleConfig('daily', '09:00', timezone='America/New_York')
    result = calculate_next_run(schedule, _utc(2024, 5, 6, 12, 0))
    assert result == _utc(2024, 5, 6, 13, 0)
    assert result.tzinfo == ZoneInfo('America/New_York')
    assert calculate_next_run(schedule).tzinfo is not None


def test_schedule_validation():
    assert ScheduleConfig().validate() == []
    errors = ScheduleConfig('hourly', '25:00', day_of_week=7, day_of_month=0, timezone='Mars/Base').validate()
    assert len(errors) == 5
    assert ScheduleConfig(time='9am').validate() == ['time must be in HH:MM format']


def test_create_update_delete(scheduler):
    now = datetime(2024, 5, 6, 8, 0)
    export_id = scheduler.create_scheduled_export(
        'Daily CSV', ScheduleConfig('daily', '09:00'), ExportOptions(), created_by='ops', now=now
    )
    scheduled = scheduler.get_scheduled_export(export_id)
    assert export_id.startswith('export_')
    assert scheduled.next_run == _utc(2024, 5, 6, 9, 0)
    assert scheduled.created_by == 'ops'

    assert scheduler.update_scheduled_export(export_id, name='Renamed')
    assert scheduler.get_scheduled_export(export_id).name == 'Renamed'
    assert scheduler.get_scheduled_export(export_id).next_run == _utc(2024, 5, 6, 9, 0)

    assert scheduler.update_scheduled_export(export_id, now=now, schedule=ScheduleConfig('daily', '07:00'))
    assert scheduler.get_scheduled_export(export_id).next_run == _utc(2024, 5, 7, 7, 0)

    with pytest.raises(ValueError):
        scheduler.update_scheduled_export(export_id, schedule=ScheduleConfig('daily', '7'))
    assert not scheduler.update_scheduled_export('export_missing', name='x')

    assert scheduler.delete_scheduled_export(export_id)
    assert not scheduler.delete_scheduled_export(export_id)
    assert scheduler.get_scheduled_exports() == []


def test_create_rejects_invalid_schedule(scheduler):
    with pytest.raises(ValueError, match='Invalid schedule'):
        scheduler.create_scheduled_export('bad', ScheduleConfig('yearly'), ExportOptions())


def test_execute_writes_file_and_advances(scheduler):
    export_id = scheduler.create_scheduled_export(
        'Daily CSV', ScheduleConfig('daily', '09:00'), ExportOptions(include_charts=True)
    )
    result = scheduler.execute_scheduled_export(export_id, now=datetime(2024, 12, 20, 9, 0))

    assert result.success
    assert result.filename == 'transcript-analytics_2024-12-20_09-00-00_2024-11-20_to_2024-12-20.csv'
    path = Path(result.path)
    content = path.read_text(encoding='utf-8')
    assert '2024-12-01,Acme Corp' in content
    assert '2024-10-01' not in content
    assert path.with_suffix('.html').exists()

    scheduled = scheduler.get_scheduled_export(export_id)
    assert scheduled.last_run == _utc(2024, 12, 20, 9, 0)
    assert scheduled.next_run == _utc(2024, 12, 21, 9, 0)


def test_execute_unknown_export(scheduler):
    result = scheduler.execute_scheduled_export('export_missing')
    assert not result.success
    assert result.error == 'Scheduled export not found'


def test_failed_export_is_reported(scheduler):
    export_id = scheduler.create_scheduled_export('PDF?', ScheduleConfig(), ExportOptions(format='doc'))
    result = scheduler.execute_scheduled_export(export_id, now=datetime(2024, 12, 20, 9, 0))
    assert not result.success
    assert 'Unsupported export format' in result.error
    assert scheduler.get_scheduled_export(export_id).last_run is None


def test_run_pending_only_runs_due_active_exports(scheduler):
    created = datetime(2024, 12, 20, 8, 0)
    due = scheduler.create_scheduled_export('due', ScheduleConfig('daily', '09:00'), ExportOptions(), now=created)
    scheduler.create_scheduled_export(
        'paused', ScheduleConfig('daily', '09:00'), ExportOptions(), is_active=False, now=created
    )

    assert scheduler.run_pending(now=datetime(2024, 12, 20, 8, 30)) == []
    results = scheduler.run_pending(now=datetime(2024, 12, 20, 9, 30))
    assert [r.export_id for r in results] == [due]
    assert results[0].success


def test_save_and_load_round_trip(scheduler, seeded_workbook, config):
    export_id = scheduler.create_scheduled_export(
        'Monthly PDF',
        ScheduleConfig('monthly', '06:30', day_of_month=31, timezone='Europe/Zurich'),
        ExportOptions(format='pdf', start=date(2024, 1, 1), end=date(2024, 6, 30), clients=['Globex']),
        description='board pack',
        recipients=['ops@example.com'],
        now=datetime(2024, 5, 6),
    )
    path = scheduler.save()
    assert path == config.get_path('scheduler.schedules_file')

    restored = ScheduledExportService(seeded_workbook, config=config)
    assert restored.load() == 1
    scheduled = restored.get_scheduled_export(export_id)
    assert scheduled.schedule == scheduler.get_scheduled_export(export_id).schedule
    assert scheduled.export_options.start == date(2024, 1, 1)
    assert scheduled.export_options.clients == ['Globex']
    assert scheduled.recipients == ['ops@example.com']
    assert scheduled.next_run == scheduler.get_scheduled_export(export_id).next_run


def test_load_missing_file(scheduler, tmp_path):
    assert scheduler.load(str(tmp_path / 'nope.yaml')) == 0


def test_start_and_stop(scheduler):
    scheduler.start(poll_interval=0.01)
    assert scheduler.is_running
    scheduler.start()
    scheduler.stop()
    assert not scheduler.is_running
