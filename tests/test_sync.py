import json

import pytest

from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.data.workbook import WorkbookDataService
from transcript_analytics.sync.service import SyncService, merge_values
from transcript_analytics.sync.store import LocalRecordStore
from transcript_analytics.utils.errors import SyncInProgressError


def _r(month='2024-01', count=10, client='Acme', **kwargs):
    return TranscriptRecord(client_name=client, month=month, transcript_count=count, **kwargs)


@pytest.fixture
def server(workbook_service):
    workbook_service.batch_import([_r('2024-01', 10), _r('2024-02', 20, notes='server note')])
    return workbook_service


def test_merge_values():
    assert merge_values('transcript_count', 10, 15) == 15
    assert merge_values('notes', 'a', 'b') == 'a | b'
    assert merge_values('notes', None, 'b') == 'b'
    assert merge_values('notes', 'a', None) == 'a'
    assert merge_values('client_name', 'x', 'y') == 'y'


def test_pull_adds_then_updates(server, config):
    sync = SyncService(server, LocalRecordStore(), config)

    first = sync.background_sync('pull')
    assert first.success
    assert (first.processed, first.added, first.updated) == (2, 2, 0)
    assert len(sync.store) == 2

    second = sync.background_sync('pull')
    assert (second.added, second.updated) == (0, 2)
    assert sync.last_sync_time is not None


def test_pull_skips_invalid_records(server, config):
    server.add_transcript(_r('2024-03', -4))
    sync = SyncService(server, LocalRecordStore(), config)

    result = sync.background_sync('pull')
    assert result.skipped == 1
    assert result.added == 2
    assert 'Validation failed for record row_2' in result.warnings[0]

    unchecked = SyncService(server, LocalRecordStore(), config).background_sync('pull', validate_data=False)
    assert unchecked.added == 3


def test_push_counts_added_and_updated(server, config):
    store = LocalRecordStore([_r('2024-01', 11), _r('2024-05', 50)])
    result = SyncService(server, store, config).background_sync('push')

    assert result.success
    assert (result.added, result.updated) == (1, 1)
    counts = {r.month: r.transcript_count for r in server.fetch_transcripts()}
    assert counts == {'2024-01': 11, '2024-02': 20, '2024-05': 50}


def test_push_skips_invalid_local_records(server, config):
    store = LocalRecordStore([_r('24-1', 5)])
    result = SyncService(server, store, config).background_sync('push')
    assert result.skipped == 1
    assert len(server.fetch_transcripts()) == 2


def test_bidirectional_server_wins(server, config):
    store = LocalRecordStore([_r('2024-01', 15, notes='client note'), _r('2024-06', 60)])
    sync = SyncService(server, store, config)

    result = sync.background_sync('bidirectional', conflict_resolution='server')
    assert result.success
    assert {c.field for c in result.conflicts} == {'transcript_count', 'notes'}
    assert all(c.resolution == 'server' for c in result.conflicts)
    assert store.get('Acme', '2024-01').transcript_count == 10
    # local-only record pushed, server-only record pulled
    assert ('Acme', '2024-06') in {r.key for r in server.fetch_transcripts()}
    assert store.get('Acme', '2024-02').notes == 'server note'
    assert result.added == 2
    assert result.updated == 1


def test_bidirectional_client_wins(server, config):
    store = LocalRecordStore([_r('2024-01', 15)])
    SyncService(server, store, config).background_sync('bidirectional', conflict_resolution='client')

    counts = {r.month: r.transcript_count for r in server.fetch_transcripts()}
    assert counts['2024-01'] == 15
    assert store.get('Acme', '2024-01').transcript_count == 15


def test_bidirectional_merge(server, config):
    store = LocalRecordStore([_r('2024-02', 5, notes='client note')])
    result = SyncService(server, store, config).background_sync('bidirectional', conflict_resolution='merge')

    resolved = {c.field: c.resolved_value for c in result.conflicts}
    assert resolved == {'transcript_count': 20, 'notes': 'server note | client note'}
    merged = store.get('Acme', '2024-02')
    assert merged.transcript_count == 20
    assert merged.notes == 'server note | client note'
    server_notes = {r.month: r.notes for r in server.fetch_transcripts()}
    assert server_notes['2024-02'] == 'server note | client note'


def test_rejects_bad_arguments(server, config):
    sync = SyncService(server, LocalRecordStore(), config)
    with pytest.raises(ValueError):
        sync.background_sync('sideways')
    with pytest.raises(ValueError):
        sync.background_sync('pull', conflict_resolution='coin_flip')


def test_concurrent_sync_rejected(server, config):
    sync = SyncService(server, LocalRecordStore(), config)
    sync._in_progress = True
    with pytest.raises(SyncInProgressError):
        sync.background_sync('pull')
    assert sync.get_sync_status()['in_progress']


def test_unreachable_server_reported(tmp_path, config):
    path = tmp_path / 'broken.xlsx'
    path.write_text('garbage')
    result = SyncService(WorkbookDataService(str(path)), LocalRecordStore(), config).background_sync('pull')
    assert not result.success
    assert result.errors == ['Failed to connect to workbook data source']


def test_queue_waits_for_running_sync(server, config):
    sync = SyncService(server, LocalRecordStore(), config)
    calls = []

    assert sync.queue_sync(lambda: calls.append('now')) == 1

    sync._in_progress = True
    assert sync.queue_sync(lambda: calls.append('later')) == 0
    assert sync.get_sync_status()['queue_length'] == 1

    sync._in_progress = False
    assert sync.process_queue() == 1
    assert calls == ['now', 'later']


def test_failing_queued_operation_does_not_stop_queue(server, config):
    sync = SyncService(server, LocalRecordStore(), config)
    calls = []
    sync._in_progress = True
    sync.queue_sync(lambda: 1 / 0)
    sync.queue_sync(lambda: calls.append('ran'))
    sync._in_progress = False
    assert sync.process_queue() == 2
    assert calls == ['ran']


def test_snapshot_written_and_reloaded(server, config):
    sync = SyncService(server, config=config)
    sync.background_sync('pull')

    snapshot = config.get_path('sync.snapshot_path')
    rows = json.loads(snapshot.read_text())
    assert [row['month'] for row in rows] == ['2024-01', '2024-02']

    reloaded = SyncService(server, config=config)
    assert len(reloaded.store) == 2
    assert reloaded.get_sync_status() == {
        'in_progress': False, 'last_sync_time': None, 'queue_length': 0, 'local_records': 2,
    }


def test_consistency_helpers(server, config):
    sync = SyncService(server, LocalRecordStore(), config)
    report = sync.validate_data_consistency()
    assert report.summary['missing'] == 2
    repair = sync.repair_data_inconsistencies(report)
    assert repair.repaired_issues == 2
    assert sync.validate_data_consistency().is_consistent
