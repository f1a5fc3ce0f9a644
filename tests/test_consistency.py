import pytest

from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.data.workbook import WorkbookDataService
from transcript_analytics.sync.consistency import ConsistencyIssue, DataConsistencyService, ValidationRule
from transcript_analytics.sync.store import LocalRecordStore


def _r(client='Acme', month='2024-01', count=10, **kwargs):
    return TranscriptRecord(client_name=client, month=month, transcript_count=count, **kwargs)


@pytest.fixture
def server(workbook_service):
    workbook_service.batch_import([_r(month='2024-01'), _r(month='2024-02', count=20)])
    return workbook_service


def test_synced_copy_is_consistent(server):
    store = LocalRecordStore(server.fetch_transcripts())
    report = DataConsistencyService(server, store).perform_consistency_check()
    assert report.is_consistent
    assert report.total_records == 2
    assert report.summary == {'duplicates': 0, 'mismatches': 0, 'missing': 0, 'invalid': 0, 'orphaned': 0}


def test_missing_records_are_repaired_into_store(server):
    store = LocalRecordStore()
    service = DataConsistencyService(server, store)
    report = service.perform_consistency_check()
    assert report.summary['missing'] == 2
    assert all(i.record_id.startswith('row_') for i in report.issues)

    repair = service.repair_consistency_issues(report.issues)
    assert repair.success
    assert repair.repaired_issues == 2
    assert service.perform_consistency_check().is_consistent


def test_mismatch_detected_and_repaired_with_server_value(server):
    local = server.fetch_transcripts()
    local[0].transcript_count = 99
    local[1].notes = 'local note'
    store = LocalRecordStore(local)
    service = DataConsistencyService(server, store)

    report = service.perform_consistency_check()
    mismatches = {i.field: i for i in report.issues if i.type == 'mismatch'}
    assert mismatches['transcript_count'].severity == 'high'
    assert mismatches['transcript_count'].server_value == 10
    assert mismatches['transcript_count'].client_value == 99
    assert mismatches['notes'].severity == 'medium'

    service.repair_consistency_issues(report.issues)
    assert store.get('Acme', '2024-01').transcript_count == 10
    assert store.get('Acme', '2024-02').notes is None


def test_orphaned_record_pushed_to_server(server):
    store = LocalRecordStore(server.fetch_transcripts() + [_r(month='2024-03', count=30)])
    service = DataConsistencyService(server, store)

    report = service.perform_consistency_check()
    orphans = [i for i in report.issues if i.type == 'orphaned']
    assert [i.record_id for i in orphans] == ['Acme:2024-03']

    result = service.repair_consistency_issues(orphans)
    assert result.repaired_issues == 1
    assert ('Acme', '2024-03') in {r.key for r in server.fetch_transcripts()}
    assert store.get('Acme', '2024-03').id == 'row_2'


def test_duplicates_removed_from_server(workbook_service):
    workbook_service.batch_import([_r(count=1), _r(count=2), _r(month='2024-02'), _r(count=3)])
    store = LocalRecordStore()
    service = DataConsistencyService(workbook_service, store)

    report = service.perform_consistency_check()
    duplicates = [i for i in report.issues if i.type == 'duplicate']
    assert sorted(i.record_id for i in duplicates) == ['row_1', 'row_3']

    result = service.repair_consistency_issues(duplicates)
    assert result.repaired_issues == 2
    remaining = workbook_service.fetch_transcripts()
    assert [(r.month, r.transcript_count) for r in remaining] == [('2024-01', 1), ('2024-02', 10)]


def test_invalid_client_records_reported(server):
    store = LocalRecordStore(server.fetch_transcripts() + [_r(month='2024-3')])
    report = DataConsistencyService(server, store).perform_consistency_check()
    invalid = [i for i in report.issues if i.type == 'invalid']
    month_issue = next(i for i in invalid if i.field == 'month')
    assert month_issue.severity == 'critical'
    assert month_issue.client_value == '2024-3'
    assert month_issue.description.startswith('Client data:')
    assert any(i.field == 'year' for i in invalid)


def test_unusually_high_count_is_low_severity(workbook_service):
    workbook_service.add_transcript(_r(count=20000))
    service = DataConsistencyService(workbook_service, max_transcript_count=10000)
    report = service.perform_consistency_check(client_records=[])
    (issue,) = [i for i in report.issues if i.type == 'invalid']
    assert issue.severity == 'low'
    assert issue.server_value == 20000
    assert '10,000' in issue.description


def test_custom_rules(server):
    service = DataConsistencyService(server, LocalRecordStore(server.fetch_transcripts()))
    service.add_validation_rule(ValidationRule(
        name='even_counts', field='transcript_count',
        validator=lambda value, record: value % 20 == 0,
        message='Count must be a multiple of 20', severity='low',
    ))
    report = service.perform_consistency_check()
    assert report.summary['invalid'] == 2  # row_0 on both sides

    service.remove_validation_rule('even_counts')
    assert service.perform_consistency_check().is_consistent


def test_rule_that_raises_is_reported(server):
    service = DataConsistencyService(server, LocalRecordStore(server.fetch_transcripts()))
    service.add_validation_rule(ValidationRule(
        name='broken', field='notes', validator=lambda value, record: value.strip() != '',
        message='unused', severity='low',
    ))
    report = service.perform_consistency_check()
    assert any("Validation rule 'broken' failed to execute" in i.description for i in report.issues)


def test_fetch_failure_becomes_system_issue(tmp_path):
    path = tmp_path / 'broken.xlsx'
    path.write_text('not a workbook')
    report = DataConsistencyService(WorkbookDataService(str(path))).perform_consistency_check()
    assert not report.is_consistent
    (issue,) = report.issues
    assert issue.record_id == 'system'
    assert issue.severity == 'critical'


def test_manual_strategy_repairs_nothing(server):
    service = DataConsistencyService(server, LocalRecordStore())
    report = service.perform_consistency_check()
    result = service.repair_consistency_issues(report.issues, strategy='manual')
    assert result.repaired_issues == 0
    assert result.failed_repairs == 2
    assert len(result.warnings) == 2

    with pytest.raises(ValueError):
        service.repair_consistency_issues(report.issues, strategy='yolo')


def test_report_serialises(server):
    report = DataConsistencyService(server, LocalRecordStore()).perform_consistency_check()
    data = report.to_dict()
    assert data['summary']['missing'] == 2
    assert 'record' not in data['issues'][0]
    assert isinstance(data['checked_at'], str)


def test_repair_after_duplicate_leaves_synced_copy_consistent(workbook_service):
    workbook_service.batch_import([_r(), _r(), _r(month='2024-02', count=20)])
    store = LocalRecordStore(workbook_service.fetch_transcripts())
    service = DataConsistencyService(workbook_service, store)

    report = service.perform_consistency_check()
    assert sorted((i.type, i.record_id) for i in report.issues) == [('duplicate', 'row_1'), ('missing', 'row_0')]

    repair = service.repair_consistency_issues(report.issues)
    assert repair.success
    assert repair.repaired_issues == 2

    after = service.perform_consistency_check()
    assert after.is_consistent, [(i.type, i.record_id) for i in after.issues]
    assert store.get('Acme', '2024-02').id == 'row_1'


def test_adopt_ids_only_touches_matching_keys():
    store = LocalRecordStore([_r(id='row_5'), _r(month='2024-09', id='row_9')])
    changed = store.adopt_ids([_r(id='row_0'), _r(month='2024-05', id='row_1')])
    assert changed == 1
    assert store.get('Acme', '2024-01').id == 'row_0'
    assert store.get('Acme', '2024-09').id == 'row_9'


def test_issue_keeps_field_name_and_hides_record_from_repr():
    issue = ConsistencyIssue(
        type='mismatch', severity='medium', record_id='row_0', description='notes differ',
        field='notes', server_value='a', client_value='b', record=_r(),
    )
    assert issue.to_dict()['field'] == 'notes'
    assert issue.record.client_name == 'Acme'
    assert 'record=' not in repr(issue)
    assert ConsistencyIssue(type='missing', severity='medium', record_id='row_1', description='x').record is None
