"""Consistency checks between the server data and the local client copy"""

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from transcript_analytics.data.base import DataService
from transcript_analytics.data.models import TranscriptRecord, is_valid_month
from transcript_analytics.sync.store import LocalRecordStore
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

ISSUE_TYPES = ('duplicate', 'missing', 'mismatch', 'invalid', 'orphaned')
COMPARED_FIELDS = ('client_name', 'month', 'transcript_count', 'notes')
MISMATCH_SEVERITY = {'client_name': 'high', 'month': 'high', 'transcript_count': 'high', 'notes': 'medium'}


@dataclass
class ValidationRule:
    name: str
    field: str
    validator: Callable[[Any, TranscriptRecord], bool]
    message: str
    severity: str
    suggested_fix: str = 'Fix the validation error'


@dataclass
class ConsistencyIssue:
    type: str
    severity: str
    record_id: str
    description: str
    field: Optional[str] = None
    server_value: Any = None
    client_value: Any = None
    suggested_fix: Optional[str] = None
    record: Optional[TranscriptRecord] = dataclasses.field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'severity': self.severity,
            'record_id': self.record_id,
            'field': self.field,
            'description': self.description,
            'server_value': _plain(self.server_value),
            'client_value': _plain(self.client_value),
            'suggested_fix': self.suggested_fix,
        }


@dataclass
class ConsistencyCheckResult:
    is_consistent: bool = True
    total_records: int = 0
    checked_at: datetime = field(default_factory=datetime.now)
    issues: List[ConsistencyIssue] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        counts = {t: 0 for t in ISSUE_TYPES}
        for issue in self.issues:
            counts[issue.type] += 1
        return {
            'duplicates': counts['duplicate'],
            'mismatches': counts['mismatch'],
            'missing': counts['missing'],
            'invalid': counts['invalid'],
            'orphaned': counts['orphaned'],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_consistent': self.is_consistent,
            'total_records': self.total_records,
            'checked_at': self.checked_at.isoformat(),
            'issues': [i.to_dict() for i in self.issues],
            'summary': self.summary,
        }


@dataclass
class RepairResult:
    success: bool = True
    repaired_issues: int = 0
    failed_repairs: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'repaired_issues': self.repaired_issues,
            'failed_repairs': self.failed_repairs,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
        }


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, np.generic):
        return value.item()
    return value


def _identity(record: TranscriptRecord) -> str:
    return str(record.id) if record.id is not None else f"{record.client_name}:{record.month}"


def _physical_order(record_id: str) -> int:
    match = re.search(r'(\d+)$', str(record_id))
    return int(match.group(1)) if match else -1


def _is_count(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def default_rules(max_transcript_count: int = 10000) -> List[ValidationRule]:
    """Built-in record rules, most severe first"""
    return [
        ValidationRule(
            name='client_name_required',
            field='client_name',
            validator=lambda value, record: isinstance(value, str) and bool(value.strip()),
            message='Client name is required and cannot be empty',
            severity='critical',
            suggested_fix='Provide a valid client name',
        ),
        ValidationRule(
            name='month_format',
            field='month',
            validator=lambda value, record: is_valid_month(value),
            message='Month must be in YYYY-MM format',
            severity='critical',
            suggested_fix='Use YYYY-MM format (e.g., 2024-01)',
        ),
        ValidationRule(
            name='transcript_count_valid',
            field='transcript_count',
            validator=lambda value, record: _is_count(value) and value >= 0,
            message='Transcript count must be a non-negative integer',
            severity='critical',
            suggested_fix='Provide a non-negative integer value',
        ),
        ValidationRule(
            name='year_consistency',
            field='year',
            validator=lambda value, record: value is not None and str(value) == str(record.month)[:4],
            message='Year field must match the year in the month field',
            severity='high',
            suggested_fix='Update year to match month',
        ),
        ValidationRule(
            name='created_at_valid',
            field='created_at',
            validator=lambda value, record: isinstance(value, datetime),
            message='Created date must be a valid date',
            severity='medium',
        ),
        ValidationRule(
            name='updated_at_valid',
            field='updated_at',
            validator=lambda value, record: (
                isinstance(value, datetime)
                and isinstance(record.created_at, datetime)
                and value >= record.created_at
            ),
            message='Updated date must be a valid date and not before created date',
            severity='medium',
        ),
        ValidationRule(
            name='reasonable_transcript_count',
            field='transcript_count',
            validator=lambda value, record: _is_count(value) and value <= max_transcript_count,
            message=f'Transcript count seems unusually high (>{max_transcript_count:,})',
            severity='low',
            suggested_fix='Verify if this count is correct',
        ),
    ]


class DataConsistencyService:
    """
    Compare server records with the local client copy

    Detects:
    - invalid: a record breaks a validation rule (either side)
    - duplicate: more than one server record for a (client, month)
    - mismatch: the same record differs between server and client
    - missing: on the server but not in the client copy
    - orphaned: in the client copy but not on the server
    """

    def __init__(self, data_service: DataService, store: Optional[LocalRecordStore] = None,
                 max_transcript_count: int = 10000):
        """
        Initialize consistency service

        Args:
            data_service: Server backend
            store: Local client copy (empty store when omitted)
            max_transcript_count: Threshold of the "unusually high" rule
        """
        self.data_service = data_service
        self.store = store if store is not None else LocalRecordStore()
        self.rules: List[ValidationRule] = default_rules(max_transcript_count)

    def add_validation_rule(self, rule: ValidationRule):
        self.rules.append(rule)

    def remove_validation_rule(self, name: str):
        self.rules = [r for r in self.rules if r.name != name]

    # ------------------------------------------------------------------
    # Checks

    def perform_consistency_check(
        self,
        client_records: Optional[Sequence[TranscriptRecord]] = None
    ) -> ConsistencyCheckResult:
        """
        Run every check and collect issues

        Args:
            client_records: Client copy to compare (defaults to the store)

        Returns:
            ConsistencyCheckResult; a fetch failure is reported as a
            critical 'invalid' issue for record 'system'
        """
        result = ConsistencyCheckResult()

        try:
            server = self.data_service.fetch_transcripts()
        except Exception as e:
            logger.error(f"Consistency check failed: {e}")
            result.issues.append(ConsistencyIssue(
                type='invalid', severity='critical', record_id='system',
                description=f"Consistency check failed: {e}",
            ))
            result.is_consistent = False
            return result

        local = list(client_records) if client_records is not None else self.store.all()
        result.total_records = max(len(server), len(local))

        self._check_rules(server, result, 'server')
        self._check_rules(local, result, 'client')
        self._check_duplicates(server, result)
        self._check_mismatches(server, local, result)
        self._check_orphans(server, local, result)

        result.is_consistent = not result.issues

        if result.is_consistent:
            logger.info(f"✅ {result.total_records} records consistent")
        else:
            logger.warning(f"⚠️  {len(result.issues)} consistency issues: {result.summary}")
        return result

    def _check_rules(self, records: Sequence[TranscriptRecord], result: ConsistencyCheckResult, source: str):
        label = 'Client' if source == 'client' else 'Server'
        value_key = 'client_value' if source == 'client' else 'server_value'

        for record in records:
            for rule in self.rules:
                value = getattr(record, rule.field, None)
                try:
                    valid = rule.validator(value, record)
                except Exception as e:
                    result.issues.append(ConsistencyIssue(
                        type='invalid', severity='medium', record_id=_identity(record),
                        field=rule.field, record=record,
                        description=f"Validation rule '{rule.name}' failed to execute: {e}",
                    ))
                    continue

                if not valid:
                    result.issues.append(ConsistencyIssue(
                        type='invalid', severity=rule.severity, record_id=_identity(record),
                        field=rule.field, record=record,
                        description=f"{label} data: {rule.message}",
                        suggested_fix=rule.suggested_fix,
                        **{value_key: value},
                    ))

    def _check_duplicates(self, server: Sequence[TranscriptRecord], result: ConsistencyCheckResult):
        seen: Dict[tuple, List[TranscriptRecord]] = {}
        for record in server:
            seen.setdefault(record.key, []).append(record)

        for (client_name, month), group in seen.items():
            for extra in group[1:]:
                result.issues.append(ConsistencyIssue(
                    type='duplicate', severity='high', record_id=_identity(extra), record=extra,
                    description=f"Duplicate record found for client '{client_name}' in month '{month}'",
                    suggested_fix='Remove duplicate record or merge data if different',
                ))

    def _check_mismatches(self, server: Sequence[TranscriptRecord], local: Sequence[TranscriptRecord],
                          result: ConsistencyCheckResult):
        local_by_id = {_identity(r): r for r in local}

        for server_record in server:
            record_id = _identity(server_record)
            local_record = local_by_id.get(record_id)
            if local_record is None:
                continue

            for name in COMPARED_FIELDS:
                server_value = getattr(server_record, name)
                client_value = getattr(local_record, name)
                if server_value == client_value:
                    continue

                if name == 'transcript_count':
                    fix = f"Choose between server value ({server_value}) and client value ({client_value})"
                elif name == 'notes':
                    fix = 'Merge notes or choose the most recent version'
                else:
                    fix = 'Resolve the conflict by choosing the correct value'

                result.issues.append(ConsistencyIssue(
                    type='mismatch', severity=MISMATCH_SEVERITY.get(name, 'low'),
                    record_id=record_id, field=name, record=server_record,
                    description=f"Data mismatch in field '{name}'",
                    server_value=server_value, client_value=client_value,
                    suggested_fix=fix,
                ))

    def _check_orphans(self, server: Sequence[TranscriptRecord], local: Sequence[TranscriptRecord],
                       result: ConsistencyCheckResult):
        server_ids = {_identity(r) for r in server}
        local_ids = {_identity(r) for r in local}

        for record in server:
            if _identity(record) not in local_ids:
                result.issues.append(ConsistencyIssue(
                    type='missing', severity='medium', record_id=_identity(record), record=record,
                    description='Record exists on server but missing from client',
                    suggested_fix='Sync record to client',
                ))

        for record in local:
            if _identity(record) not in server_ids:
                result.issues.append(ConsistencyIssue(
                    type='orphaned', severity='medium', record_id=_identity(record), record=record,
                    description='Record exists on client but missing from server',
                    suggested_fix='Push record to server or remove from client',
                ))

    # ------------------------------------------------------------------
    # Repair

    def repair_consistency_issues(self, issues: Sequence[ConsistencyIssue],
                                  strategy: str = 'auto') -> RepairResult:
        """
        Attempt to fix reported issues

        Args:
            issues: Issues from perform_consistency_check
            strategy: 'auto' applies fixes, 'manual' only reports them

        Returns:
            RepairResult; issues that cannot be fixed automatically are
            counted as failed with a warning
        """
        if strategy not in ('auto', 'manual'):
            raise ValueError(f"Invalid repair strategy '{strategy}', must be 'auto' or 'manual'")

        result = RepairResult()

        # Delete duplicates from the highest row down so row ids stay valid
        duplicates = sorted(
            (i for i in issues if i.type == 'duplicate'),
            key=lambda i: _physical_order(i.record_id), reverse=True
        )
        ordered = [i for i in issues if i.type != 'duplicate'] + duplicates

        removed_rows = False
        for issue in ordered:
            try:
                repaired = strategy == 'auto' and self._repair(issue)
            except Exception as e:
                logger.error(f"Repair of {issue.type} issue {issue.record_id} failed: {e}")
                result.failed_repairs += 1
                result.errors.append(f"Failed to repair issue for record {issue.record_id}: {e}")
                continue

            if repaired:
                result.repaired_issues += 1
                removed_rows = removed_rows or issue.type == 'duplicate'
            else:
                result.failed_repairs += 1
                result.warnings.append(
                    f"Could not auto-repair issue for record {issue.record_id}: {issue.description}"
                )

        # Deleting rows renumbers positional ids on the server
        if removed_rows:
            try:
                rekeyed = self.store.adopt_ids(self.data_service.fetch_transcripts())
                logger.debug(f"Re-keyed {rekeyed} local records after duplicate removal")
            except Exception as e:
                logger.error(f"Could not refresh record ids after duplicate removal: {e}")
                result.errors.append(f"Failed to refresh record ids: {e}")

        result.success = not result.errors
        if result.repaired_issues:
            self.store.save()
            logger.info(f"✅ Repaired {result.repaired_issues} consistency issues")
        return result

    def _repair(self, issue: ConsistencyIssue) -> bool:
        if issue.type == 'duplicate':
            self.data_service.delete_record(issue.record_id)
            return True

        if issue.type == 'mismatch':
            if issue.field is None:
                return False
            return self.store.update_by_id(issue.record_id, **{issue.field: issue.server_value})

        if issue.type == 'missing':
            record = issue.record or self._server_record(issue.record_id)
            if record is None:
                return False
            self.store.upsert(record)
            return True

        if issue.type == 'orphaned':
            record = issue.record or self.store.find_by_id(issue.record_id)
            if record is None:
                return False
            stored = self.data_service.add_transcript(record)
            self.store.remove(record.client_name, record.month)
            self.store.upsert(stored)
            return True

        return False

    def _server_record(self, record_id: str) -> Optional[TranscriptRecord]:
        for record in self.data_service.fetch_transcripts():
            if _identity(record) == record_id:
                return record
        return None
