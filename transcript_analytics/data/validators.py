"""Data validation for transcript records and monthly series"""

from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from transcript_analytics.data.models import TranscriptRecord, is_valid_month
from transcript_analytics.utils.errors import RecordValidationError
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

MAX_CLIENT_NAME_LENGTH = 255
MAX_NOTES_LENGTH = 1000


def validate_record_fields(client_name: Any, month: Any, transcript_count: Any,
                           notes: Any = None) -> List[Dict[str, Any]]:
    """
    Field-level checks applied before a record is written

    Returns:
        List of {'field', 'value', 'message'} dicts (empty when valid)
    """
    errors = []

    if not isinstance(client_name, str) or not client_name.strip():
        errors.append({'field': 'client_name', 'value': client_name,
                       'message': 'Client name is required'})
    elif len(client_name) > MAX_CLIENT_NAME_LENGTH:
        errors.append({'field': 'client_name', 'value': client_name,
                       'message': 'Client name too long'})

    if not is_valid_month(month):
        errors.append({'field': 'month', 'value': month,
                       'message': 'Month must be in YYYY-MM format'})

    if isinstance(transcript_count, bool) or not isinstance(transcript_count, (int, np.integer)):
        errors.append({'field': 'transcript_count', 'value': transcript_count,
                       'message': 'Transcript count must be an integer'})
    elif transcript_count < 0:
        errors.append({'field': 'transcript_count', 'value': transcript_count,
                       'message': 'Transcript count must be non-negative'})

    if notes is not None and len(str(notes)) > MAX_NOTES_LENGTH:
        errors.append({'field': 'notes', 'value': notes, 'message': 'Notes too long'})

    return errors


def ensure_valid_record(record: TranscriptRecord) -> TranscriptRecord:
    """
    Raise if a record fails field validation

    Raises:
        RecordValidationError: With every failing field in the message
    """
    errors = validate_record_fields(
        record.client_name, record.month, record.transcript_count, record.notes
    )
    if errors:
        raise RecordValidationError('; '.join(f"{e['field']}: {e['message']}" for e in errors))
    return record


class TranscriptDataValidator:
    """
    Validate transcript datasets

    Checks a DataFrame built with ``records_to_dataframe`` for:
    - Monthly completeness per client
    - Value ranges
    - Outliers
    - Duplicate (client, month) keys
    """

    def __init__(self, config: dict = None):
        """
        Initialize validator

        Args:
            config: Validation thresholds (max_transcript_count, outlier_std)
        """
        self.config = config if config else {}
        self.validation_results = {}

    def validate_monthly_completeness(self, df: pd.DataFrame) -> Dict:
        """
        Check every client's series for missing months

        Args:
            df: Records DataFrame with client_name and date columns

        Returns:
            Validation report dict
        """
        logger.info("Validating monthly completeness...")

        gaps = {}
        for client, group in df.dropna(subset=['date']).groupby('client_name'):
            periods = pd.to_datetime(group['date']).dt.to_period('M')
            expected = pd.period_range(periods.min(), periods.max(), freq='M')
            missing = sorted(str(p) for p in set(expected) - set(periods))
            if missing:
                gaps[client] = missing

        report = {
            'status': 'pass' if not gaps else 'warning',
            'clients_checked': int(df['client_name'].nunique()) if len(df) else 0,
            'clients_with_gaps': len(gaps),
            'missing_months': gaps,
        }

        if gaps:
            for client, missing in gaps.items():
                logger.warning(f"⚠️  {client}: missing {len(missing)} months {missing}")
        else:
            logger.info("✅ All months present for every client")

        self.validation_results['monthly_completeness'] = report
        return report

    def validate_value_ranges(self, df: pd.DataFrame) -> Dict:
        """
        Flag negative counts and counts above the configured maximum

        Returns:
            Validation report dict
        """
        max_count = self.config.get('max_transcript_count', 10000)
        counts = pd.to_numeric(df['transcript_count'], errors='coerce')

        negative = int((counts < 0).sum())
        above_max = int((counts > max_count).sum())

        report = {
            'status': 'fail' if negative else ('warning' if above_max else 'pass'),
            'negative_count': negative,
            'above_max_count': above_max,
            'max_expected': max_count,
        }

        if negative:
            logger.error(f"❌ {negative} records have negative transcript counts")
        if above_max:
            logger.warning(f"⚠️  {above_max} records exceed {max_count:,} transcripts")

        self.validation_results['value_ranges'] = report
        return report

    def detect_outliers(self, df: pd.DataFrame, std_threshold: float = None) -> Dict:
        """
        Detect per-client outliers using the standard deviation method

        Args:
            df: Records DataFrame
            std_threshold: Number of standard deviations (default from config, 3.0)

        Returns:
            Validation report dict with outlier records
        """
        std_threshold = std_threshold or self.config.get('outlier_std', 3.0)

        outliers = []
        for client, group in df.groupby('client_name'):
            values = group['transcript_count'].astype(float)
            if len(values) < 3:
                continue
            mean, std = values.mean(), values.std(ddof=0)
            if std == 0:
                continue
            flagged = group[np.abs(values - mean) > std_threshold * std]
            for _, row in flagged.iterrows():
                outliers.append({
                    'client_name': client,
                    'month': row['month'],
                    'transcript_count': int(row['transcript_count']),
                    'z_score': float((row['transcript_count'] - mean) / std),
                })

        report = {
            'status': 'pass' if not outliers else 'warning',
            'std_threshold': std_threshold,
            'outlier_count': len(outliers),
            'outliers': outliers,
        }

        if outliers:
            logger.warning(f"⚠️  Found {len(outliers)} outliers outside {std_threshold} std deviations")

        self.validation_results['outliers'] = report
        return report

    def detect_duplicates(self, df: pd.DataFrame) -> Dict:
        dupes = df[df.duplicated(subset=['client_name', 'month'], keep='first')]
        report = {
            'status': 'pass' if dupes.empty else 'warning',
            'duplicate_count': len(dupes),
            'duplicates': dupes[['client_name', 'month']].to_dict('records'),
        }
        if not dupes.empty:
            logger.warning(f"⚠️  Found {len(dupes)} duplicate (client, month) records")

        self.validation_results['duplicates'] = report
        return report

    def validate_dataframe(self, df: pd.DataFrame, dataset_name: str = 'transcripts') -> Dict:
        """
        Run every check and summarise

        Args:
            df: Records DataFrame
            dataset_name: Label used in logs

        Returns:
            Dict with overall status and individual reports
        """
        logger.info(f"Validating {dataset_name} ({len(df)} records)")
        self.validation_results = {}

        if df.empty:
            return {'status': 'warning', 'dataset': dataset_name, 'records': 0, 'checks': {}}

        self.validate_monthly_completeness(df)
        self.validate_value_ranges(df)
        self.detect_outliers(df)
        self.detect_duplicates(df)

        statuses = [r['status'] for r in self.validation_results.values()]
        overall = 'fail' if 'fail' in statuses else ('warning' if 'warning' in statuses else 'pass')

        return {
            'status': overall,
            'dataset': dataset_name,
            'records': len(df),
            'checks': dict(self.validation_results),
        }

    def get_summary(self) -> Optional[pd.DataFrame]:
        if not self.validation_results:
            return None
        return pd.DataFrame([
            {'check': name, 'status': result.get('status', 'unknown')}
            for name, result in self.validation_results.items()
        ])
