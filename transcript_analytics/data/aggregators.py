"""Analytics aggregations over transcript records"""

import calendar
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from transcript_analytics.data.models import TranscriptRecord, month_to_date, is_valid_month
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


def filter_records(
    records: Iterable[TranscriptRecord],
    start: Optional[date] = None,
    end: Optional[date] = None,
    clients: Optional[Sequence[str]] = None
) -> List[TranscriptRecord]:
    """
    Keep records whose month overlaps [start, end] and whose client is listed

    Args:
        records: Records to filter
        start: Range start (inclusive)
        end: Range end (inclusive)
        clients: Client names to keep (None or empty keeps all)

    Returns:
        Filtered records
    """
    start = start.date() if isinstance(start, datetime) else start
    end = end.date() if isinstance(end, datetime) else end
    wanted = set(clients) if clients else None

    result = []
    for r in records:
        if wanted is not None and r.client_name not in wanted:
            continue
        if (start or end) and not is_valid_month(r.month):
            continue
        if start or end:
            first = month_to_date(r.month)
            last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
            if start and last < start:
                continue
            if end and first > end:
                continue
        result.append(r)
    return result


class DataAggregator:
    """
    Aggregate transcript records into analytics views

    All methods accept a list of TranscriptRecord and work on monthly
    totals summed across clients unless stated otherwise.
    """

    def __init__(self, config: Dict = None):
        """
        Initialize aggregator

        Args:
            config: Optional settings (moving_average_window)
        """
        self.config = config if config else {}

    # ------------------------------------------------------------------
    # Breakdowns

    def aggregate_by_month(self, records: List[TranscriptRecord]) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for r in records:
            totals[r.month] = totals.get(r.month, 0) + int(r.transcript_count)
        return dict(sorted(totals.items()))

    def aggregate_by_client(self, records: List[TranscriptRecord]) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for r in records:
            totals[r.client_name] = totals.get(r.client_name, 0) + int(r.transcript_count)
        return totals

    def monthly_series(self, records: List[TranscriptRecord]) -> pd.Series:
        """Monthly totals as a Series indexed by YYYY-MM, ascending"""
        return pd.Series(self.aggregate_by_month(records), dtype=float)

    # ------------------------------------------------------------------
    # Trends and statistics

    def calculate_trends(self, records: List[TranscriptRecord]) -> List[Dict]:
        """
        Month-over-month change for the monthly totals

        The first month has change 0; change percent is 0 when the
        previous month is 0.
        """
        series = self.monthly_series(records)
        trends = []
        previous = None
        for month, count in series.items():
            change = 0.0
            change_percent = 0.0
            if previous is not None:
                change = count - previous
                change_percent = (change / previous) * 100 if previous > 0 else 0.0
            trends.append({
                'month': month,
                'count': int(count),
                'change': int(change),
                'change_percent': float(change_percent),
            })
            previous = count
        return trends

    def calculate_statistical_summary(self, records: List[TranscriptRecord]) -> Dict[str, float]:
        """
        Descriptive statistics over individual record counts

        Variance and standard deviation are population statistics. The mode
        is the smallest of the most frequent values.
        """
        counts = pd.Series([int(r.transcript_count) for r in records], dtype=float)

        if counts.empty:
            return {
                'mean': 0.0, 'median': 0.0, 'mode': 0.0, 'std': 0.0,
                'variance': 0.0, 'min': 0.0, 'max': 0.0, 'total': 0.0,
            }

        variance = float(counts.var(ddof=0))
        return {
            'mean': float(counts.mean()),
            'median': float(counts.median()),
            'mode': float(counts.mode().min()),
            'std': float(np.sqrt(variance)),
            'variance': variance,
            'min': float(counts.min()),
            'max': float(counts.max()),
            'total': float(counts.sum()),
        }

    def calculate_growth_metrics(self, records: List[TranscriptRecord]) -> Dict[str, float]:
        """
        Growth rates in percent

        - monthly_growth: last month vs previous month
        - quarterly_growth: last 3 months vs previous 3 (needs 6 months)
        - year_over_year: last 12 months vs previous 12 (needs 12 months)
        - cagr: first to last month annualised (needs 12 months)
        """
        values = self.monthly_series(records).to_numpy()
        metrics = {
            'monthly_growth': 0.0,
            'quarterly_growth': 0.0,
            'year_over_year': 0.0,
            'cagr': 0.0,
        }
        n = len(values)
        if n < 2:
            return metrics

        if values[-2] > 0:
            metrics['monthly_growth'] = float((values[-1] - values[-2]) / values[-2] * 100)

        if n >= 6:
            last_q, prev_q = values[-3:].sum(), values[-6:-3].sum()
            if prev_q > 0:
                metrics['quarterly_growth'] = float((last_q - prev_q) / prev_q * 100)

        if n >= 12:
            current, previous = values[-12:].sum(), values[-24:-12].sum()
            if previous > 0:
                metrics['year_over_year'] = float((current - previous) / previous * 100)

            years = n / 12
            if values[0] > 0:
                metrics['cagr'] = float(((values[-1] / values[0]) ** (1 / years) - 1) * 100)

        return metrics

    def calculate_moving_average(self, records: List[TranscriptRecord], window: int = None) -> List[Dict]:
        """Trailing moving average of monthly totals (shorter windows at the start)"""
        window = window or self.config.get('moving_average_window', 3)
        series = self.monthly_series(records)
        averages = series.rolling(window=window, min_periods=1).mean()
        return [{'month': m, 'count': int(round(v))} for m, v in averages.items()]

    def detect_seasonal_patterns(self, records: List[TranscriptRecord]) -> Dict[str, float]:
        """Average record count per calendar month name, in calendar order"""
        by_month: Dict[int, List[int]] = {}
        for r in records:
            if not is_valid_month(r.month):
                continue
            by_month.setdefault(int(r.month[5:7]), []).append(int(r.transcript_count))

        return {
            calendar.month_name[m]: float(np.mean(by_month[m]))
            for m in sorted(by_month)
        }

    @staticmethod
    def calculate_correlation(x: Sequence[float], y: Sequence[float]) -> float:
        """Pearson correlation; 0 for mismatched, empty or constant input"""
        if len(x) != len(y) or len(x) == 0:
            return 0.0
        x_arr = np.asarray(x, dtype=float)
        y_arr = np.asarray(y, dtype=float)
        if x_arr.std() == 0 or y_arr.std() == 0:
            return 0.0
        return float(np.corrcoef(x_arr, y_arr)[0, 1])

    @staticmethod
    def calculate_forecast_accuracy(actual: Sequence[float], predicted: Sequence[float]) -> Dict[str, float]:
        """
        MAE, MAPE, RMSE and R² between two equal-length series

        MAPE treats zero actuals as zero error; R² is 0 for constant actuals.
        """
        if len(actual) != len(predicted) or len(actual) == 0:
            return {'mae': 0.0, 'mape': 0.0, 'rmse': 0.0, 'r2': 0.0}

        a = np.asarray(actual, dtype=float)
        p = np.asarray(predicted, dtype=float)
        errors = a - p

        nonzero = a != 0
        pct = np.zeros_like(a)
        pct[nonzero] = np.abs(errors[nonzero] / a[nonzero])

        ss_tot = np.sum((a - a.mean()) ** 2)
        ss_res = np.sum(errors ** 2)

        return {
            'mae': float(np.mean(np.abs(errors))),
            'mape': float(np.mean(pct) * 100),
            'rmse': float(np.sqrt(np.mean(errors ** 2))),
            'r2': float(1 - ss_res / ss_tot) if ss_tot != 0 else 0.0,
        }

    def calculate_trend_analytics(self, records: List[TranscriptRecord]) -> Dict:
        """Every analytics view in one dict"""
        logger.debug(f"Calculating trend analytics for {len(records)} records")
        return {
            'trends': self.calculate_trends(records),
            'statistics': self.calculate_statistical_summary(records),
            'growth_metrics': self.calculate_growth_metrics(records),
            'moving_average': self.calculate_moving_average(records),
            'seasonal_patterns': self.detect_seasonal_patterns(records),
            'client_breakdown': self.aggregate_by_client(records),
            'monthly_breakdown': self.aggregate_by_month(records),
        }

    # ------------------------------------------------------------------
    # Report summary

    def build_summary(
        self,
        records: List[TranscriptRecord],
        start: date,
        end: date
    ) -> Dict:
        """
        Summary block used by exports

        Args:
            records: Records already filtered to the range
            start: Range start
            end: Range end

        Returns:
            Dict with total_transcripts, average_per_day, peak_day,
            client_breakdown (descending by count) and date_range
        """
        start = start.date() if isinstance(start, datetime) else start
        end = end.date() if isinstance(end, datetime) else end

        total = sum(int(r.transcript_count) for r in records)
        days = max(1, (end - start).days)

        period_totals: Dict[str, int] = {}
        for r in records:
            key = month_to_date(r.month).isoformat() if is_valid_month(r.month) else r.month
            period_totals[key] = period_totals.get(key, 0) + int(r.transcript_count)

        peak = {'date': start.isoformat(), 'count': 0}
        for key, count in period_totals.items():
            if count > peak['count']:
                peak = {'date': key, 'count': count}

        breakdown = [
            {
                'client': client,
                'count': count,
                'percentage': (count / total) * 100 if total > 0 else 0.0,
            }
            for client, count in self.aggregate_by_client(records).items()
        ]
        breakdown.sort(key=lambda item: item['count'], reverse=True)

        return {
            'total_transcripts': total,
            'average_per_day': total / days,
            'peak_day': peak,
            'client_breakdown': breakdown,
            'date_range': {'start': start.isoformat(), 'end': end.isoformat()},
        }
