"""Export transcript analytics as CSV, PDF or Excel reports"""

import calendar
import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd
import plotly.graph_objects as go
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from transcript_analytics.data.aggregators import DataAggregator, filter_records
from transcript_analytics.data.models import TranscriptRecord, month_to_date
from transcript_analytics.utils.errors import ExportError
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

EXPORT_FORMATS = ('csv', 'pdf', 'xlsx')
MIME_TYPES = {
    'csv': 'text/csv',
    'pdf': 'application/pdf',
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}
NOTES_TRUNCATE = 30

COLORS = {
    'header': '1F4E79',
    'actual': '#1F4E79',
    'forecast': '#E07B00',
    'band': 'rgba(224, 123, 0, 0.15)',
}


@dataclass
class ExportOptions:
    format: str = 'csv'
    start: Optional[date] = None
    end: Optional[date] = None
    clients: List[str] = field(default_factory=list)
    include_analytics: bool = True
    include_predictions: bool = False
    include_charts: bool = False

    @property
    def has_date_range(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass
class AnalyticsData:
    transcripts: List[TranscriptRecord]
    summary: Dict[str, Any]
    predictions: Optional[List[Any]] = None


@dataclass
class ExportResult:
    success: bool
    filename: str = ''
    data: Optional[Union[bytes, str]] = None
    error: Optional[str] = None
    mime_type: Optional[str] = None

    def save(self, output_dir: Union[str, Path]) -> Path:
        """Write the export to ``output_dir/filename``"""
        if not self.success or self.data is None:
            raise ExportError(f"Nothing to save: {self.error or 'export has no data'}")

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / self.filename

        if isinstance(self.data, str):
            path.write_text(self.data, encoding='utf-8')
        else:
            path.write_bytes(self.data)

        logger.info(f"Export saved to: {path}")
        return path


def escape_csv_field(value: Any) -> str:
    """Quote a field containing a comma, quote or newline"""
    text = '' if value is None else str(value)
    if ',' in text or '"' in text or '\n' in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def truncate_notes(notes: Optional[str], length: int = NOTES_TRUNCATE) -> str:
    notes = notes or ''
    return notes[:length] + ('...' if len(notes) > length else '')


def prediction_rows(predictions: Optional[Sequence[Any]]) -> List[Dict[str, Any]]:
    """
    Flatten prediction results into one row per forecast period

    Accepts PredictionResult objects (nested ``predictions`` list) or the
    flat dicts returned by ``DataService.get_predictions``.
    """
    rows = []
    for prediction in predictions or []:
        if hasattr(prediction, 'predictions'):
            for point in prediction.predictions:
                rows.append({
                    'date': pd.Timestamp(point['date']).strftime('%Y-%m-%d'),
                    'client': prediction.client_name,
                    'predicted_count': point['predicted_count'],
                    'lower': point['lower'],
                    'upper': point['upper'],
                    'model_type': prediction.model_type,
                    'accuracy': prediction.accuracy,
                })
        else:
            month = prediction.get('month') or prediction.get('date')
            rows.append({
                'date': month_to_date(str(month)[:7]).isoformat(),
                'client': prediction.get('client_name'),
                'predicted_count': prediction.get('predicted_count'),
                'lower': prediction.get('lower'),
                'upper': prediction.get('upper'),
                'model_type': prediction.get('model_type'),
                'accuracy': prediction.get('accuracy'),
            })
    return rows


class ExportService:
    """
    Render analytics data into downloadable reports

    Supported formats:
    - csv: sectioned text with '#' headers
    - pdf: tables rendered with reportlab
    - xlsx: one sheet per section via pandas and openpyxl
    """

    def __init__(self, aggregator: Optional[DataAggregator] = None):
        self.aggregator = aggregator if aggregator else DataAggregator()

    def prepare_analytics_data(
        self,
        records: Sequence[TranscriptRecord],
        options: ExportOptions,
        predictions: Optional[List[Any]] = None
    ) -> AnalyticsData:
        """
        Filter records by the options and build the summary block

        Without a date range the summary spans the first to the last
        month present in the data.
        """
        filtered = filter_records(records, options.start, options.end, options.clients)
        filtered.sort(key=lambda r: (r.month, r.client_name))

        if options.has_date_range:
            start, end = options.start, options.end
        elif filtered:
            first = month_to_date(filtered[0].month)
            last = month_to_date(filtered[-1].month)
            start = first
            end = last.replace(day=calendar.monthrange(last.year, last.month)[1])
        else:
            start = end = date.today()

        if predictions and options.clients:
            predictions = [
                p for p in predictions
                if (getattr(p, 'client_name', None) or p.get('client_name')) in options.clients
            ]

        return AnalyticsData(
            transcripts=filtered,
            summary=self.aggregator.build_summary(filtered, start, end),
            predictions=predictions,
        )

    def export_data(self, data: AnalyticsData, options: ExportOptions,
                    now: Optional[datetime] = None) -> ExportResult:
        """
        Render ``data`` in the requested format

        Args:
            data: Output of prepare_analytics_data
            options: Export options
            now: Generation timestamp (defaults to now)

        Returns:
            ExportResult; failures are returned with success=False
        """
        now = now or datetime.now()
        try:
            if options.format not in EXPORT_FORMATS:
                raise ExportError(f"Unsupported export format: {options.format}")

            if options.format == 'csv':
                payload = self.generate_csv(data, options, now)
            elif options.format == 'pdf':
                payload = self.generate_pdf(data, options, now)
            else:
                payload = self.generate_xlsx(data, options, now)

            filename = f"{self.generate_filename(options, now)}.{options.format}"
            logger.info(f"✅ Exported {len(data.transcripts)} records to {filename}")
            return ExportResult(
                success=True,
                filename=filename,
                data=payload,
                mime_type=MIME_TYPES[options.format],
            )

        except Exception as e:
            logger.error(f"❌ Export failed: {e}")
            return ExportResult(success=False, error=str(e) or 'Export failed')

    @staticmethod
    def generate_filename(options: ExportOptions, now: Optional[datetime] = None) -> str:
        now = now or datetime.now()
        filename = f"transcript-analytics_{now.strftime('%Y-%m-%d_%H-%M-%S')}"

        if options.has_date_range:
            filename += f"_{options.start.strftime('%Y-%m-%d')}_to_{options.end.strftime('%Y-%m-%d')}"

        if len(options.clients) == 1:
            filename += '_' + re.sub(r'[^a-zA-Z0-9]', '_', options.clients[0])
        elif options.clients:
            filename += f"_{len(options.clients)}_clients"

        return filename

    # ------------------------------------------------------------------
    # CSV

    def generate_csv(self, data: AnalyticsData, options: ExportOptions, now: datetime) -> str:
        summary = data.summary
        lines = [
            '# Transcript Analytics Export',
            f"# Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}",
        ]
        if options.has_date_range:
            lines.append(
                f"# Date Range: {options.start.strftime('%Y-%m-%d')} to {options.end.strftime('%Y-%m-%d')}"
            )
        lines.append('')

        if options.include_analytics:
            lines += [
                '# Summary Statistics',
                f"Total Transcripts,{summary['total_transcripts']}",
                f"Average Per Day,{summary['average_per_day']:.2f}",
                f"Peak Day,{summary['peak_day']['date']}",
                f"Peak Day Count,{summary['peak_day']['count']}",
                '',
                '# Client Breakdown',
                'Client,Count,Percentage',
            ]
            for item in summary['client_breakdown']:
                lines.append(f"{escape_csv_field(item['client'])},{item['count']},{item['percentage']:.1f}%")
            lines.append('')

        lines += ['# Transcript Data', 'Date,Client,Count,Notes']
        for record in data.transcripts:
            lines.append(','.join([
                record.date.isoformat() if record.date else escape_csv_field(record.month),
                escape_csv_field(record.client_name),
                str(record.transcript_count),
                escape_csv_field(record.notes),
            ]))

        if options.include_predictions and data.predictions:
            lines += [
                '',
                '# Predictions Data',
                'Date,Client,Predicted Count,Confidence Lower,Confidence Upper,Model Type,Accuracy',
            ]
            for row in prediction_rows(data.predictions):
                accuracy = row['accuracy'] if row['accuracy'] is not None else 'N/A'
                lines.append(
                    f"{row['date']},{escape_csv_field(row['client'])},{row['predicted_count']},"
                    f"{row['lower']},{row['upper']},{row['model_type']},{accuracy}"
                )

        return '\n'.join(lines)

    # ------------------------------------------------------------------
    # PDF

    @staticmethod
    def _table(rows: List[List[Any]], font_size: int = 8) -> Table:
        table = Table(rows, repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#' + COLORS['header'])),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), font_size),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ]))
        return table

    def generate_pdf(self, data: AnalyticsData, options: ExportOptions, now: datetime) -> bytes:
        styles = getSampleStyleSheet()
        summary = data.summary
        output = io.BytesIO()
        doc = SimpleDocTemplate(output, pagesize=A4, title='Transcript Analytics Report')

        story = [
            Paragraph('Transcript Analytics Report', styles['Title']),
            Paragraph(f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}", styles['Normal']),
        ]
        if options.has_date_range:
            story.append(Paragraph(
                f"Date Range: {options.start.strftime('%Y-%m-%d')} to {options.end.strftime('%Y-%m-%d')}",
                styles['Normal']
            ))
        story.append(Spacer(1, 12))

        if options.include_analytics:
            story += [
                Paragraph('Summary Statistics', styles['Heading2']),
                Paragraph(f"Total Transcripts: {summary['total_transcripts']}", styles['Normal']),
                Paragraph(f"Average Per Day: {summary['average_per_day']:.2f}", styles['Normal']),
                Paragraph(
                    f"Peak Day: {summary['peak_day']['date']} ({summary['peak_day']['count']} transcripts)",
                    styles['Normal']
                ),
                Spacer(1, 12),
                Paragraph('Client Breakdown', styles['Heading3']),
            ]
            breakdown = [['Client', 'Count', 'Percentage']] + [
                [item['client'], str(item['count']), f"{item['percentage']:.1f}%"]
                for item in summary['client_breakdown']
            ]
            story += [self._table(breakdown, font_size=9), Spacer(1, 12)]

        transcripts = [['Date', 'Client', 'Count', 'Notes']] + [
            [
                record.date.isoformat() if record.date else record.month,
                record.client_name,
                str(record.transcript_count),
                truncate_notes(record.notes),
            ]
            for record in data.transcripts
        ]
        story += [Paragraph('Transcript Data', styles['Heading3']), self._table(transcripts)]

        if options.include_predictions and data.predictions:
            predictions = [['Date', 'Client', 'Predicted', 'Confidence', 'Model', 'Accuracy']] + [
                [
                    row['date'],
                    row['client'],
                    str(row['predicted_count']),
                    f"{row['lower']}-{row['upper']}",
                    row['model_type'],
                    f"{row['accuracy']:.3f}" if row['accuracy'] is not None else 'N/A',
                ]
                for row in prediction_rows(data.predictions)
            ]
            story += [Spacer(1, 12), Paragraph('Predictions Data', styles['Heading3']), self._table(predictions)]

        doc.build(story)
        return output.getvalue()

    # ------------------------------------------------------------------
    # Excel

    def generate_xlsx(self, data: AnalyticsData, options: ExportOptions, now: datetime) -> bytes:
        summary = data.summary
        sheets = {
            'Transcripts': pd.DataFrame(
                [
                    {
                        'Date': record.date.isoformat() if record.date else record.month,
                        'Client': record.client_name,
                        'Count': record.transcript_count,
                        'Notes': record.notes or '',
                    }
                    for record in data.transcripts
                ],
                columns=['Date', 'Client', 'Count', 'Notes']
            ),
        }

        if options.include_analytics:
            sheets['Summary'] = pd.DataFrame([
                {'Metric': 'Generated', 'Value': now.strftime('%Y-%m-%d %H:%M:%S')},
                {'Metric': 'Total Transcripts', 'Value': summary['total_transcripts']},
                {'Metric': 'Average Per Day', 'Value': round(summary['average_per_day'], 2)},
                {'Metric': 'Peak Day', 'Value': summary['peak_day']['date']},
                {'Metric': 'Peak Day Count', 'Value': summary['peak_day']['count']},
            ])
            sheets['Client Breakdown'] = pd.DataFrame(
                [
                    {'Client': i['client'], 'Count': i['count'], 'Percentage': round(i['percentage'], 1)}
                    for i in summary['client_breakdown']
                ],
                columns=['Client', 'Count', 'Percentage']
            )

        if options.include_predictions and data.predictions:
            sheets['Predictions'] = pd.DataFrame(prediction_rows(data.predictions))

        header_font = Font(bold=True, color='FFFFFF')
        header_fill = PatternFill(start_color=COLORS['header'], end_color=COLORS['header'], fill_type='solid')
        header_alignment = Alignment(horizontal='center', vertical='center')

        output = io.BytesIO()
        with pd.ExcelWriter(output, engine='openpyxl') as writer:
            for name, df in sheets.items():
                df.to_excel(writer, sheet_name=name, index=False)
                worksheet = writer.sheets[name]
                for col_idx, column in enumerate(df.columns, 1):
                    cell = worksheet.cell(row=1, column=col_idx)
                    cell.font = header_font
                    cell.fill = header_fill
                    cell.alignment = header_alignment
                    worksheet.column_dimensions[cell.column_letter].width = max(12, len(str(column)) + 4)

        return output.getvalue()

    # ------------------------------------------------------------------
    # Charts

    def create_chart(self, data: AnalyticsData) -> go.Figure:
        """Monthly totals with forecast bands, one line per client"""
        fig = go.Figure()

        df = pd.DataFrame(
            [{'date': r.date, 'client': r.client_name, 'count': r.transcript_count}
             for r in data.transcripts if r.date is not None],
            columns=['date', 'client', 'count']
        )
        for client, client_df in df.groupby('client'):
            client_df = client_df.sort_values('date')
            fig.add_trace(go.Scatter(
                x=client_df['date'], y=client_df['count'],
                mode='lines+markers', name=str(client),
            ))

        forecast = pd.DataFrame(prediction_rows(data.predictions))
        for client, client_df in (forecast.groupby('client') if not forecast.empty else []):
            fig.add_trace(go.Scatter(
                x=list(client_df['date']) + list(client_df['date'])[::-1],
                y=list(client_df['upper']) + list(client_df['lower'])[::-1],
                fill='toself', fillcolor=COLORS['band'], line={'width': 0},
                name=f'{client} confidence', showlegend=False,
            ))
            fig.add_trace(go.Scatter(
                x=client_df['date'], y=client_df['predicted_count'],
                mode='lines', name=f'{client} forecast',
                line={'color': COLORS['forecast'], 'dash': 'dash'},
            ))

        fig.update_layout(
            title={'text': '<b>Transcript Volume</b>', 'x': 0.5, 'xanchor': 'center'},
            xaxis_title='Month',
            yaxis_title='Transcripts',
            template='plotly_white',
        )
        return fig

    def save_chart(self, data: AnalyticsData, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.create_chart(data).write_html(str(path), include_plotlyjs=True, full_html=True)
        logger.info(f"Chart saved to: {path}")
        return path
