"""Main CLI interface for the transcript analytics platform

Provides command-line commands for:
- Managing transcript records and importing files
- Generating and comparing forecasts
- Exporting reports and scheduling recurring exports
- Synchronizing and checking data consistency
- Serving the HTTP API and checking system status
"""

import time

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
import pandas as pd

from transcript_analytics import __version__
from transcript_analytics.data.aggregators import filter_records
from transcript_analytics.data.factory import DataServiceFactory
from transcript_analytics.data.loaders import CONFLICT_STRATEGIES, TranscriptFileLoader, import_records
from transcript_analytics.data.models import TranscriptRecord, month_to_date, normalize_month
from transcript_analytics.data.validators import ensure_valid_record
from transcript_analytics.export.scheduler import ScheduleConfig, ScheduledExportService, FREQUENCIES
from transcript_analytics.export.service import EXPORT_FORMATS, ExportOptions, ExportService
from transcript_analytics.models import MODEL_TYPES
from transcript_analytics.prediction.service import PredictionRequest, PredictionService
from transcript_analytics.sync.service import CONFLICT_STRATEGIES as SYNC_STRATEGIES, SYNC_DIRECTIONS, SyncService
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.errors import PredictionValidationError
from transcript_analytics.utils.logging_config import get_logger, setup_logging_from_config


console = Console()
logger = get_logger(__name__)


def _context(ctx):
    """Lazily build config and data service for the invoked command"""
    obj = ctx.ensure_object(dict)
    if 'config' not in obj:
        config = ConfigLoader(obj.get('config_path', 'config/config.yaml'))
        setup_logging_from_config(config, level=obj.get('log_level'), console=obj.get('verbose', False))
        obj['config'] = config
        obj['data_service'] = DataServiceFactory.create_data_service(config)
    return obj['config'], obj['data_service']


def _fail(message: str, exc: Exception):
    console.print(f"\n[bold red]✗ Error:[/bold red] {exc}")
    logger.exception(message)
    raise click.Abort()


def _month_bounds(start, end):
    start_date = month_to_date(normalize_month(start)) if start else None
    end_date = None
    if end:
        end_date = (pd.Timestamp(month_to_date(normalize_month(end))) + pd.offsets.MonthEnd(0)).date()
    return start_date, end_date


@click.group()
@click.version_option(version=__version__, prog_name='Transcript Analytics Platform')
@click.option('--config', '-c', 'config_path', type=click.Path(), default='config/config.yaml',
              help='Path to configuration file')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']), default=None,
              help='Override logging.level')
@click.option('--verbose', '-v', is_flag=True, help='Also log to the console')
@click.pass_context
def cli(ctx, config_path, log_level, verbose):
    """
    Transcript Analytics Platform

    Monthly transcript volumes per client:
    - Storage in a workbook or a SQLite database
    - Per-client forecasts with confidence bands
    - CSV / PDF / Excel reports
    """
    ctx.ensure_object(dict)
    ctx.obj.update(config_path=config_path, log_level=log_level, verbose=verbose)


# ---------------------------------------------------------------------------
# Transcripts

@cli.group()
def transcripts():
    """List, add and delete transcript records"""


@transcripts.command('list')
@click.option('--client', multiple=True, help='Client name (repeatable)')
@click.option('--start', type=str, help='First month (YYYY-MM)')
@click.option('--end', type=str, help='Last month (YYYY-MM)')
@click.option('--limit', type=int, default=50, help='Maximum rows to show')
@click.pass_context
def list_transcripts(ctx, client, start, end, limit):
    """Show transcript records"""
    try:
        _, data_service = _context(ctx)
        start_date, end_date = _month_bounds(start, end)
        records = filter_records(data_service.fetch_transcripts(), start_date, end_date, list(client))
        records.sort(key=lambda r: (r.client_name, r.month))

        table = Table(title=f"Transcripts ({len(records)} records)", show_header=True, header_style="bold cyan")
        table.add_column("Client", style="cyan")
        table.add_column("Month", style="yellow")
        table.add_column("Count", justify="right", style="green")
        table.add_column("Notes", style="dim")

        for record in records[:limit]:
            table.add_row(record.client_name, record.month, f"{record.transcript_count:,}", record.notes or "")

        console.print(table)
        if len(records) > limit:
            console.print(f"[dim]… {len(records) - limit} more (use --limit)[/dim]")

    except Exception as e:
        _fail("Listing transcripts failed", e)


@transcripts.command('add')
@click.argument('client_name')
@click.argument('month')
@click.argument('count', type=int)
@click.option('--notes', type=str, default=None, help='Free-text notes')
@click.pass_context
def add_transcript(ctx, client_name, month, count, notes):
    """
    Add or overwrite the record for CLIENT_NAME and MONTH

    Examples:
      transcript-analytics transcripts add "Acme Corp" 2024-03 1250
    """
    try:
        _, data_service = _context(ctx)
        record = ensure_valid_record(TranscriptRecord(
            client_name=client_name.strip(), month=month, transcript_count=count, notes=notes
        ))
        stored = data_service.add_transcript(record)
        console.print(f"[bold green]✓ Saved[/bold green] {stored.client_name} {stored.month}: {stored.transcript_count:,}")

    except Exception as e:
        _fail("Adding transcript failed", e)


@transcripts.command('delete')
@click.argument('client_name')
@click.argument('month')
@click.pass_context
def delete_transcript(ctx, client_name, month):
    """Delete the record for CLIENT_NAME and MONTH"""
    try:
        _, data_service = _context(ctx)
        data_service.delete_transcript(client_name, normalize_month(month))
        console.print(f"[bold green]✓ Deleted[/bold green] {client_name} {month}")

    except Exception as e:
        _fail("Deleting transcript failed", e)


@cli.command('import')
@click.argument('file_path', type=click.Path(exists=True))
@click.option('--conflict', type=click.Choice(CONFLICT_STRATEGIES), default='replace',
              help='What to do with existing (client, month) records')
@click.option('--dry-run', is_flag=True, help='Parse and validate only')
@click.pass_context
def import_file(ctx, file_path, conflict, dry_run):
    """
    Import transcript records from a CSV or Excel file

    Required columns: client name, month (YYYY-MM or a date), transcript count.
    """
    console.print(Panel.fit("[bold cyan]Transcript Analytics - Import[/bold cyan]", border_style="cyan"))

    try:
        _, data_service = _context(ctx)
        result = TranscriptFileLoader().load_file(file_path)
        console.print(f"\n[yellow]Parsed {result.total_rows} rows, {len(result.records)} valid[/yellow]")

        if not dry_run:
            result = import_records(data_service, result, conflict_resolution=conflict)

        table = Table(title="Import Result", show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right", style="green")
        for key in ('total_rows', 'success_count', 'error_count', 'duplicate_count', 'skipped_count'):
            table.add_row(key.replace('_', ' ').title(), str(getattr(result, key)))
        console.print(table)

        for error in result.errors[:10]:
            console.print(f"  [red]Row {error['row']}[/red] {error['field']}: {error['message']}")

    except Exception as e:
        _fail("Import failed", e)


@cli.command()
@click.pass_context
def clients(ctx):
    """List clients"""
    try:
        _, data_service = _context(ctx)
        table = Table(title="Clients", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        for client in data_service.get_clients():
            table.add_row(str(client.id), client.name)
        console.print(table)

    except Exception as e:
        _fail("Listing clients failed", e)


# ---------------------------------------------------------------------------
# Predictions

@cli.command()
@click.option('--client', type=str, default=None, help='Client name (default: all clients combined)')
@click.option('--periods', '-p', type=int, default=6, help='Periods to forecast')
@click.option('--model', type=click.Choice(MODEL_TYPES), default=None, help='Model to use')
@click.option('--type', 'prediction_type', type=click.Choice(['daily', 'weekly', 'monthly']), default=None,
              help='Forecast granularity')
@click.option('--confidence', type=float, default=None, help='Confidence level (0.5-0.99)')
@click.option('--save', is_flag=True, help='Store the forecast in the data source')
@click.option('--output', '-o', type=click.Path(), help='Write the forecast to CSV')
@click.pass_context
def predict(ctx, client, periods, model, prediction_type, confidence, save, output):
    """
    Forecast transcript volumes

    Examples:
      transcript-analytics predict --client "Acme Corp" --periods 6
      transcript-analytics predict --model arima --periods 12 -o forecast.csv
    """
    console.print(Panel.fit("[bold cyan]Transcript Analytics - Forecast[/bold cyan]", border_style="cyan"))

    try:
        config, data_service = _context(ctx)
        service = PredictionService(config, data_service=data_service)
        request = PredictionRequest(
            client_name=client,
            prediction_type=prediction_type or config.get('prediction.default_type', 'monthly'),
            periods_ahead=periods,
            model_type=model or config.get('prediction.default_model', 'neural'),
            confidence_level=confidence or config.get('prediction.default_confidence', 0.95),
        )

        console.print(f"\n[yellow]Training {request.model_type} model...[/yellow]")
        result, validation = service.generate_predictions(
            data_service.fetch_transcripts(), request, persist=save
        )

        for warning in validation.warnings:
            console.print(f"[yellow]⚠️  {warning}[/yellow]")

        table = Table(
            title=f"{result.client_name} - {result.model_type} ({result.confidence:.0%} CI)",
            show_header=True, header_style="bold cyan"
        )
        table.add_column("Date", style="cyan")
        table.add_column("Predicted", justify="right", style="green")
        table.add_column("Lower", justify="right", style="dim")
        table.add_column("Upper", justify="right", style="dim")
        for point in result.predictions:
            table.add_row(
                pd.Timestamp(point['date']).strftime('%Y-%m-%d'),
                f"{point['predicted_count']:,}", f"{point['lower']:,}", f"{point['upper']:,}"
            )
        console.print(table)
        console.print(f"In-sample accuracy: [bold]{result.accuracy:.1f}%[/bold]")

        if output:
            pd.DataFrame(result.predictions).to_csv(output, index=False)
            console.print(f"\n[green]✓ Forecast saved to: {output}[/green]")

    except PredictionValidationError as e:
        console.print("\n[bold red]✗ Validation Failed[/bold red]")
        for error in e.errors:
            console.print(f"  [red]{error}[/red]")
        logger.error(f"Prediction validation failed: {e}")
        raise click.Abort()

    except Exception as e:
        _fail("Prediction failed", e)


@cli.command()
@click.option('--client', type=str, default=None, help='Client name')
@click.option('--periods', '-p', type=int, default=6, help='Periods to forecast')
@click.option('--models', type=str, default='neural,linear,polynomial,arima',
              help='Comma-separated model types')
@click.pass_context
def compare(ctx, client, periods, models):
    """Rank models on a 80/20 hold-out split"""
    console.print(Panel.fit("[bold cyan]Transcript Analytics - Model Comparison[/bold cyan]", border_style="cyan"))

    try:
        config, data_service = _context(ctx)
        service = PredictionService(config)
        request = PredictionRequest(client_name=client, periods_ahead=periods)
        comparison = service.compare_models(
            data_service.fetch_transcripts(), request, [m.strip() for m in models.split(',') if m.strip()]
        )

        table = Table(title="Hold-out Results", show_header=True, header_style="bold cyan")
        table.add_column("Model", style="cyan")
        table.add_column("Accuracy", justify="right", style="green")
        table.add_column("MAPE", justify="right")
        table.add_column("RMSE", justify="right")
        for model_type, entry in comparison['results'].items():
            metrics = entry['metrics']
            marker = " ★" if model_type == comparison['best_model'] else ""
            table.add_row(
                model_type + marker, f"{metrics['accuracy']:.1f}%",
                f"{metrics['mape']:.2f}%", f"{metrics['rmse']:,.1f}"
            )
        console.print(table)
        console.print(f"\n[bold]Best model:[/bold] {comparison['best_model']}")
        console.print(f"[dim]{comparison['recommendation']}[/dim]")

    except Exception as e:
        _fail("Model comparison failed", e)


@cli.command()
@click.option('--client', type=str, default=None, help='Client name')
@click.option('--model', type=click.Choice(MODEL_TYPES), default='neural', help='Model to evaluate')
@click.option('--split', type=float, default=None, help='Validation fraction (default: prediction.test_split)')
@click.pass_context
def evaluate(ctx, client, model, split):
    """Train on the leading history and score on the held-out tail"""
    try:
        config, data_service = _context(ctx)
        service = PredictionService(config)
        report = service.train_and_validate_model(
            data_service.fetch_transcripts(),
            PredictionRequest(client_name=client, model_type=model),
            validation_split=split or config.get('prediction.test_split', 0.2),
        )

        table = Table(title=f"{model} evaluation", show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Training", justify="right")
        table.add_column("Validation", justify="right", style="green")
        for key in ('accuracy', 'mape', 'mae', 'rmse', 'r2'):
            table.add_row(
                key.upper(),
                f"{report['training_metrics'].get(key, float('nan')):.2f}",
                f"{report['validation_metrics'].get(key, float('nan')):.2f}",
            )
        console.print(table)
        console.print(f"Cross-validation accuracy: [bold]{report['cross_validation_score']:.1f}%[/bold]")

    except Exception as e:
        _fail("Evaluation failed", e)


# ---------------------------------------------------------------------------
# Export

@cli.command()
@click.argument('fmt', type=click.Choice(EXPORT_FORMATS))
@click.option('--start', type=click.DateTime(formats=['%Y-%m-%d']), help='Range start (YYYY-MM-DD)')
@click.option('--end', type=click.DateTime(formats=['%Y-%m-%d']), help='Range end (YYYY-MM-DD)')
@click.option('--client', multiple=True, help='Client name (repeatable)')
@click.option('--analytics/--no-analytics', default=True, help='Include summary and breakdown')
@click.option('--predictions', is_flag=True, help='Include stored predictions')
@click.option('--chart', is_flag=True, help='Also write an HTML chart')
@click.option('--output-dir', '-o', type=click.Path(), default=None, help='Output directory')
@click.pass_context
def export(ctx, fmt, start, end, client, analytics, predictions, chart, output_dir):
    """Export transcripts as FMT (csv, pdf or xlsx)"""
    try:
        config, data_service = _context(ctx)
        service = ExportService()
        options = ExportOptions(
            format=fmt,
            start=start.date() if start else None,
            end=end.date() if end else None,
            clients=list(client),
            include_analytics=analytics,
            include_predictions=predictions,
            include_charts=chart,
        )
        stored = data_service.get_predictions() if predictions else None
        data = service.prepare_analytics_data(data_service.fetch_transcripts(), options, stored)
        result = service.export_data(data, options)
        if not result.success:
            raise RuntimeError(result.error)

        target_dir = output_dir or config.get_path('export.output_dir', 'outputs/exports')
        path = result.save(target_dir)
        console.print(f"[bold green]✓ Exported[/bold green] {len(data.transcripts)} records to {path}")

        if chart:
            chart_path = service.save_chart(data, path.with_suffix('.html'))
            console.print(f"[green]✓ Chart saved to: {chart_path}[/green]")

    except Exception as e:
        _fail("Export failed", e)


@cli.group()
def schedule():
    """Manage recurring exports"""


def _scheduler(ctx) -> ScheduledExportService:
    config, data_service = _context(ctx)
    service = ScheduledExportService(data_service, config=config)
    service.load()
    return service


@schedule.command('add')
@click.argument('name')
@click.option('--frequency', type=click.Choice(FREQUENCIES), default='daily')
@click.option('--time', 'run_time', type=str, default='09:00', help='HH:MM')
@click.option('--day-of-week', type=int, default=None, help='0 = Sunday … 6 = Saturday')
@click.option('--day-of-month', type=int, default=None, help='1-31')
@click.option('--timezone', type=str, default='UTC')
@click.option('--format', 'fmt', type=click.Choice(EXPORT_FORMATS), default='csv')
@click.option('--client', multiple=True, help='Client name (repeatable)')
@click.pass_context
def schedule_add(ctx, name, frequency, run_time, day_of_week, day_of_month, timezone, fmt, client):
    """Add a recurring export called NAME"""
    try:
        service = _scheduler(ctx)
        export_id = service.create_scheduled_export(
            name=name,
            schedule=ScheduleConfig(
                frequency=frequency, time=run_time, day_of_week=day_of_week,
                day_of_month=day_of_month, timezone=timezone,
            ),
            export_options=ExportOptions(format=fmt, clients=list(client)),
        )
        service.save()
        scheduled = service.get_scheduled_export(export_id)
        console.print(f"[bold green]✓ Scheduled[/bold green] {export_id}, next run {scheduled.next_run:%Y-%m-%d %H:%M %Z}")

    except Exception as e:
        _fail("Scheduling export failed", e)


@schedule.command('list')
@click.pass_context
def schedule_list(ctx):
    """Show recurring exports"""
    try:
        service = _scheduler(ctx)
        table = Table(title="Scheduled Exports", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Frequency")
        table.add_column("Format")
        table.add_column("Next Run", style="green")
        table.add_column("Last Run", style="dim")
        for scheduled in service.get_scheduled_exports():
            table.add_row(
                scheduled.id, scheduled.name,
                f"{scheduled.schedule.frequency} {scheduled.schedule.time}",
                scheduled.export_options.format,
                f"{scheduled.next_run:%Y-%m-%d %H:%M}" if scheduled.next_run else "-",
                f"{scheduled.last_run:%Y-%m-%d %H:%M}" if scheduled.last_run else "-",
            )
        console.print(table)

    except Exception as e:
        _fail("Listing scheduled exports failed", e)


@schedule.command('run')
@click.option('--id', 'export_id', type=str, default=None, help='Run this export now')
@click.option('--watch', is_flag=True, help='Keep polling until interrupted')
@click.pass_context
def schedule_run(ctx, export_id, watch):
    """Run due exports (or one export immediately)"""
    try:
        service = _scheduler(ctx)

        if watch:
            service.start()
            console.print("[cyan]Scheduler running, press Ctrl+C to stop[/cyan]")
            try:
                while service.is_running:
                    time.sleep(1.0)
            except KeyboardInterrupt:
                service.stop()
            service.save()
            return

        results = [service.execute_scheduled_export(export_id)] if export_id else service.run_pending()
        service.save()

        if not results:
            console.print("[dim]No exports due[/dim]")
        for result in results:
            if result.success:
                console.print(f"[green]✓ {result.export_id}[/green] → {result.path}")
            else:
                console.print(f"[red]✗ {result.export_id}[/red] {result.error}")

    except Exception as e:
        _fail("Running scheduled exports failed", e)


# ---------------------------------------------------------------------------
# Sync & consistency

@cli.command()
@click.option('--direction', type=click.Choice(SYNC_DIRECTIONS), default=None)
@click.option('--resolution', type=click.Choice(SYNC_STRATEGIES), default=None,
              help='Conflict resolution for bidirectional sync')
@click.option('--no-validate', is_flag=True, help='Do not skip invalid records')
@click.pass_context
def sync(ctx, direction, resolution, no_validate):
    """Synchronize the local copy with the data source"""
    try:
        config, data_service = _context(ctx)
        result = SyncService(data_service, config=config).background_sync(
            direction=direction, validate_data=not no_validate, conflict_resolution=resolution
        )

        status = "[bold green]✓ Sync complete[/bold green]" if result.success else "[bold red]✗ Sync failed[/bold red]"
        console.print(status)
        console.print(
            f"Processed {result.processed}, added {result.added}, updated {result.updated}, "
            f"skipped {result.skipped}, conflicts {len(result.conflicts)}"
        )
        for message in result.warnings:
            console.print(f"  [yellow]⚠️  {message}[/yellow]")
        for message in result.errors:
            console.print(f"  [red]{message}[/red]")

    except Exception as e:
        _fail("Sync failed", e)


@cli.command()
@click.option('--repair', is_flag=True, help='Auto-repair what can be repaired')
@click.pass_context
def check(ctx, repair):
    """Check consistency between the data source and the local copy"""
    try:
        config, data_service = _context(ctx)
        service = SyncService(data_service, config=config)
        report = service.validate_data_consistency()

        if report.is_consistent:
            console.print(f"[bold green]✓ {report.total_records} records consistent[/bold green]")
            return

        table = Table(title=f"{len(report.issues)} issues", show_header=True, header_style="bold cyan")
        table.add_column("Type", style="cyan")
        table.add_column("Severity")
        table.add_column("Record", style="dim")
        table.add_column("Description")
        for issue in report.issues:
            table.add_row(issue.type, issue.severity, issue.record_id, issue.description)
        console.print(table)

        if repair:
            result = service.repair_data_inconsistencies(report)
            console.print(
                f"\nRepaired [green]{result.repaired_issues}[/green], "
                f"not repaired [yellow]{result.failed_repairs}[/yellow]"
            )

    except Exception as e:
        _fail("Consistency check failed", e)


# ---------------------------------------------------------------------------
# Server & status

@cli.command()
@click.option('--host', type=str, default=None, help='Bind address (default: api.host)')
@click.option('--port', type=int, default=None, help='Port (default: api.port)')
@click.pass_context
def serve(ctx, host, port):
    """Serve the HTTP API with uvicorn"""
    import uvicorn

    from transcript_analytics.api.app import create_app

    try:
        config, data_service = _context(ctx)
        app = create_app(config, data_service)
        uvicorn.run(app, host=host or config.get('api.host', '127.0.0.1'), port=port or config.get('api.port', 8000))

    except Exception as e:
        _fail("Server failed", e)


@cli.command()
@click.pass_context
def status(ctx):
    """Show data source and configuration status"""
    console.print(Panel.fit("[bold cyan]Transcript Analytics - System Status[/bold cyan]", border_style="cyan"))

    try:
        config, data_service = _context(ctx)

        console.print("\n[bold]Data source:[/bold]")
        if data_service.health_check():
            records = data_service.fetch_transcripts()
            clients_count = len({r.client_name for r in records})
            console.print(f"  [green]✓[/green] {data_service.source_type} ({len(records)} records, {clients_count} clients)")
        else:
            console.print(f"  [red]✗[/red] {data_service.source_type} unavailable")

        console.print("\n[bold]Configuration:[/bold]")
        console.print(f"  Config file:   {config.config_path}")
        console.print(f"  Default model: {config.get('prediction.default_model', 'neural')}")
        console.print(f"  Cache TTL:     {config.get('cache.ttl_seconds', 3600)}s")
        console.print(f"  Export dir:    {config.get_path('export.output_dir', 'outputs/exports')}")

    except Exception as e:
        _fail("Status check failed", e)


if __name__ == '__main__':
    cli()
