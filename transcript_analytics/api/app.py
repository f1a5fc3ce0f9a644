"""HTTP API for transcripts, analytics, predictions, exports and sync"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from transcript_analytics import __version__
from transcript_analytics.data.aggregators import DataAggregator, filter_records
from transcript_analytics.data.base import DataService
from transcript_analytics.data.factory import DataServiceFactory
from transcript_analytics.data.models import TranscriptRecord, month_to_date, normalize_month
from transcript_analytics.data.validators import validate_record_fields
from transcript_analytics.export.service import EXPORT_FORMATS, ExportOptions, ExportService
from transcript_analytics.prediction.service import PredictionRequest, PredictionService
from transcript_analytics.sync.service import SyncService
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.errors import (
    PredictionValidationError,
    RecordNotFoundError,
    RecordValidationError,
    SyncInProgressError,
)
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


# ---------------- Request bodies ---------------

class TranscriptIn(BaseModel):
    client_name: str
    month: str
    transcript_count: int
    notes: Optional[str] = None


class TranscriptUpdate(BaseModel):
    transcript_count: Optional[int] = None
    notes: Optional[str] = None


class PredictionIn(BaseModel):
    client_name: Optional[str] = None
    prediction_type: str = 'monthly'
    periods_ahead: int = 6
    model_type: str = 'neural'
    confidence_level: Optional[float] = 0.95


class ExportIn(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None
    clients: List[str] = Field(default_factory=list)
    include_analytics: bool = True
    include_predictions: bool = False


class SyncIn(BaseModel):
    direction: Optional[str] = None
    conflict_resolution: Optional[str] = None
    validate_data: bool = True


class RepairIn(BaseModel):
    strategy: str = 'auto'


# ---------------- Services ---------------

@dataclass
class Services:
    config: ConfigLoader
    data_service: DataService
    predictions: PredictionService
    sync: SyncService
    exports: ExportService
    aggregator: DataAggregator


def build_services(config: ConfigLoader, data_service: Optional[DataService] = None) -> Services:
    data_service = data_service if data_service else DataServiceFactory.get_instance(config)
    aggregator = DataAggregator()
    return Services(
        config=config,
        data_service=data_service,
        predictions=PredictionService(config, data_service=data_service),
        sync=SyncService(data_service, config=config),
        exports=ExportService(aggregator),
        aggregator=aggregator,
    )


def get_services(request: Request) -> Services:
    services = request.app.state.services
    if services is None:
        services = build_services(request.app.state.config)
        request.app.state.services = services
    return services


def _month_start(value: Optional[str]) -> Optional[date]:
    return month_to_date(normalize_month(value)) if value else None


def _month_end(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    first = month_to_date(normalize_month(value))
    return first.replace(day=calendar.monthrange(first.year, first.month)[1])


def _split_clients(clients: Optional[str]) -> List[str]:
    return [c.strip() for c in (clients or '').split(',') if c.strip()]


def create_app(config: Optional[ConfigLoader] = None, data_service: Optional[DataService] = None) -> FastAPI:
    """
    Build the API application

    Args:
        config: Configuration loader (defaults to config/config.yaml)
        data_service: Backend to use (built from config on first request when omitted)

    Returns:
        FastAPI application
    """
    config = config if config else ConfigLoader()
    app = FastAPI(title="Transcript Analytics API", version=__version__)
    app.state.config = config
    app.state.services = build_services(config, data_service) if data_service else None

    default_page_size = int(config.get('api.default_page_size', 50))
    max_page_size = int(config.get('api.max_page_size', 500))

    # ---------------- Error handling ---------------

    @app.exception_handler(RecordNotFoundError)
    async def _not_found(request: Request, exc: RecordNotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(PredictionValidationError)
    async def _prediction_invalid(request: Request, exc: PredictionValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Validation failed", "details": exc.errors, "warnings": exc.warnings},
        )

    @app.exception_handler(RecordValidationError)
    async def _record_invalid(request: Request, exc: RecordValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(SyncInProgressError)
    async def _sync_busy(request: Request, exc: SyncInProgressError):
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def _bad_value(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def _internal(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # ---------------- Health ---------------

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now().isoformat(),
            "data_source": config.get('data_source.type', 'workbook'),
        }

    @app.get("/health/database")
    def health_database(services: Services = Depends(get_services)):
        available = services.data_service.health_check()
        body = {
            "status": "healthy" if available else "unhealthy",
            "source": services.data_service.source_type,
            "available": available,
        }
        return JSONResponse(status_code=200 if available else 503, content=body)

    # ---------------- Transcripts ---------------

    @app.get("/transcripts")
    def list_transcripts(
        client: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        page: int = Query(1, ge=1),
        limit: int = Query(default_page_size, ge=1, le=max_page_size),
        services: Services = Depends(get_services),
    ):
        records = filter_records(
            services.data_service.fetch_transcripts(),
            _month_start(start), _month_end(end), _split_clients(client),
        )
        records.sort(key=lambda r: (r.client_name, r.month))

        total = len(records)
        offset = (page - 1) * limit
        return {
            "data": [r.to_dict() for r in records[offset:offset + limit]],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    @app.post("/transcripts", status_code=201)
    def create_transcript(body: TranscriptIn, services: Services = Depends(get_services)):
        errors = validate_record_fields(body.client_name, body.month, body.transcript_count, body.notes)
        if errors:
            return JSONResponse(status_code=400, content={"error": "Validation failed", "details": errors})

        record = services.data_service.add_transcript(TranscriptRecord(
            client_name=body.client_name.strip(),
            month=body.month,
            transcript_count=body.transcript_count,
            notes=body.notes,
        ))
        services.predictions.invalidate_cache(record.client_name)
        return {"data": record.to_dict()}

    @app.put("/transcripts/{client}/{month}")
    def update_transcript(client: str, month: str, body: TranscriptUpdate,
                          services: Services = Depends(get_services)):
        if body.transcript_count is None and body.notes is None:
            return JSONResponse(status_code=400, content={"error": "No fields to update"})
        if body.transcript_count is not None and body.transcript_count < 0:
            return JSONResponse(status_code=400, content={
                "error": "Validation failed",
                "details": [{"field": "transcript_count", "value": body.transcript_count,
                             "message": "Transcript count must be non-negative"}],
            })

        month = normalize_month(month)
        services.data_service.update_transcript(
            client, month, transcript_count=body.transcript_count, notes=body.notes
        )
        services.predictions.invalidate_cache(client)
        return {"success": True, "client_name": client, "month": month}

    @app.delete("/transcripts/{client}/{month}")
    def delete_transcript(client: str, month: str, services: Services = Depends(get_services)):
        month = normalize_month(month)
        services.data_service.delete_transcript(client, month)
        services.predictions.invalidate_cache(client)
        return {"success": True, "client_name": client, "month": month}

    @app.get("/clients")
    def list_clients(services: Services = Depends(get_services)):
        return {"data": [c.to_dict() for c in services.data_service.get_clients()]}

    # ---------------- Analytics ---------------

    @app.get("/analytics/summary")
    def analytics_summary(
        start: Optional[str] = None,
        end: Optional[str] = None,
        clients: Optional[str] = None,
        services: Services = Depends(get_services),
    ):
        options = ExportOptions(start=_month_start(start), end=_month_end(end), clients=_split_clients(clients))
        data = services.exports.prepare_analytics_data(services.data_service.fetch_transcripts(), options)
        return {
            "data": {
                **data.summary,
                "statistics": services.aggregator.calculate_statistical_summary(data.transcripts),
            }
        }

    @app.get("/analytics/trends")
    def analytics_trends(
        client: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        services: Services = Depends(get_services),
    ):
        records = filter_records(
            services.data_service.fetch_transcripts(),
            _month_start(start), _month_end(end), _split_clients(client),
        )
        return {"data": services.aggregator.calculate_trend_analytics(records)}

    @app.get("/analytics/predictions")
    def stored_predictions(
        client: Optional[str] = None,
        model_type: Optional[str] = None,
        services: Services = Depends(get_services),
    ):
        return {"data": services.data_service.get_predictions(client, model_type)}

    @app.post("/analytics/predictions")
    def create_predictions(body: PredictionIn, services: Services = Depends(get_services)):
        request = PredictionRequest(**body.model_dump())
        result, validation = services.predictions.generate_predictions(
            services.data_service.fetch_transcripts(), request, persist=True
        )
        return {"data": result.to_dict(), "warnings": validation.warnings}

    # ---------------- Export ---------------

    @app.post("/export/{fmt}")
    def export(fmt: str, body: Optional[ExportIn] = None, services: Services = Depends(get_services)):
        if fmt not in EXPORT_FORMATS:
            return JSONResponse(
                status_code=400,
                content={"error": f"Unsupported export format '{fmt}'. Must be one of: {', '.join(EXPORT_FORMATS)}"},
            )

        body = body or ExportIn()
        options = ExportOptions(
            format=fmt,
            start=body.start,
            end=body.end,
            clients=body.clients,
            include_analytics=body.include_analytics,
            include_predictions=body.include_predictions,
        )
        predictions = services.data_service.get_predictions() if options.include_predictions else None
        data = services.exports.prepare_analytics_data(
            services.data_service.fetch_transcripts(), options, predictions
        )
        result = services.exports.export_data(data, options)
        if not result.success:
            logger.error(f"Export failed: {result.error}")
            return JSONResponse(status_code=500, content={"error": "Export failed", "details": result.error})

        return Response(
            content=result.data,
            media_type=result.mime_type,
            headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
        )

    # ---------------- Sync & consistency ---------------

    @app.post("/sync")
    def sync(body: Optional[SyncIn] = None, services: Services = Depends(get_services)):
        body = body or SyncIn()
        result = services.sync.background_sync(
            direction=body.direction,
            validate_data=body.validate_data,
            conflict_resolution=body.conflict_resolution,
        )
        return JSONResponse(status_code=200 if result.success else 502, content={"data": result.to_dict()})

    @app.get("/sync/status")
    def sync_status(services: Services = Depends(get_services)):
        return {"data": services.sync.get_sync_status()}

    @app.get("/consistency")
    def consistency(services: Services = Depends(get_services)):
        return {"data": services.sync.validate_data_consistency().to_dict()}

    @app.post("/consistency/repair")
    def consistency_repair(body: Optional[RepairIn] = None, services: Services = Depends(get_services)):
        body = body or RepairIn()
        report = services.sync.validate_data_consistency()
        result = services.sync.consistency.repair_consistency_issues(report.issues, strategy=body.strategy)
        return {"data": result.to_dict(), "issues_found": len(report.issues)}

    return app
