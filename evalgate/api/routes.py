"""FastAPI routes for sessions, escalation decisions, evaluations and trends."""

from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, PlainTextResponse
import structlog

from evalgate import __version__
from evalgate.api.dependencies import Services, get_services
from evalgate.api.schemas import (
    DecisionRequest,
    DegradationResponse,
    EvaluationRunRequest,
    EvaluationRunResponse,
    EventAppendRequest,
    HealthResponse,
    SessionCreateRequest,
    TrendResponse,
)
from evalgate.db.database import transaction
from evalgate.db.repositories import ReportRepository
from evalgate.errors import DuplicateSessionError, InvalidOrderError, NotFoundError
from evalgate.evaluation.dataset import Dataset
from evalgate.models.common import utc_now
from evalgate.models.evaluation import DatasetKind, DegradationPolicy, EvaluationReport
from evalgate.models.events import Event, Session, SessionRecord
from evalgate.models.scoring import EscalationDecision
from evalgate.reporting.visualization import VisualizationGenerator

logger = structlog.get_logger()
router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(timestamp=utc_now(), version=__version__)


# ============================================
# Sessions & events
# ============================================

@router.post("/sessions", response_model=Session, status_code=201)
async def create_session(
    request: SessionCreateRequest,
    services: Services = Depends(get_services),
):
    """Open a session and record its captured input."""
    try:
        return await services.store.create_session(
            request.input_payload,
            session_id=request.session_id,
            created_at=request.created_at,
        )
    except DuplicateSessionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/sessions/{session_id}/events", response_model=Event, status_code=201)
async def append_event(
    session_id: str,
    request: EventAppendRequest,
    services: Services = Depends(get_services),
):
    """Append a lifecycle event. Out-of-order timestamps are rejected, never reordered."""
    try:
        return await services.store.append(
            session_id,
            request.event_type,
            request.payload,
            timestamp=request.timestamp,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidOrderError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/sessions/{session_id}", response_model=SessionRecord)
async def get_session(
    session_id: str,
    services: Services = Depends(get_services),
):
    """Session with its ordered events and folded state."""
    try:
        return await services.store.get_session_record(session_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/sessions/{session_id}/decision", response_model=EscalationDecision)
async def decide_session(
    session_id: str,
    request: DecisionRequest,
    services: Services = Depends(get_services),
):
    """Run a scored output through the escalation gate and record the decision."""
    try:
        return await services.gate.process(session_id, request.scored_output, request.category)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidOrderError as e:
        raise HTTPException(status_code=409, detail=str(e))


# ============================================
# Evaluations & reports
# ============================================

def _resolve_reference_path(reference_path: str, reference_dir: str) -> Path:
    base = Path(reference_dir).resolve()
    path = (base / reference_path).resolve()
    if not path.is_relative_to(base):
        raise HTTPException(status_code=422, detail="reference_path must name a file inside the reference directory")
    return path


async def _load_dataset(request: EvaluationRunRequest, services: Services) -> Dataset:
    if request.source == DatasetKind.REFERENCE:
        path = _resolve_reference_path(request.reference_path, services.settings.reference_dir)
        if not path.is_file():
            raise HTTPException(status_code=404, detail=f"Reference dataset not found: {request.reference_path}")
        try:
            return Dataset.from_file(path, dataset_id=request.dataset_id)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=f"Invalid reference dataset {request.reference_path}: {e}")

    sample_size = request.sample_size or services.settings.live_sample_size
    sessions = await services.store.sample_live(
        request.window_start,
        request.window_end,
        sample_size,
        request.seed,
    )
    return Dataset.from_sessions(
        sessions,
        window_start=request.window_start,
        window_end=request.window_end,
        seed=request.seed,
        dataset_id=request.dataset_id,
    )


@router.post("/evaluations/run", response_model=EvaluationRunResponse)
async def run_evaluation(
    request: EvaluationRunRequest,
    services: Services = Depends(get_services),
):
    """
    Run evaluators against a reference set or a live sample.

    Failed evaluators are listed in the report; the run itself still succeeds.
    """
    dataset = await _load_dataset(request, services)

    try:
        result = await services.runner.run(
            dataset,
            evaluator_names=request.evaluators,
            system_version=request.system_version,
            per_evaluator_timeout=request.timeout_seconds,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    report = services.reports.build_report(result)
    async with transaction(services.session_factory) as db:
        await ReportRepository(db).save(report)

    metric_names = sorted({name for ms in result.metric_sets for name in ms.metrics})
    alerts = await services.aggregator.check_alerts(
        metric_names,
        dataset.dataset_id,
        services.settings.degradation_policy(),
    )

    return EvaluationRunResponse(
        report=report,
        partial=result.is_partial,
        alerts=[a.model_dump(mode="json") for a in alerts],
    )


async def _get_report(run_id: str, services: Services) -> EvaluationReport:
    async with transaction(services.session_factory) as db:
        report = await ReportRepository(db).get(run_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report not found: {run_id}")
    return report


@router.get("/reports/{run_id}", response_model=EvaluationReport)
async def get_report(run_id: str, services: Services = Depends(get_services)):
    """Stored evaluation report."""
    return await _get_report(run_id, services)


@router.get("/reports/{run_id}/markdown", response_class=PlainTextResponse)
async def get_report_markdown(run_id: str, services: Services = Depends(get_services)):
    report = await _get_report(run_id, services)
    return PlainTextResponse(content=services.reports.to_markdown(report))


@router.get("/reports/{run_id}/html", response_class=HTMLResponse)
async def get_report_html(
    run_id: str,
    window_count: int = Query(default=20, ge=1),
    services: Services = Depends(get_services),
):
    """Full HTML report for a run, with trend charts for each of its metrics."""
    report = await _get_report(run_id, services)
    policy = services.settings.degradation_policy()

    trends = {}
    degraded = set()
    for metric_name in sorted({m.metric_name for m in report.metrics}):
        trends[metric_name] = await services.aggregator.trend(metric_name, report.dataset_id, window_count)
        if await services.aggregator.detect_degradation(metric_name, report.dataset_id, policy):
            degraded.add(metric_name)

    viz = VisualizationGenerator()
    return HTMLResponse(content=viz.generate_full_report(report, trends, degraded))


# ============================================
# Trends
# ============================================

@router.get("/trends/{metric_name}", response_model=TrendResponse)
async def get_trend(
    metric_name: str,
    dataset_id: str = Query(...),
    window_count: int = Query(default=10, ge=1),
    services: Services = Depends(get_services),
):
    """Most recent trend records for a metric, oldest first."""
    records = await services.aggregator.trend(metric_name, dataset_id, window_count)
    return TrendResponse(
        metric_name=metric_name,
        dataset_id=dataset_id,
        records=records,
        summary=services.reports.trend_summary(records, metric_name, dataset_id),
    )


@router.get("/trends/{metric_name}/degradation", response_model=DegradationResponse)
async def get_degradation(
    metric_name: str,
    dataset_id: str = Query(...),
    percentile: Optional[float] = Query(default=None, gt=0, lt=100),
    trailing_windows: Optional[int] = Query(default=None, ge=1),
    higher_is_better: bool = Query(default=True),
    services: Services = Depends(get_services),
):
    """Check the latest window against the configured (or supplied) degradation policy."""
    defaults = services.settings.degradation_policy()
    policy = DegradationPolicy(
        percentile=percentile or defaults.percentile,
        trailing_windows=trailing_windows or defaults.trailing_windows,
        higher_is_better=higher_is_better,
        min_history=min(defaults.min_history, trailing_windows or defaults.trailing_windows),
    )
    degraded = await services.aggregator.detect_degradation(metric_name, dataset_id, policy)
    return DegradationResponse(
        metric_name=metric_name,
        dataset_id=dataset_id,
        degraded=degraded,
        percentile=policy.percentile,
        trailing_windows=policy.trailing_windows,
    )
