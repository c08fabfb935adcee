"""Concurrent, isolated execution of registered evaluators against a dataset."""

import asyncio
import functools
import inspect
import math
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Mapping

import structlog

from evalgate.config import get_settings
from evalgate.evaluation.dataset import Dataset
from evalgate.evaluation.registry import EvaluatorRegistry, RegisteredEvaluator
from evalgate.models.common import utc_now
from evalgate.models.evaluation import (
    EvaluatorFailure,
    FailureKind,
    MetricSet,
    PartialFailureReport,
    RunResult,
)

if TYPE_CHECKING:
    from evalgate.reporting.aggregation import TrendAggregator

logger = structlog.get_logger()


class InvalidEvaluatorResult(Exception):
    """An evaluator returned something that is not a usable metric mapping."""


def _to_metric_set(
    result: Any,
    entry: RegisteredEvaluator,
    dataset: Dataset,
    system_version: str,
) -> MetricSet:
    if isinstance(result, MetricSet):
        raw = result.metrics
    elif isinstance(result, Mapping):
        raw = result
    else:
        raise InvalidEvaluatorResult(
            f"expected a mapping of metric values, got {type(result).__name__}"
        )

    metrics: dict[str, float] = {}
    for metric_name, value in raw.items():
        if not isinstance(metric_name, str) or not metric_name:
            raise InvalidEvaluatorResult(f"invalid metric name {metric_name!r}")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidEvaluatorResult(f"metric {metric_name} is not numeric: {value!r}")
        if not math.isfinite(value):
            raise InvalidEvaluatorResult(f"metric {metric_name} is not finite: {value!r}")
        metrics[metric_name] = float(value)

    return MetricSet(
        evaluator_name=entry.name,
        evaluator_version=entry.version,
        dataset_id=dataset.dataset_id,
        system_version=system_version,
        metrics=metrics,
        window_start=dataset.window_start,
        window_end=dataset.window_end,
    )


def within_tolerance(a: MetricSet, b: MetricSet, tolerance: float) -> bool:
    """Check two runs of the same evaluator agree within its declared tolerance band."""
    if a.metrics.keys() != b.metrics.keys():
        return False
    return all(abs(a.metrics[k] - b.metrics[k]) <= tolerance for k in a.metrics)


def _accepts_stop_event(fn) -> bool:
    try:
        parameters = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False
    return "stop_event" in parameters or any(
        p.kind == inspect.Parameter.VAR_KEYWORD for p in parameters.values()
    )


class EvaluationRunner:
    """
    Runs registered evaluators concurrently against one frozen dataset.

    Each evaluator is isolated: it sees its own copy of the dataset, and a failure
    or timeout is recorded in the run's PartialFailureReport without aborting the
    others. Results come back in registration order regardless of completion order.

    Synchronous evaluators run on a thread pool owned by the run, one worker per
    evaluator. A sync evaluator that declares a ``stop_event`` parameter receives a
    ``threading.Event`` that is set when it times out or the run is cancelled.
    """

    def __init__(
        self,
        registry: EvaluatorRegistry,
        aggregator: "TrendAggregator | None" = None,
        default_timeout: float | None = None,
    ):
        self.registry = registry
        self.aggregator = aggregator
        if default_timeout is None:
            default_timeout = get_settings().evaluator_timeout_seconds
        if default_timeout <= 0:
            raise ValueError("default_timeout must be positive")
        self.default_timeout = default_timeout

    def _select(self, evaluator_names: list[str] | None) -> list[RegisteredEvaluator]:
        selectors = evaluator_names if evaluator_names is not None else self.registry.names()
        selected: dict[str, RegisteredEvaluator] = {}
        for selector in selectors:
            entry = self.registry.resolve_selector(selector)
            selected.setdefault(entry.key, entry)
        return sorted(selected.values(), key=lambda e: e.order)

    async def _invoke(
        self,
        entry: RegisteredEvaluator,
        dataset: Dataset,
        system_version: str,
        executor: ThreadPoolExecutor,
        stop_event: threading.Event,
    ):
        fn = entry.fn
        if inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(getattr(fn, "__call__", None)):
            return await fn(dataset, system_version)

        kwargs = {"stop_event": stop_event} if _accepts_stop_event(fn) else {}
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            executor,
            functools.partial(fn, dataset, system_version, **kwargs),
        )
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _run_one(
        self,
        entry: RegisteredEvaluator,
        dataset: Dataset,
        system_version: str,
        timeout: float,
        run_id: str,
        executor: ThreadPoolExecutor,
        stop_event: threading.Event,
    ) -> MetricSet | EvaluatorFailure:
        start = time.perf_counter()
        snapshot = dataset.model_copy(deep=True)
        try:
            result = await asyncio.wait_for(
                self._invoke(entry, snapshot, system_version, executor, stop_event),
                timeout=timeout,
            )
            metric_set = _to_metric_set(result, entry, dataset, system_version)
        except asyncio.TimeoutError:
            stop_event.set()
            logger.warning(
                "Evaluator timed out",
                run_id=run_id,
                evaluator=entry.key,
                timeout_seconds=timeout,
            )
            return EvaluatorFailure(
                evaluator_name=entry.name,
                evaluator_version=entry.version,
                kind=FailureKind.TIMEOUT,
                detail=f"exceeded {timeout:.3f}s",
            )
        except InvalidEvaluatorResult as e:
            logger.warning("Evaluator returned invalid result", run_id=run_id, evaluator=entry.key, error=str(e))
            return EvaluatorFailure(
                evaluator_name=entry.name,
                evaluator_version=entry.version,
                kind=FailureKind.INVALID_RESULT,
                detail=str(e),
            )
        except Exception as e:
            logger.warning("Evaluator failed", run_id=run_id, evaluator=entry.key, error=str(e))
            return EvaluatorFailure(
                evaluator_name=entry.name,
                evaluator_version=entry.version,
                kind=FailureKind.ERROR,
                detail=f"{type(e).__name__}: {e}",
            )

        logger.debug(
            "Evaluator completed",
            run_id=run_id,
            evaluator=entry.key,
            metrics=len(metric_set.metrics),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return metric_set

    async def run(
        self,
        dataset: Dataset,
        evaluator_names: list[str] | None = None,
        system_version: str = "unknown",
        per_evaluator_timeout: float | None = None,
    ) -> RunResult:
        """
        Run the selected evaluators against a dataset.

        Args:
            dataset: Frozen dataset snapshot shared by all evaluators
            evaluator_names: Selectors ("name" or "name@version"); None runs all
            system_version: Version of the system being evaluated
            per_evaluator_timeout: Seconds each evaluator may take

        Returns:
            RunResult with metric sets in registration order and, if any evaluator
            failed, a PartialFailureReport

        Raises:
            NotFoundError: A selector does not match a registered evaluator.
        """
        timeout = per_evaluator_timeout if per_evaluator_timeout is not None else self.default_timeout
        if timeout <= 0:
            raise ValueError("per_evaluator_timeout must be positive")

        selected = self._select(evaluator_names)
        run_id = str(uuid.uuid4())
        timestamp = utc_now()

        logger.info(
            "Starting evaluation run",
            run_id=run_id,
            dataset_id=dataset.dataset_id,
            records=len(dataset),
            evaluators=[e.key for e in selected],
            system_version=system_version,
        )

        stop_events = [threading.Event() for _ in selected]
        executor = ThreadPoolExecutor(
            max_workers=max(len(selected), 1),
            thread_name_prefix=f"evaluator-{run_id[:8]}",
        )
        tasks = [
            asyncio.create_task(
                self._run_one(entry, dataset, system_version, timeout, run_id, executor, stop_event)
            )
            for entry, stop_event in zip(selected, stop_events)
        ]
        try:
            outcomes = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task, stop_event in zip(tasks, stop_events):
                stop_event.set()
                task.cancel()
            logger.warning("Evaluation run cancelled", run_id=run_id)
            raise
        finally:
            # Timed-out sync evaluators may still hold a worker
            executor.shutdown(wait=False, cancel_futures=True)

        metric_sets = [o for o in outcomes if isinstance(o, MetricSet)]
        failures = [o for o in outcomes if isinstance(o, EvaluatorFailure)]

        failure_report = None
        if failures:
            failure_report = PartialFailureReport(
                run_id=run_id,
                failures=failures,
                succeeded=[m.evaluator_name for m in metric_sets],
            )

        result = RunResult(
            run_id=run_id,
            timestamp=timestamp,
            dataset_id=dataset.dataset_id,
            system_version=system_version,
            metric_sets=metric_sets,
            failure_report=failure_report,
        )

        if self.aggregator is not None:
            await self.aggregator.ingest_many(metric_sets)

        logger.info(
            "Evaluation run complete",
            run_id=run_id,
            succeeded=len(metric_sets),
            failed=len(failures),
        )
        return result
