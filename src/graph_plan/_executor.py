"""
Plan execution.

The `Executor` applies a `Plan` wave by wave. Steps inside a wave are
mutually independent and run on a thread pool; the next wave starts only
after every step of the previous one reached a terminal state. The two
halves of a replacement are separate steps, usually in different waves.

Failure handling:

- Transient provider failures (`TransientAPIError`, `TimeoutError`,
  `ConnectionError`) are retried with exponential backoff, up to
  ``EngineConfig.max_attempts`` calls.
- Any other provider failure marks the operation failed. Operations that
  depend on it are skipped; independent branches carry on.
- `UnresolvedReferenceError` and `StateConflictError` are fatal: no new
  wave is started and the error is raised once the current wave drained.

Every successful step writes (or deletes) its state record before it
counts as done; a no-op whose record lists outdated dependencies has the
record rewritten. The outcome of every operation is collected in an
`ApplyReport`.

Example:
    Applying a plan::

        from graph_plan import Executor, InMemoryProvider, MemoryStateStore, Planner

        store = MemoryStateStore()
        plan = Planner().plan(resources, store.load())
        report = Executor(InMemoryProvider(), store).apply(plan)
        print(report.render())
"""

import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from graph_plan._config import EngineConfig
from graph_plan._errors import (
    GraphPlanError,
    PermanentAPIError,
    StateConflictError,
    TransientAPIError,
    UnresolvedReferenceError,
)
from graph_plan._logging import get_logger
from graph_plan._plan import Action, Operation, Plan, Step, apply_ignore_changes
from graph_plan._provider import Provider
from graph_plan._state import StateRecord, StateStore
from graph_plan._values import ResolutionContext, resolve

__all__ = [
    "OperationStatus",
    "OperationResult",
    "ApplyReport",
    "Executor",
]

logger = get_logger(__name__)

T = TypeVar("T")

_TRANSIENT = (TransientAPIError, TimeoutError, ConnectionError)
_FATAL = (UnresolvedReferenceError, StateConflictError)


class OperationStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class OperationResult:
    """Outcome of one operation.

    Attributes:
        address: Resource address.
        action: The planned action.
        status: Terminal status once the apply returned.
        wave: Index of the last wave the operation took part in; a
            replacement spans two waves.
        attempts: Number of provider calls made, retries included.
        started_at: When execution started (UTC); None if never started.
        finished_at: When execution finished (UTC).
        duration_ms: Wall time spent executing, both halves of a
            replacement included.
        error: The error that failed the operation.
        root_cause: For skipped operations, the address of the failed
            operation that blocked them; for failed ones, their own address.
    """

    address: str
    action: Action
    status: OperationStatus = OperationStatus.PENDING
    wave: int = 0
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: float = 0.0
    error: BaseException | None = None
    root_cause: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "action": self.action.value,
            "status": self.status.value,
            "wave": self.wave,
            "attempts": self.attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": round(self.duration_ms, 3),
            "error": _describe(self.error) if self.error else None,
            "root_cause": self.root_cause,
        }


class ApplyReport:
    """Per-operation results of an apply, in plan order."""

    def __init__(self, results: list[OperationResult]) -> None:
        self.results = results
        self._by_address = {r.address: r for r in results}

    def __getitem__(self, address: str) -> OperationResult:
        return self._by_address[address]

    def __iter__(self) -> Iterator[OperationResult]:
        return iter(self.results)

    def _with(self, status: OperationStatus) -> list[OperationResult]:
        return [r for r in self.results if r.status is status]

    @property
    def succeeded(self) -> list[OperationResult]:
        return self._with(OperationStatus.SUCCEEDED)

    @property
    def failed(self) -> list[OperationResult]:
        return self._with(OperationStatus.FAILED)

    @property
    def skipped(self) -> list[OperationResult]:
        return self._with(OperationStatus.SKIPPED)

    @property
    def cancelled(self) -> list[OperationResult]:
        return self._with(OperationStatus.CANCELLED)

    @property
    def ok(self) -> bool:
        return all(r.status is OperationStatus.SUCCEEDED for r in self.results)

    def root_causes(self) -> dict[str, BaseException]:
        """The error of every failed operation, keyed by address."""
        return {r.address: r.error for r in self.failed if r.error is not None}

    def render(self) -> str:
        lines = [
            f"Apply finished: {len(self.succeeded)} succeeded, "
            f"{len(self.failed)} failed, {len(self.skipped)} skipped, "
            f"{len(self.cancelled)} cancelled."
        ]
        for r in self.failed:
            lines.append(f"  failed    {r.address}: {_describe(r.error)}")
        for r in self.skipped:
            lines.append(f"  skipped   {r.address} (blocked by {r.root_cause})")
        for r in self.cancelled:
            lines.append(f"  cancelled {r.address}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "summary": {s.value: len(self._with(s)) for s in OperationStatus},
            "results": [r.to_dict() for r in self.results],
        }


def _describe(error: BaseException | None) -> str:
    return f"{type(error).__name__}: {error}"


def _settle(result: OperationResult, status: OperationStatus) -> bool:
    """Record a step outcome; the first unsuccessful step of an operation wins."""
    if result.status in (OperationStatus.PENDING, OperationStatus.SUCCEEDED):
        result.status = status
        return True
    return False


def _prior(op: Operation) -> StateRecord:
    if op.prior is None:
        raise GraphPlanError(f"{op.action.value} of {op.address} has no state record")
    return op.prior


class _Cancelled(Exception):
    """Raised inside an operation when cancellation interrupts a backoff."""


class Executor:
    """Applies plans through a provider and records the results in state.

    Args:
        provider: The external API.
        store: State store the plan was computed against. Its remembered
            serial is used to detect concurrent state changes.
        config: Worker pool and retry settings.
    """

    def __init__(
        self,
        provider: Provider,
        store: StateStore,
        config: EngineConfig | None = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.config = config or EngineConfig()
        self.last_report: ApplyReport | None = None
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Cancel the running apply, or the next one if none is running.

        No new wave is scheduled and in-flight operations drain. The signal
        is cleared when that apply returns.
        """
        self._cancel.set()
        logger.warning("apply_cancel_requested")

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def apply(self, plan: Plan) -> ApplyReport:
        """Apply a plan.

        Returns:
            The `ApplyReport`. It is also kept as ``last_report``.

        Raises:
            UnresolvedReferenceError: If an attribute could not be resolved.
            StateConflictError: If the state changed since it was loaded.
        """
        try:
            return self._apply(plan)
        finally:
            self._cancel.clear()

    def _apply(self, plan: Plan) -> ApplyReport:
        results = {op.address: OperationResult(op.address, op.action) for op in plan}
        report = ApplyReport([results[op.address] for op in plan])
        self.last_report = report
        outcomes: dict[str, OperationStatus] = {}

        context = ResolutionContext(context=self.config.context)
        for op in plan:
            if op.prior is not None and op.action in (Action.NOOP, Action.UPDATE):
                context.set_resource(op.address, op.prior.values)

        fatal: BaseException | None = None
        for index, wave in enumerate(plan.waves()):
            for step in wave:
                results[step.address].wave = index
            if fatal is not None or self._cancel.is_set():
                for step in wave:
                    outcomes[step.key] = OperationStatus.CANCELLED
                    _settle(results[step.address], OperationStatus.CANCELLED)
                continue

            runnable = []
            for step in wave:
                blocker = self._blocker(plan, step, outcomes, results)
                if blocker is None:
                    runnable.append(step)
                    continue
                outcomes[step.key] = OperationStatus.SKIPPED
                result = results[step.address]
                if _settle(result, OperationStatus.SKIPPED):
                    result.root_cause = blocker
                logger.info("operation_skipped", step=step.key, blocked_by=blocker)

            if not runnable:
                continue
            logger.info("wave_started", wave=index, operations=len(runnable))
            workers = min(self.config.max_workers, len(runnable))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {
                    pool.submit(self._run, step, results[step.address], context): step
                    for step in runnable
                }
                for future in as_completed(futures):
                    step = futures[future]
                    error = future.exception()
                    if error is None:
                        outcomes[step.key] = future.result()
                        continue
                    outcomes[step.key] = OperationStatus.FAILED
                    if fatal is None:
                        fatal = error

        logger.info(
            "apply_finished",
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped=len(report.skipped),
            cancelled=len(report.cancelled),
        )
        if fatal is not None:
            raise fatal
        return report

    @staticmethod
    def _blocker(
        plan: Plan,
        step: Step,
        outcomes: dict[str, OperationStatus],
        results: dict[str, OperationResult],
    ) -> str | None:
        for required in plan.requires(step.key):
            address = plan.step(required).address
            outcome = outcomes[required]
            if outcome is OperationStatus.FAILED:
                return address
            if outcome is not OperationStatus.SUCCEEDED:
                return results[address].root_cause or address
        return None

    def _run(
        self, step: Step, result: OperationResult, context: ResolutionContext
    ) -> OperationStatus:
        op = step.operation
        if result.started_at is None:
            result.started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        log = logger.bind(address=op.address, action=step.action.value)
        log.debug("operation_started")
        try:
            if step.action is Action.CREATE:
                self._create(op, result, context)
            elif step.action is Action.UPDATE:
                self._update(op, result, context)
            elif step.action is Action.DESTROY:
                self._destroy(op, result)
            elif op.stale_record:
                self._refresh(op)
            outcome = OperationStatus.SUCCEEDED
        except _Cancelled:
            outcome = OperationStatus.CANCELLED
            log.warning("operation_cancelled")
        except GraphPlanError as exc:
            outcome = OperationStatus.FAILED
            if _settle(result, outcome):
                result.error = exc
                result.root_cause = op.address
            log.error(
                "operation_failed", error=_describe(exc), attempts=result.attempts
            )
            if isinstance(exc, _FATAL):
                raise
        finally:
            result.duration_ms += (time.monotonic() - start) * 1000
            result.finished_at = datetime.now(timezone.utc)
        _settle(result, outcome)
        if outcome is OperationStatus.SUCCEEDED:
            log.info("operation_succeeded", duration_ms=round(result.duration_ms, 3))
        return outcome

    def _resolve(self, op: Operation, context: ResolutionContext) -> dict[str, Any]:
        attributes = resolve(dict(op.desired), context)
        return apply_ignore_changes(attributes, op.prior, op.ignore_changes)

    def _record(
        self, op: Operation, attributes: dict[str, Any], outputs: Any
    ) -> StateRecord:
        return StateRecord(
            address=op.address,
            type=op.type,
            attributes=attributes,
            outputs=dict(outputs or {}),
            dependencies=op.dependencies,
            declaration_index=op.declaration_index,
        )

    def _create(
        self, op: Operation, result: OperationResult, context: ResolutionContext
    ) -> None:
        attributes = self._resolve(op, context)
        outputs = self._call(
            op, result, self.provider.create, op.address, op.type, attributes
        )
        record = self._record(op, attributes, outputs)
        self.store.save(record)
        context.set_resource(op.address, record.values)

    def _update(
        self, op: Operation, result: OperationResult, context: ResolutionContext
    ) -> None:
        prior = _prior(op)
        attributes = self._resolve(op, context)
        outputs = self._call(
            op, result, self.provider.update, op.address, op.type, prior, attributes
        )
        merged = {**prior.outputs, **dict(outputs or {})}
        record = self._record(op, attributes, merged)
        self.store.save(record)
        context.set_resource(op.address, record.values)

    def _destroy(self, op: Operation, result: OperationResult) -> None:
        prior = _prior(op)
        self._call(op, result, self.provider.delete, op.address, prior.type, prior)
        # A create-before-destroy successor already owns the record.
        if not (op.action is Action.REPLACE and op.create_before_destroy):
            self.store.delete(op.address)

    def _refresh(self, op: Operation) -> None:
        self.store.save(
            replace(
                _prior(op),
                dependencies=op.dependencies,
                declaration_index=op.declaration_index,
            )
        )
        logger.debug("state_record_refreshed", address=op.address)

    def _call(
        self,
        op: Operation,
        result: OperationResult,
        method: Callable[..., T],
        *args: Any,
    ) -> T:
        """Call the provider, retrying transient failures with backoff."""
        attempt = 0
        while True:
            attempt += 1
            result.attempts += 1
            try:
                return method(*args)
            except _TRANSIENT as exc:
                if attempt >= self.config.max_attempts:
                    if isinstance(exc, TransientAPIError):
                        raise
                    raise TransientAPIError(_describe(exc), op.address) from exc
                delay = self.config.backoff_delay(attempt)
                logger.warning(
                    "transient_api_error",
                    address=op.address,
                    attempt=attempt,
                    delay=delay,
                    error=_describe(exc),
                )
                if self._cancel.wait(delay):
                    raise _Cancelled() from exc
            except GraphPlanError:
                raise
            except Exception as exc:
                raise PermanentAPIError(_describe(exc), op.address) from exc
