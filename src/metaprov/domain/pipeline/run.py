"""Run-time records kept by the orchestrator: step states, log, per-variant results."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from metaprov.domain.model import LogLevel, Origin, ResolvedObject, ResourceType
    from metaprov.domain.templates import Variant


def _now() -> datetime:
    return datetime.now(UTC)


class Stage(StrEnum):
    VALIDATE_OPTIONS = "validate-options"
    VALIDATE_GROUPINGS = "validate-groupings"
    VALIDATE_COMBINATIONS = "validate-combinations"
    CREATE_MEASURABLE_ITEMS = "create-measurable-items"
    VALIDATE_ORGANIZATIONAL_SCOPE = "validate-organizational-scope"
    CONFIGURE_ACCESS = "configure-access"
    BUILD_PAYLOAD = "build-payload"
    SUBMIT_COLLECTION = "submit-collection"
    FINALIZE = "finalize"


STAGES: tuple[Stage, ...] = tuple(Stage)


class StepStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING}),
    StepStatus.RUNNING: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
}


class VariantOutcome(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class StepResult:
    status: StepStatus = StepStatus.PENDING
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: datetime
    level: LogLevel
    message: str
    variant: str | None = None


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    stage: Stage
    variant: str
    status: StepStatus
    detail: str | None
    timestamp: datetime


class CancellationToken:
    """Cooperative cancellation flag, safe to set from a signal handler."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class PipelineRun:
    """Mutable state of one orchestrator run.

    Step results are keyed by ``(variant_key, stage_index)`` and only move forward
    along ``pending -> running -> completed | failed``.
    """

    run_id: str
    context: str
    variants: tuple[Variant, ...]
    stages: tuple[Stage, ...] = STAGES
    step_results: dict[tuple[str, int], StepResult] = field(
        default_factory=dict[tuple[str, int], StepResult]
    )
    log: list[LogEntry] = field(default_factory=list[LogEntry])
    started_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        for variant in self.variants:
            for index in range(len(self.stages)):
                self.step_results.setdefault((variant.key, index), StepResult())

    def step(self, variant_key: str, stage: Stage) -> StepResult:
        return self.step_results[(variant_key, self.stages.index(stage))]

    def transition(
        self,
        variant_key: str,
        stage: Stage,
        status: StepStatus,
        detail: str | None = None,
    ) -> StepResult:
        key = (variant_key, self.stages.index(stage))
        current = self.step_results[key]
        if status not in _ALLOWED_TRANSITIONS[current.status]:
            raise ValueError(
                f"Illegal transition {current.status} -> {status} "
                f"for {variant_key}/{stage}"
            )
        result = StepResult(status=status, detail=detail)
        self.step_results[key] = result
        return result

    def append_log(
        self, level: LogLevel, message: str, *, variant: str | None = None
    ) -> LogEntry:
        entry = LogEntry(timestamp=_now(), level=level, message=message, variant=variant)
        self.log.append(entry)
        return entry

    def statuses(self, variant_key: str) -> list[StepStatus]:
        return [
            self.step_results[(variant_key, index)].status for index in range(len(self.stages))
        ]

    def to_document(self) -> dict[str, Any]:
        """Plain JSON-compatible snapshot used for run bookkeeping."""

        return {
            "runId": self.run_id,
            "context": self.context,
            "startedAt": self.started_at.isoformat(),
            "variants": {
                variant.key: {
                    stage.value: {
                        "status": self.step(variant.key, stage).status.value,
                        "detail": self.step(variant.key, stage).detail,
                    }
                    for stage in self.stages
                }
                for variant in self.variants
            },
            "log": [
                {
                    "timestamp": entry.timestamp.isoformat(),
                    "level": entry.level.value,
                    "message": entry.message,
                    "variant": entry.variant,
                }
                for entry in self.log
            ],
        }


@dataclass(slots=True)
class VariantResult:
    variant: Variant
    outcome: VariantOutcome = VariantOutcome.PENDING
    failed_stage: Stage | None = None
    error: str | None = None
    collection: ResolvedObject | None = None
    resolved: list[ResolvedObject] = field(default_factory=list)

    def origins(self) -> Counter[Origin]:
        return Counter(resolved.origin for resolved in self.resolved)


@dataclass(frozen=True, slots=True)
class RunResult:
    run: PipelineRun
    variants: tuple[VariantResult, ...]

    @property
    def summary(self) -> dict[str, int]:
        """Per-variant counts; a run never has a single pass/fail verdict."""

        counts = Counter(result.outcome for result in self.variants)
        return {
            "created": counts[VariantOutcome.COMPLETED],
            "failed": counts[VariantOutcome.FAILED],
            "cancelled": counts[VariantOutcome.CANCELLED],
        }

    def result_for(self, variant_key: str) -> VariantResult:
        for result in self.variants:
            if result.variant.key == variant_key:
                return result
        raise KeyError(variant_key)

    def origins(self) -> Counter[Origin]:
        """Origins of every resolved object, counting shared objects once per run."""

        seen: dict[tuple[object, ...], Origin] = {}
        for result in self.variants:
            for resolved in result.resolved:
                key = (resolved.resource_type, resolved.remote_id)
                seen.setdefault(key, resolved.origin)
        return Counter(seen.values())

    def count(self, resource_type: ResourceType, origin: Origin | None = None) -> int:
        """Distinct remote objects of ``resource_type`` (optionally of one origin)."""

        ids = {
            resolved.remote_id
            for result in self.variants
            for resolved in result.resolved
            if resolved.resource_type == resource_type
            and (origin is None or resolved.origin is origin)
        }
        return len(ids)
