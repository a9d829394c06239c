"""Stage-by-stage provisioning of every variant in a request.

Variants run one after another and are isolated from each other: a fatal error fails
the stage it happened in and the rest of that variant, then the orchestrator moves on
to the next variant. Cancellation is checked before each stage.

The run record is checkpointed by every ``finalize`` stage and written once more after
the last variant, so the stored copy ends with each variant's final statuses.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING, Any

from metaprov.domain.errors import PayloadValidationError, ProvisioningError
from metaprov.domain.identifiers import generate_uid, is_valid_uid
from metaprov.domain.model import LogLevel, ResourceType
from metaprov.domain.ports.progress import NullSink
from metaprov.domain.reconciliation.compose import ResolutionLedger
from metaprov.domain.reconciliation.payloads import is_valid_access
from metaprov.domain.reconciliation.retry import CallState

from .run import (
    PipelineRun,
    ProgressEvent,
    RunResult,
    Stage,
    StepStatus,
    VariantOutcome,
    VariantResult,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from metaprov.domain.model import ReconciliationTarget, ResolvedObject
    from metaprov.domain.ports.metadata import ReferenceLookup
    from metaprov.domain.ports.progress import ProgressSink
    from metaprov.domain.ports.storage import RunRecordStore
    from metaprov.domain.reconciliation.cache import IdMappingCache
    from metaprov.domain.reconciliation.compose import HierarchyComposer
    from metaprov.domain.reconciliation.resolve import ObjectResolver
    from metaprov.domain.reconciliation.retry import RetryController
    from metaprov.domain.templates import ProvisioningRequest, Variant

    from .run import CancellationToken

log = getLogger(__name__)

_LEVEL_STAGES: dict[Stage, ResourceType] = {
    Stage.VALIDATE_OPTIONS: ResourceType.OPTION,
    Stage.VALIDATE_GROUPINGS: ResourceType.GROUPING,
    Stage.VALIDATE_COMBINATIONS: ResourceType.COMBINATION,
    Stage.CREATE_MEASURABLE_ITEMS: ResourceType.MEASURABLE_ITEM,
}


@dataclass(slots=True)
class _VariantState:
    """Working state of one variant while its stages run."""

    variant: Variant
    ledger: ResolutionLedger = field(default_factory=ResolutionLedger)
    root: ReconciliationTarget | None = None
    payload: dict[str, Any] | None = None
    collection: ResolvedObject | None = None

    def require_root(self) -> ReconciliationTarget:
        if self.root is None:
            raise ProvisioningError(f"Variant {self.variant.key!r} has not been composed")
        return self.root


class ProvisioningOrchestrator:
    def __init__(
        self,
        *,
        resolver: ObjectResolver,
        composer: HierarchyComposer,
        cache: IdMappingCache,
        controller: RetryController,
        org_units: ReferenceLookup,
        sink: ProgressSink | None = None,
        run_records: RunRecordStore | None = None,
        run_id_factory: Callable[[], str] = generate_uid,
    ) -> None:
        self._resolver = resolver
        self._composer = composer
        self._cache = cache
        self._controller = controller
        self._org_units = org_units
        self._sink = sink or NullSink()
        self._run_records = run_records
        self._run_id_factory = run_id_factory
        self._known_org_units: dict[str, bool] = {}

    def run(
        self,
        request: ProvisioningRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> RunResult:
        """Provision every variant of ``request`` and report per-variant outcomes."""

        self._resolver.reset()
        self._known_org_units.clear()
        run = PipelineRun(
            run_id=self._run_id_factory(),
            context=request.context_name,
            variants=request.variants,
        )
        self._emit(
            run,
            LogLevel.INFO,
            f"Provisioning {len(request.variants)} variant(s) for {request.context_name!r} "
            f"(run {run.run_id})",
        )

        results: list[VariantResult] = []
        for variant in request.variants:
            result = VariantResult(variant=variant)
            results.append(result)
            if cancel is not None and cancel.cancelled:
                result.outcome = VariantOutcome.CANCELLED
                self._emit(run, LogLevel.WARNING, "Cancelled before start", variant=variant.key)
                continue
            self._run_variant(run, request, result, cancel)

        if self._cache.dirty:
            self._cache.persist()
        self._save_run(run)

        outcome = RunResult(run=run, variants=tuple(results))
        summary = outcome.summary
        self._emit(
            run,
            LogLevel.SUCCESS if not summary["failed"] else LogLevel.WARNING,
            f"Run {run.run_id} finished: {summary['created']} created, "
            f"{summary['failed']} failed, {summary['cancelled']} cancelled",
        )
        return outcome

    # Variant lifecycle ------------------------------------------------

    def _run_variant(
        self,
        run: PipelineRun,
        request: ProvisioningRequest,
        result: VariantResult,
        cancel: CancellationToken | None,
    ) -> None:
        variant = result.variant
        state = _VariantState(variant=variant)
        for stage in run.stages:
            if cancel is not None and cancel.cancelled:
                result.outcome = VariantOutcome.CANCELLED
                self._emit(run, LogLevel.WARNING, f"Cancelled before {stage}", variant=variant.key)
                break

            self._transition(run, variant, stage, StepStatus.RUNNING)
            try:
                detail = self._run_stage(stage, run, request, state)
            except ProvisioningError as exc:
                self._transition(run, variant, stage, StepStatus.FAILED, str(exc))
                self._emit(
                    run,
                    LogLevel.ERROR,
                    f"{stage} failed: {exc}",
                    variant=variant.key,
                )
                result.outcome = VariantOutcome.FAILED
                result.failed_stage = stage
                result.error = str(exc)
                break
            self._transition(run, variant, stage, StepStatus.COMPLETED, detail)
        else:
            result.outcome = VariantOutcome.COMPLETED
            self._emit(
                run,
                LogLevel.SUCCESS,
                f"Collection {state.collection.remote_id if state.collection else '?'} ready",
                variant=variant.key,
            )

        result.collection = state.collection
        result.resolved = list(state.ledger)

    def _run_stage(
        self,
        stage: Stage,
        run: PipelineRun,
        request: ProvisioningRequest,
        state: _VariantState,
    ) -> str:
        if stage is Stage.VALIDATE_OPTIONS:
            state.root = self._composer.compose(state.variant, request)
        if stage in _LEVEL_STAGES:
            return self._resolve_level(_LEVEL_STAGES[stage], run, state)
        if stage is Stage.VALIDATE_ORGANIZATIONAL_SCOPE:
            return self._validate_scope(run, state)
        if stage is Stage.CONFIGURE_ACCESS:
            return self._configure_access(request, state)
        if stage is Stage.BUILD_PAYLOAD:
            return self._build_payload(state)
        if stage is Stage.SUBMIT_COLLECTION:
            return self._submit_collection(run, state)
        return self._finalize(run, state)

    # Stages -----------------------------------------------------------

    def _resolve_level(
        self, resource_type: ResourceType, run: PipelineRun, state: _VariantState
    ) -> str:
        targets = self._composer.levels(state.require_root())[resource_type]
        origins: Counter[str] = Counter()
        for target in targets:
            resolved = self._resolver.resolve(
                target,
                payload_factory=self._composer.payload_factory(target, state.ledger),
                journal=self._journal(run, state.variant),
                repair=partial(self._repair, run, state),
            )
            state.ledger.record(resolved)
            origins[resolved.origin.value] += 1
        if not origins:
            return f"no {resource_type} objects"
        return ", ".join(f"{count} {origin}" for origin, count in sorted(origins.items()))

    def _validate_scope(self, run: PipelineRun, state: _VariantState) -> str:
        root = state.require_root()
        known: list[str] = []
        unknown: list[str] = []
        for org_unit_id in self._composer.scope_of(root):
            if self._org_unit_exists(org_unit_id):
                known.append(org_unit_id)
            else:
                unknown.append(org_unit_id)
        if unknown:
            self._emit(
                run,
                LogLevel.WARNING,
                f"Dropping {len(unknown)} unknown organisational unit(s): {', '.join(unknown)}",
                variant=state.variant.key,
            )
        state.root = self._composer.rescope(root, known)
        return f"{len(known)} organisational unit(s)"

    def _org_unit_exists(self, org_unit_id: str) -> bool:
        if org_unit_id in self._known_org_units:
            return self._known_org_units[org_unit_id]
        if not is_valid_uid(org_unit_id):
            exists = False
        else:
            outcome = self._controller.attempt(
                partial(self._org_units.fetch_by_id, org_unit_id),
                description=f"fetch organisation unit {org_unit_id}",
            )
            if outcome.state is CallState.NOT_FOUND:
                exists = False
            else:
                outcome.unwrap()
                exists = True
        self._known_org_units[org_unit_id] = exists
        return exists

    def _configure_access(self, request: ProvisioningRequest, state: _VariantState) -> str:
        if not is_valid_access(request.public_access):
            raise PayloadValidationError(
                f"Invalid public access string {request.public_access!r}",
                problems=("sharing.public",),
            )
        sharing: Mapping[str, Any] = {
            "public": request.public_access,
            "external": request.external_access,
            "users": {},
            "userGroups": {},
        }
        state.root = self._composer.with_sharing(state.require_root(), sharing)
        return f"public access {request.public_access}"

    def _build_payload(self, state: _VariantState) -> str:
        root = state.require_root()
        state.payload = self._composer.build_payload(root, state.ledger, generate_uid())
        return (
            f"{len(state.payload['dataSetElements'])} item(s), "
            f"{len(state.payload['organisationUnits'])} organisational unit(s)"
        )

    def _submit_collection(self, run: PipelineRun, state: _VariantState) -> str:
        root = state.require_root()
        if state.payload is None:
            raise ProvisioningError("Collection payload was not built")

        resolved = self._resolver.resolve(
            root,
            payload_factory=self._composer.payload_factory(root, state.ledger),
            journal=self._journal(run, state.variant),
            repair=partial(self._repair, run, state),
        )
        state.ledger.record(resolved)
        state.collection = resolved
        return f"{resolved.origin} {resolved.remote_id}"

    def _finalize(self, run: PipelineRun, state: _VariantState) -> str:
        persisted = self._cache.persist() if self._cache.dirty else True
        recorded = self._save_run(run, variant=state.variant.key)
        return (
            f"mappings {'saved' if persisted else 'kept in memory'}, "
            f"run record {'saved' if recorded else 'skipped'}"
        )

    def _save_run(self, run: PipelineRun, *, variant: str | None = None) -> bool:
        if self._run_records is None:
            return False
        try:
            self._run_records.save_run(run.run_id, run.to_document())
        except ProvisioningError as exc:
            self._emit(
                run,
                LogLevel.WARNING,
                f"Could not record run {run.run_id}: {exc}",
                variant=variant,
            )
            return False
        return True

    # Dependency repair ------------------------------------------------

    def _repair(
        self, run: PipelineRun, state: _VariantState, target: ReconciliationTarget
    ) -> int:
        """Re-resolve dependencies of ``target`` that no longer exist remotely."""

        repaired = 0
        for dependency in target.dependencies:
            current = state.ledger.get(dependency)
            if current is not None and self._resolver.still_exists(current):
                continue
            self._resolver.forget(dependency)
            replacement = self._resolver.resolve(
                dependency,
                payload_factory=self._composer.payload_factory(dependency, state.ledger),
                journal=self._journal(run, state.variant),
                repair=partial(self._repair, run, state),
            )
            if current is None:
                state.ledger.record(replacement)
            else:
                state.ledger.replace(replacement)
            self._emit(
                run,
                LogLevel.WARNING,
                f"Replaced missing {dependency.resource_type} {dependency.label!r} "
                f"with {replacement.remote_id}",
                variant=state.variant.key,
            )
            repaired += 1
        return repaired

    # Events -----------------------------------------------------------

    def _transition(
        self,
        run: PipelineRun,
        variant: Variant,
        stage: Stage,
        status: StepStatus,
        detail: str | None = None,
    ) -> None:
        result = run.transition(variant.key, stage, status, detail)
        log.debug("%s/%s -> %s", variant.key, stage, status)
        self._sink.on_progress(
            ProgressEvent(
                stage=stage,
                variant=variant.key,
                status=result.status,
                detail=result.detail,
                timestamp=datetime.now(UTC),
            )
        )

    def _emit(
        self,
        run: PipelineRun,
        level: LogLevel,
        message: str,
        *,
        variant: str | None = None,
    ) -> None:
        self._sink.on_log(run.append_log(level, message, variant=variant))

    def _journal(self, run: PipelineRun, variant: Variant) -> Callable[[LogLevel, str], None]:
        def journal(level: LogLevel, message: str) -> None:
            self._emit(run, level, message, variant=variant.key)

        return journal
