from __future__ import annotations

import pytest

from metaprov.domain.model import (
    LogLevel,
    MatchedBy,
    Origin,
    ReconciliationTarget,
    ResolvedObject,
    ResourceType,
)
from metaprov.domain.pipeline import (
    STAGES,
    CancellationToken,
    PipelineRun,
    RunResult,
    Stage,
    StepStatus,
    VariantOutcome,
    VariantResult,
)
from metaprov.domain.templates import Variant

ALPHA = Variant("alpha", "Alpha")
BETA = Variant("beta", "Beta")


def make_run() -> PipelineRun:
    return PipelineRun(run_id="runUid00001", context="ANC Assessment", variants=(ALPHA, BETA))


def resolved(resource_type: ResourceType, remote_id: str, origin: Origin) -> ResolvedObject:
    target = ReconciliationTarget(resource_type=resource_type, desired_name=remote_id)
    return ResolvedObject(
        remote_id=remote_id,
        origin=origin,
        source_target=target,
        matched_by=MatchedBy.CREATED if origin is Origin.CREATED_NEW else MatchedBy.CODE,
    )


def test_every_step_starts_pending() -> None:
    run = make_run()

    assert run.statuses("alpha") == [StepStatus.PENDING] * len(STAGES)
    assert len(run.step_results) == 2 * len(STAGES)


def test_steps_only_move_forward() -> None:
    run = make_run()

    run.transition("alpha", Stage.VALIDATE_OPTIONS, StepStatus.RUNNING)
    run.transition("alpha", Stage.VALIDATE_OPTIONS, StepStatus.COMPLETED, "2 created")

    assert run.step("alpha", Stage.VALIDATE_OPTIONS).detail == "2 created"
    with pytest.raises(ValueError, match="Illegal transition"):
        run.transition("alpha", Stage.VALIDATE_OPTIONS, StepStatus.RUNNING)
    with pytest.raises(ValueError, match="Illegal transition"):
        run.transition("beta", Stage.FINALIZE, StepStatus.COMPLETED)
    assert run.step("beta", Stage.FINALIZE).status is StepStatus.PENDING


def test_to_document_is_plain_data() -> None:
    run = make_run()
    run.transition("beta", Stage.VALIDATE_OPTIONS, StepStatus.RUNNING)
    run.transition("beta", Stage.VALIDATE_OPTIONS, StepStatus.FAILED, "no items")
    run.append_log(LogLevel.ERROR, "validate-options failed", variant="beta")

    document = run.to_document()

    assert document["runId"] == "runUid00001"
    assert document["variants"]["beta"]["validate-options"] == {
        "status": "failed",
        "detail": "no items",
    }
    assert document["variants"]["alpha"]["finalize"] == {"status": "pending", "detail": None}
    assert document["log"][0]["level"] == "error"
    assert document["log"][0]["variant"] == "beta"


def test_summary_counts_variants_by_outcome() -> None:
    result = RunResult(
        run=make_run(),
        variants=(
            VariantResult(variant=ALPHA, outcome=VariantOutcome.COMPLETED),
            VariantResult(variant=BETA, outcome=VariantOutcome.FAILED),
        ),
    )

    assert result.summary == {"created": 1, "failed": 1, "cancelled": 0}
    assert result.result_for("beta").outcome is VariantOutcome.FAILED
    with pytest.raises(KeyError):
        result.result_for("gamma")


def test_shared_objects_count_once_per_run() -> None:
    shared = resolved(ResourceType.COMBINATION, "comboUid001", Origin.CREATED_NEW)
    alpha = VariantResult(
        variant=ALPHA,
        resolved=[shared, resolved(ResourceType.COLLECTION, "setUid00001", Origin.CREATED_NEW)],
    )
    beta = VariantResult(
        variant=BETA,
        resolved=[
            resolved(ResourceType.COMBINATION, "comboUid001", Origin.CREATED_NEW),
            resolved(ResourceType.COLLECTION, "setUid00002", Origin.REUSED_EXISTING),
        ],
    )
    result = RunResult(run=make_run(), variants=(alpha, beta))

    assert result.origins() == {Origin.CREATED_NEW: 2, Origin.REUSED_EXISTING: 1}
    assert result.count(ResourceType.COMBINATION) == 1
    assert result.count(ResourceType.COLLECTION, Origin.REUSED_EXISTING) == 1
    assert alpha.origins() == {Origin.CREATED_NEW: 2}


def test_cancellation_token() -> None:
    token = CancellationToken()

    assert not token.cancelled
    token.cancel()
    assert token.cancelled
