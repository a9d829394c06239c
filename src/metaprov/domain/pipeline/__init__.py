"""Multi-variant provisioning pipeline with a fixed stage order."""

from __future__ import annotations

from .orchestrator import ProvisioningOrchestrator
from .run import (
    STAGES,
    CancellationToken,
    LogEntry,
    PipelineRun,
    ProgressEvent,
    RunResult,
    Stage,
    StepResult,
    StepStatus,
    VariantOutcome,
    VariantResult,
)

__all__ = [
    "STAGES",
    "CancellationToken",
    "LogEntry",
    "PipelineRun",
    "ProgressEvent",
    "ProvisioningOrchestrator",
    "RunResult",
    "Stage",
    "StepResult",
    "StepStatus",
    "VariantOutcome",
    "VariantResult",
]
