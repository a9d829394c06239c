"""Reconciliation core: map desired metadata objects onto remote ones.

Layered flow, leaf first:
1) generate ids and look up known id mappings
2) resolve each target by mapping, id, search, or creation
3) drive remote calls through the retry controller
4) wire resolved ids into parent payloads
"""

from __future__ import annotations

from .cache import IdMappingCache
from .compose import HierarchyComposer, ResolutionLedger
from .fallback import FallbackRegistry
from .resolve import ObjectResolver
from .retry import BackoffPolicy, CallOutcome, CallState, RetryController, classify_failure

__all__ = [
    "BackoffPolicy",
    "CallOutcome",
    "CallState",
    "FallbackRegistry",
    "HierarchyComposer",
    "IdMappingCache",
    "ObjectResolver",
    "ResolutionLedger",
    "RetryController",
    "classify_failure",
]
