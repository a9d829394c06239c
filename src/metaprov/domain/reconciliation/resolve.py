"""Generic find-or-create resolution shared by every resource type.

``ObjectResolver.resolve`` walks a fixed ladder and stops at the first rung that
produces an object:

0. the per-run memo of targets already resolved in this run,
1. the id-mapping cache, followed by a fetch of the mapped id,
2. a direct fetch of the candidate id (only when it is a well-formed uid),
3. exact searches by code, name and short name,
4. creation under a freshly generated id,
5. on conflict: a re-search, then a disambiguated retry, then the fallback object.

A create rejected with 404 means a referenced dependency is gone. The caller's
``repair`` hook re-resolves the missing dependencies before the parent is retried once;
without a hook, or when every dependency still exists, the 404 is treated as
propagation lag.

Per-type behaviour lives entirely in the injected ``MetadataGateway`` instances.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING, Any, TypeAlias

from metaprov.domain.errors import ConflictUnresolvedError, MissingReferenceError
from metaprov.domain.identifiers import generate_uid
from metaprov.domain.model import (
    SEARCH_PRECEDENCE,
    LogLevel,
    MatchedBy,
    Origin,
    ResolvedObject,
    SearchField,
)

from .payloads import disambiguate, disambiguation_suffix
from .retry import CallState

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from metaprov.domain.errors import FatalProvisioningError
    from metaprov.domain.model import MetadataRecord, ReconciliationTarget, ResourceType
    from metaprov.domain.ports.metadata import MetadataGateway

    from .cache import IdMappingCache
    from .fallback import FallbackRegistry
    from .retry import CallOutcome, RetryController

Journal: TypeAlias = "Callable[[LogLevel, str], None]"
PayloadFactory: TypeAlias = "Callable[[str], Mapping[str, Any]]"
DependencyRepair: TypeAlias = "Callable[[ReconciliationTarget], int]"

log = getLogger(__name__)

_LOGGING_LEVELS: dict[LogLevel, int] = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def _search_values(
    name: str | None, code: str | None, short_name: str | None
) -> dict[SearchField, str]:
    values = {
        SearchField.CODE: code,
        SearchField.NAME: name,
        SearchField.SHORT_NAME: short_name,
    }
    return {key: value for key, value in values.items() if value}


class ObjectResolver:
    def __init__(
        self,
        gateways: Mapping[ResourceType, MetadataGateway],
        *,
        cache: IdMappingCache,
        controller: RetryController,
        fallbacks: FallbackRegistry | None = None,
        generate_id: Callable[[], str] = generate_uid,
        suffix_factory: Callable[[], str] = disambiguation_suffix,
        conflict_retries: int = 1,
    ) -> None:
        if conflict_retries < 0:
            raise ValueError("conflict_retries must be non-negative")
        self._gateways = gateways
        self._cache = cache
        self._controller = controller
        self._fallbacks = fallbacks
        self._generate_id = generate_id
        self._suffix_factory = suffix_factory
        self._conflict_retries = conflict_retries
        self._memo: dict[tuple[object, ...], ResolvedObject] = {}

    def reset(self) -> None:
        """Forget targets resolved so far; call at the start of every run."""

        self._memo.clear()

    def resolve(
        self,
        target: ReconciliationTarget,
        *,
        payload_factory: PayloadFactory | None = None,
        journal: Journal | None = None,
        repair: DependencyRepair | None = None,
    ) -> ResolvedObject:
        """Map ``target`` onto a remote object, creating one if nothing matches.

        ``payload_factory`` receives the freshly generated id and returns the creation
        payload; it is only invoked when the target has to be created, and again after
        ``repair`` replaced vanished dependencies. ``repair`` returns how many
        dependencies it re-resolved. ``journal`` receives every decision taken along
        the way.
        """

        note = partial(self._note, journal)

        memoised = self._memo.get(target.identity_key)
        if memoised is not None:
            note(
                LogLevel.DEBUG,
                f"{target.resource_type} {target.label!r} already resolved to "
                f"{memoised.remote_id} in this run",
            )
            return replace(memoised, source_target=target, matched_by=MatchedBy.MEMO)

        gateway = self._gateways.get(target.resource_type)
        if gateway is None:
            raise KeyError(f"No gateway registered for {target.resource_type}")

        resolved = (
            self._from_mapping(gateway, target, note)
            or self._from_candidate(gateway, target, note)
            or self._from_search(gateway, target, note)
        )
        if resolved is None:
            if not target.allow_create:
                resolved = self._substitute(
                    target,
                    note,
                    MissingReferenceError(
                        f"{target.resource_type} {target.label!r} was not found "
                        "and may not be created"
                    ),
                )
            elif payload_factory is None:
                raise ValueError(
                    f"Cannot create {target.resource_type} {target.label!r} "
                    "without a payload factory"
                )
            else:
                resolved = self._create(gateway, target, payload_factory, note, repair)

        self._remember(target, resolved)
        return resolved

    # Resolution steps -------------------------------------------------

    def _from_mapping(
        self,
        gateway: MetadataGateway,
        target: ReconciliationTarget,
        note: Callable[[LogLevel, str], None],
    ) -> ResolvedObject | None:
        foreign_id = target.lookup_id
        if foreign_id is None:
            return None
        mapped_id = self._cache.lookup(target.resource_type, foreign_id)
        if mapped_id is None:
            return None

        outcome = self._controller.attempt(
            partial(gateway.fetch_by_id, mapped_id),
            description=f"fetch mapped {target.resource_type} {mapped_id}",
        )
        if outcome.state is CallState.NOT_FOUND:
            note(
                LogLevel.WARNING,
                f"Stale mapping {foreign_id} -> {mapped_id} for "
                f"{target.resource_type}; resolving again",
            )
            return None
        record = outcome.unwrap()
        note(
            LogLevel.INFO,
            f"Reusing {target.resource_type} {mapped_id} mapped from {foreign_id}",
        )
        return ResolvedObject(
            remote_id=mapped_id,
            origin=Origin.REUSED_EXISTING,
            source_target=target,
            matched_by=MatchedBy.MAPPING,
            record=record,
        )

    def _from_candidate(
        self,
        gateway: MetadataGateway,
        target: ReconciliationTarget,
        note: Callable[[LogLevel, str], None],
    ) -> ResolvedObject | None:
        candidate_id = target.lookup_id
        if candidate_id is None:
            if target.candidate_id:
                note(
                    LogLevel.DEBUG,
                    f"Ignoring malformed candidate id {target.candidate_id!r} "
                    f"for {target.resource_type} {target.label!r}",
                )
            return None

        outcome = self._controller.attempt(
            partial(gateway.fetch_by_id, candidate_id),
            description=f"fetch {target.resource_type} {candidate_id}",
        )
        if outcome.state is CallState.NOT_FOUND:
            note(LogLevel.DEBUG, f"{target.resource_type} {candidate_id} does not exist")
            return None
        record = outcome.unwrap()
        note(LogLevel.INFO, f"Reusing {target.resource_type} {candidate_id} by id")
        return ResolvedObject(
            remote_id=candidate_id,
            origin=Origin.REUSED_EXISTING,
            source_target=target,
            matched_by=MatchedBy.ID,
            record=record,
        )

    def _from_search(
        self,
        gateway: MetadataGateway,
        target: ReconciliationTarget,
        note: Callable[[LogLevel, str], None],
    ) -> ResolvedObject | None:
        values = _search_values(
            target.desired_name, target.desired_code, target.desired_short_name
        )
        found = self._search(gateway, target.resource_type, values, note)
        if found is None:
            return None
        record, search_field = found
        note(
            LogLevel.INFO,
            f"Reusing {target.resource_type} {record.id} matched by {search_field} "
            f"{values[search_field]!r}",
        )
        return ResolvedObject(
            remote_id=record.id,
            origin=Origin.REUSED_EXISTING,
            source_target=target,
            matched_by=search_field.matched_by,
            record=record,
        )

    def _search(
        self,
        gateway: MetadataGateway,
        resource_type: ResourceType,
        values: Mapping[SearchField, str],
        note: Callable[[LogLevel, str], None],
    ) -> tuple[MetadataRecord, SearchField] | None:
        """Search in precedence order; the first strategy with one match wins.

        When no strategy is unambiguous, the highest-precedence strategy that matched
        several objects decides, and its lowest id is taken.
        """

        ambiguous: tuple[SearchField, tuple[MetadataRecord, ...]] | None = None
        for search_field in SEARCH_PRECEDENCE:
            value = values.get(search_field)
            if not value:
                continue
            outcome = self._controller.attempt(
                partial(gateway.search_by_field, search_field, value),
                description=f"search {resource_type} by {search_field} {value!r}",
            )
            if outcome.state is CallState.NOT_FOUND:
                continue
            matches = outcome.unwrap() or ()
            if len(matches) == 1:
                return matches[0], search_field
            if len(matches) > 1 and ambiguous is None:
                ambiguous = (search_field, tuple(matches))

        if ambiguous is None:
            return None
        search_field, matches = ambiguous
        chosen = min(matches, key=lambda record: record.id)
        note(
            LogLevel.WARNING,
            f"{len(matches)} {resource_type} objects share {search_field} "
            f"{values[search_field]!r}; using {chosen.id}",
        )
        return chosen, search_field

    def _create(
        self,
        gateway: MetadataGateway,
        target: ReconciliationTarget,
        payload_factory: PayloadFactory,
        note: Callable[[LogLevel, str], None],
        repair: DependencyRepair | None,
    ) -> ResolvedObject:
        suffix: str | None = None
        for _ in range(self._conflict_retries + 1):
            new_id = self._generate_id()
            build = partial(self._payload, payload_factory, new_id, suffix)
            outcome, payload = self._submit(gateway, target, build, note, repair)
            if outcome.ok:
                created_id = outcome.value or new_id
                note(
                    LogLevel.SUCCESS,
                    f"Created {target.resource_type} {payload.get('name')!r} as {created_id}",
                )
                return ResolvedObject(
                    remote_id=created_id,
                    origin=Origin.CREATED_NEW,
                    source_target=target,
                    matched_by=MatchedBy.CREATED,
                )
            if outcome.state is not CallState.CONFLICT:
                outcome.unwrap()

            note(
                LogLevel.WARNING,
                f"Conflict creating {target.resource_type} {payload.get('name')!r}; "
                "searching again",
            )
            values = _search_values(
                payload.get("name"), payload.get("code"), payload.get("shortName")
            )
            found = self._search(gateway, target.resource_type, values, note)
            if found is not None:
                record, search_field = found
                note(
                    LogLevel.INFO,
                    f"Reusing {target.resource_type} {record.id} found after conflict "
                    f"by {search_field}",
                )
                return ResolvedObject(
                    remote_id=record.id,
                    origin=Origin.REUSED_EXISTING,
                    source_target=target,
                    matched_by=search_field.matched_by,
                    record=record,
                )
            suffix = self._suffix_factory()

        return self._substitute(
            target, note, ConflictUnresolvedError(target.resource_type, target.label)
        )

    @staticmethod
    def _payload(
        payload_factory: PayloadFactory, new_id: str, suffix: str | None
    ) -> Mapping[str, Any]:
        payload = payload_factory(new_id)
        return disambiguate(payload, suffix) if suffix is not None else payload

    def _submit(
        self,
        gateway: MetadataGateway,
        target: ReconciliationTarget,
        build: Callable[[], Mapping[str, Any]],
        note: Callable[[LogLevel, str], None],
        repair: DependencyRepair | None,
    ) -> tuple[CallOutcome[Any], Mapping[str, Any]]:
        """Send one create; a 404 first repairs dependencies, then waits out lag."""

        payload = build()
        description = f"create {target.resource_type} {payload.get('name')!r}"
        if repair is None or not target.dependencies:
            outcome = self._controller.attempt(
                partial(gateway.create, payload), description=description, retry_not_found=True
            )
            return outcome, payload

        outcome = self._controller.attempt(
            partial(gateway.create, payload), description=description
        )
        if outcome.state is not CallState.NOT_FOUND:
            return outcome, payload

        note(
            LogLevel.WARNING,
            f"{target.resource_type} {target.label!r} references missing objects; "
            "checking its dependencies",
        )
        if repair(target):
            payload = build()
        outcome = self._controller.attempt(
            partial(gateway.create, payload), description=description, retry_not_found=True
        )
        return outcome, payload

    # Dependency repair ------------------------------------------------

    def forget(self, target: ReconciliationTarget) -> None:
        """Drop ``target`` from the run memo so the next ``resolve`` starts afresh."""

        self._memo.pop(target.identity_key, None)

    def still_exists(self, resolved: ResolvedObject) -> bool:
        gateway = self._gateways[resolved.resource_type]
        outcome = self._controller.attempt(
            partial(gateway.fetch_by_id, resolved.remote_id),
            description=f"check {resolved.resource_type} {resolved.remote_id}",
        )
        if outcome.state is CallState.NOT_FOUND:
            return False
        outcome.unwrap()
        return True

    def _substitute(
        self,
        target: ReconciliationTarget,
        note: Callable[[LogLevel, str], None],
        error: FatalProvisioningError,
    ) -> ResolvedObject:
        fallback = (
            self._fallbacks.fallback_for(target.resource_type)
            if self._fallbacks is not None
            else None
        )
        if fallback is None:
            note(LogLevel.ERROR, str(error))
            raise error
        note(
            LogLevel.WARNING,
            f"Substituting default {target.resource_type} {fallback.id} "
            f"for {target.label!r}: {error}",
        )
        return ResolvedObject(
            remote_id=fallback.id,
            origin=Origin.FALLBACK_SUBSTITUTED,
            source_target=target,
            matched_by=MatchedBy.FALLBACK,
            record=fallback,
        )

    # Bookkeeping ------------------------------------------------------

    def _remember(self, target: ReconciliationTarget, resolved: ResolvedObject) -> None:
        self._memo[target.identity_key] = resolved
        foreign_id = target.lookup_id
        if foreign_id is not None and foreign_id != resolved.remote_id:
            self._cache.record(target.resource_type, foreign_id, resolved.remote_id)

    @staticmethod
    def _note(journal: Journal | None, level: LogLevel, message: str) -> None:
        if journal is None:
            log.log(_LOGGING_LEVELS[level], message)
        else:
            journal(level, message)
