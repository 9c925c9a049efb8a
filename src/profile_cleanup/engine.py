"""Profile removal engine: keep-list resolution, classification and execution."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING

from .config import DEFAULT_SYSTEM_SIDS
from .inventory.base import InventoryError
from .models import (
    CURRENTLY_LOADED,
    KEEP_LIST_BY_NAME,
    KEEP_LIST_BY_SID,
    REMOVED,
    SYSTEM_ACCOUNT,
    KeepSpecification,
    PlanEntry,
    ProfileRecord,
    RemovalAction,
    RemovalPlan,
    RemovalReason,
    RemovalResult,
)

if TYPE_CHECKING:
    from .inventory.base import InventorySource

WELL_KNOWN_SYSTEM_SIDS = frozenset(sid.casefold() for sid in DEFAULT_SYSTEM_SIDS)


def normalize_names(names: Iterable[str]) -> frozenset[str]:
    """Trim, casefold and de-duplicate names, dropping blanks."""
    return frozenset(name.strip().casefold() for name in names if name and name.strip())


def resolve_keep_sids(
    names_to_keep: Iterable[str],
    inventory: Sequence[ProfileRecord],
) -> tuple[frozenset[str], tuple[str, ...]]:
    """Resolve keep-list names to the SIDs they belong to in an inventory.

    A name can map to several SIDs when the same account name exists under
    more than one identity; all of them are kept.

    Args:
        names_to_keep: Requested names, compared case-insensitively.
        inventory: Current profile snapshot.

    Returns:
        Casefolded SIDs to keep, and the sorted names with no match.

    """
    lookup: dict[str, list[str]] = {}
    for profile in inventory:
        lookup.setdefault(profile.name_key, []).append(profile.sid_key)

    sids: set[str] = set()
    unmatched: list[str] = []
    for name in normalize_names(names_to_keep):
        if name in lookup:
            sids.update(lookup[name])
        else:
            unmatched.append(name)

    return frozenset(sids), tuple(sorted(unmatched))


def build_keep_specification(
    names: Iterable[str],
    inventory: Sequence[ProfileRecord],
) -> KeepSpecification:
    """Build a keep specification from raw operator input."""
    names_to_keep = normalize_names(names)
    sids, unmatched = resolve_keep_sids(names_to_keep, inventory)
    return KeepSpecification(
        names_to_keep=names_to_keep,
        security_ids_to_keep=sids,
        unmatched_names=unmatched,
    )


def classify_profile(
    profile: ProfileRecord,
    keep_spec: KeepSpecification,
    system_sids: frozenset[str] = WELL_KNOWN_SYSTEM_SIDS,
) -> RemovalReason:
    """Return the first matching reason for one profile, REMOVED if none match."""
    if profile.sid_key in keep_spec.security_ids_to_keep:
        return KEEP_LIST_BY_SID
    if profile.name_key in keep_spec.names_to_keep:
        return KEEP_LIST_BY_NAME
    if profile.sid_key in system_sids:
        return SYSTEM_ACCOUNT
    if profile.is_loaded:
        return CURRENTLY_LOADED
    return REMOVED


def classify(
    profiles: Sequence[ProfileRecord],
    keep_spec: KeepSpecification,
    system_sids: Iterable[str] = WELL_KNOWN_SYSTEM_SIDS,
) -> RemovalPlan:
    """Split an inventory into profiles to remove and profiles to skip.

    Rules are evaluated in a fixed order and the first match wins: keep list
    by SID, keep list by name, well-known system account, currently loaded.
    Profiles matching none of them are marked for removal.
    """
    system_keys = frozenset(sid.casefold() for sid in system_sids)
    to_remove: list[PlanEntry] = []
    to_skip: list[PlanEntry] = []

    for profile in profiles:
        reason = classify_profile(profile, keep_spec, system_keys)
        if reason == REMOVED:
            to_remove.append(PlanEntry(profile, reason))
        else:
            to_skip.append(PlanEntry(profile, reason))

    return RemovalPlan(to_remove=tuple(to_remove), to_skip=tuple(to_skip))


class ProfileRemovalEngine:
    """Carries out a removal plan against one host."""

    def __init__(self, source: InventorySource, host: str, logger: logging.Logger) -> None:
        """Initialize the engine.

        Args:
            source: Inventory source used for deletions.
            host: Target computer name.
            logger: Logger instance.

        """
        self.source = source
        self.host = host
        self.logger = logger

    def remove_profile(self, profile: ProfileRecord) -> RemovalResult:
        """Delete a single profile, turning a failure into a skip."""
        try:
            self.source.delete_profile(self.host, profile.security_id)
        except InventoryError as e:
            self.logger.error("Failed to remove %s (%s): %s", profile.name, profile.security_id, e)
            return RemovalResult(
                profile=profile,
                action=RemovalAction.SKIPPED,
                reason=RemovalReason.removal_failed(str(e) or type(e).__name__),
            )

        self.logger.info("Removed profile %s (%s)", profile.name, profile.security_id)
        return RemovalResult(profile=profile, action=RemovalAction.REMOVED, reason=REMOVED)

    def execute(
        self,
        plan: RemovalPlan,
        on_result: Callable[[RemovalResult], None] | None = None,
    ) -> tuple[list[RemovalResult], list[RemovalResult]]:
        """Delete every profile marked for removal.

        One failed deletion never stops the rest of the batch.

        Args:
            plan: Classification result.
            on_result: Called with each deletion result as soon as it is known.

        Returns:
            Removed results, and skipped results (planned skips first, then
            failed removals).

        """
        removed: list[RemovalResult] = []
        skipped = [
            RemovalResult(profile=entry.profile, action=RemovalAction.SKIPPED, reason=entry.reason)
            for entry in plan.to_skip
        ]

        for entry in plan.to_remove:
            result = self.remove_profile(entry.profile)
            if on_result is not None:
                on_result(result)
            if result.action is RemovalAction.REMOVED:
                removed.append(result)
            else:
                skipped.append(result)

        self.logger.info(
            "Removal pass on %s finished: removed=%d, skipped=%d",
            self.host,
            len(removed),
            len(skipped),
        )
        return removed, skipped
