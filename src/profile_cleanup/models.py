"""Records shared by the inventory source, the removal engine and reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class ProfileRecord:
    """Immutable snapshot of one local user profile on a target host."""

    name: str
    security_id: str
    storage_path: str
    last_use_time: datetime | None = None
    is_loaded: bool = False

    @property
    def sid_key(self) -> str:
        """Case-insensitive comparison key for the security identifier."""
        return self.security_id.casefold()

    @property
    def name_key(self) -> str:
        """Case-insensitive comparison key for the profile name."""
        return self.name.casefold()


@dataclass(frozen=True)
class KeepSpecification:
    """Operator-supplied preservation rule, resolved against one inventory."""

    names_to_keep: frozenset[str] = frozenset()
    security_ids_to_keep: frozenset[str] = frozenset()
    unmatched_names: tuple[str, ...] = ()


class ReasonKind(Enum):
    """Why a profile was removed or skipped."""

    REMOVED = "removed"
    SYSTEM_ACCOUNT = "system_account"
    KEEP_LIST_BY_SID = "keep_list_by_sid"
    KEEP_LIST_BY_NAME = "keep_list_by_name"
    CURRENTLY_LOADED = "currently_loaded"
    REMOVAL_FAILED = "removal_failed"


_REASON_LABELS = {
    ReasonKind.REMOVED: "Removed",
    ReasonKind.SYSTEM_ACCOUNT: "System account",
    ReasonKind.KEEP_LIST_BY_SID: "Keep list (SID)",
    ReasonKind.KEEP_LIST_BY_NAME: "Keep list (name)",
    ReasonKind.CURRENTLY_LOADED: "Currently loaded",
    ReasonKind.REMOVAL_FAILED: "Removal failed",
}


@dataclass(frozen=True)
class RemovalReason:
    """Tagged reason; only REMOVAL_FAILED carries a detail."""

    kind: ReasonKind
    detail: str | None = None

    @classmethod
    def removal_failed(cls, detail: str) -> RemovalReason:
        return cls(ReasonKind.REMOVAL_FAILED, detail)

    def __str__(self) -> str:
        label = _REASON_LABELS[self.kind]
        if self.detail:
            return f"{label}: {self.detail}"
        return label


REMOVED = RemovalReason(ReasonKind.REMOVED)
SYSTEM_ACCOUNT = RemovalReason(ReasonKind.SYSTEM_ACCOUNT)
KEEP_LIST_BY_SID = RemovalReason(ReasonKind.KEEP_LIST_BY_SID)
KEEP_LIST_BY_NAME = RemovalReason(ReasonKind.KEEP_LIST_BY_NAME)
CURRENTLY_LOADED = RemovalReason(ReasonKind.CURRENTLY_LOADED)


class RemovalAction(Enum):
    """Outcome of processing one profile."""

    REMOVED = "removed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RemovalResult:
    """Immutable outcome for one profile after a removal pass."""

    profile: ProfileRecord
    action: RemovalAction
    reason: RemovalReason


@dataclass(frozen=True)
class PlanEntry:
    """A classified profile waiting to be acted on."""

    profile: ProfileRecord
    reason: RemovalReason


@dataclass(frozen=True)
class RemovalPlan:
    """Result of classification: what will be removed and what is kept."""

    to_remove: tuple[PlanEntry, ...] = field(default_factory=tuple)
    to_skip: tuple[PlanEntry, ...] = field(default_factory=tuple)

    @property
    def has_removals(self) -> bool:
        return bool(self.to_remove)
