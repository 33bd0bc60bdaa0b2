"""Value types shared by the link store, coordinator and orchestrators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from cohortlinks.links.errors import InvalidLinkTypeError


class LinkType(str, Enum):
    """Where a link record's module comes from."""

    COHORT = "cohort"
    GLOBAL = "global"


def parse_link_type(value: LinkType | str | None) -> LinkType:
    """Parse a link type, raising InvalidLinkTypeError for anything else."""
    try:
        return LinkType(value)
    except ValueError:
        raise InvalidLinkTypeError(value) from None


class ActiveLinkType(str, Enum):
    """Which module source a cohort's students currently see."""

    OWN = "own"
    COHORT = "cohort"
    GLOBAL = "global"


class UntagStep(str, Enum):
    UNLINK_ALL = "unlink_all"
    CONVERT_TO_GLOBAL = "convert_to_global"


@dataclass(frozen=True)
class NewLinkRecord:
    """A link record to be inserted by a replace."""

    cohort_id: UUID
    module_id: UUID
    link_type: LinkType
    source_cohort_id: UUID | None = None
    linked_by: str | None = None
    linked_at: datetime | None = None


@dataclass(frozen=True)
class LinkState:
    """A cohort's derived link fields."""

    active_link_type: ActiveLinkType
    linked_cohort_id: UUID | None = None


@dataclass(frozen=True)
class ReplaceOutcome:
    deleted_count: int
    inserted_count: int
    state: LinkState


@dataclass(frozen=True)
class DeleteOutcome:
    deleted_count: int
    state: LinkState


@dataclass(frozen=True)
class LinkResult:
    """Result of SetLink."""

    links_created: int
    active_link_type: ActiveLinkType
    linked_cohort_id: UUID | None = None
    replaced_count: int = 0


@dataclass(frozen=True)
class UnlinkResult:
    deleted_count: int
    active_link_type: ActiveLinkType


@dataclass(frozen=True)
class CohortLinkState:
    """Read-path view of a cohort, always consistent with its link records."""

    cohort_id: UUID
    name: str
    status: str
    active_link_type: ActiveLinkType
    linked_cohort_id: UUID | None
    link_count: int


@dataclass(frozen=True)
class UntagResult:
    unlinked_count: int
    converted_count: int


@dataclass
class CohortLinkStats:
    """Module counts behind a cohort's current link (admin view)."""

    cohort_id: UUID
    active_source: ActiveLinkType
    active_source_name: str
    visible_modules: int
    own_modules: int
    linked_modules: int
    global_modules: int
    linked_cohort_id: UUID | None = None
    linked_cohort_name: str | None = None


@dataclass
class LinkStateMismatch:
    """A cohort whose derived fields disagree with its link records."""

    cohort_id: UUID
    cohort_name: str
    active_link_type: str
    linked_cohort_id: UUID | None
    link_count: int
    link_types: list[str] = field(default_factory=list)
    source_cohort_ids: list[UUID | None] = field(default_factory=list)
    reason: str = ""
