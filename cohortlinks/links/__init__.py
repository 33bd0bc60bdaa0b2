"""
Cross-cohort resource link coordination.

Decides whose learning modules a cohort's students see (its own, another
cohort's, or the global library) and keeps that decision consistent under
concurrent administrative edits.
"""

from cohortlinks.links.audit import LinkStateAuditor
from cohortlinks.links.catalog import ModuleCatalog
from cohortlinks.links.coordinator import LinkStateCoordinator
from cohortlinks.links.cycles import CycleDetector, CycleTrace
from cohortlinks.links.errors import (
    CohortLinkError,
    CohortNotFoundError,
    ConflictError,
    CycleDetectedError,
    EmptyModuleSetError,
    InvalidLinkTypeError,
    MissingSourceCohortError,
    ModuleSourceMismatchError,
    StorageError,
    UnknownModuleError,
    UntagStepError,
    ValidationError,
)
from cohortlinks.links.store import CascadeReconciler, LinkRecordStore
from cohortlinks.links.types import (
    ActiveLinkType,
    CohortLinkState,
    CohortLinkStats,
    LinkResult,
    LinkType,
    UnlinkResult,
    UntagResult,
    UntagStep,
)
from cohortlinks.links.untag import UntagOrchestrator

__all__ = [
    # Components
    "CascadeReconciler",
    "CycleDetector",
    "CycleTrace",
    "LinkRecordStore",
    "LinkStateAuditor",
    "LinkStateCoordinator",
    "ModuleCatalog",
    "UntagOrchestrator",
    # Types
    "ActiveLinkType",
    "CohortLinkState",
    "CohortLinkStats",
    "LinkResult",
    "LinkType",
    "UnlinkResult",
    "UntagResult",
    "UntagStep",
    # Errors
    "CohortLinkError",
    "CohortNotFoundError",
    "ConflictError",
    "CycleDetectedError",
    "EmptyModuleSetError",
    "InvalidLinkTypeError",
    "MissingSourceCohortError",
    "ModuleSourceMismatchError",
    "StorageError",
    "UnknownModuleError",
    "UntagStepError",
    "ValidationError",
]
