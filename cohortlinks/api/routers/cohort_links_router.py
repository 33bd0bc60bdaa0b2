"""
Cohort link router.

Endpoints for:
- Reading a cohort's link state, stats and visible modules
- Linking a cohort to another cohort or the global library
- Unlinking (all, by type, by module)
- Converting a cohort's own modules to global
- Complete untag (unlink all + convert to global)
"""
from __future__ import annotations

from datetime import datetime
from typing import List, NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from cohortlinks.config import get_settings
from cohortlinks.db.database import get_session
from cohortlinks.links import (
    CohortLinkError,
    CohortNotFoundError,
    ConflictError,
    CycleDetectedError,
    LinkStateCoordinator,
    ModuleCatalog,
    StorageError,
    UntagOrchestrator,
    UntagStepError,
    ValidationError,
)
from cohortlinks.links.errors import storage_errors

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class CohortLinkStateResponse(BaseModel):
    """Response model for a cohort's link state."""

    id: UUID
    name: str
    status: str
    active_link_type: str
    linked_cohort_id: Optional[UUID]
    link_count: int


class CohortStatsResponse(BaseModel):
    """Response model for cohort module counts."""

    visible_modules: int
    active_source: str
    active_source_name: str
    own_modules: int
    linked_modules: int
    global_modules: int
    linked_cohort_id: Optional[UUID]
    linked_cohort_name: Optional[str]


class ModuleResponse(BaseModel):
    """Response model for a visible learning module."""

    id: UUID
    title: str
    week_number: Optional[int]
    order_index: Optional[int]
    cohort_id: Optional[UUID]
    is_global: bool
    created_at: datetime


class LinkRequest(BaseModel):
    """Request model for linking a cohort to a module source."""

    source_type: str = Field(..., description="Source type: 'cohort' or 'global'")
    source_cohort_id: Optional[UUID] = Field(None, description="Source cohort (required for 'cohort')")
    module_ids: Optional[List[UUID]] = Field(
        None, description="Specific modules to link (null = all modules of the source)"
    )
    linked_by: Optional[str] = Field(None, description="Admin performing the link")


class LinkResponse(BaseModel):
    """Response model for a link operation."""

    links_created: int
    active_link_type: str
    linked_cohort_id: Optional[UUID]
    message: str


class UnlinkRequest(BaseModel):
    """Request model for unlinking modules."""

    module_ids: Optional[List[UUID]] = Field(None, description="Modules to unlink")
    link_type: Optional[str] = Field(None, description="Unlink every link of this type")
    unlink_all: bool = Field(False, description="Unlink every linked module")


class UnlinkResponse(BaseModel):
    """Response model for an unlink operation."""

    unlinked_count: int
    active_link_type: str
    message: str


class ConvertRequest(BaseModel):
    """Request model for converting own modules."""

    make_global: bool = Field(True, description="Join the global library (false leaves modules orphaned)")


class ConvertResponse(BaseModel):
    converted_count: int
    message: str


class UntagResponse(BaseModel):
    unlinked_count: int
    converted_count: int
    message: str


# ========================================
# Dependencies
# ========================================


def get_coordinator() -> LinkStateCoordinator:
    return LinkStateCoordinator()


def get_catalog() -> ModuleCatalog:
    return ModuleCatalog()


def get_untag_orchestrator() -> UntagOrchestrator:
    return UntagOrchestrator()


def _raise_http(exc: CohortLinkError) -> NoReturn:
    """Map a link error onto an HTTP error response."""
    if isinstance(exc, CohortNotFoundError):
        status = 404
    elif isinstance(exc, ValidationError):
        status = 400
    elif isinstance(exc, CycleDetectedError):
        status = 422
    elif isinstance(exc, ConflictError):
        status = 409
    elif isinstance(exc, StorageError):
        status = 503
    else:
        status = 500

    if status >= 500:
        logger.error(f"{exc.code}: {exc}")
    else:
        logger.warning(f"Rejected request ({exc.code}): {exc}")
    raise HTTPException(status_code=status, detail={"error": exc.code, "message": str(exc)})


def _commit(db: Session) -> None:
    """Commit inside the endpoint so commit failures map like any other write error."""
    with storage_errors("commit"):
        db.commit()


# ========================================
# Read Endpoints
# ========================================


@router.get("/{cohort_id}", response_model=CohortLinkStateResponse, summary="Get cohort link state")
def get_cohort(
    cohort_id: UUID,
    db: Session = Depends(get_session),
    coordinator: LinkStateCoordinator = Depends(get_coordinator),
) -> CohortLinkStateResponse:
    """
    Get a cohort's active link type and linked cohort.

    Always consistent with the cohort's link records.
    """
    try:
        state = coordinator.get_link_state(db, cohort_id)
    except CohortLinkError as exc:
        _raise_http(exc)

    return CohortLinkStateResponse(
        id=state.cohort_id,
        name=state.name,
        status=state.status,
        active_link_type=state.active_link_type.value,
        linked_cohort_id=state.linked_cohort_id,
        link_count=state.link_count,
    )


@router.get("/{cohort_id}/stats", response_model=CohortStatsResponse, summary="Get cohort module counts")
def get_cohort_stats(
    cohort_id: UUID,
    db: Session = Depends(get_session),
    catalog: ModuleCatalog = Depends(get_catalog),
) -> CohortStatsResponse:
    """Own, linked and global module counts plus what students currently see."""
    try:
        stats = catalog.link_stats(db, cohort_id)
    except CohortLinkError as exc:
        _raise_http(exc)

    return CohortStatsResponse(
        visible_modules=stats.visible_modules,
        active_source=stats.active_source.value,
        active_source_name=stats.active_source_name,
        own_modules=stats.own_modules,
        linked_modules=stats.linked_modules,
        global_modules=stats.global_modules,
        linked_cohort_id=stats.linked_cohort_id,
        linked_cohort_name=stats.linked_cohort_name,
    )


@router.get("/{cohort_id}/modules", response_model=List[ModuleResponse], summary="List visible modules")
def list_visible_modules(
    cohort_id: UUID,
    db: Session = Depends(get_session),
    catalog: ModuleCatalog = Depends(get_catalog),
) -> List[ModuleResponse]:
    """Modules the cohort's students see under its active link."""
    try:
        modules = catalog.visible_modules(db, cohort_id)
    except CohortLinkError as exc:
        _raise_http(exc)

    return [
        ModuleResponse(
            id=m.id,
            title=m.title,
            week_number=m.week_number,
            order_index=m.order_index,
            cohort_id=m.cohort_id,
            is_global=m.is_global,
            created_at=m.created_at,
        )
        for m in modules
    ]


# ========================================
# Link Endpoints
# ========================================


@router.post("/{cohort_id}/link", response_model=LinkResponse, summary="Link cohort to a module source")
def link_modules(
    cohort_id: UUID,
    request: LinkRequest,
    db: Session = Depends(get_session),
    coordinator: LinkStateCoordinator = Depends(get_coordinator),
    catalog: ModuleCatalog = Depends(get_catalog),
) -> LinkResponse:
    """
    Link a cohort to another cohort's modules or the global library.

    Replaces any previous link: only one source is active per cohort.
    Linking to a cohort that (transitively) links back is rejected.
    """
    logger.info(f"Link requested: cohort {cohort_id} <- {request.source_type} {request.source_cohort_id or ''}")

    try:
        # A back-link is a cycle even when the source has nothing to share yet
        link_type = coordinator.check_link(db, cohort_id, request.source_type, request.source_cohort_id)
        module_ids = catalog.resolve_source_modules(
            db, link_type, request.source_cohort_id, request.module_ids
        )
        if not module_ids:
            state = coordinator.get_link_state(db, cohort_id)
            return LinkResponse(
                links_created=0,
                active_link_type=state.active_link_type.value,
                linked_cohort_id=state.linked_cohort_id,
                message="No modules found to link",
            )

        result = coordinator.set_link(
            db,
            cohort_id,
            link_type,
            request.source_cohort_id,
            module_ids,
            actor=request.linked_by or get_settings().default_actor,
        )
        _commit(db)
    except CohortLinkError as exc:
        _raise_http(exc)

    return LinkResponse(
        links_created=result.links_created,
        active_link_type=result.active_link_type.value,
        linked_cohort_id=result.linked_cohort_id,
        message=f"Successfully linked {result.links_created} modules",
    )


@router.delete("/{cohort_id}/link", response_model=UnlinkResponse, summary="Unlink modules")
def unlink_modules(
    cohort_id: UUID,
    request: UnlinkRequest,
    db: Session = Depends(get_session),
    coordinator: LinkStateCoordinator = Depends(get_coordinator),
) -> UnlinkResponse:
    """
    Unlink modules from a cohort.

    When no link records remain the cohort falls back to its own modules.
    """
    try:
        if request.unlink_all:
            result = coordinator.unlink_all(db, cohort_id)
        elif request.link_type is not None:
            result = coordinator.unlink_by_type(db, cohort_id, request.link_type)
        elif request.module_ids:
            result = coordinator.unlink_modules(db, cohort_id, request.module_ids)
        else:
            raise HTTPException(
                status_code=400,
                detail={
                    "error": "validation_error",
                    "message": "module_ids array, link_type or unlink_all flag required",
                },
            )
        _commit(db)
    except CohortLinkError as exc:
        _raise_http(exc)

    return UnlinkResponse(
        unlinked_count=result.deleted_count,
        active_link_type=result.active_link_type.value,
        message=f"Successfully unlinked {result.deleted_count} modules",
    )


@router.post(
    "/{cohort_id}/convert-to-global",
    response_model=ConvertResponse,
    summary="Convert own modules to global",
)
def convert_to_global(
    cohort_id: UUID,
    request: Optional[ConvertRequest] = None,
    db: Session = Depends(get_session),
    catalog: ModuleCatalog = Depends(get_catalog),
) -> ConvertResponse:
    """Release the cohort's own modules to the global library (or orphan them)."""
    make_global = request.make_global if request is not None else True
    try:
        converted = catalog.convert_to_global(db, cohort_id, make_global=make_global)
        _commit(db)
    except CohortLinkError as exc:
        _raise_http(exc)

    target = "global" if make_global else "orphaned"
    return ConvertResponse(
        converted_count=converted,
        message=f"Successfully converted {converted} modules to {target}",
    )


@router.post("/{cohort_id}/untag", response_model=UntagResponse, summary="Complete untag")
def complete_untag(
    cohort_id: UUID,
    orchestrator: UntagOrchestrator = Depends(get_untag_orchestrator),
) -> UntagResponse:
    """
    Unlink every module, then convert the cohort's own modules to global.

    The steps commit separately. On failure the response names the failed
    step; re-running the whole untag is safe.
    """
    try:
        result = orchestrator.complete_untag(cohort_id)
    except UntagStepError as exc:
        status = 404 if isinstance(exc.cause, CohortNotFoundError) else 500
        raise HTTPException(
            status_code=status,
            detail={
                "error": exc.code,
                "failed_step": exc.step,
                "unlinked_count": exc.unlinked_count,
                "retryable": exc.retryable,
                "message": str(exc),
            },
        )

    return UntagResponse(
        unlinked_count=result.unlinked_count,
        converted_count=result.converted_count,
        message=(
            f"Unlinked {result.unlinked_count} modules, "
            f"converted {result.converted_count} own modules to global"
        ),
    )
