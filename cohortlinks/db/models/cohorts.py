"""
Cohort, learning module and cohort-module link models.

Override linking model:
- A cohort's students see exactly one module source at a time: the cohort's
  own modules, another cohort's modules, or the global library.
- The source is recorded as one link row per (cohort, module) pair; every
  row of a cohort shares a single (link_type, source_cohort_id).
- cohorts.active_link_type / linked_cohort_id are derived from those rows
  and are written by the link record store, plus a delete trigger that
  resets a cohort to own once its last link row is gone (this covers rows
  removed by a learning module deletion cascade).

Active link types:
- own: no link rows, students see modules owned by the cohort
- cohort: link rows point at modules of linked_cohort_id
- global: link rows point at global library modules
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Cohort(Base):
    """
    A batch of students progressing through a shared curriculum.

    Attributes:
        status: 'active', 'completed' or 'archived'
        active_link_type: derived module source ('own', 'cohort', 'global')
        linked_cohort_id: source cohort, set only when active_link_type = 'cohort'
    """

    __tablename__ = "cohorts"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'completed', 'archived')", name="ck_cohorts_status"
        ),
        CheckConstraint(
            "active_link_type IN ('own', 'cohort', 'global')", name="ck_cohorts_active_link_type"
        ),
        CheckConstraint(
            "(active_link_type = 'cohort' AND linked_cohort_id IS NOT NULL)"
            " OR (active_link_type != 'cohort' AND linked_cohort_id IS NULL)",
            name="ck_cohorts_linked_cohort_matches_type",
        ),
        Index("idx_cohorts_active_link_type", "active_link_type"),
        Index("idx_cohorts_linked_cohort", "linked_cohort_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    tag: Mapped[str | None] = mapped_column(Text, unique=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")

    active_link_type: Mapped[str] = mapped_column(Text, nullable=False, default="own")
    # RESTRICT: a cohort cannot disappear while another cohort is linked to it
    linked_cohort_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("cohorts.id", ondelete="RESTRICT")
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    modules: Mapped[list[LearningModule]] = relationship(
        back_populates="cohort", foreign_keys="LearningModule.cohort_id"
    )
    links: Mapped[list[CohortModuleLink]] = relationship(
        back_populates="cohort",
        foreign_keys="CohortModuleLink.cohort_id",
        passive_deletes=True,
    )
    linked_cohort: Mapped[Cohort | None] = relationship(remote_side=[id])

    def __repr__(self) -> str:
        return f"<Cohort(name={self.name}, active_link_type={self.active_link_type})>"

    @property
    def owns_modules(self) -> bool:
        """Check if students currently see the cohort's own modules."""
        return self.active_link_type == "own"


class LearningModule(Base):
    """
    A learning module owned by a cohort, or part of the global library.

    Global modules have no owning cohort. A module with no owner that is not
    flagged global is orphaned and visible only through existing links.
    """

    __tablename__ = "learning_modules"
    __table_args__ = (
        CheckConstraint(
            "NOT is_global OR cohort_id IS NULL", name="ck_learning_modules_global_unowned"
        ),
        Index("idx_learning_modules_cohort", "cohort_id"),
        Index("idx_learning_modules_global", "is_global"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    week_number: Mapped[int | None] = mapped_column(Integer)
    order_index: Mapped[int | None] = mapped_column(Integer)

    cohort_id: Mapped[UUID | None] = mapped_column(ForeignKey("cohorts.id", ondelete="SET NULL"))
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    cohort: Mapped[Cohort | None] = relationship(back_populates="modules", foreign_keys=[cohort_id])

    def __repr__(self) -> str:
        owner = "global" if self.is_global else f"cohort:{self.cohort_id}"
        return f"<LearningModule(title={self.title}, {owner})>"


class CohortModuleLink(Base):
    """
    One module made visible to a cohort from a single source.

    Rows are never updated in place: they are created by an atomic replace
    and removed by an unlink or by the next replace.

    Attributes:
        link_type: 'cohort' (source_cohort_id set) or 'global' (source_cohort_id null)
        linked_by: actor who requested the link
    """

    __tablename__ = "cohort_module_links"
    __table_args__ = (
        UniqueConstraint("cohort_id", "module_id", name="uq_cohort_module_links_cohort_module"),
        CheckConstraint("link_type IN ('cohort', 'global')", name="ck_cohort_module_links_type"),
        CheckConstraint(
            "(link_type = 'global' AND source_cohort_id IS NULL)"
            " OR (link_type = 'cohort' AND source_cohort_id IS NOT NULL)",
            name="ck_cohort_module_links_source_matches_type",
        ),
        Index("idx_cohort_module_links_type", "cohort_id", "link_type"),
        Index("idx_cohort_module_links_source", "source_cohort_id"),
        Index("idx_cohort_module_links_module", "module_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cohort_id: Mapped[UUID] = mapped_column(
        ForeignKey("cohorts.id", ondelete="CASCADE"), nullable=False
    )
    module_id: Mapped[UUID] = mapped_column(
        ForeignKey("learning_modules.id", ondelete="CASCADE"), nullable=False
    )
    source_cohort_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("cohorts.id", ondelete="RESTRICT")
    )
    link_type: Mapped[str] = mapped_column(Text, nullable=False)

    linked_by: Mapped[str | None] = mapped_column(Text)
    linked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    cohort: Mapped[Cohort] = relationship(back_populates="links", foreign_keys=[cohort_id])
    module: Mapped[LearningModule] = relationship()

    def __repr__(self) -> str:
        source = "global" if self.link_type == "global" else f"cohort:{self.source_cohort_id}"
        return f"<CohortModuleLink(cohort:{self.cohort_id} <- {source}, module:{self.module_id})>"


# A cohort whose last link row disappears falls back to its own modules,
# however the rows were removed (unlink, replace, module deletion cascade).
_RESET_COHORT_LINK_STATE = (
    "UPDATE cohorts SET active_link_type = 'own', linked_cohort_id = NULL "
    "WHERE id = OLD.cohort_id"
)

event.listen(
    CohortModuleLink.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER trg_cohort_module_links_reset_state "
        "AFTER DELETE ON cohort_module_links FOR EACH ROW "
        "WHEN NOT EXISTS (SELECT 1 FROM cohort_module_links WHERE cohort_id = OLD.cohort_id) "
        f"BEGIN {_RESET_COHORT_LINK_STATE}; END"
    ).execute_if(dialect="sqlite"),
)
event.listen(
    CohortModuleLink.__table__,
    "after_create",
    DDL(
        "CREATE OR REPLACE FUNCTION reset_cohort_link_state() RETURNS trigger AS $$ "
        "BEGIN "
        "IF NOT EXISTS (SELECT 1 FROM cohort_module_links WHERE cohort_id = OLD.cohort_id) THEN "
        f"{_RESET_COHORT_LINK_STATE}; "
        "END IF; "
        "RETURN OLD; "
        "END; $$ LANGUAGE plpgsql"
    ).execute_if(dialect="postgresql"),
)
event.listen(
    CohortModuleLink.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER trg_cohort_module_links_reset_state "
        "AFTER DELETE ON cohort_module_links FOR EACH ROW "
        "EXECUTE FUNCTION reset_cohort_link_state()"
    ).execute_if(dialect="postgresql"),
)
