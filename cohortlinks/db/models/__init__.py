# SQLAlchemy models
from .base import Base
from .cohorts import Cohort, CohortModuleLink, LearningModule

__all__ = [
    "Base",
    "Cohort",
    "CohortModuleLink",
    "LearningModule",
]
