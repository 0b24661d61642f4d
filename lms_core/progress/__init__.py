"""Student progress tracking module.

Provides:
- Lecture completion keyed by lecture id (one entry per lecture)
- Completion percentage against the catalog's lecture count
- Progress reset for re-taking a course
"""

from .models import (
    PROGRESS_TABLES_CQL,
    LectureProgress,
    ProgressSnapshot,
    build_snapshot,
    completion_percentage,
)
from .service import ProgressService


__all__ = [
    "PROGRESS_TABLES_CQL",
    "LectureProgress",
    "ProgressService",
    "ProgressSnapshot",
    "build_snapshot",
    "completion_percentage",
]
