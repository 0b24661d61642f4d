"""Course catalog module.

Read-side view of course metadata used by the enrollment engine:
- Ordered lecture sequence (authoritative lecture count)
- Course price and existence checks
- enrolled_students back-reference set
"""

from .models import CATALOG_TABLES_CQL, Course, CourseStatus
from .service import CourseCatalog


__all__ = [
    "CATALOG_TABLES_CQL",
    "Course",
    "CourseCatalog",
    "CourseStatus",
]
