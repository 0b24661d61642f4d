"""User directory module.

Owns the users.enrolled_courses back-reference set. The set is a
denormalized listing cache; the purchase ledger is the source of truth.
"""

from .models import USERS_TABLE_CQL, USERS_TABLES_CQL, User
from .service import UserDirectory


__all__ = [
    "USERS_TABLES_CQL",
    "USERS_TABLE_CQL",
    "User",
    "UserDirectory",
]
