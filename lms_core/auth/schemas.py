"""Pydantic schemas for authenticated callers."""

from uuid import UUID

from pydantic import BaseModel, EmailStr

from .permissions import UserRole


class AuthenticatedUser(BaseModel):
    """Caller identity extracted from a verified access token."""

    id: UUID
    email: EmailStr
    role: UserRole = UserRole.STUDENT
