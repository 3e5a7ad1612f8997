"""
Authentication schemas
"""
from typing import Optional
from uuid import UUID
from pydantic import Field

from signposting.models.user import UserRole
from signposting.schemas import BaseSchema


class TokenPayload(BaseSchema):
    """Schema for JWT token payload"""
    sub: UUID = Field(..., description="User ID (subject)")
    email: str = Field(..., description="User email")
    role: UserRole = Field(..., description="User role")
    surgery_id: Optional[UUID] = Field(None, description="Surgery ID")
    exp: int = Field(..., description="Token expiration timestamp")
    iat: int = Field(..., description="Token issued at timestamp")
