"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read ORM objects (`from_attributes=True`)
MUST inherit from BaseResponseSchema so UUIDs and datetimes serialize the
same way everywhere.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas built from ORM models.

    Usage:
        class SchemeResponse(BaseResponseSchema):
            id: UUID
            name: str
            company_id: Optional[UUID] = None
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base class for create/input schemas; unknown fields are ignored."""
    model_config = ConfigDict(
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """Base class for partial updates; only fields the client sent are applied."""
    model_config = ConfigDict(
        extra='ignore',
    )


OptionalUUID = Optional[UUID]
