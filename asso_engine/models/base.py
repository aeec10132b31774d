# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new ObjectId as string."""
    return str(ObjectId())


class BaseEntity(BaseModel):
    """Base entity with common fields for all domain objects."""

    model_config = ConfigDict(
        # Allow population by field name or alias
        populate_by_name=True,
        # Validate assignment
        validate_assignment=True
    )

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
    schema_version: int = Field(default=1, description="Schema version for migrations")

    def evolve(self, now: datetime, **changes):
        """
        Return a validated copy with changes applied and updated_at set to now.

        The original instance is left untouched, so callers can keep the
        snapshot they read and compare it with the new state.

        Raises:
            pydantic.ValidationError: if the changes break a field constraint
        """
        data = self.model_dump()
        data.update(changes)
        data["updated_at"] = now
        return type(self).model_validate(data)


class ScopedEntity(BaseEntity):
    """Entity owned by exactly one association."""

    association_id: str = Field(..., description="Owning association identifier")
