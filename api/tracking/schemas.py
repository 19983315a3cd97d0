"""
Pydantic schemas for the tracking admin endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ResetTrackingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Omitted -> reset to the table's current max id.
    reset_to_id: int | None = Field(default=None, alias="resetToId", ge=0)
