"""
Pydantic schemas for the email endpoint.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SendEmailRequest(BaseModel):
    to: str = Field(..., min_length=3, max_length=1000)
    subject: str = Field(..., min_length=1, max_length=500)
    html: str | None = None
    text: str | None = None
