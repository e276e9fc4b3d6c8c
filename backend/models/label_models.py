"""
Response Models for the label resolver API
Pydantic models for API responses
"""

from typing import Dict

from pydantic import BaseModel, Field


class LabelsResponse(BaseModel):
    """Filtered image labels for a pod"""
    labels: Dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Request failure"""
    detail: str
