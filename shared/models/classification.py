"""Pydantic models for automatic report classification."""

from typing import Literal

from pydantic import BaseModel, Field

ReportCategory = Literal["DIEN", "NUOC", "MANG", "NOI_THAT", "DIEU_HOA", "VE_SINH", "AN_NINH", "KHAC"]
ReportPriority = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW"]


class ClassifyRequest(BaseModel):
    description: str = Field(min_length=3, max_length=2000)
    location: str | None = None


class SuggestPriorityRequest(BaseModel):
    description: str = Field(min_length=3, max_length=2000)


class SuggestPriorityResponse(BaseModel):
    priority: ReportPriority


class ClassificationResult(BaseModel):
    """Category, priority and staffing suggestion for a report."""

    category: ReportCategory
    priority: ReportPriority
    suggested_staff_skills: list[str] = Field(default=[], alias="suggestedStaffSkills")
    estimated_duration: int = Field(default=60, ge=0, alias="estimatedDuration")
    reasoning: str = ""
    confidence: float = Field(default=0.8, ge=0, le=1)
    similar_report_ids: list[str] = []

    model_config = {"populate_by_name": True}


FALLBACK_CLASSIFICATION = ClassificationResult(
    category="KHAC",
    priority="MEDIUM",
    suggested_staff_skills=[],
    estimated_duration=60,
    reasoning="Không thể phân loại tự động",
    confidence=0.5,
)
