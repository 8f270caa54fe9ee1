"""Pydantic request/response schemas for the FUZE portal API."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fuze import services


class _SubmissionFields(BaseModel):
    company_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    company_size: str | None = None
    company_type: str | None = None
    technology_name: str | None = None
    technology_description: str | None = None
    detailed_description: str | None = None
    technology_category: str | None = None
    unique_value_proposition: str | None = None
    military_applications: str | None = None
    commercial_applications: str | None = None
    trl_level: int | None = None
    mrl_level: int | None = None
    development_stage: str | None = None
    ip_status: str | None = None
    team_size: int | None = None
    team_expertise: str | None = None
    funding_pathway: str | None = None
    funding_amount_requested: float | None = None
    previous_fuze_awards: str | None = None
    previous_fuze_amount: float | None = None
    development_timeline: str | None = None
    sam_gov_registered: bool | None = None
    dsip_registered: bool | None = None
    capability_score: float | None = None
    ai_assessment: str | None = None
    recommendation: str | None = None
    conversation_transcript: str | None = None
    extraction_status: str | None = None


class SubmissionIn(_SubmissionFields):
    """Create/update body. Every field is optional; unparseable values become null."""

    @model_validator(mode="before")
    @classmethod
    def coerce_values(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return services.writable_fields(data)
        return data

    def provided_fields(self) -> dict[str, Any]:
        """Only the fields the client actually sent (explicit nulls included)."""
        return self.model_dump(exclude_unset=True)


class SubmissionOut(_SubmissionFields):
    model_config = ConfigDict(extra="ignore")

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SubmissionCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    submission_id: int = Field(alias="submissionId")


class MessageOut(BaseModel):
    message: str


class StatisticsOut(BaseModel):
    total: int
    average_capability_score: float
    registered_count: int
    high_maturity_count: int


class HealthOut(BaseModel):
    status: str
    store: str
