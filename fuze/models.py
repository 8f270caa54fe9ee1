from __future__ import annotations

import enum
from datetime import datetime, UTC

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class ExtractionStatus(str, enum.Enum):
    EXTRACTED = "extracted"
    EXTRACTION_FAILED = "extraction_failed"


class Submission(Base):
    __tablename__ = "submissions"
    # AUTOINCREMENT keeps ids of deleted rows from being handed out again
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Company
    company_name: Mapped[str | None] = mapped_column(Text)
    contact_email: Mapped[str | None] = mapped_column(Text)
    contact_phone: Mapped[str | None] = mapped_column(Text)
    company_size: Mapped[str | None] = mapped_column(Text)
    company_type: Mapped[str | None] = mapped_column(Text)

    # Technology
    technology_name: Mapped[str | None] = mapped_column(Text)
    technology_description: Mapped[str | None] = mapped_column(Text)
    detailed_description: Mapped[str | None] = mapped_column(Text)
    technology_category: Mapped[str | None] = mapped_column(Text)
    unique_value_proposition: Mapped[str | None] = mapped_column(Text)
    military_applications: Mapped[str | None] = mapped_column(Text)
    commercial_applications: Mapped[str | None] = mapped_column(Text)

    # Maturity
    trl_level: Mapped[int | None] = mapped_column(Integer)
    mrl_level: Mapped[int | None] = mapped_column(Integer)
    development_stage: Mapped[str | None] = mapped_column(Text)
    ip_status: Mapped[str | None] = mapped_column(Text)

    # Team
    team_size: Mapped[int | None] = mapped_column(Integer)
    team_expertise: Mapped[str | None] = mapped_column(Text)

    # Funding
    funding_pathway: Mapped[str | None] = mapped_column(Text)
    funding_amount_requested: Mapped[float | None] = mapped_column(Float)
    previous_fuze_awards: Mapped[str | None] = mapped_column(Text)
    previous_fuze_amount: Mapped[float | None] = mapped_column(Float)
    development_timeline: Mapped[str | None] = mapped_column(Text)

    # Government registrations (null means unknown, not "no")
    sam_gov_registered: Mapped[bool | None] = mapped_column(Boolean)
    dsip_registered: Mapped[bool | None] = mapped_column(Boolean)

    # Assessment
    capability_score: Mapped[float | None] = mapped_column(Float)
    ai_assessment: Mapped[str | None] = mapped_column(Text)
    recommendation: Mapped[str | None] = mapped_column(String(50))

    # Provenance
    conversation_transcript: Mapped[str | None] = mapped_column(Text)
    extraction_status: Mapped[str | None] = mapped_column(String(30))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
