# hmohunter/models.py
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# -----------------------------
# Core enums
# -----------------------------
class JobRunStatus(str, enum.Enum):
    running = "running"
    success = "success"
    failed = "failed"


# -----------------------------
# Models
# -----------------------------
class Property(Base):
    """
    One real-world property, reconciled across sources.

    source_name/external_id record the source that created the row; every
    source that has contributed is listed in property_source_refs.
    field_sources maps column name -> source that last wrote it.
    """

    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    source_name: Mapped[str] = mapped_column(String(60), index=True)
    external_id: Mapped[str] = mapped_column(String(255))

    # core identity / location
    address: Mapped[str] = mapped_column(String(255))
    postcode: Mapped[str] = mapped_column(String(10), index=True)
    city: Mapped[str | None] = mapped_column(String(80), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[float | None] = mapped_column(Float, nullable=True)
    listing_type: Mapped[str] = mapped_column(String(20), default="rent")
    uprn: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)

    # listing
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    property_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    price_pcm: Mapped[float | None] = mapped_column(Float, nullable=True)
    purchase_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    images: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    floor_plans: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    source_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_furnished: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_student_friendly: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_pet_friendly: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    available_from: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # licensing
    licence_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    licence_start_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    licence_end_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    licence_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    max_occupants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    licensed_hmo: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    hmo_status: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # ownership
    owner_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    company_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    title_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    owner_enrichment_source: Mapped[str | None] = mapped_column(String(60), nullable=True)

    # epc
    epc_rating: Mapped[str | None] = mapped_column(String(2), nullable=True)
    epc_rating_numeric: Mapped[int | None] = mapped_column(Integer, nullable=True)
    epc_certificate_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    epc_expiry_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    floor_area: Mapped[float | None] = mapped_column(Float, nullable=True)

    # planning
    article_4_area: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    conservation_area: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    listed_building_grade: Mapped[str | None] = mapped_column(String(10), nullable=True)
    planning_constraints: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    # connectivity
    broadband_max_download: Mapped[float | None] = mapped_column(Float, nullable=True)
    broadband_max_upload: Mapped[float | None] = mapped_column(Float, nullable=True)
    has_fibre: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # valuation
    estimated_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated_rent: Mapped[float | None] = mapped_column(Float, nullable=True)
    rental_yield: Mapped[float | None] = mapped_column(Float, nullable=True)
    area_avg_rent: Mapped[float | None] = mapped_column(Float, nullable=True)
    year_built: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # tracking
    last_synced: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    last_enriched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    title_last_enriched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_stale: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    stale_marked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    field_sources: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PropertySourceRef(Base):
    """(source, external id) -> property; one row per contributing source record."""

    __tablename__ = "property_source_refs"
    __table_args__ = (
        UniqueConstraint("source_name", "external_id", name="uq_source_ref"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id", ondelete="CASCADE"), index=True)
    source_name: Mapped[str] = mapped_column(String(60))
    external_id: Mapped[str] = mapped_column(String(255))
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class JobRun(Base):
    """
    Tracks job executions (ingestion runs from the API or scripts).
    hmohunter/service_layer/jobruns.py writes these.
    """
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(80), index=True)

    status: Mapped[JobRunStatus] = mapped_column(Enum(JobRunStatus), default=JobRunStatus.running, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # store error stack or message
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # optional metadata: {"source": "propertydata_hmo"}
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)
