"""
SQLAlchemy ORM Models for the judicial consultation store

This module defines the local mirror of portal cases:
- One row per case number (business key, unique)
- Child collections tagged with the sync generation that wrote them
- Append-only consultation audit trail
- Per-user monitoring list
- Timestamps for all records (created_at, updated_at)

The portable Uuid column type is used so the schema runs on
PostgreSQL in production and SQLite in tests.

Tables:
1. judicial_processes - Main case record
2. process_activities - Procedural events of a case
3. process_subjects - Parties of a case
4. process_documents - Documents attached to activities
5. consultation_history - Consultation audit entries (append-only)
6. user_processes - Cases monitored by users
"""

import uuid
from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Date, DateTime, Text,
    ForeignKey, Index, UniqueConstraint, Enum, Uuid
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


# ============================================
# ENUMS
# ============================================

class ActivityType(str, PyEnum):
    """Closed classification of procedural activities"""
    HEARING = "hearing"
    RESOLUTION = "resolution"
    NOTIFICATION = "notification"
    DOCUMENT = "document"
    APPEAL = "appeal"
    OTHER = "other"


class SubjectRole(str, PyEnum):
    """Role of a party in a case"""
    PLAINTIFF = "plaintiff"
    DEFENDANT = "defendant"
    OTHER = "other"


class ConsultationType(str, PyEnum):
    """What triggered a consultation"""
    PUBLIC_CONSULT = "public_consult"
    REFRESH = "refresh"
    MONITOR = "monitor"


class ConsultationStatus(str, PyEnum):
    """Outcome recorded in the audit trail"""
    SUCCESS = "success"
    PARTIAL = "partial"
    DEGRADED = "degraded"
    NOT_FOUND = "not_found"
    ERROR = "error"


class ConsultationSource(str, PyEnum):
    """Where the returned case view came from"""
    CACHE = "cache"
    PORTAL = "portal"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class SyncGenerationMixin:
    """Generation id of the sync that wrote a child row"""
    sync_generation: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True
    )


# ============================================
# CASE MODELS
# ============================================

class JudicialProcess(Base, TimestampMixin):
    """
    Main case record, one per case number.

    Created on the first successful scrape and overwritten on every later
    one. Never deleted by the consultation core.
    """
    __tablename__ = "judicial_processes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    # Business key issued by the portal
    case_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True
    )

    # Portal identifiers
    portal_process_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    portal_connection_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Dates
    filing_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_activity_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Court and classification
    court: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    department: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    process_type: Mapped[str] = mapped_column(String(200), nullable=False)

    # Parties
    plaintiff: Mapped[str] = mapped_column(String(1000), nullable=False)
    defendant: Mapped[str] = mapped_column(String(1000), nullable=False)
    raw_parties: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    folio_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    portal_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Sync bookkeeping
    sync_generation: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_process_last_activity', 'last_activity_date'),
    )

    def __repr__(self) -> str:
        return f"<JudicialProcess(id={self.id}, case_number='{self.case_number}')>"


class ProcessActivity(Base, TimestampMixin, SyncGenerationMixin):
    """
    Procedural event (hearing, ruling, notification...) of a case.
    """
    __tablename__ = "process_activities"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    process_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("judicial_processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    portal_activity_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    sequence_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    activity_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    activity_type: Mapped[ActivityType] = mapped_column(
        Enum(ActivityType, name="activity_type", values_callable=_enum_values),
        nullable=False,
        default=ActivityType.OTHER
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    annotation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    term_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    term_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    rule_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    has_documents: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    folio_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index('ix_activity_process_date', 'process_id', 'activity_date'),
    )

    def __repr__(self) -> str:
        return f"<ProcessActivity(process_id={self.process_id}, date={self.activity_date}, type={self.activity_type})>"


class ProcessSubject(Base, TimestampMixin, SyncGenerationMixin):
    """
    Party (plaintiff, defendant or other) of a case.
    """
    __tablename__ = "process_subjects"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    process_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("judicial_processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    portal_subject_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    role: Mapped[SubjectRole] = mapped_column(
        Enum(SubjectRole, name="subject_role", values_callable=_enum_values),
        nullable=False,
        default=SubjectRole.OTHER
    )
    raw_role: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    id_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    id_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    representative: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    has_representative: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<ProcessSubject(process_id={self.process_id}, name='{self.name}', role={self.role})>"


class ProcessDocument(Base, TimestampMixin, SyncGenerationMixin):
    """
    Document of a case, optionally linked to the activity it was filed with.
    """
    __tablename__ = "process_documents"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    process_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("judicial_processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    activity_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("process_activities.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    portal_document_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    document_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    download_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    extension: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    document_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<ProcessDocument(process_id={self.process_id}, filename='{self.filename}')>"


# ============================================
# AUDIT AND MONITORING MODELS
# ============================================

class ConsultationHistory(Base):
    """
    Consultation audit trail.

    One row per consult call, whatever its outcome.
    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "consultation_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    # No updated_at - audit entries are immutable
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    # Requester (nullable for anonymous public consultations)
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # Case reference; process_id is empty when no local record exists
    process_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("judicial_processes.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    case_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    consultation_type: Mapped[ConsultationType] = mapped_column(
        Enum(ConsultationType, name="consultation_type", values_callable=_enum_values),
        nullable=False
    )

    # Client metadata
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Outcome
    result_status: Mapped[ConsultationStatus] = mapped_column(
        Enum(ConsultationStatus, name="consultation_status", values_callable=_enum_values),
        nullable=False,
        index=True
    )
    source: Mapped[Optional[ConsultationSource]] = mapped_column(
        Enum(ConsultationSource, name="consultation_source", values_callable=_enum_values),
        nullable=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index('ix_consultation_case_created', 'case_number', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<ConsultationHistory(case_number='{self.case_number}', status={self.result_status})>"


class UserProcess(Base, TimestampMixin):
    """
    Case monitored by a user.
    """
    __tablename__ = "user_processes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    process_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("judicial_processes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="observer")
    alias: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    process: Mapped["JudicialProcess"] = relationship("JudicialProcess")

    __table_args__ = (
        UniqueConstraint('user_id', 'process_id', name='uq_user_process'),
    )

    def __repr__(self) -> str:
        return f"<UserProcess(user_id='{self.user_id}', process_id={self.process_id})>"
