"""
Repository Pattern for judicial consultation store operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns.
"""

import logging
import uuid
from typing import List, Optional, Dict, Any, Tuple
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy import select, delete, func, and_, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError

from database.models import (
    JudicialProcess,
    ProcessActivity,
    ProcessSubject,
    ProcessDocument,
    ConsultationHistory,
    UserProcess,
    ConsultationType,
    ConsultationStatus,
    ConsultationSource,
)
from database.monitoring import timed_query

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


def _dialect_insert(session: Session, table):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise RepositoryError(f"Upsert not supported on dialect '{dialect}'")


def _contains(column, text: str):
    """Case-insensitive substring match with LIKE wildcards taken literally."""
    escaped = text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return column.ilike(f"%{escaped}%", escape='\\')


# ============================================
# PROCESS REPOSITORY
# ============================================

class ProcessRepository:
    """Repository for main case records."""

    def __init__(self, session: Session):
        self.session = session

    @timed_query("upsert_process")
    def upsert(self, fields: Dict[str, Any], generation: UUID) -> Optional[UUID]:
        """
        Insert or fully overwrite the case record keyed by case_number.

        Args:
            fields: Column values (must include case_number)
            generation: Sync generation id stamped on the record

        Returns:
            Id of the inserted or updated row, None if the store returned nothing
        """
        table = JudicialProcess.__table__
        now = datetime.now(timezone.utc)

        stmt = _dialect_insert(self.session, table).values(
            id=uuid.uuid4(),
            sync_generation=generation,
            last_synced_at=now,
            **fields
        )

        overwrite = {
            name: stmt.excluded[name]
            for name in fields
            if name != 'case_number'
        }
        overwrite.update({
            "sync_generation": stmt.excluded.sync_generation,
            "last_synced_at": stmt.excluded.last_synced_at,
            "updated_at": func.now(),
        })

        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.case_number],
            set_=overwrite,
        ).returning(table.c.id)

        return self.session.execute(stmt).scalar_one_or_none()

    @timed_query("get_process_by_case_number")
    def get_by_case_number(self, case_number: str) -> Optional[JudicialProcess]:
        query = select(JudicialProcess).where(JudicialProcess.case_number == case_number)
        return self.session.execute(query).scalar_one_or_none()

    @timed_query("get_process_id")
    def get_id_by_case_number(self, case_number: str) -> Optional[UUID]:
        """Single-column lookup used by the existence check."""
        query = select(JudicialProcess.id).where(JudicialProcess.case_number == case_number)
        return self.session.execute(query).scalar_one_or_none()

    @timed_query("get_process_by_id")
    def get_by_id(self, process_id: UUID) -> Optional[JudicialProcess]:
        return self.session.get(JudicialProcess, process_id)

    @timed_query("search_processes")
    def search(
        self,
        query: Optional[str] = None,
        court: Optional[str] = None,
        plaintiff: Optional[str] = None,
        defendant: Optional[str] = None,
        process_type: Optional[str] = None,
        offset: int = 0,
        limit: int = 10
    ) -> Tuple[List[JudicialProcess], int]:
        """
        Case-insensitive substring search with pagination.

        Args:
            query: Free text matched against case number, court and parties
            court, plaintiff, defendant, process_type: Per-column filters
            offset: Pagination offset
            limit: Maximum results

        Returns:
            Tuple of (records list, total count)
        """
        conditions = []

        if query:
            conditions.append(or_(
                _contains(JudicialProcess.case_number, query),
                _contains(JudicialProcess.court, query),
                _contains(JudicialProcess.plaintiff, query),
                _contains(JudicialProcess.defendant, query),
            ))
        if court:
            conditions.append(_contains(JudicialProcess.court, court))
        if plaintiff:
            conditions.append(_contains(JudicialProcess.plaintiff, plaintiff))
        if defendant:
            conditions.append(_contains(JudicialProcess.defendant, defendant))
        if process_type:
            conditions.append(_contains(JudicialProcess.process_type, process_type))

        count_query = select(func.count()).select_from(JudicialProcess)
        if conditions:
            count_query = count_query.where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        data_query = select(JudicialProcess)
        if conditions:
            data_query = data_query.where(and_(*conditions))
        data_query = data_query.order_by(
            JudicialProcess.updated_at.desc(),
            JudicialProcess.case_number
        ).offset(offset).limit(limit)

        records = list(self.session.execute(data_query).scalars().all())
        return records, total

    def count(self) -> int:
        return self.session.execute(select(func.count()).select_from(JudicialProcess)).scalar_one()


# ============================================
# CHILD COLLECTION REPOSITORIES
# ============================================

class ChildCollectionRepository:
    """
    Shared insert / delete-by-filter operations for the child tables.

    Rows are tagged with the sync generation that wrote them, so a
    replace is "insert new generation, then delete every other one".
    """

    model = None

    def __init__(self, session: Session):
        self.session = session

    def insert_batch(self, process_id: UUID, generation: UUID, rows: List[Dict[str, Any]]) -> List[Any]:
        """
        Insert rows for a process, tagged with a generation.

        Returns:
            The created ORM instances (ids populated)
        """
        instances = [
            self.model(process_id=process_id, sync_generation=generation, **row)
            for row in rows
        ]
        self.session.add_all(instances)
        self.session.flush()
        return instances

    def delete_other_generations(self, process_id: UUID, generation: UUID) -> int:
        """
        Delete rows of a process written by any other generation.

        Returns:
            Number of rows removed
        """
        stmt = delete(self.model).where(
            self.model.process_id == process_id,
            self.model.sync_generation != generation
        ).execution_options(synchronize_session=False)
        return self.session.execute(stmt).rowcount

    def count_for_process(self, process_id: UUID) -> int:
        query = select(func.count()).select_from(self.model).where(self.model.process_id == process_id)
        return self.session.execute(query).scalar_one()

    def _ordering(self):
        return (self.model.created_at,)

    def list_for_process(self, process_id: UUID) -> List[Any]:
        query = select(self.model).where(self.model.process_id == process_id).order_by(*self._ordering())
        return list(self.session.execute(query).scalars().all())


class ActivityRepository(ChildCollectionRepository):
    """Repository for procedural activities."""

    model = ProcessActivity

    def _ordering(self):
        return (
            ProcessActivity.activity_date.desc().nulls_last(),
            ProcessActivity.sequence_number.desc().nulls_last()
        )

    @timed_query("list_activities")
    def list_for_process(self, process_id: UUID) -> List[ProcessActivity]:
        """Activities of a process, newest first."""
        return super().list_for_process(process_id)


class SubjectRepository(ChildCollectionRepository):
    """Repository for case parties."""

    model = ProcessSubject

    def _ordering(self):
        return (ProcessSubject.role, ProcessSubject.name)


class DocumentRepository(ChildCollectionRepository):
    """Repository for case documents."""

    model = ProcessDocument

    def _ordering(self):
        return (ProcessDocument.document_date.desc().nulls_last(), ProcessDocument.filename)


# ============================================
# CONSULTATION AUDIT REPOSITORY
# ============================================

class ConsultationRepository:
    """Repository for the consultation audit trail (append-only)."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        case_number: str,
        consultation_type: ConsultationType,
        result_status: ConsultationStatus,
        process_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        source: Optional[ConsultationSource] = None,
        error_message: Optional[str] = None
    ) -> ConsultationHistory:
        """
        Append a consultation audit entry.

        Returns:
            Created ConsultationHistory
        """
        entry = ConsultationHistory(
            case_number=case_number,
            consultation_type=consultation_type,
            result_status=result_status,
            process_id=process_id,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            source=source,
            error_message=error_message
        )

        self.session.add(entry)
        self.session.flush()
        return entry

    def list_for_case(self, case_number: str, limit: int = 100) -> List[ConsultationHistory]:
        query = select(ConsultationHistory).where(
            ConsultationHistory.case_number == case_number
        ).order_by(ConsultationHistory.created_at.desc()).limit(limit)
        return list(self.session.execute(query).scalars().all())

    def count(self, case_number: Optional[str] = None) -> int:
        query = select(func.count()).select_from(ConsultationHistory)
        if case_number:
            query = query.where(ConsultationHistory.case_number == case_number)
        return self.session.execute(query).scalar_one()


# ============================================
# MONITORING LIST REPOSITORY
# ============================================

class UserProcessRepository:
    """Repository for cases monitored by users."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        user_id: str,
        process_id: UUID,
        role: str = "observer",
        alias: Optional[str] = None
    ) -> UserProcess:
        """
        Add a case to a user's monitoring list.

        Raises:
            DuplicateEntityError: If the user already monitors the case
        """
        link = UserProcess(user_id=user_id, process_id=process_id, role=role, alias=alias)
        try:
            with self.session.begin_nested():
                self.session.add(link)
                self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntityError(f"User {user_id} already monitors process {process_id}") from e
        return link

    def remove(self, user_id: str, process_id: UUID) -> bool:
        """
        Remove a case from a user's monitoring list.

        Returns:
            True if a link was removed
        """
        stmt = delete(UserProcess).where(
            UserProcess.user_id == user_id,
            UserProcess.process_id == process_id
        ).execution_options(synchronize_session=False)
        return self.session.execute(stmt).rowcount > 0

    @timed_query("list_monitored")
    def list_for_user(self, user_id: str) -> List[UserProcess]:
        query = select(UserProcess).where(
            UserProcess.user_id == user_id
        ).options(
            selectinload(UserProcess.process)
        ).order_by(UserProcess.created_at.desc())
        return list(self.session.execute(query).scalars().all())
