"""
Sync Coordinator

Persists a normalized case and its child collections:
- upsert of the main record keyed by case number
- replace of activities, subjects and documents by sync generation
  (insert rows of the new generation, then delete every other generation)
- one SAVEPOINT per collection so a failing collection does not undo the others
- per-case-number serialization inside the process

Usage:
    coordinator = SyncCoordinator(provider)
    result = coordinator.sync(normalized_case)
    if result.is_partial:
        ...
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.connection import DatabaseSessionProvider
from database.repositories import (
    RepositoryError,
    ProcessRepository,
    ActivityRepository,
    SubjectRepository,
    DocumentRepository,
)
from field_normalizer import NormalizedCase

logger = logging.getLogger(__name__)


class PersistenceError(RepositoryError):
    """Raised when the main case record cannot be written or committed."""
    pass


class SyncStatus(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


@dataclass
class SyncResult:
    """Outcome of one sync: row counts per collection plus collection failures."""
    case_number: str
    process_id: UUID
    generation: UUID
    counts: Dict[str, int] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def status(self) -> SyncStatus:
        return SyncStatus.PARTIAL if self.failures else SyncStatus.FULL

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'case_number': self.case_number,
            'process_id': str(self.process_id),
            'generation': str(self.generation),
            'status': self.status.value,
            'counts': dict(self.counts),
            'failures': dict(self.failures)
        }


class KeyedLock:
    """
    One lock per key, created on demand and dropped when unused.

    Holders of different keys never contend.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List[Any]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def active_keys(self) -> List[str]:
        with self._guard:
            return list(self._locks)


_COLLECTION_ERRORS = (SQLAlchemyError, RepositoryError, ValueError, TypeError)


class SyncCoordinator:
    """Writes normalized cases into the store."""

    def __init__(self, provider: DatabaseSessionProvider, locks: Optional[KeyedLock] = None):
        """
        Args:
            provider: Session provider for the store
            locks: Shared keyed lock (one per coordinator by default)
        """
        self.provider = provider
        self.locks = locks or KeyedLock()

    def sync(self, case: NormalizedCase) -> SyncResult:
        """
        Persist a case and replace its child collections.

        Raises:
            PersistenceError: if the main record upsert or the commit fails
        """
        with self.locks.hold(case.case_number):
            return self._sync_locked(case)

    def _sync_locked(self, case: NormalizedCase) -> SyncResult:
        generation = uuid.uuid4()

        try:
            with self.provider.get_unit_of_work() as uow:
                process_id = ProcessRepository(uow.session).upsert(case.record_fields(), generation)
                if process_id is None:
                    raise PersistenceError(f"Upsert of case {case.case_number} returned no record")

                result = SyncResult(case_number=case.case_number, process_id=process_id, generation=generation)
                activity_ids: Dict[int, UUID] = {}

                for name in ('activities', 'subjects', 'documents'):
                    try:
                        with uow.session.begin_nested():
                            if name == 'activities':
                                count, activity_ids = self._replace_activities(
                                    uow.session, process_id, generation, case)
                            elif name == 'subjects':
                                count = self._replace_subjects(uow.session, process_id, generation, case)
                            else:
                                count = self._replace_documents(
                                    uow.session, process_id, generation, case, activity_ids)
                        result.counts[name] = count
                    except _COLLECTION_ERRORS as e:
                        logger.error(
                            f"Failed to sync {name} for case {case.case_number}: {e}",
                            exc_info=True
                        )
                        result.failures[name] = str(e)

                uow.commit()

        except PersistenceError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist case {case.case_number}: {e}")
            raise PersistenceError(f"Failed to persist case {case.case_number}") from e

        if result.is_partial:
            logger.warning(f"Partial sync of case {case.case_number}: {sorted(result.failures)} failed")
        else:
            logger.info(
                f"Synced case {case.case_number}: "
                + ", ".join(f"{k}={v}" for k, v in result.counts.items())
            )
        return result

    def _replace_activities(self, session: Session, process_id: UUID, generation: UUID,
                            case: NormalizedCase) -> Tuple[int, Dict[int, UUID]]:
        repo = ActivityRepository(session)
        rows = repo.insert_batch(process_id, generation, [asdict(a) for a in case.activities])
        removed = repo.delete_other_generations(process_id, generation)
        logger.debug(f"Activities of {case.case_number}: {len(rows)} written, {removed} removed")
        id_map = {
            row.portal_activity_id: row.id
            for row in rows
            if row.portal_activity_id is not None
        }
        return len(rows), id_map

    def _replace_subjects(self, session: Session, process_id: UUID, generation: UUID,
                          case: NormalizedCase) -> int:
        repo = SubjectRepository(session)
        rows = repo.insert_batch(process_id, generation, [asdict(s) for s in case.subjects])
        repo.delete_other_generations(process_id, generation)
        return len(rows)

    def _replace_documents(self, session: Session, process_id: UUID, generation: UUID,
                           case: NormalizedCase, activity_ids: Dict[int, UUID]) -> int:
        payload = []
        for document in case.documents:
            row = asdict(document)
            portal_activity_id = row.pop('portal_activity_id')
            row['activity_id'] = activity_ids.get(portal_activity_id)
            payload.append(row)

        repo = DocumentRepository(session)
        rows = repo.insert_batch(process_id, generation, payload)
        repo.delete_other_generations(process_id, generation)
        return len(rows)
