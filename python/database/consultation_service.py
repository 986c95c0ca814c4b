"""
Consultation Service for judicial cases

This module decides, per consultation, whether a case is served from the
local store or scraped fresh from the portal, and keeps the consultation
audit trail. It follows dependency injection patterns for improved
testability.

Key Features:
- Existence lookup by case number (fails open to "not stored")
- Cache hit vs. fresh scrape policy with forced refresh
- Concurrent portal fan-out on a bounded thread pool
- Exactly one audit entry per consultation
- Local search, per-case activity/subject listings and user monitoring lists

Usage:
    # With FastAPI
    @app.post("/api/judicial/consult")
    def consult(
        body: ConsultRequest,
        service: ConsultationService = Depends(get_consultation_service)
    ):
        return service.consult(body.case_number).to_dict()

    # Standalone
    service = ConsultationService(provider, PortalClient(config.portal))
    view = service.consult("11001310300120230012300", force_refresh=True)
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from config_manager import SearchConfig
from database.connection import DatabaseSessionProvider
from database.models import (
    ConsultationType,
    ConsultationStatus,
    ConsultationSource,
)
from database.repositories import (
    DuplicateEntityError,
    ProcessRepository,
    ActivityRepository,
    SubjectRepository,
    DocumentRepository,
    ConsultationRepository,
    UserProcessRepository,
)
from database.sync_coordinator import SyncCoordinator, SyncStatus
from field_normalizer import (
    NormalizedCase,
    document_activity_ids,
    normalize_case,
    normalize_case_number,
)
from portal_client import BasicInfoResult, FetchStatus, PortalClient

logger = logging.getLogger(__name__)


class ConsultationError(Exception):
    """Base exception for consultation errors."""
    pass


class CaseNotFoundError(ConsultationError):
    """The case is unknown to the portal (or to the store, for local reads)."""
    pass


class PortalUnavailableError(ConsultationError):
    """The portal could not be reached or answered garbage for basic info."""
    pass


class AlreadyMonitoredError(ConsultationError):
    """The user already monitors the case."""
    pass


# ============================================
# VIEW BUILDING
# ============================================

CASE_FIELDS = (
    'case_number', 'portal_process_id', 'portal_connection_id', 'filing_date',
    'last_activity_date', 'court', 'department', 'process_type', 'plaintiff',
    'defendant', 'raw_parties', 'folio_count', 'is_private', 'status', 'portal_url',
)
ACTIVITY_FIELDS = (
    'portal_activity_id', 'sequence_number', 'activity_date', 'activity_type',
    'description', 'annotation', 'term_start_date', 'term_end_date', 'rule_code',
    'has_documents', 'folio_count',
)
SUBJECT_FIELDS = (
    'portal_subject_id', 'name', 'role', 'raw_role', 'id_number', 'id_type',
    'representative', 'has_representative',
)
DOCUMENT_FIELDS = (
    'portal_document_id', 'filename', 'document_type', 'download_url',
    'size_bytes', 'extension', 'document_date',
)


def _serialize(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    return value


def _pick(obj: Any, names: Tuple[str, ...]) -> Dict[str, Any]:
    """Same keys whether obj is a normalized dataclass or an ORM row."""
    return {name: _serialize(getattr(obj, name)) for name in names}


@dataclass
class ClientContext:
    """Who asked, for the audit trail"""
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class CaseView:
    """A case with its children, as returned to callers"""
    case: Dict[str, Any]
    activities: List[Dict[str, Any]]
    subjects: List[Dict[str, Any]]
    documents: List[Dict[str, Any]]
    source: ConsultationSource
    process_id: Optional[UUID] = None
    degraded: bool = False
    sync_status: Optional[SyncStatus] = None
    sync_failures: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_normalized(cls, case: NormalizedCase, **kwargs) -> 'CaseView':
        return cls(
            case=_pick(case, CASE_FIELDS),
            activities=[_pick(a, ACTIVITY_FIELDS) for a in case.activities],
            subjects=[_pick(s, SUBJECT_FIELDS) for s in case.subjects],
            documents=[_pick(d, DOCUMENT_FIELDS) for d in case.documents],
            source=ConsultationSource.PORTAL,
            **kwargs
        )

    @classmethod
    def from_records(cls, process, activities, subjects, documents) -> 'CaseView':
        return cls(
            case=_pick(process, CASE_FIELDS),
            activities=[_pick(a, ACTIVITY_FIELDS) for a in activities],
            subjects=[_pick(s, SUBJECT_FIELDS) for s in subjects],
            documents=[_pick(d, DOCUMENT_FIELDS) for d in documents],
            source=ConsultationSource.CACHE,
            process_id=process.id
        )

    @property
    def audit_status(self) -> ConsultationStatus:
        if self.degraded:
            return ConsultationStatus.DEGRADED
        if self.sync_status == SyncStatus.PARTIAL:
            return ConsultationStatus.PARTIAL
        return ConsultationStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.case)
        data.update({
            'process_id': str(self.process_id) if self.process_id else None,
            'activities': self.activities,
            'subjects': self.subjects,
            'documents': self.documents,
        })
        return {
            'source': self.source.value,
            'degraded': self.degraded,
            'sync_status': self.sync_status.value if self.sync_status else None,
            'sync_failures': dict(self.sync_failures),
            'data': data,
        }


# ============================================
# SERVICE
# ============================================

class ConsultationService:
    """
    Consultation policy over the portal client, sync coordinator and store.

    Follows the dependency injection pattern for testability.
    """

    def __init__(
        self,
        provider: DatabaseSessionProvider,
        portal_client: PortalClient,
        sync_coordinator: Optional[SyncCoordinator] = None,
        search_config: Optional[SearchConfig] = None
    ):
        """
        Initialize the consultation service.

        Args:
            provider: Store session provider
            portal_client: Portal client (its config bounds the fetch fan-out)
            sync_coordinator: Coordinator to persist scrapes (built from provider if omitted)
            search_config: Page size limits for local search
        """
        self.provider = provider
        self.portal = portal_client
        self.sync_coordinator = sync_coordinator or SyncCoordinator(provider)
        self.search_config = search_config or SearchConfig()

    # ------------------------------------------
    # Existence index
    # ------------------------------------------

    def exists(self, case_number: str) -> Optional[UUID]:
        """
        Id of the stored case, or None.

        Lookup errors are logged and reported as "not stored" so the
        caller falls back to a fresh scrape.
        """
        try:
            with self.provider.session_scope() as session:
                return ProcessRepository(session).get_id_by_case_number(case_number)
        except SQLAlchemyError as e:
            logger.error(f"Existence lookup failed for {case_number}: {e}")
            return None

    # ------------------------------------------
    # Consultation
    # ------------------------------------------

    def consult(
        self,
        case_number: str,
        force_refresh: bool = False,
        client: Optional[ClientContext] = None,
        consultation_type: ConsultationType = ConsultationType.PUBLIC_CONSULT
    ) -> CaseView:
        """
        Consult a case, from the store when possible.

        Args:
            case_number: Case number to consult
            force_refresh: Always scrape the portal
            client: Requester metadata for the audit trail
            consultation_type: Kind of consultation recorded in the audit trail

        Returns:
            CaseView with source "cache" or "portal"

        Raises:
            ValueError: if the case number is empty
            CaseNotFoundError: if the portal has no such case
            PortalUnavailableError: if basic info could not be fetched
            PersistenceError: if the scraped case could not be stored
        """
        case_number = normalize_case_number(case_number)
        client = client or ClientContext()

        status = ConsultationStatus.ERROR
        source: Optional[ConsultationSource] = None
        process_id: Optional[UUID] = None
        error_message: Optional[str] = None

        try:
            view = self._consult(case_number, force_refresh)
            status = view.audit_status
            source = view.source
            process_id = view.process_id
            return view
        except CaseNotFoundError as e:
            status = ConsultationStatus.NOT_FOUND
            error_message = str(e)
            raise
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
            raise
        finally:
            self._record_consultation(
                case_number=case_number,
                consultation_type=consultation_type,
                result_status=status,
                process_id=process_id,
                source=source,
                client=client,
                error_message=error_message
            )

    def _consult(self, case_number: str, force_refresh: bool) -> CaseView:
        if not force_refresh:
            process_id = self.exists(case_number)
            if process_id is not None:
                try:
                    view = self.get_case_view(process_id)
                except SQLAlchemyError as e:
                    logger.error(f"Cached read failed for {case_number}, scraping instead: {e}")
                    view = None
                if view is not None:
                    logger.info(f"Case {case_number} served from cache")
                    return view

        return self._refresh(case_number)

    def _refresh(self, case_number: str) -> CaseView:
        basic, activities, subjects, documents = self._scrape(case_number)

        if basic.status == FetchStatus.NOT_FOUND:
            raise CaseNotFoundError(f"Case {case_number} not found")
        if basic.status == FetchStatus.FAILED:
            logger.error(f"Portal unavailable for {case_number}: {basic.cause}")
            raise PortalUnavailableError(f"Portal unavailable for case {case_number}")

        normalized = normalize_case(
            case_number, basic.data, activities, subjects, documents,
            site_url=self.portal.config.site_url
        )

        if basic.status == FetchStatus.DEGRADED:
            # Placeholder data is returned but never persisted
            return CaseView.from_normalized(normalized, degraded=True)

        result = self.sync_coordinator.sync(normalized)
        return CaseView.from_normalized(
            normalized,
            process_id=result.process_id,
            sync_status=result.status,
            sync_failures=dict(result.failures)
        )

    def _scrape(self, case_number: str) -> Tuple[BasicInfoResult, List[Dict], List[Dict], List[Dict]]:
        """
        Fetch basic info, activities and subjects concurrently.

        Document fetches are queued as soon as activities arrive. Anything
        other than fresh basic info cancels whatever is still pending.
        """
        pool = ThreadPoolExecutor(
            max_workers=self.portal.config.max_workers,
            thread_name_prefix="portal-fetch"
        )
        try:
            basic_future = pool.submit(self.portal.fetch_basic_info, case_number)
            activities_future = pool.submit(self.portal.fetch_activities, case_number)
            subjects_future = pool.submit(self.portal.fetch_subjects, case_number)

            document_futures = []
            pending = {basic_future, activities_future}
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                if basic_future in done and not basic_future.result().is_fresh:
                    return basic_future.result(), [], [], []
                if activities_future in done:
                    document_futures = [
                        pool.submit(self.portal.fetch_documents_for_activity, case_number, activity_id)
                        for activity_id in document_activity_ids(activities_future.result())
                    ]

            documents = [doc for future in document_futures for doc in future.result()]
            return basic_future.result(), activities_future.result(), subjects_future.result(), documents
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _record_consultation(
        self,
        case_number: str,
        consultation_type: ConsultationType,
        result_status: ConsultationStatus,
        process_id: Optional[UUID],
        source: Optional[ConsultationSource],
        client: ClientContext,
        error_message: Optional[str]
    ) -> None:
        """Append the audit entry; a failed write never fails the consultation."""
        try:
            with self.provider.session_scope() as session:
                ConsultationRepository(session).log(
                    case_number=case_number,
                    consultation_type=consultation_type,
                    result_status=result_status,
                    process_id=process_id,
                    user_id=client.user_id,
                    ip_address=client.ip_address,
                    user_agent=client.user_agent,
                    source=source,
                    error_message=error_message
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record consultation of {case_number}: {e}")

    # ------------------------------------------
    # Local reads
    # ------------------------------------------

    def get_case_view(self, process_id: UUID) -> Optional[CaseView]:
        """Stored case with its children, or None if the id is unknown."""
        with self.provider.session_scope() as session:
            process = ProcessRepository(session).get_by_id(process_id)
            if process is None:
                return None
            return CaseView.from_records(
                process,
                ActivityRepository(session).list_for_process(process_id),
                SubjectRepository(session).list_for_process(process_id),
                DocumentRepository(session).list_for_process(process_id)
            )

    def search(
        self,
        query: Optional[str] = None,
        court: Optional[str] = None,
        plaintiff: Optional[str] = None,
        defendant: Optional[str] = None,
        process_type: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Search stored cases.

        Returns:
            Dict with results and pagination (limit capped at max_page_size)
        """
        limit = limit or self.search_config.default_page_size
        limit = max(1, min(limit, self.search_config.max_page_size))
        page = max(1, page)

        with self.provider.session_scope() as session:
            records, total = ProcessRepository(session).search(
                query=query,
                court=court,
                plaintiff=plaintiff,
                defendant=defendant,
                process_type=process_type,
                offset=(page - 1) * limit,
                limit=limit
            )
            results = []
            for record in records:
                item = _pick(record, CASE_FIELDS)
                item['process_id'] = str(record.id)
                results.append(item)

        return {
            'results': results,
            'total': total,
            'page': page,
            'limit': limit,
            'pages': math.ceil(total / limit) if total else 0
        }

    def _require_process_id(self, session, case_number: str) -> UUID:
        case_number = normalize_case_number(case_number)
        process_id = ProcessRepository(session).get_id_by_case_number(case_number)
        if process_id is None:
            raise CaseNotFoundError(f"Case {case_number} not found")
        return process_id

    def list_activities(self, case_number: str) -> List[Dict[str, Any]]:
        """Stored activities of a case, newest first."""
        with self.provider.session_scope() as session:
            process_id = self._require_process_id(session, case_number)
            rows = ActivityRepository(session).list_for_process(process_id)
            return [_pick(row, ACTIVITY_FIELDS) for row in rows]

    def list_subjects(self, case_number: str) -> List[Dict[str, Any]]:
        """Stored parties of a case."""
        with self.provider.session_scope() as session:
            process_id = self._require_process_id(session, case_number)
            rows = SubjectRepository(session).list_for_process(process_id)
            return [_pick(row, SUBJECT_FIELDS) for row in rows]

    # ------------------------------------------
    # Monitoring lists
    # ------------------------------------------

    def monitor(
        self,
        case_number: str,
        user_id: str,
        role: str = "observer",
        alias: Optional[str] = None,
        client: Optional[ClientContext] = None
    ) -> Dict[str, Any]:
        """
        Add a case to a user's monitoring list, scraping it first if unknown.

        Raises:
            AlreadyMonitoredError: if the user already monitors the case
            PortalUnavailableError: if an unknown case could not be stored
        """
        case_number = normalize_case_number(case_number)
        process_id = self.exists(case_number)

        if process_id is None:
            client = client or ClientContext(user_id=user_id)
            view = self.consult(
                case_number,
                force_refresh=True,
                client=client,
                consultation_type=ConsultationType.MONITOR
            )
            if view.process_id is None:
                raise PortalUnavailableError(f"Case {case_number} could not be stored for monitoring")
            process_id = view.process_id

        try:
            with self.provider.session_scope() as session:
                UserProcessRepository(session).add(user_id, process_id, role=role, alias=alias)
        except DuplicateEntityError as e:
            raise AlreadyMonitoredError(f"Case {case_number} is already monitored") from e

        logger.info(f"User {user_id} now monitors {case_number}")
        return {
            'case_number': case_number,
            'process_id': str(process_id),
            'role': role,
            'alias': alias
        }

    def unmonitor(self, case_number: str, user_id: str) -> bool:
        """
        Remove a case from a user's monitoring list.

        Returns:
            True if the case was being monitored
        """
        case_number = normalize_case_number(case_number)
        with self.provider.session_scope() as session:
            process_id = ProcessRepository(session).get_id_by_case_number(case_number)
            if process_id is None:
                return False
            return UserProcessRepository(session).remove(user_id, process_id)

    def list_monitored(self, user_id: str) -> List[Dict[str, Any]]:
        """Cases monitored by a user, most recently added first."""
        with self.provider.session_scope() as session:
            links = UserProcessRepository(session).list_for_user(user_id)
            monitored = []
            for link in links:
                item = _pick(link.process, CASE_FIELDS)
                item['process_id'] = str(link.process_id)
                item['monitoring'] = {
                    'role': link.role,
                    'alias': link.alias,
                    'since': _serialize(link.created_at)
                }
                monitored.append(item)
            return monitored
