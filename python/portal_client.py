"""
Judicial Portal Client
Fetches case data from the Rama Judicial "Consulta de Procesos" API

Features:
- Browser-mimicking headers and a bounded per-request timeout
- Response-shape tolerance (top-level lists, alternate key spellings, isSuccess flags)
- Tagged basic-info result (fresh / not found / degraded / failed)
- Collection fetches that degrade to empty lists instead of raising
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import requests

from config_manager import PortalConfig
from database.monitoring import record_portal_request
from field_normalizer import placeholder_basic_info

logger = logging.getLogger(__name__)


class TransientFetchError(Exception):
    """Network, timeout, HTTP or payload failure on a single portal call"""
    pass


class FetchStatus(str, Enum):
    """Outcome of a basic-info fetch"""
    FRESH = "fresh"
    NOT_FOUND = "not_found"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class BasicInfoResult:
    """Tagged basic-info result

    data holds the raw portal process for FRESH and the placeholder for
    DEGRADED; cause describes the failure for DEGRADED and FAILED.
    """
    status: FetchStatus
    data: Optional[Dict[str, Any]] = None
    cause: Optional[str] = None

    @property
    def is_fresh(self) -> bool:
        return self.status == FetchStatus.FRESH


def _extract_list(payload: Any, keys: Iterable[str]) -> List[Dict[str, Any]]:
    """Pull the record list out of a portal payload, whatever its shape"""
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        if payload.get('isSuccess') is False:
            return []
        items = []
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                items = value
                break
    else:
        return []
    return [item for item in items if isinstance(item, dict)]


class PortalClient:
    """Client for the judicial consultation portal

    No retries are attempted; callers decide retry policy.
    """

    BASIC_INFO_PATH = "/api/v2/Procesos/Consulta/NumeroRadicacion"
    ACTIVITIES_PATH = "/api/v2/Proceso/Actuaciones"
    SUBJECTS_PATH = "/api/v1/Process/GetSujetosProcesales"
    DOCUMENTS_PATH = "/api/Process/GetDocumentos"

    PROCESS_KEYS = ('procesos', 'Procesos', 'processes', 'data')
    ACTIVITY_KEYS = ('actuaciones', 'Actuaciones', 'lsData', 'data')
    SUBJECT_KEYS = ('lsData', 'sujetos', 'data')
    DOCUMENT_KEYS = ('lsData', 'documentos', 'data')

    def __init__(self, config: PortalConfig, http: Any = None):
        """Initialize client

        Args:
            config: Portal section of the configuration
            http: Object exposing requests-style get/post (defaults to requests)
        """
        self.config = config
        self.http = http or requests

    @property
    def headers(self) -> Dict[str, str]:
        site = self.config.site_url
        return {
            'User-Agent': self.config.user_agent,
            'Accept': 'application/json, text/plain, */*',
            'Accept-Language': self.config.accept_language,
            'Referer': f"{site}/",
            'Origin': site,
        }

    def _request(self, operation: str, method: str, path: str,
                 params: Optional[Dict[str, Any]] = None,
                 payload: Optional[Dict[str, Any]] = None) -> Any:
        """Issue one request; returns parsed JSON or None on HTTP 404

        Raises:
            TransientFetchError: on transport, timeout, HTTP or JSON errors
        """
        url = f"{self.config.base_url}{path}"
        start = time.perf_counter()
        outcome = "error"

        try:
            if method == "GET":
                response = self.http.get(url, params=params, headers=self.headers,
                                         timeout=self.config.timeout_seconds)
            else:
                response = self.http.post(url, json=payload, headers=self.headers,
                                          timeout=self.config.timeout_seconds)

            if response.status_code == 404:
                outcome = "not_found"
                return None

            response.raise_for_status()
            data = response.json()
            outcome = "ok"
            return data

        except requests.RequestException as e:
            raise TransientFetchError(f"{operation} request failed: {e}") from e
        except ValueError as e:
            raise TransientFetchError(f"{operation} returned invalid JSON: {e}") from e
        finally:
            record_portal_request(operation, outcome, time.perf_counter() - start)

    def fetch_basic_info(self, case_number: str) -> BasicInfoResult:
        """Fetch the main process record for a case number

        Returns:
            BasicInfoResult tagged FRESH, NOT_FOUND, DEGRADED or FAILED
        """
        params = {'numero': case_number, 'SoloActivos': 'false', 'pagina': 1}

        try:
            payload = self._request('basic_info', 'GET', self.BASIC_INFO_PATH, params=params)
        except TransientFetchError as e:
            logger.error(f"Basic info fetch failed for {case_number}: {e}")
            if self.config.allow_degraded_fallback:
                logger.warning(f"Serving degraded placeholder for {case_number}")
                return BasicInfoResult(
                    status=FetchStatus.DEGRADED,
                    data=placeholder_basic_info(case_number),
                    cause=str(e)
                )
            return BasicInfoResult(status=FetchStatus.FAILED, cause=str(e))

        processes = _extract_list(payload, self.PROCESS_KEYS)
        if not processes:
            logger.info(f"Case {case_number} not found on portal")
            return BasicInfoResult(status=FetchStatus.NOT_FOUND)

        selected = processes[0]
        for process in processes:
            key = ''.join(str(process.get('llaveProceso') or '').split())
            if key and key == case_number:
                selected = process
                break

        return BasicInfoResult(status=FetchStatus.FRESH, data=selected)

    def fetch_activities(self, case_number: str) -> List[Dict[str, Any]]:
        """Fetch the procedural activities of a case (empty list on failure)"""
        params = {'numero': case_number, 'pagina': 1}
        try:
            payload = self._request('activities', 'GET', self.ACTIVITIES_PATH, params=params)
        except TransientFetchError as e:
            logger.error(f"Activities fetch failed for {case_number}: {e}")
            return []
        return _extract_list(payload, self.ACTIVITY_KEYS)

    def fetch_subjects(self, case_number: str) -> List[Dict[str, Any]]:
        """Fetch the parties of a case (empty list on failure)"""
        body = {'lsNroRadicacion': case_number}
        try:
            payload = self._request('subjects', 'POST', self.SUBJECTS_PATH, payload=body)
        except TransientFetchError as e:
            logger.error(f"Subjects fetch failed for {case_number}: {e}")
            return []
        return _extract_list(payload, self.SUBJECT_KEYS)

    def fetch_documents_for_activity(self, case_number: str, activity_id: int) -> List[Dict[str, Any]]:
        """Fetch documents of one activity, each tagged with lnIdActuacion"""
        body = {'lsNroRadicacion': case_number, 'lnIdActuacion': activity_id}
        try:
            payload = self._request('documents', 'POST', self.DOCUMENTS_PATH, payload=body)
        except TransientFetchError as e:
            logger.error(f"Documents fetch failed for {case_number} activity {activity_id}: {e}")
            return []

        documents = []
        for item in _extract_list(payload, self.DOCUMENT_KEYS):
            document = dict(item)
            document.setdefault('lnIdActuacion', activity_id)
            documents.append(document)
        return documents
