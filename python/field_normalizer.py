"""
Field Normalizer for judicial portal responses

Turns the loosely structured payloads returned by the consultation portal
into typed records ready to be synchronized into the local store.

Features:
- Ordered label matching over the pipe-delimited parties text
- Tolerant date parsing (DD/MM/YYYY, YYYY-MM-DD, DD-MM-YYYY, generic fallback)
- Accent-insensitive keyword classification of activities and subject roles
- Sentinel defaults for absent or malformed values
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from database.models import ActivityType, SubjectRole

logger = logging.getLogger(__name__)


NOT_AVAILABLE = "NOT AVAILABLE"

PLAINTIFF_LABELS = ("Demandante", "Accionante", "Denunciante", "Solicitante")
DEFENDANT_LABELS = ("Demandado", "Accionado", "Denunciado")

# Placeholder values used only by the opt-in degraded fallback
PLACEHOLDER_COURT = "CONSULTED - PORTAL UNAVAILABLE"
PLACEHOLDER_PARTY = "PROCESS FOUND"
PLACEHOLDER_PROCESS_TYPE = "CONSULTATION PERFORMED"


class NormalizationError(ValueError):
    """Raised when a single field cannot be interpreted"""
    pass


# ============================================
# DATA STRUCTURES
# ============================================

@dataclass
class Parties:
    """Plaintiff / defendant pair extracted from the parties text"""
    plaintiff: str = NOT_AVAILABLE
    defendant: str = NOT_AVAILABLE


@dataclass
class ParsedDate:
    """Outcome of a date parse; value is None when parsed is False"""
    value: Optional[date]
    raw: Optional[str]
    parsed: bool


@dataclass
class NormalizedActivity:
    """Procedural event of a case"""
    portal_activity_id: Optional[int]
    sequence_number: Optional[int]
    activity_date: Optional[date]
    activity_type: ActivityType
    description: str
    annotation: Optional[str] = None
    term_start_date: Optional[date] = None
    term_end_date: Optional[date] = None
    rule_code: Optional[str] = None
    has_documents: bool = False
    folio_count: int = 0


@dataclass
class NormalizedSubject:
    """Party or represented entity of a case"""
    portal_subject_id: Optional[int]
    name: str
    role: SubjectRole
    raw_role: Optional[str] = None
    id_number: Optional[str] = None
    id_type: Optional[str] = None
    representative: Optional[str] = None
    has_representative: bool = False


@dataclass
class NormalizedDocument:
    """Document attached to an activity"""
    portal_document_id: Optional[int]
    portal_activity_id: Optional[int]
    filename: str
    document_type: Optional[str] = None
    download_url: Optional[str] = None
    size_bytes: Optional[int] = None
    extension: Optional[str] = None
    document_date: Optional[date] = None


@dataclass
class NormalizedCase:
    """A fully normalized case with its three child collections"""
    case_number: str
    court: str = NOT_AVAILABLE
    department: Optional[str] = None
    process_type: str = NOT_AVAILABLE
    plaintiff: str = NOT_AVAILABLE
    defendant: str = NOT_AVAILABLE
    raw_parties: Optional[str] = None
    filing_date: Optional[date] = None
    last_activity_date: Optional[date] = None
    portal_process_id: Optional[str] = None
    portal_connection_id: Optional[str] = None
    folio_count: int = 0
    is_private: bool = False
    status: Optional[str] = None
    portal_url: Optional[str] = None
    activities: List[NormalizedActivity] = field(default_factory=list)
    subjects: List[NormalizedSubject] = field(default_factory=list)
    documents: List[NormalizedDocument] = field(default_factory=list)

    def record_fields(self) -> Dict[str, Any]:
        """Column values of the main case record"""
        return {
            'case_number': self.case_number,
            'portal_process_id': self.portal_process_id,
            'portal_connection_id': self.portal_connection_id,
            'filing_date': self.filing_date,
            'last_activity_date': self.last_activity_date,
            'court': self.court,
            'department': self.department,
            'process_type': self.process_type,
            'plaintiff': self.plaintiff,
            'defendant': self.defendant,
            'raw_parties': self.raw_parties,
            'folio_count': self.folio_count,
            'is_private': self.is_private,
            'status': self.status,
            'portal_url': self.portal_url,
        }


# ============================================
# SCALAR HELPERS
# ============================================

def strip_accents(text: str) -> str:
    """Remove combining marks, keeping base characters"""
    decomposed = unicodedata.normalize('NFD', text)
    return ''.join(c for c in decomposed if unicodedata.category(c) != 'Mn')


def normalize_case_number(text: Optional[str]) -> str:
    """Canonical form of a case number (whitespace removed)

    Raises:
        ValueError: if nothing remains after stripping
    """
    cleaned = re.sub(r'\s+', '', text or '')
    if not cleaned:
        raise ValueError("Case number must not be empty")
    return cleaned


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return default


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().upper() in ('S', 'SI', 'TRUE', 'Y', 'YES', '1')
    return False


# ============================================
# PARTIES
# ============================================

def _match_label(text: str, labels: Tuple[str, ...]) -> Optional[str]:
    for label in labels:
        match = re.search(rf'{label}\s*:\s*([^|]+)', text, re.IGNORECASE)
        if match:
            value = match.group(1).strip()
            if value:
                return value
    return None


def extract_parties(text: Optional[str]) -> Parties:
    """Extract plaintiff and defendant from 'Label: value | Label: value' text

    Labels are tried in order; the first label carrying a non-empty value
    wins. Missing roles keep the NOT_AVAILABLE sentinel.
    """
    parties = Parties()
    if not text:
        return parties

    plaintiff = _match_label(text, PLAINTIFF_LABELS)
    defendant = _match_label(text, DEFENDANT_LABELS)
    if plaintiff:
        parties.plaintiff = plaintiff
    if defendant:
        parties.defendant = defendant
    return parties


# ============================================
# DATES
# ============================================

_DMY_SLASH = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
_ISO = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ][\d:.]+(?:Z|[+-]\d{2}:?\d{2})?)?$')
_DMY_DASH = re.compile(r'^(\d{1,2})-(\d{1,2})-(\d{4})$')

_FALLBACK_FORMATS = (
    '%Y/%m/%d',
    '%d.%m.%Y',
    '%d %b %Y',
    '%d %B %Y',
    '%b %d, %Y',
    '%B %d, %Y',
)


def _build_date(year: str, month: str, day: str) -> date:
    try:
        return date(int(year), int(month), int(day))
    except ValueError as e:
        raise NormalizationError(str(e))


def _parse_dmy_slash(text: str) -> date:
    match = _DMY_SLASH.match(text)
    if not match:
        raise NormalizationError(f"not DD/MM/YYYY: {text}")
    day, month, year = match.groups()
    return _build_date(year, month, day)


def _parse_iso(text: str) -> date:
    match = _ISO.match(text)
    if not match:
        raise NormalizationError(f"not YYYY-MM-DD: {text}")
    year, month, day = match.groups()
    return _build_date(year, month, day)


def _parse_dmy_dash(text: str) -> date:
    match = _DMY_DASH.match(text)
    if not match:
        raise NormalizationError(f"not DD-MM-YYYY: {text}")
    day, month, year = match.groups()
    return _build_date(year, month, day)


def _parse_generic(text: str) -> date:
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        pass
    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise NormalizationError(f"unrecognized date: {text}")


_DATE_PARSERS = (_parse_dmy_slash, _parse_iso, _parse_dmy_dash, _parse_generic)


def parse_date(value: Any) -> ParsedDate:
    """Parse a portal date value without ever raising

    Accepts date/datetime objects and strings in DD/MM/YYYY, YYYY-MM-DD
    (optionally with a time part) or DD-MM-YYYY form, then falls back to a
    generic parse. Anything else comes back with parsed=False.
    """
    if value is None:
        return ParsedDate(value=None, raw=None, parsed=False)
    if isinstance(value, datetime):
        return ParsedDate(value=value.date(), raw=value.isoformat(), parsed=True)
    if isinstance(value, date):
        return ParsedDate(value=value, raw=value.isoformat(), parsed=True)

    raw = str(value).strip()
    if not raw:
        return ParsedDate(value=None, raw=raw, parsed=False)

    for parser in _DATE_PARSERS:
        try:
            return ParsedDate(value=parser(raw), raw=raw, parsed=True)
        except NormalizationError:
            continue

    logger.debug(f"Unparseable date value: {raw!r}")
    return ParsedDate(value=None, raw=raw, parsed=False)


def _date_or_none(value: Any) -> Optional[date]:
    return parse_date(value).value


# ============================================
# CLASSIFICATION
# ============================================

# Checked in order; the first matching type wins
_ACTIVITY_PATTERNS = (
    (ActivityType.HEARING, re.compile(r'\b(?:audiencias?|hearings?)\b')),
    (ActivityType.RESOLUTION, re.compile(
        r'\b(?:autos?|sentencias?|fallos?|resoluci\w*|rulings?|judgments?)\b')),
    (ActivityType.NOTIFICATION, re.compile(r'\b(?:notifica\w*|notification\w*|edictos?)\b')),
    (ActivityType.DOCUMENT, re.compile(r'\b(?:document\w*|memorial\w*)\b')),
    (ActivityType.APPEAL, re.compile(r'\b(?:apelaci\w*|appeal\w*)\b')),
)

_PLAINTIFF_ROLE = re.compile(r'\b(?:demandante|accionante|denunciante|solicitante|plaintiff)\b')
_DEFENDANT_ROLE = re.compile(r'\b(?:demandad[oa]|accionad[oa]|denunciad[oa]|indiciad[oa]|defendant)\b')


def classify_activity(text: Optional[str]) -> ActivityType:
    """Map free activity text into the closed ActivityType set"""
    if not text:
        return ActivityType.OTHER
    folded = strip_accents(text).lower()
    for activity_type, pattern in _ACTIVITY_PATTERNS:
        if pattern.search(folded):
            return activity_type
    return ActivityType.OTHER


def classify_subject_role(text: Optional[str]) -> SubjectRole:
    """Map the portal subject type into plaintiff / defendant / other"""
    if not text:
        return SubjectRole.OTHER
    folded = strip_accents(text).lower()
    if _PLAINTIFF_ROLE.search(folded):
        return SubjectRole.PLAINTIFF
    if _DEFENDANT_ROLE.search(folded):
        return SubjectRole.DEFENDANT
    return SubjectRole.OTHER


# ============================================
# RECORD NORMALIZATION
# ============================================

def normalize_activity(raw: Dict[str, Any]) -> NormalizedActivity:
    description = _clean_text(raw.get('actuacion')) or NOT_AVAILABLE
    return NormalizedActivity(
        portal_activity_id=_to_int(raw.get('idActuacion')),
        sequence_number=_to_int(raw.get('consActuacion')),
        activity_date=_date_or_none(raw.get('fechaActuacion')),
        activity_type=classify_activity(description),
        description=description,
        annotation=_clean_text(raw.get('anotacion')),
        term_start_date=_date_or_none(raw.get('fechaInicioTermino')),
        term_end_date=_date_or_none(raw.get('fechaFinalizaTermino')),
        rule_code=_clean_text(raw.get('codigoRegla')),
        has_documents=_to_bool(raw.get('conDocumentos')),
        folio_count=_to_int(raw.get('cantFolios'), 0),
    )


def normalize_subject(raw: Dict[str, Any]) -> NormalizedSubject:
    raw_role = _clean_text(raw.get('lsTipoSujeto'))
    return NormalizedSubject(
        portal_subject_id=_to_int(raw.get('lnIdSujetoProceso')),
        name=_clean_text(raw.get('lsNombreSujeto')) or NOT_AVAILABLE,
        role=classify_subject_role(raw_role),
        raw_role=raw_role,
        id_number=_clean_text(raw.get('lsIdentificacion')),
        id_type=_clean_text(raw.get('lsTipoIdentificacion')),
        representative=_clean_text(raw.get('lsApoderado')),
        has_representative=_to_bool(raw.get('lbTieneApoderado')),
    )


def normalize_document(raw: Dict[str, Any]) -> NormalizedDocument:
    return NormalizedDocument(
        portal_document_id=_to_int(raw.get('lnIdDocumento')),
        portal_activity_id=_to_int(raw.get('lnIdActuacion')),
        filename=_clean_text(raw.get('lsNombreArchivo')) or NOT_AVAILABLE,
        document_type=_clean_text(raw.get('lsTipoDocumento')),
        download_url=_clean_text(raw.get('lsUrlDescarga')),
        size_bytes=_to_int(raw.get('lnTamanoArchivo')),
        extension=_clean_text(raw.get('lsExtensionArchivo')),
        document_date=_date_or_none(raw.get('ldFechaDocumento')),
    )


def document_activity_ids(activities: List[Dict[str, Any]]) -> List[int]:
    """Portal ids of the raw activities flagged as carrying documents"""
    ids = []
    for raw in activities:
        if not isinstance(raw, dict) or not _to_bool(raw.get('conDocumentos')):
            continue
        activity_id = _to_int(raw.get('idActuacion'))
        if activity_id is not None and activity_id not in ids:
            ids.append(activity_id)
    return ids


def _activity_sort_key(activity: NormalizedActivity):
    # Undated activities sort last once reversed
    return (activity.activity_date is not None, activity.activity_date or date.min,
            activity.sequence_number or 0)


def build_portal_url(site_url: str, case_number: str) -> str:
    return f"{site_url.rstrip('/')}/Procesos/NumeroRadicacion?numeroRadicacion={case_number}"


def normalize_case(
    case_number: str,
    basic: Dict[str, Any],
    activities: Optional[List[Dict[str, Any]]] = None,
    subjects: Optional[List[Dict[str, Any]]] = None,
    documents: Optional[List[Dict[str, Any]]] = None,
    site_url: str = "https://consultaprocesos.ramajudicial.gov.co",
) -> NormalizedCase:
    """Assemble a NormalizedCase from the raw portal payloads

    Args:
        case_number: requested case number (used when the portal omits it)
        basic: one entry of the portal 'procesos' list
        activities: raw 'actuaciones' entries
        subjects: raw subject entries
        documents: raw document entries, tagged with lnIdActuacion
        site_url: public portal site used to build the case URL

    Returns:
        NormalizedCase with activities ordered by date, newest first
    """
    number = normalize_case_number(_clean_text(basic.get('llaveProceso')) or case_number)
    raw_parties = _clean_text(basic.get('sujetosProcesales'))
    parties = extract_parties(raw_parties)

    normalized_activities = [normalize_activity(a) for a in activities or [] if isinstance(a, dict)]
    normalized_activities.sort(key=_activity_sort_key, reverse=True)

    portal_process_id = basic.get('idProceso')
    portal_connection_id = basic.get('idConexion')

    return NormalizedCase(
        case_number=number,
        court=_clean_text(basic.get('despacho')) or NOT_AVAILABLE,
        department=_clean_text(basic.get('departamento')),
        process_type=(_clean_text(basic.get('tipoProceso'))
                      or _clean_text(basic.get('claseProceso'))
                      or NOT_AVAILABLE),
        plaintiff=parties.plaintiff,
        defendant=parties.defendant,
        raw_parties=raw_parties,
        filing_date=_date_or_none(basic.get('fechaProceso')),
        last_activity_date=_date_or_none(basic.get('fechaUltimaActuacion')),
        portal_process_id=str(portal_process_id) if portal_process_id is not None else None,
        portal_connection_id=str(portal_connection_id) if portal_connection_id is not None else None,
        folio_count=_to_int(basic.get('cantFilas'), 0),
        is_private=_to_bool(basic.get('esPrivado')),
        status=_clean_text(basic.get('estado')),
        portal_url=build_portal_url(site_url, number),
        activities=normalized_activities,
        subjects=[normalize_subject(s) for s in subjects or [] if isinstance(s, dict)],
        documents=[normalize_document(d) for d in documents or [] if isinstance(d, dict)],
    )


def placeholder_basic_info(case_number: str, today: Optional[date] = None) -> Dict[str, Any]:
    """Portal-shaped placeholder used by the degraded fallback"""
    today = today or date.today()
    return {
        'llaveProceso': case_number,
        'fechaProceso': today.isoformat(),
        'despacho': PLACEHOLDER_COURT,
        'sujetosProcesales': f"Demandante: {PLACEHOLDER_PARTY} | Demandado: {PLACEHOLDER_PARTY}",
        'tipoProceso': PLACEHOLDER_PROCESS_TYPE,
        'esPrivado': False,
    }
