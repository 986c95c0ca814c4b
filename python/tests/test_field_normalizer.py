"""
Unit tests for the field normalizer.

Covers party extraction, tolerant date parsing, activity and subject
classification, and assembly of a normalized case from portal payloads.
"""

import json
import pytest
from datetime import date, datetime

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database.models import ActivityType, SubjectRole
from field_normalizer import (
    NOT_AVAILABLE,
    PLACEHOLDER_COURT,
    extract_parties,
    parse_date,
    classify_activity,
    classify_subject_role,
    normalize_case_number,
    normalize_activity,
    normalize_subject,
    normalize_document,
    normalize_case,
    document_activity_ids,
    placeholder_basic_info,
    strip_accents,
)


class TestExtractParties:
    """Tests for plaintiff/defendant extraction."""

    def test_plaintiff_and_defendant(self):
        parties = extract_parties("Demandante: Juan Pérez | Demandado: Empresa XYZ S.A.S.")
        assert parties.plaintiff == "Juan Pérez"
        assert parties.defendant == "Empresa XYZ S.A.S."

    def test_alternate_labels(self):
        parties = extract_parties("Accionante: Maria Lopez | Accionado: Municipio de Bello")
        assert parties.plaintiff == "Maria Lopez"
        assert parties.defendant == "Municipio de Bello"

    def test_first_label_with_value_wins(self):
        """Earlier labels are preferred when several are present."""
        parties = extract_parties("Solicitante: Otro | Demandante: Primero | Denunciado: X")
        assert parties.plaintiff == "Primero"
        assert parties.defendant == "X"

    def test_label_matching_is_case_insensitive(self):
        parties = extract_parties("DEMANDANTE: ANA | demandado: banco")
        assert parties.plaintiff == "ANA"
        assert parties.defendant == "banco"

    def test_missing_defendant_keeps_sentinel(self):
        parties = extract_parties("Demandante: Juan Pérez")
        assert parties.plaintiff == "Juan Pérez"
        assert parties.defendant == NOT_AVAILABLE

    def test_empty_text(self):
        parties = extract_parties("")
        assert parties.plaintiff == NOT_AVAILABLE
        assert parties.defendant == NOT_AVAILABLE

    def test_none_text(self):
        parties = extract_parties(None)
        assert parties.plaintiff == NOT_AVAILABLE
        assert parties.defendant == NOT_AVAILABLE

    def test_unlabelled_text(self):
        parties = extract_parties("Juan Pérez contra Empresa XYZ")
        assert parties.plaintiff == NOT_AVAILABLE
        assert parties.defendant == NOT_AVAILABLE


class TestParseDate:
    """Tests for tolerant date parsing."""

    def test_day_month_year_slash(self):
        result = parse_date("15/03/2023")
        assert result.parsed is True
        assert result.value == date(2023, 3, 15)

    def test_iso_date(self):
        assert parse_date("2023-03-15").value == date(2023, 3, 15)

    def test_iso_datetime(self):
        assert parse_date("2023-03-15T10:30:00").value == date(2023, 3, 15)
        assert parse_date("2023-03-15T10:30:00.000Z").value == date(2023, 3, 15)

    def test_day_month_year_dash(self):
        assert parse_date("15-03-2023").value == date(2023, 3, 15)

    def test_generic_fallback(self):
        assert parse_date("2023/03/15").value == date(2023, 3, 15)

    def test_date_objects_pass_through(self):
        assert parse_date(date(2020, 1, 2)).value == date(2020, 1, 2)
        assert parse_date(datetime(2020, 1, 2, 8, 0)).value == date(2020, 1, 2)

    @pytest.mark.parametrize("value", ["not a date", "32/13/2023", "", None, "   "])
    def test_unparseable_values_never_raise(self, value):
        result = parse_date(value)
        assert result.parsed is False
        assert result.value is None

    def test_raw_text_is_kept(self):
        result = parse_date(" garbage ")
        assert result.raw == "garbage"


class TestClassification:
    """Tests for activity and subject role classification."""

    @pytest.mark.parametrize("text,expected", [
        ("Audiencia inicial", ActivityType.HEARING),
        ("AUDIENCIA DE PRUEBAS", ActivityType.HEARING),
        ("Auto admite demanda", ActivityType.RESOLUTION),
        ("Sentencia de primera instancia", ActivityType.RESOLUTION),
        ("Notificación por estado", ActivityType.NOTIFICATION),
        ("Fijación de edicto", ActivityType.NOTIFICATION),
        ("Recepción de memorial", ActivityType.DOCUMENT),
        ("Documento aportado", ActivityType.DOCUMENT),
        ("Recurso de apelación", ActivityType.APPEAL),
        ("Radicación de proceso", ActivityType.OTHER),
    ])
    def test_classify_activity(self, text, expected):
        assert classify_activity(text) == expected

    def test_classify_activity_first_match_wins(self):
        """A hearing that also mentions a ruling is still a hearing."""
        assert classify_activity("Audiencia de lectura de sentencia") == ActivityType.HEARING

    def test_classify_activity_empty(self):
        assert classify_activity("") == ActivityType.OTHER
        assert classify_activity(None) == ActivityType.OTHER

    @pytest.mark.parametrize("text,expected", [
        ("Demandante", SubjectRole.PLAINTIFF),
        ("ACCIONANTE", SubjectRole.PLAINTIFF),
        ("Demandado", SubjectRole.DEFENDANT),
        ("Demandada", SubjectRole.DEFENDANT),
        ("Accionado", SubjectRole.DEFENDANT),
        ("Tercero interviniente", SubjectRole.OTHER),
        (None, SubjectRole.OTHER),
    ])
    def test_classify_subject_role(self, text, expected):
        assert classify_subject_role(text) == expected

    def test_strip_accents(self):
        assert strip_accents("Notificación Apelación") == "Notificacion Apelacion"


class TestCaseNumber:
    """Tests for case number canonicalization."""

    def test_whitespace_removed(self):
        assert normalize_case_number(" 11001 3103 001 2023 00123 00 ") == "11001310300120230012300"

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_empty_rejected(self, value):
        with pytest.raises(ValueError):
            normalize_case_number(value)


class TestRecordNormalization:
    """Tests for activity, subject and document records."""

    def test_normalize_activity(self):
        activity = normalize_activity({
            'idActuacion': 987,
            'consActuacion': '3',
            'fechaActuacion': '2023-05-10T00:00:00',
            'actuacion': 'Auto que admite demanda',
            'anotacion': '  ',
            'fechaInicioTermino': '11/05/2023',
            'fechaFinalizaTermino': None,
            'codigoRegla': '00',
            'conDocumentos': True,
            'cantFolios': '4',
        })
        assert activity.portal_activity_id == 987
        assert activity.sequence_number == 3
        assert activity.activity_date == date(2023, 5, 10)
        assert activity.activity_type == ActivityType.RESOLUTION
        assert activity.annotation is None
        assert activity.term_start_date == date(2023, 5, 11)
        assert activity.term_end_date is None
        assert activity.has_documents is True
        assert activity.folio_count == 4

    def test_normalize_activity_defaults(self):
        activity = normalize_activity({})
        assert activity.description == NOT_AVAILABLE
        assert activity.activity_type == ActivityType.OTHER
        assert activity.activity_date is None
        assert activity.folio_count == 0

    @pytest.mark.parametrize("literal", ["Infinity", "-Infinity", "NaN"])
    def test_non_finite_counts_fall_back_to_default(self, literal):
        raw = json.loads('{"idActuacion": 1, "actuacion": "Auto", "cantFolios": %s}' % literal)
        activity = normalize_activity(raw)
        assert activity.portal_activity_id == 1
        assert activity.folio_count == 0

    def test_normalize_subject(self):
        subject = normalize_subject({
            'lnIdSujetoProceso': 55,
            'lsNombreSujeto': 'BANCO DE BOGOTA',
            'lsTipoSujeto': 'Demandado',
            'lsIdentificacion': '860002964',
            'lbTieneApoderado': 'S',
            'lsApoderado': 'Pedro Gomez',
        })
        assert subject.portal_subject_id == 55
        assert subject.role == SubjectRole.DEFENDANT
        assert subject.raw_role == 'Demandado'
        assert subject.has_representative is True
        assert subject.representative == 'Pedro Gomez'

    def test_normalize_document(self):
        document = normalize_document({
            'lnIdDocumento': 7,
            'lnIdActuacion': 987,
            'lsNombreArchivo': 'auto.pdf',
            'lnTamanoArchivo': '2048',
            'lsExtensionArchivo': 'pdf',
            'ldFechaDocumento': '10/05/2023',
        })
        assert document.portal_document_id == 7
        assert document.portal_activity_id == 987
        assert document.size_bytes == 2048
        assert document.document_date == date(2023, 5, 10)

    def test_document_activity_ids(self):
        activities = [
            {'idActuacion': 1, 'conDocumentos': True},
            {'idActuacion': 2, 'conDocumentos': False},
            {'idActuacion': 3, 'conDocumentos': 'S'},
            {'idActuacion': 1, 'conDocumentos': True},
            {'conDocumentos': True},
            'not a dict',
        ]
        assert document_activity_ids(activities) == [1, 3]


class TestNormalizeCase:
    """Tests for whole-case assembly."""

    @pytest.fixture
    def basic(self):
        return {
            'idProceso': 123456,
            'idConexion': 263,
            'llaveProceso': '11001310300120230012300',
            'fechaProceso': '2023-02-01T00:00:00',
            'fechaUltimaActuacion': '2023-06-15T00:00:00',
            'despacho': 'JUZGADO 001 CIVIL DEL CIRCUITO DE BOGOTÁ',
            'departamento': 'BOGOTÁ',
            'tipoProceso': 'Verbal',
            'sujetosProcesales': 'Demandante: Juan Pérez | Demandado: Empresa XYZ',
            'esPrivado': False,
            'cantFilas': 12,
        }

    def test_basic_fields(self, basic):
        case = normalize_case('11001310300120230012300', basic, site_url='https://portal.example')
        assert case.case_number == '11001310300120230012300'
        assert case.court == 'JUZGADO 001 CIVIL DEL CIRCUITO DE BOGOTÁ'
        assert case.department == 'BOGOTÁ'
        assert case.process_type == 'Verbal'
        assert case.plaintiff == 'Juan Pérez'
        assert case.defendant == 'Empresa XYZ'
        assert case.filing_date == date(2023, 2, 1)
        assert case.last_activity_date == date(2023, 6, 15)
        assert case.portal_process_id == '123456'
        assert case.folio_count == 12
        assert case.portal_url == (
            'https://portal.example/Procesos/NumeroRadicacion?numeroRadicacion=11001310300120230012300'
        )

    def test_missing_fields_use_sentinels(self):
        case = normalize_case('123', {})
        assert case.case_number == '123'
        assert case.court == NOT_AVAILABLE
        assert case.process_type == NOT_AVAILABLE
        assert case.plaintiff == NOT_AVAILABLE
        assert case.filing_date is None
        assert case.is_private is False

    def test_infinite_row_count(self):
        case = normalize_case('1', json.loads('{"llaveProceso": "1", "cantFilas": Infinity}'))
        assert case.case_number == '1'
        assert case.folio_count == 0

    def test_activities_newest_first_undated_last(self, basic):
        activities = [
            {'idActuacion': 1, 'fechaActuacion': '2023-01-10', 'actuacion': 'Radicación'},
            {'idActuacion': 2, 'fechaActuacion': None, 'actuacion': 'Sin fecha'},
            {'idActuacion': 3, 'fechaActuacion': '15/06/2023', 'actuacion': 'Audiencia'},
            {'idActuacion': 4, 'fechaActuacion': '2023-03-01', 'actuacion': 'Auto'},
        ]
        case = normalize_case('11001310300120230012300', basic, activities=activities)
        assert [a.portal_activity_id for a in case.activities] == [3, 4, 1, 2]

    def test_children_skip_non_dict_entries(self, basic):
        case = normalize_case(
            '11001310300120230012300', basic,
            activities=[None, {'actuacion': 'Auto'}],
            subjects=['x', {'lsNombreSujeto': 'Ana'}],
            documents=[42],
        )
        assert len(case.activities) == 1
        assert len(case.subjects) == 1
        assert case.documents == []

    def test_record_fields_cover_case_columns(self, basic):
        fields = normalize_case('11001310300120230012300', basic).record_fields()
        assert fields['case_number'] == '11001310300120230012300'
        assert 'activities' not in fields
        assert fields['plaintiff'] == 'Juan Pérez'

    def test_placeholder_basic_info(self):
        placeholder = placeholder_basic_info('999', today=date(2024, 1, 31))
        case = normalize_case('999', placeholder)
        assert case.court == PLACEHOLDER_COURT
        assert case.filing_date == date(2024, 1, 31)
        assert case.plaintiff != NOT_AVAILABLE
