"""
Tests for the repositories against a real (file-backed SQLite) store.

Validates real use cases: upsert keyed by case number, generation-tagged
child replacement, search with pagination, the append-only audit trail
and per-user monitoring lists.
"""

import pytest
import uuid
from datetime import date

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import create_test_provider
from database.models import (
    ActivityType,
    ConsultationType,
    ConsultationStatus,
    ConsultationSource,
    JudicialProcess,
)
from database.repositories import (
    ProcessRepository,
    ActivityRepository,
    SubjectRepository,
    ConsultationRepository,
    UserProcessRepository,
    DuplicateEntityError,
)


@pytest.fixture
def provider(tmp_path):
    provider = create_test_provider(url=f"sqlite:///{tmp_path / 'repositories.db'}")
    yield provider
    provider.close()


def case_fields(case_number="11001310300120230012300", **overrides):
    fields = {
        'case_number': case_number,
        'portal_process_id': '123',
        'portal_connection_id': '263',
        'filing_date': date(2023, 2, 1),
        'last_activity_date': date(2023, 6, 15),
        'court': 'JUZGADO 001 CIVIL DEL CIRCUITO DE BOGOTÁ',
        'department': 'BOGOTÁ',
        'process_type': 'Verbal',
        'plaintiff': 'Juan Pérez',
        'defendant': 'Empresa XYZ',
        'raw_parties': 'Demandante: Juan Pérez | Demandado: Empresa XYZ',
        'folio_count': 3,
        'is_private': False,
        'status': None,
        'portal_url': None,
    }
    fields.update(overrides)
    return fields


def upsert(provider, **overrides):
    with provider.session_scope() as session:
        return ProcessRepository(session).upsert(case_fields(**overrides), uuid.uuid4())


class TestProcessRepository:
    """Tests for the main case record."""

    def test_upsert_inserts(self, provider):
        process_id = upsert(provider)
        assert process_id is not None

        with provider.session_scope() as session:
            process = ProcessRepository(session).get_by_case_number("11001310300120230012300")
            assert process.id == process_id
            assert process.court.startswith("JUZGADO 001")
            assert process.sync_generation is not None
            assert process.last_synced_at is not None

    def test_upsert_overwrites_and_keeps_id(self, provider):
        first = upsert(provider)
        second = upsert(provider, court="JUZGADO 002 CIVIL", folio_count=9)

        assert first == second
        with provider.session_scope() as session:
            repo = ProcessRepository(session)
            assert repo.count() == 1
            process = repo.get_by_id(first)
            assert process.court == "JUZGADO 002 CIVIL"
            assert process.folio_count == 9

    def test_upsert_replaces_generation(self, provider):
        generations = [uuid.uuid4(), uuid.uuid4()]
        for generation in generations:
            with provider.session_scope() as session:
                ProcessRepository(session).upsert(case_fields(), generation)

        with provider.session_scope() as session:
            process = ProcessRepository(session).get_by_case_number("11001310300120230012300")
            assert process.sync_generation == generations[1]

    def test_get_id_by_case_number(self, provider):
        process_id = upsert(provider)
        with provider.session_scope() as session:
            repo = ProcessRepository(session)
            assert repo.get_id_by_case_number("11001310300120230012300") == process_id
            assert repo.get_id_by_case_number("unknown") is None

    def test_search_filters_and_pagination(self, provider):
        upsert(provider, case_number="A1", court="JUZGADO CIVIL BOGOTA", plaintiff="Ana Ruiz")
        upsert(provider, case_number="A2", court="JUZGADO LABORAL MEDELLIN", plaintiff="Ana Gomez")
        upsert(provider, case_number="A3", court="JUZGADO CIVIL CALI", plaintiff="Luis Mora")

        with provider.session_scope() as session:
            repo = ProcessRepository(session)

            records, total = repo.search(query="ana")
            assert total == 2
            assert {r.case_number for r in records} == {"A1", "A2"}

            records, total = repo.search(court="civil", plaintiff="ana")
            assert total == 1
            assert records[0].case_number == "A1"

            records, total = repo.search(offset=0, limit=2)
            assert total == 3
            assert len(records) == 2

            records, total = repo.search(process_type="ordinario")
            assert total == 0
            assert records == []

    def test_search_treats_wildcards_literally(self, provider):
        upsert(provider, case_number="B1", court="JUZGADO 100% CIVIL", plaintiff="ANA_RUIZ")
        upsert(provider, case_number="B2", court="JUZGADO 1000 CIVIL", plaintiff="ANAXRUIZ")
        upsert(provider, case_number="B3", court="JUZGADO 2 CIVIL", plaintiff="Luis\\Mora")

        with provider.session_scope() as session:
            repo = ProcessRepository(session)

            records, total = repo.search(query="100%")
            assert total == 1
            assert records[0].case_number == "B1"

            records, total = repo.search(plaintiff="ana_ruiz")
            assert total == 1
            assert records[0].case_number == "B1"

            records, total = repo.search(query="%")
            assert {r.case_number for r in records} == {"B1"}

            records, total = repo.search(query="_")
            assert {r.case_number for r in records} == {"B1"}

            records, total = repo.search(plaintiff="s\\m")
            assert total == 1
            assert records[0].case_number == "B3"


class TestChildRepositories:
    """Tests for generation-tagged child collections."""

    def test_insert_and_delete_other_generations(self, provider):
        process_id = upsert(provider)
        old_generation, new_generation = uuid.uuid4(), uuid.uuid4()

        with provider.session_scope() as session:
            repo = SubjectRepository(session)
            repo.insert_batch(process_id, old_generation, [{'name': 'Old'}])
            repo.insert_batch(process_id, new_generation, [{'name': 'New 1'}, {'name': 'New 2'}])
            removed = repo.delete_other_generations(process_id, new_generation)
            assert removed == 1

        with provider.session_scope() as session:
            names = [s.name for s in SubjectRepository(session).list_for_process(process_id)]
            assert sorted(names) == ['New 1', 'New 2']

    def test_delete_scoped_to_process(self, provider):
        first = upsert(provider, case_number="A1")
        second = upsert(provider, case_number="A2")
        generation = uuid.uuid4()

        with provider.session_scope() as session:
            repo = SubjectRepository(session)
            repo.insert_batch(first, uuid.uuid4(), [{'name': 'Keep'}])
            repo.insert_batch(second, uuid.uuid4(), [{'name': 'Drop'}])
            repo.delete_other_generations(second, generation)

        with provider.session_scope() as session:
            repo = SubjectRepository(session)
            assert repo.count_for_process(first) == 1
            assert repo.count_for_process(second) == 0

    def test_activities_newest_first(self, provider):
        process_id = upsert(provider)
        generation = uuid.uuid4()
        rows = [
            {'description': 'Old', 'activity_date': date(2023, 1, 1), 'activity_type': ActivityType.OTHER},
            {'description': 'Undated', 'activity_date': None, 'activity_type': ActivityType.OTHER},
            {'description': 'New', 'activity_date': date(2023, 6, 1), 'activity_type': ActivityType.HEARING},
        ]
        with provider.session_scope() as session:
            ActivityRepository(session).insert_batch(process_id, generation, rows)

        with provider.session_scope() as session:
            activities = ActivityRepository(session).list_for_process(process_id)
            assert [a.description for a in activities] == ['New', 'Old', 'Undated']


class TestConsultationRepository:
    """Tests for the append-only audit trail."""

    def test_log_and_list(self, provider):
        with provider.session_scope() as session:
            repo = ConsultationRepository(session)
            repo.log(
                case_number="A1",
                consultation_type=ConsultationType.PUBLIC_CONSULT,
                result_status=ConsultationStatus.NOT_FOUND,
                ip_address="10.0.0.1",
                error_message="Case A1 not found"
            )
            repo.log(
                case_number="A1",
                consultation_type=ConsultationType.REFRESH,
                result_status=ConsultationStatus.SUCCESS,
                source=ConsultationSource.PORTAL
            )

        with provider.session_scope() as session:
            repo = ConsultationRepository(session)
            assert repo.count() == 2
            assert repo.count(case_number="A1") == 2
            assert repo.count(case_number="B2") == 0
            entries = repo.list_for_case("A1")
            assert {e.result_status for e in entries} == {
                ConsultationStatus.NOT_FOUND, ConsultationStatus.SUCCESS
            }

    def test_no_update_or_delete_operations(self):
        assert not hasattr(ConsultationRepository, 'update')
        assert not hasattr(ConsultationRepository, 'delete')


class TestUserProcessRepository:
    """Tests for monitoring lists."""

    def test_add_list_remove(self, provider):
        process_id = upsert(provider)

        with provider.session_scope() as session:
            UserProcessRepository(session).add("user-1", process_id, role="lawyer", alias="Mi caso")

        with provider.session_scope() as session:
            links = UserProcessRepository(session).list_for_user("user-1")
            assert len(links) == 1
            assert links[0].alias == "Mi caso"
            assert isinstance(links[0].process, JudicialProcess)

        with provider.session_scope() as session:
            repo = UserProcessRepository(session)
            assert repo.remove("user-1", process_id) is True
            assert repo.remove("user-1", process_id) is False

    def test_duplicate_rejected(self, provider):
        process_id = upsert(provider)

        with provider.session_scope() as session:
            repo = UserProcessRepository(session)
            repo.add("user-1", process_id)
            with pytest.raises(DuplicateEntityError):
                repo.add("user-1", process_id)
            # Savepoint rollback keeps the first link
            assert [link.process_id for link in repo.list_for_user("user-1")] == [process_id]
