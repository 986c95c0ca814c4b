"""
Tests for the sync coordinator.

Covers idempotent upserts, replace-not-merge child semantics, partial
failures isolated per collection, main-record failures and per-key
serialization. Runs against file-backed SQLite so threads get their own
connections.
"""

import pytest
import threading
import time
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError, OperationalError

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import create_test_provider
from database.models import ProcessDocument
from database.repositories import (
    ProcessRepository,
    ActivityRepository,
    SubjectRepository,
    DocumentRepository,
)
from database.sync_coordinator import (
    SyncCoordinator,
    SyncStatus,
    KeyedLock,
    PersistenceError,
)
from field_normalizer import normalize_case


CASE = "11001310300120230012300"

BASIC = {
    'idProceso': 123456,
    'llaveProceso': CASE,
    'fechaProceso': '2023-02-01T00:00:00',
    'despacho': 'JUZGADO 001 CIVIL DEL CIRCUITO DE BOGOTÁ',
    'tipoProceso': 'Verbal',
    'sujetosProcesales': 'Demandante: Juan Pérez | Demandado: Empresa XYZ',
}


def build_case(activity_ids=(1, 2), subject_names=("Juan Pérez", "Empresa XYZ"), documents=(), **basic):
    activities = [
        {'idActuacion': i, 'fechaActuacion': f'2023-0{i}-01', 'actuacion': f'Actuación {i}',
         'conDocumentos': True}
        for i in activity_ids
    ]
    subjects = [{'lsNombreSujeto': name, 'lsTipoSujeto': 'Demandante'} for name in subject_names]
    return normalize_case(CASE, dict(BASIC, **basic), activities, subjects, list(documents))


@pytest.fixture
def provider(tmp_path):
    provider = create_test_provider(url=f"sqlite:///{tmp_path / 'sync.db'}")
    yield provider
    provider.close()


@pytest.fixture
def coordinator(provider):
    return SyncCoordinator(provider)


def stored(provider):
    """Snapshot of the stored case and its children."""
    with provider.session_scope() as session:
        process = ProcessRepository(session).get_by_case_number(CASE)
        if process is None:
            return None
        return {
            'count': ProcessRepository(session).count(),
            'court': process.court,
            'activities': sorted(a.portal_activity_id for a in ActivityRepository(session).list_for_process(process.id)),
            'subjects': sorted(s.name for s in SubjectRepository(session).list_for_process(process.id)),
            'documents': DocumentRepository(session).list_for_process(process.id),
        }


class TestSync:
    """Tests for full syncs."""

    def test_first_sync_creates_everything(self, provider, coordinator):
        result = coordinator.sync(build_case())

        assert result.status == SyncStatus.FULL
        assert not result.is_partial
        assert result.counts == {'activities': 2, 'subjects': 2, 'documents': 0}

        snapshot = stored(provider)
        assert snapshot['count'] == 1
        assert snapshot['activities'] == [1, 2]
        assert snapshot['subjects'] == ['Empresa XYZ', 'Juan Pérez']

    def test_resync_is_idempotent(self, provider, coordinator):
        first = coordinator.sync(build_case())
        second = coordinator.sync(build_case())

        assert first.process_id == second.process_id
        assert first.generation != second.generation
        snapshot = stored(provider)
        assert snapshot['count'] == 1
        assert snapshot['activities'] == [1, 2]
        assert len(snapshot['subjects']) == 2

    def test_children_replaced_not_merged(self, provider, coordinator):
        coordinator.sync(build_case(activity_ids=(1, 2), subject_names=("A", "B")))
        coordinator.sync(build_case(activity_ids=(3,), subject_names=("C",), despacho="JUZGADO 002"))

        snapshot = stored(provider)
        assert snapshot['court'] == "JUZGADO 002"
        assert snapshot['activities'] == [3]
        assert snapshot['subjects'] == ["C"]

    def test_empty_scrape_empties_children(self, provider, coordinator):
        coordinator.sync(build_case())
        result = coordinator.sync(build_case(activity_ids=(), subject_names=()))

        assert result.counts == {'activities': 0, 'subjects': 0, 'documents': 0}
        snapshot = stored(provider)
        assert snapshot['activities'] == []
        assert snapshot['subjects'] == []

    def test_documents_linked_to_activities(self, provider, coordinator):
        documents = [
            {'lnIdDocumento': 10, 'lnIdActuacion': 2, 'lsNombreArchivo': 'auto.pdf'},
            {'lnIdDocumento': 11, 'lnIdActuacion': 99, 'lsNombreArchivo': 'huerfano.pdf'},
        ]
        coordinator.sync(build_case(documents=documents))

        with provider.session_scope() as session:
            process_id = ProcessRepository(session).get_id_by_case_number(CASE)
            activities = {a.portal_activity_id: a.id for a in ActivityRepository(session).list_for_process(process_id)}
            by_name = {d.filename: d for d in session.query(ProcessDocument).all()}
            assert by_name['auto.pdf'].activity_id == activities[2]
            assert by_name['huerfano.pdf'].activity_id is None

    def test_result_to_dict(self, coordinator):
        data = coordinator.sync(build_case()).to_dict()
        assert data['status'] == 'full'
        assert data['case_number'] == CASE
        assert data['failures'] == {}


class TestPartialFailure:
    """Tests for collection failures isolated by savepoints."""

    def test_failed_collection_keeps_previous_rows(self, provider, coordinator):
        coordinator.sync(build_case(activity_ids=(1,), subject_names=("Old subject",)))

        with patch.object(SubjectRepository, 'insert_batch', side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
            result = coordinator.sync(build_case(activity_ids=(2, 3), subject_names=("New subject",)))

        assert result.status == SyncStatus.PARTIAL
        assert result.is_partial
        assert set(result.failures) == {'subjects'}
        assert result.counts['activities'] == 2

        snapshot = stored(provider)
        assert snapshot['activities'] == [2, 3]
        assert snapshot['subjects'] == ["Old subject"]

    def test_main_record_still_updated(self, provider, coordinator):
        coordinator.sync(build_case())

        with patch.object(ActivityRepository, 'insert_batch', side_effect=SQLAlchemyError("boom")):
            result = coordinator.sync(build_case(despacho="JUZGADO NUEVO"))

        assert 'activities' in result.failures
        assert stored(provider)['court'] == "JUZGADO NUEVO"


class TestPersistenceError:
    """Tests for main-record failures."""

    def test_upsert_returning_nothing(self, provider, coordinator):
        with patch.object(ProcessRepository, 'upsert', return_value=None):
            with pytest.raises(PersistenceError):
                coordinator.sync(build_case())
        assert stored(provider) is None

    def test_upsert_store_error(self, provider, coordinator):
        with patch.object(ProcessRepository, 'upsert', side_effect=OperationalError("INSERT", {}, Exception("locked"))):
            with pytest.raises(PersistenceError):
                coordinator.sync(build_case())
        assert stored(provider) is None

    def test_lock_released_after_failure(self, coordinator):
        with patch.object(ProcessRepository, 'upsert', return_value=None):
            with pytest.raises(PersistenceError):
                coordinator.sync(build_case())
        assert coordinator.locks.active_keys() == []


class TestKeyedLock:
    """Tests for per-key serialization."""

    def test_same_key_serialized(self):
        locks = KeyedLock()
        inside = []
        overlap = []

        def worker():
            with locks.hold("case"):
                inside.append(1)
                if len(inside) > 1:
                    overlap.append(True)
                time.sleep(0.05)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlap == []
        assert locks.active_keys() == []

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        other_done = threading.Event()

        with locks.hold("a"):
            def worker():
                with locks.hold("b"):
                    other_done.set()
            thread = threading.Thread(target=worker)
            thread.start()
            assert other_done.wait(timeout=2)
            thread.join()

    def test_concurrent_syncs_never_interleave(self, provider, coordinator):
        """Two racing syncs leave exactly one scrape's children."""
        cases = [
            build_case(activity_ids=(1, 2), subject_names=("A", "B")),
            build_case(activity_ids=(3, 4, 5), subject_names=("C",)),
        ]
        errors = []

        def run(case):
            try:
                coordinator.sync(case)
            except Exception as e:  # surfaced below
                errors.append(e)

        threads = [threading.Thread(target=run, args=(case,)) for case in cases]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        snapshot = stored(provider)
        assert snapshot['count'] == 1
        assert (snapshot['activities'], snapshot['subjects']) in (
            ([1, 2], ["A", "B"]),
            ([3, 4, 5], ["C"]),
        )
