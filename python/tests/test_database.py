"""
Unit tests for database models and connection support.

Tests the SQLAlchemy ORM models, enums, the SQLite savepoint setup and
the store health check. Uses SQLite databases so no server is needed.
"""

import pytest
import uuid
from unittest.mock import patch

from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database.models import (
    Base,
    JudicialProcess,
    ProcessActivity,
    ConsultationHistory,
    UserProcess,
    ActivityType,
    SubjectRole,
    ConsultationType,
    ConsultationStatus,
    ConsultationSource,
)
from database.connection import (
    DatabaseSettings,
    create_test_provider,
)
from database.monitoring import (
    check_health,
    query_timer,
    get_db_metrics,
    reset_metrics,
)


@pytest.fixture
def provider(tmp_path):
    provider = create_test_provider(url=f"sqlite:///{tmp_path / 'models.db'}")
    yield provider
    provider.close()


def make_process(case_number="11001310300120230012300", **overrides):
    fields = dict(
        case_number=case_number,
        court="JUZGADO 001 CIVIL",
        process_type="Verbal",
        plaintiff="Juan Pérez",
        defendant="Empresa XYZ",
    )
    fields.update(overrides)
    return JudicialProcess(**fields)


class TestEnums:
    """Tests for enum values stored in the database."""

    def test_activity_types(self):
        assert [t.value for t in ActivityType] == [
            "hearing", "resolution", "notification", "document", "appeal", "other"
        ]

    def test_subject_roles(self):
        assert {r.value for r in SubjectRole} == {"plaintiff", "defendant", "other"}

    def test_consultation_enums(self):
        assert ConsultationType.PUBLIC_CONSULT.value == "public_consult"
        assert ConsultationStatus.NOT_FOUND.value == "not_found"
        assert ConsultationSource.CACHE.value == "cache"

    def test_enums_are_strings(self):
        assert ActivityType.HEARING == "hearing"


class TestSchema:
    """Tests for the created schema."""

    def test_all_tables_created(self, provider):
        tables = set(inspect(provider.engine).get_table_names())
        assert tables == {
            "judicial_processes",
            "process_activities",
            "process_subjects",
            "process_documents",
            "consultation_history",
            "user_processes",
        }

    def test_audit_table_has_no_updated_at(self):
        columns = {c.name for c in ConsultationHistory.__table__.columns}
        assert "created_at" in columns
        assert "updated_at" not in columns

    def test_metadata_matches_models(self):
        assert "judicial_processes" in Base.metadata.tables


class TestModels:
    """Tests for model constraints."""

    def test_case_number_unique(self, provider):
        with provider.session_scope() as session:
            session.add(make_process())

        with pytest.raises(IntegrityError):
            with provider.session_scope() as session:
                session.add(make_process())

    def test_enum_column_round_trip(self, provider):
        with provider.session_scope() as session:
            process = make_process()
            session.add(process)
            session.flush()
            session.add(ProcessActivity(
                process_id=process.id,
                sync_generation=uuid.uuid4(),
                description="Audiencia inicial",
                activity_type=ActivityType.HEARING,
            ))

        with provider.session_scope() as session:
            activity = session.query(ProcessActivity).one()
            assert activity.activity_type == ActivityType.HEARING
            raw = session.execute(text("SELECT activity_type FROM process_activities")).scalar_one()
            assert raw == "hearing"

    def test_user_process_unique(self, provider):
        with provider.session_scope() as session:
            process = make_process()
            session.add(process)
            session.flush()
            process_id = process.id
            session.add(UserProcess(user_id="u1", process_id=process_id))

        with pytest.raises(IntegrityError):
            with provider.session_scope() as session:
                session.add(UserProcess(user_id="u1", process_id=process_id))

    def test_foreign_keys_enforced(self, provider):
        with pytest.raises(IntegrityError):
            with provider.session_scope() as session:
                session.add(UserProcess(user_id="u1", process_id=uuid.uuid4()))

    def test_repr(self):
        assert "11001" in repr(make_process())


class TestConnection:
    """Tests for settings and session handling."""

    def test_explicit_url_wins(self):
        settings = DatabaseSettings(url="sqlite:///x.db")
        assert settings.get_url() == "sqlite:///x.db"

    def test_postgres_url_built(self):
        settings = DatabaseSettings(host="db", port=5433, database="cases", user="u", password="p")
        assert settings.get_url() == "postgresql+psycopg2://u:p@db:5433/cases"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///env.db")
        monkeypatch.setenv("DB_POOL_SIZE", "9")
        settings = DatabaseSettings.from_env()
        assert settings.get_url() == "sqlite:///env.db"
        assert settings.pool_size == 9

    def test_session_scope_rolls_back(self, provider):
        with pytest.raises(RuntimeError):
            with provider.session_scope() as session:
                session.add(make_process())
                session.flush()
                raise RuntimeError("boom")

        with provider.session_scope() as session:
            assert session.query(JudicialProcess).count() == 0

    def test_savepoint_rollback_keeps_outer_work(self, provider):
        """A failed nested transaction leaves the outer transaction usable."""
        with provider.get_unit_of_work() as uow:
            uow.session.add(make_process("A"))
            uow.session.flush()
            with pytest.raises(IntegrityError):
                with uow.session.begin_nested():
                    uow.session.add(make_process("A"))
                    uow.session.flush()
            uow.session.add(make_process("B"))
            uow.commit()

        with provider.session_scope() as session:
            numbers = sorted(p.case_number for p in session.query(JudicialProcess).all())
            assert numbers == ["A", "B"]

    def test_health_check(self, provider):
        assert provider.health_check() is True


class TestMonitoring:
    """Tests for query timing and health reporting."""

    def setup_method(self):
        reset_metrics()

    def test_query_timer_records_stats(self):
        with query_timer("unit_test_op"):
            pass
        stats = get_db_metrics()
        assert stats["operations"]["unit_test_op"]["count"] == 1

    def test_query_timer_records_errors(self):
        with pytest.raises(ValueError):
            with query_timer("failing_op"):
                raise ValueError("bad")
        assert get_db_metrics()["operations"]["failing_op"]["errors"] == 1

    def test_check_health(self, provider):
        status = check_health(provider.engine, provider.session_factory)
        assert status.healthy is True
        assert status.to_dict()["healthy"] is True


class TestMigration:
    """Tests that the baseline migration matches the models."""

    @staticmethod
    def load_migration():
        import importlib.util
        path = Path(__file__).parent.parent / "alembic" / "versions" / "001_initial.py"
        spec = importlib.util.spec_from_file_location("migration_001_initial", path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def test_revision_is_baseline(self):
        migration = self.load_migration()
        assert migration.revision == "001_initial"
        assert migration.down_revision is None

    def test_upgrade_creates_model_tables(self):
        from sqlalchemy import Column
        from sqlalchemy.dialects import postgresql

        migration = self.load_migration()
        with patch.object(migration, "op") as op, patch.object(postgresql.ENUM, "create"):
            migration.upgrade()

        created = {}
        for call in op.create_table.call_args_list:
            name, *items = call.args
            created[name] = {item.name for item in items if isinstance(item, Column)}

        assert set(created) == set(Base.metadata.tables)
        for name, table in Base.metadata.tables.items():
            assert created[name] == {c.name for c in table.columns}, name

    def test_downgrade_drops_tables(self):
        migration = self.load_migration()
        with patch.object(migration, "op") as op:
            migration.downgrade()

        dropped = {call.args[0] for call in op.drop_table.call_args_list}
        assert dropped == set(Base.metadata.tables)
