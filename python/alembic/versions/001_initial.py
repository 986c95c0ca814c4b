"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2024-12-01 00:00:00.000000

This is the baseline migration that creates all tables for the judicial
consultation store. It corresponds to the models in database/models.py.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
    ]


def _uuid_pk():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                     server_default=sa.text('uuid_generate_v4()'))


def _process_fk(ondelete: str = 'CASCADE', nullable: bool = False):
    return sa.Column('process_id', postgresql.UUID(as_uuid=True),
                     sa.ForeignKey('judicial_processes.id', ondelete=ondelete),
                     nullable=nullable)


def upgrade() -> None:
    """Create initial database schema."""

    # Enable required extensions
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Create enums
    activity_type = postgresql.ENUM(
        'hearing', 'resolution', 'notification', 'document', 'appeal', 'other',
        name='activity_type', create_type=False
    )
    subject_role = postgresql.ENUM(
        'plaintiff', 'defendant', 'other',
        name='subject_role', create_type=False
    )
    consultation_type = postgresql.ENUM(
        'public_consult', 'refresh', 'monitor',
        name='consultation_type', create_type=False
    )
    consultation_status = postgresql.ENUM(
        'success', 'partial', 'degraded', 'not_found', 'error',
        name='consultation_status', create_type=False
    )
    consultation_source = postgresql.ENUM(
        'cache', 'portal',
        name='consultation_source', create_type=False
    )
    for enum_type in (activity_type, subject_role, consultation_type,
                      consultation_status, consultation_source):
        enum_type.create(op.get_bind(), checkfirst=True)

    # Create judicial_processes table
    op.create_table(
        'judicial_processes',
        _uuid_pk(),
        sa.Column('case_number', sa.String(50), nullable=False),
        sa.Column('portal_process_id', sa.String(50)),
        sa.Column('portal_connection_id', sa.String(50)),
        sa.Column('filing_date', sa.Date),
        sa.Column('last_activity_date', sa.Date),
        sa.Column('court', sa.String(500), nullable=False),
        sa.Column('department', sa.String(200)),
        sa.Column('process_type', sa.String(200), nullable=False),
        sa.Column('plaintiff', sa.String(1000), nullable=False),
        sa.Column('defendant', sa.String(1000), nullable=False),
        sa.Column('raw_parties', sa.Text),
        sa.Column('folio_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_private', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('status', sa.String(100)),
        sa.Column('portal_url', sa.String(500)),
        sa.Column('sync_generation', postgresql.UUID(as_uuid=True)),
        sa.Column('last_synced_at', sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint('case_number', name='uq_judicial_processes_case_number')
    )

    # Create process_activities table
    op.create_table(
        'process_activities',
        _uuid_pk(),
        _process_fk(),
        sa.Column('sync_generation', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('portal_activity_id', sa.BigInteger),
        sa.Column('sequence_number', sa.Integer),
        sa.Column('activity_date', sa.Date),
        sa.Column('activity_type', activity_type, nullable=False, server_default='other'),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('annotation', sa.Text),
        sa.Column('term_start_date', sa.Date),
        sa.Column('term_end_date', sa.Date),
        sa.Column('rule_code', sa.String(50)),
        sa.Column('has_documents', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('folio_count', sa.Integer, nullable=False, server_default='0'),
        *_timestamps()
    )

    # Create process_subjects table
    op.create_table(
        'process_subjects',
        _uuid_pk(),
        _process_fk(),
        sa.Column('sync_generation', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('portal_subject_id', sa.BigInteger),
        sa.Column('name', sa.String(500), nullable=False),
        sa.Column('role', subject_role, nullable=False, server_default='other'),
        sa.Column('raw_role', sa.String(200)),
        sa.Column('id_number', sa.String(100)),
        sa.Column('id_type', sa.String(100)),
        sa.Column('representative', sa.String(500)),
        sa.Column('has_representative', sa.Boolean, nullable=False, server_default='false'),
        *_timestamps()
    )

    # Create process_documents table
    op.create_table(
        'process_documents',
        _uuid_pk(),
        _process_fk(),
        sa.Column('activity_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('process_activities.id', ondelete='SET NULL')),
        sa.Column('sync_generation', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('portal_document_id', sa.BigInteger),
        sa.Column('filename', sa.String(500), nullable=False),
        sa.Column('document_type', sa.String(100)),
        sa.Column('download_url', sa.String(1000)),
        sa.Column('size_bytes', sa.BigInteger),
        sa.Column('extension', sa.String(20)),
        sa.Column('document_date', sa.Date),
        *_timestamps()
    )

    # Create consultation_history table (append-only, no updated_at)
    op.create_table(
        'consultation_history',
        _uuid_pk(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('user_id', sa.String(100)),
        _process_fk(ondelete='SET NULL', nullable=True),
        sa.Column('case_number', sa.String(50), nullable=False),
        sa.Column('consultation_type', consultation_type, nullable=False),
        sa.Column('ip_address', sa.String(50)),
        sa.Column('user_agent', sa.String(500)),
        sa.Column('result_status', consultation_status, nullable=False),
        sa.Column('source', consultation_source),
        sa.Column('error_message', sa.Text)
    )

    # Create user_processes table
    op.create_table(
        'user_processes',
        _uuid_pk(),
        sa.Column('user_id', sa.String(100), nullable=False),
        _process_fk(),
        sa.Column('role', sa.String(50), nullable=False, server_default='observer'),
        sa.Column('alias', sa.String(200)),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'process_id', name='uq_user_process')
    )

    # Create indexes
    op.create_index('ix_judicial_processes_court', 'judicial_processes', ['court'])
    op.create_index('ix_process_last_activity', 'judicial_processes', ['last_activity_date'])

    op.create_index('ix_process_activities_process_id', 'process_activities', ['process_id'])
    op.create_index('ix_process_activities_sync_generation', 'process_activities', ['sync_generation'])
    op.create_index('ix_activity_process_date', 'process_activities', ['process_id', 'activity_date'])

    op.create_index('ix_process_subjects_process_id', 'process_subjects', ['process_id'])
    op.create_index('ix_process_subjects_sync_generation', 'process_subjects', ['sync_generation'])

    op.create_index('ix_process_documents_process_id', 'process_documents', ['process_id'])
    op.create_index('ix_process_documents_activity_id', 'process_documents', ['activity_id'])
    op.create_index('ix_process_documents_sync_generation', 'process_documents', ['sync_generation'])

    op.create_index('ix_consultation_history_created_at', 'consultation_history', ['created_at'])
    op.create_index('ix_consultation_history_user_id', 'consultation_history', ['user_id'])
    op.create_index('ix_consultation_history_process_id', 'consultation_history', ['process_id'])
    op.create_index('ix_consultation_history_case_number', 'consultation_history', ['case_number'])
    op.create_index('ix_consultation_history_result_status', 'consultation_history', ['result_status'])
    op.create_index('ix_consultation_case_created', 'consultation_history', ['case_number', 'created_at'])

    op.create_index('ix_user_processes_user_id', 'user_processes', ['user_id'])
    op.create_index('ix_user_processes_process_id', 'user_processes', ['process_id'])


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order
    op.drop_table('user_processes')
    op.drop_table('consultation_history')
    op.drop_table('process_documents')
    op.drop_table('process_subjects')
    op.drop_table('process_activities')
    op.drop_table('judicial_processes')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS consultation_source')
    op.execute('DROP TYPE IF EXISTS consultation_status')
    op.execute('DROP TYPE IF EXISTS consultation_type')
    op.execute('DROP TYPE IF EXISTS subject_role')
    op.execute('DROP TYPE IF EXISTS activity_type')
