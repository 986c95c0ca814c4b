"""
Database Package for the judicial consultation service

This package provides:
- SQLAlchemy ORM models for cases, their children and the audit trail
- Session provider with savepoint support on SQLite and PostgreSQL
- Unit of Work pattern for transaction management
- Repository pattern for data access
- Alembic integration for migrations
- Performance monitoring and query timing

The sync coordinator and consultation service live in
database.sync_coordinator and database.consultation_service and are
imported from there directly.
"""

from database.models import (
    Base,
    JudicialProcess,
    ProcessActivity,
    ProcessSubject,
    ProcessDocument,
    ConsultationHistory,
    UserProcess,
    ActivityType,
    SubjectRole,
    ConsultationType,
    ConsultationStatus,
    ConsultationSource,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    build_engine,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    reset_metrics,
    configure_monitoring,
    check_health,
    HealthStatus,
)

__all__ = [
    # Base
    'Base',
    # Case models
    'JudicialProcess',
    'ProcessActivity',
    'ProcessSubject',
    'ProcessDocument',
    # Audit and monitoring models
    'ConsultationHistory',
    'UserProcess',
    # Enums
    'ActivityType',
    'SubjectRole',
    'ConsultationType',
    'ConsultationStatus',
    'ConsultationSource',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'build_engine',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'reset_metrics',
    'configure_monitoring',
    'check_health',
    'HealthStatus',
]
