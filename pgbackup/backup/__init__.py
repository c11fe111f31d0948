"""
Backup module for pgbackup.

This module handles the core backup functionality including:
- Database enumeration (psql)
- Dumping and compression (pg_dump + gzip)
- Storage (S3 and S3-compatible services)
- Execution orchestration
- Retention policy enforcement
"""

from .executor import BackupExecutor, backup, backup_old
from .sources import list_databases, build_database_url, SourceError, DatabaseConnectionError
from .dump import dump_to_file, DumpError, EmptyArchiveError
from .storage import S3Storage, StorageError, UploadError, DeleteError
from .retention import RetentionManager, RETENTION_DAYS

__all__ = [
    'BackupExecutor',
    'backup',
    'backup_old',
    'list_databases',
    'build_database_url',
    'dump_to_file',
    'S3Storage',
    'RetentionManager',
    'RETENTION_DAYS',
    'SourceError',
    'DatabaseConnectionError',
    'DumpError',
    'EmptyArchiveError',
    'StorageError',
    'UploadError',
    'DeleteError'
]
