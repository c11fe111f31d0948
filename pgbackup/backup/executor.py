"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. List databases on the cluster
2. Delete backups older than the retention window
3. For each database, in order:
   a. Dump to a gzip archive in the temp directory
   b. Upload the archive to S3
   c. Delete the local archive

Steps run one after another. The first failure aborts the whole run.
"""

import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from pgbackup.config import validate_required_settings
from .sources import list_databases, build_database_url
from .dump import dump_to_file, generate_archive_filename, generate_timestamp
from .storage import S3Storage, DeleteError, create_s3_storage
from .retention import RetentionManager


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Runs one backup of a PostgreSQL cluster into S3.
    """

    def __init__(
        self,
        config,
        storage: Optional[S3Storage] = None,
        retention: Optional[RetentionManager] = None
    ):
        """
        Initialize backup executor.

        Args:
            config: Mapping with the backup settings (e.g. Flask app.config)
            storage: S3 storage handler (default: built from config)
            retention: Retention manager (default: prunes the same storage)

        Raises:
            ConfigError: If required settings are missing
        """
        validate_required_settings(config)

        self.config = config
        self.storage = storage or create_s3_storage(config)
        self.retention = retention or RetentionManager(self.storage)
        self.temp_dir = tempfile.gettempdir()
        self.logs = []

    def backup(self) -> Dict[str, Any]:
        """
        Back up every database on the cluster.

        Returns:
            Dict with 'databases', 'uploaded' (S3 keys) and 'pruned' count

        Raises:
            DatabaseConnectionError, DumpError, EmptyArchiveError,
            UploadError, DeleteError, StorageError: On the first failing step
        """
        self._log("Initiating DB backup...")

        cluster_url = self.config['BACKUP_DATABASE_URL']
        databases = list_databases(cluster_url)
        pruned = self.retention.delete_old_backups(self.config['AWS_S3_BUCKET'])
        self._log(f"Found databases: {', '.join(databases)}")

        timestamp = generate_timestamp()
        uploaded = []

        for db_name in databases:
            filename = generate_archive_filename(
                self.config['BACKUP_FILE_PREFIX'], timestamp, db_name
            )
            db_url = build_database_url(cluster_url, db_name)

            uploaded.append(self._backup_one(db_url, filename))
            self._log(f"Backup of \"{db_name}\" complete")

        self._log("DB backup complete...")

        return {
            'databases': databases,
            'uploaded': uploaded,
            'pruned': pruned
        }

    def backup_old(self) -> Dict[str, Any]:
        """
        Legacy single-dump backup of BACKUP_DATABASE_URL.

        No database enumeration and no retention pruning.

        Returns:
            Dict with 'databases' (empty), 'uploaded' (S3 keys) and 'pruned' (0)
        """
        self._log("Initiating DB backup...")

        filename = generate_archive_filename(
            self.config['BACKUP_FILE_PREFIX'], generate_timestamp()
        )
        s3_key = self._backup_one(self.config['BACKUP_DATABASE_URL'], filename)

        self._log("DB backup complete...")

        return {
            'databases': [],
            'uploaded': [s3_key],
            'pruned': 0
        }

    def _backup_one(self, db_url: str, filename: str) -> str:
        """
        Dump, upload and delete one archive.

        Args:
            db_url: Connection URL to dump
            filename: Archive filename (also the S3 object name)

        Returns:
            S3 key of the uploaded archive
        """
        file_path = os.path.join(self.temp_dir, filename)

        self._log(f"Dumping to {file_path}")
        dump_to_file(db_url, file_path, self.config.get('BACKUP_OPTIONS', ''))

        self._log(f"Uploading {filename}")
        s3_key = self.storage.upload(file_path, filename)
        self._log(f"Uploaded to S3: {s3_key}")

        self._delete_file(file_path)
        return s3_key

    def _delete_file(self, path: str):
        """
        Remove a local archive.

        Raises:
            DeleteError: If the file cannot be removed
        """
        self._log("Deleting file...")
        try:
            os.remove(path)
        except OSError as e:
            raise DeleteError(f"Failed to delete local file {path}: {e}")

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def backup(config) -> Dict[str, Any]:
    """
    Back up every database on the configured cluster.

    Args:
        config: Mapping with the backup settings

    Returns:
        Summary dict from BackupExecutor.backup()
    """
    executor = BackupExecutor(config)
    return executor.backup()


def backup_old(config) -> Dict[str, Any]:
    """
    Legacy whole-cluster backup.

    Args:
        config: Mapping with the backup settings

    Returns:
        Summary dict from BackupExecutor.backup_old()
    """
    executor = BackupExecutor(config)
    return executor.backup_old()
