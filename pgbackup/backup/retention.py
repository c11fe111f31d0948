"""
Retention policy enforcement for backups.

Deletes every object in the backup bucket that is older than the retention
window. The window is fixed at RETENTION_DAYS.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .storage import S3Storage


logger = logging.getLogger(__name__)

RETENTION_DAYS = 4


class RetentionManager:
    """
    Prunes old backups from S3.

    The whole bucket is walked page by page and each expired object is
    deleted with its own request. A failed delete aborts the prune.
    """

    def __init__(self, storage: S3Storage, retention_days: int = RETENTION_DAYS):
        self.storage = storage
        self.retention_days = retention_days

    def cutoff(self) -> datetime:
        """Objects last modified before this moment are expired."""
        return datetime.now(timezone.utc) - timedelta(days=self.retention_days)

    def delete_old_backups(self, bucket_name: Optional[str] = None) -> int:
        """
        Delete objects older than the retention window.

        Args:
            bucket_name: Bucket to prune (default: the storage handler's bucket)

        Returns:
            Number of objects deleted

        Raises:
            StorageError: If listing fails
            DeleteError: If any deletion fails
        """
        storage = self.storage
        if bucket_name and bucket_name != storage.bucket_name:
            storage = S3Storage(
                bucket_name=bucket_name,
                region=storage.region,
                client=storage.s3_client
            )

        cutoff_date = self.cutoff()
        logger.info(
            f"Deleting backups older than {self.retention_days} days "
            f"(before {cutoff_date.isoformat()}) from {storage.bucket_name}"
        )

        deleted_count = 0
        for obj in storage.iter_objects():
            if not self._is_expired(obj, cutoff_date):
                continue

            storage.delete(obj['Key'])
            deleted_count += 1
            logger.info(f"Deleted S3 object: {obj['Key']}")

        logger.info(f"Retention cleanup complete, {deleted_count} objects deleted")
        return deleted_count

    @staticmethod
    def _is_expired(obj, cutoff_date: datetime) -> bool:
        last_modified = obj.get('LastModified')
        if last_modified is None or not obj.get('Key'):
            return False

        # S3 timestamps are aware; treat naive ones as UTC
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)

        return last_modified < cutoff_date
