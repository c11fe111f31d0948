"""
S3 storage handler for backup archives.

Works with AWS S3 and S3-compatible services (custom endpoint, path-style
addressing). Objects are stored under:
[{subfolder}/]{filename}
"""

import logging
import os
from typing import Optional, Dict, Any, Iterator

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError

from pgbackup.utils.hashing import create_md5, md5_to_base64, content_md5


logger = logging.getLogger(__name__)

# Files above this size go through a multipart upload
MULTIPART_THRESHOLD = 100 * 1024 * 1024
PART_SIZE = 10 * 1024 * 1024


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class UploadError(StorageError):
    """Raised when an archive cannot be uploaded."""
    pass


class DeleteError(StorageError):
    """Raised when a local or remote backup cannot be deleted."""
    pass


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for uploading, listing and deleting backups in an S3 bucket.
    """

    def __init__(
        self,
        bucket_name: str,
        region: str,
        endpoint_url: Optional[str] = None,
        force_path_style: bool = False,
        support_object_lock: bool = False,
        subfolder: str = '',
        client=None
    ):
        """
        Initialize S3 storage handler.

        Credentials are resolved by boto3 (AWS_ACCESS_KEY_ID and
        AWS_SECRET_ACCESS_KEY environment variables, shared config, ...).

        Args:
            bucket_name: S3 bucket name
            region: Bucket region
            endpoint_url: Custom endpoint for S3-compatible services
            force_path_style: Use path-style instead of virtual-host addressing
            support_object_lock: Send Content-MD5 with every upload
            subfolder: Optional key prefix for uploaded archives
            client: Pre-built boto3 S3 client (mainly for tests)
        """
        self.bucket_name = bucket_name
        self.region = region
        self.support_object_lock = support_object_lock
        self.subfolder = subfolder or ''

        if client is not None:
            self.s3_client = client
            return

        client_kwargs = {'region_name': region}

        if endpoint_url:
            logger.info(f"Using custom endpoint: {endpoint_url}")
            client_kwargs['endpoint_url'] = endpoint_url

        if force_path_style:
            client_kwargs['config'] = BotoConfig(s3={'addressing_style': 'path'})

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def build_key(self, name: str) -> str:
        """
        Object key for an archive name.

        Args:
            name: Archive filename

        Returns:
            '{subfolder}/{name}' if a subfolder is configured, otherwise name
        """
        if self.subfolder:
            return f"{self.subfolder}/{name}"
        return name

    def upload(self, local_path: str, name: str) -> str:
        """
        Upload archive to S3.

        The file is streamed from disk, never read fully into memory.

        Args:
            local_path: Path to local archive file
            name: Archive name (becomes the key, under the subfolder if set)

        Returns:
            S3 key of uploaded file

        Raises:
            UploadError: If upload fails
        """
        logger.info("Uploading backup to S3...")

        if not os.path.exists(local_path):
            raise UploadError(f"Local file not found: {local_path}")

        s3_key = self.build_key(name)

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

        except ClientError as e:
            raise UploadError(f"S3 upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise UploadError(f"S3 upload failed: {e}")
        except OSError as e:
            raise UploadError(f"Failed to read {local_path}: {e}")

        logger.info("Backup uploaded to S3...")
        return s3_key

    def _simple_upload(self, local_path: str, s3_key: str):
        """
        Upload file using simple put_object.

        Args:
            local_path: Path to local file
            s3_key: S3 object key
        """
        params: Dict[str, Any] = {
            'Bucket': self.bucket_name,
            'Key': s3_key,
        }

        if self.support_object_lock:
            logger.info("MD5 hashing file...")
            params['ContentMD5'] = md5_to_base64(create_md5(local_path))
            logger.info("Done hashing file")

        with open(local_path, 'rb') as f:
            self.s3_client.put_object(Body=f, **params)

    def _multipart_upload(self, local_path: str, s3_key: str):
        """
        Upload large file in PART_SIZE chunks.

        With object lock support every part carries its own Content-MD5,
        which is what S3 checks for multipart uploads.

        Args:
            local_path: Path to local file
            s3_key: S3 object key
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(PART_SIZE)
                    if not data:
                        break

                    part_params = {
                        'Bucket': self.bucket_name,
                        'Key': s3_key,
                        'PartNumber': part_number,
                        'UploadId': upload_id,
                        'Body': data
                    }
                    if self.support_object_lock:
                        part_params['ContentMD5'] = content_md5(data)

                    response = self.s3_client.upload_part(**part_params)

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def delete(self, s3_key: str):
        """
        Delete an object from S3.

        Args:
            s3_key: S3 object key to delete

        Raises:
            DeleteError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            raise DeleteError(f"S3 delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise DeleteError(f"Failed to delete from S3: {e}")

    def iter_objects(self, prefix: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """
        Lazily list objects in the bucket, one page per request.

        Follows continuation tokens until S3 reports the listing is complete.

        Args:
            prefix: Optional key prefix to filter by

        Yields:
            Object dicts as returned by list_objects_v2 ('Key', 'LastModified', 'Size', ...)

        Raises:
            StorageError: If listing fails
        """
        params: Dict[str, Any] = {'Bucket': self.bucket_name}
        if prefix:
            params['Prefix'] = prefix

        while True:
            try:
                page = self.s3_client.list_objects_v2(**params)
            except ClientError as e:
                raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
            except BotoCoreError as e:
                raise StorageError(f"Failed to list S3 objects: {e}")

            for obj in page.get('Contents', []):
                yield obj

            token = page.get('NextContinuationToken')
            if not page.get('IsTruncated') or not token:
                break
            params['ContinuationToken'] = token


def create_s3_storage(config) -> S3Storage:
    """
    Build an S3Storage from a config mapping.

    Args:
        config: Mapping with AWS_S3_* and BUCKET_SUBFOLDER settings

    Returns:
        Configured S3Storage
    """
    return S3Storage(
        bucket_name=config['AWS_S3_BUCKET'],
        region=config['AWS_S3_REGION'],
        endpoint_url=config.get('AWS_S3_ENDPOINT'),
        force_path_style=bool(config.get('AWS_S3_FORCE_PATH_STYLE')),
        support_object_lock=bool(config.get('SUPPORT_OBJECT_LOCK')),
        subfolder=config.get('BUCKET_SUBFOLDER') or ''
    )
