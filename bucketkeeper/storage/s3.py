"""
Amazon S3 connector.

Works against versioned buckets: listings return every object version and
delete marker, and deletes are always version-qualified. Credentials:

    {
        'access_key_id': ..., 'secret_access_key': ..., 'region': 'us-east-1',
        'bucket': 'shared-bucket', 'version': 2    # only for the shared (v2) layout
    }
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import NotFoundError, ProviderError, StorageError
from ..models import BACKUPS_PREFIX, CopyCommand, DeleteMarker, FileVersions, Layout, ObjectVersion
from ..utils.retry import retry_with_backoff
from .base import StorageConnector


logger = logging.getLogger(__name__)

NOT_FOUND_CODES = ('NoSuchBucket', 'NoSuchKey', 'NotFound', '404')


def _translate_error(e: Exception, action: str) -> StorageError:
    """Map a botocore exception onto the storage error taxonomy."""
    if isinstance(e, ClientError):
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        if error_code in NOT_FOUND_CODES:
            return NotFoundError(f"S3 {action} failed ({error_code}): {e}")
        return ProviderError(f"S3 {action} failed ({error_code}): {e}")
    return ProviderError(f"S3 {action} failed: {e}")


class S3Connector(StorageConnector):
    """Connector for versioned Amazon S3 buckets."""

    provider = 'amazon'
    product = 's3'

    def __init__(self, client_factory=None, page_size: Optional[int] = None, **kwargs):
        """
        Args:
            client_factory: Optional callable building a client from credentials
            page_size: Versions requested per list page (S3 default: 1000)
        """
        super().__init__(client_factory=client_factory, **kwargs)
        self.page_size = page_size

    def _create_client(self, credentials: Dict[str, Any]):
        try:
            # Sessions are not thread-safe; build one per client
            session = boto3.session.Session()
            return session.client(
                's3',
                aws_access_key_id=credentials.get('access_key_id'),
                aws_secret_access_key=credentials.get('secret_access_key'),
                aws_session_token=credentials.get('session_token'),
                region_name=credentials.get('region', 'us-east-1'),
                endpoint_url=credentials.get('endpoint_url'),
                # One client serves every worker of a delete or copy batch
                config=Config(max_pool_connections=max(self.delete_concurrency, self.copy_concurrency)),
            )
        except Exception as e:
            raise ProviderError(f"Failed to initialize S3 client: {e}")

    def iter_version_pages(self, client, bucket: str, prefix: str,
                           delimiter: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """
        Lazily yield list_object_versions pages.

        The paginator carries the key/version markers between requests; no
        request is made for a page the caller never asks for.

        Raises:
            NotFoundError: If the bucket does not exist
            ProviderError: For any other SDK failure
        """
        params = {'Bucket': bucket, 'Prefix': prefix}
        if delimiter:
            params['Delimiter'] = delimiter
        if self.page_size:
            params['PaginationConfig'] = {'PageSize': self.page_size}

        try:
            paginator = client.get_paginator('list_object_versions')
            for page in paginator.paginate(**params):
                yield page
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"list of {bucket}/{prefix}") from e

    def list_file_versions(self, installation_id: str, folder: str, credentials: Dict[str, Any],
                           client=None) -> FileVersions:
        """
        List all versions and delete markers under a folder.

        Args:
            installation_id: Installation whose bucket (v1) or prefix (v2) to list
            folder: Folder or key prefix inside the installation; '' for everything
            credentials: S3 credentials

        Returns:
            FileVersions accumulated across every page
        """
        layout = Layout.from_credentials(credentials)
        bucket = layout.bucket_for(installation_id)
        prefix = layout.key_for(installation_id, folder)
        client = client or self.get_client(credentials)

        files = FileVersions()
        for page in self.iter_version_pages(client, bucket, prefix):
            for version in page.get('Versions', []):
                files.versions.append(ObjectVersion(
                    path=version['Key'],
                    version_id=version['VersionId'],
                    is_latest=version.get('IsLatest'),
                    size=version.get('Size'),
                ))
            for marker in page.get('DeleteMarkers', []):
                files.delete_markers.append(DeleteMarker(
                    path=marker['Key'],
                    version_id=marker['VersionId'],
                    is_latest=marker.get('IsLatest'),
                ))

        logger.debug(
            f"Listed {len(files.versions)} versions and {len(files.delete_markers)} "
            f"delete markers in {bucket}/{prefix}"
        )
        return files

    def list_backups(self, installation_id: str, credentials: Dict[str, Any], client=None) -> List[str]:
        """
        List backup folder names under backups/.

        Returns:
            Backup names in listing order, without duplicates
        """
        layout = Layout.from_credentials(credentials)
        bucket = layout.bucket_for(installation_id)
        prefix = layout.key_for(installation_id, BACKUPS_PREFIX)
        client = client or self.get_client(credentials)

        backups = []
        seen = set()
        for page in self.iter_version_pages(client, bucket, prefix, delimiter='/'):
            for common_prefix in page.get('CommonPrefixes', []):
                segments = common_prefix['Prefix'].split('/')
                if len(segments) <= layout.backup_segment:
                    continue
                name = segments[layout.backup_segment]
                if name and name not in seen:
                    seen.add(name)
                    backups.append(name)

        return backups

    def delete_object_version(self, installation_id: str, path: str, version_id: str,
                              credentials: Dict[str, Any], client=None) -> str:
        """
        Delete one object version (or delete marker).

        Args:
            path: Full object key, as returned by list_file_versions

        Returns:
            Confirmation message

        Raises:
            InvalidLocatorError: If the shared bucket descriptor is malformed
            ProviderError: If the delete fails
        """
        layout = Layout.from_credentials(credentials)
        bucket = layout.bucket_for(installation_id)
        client = client or self.get_client(credentials)

        try:
            client.delete_object(Bucket=bucket, Key=path, VersionId=version_id)
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"S3 delete of {bucket}/{path} (version {version_id}) failed: {e}") from e

        return f"Deleted {bucket}/{path}"

    def read_object(self, installation_id: str, key: str, credentials: Dict[str, Any],
                    client=None) -> bytes:
        layout = Layout.from_credentials(credentials)
        bucket = layout.bucket_for(installation_id)
        full_key = layout.key_for(installation_id, key)
        client = client or self.get_client(credentials)

        try:
            response = client.get_object(Bucket=bucket, Key=full_key)
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"read of {bucket}/{full_key}") from e

    def configure_bucket(self, installation_id: str, credentials: Dict[str, Any],
                         tags: Optional[Dict[str, str]] = None, client=None):
        """
        Apply tags, AES256 default encryption and versioning to a bucket.

        Each call is retried with exponential backoff; freshly created buckets
        can reject configuration for a short while.

        Raises:
            ProviderError: If a call still fails after all retries
        """
        layout = Layout.from_credentials(credentials)
        bucket = layout.bucket_for(installation_id)
        client = client or self.get_client(credentials)
        retry_on = (ClientError, BotoCoreError)

        try:
            if tags:
                retry_with_backoff(
                    client.put_bucket_tagging,
                    retry_on=retry_on,
                    Bucket=bucket,
                    Tagging={'TagSet': [{'Key': k, 'Value': v} for k, v in tags.items()]},
                )
            retry_with_backoff(
                client.put_bucket_encryption,
                retry_on=retry_on,
                Bucket=bucket,
                ServerSideEncryptionConfiguration={
                    'Rules': [{'ApplyServerSideEncryptionByDefault': {'SSEAlgorithm': 'AES256'}}]
                },
            )
            retry_with_backoff(
                client.put_bucket_versioning,
                retry_on=retry_on,
                Bucket=bucket,
                VersioningConfiguration={'Status': 'Enabled'},
            )
        except retry_on as e:
            raise _translate_error(e, f"configuration of bucket {bucket}") from e

        logger.info(f"Configured S3 bucket {bucket}")

    def _delete_bucket(self, client, bucket: str):
        try:
            client.delete_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"delete of bucket {bucket}") from e

    def _copy_object(self, client, command: CopyCommand):
        try:
            client.copy_object(
                CopySource={
                    'Bucket': command.source_bucket,
                    'Key': command.source_key,
                    'VersionId': command.source_version_id,
                },
                Bucket=command.destination_bucket,
                Key=command.destination_key,
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"copy of {command.source_bucket}/{command.source_key}") from e
