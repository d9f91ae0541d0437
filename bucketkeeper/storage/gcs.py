"""
Google Cloud Storage connector.

Buckets are expected to have object versioning enabled; every object
revision is addressed by its generation number. Credentials:

    {
        'project_id': ...,
        'credentials': {'client_email': ..., 'private_key': ...},   # or 'keyfile': '/path/key.json'
        'bucket': 'shared-bucket', 'version': 2    # only for the shared (v2) layout
    }

Without 'credentials' or 'keyfile', Application Default Credentials are used.
"""

import logging
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

from google.api_core.exceptions import GoogleAPICallError, NotFound
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage
from google.oauth2 import service_account

from ..errors import DateParseError, NotFoundError, ProviderError
from ..models import BACKUPS_PREFIX, CopyCommand, FileVersions, Layout, ObjectVersion
from ..utils.retry import retry_with_backoff
from .base import StorageConnector, parse_backup_date


logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = 'https://oauth2.googleapis.com/token'
GCS_ERRORS = (GoogleAPICallError, GoogleAuthError)


def parse_gcs_backup_date(backup_name: str) -> date:
    """
    Extract the date from a GCS backup name.

    GCS backups are named <company>-<installation>-YYYY-M-D_h_m_s-<random>,
    e.g. company1-i8667373ad74d4a27bcfa3545c6b63-2022-2-8_5_0_16-86887099031208640856
    -> 2022-02-08. Names without that shape fall back to the S3-style
    fixed-length formats.

    Raises:
        DateParseError: If no known scheme yields a valid date
    """
    parts = backup_name.split('-') if isinstance(backup_name, str) else []
    if len(parts) < 5:
        return parse_backup_date(backup_name)

    try:
        year = int(parts[2])
        month = int(parts[3])
        day = int(parts[4].split('_')[0])
        return date(year, month, day)
    except ValueError as e:
        raise DateParseError(f"Invalid date in backup name {backup_name}: {e}") from e


class GCSConnector(StorageConnector):
    """Connector for versioned Google Cloud Storage buckets."""

    provider = 'google'
    product = 'storage'

    def __init__(self, client_factory=None, page_size: Optional[int] = None, **kwargs):
        super().__init__(client_factory=client_factory, **kwargs)
        self.page_size = page_size

    def _create_client(self, credentials: Dict[str, Any]):
        project = credentials.get('project_id') or credentials.get('projectId')
        try:
            if credentials.get('credentials'):
                info = {'token_uri': GOOGLE_TOKEN_URI, **credentials['credentials']}
                google_credentials = service_account.Credentials.from_service_account_info(info)
                return storage.Client(project=project, credentials=google_credentials)
            if credentials.get('keyfile'):
                return storage.Client.from_service_account_json(credentials['keyfile'], project=project)
            return storage.Client(project=project)
        except (GoogleAuthError, ValueError, OSError) as e:
            raise ProviderError(f"Failed to initialize GCS client: {e}")

    def iter_blob_pages(self, client, bucket: str, prefix: str,
                        delimiter: Optional[str] = None) -> Iterator[Any]:
        """
        Lazily yield pages of blobs, every generation included.

        Each page is iterable over blobs and carries the `prefixes` seen on
        that page when a delimiter is used.

        Raises:
            NotFoundError: If the bucket does not exist
            ProviderError: For any other SDK failure
        """
        params = {'prefix': prefix, 'versions': True}
        if delimiter:
            params['delimiter'] = delimiter
        if self.page_size:
            params['page_size'] = self.page_size

        try:
            iterator = client.list_blobs(bucket, **params)
            for page in iterator.pages:
                yield page
        except NotFound as e:
            raise NotFoundError(f"GCS bucket not found: {bucket}") from e
        except GCS_ERRORS as e:
            raise ProviderError(f"GCS list of {bucket}/{prefix} failed: {e}") from e

    def list_file_versions(self, installation_id: str, folder: str, credentials: Dict[str, Any],
                           client=None) -> FileVersions:
        """
        List every generation of every object under a folder.

        GCS has no delete markers and no latest flag, so delete_markers is
        always empty and is_latest is None.
        """
        layout = Layout.from_credentials(credentials)
        bucket = layout.bucket_for(installation_id)
        prefix = layout.key_for(installation_id, folder)
        client = client or self.get_client(credentials)

        files = FileVersions()
        for page in self.iter_blob_pages(client, bucket, prefix):
            for blob in page:
                files.versions.append(ObjectVersion(
                    path=blob.name,
                    version_id=str(blob.generation),
                    is_latest=None,
                    size=blob.size,
                ))

        logger.debug(f"Listed {len(files.versions)} generations in {bucket}/{prefix}")
        return files

    def list_backups(self, installation_id: str, credentials: Dict[str, Any], client=None) -> List[str]:
        layout = Layout.from_credentials(credentials)
        bucket = layout.bucket_for(installation_id)
        prefix = layout.key_for(installation_id, BACKUPS_PREFIX)
        client = client or self.get_client(credentials)

        backups = []
        seen = set()
        for page in self.iter_blob_pages(client, bucket, prefix, delimiter='/'):
            # Folder prefixes carry the backup names; blobs directly under
            # backups/ are not backups.
            for folder in sorted(getattr(page, 'prefixes', ()) or ()):
                segments = folder.split('/')
                if len(segments) <= layout.backup_segment:
                    continue
                name = segments[layout.backup_segment]
                if name and name not in seen:
                    seen.add(name)
                    backups.append(name)

        return backups

    def calculate_date(self, backup_name: str) -> date:
        return parse_gcs_backup_date(backup_name)

    def delete_object_version(self, installation_id: str, path: str, version_id: str,
                              credentials: Dict[str, Any], client=None) -> str:
        """
        Delete one generation of an object.

        A generation that is already gone counts as deleted.

        Raises:
            InvalidLocatorError: If the shared bucket descriptor is malformed
            ProviderError: If the delete fails
        """
        layout = Layout.from_credentials(credentials)
        bucket_name = layout.bucket_for(installation_id)
        client = client or self.get_client(credentials)

        try:
            blob = client.bucket(bucket_name).blob(path, generation=int(version_id))
            blob.delete()
        except NotFound:
            logger.debug(f"{bucket_name}/{path} generation {version_id} already deleted")
        except (GoogleAPICallError, GoogleAuthError, ValueError) as e:
            raise ProviderError(
                f"GCS delete of {bucket_name}/{path} (generation {version_id}) failed: {e}"
            ) from e

        return f"Deleted {bucket_name}/{path}"

    def read_object(self, installation_id: str, key: str, credentials: Dict[str, Any],
                    client=None) -> bytes:
        layout = Layout.from_credentials(credentials)
        bucket_name = layout.bucket_for(installation_id)
        full_key = layout.key_for(installation_id, key)
        client = client or self.get_client(credentials)

        try:
            return client.bucket(bucket_name).blob(full_key).download_as_bytes()
        except NotFound as e:
            raise NotFoundError(f"GCS object not found: {bucket_name}/{full_key}") from e
        except GCS_ERRORS as e:
            raise ProviderError(f"GCS read of {bucket_name}/{full_key} failed: {e}") from e

    def configure_bucket(self, installation_id: str, credentials: Dict[str, Any],
                         tags: Optional[Dict[str, str]] = None, client=None):
        """
        Enable versioning and apply labels to a bucket.

        GCS always encrypts at rest, so there is no encryption setting to push.

        Raises:
            NotFoundError: If the bucket does not exist
            ProviderError: If the update still fails after all retries
        """
        layout = Layout.from_credentials(credentials)
        bucket_name = layout.bucket_for(installation_id)
        client = client or self.get_client(credentials)

        try:
            bucket = retry_with_backoff(client.get_bucket, bucket_name, retry_on=(GoogleAPICallError,))
            bucket.versioning_enabled = True
            if tags:
                bucket.labels = dict(tags)
            retry_with_backoff(bucket.patch, retry_on=(GoogleAPICallError,))
        except NotFound as e:
            raise NotFoundError(f"GCS bucket not found: {bucket_name}") from e
        except GCS_ERRORS as e:
            raise ProviderError(f"GCS configuration of bucket {bucket_name} failed: {e}") from e

        logger.info(f"Configured GCS bucket {bucket_name}")

    def _delete_bucket(self, client, bucket: str):
        try:
            client.bucket(bucket).delete()
        except GCS_ERRORS as e:
            raise ProviderError(f"GCS delete of bucket {bucket} failed: {e}") from e

    def _check_transfer_buckets(self, client, source_bucket: str, destination_bucket: str):
        for label, name in (('source', source_bucket), ('destination', destination_bucket)):
            try:
                exists = client.bucket(name).exists()
            except GCS_ERRORS as e:
                raise ProviderError(f"Error finding {label} bucket {name}: {e}") from e
            if not exists:
                raise NotFoundError(f"Bucket {name} does not exist")

    def _copy_object(self, client, command: CopyCommand):
        try:
            source_bucket = client.bucket(command.source_bucket)
            source_blob = source_bucket.blob(command.source_key)
            source_bucket.copy_blob(
                source_blob,
                client.bucket(command.destination_bucket),
                new_name=command.destination_key,
                source_generation=int(command.source_version_id),
            )
        except NotFound as e:
            raise NotFoundError(
                f"GCS copy source not found: {command.source_bucket}/{command.source_key}"
            ) from e
        except (GoogleAPICallError, GoogleAuthError, ValueError) as e:
            raise ProviderError(
                f"GCS copy of {command.source_bucket}/{command.source_key} failed: {e}"
            ) from e
