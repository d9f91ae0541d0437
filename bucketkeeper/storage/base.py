"""
Provider connector contract.

Every connector exposes the same operations against one provider's SDK.
The batch operations (delete_all, transfer_backup_files) are implemented
once here on top of the per-provider primitives.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union

from ..backup.transfer import plan_copy_commands, select_latest_versions
from ..errors import AggregateBatchError, DateParseError, ProviderError, StorageError
from ..models import (
    BackupManifest, CopyCommand, DeleteResult, DeleteTask, FileVersions, Layout, TransferResult,
)
from ..utils.task_queue import run_batch


logger = logging.getLogger(__name__)

DELETE_CONCURRENCY = 100
COPY_CONCURRENCY = 25


def parse_backup_date(backup_name: str) -> date:
    """
    Extract the date encoded in a backup name.

    Examples:
        03242022132649                      -> 2022-03-24 (MMDDYYYYhhmmss)
        20220502230023-47180780406793064490 -> 2022-05-02 (YYYYMMDDhhmmss-<random>)

    Raises:
        DateParseError: If the length matches neither scheme or the date is invalid
    """
    if not isinstance(backup_name, str):
        raise DateParseError(f"Backup name must be a string, got {type(backup_name).__name__}")

    if len(backup_name) == 14:
        month, day, year = backup_name[0:2], backup_name[2:4], backup_name[4:8]
    elif len(backup_name) == 35:
        year, month, day = backup_name[0:4], backup_name[4:6], backup_name[6:8]
    else:
        raise DateParseError(f"Invalid backup name length for backup {backup_name}")

    try:
        return date(int(year), int(month), int(day))
    except ValueError as e:
        raise DateParseError(f"Invalid date in backup name {backup_name}: {e}") from e


class StorageConnector(ABC):
    """
    Base class for provider connectors.

    Subclasses set `provider` and `product` and implement the primitives.
    Clients are built per operation from credentials; pass `client_factory`
    to substitute them (tests, custom endpoints).
    """

    provider: str = None
    product: str = None

    def __init__(self, client_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
                 delete_concurrency: int = DELETE_CONCURRENCY,
                 copy_concurrency: int = COPY_CONCURRENCY):
        self.client_factory = client_factory
        self.delete_concurrency = delete_concurrency
        self.copy_concurrency = copy_concurrency

    def get_client(self, credentials: Dict[str, Any]):
        factory = self.client_factory or self._create_client
        return factory(credentials)

    # Provider primitives

    @abstractmethod
    def _create_client(self, credentials: Dict[str, Any]):
        """Build an SDK client from filesource credentials."""

    @abstractmethod
    def list_file_versions(self, installation_id: str, folder: str, credentials: Dict[str, Any],
                           client=None) -> FileVersions:
        """List every version and delete marker under a folder ('' for everything)."""

    @abstractmethod
    def list_backups(self, installation_id: str, credentials: Dict[str, Any], client=None) -> List[str]:
        """List the backup names found under backups/."""

    @abstractmethod
    def delete_object_version(self, installation_id: str, path: str, version_id: str,
                              credentials: Dict[str, Any], client=None) -> str:
        """Delete one version of one object."""

    @abstractmethod
    def read_object(self, installation_id: str, key: str, credentials: Dict[str, Any],
                    client=None) -> bytes:
        """Download the current version of an object."""

    @abstractmethod
    def configure_bucket(self, installation_id: str, credentials: Dict[str, Any],
                         tags: Optional[Dict[str, str]] = None, client=None):
        """Apply tags/labels, encryption and versioning to a bucket."""

    @abstractmethod
    def _delete_bucket(self, client, bucket: str):
        """Delete an empty bucket."""

    @abstractmethod
    def _copy_object(self, client, command: CopyCommand):
        """Copy one object version."""

    def _check_transfer_buckets(self, client, source_bucket: str, destination_bucket: str):
        """Hook run before copying starts; raise to abort the transfer."""

    def calculate_date(self, backup_name: str) -> date:
        return parse_backup_date(backup_name)

    # Batch operations

    def delete_all(self, installation_id: str, folder: str, credentials: Dict[str, Any]) -> DeleteResult:
        """
        Delete every version and delete marker under a folder.

        With folder == '' on a dedicated (v1) bucket, the bucket itself is
        removed once a fresh listing confirms it is empty.

        Returns:
            DeleteResult with the number of deleted versions

        Raises:
            NotFoundError: If the bucket does not exist
            InvalidLocatorError: If the shared bucket descriptor is malformed
            AggregateBatchError: If any version failed to delete
            ProviderError: If listing or bucket removal fails
        """
        layout = Layout.from_credentials(credentials)
        bucket = layout.bucket_for(installation_id)
        location = f"{bucket}/{layout.key_for(installation_id, folder)}"
        client = self.get_client(credentials)

        files = self.list_file_versions(installation_id, folder, credentials, client=client)
        tasks = [
            DeleteTask(installation_id, item.path, item.version_id, credentials)
            for item in list(files.versions) + list(files.delete_markers)
        ]
        logger.info(f"Deleting {len(tasks)} object versions from {location}")

        def delete_one(task: DeleteTask):
            return self.delete_object_version(
                task.installation_id, task.path, task.version_id, task.credentials, client=client
            )

        result = run_batch(delete_one, tasks, self.delete_concurrency, name=f"{self.provider}-delete")
        deleted_count = len(result.succeeded)

        if result.failed:
            failures = [
                {
                    'bucket': bucket,
                    'path': outcome.task.path,
                    'version': outcome.task.version_id,
                    'error': str(outcome.error),
                }
                for outcome in result.failed
            ]
            for failure in failures:
                logger.error(
                    f"Failed to delete {failure['bucket']}/{failure['path']} "
                    f"(version {failure['version']}): {failure['error']}"
                )
            raise AggregateBatchError(
                f"Deleted {deleted_count} objects from {location}, and failed to delete {len(failures)}",
                failures,
                deleted_count,
            )

        bucket_deleted = False
        if folder == '' and not layout.is_shared:
            remaining = self.list_file_versions(installation_id, '', credentials, client=client)
            if len(remaining) == 0:
                try:
                    self._delete_bucket(client, bucket)
                except StorageError as e:
                    raise ProviderError(
                        f"Deleted {deleted_count} objects from {location}, "
                        f"but experienced error deleting bucket: {e}"
                    ) from e
                bucket_deleted = True
            else:
                logger.warning(f"Bucket {bucket} still holds {len(remaining)} versions, not deleting it")

        message = f"Deleted {deleted_count} objects from {location}"
        if bucket_deleted:
            message += " and deleted bucket successfully"
        logger.info(message)

        return DeleteResult(deleted_count=deleted_count, bucket_deleted=bucket_deleted)

    def transfer_backup_files(self, source_installation: str, source_credentials: Dict[str, Any],
                              destination_installation: str, destination_credentials: Dict[str, Any],
                              manifest: Union[BackupManifest, Dict[str, Any]]) -> TransferResult:
        """
        Copy the versions that were current at backup time to the destination.

        Copies run with the source credentials. A failed copy never stops the
        others; failures are reported together once every copy has finished.

        Raises:
            InvalidLocatorError: If either layout descriptor is malformed
            NotFoundError: If a bucket involved does not exist
            AggregateBatchError: If any copy failed
        """
        if not isinstance(manifest, BackupManifest):
            manifest = BackupManifest.from_dict(manifest)

        source_layout = Layout.from_credentials(source_credentials)
        destination_layout = Layout.from_credentials(destination_credentials)

        objects = manifest.objects
        latest = select_latest_versions(objects)
        commands = plan_copy_commands(
            latest,
            source_installation, source_layout,
            destination_installation, destination_layout,
        )
        skipped = len(objects) - len(commands)

        client = self.get_client(source_credentials)
        self._check_transfer_buckets(
            client,
            source_layout.bucket_for(source_installation),
            destination_layout.bucket_for(destination_installation),
        )

        logger.info(
            f"Copying {len(commands)} objects from {source_installation} to "
            f"{destination_installation} ({skipped} non-current versions skipped)"
        )

        def copy_one(command: CopyCommand):
            return self._copy_object(client, command)

        result = run_batch(copy_one, commands, self.copy_concurrency, name=f"{self.provider}-copy")
        copied_count = len(result.succeeded)

        if result.failed:
            failures = []
            for outcome in result.failed:
                command = outcome.task
                logger.error(
                    f"Failed to copy {command.source_bucket}/{command.source_key} "
                    f"(version {command.source_version_id}) to "
                    f"{command.destination_bucket}/{command.destination_key}: {outcome.error}"
                )
                failures.append({
                    'bucket': command.destination_bucket,
                    'path': command.destination_key,
                    'version': command.source_version_id,
                    'error': str(outcome.error),
                })
            raise AggregateBatchError(
                f"Copied {copied_count} objects to {destination_installation}, "
                f"and failed to copy {len(failures)}",
                failures,
                copied_count,
            )

        logger.info(f"Copied {copied_count} objects to {destination_installation}")
        return TransferResult(copied_count=copied_count, skipped_count=skipped)
