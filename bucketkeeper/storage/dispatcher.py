"""
Connector dispatcher.

Routes each call to the connector registered for the filesource's
(provider, product) pair. Adding a provider means adding a registry entry;
nothing here changes.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Tuple, Union

from ..errors import UnsupportedProviderError, UnsupportedTransferError
from ..models import BackupManifest, DeleteResult, FileVersions, Filesource, TransferResult
from .base import StorageConnector
from .gcs import GCSConnector
from .s3 import S3Connector


logger = logging.getLogger(__name__)

CONNECTOR_CLASSES = (S3Connector, GCSConnector)


def default_registry(**connector_kwargs) -> Dict[Tuple[str, str], StorageConnector]:
    """One instance of every known connector, keyed by (provider, product)."""
    return {
        (cls.provider, cls.product): cls(**connector_kwargs)
        for cls in CONNECTOR_CLASSES
    }


class ConnectorDispatcher:
    """Provider-agnostic facade over the registered connectors."""

    def __init__(self, registry: Optional[Dict[Tuple[str, str], StorageConnector]] = None):
        self.registry = registry if registry is not None else default_registry()

    def connector_for(self, filesource: Filesource) -> StorageConnector:
        """
        Raises:
            UnsupportedProviderError: If no connector handles the pair
        """
        connector = self.registry.get((filesource.provider, filesource.product))
        if connector is None:
            raise UnsupportedProviderError(filesource.provider, filesource.product)
        return connector

    def list_file_versions(self, installation_id: str, folder: str, filesource: Filesource) -> FileVersions:
        return self.connector_for(filesource).list_file_versions(
            installation_id, folder, filesource.credentials
        )

    def list_backups(self, installation_id: str, filesource: Filesource) -> List[str]:
        return self.connector_for(filesource).list_backups(installation_id, filesource.credentials)

    def calculate_date(self, backup_name: str, filesource: Filesource) -> date:
        return self.connector_for(filesource).calculate_date(backup_name)

    def delete_object_version(self, installation_id: str, path: str, version_id: str,
                              filesource: Filesource) -> str:
        return self.connector_for(filesource).delete_object_version(
            installation_id, path, version_id, filesource.credentials
        )

    def delete_all(self, installation_id: str, folder: str, filesource: Filesource) -> DeleteResult:
        return self.connector_for(filesource).delete_all(installation_id, folder, filesource.credentials)

    def read_object(self, installation_id: str, key: str, filesource: Filesource) -> bytes:
        return self.connector_for(filesource).read_object(installation_id, key, filesource.credentials)

    def configure_bucket(self, installation_id: str, filesource: Filesource,
                         tags: Optional[Dict[str, str]] = None):
        return self.connector_for(filesource).configure_bucket(
            installation_id, filesource.credentials, tags=tags
        )

    def transfer_backup_files(self, source_installation: str, source_filesource: Filesource,
                              destination_installation: str, destination_filesource: Filesource,
                              manifest: Union[BackupManifest, dict]) -> TransferResult:
        """
        Copy backup files between installations on the same provider/product.

        Raises:
            UnsupportedTransferError: If the two filesources differ in provider or product
            UnsupportedProviderError: If the shared pair has no connector
        """
        if source_filesource.kind != destination_filesource.kind:
            raise UnsupportedTransferError(source_filesource.kind, destination_filesource.kind)

        return self.connector_for(source_filesource).transfer_backup_files(
            source_installation, source_filesource.credentials,
            destination_installation, destination_filesource.credentials,
            manifest,
        )
