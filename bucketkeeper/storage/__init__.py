"""
Storage connectors for versioned object stores.

- S3Connector: Amazon S3
- GCSConnector: Google Cloud Storage
- ConnectorDispatcher: routes calls by (provider, product)
"""

from .base import StorageConnector, parse_backup_date
from .s3 import S3Connector
from .gcs import GCSConnector
from .dispatcher import ConnectorDispatcher, default_registry

__all__ = [
    'StorageConnector',
    'parse_backup_date',
    'S3Connector',
    'GCSConnector',
    'ConnectorDispatcher',
    'default_registry',
]
