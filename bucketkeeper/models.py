"""
Data model shared by connectors, the dispatcher and the backup workflows.

Everything here is a plain in-memory record. Backups and object versions
are produced upstream; this package only reads, ranks, deletes and copies
them.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from .errors import InvalidLocatorError


BACKUPS_PREFIX = 'backups/'
MANIFEST_FILENAME = 'files.json'


@dataclass
class Filesource:
    """A resolved filesource: which provider/product to talk to and how."""
    name: str
    provider: str
    product: str
    credentials: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> tuple:
        return (self.provider, self.product)


@dataclass
class ObjectVersion:
    """
    One stored revision of an object.

    is_latest is None for providers that do not flag the current version
    (Google Cloud Storage).
    """
    path: str
    version_id: str
    is_latest: Optional[bool] = None
    size: Optional[int] = None


@dataclass
class DeleteMarker:
    """S3 tombstone revision; must be deleted to purge an object's history."""
    path: str
    version_id: str
    is_latest: Optional[bool] = None


@dataclass
class FileVersions:
    versions: List[ObjectVersion] = field(default_factory=list)
    delete_markers: List[DeleteMarker] = field(default_factory=list)

    def __len__(self):
        return len(self.versions) + len(self.delete_markers)


@dataclass
class Backup:
    name: str
    filesource: str
    date: Optional[date] = None


@dataclass
class DeleteTask:
    installation_id: str
    path: str
    version_id: str
    credentials: Dict[str, Any]


@dataclass
class CopyCommand:
    source_bucket: str
    source_key: str
    source_version_id: str
    destination_bucket: str
    destination_key: str


@dataclass
class DeleteResult:
    deleted_count: int
    failures: List[Dict[str, Any]] = field(default_factory=list)
    bucket_deleted: bool = False


@dataclass
class TransferResult:
    copied_count: int
    skipped_count: int = 0


@dataclass
class Layout:
    """
    Bucket layout derived from filesource credentials.

    v1: one dedicated bucket per installation, keys used as-is.
    v2: one shared bucket, every key prefixed with the installation id.
    """
    shared_bucket: Optional[str] = None
    version: int = 1

    @classmethod
    def from_credentials(cls, credentials: Dict[str, Any]) -> 'Layout':
        """
        Build a layout from credentials.

        Raises:
            InvalidLocatorError: If 'bucket' is present but unusable
        """
        if not credentials or 'bucket' not in credentials:
            return cls()

        bucket = credentials['bucket']
        if not isinstance(bucket, str) or not bucket:
            raise InvalidLocatorError(f"Invalid shared bucket in credentials: {bucket!r}")

        try:
            version = int(credentials.get('version', 2))
        except (TypeError, ValueError):
            raise InvalidLocatorError(
                f"Invalid layout version in credentials: {credentials.get('version')!r}"
            )
        if version < 2:
            raise InvalidLocatorError(
                f"Shared bucket '{bucket}' requires layout version 2 or later, got {version}"
            )

        return cls(shared_bucket=bucket, version=version)

    @property
    def is_shared(self) -> bool:
        return self.shared_bucket is not None

    def bucket_for(self, installation_id: str) -> str:
        return self.shared_bucket if self.is_shared else installation_id

    def key_for(self, installation_id: str, key: str) -> str:
        if self.is_shared:
            return f"{installation_id}/{key}"
        return key

    @property
    def backup_segment(self) -> int:
        # backups/<name>/... or <installation>/backups/<name>/...
        return 2 if self.is_shared else 1


@dataclass
class BackupManifest:
    """Object versions recorded in a backup's files.json."""
    public: List[ObjectVersion] = field(default_factory=list)
    private: List[ObjectVersion] = field(default_factory=list)

    @property
    def objects(self) -> List[ObjectVersion]:
        return self.public + self.private

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupManifest':
        """
        Parse a manifest in either provider's shape.

        S3 manifests hold list_object_versions output:
            {"public": {"Versions": [{"Key", "VersionId", "IsLatest", "Size"}]}, ...}
        GCS manifests hold blob metadata:
            {"public": [{"name", "generation", "size"}], ...}
        """
        return cls(
            public=_parse_manifest_section(data.get('public')),
            private=_parse_manifest_section(data.get('private')),
        )


def _parse_manifest_section(section) -> List[ObjectVersion]:
    if not section:
        return []

    if isinstance(section, dict):
        return [
            ObjectVersion(
                path=entry['Key'],
                version_id=str(entry['VersionId']),
                is_latest=entry.get('IsLatest'),
                size=entry.get('Size'),
            )
            for entry in section.get('Versions', [])
        ]

    return [
        ObjectVersion(
            path=entry['name'],
            version_id=str(entry['generation']),
            is_latest=None,
            size=int(entry['size']) if entry.get('size') is not None else None,
        )
        for entry in section
    ]
