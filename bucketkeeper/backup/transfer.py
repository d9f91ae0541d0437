"""
Backup file transfer between installations.

A backup's files.json records every object version that existed when the
backup ran. Restoring copies only the version that was current at that
time, so older versions are never made current at the destination.
"""

import json
import logging
from typing import Dict, List

from ..errors import ProviderError
from ..models import (
    BACKUPS_PREFIX, MANIFEST_FILENAME,
    BackupManifest, CopyCommand, Layout, ObjectVersion, TransferResult,
)


logger = logging.getLogger(__name__)


def _version_rank(version_id: str):
    # GCS generations are integers; compare numerically when possible
    try:
        return (0, int(version_id), '')
    except (TypeError, ValueError):
        return (1, 0, str(version_id))


def select_latest_versions(objects: List[ObjectVersion]) -> List[ObjectVersion]:
    """
    Keep one version per path: the one that was current at backup time.

    Versions carrying an explicit latest flag (S3) are kept only when the
    flag is set. Versions without one (GCS) are reduced to the highest
    version id seen for each path.
    """
    latest = []
    newest_by_path: Dict[str, ObjectVersion] = {}

    for obj in objects:
        if obj.is_latest is not None:
            if obj.is_latest:
                latest.append(obj)
            continue

        current = newest_by_path.get(obj.path)
        if current is None or _version_rank(current.version_id) < _version_rank(obj.version_id):
            newest_by_path[obj.path] = obj

    return latest + list(newest_by_path.values())


def plan_copy_commands(objects: List[ObjectVersion],
                       source_installation: str, source_layout: Layout,
                       destination_installation: str, destination_layout: Layout) -> List[CopyCommand]:
    """
    Build one copy command per object.

    Manifest paths are relative to the installation, so v2 layouts get the
    installation id prepended on whichever side uses a shared bucket.
    """
    return [
        CopyCommand(
            source_bucket=source_layout.bucket_for(source_installation),
            source_key=source_layout.key_for(source_installation, obj.path),
            source_version_id=obj.version_id,
            destination_bucket=destination_layout.bucket_for(destination_installation),
            destination_key=destination_layout.key_for(destination_installation, obj.path),
        )
        for obj in objects
    ]


def manifest_key(backup_name: str) -> str:
    return f"{BACKUPS_PREFIX}{backup_name}/{MANIFEST_FILENAME}"


def load_manifest(dispatcher, installation_id: str, backup_name: str, filesource) -> BackupManifest:
    """
    Read and parse a backup's files.json.

    Raises:
        NotFoundError: If the manifest does not exist
        ProviderError: If it cannot be read or is not valid JSON
    """
    raw = dispatcher.read_object(installation_id, manifest_key(backup_name), filesource)
    try:
        return BackupManifest.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError) as e:
        raise ProviderError(f"Invalid manifest for backup {installation_id}/{backup_name}: {e}") from e


def restore_backup(dispatcher, source_installation: str, source_filesource,
                   destination_installation: str, destination_filesource,
                   backup_name: str) -> TransferResult:
    """
    Copy the files recorded in a backup from one installation to another.

    When source and destination are the same installation this rolls each
    file back to the version recorded in the backup.

    Raises:
        UnsupportedTransferError: If the filesources use different providers/products
        AggregateBatchError: If some copies failed (the rest still ran)
    """
    logger.info(
        f"Restoring backup {backup_name} from {source_installation} ({source_filesource.name}) "
        f"to {destination_installation} ({destination_filesource.name})"
    )
    manifest = load_manifest(dispatcher, source_installation, backup_name, source_filesource)
    logger.info(
        f"Manifest for {backup_name}: {len(manifest.public)} public, {len(manifest.private)} private versions"
    )
    return dispatcher.transfer_backup_files(
        source_installation, source_filesource,
        destination_installation, destination_filesource,
        manifest,
    )
