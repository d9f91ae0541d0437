"""
Backup retention purge.

For every installation, collects the backups held on every cluster
filesource, ranks them by the date encoded in their names and deletes all
but the newest `quantity`. Backups whose date cannot be determined are
never ranked and never deleted.

Dry run (the default) only reports what would be deleted and kept.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..errors import AggregateBatchError, StorageError
from ..models import BACKUPS_PREFIX, Backup, Filesource
from ..utils.task_queue import QueueResult, TaskQueue


logger = logging.getLogger(__name__)

DEFAULT_QUANTITY = 30
PURGE_CONCURRENCY = 10


@dataclass
class PurgePlan:
    delete: List[Backup] = field(default_factory=list)
    keep: List[Backup] = field(default_factory=list)
    undated: List[Backup] = field(default_factory=list)
    skipped: bool = False

    @property
    def retained(self) -> List[Backup]:
        return self.keep + self.undated


@dataclass
class InstallationReport:
    installation_id: str
    dry_run: bool
    found: int = 0
    planned: List[Backup] = field(default_factory=list)
    deleted: List[Backup] = field(default_factory=list)
    retained: List[Backup] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'installation_id': self.installation_id,
            'dry_run': self.dry_run,
            'found': self.found,
            'skipped': self.skipped,
            'planned': [_backup_dict(b) for b in self.planned],
            'deleted': [_backup_dict(b) for b in self.deleted],
            'retained': [_backup_dict(b) for b in self.retained],
            'failed': self.failed,
            'errors': self.errors,
        }


def _backup_dict(backup: Backup) -> Dict[str, Any]:
    return {
        'name': backup.name,
        'filesource': backup.filesource,
        'date': backup.date.isoformat() if backup.date else None,
    }


def _date_sort_key(backup: Backup) -> Tuple[int, int]:
    # Anything that is not a usable date sorts after every real date
    if isinstance(backup.date, date):
        return (0, backup.date.toordinal())
    return (1, 0)


def plan_purge(backups: List[Backup], quantity: int) -> PurgePlan:
    """
    Split backups into the ones to delete and the ones to keep.

    Args:
        backups: Backups across every filesource of one installation
        quantity: How many dated backups to keep

    Returns:
        PurgePlan. `skipped` is set when there are no more than `quantity`
        dated backups, in which case nothing is deleted.
    """
    dated = [b for b in backups if b.date is not None]
    undated = [b for b in backups if b.date is None]

    if len(dated) <= quantity:
        return PurgePlan(keep=sorted(dated, key=_date_sort_key), undated=undated, skipped=True)

    ordered = sorted(dated, key=_date_sort_key)
    split = len(ordered) - quantity
    return PurgePlan(delete=ordered[:split], keep=ordered[split:], undated=undated)


class PurgeEngine:
    """
    Enforces the backup retention quantity across installations.

    Every operation is logged with a timestamp to `self.logs` as well as to
    the module logger, giving operators an audit trail of each run.
    """

    def __init__(self, dispatcher, directory, quantity: int = DEFAULT_QUANTITY,
                 dry_run: bool = True, concurrency: int = PURGE_CONCURRENCY):
        """
        Args:
            dispatcher: ConnectorDispatcher used for listing and deleting
            directory: ClusterDirectory providing installations and filesources
            quantity: Number of dated backups to keep per installation
            dry_run: Report only, never delete
            concurrency: Backups deleted in parallel per installation
        """
        if quantity < 0:
            raise ValueError(f"quantity must not be negative, got {quantity}")

        self.dispatcher = dispatcher
        self.directory = directory
        self.quantity = quantity
        self.dry_run = dry_run
        self.concurrency = concurrency
        self.logs = []

    def enforce_all(self) -> Dict[str, Any]:
        """
        Purge every installation in the cluster.

        A failure in one installation is logged and never stops the others.
        If the installation list or the filesource list cannot be read the
        run stops there.

        Returns:
            Summary dict:
            {
                'dry_run': bool,
                'installations_processed': int,
                'backups_found': int,
                'backups_planned': int,
                'backups_deleted': int,
                'errors': List[str],
                'installations': List[dict],
                'started_at': str,
                'completed_at': str,
                'logs': List[str]
            }
        """
        mode = 'dry run' if self.dry_run else 'live'
        self._log(f"Starting backup purge ({mode}, keeping {self.quantity} per installation)")

        summary = {
            'dry_run': self.dry_run,
            'installations_processed': 0,
            'backups_found': 0,
            'backups_planned': 0,
            'backups_deleted': 0,
            'errors': [],
            'installations': [],
            'started_at': datetime.now(timezone.utc).isoformat(),
        }

        try:
            installations = self.directory.list_installations()
        except StorageError as e:
            self._error(summary, f"Error retrieving installation ID list: {e}")
            return self._finish(summary)

        try:
            filesources = self.directory.list_filesources()
        except StorageError as e:
            self._error(summary, f"Error retrieving filesource list: {e}")
            return self._finish(summary)

        for installation_id in installations:
            try:
                report = self.purge_installation(installation_id, filesources)
            except Exception as e:
                self._error(summary, f"{installation_id}: Purge failed: {e}")
                continue

            summary['installations_processed'] += 1
            summary['backups_found'] += report.found
            summary['backups_planned'] += len(report.planned)
            summary['backups_deleted'] += len(report.deleted)
            summary['errors'].extend(report.errors)
            summary['installations'].append(report.to_dict())

        self._log(
            f"Purge complete. "
            f"Installations: {summary['installations_processed']}, "
            f"found: {summary['backups_found']}, "
            f"planned: {summary['backups_planned']}, "
            f"deleted: {summary['backups_deleted']}, "
            f"errors: {len(summary['errors'])}"
        )
        return self._finish(summary)

    def collect_backups(self, installation_id: str, filesource_names: List[str],
                        report: Optional[InstallationReport] = None) -> Tuple[List[Backup], Dict[str, Filesource]]:
        """
        List and date every backup of an installation across filesources.

        A filesource that cannot be resolved or listed is logged and skipped.
        A backup whose date cannot be parsed gets date=None.

        Returns:
            (backups, resolved filesources by name)
        """
        backups = []
        resolved = {}

        for name in filesource_names:
            try:
                filesource = self.directory.resolve_filesource(name, installation_id)
                names = self.dispatcher.list_backups(installation_id, filesource)
            except StorageError as e:
                message = f"{installation_id}: Errored while finding backups for {name}: {e}"
                self._log(message, level=logging.ERROR)
                if report is not None:
                    report.errors.append(message)
                continue

            resolved[name] = filesource
            self._log(f"{installation_id}: Found {len(names)} backups from {name}")

            for backup_name in names:
                try:
                    backup_date = self.dispatcher.calculate_date(backup_name, filesource)
                except StorageError as e:
                    self._log(
                        f"{installation_id}: Omitting {backup_name} from purge, "
                        f"date could not be sorted. Error: {e}",
                        level=logging.WARNING,
                    )
                    backup_date = None
                backups.append(Backup(name=backup_name, filesource=name, date=backup_date))

        return backups, resolved

    def purge_installation(self, installation_id: str, filesource_names: List[str]) -> InstallationReport:
        """
        Purge one installation.

        Returns:
            InstallationReport with the planned, deleted and retained backups
        """
        report = InstallationReport(installation_id=installation_id, dry_run=self.dry_run)

        backups, filesources = self.collect_backups(installation_id, filesource_names, report)
        report.found = len(backups)

        plan = plan_purge(backups, self.quantity)
        report.retained = plan.retained
        report.skipped = plan.skipped

        if plan.undated:
            self._log(f"{installation_id}: Keeping {len(plan.undated)} backups with unknown dates")

        if plan.skipped:
            self._log(f"{installation_id}: Not enough backups to purge")
            return report

        report.planned = plan.delete

        if self.dry_run:
            self._log(f"{installation_id}: Dryrun wants to delete {len(plan.delete)} backups:")
            for backup in plan.delete:
                self._log(f"Delete: {backup.name}, filesource: {backup.filesource}")
            self._log(f"{installation_id}: Dryrun wants to keep {len(plan.retained)} backups")
            for backup in plan.retained:
                self._log(f"Keep: {backup.name}, filesource: {backup.filesource}")
            return report

        self._log(f"{installation_id}: Deleting {len(plan.delete)} backups, keeping {len(plan.retained)}")
        result = self._delete_backups(installation_id, plan.delete, filesources)

        for outcome in result.succeeded:
            report.deleted.append(outcome.task)
            self._log(f"{installation_id}: {outcome.result}")

        for outcome in result.failed:
            backup = outcome.task
            failure = {'backup': backup.name, 'filesource': backup.filesource, 'error': str(outcome.error)}
            if isinstance(outcome.error, AggregateBatchError):
                failure['deleted_count'] = outcome.error.succeeded_count
                failure['failed_items'] = outcome.error.failures
            report.failed.append(failure)
            message = f"{installation_id}: DeleteAll error for {backup.name}: {outcome.error}"
            report.errors.append(message)
            self._log(message, level=logging.ERROR)

        return report

    def _delete_backups(self, installation_id: str, backups: List[Backup],
                        filesources: Dict[str, Filesource]) -> QueueResult:
        def delete_backup(backup: Backup) -> str:
            result = self.dispatcher.delete_all(
                installation_id, f"{BACKUPS_PREFIX}{backup.name}", filesources[backup.filesource]
            )
            return f"Deleted {result.deleted_count} objects from backup {backup.name}"

        queue = TaskQueue(
            delete_backup,
            self.concurrency,
            name=f"purge-{installation_id}",
            on_drain=lambda result: self._log(
                f"{installation_id}: Purge complete ({len(result.succeeded)} deleted, "
                f"{len(result.failed)} failed)"
            ),
        )
        queue.push(backups)
        return queue.join()

    def _error(self, summary: Dict[str, Any], message: str):
        self._log(message, level=logging.ERROR)
        summary['errors'].append(message)

    def _finish(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        summary['completed_at'] = datetime.now(timezone.utc).isoformat()
        summary['logs'] = self.logs
        return summary

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
