"""
Backup workflows for bucketkeeper.

This module handles:
- Retention purge across installations and filesources
- Restoring backup files between installations
"""

from .purge import PurgeEngine, plan_purge
from .transfer import restore_backup, select_latest_versions, plan_copy_commands

__all__ = [
    'PurgeEngine',
    'plan_purge',
    'restore_backup',
    'select_latest_versions',
    'plan_copy_commands',
]
