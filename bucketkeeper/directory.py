"""
Cluster directory: which installations exist, which filesources the
cluster defines, and the resolved credentials for an installation.

Backed by a JSON cluster-config file:

    {
        "installations": {
            "inst-a": {"filesource": "primary"},
            "inst-b": {"filesource": "archive"}
        },
        "filesource": {
            "primary": {
                "provider": "amazon",
                "product": "s3",
                "credentials": {"access_key_id": "...", "secret_access_key": "...", "region": "us-east-1"},
                "installations": {
                    "inst-b": {"bucket": "shared-backups", "version": 2}
                }
            }
        }
    }

"installations" may also be a plain list of ids. A filesource's per-installation
entry is merged over its credentials.

The file is re-read on every lookup so edits apply to the next purge run.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .errors import DirectoryError
from .models import Filesource


logger = logging.getLogger(__name__)


class ClusterDirectory:
    """Installation and filesource lookup over a cluster-config file."""

    def __init__(self, config_path: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """
        Args:
            config_path: Path to the JSON cluster config
            data: Already-loaded cluster config (takes precedence over config_path)
        """
        if config_path is None and data is None:
            raise ValueError("ClusterDirectory needs a config_path or data")
        self.config_path = config_path
        self._data = data

    def _load(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data

        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            raise DirectoryError(f"Cluster config not found: {self.config_path}")
        except (OSError, ValueError) as e:
            raise DirectoryError(f"Failed to read cluster config {self.config_path}: {e}")

        if not isinstance(data, dict):
            raise DirectoryError(f"Cluster config {self.config_path} must be a JSON object")
        return data

    def list_installations(self) -> List[str]:
        """
        Raises:
            DirectoryError: If the cluster config cannot be read
        """
        installations = self._load().get('installations', [])
        if isinstance(installations, dict):
            return list(installations.keys())
        return list(installations)

    def list_filesources(self) -> List[str]:
        """
        Raises:
            DirectoryError: If the cluster config cannot be read or has no filesources
        """
        filesources = self._load().get('filesource')
        if not isinstance(filesources, dict):
            raise DirectoryError("Cluster config has no 'filesource' section")
        return list(filesources.keys())

    def resolve_filesource(self, name: str, installation_id: str) -> Filesource:
        """
        Resolve a filesource's provider, product and credentials for one installation.

        Raises:
            DirectoryError: If the filesource is unknown or incomplete
        """
        filesources = self._load().get('filesource') or {}
        entry = filesources.get(name)
        if not isinstance(entry, dict):
            raise DirectoryError(f"Unknown filesource '{name}' for installation {installation_id}")

        provider = entry.get('provider')
        product = entry.get('product')
        if not provider or not product:
            raise DirectoryError(f"Filesource '{name}' is missing provider or product")

        credentials = dict(entry.get('credentials') or {})
        credentials.update((entry.get('installations') or {}).get(installation_id) or {})

        return Filesource(name=name, provider=provider, product=product, credentials=credentials)

    def installation_filesource(self, installation_id: str) -> str:
        """
        Name of the filesource an installation currently writes to.

        Raises:
            DirectoryError: If the installation has no configured filesource
        """
        installations = self._load().get('installations')
        if isinstance(installations, dict):
            filesource = (installations.get(installation_id) or {}).get('filesource')
            if filesource:
                return filesource
        raise DirectoryError(f"No filesource configured for installation {installation_id}")
