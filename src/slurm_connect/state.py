"""Persistent key-value state: cluster info cache and SSH config restore slot."""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from slurm_connect.models import CachedClusterInfo, ClusterInfo

logger = logging.getLogger(__name__)

CLUSTER_INFO_CACHE_KEY = "cluster_info_cache"
PREVIOUS_SSH_CONFIG_FILE_KEY = "previous_ssh_config_file"


def utc_timestamp() -> str:
    """Current time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write ``data`` to ``path`` through a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp_path, path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


class StateStore:
    """Small JSON-backed key-value store.

    The file is read on every ``get`` so that separate processes see each
    other's writes; there is no locking and the last writer wins.
    """

    def __init__(self, path: Path):
        """Initialize the store.

        Args:
            path: JSON file holding the state.
        """
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read state from {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        write_json_atomic(self.path, data)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value by key."""
        return self._load().get(key, default)

    def update(self, key: str, value: Any) -> None:
        """Set a value; ``None`` removes the key."""
        data = self._load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self._save(data)
        logger.debug(f"Updated state key '{key}' in {self.path}")


class ClusterInfoCache:
    """Per-login-host cache of fetched cluster info."""

    def __init__(self, store: StateStore):
        self.store = store

    def get(self, host: str) -> Optional[CachedClusterInfo]:
        """Get the cached cluster info for ``host``, if any."""
        cache = self.store.get(CLUSTER_INFO_CACHE_KEY) or {}
        entry = cache.get(host)
        if not entry:
            return None
        try:
            return CachedClusterInfo(**entry)
        except (TypeError, ValidationError) as e:
            logger.warning(f"Ignoring invalid cached cluster info for {host}: {e}")
            return None

    def put(self, host: str, info: ClusterInfo) -> CachedClusterInfo:
        """Store ``info`` for ``host`` with the current timestamp."""
        entry = CachedClusterInfo(info=info, fetched_at=utc_timestamp())
        cache = self.store.get(CLUSTER_INFO_CACHE_KEY) or {}
        cache[host] = entry.model_dump(mode="json")
        self.store.update(CLUSTER_INFO_CACHE_KEY, cache)
        logger.info(f"Cached cluster info for {host} ({len(info.partitions)} partitions)")
        return entry
