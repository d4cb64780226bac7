"""Durable per-node record: endpoint registry, projected controls and settings."""

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

from errors import StorageError

logger = logging.getLogger(__name__)

REGISTRY_KEY = "endpointTypes"
CONTROLS_KEY = "controls"
SETTINGS_KEY = "settings"


class NodeStore:
    """
    One JSON file per physical node. The record is read once on load and
    rewritten atomically (tmp file + rename) on every save.
    """

    def __init__(self, path: str):
        self.path = path
        self._record: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def for_node(cls, directory: str, node_id: int) -> "NodeStore":
        return cls(os.path.join(directory, f"node_{node_id}.json"))

    async def load(self) -> None:
        """Read the record from disk. A missing or corrupt file starts empty."""
        try:
            record = await asyncio.to_thread(self._read)
        except StorageError as e:
            logger.error(f"[STORE] {e}, starting with an empty record")
            record = None
        self._record = record or {}

    def _read(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read '{self.path}': {e}")
        if not isinstance(data, dict):
            raise StorageError(f"'{self.path}' does not hold a JSON object")
        return data

    def _write(self, record: Dict[str, Any]) -> None:
        tmp_path = f"{self.path}.tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(record, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Could not write '{self.path}': {e}")

    async def _save(self, key: str, value: Any) -> None:
        async with self._lock:
            self._record[key] = value
            await asyncio.to_thread(self._write, dict(self._record))

    def load_registry(self) -> Dict[str, Optional[str]]:
        return dict(self._record.get(REGISTRY_KEY) or {})

    async def save_registry(self, mapping: Dict[str, Optional[str]]) -> None:
        await self._save(REGISTRY_KEY, dict(mapping))

    def load_controls(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._record.get(CONTROLS_KEY) or {})

    async def save_controls(self, controls: Dict[str, Dict[str, Any]]) -> None:
        await self._save(CONTROLS_KEY, dict(controls))

    def load_settings(self) -> Dict[str, Any]:
        return dict(self._record.get(SETTINGS_KEY) or {})

    async def save_settings(self, settings: Dict[str, Any]) -> None:
        await self._save(SETTINGS_KEY, dict(settings))
