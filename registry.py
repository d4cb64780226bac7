"""Endpoint registry: which endpoints exist and what they were classified as."""

import logging
from typing import Dict, List, Optional

from errors import StorageError
from models import EndpointType
from storage import NodeStore

logger = logging.getLogger(__name__)


class EndpointRegistry:
    """
    Mapping endpoint id -> EndpointType. An id missing from the mapping has
    never been seen; UNSUPPORTED means present but not handled (stored as null).
    """

    def __init__(self, store: NodeStore):
        self._store = store
        self._types: Dict[int, EndpointType] = {}

    def load(self) -> None:
        """Restore endpoint types from the store."""
        self._types = {}
        for key, value in self._store.load_registry().items():
            try:
                endpoint_id = int(key)
            except (ValueError, TypeError):
                logger.error(f"[REGISTRY] Ignoring invalid stored endpoint id: {key!r}")
                continue
            if value is None:
                self._types[endpoint_id] = EndpointType.UNSUPPORTED
                continue
            try:
                self._types[endpoint_id] = EndpointType(value)
            except ValueError:
                logger.error(f"[REGISTRY] EP{endpoint_id} has unknown stored type {value!r}")
        logger.debug(f"[REGISTRY] Restored {len(self._types)} endpoint type(s)")

    async def persist(self) -> bool:
        """Write the registry. On failure the in-memory state stays authoritative."""
        mapping = {
            str(endpoint_id): (None if t is EndpointType.UNSUPPORTED else t.value)
            for endpoint_id, t in self._types.items()
        }
        try:
            await self._store.save_registry(mapping)
            return True
        except StorageError as e:
            logger.error(f"[REGISTRY] Failed to persist endpoint types: {e}")
            return False

    def get(self, endpoint_id: int) -> Optional[EndpointType]:
        return self._types.get(endpoint_id)

    def is_classified(self, endpoint_id: int) -> bool:
        endpoint_type = self._types.get(endpoint_id)
        return endpoint_type is not None and endpoint_type.is_classified

    def set(self, endpoint_id: int, endpoint_type: EndpointType) -> None:
        self._types[endpoint_id] = endpoint_type

    def demote(self, endpoint_id: int) -> None:
        self._types[endpoint_id] = EndpointType.UNSUPPORTED

    def forget(self, endpoint_id: int) -> None:
        self._types.pop(endpoint_id, None)

    def clear(self) -> None:
        self._types = {}

    def ids(self) -> List[int]:
        return sorted(self._types)

    def ids_of_type(self, endpoint_type: EndpointType) -> List[int]:
        return sorted(i for i, t in self._types.items() if t is endpoint_type)

    def classified_ids(self) -> List[int]:
        return sorted(i for i, t in self._types.items() if t.is_classified)

    def snapshot(self) -> Dict[int, EndpointType]:
        return dict(self._types)

    def __len__(self) -> int:
        return len(self._types)
