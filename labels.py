"""Display names for endpoints: user setting first, then catalog default."""

import re
from typing import Any, Callable, Dict, Optional

from constants import LABEL_SETTING_PREFIX, MAX_LABEL_LENGTH
from controls import ControlCatalog, dim_control_id, onoff_control_id
from models import EndpointType
from registry import EndpointRegistry

_UNSAFE_LABEL_CHARS = re.compile(r"[<>]")


def label_setting_key(endpoint_id: int) -> str:
    return f"{LABEL_SETTING_PREFIX}{endpoint_id}"


def sanitize_label(raw: Any) -> str:
    """Trim, cap the length and drop characters that could be read as markup."""
    if raw is None:
        return ""
    return _UNSAFE_LABEL_CHARS.sub("", str(raw).strip()[:MAX_LABEL_LENGTH])


def blank_labels(catalog: ControlCatalog) -> Dict[str, str]:
    return {label_setting_key(i): "" for i in catalog.endpoint_ids()}


class LabelResolver:
    """Map endpoint id + type to a human-readable name."""

    def __init__(self, registry: EndpointRegistry, catalog: ControlCatalog,
                 settings: Callable[[], Dict[str, Any]]):
        self._registry = registry
        self._catalog = catalog
        self._settings = settings

    def default_label(self, endpoint_id: int, is_dimmer: bool) -> str:
        control_id = dim_control_id(endpoint_id) if is_dimmer else onoff_control_id(endpoint_id)
        manifest_default = self._catalog.default_title(control_id)
        if manifest_default:
            return manifest_default
        return f"{'Dimmer' if is_dimmer else 'Switch'} {endpoint_id}"

    def custom_label(self, endpoint_id: int, settings: Optional[Dict[str, Any]] = None) -> str:
        if settings is None:
            settings = self._settings()
        return sanitize_label(settings.get(label_setting_key(endpoint_id)))

    def label_for(self, endpoint_id: int, settings: Optional[Dict[str, Any]] = None,
                  is_dimmer: Optional[bool] = None) -> str:
        if is_dimmer is None:
            is_dimmer = self._registry.get(endpoint_id) is EndpointType.DIMMER
        return self.custom_label(endpoint_id, settings) or self.default_label(endpoint_id, is_dimmer)
