from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional
import json
import logging
import os

logger = logging.getLogger(__name__)

# Quiet period before an autosave is dispatched (trailing-edge debounce).
AUTOSAVE_QUIET_MS = 500

# Canvas clicks arriving this soon after an edge draw completes are ignored.
EDGE_DRAW_GRACE_MS = 100

# Press/release distance (px) below which a press on a node is a click, not a drag.
DRAG_THRESHOLD = 5

DEFAULT_IFACE_PATTERN = "eth{n}"
IFACE_PLACEHOLDER = "{n}"
IFACE_START_INDEX = 1

DEFAULT_IFACE_PATTERNS: Dict[str, str] = {
    "nokia_srlinux": "e1-{n}",
    "nokia_sros": "1/1/{n}",
    "cisco_xrd": "Gi0-0-0-{n}",
    "cisco_xrv9k": "Gi0/0/0/{n}",
    "juniper_vjunosrouter": "ge-0/0/{n}",
    "arista_ceos": "eth{n}",
    "linux": "eth{n}",
    "default": DEFAULT_IFACE_PATTERN,
}

DEFAULT_NODE_KIND = "nokia_srlinux"

EDITOR_EDGE_COLOR = "#32CD32"
LOADED_EDGE_COLOR = "#0043BF"

CURSOR_LOCKED = "not-allowed"
CURSOR_DEFAULT = ""

SUBTITLE_FALLBACK = "Unknown"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default
    if value < 0:
        logger.warning("Ignoring %s=%r: must not be negative", name, raw)
        return default
    return value


def _patterns_env(name: str) -> Dict[str, str]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring %s: not valid JSON", name)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected an object of kind -> pattern", name)
        return {}
    return {str(k): str(v) for k, v in data.items() if isinstance(v, str)}


@dataclass
class EditorSettings:
    autosave_quiet_ms: int = AUTOSAVE_QUIET_MS
    edge_draw_grace_ms: int = EDGE_DRAW_GRACE_MS
    iface_patterns: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_IFACE_PATTERNS))
    default_kind: str = DEFAULT_NODE_KIND
    mode: str = "edit"

    @staticmethod
    def from_env(overrides: Optional[Dict[str, str]] = None) -> "EditorSettings":
        """Build settings from TOPOEDIT_* environment variables.

        TOPOEDIT_IFACE_PATTERNS is a JSON object merged over the built-in
        kind -> pattern table. Bad values are logged and replaced by defaults.
        """
        patterns = dict(DEFAULT_IFACE_PATTERNS)
        patterns.update(_patterns_env("TOPOEDIT_IFACE_PATTERNS"))
        if overrides:
            patterns.update(overrides)

        mode = os.environ.get("TOPOEDIT_MODE", "edit").strip().lower()
        if mode not in ("edit", "view"):
            logger.warning("Ignoring TOPOEDIT_MODE=%r: expected 'edit' or 'view'", mode)
            mode = "edit"

        return EditorSettings(
            autosave_quiet_ms=_int_env("TOPOEDIT_AUTOSAVE_MS", AUTOSAVE_QUIET_MS),
            edge_draw_grace_ms=_int_env("TOPOEDIT_EDGE_GRACE_MS", EDGE_DRAW_GRACE_MS),
            iface_patterns=patterns,
            default_kind=os.environ.get("TOPOEDIT_DEFAULT_KIND", "").strip() or DEFAULT_NODE_KIND,
            mode=mode,
        )

    def pattern_for(self, kind: Optional[str]) -> str:
        pattern = self.iface_patterns.get(kind or "default") or self.iface_patterns.get("default")
        if not pattern or IFACE_PLACEHOLDER not in pattern:
            if pattern:
                logger.warning("Interface pattern %r for kind %r has no %s placeholder", pattern, kind, IFACE_PLACEHOLDER)
            return DEFAULT_IFACE_PATTERN
        return pattern
