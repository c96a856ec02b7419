from __future__ import annotations

from typing import Dict, Iterable, Optional, Pattern, Set
import re

from .model import Edge, ElementModel
from .settings import IFACE_PLACEHOLDER, IFACE_START_INDEX, EditorSettings

_PLACEHOLDER_TOKEN = "__N__"


def pattern_regex(pattern: str) -> Pattern[str]:
    """Anchored matcher for ``pattern`` with its ``{n}`` placeholder captured as digits."""
    escaped = re.escape(pattern.replace(IFACE_PLACEHOLDER, _PLACEHOLDER_TOKEN, 1))
    return re.compile("^" + escaped.replace(_PLACEHOLDER_TOKEN, r"(\d+)", 1) + "$")


def format_endpoint(pattern: str, number: int) -> str:
    return pattern.replace(IFACE_PLACEHOLDER, str(number), 1)


def used_numbers(node_id: str, edges: Iterable[Edge], regex: Pattern[str]) -> Set[int]:
    used: Set[int] = set()
    for edge in edges:
        # Only the endpoint on this node's side counts.
        names = []
        if edge.data.source == node_id:
            names.append(edge.data.sourceEndpoint)
        if edge.data.target == node_id:
            names.append(edge.data.targetEndpoint)
        for name in names:
            m = regex.match(name or "")
            if m:
                used.add(int(m.group(1)))
    return used


def lowest_free(used: Set[int], start: int = IFACE_START_INDEX) -> int:
    n = start
    while n in used:
        n += 1
    return n


def kind_of(model: ElementModel, node_id: str) -> str:
    node = model.node(node_id)
    return node.data.extraData.kind or "default"


def next_endpoint(
    model: ElementModel,
    node_id: str,
    settings: Optional[EditorSettings] = None,
    exclude_edge: Optional[str] = None,
) -> str:
    """Lowest-numbered interface name not already used on ``node_id``.

    Computed from the edges currently in the model, so a freshly reloaded
    document never collides with its existing numbered interfaces.
    """
    settings = settings or EditorSettings()
    pattern = settings.pattern_for(kind_of(model, node_id))
    edges = [e for e in model.incident_edges(node_id) if e.id != exclude_edge]
    return format_endpoint(pattern, lowest_free(used_numbers(node_id, edges, pattern_regex(pattern))))


class InterfaceCounters:
    """Per-session count of interfaces handed out per node.

    Not persisted; reset on reload. Only feeds provisional names shown while
    an edge is being drawn; the allocator above is authoritative.
    """

    def __init__(self):
        self._counts: Dict[str, int] = {}

    def peek(self, node_id: str) -> int:
        return self._counts.get(node_id, 0) + 1

    def note(self, node_id: str, number: int) -> None:
        self._counts[node_id] = max(self._counts.get(node_id, 0), number)

    def note_endpoint(self, node_id: str, endpoint: str, pattern: str) -> None:
        m = pattern_regex(pattern).match(endpoint or "")
        if m:
            self.note(node_id, int(m.group(1)))

    def forget(self, node_id: str) -> None:
        self._counts.pop(node_id, None)

    def reset(self) -> None:
        self._counts.clear()

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._counts
