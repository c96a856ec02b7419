from __future__ import annotations

from typing import Any, Dict, List, Optional, Set

from .model import NodeRole, is_edge_element, role_of


def validate_elements(elements: Any) -> List[str]:
    """Structural problems in a list of cytoscape-style elements.

    Checks id presence and uniqueness, edge endpoints, parent references and
    parent cycles. Returns an empty list for a well-formed document.
    """
    problems: List[str] = []
    if not isinstance(elements, list):
        return ["Top-level must be a list of elements."]

    ids: Set[str] = set()
    node_ids: Set[str] = set()
    parents: Dict[str, str] = {}
    roles: Dict[str, NodeRole] = {}
    edges: List[Dict[str, Any]] = []

    for i, el in enumerate(elements):
        if not isinstance(el, dict) or not isinstance(el.get("data"), dict):
            problems.append(f"elements[{i}] must be an object with a 'data' object.")
            continue
        data = el["data"]
        eid = data.get("id")
        if is_edge_element(el):
            edges.append(el)
            if eid is None:
                continue  # edges without an id get one on load
        if not eid or not isinstance(eid, str):
            problems.append(f"elements[{i}].data.id must be a non-empty string.")
            continue
        if eid in ids:
            problems.append(f"Duplicate element id: {eid}")
            continue
        ids.add(eid)
        if is_edge_element(el):
            continue
        node_ids.add(eid)
        roles[eid] = role_of(data.get("topoViewerRole"))
        if data.get("parent"):
            parents[eid] = str(data["parent"])

    for el in edges:
        data = el["data"]
        label = data.get("id") or f"{data.get('source')}-{data.get('target')}"
        for end in ("source", "target"):
            ref = data.get(end)
            if not ref:
                problems.append(f"Edge {label} has no {end}.")
            elif ref not in node_ids:
                problems.append(f"Edge {label} references missing node '{ref}'.")

    for child, parent in parents.items():
        if parent not in node_ids:
            problems.append(f"Node {child} references missing parent '{parent}'.")
        elif roles.get(parent) in (NodeRole.DUMMY_CHILD, NodeRole.FREE_TEXT, NodeRole.TEXTBOX):
            problems.append(f"Node {child} has parent '{parent}' which cannot contain nodes.")

    reported: Set[str] = set()
    for start in parents:
        cycle = _cycle_from(start, parents)
        if cycle and not (set(cycle) & reported):
            reported.update(cycle)
            problems.append("Parent cycle: " + " -> ".join(cycle + [cycle[0]]))
    return problems


def _cycle_from(start: str, parents: Dict[str, str]) -> Optional[List[str]]:
    path: List[str] = []
    seen: Dict[str, int] = {}
    cur: Optional[str] = start
    while cur is not None and cur not in seen:
        seen[cur] = len(path)
        path.append(cur)
        cur = parents.get(cur)
    if cur is None:
        return None
    return path[seen[cur]:]
