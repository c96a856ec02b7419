from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union
import logging

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

logger = logging.getLogger(__name__)


# ───────────────────────────── Errors ─────────────────────────────


class ElementModelError(ValueError):
    """Base class for rejected element-model operations."""


class DuplicateElementError(ElementModelError):
    pass


class UnknownElementError(ElementModelError):
    pass


class DanglingEdgeError(ElementModelError):
    pass


class ParentCycleError(ElementModelError):
    pass


# ───────────────────────────── Attribute records ─────────────────────────────


class NodeRole(str, Enum):
    REGULAR = "regular"
    GROUP = "group"
    DUMMY_CHILD = "dummyChild"
    FREE_TEXT = "freeText"
    TEXTBOX = "textbox"


_SPECIAL_ROLES = {r.value: r for r in NodeRole if r is not NodeRole.REGULAR}


def role_of(raw: Optional[str]) -> NodeRole:
    # Icon roles stored in documents ("router", "pe", "client", ...) are all regular nodes.
    return _SPECIAL_ROLES.get(raw or "", NodeRole.REGULAR)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class NodeExtraData(BaseModel):
    """Display-only node attributes. Unknown keys are kept so documents round-trip."""

    model_config = ConfigDict(extra="allow")

    kind: Optional[str] = None
    longname: str = ""
    image: str = ""
    mgmtIpv4Address: str = ""
    mgmtIpv6Address: str = ""
    fqdn: str = ""
    state: str = ""


class EdgeExtraData(BaseModel):
    model_config = ConfigDict(extra="allow")

    clabSourceMacAddress: Optional[str] = None
    clabSourceMtu: Optional[Union[int, str]] = None
    clabSourceType: Optional[str] = None
    clabTargetMacAddress: Optional[str] = None
    clabTargetMtu: Optional[Union[int, str]] = None
    clabTargetType: Optional[str] = None


class NodeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    name: str = ""
    topoViewerRole: str = ""
    parent: Optional[str] = None
    editor: bool = False
    extraData: NodeExtraData = Field(default_factory=NodeExtraData)

    @field_validator("editor", mode="before")
    @classmethod
    def _editor_flag(cls, v: Any) -> bool:
        return _flag(v)

    @field_validator("parent", mode="before")
    @classmethod
    def _empty_parent(cls, v: Any) -> Optional[str]:
        return v or None

    @field_serializer("editor")
    def _dump_editor(self, v: bool) -> str:
        return "true" if v else "false"

    @property
    def role(self) -> NodeRole:
        return role_of(self.topoViewerRole)


class EdgeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    sourceEndpoint: str = ""
    targetEndpoint: str = ""
    editor: bool = False
    extraData: EdgeExtraData = Field(default_factory=EdgeExtraData)

    @field_validator("editor", mode="before")
    @classmethod
    def _editor_flag(cls, v: Any) -> bool:
        return _flag(v)

    @field_serializer("editor")
    def _dump_editor(self, v: bool) -> str:
        return "true" if v else "false"


# ───────────────────────────── Elements ─────────────────────────────


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0


@dataclass
class Node:
    data: NodeData
    position: Position = field(default_factory=Position)
    classes: List[str] = field(default_factory=list)
    grabbable: bool = True
    grabbed: bool = False

    @property
    def id(self) -> str:
        return self.data.id

    @property
    def role(self) -> NodeRole:
        return self.data.role

    @property
    def parent(self) -> Optional[str]:
        return self.data.parent

    @property
    def is_edge(self) -> bool:
        return False

    def to_element(self) -> Dict[str, Any]:
        return {
            "group": "nodes",
            "data": self.data.model_dump(exclude_none=True),
            "position": {"x": self.position.x, "y": self.position.y},
            "classes": " ".join(self.classes),
        }


@dataclass
class Edge:
    data: EdgeData
    classes: List[str] = field(default_factory=list)
    # Transient inspection colour; never persisted.
    line_color: Optional[str] = None

    @property
    def id(self) -> str:
        return self.data.id

    @property
    def source(self) -> str:
        return self.data.source

    @property
    def target(self) -> str:
        return self.data.target

    @property
    def is_edge(self) -> bool:
        return True

    def touches(self, node_id: str) -> bool:
        return self.data.source == node_id or self.data.target == node_id

    def to_element(self) -> Dict[str, Any]:
        return {
            "group": "edges",
            "data": self.data.model_dump(exclude_none=True),
            "classes": " ".join(self.classes),
        }


Element = Union[Node, Edge]
Listener = Callable[[str, Optional[Element]], None]

MODEL_EVENTS = ("add", "remove", "data", "position", "grab", "dragfree", "load")


def split_classes(classes: Optional[Union[str, Iterable[str]]]) -> List[str]:
    if not classes:
        return []
    if isinstance(classes, str):
        return classes.split()
    return [str(c) for c in classes if c]


def is_edge_element(element: Dict[str, Any]) -> bool:
    if element.get("group") == "edges":
        return True
    if element.get("group") == "nodes":
        return False
    data = element.get("data") or {}
    return "source" in data and "target" in data


# ───────────────────────────── Model ─────────────────────────────


class ElementModel:
    """Canonical in-memory graph: nodes, edges, groups and annotations.

    Invariants held by every mutation:
      - every edge's source and target resolve to a node in the model;
      - a node has at most one parent, the parent is group-capable, and
        parent chains are acyclic;
      - edge ids never change after insertion.

    Listeners receive ``(event, element)`` for the events in MODEL_EVENTS.
    A bulk ``load`` replaces everything and emits a single ``load`` event.
    """

    def __init__(self):
        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, Edge] = {}
        self._listeners: Dict[str, List[Listener]] = {ev: [] for ev in MODEL_EVENTS}

    # ───────────────── Listeners ─────────────────

    def on(self, events: str, listener: Listener) -> None:
        for ev in events.split():
            if ev not in self._listeners:
                raise ValueError(f"Unknown model event '{ev}'")
            self._listeners[ev].append(listener)

    def off(self, events: str, listener: Listener) -> None:
        for ev in events.split():
            if listener in self._listeners.get(ev, []):
                self._listeners[ev].remove(listener)

    def _emit(self, event: str, element: Optional[Element] = None) -> None:
        for listener in list(self._listeners[event]):
            listener(event, element)

    # ───────────────── Queries ─────────────────

    def __len__(self) -> int:
        return len(self.nodes) + len(self.edges)

    def __contains__(self, element_id: str) -> bool:
        return element_id in self.nodes or element_id in self.edges

    def get(self, element_id: str) -> Optional[Element]:
        return self.nodes.get(element_id) or self.edges.get(element_id)

    def node(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise UnknownElementError(f"Unknown node '{node_id}'")
        return node

    def edge(self, edge_id: str) -> Edge:
        edge = self.edges.get(edge_id)
        if edge is None:
            raise UnknownElementError(f"Unknown edge '{edge_id}'")
        return edge

    def children(self, node_id: str) -> List[Node]:
        return [n for n in self.nodes.values() if n.data.parent == node_id]

    def is_parent(self, node_id: str) -> bool:
        return any(n.data.parent == node_id for n in self.nodes.values())

    def is_group(self, node_id: str) -> bool:
        node = self.nodes.get(node_id)
        if node is None:
            return False
        return node.role is NodeRole.GROUP or self.is_parent(node_id)

    def ancestors(self, node_id: str) -> Iterator[str]:
        seen = set()
        cur = self.nodes[node_id].data.parent if node_id in self.nodes else None
        while cur is not None and cur not in seen:
            seen.add(cur)
            yield cur
            parent = self.nodes.get(cur)
            cur = parent.data.parent if parent is not None else None

    def descendants(self, node_id: str) -> List[str]:
        out: List[str] = []
        stack = [node_id]
        while stack:
            cur = stack.pop()
            for child in self.children(cur):
                out.append(child.id)
                stack.append(child.id)
        return out

    def incident_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges.values() if e.touches(node_id)]

    def new_edge_id(self, source: str, target: str) -> str:
        base = f"{source}-{target}"
        if base not in self:
            return base
        k = 2
        while f"{base}-{k}" in self:
            k += 1
        return f"{base}-{k}"

    def new_node_id(self, prefix: str = "nodeId") -> str:
        k = len(self.nodes) + 1
        while f"{prefix}-{k}" in self:
            k += 1
        return f"{prefix}-{k}"

    # ───────────────── Insertion ─────────────────

    def add_node(
        self,
        data: Union[NodeData, Dict[str, Any]],
        position: Optional[Union[Position, Dict[str, Any]]] = None,
        classes: Optional[Union[str, Iterable[str]]] = None,
    ) -> Node:
        nd = data if isinstance(data, NodeData) else NodeData.model_validate(data)
        if nd.id in self:
            raise DuplicateElementError(f"Duplicate element id '{nd.id}'")
        if nd.parent is not None:
            self._check_parent(nd.id, nd.parent)
        node = Node(data=nd, position=_position(position), classes=split_classes(classes))
        self.nodes[nd.id] = node
        self._emit("add", node)
        return node

    def add_edge(
        self,
        data: Union[EdgeData, Dict[str, Any]],
        classes: Optional[Union[str, Iterable[str]]] = None,
    ) -> Edge:
        if isinstance(data, dict) and not data.get("id") and data.get("source") and data.get("target"):
            data = dict(data, id=self.new_edge_id(str(data["source"]), str(data["target"])))
        ed = data if isinstance(data, EdgeData) else EdgeData.model_validate(data)
        if ed.id in self:
            raise DuplicateElementError(f"Duplicate element id '{ed.id}'")
        for end in (ed.source, ed.target):
            if end not in self.nodes:
                raise DanglingEdgeError(f"Edge '{ed.id}' references missing node '{end}'")
        edge = Edge(data=ed, classes=split_classes(classes))
        self.edges[ed.id] = edge
        self._emit("add", edge)
        return edge

    def add(self, element: Dict[str, Any]) -> Element:
        """Insert a cytoscape-style ``{group?, data, position?, classes?}`` element."""
        data = element.get("data") or {}
        if is_edge_element(element):
            return self.add_edge(data, classes=element.get("classes"))
        return self.add_node(data, position=element.get("position"), classes=element.get("classes"))

    # ───────────────── Removal ─────────────────

    def remove(self, element_id: str) -> List[str]:
        """Remove an element and everything its removal implies; returns removed ids."""
        if element_id in self.edges:
            return self.remove_edge(element_id)
        if element_id in self.nodes:
            if self.is_group(element_id):
                return self.remove_group(element_id)
            return self.remove_node(element_id)
        raise UnknownElementError(f"Unknown element '{element_id}'")

    def remove_edge(self, edge_id: str) -> List[str]:
        edge = self.edges.pop(edge_id, None)
        if edge is None:
            raise UnknownElementError(f"Unknown edge '{edge_id}'")
        self._emit("remove", edge)
        return [edge_id]

    def remove_node(self, node_id: str) -> List[str]:
        node = self.node(node_id)
        removed: List[str] = []
        for edge in self.incident_edges(node_id):
            removed.extend(self.remove_edge(edge.id))
        # A plain node with children (e.g. a patched-in parent) still releases them.
        for child in self.children(node_id):
            child.data.parent = None
            self._emit("data", child)
        del self.nodes[node_id]
        self._emit("remove", node)
        removed.append(node_id)
        return removed

    def remove_group(self, group_id: str) -> List[str]:
        """Children are unparented; dummyChild placeholders go with the group."""
        self.node(group_id)
        removed: List[str] = []
        for child in self.children(group_id):
            if child.role is NodeRole.DUMMY_CHILD:
                removed.extend(self.remove_node(child.id))
            else:
                self.set_parent(child.id, None)
        removed.extend(self.remove_node(group_id))
        return removed

    def clear(self) -> None:
        self.nodes.clear()
        self.edges.clear()

    # ───────────────── Mutation ─────────────────

    def _check_parent(self, node_id: str, parent_id: str, allow_regular: bool = False) -> None:
        parent = self.nodes.get(parent_id)
        if parent is None:
            raise UnknownElementError(f"Unknown parent '{parent_id}' for '{node_id}'")
        if parent_id == node_id:
            raise ParentCycleError(f"Node '{node_id}' cannot be its own parent")
        group_capable = parent.role is NodeRole.GROUP or (
            parent.role is NodeRole.REGULAR and (allow_regular or self.is_parent(parent_id))
        )
        if not group_capable:
            raise ElementModelError(f"Node '{parent_id}' is not a group")
        if node_id in self.nodes and parent_id in self.descendants(node_id):
            raise ParentCycleError(f"Node '{parent_id}' is a descendant of '{node_id}'")

    def set_parent(self, node_id: str, parent_id: Optional[str]) -> Node:
        node = self.node(node_id)
        parent_id = parent_id or None
        if parent_id is not None:
            self._check_parent(node_id, parent_id)
        if node.data.parent == parent_id:
            return node
        node.data.parent = parent_id
        self._emit("data", node)
        return node

    def update_data(self, element_id: str, patch: Dict[str, Any]) -> Element:
        """Shallow-merge ``patch`` into an element's data (id is immutable)."""
        element = self.get(element_id)
        if element is None:
            raise UnknownElementError(f"Unknown element '{element_id}'")
        if patch.get("id", element_id) != element_id:
            raise ElementModelError(f"Cannot change id of '{element_id}'")

        if isinstance(element, Edge):
            merged = {**element.data.model_dump(), **patch}
            data = EdgeData.model_validate(merged)
            for end in (data.source, data.target):
                if end not in self.nodes:
                    raise DanglingEdgeError(f"Edge '{element_id}' references missing node '{end}'")
            element.data = data
        else:
            patch = dict(patch)
            new_parent = patch.pop("parent", element.data.parent) or None
            if new_parent is not None and new_parent != element.data.parent:
                self._check_parent(element_id, new_parent)
            merged = {**element.data.model_dump(), **patch, "parent": new_parent}
            element.data = NodeData.model_validate(merged)
        self._emit("data", element)
        return element

    def set_classes(self, element_id: str, classes: Optional[Union[str, Iterable[str]]]) -> Element:
        element = self.get(element_id)
        if element is None:
            raise UnknownElementError(f"Unknown element '{element_id}'")
        element.classes = split_classes(classes)
        return element

    def move_node(self, node_id: str, x: float, y: float) -> None:
        node = self.node(node_id)
        dx, dy = float(x) - node.position.x, float(y) - node.position.y
        node.position = Position(float(x), float(y))
        self._emit("position", node)
        # Compound nodes carry their children along.
        for child_id in self.descendants(node_id):
            child = self.nodes[child_id]
            child.position = Position(child.position.x + dx, child.position.y + dy)
            self._emit("position", child)

    def grab(self, node_id: str) -> bool:
        node = self.node(node_id)
        if not node.grabbable:
            return False
        node.grabbed = True
        self._emit("grab", node)
        return True

    def release(self, node_id: str) -> None:
        node = self.node(node_id)
        if not node.grabbed:
            return
        node.grabbed = False
        self._emit("dragfree", node)

    def set_grabbable(self, flag: bool) -> int:
        changed = 0
        for node in self.nodes.values():
            if node.grabbable != flag:
                node.grabbable = flag
                changed += 1
            if not flag:
                node.grabbed = False
        return changed

    # ───────────────── Bulk ─────────────────

    def load(self, elements: Iterable[Dict[str, Any]]) -> None:
        """Replace the whole model. Bad elements are skipped and logged."""
        self.clear()
        node_elems: List[Dict[str, Any]] = []
        edge_elems: List[Dict[str, Any]] = []
        for el in elements:
            if not isinstance(el, dict) or not isinstance(el.get("data"), dict):
                logger.warning("Skipping malformed element: %r", el)
                continue
            (edge_elems if is_edge_element(el) else node_elems).append(el)

        parents: Dict[str, str] = {}
        for el in node_elems:
            data = dict(el["data"])
            parent = data.pop("parent", None)
            try:
                nd = NodeData.model_validate(data)
            except ValueError as e:
                logger.warning("Skipping invalid node element: %s", e)
                continue
            if nd.id in self:
                logger.warning("Skipping duplicate node id '%s'", nd.id)
                continue
            self.nodes[nd.id] = Node(data=nd, position=_position(el.get("position")), classes=split_classes(el.get("classes")))
            if parent:
                parents[nd.id] = parent

        # Parents resolved after every node exists; children may precede their group.
        for node_id, parent_id in parents.items():
            try:
                self._check_parent(node_id, parent_id, allow_regular=True)
            except ElementModelError as e:
                logger.warning("Dropping parent of '%s': %s", node_id, e)
                continue
            self.nodes[node_id].data.parent = parent_id

        for el in edge_elems:
            data = dict(el["data"])
            if not data.get("id") and data.get("source") and data.get("target"):
                data["id"] = self.new_edge_id(str(data["source"]), str(data["target"]))
            try:
                ed = EdgeData.model_validate(data)
            except ValueError as e:
                logger.warning("Skipping invalid edge element: %s", e)
                continue
            if ed.id in self:
                logger.warning("Skipping duplicate edge id '%s'", ed.id)
                continue
            if ed.source not in self.nodes or ed.target not in self.nodes:
                logger.warning("Skipping dangling edge '%s'", ed.id)
                continue
            self.edges[ed.id] = Edge(data=ed, classes=split_classes(el.get("classes")))

        self._emit("load", None)

    def to_elements(self) -> List[Dict[str, Any]]:
        return [n.to_element() for n in self.nodes.values()] + [e.to_element() for e in self.edges.values()]


def _position(position: Optional[Union[Position, Dict[str, Any]]]) -> Position:
    if position is None:
        return Position()
    if isinstance(position, Position):
        return Position(position.x, position.y)
    return Position(float(position.get("x", 0.0) or 0.0), float(position.get("y", 0.0) or 0.0))
