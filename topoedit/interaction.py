from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Optional, Tuple
import logging

from .model import ElementModel, Node, NodeRole

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    EDIT = "edit"
    VIEW = "view"


class Modifier(str, Enum):
    CTRL = "ctrl"
    SHIFT = "shift"
    ALT = "alt"


class TargetRole(str, Enum):
    CANVAS = "canvas"
    NODE = "node"
    GROUP = "group"
    DUMMY_CHILD = "dummyChild"
    FREE_TEXT = "freeText"
    TEXTBOX = "textbox"
    EDGE = "edge"


class DrawState(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    # Edge just completed; stray canvas clicks are ignored for a short grace period.
    SETTLING = "settling"


class Action(str, Enum):
    ORPHAN_NODE = "orphan-node"
    START_EDGE_DRAW = "start-edge-draw"
    COMPLETE_EDGE_DRAW = "complete-edge-draw"
    CANCEL_EDGE_DRAW = "cancel-edge-draw"
    DELETE_NODE = "delete-node"
    DELETE_EDGE = "delete-edge"
    ADD_NODE = "add-node"
    OPEN_NODE_INSPECTOR = "open-node-inspector"
    OPEN_GROUP_INSPECTOR = "open-group-inspector"
    OPEN_LINK_INSPECTOR = "open-link-inspector"
    CLOSE_INSPECTORS = "close-inspectors"
    IGNORE = "ignore"


# Actions that change the model; refused while the lab is deployed.
MUTATING_ACTIONS = frozenset({
    Action.ORPHAN_NODE,
    Action.START_EDGE_DRAW,
    Action.COMPLETE_EDGE_DRAW,
    Action.DELETE_NODE,
    Action.DELETE_EDGE,
    Action.ADD_NODE,
})


@dataclass(frozen=True)
class PointerEvent:
    target: Optional[str] = None
    modifiers: FrozenSet[Modifier] = field(default_factory=frozenset)
    x: float = 0.0
    y: float = 0.0
    kind: str = "tap"  # tap | cxttap

    @staticmethod
    def click(target: Optional[str] = None, *mods: Modifier, x: float = 0.0, y: float = 0.0) -> "PointerEvent":
        return PointerEvent(target=target, modifiers=frozenset(mods), x=x, y=y)

    def held(self, mod: Modifier) -> bool:
        return mod in self.modifiers


def target_role(model: ElementModel, target: Optional[str]) -> TargetRole:
    if target is None:
        return TargetRole.CANVAS
    if target in model.edges:
        return TargetRole.EDGE
    node = model.nodes.get(target)
    if node is None:
        # Element vanished between the event and its dispatch.
        return TargetRole.CANVAS
    if node.role is NodeRole.GROUP or model.is_parent(target):
        return TargetRole.GROUP
    return {
        NodeRole.DUMMY_CHILD: TargetRole.DUMMY_CHILD,
        NodeRole.FREE_TEXT: TargetRole.FREE_TEXT,
        NodeRole.TEXTBOX: TargetRole.TEXTBOX,
    }.get(node.role, TargetRole.NODE)


Predicate = Callable[[ElementModel, Optional[Node]], bool]


def _has_parent(model: ElementModel, node: Optional[Node]) -> bool:
    return node is not None and node.parent is not None


def _editor_made(model: ElementModel, node: Optional[Node]) -> bool:
    return node is not None and node.data.editor


@dataclass(frozen=True)
class Rule:
    mode: Mode
    roles: FrozenSet[TargetRole]
    action: Action
    held: Optional[Modifier] = None  # modifier that must be down
    bare: bool = False  # no modifier may be down
    when: Optional[Predicate] = None


_ANY_NODE = frozenset({
    TargetRole.NODE, TargetRole.GROUP, TargetRole.DUMMY_CHILD, TargetRole.FREE_TEXT, TargetRole.TEXTBOX,
})

# First match wins. Anything unmatched is Action.IGNORE.
DISPATCH_TABLE: Tuple[Rule, ...] = (
    # Edit mode
    Rule(Mode.EDIT, _ANY_NODE, Action.ORPHAN_NODE, held=Modifier.CTRL, when=_has_parent),
    Rule(Mode.EDIT, _ANY_NODE - {TargetRole.FREE_TEXT}, Action.START_EDGE_DRAW, held=Modifier.SHIFT),
    Rule(Mode.EDIT, _ANY_NODE, Action.DELETE_NODE, held=Modifier.ALT, when=_editor_made),
    Rule(Mode.EDIT, frozenset({TargetRole.CANVAS}), Action.ADD_NODE, held=Modifier.SHIFT),
    Rule(Mode.EDIT, frozenset({TargetRole.EDGE}), Action.DELETE_EDGE, held=Modifier.ALT),
    # View mode
    Rule(Mode.VIEW, frozenset({TargetRole.GROUP}), Action.OPEN_GROUP_INSPECTOR),
    Rule(Mode.VIEW, frozenset({TargetRole.NODE}), Action.OPEN_NODE_INSPECTOR, bare=True),
    Rule(Mode.VIEW, frozenset({TargetRole.EDGE}), Action.OPEN_LINK_INSPECTOR),
    Rule(Mode.VIEW, frozenset({TargetRole.CANVAS}), Action.CLOSE_INSPECTORS),
)


def _matches(rule: Rule, event: PointerEvent, role: TargetRole, model: ElementModel, mode: Mode) -> bool:
    if rule.mode is not mode or role not in rule.roles:
        return False
    if rule.held is not None and not event.held(rule.held):
        return False
    if rule.bare and event.modifiers:
        return False
    if rule.when is not None:
        node = model.nodes.get(event.target) if event.target else None
        if not rule.when(model, node):
            return False
    return True


def classify(
    event: PointerEvent,
    model: ElementModel,
    mode: Mode = Mode.EDIT,
    locked: bool = False,
    draw_state: DrawState = DrawState.IDLE,
) -> Action:
    """Map a pointer event to exactly one Action."""
    role = target_role(model, event.target)

    if mode is Mode.EDIT and draw_state is DrawState.DRAWING:
        if role in _ANY_NODE:
            action = Action.COMPLETE_EDGE_DRAW
        else:
            action = Action.CANCEL_EDGE_DRAW
    elif draw_state is DrawState.SETTLING and role is TargetRole.CANVAS:
        action = Action.IGNORE
    else:
        action = next((r.action for r in DISPATCH_TABLE if _matches(r, event, role, model, mode)), Action.IGNORE)

    if locked and action in MUTATING_ACTIONS:
        logger.debug("%s on %s refused - lab is deployed", action.value, event.target or "canvas")
        return Action.IGNORE
    return action
