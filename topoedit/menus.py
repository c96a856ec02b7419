from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple
import logging

from .interaction import Mode
from .model import Element, ElementModel, Node, NodeRole

logger = logging.getLogger(__name__)


class MenuCommand(str, Enum):
    EDIT_TEXT = "edit-text"
    REMOVE_TEXT = "remove-text"
    EDIT_NODE = "edit-node"
    DELETE_NODE = "delete-node"
    ADD_LINK = "add-link"
    EDIT_GROUP = "edit-group"
    DELETE_GROUP = "delete-group"
    EDIT_LINK = "edit-link"
    DELETE_LINK = "delete-link"


# Commands addressed to a group; a dummyChild placeholder stands in for its parent.
GROUP_COMMANDS = frozenset({MenuCommand.EDIT_GROUP, MenuCommand.DELETE_GROUP})

Selector = Callable[[ElementModel, Element], bool]
Handler = Callable[[str], None]


def _is_free_text(model: ElementModel, el: Element) -> bool:
    return isinstance(el, Node) and el.role is NodeRole.FREE_TEXT


def _is_plain_node(model: ElementModel, el: Element) -> bool:
    return (
        isinstance(el, Node)
        and el.role not in (NodeRole.GROUP, NodeRole.DUMMY_CHILD, NodeRole.FREE_TEXT)
        and not model.is_parent(el.id)
    )


def _is_group_like(model: ElementModel, el: Element) -> bool:
    return isinstance(el, Node) and (model.is_group(el.id) or el.role is NodeRole.DUMMY_CHILD)


def _is_edge(model: ElementModel, el: Element) -> bool:
    return el.is_edge


@dataclass(frozen=True)
class MenuSpec:
    name: str
    selector: Selector
    commands: Tuple[MenuCommand, ...]
    edit_only: bool = True


MENU_SPECS: Tuple[MenuSpec, ...] = (
    MenuSpec("free-text", _is_free_text, (MenuCommand.EDIT_TEXT, MenuCommand.REMOVE_TEXT), edit_only=False),
    MenuSpec("node", _is_plain_node, (MenuCommand.EDIT_NODE, MenuCommand.DELETE_NODE, MenuCommand.ADD_LINK)),
    MenuSpec("group", _is_group_like, (MenuCommand.EDIT_GROUP, MenuCommand.DELETE_GROUP)),
    MenuSpec("edge", _is_edge, (MenuCommand.EDIT_LINK, MenuCommand.DELETE_LINK)),
)


@dataclass(frozen=True)
class ContextMenu:
    spec: MenuSpec
    handlers: Mapping[MenuCommand, Handler]


class ContextMenuDispatcher:
    """Right-click menus per element role.

    Menus are built on ``attach`` and removed on ``detach``. A menu whose
    construction fails is logged and left out; the others still attach.
    """

    def __init__(self, model: ElementModel, mode: Mode, handlers: Mapping[MenuCommand, Handler]):
        self.model = model
        self.mode = Mode(mode)
        self.handlers = dict(handlers)
        self.menus: Dict[str, ContextMenu] = {}

    @property
    def attached(self) -> bool:
        return bool(self.menus)

    def _build(self, spec: MenuSpec) -> ContextMenu:
        missing = [c.value for c in spec.commands if c not in self.handlers]
        if missing:
            raise ValueError(f"no handler for {', '.join(missing)}")
        return ContextMenu(spec, {c: self.handlers[c] for c in spec.commands})

    def attach(self) -> None:
        for spec in MENU_SPECS:
            if spec.name in self.menus:
                continue
            if spec.edit_only and self.mode is not Mode.EDIT:
                continue
            try:
                self.menus[spec.name] = self._build(spec)
            except Exception as e:
                logger.error("Failed to initialize %s context menu: %s", spec.name, e)

    def detach(self) -> None:
        self.menus.clear()

    def _menu_for(self, element_id: str) -> Optional[ContextMenu]:
        element = self.model.get(element_id)
        if element is None:
            return None
        for menu in self.menus.values():
            if menu.spec.selector(self.model, element):
                return menu
        return None

    def menu_for(self, element_id: str) -> Tuple[MenuCommand, ...]:
        menu = self._menu_for(element_id)
        return menu.spec.commands if menu is not None else ()

    def resolve_target(self, element_id: str, command: MenuCommand) -> str:
        if command in GROUP_COMMANDS:
            node = self.model.nodes.get(element_id)
            if node is not None and node.role is NodeRole.DUMMY_CHILD and node.parent:
                return node.parent
        return element_id

    def select(self, element_id: str, command: MenuCommand) -> bool:
        menu = self._menu_for(element_id)
        if menu is None or command not in menu.handlers:
            logger.debug("Menu command %s not available on '%s'", command, element_id)
            return False
        menu.handlers[command](self.resolve_target(element_id, command))
        return True
