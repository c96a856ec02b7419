"""Topology editor controller.

Keeps an in-memory element model (nodes, groups, links, annotations), the
host-owned topology document and on-screen interaction consistent: pointer
routing, edge drawing with interface numbering, the deployment lock,
context menus and debounced, serialized autosave.
"""

from .autosave import AutosaveCoordinator, VirtualScheduler
from .controller import ControllerInitError, TopologyEditorController
from .edgedraw import EdgeDrawSubsystem
from .endpoints import InterfaceCounters, next_endpoint
from .host import Collaborators, HostBindings, NullSurface, RecordingSender
from .interaction import Action, Mode, Modifier, PointerEvent, classify
from .lock import DeploymentLock, LockState
from .menus import ContextMenuDispatcher, MenuCommand
from .messages import OutboundMessage, OutboundType, parse_inbound
from .model import (
    DanglingEdgeError,
    DuplicateElementError,
    ElementModel,
    ElementModelError,
    NodeRole,
    ParentCycleError,
    UnknownElementError,
)
from .session_log import SessionLogger
from .settings import EditorSettings
from .validate import validate_elements

__all__ = [
    "Action",
    "AutosaveCoordinator",
    "Collaborators",
    "ContextMenuDispatcher",
    "ControllerInitError",
    "DanglingEdgeError",
    "DeploymentLock",
    "DuplicateElementError",
    "EdgeDrawSubsystem",
    "EditorSettings",
    "ElementModel",
    "ElementModelError",
    "HostBindings",
    "InterfaceCounters",
    "LockState",
    "MenuCommand",
    "Mode",
    "Modifier",
    "NodeRole",
    "NullSurface",
    "OutboundMessage",
    "OutboundType",
    "ParentCycleError",
    "PointerEvent",
    "RecordingSender",
    "SessionLogger",
    "TopologyEditorController",
    "UnknownElementError",
    "VirtualScheduler",
    "classify",
    "next_endpoint",
    "parse_inbound",
    "validate_elements",
]
