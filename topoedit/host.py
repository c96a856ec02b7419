from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
import logging

from .messages import OutboundMessage, OutboundType

logger = logging.getLogger(__name__)


# ───────────────────────────── Host transport ─────────────────────────────


class MessageSender(Protocol):
    def send(self, message: OutboundMessage) -> Future: ...

    def dispose(self) -> None: ...


class RecordingSender:
    """Keeps every outbound message with its Future; the caller resolves them.

    Used by tests and by hosts that answer from their own event loop.
    """

    def __init__(self):
        self.sent: List[Tuple[OutboundMessage, Future]] = []
        self.disposed = False

    def send(self, message: OutboundMessage) -> Future:
        if self.disposed:
            raise RuntimeError("sender disposed")
        fut: Future = Future()
        self.sent.append((message, fut))
        return fut

    def dispose(self) -> None:
        self.disposed = True

    def of_type(self, kind: OutboundType) -> List[Tuple[OutboundMessage, Future]]:
        return [(m, f) for m, f in self.sent if m.type is kind]

    def pending(self, kind: Optional[OutboundType] = None) -> List[Tuple[OutboundMessage, Future]]:
        return [(m, f) for m, f in self.sent if not f.done() and (kind is None or m.type is kind)]

    def reply(self, kind: OutboundType, result: Any = None) -> OutboundMessage:
        """Resolve the oldest unanswered request of ``kind``."""
        pending = self.pending(kind)
        if not pending:
            raise LookupError(f"no pending {kind.value} request")
        msg, fut = pending[0]
        fut.set_result(result)
        return msg

    def fail(self, kind: OutboundType, error: BaseException) -> OutboundMessage:
        pending = self.pending(kind)
        if not pending:
            raise LookupError(f"no pending {kind.value} request")
        msg, fut = pending[0]
        fut.set_exception(error)
        return msg


# ───────────────────────────── Rendering surface ─────────────────────────────


class Surface(Protocol):
    """What the controller needs from whatever draws the graph."""

    def set_cursor(self, cursor: str) -> None: ...

    def set_subtitle(self, text: str) -> None: ...

    def render(self, model) -> None: ...

    def show_panel(self, name: str, payload: Dict[str, Any]) -> None: ...

    def hide_panels(self) -> None: ...


class NullSurface:
    """Headless surface that just remembers what it was told."""

    def __init__(self):
        self.cursor = ""
        self.subtitle = ""
        self.renders = 0
        self.panels: Dict[str, Dict[str, Any]] = {}

    def set_cursor(self, cursor: str) -> None:
        self.cursor = cursor

    def set_subtitle(self, text: str) -> None:
        self.subtitle = text

    def render(self, model) -> None:
        self.renders += 1

    def show_panel(self, name: str, payload: Dict[str, Any]) -> None:
        self.panels[name] = dict(payload)

    def hide_panels(self) -> None:
        self.panels.clear()


# ───────────────────────────── Collaborators ─────────────────────────────


class LayoutManager(Protocol):
    def run_layout(self, name: str) -> None: ...

    def layout_changed(self, name: str) -> None: ...


class ZoomManager(Protocol):
    def zoom_to_fit(self, model) -> None: ...

    def toggle_endpoint_labels(self, model) -> None: ...


class SvgExporter(Protocol):
    def export_svg(self, model) -> None: ...


class GroupManager(Protocol):
    def show_group_editor(self, group_id: str) -> None: ...

    def add_group(self) -> None: ...


class PanelManager(Protocol):
    def open_node_editor(self, node_id: str) -> None: ...

    def open_link_editor(self, edge_id: str) -> None: ...


class FreeTextManager(Protocol):
    def edit(self, node_id: str) -> None: ...

    def remove(self, node_id: str) -> None: ...


class NullCollaborator:
    """Stand-in for a collaborator the host did not provide; every call is logged."""

    def __init__(self, name: str):
        self._name = name

    def __getattr__(self, attr: str) -> Callable[..., None]:
        if attr.startswith("__"):
            raise AttributeError(attr)

        def _call(*args: Any, **kwargs: Any) -> None:
            logger.info("%s.%s called with no %s configured", self._name, attr, self._name)

        return _call


class ModelFreeText:
    """Free-text handling when the host provides no annotation editor."""

    def __init__(self, model):
        self.model = model

    def edit(self, node_id: str) -> None:
        logger.info("No free-text editor configured; '%s' left as is", node_id)

    def remove(self, node_id: str) -> None:
        if node_id in self.model.nodes:
            self.model.remove_node(node_id)


@dataclass
class Collaborators:
    layout: Any = field(default_factory=lambda: NullCollaborator("layout"))
    zoom: Any = field(default_factory=lambda: NullCollaborator("zoom"))
    svg: Any = field(default_factory=lambda: NullCollaborator("svg"))
    groups: Any = field(default_factory=lambda: NullCollaborator("groups"))
    panels: Any = field(default_factory=lambda: NullCollaborator("panels"))
    free_text: Any = None


# ───────────────────────────── Host bindings ─────────────────────────────


class HostBindings:
    """Named entry points the host calls into; filled once at startup."""

    def __init__(self):
        self._table: Dict[str, Callable[..., Any]] = {}

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        if name in self._table:
            raise ValueError(f"Host binding '{name}' already registered")
        self._table[name] = fn

    def __contains__(self, name: str) -> bool:
        return name in self._table

    def __getitem__(self, name: str) -> Callable[..., Any]:
        return self._table[name]

    def names(self) -> List[str]:
        return sorted(self._table)

    def call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        fn = self._table.get(name)
        if fn is None:
            raise KeyError(f"Unknown host binding '{name}'")
        return fn(*args, **kwargs)
