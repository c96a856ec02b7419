from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from .endpoints import InterfaceCounters, format_endpoint, kind_of, next_endpoint
from .interaction import DrawState
from .model import Edge, ElementModel, NodeRole
from .settings import EditorSettings

logger = logging.getLogger(__name__)

SIGNALS = ("started", "completed", "cancelled", "stopped", "settled")

SignalListener = Callable[[str, Optional[Edge]], None]


class EdgeDrawSubsystem:
    """Interactive link creation between two nodes.

    A draw is started on a source node and either completed on a target node
    or cancelled. ``active`` stays True for ``edge_draw_grace_ms`` after a
    completion so the click that ended the draw is not mistaken for a canvas
    click. ``settled`` fires when that grace period ends.
    """

    def __init__(self, model: ElementModel, scheduler, settings: Optional[EditorSettings] = None,
                 counters: Optional[InterfaceCounters] = None):
        self.model = model
        self.scheduler = scheduler
        self.settings = settings or EditorSettings()
        self.counters = counters or InterfaceCounters()
        self.enabled = True
        self.source: Optional[str] = None
        self._grace: Any = None
        self._listeners: Dict[str, List[SignalListener]] = {s: [] for s in SIGNALS}

    def on(self, signal: str, listener: SignalListener) -> None:
        if signal not in self._listeners:
            raise ValueError(f"Unknown edge-draw signal '{signal}'")
        self._listeners[signal].append(listener)

    def _emit(self, signal: str, edge: Optional[Edge] = None) -> None:
        for listener in list(self._listeners[signal]):
            listener(signal, edge)

    @property
    def drawing(self) -> bool:
        return self.source is not None

    @property
    def active(self) -> bool:
        return self.source is not None or self._grace is not None

    @property
    def state(self) -> DrawState:
        if self.source is not None:
            return DrawState.DRAWING
        if self._grace is not None:
            return DrawState.SETTLING
        return DrawState.IDLE

    # ───────────────── Eligibility ─────────────────

    def is_handle(self, node_id: str) -> bool:
        node = self.model.nodes.get(node_id)
        return node is not None and node.role is not NodeRole.FREE_TEXT

    def can_connect(self, source: str, target: str) -> bool:
        if source == target:
            return False
        src = self.model.nodes.get(source)
        tgt = self.model.nodes.get(target)
        if src is None or tgt is None:
            return False
        if src.role in (NodeRole.GROUP, NodeRole.FREE_TEXT) or self.model.is_parent(source):
            return False
        if tgt.role in (NodeRole.GROUP, NodeRole.DUMMY_CHILD, NodeRole.FREE_TEXT):
            return False
        return not self.model.is_parent(target)

    # ───────────────── Lifecycle ─────────────────

    def start(self, node_id: str) -> bool:
        if not self.enabled:
            logger.debug("Edge draw from '%s' ignored - drawing is disabled", node_id)
            return False
        if not self.is_handle(node_id):
            return False
        if self.source is not None:
            self.cancel()
        self._clear_grace()
        self.source = node_id
        self._emit("started")
        return True

    def preview_endpoints(self, source: str, target: str) -> Tuple[str, str]:
        """Provisional interface names shown while hovering ``target``."""
        names = []
        for node_id in (source, target):
            pattern = self.settings.pattern_for(kind_of(self.model, node_id))
            names.append(format_endpoint(pattern, self.counters.peek(node_id)))
        return names[0], names[1]

    def complete(self, target: str) -> Optional[Edge]:
        source = self.source
        if source is None:
            return None
        if not self.can_connect(source, target):
            logger.debug("Rejected link %s -> %s", source, target)
            self.cancel()
            return None

        src_ep = next_endpoint(self.model, source, self.settings)
        tgt_ep = next_endpoint(self.model, target, self.settings)
        edge = self.model.add_edge({
            "source": source,
            "target": target,
            "sourceEndpoint": src_ep,
            "targetEndpoint": tgt_ep,
            "editor": True,
        })
        self.counters.note_endpoint(source, src_ep, self.settings.pattern_for(kind_of(self.model, source)))
        self.counters.note_endpoint(target, tgt_ep, self.settings.pattern_for(kind_of(self.model, target)))
        logger.info("Link %s created (%s:%s <-> %s:%s)", edge.id, source, src_ep, target, tgt_ep)

        self.source = None
        self._grace = self.scheduler.call_later(self.settings.edge_draw_grace_ms, self._settle)
        self._emit("completed", edge)
        self._emit("stopped", edge)
        return edge

    def cancel(self) -> None:
        if self.source is None:
            return
        self.source = None
        self._emit("cancelled")
        self._emit("stopped")

    def _settle(self) -> None:
        self._grace = None
        self._emit("settled")

    def _clear_grace(self) -> None:
        if self._grace is not None:
            self.scheduler.cancel(self._grace)
            self._grace = None

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.cancel()
        self.enabled = False

    def dispose(self) -> None:
        self.source = None
        self._clear_grace()
