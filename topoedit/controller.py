from __future__ import annotations

from concurrent.futures import Future
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging

from pydantic import ValidationError

from .autosave import AutosaveCoordinator, Scheduler
from .edgedraw import EdgeDrawSubsystem
from .endpoints import InterfaceCounters
from .host import Collaborators, HostBindings, MessageSender, ModelFreeText, Surface
from .interaction import Action, Mode, PointerEvent, classify
from .lock import DeploymentLock, Interceptor
from .menus import ContextMenuDispatcher, MenuCommand
from .messages import (
    DeploymentStateChanged,
    ElementPatch,
    OutboundMessage,
    UpdateTopology,
    YamlSaved,
    parse_inbound,
)
from .model import Edge, ElementModel, ElementModelError, Node, NodeRole
from .session_log import SessionLogger
from .settings import EDITOR_EDGE_COLOR, LOADED_EDGE_COLOR, SUBTITLE_FALLBACK, EditorSettings

logger = logging.getLogger(__name__)

SUBTITLE_PREFIX = "Topology Editor ::: "
LAB_NAME_KEY = "clab-name"
NA = "N/A"


class ControllerInitError(RuntimeError):
    """The controller could not be constructed; nothing was rendered."""


def _or_na(value: Any) -> str:
    return str(value) if value not in (None, "") else NA


class TopologyEditorController:
    """Keeps the element model, the host document and the canvas in agreement.

    Owns the element model and wires the pointer router, edge drawing, the
    deployment lock, context menus and the autosave queue around it. Host
    replies arrive as resolved Futures; host pushes arrive via handle_message.
    """

    def __init__(
        self,
        surface: Optional[Surface],
        sender: MessageSender,
        scheduler: Scheduler,
        mode: str = "edit",
        settings: Optional[EditorSettings] = None,
        collaborators: Optional[Collaborators] = None,
        deployed: bool = False,
        session: Optional[SessionLogger] = None,
    ):
        if surface is None:
            raise ControllerInitError("Topology container not found")
        try:
            self.mode = Mode(mode)
        except ValueError:
            raise ControllerInitError(f"Unknown editor mode '{mode}'") from None

        self.surface = surface
        self.sender = sender
        self.scheduler = scheduler
        self.settings = settings or EditorSettings()
        self.session = session or SessionLogger()
        self.model = ElementModel()
        self.counters = InterfaceCounters()

        self.collaborators = collaborators or Collaborators()
        if self.collaborators.free_text is None:
            self.collaborators.free_text = ModelFreeText(self.model)

        self.edge_draw = EdgeDrawSubsystem(self.model, scheduler, self.settings, self.counters)
        self.menus = ContextMenuDispatcher(self.model, self.mode, self._menu_handlers())
        self.interceptors: List[Interceptor] = []
        self.lock = DeploymentLock(
            self.model, self.edge_draw, self.menus, surface, self.interceptors,
            mode=self.mode,
        )
        self.autosave = AutosaveCoordinator(
            scheduler,
            save=self._send_save,
            undo=self._send_undo,
            quiet_ms=self.settings.autosave_quiet_ms,
            is_busy=self._busy,
            is_locked=lambda: self.lock.locked,
            after_undo=self.fetch_topology,
        )

        self.selected_node: Optional[str] = None
        self.selected_edge: Optional[str] = None
        self.overview_open = False
        self._dragging: List[str] = []
        self._topology_seq = 0
        self._disposed = False

        self.model.on("add remove data position load", self._on_model_change)
        if self.mode is Mode.EDIT:
            self.autosave.attach(self.model)
            self.edge_draw.on("stopped", self._on_draw_stopped)
            self.edge_draw.on("settled", self._on_draw_stopped)

        if deployed:
            self.lock.apply(True)
        else:
            self.menus.attach()

        self.bindings = HostBindings()
        self._register_bindings()
        self._routes: Dict[Action, Callable[[PointerEvent], None]] = {
            Action.ORPHAN_NODE: lambda ev: self.orphan_node(ev.target),
            Action.START_EDGE_DRAW: lambda ev: self.edge_draw.start(ev.target),
            Action.COMPLETE_EDGE_DRAW: lambda ev: self.edge_draw.complete(ev.target),
            Action.CANCEL_EDGE_DRAW: lambda ev: self.edge_draw.cancel(),
            Action.DELETE_NODE: lambda ev: self.model.remove(ev.target),
            Action.DELETE_EDGE: lambda ev: self.model.remove_edge(ev.target),
            Action.ADD_NODE: lambda ev: self.add_node_at(ev.x, ev.y),
            Action.OPEN_NODE_INSPECTOR: lambda ev: self.open_node_inspector(ev.target),
            Action.OPEN_GROUP_INSPECTOR: lambda ev: self.collaborators.groups.show_group_editor(ev.target),
            Action.OPEN_LINK_INSPECTOR: lambda ev: self.open_link_inspector(ev.target),
            Action.CLOSE_INSPECTORS: lambda ev: self.close_inspectors(),
            Action.IGNORE: lambda ev: None,
        }

        self.surface.set_subtitle(SUBTITLE_PREFIX + SUBTITLE_FALLBACK)
        self.session.add("init", mode=self.mode.value, deployed=bool(deployed))
        self.fetch_topology()
        self.fetch_environment()

    # ───────────────── Wiring ─────────────────

    def _menu_handlers(self) -> Dict[MenuCommand, Callable[[str], None]]:
        return {
            MenuCommand.EDIT_TEXT: lambda i: self.collaborators.free_text.edit(i),
            MenuCommand.REMOVE_TEXT: lambda i: self.collaborators.free_text.remove(i),
            MenuCommand.EDIT_NODE: lambda i: self.collaborators.panels.open_node_editor(i),
            MenuCommand.DELETE_NODE: self.delete_node,
            MenuCommand.ADD_LINK: self.edge_draw.start,
            MenuCommand.EDIT_GROUP: lambda i: self.collaborators.groups.show_group_editor(i),
            MenuCommand.DELETE_GROUP: self.delete_group,
            MenuCommand.EDIT_LINK: lambda i: self.collaborators.panels.open_link_editor(i),
            MenuCommand.DELETE_LINK: self.model.remove_edge,
        }

    def _register_bindings(self) -> None:
        c = self.collaborators
        entries: List[Tuple[str, Callable[..., Any]]] = [
            ("layout_algo", lambda name="cose": c.layout.run_layout(name)),
            ("layout_algo_change", lambda name: c.layout.layout_changed(name)),
            ("zoom_to_fit", lambda: c.zoom.zoom_to_fit(self.model)),
            ("label_endpoint", lambda: c.zoom.toggle_endpoint_labels(self.model)),
            ("capture_svg", lambda: c.svg.export_svg(self.model)),
            ("reload_topo", self.reload_topology),
            ("save_topo", self.save_topology),
            ("undo", self.undo),
            ("topology_overview", self.toggle_overview),
            ("show_group_editor", lambda group_id: c.groups.show_group_editor(group_id)),
            ("orphan_node", self.orphan_node),
            ("add_group", lambda: c.groups.add_group()),
        ]
        for name, fn in entries:
            self.bindings.register(name, fn)

    def _busy(self) -> bool:
        return self.edge_draw.active or any(n.grabbed for n in self.model.nodes.values())

    def _on_model_change(self, event: str, element) -> None:
        self.surface.render(self.model)

    def _on_draw_stopped(self, signal: str, edge: Optional[Edge]) -> None:
        self.autosave.resume()

    def _watch(self, fut: Future, what: str, on_result: Optional[Callable[[Any], None]] = None,
               on_error: Optional[Callable[[BaseException], None]] = None) -> Future:
        def _done(f: Future) -> None:
            if self._disposed:
                return
            err = f.exception() if not f.cancelled() else None
            if f.cancelled() or err is not None:
                logger.error("Host request %s failed: %s", what, err or "cancelled")
                self.session.add("host_error", request=what, error=str(err or "cancelled"))
                if on_error is not None:
                    on_error(err)
                return
            if on_result is not None:
                on_result(f.result())

        fut.add_done_callback(_done)
        return fut

    # ───────────────── Host requests ─────────────────

    def _send_save(self, suppress_notification: bool) -> Future:
        elements = self.model.to_elements()
        self.session.add("save", elements=len(elements), explicit=not suppress_notification)
        return self.sender.send(OutboundMessage.save(elements, suppress_notification))

    def _send_undo(self) -> Future:
        self.session.add("undo")
        return self.sender.send(OutboundMessage.undo())

    def fetch_topology(self) -> Future:
        """Request the document; only the newest outstanding reply is applied.

        Autosave is held until the reply lands so the model being replaced
        is never written back over the host copy.
        """
        self._topology_seq += 1
        seq = self._topology_seq
        self.autosave.hold()
        fut = self._watch(
            self.sender.send(OutboundMessage.get_topology()),
            "get-topology",
            lambda result: self._on_topology(result, seq),
        )
        fut.add_done_callback(lambda f: self.autosave.release())
        return fut

    def fetch_environment(self) -> Future:
        return self._watch(
            self.sender.send(OutboundMessage.get_environment([LAB_NAME_KEY])),
            "get-environment",
            self._on_environment,
            lambda err: self.update_subtitle(SUBTITLE_FALLBACK),
        )

    def _on_topology(self, result: Any, seq: Optional[int] = None) -> None:
        if seq is not None and seq != self._topology_seq:
            logger.debug("Dropping superseded topology reply %d (latest %d)", seq, self._topology_seq)
            return
        if isinstance(result, dict):
            result = result.get("elements", [])
        if not isinstance(result, list):
            logger.error("Topology reply is not an element list: %r", type(result).__name__)
            return
        self.load(result)

    def _on_environment(self, result: Any) -> None:
        name = result.get(LAB_NAME_KEY) if isinstance(result, dict) else None
        self.update_subtitle(str(name) if name else SUBTITLE_FALLBACK)

    def update_subtitle(self, lab_name: str) -> None:
        self.surface.set_subtitle(SUBTITLE_PREFIX + lab_name)

    def load(self, elements: Iterable[Dict[str, Any]]) -> None:
        """Replace the model with ``elements`` (no autosave is scheduled)."""
        self.edge_draw.cancel()
        self.counters.reset()
        self.selected_node = self.selected_edge = None
        self._dragging = []
        self.model.load(elements)
        self.session.add("load", nodes=len(self.model.nodes), edges=len(self.model.edges))

    def save_topology(self) -> None:
        self.autosave.save_now()

    def undo(self) -> None:
        self.autosave.undo()

    def reload_topology(self) -> Future:
        return self._watch(self.sender.send(OutboundMessage.reload()), "reload", lambda _: self.fetch_topology())

    # ───────────────── Inbound messages ─────────────────

    def handle_message(self, raw: Any) -> None:
        try:
            msg = parse_inbound(raw)
        except ValidationError as e:
            logger.warning("Malformed host message: %s", e)
            return
        if msg is None:
            return
        self.session.add("message", type=msg.type)
        if isinstance(msg, YamlSaved):
            self.fetch_topology()
        elif isinstance(msg, UpdateTopology):
            self.apply_patch(msg.data)
        elif isinstance(msg, DeploymentStateChanged):
            self.set_deployed(msg.isLabDeployed)

    def apply_patch(self, patches: Iterable[Any]) -> int:
        """Merge host-supplied elements; returns how many were applied.

        Each element is validated on its own, so one malformed entry is
        logged and skipped without losing the rest of the batch.
        """
        applied = 0
        for raw in patches:
            try:
                patch = raw if isinstance(raw, ElementPatch) else ElementPatch.model_validate(raw)
            except ValidationError as e:
                logger.warning("Skipping malformed topology patch element: %s", e)
                continue
            element_id = patch.id
            if element_id is None:
                logger.debug("Skipping topology patch element without id")
                continue
            try:
                if element_id in self.model:
                    self._merge(element_id, patch)
                else:
                    self.model.add(patch.to_element())
            except (ElementModelError, ValidationError) as e:
                logger.warning("Skipping topology patch for '%s': %s", element_id, e)
                continue
            applied += 1
        return applied

    def _merge(self, element_id: str, patch: ElementPatch) -> None:
        self.model.update_data(element_id, patch.data)
        if isinstance(patch.classes, (str, list)):
            self.model.set_classes(element_id, patch.classes)
        if patch.position and element_id in self.model.nodes:
            self.model.move_node(element_id, patch.position.get("x", 0.0), patch.position.get("y", 0.0))

    def set_deployed(self, deployed: bool) -> None:
        if self.lock.apply(deployed):
            self.session.add("lock", state=self.lock.state.value)

    # ───────────────── Pointer input ─────────────────

    def _intercepted(self, kind: str, target: Optional[str]) -> bool:
        element = self.model.get(target) if target else None
        return any(fn(kind, element) for fn in self.interceptors)

    def handle_tap(self, event: PointerEvent) -> Action:
        if self._intercepted(event.kind, event.target):
            logger.debug("Tap on %s swallowed - lab is deployed", event.target)
            return Action.IGNORE
        action = classify(event, self.model, self.mode, self.lock.locked, self.edge_draw.state)
        try:
            self._routes[action](event)
        except ElementModelError as e:
            logger.warning("%s on '%s' failed: %s", action.value, event.target, e)
        if action is not Action.IGNORE:
            self.session.add("tap", action=action.value, target=event.target)
        return action

    def context_menu(self, element_id: str) -> Tuple[MenuCommand, ...]:
        if self._intercepted("cxttap", element_id):
            return ()
        return self.menus.menu_for(element_id)

    def select_menu_command(self, element_id: str, command: MenuCommand) -> bool:
        if self._intercepted("cxttap", element_id):
            return False
        try:
            done = self.menus.select(element_id, MenuCommand(command))
        except ElementModelError as e:
            logger.warning("Menu command %s on '%s' failed: %s", command, element_id, e)
            return False
        if done:
            self.session.add("menu", command=MenuCommand(command).value, target=element_id)
        return done

    def begin_drag(self, *node_ids: str) -> List[str]:
        """Grab nodes for a drag; returns the ids actually grabbed."""
        grabbed = [n for n in node_ids if n in self.model.nodes and self.model.grab(n)]
        # Children already travel with a grabbed ancestor.
        self._dragging = [n for n in grabbed if not any(a in grabbed for a in self.model.ancestors(n))]
        return grabbed

    def drag_by(self, dx: float, dy: float) -> None:
        for node_id in self._dragging:
            node = self.model.nodes.get(node_id)
            if node is not None and node.grabbed:
                self.model.move_node(node_id, node.position.x + dx, node.position.y + dy)

    def end_drag(self) -> None:
        for node in list(self.model.nodes.values()):
            if node.grabbed:
                self.model.release(node.id)
        self._dragging = []
        self.autosave.resume()

    # ───────────────── Router actions ─────────────────

    def orphan_node(self, node_id: str) -> None:
        self.model.set_parent(node_id, None)

    def add_node_at(self, x: float, y: float) -> Node:
        node_id = self.model.new_node_id()
        return self.model.add_node(
            {
                "id": node_id,
                "name": node_id,
                "topoViewerRole": "pe",
                "editor": True,
                "extraData": {"kind": self.settings.default_kind, "longname": "", "image": ""},
            },
            position={"x": x, "y": y},
        )

    def delete_node(self, node_id: str) -> None:
        parent = self.model.node(node_id).parent
        self.model.remove(node_id)
        if parent and parent in self.model.nodes and not self.model.children(parent):
            self.model.remove_node(parent)

    def delete_group(self, group_id: str) -> None:
        self.model.remove_group(group_id)

    def _clear_edge_colors(self) -> None:
        for edge in self.model.edges.values():
            edge.line_color = None

    def open_node_inspector(self, node_id: str) -> None:
        node = self.model.node(node_id)
        extra = node.data.extraData
        self.surface.hide_panels()
        self._clear_edge_colors()
        self.surface.show_panel("node", {
            "name": _or_na(extra.longname or node.data.name),
            "kind": _or_na(extra.kind),
            "mgmtIpv4": _or_na(extra.mgmtIpv4Address),
            "mgmtIpv6": _or_na(extra.mgmtIpv6Address),
            "fqdn": _or_na(extra.fqdn),
            "role": _or_na(node.data.topoViewerRole),
            "state": _or_na(extra.state),
            "image": _or_na(extra.image),
        })
        self.selected_node = extra.longname or node_id
        self.selected_edge = None
        self.surface.render(self.model)

    def open_link_inspector(self, edge_id: str) -> None:
        edge = self.model.edge(edge_id)
        d, extra = edge.data, edge.data.extraData
        self.surface.hide_panels()
        self._clear_edge_colors()
        edge.line_color = EDITOR_EDGE_COLOR if d.editor else LOADED_EDGE_COLOR
        self.surface.show_panel("link", {
            "name": f"{d.source} :: {d.sourceEndpoint} <--> {d.target} :: {d.targetEndpoint}",
            "endpointA": f"{d.source} :: {d.sourceEndpoint}",
            "endpointB": f"{d.target} :: {d.targetEndpoint}",
            "macA": _or_na(extra.clabSourceMacAddress),
            "macB": _or_na(extra.clabTargetMacAddress),
            "mtuA": _or_na(extra.clabSourceMtu),
            "mtuB": _or_na(extra.clabTargetMtu),
            "typeA": _or_na(extra.clabSourceType),
            "typeB": _or_na(extra.clabTargetType),
        })
        self.selected_edge = edge_id
        self.selected_node = None
        self.surface.render(self.model)

    def close_inspectors(self) -> None:
        self.surface.hide_panels()
        self._clear_edge_colors()
        self.selected_node = self.selected_edge = None
        self.overview_open = False
        self.surface.render(self.model)

    def toggle_overview(self) -> bool:
        if self.overview_open:
            self.surface.hide_panels()
        else:
            self.surface.show_panel("overview", {
                "nodes": sum(1 for n in self.model.nodes.values() if n.role is NodeRole.REGULAR),
                "groups": sum(1 for n in self.model.nodes if self.model.is_group(n)),
                "links": len(self.model.edges),
            })
        self.overview_open = not self.overview_open
        return self.overview_open

    # ───────────────── Teardown ─────────────────

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.autosave.dispose()
        self.edge_draw.dispose()
        if self.mode is Mode.EDIT:
            self.autosave.detach(self.model)
        self.menus.detach()
        self.sender.dispose()
        self.session.add("dispose")
