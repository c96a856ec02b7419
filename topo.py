import tkinter as tk
import json
import logging
import os
import sys
from concurrent.futures import Future
from datetime import datetime, timezone
from tkinter import filedialog, messagebox
from typing import Any, Dict, List, Optional, Tuple

from topoedit import (
    EditorSettings,
    MenuCommand,
    Modifier,
    OutboundMessage,
    OutboundType,
    PointerEvent,
    SessionLogger,
    TopologyEditorController,
)
from topoedit.model import ElementModel, Node, NodeRole
from topoedit.settings import DRAG_THRESHOLD

logger = logging.getLogger(__name__)

NODE_RADIUS = 18
GROUP_PAD = 24

EDGE_COLOR = "#cccccc"
EDGE_WIDTH = 2
EDGE_HIGHLIGHT_WIDTH = 4

EDGE_HIT_TOL = 10          # easier to click lines
PREVIEW_DASH = (6, 4)

# X11 / Windows state bits on tk events
SHIFT_MASK = 0x0001
CONTROL_MASK = 0x0004
ALT_MASKS = (0x0008, 0x20000)

# CSS-style cursor names from the controller -> Tk cursor names
TK_CURSORS = {"not-allowed": "X_cursor", "": ""}

MENU_LABELS = {
    MenuCommand.EDIT_TEXT: "Edit Text",
    MenuCommand.REMOVE_TEXT: "Remove Text",
    MenuCommand.EDIT_NODE: "Edit Node",
    MenuCommand.DELETE_NODE: "Delete Node",
    MenuCommand.ADD_LINK: "Add Link",
    MenuCommand.EDIT_GROUP: "Edit Group",
    MenuCommand.DELETE_GROUP: "Delete Group",
    MenuCommand.EDIT_LINK: "Edit Link",
    MenuCommand.DELETE_LINK: "Delete Link",
}


def modifiers_from_state(state: int) -> frozenset:
    mods = set()
    if state & SHIFT_MASK:
        mods.add(Modifier.SHIFT)
    if state & CONTROL_MASK:
        mods.add(Modifier.CTRL)
    if any(state & m for m in ALT_MASKS):
        mods.add(Modifier.ALT)
    return frozenset(mods)


class TkScheduler:
    """Scheduler backed by the Tk event loop."""

    def __init__(self, root: tk.Misc):
        self.root = root

    def call_later(self, delay_ms: int, callback):
        return self.root.after(int(delay_ms), callback)

    def cancel(self, handle) -> None:
        try:
            self.root.after_cancel(handle)
        except tk.TclError:
            pass


class LocalFileHost:
    """Answers editor requests from a JSON file of elements on disk.

    Keeps previous saves in memory so undo can restore them. After an undo
    the editor is told the document changed (``yaml-saved``) so it reloads.
    """

    def __init__(self, root: tk.Misc, path: str, max_history: int = 50):
        self.root = root
        self.path = path
        self.max_history = max_history
        self.history: List[List[Dict[str, Any]]] = []
        self.on_push = None  # set to controller.handle_message

    @property
    def lab_name(self) -> str:
        base = os.path.basename(self.path)
        return base.split(".", 1)[0] or "lab"

    def _read(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("elements", [])
        return data

    def _write(self, elements: List[Dict[str, Any]]) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"elements": elements}, f, indent=2)

    def _push(self, message: Dict[str, Any]) -> None:
        if self.on_push is not None:
            self.root.after(0, lambda: self.on_push(message))

    def send(self, message: OutboundMessage) -> Future:
        fut: Future = Future()
        try:
            fut.set_result(self._answer(message))
        except (OSError, ValueError) as e:
            fut.set_exception(e)
        return fut

    def _answer(self, message: OutboundMessage) -> Any:
        kind = message.type
        if kind is OutboundType.GET_TOPOLOGY:
            return self._read()
        if kind is OutboundType.GET_ENVIRONMENT:
            return {"clab-name": self.lab_name}
        if kind is OutboundType.SAVE:
            previous = self._read()
            elements = message.payload.get("elements", [])
            if previous != elements:
                self.history.append(previous)
                self.history = self.history[-self.max_history:]
            self._write(elements)
            return {"saved": len(elements)}
        if kind is OutboundType.UNDO:
            if not self.history:
                return {"undone": False}
            self._write(self.history.pop())
            self._push({"type": "yaml-saved"})
            return {"undone": True}
        if kind is OutboundType.RELOAD:
            return None
        raise ValueError(f"Unsupported request {kind}")

    def dispose(self) -> None:
        self.on_push = None


class TopologyEditorApp:
    """Tk canvas front end: draws the element model and feeds it pointer input."""

    def __init__(self, root: tk.Tk, path: str, settings: Optional[EditorSettings] = None, deployed: bool = False):
        self.root = root
        self.root.title("Topology Editor")
        self.settings = settings or EditorSettings.from_env()
        self.session = SessionLogger()

        self.toolbar = tk.Frame(root, bg="#0f1115")
        self.toolbar.pack(fill=tk.X, side=tk.TOP)
        self.status = tk.Label(self.toolbar, text="", fg="#9e9e9e", bg="#0f1115", padx=6)
        self.status.pack(side=tk.LEFT, padx=(8, 10), pady=6)

        self.panes = tk.PanedWindow(root, orient=tk.HORIZONTAL, sashwidth=6, sashrelief=tk.RAISED)
        self.panes.pack(fill=tk.BOTH, expand=True)
        self.canvas = tk.Canvas(self.panes, bg="#0f1115", highlightthickness=0, takefocus=1)
        self.panel = tk.Text(self.panes, width=40, bg="#14161b", fg="#e0e0e0", relief=tk.FLAT, state=tk.DISABLED)
        self.panes.add(self.canvas, stretch="always")
        self.panes.add(self.panel, minsize=260)

        # canvas item -> element id
        self.item_node: Dict[int, str] = {}
        self.item_edge: Dict[int, str] = {}
        self.item_group: Dict[int, str] = {}

        self.selected_nodes: set = set()
        self.mouse_down_pos: Optional[Tuple[int, int]] = None
        self.moved_far = False
        self.down_node: Optional[str] = None
        self.down_mods: frozenset = frozenset()
        self.dragging = False
        self.selection_box = None
        self.selection_start: Optional[Tuple[int, int]] = None
        self.preview_line = None
        self.last_cursor = (0, 0)

        self.host = LocalFileHost(root, path)
        self.controller = TopologyEditorController(
            surface=self,
            sender=self.host,
            scheduler=TkScheduler(root),
            mode=self.settings.mode,
            settings=self.settings,
            deployed=deployed,
            session=self.session,
        )
        self.host.on_push = self.controller.handle_message

        self.build_menu()
        self.bind_events()
        self.root.protocol("WM_DELETE_WINDOW", self.close)

    # ───────────────── Surface ─────────────────

    def set_cursor(self, cursor: str) -> None:
        self.canvas.configure(cursor=TK_CURSORS.get(cursor, cursor))

    def set_subtitle(self, text: str) -> None:
        self.root.title(text)

    def show_panel(self, name: str, payload: Dict[str, Any]) -> None:
        lines = [f"[{name}]"] + [f"{k}: {v}" for k, v in payload.items()]
        self.panel.configure(state=tk.NORMAL)
        self.panel.delete("1.0", tk.END)
        self.panel.insert(tk.END, "\n".join(lines) + "\n")
        self.panel.configure(state=tk.DISABLED)

    def hide_panels(self) -> None:
        self.panel.configure(state=tk.NORMAL)
        self.panel.delete("1.0", tk.END)
        self.panel.configure(state=tk.DISABLED)

    def render(self, model: ElementModel) -> None:
        self.canvas.delete("topo")
        self.item_node.clear()
        self.item_edge.clear()
        self.item_group.clear()
        self.selected_nodes &= set(model.nodes)

        # Groups first so they sit underneath.
        for node in model.nodes.values():
            if model.is_group(node.id):
                self._draw_group(model, node)
        for edge in model.edges.values():
            self._draw_edge(model, edge)
        for node in model.nodes.values():
            if not model.is_group(node.id):
                self._draw_node(node)

        state = "deployed" if self.controller_locked else self.settings.mode
        self.status.configure(text=f"{len(model.nodes)} nodes, {len(model.edges)} links [{state}]")

    @property
    def controller_locked(self) -> bool:
        ctl = getattr(self, "controller", None)
        return bool(ctl and ctl.lock.locked)

    def _group_bbox(self, model: ElementModel, node: Node) -> Tuple[float, float, float, float]:
        members = [model.nodes[i] for i in model.descendants(node.id)]
        if not members:
            x, y = node.position.x, node.position.y
            return x - 40, y - 25, x + 40, y + 25
        xs = [m.position.x for m in members]
        ys = [m.position.y for m in members]
        return min(xs) - GROUP_PAD, min(ys) - GROUP_PAD, max(xs) + GROUP_PAD, max(ys) + GROUP_PAD

    def _draw_group(self, model: ElementModel, node: Node) -> None:
        x1, y1, x2, y2 = self._group_bbox(model, node)
        rect = self.canvas.create_rectangle(x1, y1, x2, y2, outline="#4fc3f7", dash=(4, 2), tags=("topo",))
        self.canvas.create_text(x1 + 4, y1 - 8, text=node.data.name or node.id, anchor="w",
                                fill="#4fc3f7", tags=("topo",))
        self.item_group[rect] = node.id

    def _draw_edge(self, model: ElementModel, edge) -> None:
        a, b = model.nodes[edge.source].position, model.nodes[edge.target].position
        width = EDGE_HIGHLIGHT_WIDTH if edge.line_color else EDGE_WIDTH
        line = self.canvas.create_line(a.x, a.y, b.x, b.y, fill=edge.line_color or EDGE_COLOR,
                                       width=width, tags=("topo",))
        self.canvas.tag_lower(line)
        self.item_edge[line] = edge.id
        for (p, q), label in (((a, b), edge.data.sourceEndpoint), ((b, a), edge.data.targetEndpoint)):
            if not label:
                continue
            lx, ly = p.x + (q.x - p.x) * 0.2, p.y + (q.y - p.y) * 0.2
            self.canvas.create_text(lx, ly, text=label, fill="#9e9e9e", font=("TkDefaultFont", 8), tags=("topo",))

    def _draw_node(self, node: Node) -> None:
        x, y = node.position.x, node.position.y
        if node.role is NodeRole.FREE_TEXT:
            item = self.canvas.create_text(x, y, text=node.data.name or node.id, fill="#e0e0e0", tags=("topo",))
            self.item_node[item] = node.id
            return
        if node.role is NodeRole.DUMMY_CHILD:
            item = self.canvas.create_oval(x - 3, y - 3, x + 3, y + 3, outline="", fill="#2b2f38", tags=("topo",))
            self.item_node[item] = node.id
            return
        fill = "#1565c0" if node.data.editor else "#37474f"
        outline, width = ("#ffd54f", 3) if node.id in self.selected_nodes else ("", 0)
        item = self.canvas.create_oval(x - NODE_RADIUS, y - NODE_RADIUS, x + NODE_RADIUS, y + NODE_RADIUS,
                                       fill=fill, outline=outline, width=width, tags=("topo",))
        self.canvas.create_text(x, y + NODE_RADIUS + 10, text=node.data.name or node.id,
                                fill="#e0e0e0", tags=("topo",))
        self.item_node[item] = node.id

    # ───────────────── Menu ─────────────────

    def build_menu(self):
        menubar = tk.Menu(self.root)

        filemenu = tk.Menu(menubar, tearoff=0)
        filemenu.add_command(label="Save", accelerator="Ctrl+S", command=self.controller.save_topology)
        filemenu.add_command(label="Undo", accelerator="Ctrl+Z", command=self.controller.undo)
        filemenu.add_command(label="Reload", accelerator="F5", command=self.controller.reload_topology)
        filemenu.add_separator()
        filemenu.add_command(label="Exit", command=self.close)
        menubar.add_cascade(label="File", menu=filemenu)

        viewmenu = tk.Menu(menubar, tearoff=0)
        viewmenu.add_command(label="Topology Overview", command=self.controller.toggle_overview)
        menubar.add_cascade(label="View", menu=viewmenu)

        labmenu = tk.Menu(menubar, tearoff=0)
        labmenu.add_command(label="Mark Deployed", command=lambda: self._simulate_deploy(True))
        labmenu.add_command(label="Mark Destroyed", command=lambda: self._simulate_deploy(False))
        menubar.add_cascade(label="Lab", menu=labmenu)

        sessionmenu = tk.Menu(menubar, tearoff=0)
        sessionmenu.add_command(label="Save Session Log…", command=self.save_session_log)
        sessionmenu.add_command(label="Clear Session Log", command=self.session.clear)
        menubar.add_cascade(label="Session", menu=sessionmenu)

        self.root.config(menu=menubar)
        self.context_menu = tk.Menu(self.root, tearoff=0)

    def _simulate_deploy(self, deployed: bool):
        self.controller.handle_message({"type": "deployment-state-changed", "isLabDeployed": deployed})
        self.render(self.controller.model)

    def save_session_log(self):
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        path = filedialog.asksaveasfilename(
            title="Save session log",
            initialfile=f"session_log_{ts}.session.json",
            defaultextension=".json",
            filetypes=[("Session log", "*.session.json"), ("All files", "*.*")],
        )
        if not path:
            return
        try:
            self.session.save_json(path)
        except OSError as e:
            messagebox.showerror("Session log", str(e))

    def bind_events(self):
        self.root.bind_all("<Control-s>", lambda e: self.controller.save_topology())
        self.root.bind_all("<Control-z>", lambda e: self.controller.undo())
        self.root.bind_all("<F5>", lambda e: self.controller.reload_topology())
        self.canvas.bind("<Escape>", lambda e: self.controller.edge_draw.cancel())

        self.canvas.bind("<Button-1>", self.on_mouse_down)
        self.canvas.bind("<B1-Motion>", self.on_mouse_drag)
        self.canvas.bind("<ButtonRelease-1>", self.on_mouse_up)
        self.canvas.bind("<Button-3>", self.on_context_menu)
        self.canvas.bind("<Motion>", self.on_mouse_move)

        self.controller.edge_draw.on("stopped", lambda *_: self._remove_preview())

        self.canvas.focus_set()

    def close(self):
        self.controller.dispose()
        self.root.destroy()

    # ───────────────── Hit testing helpers ─────────────────

    def get_node_at(self, x, y) -> Optional[str]:
        for item in reversed(self.canvas.find_overlapping(x - 2, y - 2, x + 2, y + 2)):
            if item in self.item_node:
                return self.item_node[item]
        return None

    def _dist_point_to_segment(self, px, py, x1, y1, x2, y2):
        vx, vy = x2 - x1, y2 - y1
        wx, wy = px - x1, py - y1
        c1 = vx * wx + vy * wy
        if c1 <= 0:
            return ((px - x1) ** 2 + (py - y1) ** 2) ** 0.5
        c2 = vx * vx + vy * vy
        if c2 <= c1:
            return ((px - x2) ** 2 + (py - y2) ** 2) ** 0.5
        b = c1 / c2
        return ((px - (x1 + b * vx)) ** 2 + (py - (y1 + b * vy)) ** 2) ** 0.5

    def get_edge_at(self, x, y) -> Optional[str]:
        items = self.canvas.find_overlapping(x - EDGE_HIT_TOL, y - EDGE_HIT_TOL, x + EDGE_HIT_TOL, y + EDGE_HIT_TOL)
        best, best_d = None, float("inf")
        for item in items:
            if item not in self.item_edge:
                continue
            d = self._dist_point_to_segment(x, y, *self.canvas.coords(item))
            if d < best_d:
                best, best_d = self.item_edge[item], d
        return best if best_d <= EDGE_HIT_TOL else None

    def get_group_at(self, x, y) -> Optional[str]:
        for item in reversed(self.canvas.find_overlapping(x, y, x, y)):
            if item in self.item_group:
                return self.item_group[item]
        return None

    def element_at(self, x, y) -> Optional[str]:
        return self.get_node_at(x, y) or self.get_edge_at(x, y) or self.get_group_at(x, y)

    # ───────────────── Preview wire ─────────────────

    def _ensure_preview(self, x, y):
        src = self.controller.edge_draw.source
        if src is None or src not in self.controller.model.nodes:
            self._remove_preview()
            return
        p = self.controller.model.nodes[src].position
        if self.preview_line is None:
            self.preview_line = self.canvas.create_line(p.x, p.y, x, y, fill=EDGE_COLOR, width=EDGE_WIDTH,
                                                        dash=PREVIEW_DASH, tags=("ui",))
            self.canvas.tag_lower(self.preview_line)
        else:
            self.canvas.coords(self.preview_line, p.x, p.y, x, y)

        target = self.get_node_at(x, y)
        if target is not None and self.controller.edge_draw.can_connect(src, target):
            a, b = self.controller.edge_draw.preview_endpoints(src, target)
            self.status.configure(text=f"{src}:{a} <-> {target}:{b}")

    def _remove_preview(self):
        if self.preview_line is not None:
            self.canvas.delete(self.preview_line)
            self.preview_line = None

    def on_mouse_move(self, event):
        self.last_cursor = (event.x, event.y)
        self._ensure_preview(event.x, event.y)

    # ───────────────── Mouse events ─────────────────

    def on_mouse_down(self, event):
        self.canvas.focus_set()
        self.mouse_down_pos = (event.x, event.y)
        self.last_cursor = (event.x, event.y)
        self.moved_far = False
        self.dragging = False
        self.down_mods = modifiers_from_state(event.state)
        self.down_node = self.get_node_at(event.x, event.y) or self.get_group_at(event.x, event.y)

        if self.down_node is not None and not self.down_mods and not self.controller.edge_draw.drawing:
            if self.down_node not in self.selected_nodes:
                self.selected_nodes = {self.down_node}
            return

        if self.down_node is None and not self.down_mods and self.get_edge_at(event.x, event.y) is None:
            self.selection_start = (event.x, event.y)

    def on_mouse_drag(self, event):
        self.last_cursor = (event.x, event.y)
        if self.mouse_down_pos is None:
            self.mouse_down_pos = (event.x, event.y)

        if not self.moved_far:
            if abs(event.x - self.mouse_down_pos[0]) > DRAG_THRESHOLD or abs(event.y - self.mouse_down_pos[1]) > DRAG_THRESHOLD:
                self.moved_far = True
                if self.down_node is not None and not self.down_mods:
                    # Dragging one of several selected nodes moves the whole selection.
                    ids = self.selected_nodes if self.down_node in self.selected_nodes else {self.down_node}
                    self.dragging = bool(self.controller.begin_drag(*sorted(ids)))

        if self.dragging:
            dx = event.x - self.mouse_down_pos[0]
            dy = event.y - self.mouse_down_pos[1]
            self.mouse_down_pos = (event.x, event.y)
            self.controller.drag_by(dx, dy)
            return

        if self.selection_start is not None and self.moved_far:
            x0, y0 = self.selection_start
            if self.selection_box is None:
                self.selection_box = self.canvas.create_rectangle(x0, y0, x0, y0, outline="#4fc3f7",
                                                                  dash=(4, 2), tags=("ui",))
            self.canvas.coords(self.selection_box, x0, y0, event.x, event.y)

    def on_mouse_up(self, event):
        self.last_cursor = (event.x, event.y)
        if self.dragging:
            self.controller.end_drag()
        elif self.selection_box is not None and self.selection_start is not None:
            self._finish_selection_box(event.x, event.y)
        elif not self.moved_far:
            target = self.down_node or self.element_at(event.x, event.y)
            if target is None:
                self.selected_nodes.clear()
            action = self.controller.handle_tap(
                PointerEvent(target=target, modifiers=self.down_mods, x=event.x, y=event.y)
            )
            logger.debug("tap on %s -> %s", target or "canvas", action.value)
            self.render(self.controller.model)

        self.mouse_down_pos = None
        self.down_node = None
        self.down_mods = frozenset()
        self.dragging = False
        self.moved_far = False
        self.selection_start = None
        self._ensure_preview(event.x, event.y)

    def _finish_selection_box(self, x1, y1):
        x0, y0 = self.selection_start
        minx, maxx = min(x0, x1), max(x0, x1)
        miny, maxy = min(y0, y1), max(y0, y1)
        self.selected_nodes = {
            n.id for n in self.controller.model.nodes.values()
            if minx <= n.position.x <= maxx and miny <= n.position.y <= maxy
            and n.role not in (NodeRole.DUMMY_CHILD, NodeRole.FREE_TEXT)
        }
        self.canvas.delete(self.selection_box)
        self.selection_box = None
        self.render(self.controller.model)

    def on_context_menu(self, event):
        element_id = self.element_at(event.x, event.y)
        if element_id is None:
            return
        commands = self.controller.context_menu(element_id)
        if not commands:
            return
        self.context_menu.delete(0, tk.END)
        for cmd in commands:
            self.context_menu.add_command(
                label=MENU_LABELS[cmd],
                command=lambda c=cmd, i=element_id: self._run_menu_command(i, c),
            )
        try:
            self.context_menu.tk_popup(event.x_root, event.y_root)
        finally:
            self.context_menu.grab_release()

    def _run_menu_command(self, element_id: str, command: MenuCommand):
        self.controller.select_menu_command(element_id, command)
        if command is MenuCommand.ADD_LINK:
            self._ensure_preview(*self.last_cursor)


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("TOPOEDIT_LOG_LEVEL", "INFO"))
    path = sys.argv[1] if len(sys.argv) > 1 else "topology.elements.json"
    root = tk.Tk()
    app = TopologyEditorApp(root, path, deployed="--deployed" in sys.argv[2:])
    root.mainloop()
