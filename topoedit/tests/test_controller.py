import copy
import unittest

from topoedit.autosave import VirtualScheduler
from topoedit.controller import ControllerInitError, TopologyEditorController
from topoedit.host import NullSurface, RecordingSender
from topoedit.interaction import Action, Modifier, PointerEvent
from topoedit.menus import MenuCommand
from topoedit.messages import OutboundType
from topoedit.settings import LOADED_EDGE_COLOR

ELEMENTS = [
    {
        "group": "nodes",
        "data": {
            "id": "r1", "name": "r1", "topoViewerRole": "router",
            "extraData": {"kind": "nokia_srlinux", "longname": "clab-lab1-r1", "mgmtIpv4Address": "172.20.20.2"},
        },
        "position": {"x": 0, "y": 0},
    },
    {
        "group": "nodes",
        "data": {"id": "r2", "name": "r2", "topoViewerRole": "router", "extraData": {"kind": "nokia_srlinux"}},
        "position": {"x": 100, "y": 0},
    },
    {
        "group": "edges",
        "data": {"id": "r1-r2", "source": "r1", "target": "r2", "sourceEndpoint": "e1-1", "targetEndpoint": "e1-1"},
    },
]

GROUPED = ELEMENTS + [
    {"group": "nodes", "data": {"id": "g1", "name": "g1", "topoViewerRole": "group"}},
    {"group": "nodes", "data": {"id": "leaf", "parent": "g1", "editor": "true"}, "position": {"x": 50, "y": 80}},
]

WITH_NOTE = ELEMENTS + [
    {"group": "nodes", "data": {"id": "t1", "name": "note", "topoViewerRole": "freeText"}, "position": {"x": 0, "y": 90}},
]


def make(mode="edit", deployed=False, elements=ELEMENTS):
    surface = NullSurface()
    sender = RecordingSender()
    sched = VirtualScheduler()
    ctl = TopologyEditorController(surface, sender, sched, mode=mode, deployed=deployed)
    sender.reply(OutboundType.GET_TOPOLOGY, copy.deepcopy(elements))
    sender.reply(OutboundType.GET_ENVIRONMENT, {"clab-name": "lab1"})
    return ctl, surface, sender, sched


def tap(ctl, target=None, *mods, x=0.0, y=0.0):
    return ctl.handle_tap(PointerEvent.click(target, *mods, x=x, y=y))


class TestStartup(unittest.TestCase):
    def test_missing_surface_is_fatal(self):
        with self.assertRaises(ControllerInitError):
            TopologyEditorController(None, RecordingSender(), VirtualScheduler())

    def test_bad_mode_is_fatal(self):
        with self.assertRaises(ControllerInitError):
            TopologyEditorController(NullSurface(), RecordingSender(), VirtualScheduler(), mode="sideways")

    def test_loads_topology_and_subtitle(self):
        ctl, surface, sender, sched = make()
        self.assertEqual(sorted(ctl.model.nodes), ["r1", "r2"])
        self.assertEqual(list(ctl.model.edges), ["r1-r2"])
        self.assertEqual(surface.subtitle, "Topology Editor ::: lab1")
        self.assertEqual(sender.of_type(OutboundType.GET_ENVIRONMENT)[0][0].payload, {"keys": ["clab-name"]})

        # Loading is not an edit.
        sched.advance(5000)
        self.assertEqual(sender.of_type(OutboundType.SAVE), [])

    def test_environment_failure_falls_back(self):
        surface = NullSurface()
        sender = RecordingSender()
        TopologyEditorController(surface, sender, VirtualScheduler())
        with self.assertLogs("topoedit.controller", level="ERROR"):
            sender.fail(OutboundType.GET_ENVIRONMENT, RuntimeError("no env"))
        self.assertEqual(surface.subtitle, "Topology Editor ::: Unknown")

    def test_bindings(self):
        ctl, *_ = make()
        self.assertEqual(
            ctl.bindings.names(),
            sorted([
                "layout_algo", "layout_algo_change", "zoom_to_fit", "label_endpoint", "capture_svg",
                "reload_topo", "save_topo", "undo", "topology_overview", "show_group_editor",
                "orphan_node", "add_group",
            ]),
        )
        with self.assertLogs("topoedit.host", level="INFO"):
            ctl.bindings.call("zoom_to_fit")


class TestHostMessages(unittest.TestCase):
    def test_patch_merges_and_inserts(self):
        ctl, surface, sender, sched = make()
        ctl.handle_message({
            "type": "updateTopology",
            "data": [
                {"data": {"id": "r1", "name": "R1"}, "classes": "running"},
                {"group": "nodes", "data": {"id": "r3", "name": "r3"}, "position": {"x": 5, "y": 5}},
                {"data": {"name": "anonymous"}},
                {"group": "edges", "data": {"id": "bad", "source": "r3", "target": "ghost"}},
            ],
        })
        self.assertEqual(sorted(ctl.model.nodes), ["r1", "r2", "r3"])
        self.assertEqual(ctl.model.nodes["r1"].data.name, "R1")
        self.assertEqual(ctl.model.nodes["r1"].data.extraData.kind, "nokia_srlinux")
        self.assertEqual(ctl.model.nodes["r1"].classes, ["running"])
        self.assertNotIn("bad", ctl.model.edges)

        # Patches are edits like any other.
        sched.advance(500)
        self.assertEqual(len(sender.of_type(OutboundType.SAVE)), 1)

    def test_same_patch_twice_does_not_duplicate(self):
        ctl, *_ = make()
        patch = {"type": "updateTopology", "data": [{"data": {"id": "r9"}}]}
        ctl.handle_message(patch)
        ctl.handle_message(patch)
        self.assertEqual(sorted(ctl.model.nodes), ["r1", "r2", "r9"])

    def test_late_topology_reply_is_dropped(self):
        ctl, surface, sender, sched = make()
        ctl.handle_message({"type": "yaml-saved"})
        ctl.handle_message({"type": "yaml-saved"})
        (_, older), (_, newer) = sender.pending(OutboundType.GET_TOPOLOGY)
        newer.set_result([{"data": {"id": "fresh"}}])
        older.set_result([{"data": {"id": "stale"}}])
        self.assertEqual(list(ctl.model.nodes), ["fresh"])

    def test_malformed_patch_element_skips_only_itself(self):
        ctl, *_ = make()
        with self.assertLogs("topoedit.controller", level="WARNING"):
            ctl.handle_message({
                "type": "updateTopology",
                "data": [
                    {"data": {"id": "n1"}},
                    {"data": {"id": "n2"}, "position": {"x": "left", "y": 0}},
                    {"data": None},
                    "junk",
                ],
            })
        self.assertIn("n1", ctl.model.nodes)
        self.assertNotIn("n2", ctl.model.nodes)

    def test_yaml_saved_reloads(self):
        ctl, surface, sender, sched = make()
        ctl.handle_message({"type": "yaml-saved"})
        sender.reply(OutboundType.GET_TOPOLOGY, [{"data": {"id": "solo"}}])
        self.assertEqual(list(ctl.model.nodes), ["solo"])
        self.assertEqual(ctl.model.edges, {})

    def test_malformed_message_logged(self):
        ctl, *_ = make()
        with self.assertLogs("topoedit.controller", level="WARNING"):
            ctl.handle_message({"type": "deployment-state-changed", "isLabDeployed": "maybe"})
        self.assertFalse(ctl.lock.locked)

    def test_unknown_message_ignored(self):
        ctl, *_ = make()
        ctl.handle_message({"type": "topo-viewer-log"})
        self.assertEqual(len(ctl.model), 3)


class TestEditing(unittest.TestCase):
    def test_shift_canvas_adds_editor_node_and_autosaves(self):
        ctl, surface, sender, sched = make()
        self.assertIs(tap(ctl, None, Modifier.SHIFT, x=40, y=60), Action.ADD_NODE)
        node = ctl.model.nodes["nodeId-3"]
        self.assertTrue(node.data.editor)
        self.assertEqual(node.data.extraData.kind, "nokia_srlinux")
        self.assertEqual((node.position.x, node.position.y), (40.0, 60.0))

        sched.advance(500)
        saves = sender.of_type(OutboundType.SAVE)
        self.assertEqual(len(saves), 1)
        msg = saves[0][0]
        self.assertTrue(msg.payload["suppressNotification"])
        self.assertIn("nodeId-3", [el["data"]["id"] for el in msg.payload["elements"]])

    def test_edge_draw_by_clicks(self):
        ctl, surface, sender, sched = make()
        self.assertIs(tap(ctl, "r1", Modifier.SHIFT), Action.START_EDGE_DRAW)
        self.assertIs(tap(ctl, "r2"), Action.COMPLETE_EDGE_DRAW)

        edge = ctl.model.edges["r1-r2-2"]
        self.assertEqual((edge.data.sourceEndpoint, edge.data.targetEndpoint), ("e1-2", "e1-2"))

        # The click that ended the draw must not create a node.
        self.assertIs(tap(ctl, None, Modifier.SHIFT), Action.IGNORE)
        sched.advance(100)
        self.assertIs(tap(ctl, None, Modifier.SHIFT), Action.ADD_NODE)

    def test_save_deferred_until_draw_settles(self):
        ctl, surface, sender, sched = make()
        ctl.model.move_node("r2", 150, 0)
        sched.advance(450)
        tap(ctl, "r1", Modifier.SHIFT)
        sched.advance(50)  # debounce fires mid-draw
        self.assertEqual(sender.of_type(OutboundType.SAVE), [])

        tap(ctl, "r2")
        sched.advance(500)
        self.assertEqual(len(sender.of_type(OutboundType.SAVE)), 1)

    def test_alt_click_deletes_only_editor_nodes(self):
        ctl, *_ = make()
        self.assertIs(tap(ctl, "r1", Modifier.ALT), Action.IGNORE)
        tap(ctl, None, Modifier.SHIFT)
        self.assertIs(tap(ctl, "nodeId-3", Modifier.ALT), Action.DELETE_NODE)
        self.assertNotIn("nodeId-3", ctl.model.nodes)

    def test_alt_click_deletes_edge(self):
        ctl, *_ = make()
        self.assertIs(tap(ctl, "r1-r2", Modifier.ALT), Action.DELETE_EDGE)
        self.assertEqual(ctl.model.edges, {})

    def test_ctrl_click_orphans(self):
        ctl, *_ = make(elements=GROUPED)
        self.assertIs(tap(ctl, "leaf", Modifier.CTRL), Action.ORPHAN_NODE)
        self.assertIsNone(ctl.model.nodes["leaf"].parent)

    def test_delete_node_menu_removes_emptied_group(self):
        ctl, *_ = make(elements=GROUPED)
        self.assertTrue(ctl.select_menu_command("leaf", MenuCommand.DELETE_NODE))
        self.assertNotIn("leaf", ctl.model.nodes)
        self.assertNotIn("g1", ctl.model.nodes)

    def test_add_link_menu_starts_draw(self):
        ctl, *_ = make()
        ctl.select_menu_command("r1", MenuCommand.ADD_LINK)
        self.assertEqual(ctl.edge_draw.source, "r1")

    def test_group_drag_moves_selection_once(self):
        ctl, surface, sender, sched = make(elements=GROUPED)
        grabbed = ctl.begin_drag("g1", "leaf", "r1")
        self.assertEqual(sorted(grabbed), ["g1", "leaf", "r1"])
        ctl.drag_by(10, 5)
        sched.advance(1000)
        self.assertEqual(sender.of_type(OutboundType.SAVE), [])

        ctl.end_drag()
        self.assertEqual((ctl.model.nodes["leaf"].position.x, ctl.model.nodes["leaf"].position.y), (60.0, 85.0))
        self.assertEqual((ctl.model.nodes["r1"].position.x, ctl.model.nodes["r1"].position.y), (10.0, 5.0))
        sched.advance(500)
        self.assertEqual(len(sender.of_type(OutboundType.SAVE)), 1)

    def test_explicit_save_and_undo(self):
        ctl, surface, sender, sched = make()
        ctl.bindings.call("save_topo")
        self.assertFalse(sender.of_type(OutboundType.SAVE)[0][0].payload["suppressNotification"])
        sender.reply(OutboundType.SAVE, {"ok": True})

        ctl.undo()
        sender.reply(OutboundType.UNDO, {"ok": True})
        sched.advance(500)
        self.assertEqual(len(sender.of_type(OutboundType.SAVE)), 1)

        # The undone document is autosaved once it has been reloaded.
        sender.reply(OutboundType.GET_TOPOLOGY, copy.deepcopy(ELEMENTS))
        sched.advance(500)
        self.assertEqual(len(sender.of_type(OutboundType.SAVE)), 2)

    def test_undo_is_not_overwritten_by_stale_model(self):
        ctl, surface, sender, sched = make()
        ctl.model.remove("r2")
        ctl.save_topology()
        sender.reply(OutboundType.SAVE, {"ok": True})

        ctl.undo()
        sender.reply(OutboundType.UNDO, {"ok": True})
        ctl.handle_message({"type": "yaml-saved"})
        sched.advance(2000)
        self.assertEqual(len(sender.of_type(OutboundType.SAVE)), 1)
        self.assertEqual(len(sender.pending(OutboundType.GET_TOPOLOGY)), 2)

        sender.reply(OutboundType.GET_TOPOLOGY, [{"data": {"id": "superseded"}}])
        self.assertEqual(sorted(ctl.model.nodes), ["r1"])
        sched.advance(2000)
        self.assertEqual(len(sender.of_type(OutboundType.SAVE)), 1)

        sender.reply(OutboundType.GET_TOPOLOGY, copy.deepcopy(ELEMENTS))
        self.assertEqual(sorted(ctl.model.nodes), ["r1", "r2"])
        sched.advance(500)
        saves = sender.of_type(OutboundType.SAVE)
        self.assertEqual(len(saves), 2)
        self.assertIn("r2", [el["data"]["id"] for el in saves[-1][0].payload["elements"]])

    def test_reload_refetches(self):
        ctl, surface, sender, sched = make()
        ctl.bindings.call("reload_topo")
        sender.reply(OutboundType.RELOAD)
        self.assertEqual(len(sender.pending(OutboundType.GET_TOPOLOGY)), 1)


class TestDeploymentLock(unittest.TestCase):
    def test_deployed_lab_blocks_editing(self):
        ctl, surface, sender, sched = make()
        ctl.handle_message({"type": "deployment-state-changed", "isLabDeployed": True})
        ctl.handle_message({"type": "deployment-state-changed", "isLabDeployed": True})

        self.assertEqual(len(ctl.interceptors), 1)
        self.assertEqual(surface.cursor, "not-allowed")
        self.assertIs(tap(ctl, "r1", Modifier.SHIFT), Action.IGNORE)
        self.assertIs(tap(ctl, None, Modifier.SHIFT), Action.IGNORE)
        self.assertEqual(ctl.context_menu("r1"), ())
        self.assertEqual(ctl.begin_drag("r1"), [])

        # Runtime patches still land, but nothing is written back.
        ctl.handle_message({"type": "updateTopology", "data": [{"data": {"id": "r1", "name": "up"}}]})
        sched.advance(1000)
        self.assertEqual(sender.of_type(OutboundType.SAVE), [])

        ctl.handle_message({"type": "deployment-state-changed", "isLabDeployed": False})
        self.assertEqual(ctl.interceptors, [])
        self.assertEqual(ctl.context_menu("r1"), (MenuCommand.EDIT_NODE, MenuCommand.DELETE_NODE, MenuCommand.ADD_LINK))

    def test_deployed_at_startup(self):
        ctl, surface, *_ = make(deployed=True)
        self.assertTrue(ctl.lock.locked)
        self.assertFalse(any(n.grabbable for n in ctl.model.nodes.values()))


class TestViewMode(unittest.TestCase):
    def test_inspectors(self):
        ctl, surface, *_ = make(mode="view")
        self.assertIs(tap(ctl, "r1"), Action.OPEN_NODE_INSPECTOR)
        panel = surface.panels["node"]
        self.assertEqual(panel["name"], "clab-lab1-r1")
        self.assertEqual(panel["mgmtIpv4"], "172.20.20.2")
        self.assertEqual(panel["mgmtIpv6"], "N/A")
        self.assertEqual(ctl.selected_node, "clab-lab1-r1")

        self.assertIs(tap(ctl, "r1-r2"), Action.OPEN_LINK_INSPECTOR)
        self.assertNotIn("node", surface.panels)
        self.assertEqual(surface.panels["link"]["endpointA"], "r1 :: e1-1")
        self.assertEqual(surface.panels["link"]["macA"], "N/A")
        self.assertEqual(ctl.model.edges["r1-r2"].line_color, LOADED_EDGE_COLOR)

        self.assertIs(tap(ctl), Action.CLOSE_INSPECTORS)
        self.assertEqual(surface.panels, {})
        self.assertIsNone(ctl.model.edges["r1-r2"].line_color)
        self.assertIsNone(ctl.selected_edge)

    def test_view_mode_never_autosaves(self):
        ctl, surface, sender, sched = make(mode="view")
        ctl.handle_message({"type": "updateTopology", "data": [{"data": {"id": "r1", "name": "x"}}]})
        sched.advance(1000)
        self.assertEqual(sender.of_type(OutboundType.SAVE), [])

    def test_deployed_lab_freezes_annotations(self):
        ctl, surface, sender, sched = make(mode="view", elements=WITH_NOTE)
        self.assertEqual(ctl.context_menu("t1"), (MenuCommand.EDIT_TEXT, MenuCommand.REMOVE_TEXT))

        ctl.handle_message({"type": "deployment-state-changed", "isLabDeployed": True})
        self.assertFalse(ctl.select_menu_command("t1", MenuCommand.REMOVE_TEXT))
        self.assertIn("t1", ctl.model.nodes)
        self.assertFalse(ctl.model.nodes["r1"].grabbable)
        self.assertEqual(ctl.begin_drag("r1"), [])
        # Inspection still works on a deployed lab.
        self.assertIs(tap(ctl, "r1"), Action.OPEN_NODE_INSPECTOR)

        ctl.handle_message({"type": "deployment-state-changed", "isLabDeployed": False})
        self.assertTrue(ctl.select_menu_command("t1", MenuCommand.REMOVE_TEXT))
        self.assertNotIn("t1", ctl.model.nodes)

    def test_overview_toggle(self):
        ctl, surface, *_ = make(mode="view")
        self.assertTrue(ctl.bindings.call("topology_overview"))
        self.assertEqual(surface.panels["overview"]["links"], 1)
        self.assertFalse(ctl.toggle_overview())


class TestDispose(unittest.TestCase):
    def test_dispose_stops_timers_and_sender(self):
        ctl, surface, sender, sched = make()
        tap(ctl, None, Modifier.SHIFT)
        ctl.dispose()
        sched.advance(1000)
        self.assertTrue(sender.disposed)
        self.assertEqual(sender.of_type(OutboundType.SAVE), [])

    def test_late_undo_reply_after_dispose(self):
        ctl, surface, sender, sched = make()
        ctl.undo()
        ctl.dispose()
        sender.reply(OutboundType.UNDO, {"ok": True})
        self.assertEqual(sched.pending(), 0)
        self.assertEqual(sender.pending(OutboundType.GET_TOPOLOGY), [])
        sched.advance(1000)
        self.assertEqual(sender.of_type(OutboundType.SAVE), [])
        self.assertEqual(ctl.session.of_kind("dispose")[0].kind, "dispose")


if __name__ == "__main__":
    unittest.main()
