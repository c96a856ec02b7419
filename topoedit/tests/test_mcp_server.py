import os
import unittest
from unittest import mock

from mcp_server.topo_mcp_server import next_interface_name, validate_topology_elements

ELEMENTS = [
    {"group": "nodes", "data": {"id": "r1", "extraData": {"kind": "nokia_srlinux"}}},
    {"group": "nodes", "data": {"id": "h1", "extraData": {"kind": "linux"}}},
    {
        "group": "edges",
        "data": {"id": "r1-h1", "source": "r1", "target": "h1",
                 "sourceEndpoint": "e1-1", "targetEndpoint": "eth1"},
    },
]


class TestMcpTools(unittest.TestCase):
    def test_validate_tool(self):
        self.assertEqual(validate_topology_elements(ELEMENTS), {"ok": True, "problems": []})

        res = validate_topology_elements([{"data": {"id": "e", "source": "a", "target": "b"}}])
        self.assertFalse(res["ok"])
        self.assertTrue(res["problems"])

    def test_next_interface_name(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            res = next_interface_name(ELEMENTS, "r1")
            custom = next_interface_name(ELEMENTS, "h1", patterns={"linux": "ens{n}"})
        self.assertEqual(res, {"ok": True, "node": "r1", "kind": "nokia_srlinux", "interface": "e1-2"})
        # eth1 does not match the overriding pattern, so numbering starts over
        self.assertEqual(custom["interface"], "ens1")

    def test_unknown_node(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            res = next_interface_name(ELEMENTS, "ghost")
        self.assertFalse(res["ok"])
        self.assertIn("ghost", res["error"])


if __name__ == "__main__":
    unittest.main()
