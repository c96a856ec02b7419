import unittest

from pydantic import ValidationError

from topoedit.messages import (
    DeploymentStateChanged,
    ElementPatch,
    OutboundMessage,
    OutboundType,
    UpdateTopology,
    YamlSaved,
    parse_inbound,
)


class TestInbound(unittest.TestCase):
    def test_known_types(self):
        self.assertIsInstance(parse_inbound({"type": "yaml-saved"}), YamlSaved)

        msg = parse_inbound({"type": "deployment-state-changed", "isLabDeployed": True})
        self.assertIsInstance(msg, DeploymentStateChanged)
        self.assertTrue(msg.isLabDeployed)

    def test_topology_patch(self):
        msg = parse_inbound({
            "type": "updateTopology",
            "data": [
                {"data": {"id": "r1", "name": "r1"}, "classes": "running", "position": {"x": 1, "y": 2}},
                {"data": {"name": "no id"}},
            ],
        })
        self.assertIsInstance(msg, UpdateTopology)
        first, second = (ElementPatch.model_validate(raw) for raw in msg.data)
        self.assertEqual(first.id, "r1")
        self.assertEqual(first.to_element()["classes"], "running")
        self.assertIsNone(second.id)

    def test_bad_patch_element_does_not_reject_message(self):
        msg = parse_inbound({"type": "updateTopology", "data": [{"data": {"id": "n1"}}, {"data": None}]})
        self.assertEqual(len(msg.data), 2)
        with self.assertRaises(ValidationError):
            ElementPatch.model_validate(msg.data[1])

    def test_unknown_and_non_dict_messages_ignored(self):
        self.assertIsNone(parse_inbound({"type": "something-else"}))
        self.assertIsNone(parse_inbound("yaml-saved"))
        self.assertIsNone(parse_inbound({}))

    def test_malformed_known_message_raises(self):
        with self.assertRaises(ValidationError):
            parse_inbound({"type": "deployment-state-changed", "isLabDeployed": "maybe"})
        with self.assertRaises(ValidationError):
            parse_inbound({"type": "updateTopology", "data": "not a list"})


class TestOutbound(unittest.TestCase):
    def test_save_payload(self):
        msg = OutboundMessage.save([{"data": {"id": "a"}}], suppress_notification=False)
        dumped = msg.model_dump(mode="json")
        self.assertEqual(dumped["type"], "topo-editor-save")
        self.assertEqual(dumped["payload"], {"elements": [{"data": {"id": "a"}}], "suppressNotification": False})

    def test_request_types(self):
        self.assertIs(OutboundMessage.get_topology().type, OutboundType.GET_TOPOLOGY)
        self.assertEqual(OutboundMessage.get_environment(["clab-name"]).payload, {"keys": ["clab-name"]})
        self.assertEqual(OutboundMessage.undo().type.value, "topo-editor-undo")
        self.assertEqual(OutboundMessage.reload().type.value, "topo-editor-reload")


if __name__ == "__main__":
    unittest.main()
