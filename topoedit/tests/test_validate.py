import unittest

from topoedit.validate import validate_elements


class TestValidateElements(unittest.TestCase):
    def test_well_formed_document(self):
        elements = [
            {"group": "nodes", "data": {"id": "g", "topoViewerRole": "group"}},
            {"group": "nodes", "data": {"id": "a", "parent": "g"}},
            {"group": "nodes", "data": {"id": "b"}},
            {"group": "edges", "data": {"id": "a-b", "source": "a", "target": "b"}},
            {"group": "edges", "data": {"source": "a", "target": "b"}},
        ]
        self.assertEqual(validate_elements(elements), [])

    def test_not_a_list(self):
        self.assertEqual(validate_elements({"elements": []}), ["Top-level must be a list of elements."])

    def test_reports_structural_problems(self):
        problems = validate_elements([
            {"data": {"id": "a"}},
            {"data": {"id": "a"}},
            {"data": {"id": "e", "source": "a", "target": "ghost"}},
            {"data": {"id": "c", "parent": "nowhere"}},
            {"data": {"id": "t", "topoViewerRole": "freeText"}},
            {"data": {"id": "x", "parent": "t"}},
            {"data": {}},
            "junk",
        ])
        self.assertIn("Duplicate element id: a", problems)
        self.assertIn("Edge e references missing node 'ghost'.", problems)
        self.assertIn("Node c references missing parent 'nowhere'.", problems)
        self.assertIn("Node x has parent 't' which cannot contain nodes.", problems)
        self.assertIn("elements[6].data.id must be a non-empty string.", problems)
        self.assertIn("elements[7] must be an object with a 'data' object.", problems)

    def test_parent_cycle_reported_once(self):
        problems = validate_elements([
            {"data": {"id": "p", "parent": "q"}},
            {"data": {"id": "q", "parent": "p"}},
        ])
        cycles = [p for p in problems if p.startswith("Parent cycle")]
        self.assertEqual(cycles, ["Parent cycle: p -> q -> p"])


if __name__ == "__main__":
    unittest.main()
