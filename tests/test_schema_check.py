import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from orgbase import check_fields, dropped_field_names, normalize_fields


def _codes(issues):
    return [(i["code"], i["path"]) for i in issues]


class TestSchemaCheck(unittest.TestCase):
    def test_valid_field_list(self) -> None:
        fields = normalize_fields(
            [
                {"name": "amount", "type": "number"},
                {"name": "status", "type": "dropdown", "options": ["open", "paid"]},
                {"name": "customer", "type": "reference", "referenceDataTypeId": "dt-1"},
                {"name": "notes", "type": "text", "required": True},
            ]
        )
        self.assertEqual(check_fields(fields), [])
        self.assertEqual(fields[3], {"name": "notes", "type": "string", "required": True})

    def test_empty_list(self) -> None:
        self.assertEqual(_codes(check_fields([])), [("MISSING_REQUIRED_FIELD", "fields")])
        self.assertEqual(_codes(check_fields(normalize_fields(None))), [("MISSING_REQUIRED_FIELD", "fields")])

    def test_duplicate_and_blank_names(self) -> None:
        fields = normalize_fields(
            [
                {"name": "a", "type": "string"},
                {"name": " a ", "type": "number"},
                {"name": "", "type": "string"},
            ]
        )
        self.assertEqual(
            _codes(check_fields(fields)),
            [("DUPLICATE_FIELD", "fields[1].name"), ("INVALID_FIELD", "fields[2].name")],
        )

    def test_type_specific_metadata(self) -> None:
        fields = normalize_fields(
            [
                {"name": "s", "type": "dropdown", "options": []},
                {"name": "r", "type": "reference"},
                {"name": "x", "type": "colour"},
            ]
        )
        self.assertEqual(
            _codes(check_fields(fields)),
            [
                ("INVALID_FIELD", "fields[0].options"),
                ("INVALID_FIELD", "fields[1].referenceDataTypeId"),
                ("INVALID_FIELD", "fields[2].type"),
            ],
        )

    def test_dropped_field_names(self) -> None:
        before = [{"name": "a"}, {"name": "b"}, {"name": "c"}]
        after = [{"name": "c"}, {"name": "d"}]
        self.assertEqual(dropped_field_names(before, after), ["a", "b"])
        self.assertEqual(dropped_field_names(before, before), [])


if __name__ == "__main__":
    unittest.main()
