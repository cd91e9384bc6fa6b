import os
import sys
import unittest
from unittest import mock

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app import data_entries as ops
from app import data_types
from app.errors import BadRequest, Forbidden, MissingRequiredField, NotFound, ValidationFailed
from app.stores import MemoryDataTypeStore, MemoryEntryStore, MemoryOrganizationStore, MemoryTables


ADMIN = {"profile_id": "a1", "type": "Administrator", "current_organization_id": None, "organization_ids": []}


class TestEntryOperations(unittest.TestCase):
    def setUp(self) -> None:
        tables = MemoryTables()
        self.orgs = MemoryOrganizationStore(tables)
        self.types = MemoryDataTypeStore(tables)
        self.entries = MemoryEntryStore(tables)
        self.acme = self.orgs.create({"name": "Acme"})
        self.globex = self.orgs.create({"name": "Globex"})
        self.invoice = data_types.create_data_type(
            self.types,
            self.orgs,
            ADMIN,
            {
                "name": "Invoice",
                "organization_id": self.acme["id"],
                "fields": [{"name": "amount", "type": "number"}, {"name": "paid", "type": "boolean"}],
            },
        )

    def _user(self, org):
        return {"profile_id": "u1", "type": "User", "current_organization_id": org["id"], "organization_ids": [org["id"]]}

    def _create(self, data, actor=ADMIN, data_type=None):
        data_type = data_type or self.invoice
        payload = {"data_type_id": data_type["id"], "organization_id": data_type["organization_id"], "data": data}
        return ops.create_entry(self.types, self.entries, actor, payload)

    def test_invoice_scenario(self) -> None:
        entry = self._create({"amount": "100", "paid": True})
        self.assertEqual(entry["data"], {"amount": 100, "paid": True})
        self.assertEqual(entry["data_type_version"], 1)
        self.assertEqual(entry["created_by"], "a1")
        stored = ops.list_entries(self.types, self.entries, self._user(self.acme), self.invoice["id"])
        self.assertEqual([e["data"] for e in stored], [{"amount": 100, "paid": True}])

    def test_missing_inputs(self) -> None:
        with self.assertRaises(MissingRequiredField):
            ops.create_entry(self.types, self.entries, ADMIN, {"data_type_id": self.invoice["id"], "data": {}})
        with self.assertRaises(BadRequest):
            self._create(["amount"])
        with self.assertRaises(MissingRequiredField):
            ops.list_entries(self.types, self.entries, ADMIN, None)

    def test_validation_failures(self) -> None:
        with self.assertRaises(ValidationFailed) as ctx:
            self._create({"amount": "abc", "colour": "red"})
        codes = sorted(d["code"] for d in ctx.exception.details)
        self.assertEqual(codes, ["INVALID_NUMBER", "UNKNOWN_FIELD"])

    def test_organization_must_match_data_type(self) -> None:
        with self.assertRaises(BadRequest) as ctx:
            ops.create_entry(
                self.types,
                self.entries,
                ADMIN,
                {"data_type_id": self.invoice["id"], "organization_id": self.globex["id"], "data": {}},
            )
        self.assertEqual(ctx.exception.code, "ORGANIZATION_MISMATCH")

    def test_unknown_data_type(self) -> None:
        with self.assertRaises(NotFound):
            ops.create_entry(self.types, self.entries, ADMIN, {"data_type_id": "nope", "organization_id": self.acme["id"], "data": {}})
        with self.assertRaises(NotFound):
            ops.list_entries(self.types, self.entries, ADMIN, "nope")

    def test_other_organizations_are_forbidden(self) -> None:
        outsider = self._user(self.globex)
        with self.assertRaises(Forbidden):
            self._create({"amount": 1}, actor=outsider)
        with self.assertRaises(Forbidden):
            ops.list_entries(self.types, self.entries, outsider, self.invoice["id"])
        entry = self._create({"amount": 1})
        with self.assertRaises(Forbidden):
            ops.delete_entry(self.entries, outsider, entry["id"])

    def test_update_replaces_data(self) -> None:
        entry = self._create({"amount": 1, "paid": True})
        updated = ops.update_entry(self.types, self.entries, self._user(self.acme), entry["id"], {"data": {"amount": "2.5"}})
        self.assertEqual(updated["data"], {"amount": 2.5, "paid": False})
        with self.assertRaises(MissingRequiredField):
            ops.update_entry(self.types, self.entries, ADMIN, entry["id"], {})

    def test_outsider_gets_forbidden_before_organization_mismatch(self) -> None:
        outsider = self._user(self.globex)
        payload = {"data_type_id": self.invoice["id"], "organization_id": self.globex["id"], "data": {"amount": 1}}
        with self.assertRaises(Forbidden):
            ops.create_entry(self.types, self.entries, outsider, payload)

    def test_edit_after_field_removal_keeps_stored_keys(self) -> None:
        entry = self._create({"amount": 1, "paid": True})
        updated_type = data_types.update_data_type(
            self.types,
            self.orgs,
            ADMIN,
            self.invoice["id"],
            {"name": "Invoice", "organization_id": self.acme["id"], "fields": [{"name": "amount", "type": "number"}]},
        )
        self.assertEqual(updated_type["dropped_fields"], ["paid"])

        stored = ops.get_entry(self.types, self.entries, ADMIN, entry["id"])
        data = dict(stored["data"], amount="7")
        updated = ops.update_entry(self.types, self.entries, self._user(self.acme), entry["id"], {"data": data})
        self.assertEqual(updated["data"], {"amount": 7, "paid": True})
        self.assertEqual(updated["data_type_version"], 2)

        with self.assertRaises(ValidationFailed) as ctx:
            ops.update_entry(self.types, self.entries, ADMIN, entry["id"], {"data": {"amount": 1, "colour": "red"}})
        self.assertEqual(ctx.exception.code, "UNKNOWN_FIELD")

    def test_orphaned_entries_cannot_be_updated(self) -> None:
        entry = self._create({"amount": 1})
        data_types.delete_data_type(self.types, ADMIN, self.invoice["id"])
        with self.assertRaises(NotFound):
            ops.update_entry(self.types, self.entries, ADMIN, entry["id"], {"data": {"amount": 2}})
        self.assertEqual(ops.get_entry(self.types, self.entries, ADMIN, entry["id"])["references"], [])

    def test_references_resolve_at_read_time(self) -> None:
        customer_type = data_types.create_data_type(
            self.types,
            self.orgs,
            ADMIN,
            {"name": "Customer", "organization_id": self.acme["id"], "fields": [{"name": "name", "type": "string"}]},
        )
        order_type = data_types.create_data_type(
            self.types,
            self.orgs,
            ADMIN,
            {
                "name": "Order",
                "organization_id": self.acme["id"],
                "fields": [
                    {"name": "customer", "type": "reference", "referenceDataTypeId": customer_type["id"]},
                    {"name": "invoice", "type": "reference", "referenceDataTypeId": customer_type["id"]},
                ],
            },
        )
        customer = self._create({"name": "Ada"}, data_type=customer_type)
        invoice = self._create({"amount": 1})
        order = self._create({"customer": customer["id"], "invoice": invoice["id"]}, data_type=order_type)

        refs = ops.get_entry(self.types, self.entries, ADMIN, order["id"])["references"]
        self.assertEqual(
            refs,
            [
                {"field": "customer", "id": customer["id"], "data_type_id": customer_type["id"], "resolved": True},
                {"field": "invoice", "id": invoice["id"], "data_type_id": customer_type["id"], "resolved": False},
            ],
        )

        self.assertEqual(ops.delete_entry(self.entries, ADMIN, customer["id"]), {"message": "Dynamic data entry deleted successfully"})
        refs = ops.get_entry(self.types, self.entries, ADMIN, order["id"])["references"]
        self.assertFalse(refs[0]["resolved"])

    def test_strict_dropdown_flag(self) -> None:
        status_type = data_types.create_data_type(
            self.types,
            self.orgs,
            ADMIN,
            {
                "name": "Ticket",
                "organization_id": self.acme["id"],
                "fields": [{"name": "status", "type": "dropdown", "options": ["open", "closed"]}],
            },
        )
        self.assertEqual(self._create({"status": "other"}, data_type=status_type)["data"], {"status": "other"})
        with mock.patch.dict(os.environ, {"ORGBASE_STRICT_DROPDOWN": "1"}):
            with self.assertRaises(ValidationFailed) as ctx:
                self._create({"status": "other"}, data_type=status_type)
        self.assertEqual(ctx.exception.code, "INVALID_OPTION")


if __name__ == "__main__":
    unittest.main()
