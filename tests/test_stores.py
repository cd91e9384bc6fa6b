import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.errors import ConflictForeignKey
from app.stores import (
    MemoryCustomerStore,
    MemoryDataTypeStore,
    MemoryEntryStore,
    MemoryOrganizationStore,
    MemoryProfileStore,
    MemoryTables,
)


class TestMemoryStores(unittest.TestCase):
    def setUp(self) -> None:
        tables = MemoryTables()
        self.orgs = MemoryOrganizationStore(tables)
        self.profiles = MemoryProfileStore(tables)
        self.customers = MemoryCustomerStore(tables)
        self.data_types = MemoryDataTypeStore(tables)
        self.entries = MemoryEntryStore(tables)

    def test_organization_profiles_are_flattened(self) -> None:
        ada = self.profiles.create({"email": "Ada@Example.com", "full_name": "Ada"})
        org = self.orgs.create({"name": "Acme"}, [ada["id"], ada["id"]])
        self.assertEqual(org["profiles"], [{"id": ada["id"], "full_name": "Ada", "email": "ada@example.com"}])
        self.assertEqual(self.profiles.get(ada["id"])["organization_ids"], [org["id"]])
        self.assertEqual(self.orgs.list_for_profile(ada["id"]), [{"id": org["id"], "name": "Acme", "industry": None, "contact": None}])

    def test_unknown_profile_link_rejects_whole_write(self) -> None:
        with self.assertRaises(ConflictForeignKey):
            self.orgs.create({"name": "Acme"}, ["missing"])
        self.assertEqual(self.orgs.list(), [])

    def test_update_replaces_links_only_when_given(self) -> None:
        a = self.profiles.create({"email": "a@example.com"})
        b = self.profiles.create({"email": "b@example.com"})
        org = self.orgs.create({"name": "Acme"}, [a["id"]])
        org = self.orgs.update(org["id"], {"industry": "Retail"})
        self.assertEqual([p["id"] for p in org["profiles"]], [a["id"]])
        org = self.orgs.update(org["id"], {}, [b["id"]])
        self.assertEqual([p["id"] for p in org["profiles"]], [b["id"]])
        self.assertEqual(org["industry"], "Retail")

    def test_list_is_newest_first(self) -> None:
        first = self.orgs.create({"name": "One"})
        second = self.orgs.create({"name": "Two"})
        self.assertEqual([o["id"] for o in self.orgs.list()], [second["id"], first["id"]])
        self.assertEqual([o["id"] for o in self.orgs.list([first["id"]])], [first["id"]])

    def test_organization_delete_refused_while_it_owns_data_types(self) -> None:
        org = self.orgs.create({"name": "Acme"})
        dt = self.data_types.create({"name": "Invoice", "organization_id": org["id"], "fields": [{"name": "a", "type": "string"}]})
        with self.assertRaises(ConflictForeignKey):
            self.orgs.delete(org["id"])
        self.data_types.delete(dt["id"])
        self.assertTrue(self.orgs.delete(org["id"]))
        self.assertFalse(self.orgs.delete(org["id"]))

    def test_data_type_version_bumps_on_field_change(self) -> None:
        org = self.orgs.create({"name": "Acme"})
        fields = [{"name": "a", "type": "string"}]
        dt = self.data_types.create({"name": "T", "organization_id": org["id"], "fields": fields})
        self.assertEqual(dt["version"], 1)
        dt = self.data_types.update(dt["id"], {"name": "T2", "organization_id": org["id"], "fields": fields})
        self.assertEqual(dt["version"], 1)
        dt = self.data_types.update(dt["id"], {"name": "T2", "organization_id": org["id"], "fields": fields + [{"name": "b", "type": "number"}]})
        self.assertEqual(dt["version"], 2)
        with self.assertRaises(ConflictForeignKey):
            self.data_types.create({"name": "X", "organization_id": "nope", "fields": fields})

    def test_entries_survive_data_type_delete(self) -> None:
        org = self.orgs.create({"name": "Acme"})
        dt = self.data_types.create({"name": "T", "organization_id": org["id"], "fields": []})
        entry = self.entries.create({"data_type_id": dt["id"], "organization_id": org["id"], "data": {"a": 1}})
        self.data_types.delete(dt["id"])
        self.assertEqual(self.entries.list(dt["id"])[0]["id"], entry["id"])
        self.assertEqual(set(self.entries.get_many([entry["id"], "missing"])), {entry["id"]})

    def test_profile_delete_cleans_links(self) -> None:
        p = self.profiles.create({"email": "p@example.com"})
        org = self.orgs.create({"name": "Acme"}, [p["id"]])
        customer = self.customers.create({"name": "Buyer"}, [p["id"]])
        self.assertTrue(self.profiles.delete(p["id"]))
        self.assertEqual(self.orgs.get(org["id"])["profiles"], [])
        self.assertEqual(self.customers.get(customer["id"])["profiles"], [])
        self.assertIsNone(self.profiles.get_by_email("p@example.com"))

    def test_rekey_moves_profile_and_links(self) -> None:
        p = self.profiles.create({"email": "p@example.com", "type": "Manager"})
        org = self.orgs.create({"name": "Acme"}, [p["id"]])
        customer = self.customers.create({"name": "Buyer"}, [p["id"]])
        moved = self.profiles.rekey(p["id"], "idp-1")
        self.assertEqual((moved["id"], moved["type"], moved["organization_ids"]), ("idp-1", "Manager", [org["id"]]))
        self.assertIsNone(self.profiles.get(p["id"]))
        self.assertEqual([x["id"] for x in self.customers.get(customer["id"])["profiles"]], ["idp-1"])
        self.assertIsNone(self.profiles.rekey("missing", "idp-2"))


if __name__ == "__main__":
    unittest.main()
