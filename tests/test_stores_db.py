import os
import sys
import unittest
import uuid

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

import psycopg2

from app.db import get_db_stats, reset_db_stats, translate_db_error
from app.errors import ConflictForeignKey
from app.stores_db import DbDataTypeStore, DbEntryStore, DbOrganizationStore, DbProfileStore

DB_ENABLED = os.getenv("USE_DB", "").strip() == "1" and bool(os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL"))


@unittest.skipUnless(DB_ENABLED, "USE_DB=1 and a database URL are required")
class TestDbStores(unittest.TestCase):
    def setUp(self) -> None:
        self.orgs = DbOrganizationStore()
        self.profiles = DbProfileStore()
        self.types = DbDataTypeStore()
        self.entries = DbEntryStore()
        self.profile = self.profiles.create({"id": f"db-{uuid.uuid4().hex}", "email": f"{uuid.uuid4().hex}@example.com"})
        self.org = self.orgs.create({"name": "Acme"}, [self.profile["id"]])

    def tearDown(self) -> None:
        for dt in self.types.list([self.org["id"]]):
            self.types.delete(dt["id"])
        self.orgs.delete(self.org["id"])
        self.profiles.delete(self.profile["id"])

    def test_links_and_queries_are_named(self) -> None:
        reset_db_stats()
        org = self.orgs.get(self.org["id"])
        self.assertEqual([p["id"] for p in org["profiles"]], [self.profile["id"]])
        self.assertIn("organizations.get", get_db_stats()["names"])
        self.assertEqual(self.profiles.organization_ids(self.profile["id"]), [self.org["id"]])

    def test_data_type_and_entry_round(self) -> None:
        fields = [{"name": "amount", "type": "number"}]
        dt = self.types.create({"name": "Invoice", "organization_id": self.org["id"], "fields": fields})
        self.assertEqual((dt["version"], dt["fields"]), (1, fields))
        entry = self.entries.create({"data_type_id": dt["id"], "organization_id": self.org["id"], "data": {"amount": 100}, "data_type_version": 1})
        self.assertEqual(entry["data"], {"amount": 100})
        dt = self.types.update(dt["id"], {"name": "Invoice", "organization_id": self.org["id"], "fields": fields + [{"name": "paid", "type": "boolean"}]})
        self.assertEqual(dt["version"], 2)
        self.assertIsNone(self.types.get("not-a-uuid"))

    def test_rekey_carries_links(self) -> None:
        invited = self.profiles.create({"email": f"{uuid.uuid4().hex}@example.com"}, [self.org["id"]])
        new_id = f"idp-{uuid.uuid4().hex}"
        moved = self.profiles.rekey(invited["id"], new_id)
        self.addCleanup(self.profiles.delete, new_id)
        self.assertEqual(moved["organization_ids"], [self.org["id"]])
        self.assertIsNone(self.profiles.get(invited["id"]))

    def test_organization_with_data_types_cannot_be_deleted(self) -> None:
        self.types.create({"name": "T", "organization_id": self.org["id"], "fields": [{"name": "a", "type": "string"}]})
        with self.assertRaises(psycopg2.Error) as ctx:
            self.orgs.delete(self.org["id"])
        self.assertIsInstance(translate_db_error(ctx.exception, "/organizations"), ConflictForeignKey)


if __name__ == "__main__":
    unittest.main()
