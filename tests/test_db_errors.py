import os
import sys
import unittest
from types import SimpleNamespace

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

import psycopg2

from app import data_types
from app.db import translate_db_error
from app.errors import ConflictForeignKey, Forbidden, NotFound, Unexpected
from app.stores import MemoryOrganizationStore, MemoryTables


class UndefinedTable(psycopg2.Error):
    pgcode = "42P01"


class FakeDbError(Exception):
    def __init__(self, pgcode, constraint=None):
        super().__init__(f"pgcode {pgcode}")
        self.pgcode = pgcode
        self.diag = SimpleNamespace(constraint_name=constraint)


class MissingTableStore:
    def list(self, organization_ids=None):
        raise UndefinedTable("relation \"data_types\" does not exist")


class BrokenStore:
    def list(self, organization_ids=None):
        raise psycopg2.OperationalError("connection lost")


class TestDbErrorTranslation(unittest.TestCase):
    def test_codes_map_onto_api_errors(self) -> None:
        with self.assertLogs("orgbase.db", level="ERROR"):
            self.assertIsInstance(translate_db_error(FakeDbError("42501"), "/data-types"), Forbidden)
            conflict = translate_db_error(FakeDbError("23503", "data_types_organization_id_fkey"), "/organizations/x")
            other = translate_db_error(FakeDbError("XX000"), "/data-types")
        self.assertIsInstance(conflict, ConflictForeignKey)
        self.assertEqual(conflict.status, 409)
        self.assertEqual(conflict.details[0]["detail"], {"constraint": "data_types_organization_id_fkey"})
        self.assertIsInstance(other, Unexpected)
        self.assertNotIn("XX000", other.message)

    def test_api_errors_pass_through(self) -> None:
        err = NotFound("gone")
        self.assertIs(translate_db_error(err, "/x"), err)

    def test_missing_table_lists_as_empty(self) -> None:
        admin = {"profile_id": "a1", "type": "Administrator"}
        orgs = MemoryOrganizationStore(MemoryTables())
        with self.assertLogs("orgbase", level="WARNING"):
            self.assertEqual(data_types.list_data_types(MissingTableStore(), orgs, admin), [])
        with self.assertRaises(psycopg2.OperationalError):
            data_types.list_data_types(BrokenStore(), orgs, admin)


if __name__ == "__main__":
    unittest.main()
