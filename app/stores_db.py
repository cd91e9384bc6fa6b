"""Postgres-backed stores (USE_DB=1).

Each public method runs inside a single ``get_conn()`` block, so multi-step
writes such as "insert organization, then its profile links" commit or roll
back together.
"""

from __future__ import annotations

import copy
import json
import uuid
from typing import Any, Iterable

from app.db import execute, fetch_all, fetch_one, get_conn


def _json_dumps(value: object) -> str:
    return json.dumps(value, default=str)


def _ensure_json(value, default=None):
    if value is None:
        return copy.deepcopy(default)
    if isinstance(value, str):
        return json.loads(value)
    return value


def _to_iso(value):
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value


def _is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except (TypeError, ValueError):
        return False


def _dedupe(ids: Iterable[str] | None) -> list[str]:
    return list(dict.fromkeys(str(i) for i in (ids or []) if i))


def _stamp(row: dict) -> dict:
    for key in ("created_at", "updated_at"):
        if key in row:
            row[key] = _to_iso(row[key])
    if "id" in row and row["id"] is not None:
        row["id"] = str(row["id"])
    return row


_PROFILE_AGG = """
    coalesce(
      json_agg(json_build_object('id', p.id, 'full_name', p.full_name, 'email', p.email))
        filter (where p.id is not null),
      '[]'::json
    ) as profiles
"""


def _org_from_row(row: dict) -> dict:
    org = _stamp(dict(row))
    org["profiles"] = _ensure_json(org.get("profiles"), [])
    return org


class DbOrganizationStore:
    def _select(self, conn, where: str, params: list, query_name: str) -> list[dict]:
        rows = fetch_all(
            conn,
            f"""
            select o.id, o.name, o.contact, o.industry, o.created_at, o.updated_at,
            {_PROFILE_AGG}
            from organizations o
            left join organization_profiles op on op.organization_id = o.id
            left join profiles p on p.id = op.profile_id
            {where}
            group by o.id
            order by o.created_at desc
            """,
            params,
            query_name=query_name,
        )
        return [_org_from_row(r) for r in rows]

    def list(self, organization_ids: list[str] | None = None) -> list[dict]:
        with get_conn() as conn:
            if organization_ids is None:
                return self._select(conn, "", [], "organizations.list")
            ids = [i for i in organization_ids if _is_uuid(i)]
            if not ids:
                return []
            return self._select(conn, "where o.id = any(%s::uuid[])", [ids], "organizations.list_by_ids")

    def get(self, organization_id: str) -> dict | None:
        if not _is_uuid(organization_id):
            return None
        with get_conn() as conn:
            rows = self._select(conn, "where o.id = %s", [organization_id], "organizations.get")
        return rows[0] if rows else None

    def exists(self, organization_id: str) -> bool:
        if not _is_uuid(organization_id):
            return False
        with get_conn() as conn:
            row = fetch_one(conn, "select id from organizations where id=%s", [organization_id], query_name="organizations.exists")
        return bool(row)

    def names(self, organization_ids: Iterable[str]) -> dict[str, str]:
        ids = [i for i in organization_ids if _is_uuid(i)]
        if not ids:
            return {}
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select id, name from organizations where id = any(%s::uuid[])",
                [ids],
                query_name="organizations.names",
            )
        return {str(r["id"]): r["name"] for r in rows}

    def _replace_links(self, conn, organization_id: str, profile_ids: list[str]) -> None:
        execute(
            conn,
            "delete from organization_profiles where organization_id=%s",
            [organization_id],
            query_name="organization_profiles.delete_by_org",
        )
        for profile_id in profile_ids:
            execute(
                conn,
                """
                insert into organization_profiles (organization_id, profile_id)
                values (%s, %s)
                on conflict (organization_id, profile_id) do nothing
                """,
                [organization_id, profile_id],
                query_name="organization_profiles.insert",
            )

    def create(self, values: dict, profile_ids: list[str] | None = None) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                """
                insert into organizations (name, contact, industry)
                values (%s, %s, %s)
                returning id
                """,
                [values.get("name"), values.get("contact"), values.get("industry")],
                query_name="organizations.insert",
            )
            organization_id = str(row["id"])
            self._replace_links(conn, organization_id, _dedupe(profile_ids))
            return self._select(conn, "where o.id = %s", [organization_id], "organizations.get")[0]

    def update(self, organization_id: str, values: dict, profile_ids: list[str] | None = None) -> dict | None:
        if not _is_uuid(organization_id):
            return None
        sets = [f"{key}=%s" for key in ("name", "contact", "industry") if key in values]
        params = [values[key] for key in ("name", "contact", "industry") if key in values]
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                update organizations
                set {", ".join(sets + ["updated_at=now()"])}
                where id=%s
                returning id
                """,
                params + [organization_id],
                query_name="organizations.update",
            )
            if not row:
                return None
            if profile_ids is not None:
                self._replace_links(conn, organization_id, _dedupe(profile_ids))
            return self._select(conn, "where o.id = %s", [organization_id], "organizations.get")[0]

    def delete(self, organization_id: str) -> bool:
        if not _is_uuid(organization_id):
            return False
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "delete from organizations where id=%s returning id",
                [organization_id],
                query_name="organizations.delete",
            )
        return bool(row)

    def list_for_profile(self, profile_id: str) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                """
                select o.id, o.name, o.industry, o.contact
                from organization_profiles op
                join organizations o on o.id = op.organization_id
                where op.profile_id=%s
                order by lower(o.name) asc
                """,
                [profile_id],
                query_name="organization_profiles.list_by_profile",
            )
        return [_stamp(r) for r in rows]


class DbProfileStore:
    _COLUMNS = "p.id, p.email, p.full_name, p.type, p.needs_password_setup, p.created_at, p.updated_at"
    _ORG_AGG = """
        coalesce(
          array_agg(op.organization_id::text) filter (where op.organization_id is not null),
          '{}'
        ) as organization_ids
    """

    def _select(self, conn, where: str, params: list, query_name: str) -> list[dict]:
        rows = fetch_all(
            conn,
            f"""
            select {self._COLUMNS}, {self._ORG_AGG}
            from profiles p
            left join organization_profiles op on op.profile_id = p.id
            {where}
            group by p.id
            order by p.created_at desc
            """,
            params,
            query_name=query_name,
        )
        out = []
        for row in rows:
            item = _stamp(dict(row))
            item["organization_ids"] = list(item.get("organization_ids") or [])
            out.append(item)
        return out

    def organization_ids(self, profile_id: str) -> list[str]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select organization_id::text as organization_id from organization_profiles where profile_id=%s",
                [profile_id],
                query_name="organization_profiles.ids_by_profile",
            )
        return [r["organization_id"] for r in rows]

    def list(self, organization_id: str | None = None, profile_ids: list[str] | None = None) -> list[dict]:
        clauses: list[str] = []
        params: list = []
        if organization_id is not None:
            if not _is_uuid(organization_id):
                return []
            clauses.append(
                "p.id in (select profile_id from organization_profiles where organization_id=%s)"
            )
            params.append(organization_id)
        if profile_ids is not None:
            clauses.append("p.id = any(%s)")
            params.append(list(profile_ids))
        where = ("where " + " and ".join(clauses)) if clauses else ""
        with get_conn() as conn:
            return self._select(conn, where, params, "profiles.list")

    def get(self, profile_id: str) -> dict | None:
        with get_conn() as conn:
            rows = self._select(conn, "where p.id=%s", [profile_id], "profiles.get")
        return rows[0] if rows else None

    def get_by_email(self, email: str) -> dict | None:
        with get_conn() as conn:
            rows = self._select(conn, "where lower(p.email)=lower(%s)", [(email or "").strip()], "profiles.get_by_email")
        return rows[0] if rows else None

    def create(self, values: dict, organization_ids: list[str] | None = None) -> dict:
        profile_id = values.get("id") or str(uuid.uuid4())
        with get_conn() as conn:
            execute(
                conn,
                """
                insert into profiles (id, email, full_name, type, needs_password_setup)
                values (%s, %s, %s, %s, %s)
                """,
                [
                    profile_id,
                    (values.get("email") or "").strip().lower(),
                    values.get("full_name"),
                    values.get("type") or "User",
                    bool(values.get("needs_password_setup")),
                ],
                query_name="profiles.insert",
            )
            for organization_id in _dedupe(organization_ids):
                execute(
                    conn,
                    "insert into organization_profiles (organization_id, profile_id) values (%s, %s)",
                    [organization_id, profile_id],
                    query_name="organization_profiles.insert",
                )
            return self._select(conn, "where p.id=%s", [profile_id], "profiles.get")[0]

    def update(self, profile_id: str, values: dict) -> dict | None:
        keys = [k for k in ("email", "full_name", "type", "needs_password_setup") if k in values]
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                update profiles
                set {", ".join([f"{k}=%s" for k in keys] + ["updated_at=now()"])}
                where id=%s
                returning id
                """,
                [values[k] for k in keys] + [profile_id],
                query_name="profiles.update",
            )
            if not row:
                return None
            return self._select(conn, "where p.id=%s", [profile_id], "profiles.get")[0]

    def rekey(self, profile_id: str, new_id: str) -> dict | None:
        # Link tables follow through "on update cascade".
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "update profiles set id=%s, updated_at=now() where id=%s returning id",
                [new_id, profile_id],
                query_name="profiles.rekey",
            )
            if not row:
                return None
            return self._select(conn, "where p.id=%s", [new_id], "profiles.get")[0]

    def delete(self, profile_id: str) -> bool:
        with get_conn() as conn:
            row = fetch_one(conn, "delete from profiles where id=%s returning id", [profile_id], query_name="profiles.delete")
        return bool(row)


class DbCustomerStore:
    def _select(self, conn, where: str, params: list, query_name: str) -> list[dict]:
        rows = fetch_all(
            conn,
            f"""
            select c.id, c.name, c.contact, c.industry, c.created_at, c.updated_at,
            {_PROFILE_AGG}
            from customers c
            left join customer_profiles cp on cp.customer_id = c.id
            left join profiles p on p.id = cp.profile_id
            {where}
            group by c.id
            order by c.created_at desc
            """,
            params,
            query_name=query_name,
        )
        return [_org_from_row(r) for r in rows]

    def _replace_links(self, conn, customer_id: str, profile_ids: list[str]) -> None:
        execute(conn, "delete from customer_profiles where customer_id=%s", [customer_id], query_name="customer_profiles.delete_by_customer")
        for profile_id in profile_ids:
            execute(
                conn,
                "insert into customer_profiles (customer_id, profile_id) values (%s, %s)",
                [customer_id, profile_id],
                query_name="customer_profiles.insert",
            )

    def list(self) -> list[dict]:
        with get_conn() as conn:
            return self._select(conn, "", [], "customers.list")

    def get(self, customer_id: str) -> dict | None:
        if not _is_uuid(customer_id):
            return None
        with get_conn() as conn:
            rows = self._select(conn, "where c.id=%s", [customer_id], "customers.get")
        return rows[0] if rows else None

    def create(self, values: dict, profile_ids: list[str] | None = None) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "insert into customers (name, contact, industry) values (%s, %s, %s) returning id",
                [values.get("name"), values.get("contact"), values.get("industry")],
                query_name="customers.insert",
            )
            customer_id = str(row["id"])
            self._replace_links(conn, customer_id, _dedupe(profile_ids))
            return self._select(conn, "where c.id=%s", [customer_id], "customers.get")[0]

    def update(self, customer_id: str, values: dict, profile_ids: list[str] | None = None) -> dict | None:
        if not _is_uuid(customer_id):
            return None
        keys = [k for k in ("name", "contact", "industry") if k in values]
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                update customers
                set {", ".join([f"{k}=%s" for k in keys] + ["updated_at=now()"])}
                where id=%s
                returning id
                """,
                [values[k] for k in keys] + [customer_id],
                query_name="customers.update",
            )
            if not row:
                return None
            if profile_ids is not None:
                self._replace_links(conn, customer_id, _dedupe(profile_ids))
            return self._select(conn, "where c.id=%s", [customer_id], "customers.get")[0]

    def delete(self, customer_id: str) -> bool:
        if not _is_uuid(customer_id):
            return False
        with get_conn() as conn:
            row = fetch_one(conn, "delete from customers where id=%s returning id", [customer_id], query_name="customers.delete")
        return bool(row)


def _data_type_from_row(row: dict) -> dict:
    item = _stamp(dict(row))
    item["organization_id"] = str(item["organization_id"])
    item["fields"] = _ensure_json(item.get("fields"), [])
    return item


class DbDataTypeStore:
    _COLUMNS = "id, name, organization_id, fields, version, created_at, updated_at"

    def list(self, organization_ids: list[str] | None = None) -> list[dict]:
        with get_conn() as conn:
            if organization_ids is None:
                rows = fetch_all(
                    conn,
                    f"select {self._COLUMNS} from data_types order by created_at desc",
                    [],
                    query_name="data_types.list",
                )
            else:
                ids = [i for i in organization_ids if _is_uuid(i)]
                if not ids:
                    return []
                rows = fetch_all(
                    conn,
                    f"""
                    select {self._COLUMNS} from data_types
                    where organization_id = any(%s::uuid[])
                    order by created_at desc
                    """,
                    [ids],
                    query_name="data_types.list_by_org",
                )
        return [_data_type_from_row(r) for r in rows]

    def get(self, data_type_id: str) -> dict | None:
        if not _is_uuid(data_type_id):
            return None
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"select {self._COLUMNS} from data_types where id=%s",
                [data_type_id],
                query_name="data_types.get",
            )
        return _data_type_from_row(row) if row else None

    def create(self, values: dict) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                insert into data_types (name, organization_id, fields, version)
                values (%s, %s, %s::jsonb, 1)
                returning {self._COLUMNS}
                """,
                [values["name"], values["organization_id"], _json_dumps(values.get("fields") or [])],
                query_name="data_types.insert",
            )
        return _data_type_from_row(row)

    def update(self, data_type_id: str, values: dict) -> dict | None:
        if not _is_uuid(data_type_id):
            return None
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                update data_types
                set name=%s,
                    organization_id=%s,
                    version = case when fields = %s::jsonb then version else version + 1 end,
                    fields=%s::jsonb,
                    updated_at=now()
                where id=%s
                returning {self._COLUMNS}
                """,
                [
                    values["name"],
                    values["organization_id"],
                    _json_dumps(values.get("fields") or []),
                    _json_dumps(values.get("fields") or []),
                    data_type_id,
                ],
                query_name="data_types.update",
            )
        return _data_type_from_row(row) if row else None

    def delete(self, data_type_id: str) -> bool:
        if not _is_uuid(data_type_id):
            return False
        with get_conn() as conn:
            row = fetch_one(conn, "delete from data_types where id=%s returning id", [data_type_id], query_name="data_types.delete")
        return bool(row)


def _entry_from_row(row: dict) -> dict:
    item = _stamp(dict(row))
    item["data_type_id"] = str(item["data_type_id"])
    item["organization_id"] = str(item["organization_id"])
    item["data"] = _ensure_json(item.get("data"), {})
    return item


class DbEntryStore:
    _COLUMNS = "id, data_type_id, organization_id, data, data_type_version, created_by, created_at, updated_at"

    def list(self, data_type_id: str) -> list[dict]:
        if not _is_uuid(data_type_id):
            return []
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                f"""
                select {self._COLUMNS} from dynamic_data_entries
                where data_type_id=%s
                order by created_at desc
                """,
                [data_type_id],
                query_name="dynamic_data_entries.list",
            )
        return [_entry_from_row(r) for r in rows]

    def get(self, entry_id: str) -> dict | None:
        if not _is_uuid(entry_id):
            return None
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"select {self._COLUMNS} from dynamic_data_entries where id=%s",
                [entry_id],
                query_name="dynamic_data_entries.get",
            )
        return _entry_from_row(row) if row else None

    def get_many(self, entry_ids: Iterable[str]) -> dict[str, dict]:
        ids = [i for i in dict.fromkeys(entry_ids) if _is_uuid(i)]
        if not ids:
            return {}
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                f"select {self._COLUMNS} from dynamic_data_entries where id = any(%s::uuid[])",
                [ids],
                query_name="dynamic_data_entries.get_many",
            )
        return {str(r["id"]): _entry_from_row(r) for r in rows}

    def create(self, values: dict) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                insert into dynamic_data_entries (data_type_id, organization_id, data, data_type_version, created_by)
                values (%s, %s, %s::jsonb, %s, %s)
                returning {self._COLUMNS}
                """,
                [
                    values["data_type_id"],
                    values["organization_id"],
                    _json_dumps(values.get("data") or {}),
                    values.get("data_type_version"),
                    values.get("created_by"),
                ],
                query_name="dynamic_data_entries.insert",
            )
        return _entry_from_row(row)

    def update(self, entry_id: str, data: dict, data_type_version: int | None = None) -> dict | None:
        if not _is_uuid(entry_id):
            return None
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                update dynamic_data_entries
                set data=%s::jsonb,
                    data_type_version=coalesce(%s, data_type_version),
                    updated_at=now()
                where id=%s
                returning {self._COLUMNS}
                """,
                [_json_dumps(data), data_type_version, entry_id],
                query_name="dynamic_data_entries.update",
            )
        return _entry_from_row(row) if row else None

    def delete(self, entry_id: str) -> bool:
        if not _is_uuid(entry_id):
            return False
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "delete from dynamic_data_entries where id=%s returning id",
                [entry_id],
                query_name="dynamic_data_entries.delete",
            )
        return bool(row)
