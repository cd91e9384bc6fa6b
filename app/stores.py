"""In-memory stores used when USE_DB is off (local runs and tests)."""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from app.errors import ConflictForeignKey


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _newest_first(items: Iterable[dict]) -> list[dict]:
    # Stable sort keeps insertion order (newest first) for identical timestamps.
    ordered = list(reversed(list(items)))
    ordered.sort(key=lambda r: r.get("created_at") or "", reverse=True)
    return [copy.deepcopy(r) for r in ordered]


class MemoryTables:
    """Shared rows for every in-memory store, mirroring the Postgres tables."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.organizations: Dict[str, dict] = {}
        self.profiles: Dict[str, dict] = {}
        self.organization_profiles: List[tuple[str, str]] = []
        self.customers: Dict[str, dict] = {}
        self.customer_profiles: List[tuple[str, str]] = []
        self.data_types: Dict[str, dict] = {}
        self.entries: Dict[str, dict] = {}

    def profile_summary(self, profile_id: str) -> dict | None:
        profile = self.profiles.get(profile_id)
        if not profile:
            return None
        return {"id": profile["id"], "full_name": profile.get("full_name"), "email": profile.get("email")}

    def require_profiles(self, profile_ids: Iterable[str]) -> None:
        missing = [pid for pid in profile_ids if pid not in self.profiles]
        if missing:
            raise ConflictForeignKey(f"Unknown profile ids: {', '.join(missing)}", path="profile_ids")

    def require_organizations(self, organization_ids: Iterable[str]) -> None:
        missing = [oid for oid in organization_ids if oid not in self.organizations]
        if missing:
            raise ConflictForeignKey(f"Unknown organization ids: {', '.join(missing)}", path="organization_id")


def _dedupe(ids: Iterable[str] | None) -> list[str]:
    return list(dict.fromkeys(str(i) for i in (ids or []) if i))


class MemoryOrganizationStore:
    def __init__(self, tables: MemoryTables) -> None:
        self._t = tables

    def _with_profiles(self, org: dict) -> dict:
        item = copy.deepcopy(org)
        profiles = []
        for org_id, profile_id in self._t.organization_profiles:
            if org_id == org["id"]:
                summary = self._t.profile_summary(profile_id)
                if summary:
                    profiles.append(summary)
        item["profiles"] = profiles
        return item

    def list(self, organization_ids: list[str] | None = None) -> list[dict]:
        with self._t.lock:
            items = list(self._t.organizations.values())
            if organization_ids is not None:
                wanted = set(organization_ids)
                items = [o for o in items if o["id"] in wanted]
            return [self._with_profiles(o) for o in _newest_first(items)]

    def get(self, organization_id: str) -> dict | None:
        with self._t.lock:
            org = self._t.organizations.get(organization_id)
            return self._with_profiles(org) if org else None

    def exists(self, organization_id: str) -> bool:
        return organization_id in self._t.organizations

    def names(self, organization_ids: Iterable[str]) -> dict[str, str]:
        with self._t.lock:
            return {oid: self._t.organizations[oid]["name"] for oid in organization_ids if oid in self._t.organizations}

    def create(self, values: dict, profile_ids: list[str] | None = None) -> dict:
        profile_ids = _dedupe(profile_ids)
        with self._t.lock:
            self._t.require_profiles(profile_ids)
            now = _now()
            org = {
                "id": str(uuid.uuid4()),
                "name": values.get("name"),
                "contact": values.get("contact"),
                "industry": values.get("industry"),
                "created_at": now,
                "updated_at": now,
            }
            self._t.organizations[org["id"]] = org
            for profile_id in profile_ids:
                self._t.organization_profiles.append((org["id"], profile_id))
            return self._with_profiles(org)

    def update(self, organization_id: str, values: dict, profile_ids: list[str] | None = None) -> dict | None:
        with self._t.lock:
            org = self._t.organizations.get(organization_id)
            if not org:
                return None
            if profile_ids is not None:
                profile_ids = _dedupe(profile_ids)
                self._t.require_profiles(profile_ids)
            for key in ("name", "contact", "industry"):
                if key in values:
                    org[key] = values[key]
            org["updated_at"] = _now()
            if profile_ids is not None:
                self._t.organization_profiles = [
                    link for link in self._t.organization_profiles if link[0] != organization_id
                ] + [(organization_id, pid) for pid in profile_ids]
            return self._with_profiles(org)

    def delete(self, organization_id: str) -> bool:
        with self._t.lock:
            if organization_id not in self._t.organizations:
                return False
            if any(dt["organization_id"] == organization_id for dt in self._t.data_types.values()):
                raise ConflictForeignKey("Organization still owns data types", path="id")
            del self._t.organizations[organization_id]
            # Only entries orphaned by an earlier data type delete can remain here.
            self._t.entries = {k: e for k, e in self._t.entries.items() if e["organization_id"] != organization_id}
            self._t.organization_profiles = [
                link for link in self._t.organization_profiles if link[0] != organization_id
            ]
            return True

    def list_for_profile(self, profile_id: str) -> list[dict]:
        with self._t.lock:
            out = []
            for org_id, pid in self._t.organization_profiles:
                if pid != profile_id:
                    continue
                org = self._t.organizations.get(org_id)
                if org:
                    out.append({k: org.get(k) for k in ("id", "name", "industry", "contact")})
            out.sort(key=lambda o: (o.get("name") or "").lower())
            return out


class MemoryProfileStore:
    def __init__(self, tables: MemoryTables) -> None:
        self._t = tables

    def _with_orgs(self, profile: dict) -> dict:
        item = copy.deepcopy(profile)
        item["organization_ids"] = self.organization_ids(profile["id"])
        return item

    def organization_ids(self, profile_id: str) -> list[str]:
        return [oid for oid, pid in self._t.organization_profiles if pid == profile_id]

    def list(self, organization_id: str | None = None, profile_ids: list[str] | None = None) -> list[dict]:
        with self._t.lock:
            items = list(self._t.profiles.values())
            if organization_id is not None:
                members = {pid for oid, pid in self._t.organization_profiles if oid == organization_id}
                items = [p for p in items if p["id"] in members]
            if profile_ids is not None:
                wanted = set(profile_ids)
                items = [p for p in items if p["id"] in wanted]
            return [self._with_orgs(p) for p in _newest_first(items)]

    def get(self, profile_id: str) -> dict | None:
        with self._t.lock:
            profile = self._t.profiles.get(profile_id)
            return self._with_orgs(profile) if profile else None

    def get_by_email(self, email: str) -> dict | None:
        wanted = (email or "").strip().lower()
        with self._t.lock:
            for profile in self._t.profiles.values():
                if (profile.get("email") or "").lower() == wanted:
                    return self._with_orgs(profile)
        return None

    def create(self, values: dict, organization_ids: list[str] | None = None) -> dict:
        organization_ids = _dedupe(organization_ids)
        with self._t.lock:
            self._t.require_organizations(organization_ids)
            now = _now()
            profile = {
                "id": values.get("id") or str(uuid.uuid4()),
                "email": (values.get("email") or "").strip().lower(),
                "full_name": values.get("full_name"),
                "type": values.get("type") or "User",
                "needs_password_setup": bool(values.get("needs_password_setup")),
                "created_at": now,
                "updated_at": now,
            }
            self._t.profiles[profile["id"]] = profile
            for org_id in organization_ids:
                self._t.organization_profiles.append((org_id, profile["id"]))
            return self._with_orgs(profile)

    def update(self, profile_id: str, values: dict) -> dict | None:
        with self._t.lock:
            profile = self._t.profiles.get(profile_id)
            if not profile:
                return None
            for key in ("email", "full_name", "type", "needs_password_setup"):
                if key in values:
                    profile[key] = values[key]
            profile["updated_at"] = _now()
            return self._with_orgs(profile)

    def rekey(self, profile_id: str, new_id: str) -> dict | None:
        """Move a profile and its links to ``new_id``."""
        with self._t.lock:
            profile = self._t.profiles.pop(profile_id, None)
            if not profile:
                return None
            profile["id"] = new_id
            profile["updated_at"] = _now()
            self._t.profiles[new_id] = profile
            self._t.organization_profiles = [
                (oid, new_id if pid == profile_id else pid) for oid, pid in self._t.organization_profiles
            ]
            self._t.customer_profiles = [
                (cid, new_id if pid == profile_id else pid) for cid, pid in self._t.customer_profiles
            ]
            return self._with_orgs(profile)

    def delete(self, profile_id: str) -> bool:
        with self._t.lock:
            if profile_id not in self._t.profiles:
                return False
            del self._t.profiles[profile_id]
            self._t.organization_profiles = [l for l in self._t.organization_profiles if l[1] != profile_id]
            self._t.customer_profiles = [l for l in self._t.customer_profiles if l[1] != profile_id]
            return True


class MemoryCustomerStore:
    def __init__(self, tables: MemoryTables) -> None:
        self._t = tables

    def _with_profiles(self, customer: dict) -> dict:
        item = copy.deepcopy(customer)
        profiles = []
        for customer_id, profile_id in self._t.customer_profiles:
            if customer_id == customer["id"]:
                summary = self._t.profile_summary(profile_id)
                if summary:
                    profiles.append(summary)
        item["profiles"] = profiles
        return item

    def list(self) -> list[dict]:
        with self._t.lock:
            return [self._with_profiles(c) for c in _newest_first(self._t.customers.values())]

    def get(self, customer_id: str) -> dict | None:
        with self._t.lock:
            customer = self._t.customers.get(customer_id)
            return self._with_profiles(customer) if customer else None

    def create(self, values: dict, profile_ids: list[str] | None = None) -> dict:
        profile_ids = _dedupe(profile_ids)
        with self._t.lock:
            self._t.require_profiles(profile_ids)
            now = _now()
            customer = {
                "id": str(uuid.uuid4()),
                "name": values.get("name"),
                "contact": values.get("contact"),
                "industry": values.get("industry"),
                "created_at": now,
                "updated_at": now,
            }
            self._t.customers[customer["id"]] = customer
            for profile_id in profile_ids:
                self._t.customer_profiles.append((customer["id"], profile_id))
            return self._with_profiles(customer)

    def update(self, customer_id: str, values: dict, profile_ids: list[str] | None = None) -> dict | None:
        with self._t.lock:
            customer = self._t.customers.get(customer_id)
            if not customer:
                return None
            if profile_ids is not None:
                profile_ids = _dedupe(profile_ids)
                self._t.require_profiles(profile_ids)
            for key in ("name", "contact", "industry"):
                if key in values:
                    customer[key] = values[key]
            customer["updated_at"] = _now()
            if profile_ids is not None:
                self._t.customer_profiles = [
                    link for link in self._t.customer_profiles if link[0] != customer_id
                ] + [(customer_id, pid) for pid in profile_ids]
            return self._with_profiles(customer)

    def delete(self, customer_id: str) -> bool:
        with self._t.lock:
            if customer_id not in self._t.customers:
                return False
            del self._t.customers[customer_id]
            self._t.customer_profiles = [l for l in self._t.customer_profiles if l[0] != customer_id]
            return True


class MemoryDataTypeStore:
    def __init__(self, tables: MemoryTables) -> None:
        self._t = tables

    def list(self, organization_ids: list[str] | None = None) -> list[dict]:
        with self._t.lock:
            items = list(self._t.data_types.values())
            if organization_ids is not None:
                wanted = set(organization_ids)
                items = [d for d in items if d["organization_id"] in wanted]
            return _newest_first(items)

    def get(self, data_type_id: str) -> dict | None:
        with self._t.lock:
            item = self._t.data_types.get(data_type_id)
            return copy.deepcopy(item) if item else None

    def create(self, values: dict) -> dict:
        with self._t.lock:
            self._t.require_organizations([values["organization_id"]])
            now = _now()
            item = {
                "id": str(uuid.uuid4()),
                "name": values["name"],
                "organization_id": values["organization_id"],
                "fields": copy.deepcopy(values.get("fields") or []),
                "version": 1,
                "created_at": now,
                "updated_at": now,
            }
            self._t.data_types[item["id"]] = item
            return copy.deepcopy(item)

    def update(self, data_type_id: str, values: dict) -> dict | None:
        with self._t.lock:
            item = self._t.data_types.get(data_type_id)
            if not item:
                return None
            self._t.require_organizations([values["organization_id"]])
            fields = copy.deepcopy(values.get("fields") or [])
            if fields != item["fields"]:
                item["version"] = int(item.get("version") or 1) + 1
            item["name"] = values["name"]
            item["organization_id"] = values["organization_id"]
            item["fields"] = fields
            item["updated_at"] = _now()
            return copy.deepcopy(item)

    def delete(self, data_type_id: str) -> bool:
        with self._t.lock:
            return self._t.data_types.pop(data_type_id, None) is not None


class MemoryEntryStore:
    def __init__(self, tables: MemoryTables) -> None:
        self._t = tables

    def list(self, data_type_id: str) -> list[dict]:
        with self._t.lock:
            items = [e for e in self._t.entries.values() if e["data_type_id"] == data_type_id]
            return _newest_first(items)

    def get(self, entry_id: str) -> dict | None:
        with self._t.lock:
            item = self._t.entries.get(entry_id)
            return copy.deepcopy(item) if item else None

    def get_many(self, entry_ids: Iterable[str]) -> dict[str, dict]:
        with self._t.lock:
            return {eid: copy.deepcopy(self._t.entries[eid]) for eid in entry_ids if eid in self._t.entries}

    def create(self, values: dict) -> dict:
        with self._t.lock:
            self._t.require_organizations([values["organization_id"]])
            now = _now()
            item = {
                "id": str(uuid.uuid4()),
                "data_type_id": values["data_type_id"],
                "organization_id": values["organization_id"],
                "data": copy.deepcopy(values.get("data") or {}),
                "data_type_version": values.get("data_type_version"),
                "created_by": values.get("created_by"),
                "created_at": now,
                "updated_at": now,
            }
            self._t.entries[item["id"]] = item
            return copy.deepcopy(item)

    def update(self, entry_id: str, data: dict, data_type_version: int | None = None) -> dict | None:
        with self._t.lock:
            item = self._t.entries.get(entry_id)
            if not item:
                return None
            item["data"] = copy.deepcopy(data)
            if data_type_version is not None:
                item["data_type_version"] = data_type_version
            item["updated_at"] = _now()
            return copy.deepcopy(item)

    def delete(self, entry_id: str) -> bool:
        with self._t.lock:
            return self._t.entries.pop(entry_id, None) is not None
