"""DataType (schema) operations with organization scoping."""

from __future__ import annotations

import logging

import psycopg2

import access_gate
from app.db import is_undefined_table
from app.errors import ConflictForeignKey, Forbidden, MissingRequiredField, NotFound, ValidationFailed
from orgbase import check_fields, dropped_field_names, normalize_fields

logger = logging.getLogger("orgbase")


def _with_organization(items: list[dict], org_store) -> list[dict]:
    names = org_store.names({item["organization_id"] for item in items})
    for item in items:
        org_id = item["organization_id"]
        item["organization"] = {"id": org_id, "name": names.get(org_id) or "N/A"}
    return items


def _clean_payload(payload: dict) -> tuple[str, str, list[dict]]:
    name = payload.get("name")
    name = name.strip() if isinstance(name, str) else ""
    organization_id = payload.get("organization_id")
    organization_id = str(organization_id).strip() if organization_id not in (None, "") else ""
    if not name or not organization_id:
        missing = [key for key, val in (("name", name), ("organization_id", organization_id)) if not val]
        raise MissingRequiredField("Both 'name' and 'organization_id' are required.", path=missing[0])
    fields = normalize_fields(payload.get("fields"))
    issues = check_fields(fields)
    if issues:
        raise ValidationFailed(issues)
    return name, organization_id, fields


def list_data_types(data_type_store, org_store, actor: dict) -> list[dict]:
    visible = access_gate.visible_organization_ids(actor)
    if visible == []:
        return []
    try:
        items = data_type_store.list(visible)
    except psycopg2.Error as exc:
        if not is_undefined_table(exc):
            raise
        logger.warning("data_types_table_missing profile_id=%s", actor.get("profile_id"))
        return []
    return _with_organization(items, org_store)


def get_data_type(data_type_store, org_store, actor: dict, data_type_id: str) -> dict:
    item = data_type_store.get(data_type_id)
    if not item:
        raise NotFound("Data Type not found", path="id")
    if not access_gate.can_read_organization(actor, item["organization_id"]):
        raise Forbidden("Data Type belongs to another organization")
    return _with_organization([item], org_store)[0]


def create_data_type(data_type_store, org_store, actor: dict, payload: dict) -> dict:
    name, organization_id, fields = _clean_payload(payload)
    if not access_gate.can_manage_schema(actor, organization_id):
        raise Forbidden("Not allowed to manage data types for this organization", path="organization_id")
    if not org_store.exists(organization_id):
        raise ConflictForeignKey("Organization does not exist", path="organization_id")
    item = data_type_store.create({"name": name, "organization_id": organization_id, "fields": fields})
    logger.info(
        "data_type_created id=%s organization_id=%s fields=%s",
        item["id"],
        organization_id,
        len(fields),
    )
    return _with_organization([item], org_store)[0]


def update_data_type(data_type_store, org_store, actor: dict, data_type_id: str, payload: dict) -> dict:
    before = data_type_store.get(data_type_id)
    if not before:
        raise NotFound("Data Type not found", path="id")
    name, organization_id, fields = _clean_payload(payload)
    for org_id in {before["organization_id"], organization_id}:
        if not access_gate.can_manage_schema(actor, org_id):
            raise Forbidden("Not allowed to manage data types for this organization", path="organization_id")
    if organization_id != before["organization_id"] and not org_store.exists(organization_id):
        raise ConflictForeignKey("Organization does not exist", path="organization_id")
    item = data_type_store.update(
        data_type_id,
        {"name": name, "organization_id": organization_id, "fields": fields},
    )
    if not item:
        raise NotFound("Data Type not found", path="id")
    dropped = dropped_field_names(before.get("fields") or [], fields)
    if dropped:
        # Entries keep values for removed fields.
        logger.info("data_type_fields_dropped id=%s fields=%s", data_type_id, dropped)
    item = _with_organization([item], org_store)[0]
    item["dropped_fields"] = dropped
    return item


def delete_data_type(data_type_store, actor: dict, data_type_id: str) -> None:
    item = data_type_store.get(data_type_id)
    if not item:
        raise NotFound("Data Type not found", path="id")
    if not access_gate.can_manage_schema(actor, item["organization_id"]):
        raise Forbidden("Not allowed to manage data types for this organization")
    if not data_type_store.delete(data_type_id):
        raise NotFound("Data Type not found", path="id")
    logger.info("data_type_deleted id=%s organization_id=%s", data_type_id, item["organization_id"])
