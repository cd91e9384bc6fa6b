"""Dynamic data entry operations: validation, scoping and reference lookup."""

from __future__ import annotations

import logging

import access_gate
from app.entry_validation import reference_fields, validate_entry_data
from app.errors import BadRequest, Forbidden, MissingRequiredField, NotFound, ValidationFailed

logger = logging.getLogger("orgbase.entries")


def _require_data_type(data_type_store, data_type_id: str) -> dict:
    data_type = data_type_store.get(data_type_id)
    if not data_type:
        raise NotFound("Data Type not found", path="data_type_id")
    return data_type


def _get_entry(entry_store, actor: dict, entry_id: str) -> dict:
    entry = entry_store.get(entry_id)
    if not entry:
        raise NotFound("Dynamic data entry not found", path="id")
    if not access_gate.can_read_organization(actor, entry["organization_id"]):
        raise Forbidden("Entry belongs to another organization")
    return entry


def _validated(data_type: dict, data, stale_keys=()) -> dict:
    if not isinstance(data, dict):
        raise BadRequest("Entry data must be an object", path="data", code="INVALID_PAYLOAD")
    errors, clean = validate_entry_data(data_type, data, stale_keys=stale_keys)
    if errors:
        raise ValidationFailed(errors)
    return clean


def list_entries(data_type_store, entry_store, actor: dict, data_type_id: str | None) -> list[dict]:
    if not data_type_id:
        raise MissingRequiredField("dataTypeId is required", path="dataTypeId")
    data_type = _require_data_type(data_type_store, data_type_id)
    if not access_gate.can_read_organization(actor, data_type["organization_id"]):
        raise Forbidden("Data Type belongs to another organization")
    return entry_store.list(data_type_id)


def resolve_references(data_type: dict | None, entry: dict, entry_store) -> list[dict]:
    """Look up every reference value of ``entry``; missing targets resolve to False."""
    if not data_type:
        return []
    data = entry.get("data") or {}
    refs = []
    for field in reference_fields(data_type):
        value = data.get(field["name"])
        if value in (None, ""):
            continue
        refs.append({"field": field["name"], "id": str(value), "data_type_id": field.get("referenceDataTypeId")})
    targets = entry_store.get_many([r["id"] for r in refs]) if refs else {}
    for ref in refs:
        target = targets.get(ref["id"])
        ref["resolved"] = bool(target) and target.get("data_type_id") == ref["data_type_id"]
    return refs


def get_entry(data_type_store, entry_store, actor: dict, entry_id: str) -> dict:
    entry = _get_entry(entry_store, actor, entry_id)
    data_type = data_type_store.get(entry["data_type_id"])
    entry["references"] = resolve_references(data_type, entry, entry_store)
    return entry


def create_entry(data_type_store, entry_store, actor: dict, payload: dict) -> dict:
    missing = [key for key in ("data_type_id", "organization_id", "data") if payload.get(key) in (None, "")]
    if missing:
        raise MissingRequiredField("Missing required fields", path=missing[0])
    data_type_id = str(payload["data_type_id"])
    organization_id = str(payload["organization_id"])
    data_type = _require_data_type(data_type_store, data_type_id)
    if not access_gate.can_write_organization_data(actor, data_type["organization_id"]):
        raise Forbidden("Not allowed to write entries for this organization", path="organization_id")
    if data_type["organization_id"] != organization_id:
        raise BadRequest(
            "organization_id does not match the data type's organization",
            path="organization_id",
            code="ORGANIZATION_MISMATCH",
        )
    clean = _validated(data_type, payload["data"])
    entry = entry_store.create(
        {
            "data_type_id": data_type_id,
            "organization_id": organization_id,
            "data": clean,
            "data_type_version": data_type.get("version"),
            "created_by": actor.get("profile_id"),
        }
    )
    logger.info("entry_created id=%s data_type_id=%s organization_id=%s", entry["id"], data_type_id, organization_id)
    return entry


def update_entry(data_type_store, entry_store, actor: dict, entry_id: str, payload: dict) -> dict:
    entry = _get_entry(entry_store, actor, entry_id)
    if not access_gate.can_write_organization_data(actor, entry["organization_id"]):
        raise Forbidden("Not allowed to write entries for this organization")
    if payload.get("data") is None:
        raise MissingRequiredField("Missing required fields", path="data")
    data_type = _require_data_type(data_type_store, entry["data_type_id"])
    clean = _validated(data_type, payload["data"], stale_keys=set(entry.get("data") or {}))
    updated = entry_store.update(entry_id, clean, data_type_version=data_type.get("version"))
    if not updated:
        raise NotFound("Dynamic data entry not found", path="id")
    logger.info("entry_updated id=%s data_type_id=%s", entry_id, entry["data_type_id"])
    return updated


def delete_entry(entry_store, actor: dict, entry_id: str) -> dict:
    entry = _get_entry(entry_store, actor, entry_id)
    if not access_gate.can_write_organization_data(actor, entry["organization_id"]):
        raise Forbidden("Not allowed to write entries for this organization")
    if not entry_store.delete(entry_id):
        raise NotFound("Dynamic data entry not found", path="id")
    logger.info("entry_deleted id=%s data_type_id=%s", entry_id, entry["data_type_id"])
    return {"message": "Dynamic data entry deleted successfully"}
