"""Editing helpers for RequestSpecs.

These mirror what an editor does to a request between sends. They return new
specs instead of mutating, and they keep key-value lists "open": there is
always a trailing empty row to type into.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from postlite.models import BodyType, FormPart, KeyValueEntry, PartKind, RequestSpec

KeyValueList = Literal["params", "headers", "form_urlencoded"]

# Content-Type row inserted when switching to a body type.
_BODY_TYPE_CONTENT_TYPES = {
    BodyType.JSON: "application/json",
    BodyType.TEXT: "text/plain",
    BodyType.URLENCODED: "application/x-www-form-urlencoded",
}


def _is_blank(entry: KeyValueEntry) -> bool:
    return entry.key == "" and entry.value == ""


def _is_blank_part(part: FormPart) -> bool:
    if part.key:
        return False
    if part.kind is PartKind.FILE:
        return part.file is None
    return part.value == ""


def _with_trailing_blank(entries: list[KeyValueEntry]) -> list[KeyValueEntry]:
    if not entries or not _is_blank(entries[-1]):
        return [*entries, KeyValueEntry()]
    return entries


def switch_body_type(spec: RequestSpec, body_type: BodyType) -> RequestSpec:
    """Select another body variant and rewrite the Content-Type header row.

    Every Content-Type row is removed; json, text and urlencoded then get a
    fresh one at the top. Data held by the other variants is untouched.
    """
    headers = [h for h in spec.headers if h.key.lower() != "content-type"]
    content_type = _BODY_TYPE_CONTENT_TYPES.get(body_type)
    if content_type is not None:
        headers.insert(0, KeyValueEntry(key="Content-Type", value=content_type))
    return spec.model_copy(
        update={"body_type": body_type, "headers": _with_trailing_blank(headers)}
    )


def update_entry(
    spec: RequestSpec,
    list_name: KeyValueList,
    entry_id: str,
    **changes: Any,
) -> RequestSpec:
    """Change key/value/enabled of one row, appending a blank row if needed."""
    entries = [
        entry.model_copy(update=changes) if entry.id == entry_id else entry
        for entry in getattr(spec, list_name)
    ]
    return spec.model_copy(update={list_name: _with_trailing_blank(entries)})


def remove_entry(spec: RequestSpec, list_name: KeyValueList, entry_id: str) -> RequestSpec:
    """Remove one row; an emptied list gets a single blank row back."""
    entries = [entry for entry in getattr(spec, list_name) if entry.id != entry_id]
    if not entries:
        entries = [KeyValueEntry()]
    return spec.model_copy(update={list_name: entries})


def update_form_part(spec: RequestSpec, part_id: str, **changes: Any) -> RequestSpec:
    parts = [
        part.model_copy(update=changes) if part.id == part_id else part
        for part in spec.form_data
    ]
    if not parts or not _is_blank_part(parts[-1]):
        parts.append(FormPart())
    return spec.model_copy(update={"form_data": parts})


def remove_form_part(spec: RequestSpec, part_id: str) -> RequestSpec:
    parts = [part for part in spec.form_data if part.id != part_id]
    if not parts:
        parts = [FormPart()]
    return spec.model_copy(update={"form_data": parts})


def format_json(spec: RequestSpec) -> RequestSpec:
    """Pretty-print the JSON body text. Invalid JSON is left as typed."""
    if not spec.body_content:
        return spec
    try:
        parsed = json.loads(spec.body_content)
    except ValueError:
        return spec
    return spec.model_copy(
        update={"body_content": json.dumps(parsed, indent=2, ensure_ascii=False)}
    )
