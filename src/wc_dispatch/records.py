from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

from wc_dispatch.exceptions import ValidationError

SchemaType = Literal["string", "number", "bool", "date_iso", "json"]


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: SchemaType = "string"
    required: bool = False


def _cols(*specs: str | ColumnSpec) -> tuple[ColumnSpec, ...]:
    return tuple(s if isinstance(s, ColumnSpec) else ColumnSpec(name=s) for s in specs)


# Column order is also the Sheets header order.
TABLE_SCHEMAS: dict[str, tuple[ColumnSpec, ...]] = {
    "job_requests": _cols(
        ColumnSpec("id", required=True),
        "email_id",
        "customer_name",
        "customer_email",
        "phone",
        "service_type",
        "address",
        "requested_date",
        ColumnSpec("alternative_dates", "json"),
        "special_instructions",
        ColumnSpec("needs_estimate", "bool"),
        "urgency",
        "request_type",
        ColumnSpec("confidence_score", "number"),
        ColumnSpec("status", required=True),
        "email_subject",
        "email_body",
        "created_at",
    ),
    "estimates": _cols(
        ColumnSpec("id", required=True),
        ColumnSpec("name", required=True),
        ColumnSpec("address", required=True),
        "details",
        ColumnSpec("amount", "number", required=True),
        ColumnSpec("status", required=True),
        "created_at",
    ),
    "teams": _cols(
        ColumnSpec("id", required=True),
        ColumnSpec("name", required=True),
        ColumnSpec("members", "json"),
    ),
    "jobs": _cols(
        ColumnSpec("id", required=True),
        ColumnSpec("team_id", required=True),
        ColumnSpec("job_name", required=True),
        ColumnSpec("date", "date_iso", required=True),
        ColumnSpec("status", required=True),
        "created_at",
    ),
    "scheduled_jobs": _cols(
        ColumnSpec("id", required=True),
        ColumnSpec("job_request_id", required=True),
        ColumnSpec("scheduled_date", "date_iso", required=True),
        ColumnSpec("scheduled_time", required=True),
        ColumnSpec("estimated_duration", "number", required=True),
        "assigned_staff",
        "calendar_event_id",
        ColumnSpec("status", required=True),
        "job_details",
        "notes",
        "created_at",
        "updated_at",
    ),
    "notifications": _cols(
        ColumnSpec("id", required=True),
        ColumnSpec("message", required=True),
        ColumnSpec("read", "bool"),
        "created_at",
    ),
    "overrides": _cols(
        ColumnSpec("id", required=True),
        ColumnSpec("action", required=True),
        "label",
        "target_id",
        "note",
        "created_at",
    ),
}


def _is_blank(v: Any) -> bool:
    if v is None:
        return True
    if isinstance(v, str) and v.strip() == "":
        return True
    return False


def _to_number(v: Any) -> float:
    if isinstance(v, int | float) and not isinstance(v, bool):
        return float(v)
    if isinstance(v, str):
        # tolerate "$1,234.50" from humans and sheets
        s = v.strip().lstrip("$").replace(",", "")
        return float(s)
    raise ValueError(f"not a number: {type(v).__name__}")


def _to_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, int | float):
        return bool(v)
    if isinstance(v, str):
        s = v.strip().lower()
        if s in {"true", "t", "yes", "y", "1"}:
            return True
        if s in {"false", "f", "no", "n", "0"}:
            return False
    raise ValueError("not a bool")


def _to_date_iso(v: Any) -> str:
    if isinstance(v, date):
        return v.isoformat()
    if isinstance(v, str):
        return date.fromisoformat(v.strip()).isoformat()
    raise ValueError("not iso date")


def _to_json_list(v: Any) -> list[Any]:
    if isinstance(v, list | tuple):
        return list(v)
    if isinstance(v, str):
        loaded = json.loads(v)
        if isinstance(loaded, list):
            return loaded
    raise ValueError("not a json list")


def coerce_value(value: Any, t: SchemaType) -> Any:
    if _is_blank(value):
        return [] if t == "json" else None
    if t == "string":
        return str(value).strip()
    if t == "number":
        return _to_number(value)
    if t == "bool":
        return _to_bool(value)
    if t == "date_iso":
        return _to_date_iso(value)
    if t == "json":
        return _to_json_list(value)
    raise ValueError(f"Unknown schema type: {t}")


def coerce_row(table: str, row: dict[str, Any]) -> dict[str, Any]:
    """Validate + coerce a row against its table schema; unknown columns are rejected."""
    schema = TABLE_SCHEMAS[table]
    known = {c.name for c in schema}
    unknown = sorted(set(row) - known)
    if unknown:
        raise ValidationError(f"unknown_column:{table}:{','.join(unknown)}", field=unknown[0])

    out: dict[str, Any] = {}
    for col in schema:
        raw = row.get(col.name)
        if col.required and _is_blank(raw):
            raise ValidationError(f"missing_required:{col.name}", field=col.name)
        try:
            out[col.name] = coerce_value(raw, col.type)
        except (ValueError, TypeError) as exc:
            raise ValidationError(f"type_error:{col.name}:{col.type}", field=col.name) from exc
    return out


def encode_cell(value: Any, t: SchemaType) -> str:
    if value is None:
        return ""
    if t == "json":
        return json.dumps(value, ensure_ascii=False)
    if t == "bool":
        return "TRUE" if value else "FALSE"
    if t == "number":
        number = float(value)
        return str(int(number)) if number.is_integer() else str(number)
    return str(value)


def encode_row(table: str, row: dict[str, Any]) -> list[str]:
    return [encode_cell(row.get(c.name), c.type) for c in TABLE_SCHEMAS[table]]


def decode_row(table: str, header: list[str], cells: list[Any]) -> dict[str, Any]:
    by_name = {c.name: c for c in TABLE_SCHEMAS[table]}
    raw = {name: cells[i] if i < len(cells) else "" for i, name in enumerate(header)}
    out: dict[str, Any] = {}
    for name, col in by_name.items():
        try:
            out[name] = coerce_value(raw.get(name), col.type)
        except (ValueError, TypeError):
            # hand-edited cell; keep the text rather than hiding the row
            out[name] = raw.get(name)
    return out
