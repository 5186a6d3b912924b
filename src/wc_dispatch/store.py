from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from wc_dispatch.clients import SheetsService
from wc_dispatch.config import AppConfig
from wc_dispatch.exceptions import RecordNotFound
from wc_dispatch.records import TABLE_SCHEMAS, coerce_row, decode_row, encode_row


def iso_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def newest_first(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(rows, key=lambda r: str(r.get("created_at") or ""), reverse=True)


class Table(Protocol):
    name: str

    def insert(self, row: dict[str, Any]) -> dict[str, Any]: ...
    def get(self, record_id: str) -> dict[str, Any]: ...
    def update(self, record_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...
    def list(self) -> list[dict[str, Any]]: ...


def _prepare_insert(table: str, row: dict[str, Any]) -> dict[str, Any]:
    draft = dict(row)
    draft.setdefault("id", new_id())
    return coerce_row(table, draft)


def _atomic_write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, ensure_ascii=False)
        f.write("\n")
    tmp.replace(path)


class JsonFileTable:
    """One JSON list per table under the data dir. Rows are stored coerced."""

    def __init__(self, data_dir: Path, name: str) -> None:
        if name not in TABLE_SCHEMAS:
            raise ValueError(f"Unknown table: {name}")
        self.name = name
        self.path = data_dir / f"{name}.json"

    def _load(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{self.path} must hold a JSON list")
        return [r for r in data if isinstance(r, dict)]

    def list(self) -> list[dict[str, Any]]:
        return self._load()

    def get(self, record_id: str) -> dict[str, Any]:
        for row in self._load():
            if row.get("id") == record_id:
                return row
        raise RecordNotFound(self.name, record_id)

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        rows = self._load()
        record = _prepare_insert(self.name, row)
        rows.append(record)
        _atomic_write_json(self.path, rows)
        return record

    def update(self, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        rows = self._load()
        for i, row in enumerate(rows):
            if row.get("id") == record_id:
                merged = coerce_row(self.name, {**row, **changes, "id": record_id})
                rows[i] = merged
                _atomic_write_json(self.path, rows)
                return merged
        raise RecordNotFound(self.name, record_id)


class SheetsTable:
    """A spreadsheet tab per table; row 1 is the header, ids live in column A."""

    def __init__(self, service: SheetsService, spreadsheet_id: str, name: str) -> None:
        if name not in TABLE_SCHEMAS:
            raise ValueError(f"Unknown table: {name}")
        self.name = name
        self._service = service
        self._spreadsheet_id = spreadsheet_id
        self._header = [c.name for c in TABLE_SCHEMAS[name]]

    def _values(self) -> list[list[Any]]:
        resp = (
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=self._spreadsheet_id, range=self.name)
            .execute()
        )
        values = resp.get("values", []) if isinstance(resp, dict) else []
        return [v for v in values if isinstance(v, list)]

    def _write_header(self) -> None:
        self._service.spreadsheets().values().update(
            spreadsheetId=self._spreadsheet_id,
            range=f"{self.name}!A1",
            valueInputOption="RAW",
            body={"values": [self._header]},
        ).execute()

    def _rows(self) -> tuple[list[str], list[list[Any]]]:
        values = self._values()
        if not values:
            return self._header, []
        header = [str(h).strip() for h in values[0]]
        return header, values[1:]

    def list(self) -> list[dict[str, Any]]:
        header, rows = self._rows()
        return [decode_row(self.name, header, cells) for cells in rows if any(cells)]

    def _locate(self, record_id: str) -> tuple[int, dict[str, Any]]:
        header, rows = self._rows()
        for i, cells in enumerate(rows):
            record = decode_row(self.name, header, cells)
            if record.get("id") == record_id:
                # +2: one for the header, one for 1-based rows
                return i + 2, record
        raise RecordNotFound(self.name, record_id)

    def get(self, record_id: str) -> dict[str, Any]:
        return self._locate(record_id)[1]

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        record = _prepare_insert(self.name, row)
        if not self._values():
            self._write_header()
        self._service.spreadsheets().values().append(
            spreadsheetId=self._spreadsheet_id,
            range=f"{self.name}!A1",
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [encode_row(self.name, record)]},
        ).execute()
        return record

    def update(self, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        row_number, current = self._locate(record_id)
        merged = coerce_row(self.name, {**current, **changes, "id": record_id})
        self._service.spreadsheets().values().update(
            spreadsheetId=self._spreadsheet_id,
            range=f"{self.name}!A{row_number}",
            valueInputOption="RAW",
            body={"values": [encode_row(self.name, merged)]},
        ).execute()
        return merged


def ensure_sheet_tabs(*, sheets_svc: SheetsService, sheet_id: str, tab_names: list[str]) -> None:
    ss = sheets_svc.spreadsheets().get(spreadsheetId=sheet_id).execute()
    existing = {s["properties"]["title"] for s in ss.get("sheets", [])}

    requests = [
        {"addSheet": {"properties": {"title": name}}} for name in tab_names if name not in existing
    ]
    if requests:
        sheets_svc.spreadsheets().batchUpdate(
            spreadsheetId=sheet_id,
            body={"requests": requests},
        ).execute()


@dataclass
class Datastore:
    job_requests: Table
    estimates: Table
    teams: Table
    jobs: Table
    scheduled_jobs: Table
    notifications: Table
    overrides: Table
    backend: str = "json"


def json_datastore(data_dir: Path) -> Datastore:
    tables = {name: JsonFileTable(data_dir, name) for name in TABLE_SCHEMAS}
    return Datastore(**tables, backend="json")


def sheets_datastore(service: SheetsService, spreadsheet_id: str) -> Datastore:
    ensure_sheet_tabs(sheets_svc=service, sheet_id=spreadsheet_id, tab_names=list(TABLE_SCHEMAS))
    tables = {name: SheetsTable(service, spreadsheet_id, name) for name in TABLE_SCHEMAS}
    return Datastore(**tables, backend="sheets")


def open_datastore(cfg: AppConfig, sheets: SheetsService | None = None) -> Datastore:
    """Sheets when a spreadsheet is configured, else JSON files under ``cfg.data_dir``."""
    if cfg.spreadsheet_id:
        if sheets is None:
            raise ValueError("WCD_SPREADSHEET_ID is set but no Sheets service was provided")
        return sheets_datastore(sheets, cfg.spreadsheet_id)
    return json_datastore(cfg.data_dir)
