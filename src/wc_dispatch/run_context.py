from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4


def new_run_id() -> str:
    # UTC timestamp prefix keeps run dirs listing in start order
    return f"{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}-{uuid4().hex[:8]}"


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, ensure_ascii=False, default=str)
        f.write("\n")
    tmp.replace(path)


@dataclass(frozen=True)
class RunContext:
    """Filesystem layout of one workflow run under ``runs/<run_id>/``."""

    run_id: str
    run_dir: Path
    logs_path: Path
    artifacts_dir: Path

    @property
    def artifacts_index_path(self) -> Path:
        return self.artifacts_dir / "index.json"

    @staticmethod
    def create(runs_dir: Path) -> RunContext:
        run_id = new_run_id()
        run_dir = runs_dir / run_id
        artifacts_dir = run_dir / "artifacts"
        artifacts_dir.mkdir(parents=True, exist_ok=True)

        return RunContext(
            run_id=run_id,
            run_dir=run_dir,
            logs_path=run_dir / "logs.jsonl",
            artifacts_dir=artifacts_dir,
        )

    def artifact_index(self) -> list[dict[str, Any]]:
        if not self.artifacts_index_path.exists():
            return []
        with self.artifacts_index_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError("artifact index must be a JSON list")
        return data

    def write_artifact(
        self, name: str, payload: Any, *, metadata: dict[str, Any] | None = None
    ) -> Path:
        """Write ``artifacts/<name>.json`` and record it in ``artifacts/index.json``."""
        path = self.artifacts_dir / f"{name}.json"
        write_json(path, payload)

        index = [rec for rec in self.artifact_index() if rec.get("name") != name]
        index.append(
            {
                "name": name,
                "path": path.relative_to(self.run_dir).as_posix(),
                "type": "json",
                "created_at": iso_utc_from_ms(now_ms()),
                "metadata": metadata or {},
            }
        )
        write_json(self.artifacts_index_path, index)
        return path


def now_ms() -> int:
    return int(time.time() * 1000)


def duration_ms(start_ms: int, end_ms: int) -> int:
    return max(0, end_ms - start_ms)


def iso_utc_from_ms(ms: int) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ms / 1000))
