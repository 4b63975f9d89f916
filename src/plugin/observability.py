"""Run summary schema enforcement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

PHASE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "mounts_total", "mounts_processed", "duration_ms", "error"],
    "properties": {
        "name": {"type": "string", "enum": ["rebuild", "restore"]},
        "mounts_total": {"type": "integer", "minimum": 0},
        "mounts_processed": {"type": "integer", "minimum": 0},
        "duration_ms": {"type": "number", "minimum": 0},
        "error": {"type": ["string", "null"]},
    },
}

RUN_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": [
        "run_id",
        "started_at",
        "backend",
        "mode",
        "repo",
        "branch",
        "phases",
        "ok",
        "error",
        "release_error",
    ],
    "properties": {
        "run_id": {"type": "string"},
        "started_at": {"type": "string", "format": "date-time"},
        "backend": {"type": "string", "enum": ["sftp", "s3"]},
        "mode": {"type": "string", "enum": ["rebuild", "restore", "both", "neither"]},
        "repo": {"type": "string"},
        "branch": {"type": "string"},
        "phases": {"type": "array", "items": PHASE_SCHEMA, "maxItems": 2},
        "ok": {"type": "boolean"},
        "error": {"type": ["string", "null"]},
        "release_error": {"type": ["string", "null"]},
    },
}

_validator = Draft7Validator(RUN_SCHEMA)


def validate_run(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"run record validation failed: {messages}")


@dataclass
class RunRecord:
    run_id: str
    backend: str
    mode: str
    repo: str
    branch: str
    phases: List[Dict[str, Any]] = field(default_factory=list)
    ok: bool = True
    error: Optional[str] = None
    release_error: Optional[str] = None
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "backend": self.backend,
            "mode": self.mode,
            "repo": self.repo,
            "branch": self.branch,
            "phases": list(self.phases),
            "ok": self.ok,
            "error": self.error,
            "release_error": self.release_error,
        }
        validate_run(payload)
        return payload
