"""JSON decoding and schema validation for backend configuration blobs."""

from __future__ import annotations

import json
from typing import Any, Dict

from jsonschema import Draft7Validator

from cache.errors import BackendConstructionError


def parse_config(blob: str, backend: str, validator: Draft7Validator) -> Dict[str, Any]:
    """Decode a JSON backend blob and validate it, raising BackendConstructionError."""
    try:
        data = json.loads(blob)
    except (TypeError, ValueError) as e:
        raise BackendConstructionError(backend, f"configuration is not valid JSON: {e}") from e

    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise BackendConstructionError(backend, f"configuration validation failed: {messages}")
    return data
