"""JSON Schema validation for persisted payloads."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

SCHEMAS_DIR = Path(__file__).resolve().parent / "resources" / "schemas"
ORGANIZATION_STATE_SCHEMA = "organization_state.schema.yaml"


@dataclass
class SchemaRegistry:
    root: Path = SCHEMAS_DIR

    def __post_init__(self) -> None:
        self._validators: dict[str, Draft202012Validator] = {}

    def validator(self, name: str) -> Draft202012Validator:
        if name not in self._validators:
            schema = yaml.safe_load((self.root / name).read_text(encoding="utf-8"))
            Draft202012Validator.check_schema(schema)
            self._validators[name] = Draft202012Validator(schema)
        return self._validators[name]

    def validate(self, name: str, payload: Any) -> None:
        errors = sorted(self.validator(name).iter_errors(payload), key=lambda e: [str(part) for part in e.path])
        if errors:
            messages = "; ".join(_describe(error) for error in errors)
            raise ValueError(f"Schema validation failed for {name}: {messages}")


def _describe(error: Any) -> str:
    location = "/".join(str(part) for part in error.path)
    return f"{location}: {error.message}" if location else error.message
