"""Configuration for pipeline bootstrap runs (context, poll policy, YAML profiles)."""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import boto3
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")

ACCOUNT_ID_MARKER = "${AWS::AccountId}"
DEFAULT_STATE_BUCKET_NAME = f"organization-formation-{ACCOUNT_ID_MARKER}"
DEFAULT_STATE_OBJECT = "state.json"
BUILD_PROCESS_ROLE_NAME = "OrganizationFormationBuildAccessRole"


class PollPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    initial_delay_seconds: float = Field(default=1.0, gt=0)
    max_delay_seconds: float = Field(default=30.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    timeout_seconds: float = Field(default=3600.0, gt=0)

    def delay_for(self, attempt: int) -> float:
        delay = self.initial_delay_seconds * (self.backoff_multiplier ** max(0, attempt - 1))
        return min(self.max_delay_seconds, delay)


class ReconciliationContext(BaseModel):
    """Immutable inputs for one bootstrap run."""

    model_config = ConfigDict(frozen=True)

    region: str
    stack_name: str = "organization-formation-build"
    resource_prefix: str = "orgformation"
    repository_name: str = "organization-formation"
    cross_account_role_name: str = "OrganizationAccountAccessRole"
    build_account_id: Optional[str] = None
    role_stack_name: str = "organization-formation-build-role"
    state_bucket_name: str = DEFAULT_STATE_BUCKET_NAME
    state_object: Optional[str] = None
    poll: PollPolicy = PollPolicy()

    @field_validator("region")
    @classmethod
    def _known_region(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("argument --region is missing")
        if value not in known_regions():
            raise ValueError(f"region {value} is not a known region")
        return value

    @field_validator("build_account_id")
    @classmethod
    def _account_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not _ACCOUNT_ID_PATTERN.match(value):
            raise ValueError(f"build account id {value} must be 12 digits")
        return value

    @field_validator(
        "stack_name",
        "resource_prefix",
        "repository_name",
        "cross_account_role_name",
        "role_stack_name",
        "state_bucket_name",
    )
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value must not be empty")
        return value.strip()

    @property
    def delegate_to_build_account(self) -> bool:
        return self.build_account_id is not None

    @property
    def build_process_role_name(self) -> str | None:
        return BUILD_PROCESS_ROLE_NAME if self.delegate_to_build_account else None

    @property
    def state_object_key(self) -> str:
        return self.state_object or DEFAULT_STATE_OBJECT

    def resolved_state_bucket_name(self, account_id: str) -> str:
        return self.state_bucket_name.replace(ACCOUNT_ID_MARKER, account_id)


@lru_cache(maxsize=1)
def known_regions() -> frozenset[str]:
    session = boto3.session.Session()
    regions: set[str] = set()
    for partition in session.get_available_partitions():
        regions.update(session.get_available_regions("cloudformation", partition_name=partition))
    return frozenset(regions)


def build_context(values: dict[str, Any]) -> ReconciliationContext:
    """Validate raw option values into a context, raising ConfigurationError."""
    cleaned = {key: value for key, value in values.items() if value is not None}
    if not str(cleaned.get("region") or "").strip():
        raise ConfigurationError("argument --region is missing")
    try:
        return ReconciliationContext(**cleaned)
    except ValidationError as exc:
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "context"
            message = str(first.get("msg", "invalid value")).removeprefix("Value error, ")
            raise ConfigurationError(f"{field}: {message}") from exc
        raise ConfigurationError(str(exc)) from exc


def _expand_str(value: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if token == "AWS::AccountId":
            return match.group(0)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ConfigurationError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def _expand_payload(value: Any) -> Any:
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [_expand_payload(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _expand_payload(item) for key, item in value.items()}
    return value


def load_profile(path: Path) -> dict[str, Any]:
    """Read a YAML profile of context defaults, expanding ${VAR} references."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot read profile {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"profile {path} must be a mapping")
    expanded = _expand_payload(data)
    return {key.replace("-", "_"): value for key, value in expanded.items()}
