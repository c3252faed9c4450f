"""Placeholder rendering for the static pipeline templates."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from .config import ReconciliationContext
from .delegation import Delegation
from .errors import ConfigurationError

TOKEN_PREFIX = "XXX-"
ARGS_TOKEN = "XXX-ARGS"

_TOKEN_PATTERN = re.compile(r"XXX-[A-Za-z][A-Za-z0-9]*")

RESOURCES_DIR = Path(__file__).resolve().parent / "resources"

PlaceholderMap = dict[str, str]


def render_template(text: str, placeholders: PlaceholderMap) -> str:
    """Replace every occurrence of each token, in insertion order.

    Tokens absent from `text` are ignored and tokens absent from the map stay
    as literal text.
    """
    rendered = text
    for token, value in placeholders.items():
        rendered = rendered.replace(token, value)
    return rendered


def find_unresolved_tokens(text: str) -> list[str]:
    return sorted(set(_TOKEN_PATTERN.findall(text)))


def build_placeholder_map(
    context: ReconciliationContext,
    state_bucket_name: str,
    delegation: Delegation,
) -> PlaceholderMap:
    placeholders: PlaceholderMap = {
        "XXX-resourcePrefix": context.resource_prefix,
        "XXX-stateBucketName": state_bucket_name,
        "XXX-stackName": context.stack_name,
        "XXX-repositoryName": context.repository_name,
        "XXX-region": context.region,
        "XXX-organizationAccountAccessRoleName": context.cross_account_role_name,
        "XXX-roleStackName": context.role_stack_name,
    }
    if delegation.enabled:
        placeholders["XXX-organizationFormationBuildAccessRoleName"] = context.build_process_role_name or ""
        placeholders["XXX-buildAccountLogicalName"] = delegation.build_account_logical_id or ""
    _check_tokens(placeholders)
    return placeholders


def _check_tokens(placeholders: PlaceholderMap) -> None:
    tokens = list(placeholders)
    for token in tokens:
        if not token.startswith(TOKEN_PREFIX):
            raise ConfigurationError(f"placeholder {token} lacks the {TOKEN_PREFIX} prefix")
        for other in tokens:
            if other != token and other.startswith(token):
                raise ConfigurationError(f"placeholder {token} is a prefix of {other}")


def buildspec_arguments(
    context: ReconciliationContext,
    state_bucket_name: str,
    delegation: Delegation,
) -> list[str]:
    args = ["--state-bucket-name", state_bucket_name]
    if context.state_object:
        args += ["--state-object", context.state_object]
    if delegation.enabled:
        args += ["--master-account-id", delegation.executing_account_id]
    return args


@dataclass(frozen=True)
class TemplateSet:
    """Static resources shipped with the package (or a custom copy of them)."""

    root: Path = RESOURCES_DIR

    BUILDSPEC = "buildspec.yml"
    PIPELINE_STACK = "orgformation-codepipeline.yml"
    LOCAL_TASKS = "local-build-orgformation-tasks.yml"
    DELEGATED_TASKS = "delegated-build-orgformation-tasks.yml"
    BUILD_ACCESS_ROLE = "orgformation-build-access-role.yml"
    INITIAL_COMMIT_DIR = "initial-commit"

    def read(self, name: str) -> str:
        path = self.root / name
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"template {path} cannot be read: {exc}") from exc

    @property
    def initial_commit_dir(self) -> Path:
        path = self.root / self.INITIAL_COMMIT_DIR
        if not path.is_dir():
            raise ConfigurationError(f"initial commit directory {path} is missing")
        return path

    def pipeline_stack_template(self) -> str:
        return self.read(self.PIPELINE_STACK)

    def buildspec(self, arguments: list[str]) -> str:
        return render_template(self.read(self.BUILDSPEC), {ARGS_TOKEN: " ".join(arguments)})

    def tasks_file(self, placeholders: PlaceholderMap, *, delegated: bool) -> str:
        name = self.DELEGATED_TASKS if delegated else self.LOCAL_TASKS
        return render_template(self.read(name), placeholders)

    def build_access_role_template(self, placeholders: PlaceholderMap) -> str:
        return render_template(self.read(self.BUILD_ACCESS_ROLE), placeholders)
