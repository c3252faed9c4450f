"""CLI for bootstrapping the organization build pipeline."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from .aws import AwsSessions
from .config import build_context, load_profile
from .errors import BootstrapError, reason_code
from .logging_utils import configure_logging
from .runner import PipelineBootstrapper
from .templates import TemplateSet

logger = logging.getLogger(__name__)

_CONTEXT_FIELDS = (
    "region",
    "stack_name",
    "resource_prefix",
    "repository_name",
    "cross_account_role_name",
    "build_account_id",
    "role_stack_name",
    "state_bucket_name",
    "state_object",
)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="org-formation-init-pipeline",
        description="Initializes the organization state bucket, CodeCommit repo, CodeBuild and CodePipeline",
    )
    parser.add_argument("--region", default=None, help="Region used to create the state bucket and pipeline in")
    parser.add_argument("--stack-name", default=None, help="Stack name used to create pipeline artifacts")
    parser.add_argument("--resource-prefix", default=None, help="Name prefix used when creating AWS resources")
    parser.add_argument("--repository-name", default=None, help="Name of the CodeCommit repository created")
    parser.add_argument(
        "--cross-account-role-name",
        default=None,
        help="Name of the role used to perform cross account access",
    )
    parser.add_argument(
        "--build-account-id",
        default=None,
        help="Account id of the AWS account that will host the build process",
    )
    parser.add_argument(
        "--role-stack-name",
        default=None,
        help="Stack name used to create the cross account build access role (only with --build-account-id)",
    )
    parser.add_argument("--state-bucket-name", default=None, help="Bucket name used to store organization state")
    parser.add_argument("--state-object", default=None, help="Key of the organization state object")
    parser.add_argument("--poll-timeout", type=float, default=None, help="Seconds to wait for each stack")
    parser.add_argument("--config", default=None, help="Path to a YAML profile supplying option defaults")
    parser.add_argument("--profile", default=None, help="AWS named profile for the management account")
    parser.add_argument("--resources-dir", default=None, help="Directory overriding the bundled templates")
    parser.add_argument("--log-file", default=None, help="Optional log file path")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _context_values(args: argparse.Namespace) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if args.config:
        values.update(load_profile(Path(args.config)))
    for name in _CONTEXT_FIELDS:
        value = getattr(args, name)
        if value is not None:
            values[name] = value
    if args.poll_timeout is not None:
        poll = dict(values.get("poll") or {})
        poll["timeout_seconds"] = args.poll_timeout
        values["poll"] = poll
    return values


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO, log_path=args.log_file)
    try:
        context = build_context(_context_values(args))
        templates = TemplateSet(Path(args.resources_dir)) if args.resources_dir else TemplateSet()
        sessions = AwsSessions(profile_name=args.profile)
        result = PipelineBootstrapper(context, sessions, templates).run()
    except BootstrapError as exc:
        logger.error("PB: init-pipeline failed code=%s error=%s", reason_code(exc), exc)
        return 1
    for stack_name, outcome in result.stacks.items():
        print(f"{stack_name}: {outcome.value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
