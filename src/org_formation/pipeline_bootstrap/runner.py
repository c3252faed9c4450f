"""Pipeline bootstrap orchestration (init-pipeline flow)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .aws import AwsSessions
from .config import ReconciliationContext
from .delegation import Delegation, DelegationResolver
from .organization import OrganizationReader, render_organization_template
from .packager import ArtifactBundle, archive_digest, package_artifact
from .stacks import ReconcileOutcome, StackDescriptor, StackReconciler
from .state import StateSnapshotStore
from .storage import S3Bucket
from .templates import (
    TemplateSet,
    build_placeholder_map,
    buildspec_arguments,
    find_unresolved_tokens,
)

INITIAL_COMMIT_KEY = "initial-commit.zip"


@dataclass(frozen=True)
class BootstrapResult:
    caller_account_id: str
    pipeline_account_id: str
    state_bucket_name: str
    archive_sha256: str
    stacks: dict[str, ReconcileOutcome] = field(default_factory=dict)


class PipelineBootstrapper:
    def __init__(
        self,
        context: ReconciliationContext,
        sessions: AwsSessions,
        templates: TemplateSet | None = None,
        reconciler: StackReconciler | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.context = context
        self.sessions = sessions
        self.templates = templates or TemplateSet()
        self.reconciler = reconciler or StackReconciler(sessions, context.cross_account_role_name, context.poll)
        self.resolver = DelegationResolver()

    def run(self) -> BootstrapResult:
        context = self.context
        caller_account_id = self.sessions.caller_account_id()
        self.logger.info(
            "PB: init-pipeline started caller_account_id=%s region=%s delegated=%s",
            caller_account_id,
            context.region,
            context.delegate_to_build_account,
        )

        organizations = self.sessions.client("organizations")
        listed = OrganizationReader(organizations).read()
        delegation = self.resolver.resolve(context, caller_account_id, listed)
        # The default bucket name carries the id of the account hosting the bucket.
        state_bucket_name = context.resolved_state_bucket_name(delegation.pipeline_account_id)

        store = self._state_store(delegation, state_bucket_name)
        state = listed.merged_with(store.read())
        # The snapshot may carry an older logical id for the build account.
        delegation = self.resolver.resolve(context, caller_account_id, state)

        placeholders = build_placeholder_map(context, state_bucket_name, delegation)
        pipeline_template = self.templates.pipeline_stack_template()
        build_role_template = (
            self.templates.build_access_role_template(placeholders) if delegation.enabled else None
        )
        bundle = ArtifactBundle(
            base_dir=self.templates.initial_commit_dir,
            buildspec=self.templates.buildspec(buildspec_arguments(context, state_bucket_name, delegation)),
            organization_template=render_organization_template(
                state,
                cross_account_role_name=context.cross_account_role_name,
                build_process_role_name=context.build_process_role_name,
            ),
            organization_tasks=self.templates.tasks_file(placeholders, delegated=delegation.enabled),
            pipeline_template=pipeline_template,
            build_role_template=build_role_template,
        )
        for name, content in bundle.named_entries():
            leftovers = find_unresolved_tokens(content)
            if leftovers:
                self.logger.warning("PB: unresolved placeholders entry=%s tokens=%s", name, ",".join(leftovers))
        archive = package_artifact(bundle)

        store.provision()
        self.logger.info("PB: uploading initial commit uri=s3://%s/%s", state_bucket_name, INITIAL_COMMIT_KEY)
        store.bucket.put_bytes(INITIAL_COMMIT_KEY, archive, content_type="application/zip")

        outcomes: dict[str, ReconcileOutcome] = {}
        if delegation.enabled and build_role_template is not None:
            role_stack = StackDescriptor(
                account_id=delegation.executing_account_id,
                region=context.region,
                stack_name=context.role_stack_name,
                template_body=build_role_template,
                parameters={"buildAccountId": delegation.pipeline_account_id},
            )
            outcomes[role_stack.stack_name] = self.reconciler.reconcile(role_stack)

        self.logger.info("PB: applying pipeline stack stack=%s account=%s", context.stack_name, delegation.pipeline_account_id)
        pipeline_stack = StackDescriptor(
            account_id=delegation.pipeline_account_id,
            region=context.region,
            stack_name=context.stack_name,
            template_body=pipeline_template,
            parameters={
                "stateBucketName": state_bucket_name,
                "resourcePrefix": context.resource_prefix,
                "repositoryName": context.repository_name,
            },
        )
        outcomes[pipeline_stack.stack_name] = self.reconciler.reconcile(pipeline_stack)

        store.save(state)
        store.bucket.delete(INITIAL_COMMIT_KEY)
        self.logger.info("PB: init-pipeline done stacks=%s", {name: outcome.value for name, outcome in outcomes.items()})
        return BootstrapResult(
            caller_account_id=caller_account_id,
            pipeline_account_id=delegation.pipeline_account_id,
            state_bucket_name=state_bucket_name,
            archive_sha256=archive_digest(archive),
            stacks=outcomes,
        )

    def _state_store(self, delegation: Delegation, state_bucket_name: str) -> StateSnapshotStore:
        # Under delegation the state bucket lives in the build account.
        session = self.sessions.for_account(delegation.pipeline_account_id, self.context.cross_account_role_name)
        client = self.sessions.client("s3", session=session, region=self.context.region)
        bucket = S3Bucket(client, state_bucket_name, account_id=delegation.pipeline_account_id)
        return StateSnapshotStore(
            bucket,
            self.context.state_object_key,
            self.context.region,
            delegation.executing_account_id,
        )
