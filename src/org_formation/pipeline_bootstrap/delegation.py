"""Decides which account hosts the pipeline and resolves the build account."""

from __future__ import annotations

from dataclasses import dataclass

from .config import ReconciliationContext
from .errors import NotFoundError
from .organization import OrganizationState


@dataclass(frozen=True)
class Delegation:
    executing_account_id: str
    pipeline_account_id: str
    build_account_id: str | None = None
    build_account_logical_id: str | None = None

    @property
    def enabled(self) -> bool:
        return self.build_account_id is not None


class DelegationResolver:
    def resolve(
        self,
        context: ReconciliationContext,
        caller_account_id: str,
        state: OrganizationState,
    ) -> Delegation:
        build_account_id = context.build_account_id
        if build_account_id is None:
            return Delegation(executing_account_id=caller_account_id, pipeline_account_id=caller_account_id)

        logical_id = state.logical_id_for(build_account_id)
        if logical_id is None:
            raise NotFoundError(
                f"account with id {build_account_id} does not exist in organization",
                account_id=build_account_id,
            )
        return Delegation(
            executing_account_id=caller_account_id,
            pipeline_account_id=build_account_id,
            build_account_id=build_account_id,
            build_account_logical_id=logical_id,
        )
