"""Idempotent CloudFormation stack reconciliation.

Create versus update is chosen from the remote stack state on every call, so
re-running with the same descriptor converges no matter how far an earlier
attempt got. Each stack status maps to exactly one class in `STATUS_CLASSES`;
waiting loops only ever branch on that class.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError

from .aws import AwsSessions
from .config import PollPolicy
from .errors import StackApplyError, StackTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_CAPABILITIES = ("CAPABILITY_NAMED_IAM", "CAPABILITY_IAM")
NO_UPDATES_MESSAGE = "No updates are to be performed"


class StatusClass(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class ReconcileOutcome(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    NOOP = "NOOP"


STATUS_CLASSES: dict[str, StatusClass] = {
    "CREATE_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "CREATE_COMPLETE": StatusClass.SUCCEEDED,
    "CREATE_FAILED": StatusClass.FAILED,
    "ROLLBACK_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "ROLLBACK_COMPLETE": StatusClass.FAILED,
    "ROLLBACK_FAILED": StatusClass.FAILED,
    "DELETE_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "DELETE_COMPLETE": StatusClass.FAILED,
    "DELETE_FAILED": StatusClass.FAILED,
    "UPDATE_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "UPDATE_COMPLETE": StatusClass.SUCCEEDED,
    "UPDATE_FAILED": StatusClass.FAILED,
    "UPDATE_ROLLBACK_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "UPDATE_ROLLBACK_COMPLETE": StatusClass.FAILED,
    "UPDATE_ROLLBACK_FAILED": StatusClass.FAILED,
    "REVIEW_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "IMPORT_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "IMPORT_COMPLETE": StatusClass.SUCCEEDED,
    "IMPORT_ROLLBACK_IN_PROGRESS": StatusClass.IN_PROGRESS,
    "IMPORT_ROLLBACK_COMPLETE": StatusClass.FAILED,
    "IMPORT_ROLLBACK_FAILED": StatusClass.FAILED,
}

# Stacks in these states accept an update request.
_UPDATABLE = {"CREATE_COMPLETE", "UPDATE_COMPLETE", "UPDATE_ROLLBACK_COMPLETE", "IMPORT_COMPLETE"}


def classify_status(status: str) -> StatusClass:
    known = STATUS_CLASSES.get(status)
    if known is not None:
        return known
    if status.endswith("_IN_PROGRESS"):
        return StatusClass.IN_PROGRESS
    return StatusClass.FAILED


@dataclass(frozen=True)
class StackDescriptor:
    account_id: str
    region: str
    stack_name: str
    template_body: str
    capabilities: tuple[str, ...] = DEFAULT_CAPABILITIES
    parameters: dict[str, str] = field(default_factory=dict)

    def request(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "StackName": self.stack_name,
            "TemplateBody": self.template_body,
            "Capabilities": list(self.capabilities),
        }
        if self.parameters:
            payload["Parameters"] = [
                {"ParameterKey": key, "ParameterValue": value} for key, value in self.parameters.items()
            ]
        return payload


@dataclass(frozen=True)
class StackSnapshot:
    status: str
    reason: str | None = None


class StackReconciler:
    def __init__(
        self,
        sessions: AwsSessions,
        role_name: str,
        poll: PollPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sessions = sessions
        self.role_name = role_name
        self.poll = poll or PollPolicy()
        self._clock = clock
        self._sleep = sleep

    def reconcile(self, descriptor: StackDescriptor) -> ReconcileOutcome:
        session = self.sessions.for_account(descriptor.account_id, self.role_name)
        client = self.sessions.client("cloudformation", session=session, region=descriptor.region)

        current = self._describe(client, descriptor)
        if current is not None and classify_status(current.status) is StatusClass.IN_PROGRESS:
            logger.info(
                "PB: stack busy, waiting before reconcile stack=%s status=%s",
                descriptor.stack_name,
                current.status,
            )
            current = self._wait(client, descriptor, settle_only=True)

        if current is not None and current.status == "ROLLBACK_COMPLETE":
            logger.warning(
                "PB: stack never created successfully, deleting before create stack=%s account=%s",
                descriptor.stack_name,
                descriptor.account_id,
            )
            self._delete(client, descriptor)
            current = None
        elif current is not None and current.status == "DELETE_COMPLETE":
            current = None

        if current is None:
            self._call(client.create_stack, descriptor, **descriptor.request())
            logger.info("PB: stack create issued stack=%s account=%s", descriptor.stack_name, descriptor.account_id)
            self._wait(client, descriptor, success={"CREATE_COMPLETE"})
            return ReconcileOutcome.CREATED

        if current.status not in _UPDATABLE:
            raise StackApplyError(
                "stack is not in an updatable state",
                stack_name=descriptor.stack_name,
                account_id=descriptor.account_id,
                status=current.status,
                reason=current.reason,
            )
        try:
            client.update_stack(**descriptor.request())
        except ClientError as exc:
            if _is_no_updates(exc):
                logger.info("PB: stack up to date stack=%s account=%s", descriptor.stack_name, descriptor.account_id)
                return ReconcileOutcome.NOOP
            raise self._apply_error(exc, descriptor) from exc
        except BotoCoreError as exc:
            raise self._apply_error(exc, descriptor) from exc
        logger.info("PB: stack update issued stack=%s account=%s", descriptor.stack_name, descriptor.account_id)
        self._wait(client, descriptor, success={"UPDATE_COMPLETE"})
        return ReconcileOutcome.UPDATED

    def _describe(self, client: Any, descriptor: StackDescriptor) -> StackSnapshot | None:
        try:
            response = client.describe_stacks(StackName=descriptor.stack_name)
        except ClientError as exc:
            if _is_missing_stack(exc):
                return None
            raise self._apply_error(exc, descriptor) from exc
        except BotoCoreError as exc:
            raise self._apply_error(exc, descriptor) from exc
        stacks = response.get("Stacks", [])
        if not stacks:
            return None
        stack = stacks[0]
        return StackSnapshot(status=str(stack.get("StackStatus", "")), reason=stack.get("StackStatusReason"))

    def _delete(self, client: Any, descriptor: StackDescriptor) -> None:
        self._call(client.delete_stack, descriptor, StackName=descriptor.stack_name)
        self._wait(client, descriptor, success={"DELETE_COMPLETE"}, absent_ok=True)

    def _wait(
        self,
        client: Any,
        descriptor: StackDescriptor,
        *,
        success: set[str] | None = None,
        settle_only: bool = False,
        absent_ok: bool = False,
    ) -> StackSnapshot | None:
        deadline = self._clock() + self.poll.timeout_seconds
        attempt = 0
        last: StackSnapshot | None = None
        while True:
            attempt += 1
            last = self._describe(client, descriptor)
            if last is None:
                if absent_ok or settle_only:
                    return None
                raise StackApplyError(
                    "stack disappeared while waiting",
                    stack_name=descriptor.stack_name,
                    account_id=descriptor.account_id,
                )
            status_class = classify_status(last.status)
            if status_class is not StatusClass.IN_PROGRESS:
                if settle_only or (success and last.status in success):
                    return last
                raise StackApplyError(
                    "stack reached a failed state",
                    stack_name=descriptor.stack_name,
                    account_id=descriptor.account_id,
                    status=last.status,
                    reason=last.reason,
                )
            delay = self.poll.delay_for(attempt)
            if self._clock() + delay > deadline:
                raise StackTimeoutError(
                    f"no terminal status within {self.poll.timeout_seconds:.0f}s",
                    stack_name=descriptor.stack_name,
                    account_id=descriptor.account_id,
                    status=last.status,
                )
            logger.debug(
                "PB: stack poll stack=%s status=%s attempt=%s delay=%.1fs",
                descriptor.stack_name,
                last.status,
                attempt,
                delay,
            )
            self._sleep(delay)

    def _call(self, method: Callable[..., Any], descriptor: StackDescriptor, **kwargs: Any) -> Any:
        try:
            return method(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise self._apply_error(exc, descriptor) from exc

    @staticmethod
    def _apply_error(exc: Exception, descriptor: StackDescriptor) -> StackApplyError:
        return StackApplyError(
            "control plane rejected request",
            stack_name=descriptor.stack_name,
            account_id=descriptor.account_id,
            reason=str(exc),
        )


def _is_no_updates(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    return error.get("Code") == "ValidationError" and NO_UPDATES_MESSAGE in str(error.get("Message", ""))


def _is_missing_stack(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    return error.get("Code") == "ValidationError" and "does not exist" in str(error.get("Message", ""))
