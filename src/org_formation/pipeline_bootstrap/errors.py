"""Pipeline bootstrap error taxonomy."""

from __future__ import annotations


class BootstrapError(RuntimeError):
    """Stable error surfaced with a reason code and the remote context we know."""

    def __init__(
        self,
        code: str,
        detail: str | None = None,
        *,
        account_id: str | None = None,
        stack_name: str | None = None,
        status: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.code = code
        self.detail = detail
        self.account_id = account_id
        self.stack_name = stack_name
        self.status = status
        self.reason = reason
        message = f"{code}:{detail}" if detail else code
        context = _context_suffix(account_id, stack_name, status, reason)
        if context:
            message = f"{message} ({context})"
        super().__init__(message)


class ConfigurationError(BootstrapError):
    def __init__(self, detail: str) -> None:
        super().__init__("CONFIGURATION_INVALID", detail)


class NotFoundError(BootstrapError):
    def __init__(self, detail: str, *, account_id: str | None = None) -> None:
        super().__init__("NOT_FOUND", detail, account_id=account_id)


class PackagingError(BootstrapError):
    def __init__(self, detail: str) -> None:
        super().__init__("PACKAGING_FAILED", detail)


class UploadError(BootstrapError):
    def __init__(self, detail: str, *, account_id: str | None = None) -> None:
        super().__init__("UPLOAD_FAILED", detail, account_id=account_id)


class StackApplyError(BootstrapError):
    def __init__(
        self,
        detail: str,
        *,
        stack_name: str,
        account_id: str | None,
        status: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(
            "STACK_APPLY_FAILED",
            detail,
            account_id=account_id,
            stack_name=stack_name,
            status=status,
            reason=reason,
        )


class StackTimeoutError(BootstrapError, TimeoutError):
    def __init__(
        self,
        detail: str,
        *,
        stack_name: str,
        account_id: str | None,
        status: str | None = None,
    ) -> None:
        super().__init__(
            "STACK_TIMEOUT",
            detail,
            account_id=account_id,
            stack_name=stack_name,
            status=status,
        )


def _context_suffix(
    account_id: str | None,
    stack_name: str | None,
    status: str | None,
    reason: str | None,
) -> str:
    parts = []
    if account_id:
        parts.append(f"account={account_id}")
    if stack_name:
        parts.append(f"stack={stack_name}")
    if status:
        parts.append(f"status={status}")
    if reason:
        parts.append(f"reason={reason}")
    return " ".join(parts)


def reason_code(exc: Exception) -> str:
    if isinstance(exc, BootstrapError):
        return exc.code
    return "INTERNAL_ERROR"
