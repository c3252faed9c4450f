"""Pipeline bootstrap package."""

from .config import PollPolicy, ReconciliationContext, build_context
from .errors import (
    BootstrapError,
    ConfigurationError,
    NotFoundError,
    PackagingError,
    StackApplyError,
    StackTimeoutError,
    UploadError,
)
from .runner import BootstrapResult, PipelineBootstrapper

__all__ = [
    "BootstrapError",
    "BootstrapResult",
    "ConfigurationError",
    "NotFoundError",
    "PackagingError",
    "PipelineBootstrapper",
    "PollPolicy",
    "ReconciliationContext",
    "StackApplyError",
    "StackTimeoutError",
    "UploadError",
    "build_context",
]
