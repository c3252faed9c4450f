"""Deterministic zip assembly for the initial commit."""

from __future__ import annotations

import hashlib
import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path

from .errors import PackagingError

logger = logging.getLogger(__name__)

BUILDSPEC_ENTRY = "buildspec.yml"
ORGANIZATION_ENTRY = "organization.yml"
TASKS_ENTRY = "organization-tasks.yml"
PIPELINE_TEMPLATE_ENTRY = "templates/org-formation-build.yml"
BUILD_ROLE_TEMPLATE_ENTRY = "templates/org-formation-build-role.yml"

# 1980-01-01 is the earliest timestamp a zip entry can hold.
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o644 << 16


@dataclass(frozen=True)
class ArtifactBundle:
    base_dir: Path
    buildspec: str
    organization_template: str
    organization_tasks: str
    pipeline_template: str
    build_role_template: str | None = None

    def named_entries(self) -> list[tuple[str, str]]:
        entries = [
            (BUILDSPEC_ENTRY, self.buildspec),
            (ORGANIZATION_ENTRY, self.organization_template),
            (TASKS_ENTRY, self.organization_tasks),
            (PIPELINE_TEMPLATE_ENTRY, self.pipeline_template),
        ]
        if self.build_role_template is not None:
            entries.append((BUILD_ROLE_TEMPLATE_ENTRY, self.build_role_template))
        return entries


def _directory_entries(base_dir: Path) -> list[tuple[str, Path]]:
    if not base_dir.is_dir():
        raise PackagingError(f"static directory {base_dir} does not exist")
    files = [path for path in base_dir.rglob("*") if path.is_file()]
    return sorted(((path.relative_to(base_dir).as_posix(), path) for path in files), key=lambda item: item[0])


def _write_entry(archive: zipfile.ZipFile, name: str, data: bytes) -> None:
    info = zipfile.ZipInfo(name, date_time=_FIXED_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = _FILE_MODE
    info.create_system = 3
    archive.writestr(info, data)


def package_artifact(bundle: ArtifactBundle) -> bytes:
    """Return the finished archive bytes; nothing is returned on failure."""
    named = bundle.named_entries()
    overridden = {name for name, _ in named}
    buffer = io.BytesIO()
    try:
        with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, path in _directory_entries(bundle.base_dir):
                if name in overridden:
                    continue
                _write_entry(archive, name, path.read_bytes())
            for name, content in named:
                _write_entry(archive, name, content.encode("utf-8"))
    except PackagingError:
        raise
    except (OSError, ValueError, zipfile.BadZipFile) as exc:
        raise PackagingError(str(exc)) from exc
    data = buffer.getvalue()
    logger.info(
        "PB: archive packaged entries=%s bytes=%s sha256=%s",
        len(named),
        len(data),
        archive_digest(data),
    )
    return data


def archive_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
