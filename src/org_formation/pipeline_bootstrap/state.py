"""Organization state snapshot persisted to the versioned state bucket."""

from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError

from .errors import BootstrapError
from .organization import OrganizationState
from .schemas import ORGANIZATION_STATE_SCHEMA, SchemaRegistry
from .storage import ObjectRef, S3Bucket

logger = logging.getLogger(__name__)


class StateSnapshotStore:
    def __init__(
        self,
        bucket: S3Bucket,
        key: str,
        region: str,
        master_account_id: str,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self.bucket = bucket
        self.key = key
        self.region = region
        self.master_account_id = master_account_id
        self.schemas = schemas or SchemaRegistry()

    def provision(self) -> bool:
        return self.bucket.ensure(self.region, versioning=True)

    def read(self) -> OrganizationState | None:
        try:
            payload = self.bucket.read_json(self.key)
        except (ClientError, BotoCoreError, ValueError) as exc:
            raise BootstrapError(
                "STATE_READ_FAILED",
                f"s3://{self.bucket.bucket}/{self.key}: {exc}",
                account_id=self.bucket.account_id,
            ) from exc
        if payload is None:
            return None
        try:
            self.schemas.validate(ORGANIZATION_STATE_SCHEMA, payload)
            return OrganizationState.from_dict(payload)
        except ValueError as exc:
            raise BootstrapError(
                "STATE_INVALID",
                f"s3://{self.bucket.bucket}/{self.key}: {exc}",
                account_id=self.bucket.account_id,
            ) from exc

    def load(self) -> OrganizationState:
        self.provision()
        state = self.read()
        if state is None:
            logger.info("PB: no state snapshot yet bucket=%s key=%s", self.bucket.bucket, self.key)
            return OrganizationState.empty(self.master_account_id)
        return state

    def save(self, state: OrganizationState) -> ObjectRef:
        ref = self.bucket.write_json(self.key, state.as_dict())
        logger.info("PB: state snapshot saved uri=%s version_id=%s", ref.uri, ref.version_id)
        return ref
