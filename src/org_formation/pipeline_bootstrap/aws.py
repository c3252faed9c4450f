"""AWS session handling: caller identity and cross-account role sessions."""

from __future__ import annotations

import logging
from typing import Any, Callable

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BootstrapError

logger = logging.getLogger(__name__)

CLIENT_CONFIG = Config(retries={"max_attempts": 10, "mode": "standard"})
SESSION_NAME = "OrganizationFormationBootstrap"

SessionFactory = Callable[..., Any]


class AwsSessions:
    """Explicit credential context shared by every component of one run.

    The base session belongs to the caller (the organization management
    account). Sessions for other accounts are obtained by assuming the
    cross-account role and are cached per (account, role).
    """

    def __init__(
        self,
        base_session: Any | None = None,
        *,
        profile_name: str | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._session_factory = session_factory or boto3.session.Session
        if base_session is None:
            base_session = self._session_factory(profile_name=profile_name)
        self.base_session = base_session
        self._caller_account_id: str | None = None
        self._assumed: dict[tuple[str, str], Any] = {}

    def client(self, service: str, *, session: Any | None = None, region: str | None = None) -> Any:
        target = session or self.base_session
        return target.client(service, region_name=region, config=CLIENT_CONFIG)

    def caller_account_id(self) -> str:
        if self._caller_account_id is None:
            try:
                identity = self.client("sts").get_caller_identity()
            except (ClientError, BotoCoreError) as exc:
                raise BootstrapError("CALLER_IDENTITY_UNAVAILABLE", str(exc)) from exc
            self._caller_account_id = str(identity["Account"])
            logger.debug("PB: caller identity resolved account_id=%s", self._caller_account_id)
        return self._caller_account_id

    def for_account(self, account_id: str, role_name: str) -> Any:
        if account_id == self.caller_account_id():
            return self.base_session
        key = (account_id, role_name)
        if key not in self._assumed:
            self._assumed[key] = self._assume_role(account_id, role_name)
        return self._assumed[key]

    def _assume_role(self, account_id: str, role_name: str) -> Any:
        role_arn = f"arn:aws:iam::{account_id}:role/{role_name}"
        logger.info("PB: assuming role role_arn=%s", role_arn)
        try:
            response = self.client("sts").assume_role(RoleArn=role_arn, RoleSessionName=SESSION_NAME)
        except (ClientError, BotoCoreError) as exc:
            raise BootstrapError("ASSUME_ROLE_FAILED", str(exc), account_id=account_id) from exc
        credentials = response["Credentials"]
        return self._session_factory(
            aws_access_key_id=credentials["AccessKeyId"],
            aws_secret_access_key=credentials["SecretAccessKey"],
            aws_session_token=credentials["SessionToken"],
        )
