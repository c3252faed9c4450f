"""Organization account graph: reading, logical ids, snapshot form and default template."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Iterable

import yaml
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BootstrapError

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "v1"
MASTER_LOGICAL_ID = "MasterAccount"
TEMPLATE_FORMAT_VERSION = "2010-09-09-OC"

_WORD_PATTERN = re.compile(r"[A-Za-z0-9]+")


@dataclass(frozen=True)
class AccountBinding:
    physical_id: str
    logical_id: str
    name: str
    email: str | None = None
    is_master: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "physical_id": self.physical_id,
            "logical_id": self.logical_id,
            "name": self.name,
            "email": self.email,
            "is_master": self.is_master,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AccountBinding":
        return cls(
            physical_id=str(payload["physical_id"]),
            logical_id=str(payload["logical_id"]),
            name=str(payload.get("name") or ""),
            email=payload.get("email"),
            is_master=bool(payload.get("is_master", False)),
        )


@dataclass(frozen=True)
class AccountRecord:
    """Raw account row as listed by AWS Organizations."""

    account_id: str
    name: str
    email: str | None = None


class OrganizationState:
    """Accounts of the organization keyed by physical id."""

    def __init__(self, master_account_id: str, accounts: Iterable[AccountBinding] = ()) -> None:
        self.master_account_id = master_account_id
        self._by_physical: dict[str, AccountBinding] = {}
        seen_logical: set[str] = set()
        for binding in accounts:
            if binding.physical_id in self._by_physical:
                raise ValueError(f"duplicate account id {binding.physical_id}")
            if binding.logical_id in seen_logical:
                raise ValueError(f"duplicate logical id {binding.logical_id}")
            seen_logical.add(binding.logical_id)
            self._by_physical[binding.physical_id] = binding

    @classmethod
    def empty(cls, master_account_id: str) -> "OrganizationState":
        return cls(master_account_id)

    @classmethod
    def from_records(cls, master_account_id: str, records: Iterable[AccountRecord]) -> "OrganizationState":
        """Assign fresh logical ids to listed accounts."""
        ordered = sorted(records, key=lambda record: record.account_id)
        used: set[str] = {MASTER_LOGICAL_ID}
        bindings: list[AccountBinding] = []
        for record in ordered:
            if record.account_id == master_account_id:
                logical_id = MASTER_LOGICAL_ID
            else:
                logical_id = _unique(logical_id_for_name(record.name), used)
                used.add(logical_id)
            bindings.append(
                AccountBinding(
                    physical_id=record.account_id,
                    logical_id=logical_id,
                    name=record.name,
                    email=record.email,
                    is_master=record.account_id == master_account_id,
                )
            )
        return cls(master_account_id, bindings)

    @property
    def accounts(self) -> list[AccountBinding]:
        return sorted(self._by_physical.values(), key=lambda binding: binding.logical_id)

    def get(self, physical_id: str) -> AccountBinding | None:
        return self._by_physical.get(physical_id)

    def logical_id_for(self, physical_id: str) -> str | None:
        binding = self._by_physical.get(physical_id)
        return binding.logical_id if binding else None

    def merged_with(self, previous: "OrganizationState | None") -> "OrganizationState":
        """Keep logical ids already bound in `previous` for accounts still present.

        Accounts that are new get their fresh id unless it collides with an id
        the snapshot already holds, in which case a numeric suffix is added.
        """
        if previous is None:
            return self
        kept: list[AccountBinding] = []
        used: set[str] = set()
        fresh: list[AccountBinding] = []
        for binding in sorted(self._by_physical.values(), key=lambda item: item.physical_id):
            prior = previous.get(binding.physical_id)
            if prior is not None:
                kept.append(replace(binding, logical_id=prior.logical_id))
                used.add(prior.logical_id)
            else:
                fresh.append(binding)
        for binding in fresh:
            logical_id = binding.logical_id
            if logical_id in used:
                logical_id = _unique(logical_id, used)
            used.add(logical_id)
            kept.append(replace(binding, logical_id=logical_id))
        return OrganizationState(self.master_account_id, kept)

    def as_dict(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "master_account_id": self.master_account_id,
            "accounts": [binding.as_dict() for binding in self.accounts],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "OrganizationState":
        version = payload.get("version")
        if version != SNAPSHOT_VERSION:
            raise BootstrapError("STATE_VERSION_UNSUPPORTED", str(version))
        accounts = [AccountBinding.from_dict(item) for item in payload.get("accounts", [])]
        return cls(str(payload["master_account_id"]), accounts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OrganizationState):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def __repr__(self) -> str:
        return f"OrganizationState(master={self.master_account_id}, accounts={len(self._by_physical)})"


def logical_id_for_name(name: str) -> str:
    words = _WORD_PATTERN.findall(name or "")
    base = "".join(word[:1].upper() + word[1:] for word in words)
    if not base:
        base = "Account"
    elif not base.endswith("Account"):
        base = f"{base}Account"
    if base[0].isdigit():
        base = f"Account{base}"
    return base


def _unique(candidate: str, used: set[str]) -> str:
    if candidate not in used:
        return candidate
    counter = 2
    while f"{candidate}{counter}" in used:
        counter += 1
    return f"{candidate}{counter}"


class OrganizationReader:
    def __init__(self, client: Any) -> None:
        self._client = client

    def read(self) -> OrganizationState:
        try:
            organization = self._client.describe_organization()["Organization"]
            master_account_id = str(organization["MasterAccountId"])
            records: list[AccountRecord] = []
            paginator = self._client.get_paginator("list_accounts")
            for page in paginator.paginate():
                for account in page.get("Accounts", []):
                    if account.get("Status", "ACTIVE") != "ACTIVE":
                        continue
                    records.append(
                        AccountRecord(
                            account_id=str(account["Id"]),
                            name=str(account.get("Name") or account["Id"]),
                            email=account.get("Email"),
                        )
                    )
        except (ClientError, BotoCoreError) as exc:
            raise BootstrapError("ORGANIZATION_READ_FAILED", str(exc)) from exc
        logger.info("PB: organization read master_account_id=%s accounts=%s", master_account_id, len(records))
        return OrganizationState.from_records(master_account_id, records)


def render_organization_template(
    state: OrganizationState,
    *,
    cross_account_role_name: str,
    build_process_role_name: str | None = None,
) -> str:
    """Default `organization.yml` describing the accounts currently bound."""
    root_properties: dict[str, Any] = {"DefaultOrganizationAccessRoleName": cross_account_role_name}
    if build_process_role_name:
        root_properties["DefaultBuildAccessRoleName"] = build_process_role_name

    resources: dict[str, Any] = {}
    master = state.get(state.master_account_id)
    master_properties: dict[str, Any] = {"AccountId": state.master_account_id}
    if master is not None:
        master_properties = {"AccountName": master.name, "AccountId": master.physical_id}
        if master.email:
            master_properties["RootEmail"] = master.email
    resources[MASTER_LOGICAL_ID if master is None else master.logical_id] = {
        "Type": "OC::ORG::MasterAccount",
        "Properties": master_properties,
    }
    resources["OrganizationRoot"] = {"Type": "OC::ORG::OrganizationRoot", "Properties": root_properties}
    for binding in state.accounts:
        if binding.is_master:
            continue
        properties: dict[str, Any] = {"AccountName": binding.name, "AccountId": binding.physical_id}
        if binding.email:
            properties["RootEmail"] = binding.email
        resources[binding.logical_id] = {"Type": "OC::ORG::Account", "Properties": properties}

    document = {
        "AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION,
        "Description": f"default template generated for organization with master account {state.master_account_id}",
        "Organization": resources,
    }
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
