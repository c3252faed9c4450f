from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass, field
from typing import Any

import pytest
from botocore.exceptions import ClientError

from org_formation.pipeline_bootstrap.aws import AwsSessions

MASTER_ACCOUNT_ID = "111111111111"
BUILD_ACCOUNT_ID = "222222222222"


def _client_error(code: str, message: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@dataclass
class FakeStack:
    status: str
    template_body: str
    parameters: list[dict[str, str]] = field(default_factory=list)
    reason: str | None = None


@dataclass
class FakeBucket:
    region: str
    versioning: str | None = None
    encrypted: bool = False
    public_access_blocked: bool = False
    objects: dict[str, bytes] = field(default_factory=dict)
    version_counter: int = 0


class FakeCloud:
    """Shared in-memory state behind every fake client."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self.accounts: list[dict[str, str]] = [
            {"Id": MASTER_ACCOUNT_ID, "Name": "management", "Email": "root@example.com", "Status": "ACTIVE"},
        ]
        self.master_account_id = MASTER_ACCOUNT_ID
        self.buckets: dict[str, FakeBucket] = {}
        self.bucket_owners: dict[str, str] = {}
        self.stacks: dict[tuple[str, str, str], FakeStack] = {}
        # (account, region, stack) -> statuses returned by successive describe calls
        self.status_scripts: dict[tuple[str, str, str], list[str]] = {}

    def record(self, account_id: str, service: str, operation: str) -> None:
        self.calls.append((account_id, service, operation))

    def operations(self, service: str | None = None) -> list[str]:
        return [op for _, svc, op in self.calls if service is None or svc == service]

    def add_account(self, account_id: str, name: str, email: str | None = None, status: str = "ACTIVE") -> None:
        self.accounts.append({"Id": account_id, "Name": name, "Email": email or f"{name}@example.com", "Status": status})


class FakeSts:
    def __init__(self, cloud: FakeCloud, account_id: str) -> None:
        self.cloud = cloud
        self.account_id = account_id

    def get_caller_identity(self) -> dict[str, str]:
        self.cloud.record(self.account_id, "sts", "GetCallerIdentity")
        return {"Account": self.account_id, "Arn": f"arn:aws:iam::{self.account_id}:user/admin"}

    def assume_role(self, RoleArn: str, RoleSessionName: str) -> dict[str, Any]:
        self.cloud.record(self.account_id, "sts", "AssumeRole")
        target = RoleArn.split(":")[4]
        return {
            "Credentials": {
                "AccessKeyId": f"AK-{target}",
                "SecretAccessKey": "secret",
                "SessionToken": "token",
            }
        }


class FakePaginator:
    def __init__(self, pages: list[dict[str, Any]]) -> None:
        self._pages = pages

    def paginate(self, **_kwargs: Any):
        return iter(self._pages)


class FakeOrganizations:
    def __init__(self, cloud: FakeCloud, account_id: str) -> None:
        self.cloud = cloud
        self.account_id = account_id

    def describe_organization(self) -> dict[str, Any]:
        self.cloud.record(self.account_id, "organizations", "DescribeOrganization")
        return {"Organization": {"Id": "o-test", "MasterAccountId": self.cloud.master_account_id}}

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_accounts"
        self.cloud.record(self.account_id, "organizations", "ListAccounts")
        accounts = list(self.cloud.accounts)
        return FakePaginator([{"Accounts": accounts[:1]}, {"Accounts": accounts[1:]}])


class FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data


class FakeS3:
    def __init__(self, cloud: FakeCloud, account_id: str, region: str | None) -> None:
        self.cloud = cloud
        self.account_id = account_id
        self.region = region

    def _bucket(self, name: str, operation: str) -> FakeBucket:
        bucket = self.cloud.buckets.get(name)
        if bucket is None:
            raise _client_error("NoSuchBucket", "The specified bucket does not exist", operation)
        return bucket

    def head_bucket(self, Bucket: str) -> dict[str, Any]:
        self.cloud.record(self.account_id, "s3", "HeadBucket")
        if Bucket not in self.cloud.buckets:
            raise _client_error("404", "Not Found", "HeadBucket")
        return {}

    def create_bucket(self, Bucket: str, CreateBucketConfiguration: dict[str, str] | None = None) -> dict[str, Any]:
        self.cloud.record(self.account_id, "s3", "CreateBucket")
        if Bucket in self.cloud.buckets:
            raise _client_error("BucketAlreadyOwnedByYou", "owned", "CreateBucket")
        region = (CreateBucketConfiguration or {}).get("LocationConstraint", "us-east-1")
        self.cloud.buckets[Bucket] = FakeBucket(region=region)
        self.cloud.bucket_owners[Bucket] = self.account_id
        return {}

    def put_public_access_block(self, Bucket: str, PublicAccessBlockConfiguration: dict[str, bool]) -> None:
        self.cloud.record(self.account_id, "s3", "PutPublicAccessBlock")
        self._bucket(Bucket, "PutPublicAccessBlock").public_access_blocked = all(
            PublicAccessBlockConfiguration.values()
        )

    def put_bucket_encryption(self, Bucket: str, ServerSideEncryptionConfiguration: dict[str, Any]) -> None:
        self.cloud.record(self.account_id, "s3", "PutBucketEncryption")
        self._bucket(Bucket, "PutBucketEncryption").encrypted = True

    def put_bucket_versioning(self, Bucket: str, VersioningConfiguration: dict[str, str]) -> None:
        self.cloud.record(self.account_id, "s3", "PutBucketVersioning")
        self._bucket(Bucket, "PutBucketVersioning").versioning = VersioningConfiguration["Status"]

    def put_object(self, Bucket: str, Key: str, Body: bytes, **_kwargs: Any) -> dict[str, Any]:
        self.cloud.record(self.account_id, "s3", f"PutObject:{Key}")
        bucket = self._bucket(Bucket, "PutObject")
        bucket.objects[Key] = bytes(Body)
        bucket.version_counter += 1
        return {"VersionId": f"v{bucket.version_counter}"}

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self.cloud.record(self.account_id, "s3", f"GetObject:{Key}")
        bucket = self._bucket(Bucket, "GetObject")
        if Key not in bucket.objects:
            raise _client_error("NoSuchKey", "The specified key does not exist.", "GetObject")
        return {"Body": FakeBody(bucket.objects[Key])}

    def delete_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self.cloud.record(self.account_id, "s3", f"DeleteObject:{Key}")
        self._bucket(Bucket, "DeleteObject").objects.pop(Key, None)
        return {}


class FakeCloudFormation:
    def __init__(self, cloud: FakeCloud, account_id: str, region: str | None) -> None:
        self.cloud = cloud
        self.account_id = account_id
        self.region = region or "us-east-1"

    def _key(self, name: str) -> tuple[str, str, str]:
        return (self.account_id, self.region, name)

    def describe_stacks(self, StackName: str) -> dict[str, Any]:
        self.cloud.record(self.account_id, "cloudformation", "DescribeStacks")
        key = self._key(StackName)
        stack = self.cloud.stacks.get(key)
        script = self.cloud.status_scripts.get(key)
        if stack is not None and script:
            stack.status = script.pop(0)
            if stack.status == "DELETE_COMPLETE":
                del self.cloud.stacks[key]
                return {"Stacks": [{"StackName": StackName, "StackStatus": "DELETE_COMPLETE"}]}
        if stack is None:
            raise _client_error("ValidationError", f"Stack with id {StackName} does not exist", "DescribeStacks")
        return {
            "Stacks": [
                {"StackName": StackName, "StackStatus": stack.status, "StackStatusReason": stack.reason}
            ]
        }

    def create_stack(self, StackName: str, TemplateBody: str, Capabilities: list[str], Parameters=None) -> dict:
        self.cloud.record(self.account_id, "cloudformation", f"CreateStack:{StackName}")
        key = self._key(StackName)
        if key in self.cloud.stacks:
            raise _client_error("AlreadyExistsException", f"Stack [{StackName}] already exists", "CreateStack")
        self.cloud.stacks[key] = FakeStack(
            status="CREATE_COMPLETE",
            template_body=TemplateBody,
            parameters=list(Parameters or []),
        )
        return {"StackId": f"arn:aws:cloudformation:{self.region}:{self.account_id}:stack/{StackName}/1"}

    def update_stack(self, StackName: str, TemplateBody: str, Capabilities: list[str], Parameters=None) -> dict:
        self.cloud.record(self.account_id, "cloudformation", f"UpdateStack:{StackName}")
        key = self._key(StackName)
        stack = self.cloud.stacks.get(key)
        if stack is None:
            raise _client_error("ValidationError", f"Stack [{StackName}] does not exist", "UpdateStack")
        parameters = list(Parameters or [])
        if stack.template_body == TemplateBody and stack.parameters == parameters:
            raise _client_error("ValidationError", "No updates are to be performed.", "UpdateStack")
        stack.template_body = TemplateBody
        stack.parameters = parameters
        stack.status = "UPDATE_COMPLETE"
        return {"StackId": f"arn:aws:cloudformation:{self.region}:{self.account_id}:stack/{StackName}/1"}

    def delete_stack(self, StackName: str) -> dict:
        self.cloud.record(self.account_id, "cloudformation", f"DeleteStack:{StackName}")
        self.cloud.stacks.pop(self._key(StackName), None)
        return {}


class FakeSession:
    def __init__(self, cloud: FakeCloud, account_id: str) -> None:
        self.cloud = cloud
        self.account_id = account_id

    def client(self, service: str, region_name: str | None = None, config: Any = None) -> Any:
        if service == "sts":
            return FakeSts(self.cloud, self.account_id)
        if service == "organizations":
            return FakeOrganizations(self.cloud, self.account_id)
        if service == "s3":
            return FakeS3(self.cloud, self.account_id, region_name)
        if service == "cloudformation":
            return FakeCloudFormation(self.cloud, self.account_id, region_name)
        raise AssertionError(f"unexpected service {service}")


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def sessions(cloud: FakeCloud) -> AwsSessions:
    def factory(**kwargs: Any) -> FakeSession:
        access_key = str(kwargs.get("aws_access_key_id") or "")
        account_id = access_key.removeprefix("AK-") if access_key else MASTER_ACCOUNT_ID
        return FakeSession(cloud, account_id)

    return AwsSessions(FakeSession(cloud, MASTER_ACCOUNT_ID), session_factory=factory)


@pytest.fixture
def resources_dir(tmp_path):
    """A small copy of the template resources with every placeholder in play."""
    root = tmp_path / "resources"
    (root / "initial-commit" / "templates").mkdir(parents=True)
    (root / "initial-commit" / "README.md").write_text("# org\n", encoding="utf-8")
    (root / "initial-commit" / "templates" / "notes.txt").write_text("notes\n", encoding="utf-8")
    (root / "buildspec.yml").write_text("commands:\n  - org-formation perform-tasks XXX-ARGS\n", encoding="utf-8")
    (root / "orgformation-codepipeline.yml").write_text(
        "Parameters:\n  stateBucketName: {Type: String}\n", encoding="utf-8"
    )
    (root / "local-build-orgformation-tasks.yml").write_text(
        "StackName: XXX-stackName\nRegion: XXX-region\nPrefix: XXX-resourcePrefix\n"
        "Bucket: XXX-stateBucketName\nRepo: XXX-repositoryName\n",
        encoding="utf-8",
    )
    (root / "delegated-build-orgformation-tasks.yml").write_text(
        "StackName: XXX-stackName\nRoleStack: XXX-roleStackName\nAccount: XXX-buildAccountLogicalName\n"
        "Role: XXX-organizationFormationBuildAccessRoleName\nCross: XXX-organizationAccountAccessRoleName\n",
        encoding="utf-8",
    )
    (root / "orgformation-build-access-role.yml").write_text(
        "RoleName: XXX-organizationFormationBuildAccessRoleName\n", encoding="utf-8"
    )
    return root


@pytest.fixture
def read_zip():
    def _read(data: bytes) -> dict[str, bytes]:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            return {name: archive.read(name) for name in archive.namelist()}

    return _read
