import copy
import os

import pytest
from credential_authority import CREDENTIAL_STATUS_ACTIVE
from rotation_errors import (
    CredentialAuthorityError,
    CredentialNotFound,
    QuotaExceeded,
    SecretNotFound,
    SecretStoreError,
    SecretValueNotFound,
)
from secret_store import VERSION_STAGE_CURRENT, VERSION_STAGE_PENDING, VERSION_STAGE_PREVIOUS

SECRET_ARN = "arn:aws:secretsmanager:us-east-1:111111111111:secret:rotator-test-AbCdEf"
USER_NAME = "rotator-test"
SERVICE_NAME = "codecommit.amazonaws.com"
SERVICE_TAGS = [
    {"Key": "rotator:resourceType", "Value": "ServiceSpecificCredential"},
    {"Key": "rotator:userName", "Value": USER_NAME},
    {"Key": "rotator:serviceName", "Value": SERVICE_NAME},
]


@pytest.fixture(scope="module", autouse=True)
def aws_credentials():
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


class FakeSecretStore:
    """In-memory secret store with Secrets Manager's version stage semantics."""

    def __init__(self):
        self.secrets = {}
        self.calls = []
        self.fail_update_stage = False
        self.password_counter = 0

    def add_secret(self, arn, tags=None, rotation_enabled=True):
        self.secrets[arn] = {"versions": {}, "tags": tags or [], "rotation_enabled": rotation_enabled}

    def add_version(self, arn, token, secret, stages):
        self.secrets[arn]["versions"][token] = {"secret": copy.deepcopy(secret), "stages": []}
        for stage in stages:
            self._attach_stage(arn, stage, token)

    def start_rotation(self, arn, token):
        # Secrets Manager registers the new version as AWSPENDING before createSecret runs
        self.secrets[arn]["versions"].setdefault(token, {"secret": None, "stages": []})
        self._attach_stage(arn, VERSION_STAGE_PENDING, token)

    def stages_of(self, arn, token):
        return list(self.secrets[arn]["versions"][token]["stages"])

    def versions_with_stage(self, arn, stage):
        return [t for t, v in self.secrets[arn]["versions"].items() if stage in v["stages"]]

    def _attach_stage(self, arn, stage, token):
        for version in self.secrets[arn]["versions"].values():
            if stage in version["stages"]:
                version["stages"].remove(stage)
        self.secrets[arn]["versions"][token]["stages"].append(stage)

    def _secret(self, arn):
        if arn not in self.secrets:
            raise SecretNotFound("Secret not found", arn)
        return self.secrets[arn]

    def describe_secret(self, secret_id):
        self.calls.append(("describe_secret", secret_id))
        secret = self._secret(secret_id)
        return {
            "versions": {t: list(v["stages"]) for t, v in secret["versions"].items()},
            "rotation_enabled": secret["rotation_enabled"],
            "tags": copy.deepcopy(secret["tags"]),
        }

    def get_secret_value(self, secret_id, version_stage=None, version_id=None):
        self.calls.append(("get_secret_value", secret_id, version_stage, version_id))
        versions = self._secret(secret_id)["versions"]
        if version_id is not None:
            version = versions.get(version_id)
            if version is None or version["secret"] is None:
                raise SecretValueNotFound("No such version", secret_id, version_stage, version_id)
            if version_stage is not None and version_stage not in version["stages"]:
                raise SecretValueNotFound("Version not in stage", secret_id, version_stage, version_id)
            return copy.deepcopy(version["secret"])
        for version in versions.values():
            if version_stage in version["stages"] and version["secret"] is not None:
                return copy.deepcopy(version["secret"])
        raise SecretValueNotFound("No version in stage", secret_id, version_stage, version_id)

    def put_secret_value(self, secret_id, token, secret, version_stages):
        self.calls.append(("put_secret_value", secret_id, token, version_stages))
        versions = self._secret(secret_id)["versions"]
        existing = versions.get(token)
        if existing is not None and existing["secret"] is not None and existing["secret"] != secret:
            raise SecretStoreError("Version already exists with different value", secret_id)
        versions.setdefault(token, {"secret": None, "stages": []})
        versions[token]["secret"] = copy.deepcopy(secret)
        for stage in version_stages:
            self._attach_stage(secret_id, stage, token)

    def update_secret_version_stage(self, secret_id, version_stage, move_to_version_id, remove_from_version_id=None):
        self.calls.append(("update_secret_version_stage", secret_id, version_stage, move_to_version_id, remove_from_version_id))
        if self.fail_update_stage:
            raise SecretStoreError("update_secret_version_stage failed: throttled", secret_id)
        versions = self._secret(secret_id)["versions"]
        if move_to_version_id not in versions:
            raise SecretValueNotFound("No such version", secret_id, version_stage, move_to_version_id)
        holders = [t for t, v in versions.items() if version_stage in v["stages"] and t != move_to_version_id]
        if holders and holders != [remove_from_version_id]:
            raise SecretStoreError("Stage is attached to another version", secret_id)

        # Single atomic update
        if remove_from_version_id is not None:
            versions[remove_from_version_id]["stages"].remove(version_stage)
            if version_stage == VERSION_STAGE_CURRENT:
                self._attach_stage(secret_id, VERSION_STAGE_PREVIOUS, remove_from_version_id)
        if version_stage not in versions[move_to_version_id]["stages"]:
            versions[move_to_version_id]["stages"].append(version_stage)

    def get_random_password(self):
        self.password_counter += 1
        return f"random-password-{self.password_counter}"


class FakeCredentialAuthority:
    """In-memory IAM service-specific credentials with a per-user quota."""

    def __init__(self, limit=2):
        self.limit = limit
        self.credentials = {}
        self.counter = 0
        self.created = []
        self.deleted = []
        self.updated = []
        self.fail_delete = False

    def add_credential(self, user_name, service_name, password="existing-password", status=CREDENTIAL_STATUS_ACTIVE):
        self.counter += 1
        credential_id = f"ACCA{self.counter:04d}"
        self.credentials[credential_id] = {
            "service_specific_credential_id": credential_id,
            "service_user_name": f"{user_name}-at-111111111111-{self.counter}",
            "service_password": password,
            "service_name": service_name,
            "user_name": user_name,
            "status": status,
            "create_date": None,
        }
        return copy.deepcopy(self.credentials[credential_id])

    def _owned(self, user_name, service_name):
        return [c for c in self.credentials.values() if c["user_name"] == user_name and c["service_name"] == service_name]

    def list_service_specific_credentials(self, user_name, service_name):
        result = []
        for credential in self._owned(user_name, service_name):
            metadata = copy.deepcopy(credential)
            metadata["service_password"] = None
            result.append(metadata)
        return result

    def create_service_specific_credential(self, user_name, service_name):
        if len(self._owned(user_name, service_name)) >= self.limit:
            raise QuotaExceeded("LimitExceeded")
        credential = self.add_credential(user_name, service_name, password=f"new-password-{self.counter + 1}")
        self.created.append(credential["service_specific_credential_id"])
        return credential

    def reset_service_specific_credential(self, credential_id, user_name):
        if credential_id not in self.credentials:
            raise CredentialNotFound("NoSuchEntity")
        self.credentials[credential_id]["service_password"] = f"reset-password-{credential_id}"
        return copy.deepcopy(self.credentials[credential_id])

    def update_service_specific_credential(self, credential_id, user_name, status):
        if credential_id not in self.credentials:
            raise CredentialNotFound("NoSuchEntity")
        self.updated.append((credential_id, status))
        self.credentials[credential_id]["status"] = status

    def delete_service_specific_credential(self, credential_id, user_name):
        if self.fail_delete:
            raise CredentialAuthorityError("delete_service_specific_credential failed: throttled")
        if credential_id not in self.credentials:
            raise CredentialNotFound("NoSuchEntity")
        self.deleted.append(credential_id)
        del self.credentials[credential_id]


@pytest.fixture
def secret_store():
    return FakeSecretStore()


@pytest.fixture
def credential_authority():
    return FakeCredentialAuthority()


@pytest.fixture
def rotating_secret(secret_store, credential_authority):
    """
    Secret with version v1 (AWSCURRENT) bound to credential c1, and rotation
    started with token v2 (AWSPENDING, no value yet).
    """
    c1 = credential_authority.add_credential(USER_NAME, SERVICE_NAME)
    secret_store.add_secret(SECRET_ARN, tags=SERVICE_TAGS)
    secret_store.add_version(
        SECRET_ARN,
        "v1",
        {
            "username": c1["service_user_name"],
            "password": c1["service_password"],
            "service_specific_credential_id": c1["service_specific_credential_id"],
            "repository": "rotator-test-repo",
        },
        [VERSION_STAGE_CURRENT],
    )
    secret_store.start_rotation(SECRET_ARN, "v2")
    return c1
