"""
Unit Test: rotation_config.py
"""
import pytest
from rotation_config import (
    RotationConfig,
    get_boto_config,
    get_credential_retirement,
    get_env_bool,
    get_env_int,
)
from rotation_errors import PreconditionFailed

SECRET_ARN = "arn:aws:secretsmanager:us-east-1:111111111111:secret:rotator-test-AbCdEf"


def test_from_tags_service_specific_credential():
    tags = [
        {"Key": "rotator:resourceType", "Value": "ServiceSpecificCredential"},
        {"Key": "rotator:userName", "Value": "rotator-test"},
        {"Key": "rotator:serviceName", "Value": "codecommit.amazonaws.com"},
        {"Key": "rotator:repositoryName", "Value": "rotator-test-repo"},
        {"Key": "Project", "Value": "rotator"},
    ]

    config = RotationConfig.from_tags(SECRET_ARN, tags)

    assert config.resource_type == "ServiceSpecificCredential"
    assert config.user_name == "rotator-test"
    assert config.service_name == "codecommit.amazonaws.com"
    assert config.repository_name == "rotator-test-repo"


def test_from_tags_password_needs_no_user():
    config = RotationConfig.from_tags(SECRET_ARN, [{"Key": "rotator:resourceType", "Value": "Password"}])

    assert config.resource_type == "Password"
    assert config.user_name is None


@pytest.mark.parametrize(
    "tags, message",
    [
        (None, "no rotator tags"),
        ([{"Key": "Project", "Value": "rotator"}], "rotator:resourceType"),
        ([{"Key": "rotator:resourceType", "Value": "AccessKey"}], "Invalid resource type"),
        (
            [
                {"Key": "rotator:resourceType", "Value": "ServiceSpecificCredential"},
                {"Key": "rotator:serviceName", "Value": "codecommit.amazonaws.com"},
            ],
            "rotator:userName",
        ),
        (
            [
                {"Key": "rotator:resourceType", "Value": "ServiceSpecificCredential"},
                {"Key": "rotator:userName", "Value": "rotator-test"},
            ],
            "rotator:serviceName",
        ),
    ],
)
def test_from_tags_rejects_incomplete_tags(tags, message):
    with pytest.raises(PreconditionFailed, match=message):
        RotationConfig.from_tags(SECRET_ARN, tags)


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("CREDENTIAL_TEST_RETRIES", "7")
    monkeypatch.setenv("RECLAIM_STALE_CREDENTIALS", "True")
    monkeypatch.delenv("MAX_SERVICE_SPECIFIC_CREDENTIALS", raising=False)

    assert get_env_int("CREDENTIAL_TEST_RETRIES", 3) == 7
    assert get_env_int("MAX_SERVICE_SPECIFIC_CREDENTIALS", 2) == 2
    assert get_env_bool("RECLAIM_STALE_CREDENTIALS", False) is True

    monkeypatch.setenv("CREDENTIAL_TEST_RETRIES", "many")
    with pytest.raises(ValueError):
        get_env_int("CREDENTIAL_TEST_RETRIES", 3)


def test_credential_retirement(monkeypatch):
    monkeypatch.delenv("CREDENTIAL_RETIREMENT", raising=False)
    assert get_credential_retirement() == "delete"

    monkeypatch.setenv("CREDENTIAL_RETIREMENT", "Deactivate")
    assert get_credential_retirement() == "deactivate"

    monkeypatch.setenv("CREDENTIAL_RETIREMENT", "archive")
    with pytest.raises(ValueError):
        get_credential_retirement()


def test_boto_config_fails_fast(monkeypatch):
    monkeypatch.setenv("AWS_CONNECT_TIMEOUT", "1")
    monkeypatch.delenv("AWS_READ_TIMEOUT", raising=False)

    config = get_boto_config("us-east-1")

    assert config.connect_timeout == 1
    assert config.read_timeout == 5
    assert config.retries == {"max_attempts": 3, "mode": "standard"}
    assert config.region_name == "us-east-1"
