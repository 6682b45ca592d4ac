# Standard library (Python built-in modules)
import logging
import os
from typing import Dict, List, Optional, Any

# External library (Pre-installed in AWS Lambda runtime environment)
from botocore.config import Config

from rotation_errors import PreconditionFailed

logger = logging.getLogger()

# ============================================================================
# Environment Variables
# ============================================================================
# All optional: every key has a default value if not set

ENV_LOG_LEVEL = 'LOG_LEVEL'
ENV_AWS_CONNECT_TIMEOUT = 'AWS_CONNECT_TIMEOUT'
ENV_AWS_READ_TIMEOUT = 'AWS_READ_TIMEOUT'
ENV_AWS_MAX_ATTEMPTS = 'AWS_MAX_ATTEMPTS'
ENV_IAM_REGION = 'IAM_REGION'
ENV_MAX_SERVICE_SPECIFIC_CREDENTIALS = 'MAX_SERVICE_SPECIFIC_CREDENTIALS'
ENV_RECLAIM_STALE_CREDENTIALS = 'RECLAIM_STALE_CREDENTIALS'
ENV_CREDENTIAL_RETIREMENT = 'CREDENTIAL_RETIREMENT'
ENV_PASSWORD_LENGTH = 'PASSWORD_LENGTH'
ENV_EXCLUDE_CHARACTERS = 'EXCLUDE_CHARACTERS'
ENV_CREDENTIAL_TEST_RETRIES = 'CREDENTIAL_TEST_RETRIES'
ENV_CREDENTIAL_TEST_RETRY_DELAY = 'CREDENTIAL_TEST_RETRY_DELAY'
ENV_CREDENTIAL_TEST_TIMEOUT = 'CREDENTIAL_TEST_TIMEOUT'

# Default values
DEFAULT_LOG_LEVEL = 'INFO'
DEFAULT_AWS_CONNECT_TIMEOUT = 2
DEFAULT_AWS_READ_TIMEOUT = 5
DEFAULT_AWS_MAX_ATTEMPTS = 3
DEFAULT_IAM_REGION = 'us-east-1'
DEFAULT_MAX_SERVICE_SPECIFIC_CREDENTIALS = 2
DEFAULT_RECLAIM_STALE_CREDENTIALS = False
DEFAULT_PASSWORD_LENGTH = 32
DEFAULT_EXCLUDE_CHARACTERS = '/@"\'\\'
DEFAULT_CREDENTIAL_TEST_RETRIES = 3
DEFAULT_CREDENTIAL_TEST_RETRY_DELAY = 5
DEFAULT_CREDENTIAL_TEST_TIMEOUT = 10

# Previous credential handling in finishSecret
RETIREMENT_DELETE = 'delete'
RETIREMENT_DEACTIVATE = 'deactivate'
DEFAULT_CREDENTIAL_RETIREMENT = RETIREMENT_DELETE

# ============================================================================
# Secret Tags
# ============================================================================
# Per-secret configuration is read from tags on the secret being rotated

TAG_RESOURCE_TYPE = 'rotator:resourceType'
TAG_USER_NAME = 'rotator:userName'
TAG_SERVICE_NAME = 'rotator:serviceName'
TAG_REPOSITORY_NAME = 'rotator:repositoryName'

RESOURCE_TYPE_SERVICE_SPECIFIC_CREDENTIAL = 'ServiceSpecificCredential'
RESOURCE_TYPE_PASSWORD = 'Password'
RESOURCE_TYPES = (RESOURCE_TYPE_SERVICE_SPECIFIC_CREDENTIAL, RESOURCE_TYPE_PASSWORD)


def get_env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got '{value}'")


def get_env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def get_log_level() -> str:
    return os.environ.get(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper()


def get_credential_retirement() -> str:
    mode = os.environ.get(ENV_CREDENTIAL_RETIREMENT, DEFAULT_CREDENTIAL_RETIREMENT).strip().lower()
    if mode not in (RETIREMENT_DELETE, RETIREMENT_DEACTIVATE):
        raise ValueError(
            f"Environment variable {ENV_CREDENTIAL_RETIREMENT} must be "
            f"'{RETIREMENT_DELETE}' or '{RETIREMENT_DEACTIVATE}', got '{mode}'"
        )
    return mode


def get_boto_config(region_name: Optional[str] = None) -> Config:
    """
    Purpose:
        Build the botocore client configuration shared by every AWS client.

    Flow Summary:
        1. Read connect/read timeouts and retry attempts from environment variables.
        2. Return a Config that fails fast instead of hanging the rotation step.

    Environment Variables:
        AWS_CONNECT_TIMEOUT: Connect timeout in seconds (default: 2)
        AWS_READ_TIMEOUT: Read timeout in seconds (default: 5)
        AWS_MAX_ATTEMPTS: Total attempts in standard retry mode (default: 3)

    Note:
        Secrets Manager retries a failed step on its own schedule, so the
        client only retries transient errors a few times within one invocation.
    """

    params = {
        'connect_timeout': get_env_int(ENV_AWS_CONNECT_TIMEOUT, DEFAULT_AWS_CONNECT_TIMEOUT),
        'read_timeout': get_env_int(ENV_AWS_READ_TIMEOUT, DEFAULT_AWS_READ_TIMEOUT),
        'retries': {
            'max_attempts': get_env_int(ENV_AWS_MAX_ATTEMPTS, DEFAULT_AWS_MAX_ATTEMPTS),
            'mode': 'standard'
        }
    }
    if region_name:
        params['region_name'] = region_name
    return Config(**params)


class RotationConfig:
    """
    Rotation settings for one secret, read from the secret's tags.

    Example Tags:
        [
            {"Key": "rotator:resourceType", "Value": "ServiceSpecificCredential"},
            {"Key": "rotator:userName", "Value": "rotator-test"},
            {"Key": "rotator:serviceName", "Value": "codecommit.amazonaws.com"},
            {"Key": "rotator:repositoryName", "Value": "rotator-test-repo"}
        ]
    """

    def __init__(
        self,
        secret_id: str,
        resource_type: str,
        user_name: Optional[str] = None,
        service_name: Optional[str] = None,
        repository_name: Optional[str] = None
    ) -> None:
        self.secret_id = secret_id
        self.resource_type = resource_type
        self.user_name = user_name
        self.service_name = service_name
        self.repository_name = repository_name

    def __repr__(self) -> str:
        return (
            f"RotationConfig(secret_id={self.secret_id!r}, resource_type={self.resource_type!r}, "
            f"user_name={self.user_name!r}, service_name={self.service_name!r}, "
            f"repository_name={self.repository_name!r})"
        )

    @classmethod
    def from_tags(cls, secret_id: str, tags: Optional[List[Dict[str, Any]]]) -> 'RotationConfig':
        """
        Purpose:
            Build the rotation configuration from the tag list returned by describe_secret.

        Args:
            secret_id (str): ARN of the secret being rotated
            tags (list, optional): Tags as [{"Key": ..., "Value": ...}]

        Returns:
            RotationConfig: Parsed configuration

        Raises:
            PreconditionFailed: If the secret has no tags, the resource type tag is
                missing or unknown, or a tag required by the resource type is missing
        """

        if not tags:
            raise PreconditionFailed("Secret has no rotator tags", secret_id)

        values = {tag.get('Key'): tag.get('Value') for tag in tags if tag.get('Key')}

        resource_type = values.get(TAG_RESOURCE_TYPE)
        if not resource_type:
            raise PreconditionFailed(f"Missing required tag '{TAG_RESOURCE_TYPE}'", secret_id)
        if resource_type not in RESOURCE_TYPES:
            raise PreconditionFailed(f"Invalid resource type '{resource_type}'", secret_id)

        config = cls(
            secret_id=secret_id,
            resource_type=resource_type,
            user_name=values.get(TAG_USER_NAME) or None,
            service_name=values.get(TAG_SERVICE_NAME) or None,
            repository_name=values.get(TAG_REPOSITORY_NAME) or None,
        )

        if resource_type == RESOURCE_TYPE_SERVICE_SPECIFIC_CREDENTIAL:
            if not config.user_name:
                raise PreconditionFailed(
                    f"Missing tag '{TAG_USER_NAME}' for service specific credential", secret_id
                )
            if not config.service_name:
                raise PreconditionFailed(
                    f"Missing tag '{TAG_SERVICE_NAME}' for service specific credential", secret_id
                )

        return config
