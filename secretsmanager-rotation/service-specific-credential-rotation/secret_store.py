# Standard library (Python built-in modules)
import json
import logging
import os
from typing import Dict, List, Optional, Any

# External library (Pre-installed in AWS Lambda runtime environment)
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from rotation_config import (
    DEFAULT_EXCLUDE_CHARACTERS,
    DEFAULT_PASSWORD_LENGTH,
    ENV_EXCLUDE_CHARACTERS,
    ENV_PASSWORD_LENGTH,
    get_env_int,
)
from rotation_errors import SecretNotFound, SecretStoreError, SecretValueNotFound

logger = logging.getLogger()

# Secrets Manager version stages
VERSION_STAGE_CURRENT = 'AWSCURRENT'
VERSION_STAGE_PENDING = 'AWSPENDING'
VERSION_STAGE_PREVIOUS = 'AWSPREVIOUS'

ERROR_RESOURCE_NOT_FOUND = 'ResourceNotFoundException'

MASKED_VALUE = '******'


def redact_secret(secret: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of a secret payload that is safe to log."""
    if secret is None:
        return None
    redacted = dict(secret)
    if redacted.get('password') is not None:
        redacted['password'] = MASKED_VALUE
    return redacted


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


class SecretStore:
    """
    Thin wrapper over the boto3 Secrets Manager client.

    Translates botocore errors into the rotation error taxonomy and
    (de)serializes secret payloads as JSON strings.
    """

    def __init__(self, client: BaseClient) -> None:
        self.client = client

    def describe_secret(self, secret_id: str) -> Dict[str, Any]:
        """
        Purpose:
            Get the rotation-relevant metadata of a secret.

        Args:
            secret_id (str): ARN or name of the secret

        Returns:
            dict: {
                "versions": {"<token>": ["AWSCURRENT"], ...},
                "rotation_enabled": bool,
                "tags": [{"Key": ..., "Value": ...}]
            }

        Raises:
            SecretNotFound: If the secret does not exist
            SecretStoreError: For any other Secrets Manager error

        References:
            https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/secretsmanager/client/describe_secret.html
        """

        logger.info(f"Describing secret {secret_id}")
        try:
            response = self.client.describe_secret(SecretId=secret_id)
        except ClientError as e:
            if _error_code(e) == ERROR_RESOURCE_NOT_FOUND:
                raise SecretNotFound(f"Secret not found: {e}", secret_id) from e
            raise SecretStoreError(f"describe_secret failed: {e}", secret_id) from e
        except BotoCoreError as e:
            raise SecretStoreError(f"describe_secret failed: {e}", secret_id) from e

        return {
            'versions': response.get('VersionIdsToStages', {}),
            'rotation_enabled': bool(response.get('RotationEnabled', False)),
            'tags': response.get('Tags', []),
        }

    def get_secret_value(
        self,
        secret_id: str,
        version_stage: Optional[str] = None,
        version_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Purpose:
            Get a secret payload by version stage and/or version ID, parsed from JSON.

        Raises:
            SecretValueNotFound: If no version matches the stage/ID
            SecretStoreError: If the call fails or the payload is not a JSON object
        """

        logger.info(f"Fetching secret value for {secret_id} version_stage={version_stage} version_id={version_id}")

        params = {'SecretId': secret_id}
        if version_stage is not None:
            params['VersionStage'] = version_stage
        if version_id is not None:
            params['VersionId'] = version_id

        try:
            response = self.client.get_secret_value(**params)
        except ClientError as e:
            if _error_code(e) == ERROR_RESOURCE_NOT_FOUND:
                raise SecretValueNotFound(
                    f"Secret value not found: {e}",
                    secret_id,
                    version_stage=version_stage,
                    version_id=version_id,
                ) from e
            raise SecretStoreError(f"get_secret_value failed: {e}", secret_id) from e
        except BotoCoreError as e:
            raise SecretStoreError(f"get_secret_value failed: {e}", secret_id) from e

        secret_string = response.get('SecretString')
        if secret_string is None:
            return {}

        try:
            secret = json.loads(secret_string)
        except ValueError as e:
            raise SecretStoreError(f"Secret string is not valid JSON: {e}", secret_id) from e
        if not isinstance(secret, dict):
            raise SecretStoreError("Secret string is not a JSON object", secret_id)

        logger.info(f"Found secret {json.dumps(redact_secret(secret))}")
        return secret

    def put_secret_value(
        self,
        secret_id: str,
        token: str,
        secret: Dict[str, Any],
        version_stages: List[str]
    ) -> None:
        """
        Purpose:
            Store a secret payload as the version identified by token.

        Note:
            The token becomes the version ID. Re-sending the same token with the
            same payload is accepted by Secrets Manager as an idempotent retry.
        """

        logger.info(
            f"Putting secret value for {secret_id} version_id={token} "
            f"version_stages={version_stages} secret={json.dumps(redact_secret(secret))}"
        )
        try:
            self.client.put_secret_value(
                SecretId=secret_id,
                ClientRequestToken=token,
                SecretString=json.dumps(secret),
                VersionStages=version_stages
            )
        except ClientError as e:
            if _error_code(e) == ERROR_RESOURCE_NOT_FOUND:
                raise SecretNotFound(f"Secret not found: {e}", secret_id) from e
            raise SecretStoreError(f"put_secret_value failed: {e}", secret_id) from e
        except BotoCoreError as e:
            raise SecretStoreError(f"put_secret_value failed: {e}", secret_id) from e

    def update_secret_version_stage(
        self,
        secret_id: str,
        version_stage: str,
        move_to_version_id: str,
        remove_from_version_id: Optional[str] = None
    ) -> None:
        """
        Purpose:
            Atomically move a version stage from one version to another.

        Note:
            Moving AWSCURRENT makes Secrets Manager tag the old current
            version AWSPREVIOUS in the same operation.

        References:
            https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/secretsmanager/client/update_secret_version_stage.html
        """

        logger.info(
            f"Updating secret version stage for {secret_id} version_stage={version_stage} "
            f"move_to={move_to_version_id} remove_from={remove_from_version_id}"
        )

        params = {
            'SecretId': secret_id,
            'VersionStage': version_stage,
            'MoveToVersionId': move_to_version_id
        }
        if remove_from_version_id is not None:
            params['RemoveFromVersionId'] = remove_from_version_id

        try:
            self.client.update_secret_version_stage(**params)
        except ClientError as e:
            if _error_code(e) == ERROR_RESOURCE_NOT_FOUND:
                raise SecretValueNotFound(
                    f"Secret version not found: {e}",
                    secret_id,
                    version_stage=version_stage,
                    version_id=move_to_version_id,
                ) from e
            raise SecretStoreError(f"update_secret_version_stage failed: {e}", secret_id) from e
        except BotoCoreError as e:
            raise SecretStoreError(f"update_secret_version_stage failed: {e}", secret_id) from e

    def get_random_password(self) -> str:
        """
        Purpose:
            Generate a random password using the Secrets Manager get_random_password API.

        Environment Variables:
            PASSWORD_LENGTH: Password length (default: 32)
            EXCLUDE_CHARACTERS: Characters to exclude (default: /@"'\\)
        """

        try:
            response = self.client.get_random_password(
                PasswordLength=get_env_int(ENV_PASSWORD_LENGTH, DEFAULT_PASSWORD_LENGTH),
                ExcludeCharacters=os.environ.get(ENV_EXCLUDE_CHARACTERS, DEFAULT_EXCLUDE_CHARACTERS),
                IncludeSpace=False,
                RequireEachIncludedType=True
            )
        except (ClientError, BotoCoreError) as e:
            raise SecretStoreError(f"get_random_password failed: {e}") from e

        password = response.get('RandomPassword')
        if not password:
            raise SecretStoreError("Missing password in get_random_password response")
        return password
