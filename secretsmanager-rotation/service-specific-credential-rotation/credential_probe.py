# Standard library (Python built-in modules)
import logging
import os
import time
from typing import Optional

# External library
import requests

from rotation_config import (
    DEFAULT_CREDENTIAL_TEST_RETRIES,
    DEFAULT_CREDENTIAL_TEST_RETRY_DELAY,
    DEFAULT_CREDENTIAL_TEST_TIMEOUT,
    ENV_CREDENTIAL_TEST_RETRIES,
    ENV_CREDENTIAL_TEST_RETRY_DELAY,
    ENV_CREDENTIAL_TEST_TIMEOUT,
    get_env_int,
)
from rotation_errors import TestFailed

logger = logging.getLogger()

CODECOMMIT_URL_TEMPLATE = 'https://git-codecommit.{region}.amazonaws.com/v1/repos/{repository}/info/refs'

# HTTP status codes returned while new IAM credentials are still propagating
HTTP_AUTH_FAILURES = (401, 403)


def get_codecommit_url(repository_name: str, region: Optional[str] = None) -> str:
    region = region or os.environ.get('AWS_REGION') or os.environ.get('AWS_DEFAULT_REGION') or 'us-east-1'
    return CODECOMMIT_URL_TEMPLATE.format(region=region, repository=repository_name)


def probe_codecommit_credentials(
    repository_name: str,
    username: str,
    password: str,
    region: Optional[str] = None
) -> None:
    """
    Purpose:
        Verify CodeCommit HTTPS Git credentials with a Git smart-HTTP ref advertisement request.

    Flow Summary:
        1. Build the info/refs URL for the repository.
        2. Send an authenticated GET (git-upload-pack service) with a timeout.
        3. Retry authentication failures, which are expected while IAM propagates the new credential.
        4. Raise TestFailed if every attempt fails.

    Args:
        repository_name (str): CodeCommit repository the credential's user can read
        username (str): Service user name of the credential
        password (str): Service password of the credential
        region (str, optional): Repository region (default: Lambda region)

    Environment Variables:
        CREDENTIAL_TEST_RETRIES: Number of attempts before failure (default: 3)
        CREDENTIAL_TEST_RETRY_DELAY: Seconds between attempts (default: 5)
        CREDENTIAL_TEST_TIMEOUT: HTTP timeout in seconds (default: 10)

    Raises:
        TestFailed: If the credential is rejected after all attempts or the request errors

    References:
        https://docs.aws.amazon.com/codecommit/latest/userguide/setting-up-gc.html
        https://git-scm.com/docs/http-protocol
    """

    url = get_codecommit_url(repository_name, region)
    max_retries = max(1, get_env_int(ENV_CREDENTIAL_TEST_RETRIES, DEFAULT_CREDENTIAL_TEST_RETRIES))
    retry_delay = get_env_int(ENV_CREDENTIAL_TEST_RETRY_DELAY, DEFAULT_CREDENTIAL_TEST_RETRY_DELAY)
    timeout = get_env_int(ENV_CREDENTIAL_TEST_TIMEOUT, DEFAULT_CREDENTIAL_TEST_TIMEOUT)

    logger.info(f"Testing credentials for {username} against {url}")

    for attempt in range(1, max_retries + 1):
        try:
            response = requests.get(
                url,
                params={'service': 'git-upload-pack'},
                auth=(username, password),
                timeout=timeout
            )
        except requests.RequestException as e:
            logger.error(f"Credential probe request failed: {str(e)}")
            raise TestFailed(f"Credential probe request to {url} failed: {e}") from e

        if response.status_code == 200:
            logger.info(f"Credential probe succeeded for {username} on attempt {attempt}/{max_retries}")
            return

        if response.status_code in HTTP_AUTH_FAILURES and attempt < max_retries:
            logger.warning(f"Credential rejected on attempt {attempt}/{max_retries} (HTTP {response.status_code}). "
                           f"IAM may still be propagating. Waiting {retry_delay} seconds before retry...")
            time.sleep(retry_delay)
            continue

        raise TestFailed(
            f"Credential probe for {username} against {url} failed with HTTP {response.status_code} "
            f"after {attempt} attempt(s)"
        )
