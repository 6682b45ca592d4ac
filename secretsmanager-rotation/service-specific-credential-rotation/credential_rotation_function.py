# Standard library (Python built-in modules)
import json
import logging
import os
from typing import Dict, Optional, Any, Tuple

# External library (Pre-installed in AWS Lambda runtime environment)
import boto3

from credential_authority import CredentialAuthority
from credential_resources import Resource, get_resource
from rotation_config import (
    DEFAULT_IAM_REGION,
    ENV_IAM_REGION,
    RotationConfig,
    get_boto_config,
    get_log_level,
)
from rotation_errors import (
    CreateFailed,
    FinishFailed,
    InvalidStep,
    PreconditionFailed,
    QuotaExceeded,
    RotationError,
    SecretValueNotFound,
    SetFailed,
    TestFailed,
)
from secret_store import (
    VERSION_STAGE_CURRENT,
    VERSION_STAGE_PENDING,
    SecretStore,
)

# ============================================================================
# Configuration and Constants
# ============================================================================
# Configure logging
logger = logging.getLogger()
logger.setLevel(get_log_level())

# Rotation steps sent by AWS Secrets Manager
STEP_CREATE_SECRET = 'createSecret'
STEP_SET_SECRET = 'setSecret'
STEP_TEST_SECRET = 'testSecret'
STEP_FINISH_SECRET = 'finishSecret'
ROTATION_STEPS = (STEP_CREATE_SECRET, STEP_SET_SECRET, STEP_TEST_SECRET, STEP_FINISH_SECRET)

# ============================================================================
# AWS Lambda Handler (First function called by AWS Secrets Manager)
# ============================================================================
# Entry point: lambda_handler()
#   → rotate(): describe secret, load tag config, check preconditions
#   → Routes to: create_secret, set_secret, test_secret, finish_secret
#
# ============================================================================
# Rotation Flow (Service-Specific Credential Strategy)
# ============================================================================
# Step 1: createSecret
#   - Get AWSCURRENT secret value
#   - Issue a new service-specific credential (IAM)
#   - Store new secret value as AWSPENDING version
#
# Step 2: setSecret
#   - Get AWSPENDING secret value
#   - Make sure the new credential is Active (old credential stays Active)
#
# Step 3: testSecret
#   - Get AWSPENDING secret value
#   - Verify the credential is Active and, if configured, authenticate with it
#
# Step 4: finishSecret
#   - Promote AWSPENDING to AWSCURRENT (old AWSCURRENT to AWSPREVIOUS)
#   - Delete the previous credential to free the user's credential quota
#
# ============================================================================
# Exception Handling Pattern
# ============================================================================
# 1. PreconditionFailed / InvalidStep: Bad event or secret not ready for rotation
# 2. QuotaExceeded: Credential quota full, needs operator intervention
# 3. CreateFailed / SetFailed / TestFailed / FinishFailed: Step failures,
#    wrapping the SecretStoreError / CredentialAuthorityError that caused them
# 4. Exception: Catch-all for unexpected errors, logged and re-raised

def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Purpose:
        Entry point for AWS Secrets Manager service-specific credential rotation.
        Sends the rotation request to the appropriate step handler.

    Flow Summary:
        1. Validate required event parameters (Step, SecretId, ClientRequestToken).
        2. Initialize AWS Secrets Manager and IAM clients.
        3. Check preconditions and send the request to the step handler.
        4. Return success response or raise exception.

    Args:
        event (dict): Event data from AWS Secrets Manager
            Required keys:
                - Step: Rotation step (createSecret/setSecret/testSecret/finishSecret)
                - SecretId: ARN of the secret being rotated
                - ClientRequestToken: Unique version ID for this rotation
        context (object): Attributes and methods of Lambda function

    Returns:
        dict: Response with statusCode and body message

    Raises:
        PreconditionFailed: If required event parameters are missing or the secret cannot be rotated
        InvalidStep: If the step name is unknown
        RotationError: If the step fails

    References:
        https://docs.aws.amazon.com/secretsmanager/latest/userguide/rotate-secrets_lambda.html

    Example Event:
        {
            "Step": "createSecret",
            "SecretId": "arn:aws:secretsmanager:us-east-1:123456789012:secret:rotator-test-abc123",
            "ClientRequestToken": "e4bfd8c9-5b1a-4492-934d-2d7ac03ef6c5"
        }

    Note:
        AWS Secrets Manager retries a failed step, so every step must be safe to run again.
    """

    log_event = {
        "Step": event.get("Step"),
        "SecretId": event.get("SecretId", "N/A"),
        "RequestId": context.aws_request_id if context else "N/A"
    }
    logger.info(f"Credential rotation event received: {json.dumps(log_event)}")

    try:
        step = event['Step']
        arn = event['SecretId']
        token = event['ClientRequestToken']
    except KeyError as e:
        logger.error(f"Missing required event parameter: {str(e)}")
        raise PreconditionFailed(f"Missing required event parameter: {str(e)}")

    if step not in ROTATION_STEPS:
        logger.error(f"Unknown step: {step}")
        raise InvalidStep(f"Unknown step: {step}", arn)

    secret_store, credential_authority = create_clients()

    try:
        rotate(secret_store, credential_authority, step, arn, token)
        logger.info(f"Successfully completed rotation step {step} for secret {arn}")
        return {"statusCode": 200, "body": f"Rotation step {step} completed successfully"}

    except QuotaExceeded as e:
        logger.error(f"Credential quota exceeded during {step} for secret {arn}, operator action required: {str(e)}")
        raise
    except RotationError as e:
        logger.error(f"Error during rotation step {step}: {str(e)}")
        raise
    except Exception as e:
        logger.error(f"Unexpected error during rotation step {step}: {str(e)}", exc_info=True)
        raise


def create_clients() -> Tuple[SecretStore, CredentialAuthority]:
    """
    Build the Secrets Manager and IAM collaborators.

    Credentials are retrieved in order: Environment variables → AWS config files → IAM role (Lambda execution role)
    """
    secret_store = SecretStore(boto3.client('secretsmanager', config=get_boto_config()))
    iam_region = os.environ.get(ENV_IAM_REGION, DEFAULT_IAM_REGION)
    credential_authority = CredentialAuthority(boto3.client('iam', config=get_boto_config(iam_region)))
    return secret_store, credential_authority


def rotate(
    secret_store: SecretStore,
    credential_authority: CredentialAuthority,
    step: str,
    arn: str,
    token: str,
    resource: Optional[Resource] = None
) -> None:
    """
    Purpose:
        Check the rotation preconditions and run one rotation step.

    Flow Summary:
        1. Describe the secret.
        2. Check preconditions (rotation enabled, token staged AWSPENDING).
        3. Skip if the token is already AWSCURRENT (rotation already finished).
        4. Load the rotation config from the secret's tags and pick the resource.
        5. Run the step handler.

    Args:
        secret_store (SecretStore): Secrets Manager collaborator
        credential_authority (CredentialAuthority): IAM collaborator
        step (str): Rotation step name
        arn (str): ARN of the secret being rotated
        token (str): Client request token (version ID)
        resource (Resource, optional): Resource override (default: chosen from tags)

    Raises:
        InvalidStep: If the step name is unknown
        PreconditionFailed: If the secret is not in a rotatable state
        RotationError: If the step fails
    """

    if step not in ROTATION_STEPS:
        raise InvalidStep(f"Unknown step: {step}", arn)

    metadata = secret_store.describe_secret(arn)

    if check_preconditions(metadata, arn, token):
        logger.info(f"Secret version {token} already set as AWSCURRENT for secret {arn}, skipping {step}.")
        return

    if resource is None:
        config = RotationConfig.from_tags(arn, metadata['tags'])
        logger.info(f"Rotating secret {arn} step={step} config={config}")
        resource = get_resource(config, secret_store, credential_authority)

    if step == STEP_CREATE_SECRET:
        create_secret(secret_store, resource, arn, token)
    elif step == STEP_SET_SECRET:
        set_secret(secret_store, resource, arn, token)
    elif step == STEP_TEST_SECRET:
        test_secret(secret_store, resource, arn, token)
    else:
        finish_secret(secret_store, resource, arn, token)


def check_preconditions(metadata: Dict[str, Any], arn: str, token: str) -> bool:
    """
    Purpose:
        Validate that the secret can be rotated with this token.

    Returns:
        bool: True if the token is already AWSCURRENT (the step is a no-op)

    Raises:
        PreconditionFailed: If rotation is disabled, the token is not a known
            version, or the version is not staged AWSPENDING

    Example Metadata:
        {
            "rotation_enabled": True,
            "versions": {
                "abc123-version-id-1": ["AWSCURRENT"],
                "def456-version-id-2": ["AWSPENDING"]
            }
        }
    """

    if not metadata['rotation_enabled']:
        logger.error(f"Secret {arn} is not enabled for rotation")
        raise PreconditionFailed("Secret is not enabled for rotation", arn)

    versions = metadata['versions']
    if token not in versions:
        logger.error(f"Secret version {token} has no stage for rotation of secret {arn}.")
        raise PreconditionFailed(f"Secret version {token} has no stage for rotation", arn)

    stages = versions[token]
    if VERSION_STAGE_CURRENT in stages:
        return True
    if VERSION_STAGE_PENDING not in stages:
        logger.error(f"Secret version {token} not set as AWSPENDING for rotation of secret {arn}.")
        raise PreconditionFailed(f"Secret version {token} not set as AWSPENDING for rotation", arn)
    return False

# ============================================================================
# Secrets Manager Rotation Steps (Main Logic)
# ============================================================================
# Rotation flow: createSecret → setSecret → testSecret → finishSecret
# Every step is idempotent: a retried step either finds its work done or redoes it
#
# Function Dependencies:
#   create_secret()
#   ├── SecretStore.get_secret_value() ────────────── Get AWSCURRENT / check AWSPENDING
#   ├── Resource.create_secret_value() ───────────── Issue new credential
#   ├── SecretStore.put_secret_value() ───────────── Store AWSPENDING version
#   └── Resource.discard_secret_value() ──────────── Release credential if the put fails
#
#   set_secret()
#   └── Resource.set_secret_value() ──────────────── Activate new credential
#
#   test_secret()
#   └── Resource.test_secret_value() ─────────────── Verify new credential
#
#   finish_secret()
#   ├── SecretStore.update_secret_version_stage() ── Atomic AWSCURRENT move
#   └── Resource.retire_secret_value() ───────────── Delete previous credential

def create_secret(secret_store: SecretStore, resource: Resource, arn: str, token: str) -> None:
    """
    Purpose:
        Create a new secret version with AWSPENDING stage and a newly issued credential.

    Flow Summary:
        1. Get current secret (AWSCURRENT) from Secrets Manager.
        2. Skip if AWSPENDING value already exists for this token.
        3. Issue a new credential through the resource.
        4. Store new secret with AWSPENDING stage.
        5. If storing fails, release the credential issued in step 3.

    Raises:
        QuotaExceeded: If the principal's credential quota is full (no version is written)
        CreateFailed: If secret retrieval, credential issuance or storage fails

    Note:
        If AWSPENDING already exists for the same token, this step is skipped,
        so a retried createSecret never issues a second credential. A credential
        whose version was never stored is released so the retry finds its slot free.
    """

    try:
        try:
            current_secret = secret_store.get_secret_value(arn, version_stage=VERSION_STAGE_CURRENT)
        except SecretValueNotFound:
            logger.info(f"Secret {arn} has no AWSCURRENT value, starting from an empty secret.")
            current_secret = {}

        try:
            secret_store.get_secret_value(arn, version_stage=VERSION_STAGE_PENDING, version_id=token)
            logger.info(f"createSecret: AWSPENDING version already exists for secret {arn} with token {token}, skipping.")
            return
        except SecretValueNotFound:
            # Expected - AWSPENDING doesn't exist yet, continue with creation
            pass

        new_secret = resource.create_secret_value(current_secret)
        try:
            secret_store.put_secret_value(arn, token, new_secret, [VERSION_STAGE_PENDING])
        except RotationError as e:
            logger.error(f"createSecret: Failed to store version {token} for {arn}: {str(e)}")
            if _pending_version_stored(secret_store, arn, token):
                logger.info(f"createSecret: Version {token} for {arn} was stored despite the error, keeping credential.")
                return
            try:
                resource.discard_secret_value(new_secret)
            except RotationError as cleanup_error:
                logger.error(f"createSecret: Could not release issued credential for {arn}: {str(cleanup_error)}")
            raise CreateFailed(f"createSecret failed to store version {token}: {e}", arn) from e
        logger.info(f"createSecret: Successfully put secret for ARN {arn} and version {token}.")

    except QuotaExceeded as e:
        logger.error(f"createSecret: Credential quota exceeded for {arn}: {str(e)}")
        raise
    except CreateFailed as e:
        logger.error(f"createSecret: Error for ARN {arn} and version {token}: {str(e)}")
        raise
    except RotationError as e:
        logger.error(f"createSecret: Error for ARN {arn} and version {token}: {str(e)}")
        raise CreateFailed(f"createSecret failed for version {token}: {e}", arn) from e


def _pending_version_stored(secret_store: SecretStore, arn: str, token: str) -> bool:
    """
    Check whether a failed put actually committed (e.g. a read timeout after the write).

    Raises:
        SecretStoreError: If the store cannot answer; the issued credential is then left in place
    """
    try:
        secret_store.get_secret_value(arn, version_stage=VERSION_STAGE_PENDING, version_id=token)
    except SecretValueNotFound:
        return False
    return True


def set_secret(secret_store: SecretStore, resource: Resource, arn: str, token: str) -> None:
    """
    Purpose:
        Push the pending credential to the target so old and new credentials are both valid.

    Raises:
        SetFailed: If the AWSPENDING value cannot be read or the push fails

    Note:
        Safe to retry: activating an already active credential is skipped.
    """

    try:
        pending_secret = secret_store.get_secret_value(arn, version_stage=VERSION_STAGE_PENDING, version_id=token)
        logger.info(f"setSecret: Successfully retrieved secret for {arn}.")

        resource.set_secret_value(pending_secret)
        logger.info(f"setSecret: Successfully set secret for ARN {arn} and version {token}.")

    except SetFailed as e:
        logger.error(f"setSecret: Error for ARN {arn} and version {token}: {str(e)}")
        raise
    except RotationError as e:
        logger.error(f"setSecret: Error for ARN {arn} and version {token}: {str(e)}")
        raise SetFailed(f"setSecret failed for version {token}: {e}", arn) from e


def test_secret(secret_store: SecretStore, resource: Resource, arn: str, token: str) -> None:
    """
    Purpose:
        Verify that the pending credential (AWSPENDING) is usable.

    Raises:
        TestFailed: If the AWSPENDING value cannot be read or the credential does not work

    Note:
        A failed test leaves every stage untouched; the version stays AWSPENDING
        for the next retry or for manual intervention.
    """

    try:
        pending_secret = secret_store.get_secret_value(arn, version_stage=VERSION_STAGE_PENDING, version_id=token)
        logger.info(f"testSecret: Successfully retrieved secret for {arn}.")

        resource.test_secret_value(pending_secret)
        logger.info(f"testSecret: Pending secret tested successfully for ARN {arn} and version {token}.")

    except TestFailed as e:
        logger.error(f"testSecret: Error for ARN {arn} and version {token}: {str(e)}")
        raise
    except RotationError as e:
        logger.error(f"testSecret: Error for ARN {arn} and version {token}: {str(e)}")
        raise TestFailed(f"testSecret failed for version {token}: {e}", arn) from e

# Keep pytest from collecting the step handler as a test
test_secret.__test__ = False


def finish_secret(secret_store: SecretStore, resource: Resource, arn: str, token: str) -> None:
    """
    Purpose:
        Complete the rotation by promoting AWSPENDING to AWSCURRENT, then retire the old credential.

    Flow Summary:
        1. Find the current version ID (AWSCURRENT).
        2. Skip if the token is already AWSCURRENT (no second retirement).
        3. Read the current and pending payloads.
        4. Promote AWSPENDING to AWSCURRENT; AWS moves old AWSCURRENT to AWSPREVIOUS.
        5. Retire the previous credential, only after the stage move returned.

    Raises:
        FinishFailed: If the stage move fails (nothing is retired), or if
            retirement fails after the stage move committed

    Version Stage Lifecycle:
        Before: Version-A (AWSCURRENT), Version-B (AWSPENDING)
        After:  Version-A (AWSPREVIOUS), Version-B (AWSCURRENT + AWSPENDING)
    """

    try:
        metadata = secret_store.describe_secret(arn)

        current_version = None
        for version, stages in metadata['versions'].items():
            if VERSION_STAGE_CURRENT in stages:
                if version == token:
                    logger.info(f"finishSecret: Version {version} already marked as AWSCURRENT for {arn}")
                    return
                current_version = version

        previous_secret = {}
        if current_version is not None:
            previous_secret = secret_store.get_secret_value(arn, version_id=current_version)
        pending_secret = secret_store.get_secret_value(arn, version_stage=VERSION_STAGE_PENDING, version_id=token)

        secret_store.update_secret_version_stage(arn, VERSION_STAGE_CURRENT, token, current_version)
        logger.info(f"finishSecret: Successfully set AWSCURRENT stage to version {token} for secret {arn}.")

    except RotationError as e:
        logger.error(f"finishSecret: Error for ARN {arn} and version {token}: {str(e)}")
        raise FinishFailed(f"finishSecret failed for version {token}: {e}", arn) from e

    try:
        resource.retire_secret_value(previous_secret, pending_secret)
    except RotationError as e:
        logger.error(f"finishSecret: AWSCURRENT moved to {token} but retiring the previous credential failed: {str(e)}")
        raise FinishFailed(
            f"AWSCURRENT moved to version {token} but the previous credential was not retired: {e}", arn
        ) from e
