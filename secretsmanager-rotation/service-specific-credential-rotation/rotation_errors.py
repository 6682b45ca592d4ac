# ============================================================================
# Rotation Error Taxonomy
# ============================================================================
# Every failure raised by the rotation Lambda derives from RotationError so
# Secrets Manager sees a failed invocation and retries the step.
#
#   RotationError
#   ├── PreconditionFailed ──── Event or secret is not in a rotatable state
#   ├── InvalidStep ─────────── Step name is not one of the four rotation steps
#   ├── CreateFailed ────────── createSecret could not stage AWSPENDING
#   │   └── QuotaExceeded ───── Principal already holds the maximum credentials
#   ├── SetFailed ───────────── setSecret could not push the pending credential
#   ├── TestFailed ──────────── testSecret could not use the pending credential
#   ├── FinishFailed ────────── finishSecret could not promote or clean up
#   ├── SecretStoreError ────── Secrets Manager API errors
#   │   ├── SecretNotFound
#   │   └── SecretValueNotFound
#   └── CredentialAuthorityError ── IAM API errors
#       └── CredentialNotFound

from typing import Optional


class RotationError(Exception):
    """Base class for all rotation failures."""

    def __init__(self, message: str, secret_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.secret_id = secret_id

    def __str__(self) -> str:
        if self.secret_id:
            return f"{self.message} (secret: {self.secret_id})"
        return self.message


class PreconditionFailed(RotationError, ValueError):
    pass


class InvalidStep(RotationError, ValueError):
    pass


class CreateFailed(RotationError):
    pass


class QuotaExceeded(CreateFailed):
    """
    The principal already holds the maximum number of service-specific credentials.

    Not retryable without operator intervention: a stale credential must be
    deleted before createSecret can succeed.
    """


class SetFailed(RotationError):
    pass


class TestFailed(RotationError):
    # Keep pytest from collecting this as a test class
    __test__ = False


class FinishFailed(RotationError):
    pass


class SecretStoreError(RotationError):
    pass


class SecretNotFound(SecretStoreError):
    pass


class SecretValueNotFound(SecretStoreError):
    def __init__(
        self,
        message: str,
        secret_id: Optional[str] = None,
        version_stage: Optional[str] = None,
        version_id: Optional[str] = None
    ) -> None:
        super().__init__(message, secret_id)
        self.version_stage = version_stage
        self.version_id = version_id


class CredentialAuthorityError(RotationError):
    pass


class CredentialNotFound(CredentialAuthorityError):
    pass
