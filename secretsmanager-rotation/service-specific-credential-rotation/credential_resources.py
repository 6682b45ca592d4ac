# Standard library (Python built-in modules)
import logging
from typing import Callable, Dict, List, Optional, Any

from credential_authority import (
    CREDENTIAL_STATUS_ACTIVE,
    CREDENTIAL_STATUS_INACTIVE,
    CredentialAuthority,
)
from credential_probe import probe_codecommit_credentials
from rotation_config import (
    DEFAULT_MAX_SERVICE_SPECIFIC_CREDENTIALS,
    DEFAULT_RECLAIM_STALE_CREDENTIALS,
    ENV_MAX_SERVICE_SPECIFIC_CREDENTIALS,
    ENV_RECLAIM_STALE_CREDENTIALS,
    RESOURCE_TYPE_PASSWORD,
    RESOURCE_TYPE_SERVICE_SPECIFIC_CREDENTIAL,
    RETIREMENT_DEACTIVATE,
    RotationConfig,
    get_credential_retirement,
    get_env_bool,
    get_env_int,
)
from rotation_errors import (
    CreateFailed,
    CredentialNotFound,
    PreconditionFailed,
    QuotaExceeded,
    SetFailed,
    TestFailed,
)
from secret_store import SecretStore

logger = logging.getLogger()

# Secret payload keys
KEY_USERNAME = 'username'
KEY_PASSWORD = 'password'
KEY_CREDENTIAL_ID = 'service_specific_credential_id'

# ============================================================================
# Resources
# ============================================================================
# A resource owns what a rotation step does to the thing behind the secret:
#
#   create_secret_value() ─── Issue new credential material for AWSPENDING
#   set_secret_value() ────── Push the pending material to the target system
#   test_secret_value() ───── Prove the pending material works
#   retire_secret_value() ─── Release the previous material after finishSecret
#   discard_secret_value() ── Release new material whose version was never stored
#
# Implementations:
#   - ServiceSpecificCredentialResource: IAM service-specific credentials (e.g. CodeCommit)
#   - PasswordResource: Random password with no downstream system


class Resource:
    """Interface implemented by every rotatable resource type."""

    def create_secret_value(self, current_secret: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def set_secret_value(self, pending_secret: Dict[str, Any]) -> None:
        raise NotImplementedError

    def test_secret_value(self, pending_secret: Dict[str, Any]) -> None:
        raise NotImplementedError

    def retire_secret_value(self, previous_secret: Dict[str, Any], current_secret: Dict[str, Any]) -> None:
        raise NotImplementedError

    def discard_secret_value(self, new_secret: Dict[str, Any]) -> None:
        raise NotImplementedError


class ServiceSpecificCredentialResource(Resource):
    """
    Rotates an IAM service-specific credential bound to one user and one service.

    The secret payload holds the credential's service user name, password and
    ID. A user may hold at most MAX_SERVICE_SPECIFIC_CREDENTIALS credentials
    per service, so the previous credential is retired in finishSecret to free
    the slot for the next rotation.
    """

    def __init__(
        self,
        config: RotationConfig,
        credential_authority: CredentialAuthority,
        probe: Callable[..., None] = probe_codecommit_credentials,
        max_credentials: Optional[int] = None,
        reclaim_stale_credentials: Optional[bool] = None,
        retirement: Optional[str] = None
    ) -> None:
        if not config.user_name or not config.service_name:
            raise PreconditionFailed(
                "Service specific credential requires a user name and a service name", config.secret_id
            )
        self.secret_id = config.secret_id
        self.user_name = config.user_name
        self.service_name = config.service_name
        self.repository_name = config.repository_name
        self.credential_authority = credential_authority
        self.probe = probe
        self.max_credentials = max_credentials if max_credentials is not None else get_env_int(
            ENV_MAX_SERVICE_SPECIFIC_CREDENTIALS, DEFAULT_MAX_SERVICE_SPECIFIC_CREDENTIALS
        )
        self.reclaim_stale_credentials = reclaim_stale_credentials if reclaim_stale_credentials is not None else get_env_bool(
            ENV_RECLAIM_STALE_CREDENTIALS, DEFAULT_RECLAIM_STALE_CREDENTIALS
        )
        self.retirement = retirement or get_credential_retirement()

    def _list_credentials(self) -> List[Dict[str, Any]]:
        credentials = self.credential_authority.list_service_specific_credentials(self.user_name, self.service_name)
        logger.info(
            f"Found {len(credentials)} service specific credentials for {self.user_name}: "
            f"{[(c['service_specific_credential_id'], c['status']) for c in credentials]}"
        )
        return credentials

    def _find_credential(self, credential_id: str) -> Optional[Dict[str, Any]]:
        for credential in self._list_credentials():
            if credential['service_specific_credential_id'] == credential_id:
                return credential
        return None

    def create_secret_value(self, current_secret: Dict[str, Any]) -> Dict[str, Any]:
        """
        Purpose:
            Issue a new service-specific credential and build the AWSPENDING payload.

        Flow Summary:
            1. List the user's credentials for the service.
            2. If a slot is free, create a new credential.
            3. If the quota is full, raise QuotaExceeded, or reset a stale
               (non-current) credential when RECLAIM_STALE_CREDENTIALS is enabled.
            4. Copy the current payload and replace username, password and credential ID.

        Args:
            current_secret (dict): AWSCURRENT payload (may be empty on first rotation)

        Returns:
            dict: New payload for the AWSPENDING version

        Raises:
            QuotaExceeded: If every credential slot is taken and reclaiming is disabled
            CreateFailed: If no stale credential can be found to reclaim
            CredentialAuthorityError: If an IAM call fails
        """

        credentials = self._list_credentials()

        if len(credentials) < self.max_credentials:
            credential = self.credential_authority.create_service_specific_credential(self.user_name, self.service_name)
        elif not self.reclaim_stale_credentials:
            raise QuotaExceeded(
                f"User {self.user_name} already holds {len(credentials)} of {self.max_credentials} "
                f"service specific credentials for {self.service_name}; delete a stale credential first",
                self.secret_id
            )
        else:
            current_id = current_secret.get(KEY_CREDENTIAL_ID)
            stale = [c for c in credentials if c['service_specific_credential_id'] != current_id]
            if not stale:
                raise CreateFailed("No stale service specific credential available to reclaim", self.secret_id)

            stale_id = stale[0]['service_specific_credential_id']
            # A reclaimed credential keeps its status; setSecret activates it
            logger.info(f"Reclaiming stale service specific credential id={stale_id} for {self.user_name}")
            credential = self.credential_authority.reset_service_specific_credential(stale_id, self.user_name)

        new_secret = dict(current_secret)
        new_secret[KEY_USERNAME] = credential['service_user_name']
        new_secret[KEY_PASSWORD] = credential['service_password']
        new_secret[KEY_CREDENTIAL_ID] = credential['service_specific_credential_id']
        return new_secret

    def set_secret_value(self, pending_secret: Dict[str, Any]) -> None:
        """
        Purpose:
            Make sure the pending credential is Active so old and new credentials are both valid.

        Note:
            IAM serves the credential directly, so there is nothing else to push.
            A newly created credential is already Active; a credential reclaimed
            with RECLAIM_STALE_CREDENTIALS keeps the status it had, often Inactive,
            and is activated here. The old credential stays Active until finishSecret.
        """

        credential_id = pending_secret.get(KEY_CREDENTIAL_ID)
        if not credential_id:
            raise SetFailed("AWSPENDING secret has no service specific credential ID", self.secret_id)

        credential = self._find_credential(credential_id)
        if credential is None:
            raise SetFailed(f"Service specific credential {credential_id} not found for {self.user_name}", self.secret_id)

        if credential['status'] != CREDENTIAL_STATUS_ACTIVE:
            logger.info(f"Activating service specific credential id={credential_id}")
            self.credential_authority.update_service_specific_credential(
                credential_id, self.user_name, CREDENTIAL_STATUS_ACTIVE
            )
        else:
            logger.info(f"Service specific credential id={credential_id} already active, nothing to set")

    def test_secret_value(self, pending_secret: Dict[str, Any]) -> None:
        """
        Purpose:
            Verify the pending credential is usable.

        Flow Summary:
            1. Validate username, password and credential ID are in the payload.
            2. Check IAM reports the credential as Active for the user.
            3. If a repository is configured, authenticate against it with the credential.
        """

        username = pending_secret.get(KEY_USERNAME)
        password = pending_secret.get(KEY_PASSWORD)
        credential_id = pending_secret.get(KEY_CREDENTIAL_ID)
        if not all([username, password, credential_id]):
            raise TestFailed(
                "Required fields (username, password, service_specific_credential_id) are missing from secret",
                self.secret_id
            )

        credential = self._find_credential(credential_id)
        if credential is None:
            raise TestFailed(f"Service specific credential {credential_id} not found for {self.user_name}", self.secret_id)
        if credential['status'] != CREDENTIAL_STATUS_ACTIVE:
            raise TestFailed(
                f"Service specific credential {credential_id} is {credential['status']}, expected Active",
                self.secret_id
            )
        if credential.get('service_user_name') and credential['service_user_name'] != username:
            raise TestFailed(
                f"Service user name {username} does not match credential {credential_id}", self.secret_id
            )

        if self.repository_name:
            self.probe(self.repository_name, username, password)
        else:
            logger.info("No repository configured, skipping authenticated credential probe")

    def retire_secret_value(self, previous_secret: Dict[str, Any], current_secret: Dict[str, Any]) -> None:
        """
        Purpose:
            Delete (or deactivate) the credential that was current before finishSecret.

        Note:
            Only called after the AWSCURRENT stage move has committed. A
            credential that no longer exists counts as already retired.
        """

        previous_id = previous_secret.get(KEY_CREDENTIAL_ID)
        current_id = current_secret.get(KEY_CREDENTIAL_ID)

        if not previous_id:
            logger.info("Previous secret has no service specific credential ID, nothing to retire")
            return
        if previous_id == current_id:
            logger.info(f"Previous credential {previous_id} is still the current credential, not retiring")
            return

        try:
            if self.retirement == RETIREMENT_DEACTIVATE:
                self.credential_authority.update_service_specific_credential(
                    previous_id, self.user_name, CREDENTIAL_STATUS_INACTIVE
                )
                logger.info(f"Deactivated previous service specific credential id={previous_id}")
            else:
                self.credential_authority.delete_service_specific_credential(previous_id, self.user_name)
                logger.info(f"Deleted previous service specific credential id={previous_id}")
        except CredentialNotFound:
            logger.info(f"Previous service specific credential id={previous_id} already gone")

    def discard_secret_value(self, new_secret: Dict[str, Any]) -> None:
        """
        Purpose:
            Delete a credential issued by createSecret whose AWSPENDING version was never stored.

        Note:
            Always deletes, whatever CREDENTIAL_RETIREMENT says; an inactive
            credential still takes one of the user's credential slots.
        """

        credential_id = new_secret.get(KEY_CREDENTIAL_ID)
        if not credential_id:
            return

        try:
            self.credential_authority.delete_service_specific_credential(credential_id, self.user_name)
            logger.info(f"Deleted unused service specific credential id={credential_id}")
        except CredentialNotFound:
            logger.info(f"Unused service specific credential id={credential_id} already gone")


class PasswordResource(Resource):
    """Random password from get_random_password; nothing downstream to push or test against."""

    def __init__(self, config: RotationConfig, secret_store: SecretStore) -> None:
        self.secret_id = config.secret_id
        self.secret_store = secret_store

    def create_secret_value(self, current_secret: Dict[str, Any]) -> Dict[str, Any]:
        new_secret = dict(current_secret)
        new_secret[KEY_PASSWORD] = self.secret_store.get_random_password()
        return new_secret

    def set_secret_value(self, pending_secret: Dict[str, Any]) -> None:
        if not pending_secret.get(KEY_PASSWORD):
            raise SetFailed("AWSPENDING secret has no password", self.secret_id)
        logger.info("Nothing to do to set password")

    def test_secret_value(self, pending_secret: Dict[str, Any]) -> None:
        if not pending_secret.get(KEY_PASSWORD):
            raise TestFailed("AWSPENDING secret has no password", self.secret_id)

    def retire_secret_value(self, previous_secret: Dict[str, Any], current_secret: Dict[str, Any]) -> None:
        logger.info("Nothing to retire for password resource")

    def discard_secret_value(self, new_secret: Dict[str, Any]) -> None:
        logger.info("Nothing to discard for password resource")


def get_resource(
    config: RotationConfig,
    secret_store: SecretStore,
    credential_authority: CredentialAuthority
) -> Resource:
    if config.resource_type == RESOURCE_TYPE_SERVICE_SPECIFIC_CREDENTIAL:
        return ServiceSpecificCredentialResource(config, credential_authority)
    if config.resource_type == RESOURCE_TYPE_PASSWORD:
        return PasswordResource(config, secret_store)
    raise PreconditionFailed(f"Invalid resource type '{config.resource_type}'", config.secret_id)
