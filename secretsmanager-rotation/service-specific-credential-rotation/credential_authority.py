# Standard library (Python built-in modules)
import logging
from typing import Dict, List, Optional, Any

# External library (Pre-installed in AWS Lambda runtime environment)
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from rotation_errors import CredentialAuthorityError, CredentialNotFound, QuotaExceeded

logger = logging.getLogger()

# Service-specific credential status values
CREDENTIAL_STATUS_ACTIVE = 'Active'
CREDENTIAL_STATUS_INACTIVE = 'Inactive'

# IAM error codes
IAM_ERROR_LIMIT_EXCEEDED = 'LimitExceeded'
IAM_ERROR_NO_SUCH_ENTITY = 'NoSuchEntity'
IAM_ERROR_SERVICE_NOT_SUPPORTED = 'NotSupportedService'


def to_credential(response_item: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an IAM ServiceSpecificCredential(Metadata) structure.

    ServicePassword is only present on create and reset responses.
    """
    return {
        'service_specific_credential_id': response_item.get('ServiceSpecificCredentialId'),
        'service_user_name': response_item.get('ServiceUserName'),
        'service_password': response_item.get('ServicePassword'),
        'service_name': response_item.get('ServiceName'),
        'user_name': response_item.get('UserName'),
        'status': response_item.get('Status'),
        'create_date': response_item.get('CreateDate'),
    }


class CredentialAuthority:
    """
    IAM service-specific credential operations used by the rotation steps.

    Every call fails fast through the client's botocore Config; errors are
    raised as CredentialAuthorityError so the step can be retried by
    Secrets Manager. LimitExceeded is raised as QuotaExceeded.
    """

    def __init__(self, client: BaseClient) -> None:
        self.client = client

    def _translate(self, operation: str, error: Exception, user_name: Optional[str]) -> Exception:
        if isinstance(error, ClientError):
            code = error.response.get('Error', {}).get('Code', '')
            if code == IAM_ERROR_LIMIT_EXCEEDED:
                return QuotaExceeded(
                    f"{operation}: user {user_name} already holds the maximum number of "
                    f"service specific credentials: {error}"
                )
            if code == IAM_ERROR_NO_SUCH_ENTITY:
                return CredentialNotFound(f"{operation}: {error}")
            if code == IAM_ERROR_SERVICE_NOT_SUPPORTED:
                return CredentialAuthorityError(f"{operation}: service not supported: {error}")
        return CredentialAuthorityError(f"{operation} failed: {error}")

    def list_service_specific_credentials(self, user_name: str, service_name: str) -> List[Dict[str, Any]]:
        """
        Purpose:
            List the service-specific credentials a user holds for one service.

        References:
            https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/iam/client/list_service_specific_credentials.html
        """

        logger.info(f"Listing service specific credentials user_name={user_name} service_name={service_name}")
        try:
            response = self.client.list_service_specific_credentials(UserName=user_name, ServiceName=service_name)
        except (ClientError, BotoCoreError) as e:
            raise self._translate('list_service_specific_credentials', e, user_name) from e

        return [to_credential(item) for item in response.get('ServiceSpecificCredentials', [])]

    def create_service_specific_credential(self, user_name: str, service_name: str) -> Dict[str, Any]:
        """
        Purpose:
            Issue a brand-new service-specific credential for a user.

        Raises:
            QuotaExceeded: If the user already holds the maximum number of credentials
            CredentialNotFound: If the user does not exist
            CredentialAuthorityError: For any other IAM error

        References:
            https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/iam/client/create_service_specific_credential.html
        """

        logger.info(f"Creating service specific credential user_name={user_name} service_name={service_name}")
        try:
            response = self.client.create_service_specific_credential(UserName=user_name, ServiceName=service_name)
        except (ClientError, BotoCoreError) as e:
            raise self._translate('create_service_specific_credential', e, user_name) from e

        if 'ServiceSpecificCredential' not in response:
            raise CredentialAuthorityError("Missing credential in create_service_specific_credential response")
        return to_credential(response['ServiceSpecificCredential'])

    def reset_service_specific_credential(self, credential_id: str, user_name: str) -> Dict[str, Any]:
        """Generate a new password for an existing credential."""

        logger.info(f"Resetting service specific credential id={credential_id} user_name={user_name}")
        try:
            response = self.client.reset_service_specific_credential(
                UserName=user_name,
                ServiceSpecificCredentialId=credential_id
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate('reset_service_specific_credential', e, user_name) from e

        if 'ServiceSpecificCredential' not in response:
            raise CredentialAuthorityError("Missing credential in reset_service_specific_credential response")
        return to_credential(response['ServiceSpecificCredential'])

    def update_service_specific_credential(self, credential_id: str, user_name: str, status: str) -> None:
        logger.info(f"Updating service specific credential id={credential_id} user_name={user_name} status={status}")
        try:
            self.client.update_service_specific_credential(
                UserName=user_name,
                ServiceSpecificCredentialId=credential_id,
                Status=status
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate('update_service_specific_credential', e, user_name) from e

    def delete_service_specific_credential(self, credential_id: str, user_name: str) -> None:
        logger.info(f"Deleting service specific credential id={credential_id} user_name={user_name}")
        try:
            self.client.delete_service_specific_credential(
                UserName=user_name,
                ServiceSpecificCredentialId=credential_id
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate('delete_service_specific_credential', e, user_name) from e
