"""AWS session and client management."""

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from typing import Optional, Dict, Any
from dataclasses import dataclass

from gyro_aws.config.models import RetrySettings
from gyro_aws.utils.errors import error_code
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)


def build_boto_config(retry: RetrySettings) -> Config:
    """Build the botocore client configuration for the given retry settings."""
    return Config(
        retries={
            'mode': retry.mode,
            'max_attempts': retry.max_attempts
        },
        connect_timeout=10,
        read_timeout=60
    )


@dataclass
class AWSCredentials:
    """Identity behind the configured credentials."""
    account_id: str
    user_arn: str
    region: str
    profile: Optional[str] = None


class AWSClientManager:
    """Creates the boto3 session and clients used by adapters and backends."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        retry: Optional[RetrySettings] = None
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            retry: botocore retry configuration
        """
        self.profile = profile
        self.region = region
        self.retry = retry or RetrySettings()
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}
        self._credentials: Optional[AWSCredentials] = None

        self.boto_config = build_boto_config(self.retry)

    @property
    def session(self) -> boto3.Session:
        """Get or create the boto3 session."""
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            self._session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {self._session.region_name}, "
                        f"Profile: {self.profile or 'default'}")

        return self._session

    def get_client(self, service_name: str):
        """Get a cached boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 'autoscaling', 's3')

        Returns:
            Boto3 client for the service
        """
        if service_name not in self._clients:
            self._clients[service_name] = self.session.client(service_name, config=self.boto_config)
            logger.debug(f"Created {service_name} client")

        return self._clients[service_name]

    def validate_credentials(self) -> AWSCredentials:
        """Validate AWS credentials and return the caller identity.

        Raises:
            NoCredentialsError: If no credentials are found
            PartialCredentialsError: If credentials are incomplete
            ClientError: If credentials are invalid
        """
        if self._credentials is not None:
            return self._credentials

        try:
            identity = self.get_client('sts').get_caller_identity()
        except (NoCredentialsError, PartialCredentialsError):
            logger.error("No usable AWS credentials found. Configure credentials using "
                         "the AWS CLI, environment variables, or an IAM role.")
            raise
        except ClientError as e:
            logger.error(f"Failed to validate AWS credentials ({error_code(e)}): {e}")
            raise

        self._credentials = AWSCredentials(
            account_id=identity['Account'],
            user_arn=identity['Arn'],
            region=self.session.region_name,
            profile=self.profile
        )

        logger.info(f"AWS credentials validated - Account: {self._credentials.account_id}, "
                    f"Identity: {self._credentials.user_arn}")

        return self._credentials

    def clear_cache(self):
        """Drop cached clients, session and identity."""
        self._clients.clear()
        self._session = None
        self._credentials = None
