"""State files stored as S3 objects."""

from typing import Iterator, Optional

import boto3
from botocore.exceptions import ClientError

from gyro_aws.config.models import RetrySettings
from gyro_aws.utils.aws_client import build_boto_config
from gyro_aws.utils.errors import is_not_found_error
from gyro_aws.utils.logging import get_logger
from gyro_aws.utils.pagination import boto_pages, paginate

logger = get_logger(__name__)


class S3StateBackend:
    """Reads and writes state files under an optional key prefix in a bucket."""

    def __init__(
        self,
        boto_session: boto3.Session,
        bucket: str,
        prefix: Optional[str] = None,
        suffix: str = '.gyro',
        retry: Optional[RetrySettings] = None
    ):
        """Initialize the backend.

        Args:
            boto_session: Session used to create the S3 client
            bucket: Bucket holding the state files
            prefix: Key prefix, without surrounding slashes
            suffix: File name suffix that marks state files
            retry: botocore retry configuration
        """
        self.bucket = bucket
        self.prefix = prefix.strip('/') if prefix else None
        self.suffix = suffix
        self.client = boto_session.client('s3', config=build_boto_config(retry or RetrySettings()))

    def list(self) -> Iterator[str]:
        """Yield names of the state files, relative to the prefix."""
        params = {'Bucket': self.bucket}
        if self.prefix:
            params['Prefix'] = f"{self.prefix}/"

        objects = paginate(
            boto_pages(self.client.list_objects_v2, 'Contents', 'NextContinuationToken',
                       'ContinuationToken', **params),
            predicate=lambda obj: obj['Key'].endswith(self.suffix)
        )
        for obj in objects:
            yield self._remove_prefix(obj['Key'])

    def read(self, name: str) -> bytes:
        """Return the contents of a state file."""
        response = self.client.get_object(Bucket=self.bucket, Key=self._key(name))
        return response['Body'].read()

    def write(self, name: str, data: bytes) -> None:
        """Write a state file as a private object."""
        self.client.put_object(
            Bucket=self.bucket,
            Key=self._key(name),
            Body=data,
            ACL='private'
        )
        logger.debug(f"Wrote state file s3://{self.bucket}/{self._key(name)}")

    def delete(self, name: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=self._key(name))

    def exists(self, name: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._key(name))
        except ClientError as e:
            if is_not_found_error(e):
                return False
            raise
        return True

    def copy(self, source: str, destination: str) -> None:
        """Copy a state file within the bucket."""
        self.client.copy_object(
            CopySource={'Bucket': self.bucket, 'Key': self._key(source)},
            Bucket=self.bucket,
            Key=self._key(destination),
            ACL='private'
        )

    def _key(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def _remove_prefix(self, key: str) -> str:
        if self.prefix and key.startswith(f"{self.prefix}/"):
            return key[len(self.prefix) + 1:]
        return key
