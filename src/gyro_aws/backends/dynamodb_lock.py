"""State locking with a DynamoDB table."""

from contextlib import contextmanager
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

from gyro_aws.config.models import RetrySettings
from gyro_aws.utils.aws_client import build_boto_config
from gyro_aws.utils.errors import StateLockError, error_code
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)

CONDITION_FAILED = 'ConditionalCheckFailedException'


class DynamoDbLockBackend:
    """Single-holder lock stored as one item keyed by ``LockKey``.

    The table needs a string partition key named ``LockKey``. The holder's id
    is stored as ``GyroId`` and free-form holder details as ``GyroLockInfo``.
    """

    def __init__(
        self,
        boto_session: boto3.Session,
        table_name: str,
        lock_key: str = 'default',
        retry: Optional[RetrySettings] = None
    ):
        self.table_name = table_name
        self.lock_key = lock_key or 'default'
        self.client = boto_session.client('dynamodb', config=build_boto_config(retry or RetrySettings()))

    def lock(self, lock_id: str) -> None:
        """Acquire the lock.

        Raises:
            StateLockError: If another holder has the lock
        """
        try:
            self.client.put_item(
                TableName=self.table_name,
                Item={
                    'LockKey': {'S': self.lock_key},
                    'GyroId': {'S': lock_id},
                },
                ConditionExpression='attribute_not_exists(LockKey)'
            )
        except ClientError as e:
            if error_code(e) != CONDITION_FAILED:
                raise
            raise StateLockError(f"State is currently locked!{self._describe_current_lock()}") from e

        logger.info(f"Acquired state lock {self.lock_key} as {lock_id}")

    def unlock(self, lock_id: str) -> None:
        """Release the lock held by ``lock_id``.

        Raises:
            StateLockError: If ``lock_id`` no longer holds the lock
        """
        try:
            self.client.delete_item(
                TableName=self.table_name,
                Key=self._key(),
                ConditionExpression='GyroId = :id',
                ExpressionAttributeValues={':id': {'S': lock_id}}
            )
        except ClientError as e:
            if error_code(e) != CONDITION_FAILED:
                raise
            raise StateLockError(
                f"Cannot unlock '{lock_id}' as it is no longer the active lock!"
                f"{self._describe_current_lock()}"
            ) from e

        logger.info(f"Released state lock {self.lock_key}")

    def update_lock_info(self, lock_id: str, info: str) -> None:
        """Record details about the current holder.

        Raises:
            StateLockError: If ``lock_id`` no longer holds the lock
        """
        try:
            self.client.update_item(
                TableName=self.table_name,
                Key=self._key(),
                ConditionExpression='GyroId = :id',
                UpdateExpression='SET GyroLockInfo = :info',
                ExpressionAttributeValues={
                    ':id': {'S': lock_id},
                    ':info': {'S': info},
                }
            )
        except ClientError as e:
            if error_code(e) != CONDITION_FAILED:
                raise
            raise StateLockError(
                f"Cannot update info for '{lock_id}' as it is no longer the active lock!"
                f"{self._describe_current_lock()}"
            ) from e

    def current_lock(self) -> Optional[Dict[str, Optional[str]]]:
        """Return ``{'lock_id', 'info'}`` of the current holder, or None."""
        item = self.client.get_item(TableName=self.table_name, Key=self._key()).get('Item')
        if not item:
            return None

        return {
            'lock_id': _string(item.get('GyroId')),
            'info': _string(item.get('GyroLockInfo')),
        }

    @contextmanager
    def held(self, lock_id: str, info: Optional[str] = None):
        """Hold the lock for the duration of a ``with`` block."""
        self.lock(lock_id)
        try:
            if info:
                self.update_lock_info(lock_id, info)
            yield self
        finally:
            self.unlock(lock_id)

    def _key(self) -> Dict[str, Dict[str, str]]:
        return {'LockKey': {'S': self.lock_key}}

    def _describe_current_lock(self) -> str:
        current = self.current_lock()
        if current is None:
            return ''

        lines = [f"\nCurrent lock ID: '{current['lock_id']}'."]
        if current['info']:
            lines.append(current['info'])
        return '\n'.join(lines)


def _string(value: Optional[Dict[str, Any]]) -> Optional[str]:
    return value.get('S') if value else None
