"""State file and lock backends."""

from .s3_state import S3StateBackend
from .dynamodb_lock import DynamoDbLockBackend

__all__ = ["S3StateBackend", "DynamoDbLockBackend"]
