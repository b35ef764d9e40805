"""Utility modules for logging, errors, AWS clients and reconciliation helpers."""

from gyro_aws.utils.aws_client import AWSClientManager, AWSCredentials, build_boto_config
from gyro_aws.utils.retry import RetryStrategy
from gyro_aws.utils.errors import (
    ErrorCategory,
    ErrorContext,
    FieldError,
    ProviderError,
    ConfigurationError,
    ValidationError,
    WaitTimeoutError,
    UnknownResourceTypeError,
    UnsupportedOperationError,
    StateLockError,
    ErrorHandler,
    error_handler,
    is_not_found_error,
)
from gyro_aws.utils.logging import LogContext, get_logger, setup_logging
from gyro_aws.utils.changeset import changed_fields, diff_tags
from gyro_aws.utils.pagination import boto_pages, paginate
from gyro_aws.utils.waiter import wait_for_state, wait_until
from gyro_aws.utils.arn import Arn, is_arn, parse_arn

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AWSCredentials',
    'build_boto_config',

    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorContext',
    'FieldError',
    'ProviderError',
    'ConfigurationError',
    'ValidationError',
    'WaitTimeoutError',
    'UnknownResourceTypeError',
    'UnsupportedOperationError',
    'StateLockError',
    'ErrorHandler',
    'error_handler',
    'is_not_found_error',

    # Logging
    'LogContext',
    'get_logger',
    'setup_logging',

    # Reconciliation
    'changed_fields',
    'diff_tags',
    'paginate',
    'boto_pages',
    'wait_until',
    'wait_for_state',

    # ARNs
    'Arn',
    'is_arn',
    'parse_arn',
]
