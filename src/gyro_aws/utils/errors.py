"""Error taxonomy for provider operations."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass, field
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors raised by the provider."""
    VALIDATION = "validation"
    REMOTE = "remote"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    THROTTLING = "throttling"
    LOCK = "lock"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Where an error occurred."""
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldError:
    """A single validation failure for one field of a resource."""
    field: Optional[str]
    message: str

    def __str__(self) -> str:
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize provider error.

        Args:
            message: Human-readable error message
            category: Error category
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Format the error for display to a user."""
        lines = [f"ERROR ({self.category.value}): {self.message}"]

        if self.context.resource_type:
            lines.append(f"   Resource type: {self.context.resource_type}")
        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.cause:
            lines.append(f"   Cause: {self.cause}")

        if self.suggestions:
            lines.append("")
            lines.append("Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dictionary for structured logging."""
        return {
            'message': self.message,
            'category': self.category.value,
            'context': {
                'resource_type': self.context.resource_type,
                'resource_id': self.context.resource_id,
                'operation': self.context.operation,
                'aws_service': self.context.aws_service,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info,
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions,
        }


class ConfigurationError(ProviderError):
    """Invalid provider configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)


class ValidationError(ProviderError):
    """Desired state failed local validation.

    Always raised before any remote call is made.
    """

    def __init__(self, resource_type: str, errors: List[FieldError], **kwargs):
        self.resource_type = resource_type
        self.errors = list(errors)

        details = "; ".join(str(error) for error in self.errors)
        context = kwargs.pop('context', None) or ErrorContext(resource_type=resource_type)
        super().__init__(
            f"Invalid {resource_type}: {details}",
            category=ErrorCategory.VALIDATION,
            context=context,
            **kwargs
        )

    @property
    def fields(self) -> List[Optional[str]]:
        """Names of the fields that failed validation."""
        return [error.field for error in self.errors]


class WaitTimeoutError(ProviderError):
    """A resource did not reach the expected state in time."""

    def __init__(self, resource: str, expected_state: str, timeout: float, **kwargs):
        self.resource = resource
        self.expected_state = expected_state
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s waiting for {resource} to become {expected_state}",
            category=ErrorCategory.TIMEOUT,
            **kwargs
        )


class UnknownResourceTypeError(ProviderError):
    """No adapter is registered for the requested resource type."""

    def __init__(self, type_name: str, known: Optional[List[str]] = None):
        self.type_name = type_name
        suggestions = []
        if known:
            suggestions.append(f"Known types: {', '.join(sorted(known))}")
        super().__init__(
            f"Unknown resource type: {type_name}",
            category=ErrorCategory.CONFIGURATION,
            suggestions=suggestions
        )


class UnsupportedOperationError(ProviderError):
    """The resource type does not provide the requested operation."""

    def __init__(self, resource_type: str, operation: str):
        self.resource_type = resource_type
        self.operation = operation
        super().__init__(
            f"{resource_type} does not support {operation}",
            category=ErrorCategory.CONFIGURATION,
            context=ErrorContext(resource_type=resource_type, operation=operation)
        )


class StateLockError(ProviderError):
    """The state lock could not be acquired, released or updated."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.LOCK, **kwargs)


# Error codes AWS services use for a missing resource
NOT_FOUND_ERROR_CODES = {
    'ResourceNotFoundException',
    'ResourceNotFound',
    'NoSuchEntity',
    'NoSuchBucket',
    'NoSuchKey',
    'NotFound',
    '404',
    'AWS.SimpleQueueService.NonExistentQueue',
    'QueueDoesNotExist',
}


def error_code(error: ClientError) -> str:
    """Return the AWS error code of a ClientError."""
    return error.response.get('Error', {}).get('Code', '')


def is_not_found_error(error: Exception) -> bool:
    """Check whether an error means the remote resource does not exist.

    Args:
        error: Exception raised by a boto3 call

    Returns:
        True for not-found class errors
    """
    if not isinstance(error, ClientError):
        return False

    code = error_code(error)
    if code in NOT_FOUND_ERROR_CODES or code.endswith('NotFound'):
        return True

    # Auto Scaling reports missing groups as a ValidationError
    message = error.response.get('Error', {}).get('Message', '').lower()
    return 'does not exist' in message or 'not found' in message


class ErrorHandler:
    """Converts exceptions into categorised ProviderErrors for display."""

    AWS_ERROR_MAPPING = {
        'InvalidClientTokenId': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Check that your AWS credentials are correctly configured',
                'Verify credentials using: aws sts get-caller-identity',
            ]
        },
        'ExpiredToken': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS session token has expired',
            'suggestions': [
                'Refresh your AWS session credentials',
            ]
        },
        'AccessDenied': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied',
            'suggestions': [
                'Check IAM policies attached to your user or role',
                'Check resource-based policies on the target resource',
            ]
        },
        'AccessDeniedException': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied',
            'suggestions': [
                'Check IAM policies attached to your user or role',
            ]
        },
        'Throttling': {
            'category': ErrorCategory.THROTTLING,
            'message': 'API rate limit exceeded',
            'suggestions': [
                'Increase retry.max_attempts in the provider configuration',
                'Use retry.mode: adaptive',
            ]
        },
        'ThrottlingException': {
            'category': ErrorCategory.THROTTLING,
            'message': 'API rate limit exceeded',
            'suggestions': [
                'Increase retry.max_attempts in the provider configuration',
            ]
        },
        'ValidationException': {
            'category': ErrorCategory.REMOTE,
            'message': 'AWS rejected a parameter',
            'suggestions': [
                'Review the error message for the rejected parameter',
            ]
        },
    }

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ProviderError:
        """Convert an exception into a ProviderError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            ProviderError with categorisation and suggestions
        """
        if isinstance(error, ProviderError):
            return error

        context = context or ErrorContext()

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return ProviderError(
                message='AWS credentials are missing or incomplete',
                category=ErrorCategory.CREDENTIAL,
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Set a profile in gyro-aws.yaml or with --profile',
                ]
            )

        return ProviderError(
            message=str(error),
            category=ErrorCategory.UNKNOWN,
            context=context,
            cause=error
        )

    def _handle_aws_error(self, error: ClientError, context: ErrorContext) -> ProviderError:
        code = error_code(error)
        error_message = error.response.get('Error', {}).get('Message', str(error))
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.aws_service = context.aws_service or error.operation_name

        if is_not_found_error(error):
            return ProviderError(
                message=f"Resource not found: {error_message}",
                category=ErrorCategory.NOT_FOUND,
                context=context,
                cause=error,
                suggestions=['Check whether the resource was deleted outside of Gyro']
            )

        error_info = self.AWS_ERROR_MAPPING.get(code)
        if error_info:
            return ProviderError(
                message=f"{error_info['message']}: {error_message}",
                category=error_info['category'],
                context=context,
                cause=error,
                suggestions=error_info['suggestions']
            )

        return ProviderError(
            message=f"AWS Error ({code}): {error_message}",
            category=ErrorCategory.REMOTE,
            context=context,
            cause=error,
            suggestions=[f'AWS Request ID: {context.request_id}']
        )

    def log_error(self, error: ProviderError):
        """Log an error and its details."""
        logger.error(error.to_user_message())
        logger.debug(f"Error details: {error.to_dict()}")


error_handler = ErrorHandler()
