"""SQS queue adapter."""

import json
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Set

from botocore.exceptions import ClientError

from gyro_aws.resources.base import AwsResource, FieldSpec, ResourceState
from gyro_aws.utils.changeset import diff_tags
from gyro_aws.utils.errors import FieldError, is_not_found_error
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)

FIFO_SUFFIX = '.fifo'

# Integer fields stored as queue attributes
INT_ATTRIBUTES = {
    'visibility_timeout': 'VisibilityTimeout',
    'message_retention_period': 'MessageRetentionPeriod',
    'maximum_message_size': 'MaximumMessageSize',
    'delay_seconds': 'DelaySeconds',
    'receive_message_wait_time_seconds': 'ReceiveMessageWaitTimeSeconds',
}

REDRIVE_FIELDS = {'dead_letter_target_arn', 'max_receive_count'}


def build_redrive_policy(dlq_arn: str, max_receive_count: int = 3) -> str:
    """Build redrive policy for dead letter queue.

    Args:
        dlq_arn: Dead letter queue ARN
        max_receive_count: Maximum number of receives before moving to DLQ

    Returns:
        Redrive policy as JSON string
    """
    return json.dumps({
        'deadLetterTargetArn': dlq_arn,
        'maxReceiveCount': max_receive_count
    })


def build_fifo_queue_name(base_name: str) -> str:
    """Build FIFO queue name with .fifo suffix."""
    if not base_name.endswith(FIFO_SUFFIX):
        return f"{base_name}{FIFO_SUFFIX}"
    return base_name


class QueueResource(AwsResource):
    """Adapter for SQS queues, identified by queue URL."""

    resource_type = 'sqs-queue'
    service_name = 'sqs'
    fields = (
        FieldSpec('name', required=True,
                  description="Queue name; FIFO queues get the .fifo suffix added"),
        FieldSpec('fifo_queue', bool, default=False),
        FieldSpec('content_based_deduplication', bool, updatable=True, default=False),
        FieldSpec('visibility_timeout', int, updatable=True, min_value=0, max_value=43200,
                  default=30),
        FieldSpec('message_retention_period', int, updatable=True, min_value=60,
                  max_value=1209600, default=345600),
        FieldSpec('maximum_message_size', int, updatable=True, min_value=1024,
                  max_value=262144, default=262144),
        FieldSpec('delay_seconds', int, updatable=True, min_value=0, max_value=900, default=0),
        FieldSpec('receive_message_wait_time_seconds', int, updatable=True, min_value=0,
                  max_value=20, default=0),
        FieldSpec('dead_letter_target_arn', updatable=True),
        FieldSpec('max_receive_count', int, updatable=True, min_value=1, max_value=1000),
        FieldSpec('kms_master_key_id', updatable=True),
        FieldSpec('tags', dict, updatable=True, default_factory=dict),
        FieldSpec('url', output=True, identifier=True),
        FieldSpec('arn', output=True),
    )

    @classmethod
    def desired_state(cls, values):
        state = super().desired_state(values)
        if not state.get('fifo_queue') or not state.get('name'):
            return state

        return MappingProxyType(dict(state, name=build_fifo_queue_name(state['name'])))

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        errors = []
        name = desired.get('name') or ''
        fifo = bool(desired.get('fifo_queue'))

        if fifo and not name.endswith(FIFO_SUFFIX):
            errors.append(FieldError('name', f"FIFO queue names must end with {FIFO_SUFFIX}"))
        if not fifo and name.endswith(FIFO_SUFFIX):
            errors.append(FieldError('name', f"only FIFO queue names may end with {FIFO_SUFFIX}"))

        if desired.get('content_based_deduplication') and not fifo:
            errors.append(FieldError('content_based_deduplication', "requires fifo_queue"))

        has_target = desired.get('dead_letter_target_arn') is not None
        has_count = desired.get('max_receive_count') is not None
        if has_target != has_count:
            errors.append(FieldError(
                'max_receive_count' if has_target else 'dead_letter_target_arn',
                "dead_letter_target_arn and max_receive_count must be set together"
            ))

        return errors

    @classmethod
    def identify(cls, state: ResourceState) -> Optional[str]:
        return state.get('url') or state.get('name')

    def do_refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.get_queue_attributes(
                QueueUrl=identifier,
                AttributeNames=['All']
            )
            tags = self.client.list_queue_tags(QueueUrl=identifier).get('Tags', {})
        except ClientError as e:
            if is_not_found_error(e):
                return None
            raise

        return self._to_state(identifier, response.get('Attributes', {}), tags)

    def do_create(self, desired: ResourceState) -> Dict[str, Any]:
        params = {
            'QueueName': desired['name'],
            'Attributes': self._attributes(desired, set(INT_ATTRIBUTES) | REDRIVE_FIELDS | {
                'fifo_queue', 'content_based_deduplication', 'kms_master_key_id'
            }),
        }

        if desired.get('tags'):
            params['tags'] = dict(desired['tags'])

        response = self.client.create_queue(**params)
        queue_url = response['QueueUrl']
        logger.info(f"Created queue {desired['name']}")

        return self.observe(queue_url)

    def do_update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        queue_url = current['url']

        attributes = self._attributes(desired, changed - {'tags'}, removing=True)
        if attributes:
            self.client.set_queue_attributes(QueueUrl=queue_url, Attributes=attributes)

        if 'tags' in changed:
            to_set, to_remove = diff_tags(current.get('tags'), desired.get('tags'))
            if to_remove:
                self.client.untag_queue(QueueUrl=queue_url, TagKeys=to_remove)
            if to_set:
                self.client.tag_queue(QueueUrl=queue_url, Tags=to_set)

        return self.observe(queue_url)

    def do_delete(self, state: ResourceState) -> None:
        self.client.delete_queue(QueueUrl=state['url'])

    @staticmethod
    def _attributes(desired: ResourceState, names: Set[str], removing: bool = False) -> Dict[str, str]:
        """Queue attributes for the given field names.

        When ``removing`` is set, cleared optional attributes are sent as
        empty strings so AWS drops them.
        """
        attributes = {}

        for field, attribute in INT_ATTRIBUTES.items():
            if field in names and desired.get(field) is not None:
                attributes[attribute] = str(desired[field])

        if 'fifo_queue' in names and desired.get('fifo_queue'):
            attributes['FifoQueue'] = 'true'

        if 'content_based_deduplication' in names and desired.get('fifo_queue'):
            attributes['ContentBasedDeduplication'] = str(
                bool(desired.get('content_based_deduplication'))
            ).lower()

        if names & REDRIVE_FIELDS:
            if desired.get('dead_letter_target_arn'):
                attributes['RedrivePolicy'] = build_redrive_policy(
                    desired['dead_letter_target_arn'], desired['max_receive_count']
                )
            elif removing:
                attributes['RedrivePolicy'] = ''

        if 'kms_master_key_id' in names:
            if desired.get('kms_master_key_id'):
                attributes['KmsMasterKeyId'] = desired['kms_master_key_id']
            elif removing:
                attributes['KmsMasterKeyId'] = ''

        return attributes

    @staticmethod
    def _to_state(queue_url: str, attributes: Dict[str, str], tags: Dict[str, str]) -> Dict[str, Any]:
        redrive = json.loads(attributes['RedrivePolicy']) if attributes.get('RedrivePolicy') else {}
        max_receive_count = redrive.get('maxReceiveCount')

        return {
            'name': queue_url.rstrip('/').rsplit('/', 1)[-1],
            'fifo_queue': attributes.get('FifoQueue', 'false') == 'true',
            'content_based_deduplication': attributes.get('ContentBasedDeduplication', 'false') == 'true',
            'visibility_timeout': int(attributes.get('VisibilityTimeout', 30)),
            'message_retention_period': int(attributes.get('MessageRetentionPeriod', 345600)),
            'maximum_message_size': int(attributes.get('MaximumMessageSize', 262144)),
            'delay_seconds': int(attributes.get('DelaySeconds', 0)),
            'receive_message_wait_time_seconds': int(attributes.get('ReceiveMessageWaitTimeSeconds', 0)),
            'dead_letter_target_arn': redrive.get('deadLetterTargetArn'),
            'max_receive_count': int(max_receive_count) if max_receive_count is not None else None,
            'kms_master_key_id': attributes.get('KmsMasterKeyId'),
            'tags': dict(tags),
            'url': queue_url,
            'arn': attributes.get('QueueArn'),
        }
