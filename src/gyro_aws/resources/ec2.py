"""EC2 adapters: shared tag handling and EBS volumes."""

from abc import abstractmethod
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set

from botocore.exceptions import ClientError

from gyro_aws.resources.base import AwsResource, FieldSpec, ResourceState, compact
from gyro_aws.utils.changeset import diff_tags
from gyro_aws.utils.errors import FieldError, is_not_found_error
from gyro_aws.utils.logging import get_logger
from gyro_aws.utils.pagination import boto_pages, paginate
from gyro_aws.utils.retry import RetryStrategy

logger = get_logger(__name__)

NAME_TAG = 'Name'

# Tag fields shared by every EC2 resource; ``name`` is stored as the Name tag
TAGGABLE_FIELDS = (
    FieldSpec('name', updatable=True, description="Value of the Name tag"),
    FieldSpec('tags', dict, updatable=True, default_factory=dict),
)


class Ec2TaggableResource(AwsResource):
    """Base for EC2 resources whose tags are managed through EC2 tag calls.

    Tags are read with ``describe_tags`` and reconciled after every create
    and update. Tag calls are retried while a new resource id is not yet
    visible to the tagging API.
    """

    service_name = 'ec2'

    # Error codes meaning the resource id is not visible yet
    not_yet_visible_codes: tuple = ()

    def __init__(self, boto_session, settings=None):
        super().__init__(boto_session, settings)
        self.tag_retry = RetryStrategy(
            max_retries=10,
            base_delay=1.0,
            exponential_base=1.0,
            jitter=False,
            retryable_codes=self.not_yet_visible_codes
        )

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        errors = []
        if NAME_TAG in (desired.get('tags') or {}):
            errors.append(FieldError('tags', f"use the name field instead of a {NAME_TAG} tag"))
        return errors

    @abstractmethod
    def describe(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Observed state without tags, or None if the resource is gone."""

    @abstractmethod
    def create_resource(self, desired: ResourceState) -> str:
        """Create the resource and return its id."""

    @abstractmethod
    def update_resource(self, current: ResourceState, desired: ResourceState, changed: Set[str]) -> None:
        """Apply non-tag changes."""

    def do_refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        state = self.describe(identifier)
        if state is None:
            return None

        state.update(self.split_tags(self.load_tags(identifier)))
        return state

    def do_create(self, desired: ResourceState) -> Dict[str, Any]:
        resource_id = self.create_resource(desired)
        self.apply_tags(resource_id, self.merged_tags(desired))
        return self.observe(resource_id)

    def do_update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        resource_id = self.identify(current)

        other_changes = changed - {'name', 'tags'}
        if other_changes:
            self.update_resource(current, desired, other_changes)

        if changed & {'name', 'tags'}:
            self.apply_tags(resource_id, self.merged_tags(desired))

        return self.observe(resource_id)

    def load_tags(self, resource_id: str) -> Dict[str, str]:
        """Load user tags of a resource, skipping ``aws:`` reserved keys."""
        tags = paginate(
            boto_pages(
                self.client.describe_tags,
                'Tags',
                Filters=[{'Name': 'resource-id', 'Values': [resource_id]}]
            ),
            predicate=lambda t: not t['Key'].startswith('aws:')
        )
        return {tag['Key']: tag['Value'] for tag in tags}

    def apply_tags(self, resource_id: str, desired_tags: Mapping[str, str]) -> None:
        """Reconcile the tags of a resource with ``desired_tags``."""
        current_tags = self.tag_retry.execute_with_retry(self.load_tags, resource_id)
        to_set, to_remove = diff_tags(current_tags, desired_tags)

        if to_remove:
            self.tag_retry.execute_with_retry(
                self.client.delete_tags,
                Resources=[resource_id],
                Tags=[{'Key': key} for key in to_remove]
            )

        if to_set:
            self.tag_retry.execute_with_retry(
                self.client.create_tags,
                Resources=[resource_id],
                Tags=[{'Key': k, 'Value': v} for k, v in sorted(to_set.items())]
            )

    @staticmethod
    def merged_tags(desired: ResourceState) -> Dict[str, str]:
        tags = dict(desired.get('tags') or {})
        if desired.get('name'):
            tags[NAME_TAG] = desired['name']
        return tags

    @staticmethod
    def split_tags(tags: Mapping[str, str]) -> Dict[str, Any]:
        tags = dict(tags)
        return {'name': tags.pop(NAME_TAG, None), 'tags': tags}

    @staticmethod
    def query_filters(filterable: Set[str], query: Mapping[str, str]) -> Optional[List[Dict[str, Any]]]:
        """EC2 API filters for a query, or None if a key cannot be filtered on."""
        filters = []
        for key, value in sorted(query.items()):
            if key not in filterable:
                return None
            filters.append({'Name': key, 'Values': [value]})
        return filters


VOLUME_TYPES = ('gp2', 'gp3', 'io1', 'io2', 'st1', 'sc1', 'standard')

# Volume types that accept provisioned IOPS; io1 and io2 require it
IOPS_VOLUME_TYPES = {'gp3', 'io1', 'io2'}
IOPS_REQUIRED_TYPES = {'io1', 'io2'}

MODIFY_FIELDS = {'size', 'volume_type', 'iops', 'throughput'}

VOLUME_FILTERS = {
    'attachment.instance-id', 'availability-zone', 'encrypted', 'size', 'snapshot-id',
    'status', 'tag-key', 'volume-id', 'volume-type',
}


class EbsVolumeResource(Ec2TaggableResource):
    """Adapter for EBS volumes, identified by volume id."""

    resource_type = 'ebs-volume'
    supports_find = True
    not_yet_visible_codes = ('InvalidVolume.NotFound',)
    fields = (
        FieldSpec('availability_zone', required=True),
        FieldSpec('size', int, updatable=True, min_value=1, max_value=65536,
                  description="Size in GiB; required unless snapshot_id is set"),
        FieldSpec('volume_type', updatable=True, valid_values=VOLUME_TYPES, default='gp2'),
        FieldSpec('iops', int, updatable=True, computed=True, min_value=100),
        FieldSpec('throughput', int, updatable=True, computed=True, min_value=125, max_value=1000,
                  description="MiB/s, gp3 only"),
        FieldSpec('encrypted', bool, default=False),
        FieldSpec('kms_key_id'),
        FieldSpec('snapshot_id'),
        FieldSpec('auto_enable_io', bool, updatable=True, default=False),
    ) + TAGGABLE_FIELDS + (
        FieldSpec('id', output=True, identifier=True),
        FieldSpec('state', output=True),
        FieldSpec('create_time', output=True),
    )

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        errors = super().validate_fields(desired)
        volume_type = desired.get('volume_type') or 'gp2'

        if desired.get('iops') is not None and volume_type not in IOPS_VOLUME_TYPES:
            errors.append(FieldError(
                'iops', f"can only be set for volume types {', '.join(sorted(IOPS_VOLUME_TYPES))}"
            ))
        if desired.get('iops') is None and volume_type in IOPS_REQUIRED_TYPES:
            errors.append(FieldError('iops', f"is required for {volume_type} volumes"))

        if desired.get('throughput') is not None and volume_type != 'gp3':
            errors.append(FieldError('throughput', "can only be set for gp3 volumes"))

        if desired.get('size') is None and not desired.get('snapshot_id'):
            errors.append(FieldError('size', "is required unless snapshot_id is set"))

        if desired.get('kms_key_id') and not desired.get('encrypted'):
            errors.append(FieldError('kms_key_id', "requires encrypted"))

        return errors

    @classmethod
    def identify(cls, state: ResourceState) -> Optional[str]:
        return state.get('id')

    def describe(self, identifier: str) -> Optional[Dict[str, Any]]:
        volume = self._get_volume(identifier)
        if volume is None or volume.get('State') == 'deleted':
            return None

        attribute = self.client.describe_volume_attribute(
            Attribute='autoEnableIO',
            VolumeId=identifier
        )

        volume_type = volume.get('VolumeType')

        # gp2 and standard volumes report baseline IOPS that cannot be configured
        return {
            'availability_zone': volume['AvailabilityZone'],
            'size': volume.get('Size'),
            'volume_type': volume_type,
            'iops': volume.get('Iops') if volume_type in IOPS_VOLUME_TYPES else None,
            'throughput': volume.get('Throughput') if volume_type == 'gp3' else None,
            'encrypted': volume.get('Encrypted', False),
            'kms_key_id': volume.get('KmsKeyId'),
            'snapshot_id': volume.get('SnapshotId') or None,
            'auto_enable_io': attribute.get('AutoEnableIO', {}).get('Value', False),
            'id': volume['VolumeId'],
            'state': volume.get('State'),
            'create_time': volume.get('CreateTime'),
        }

    def create_resource(self, desired: ResourceState) -> str:
        volume_type = desired.get('volume_type')

        response = self.client.create_volume(**compact({
            'AvailabilityZone': desired['availability_zone'],
            'Size': desired.get('size'),
            'VolumeType': volume_type,
            'Iops': desired.get('iops') if volume_type in IOPS_VOLUME_TYPES else None,
            'Throughput': desired.get('throughput') if volume_type == 'gp3' else None,
            'Encrypted': desired.get('encrypted'),
            'KmsKeyId': desired.get('kms_key_id'),
            'SnapshotId': desired.get('snapshot_id'),
        }))

        volume_id = response['VolumeId']
        logger.info(f"Created volume {volume_id}")

        self._wait_for_state(volume_id, {'available'})

        if desired.get('auto_enable_io'):
            self.client.modify_volume_attribute(
                VolumeId=volume_id,
                AutoEnableIO={'Value': True}
            )

        return volume_id

    def update_resource(self, current: ResourceState, desired: ResourceState, changed: Set[str]) -> None:
        volume_id = current['id']
        volume_type = desired.get('volume_type')

        if changed & MODIFY_FIELDS:
            self.client.modify_volume(**compact({
                'VolumeId': volume_id,
                'Size': desired.get('size'),
                'VolumeType': volume_type,
                'Iops': desired.get('iops') if volume_type in IOPS_VOLUME_TYPES else None,
                'Throughput': desired.get('throughput') if volume_type == 'gp3' else None,
            }))

        if 'auto_enable_io' in changed:
            self.client.modify_volume_attribute(
                VolumeId=volume_id,
                AutoEnableIO={'Value': bool(desired.get('auto_enable_io'))}
            )

        # Attached volumes settle as in-use rather than available
        self._wait_for_state(volume_id, {'available', 'in-use'})

    def do_delete(self, state: ResourceState) -> None:
        volume_id = state['id']
        self.client.delete_volume(VolumeId=volume_id)

        self.wait_for(lambda: self.describe(volume_id) is None, 'deleted',
                      resource=f"volume {volume_id}")

    def find(self, filters: Optional[Mapping[str, str]] = None) -> Iterator[Dict[str, Any]]:
        """Search volumes with EC2 ``describe_volumes`` filters.

        Args:
            filters: Filter name to value, e.g. ``{'volume-type': 'gp3'}``

        Raises:
            ValueError: If a filter name is not supported
        """
        api_filters = self.query_filters(VOLUME_FILTERS, filters or {})
        if api_filters is None:
            raise ValueError(
                f"Unsupported volume filter; supported filters are {', '.join(sorted(VOLUME_FILTERS))}"
            )

        params = {'Filters': api_filters} if api_filters else {}
        for volume in paginate(boto_pages(self.client.describe_volumes, 'Volumes', **params)):
            state = self.do_refresh(volume['VolumeId'])
            if state is not None:
                yield state

    def _get_volume(self, volume_id: str) -> Optional[Dict[str, Any]]:
        try:
            volumes = self.client.describe_volumes(VolumeIds=[volume_id]).get('Volumes', [])
        except ClientError as e:
            if is_not_found_error(e):
                return None
            raise

        return volumes[0] if volumes else None

    def _wait_for_state(self, volume_id: str, states: Set[str]) -> None:
        def settled() -> bool:
            volume = self._get_volume(volume_id)
            return volume is not None and volume.get('State') in states

        self.wait_for(settled, ' or '.join(sorted(states)), resource=f"volume {volume_id}")
