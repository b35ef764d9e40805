"""Secrets Manager secret adapter."""

from typing import Any, Dict, Iterator, List, Mapping, Optional, Set

from botocore.exceptions import ClientError

from gyro_aws.resources.base import AwsResource, FieldSpec, ResourceState, compact
from gyro_aws.utils.changeset import diff_tags
from gyro_aws.utils.errors import FieldError, is_not_found_error
from gyro_aws.utils.logging import get_logger
from gyro_aws.utils.pagination import boto_pages, paginate

logger = get_logger(__name__)

# Fields sent through update_secret
SECRET_ATTRIBUTES = {'description', 'kms_key_id', 'secret_string', 'secret_binary'}


def _tag_list(tags: Mapping[str, str]) -> List[Dict[str, str]]:
    return [{'Key': key, 'Value': value} for key, value in sorted(tags.items())]


class SecretResource(AwsResource):
    """Adapter for Secrets Manager secrets.

    Secret values are write-only: they are sent on create and update but
    never read back by ``refresh``. Deletion options only affect ``delete``.
    """

    resource_type = 'secretsmanager-secret'
    service_name = 'secretsmanager'
    supports_find = True
    fields = (
        FieldSpec('name', required=True),
        FieldSpec('description', updatable=True),
        FieldSpec('kms_key_id', updatable=True,
                  description="KMS key id or ARN used to encrypt the secret"),
        FieldSpec('secret_string', updatable=True, write_only=True),
        FieldSpec('secret_binary', updatable=True, write_only=True,
                  description="Binary secret value, sent as UTF-8 bytes"),
        FieldSpec('tags', dict, updatable=True, default_factory=dict),
        FieldSpec('force_delete_without_recovery', bool, updatable=True, write_only=True),
        FieldSpec('recovery_window_in_days', int, updatable=True, write_only=True,
                  min_value=7, max_value=30),
        FieldSpec('arn', output=True, identifier=True),
        FieldSpec('deleted_date', output=True),
        FieldSpec('last_changed_date', output=True),
        FieldSpec('rotation_enabled', bool, output=True),
        FieldSpec('rotation_lambda_arn', output=True),
        FieldSpec('owning_service', output=True),
    )

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        errors = []

        if desired.get('secret_string') is not None and desired.get('secret_binary') is not None:
            errors.append(FieldError('secret_binary', "cannot be combined with secret_string"))

        if desired.get('force_delete_without_recovery') and desired.get('recovery_window_in_days') is not None:
            errors.append(FieldError(
                'recovery_window_in_days', "cannot be combined with force_delete_without_recovery"
            ))

        return errors

    @classmethod
    def identify(cls, state: ResourceState) -> Optional[str]:
        return state.get('arn') or state.get('name')

    def do_refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        try:
            secret = self.client.describe_secret(SecretId=identifier)
        except ClientError as e:
            if is_not_found_error(e):
                return None
            raise

        return self._to_state(secret)

    def do_create(self, desired: ResourceState) -> Dict[str, Any]:
        tags = desired.get('tags') or {}

        response = self.client.create_secret(**compact({
            'Name': desired['name'],
            'Description': desired.get('description'),
            'KmsKeyId': desired.get('kms_key_id'),
            'SecretString': desired.get('secret_string'),
            'SecretBinary': self._binary(desired),
            'Tags': _tag_list(tags) if tags else None,
        }))

        arn = response['ARN']
        logger.info(f"Created secret {desired['name']}")

        return self.observe(arn)

    def do_update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        arn = current['arn']

        if changed & SECRET_ATTRIBUTES:
            self.client.update_secret(**compact({
                'SecretId': arn,
                'Description': desired.get('description'),
                'KmsKeyId': desired.get('kms_key_id'),
                'SecretString': desired.get('secret_string'),
                'SecretBinary': self._binary(desired),
            }))

        if 'tags' in changed:
            to_set, to_remove = diff_tags(current.get('tags'), desired.get('tags'))
            if to_set:
                self.client.tag_resource(SecretId=arn, Tags=_tag_list(to_set))
            if to_remove:
                self.client.untag_resource(SecretId=arn, TagKeys=to_remove)

        return self.observe(arn)

    def do_delete(self, state: ResourceState) -> None:
        self.client.delete_secret(**compact({
            'SecretId': state['arn'],
            'ForceDeleteWithoutRecovery': state.get('force_delete_without_recovery'),
            'RecoveryWindowInDays': state.get('recovery_window_in_days'),
        }))

    def find(self, filters: Optional[Mapping[str, str]] = None) -> Iterator[Dict[str, Any]]:
        """Search secrets using ``list_secrets`` filters.

        Args:
            filters: Filter key to value, e.g. ``{'name': 'prod/'}`` or
                ``{'tag-key': 'team'}``

        Yields:
            Observed state of each matching secret
        """
        params = {}
        if filters:
            params['Filters'] = [
                {'Key': key, 'Values': [value]} for key, value in sorted(filters.items())
            ]

        for secret in paginate(boto_pages(self.client.list_secrets, 'SecretList', **params)):
            yield self._to_state(secret)

    @staticmethod
    def _binary(desired: ResourceState) -> Optional[bytes]:
        value = desired.get('secret_binary')
        return value.encode('utf-8') if value is not None else None

    @staticmethod
    def _to_state(secret: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'name': secret['Name'],
            'description': secret.get('Description'),
            'kms_key_id': secret.get('KmsKeyId'),
            'tags': {t['Key']: t['Value'] for t in secret.get('Tags', [])},
            'arn': secret['ARN'],
            'deleted_date': secret.get('DeletedDate'),
            'last_changed_date': secret.get('LastChangedDate'),
            'rotation_enabled': secret.get('RotationEnabled', False),
            'rotation_lambda_arn': secret.get('RotationLambdaARN'),
            'owning_service': secret.get('OwningService'),
        }
