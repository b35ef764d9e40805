"""S3 bucket adapter with encryption at rest."""

from typing import Any, Dict, List, Optional, Set

from botocore.exceptions import ClientError

from gyro_aws.resources.base import AwsResource, FieldSpec, ResourceState
from gyro_aws.utils.errors import FieldError, error_code, is_not_found_error
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)

# Error codes S3 uses when an optional bucket configuration is absent
MISSING_CONFIGURATION_CODES = {
    'ServerSideEncryptionConfigurationNotFoundError',
    'NoSuchPublicAccessBlockConfiguration',
    'NoSuchTagSet',
}

ENCRYPTION_FIELDS = {'encryption_algorithm', 'kms_key_id', 'bucket_key_enabled'}

PUBLIC_ACCESS_BLOCK = {
    'BlockPublicAcls': True,
    'IgnorePublicAcls': True,
    'BlockPublicPolicy': True,
    'RestrictPublicBuckets': True
}


def build_encryption_config(
    algorithm: str = 'AES256',
    kms_key_id: Optional[str] = None,
    bucket_key_enabled: bool = True
) -> Dict[str, Any]:
    """Build encryption configuration for an S3 bucket.

    Args:
        algorithm: Encryption algorithm ('AES256' or 'aws:kms')
        kms_key_id: KMS key ID (used when algorithm is 'aws:kms')
        bucket_key_enabled: Use an S3 bucket key for KMS encryption

    Returns:
        Encryption configuration dictionary
    """
    default = {'SSEAlgorithm': algorithm}
    if algorithm == 'aws:kms' and kms_key_id:
        default['KMSMasterKeyID'] = kms_key_id

    return {
        'Rules': [
            {
                'ApplyServerSideEncryptionByDefault': default,
                'BucketKeyEnabled': bucket_key_enabled
            }
        ]
    }


def _tag_set(tags: Dict[str, str]) -> List[Dict[str, str]]:
    return [{'Key': k, 'Value': v} for k, v in sorted(tags.items())]


class BucketResource(AwsResource):
    """Adapter for S3 buckets.

    Buckets are created encrypted and, unless disabled, with all public
    access blocked. Deleting a bucket first removes every object version.
    """

    resource_type = 's3-bucket'
    service_name = 's3'
    fields = (
        FieldSpec('name', required=True, identifier=True),
        FieldSpec('encryption_algorithm', updatable=True, valid_values=('AES256', 'aws:kms'),
                  default='AES256'),
        FieldSpec('kms_key_id', updatable=True),
        FieldSpec('bucket_key_enabled', bool, updatable=True, default=True),
        FieldSpec('versioning', bool, updatable=True, default=False),
        FieldSpec('block_public_access', bool, updatable=True, default=True),
        FieldSpec('tags', dict, updatable=True, default_factory=dict),
        FieldSpec('arn', output=True),
        FieldSpec('region', output=True),
    )

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        errors = []
        name = desired.get('name') or ''

        if name and not (3 <= len(name) <= 63):
            errors.append(FieldError('name', "must be between 3 and 63 characters"))
        if name != name.lower():
            errors.append(FieldError('name', "must be lowercase"))

        if desired.get('kms_key_id') and desired.get('encryption_algorithm') != 'aws:kms':
            errors.append(FieldError('kms_key_id', "requires encryption_algorithm aws:kms"))

        return errors

    def do_refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        try:
            self.client.head_bucket(Bucket=identifier)
        except ClientError as e:
            if is_not_found_error(e):
                return None
            raise

        location = self.client.get_bucket_location(Bucket=identifier).get('LocationConstraint')
        versioning = self.client.get_bucket_versioning(Bucket=identifier).get('Status')

        encryption = self._optional(
            lambda: self.client.get_bucket_encryption(Bucket=identifier)['ServerSideEncryptionConfiguration']
        ) or {}
        public_access = self._optional(
            lambda: self.client.get_public_access_block(Bucket=identifier)['PublicAccessBlockConfiguration']
        ) or {}
        tag_set = self._optional(
            lambda: self.client.get_bucket_tagging(Bucket=identifier)['TagSet']
        ) or []

        rules = encryption.get('Rules') or [{}]
        default = rules[0].get('ApplyServerSideEncryptionByDefault', {})

        return {
            'name': identifier,
            'encryption_algorithm': default.get('SSEAlgorithm'),
            'kms_key_id': default.get('KMSMasterKeyID'),
            'bucket_key_enabled': rules[0].get('BucketKeyEnabled', False),
            'versioning': versioning == 'Enabled',
            'block_public_access': bool(public_access) and all(public_access.values()),
            'tags': {tag['Key']: tag['Value'] for tag in tag_set},
            'arn': f"arn:aws:s3:::{identifier}",
            # us-east-1 buckets report no location constraint
            'region': location or 'us-east-1',
        }

    def do_create(self, desired: ResourceState) -> Dict[str, Any]:
        bucket_name = desired['name']
        region = self.client.meta.region_name

        create_params = {'Bucket': bucket_name}
        if region and region != 'us-east-1':
            create_params['CreateBucketConfiguration'] = {'LocationConstraint': region}

        self.client.create_bucket(**create_params)
        logger.info(f"Created bucket {bucket_name}")

        self._put_encryption(bucket_name, desired)

        if desired.get('versioning'):
            self.client.put_bucket_versioning(
                Bucket=bucket_name,
                VersioningConfiguration={'Status': 'Enabled'}
            )

        if desired.get('block_public_access'):
            self.client.put_public_access_block(
                Bucket=bucket_name,
                PublicAccessBlockConfiguration=PUBLIC_ACCESS_BLOCK
            )

        if desired.get('tags'):
            self.client.put_bucket_tagging(
                Bucket=bucket_name,
                Tagging={'TagSet': _tag_set(desired['tags'])}
            )

        return self.observe(bucket_name)

    def do_update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        bucket_name = current['name']

        if changed & ENCRYPTION_FIELDS:
            self._put_encryption(bucket_name, desired)

        if 'versioning' in changed:
            self.client.put_bucket_versioning(
                Bucket=bucket_name,
                VersioningConfiguration={
                    'Status': 'Enabled' if desired.get('versioning') else 'Suspended'
                }
            )

        if 'block_public_access' in changed:
            if desired.get('block_public_access'):
                self.client.put_public_access_block(
                    Bucket=bucket_name,
                    PublicAccessBlockConfiguration=PUBLIC_ACCESS_BLOCK
                )
            else:
                self.client.delete_public_access_block(Bucket=bucket_name)

        if 'tags' in changed:
            # Bucket tagging replaces the whole tag set
            if desired.get('tags'):
                self.client.put_bucket_tagging(
                    Bucket=bucket_name,
                    Tagging={'TagSet': _tag_set(desired['tags'])}
                )
            else:
                self.client.delete_bucket_tagging(Bucket=bucket_name)

        return self.observe(bucket_name)

    def do_delete(self, state: ResourceState) -> None:
        bucket_name = state['name']

        deleted = self.empty_bucket(bucket_name)
        if deleted:
            logger.info(f"Deleted {deleted} object version(s) from {bucket_name}")

        self.client.delete_bucket(Bucket=bucket_name)

    def empty_bucket(self, bucket_name: str) -> int:
        """Delete every object version and delete marker in a bucket.

        Returns:
            Number of versions and markers deleted
        """
        deleted = 0
        paginator = self.client.get_paginator('list_object_versions')

        for page in paginator.paginate(Bucket=bucket_name):
            objects = [
                {'Key': item['Key'], 'VersionId': item['VersionId']}
                for item in page.get('Versions', []) + page.get('DeleteMarkers', [])
            ]
            if not objects:
                continue

            self.client.delete_objects(
                Bucket=bucket_name,
                Delete={'Objects': objects, 'Quiet': True}
            )
            deleted += len(objects)

        return deleted

    def _put_encryption(self, bucket_name: str, desired: ResourceState) -> None:
        self.client.put_bucket_encryption(
            Bucket=bucket_name,
            ServerSideEncryptionConfiguration=build_encryption_config(
                desired.get('encryption_algorithm') or 'AES256',
                desired.get('kms_key_id'),
                bool(desired.get('bucket_key_enabled'))
            )
        )

    @staticmethod
    def _optional(call):
        try:
            return call()
        except ClientError as e:
            if error_code(e) in MISSING_CONFIGURATION_CODES:
                return None
            raise
