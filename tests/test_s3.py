"""Unit tests for the S3 bucket adapter."""

import pytest

from gyro_aws.resources.s3 import PUBLIC_ACCESS_BLOCK, BucketResource, build_encryption_config
from gyro_aws.utils.errors import ValidationError


@pytest.fixture
def client(mock_session):
    client = mock_session.client('s3')
    client.meta.region_name = 'us-east-2'
    client.get_bucket_location.return_value = {'LocationConstraint': 'us-east-2'}
    client.get_bucket_versioning.return_value = {'Status': 'Enabled'}
    client.get_bucket_encryption.return_value = {
        'ServerSideEncryptionConfiguration': build_encryption_config('aws:kms', 'key-1', True)
    }
    client.get_public_access_block.return_value = {
        'PublicAccessBlockConfiguration': dict(PUBLIC_ACCESS_BLOCK)
    }
    client.get_bucket_tagging.return_value = {'TagSet': [{'Key': 'team', 'Value': 'core'}]}
    return client


@pytest.fixture
def buckets(mock_session, fast_settings, client):
    return BucketResource(mock_session, fast_settings)


def assets_bucket(**overrides):
    values = {
        'name': 'assets-bucket',
        'encryption_algorithm': 'aws:kms',
        'kms_key_id': 'key-1',
        'versioning': True,
        'tags': {'team': 'core'},
    }
    values.update(overrides)
    return BucketResource.desired_state(values)


class TestEncryptionConfig:
    """Tests for build_encryption_config function."""

    def test_default_aes(self):
        """Test SSE-S3 configuration."""
        config = build_encryption_config()

        assert config['Rules'][0]['ApplyServerSideEncryptionByDefault'] == {'SSEAlgorithm': 'AES256'}
        assert config['Rules'][0]['BucketKeyEnabled'] is True

    def test_kms_key_only_for_kms(self):
        """Test that the key id is only used with aws:kms."""
        kms = build_encryption_config('aws:kms', 'key-1')
        aes = build_encryption_config('AES256', 'key-1')

        assert kms['Rules'][0]['ApplyServerSideEncryptionByDefault']['KMSMasterKeyID'] == 'key-1'
        assert 'KMSMasterKeyID' not in aes['Rules'][0]['ApplyServerSideEncryptionByDefault']


class TestBucketValidation:
    """Tests for bucket validation."""

    def test_name_rules(self):
        """Test bucket name length and case."""
        with pytest.raises(ValidationError) as exc_info:
            BucketResource.validate(assets_bucket(name='AB'))

        assert exc_info.value.fields == ['name', 'name']

    def test_kms_key_requires_kms(self):
        """Test that a key id needs KMS encryption."""
        with pytest.raises(ValidationError, match="requires encryption_algorithm aws:kms"):
            BucketResource.validate(assets_bucket(encryption_algorithm='AES256'))


class TestBucketLifecycle:
    """Tests for bucket create, refresh, update and delete."""

    def test_create(self, buckets, client):
        """Test the calls made to create a bucket."""
        buckets.create(assets_bucket())

        client.create_bucket.assert_called_once_with(
            Bucket='assets-bucket',
            CreateBucketConfiguration={'LocationConstraint': 'us-east-2'}
        )
        client.put_bucket_encryption.assert_called_once_with(
            Bucket='assets-bucket',
            ServerSideEncryptionConfiguration=build_encryption_config('aws:kms', 'key-1', True)
        )
        client.put_bucket_versioning.assert_called_once_with(
            Bucket='assets-bucket', VersioningConfiguration={'Status': 'Enabled'}
        )
        client.put_public_access_block.assert_called_once_with(
            Bucket='assets-bucket', PublicAccessBlockConfiguration=PUBLIC_ACCESS_BLOCK
        )
        client.put_bucket_tagging.assert_called_once_with(
            Bucket='assets-bucket', Tagging={'TagSet': [{'Key': 'team', 'Value': 'core'}]}
        )

    def test_create_in_us_east_1(self, buckets, client):
        """Test that us-east-1 buckets have no location constraint."""
        client.meta.region_name = 'us-east-1'

        buckets.create(assets_bucket())

        client.create_bucket.assert_called_once_with(Bucket='assets-bucket')

    def test_create_then_refresh(self, buckets):
        """Test that the refreshed bucket matches desired state."""
        desired = assets_bucket()

        state = buckets.create(desired)

        assert state['arn'] == 'arn:aws:s3:::assets-bucket'
        assert state['region'] == 'us-east-2'
        assert BucketResource.diff(state, desired) == set()

    def test_refresh_without_optional_configuration(self, buckets, client, client_error):
        """Test that missing encryption, access block and tags are tolerated."""
        client.get_bucket_location.return_value = {'LocationConstraint': None}
        client.get_bucket_versioning.return_value = {}
        client.get_bucket_encryption.side_effect = client_error(
            'ServerSideEncryptionConfigurationNotFoundError', 'none'
        )
        client.get_public_access_block.side_effect = client_error(
            'NoSuchPublicAccessBlockConfiguration', 'none'
        )
        client.get_bucket_tagging.side_effect = client_error('NoSuchTagSet', 'none')

        state = buckets.refresh('assets-bucket')

        assert state['region'] == 'us-east-1'
        assert state['versioning'] is False
        assert state['encryption_algorithm'] is None
        assert state['block_public_access'] is False
        assert state['tags'] == {}

    def test_refresh_missing(self, buckets, client, client_error):
        """Test that a missing bucket refreshes to None."""
        client.head_bucket.side_effect = client_error('404', 'Not Found')

        assert buckets.refresh('assets-bucket') is None

    def test_suspend_versioning(self, buckets, client):
        """Test that turning versioning off suspends it."""
        current = buckets.create(assets_bucket())
        client.reset_mock()

        buckets.update(current, assets_bucket(versioning=False), {'versioning'})

        client.put_bucket_versioning.assert_called_once_with(
            Bucket='assets-bucket', VersioningConfiguration={'Status': 'Suspended'}
        )
        client.put_bucket_encryption.assert_not_called()

    def test_remove_public_access_block_and_tags(self, buckets, client):
        """Test that disabled settings are deleted."""
        current = buckets.create(assets_bucket())

        buckets.update(
            current,
            assets_bucket(block_public_access=False, tags={}),
            {'block_public_access', 'tags'}
        )

        client.delete_public_access_block.assert_called_once_with(Bucket='assets-bucket')
        client.delete_bucket_tagging.assert_called_once_with(Bucket='assets-bucket')

    def test_delete_empties_bucket(self, buckets, client):
        """Test that every version and delete marker is removed first."""
        client.get_paginator.return_value.paginate.return_value = [
            {
                'Versions': [{'Key': 'a.txt', 'VersionId': 'v1'}],
                'DeleteMarkers': [{'Key': 'b.txt', 'VersionId': 'v2'}],
            },
            {},
        ]

        buckets.delete({'name': 'assets-bucket'})

        client.get_paginator.assert_called_once_with('list_object_versions')
        client.delete_objects.assert_called_once_with(
            Bucket='assets-bucket',
            Delete={
                'Objects': [{'Key': 'a.txt', 'VersionId': 'v1'}, {'Key': 'b.txt', 'VersionId': 'v2'}],
                'Quiet': True,
            }
        )
        client.delete_bucket.assert_called_once_with(Bucket='assets-bucket')

    def test_delete_missing_bucket(self, buckets, client, client_error):
        """Test that deleting a bucket that is gone succeeds."""
        client.get_paginator.return_value.paginate.side_effect = client_error('NoSuchBucket', 'gone')

        buckets.delete({'name': 'assets-bucket'})

        client.delete_bucket.assert_not_called()
