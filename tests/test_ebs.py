"""Unit tests for the EC2 tag handling and the EBS volume adapter."""

from unittest.mock import MagicMock

import pytest

from gyro_aws.resources.ec2 import EbsVolumeResource
from gyro_aws.utils.errors import ValidationError

VOLUME_ID = "vol-0123456789abcdef0"


class FakeEc2:
    """Volumes and tags kept in memory on a mock client."""

    def __init__(self, client):
        self.volume = None
        self.auto_enable_io = False
        self.tags = {}

        client.create_volume.side_effect = self.create_volume
        client.describe_volumes.side_effect = self.describe_volumes
        client.describe_volume_attribute.side_effect = lambda Attribute, VolumeId: {
            'AutoEnableIO': {'Value': self.auto_enable_io}
        }
        client.modify_volume_attribute.side_effect = self.modify_attribute
        client.describe_tags.side_effect = lambda Filters: {'Tags': [
            {'Key': k, 'Value': v, 'ResourceId': VOLUME_ID} for k, v in self.tags.items()
        ]}
        client.create_tags.side_effect = lambda Resources, Tags: self.tags.update(
            {t['Key']: t['Value'] for t in Tags}
        )
        client.delete_tags.side_effect = lambda Resources, Tags: [
            self.tags.pop(t['Key'], None) for t in Tags
        ]
        client.modify_volume.side_effect = self.modify_volume
        client.delete_volume.side_effect = self.delete_volume

    def create_volume(self, **params):
        self.volume = {
            'VolumeId': VOLUME_ID,
            'AvailabilityZone': params['AvailabilityZone'],
            'Size': params['Size'],
            'VolumeType': params['VolumeType'],
            'Iops': params.get('Iops'),
            'Throughput': params.get('Throughput'),
            'Encrypted': params.get('Encrypted', False),
            'State': 'available',
            'CreateTime': '2026-01-01T00:00:00Z',
        }
        return {'VolumeId': VOLUME_ID}

    def describe_volumes(self, VolumeIds=None, Filters=None):
        if self.volume is None:
            return {'Volumes': []}
        return {'Volumes': [dict(self.volume)]}

    def modify_attribute(self, VolumeId, AutoEnableIO):
        self.auto_enable_io = AutoEnableIO['Value']

    def modify_volume(self, VolumeId, **params):
        self.volume.update(params)

    def delete_volume(self, VolumeId):
        self.volume = None


@pytest.fixture
def client(mock_session):
    return mock_session.client('ec2')


@pytest.fixture
def fake(client):
    return FakeEc2(client)


@pytest.fixture
def volumes(mock_session, fast_settings, fake):
    adapter = EbsVolumeResource(mock_session, fast_settings)
    adapter.tag_retry.sleep = MagicMock()
    return adapter


def data_volume(**overrides):
    values = {
        'name': 'data',
        'availability_zone': 'us-east-2a',
        'size': 100,
        'volume_type': 'gp3',
        'iops': 3000,
        'throughput': 125,
        'encrypted': True,
        'auto_enable_io': True,
        'tags': {'team': 'core'},
    }
    values.update(overrides)
    return EbsVolumeResource.desired_state(values)


class TestVolumeValidation:
    """Tests for volume validation."""

    def test_valid(self):
        """Test a valid gp3 volume."""
        EbsVolumeResource.validate(data_volume())

    def test_iops_not_supported(self):
        """Test IOPS on a volume type without provisioned IOPS."""
        with pytest.raises(ValidationError) as exc_info:
            EbsVolumeResource.validate(data_volume(volume_type='gp2', throughput=None))

        assert exc_info.value.fields == ['iops']

    def test_iops_required(self):
        """Test that io1 volumes need IOPS."""
        with pytest.raises(ValidationError, match="iops: is required for io1 volumes"):
            EbsVolumeResource.validate(data_volume(volume_type='io1', iops=None, throughput=None))

    def test_throughput_only_for_gp3(self):
        """Test throughput on other volume types."""
        with pytest.raises(ValidationError, match="throughput: can only be set for gp3"):
            EbsVolumeResource.validate(data_volume(volume_type='io2'))

    def test_size_or_snapshot(self):
        """Test that size is required without a snapshot."""
        with pytest.raises(ValidationError, match="size: is required unless snapshot_id"):
            EbsVolumeResource.validate(data_volume(size=None))

        EbsVolumeResource.validate(data_volume(size=None, snapshot_id='snap-1'))

    def test_kms_requires_encryption(self):
        """Test that a KMS key requires encryption."""
        with pytest.raises(ValidationError, match="kms_key_id: requires encrypted"):
            EbsVolumeResource.validate(data_volume(encrypted=False, kms_key_id='key-1'))

    def test_name_tag_in_tags(self):
        """Test that the Name tag is managed through the name field."""
        with pytest.raises(ValidationError, match="use the name field"):
            EbsVolumeResource.validate(data_volume(tags={'Name': 'data'}))


class TestVolumeLifecycle:
    """Tests for volume create, refresh, update, delete and find."""

    def test_create(self, volumes, client):
        """Test the create request, attribute and tags."""
        state = volumes.create(data_volume())

        client.create_volume.assert_called_once_with(
            AvailabilityZone='us-east-2a',
            Size=100,
            VolumeType='gp3',
            Iops=3000,
            Throughput=125,
            Encrypted=True,
        )
        client.modify_volume_attribute.assert_called_once_with(
            VolumeId=VOLUME_ID, AutoEnableIO={'Value': True}
        )
        client.create_tags.assert_called_once_with(
            Resources=[VOLUME_ID],
            Tags=[{'Key': 'Name', 'Value': 'data'}, {'Key': 'team', 'Value': 'core'}]
        )
        assert state['id'] == VOLUME_ID
        assert state['name'] == 'data'
        assert state['tags'] == {'team': 'core'}

    def test_create_then_refresh(self, volumes):
        """Test that the refreshed volume matches desired state."""
        desired = data_volume()

        volumes.create(desired)
        refreshed = volumes.refresh(VOLUME_ID)

        assert EbsVolumeResource.diff(refreshed, desired) == set()

    def test_reserved_tags_are_skipped(self, volumes, fake):
        """Test that aws: tags are not reported."""
        volumes.create(data_volume())
        fake.tags['aws:cloudformation:stack-name'] = 'stack'

        assert volumes.refresh(VOLUME_ID)['tags'] == {'team': 'core'}

    def test_tagging_retries_until_visible(self, volumes, client, client_error):
        """Test that tag calls are retried while the new id is not visible."""
        client.create_tags.side_effect = [
            client_error('InvalidVolume.NotFound', 'The volume does not exist'),
            None,
        ]

        volumes.apply_tags(VOLUME_ID, {'team': 'core'})

        volumes.tag_retry.sleep.assert_called_once_with(1.0)
        assert client.create_tags.call_count == 2

    def test_refresh_missing(self, volumes):
        """Test that a missing volume refreshes to None."""
        assert volumes.refresh(VOLUME_ID) is None

    def test_refresh_not_found_error(self, volumes, client, client_error):
        """Test the not-found error from describe_volumes."""
        client.describe_volumes.side_effect = client_error('InvalidVolume.NotFound', 'missing')

        assert volumes.refresh(VOLUME_ID) is None

    def test_modify_volume(self, volumes, client):
        """Test resizing a volume."""
        current = volumes.create(data_volume())
        desired = data_volume(size=200)

        updated = volumes.update(current, desired, EbsVolumeResource.diff(current, desired))

        client.modify_volume.assert_called_once_with(
            VolumeId=VOLUME_ID, Size=200, VolumeType='gp3', Iops=3000, Throughput=125
        )
        assert updated['size'] == 200

    def test_rename_only_touches_tags(self, volumes, client):
        """Test that a name change only rewrites the Name tag."""
        current = volumes.create(data_volume())
        client.create_tags.reset_mock()

        updated = volumes.update(current, data_volume(name='data-2'), {'name'})

        client.modify_volume.assert_not_called()
        client.create_tags.assert_called_once_with(
            Resources=[VOLUME_ID], Tags=[{'Key': 'Name', 'Value': 'data-2'}]
        )
        assert updated['name'] == 'data-2'

    def test_availability_zone_is_immutable(self, volumes):
        """Test that moving a volume requires replacement."""
        current = volumes.create(data_volume())

        with pytest.raises(ValidationError, match="cannot be updated in place"):
            volumes.update(current, data_volume(availability_zone='us-east-2b'), {'availability_zone'})

    def test_delete(self, volumes, client, fake):
        """Test delete waits until the volume is gone."""
        state = volumes.create(data_volume())

        volumes.delete(state)

        client.delete_volume.assert_called_once_with(VolumeId=VOLUME_ID)
        assert fake.volume is None

    def test_find(self, volumes, client):
        """Test searching with EC2 filters."""
        volumes.create(data_volume())

        found = list(volumes.find({'volume-type': 'gp3'}))

        assert [v['id'] for v in found] == [VOLUME_ID]
        client.describe_volumes.assert_any_call(
            Filters=[{'Name': 'volume-type', 'Values': ['gp3']}]
        )

    def test_find_unsupported_filter(self, volumes):
        """Test that unknown filter names are rejected."""
        with pytest.raises(ValueError, match="Unsupported volume filter"):
            list(volumes.find({'color': 'blue'}))


class TestVolumeServerDefaults:
    """Tests for IOPS and throughput chosen by AWS."""

    def test_gp2_baseline_iops(self, volumes, client, fake):
        """Test that the baseline IOPS of a gp2 volume is not a change."""
        desired = data_volume(volume_type='gp2', iops=None, throughput=None)
        volumes.create(desired)
        fake.volume['Iops'] = 300

        refreshed = volumes.refresh(VOLUME_ID)
        changed = EbsVolumeResource.diff(refreshed, desired)
        volumes.update(refreshed, desired, changed)

        assert refreshed['iops'] is None
        assert changed == set()
        client.modify_volume.assert_not_called()

    def test_gp3_defaults(self, volumes, client, fake):
        """Test that unset gp3 IOPS and throughput accept the AWS defaults."""
        desired = data_volume(iops=None, throughput=None)
        volumes.create(desired)
        fake.volume.update({'Iops': 3000, 'Throughput': 125})

        refreshed = volumes.refresh(VOLUME_ID)

        assert refreshed['iops'] == 3000
        assert EbsVolumeResource.diff(refreshed, desired) == set()

    def test_configured_iops_still_compared(self, volumes, fake):
        """Test that a configured IOPS value is reconciled."""
        desired = data_volume(iops=4000)
        volumes.create(data_volume())

        assert EbsVolumeResource.diff(volumes.refresh(VOLUME_ID), desired) == {'iops'}
