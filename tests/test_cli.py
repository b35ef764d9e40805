"""Unit tests for the command line interface."""

import json
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from gyro_aws.cli.main import cli

QUEUE_URL = "https://sqs.us-east-2.amazonaws.com/123456789012/jobs"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    """Run every command in an empty directory."""
    monkeypatch.chdir(tmp_path)
    for name in ("GYRO_AWS_REGION", "GYRO_AWS_PROFILE", "GYRO_AWS_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def client_manager(mock_session):
    """Patch AWS access so commands use the mock session."""
    manager = MagicMock()
    manager.session = mock_session
    with patch('gyro_aws.cli.main.create_client_manager', return_value=manager) as factory:
        yield factory


def run(runner, *args):
    return runner.invoke(cli, ['--log-level', 'error'] + list(args), obj={})


class TestTypesCommand:
    """Tests for the types command."""

    def test_lists_types(self, runner):
        """Test that every adapter is listed."""
        result = run(runner, 'types')

        assert result.exit_code == 0
        assert 'sqs-queue' in result.output
        assert 'QueueResource' in result.output
        assert 'autoscaling-policy' in result.output


class TestSchemaCommand:
    """Tests for the schema command."""

    def test_json_schema(self, runner):
        """Test the JSON field listing."""
        result = run(runner, 'schema', 'sqs-queue', '--format', 'json')

        assert result.exit_code == 0
        fields = {field['name']: field for field in json.loads(result.output)}
        assert fields['name']['required'] is True
        assert fields['fifo_queue']['updatable'] is False
        assert fields['url']['identifier'] is True
        assert fields['url']['output'] is True
        assert fields['visibility_timeout']['default'] == 30
        assert fields['name']['write_only'] is False

    def test_json_schema_write_only(self, runner):
        """Test that write-only fields are flagged."""
        result = run(runner, 'schema', 'secretsmanager-secret', '--format', 'json')

        fields = {field['name']: field for field in json.loads(result.output)}
        assert fields['secret_string']['write_only'] is True
        assert fields['description']['write_only'] is False

    def test_table_schema(self, runner):
        """Test the table field listing."""
        result = run(runner, 'schema', 's3-bucket')

        assert result.exit_code == 0
        assert 'encryption_algorithm' in result.output

    def test_unknown_type(self, runner):
        """Test an unknown type name."""
        result = run(runner, 'schema', 'no-such-type')

        assert result.exit_code == 1
        assert 'Unknown resource type: no-such-type' in result.output


class TestValidateCommand:
    """Tests for the validate command."""

    def test_all_valid(self, runner, workdir):
        """Test a file of valid resources."""
        (workdir / 'resources.yaml').write_text(
            "- type: sqs-queue\n"
            "  fields:\n"
            "    name: jobs\n"
            "- type: s3-bucket\n"
            "  fields:\n"
            "    name: assets-bucket\n"
        )

        result = run(runner, 'validate', 'resources.yaml')

        assert result.exit_code == 0
        assert '✓ #1 sqs-queue jobs' in result.output
        assert 'All 2 resource(s) are valid' in result.output

    def test_invalid_resources(self, runner, workdir):
        """Test that every problem is reported."""
        (workdir / 'resources.yaml').write_text(
            "- type: autoscaling-group\n"
            "  fields:\n"
            "    name: web\n"
            "- type: no-such-type\n"
            "- type: sqs-queue\n"
            "  fields:\n"
            "    name: jobs\n"
            "    colour: blue\n"
        )

        result = run(runner, 'validate', 'resources.yaml')

        assert result.exit_code == 1
        assert '✗ #1 autoscaling-group' in result.output
        assert 'min_size: is required' in result.output
        assert 'max_size: is required' in result.output
        assert '✗ #2 no-such-type: Unknown resource type: no-such-type' in result.output
        assert 'colour: unknown field' in result.output
        assert '3 of 3 resource(s) failed validation' in result.output

    def test_malformed_file(self, runner, workdir):
        """Test a file that is not a list."""
        (workdir / 'resources.yaml').write_text("type: sqs-queue\n")

        result = run(runner, 'validate', 'resources.yaml')

        assert result.exit_code == 1
        assert 'must contain a list' in result.output


class TestRefreshCommand:
    """Tests for the refresh command."""

    def test_prints_state(self, runner, mock_session, client_manager):
        """Test that the observed state is printed as JSON."""
        sqs = mock_session.client('sqs')
        sqs.get_queue_attributes.return_value = {
            'Attributes': {'VisibilityTimeout': '45', 'QueueArn': 'arn:aws:sqs:us-east-2:123456789012:jobs'}
        }
        sqs.list_queue_tags.return_value = {'Tags': {'team': 'core'}}

        result = run(runner, 'refresh', 'sqs-queue', QUEUE_URL)

        assert result.exit_code == 0
        state = json.loads(result.stdout)
        assert state['name'] == 'jobs'
        assert state['visibility_timeout'] == 45
        assert state['tags'] == {'team': 'core'}

    def test_not_found(self, runner, mock_session, client_manager, client_error):
        """Test a resource that does not exist."""
        mock_session.client('sqs').get_queue_attributes.side_effect = client_error(
            'AWS.SimpleQueueService.NonExistentQueue', 'The specified queue does not exist'
        )

        result = run(runner, 'refresh', 'sqs-queue', QUEUE_URL)

        assert result.exit_code == 1
        assert 'not found' in result.output

    def test_remote_error(self, runner, mock_session, client_manager, client_error):
        """Test that AWS errors are categorised."""
        mock_session.client('sqs').get_queue_attributes.side_effect = client_error(
            'AccessDenied', 'User is not authorized'
        )

        result = run(runner, 'refresh', 'sqs-queue', QUEUE_URL)

        assert result.exit_code == 1
        assert 'ERROR (permission)' in result.output

    def test_overrides_reach_client_manager(self, runner, workdir, mock_session, client_manager):
        """Test that command line options override the configuration file."""
        (workdir / 'gyro-aws.yaml').write_text("region: us-east-2\nprofile: dev\n")
        mock_session.client('sqs').get_queue_attributes.return_value = {'Attributes': {}}

        runner.invoke(cli, ['--profile', 'ops', '--log-level', 'error',
                            'refresh', 'sqs-queue', QUEUE_URL], obj={})

        provider = client_manager.call_args.args[0]
        assert provider.profile == 'ops'
        assert provider.region == 'us-east-2'

    def test_missing_config_file(self, runner):
        """Test that an explicitly named configuration file must exist."""
        result = runner.invoke(cli, ['--config', 'missing.yaml', 'refresh', 'sqs-queue', QUEUE_URL],
                               obj={})

        assert result.exit_code == 1
        assert 'Configuration file not found' in result.output


class TestStatesCommand:
    """Tests for the states command."""

    def test_lists_state_files(self, runner, workdir, mock_session, client_manager):
        """Test listing state files from the configured bucket."""
        (workdir / 'gyro-aws.yaml').write_text("state_backend:\n  bucket: state-bucket\n  prefix: app\n")
        mock_session.client('s3').list_objects_v2.return_value = {
            'Contents': [{'Key': 'app/web.gyro'}, {'Key': 'app/db.gyro'}]
        }

        result = run(runner, 'states')

        assert result.exit_code == 0
        assert result.output.split() == ['web.gyro', 'db.gyro']

    def test_no_backend(self, runner):
        """Test that a state backend must be configured."""
        result = run(runner, 'states')

        assert result.exit_code == 1
        assert 'No state_backend configured' in result.output
