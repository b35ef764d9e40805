"""Lambda function adapter."""

import io
import os
import zipfile
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set

from botocore.exceptions import ClientError

from gyro_aws.resources.base import AwsResource, FieldSpec, ResourceState, compact
from gyro_aws.utils.changeset import diff_tags
from gyro_aws.utils.errors import (
    ErrorCategory,
    ErrorContext,
    FieldError,
    ProviderError,
    is_not_found_error,
)
from gyro_aws.utils.logging import get_logger
from gyro_aws.utils.pagination import boto_pages, paginate

logger = get_logger(__name__)

RUNTIMES = (
    'nodejs20.x', 'nodejs18.x',
    'python3.12', 'python3.11', 'python3.10', 'python3.9', 'python3.8',
    'java21', 'java17', 'java11', 'java8.al2',
    'dotnet8', 'dotnet6',
    'ruby3.3', 'ruby3.2',
    'provided.al2023', 'provided.al2',
)

CODE_FIELDS = {'s3_bucket', 's3_key', 's3_object_version', 'content_zip_path'}

CONFIGURATION_FIELDS = {
    'description', 'runtime', 'role', 'handler', 'timeout', 'memory_size',
    'tracing_mode', 'dead_letter_target_arn', 'kms_key_arn', 'environment',
    'security_group_ids', 'subnet_ids', 'layers',
}

# Directories and files left out when zipping a source directory
SKIP_DIRS = {
    '__pycache__', '.git', '.venv', 'venv', 'node_modules',
    '.pytest_cache', '.mypy_cache', 'dist', 'build'
}
SKIP_SUFFIXES = ('.pyc', '.pyo', '.DS_Store')


def package_code(code_path: str) -> bytes:
    """Return zip bytes for a function's code.

    A ``.zip`` file is read as-is; any other file or a directory is zipped.

    Args:
        code_path: Path to a zip archive, a source file or a source directory

    Returns:
        Zip archive contents

    Raises:
        FileNotFoundError: If the path does not exist
    """
    if os.path.isfile(code_path) and code_path.endswith('.zip'):
        with open(code_path, 'rb') as f:
            return f.read()

    if not os.path.exists(code_path):
        raise FileNotFoundError(f"Code path does not exist: {code_path}")

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zipf:
        if os.path.isfile(code_path):
            zipf.write(code_path, os.path.basename(code_path))
        else:
            for root, dirs, files in os.walk(code_path):
                dirs[:] = [d for d in dirs if d not in SKIP_DIRS]

                for file in files:
                    if file.endswith(SKIP_SUFFIXES):
                        continue

                    file_path = os.path.join(root, file)
                    zipf.write(file_path, os.path.relpath(file_path, code_path))

    return buffer.getvalue()


def unversioned_arn(arn: str) -> str:
    """Strip a ``:version`` qualifier from a function ARN."""
    parts = arn.split(':')
    # arn:aws:lambda:region:account:function:name[:qualifier]
    return ':'.join(parts[:7])


class FunctionResource(AwsResource):
    """Adapter for Lambda functions.

    Code is deployed from a local path or from an S3 object; code location
    fields are write-only and not returned by ``refresh``.
    """

    resource_type = 'lambda-function'
    service_name = 'lambda'
    supports_find = True
    fields = (
        FieldSpec('name', required=True, identifier=True),
        FieldSpec('description', updatable=True),
        FieldSpec('runtime', required=True, updatable=True, valid_values=RUNTIMES),
        FieldSpec('role', required=True, updatable=True, description="Execution role ARN"),
        FieldSpec('handler', required=True, updatable=True),
        FieldSpec('timeout', int, updatable=True, min_value=3, max_value=900, default=3),
        FieldSpec('memory_size', int, updatable=True, min_value=128, max_value=10240,
                  default=128),
        FieldSpec('tracing_mode', updatable=True, valid_values=('PassThrough', 'Active'),
                  default='PassThrough'),
        FieldSpec('dead_letter_target_arn', updatable=True),
        FieldSpec('kms_key_arn', updatable=True),
        FieldSpec('environment', dict, updatable=True, default_factory=dict),
        FieldSpec('security_group_ids', set, updatable=True, default_factory=frozenset),
        FieldSpec('subnet_ids', set, updatable=True, default_factory=frozenset),
        FieldSpec('layers', tuple, updatable=True, default=(),
                  description="Layer version ARNs, in load order"),
        FieldSpec('reserved_concurrent_executions', int, updatable=True, min_value=0),
        FieldSpec('publish', bool, updatable=True, write_only=True, default=False,
                  description="Publish a version on create and code updates"),
        FieldSpec('s3_bucket', updatable=True, write_only=True),
        FieldSpec('s3_key', updatable=True, write_only=True),
        FieldSpec('s3_object_version', updatable=True, write_only=True),
        FieldSpec('content_zip_path', updatable=True, write_only=True,
                  description="Local zip file, source file or source directory"),
        FieldSpec('tags', dict, updatable=True, default_factory=dict),
        FieldSpec('arn', output=True),
        FieldSpec('version', output=True),
        FieldSpec('revision_id', output=True),
        FieldSpec('last_modified', output=True),
        FieldSpec('code_sha256', output=True),
        FieldSpec('state', output=True),
    )

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        errors = []
        has_zip = bool(desired.get('content_zip_path'))
        has_bucket = bool(desired.get('s3_bucket'))
        has_key = bool(desired.get('s3_key'))

        if has_zip and (has_bucket or has_key or desired.get('s3_object_version')):
            errors.append(FieldError(
                'content_zip_path', "cannot be combined with s3_bucket, s3_key or s3_object_version"
            ))
        elif not has_zip and not (has_bucket or has_key):
            errors.append(FieldError(
                'content_zip_path', "either content_zip_path or s3_bucket and s3_key is required"
            ))
        elif has_bucket != has_key:
            errors.append(FieldError(
                's3_key' if has_bucket else 's3_bucket', "s3_bucket and s3_key must be set together"
            ))

        if desired.get('s3_object_version') and not has_bucket:
            errors.append(FieldError('s3_object_version', "requires s3_bucket and s3_key"))

        if bool(desired.get('security_group_ids')) != bool(desired.get('subnet_ids')):
            errors.append(FieldError(
                'subnet_ids', "security_group_ids and subnet_ids must be set together"
            ))

        return errors

    def do_refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.get_function(FunctionName=identifier)
        except ClientError as e:
            if is_not_found_error(e):
                return None
            raise

        configuration = response['Configuration']
        tags = self.client.list_tags(
            Resource=unversioned_arn(configuration['FunctionArn'])
        ).get('Tags', {})
        concurrency = response.get('Concurrency') or {}

        state = self._to_state(configuration)
        state['tags'] = dict(tags)
        state['reserved_concurrent_executions'] = concurrency.get('ReservedConcurrentExecutions')
        return state

    def do_create(self, desired: ResourceState) -> Dict[str, Any]:
        name = desired['name']

        params = {
            'FunctionName': name,
            'Code': self._code(desired),
            'Publish': bool(desired.get('publish')),
        }
        params.update(self._configuration(desired))
        if desired.get('tags'):
            params['Tags'] = dict(desired['tags'])

        self.client.create_function(**params)
        logger.info(f"Created function {name}")

        self._wait_for_active(name)

        if desired.get('reserved_concurrent_executions') is not None:
            self.client.put_function_concurrency(
                FunctionName=name,
                ReservedConcurrentExecutions=desired['reserved_concurrent_executions']
            )

        return self.do_refresh(name)

    def do_update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        name = current['name']

        if 'reserved_concurrent_executions' in changed:
            if desired.get('reserved_concurrent_executions') is not None:
                self.client.put_function_concurrency(
                    FunctionName=name,
                    ReservedConcurrentExecutions=desired['reserved_concurrent_executions']
                )
            else:
                self.client.delete_function_concurrency(FunctionName=name)

        if changed & CODE_FIELDS:
            code = self._code(desired)
            self.client.update_function_code(
                FunctionName=name,
                Publish=bool(desired.get('publish')),
                **code
            )
            self._wait_for_update(name)

        if changed & CONFIGURATION_FIELDS:
            self.client.update_function_configuration(
                FunctionName=name,
                **self._configuration(desired, clearing=True)
            )
            self._wait_for_update(name)

        if 'tags' in changed:
            arn = unversioned_arn(current['arn'])
            to_set, to_remove = diff_tags(current.get('tags'), desired.get('tags'))
            if to_remove:
                self.client.untag_resource(Resource=arn, TagKeys=to_remove)
            if to_set:
                self.client.tag_resource(Resource=arn, Tags=to_set)

        return self.do_refresh(name)

    def do_delete(self, state: ResourceState) -> None:
        self.client.delete_function(FunctionName=state['name'])

    def find(self, filters: Optional[Mapping[str, str]] = None) -> Iterator[Dict[str, Any]]:
        """List functions, optionally keeping those whose fields match ``filters``.

        Only configuration fields are loaded; tags and concurrency are not.
        """
        filters = dict(filters or {})

        def matches(configuration: Dict[str, Any]) -> bool:
            state = self._to_state(configuration)
            return all(state.get(key) == value for key, value in filters.items())

        functions = paginate(
            boto_pages(self.client.list_functions, 'Functions', 'NextMarker', 'Marker'),
            predicate=matches
        )
        for configuration in functions:
            yield self._to_state(configuration)

    def _wait_for_active(self, name: str) -> None:
        def active() -> bool:
            configuration = self.client.get_function_configuration(FunctionName=name)
            return self._check_status(name, configuration.get('State'), 'Active',
                                      configuration.get('StateReason'))

        self.wait_for(active, 'Active', resource=f"function {name}")

    def _wait_for_update(self, name: str) -> None:
        def updated() -> bool:
            configuration = self.client.get_function_configuration(FunctionName=name)
            return self._check_status(name, configuration.get('LastUpdateStatus'), 'Successful',
                                      configuration.get('LastUpdateStatusReason'))

        self.wait_for(updated, 'Successful', resource=f"function {name}")

    @staticmethod
    def _check_status(name: str, status: Optional[str], expected: str, reason: Optional[str]) -> bool:
        if status == 'Failed':
            raise ProviderError(
                f"Function {name} failed to reach {expected}: {reason or 'no reason given'}",
                category=ErrorCategory.REMOTE,
                context=ErrorContext(resource_type='lambda-function', resource_id=name,
                                     aws_service='lambda')
            )
        return status == expected

    @staticmethod
    def _code(desired: ResourceState) -> Dict[str, Any]:
        if desired.get('content_zip_path'):
            return {'ZipFile': package_code(desired['content_zip_path'])}

        return compact({
            'S3Bucket': desired.get('s3_bucket'),
            'S3Key': desired.get('s3_key'),
            'S3ObjectVersion': desired.get('s3_object_version'),
        })

    @staticmethod
    def _configuration(desired: ResourceState, clearing: bool = False) -> Dict[str, Any]:
        """Request parameters shared by create_function and update_function_configuration.

        With ``clearing`` set, unset optional settings are sent empty so an
        update removes them.
        """
        empty = '' if clearing else None
        subnets = sorted(desired.get('subnet_ids') or ())
        security_groups = sorted(desired.get('security_group_ids') or ())
        dead_letter = desired.get('dead_letter_target_arn')

        params = compact({
            'Description': desired.get('description') or empty,
            'Runtime': desired.get('runtime'),
            'Role': desired.get('role'),
            'Handler': desired.get('handler'),
            'Timeout': desired.get('timeout'),
            'MemorySize': desired.get('memory_size'),
            'TracingConfig': {'Mode': desired['tracing_mode']} if desired.get('tracing_mode') else None,
            'KMSKeyArn': desired.get('kms_key_arn') or empty,
        })

        environment = desired.get('environment') or {}
        if environment or clearing:
            params['Environment'] = {'Variables': dict(environment)}

        if subnets or clearing:
            params['VpcConfig'] = {'SubnetIds': subnets, 'SecurityGroupIds': security_groups}

        if dead_letter or clearing:
            params['DeadLetterConfig'] = {'TargetArn': dead_letter or ''}

        layers = list(desired.get('layers') or ())
        if layers or clearing:
            params['Layers'] = layers

        return params

    @staticmethod
    def _to_state(configuration: Dict[str, Any]) -> Dict[str, Any]:
        vpc = configuration.get('VpcConfig') or {}
        environment = (configuration.get('Environment') or {}).get('Variables', {})

        return {
            'name': configuration['FunctionName'],
            'description': configuration.get('Description') or None,
            'runtime': configuration.get('Runtime'),
            'role': configuration.get('Role'),
            'handler': configuration.get('Handler'),
            'timeout': configuration.get('Timeout'),
            'memory_size': configuration.get('MemorySize'),
            'tracing_mode': (configuration.get('TracingConfig') or {}).get('Mode'),
            'dead_letter_target_arn': (configuration.get('DeadLetterConfig') or {}).get('TargetArn'),
            'kms_key_arn': configuration.get('KMSKeyArn'),
            'environment': dict(environment),
            'security_group_ids': frozenset(vpc.get('SecurityGroupIds', [])),
            'subnet_ids': frozenset(vpc.get('SubnetIds', [])),
            'layers': tuple(layer['Arn'] for layer in configuration.get('Layers', [])),
            'arn': configuration.get('FunctionArn'),
            'version': configuration.get('Version'),
            'revision_id': configuration.get('RevisionId'),
            'last_modified': configuration.get('LastModified'),
            'code_sha256': configuration.get('CodeSha256'),
            'state': configuration.get('State'),
        }
