"""Resource adapter contract shared by every AWS resource type."""

import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

import boto3
from botocore.exceptions import ClientError

from gyro_aws.config.models import ProviderSettings
from gyro_aws.utils.aws_client import build_boto_config
from gyro_aws.utils.changeset import changed_fields
from gyro_aws.utils.errors import (
    FieldError,
    UnsupportedOperationError,
    ValidationError,
    is_not_found_error,
)
from gyro_aws.utils.logging import LogContext, get_logger
from gyro_aws.utils.waiter import wait_for_state

logger = get_logger(__name__)

ResourceState = Mapping[str, Any]


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of one field of a resource type.

    The host engine reads these to learn which fields are required,
    updatable in place, or output-only.

    ``write_only`` fields are sent to AWS but never read back by ``refresh``.
    ``computed`` fields receive a server-side default when left unset.
    """
    name: str
    type: type = str
    required: bool = False
    updatable: bool = False
    output: bool = False
    identifier: bool = False
    write_only: bool = False
    computed: bool = False
    valid_values: Optional[Tuple[str, ...]] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    default: Any = None
    default_factory: Optional[Callable[[], Any]] = None
    description: str = ''

    def default_value(self) -> Any:
        """Value used when the field is not configured."""
        if self.default_factory is not None:
            return self.default_factory()
        return self.default

    def coerce(self, value: Any) -> Any:
        """Normalise a configured value to the field's type.

        Sets become frozensets and sequences become tuples so that desired
        state compares equal to observed state regardless of ordering or
        container type.

        Raises:
            TypeError: If the value cannot represent this field
        """
        if value is None:
            return None

        expected = self.type
        if expected in (set, tuple):
            if isinstance(value, (str, bytes, Mapping)) or not hasattr(value, '__iter__'):
                raise TypeError(f"expected a list, got {type(value).__name__}")
            return frozenset(value) if expected is set else tuple(value)

        if expected is dict:
            if not isinstance(value, Mapping):
                raise TypeError(f"expected a map, got {type(value).__name__}")
            return dict(value)

        if expected is float:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"expected a number, got {type(value).__name__}")
            return float(value)

        if expected is int and isinstance(value, bool):
            raise TypeError("expected an integer, got bool")

        if not isinstance(value, expected):
            raise TypeError(f"expected {expected.__name__}, got {type(value).__name__}")

        return value

    def check(self, value: Any) -> List[str]:
        """Check enum membership and numeric bounds of a present value."""
        problems = []

        if self.valid_values is not None:
            values = value if isinstance(value, (frozenset, set, tuple, list)) else [value]
            invalid = sorted(str(v) for v in values if v not in self.valid_values)
            if invalid:
                problems.append(
                    f"invalid value(s) {', '.join(invalid)}; "
                    f"valid values are {', '.join(self.valid_values)}"
                )

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if self.min_value is not None and value < self.min_value:
                problems.append(f"must be at least {self.min_value:g}")
            if self.max_value is not None and value > self.max_value:
                problems.append(f"must be at most {self.max_value:g}")

        return problems


def compact(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop request parameters whose value is None."""
    return {key: value for key, value in params.items() if value is not None}


class AwsResource(ABC):
    """Base class for all resource adapters.

    Subclasses declare ``resource_type``, ``service_name`` and ``fields`` and
    implement the ``do_*`` hooks. The public operations wrap those hooks with
    validation, logging and not-found handling.
    """

    resource_type: str = ''
    service_name: str = ''
    fields: Tuple[FieldSpec, ...] = ()
    supports_find: bool = False

    def __init__(self, boto_session: boto3.Session, settings: Optional[ProviderSettings] = None):
        """Initialize adapter with a boto3 session.

        Args:
            boto_session: Configured boto3 session for AWS API calls
            settings: Wait and retry settings (defaults when omitted)
        """
        self.session = boto_session
        self.settings = settings or ProviderSettings()
        self.client = self.create_client(self.service_name)

    def create_client(self, service_name: str):
        """Create a boto3 client owned by this adapter instance."""
        return self.session.client(service_name, config=build_boto_config(self.settings.retry))

    # Schema

    @classmethod
    def schema(cls) -> Dict[str, FieldSpec]:
        """Field declarations keyed by field name."""
        return {spec.name: spec for spec in cls.fields}

    @classmethod
    def updatable_fields(cls) -> Set[str]:
        """Names of fields that can change without replacing the resource."""
        return {spec.name for spec in cls.fields if spec.updatable}

    @classmethod
    def output_fields(cls) -> Set[str]:
        """Names of fields populated only from AWS."""
        return {spec.name for spec in cls.fields if spec.output}

    @classmethod
    def configurable_fields(cls) -> List[str]:
        """Names of fields a user may configure, in declaration order."""
        return [spec.name for spec in cls.fields if not spec.output]

    @classmethod
    def write_only_fields(cls) -> Set[str]:
        """Names of fields that ``refresh`` cannot report."""
        return {spec.name for spec in cls.fields if spec.write_only}

    @classmethod
    def identifier_field(cls) -> str:
        """Name of the field passed to ``refresh``."""
        for spec in cls.fields:
            if spec.identifier:
                return spec.name
        raise TypeError(f"{cls.__name__} declares no identifier field")

    @classmethod
    def identify(cls, state: ResourceState) -> Optional[str]:
        """Identifier of a resource in the given state."""
        return state.get(cls.identifier_field())

    @classmethod
    def desired_state(cls, values: Mapping[str, Any]) -> ResourceState:
        """Build a complete, read-only desired state from configured values.

        Unset fields receive their defaults here so the result is fully
        populated.

        Raises:
            ValidationError: For unknown fields, output fields or values of
                the wrong type
        """
        schema = cls.schema()
        errors = []

        for name in values:
            if name not in schema:
                errors.append(FieldError(name, "unknown field"))
            elif schema[name].output:
                errors.append(FieldError(name, "is an output field and cannot be configured"))

        state = {}
        for spec in cls.fields:
            if spec.output:
                continue

            value = values.get(spec.name)
            if value is None:
                value = spec.default_value()

            try:
                state[spec.name] = spec.coerce(value)
            except TypeError as e:
                errors.append(FieldError(spec.name, str(e)))

        if errors:
            raise ValidationError(cls.resource_type, errors)

        return MappingProxyType(state)

    @classmethod
    def diff(cls, current: Optional[ResourceState], desired: ResourceState) -> Set[str]:
        """Configurable fields that differ between current and desired state.

        A write-only field is compared only when ``current`` records it, so a
        refreshed state never reports one as changed. A computed field left
        unset in ``desired`` accepts whatever AWS chose.
        """
        changed = changed_fields(current, desired, cls.configurable_fields())
        if current is None:
            return changed

        schema = cls.schema()
        return {
            name for name in changed
            if not (schema[name].write_only and name not in current)
            and not (schema[name].computed and desired.get(name) is None)
        }

    # Validation

    @classmethod
    def validate(cls, desired: ResourceState) -> None:
        """Validate desired state before any remote call.

        Raises:
            ValidationError: Listing every problem found
        """
        errors = []

        for spec in cls.fields:
            if spec.output:
                continue

            value = desired.get(spec.name)
            if value is None or value == '':
                if spec.required:
                    errors.append(FieldError(spec.name, "is required"))
                continue

            errors.extend(FieldError(spec.name, problem) for problem in spec.check(value))

        errors.extend(cls.validate_fields(desired))

        if errors:
            raise ValidationError(cls.resource_type, errors)

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        """Cross-field checks; override in subclasses."""
        return []

    # Lifecycle

    def refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Load the current state of a resource from AWS.

        Args:
            identifier: Value of the identifier field

        Returns:
            Observed state, or None if the resource no longer exists
        """
        with self._operation('refresh', identifier):
            observed = self.do_refresh(identifier)

        if observed is None:
            logger.info(f"{self.resource_type} {identifier} not found")

        return observed

    def create(self, desired: ResourceState) -> Dict[str, Any]:
        """Validate and create the resource.

        Calls are issued in a fixed order and are not rolled back if a later
        call fails.

        Returns:
            Observed state including output fields and the applied
            write-only values
        """
        self.validate(desired)

        with self._operation('create', self.identify(desired)):
            return self._with_write_only(self.do_create(desired), desired)

    def update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        """Validate and apply the changed fields to an existing resource.

        Args:
            current: Previously observed state (includes output fields)
            desired: New desired state
            changed: Names of the fields that differ

        Returns:
            Observed state after the update

        Raises:
            ValidationError: If desired state is invalid or a changed field
                cannot be updated in place
        """
        self.validate(desired)

        immutable = sorted(set(changed) - self.updatable_fields())
        if immutable:
            raise ValidationError(
                self.resource_type,
                [FieldError(name, "cannot be updated in place") for name in immutable]
            )

        if not changed:
            logger.debug(f"No changes for {self.resource_type} {self.identify(current)}")
            return dict(current)

        with self._operation('update', self.identify(current)):
            logger.info(f"Updating fields: {', '.join(sorted(changed))}")
            return self._with_write_only(self.do_update(current, desired, set(changed)), desired)

    def delete(self, state: ResourceState) -> None:
        """Delete the resource; a resource that is already gone is not an error."""
        with self._operation('delete', self.identify(state)):
            try:
                self.do_delete(state)
            except ClientError as e:
                if not is_not_found_error(e):
                    raise
                logger.info(f"{self.resource_type} {self.identify(state)} already deleted")

    def find(self, filters: Optional[Mapping[str, str]] = None) -> Iterator[Dict[str, Any]]:
        """Search existing resources of this type.

        Adapters that override this set ``supports_find``.

        Raises:
            UnsupportedOperationError: If the resource type does not support search
        """
        raise UnsupportedOperationError(self.resource_type, 'find')

    @abstractmethod
    def do_refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def do_create(self, desired: ResourceState) -> Dict[str, Any]:
        pass

    @abstractmethod
    def do_update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    def do_delete(self, state: ResourceState) -> None:
        pass

    # Helpers

    def wait_for(
        self,
        predicate: Callable[[], bool],
        expected_state: str,
        resource: Optional[str] = None,
        interval: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> None:
        """Wait for a state transition using the configured defaults.

        Raises:
            WaitTimeoutError: If the state is not reached in time
        """
        wait_for_state(
            predicate,
            resource or self.resource_type,
            expected_state,
            interval=interval if interval is not None else self.settings.wait.interval,
            timeout=timeout if timeout is not None else self.settings.wait.timeout,
        )

    def observe(self, identifier: str) -> Dict[str, Any]:
        """Refresh a just-written resource, waiting until AWS reports it."""
        observed = {}

        def visible() -> bool:
            state = self.do_refresh(identifier)
            if state is None:
                return False
            observed.update(state)
            return True

        self.wait_for(visible, 'visible', resource=f"{self.resource_type} {identifier}")
        return observed

    @classmethod
    def _with_write_only(cls, observed: Dict[str, Any], desired: ResourceState) -> Dict[str, Any]:
        # AWS cannot report these, so record what was applied
        for name in cls.write_only_fields():
            observed[name] = desired.get(name)
        return observed

    @contextmanager
    def _operation(self, operation: str, resource_id: Optional[str]):
        started = time.monotonic()
        with LogContext(logger, resource_type=self.resource_type,
                        resource_id=resource_id, operation=operation):
            logger.debug(f"Starting {operation}")
            yield
            logger.debug(
                f"Finished {operation}",
                extra={'duration': round(time.monotonic() - started, 3)}
            )
