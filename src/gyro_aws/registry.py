"""Registry mapping resource type names to adapter classes."""

import threading
from typing import Dict, Iterable, List, Optional, Type

import boto3

from gyro_aws.config.models import ProviderSettings
from gyro_aws.resources import ADAPTERS
from gyro_aws.resources.base import AwsResource
from gyro_aws.utils.errors import UnknownResourceTypeError
from gyro_aws.utils.logging import get_logger

logger = get_logger(__name__)


class AdapterRegistry:
    """Central registry of resource adapters.

    Adapters are registered during start-up, after which the registry is
    frozen and only read, so lookups are safe from any thread.
    """

    def __init__(self, adapters: Optional[Iterable[Type[AwsResource]]] = None):
        self._adapters: Dict[str, Type[AwsResource]] = {}
        self._frozen = False

        for adapter_class in adapters or ():
            self.register(adapter_class)

    def register(self, adapter_class: Type[AwsResource]) -> None:
        """Register an adapter class under its ``resource_type``.

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If the type name is missing or already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register adapters after the registry is frozen")

        name = adapter_class.resource_type
        if not name:
            raise ValueError(f"{adapter_class.__name__} does not declare a resource_type")

        existing = self._adapters.get(name)
        if existing is not None:
            raise ValueError(
                f"Resource type '{name}' is already registered by {existing.__name__}"
            )

        self._adapters[name] = adapter_class
        logger.debug(f"Registered adapter {adapter_class.__name__} for {name}")

    def freeze(self) -> None:
        """Make the registry read-only."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, type_name: str) -> Type[AwsResource]:
        """Look up the adapter class for a resource type.

        Raises:
            UnknownResourceTypeError: If no adapter handles the type
        """
        try:
            return self._adapters[type_name]
        except KeyError:
            raise UnknownResourceTypeError(type_name, known=self.types()) from None

    def create(
        self,
        type_name: str,
        boto_session: boto3.Session,
        settings: Optional[ProviderSettings] = None
    ) -> AwsResource:
        """Instantiate the adapter for a resource type.

        Args:
            type_name: Registered resource type name
            boto_session: Session the adapter creates its clients from
            settings: Wait and retry settings

        Returns:
            New adapter instance with its own client
        """
        return self.get(type_name)(boto_session, settings)

    def types(self) -> List[str]:
        """Registered type names, sorted."""
        return sorted(self._adapters)

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


_registry: Optional[AdapterRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> AdapterRegistry:
    """Return the process-wide registry of built-in adapters.

    Built once on first use and frozen.
    """
    global _registry

    if _registry is None:
        with _registry_lock:
            if _registry is None:
                registry = AdapterRegistry(ADAPTERS)
                registry.freeze()
                logger.debug(f"Adapter registry ready with {len(registry)} types")
                _registry = registry

    return _registry
