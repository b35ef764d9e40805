"""Parsing of Amazon Resource Names."""

from typing import Dict, NamedTuple, Optional


class Arn(NamedTuple):
    """Components of an ARN."""
    partition: str
    service: str
    region: str
    account: str
    resource: str

    @property
    def resource_type(self) -> Optional[str]:
        """Leading resource type, e.g. ``volume`` in ``volume/vol-123``."""
        for separator in ('/', ':'):
            if separator in self.resource:
                return self.resource.split(separator, 1)[0]
        return None

    @property
    def resource_id(self) -> str:
        """Trailing resource identifier, e.g. ``vol-123`` in ``volume/vol-123``."""
        return self.resource.rsplit('/', 1)[-1].rsplit(':', 1)[-1]

    def attributes(self) -> Dict[str, str]:
        """Named ``key/value`` segments of the resource part.

        Auto Scaling ARNs carry names this way, e.g.
        ``scalingPolicy:<uuid>:autoScalingGroupName/web:policyName/scale-out``
        gives ``{'autoScalingGroupName': 'web', 'policyName': 'scale-out'}``.
        """
        attributes = {}
        for segment in self.resource.split(':'):
            if '/' in segment:
                key, value = segment.split('/', 1)
                attributes[key] = value
        return attributes

    def __str__(self) -> str:
        return ':'.join(('arn',) + tuple(self))


def is_arn(value: Optional[str]) -> bool:
    """Check whether a string looks like an ARN."""
    return bool(value) and value.startswith('arn:') and value.count(':') >= 5


def parse_arn(value: str) -> Arn:
    """Split an ARN into its components.

    Args:
        value: ARN string

    Returns:
        Parsed Arn

    Raises:
        ValueError: If the value is not an ARN
    """
    if not is_arn(value):
        raise ValueError(f"Not a valid ARN: {value!r}")

    _, partition, service, region, account, resource = value.split(':', 5)
    return Arn(partition, service, region, account, resource)
