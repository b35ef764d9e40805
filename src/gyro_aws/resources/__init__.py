"""Resource adapters for AWS resource types."""

from .base import AwsResource, FieldSpec, ResourceState, compact
from .autoscaling import AutoScalingGroupResource, AutoScalingPolicyResource
from .secretsmanager import SecretResource
from .sqs import QueueResource
from .lambda_function import FunctionResource
from .s3 import BucketResource
from .ec2 import Ec2TaggableResource, EbsVolumeResource

# Adapters registered by the default registry
ADAPTERS = (
    AutoScalingGroupResource,
    AutoScalingPolicyResource,
    SecretResource,
    QueueResource,
    FunctionResource,
    BucketResource,
    EbsVolumeResource,
)

__all__ = [
    "AwsResource",
    "FieldSpec",
    "ResourceState",
    "compact",
    "AutoScalingGroupResource",
    "AutoScalingPolicyResource",
    "SecretResource",
    "QueueResource",
    "FunctionResource",
    "BucketResource",
    "Ec2TaggableResource",
    "EbsVolumeResource",
    "ADAPTERS",
]
