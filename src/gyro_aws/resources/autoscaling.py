"""Auto Scaling group and scaling policy adapters."""

from types import MappingProxyType
from typing import Any, Dict, List, Optional, Set

from gyro_aws.resources.base import AwsResource, FieldSpec, ResourceState, compact
from gyro_aws.utils.arn import is_arn, parse_arn
from gyro_aws.utils.changeset import diff_tags
from gyro_aws.utils.errors import FieldError
from gyro_aws.utils.logging import get_logger
from gyro_aws.utils.pagination import boto_pages, paginate

logger = get_logger(__name__)

# Metrics enabled when collection is on, minus any disabled ones
MASTER_METRIC_SET = frozenset({
    'GroupMinSize',
    'GroupMaxSize',
    'GroupDesiredCapacity',
    'GroupInServiceInstances',
    'GroupPendingInstances',
    'GroupStandbyInstances',
    'GroupTerminatingInstances',
    'GroupTotalInstances',
})

METRICS_GRANULARITY = '1Minute'

# Fields sent through update_auto_scaling_group, with their request parameter
GROUP_ATTRIBUTES = {
    'launch_configuration_name': 'LaunchConfigurationName',
    'min_size': 'MinSize',
    'max_size': 'MaxSize',
    'desired_capacity': 'DesiredCapacity',
    'default_cooldown': 'DefaultCooldown',
    'availability_zones': 'AvailabilityZones',
    'subnets': 'VPCZoneIdentifier',
    'health_check_type': 'HealthCheckType',
    'health_check_grace_period': 'HealthCheckGracePeriod',
    'new_instances_protected': 'NewInstancesProtectedFromScaleIn',
    'placement_group': 'PlacementGroup',
    'termination_policies': 'TerminationPolicies',
    'service_linked_role_arn': 'ServiceLinkedRoleARN',
}

LAUNCH_TEMPLATE_FIELDS = {'launch_template_id', 'launch_template_version'}
METRIC_FIELDS = {'enable_metrics_collection', 'disabled_metrics'}
TAG_FIELDS = {'tags', 'propagate_at_launch_tags'}


def resolve_group_name(value: str) -> str:
    """Return the group name from a group name or group ARN."""
    if not is_arn(value):
        return value

    name = parse_arn(value).attributes().get('autoScalingGroupName')
    if not name:
        raise ValueError(f"ARN does not name an Auto Scaling group: {value}")
    return name


class AutoScalingGroupResource(AwsResource):
    """Adapter for Auto Scaling groups.

    A group is identified by name; ``refresh`` also accepts the group ARN.
    """

    resource_type = 'autoscaling-group'
    service_name = 'autoscaling'
    fields = (
        FieldSpec('name', required=True, identifier=True,
                  description="Name of the group"),
        FieldSpec('launch_template_id', updatable=True,
                  description="Launch template used for new instances"),
        FieldSpec('launch_template_version', updatable=True,
                  description="Launch template version; AWS default when unset"),
        FieldSpec('launch_configuration_name', updatable=True,
                  description="Launch configuration used for new instances"),
        FieldSpec('min_size', int, required=True, updatable=True, min_value=0),
        FieldSpec('max_size', int, required=True, updatable=True, min_value=0),
        FieldSpec('desired_capacity', int, updatable=True, computed=True, min_value=0),
        FieldSpec('default_cooldown', int, updatable=True, min_value=0, default=300,
                  description="Seconds between scaling activities"),
        FieldSpec('availability_zones', set, updatable=True, default_factory=frozenset),
        FieldSpec('subnets', set, updatable=True, default_factory=frozenset,
                  description="Subnet ids the group launches into"),
        FieldSpec('health_check_type', updatable=True, valid_values=('EC2', 'ELB'),
                  default='EC2'),
        FieldSpec('health_check_grace_period', int, updatable=True, min_value=0, default=0),
        FieldSpec('new_instances_protected', bool, updatable=True, default=False,
                  description="Protect new instances from scale in"),
        FieldSpec('placement_group', updatable=True),
        FieldSpec('termination_policies', tuple, updatable=True, default=('Default',)),
        FieldSpec('service_linked_role_arn', updatable=True),
        FieldSpec('load_balancers', set, updatable=True, default_factory=frozenset,
                  description="Classic load balancer names"),
        FieldSpec('target_group_arns', set, updatable=True, default_factory=frozenset),
        FieldSpec('enable_metrics_collection', bool, updatable=True, default=False),
        FieldSpec('disabled_metrics', set, updatable=True, default_factory=frozenset,
                  valid_values=tuple(sorted(MASTER_METRIC_SET))),
        FieldSpec('tags', dict, updatable=True, default_factory=dict),
        FieldSpec('propagate_at_launch_tags', set, updatable=True, default_factory=frozenset,
                  description="Tag keys copied to launched instances"),
        FieldSpec('arn', output=True),
        FieldSpec('status', output=True),
        FieldSpec('created_time', output=True),
    )

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        errors = []
        min_size = desired.get('min_size')
        max_size = desired.get('max_size')
        desired_capacity = desired.get('desired_capacity')

        if min_size is not None and max_size is not None and min_size > max_size:
            errors.append(FieldError('min_size', "cannot be greater than max_size"))

        if desired_capacity is not None:
            if min_size is not None and desired_capacity < min_size:
                errors.append(FieldError('desired_capacity', "cannot be less than min_size"))
            if max_size is not None and desired_capacity > max_size:
                errors.append(FieldError('desired_capacity', "cannot be greater than max_size"))

        if desired.get('disabled_metrics') and not desired.get('enable_metrics_collection'):
            errors.append(FieldError(
                'disabled_metrics', "can only be set when enable_metrics_collection is true"
            ))

        unknown_keys = set(desired.get('propagate_at_launch_tags') or ()) - set(desired.get('tags') or {})
        if unknown_keys:
            errors.append(FieldError(
                'propagate_at_launch_tags',
                f"keys not present in tags: {', '.join(sorted(unknown_keys))}"
            ))

        if desired.get('launch_template_id') and desired.get('launch_configuration_name'):
            errors.append(FieldError(
                'launch_configuration_name', "cannot be combined with launch_template_id"
            ))

        if desired.get('launch_template_version') and not desired.get('launch_template_id'):
            errors.append(FieldError('launch_template_version', "requires launch_template_id"))

        return errors

    def do_refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        name = resolve_group_name(identifier)
        response = self.client.describe_auto_scaling_groups(AutoScalingGroupNames=[name])
        groups = response.get('AutoScalingGroups', [])
        if not groups:
            return None

        return self._to_state(groups[0])

    def do_create(self, desired: ResourceState) -> Dict[str, Any]:
        name = desired['name']

        params = {'AutoScalingGroupName': name}
        params.update(self._group_params(desired, GROUP_ATTRIBUTES))
        params.update(compact({
            'LaunchTemplate': self._launch_template(desired),
            'LoadBalancerNames': sorted(desired.get('load_balancers') or ()) or None,
            'TargetGroupARNs': sorted(desired.get('target_group_arns') or ()) or None,
            'Tags': self._tag_list(name, desired.get('tags'),
                                   desired.get('propagate_at_launch_tags')) or None,
        }))

        self.client.create_auto_scaling_group(**params)
        logger.info(f"Created Auto Scaling group {name}")

        if desired.get('enable_metrics_collection'):
            self._enable_metrics(name, desired.get('disabled_metrics'))

        return self.observe(name)

    def do_update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        name = current['name']

        group_changes = {field: GROUP_ATTRIBUTES[field] for field in changed if field in GROUP_ATTRIBUTES}
        if group_changes or changed & LAUNCH_TEMPLATE_FIELDS:
            params = {'AutoScalingGroupName': name}
            params.update(self._group_params(desired, group_changes))
            if changed & LAUNCH_TEMPLATE_FIELDS:
                params.update(compact({'LaunchTemplate': self._launch_template(desired)}))
            self.client.update_auto_scaling_group(**params)

        if changed & METRIC_FIELDS:
            self._update_metrics(name, current, desired)

        if changed & TAG_FIELDS:
            self._update_tags(name, current, desired)

        if 'load_balancers' in changed:
            self._update_load_balancers(name, current, desired)

        if 'target_group_arns' in changed:
            self._update_target_groups(name, current, desired)

        return self.observe(name)

    def do_delete(self, state: ResourceState) -> None:
        name = state['name']
        self.client.delete_auto_scaling_group(AutoScalingGroupName=name, ForceDelete=True)
        logger.info(f"Deleting Auto Scaling group {name}")

        self.wait_for(lambda: self.do_refresh(name) is None, 'deleted',
                      resource=f"Auto Scaling group {name}")

    def _to_state(self, group: Dict[str, Any]) -> Dict[str, Any]:
        launch_template = group.get('LaunchTemplate') or {}
        enabled_metrics = {m['Metric'] for m in group.get('EnabledMetrics', [])}
        subnets = group.get('VPCZoneIdentifier') or ''
        tags = group.get('Tags', [])

        version = launch_template.get('Version')
        # AWS reports '$Default' when no version was requested
        if version == '$Default':
            version = None

        return {
            'name': group['AutoScalingGroupName'],
            'launch_template_id': launch_template.get('LaunchTemplateId'),
            'launch_template_version': version,
            'launch_configuration_name': group.get('LaunchConfigurationName'),
            'min_size': group['MinSize'],
            'max_size': group['MaxSize'],
            'desired_capacity': group.get('DesiredCapacity'),
            'default_cooldown': group.get('DefaultCooldown'),
            'availability_zones': frozenset(group.get('AvailabilityZones', [])),
            'subnets': frozenset(s for s in subnets.split(',') if s),
            'health_check_type': group.get('HealthCheckType'),
            'health_check_grace_period': group.get('HealthCheckGracePeriod'),
            'new_instances_protected': group.get('NewInstancesProtectedFromScaleIn', False),
            'placement_group': group.get('PlacementGroup'),
            'termination_policies': tuple(group.get('TerminationPolicies', [])),
            'service_linked_role_arn': group.get('ServiceLinkedRoleARN'),
            'load_balancers': frozenset(group.get('LoadBalancerNames', [])),
            'target_group_arns': frozenset(group.get('TargetGroupARNs', [])),
            'enable_metrics_collection': bool(enabled_metrics),
            'disabled_metrics': frozenset(MASTER_METRIC_SET - enabled_metrics) if enabled_metrics else frozenset(),
            'tags': {t['Key']: t['Value'] for t in tags},
            'propagate_at_launch_tags': frozenset(t['Key'] for t in tags if t.get('PropagateAtLaunch')),
            'arn': group.get('AutoScalingGroupARN'),
            'status': group.get('Status'),
            'created_time': group.get('CreatedTime'),
        }

    @staticmethod
    def _group_params(desired: ResourceState, attributes: Dict[str, str]) -> Dict[str, Any]:
        params = {}
        for field, param in attributes.items():
            value = desired.get(field)
            if field == 'subnets':
                value = ','.join(sorted(value or ())) or None
            elif field == 'availability_zones':
                value = sorted(value or ()) or None
            elif field == 'termination_policies':
                value = list(value or ()) or None
            params[param] = value
        return compact(params)

    @staticmethod
    def _launch_template(desired: ResourceState) -> Optional[Dict[str, str]]:
        if not desired.get('launch_template_id'):
            return None
        return compact({
            'LaunchTemplateId': desired['launch_template_id'],
            'Version': desired.get('launch_template_version'),
        })

    @staticmethod
    def _tag_list(
        name: str,
        tags: Optional[Dict[str, str]],
        propagate: Optional[Set[str]]
    ) -> List[Dict[str, Any]]:
        propagate = propagate or frozenset()
        return [
            {
                'ResourceId': name,
                'ResourceType': 'auto-scaling-group',
                'Key': key,
                'Value': value,
                'PropagateAtLaunch': key in propagate,
            }
            for key, value in sorted((tags or {}).items())
        ]

    def _enable_metrics(self, name: str, disabled: Optional[Set[str]]) -> None:
        metrics = sorted(MASTER_METRIC_SET - set(disabled or ()))
        self.client.enable_metrics_collection(
            AutoScalingGroupName=name,
            Granularity=METRICS_GRANULARITY,
            Metrics=metrics
        )

    def _update_metrics(self, name: str, current: ResourceState, desired: ResourceState) -> None:
        if not desired.get('enable_metrics_collection'):
            if current.get('enable_metrics_collection'):
                self.client.disable_metrics_collection(AutoScalingGroupName=name)
            return

        disabled = set(desired.get('disabled_metrics') or ())
        if disabled:
            self.client.disable_metrics_collection(
                AutoScalingGroupName=name,
                Metrics=sorted(disabled)
            )
        self._enable_metrics(name, disabled)

    def _update_tags(self, name: str, current: ResourceState, desired: ResourceState) -> None:
        old_tags = current.get('tags') or {}
        new_tags = desired.get('tags') or {}
        to_set, to_remove = diff_tags(old_tags, new_tags)

        # A changed propagate flag needs the tag written again
        old_propagate = set(current.get('propagate_at_launch_tags') or ())
        new_propagate = set(desired.get('propagate_at_launch_tags') or ())
        for key in old_propagate ^ new_propagate:
            if key in new_tags:
                to_set[key] = new_tags[key]

        if to_remove:
            self.client.delete_tags(Tags=[
                {'ResourceId': name, 'ResourceType': 'auto-scaling-group', 'Key': key}
                for key in to_remove
            ])

        if to_set:
            self.client.create_or_update_tags(Tags=self._tag_list(name, to_set, new_propagate))

    def _update_load_balancers(self, name: str, current: ResourceState, desired: ResourceState) -> None:
        old = set(current.get('load_balancers') or ())
        new = set(desired.get('load_balancers') or ())

        if old - new:
            self.client.detach_load_balancers(
                AutoScalingGroupName=name, LoadBalancerNames=sorted(old - new)
            )
        if new - old:
            self.client.attach_load_balancers(
                AutoScalingGroupName=name, LoadBalancerNames=sorted(new - old)
            )

    def _update_target_groups(self, name: str, current: ResourceState, desired: ResourceState) -> None:
        old = set(current.get('target_group_arns') or ())
        new = set(desired.get('target_group_arns') or ())

        if old - new:
            self.client.detach_load_balancer_target_groups(
                AutoScalingGroupName=name, TargetGroupARNs=sorted(old - new)
            )
        if new - old:
            self.client.attach_load_balancer_target_groups(
                AutoScalingGroupName=name, TargetGroupARNs=sorted(new - old)
            )


POLICY_TYPES = ('SimpleScaling', 'StepScaling', 'TargetTrackingScaling')

# Fields that only apply to some policy types
POLICY_TYPE_FIELDS = {
    'cooldown': {'SimpleScaling'},
    'scaling_adjustment': {'SimpleScaling'},
    'adjustment_type': {'SimpleScaling', 'StepScaling'},
    'min_adjustment_magnitude': {'SimpleScaling', 'StepScaling'},
    'metric_aggregation_type': {'StepScaling'},
    'step_adjustments': {'StepScaling'},
    'estimated_instance_warmup': {'StepScaling', 'TargetTrackingScaling'},
    'target_tracking_configuration': {'TargetTrackingScaling'},
}

# Field required by each policy type
POLICY_TYPE_REQUIRED = {
    'SimpleScaling': ('adjustment_type', 'scaling_adjustment'),
    'StepScaling': ('adjustment_type', 'step_adjustments'),
    'TargetTrackingScaling': ('target_tracking_configuration',),
}


class AutoScalingPolicyResource(AwsResource):
    """Adapter for scaling policies attached to an Auto Scaling group.

    The parent group may be configured by name or ARN; it is stored as a name.
    Policies are identified by their ARN.
    """

    resource_type = 'autoscaling-policy'
    service_name = 'autoscaling'
    fields = (
        FieldSpec('name', required=True),
        FieldSpec('auto_scaling_group', required=True,
                  description="Name or ARN of the parent group"),
        FieldSpec('policy_type', updatable=True, valid_values=POLICY_TYPES,
                  default='SimpleScaling'),
        FieldSpec('adjustment_type', updatable=True,
                  valid_values=('ChangeInCapacity', 'ExactCapacity', 'PercentChangeInCapacity')),
        FieldSpec('scaling_adjustment', int, updatable=True),
        FieldSpec('cooldown', int, updatable=True, min_value=0),
        FieldSpec('min_adjustment_magnitude', int, updatable=True, min_value=1),
        FieldSpec('metric_aggregation_type', updatable=True,
                  valid_values=('Minimum', 'Maximum', 'Average')),
        FieldSpec('estimated_instance_warmup', int, updatable=True, min_value=0),
        FieldSpec('step_adjustments', tuple, updatable=True,
                  description="StepAdjustments entries as sent to AWS"),
        FieldSpec('target_tracking_configuration', dict, updatable=True),
        FieldSpec('enabled', bool, updatable=True, default=True),
        FieldSpec('arn', output=True, identifier=True),
        FieldSpec('alarms', set, output=True),
    )

    @classmethod
    def desired_state(cls, values):
        state = super().desired_state(values)
        group = state.get('auto_scaling_group')
        if not is_arn(group):
            return state

        resolved = dict(state)
        try:
            resolved['auto_scaling_group'] = resolve_group_name(group)
        except ValueError:
            # left as-is so validate() reports it
            return state
        return MappingProxyType(resolved)

    @classmethod
    def validate_fields(cls, desired: ResourceState) -> List[FieldError]:
        errors = []
        policy_type = desired.get('policy_type') or 'SimpleScaling'

        group = desired.get('auto_scaling_group')
        if group and is_arn(group):
            try:
                resolve_group_name(group)
            except ValueError as e:
                errors.append(FieldError('auto_scaling_group', str(e)))

        for field, allowed in POLICY_TYPE_FIELDS.items():
            if desired.get(field) is not None and policy_type not in allowed:
                errors.append(FieldError(field, f"is not supported by {policy_type} policies"))

        for field in POLICY_TYPE_REQUIRED.get(policy_type, ()):
            if desired.get(field) is None:
                errors.append(FieldError(field, f"is required for {policy_type} policies"))

        if (desired.get('min_adjustment_magnitude') is not None
                and desired.get('adjustment_type') != 'PercentChangeInCapacity'):
            errors.append(FieldError(
                'min_adjustment_magnitude',
                "requires adjustment_type PercentChangeInCapacity"
            ))

        return errors

    @classmethod
    def identify(cls, state: ResourceState) -> Optional[str]:
        return state.get('arn') or state.get('name')

    def do_refresh(self, identifier: str) -> Optional[Dict[str, Any]]:
        attributes = parse_arn(identifier).attributes()
        group = attributes.get('autoScalingGroupName')
        name = attributes.get('policyName')

        params = {'AutoScalingGroupName': group}
        if name:
            params['PolicyNames'] = [name]

        policies = paginate(
            boto_pages(self.client.describe_policies, 'ScalingPolicies', **params),
            predicate=lambda p: p.get('PolicyARN') == identifier
        )
        policy = next(policies, None)
        if policy is None:
            return None

        return self._to_state(policy)

    def do_create(self, desired: ResourceState) -> Dict[str, Any]:
        return self._put_policy(desired)

    def do_update(
        self,
        current: ResourceState,
        desired: ResourceState,
        changed: Set[str]
    ) -> Dict[str, Any]:
        # put_scaling_policy replaces the whole policy definition
        return self._put_policy(desired)

    def do_delete(self, state: ResourceState) -> None:
        self.client.delete_policy(
            AutoScalingGroupName=resolve_group_name(state['auto_scaling_group']),
            PolicyName=state['name']
        )

    def _put_policy(self, desired: ResourceState) -> Dict[str, Any]:
        group = resolve_group_name(desired['auto_scaling_group'])

        target_tracking = desired.get('target_tracking_configuration')
        step_adjustments = desired.get('step_adjustments')

        response = self.client.put_scaling_policy(**compact({
            'AutoScalingGroupName': group,
            'PolicyName': desired['name'],
            'PolicyType': desired.get('policy_type'),
            'AdjustmentType': desired.get('adjustment_type'),
            'ScalingAdjustment': desired.get('scaling_adjustment'),
            'Cooldown': desired.get('cooldown'),
            'MinAdjustmentMagnitude': desired.get('min_adjustment_magnitude'),
            'MetricAggregationType': desired.get('metric_aggregation_type'),
            'EstimatedInstanceWarmup': desired.get('estimated_instance_warmup'),
            'StepAdjustments': list(step_adjustments) if step_adjustments else None,
            'TargetTrackingConfiguration': dict(target_tracking) if target_tracking else None,
            'Enabled': desired.get('enabled'),
        }))

        arn = response['PolicyARN']
        logger.info(f"Saved scaling policy {desired['name']} on group {group}")

        return self.observe(arn)

    @staticmethod
    def _to_state(policy: Dict[str, Any]) -> Dict[str, Any]:
        step_adjustments = policy.get('StepAdjustments')
        return {
            'name': policy['PolicyName'],
            'auto_scaling_group': policy['AutoScalingGroupName'],
            'policy_type': policy.get('PolicyType'),
            'adjustment_type': policy.get('AdjustmentType'),
            'scaling_adjustment': policy.get('ScalingAdjustment'),
            'cooldown': policy.get('Cooldown'),
            'min_adjustment_magnitude': policy.get('MinAdjustmentMagnitude'),
            'metric_aggregation_type': policy.get('MetricAggregationType'),
            'estimated_instance_warmup': policy.get('EstimatedInstanceWarmup'),
            'step_adjustments': tuple(step_adjustments) if step_adjustments else None,
            'target_tracking_configuration': policy.get('TargetTrackingConfiguration'),
            'enabled': policy.get('Enabled', True),
            'arn': policy['PolicyARN'],
            'alarms': frozenset(a['AlarmName'] for a in policy.get('Alarms', [])),
        }
