"""Example usage of the Auto Scaling adapters."""

from gyro_aws.config import ProviderSettings, WaitSettings
from gyro_aws.registry import get_registry
from gyro_aws.utils import AWSClientManager, error_handler


def example_group_lifecycle():
    """Example: Create, change and delete an Auto Scaling group."""
    print("=== Auto Scaling group lifecycle ===")

    client_manager = AWSClientManager(profile='default', region='us-east-2')
    settings = ProviderSettings(wait=WaitSettings(interval=5, timeout=600))

    registry = get_registry()
    groups = registry.create('autoscaling-group', client_manager.session, settings)
    group_class = registry.get('autoscaling-group')

    desired = group_class.desired_state({
        'name': 'example-asg',
        'launch_template_id': 'lt-0123456789abcdef0',
        'min_size': 1,
        'max_size': 3,
        'desired_capacity': 1,
        'subnets': ['subnet-aaaa1111', 'subnet-bbbb2222'],
        'tags': {'team': 'platform'},
    })

    try:
        state = groups.create(desired)
        print(f"✓ Created {state['name']} ({state['arn']})")

        resized = group_class.desired_state(dict(desired, max_size=5, desired_capacity=2))
        changed = group_class.diff(state, resized)
        print(f"  Changing: {', '.join(sorted(changed))}")
        state = groups.update(state, resized, changed)

        groups.delete(state)
        print("✓ Deleted")
    except Exception as e:
        print(error_handler.handle_exception(e).to_user_message())


if __name__ == "__main__":
    example_group_lifecycle()
