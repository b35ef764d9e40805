"""Main CLI entry point."""

import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.table import Table

from gyro_aws.backends import S3StateBackend
from gyro_aws.config.models import ProviderConfig
from gyro_aws.config.parser import (
    DEFAULT_CONFIG_PATH,
    Config,
    ConfigValidationError,
    load_resource_definitions,
)
from gyro_aws.registry import get_registry
from gyro_aws.utils.aws_client import AWSClientManager
from gyro_aws.utils.errors import ErrorContext, ProviderError, ValidationError, error_handler
from gyro_aws.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)


@click.group()
@click.option('--config', 'config_path', default=DEFAULT_CONFIG_PATH, show_default=True,
              help='Provider configuration file')
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region')
@click.option('--log-level', type=click.Choice(['debug', 'info', 'warning', 'error']),
              help='Log level (defaults to the configured level)')
@click.pass_context
def cli(ctx, config_path, profile, region, log_level):
    """Gyro AWS provider tools."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level

    setup_logging(log_level or 'info')


def load_config(ctx) -> ProviderConfig:
    """Load the provider configuration, applying command line overrides.

    A missing default configuration file means built-in defaults.
    """
    config_path = ctx.obj['config_path']

    if Path(config_path).exists():
        try:
            provider = Config(config_path).load().provider
        except ConfigValidationError as e:
            console.print("[red]Configuration validation failed:[/red]\n")
            console.print(str(e))
            sys.exit(1)
    elif config_path != DEFAULT_CONFIG_PATH:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    else:
        provider = ProviderConfig()

    overrides = {
        key: ctx.obj[key] for key in ('profile', 'region', 'log_level') if ctx.obj.get(key)
    }
    if overrides:
        provider = provider.model_copy(update=overrides)

    setup_logging(provider.log_level, provider.log_dir)
    return provider


def create_client_manager(provider: ProviderConfig) -> AWSClientManager:
    return AWSClientManager(
        profile=provider.profile,
        region=provider.region,
        retry=provider.retry
    )


def fail(error: Exception, context: Optional[ErrorContext] = None):
    """Print a categorised error and exit."""
    provider_error = error_handler.handle_exception(error, context)
    error_handler.log_error(provider_error)
    console.print(f"[red]{provider_error.to_user_message()}[/red]")
    sys.exit(1)


def _jsonable(state: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in state.items():
        if isinstance(value, (set, frozenset)):
            value = sorted(value)
        elif isinstance(value, tuple):
            value = list(value)
        result[key] = value
    return result


@cli.command()
def types():
    """List the supported resource types."""
    registry = get_registry()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Adapter")
    table.add_column("Identifier")

    for type_name in registry.types():
        adapter_class = registry.get(type_name)
        table.add_row(type_name, adapter_class.__name__, adapter_class.identifier_field())

    console.print(table)


@cli.command()
@click.argument('type_name')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table')
def schema(type_name, output_format):
    """Show the fields of a resource type."""
    try:
        adapter_class = get_registry().get(type_name)
    except ProviderError as e:
        fail(e)

    if output_format == 'json':
        console.print_json(data=[
            {
                'name': spec.name,
                'type': spec.type.__name__,
                'required': spec.required,
                'updatable': spec.updatable,
                'output': spec.output,
                'identifier': spec.identifier,
                'write_only': spec.write_only,
                'computed': spec.computed,
                'valid_values': list(spec.valid_values) if spec.valid_values else None,
                'default': spec.default_value(),
                'description': spec.description or None,
            }
            for spec in adapter_class.fields
        ], default=lambda value: sorted(value) if isinstance(value, frozenset) else str(value))
        return

    table = Table(title=type_name, show_header=True, header_style="bold")
    table.add_column("Field", style="cyan")
    table.add_column("Type")
    table.add_column("Required")
    table.add_column("Updatable")
    table.add_column("Output")
    table.add_column("Valid values")
    table.add_column("Default")

    for spec in adapter_class.fields:
        default = spec.default_value()
        table.add_row(
            spec.name + (" (id)" if spec.identifier else ""),
            spec.type.__name__,
            "yes" if spec.required else "",
            "yes" if spec.updatable else "",
            "yes" if spec.output else "",
            ", ".join(spec.valid_values) if spec.valid_values else "",
            "" if default in (None, (), {}, frozenset()) else str(default),
        )

    console.print(table)


@cli.command()
@click.argument('resource_file', type=click.Path(exists=True, dir_okay=False))
def validate(resource_file):
    """Validate a YAML list of resources without calling AWS."""
    try:
        definitions = load_resource_definitions(resource_file)
    except ConfigValidationError as e:
        console.print("[red]Resource file is invalid:[/red]\n")
        console.print(str(e))
        sys.exit(1)

    registry = get_registry()
    failures = 0

    for idx, definition in enumerate(definitions):
        label = f"#{idx + 1} {definition.type}"
        try:
            adapter_class = registry.get(definition.type)
            desired = adapter_class.desired_state(definition.fields)
            adapter_class.validate(desired)
        except ValidationError as e:
            failures += 1
            console.print(f"[red]✗[/red] {label}")
            for field_error in e.errors:
                console.print(f"    {field_error}")
            continue
        except ProviderError as e:
            failures += 1
            console.print(f"[red]✗[/red] {label}: {e.message}")
            continue

        console.print(f"[green]✓[/green] {label} {adapter_class.identify(desired) or ''}".rstrip())

    if failures:
        console.print(f"\n[red]{failures} of {len(definitions)} resource(s) failed validation[/red]")
        sys.exit(1)

    console.print(f"\n[green]All {len(definitions)} resource(s) are valid[/green]")


@cli.command()
@click.argument('type_name')
@click.argument('identifier')
@click.pass_context
def refresh(ctx, type_name, identifier):
    """Show the current state of one resource in AWS."""
    provider = load_config(ctx)
    context = ErrorContext(resource_type=type_name, resource_id=identifier, operation='refresh')

    try:
        client_manager = create_client_manager(provider)
        adapter = get_registry().create(type_name, client_manager.session, provider.settings)
        state = adapter.refresh(identifier)
    except (ProviderError, ClientError, BotoCoreError) as e:
        fail(e, context)

    if state is None:
        console.print(f"[yellow]{type_name} {identifier} not found[/yellow]")
        sys.exit(1)

    console.print_json(data=_jsonable(state), default=str)


@cli.command()
@click.pass_context
def states(ctx):
    """List state files in the configured S3 state backend."""
    provider = load_config(ctx)

    if provider.state_backend is None:
        console.print("[red]Error:[/red] No state_backend configured")
        sys.exit(1)

    backend_config = provider.state_backend

    try:
        backend = S3StateBackend(
            create_client_manager(provider).session,
            backend_config.bucket,
            prefix=backend_config.prefix,
            suffix=backend_config.suffix,
            retry=provider.retry
        )
        names = list(backend.list())
    except (ClientError, BotoCoreError) as e:
        fail(e, ErrorContext(operation='list-states', aws_service='s3'))

    if not names:
        console.print("[dim]No state files found[/dim]")
        return

    for name in names:
        console.print(name)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
