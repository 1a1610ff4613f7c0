"""
Command Line Interface for pxc.
"""
import logging
import os
import sys

import click
import yaml
from jinja2 import Template, TemplateError

from .. import __version__
from ..BUILDERS.template_builder import TemplateBuilder
from ..exceptions import BuildError, PxcError, ServiceDeployError, ValidationError
from ..MANAGERS.config_manager import ConfigManager
from ..MANAGERS.deployment_orchestrator import DeploymentOrchestrator
from ..PARSERS.manifest_loader import ManifestLoader, find_build_manifest, find_stack_manifest
from ..RUNNERS.command_executor import CommandExecutor
from ..RUNNERS.container_client import ContainerClient
from ..RUNNERS.hook_runner import HookRunner
from ..UTILS.string_interpolation import parse_key_value_pairs

EXIT_ERROR = 1
EXIT_VALIDATION = 2
EXIT_BUILD = 3
EXIT_DEPLOY = 4

PS_FORMAT = "{{ '%-15s %-8s %-10s %s'|format(service, vmid, status, name) }}"


def exit_code(error: Exception) -> int:
    """Maps an error to the process exit status."""
    if isinstance(error, ValidationError):
        return EXIT_VALIDATION
    if isinstance(error, BuildError):
        return EXIT_BUILD
    if isinstance(error, ServiceDeployError):
        return EXIT_DEPLOY
    return EXIT_ERROR


def _fail(ctx, error: Exception):
    click.echo(f"Error: {error}", err=True)
    ctx.exit(exit_code(error))


def _setup_logging(verbose: bool):
    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if verbose else logging.INFO,
        stream=sys.stderr,
        force=True,
    )


def _project_name(stack_file: str) -> str:
    return os.path.basename(os.path.dirname(os.path.abspath(stack_file)))


class Runtime:
    """
    Wires the components for one invocation from the resolved settings.
    """
    def __init__(self, settings, config_manager: ConfigManager):
        self.settings = settings
        self.executor = CommandExecutor(verbose=settings.verbose, dry_run=settings.dry_run)
        self.client = ContainerClient(self.executor, tool=settings.tool)
        self.loader = ManifestLoader(config_manager.interpolation_context())
        self.builder = TemplateBuilder(self.client, settings)

    def orchestrator(self) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(
            self.settings,
            self.client,
            self.builder,
            loader=self.loader,
            hooks=HookRunner(self.executor),
        )


def _runtime(ctx, project_name=None, stack_file=None) -> Runtime:
    obj = ctx.obj
    manager = ConfigManager(base_dir=".")
    settings = manager.load(obj.get('config'), {
        'verbose': obj.get('verbose') or None,
        'dry_run': obj.get('dry_run') or None,
        'project_name': project_name,
    })
    if not settings.project_name and stack_file:
        settings.project_name = _project_name(stack_file)
    return Runtime(settings, manager)


@click.group()
@click.option('--config', 'config_file', type=click.Path(), help='Settings file path')
@click.option('--verbose', '-v', is_flag=True, help='Show executed commands and their output')
@click.option('--dry-run', is_flag=True, help='Print commands instead of running them')
@click.pass_context
def cli(ctx, config_file, verbose, dry_run):
    """
    pxc - Proxmox Container eXecutor.

    Builds LXC templates from LXCfiles and deploys multi-container stacks.
    """
    ctx.ensure_object(dict)
    ctx.obj['config'] = config_file
    ctx.obj['verbose'] = verbose
    ctx.obj['dry_run'] = dry_run
    _setup_logging(verbose)


@cli.command()
@click.option('--file', '-f', 'manifest_file', help='LXCfile path')
@click.option('--tag', '-t', help='Template name')
@click.option('--build-arg', 'build_args', multiple=True, help='Build argument KEY=VALUE')
@click.pass_context
def build(ctx, manifest_file, tag, build_args):
    """Build a template from an LXCfile."""
    try:
        args = parse_key_value_pairs(build_args)
    except ValueError as e:
        _fail(ctx, ValidationError(f"invalid --build-arg: {e}"))
        return

    try:
        runtime = _runtime(ctx)
        path = manifest_file or find_build_manifest(".")
        manifest = runtime.loader.load_build_manifest(path)
        result = runtime.builder.build(manifest, tag or manifest.template_name(), args)
    except PxcError as e:
        _fail(ctx, e)
        return

    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)
    click.echo(f"Successfully built template {result.template_name} "
               f"(container {result.template_reference}) in {result.duration:.1f}s")


@cli.command()
@click.option('--file', '-f', 'stack_file', help='Stack file path')
@click.option('--project-name', '-p', help='Project name (defaults to the directory name)')
@click.pass_context
def up(ctx, stack_file, project_name):
    """Build and start the services of a stack."""
    path = stack_file or find_stack_manifest(".")
    try:
        runtime = _runtime(ctx, project_name=project_name, stack_file=path)
        stack = runtime.loader.load_stack_manifest(path)
        orchestrator = runtime.orchestrator()
        if runtime.settings.dry_run:
            for line in orchestrator.plan(stack):
                click.echo(f"Plan: {line}")
        result = orchestrator.up(stack)
    except ServiceDeployError as e:
        for service in e.result.services:
            click.echo(f"{service.name}: {service.status.value}", err=True)
        _fail(ctx, e)
        return
    except PxcError as e:
        _fail(ctx, e)
        return

    for service in result.services:
        click.echo(f"{service.name}: {service.status.value} (container {service.container_id})")
    click.echo(f"Stack deployed in {result.duration:.1f}s")


@cli.command()
@click.option('--file', '-f', 'stack_file', help='Stack file path')
@click.option('--project-name', '-p', help='Project name (defaults to the directory name)')
@click.option('--volumes', is_flag=True, help='Remove named volumes')
@click.pass_context
def down(ctx, stack_file, project_name, volumes):
    """Stop and remove the services of a stack."""
    path = stack_file or find_stack_manifest(".")
    try:
        runtime = _runtime(ctx, project_name=project_name, stack_file=path)
        stack = runtime.loader.load_stack_manifest(path)
        warnings = runtime.orchestrator().down(stack, remove_volumes=volumes)
    except PxcError as e:
        _fail(ctx, e)
        return

    for warning in warnings:
        click.echo(f"Warning: {warning}", err=True)
    click.echo("Stack stopped.")


@cli.command()
@click.option('--file', '-f', 'stack_file', help='Stack file path')
@click.option('--project-name', '-p', help='Project name (defaults to the directory name)')
@click.option('--all', '-a', 'show_all', is_flag=True, help='Include services without a container')
@click.option('--quiet', '-q', is_flag=True, help='Only display container IDs')
@click.option('--format', 'fmt', help='Jinja2 template for each row')
@click.pass_context
def ps(ctx, stack_file, project_name, show_all, quiet, fmt):
    """List the containers of a stack."""
    path = stack_file or find_stack_manifest(".")
    try:
        runtime = _runtime(ctx, project_name=project_name, stack_file=path)
        stack = runtime.loader.load_stack_manifest(path)
        status = runtime.orchestrator().ps(stack)
    except PxcError as e:
        _fail(ctx, e)
        return

    try:
        row = Template(fmt or PS_FORMAT)
    except TemplateError as e:
        _fail(ctx, ValidationError(f"invalid --format template: {e}"))
        return

    if not quiet and not fmt:
        click.echo(f"{'SERVICE':15} {'VMID':8} {'STATUS':10} NAME")
    for service, info in status.items():
        if info is None and not show_all:
            continue
        if quiet:
            if info is not None:
                click.echo(info.vmid)
            continue
        click.echo(row.render(
            service=service,
            vmid=info.vmid if info else "-",
            status=info.status if info else "not created",
            name=info.name if info else "",
            lock=(info.lock or "") if info else "",
        ))


@cli.command(name='config')
@click.pass_context
def show_config(ctx):
    """Show the effective settings."""
    try:
        runtime = _runtime(ctx)
    except PxcError as e:
        _fail(ctx, e)
        return
    click.echo(yaml.safe_dump(runtime.settings.model_dump(), sort_keys=False), nl=False)


@cli.command()
def version():
    """Show the pxc version."""
    click.echo(f"pxc version {__version__}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
