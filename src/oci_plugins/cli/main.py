"""CLI entry point for oci-plugins.

Invoked as::

    oci-plugins [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m oci_plugins.cli.main

Commands
--------
- ``list``         Show installed plugins and plugins available in the registry.
- ``contract``     Print a plugin's contract as YAML.
- ``install``      Install a plugin.
- ``update``       Reinstall a plugin at its latest version.
- ``update-all``   Update every installed plugin.
- ``remove``       Remove a plugin (aliases: ``uninstall``, ``delete``).
- ``remove-all``   Remove every installed plugin.
- ``run``          Run a plugin, installing it on first use.
- ``version``      Show version information.
"""
from __future__ import annotations

import json
import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from oci_plugins.config import (
    DEFAULT_PLUGINS_DIR,
    DEFAULT_REGISTRY_REPO,
    ManagerConfig,
    build_installer,
    prepare_plugins_dir,
)
from oci_plugins.errors import PluginError

if TYPE_CHECKING:
    from oci_plugins.installer.installer import PluginInstaller
    from oci_plugins.registry.client import RegistryClient

console = Console()
logger = logging.getLogger(__name__)

_DESCRIPTION_WIDTH = 40


@dataclass
class CliState:
    """Objects shared by all subcommands of one invocation.

    Attributes
    ----------
    config:
        Settings assembled from the global options.
    client:
        Registry client override; built from ``config`` when None.
    """

    config: ManagerConfig | None = None
    client: RegistryClient | None = None


class _AliasedGroup(click.Group):
    """Group that resolves command aliases."""

    aliases = {"uninstall": "remove", "delete": "remove"}

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        return super().get_command(ctx, self.aliases.get(cmd_name, cmd_name))

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        _, command, remaining = super().resolve_command(ctx, args)
        return (command.name if command else None), command, remaining


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    package_logger = logging.getLogger("oci_plugins")
    package_logger.setLevel(level)
    if not any(isinstance(handler, RichHandler) for handler in package_logger.handlers):
        package_logger.addHandler(
            RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        )


def _fail(exc: Exception) -> NoReturn:
    console.print(f"[red]Error:[/red] {exc}", soft_wrap=True)
    sys.exit(1)


def _installer(ctx: click.Context) -> PluginInstaller:
    state = ctx.ensure_object(CliState)
    if state.config is None:
        raise click.UsageError("plugin manager options were not initialised", ctx=ctx)
    try:
        state.config = prepare_plugins_dir(state.config)
        return build_installer(state.config, client=state.client)
    except PluginError as exc:
        _fail(exc)


def _truncate(text: str) -> str:
    if len(text) > _DESCRIPTION_WIDTH:
        return text[: _DESCRIPTION_WIDTH - 3] + "..."
    return text


@click.group(cls=_AliasedGroup)
@click.version_option(package_name="oci-plugins")
@click.option(
    "--plugins-dir",
    envvar="OCI_PLUGINS_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_PLUGINS_DIR,
    show_default=True,
    help="Root directory for installed plugins and the contract cache.",
)
@click.option(
    "--registry",
    "registry_repo",
    envvar="OCI_PLUGINS_REGISTRY",
    default=DEFAULT_REGISTRY_REPO,
    show_default=True,
    help="Registry repository the plugin images live under (host/prefix).",
)
@click.option("--registry-login", envvar="OCI_PLUGINS_LOGIN", default="", help="Registry user name.")
@click.option(
    "--registry-password",
    envvar="OCI_PLUGINS_PASSWORD",
    default="",
    help="Registry password.",
)
@click.option(
    "--license-token",
    envvar="OCI_PLUGINS_LICENSE_TOKEN",
    default="",
    help="License token used when no login is given.",
)
@click.option(
    "--insecure",
    envvar="OCI_PLUGINS_INSECURE",
    is_flag=True,
    default=False,
    help="Use plain HTTP for the registry.",
)
@click.option(
    "--tls-skip-verify",
    envvar="OCI_PLUGINS_TLS_SKIP_VERIFY",
    is_flag=True,
    default=False,
    help="Do not verify the registry TLS certificate.",
)
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    show_default=True,
    help="Registry request timeout in seconds.",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v, -vv).")
@click.pass_context
def cli(
    ctx: click.Context,
    plugins_dir: Path,
    registry_repo: str,
    registry_login: str,
    registry_password: str,
    license_token: str,
    insecure: bool,
    tls_skip_verify: bool,
    timeout: float,
    verbose: int,
) -> None:
    """Install and manage CLI plugins distributed as OCI images"""
    _configure_logging(verbose)
    state = ctx.ensure_object(CliState)
    state.config = ManagerConfig(
        plugins_dir=plugins_dir,
        registry_repo=registry_repo,
        insecure=insecure,
        tls_skip_verify=tls_skip_verify,
        registry_login=registry_login,
        registry_password=registry_password,
        license_token=license_token,
        timeout_seconds=timeout,
    )


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from oci_plugins import __version__

    console.print(f"[bold]oci-plugins[/bold] v{__version__}")


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


@cli.command(name="list")
@click.option("--installed", "installed_only", is_flag=True, help="Show only installed plugins.")
@click.option(
    "--available",
    "available_only",
    is_flag=True,
    help="Show only plugins available in the registry.",
)
@click.option("--json-output", is_flag=True, default=False, help="Output results as JSON.")
@click.pass_context
def list_command(
    ctx: click.Context,
    installed_only: bool,
    available_only: bool,
    json_output: bool,
) -> None:
    """List installed plugins and plugins available in the registry."""
    from oci_plugins.versioning.resolver import fetch_latest_version

    installer = _installer(ctx)
    installed: list[dict[str, str]] = []
    available: list[dict[str, str]] = []
    registry_error: str | None = None

    if not available_only:
        installed = [
            {"name": row.name, "version": row.version, "description": row.description}
            for row in installer.list_installed()
        ]

    if not installed_only:
        try:
            names = installer.service.list_plugins()
        except PluginError as exc:
            registry_error = str(exc)
            names = []
        for name in names:
            try:
                latest = fetch_latest_version(installer.service, name)
                contract = installer.service.get_plugin_contract(name, latest.original)
            except PluginError as exc:
                logger.warning("Failed to describe plugin %s: %s", name, exc)
                available.append(
                    {"name": name, "version": "ERROR", "description": "failed to get plugin contract"}
                )
                continue
            available.append(
                {
                    "name": name,
                    "version": latest.original,
                    "description": _truncate(contract.description),
                }
            )

    if json_output:
        output: dict[str, object] = {}
        if not available_only:
            output["installed"] = installed
        if not installed_only:
            output["available"] = available
            output["registry_error"] = registry_error
        console.print_json(json.dumps(output, indent=2))
        return

    if not available_only:
        if installed:
            table = Table(title="Installed Plugins", show_header=True)
            table.add_column("Name", style="cyan")
            table.add_column("Version", style="green")
            table.add_column("Description")
            for row in installed:
                table.add_row(row["name"], row["version"], row["description"])
            console.print(table)
        else:
            console.print("[dim]No plugins installed.[/dim]")

    if not installed_only:
        if registry_error is not None:
            console.print(f"[yellow]Could not list available plugins:[/yellow] {registry_error}")
        elif available:
            table = Table(title="Available Plugins", show_header=True)
            table.add_column("Name", style="cyan")
            table.add_column("Latest", style="green")
            table.add_column("Description")
            for row in available:
                table.add_row(row["name"], row["version"], row["description"])
            console.print(table)
        else:
            console.print("[dim]No plugins available in the registry.[/dim]")


# ---------------------------------------------------------------------------
# contract
# ---------------------------------------------------------------------------


@cli.command(name="contract")
@click.argument("plugin_name")
@click.option("--version", "version", default=None, help="Version of the contract to show.")
@click.option("--use-major", type=click.IntRange(min=0), default=None, help="Use the latest version of this major.")
@click.pass_context
def contract_command(
    ctx: click.Context,
    plugin_name: str,
    version: str | None,
    use_major: int | None,
) -> None:
    """Print the contract of PLUGIN_NAME as YAML."""
    import yaml

    installer = _installer(ctx)
    try:
        resolved = installer.resolve_version(plugin_name, version, use_major)
        contract = installer.service.get_plugin_contract(plugin_name, resolved.original)
    except PluginError as exc:
        _fail(exc)

    document = contract.model_dump(mode="json")
    click.echo(yaml.safe_dump(document, sort_keys=False, allow_unicode=True), nl=False)


# ---------------------------------------------------------------------------
# install / update
# ---------------------------------------------------------------------------


@cli.command(name="install")
@click.argument("plugin_name")
@click.option("--version", "version", default=None, help="Exact version to install.")
@click.option("--use-major", type=click.IntRange(min=0), default=None, help="Install the latest version of this major.")
@click.option(
    "--resolve-plugins-conflicts",
    is_flag=True,
    default=False,
    help="Install or upgrade plugins this plugin depends on.",
)
@click.pass_context
def install_command(
    ctx: click.Context,
    plugin_name: str,
    version: str | None,
    use_major: int | None,
    resolve_plugins_conflicts: bool,
) -> None:
    """Install PLUGIN_NAME from the registry."""
    from oci_plugins.installer.installer import InstallOptions

    installer = _installer(ctx)
    options = InstallOptions(
        version=version,
        use_major=use_major,
        resolve_plugins_conflicts=resolve_plugins_conflicts,
    )
    console.print(f"Installing plugin: [bold]{plugin_name}[/bold]")
    try:
        result = installer.install_plugin(plugin_name, options)
    except PluginError as exc:
        _fail(exc)

    for dependency in result.dependencies:
        console.print(f"  [dim]dependency[/dim] {dependency.name} {dependency.version}")
    console.print(f"Plugin: {result.contract.name} {result.contract.version}")
    console.print(f"Installed to: {result.binary_path}")
    console.print(f"[green]✓[/green] Plugin '{plugin_name}' successfully installed!")


@cli.command(name="update")
@click.argument("plugin_name")
@click.pass_context
def update_command(ctx: click.Context, plugin_name: str) -> None:
    """Update PLUGIN_NAME to its latest version."""
    installer = _installer(ctx)
    console.print(f"Updating plugin: [bold]{plugin_name}[/bold]")
    try:
        result = installer.update(plugin_name)
    except PluginError as exc:
        _fail(exc)
    console.print(f"[green]✓[/green] Plugin '{plugin_name}' updated to {result.version}")


@cli.command(name="update-all")
@click.pass_context
def update_all_command(ctx: click.Context) -> None:
    """Update every installed plugin to its latest version."""
    installer = _installer(ctx)
    console.print("Updating all installed plugins...")
    try:
        results = installer.update_all()
    except PluginError as exc:
        _fail(exc)
    for result in results:
        console.print(f"  {result.name} {result.version}")
    console.print("[green]✓[/green] All plugins updated successfully!")


# ---------------------------------------------------------------------------
# remove
# ---------------------------------------------------------------------------


@cli.command(name="remove")
@click.argument("plugin_name")
@click.pass_context
def remove_command(ctx: click.Context, plugin_name: str) -> None:
    """Remove PLUGIN_NAME and its cached contract."""
    installer = _installer(ctx)
    console.print(f"Removing plugin: [bold]{plugin_name}[/bold]")
    try:
        installer.remove(plugin_name)
    except PluginError as exc:
        _fail(exc)
    console.print(f"[green]✓[/green] Plugin '{plugin_name}' successfully removed!")


@cli.command(name="remove-all")
@click.pass_context
def remove_all_command(ctx: click.Context) -> None:
    """Remove every installed plugin."""
    installer = _installer(ctx)
    console.print("Removing all installed plugins...")
    try:
        removed = installer.remove_all()
    except PluginError as exc:
        _fail(exc)
    for name in removed:
        console.print(f"  removed {name}")
    console.print("[green]✓[/green] All plugins successfully removed!")


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@cli.command(
    name="run",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.argument("plugin_name")
@click.argument("plugin_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run_command(ctx: click.Context, plugin_name: str, plugin_args: tuple[str, ...]) -> None:
    """Run PLUGIN_NAME with PLUGIN_ARGS, installing it first if needed."""
    installer = _installer(ctx)
    try:
        executable = installer.ensure_installed(plugin_name)
    except PluginError as exc:
        _fail(exc)

    try:
        completed = subprocess.run([str(executable), *plugin_args], check=False)
    except OSError as exc:
        _fail(PluginError(f"failed to run plugin {plugin_name}: {exc}"))
    sys.exit(completed.returncode)


if __name__ == "__main__":
    cli()
