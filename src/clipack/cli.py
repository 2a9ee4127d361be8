"""clipack CLI entry point."""

import sys
from functools import partial
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from clipack import __version__, cli_logger, exit_codes
from clipack.config import ClipackConfig, ConfigError, get_config_path, load_config, write_default_config
from clipack.errors import handle_cli_error
from clipack.installed import PackageNotInstalledError, find_installed, list_installed
from clipack.package_schema import InstalledRecord, InstallMethod, PackageManifest, serialize_manifest
from clipack.reconciler import (
    BuildDirectoryExistsError,
    ReconcileError,
    check_update,
    install_package,
    remove_package,
    update_package,
)
from clipack.registry import PackageNotFoundError, RegistryFetchError, find_package, load_packages
from clipack.shell import ShellKind, UnsupportedShellError, add_paths_to_shell_config, shell_config_path
from clipack.steps import StepExecutionError, run_steps

app = typer.Typer(
    name="clipack",
    help="clipack - Install command-line tools from a shared package registry.",
    no_args_is_help=True,
)

console = Console()

DEFAULT_INSTALL_DIR = Path.home() / "clipack"

PackageT = TypeVar("PackageT", bound=PackageManifest)


def require_config() -> ClipackConfig:
    """Load the configuration or exit with CONFIG_ERROR.

    Raises:
        typer.Exit: With CONFIG_ERROR if the config is missing or invalid.
    """
    try:
        return load_config()
    except ConfigError as e:
        cli_logger.error(str(e))
        cli_logger.info("  Run [bold]clipack init-config[/bold] first.")
        raise typer.Exit(exit_codes.CONFIG_ERROR) from None


def _load_registry(config: ClipackConfig, force_refresh: bool) -> list[PackageManifest]:
    """Load registry packages, printing fetch warnings.

    Raises:
        typer.Exit: With FETCH_ERROR if the registry cannot be loaded.
    """
    if force_refresh:
        cli_logger.dim("Refreshing registry cache...")
    try:
        result = load_packages(config, force_refresh=force_refresh)
    except RegistryFetchError as e:
        cli_logger.error(f"Failed to load registry: {e}")
        raise typer.Exit(exit_codes.FETCH_ERROR) from None
    cli_logger.warnings(result.warnings)
    return result.packages


def _load_installed(config: ClipackConfig) -> list[InstalledRecord]:
    scan = list_installed(config.paths.configs)
    cli_logger.warnings(scan.warnings)
    return scan.records


def _select_package(packages: list[PackageT], title: str) -> PackageT:
    """Show a numbered package table and prompt for a choice.

    Raises:
        typer.Exit: With INVALID_ARGS on an out-of-range choice.
    """
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("NAME", style="cyan")
    table.add_column("VERSION")
    table.add_column("DESCRIPTION")
    for number, package in enumerate(packages, start=1):
        table.add_row(str(number), package.name, package.nominal_version or "-", package.description)
    console.print(table)

    choice = typer.prompt("Enter package number", type=int)
    if not 1 <= choice <= len(packages):
        cli_logger.error(f"Please enter a number between 1 and {len(packages)}")
        raise typer.Exit(exit_codes.INVALID_ARGS)
    return packages[choice - 1]


def _find_registry_package(packages: list[PackageManifest], name: str) -> PackageManifest:
    try:
        return find_package(packages, name)
    except PackageNotFoundError as e:
        cli_logger.error(str(e))
        raise typer.Exit(exit_codes.PACKAGE_NOT_FOUND) from None


def _resolve_install_method(
    latest: bool, install_method: str | None, config: ClipackConfig,
) -> InstallMethod:
    """Pick the install method: --latest, then --install-method, then config."""
    if latest:
        return InstallMethod.LATEST
    if install_method is None:
        return config.options.default_install_method
    try:
        return InstallMethod.from_option(install_method)
    except ValueError as e:
        cli_logger.error(str(e))
        raise typer.Exit(exit_codes.INVALID_ARGS) from None


def _confirm_remove_build(yes: bool, build_dir: Path) -> bool:
    if yes:
        return True
    return typer.confirm(f"Build directory {build_dir} already exists. Remove it?", default=False)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"clipack {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show clipack version and exit.",
    ),
) -> None:
    """clipack - Install command-line tools from a shared package registry."""


@app.command()
def install(
    name: Annotated[
        str | None,
        typer.Argument(help="Package name. Omit to choose from a list."),
    ] = None,
    force_refresh: Annotated[
        bool,
        typer.Option("--force-refresh", "-f", help="Refetch the registry instead of using the cache."),
    ] = False,
    latest: Annotated[
        bool,
        typer.Option("--latest", "-l", help="Track the latest commit instead of the pinned version."),
    ] = False,
    install_method: Annotated[
        str | None,
        typer.Option("--install-method", help="Install method: version or commit."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Answer yes to every confirmation."),
    ] = False,
) -> None:
    """Install a package from the registry.

    Runs the package's install steps in its build directory, then places
    binaries, configs and man pages under the configured paths.
    """
    config = require_config()
    method = _resolve_install_method(latest, install_method, config)
    packages = _load_registry(config, force_refresh)

    if name:
        manifest = _find_registry_package(packages, name)
    else:
        manifest = _select_package(packages, "Available packages")

    try:
        previous = find_installed(config.paths.configs, manifest.name)
    except PackageNotInstalledError:
        previous = None

    if previous is not None:
        cli_logger.warning(
            f"'{manifest.name}' is already installed ({previous.actual_version}, {previous.method.value})"
        )
        if not yes and not typer.confirm("Reinstall?", default=False):
            cli_logger.info("Installation cancelled")
            raise typer.Exit(exit_codes.SUCCESS)

    cli_logger.info(f"Installing [bold]{manifest.name}[/bold] ({method.value})")
    try:
        result = install_package(
            manifest,
            config,
            method,
            confirm_remove_build=partial(_confirm_remove_build, yes),
            step_runner=partial(run_steps, on_step=cli_logger.step),
            replacing=previous,
        )
    except BuildDirectoryExistsError:
        cli_logger.info("Installation cancelled")
        raise typer.Exit(exit_codes.SUCCESS) from None
    except StepExecutionError as e:
        cli_logger.error(str(e))
        raise typer.Exit(exit_codes.STEP_FAILED) from None
    except ReconcileError as e:
        cli_logger.error(f"Install failed: {e}")
        raise typer.Exit(exit_codes.GENERAL_ERROR) from None

    cli_logger.warnings(result.warnings)
    cli_logger.success(f"Installed '{manifest.name}' {result.record.actual_version}")
    raise typer.Exit(exit_codes.SUCCESS)


@app.command()
def update(
    name: Annotated[
        str | None,
        typer.Argument(help="Installed package name. Omit to choose from a list."),
    ] = None,
    force_refresh: Annotated[
        bool,
        typer.Option("--force-refresh", "-f", help="Refetch the registry instead of using the cache."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Answer yes to every confirmation."),
    ] = False,
) -> None:
    """Update an installed package.

    Compares the installed version with the registry using the method it was
    installed with: the manifest version for pinned installs, the remote
    HEAD commit for latest installs.
    """
    config = require_config()

    if name:
        try:
            record = find_installed(config.paths.configs, name)
        except PackageNotInstalledError as e:
            cli_logger.error(str(e))
            raise typer.Exit(exit_codes.PACKAGE_NOT_FOUND) from None
    else:
        records = _load_installed(config)
        if not records:
            cli_logger.info("No packages installed")
            raise typer.Exit(exit_codes.SUCCESS)
        record = _select_package(records, "Installed packages")

    packages = _load_registry(config, force_refresh)
    candidate = _find_registry_package(packages, record.name)

    try:
        check = check_update(record, candidate)
    except ReconcileError as e:
        cli_logger.error(f"Update check failed: {e}")
        raise typer.Exit(exit_codes.GENERAL_ERROR) from None

    if not check.needs_update:
        cli_logger.success(f"'{record.name}' is up to date ({check.current})")
        raise typer.Exit(exit_codes.SUCCESS)

    cli_logger.info(f"Update available for '{record.name}': {check.current} → {check.available}")
    if not yes and not typer.confirm("Update now?", default=True):
        cli_logger.info("Update cancelled")
        raise typer.Exit(exit_codes.SUCCESS)

    try:
        result = update_package(
            record,
            candidate,
            config,
            confirm_remove_build=partial(_confirm_remove_build, yes),
            step_runner=partial(run_steps, on_step=cli_logger.step),
            check=check,
        )
    except BuildDirectoryExistsError:
        cli_logger.info("Update cancelled")
        raise typer.Exit(exit_codes.SUCCESS) from None
    except StepExecutionError as e:
        cli_logger.error(str(e))
        raise typer.Exit(exit_codes.STEP_FAILED) from None
    except ReconcileError as e:
        cli_logger.error(f"Update failed: {e}")
        raise typer.Exit(exit_codes.GENERAL_ERROR) from None

    cli_logger.warnings(result.warnings)
    cli_logger.success(f"Updated '{record.name}' to {check.available}")
    raise typer.Exit(exit_codes.SUCCESS)


@app.command()
def remove(
    name: Annotated[
        str | None,
        typer.Argument(help="Installed package name. Omit to choose from a list."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove an installed package.

    Deletes its config directory, binaries, man pages and post-install
    scripts. Failures to remove single files are reported as warnings.
    """
    config = require_config()

    if name:
        try:
            record = find_installed(config.paths.configs, name)
        except PackageNotInstalledError as e:
            cli_logger.error(str(e))
            raise typer.Exit(exit_codes.PACKAGE_NOT_FOUND) from None
    else:
        records = _load_installed(config)
        if not records:
            cli_logger.info("No packages installed")
            raise typer.Exit(exit_codes.SUCCESS)
        record = _select_package(records, "Installed packages")

    if not yes and not typer.confirm(f"Remove '{record.name}'?", default=False):
        cli_logger.info("Remove cancelled")
        raise typer.Exit(exit_codes.SUCCESS)

    result = remove_package(record, config)
    cli_logger.warnings(result.warnings)
    cli_logger.success(f"Removed '{record.name}'")
    raise typer.Exit(exit_codes.SUCCESS)


@app.command(name="list")
def list_packages(
    force_refresh: Annotated[
        bool,
        typer.Option("--force-refresh", "-f", help="Refetch the registry instead of using the cache."),
    ] = False,
    installed: Annotated[
        bool,
        typer.Option("--installed", help="List installed packages only."),
    ] = False,
) -> None:
    """List registry packages, or installed packages with --installed."""
    config = require_config()

    if installed:
        records = _load_installed(config)
        if not records:
            cli_logger.info("No packages installed")
            raise typer.Exit(exit_codes.SUCCESS)
        _print_installed_table(records)
        raise typer.Exit(exit_codes.SUCCESS)

    packages = _load_registry(config, force_refresh)
    installed_versions = {r.name: r.actual_version for r in _load_installed(config)}
    _print_registry_table(packages, installed_versions)
    raise typer.Exit(exit_codes.SUCCESS)


@app.command()
def preview(
    name: Annotated[
        str | None,
        typer.Argument(help="Package name. Omit to choose from a list."),
    ] = None,
    force_refresh: Annotated[
        bool,
        typer.Option("--force-refresh", "-f", help="Refetch the registry instead of using the cache."),
    ] = False,
) -> None:
    """Show a registry package's manifest and its install state."""
    config = require_config()
    packages = _load_registry(config, force_refresh)

    if name:
        manifest = _find_registry_package(packages, name)
    else:
        manifest = _select_package(packages, "Registry packages")

    heading = "\n[bold]Package Details[/bold]"
    if manifest.category:
        heading += f" [dim]({manifest.category})[/dim]"
    console.print(heading)
    console.print(serialize_manifest(manifest), highlight=False, markup=False)

    try:
        record = find_installed(config.paths.configs, manifest.name)
    except PackageNotInstalledError:
        cli_logger.dim("Not installed")
        raise typer.Exit(exit_codes.SUCCESS) from None

    cli_logger.info(
        f"Installed: {record.actual_version} ({record.method.value}) "
        f"on {record.installation.installed_at:%Y-%m-%d %H:%M} by {record.installation.installed_by}"
    )
    raise typer.Exit(exit_codes.SUCCESS)


@app.command(name="add-executables-path")
def add_executables_path(
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Add the clipack bin and man directories to your shell startup file."""
    config = require_config()
    kind = ShellKind.from_environment()

    try:
        target = shell_config_path(kind)
    except UnsupportedShellError as e:
        cli_logger.error(str(e))
        cli_logger.dim(f"  • bin: {config.paths.bin}")
        cli_logger.dim(f"  • man: {config.paths.man}")
        raise typer.Exit(exit_codes.GENERAL_ERROR) from None

    if not yes and not typer.confirm(f"Add clipack paths to {target}?", default=True):
        cli_logger.info("Cancelled")
        raise typer.Exit(exit_codes.SUCCESS)

    path, changed = add_paths_to_shell_config(kind, config.paths.bin, config.paths.man)
    if changed:
        cli_logger.success(f"Paths added to {path}")
        cli_logger.dim("  Restart your shell to pick them up.")
    else:
        cli_logger.info(f"Paths already present in {path}")
    raise typer.Exit(exit_codes.SUCCESS)


@app.command(name="init-config")
def init_config(
    install_dir: Annotated[
        Path | None,
        typer.Argument(help="Root directory for packages. Prompts when omitted."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite an existing config with defaults."),
    ] = False,
) -> None:
    """Create the config file and directory layout.

    If a config already exists it is left alone unless --force is given.
    """
    config_path = get_config_path()
    if config_path.exists() and not force:
        cli_logger.info(f"Config already exists at {config_path}")
        raise typer.Exit(exit_codes.SUCCESS)

    if install_dir is None:
        install_dir = Path(
            typer.prompt("Where would you like to install clipack packages?", default=str(DEFAULT_INSTALL_DIR))
        )

    try:
        config = write_default_config(config_path, install_dir, overwrite=force)
    except ConfigError as e:
        cli_logger.error(str(e))
        raise typer.Exit(exit_codes.CONFIG_ERROR) from None

    cli_logger.success(f"Configuration created at {config_path}")
    cli_logger.dim(f"  Installation directory: {config.paths.base}")
    raise typer.Exit(exit_codes.SUCCESS)


def _print_registry_table(packages: list[PackageManifest], installed_versions: dict[str, str]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("NAME", style="cyan")
    table.add_column("VERSION")
    table.add_column("CATEGORY")
    table.add_column("INSTALLED")
    table.add_column("DESCRIPTION")

    for package in packages:
        current = installed_versions.get(package.name)
        table.add_row(
            package.name,
            package.nominal_version or "-",
            package.category or "-",
            f"[green]{current}[/green]" if current else "-",
            package.description,
        )
    console.print(table)


def _print_installed_table(records: list[InstalledRecord]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("NAME", style="cyan")
    table.add_column("VERSION")
    table.add_column("METHOD")
    table.add_column("INSTALLED AT")

    for record in records:
        table.add_row(
            record.name,
            record.actual_version,
            record.method.value,
            f"{record.installation.installed_at:%Y-%m-%d %H:%M}",
        )
    console.print(table)


def main_cli() -> None:
    """CLI entry point with top-level exception handling.

    Wraps the Typer app to catch any unhandled exceptions and format them
    as clean error messages instead of raw tracebacks.
    """
    try:
        app()
    except Exception as e:
        sys.exit(handle_cli_error(e))


if __name__ == "__main__":
    main_cli()
