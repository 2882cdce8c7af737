import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console

from . import __version__
from .cli_config import (
    DependsConfig,
    create_sample_config,
    load_config,
    validate_config_values,
)
from .dependency_graph import DependencyGraph
from .dependency_resolver import DependencyGraphBuilder
from .error_handling import ConfigurationError, DependsError, setup_error_handling
from .import_extractor import get_import_extractor
from .path_resolver import SearchPathResolver
from .reporting import GraphReporter, graph_to_dict
from .structured_logging import configure_logging

console = Console()
err_console = Console(stderr=True)


def _print_sample_config(ctx: click.Context, param: click.Parameter, value: bool):
    if not value or ctx.resilient_parsing:
        return
    click.echo(create_sample_config())
    ctx.exit()


def apply_cli_overrides(
    config: DependsConfig,
    tree_print: bool,
    dumpbin: Optional[Path],
    extractor: Optional[str],
    search_paths: Tuple[Path, ...],
    skip_system: bool,
    timeout: Optional[float],
    max_concurrent: Optional[int],
    max_modules: Optional[int],
    output_format: Optional[str],
    verbose: bool,
) -> DependsConfig:
    """Command-line options take precedence over file and environment settings."""
    config.output.tree_print = tree_print or config.output.tree_print
    config.resolve.skip_system = skip_system or config.resolve.skip_system
    if dumpbin is not None:
        config.extractor.dumpbin_path = str(dumpbin)
    if extractor is not None:
        config.extractor.backend = extractor
    if search_paths:
        configured = config.resolve.search_paths
        if not isinstance(configured, list):
            configured = [configured]
        config.resolve.search_paths = [str(p) for p in search_paths] + configured
    if timeout is not None:
        config.extractor.timeout_seconds = timeout
    if max_concurrent is not None:
        config.extractor.max_concurrent = max_concurrent
    if max_modules is not None:
        config.resolve.max_modules = max_modules
    if output_format is not None:
        config.output.output_format = output_format
    if verbose and config.logging.log_level in ("WARNING", "ERROR", "CRITICAL"):
        config.logging.log_level = "INFO"
    return config


def check_config(config: DependsConfig, output_file: Optional[str]) -> None:
    """
    Reject configurations the build cannot run with.

    Raises:
        ConfigurationError: If any value is invalid
    """
    validation_errors = validate_config_values(config)
    if validation_errors:
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(validation_errors)
        )
    if output_file and config.output.output_format != "json":
        raise ConfigurationError("Output file can only be used with JSON format")


def setup_logging(config: DependsConfig) -> None:
    level = getattr(logging, config.logging.log_level.upper(), logging.WARNING)
    setup_error_handling(log_level=level, log_format=config.logging.log_format)
    configure_logging(
        config.logging.log_level,
        enable_json=config.logging.structured,
        log_format=config.logging.log_format,
    )


def build_graph(target: Path, config: DependsConfig) -> DependencyGraph:
    """
    Resolve the dependency graph of ``target`` using ``config``.

    The import extractor (and with it the dumpbin location) is resolved
    before the build starts.

    Raises:
        DependsError: On fatal conditions (tool missing, unreadable root)
    """
    extractor = get_import_extractor(
        config.extractor.backend,
        config.extractor.dumpbin_path,
        config.extractor.visual_studio_roots,
    )
    search_dirs = [target.resolve().parent] + [
        Path(p) for p in config.resolve.search_paths
    ]
    resolver = SearchPathResolver(
        search_dirs, use_system_path=config.resolve.use_system_path
    )
    builder = DependencyGraphBuilder(
        resolver,
        extractor,
        max_concurrent=config.extractor.max_concurrent,
        timeout_seconds=config.extractor.timeout_seconds,
        max_modules=config.resolve.max_modules,
        skip_system=config.resolve.skip_system,
    )
    return asyncio.run(builder.build(target))


def output_json_results(
    graph: DependencyGraph, output_file: Optional[str] = None
) -> None:
    """Export the graph as JSON."""
    json_output = json.dumps(graph_to_dict(graph), indent=2, ensure_ascii=False)

    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(json_output)
        err_console.print(f"✅ Results saved to {output_file}", style="green")
    else:
        click.echo(json_output)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument(
    "target",
    type=click.Path(exists=True, dir_okay=False, readable=True, path_type=Path),
)
@click.option(
    "--tree-print",
    "-d",
    is_flag=True,
    help="Print dependencies as a tree instead of a table",
)
@click.option(
    "--dumpbin",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to dumpbin.exe (skips auto-discovery)",
)
@click.option(
    "--extractor",
    type=click.Choice(["dumpbin", "pefile"], case_sensitive=False),
    help="Import extraction backend (default from config or dumpbin)",
)
@click.option(
    "--search-path",
    "-s",
    "search_paths",
    multiple=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Extra directory searched for dependencies (repeatable)",
)
@click.option(
    "--skip-system",
    is_flag=True,
    help="Ignore API set contracts and do not expand system DLLs",
)
@click.option(
    "--timeout",
    type=float,
    help="Seconds allowed per binary inspection (default from config or 30)",
)
@click.option(
    "--max-concurrent",
    type=int,
    help="Maximum concurrent binary inspections (default from config or 8)",
)
@click.option(
    "--max-modules",
    type=int,
    help="Stop discovering modules past this count (default from config or 5000)",
)
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Output format for results",
)
@click.option(
    "--output-file",
    "-o",
    type=click.Path(dir_okay=False),
    help="Save results to file (JSON format only)",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Configuration file (JSON or YAML)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable informational logging")
@click.option(
    "--sample-config",
    is_flag=True,
    is_eager=True,
    expose_value=False,
    callback=_print_sample_config,
    help="Print a sample configuration file and exit",
)
@click.version_option(__version__, prog_name="dll-depends")
def cli(
    target: Path,
    tree_print: bool,
    dumpbin: Optional[Path],
    extractor: Optional[str],
    search_paths: Tuple[Path, ...],
    skip_system: bool,
    timeout: Optional[float],
    max_concurrent: Optional[int],
    max_modules: Optional[int],
    output_format: Optional[str],
    output_file: Optional[str],
    config_file: Optional[Path],
    verbose: bool,
) -> None:
    """
    🔍 dll-depends: recursive DLL dependency resolver

    Lists every direct and transitive DLL dependency of TARGET and flags the
    ones that cannot be found, without loading the binary.

    Examples:

      dll-depends app.exe

      dll-depends app.exe --tree-print --dumpbin "C:/VS/bin/dumpbin.exe"

      dll-depends plugin.dll --extractor pefile -s ./third_party/bin
    """
    try:
        config = apply_cli_overrides(
            load_config(config_file),
            tree_print=tree_print,
            dumpbin=dumpbin,
            extractor=extractor.lower() if extractor else None,
            search_paths=search_paths,
            skip_system=skip_system,
            timeout=timeout,
            max_concurrent=max_concurrent,
            max_modules=max_modules,
            output_format=output_format.lower() if output_format else None,
            verbose=verbose,
        )
        check_config(config, output_file)
        setup_logging(config)

        if verbose:
            err_console.print(
                f"🔧 Backend: {config.extractor.backend}, "
                f"max concurrent: {config.extractor.max_concurrent}",
                style="dim",
            )
        graph = build_graph(target, config)
    except DependsError as e:
        raise click.ClickException(str(e))
    except KeyboardInterrupt:
        err_console.print("\n⚠️  Interrupted by user", style="yellow")
        sys.exit(130)

    if config.output.output_format == "json":
        output_json_results(graph, output_file)
    else:
        GraphReporter(console).print_graph(graph, tree_print=config.output.tree_print)


if __name__ == "__main__":
    cli()
