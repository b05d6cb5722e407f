"""CLI entry point for svcfacade."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler

from svcfacade import __version__
from svcfacade.aggregator import ServiceAggregator
from svcfacade.config import (
    AggregationConfig,
    ConfigError,
    load_aggregation_config,
    load_document,
    load_meta_deploy_config,
)
from svcfacade.context import ServiceContext
from svcfacade.deploy import MetaDeploymentManager
from svcfacade.endpoints import build_endpoint_map
from svcfacade.fetcher import FetchError, ServiceMetadataFetcher, make_client
from svcfacade.formatters import render_endpoint_tree, render_resource_table
from svcfacade.functions import FunctionRegistryFetcher
from svcfacade.generators import (
    OpenApiSpecGenerator,
    ServerlessConfigGenerator,
    build_functions,
)
from svcfacade.models import FunctionRecord
from svcfacade.stack import StackError
from svcfacade.targets import DeployError
from svcfacade.tree import build_path_tree, filter_endpoints, normalize_path

console = Console()

_HANDLED_ERRORS = (ConfigError, FetchError, DeployError, StackError)


@dataclass
class _Options:
    root: Path
    profile: str | None
    region: str | None


def _abort(msg: str) -> None:
    console.print(f"[bold red]Error:[/] {msg}")
    sys.exit(1)


def _configure_logging(verbose: bool) -> None:
    package_logger = logging.getLogger("svcfacade")
    package_logger.handlers = [
        RichHandler(console=Console(stderr=True), show_path=False, log_time_format="[%X]")
    ]
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def _load_aggregation(opts: _Options) -> tuple[ServiceContext, AggregationConfig]:
    context = ServiceContext(opts.root)
    config = load_aggregation_config(opts.root, context.variables())
    if opts.region:
        config.source.aws_region = opts.region
    return context, config


@click.group()
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Root directory of the service or facade project.",
)
@click.option("--profile", default=None, help="AWS named profile.")
@click.option("--region", default=None, help="AWS region (overrides the configured awsRegion).")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.version_option(__version__, "--version", "-V")
@click.pass_context
def main(
    ctx: click.Context,
    root: Path,
    profile: str | None,
    region: str | None,
    verbose: bool,
) -> None:
    """Aggregate serverless microservices into a single API Gateway facade.

    \b
    Examples:
      svcfacade aggregate --dry-run
      svcfacade --profile prod aggregate
      svcfacade endpoints --filter "/users*"
      svcfacade generate openapi -o openapi.json
      svcfacade --root ./my-service meta-deploy
    """
    _configure_logging(verbose)
    ctx.obj = _Options(root=root, profile=profile, region=region)


@main.command("aggregate")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Build the facade template without deploying the stack.",
)
@click.option(
    "--output",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format for the template (default: table).",
)
@click.pass_obj
def aggregate_cmd(opts: _Options, dry_run: bool, output: str) -> None:
    """Build the facade API from every published service and deploy it.

    \b
    Examples:
      svcfacade aggregate
      svcfacade aggregate --dry-run --output json
    """
    try:
        context, config = _load_aggregation(opts)
        aggregator = ServiceAggregator(context, config, profile=opts.profile)
        result = aggregator.execute(dry_run=dry_run)
    except _HANDLED_ERRORS as exc:
        _abort(str(exc))
        return

    if output == "json":
        click.echo(json.dumps(result.template, indent=2))
        return

    console.print(render_resource_table(result.template))
    console.print(
        f"[dim]{len(result.bundles)} service(s), {result.resolved_count} endpoint(s), "
        f"{result.method_count} method(s), {len(result.functions)} function(s).[/]"
    )
    if dry_run:
        console.print(f"\n[dim]Dry run: stack {config.facade.cf_stack_name} was not deployed.[/]")
    else:
        console.print(f"[bold green]Deployed[/] {config.facade.cf_stack_name} ({result.stack_id})")


@main.command("endpoints")
@click.option(
    "--filter", "-f", "filter_pattern", default=None, help="Glob filter on endpoint paths."
)
@click.option(
    "--check-functions",
    is_flag=True,
    default=False,
    help="Flag endpoints with no Lambda function deployed from the current branch.",
)
@click.option(
    "--output",
    type=click.Choice(["tree", "json"]),
    default="tree",
    help="Output format (default: tree).",
)
@click.pass_obj
def endpoints_cmd(
    opts: _Options, filter_pattern: str | None, check_functions: bool, output: str
) -> None:
    """Show the endpoints every published service declares.

    \b
    Examples:
      svcfacade endpoints
      svcfacade endpoints --filter "/users*" --output json
      svcfacade endpoints --check-functions
    """
    functions: dict[str, FunctionRecord] | None = None
    try:
        context, config = _load_aggregation(opts)
        region = config.source.aws_region
        fetcher = ServiceMetadataFetcher(
            make_client("s3", opts.profile, region),
            bucket=config.source.bucket,
            prefix=config.source.root_path,
        )
        endpoints = build_endpoint_map(fetcher.fetch_all()).endpoints
        if check_functions:
            registry = FunctionRegistryFetcher(make_client("lambda", opts.profile, region))
            functions = registry.get_relevant_functions(context.git_branch)
    except _HANDLED_ERRORS as exc:
        _abort(str(exc))
        return

    if output == "json":
        if filter_pattern:
            endpoints = filter_endpoints(endpoints, filter_pattern)
        data = []
        for path in sorted(endpoints, key=normalize_path):
            for endpoint in endpoints[path].values():
                row: dict[str, Any] = {
                    "path": endpoint.path,
                    "method": endpoint.method,
                    "function": endpoint.name,
                    "service": endpoint.service,
                    "versionHash": endpoint.version_hash,
                }
                if functions is not None:
                    row["deployed"] = endpoint.version_hash in functions
                data.append(row)
        click.echo(json.dumps(data, indent=2))
        return

    tree = build_path_tree(endpoints, filter_pattern)
    console.print(render_endpoint_tree(tree, functions))


@main.command("generate")
@click.argument("kind", type=click.Choice(["functions", "openapi"]))
@click.option(
    "--template",
    default="openapi.yml",
    show_default=True,
    help="OpenAPI template, relative to --root.",
)
@click.option(
    "--no-dereference",
    is_flag=True,
    default=False,
    help="Keep the template's local #/ references in the OpenAPI document.",
)
@click.option(
    "--output-file",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the document to a file instead of stdout.",
)
@click.pass_obj
def generate_cmd(
    opts: _Options,
    kind: str,
    template: str,
    no_dereference: bool,
    output_file: Path | None,
) -> None:
    """Generate serverless function config or the OpenAPI document for a service.

    \b
    Examples:
      svcfacade generate functions
      svcfacade --root ./my-service generate openapi -o openapi.json
    """
    try:
        context = ServiceContext(opts.root)
        endpoints = ServerlessConfigGenerator(context).load_endpoints()
        if kind == "functions":
            document: Any = build_functions(endpoints)
        else:
            document = OpenApiSpecGenerator(context, endpoints).build_spec(
                load_document(opts.root / template), dereference=not no_dereference
            )
    except _HANDLED_ERRORS as exc:
        _abort(str(exc))
        return

    text = json.dumps(document, indent=2)
    if output_file is None:
        click.echo(text)
        return
    output_file.write_text(text + "\n", encoding="utf-8")
    console.print(f"[bold green]Wrote[/] {len(text)} bytes to {output_file}")


@main.command("meta-deploy")
@click.pass_obj
def meta_deploy_cmd(opts: _Options) -> None:
    """Publish this service's metadata to its deployment targets.

    \b
    Examples:
      svcfacade meta-deploy
      svcfacade --root ./my-service --profile ci meta-deploy
    """
    try:
        context = ServiceContext(opts.root)
        config = load_meta_deploy_config(opts.root, context.global_variables)
        manager = MetaDeploymentManager(context, config, profile=opts.profile)
        results = manager.execute()
    except _HANDLED_ERRORS as exc:
        _abort(str(exc))
        return

    console.print(
        f"[bold green]Metadata deployed[/] by {len(results)} module(s) "
        f"to {len(manager.targets)} target(s)."
    )
