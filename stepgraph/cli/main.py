"""
stepgraph CLI - build, compile and maintain deterministic scenario artifacts.
"""

import functools
import os

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stepgraph import __version__
from stepgraph.errors import StepGraphError

console = Console()


def handle_errors(command):
    """Print typed errors as ``code: message`` and exit 1."""

    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except StepGraphError as e:
            console.print(f"{e.code}: {e.message}", style="red", markup=False)
            raise SystemExit(1)

    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="stepgraph")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(verbose):
    """stepgraph - Deterministic scenario compilation

    Build action graphs from normalized scenario documents, compile them
    into Gherkin features and pytest-bdd steps, and keep the selector
    registry in sync with the application.
    """
    from stepgraph.utils.logging import configure_logging

    configure_logging(verbose)


@cli.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--clarifications", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Answered clarification questions (markdown)")
@click.option("--output", default=None, help="Normalized YAML path (default: tests/normalized/<slug>.yaml)")
@click.option("--provider", "provider_name", envvar="LLM_PROVIDER", default=None, help="openai or anthropic")
@click.option("--model", default=None, help="Model override (default: LLM_MODEL or the provider default)")
@handle_errors
def normalize(spec_file, clarifications, output, provider_name, model):
    """
    Generate a normalized scenario document from a feature description.

    \b
    Example:
        stepgraph normalize specs/login.md --clarifications specs/login.clarifications.md
    """
    from stepgraph.graph.normalizer import normalization_options, normalize_scenarios
    from stepgraph.llm import create_provider

    provider = create_provider(provider_name)
    result = normalize_scenarios(
        spec_file,
        clarifications_path=clarifications,
        output_path=output,
        provider=provider,
        options=normalization_options(model=model, provider_name=provider.name),
    )

    console.print(Panel.fit(
        f"[bold]{result.spec.feature}[/bold]\n"
        f"Scenarios: {len(result.spec.scenarios)}\n"
        f"Model: {result.metadata.provider}/{result.metadata.model} ({result.metadata.tokens_used} tokens)\n"
        f"Output: {result.output_path}",
        title="Normalized",
        border_style="green",
    ))


@cli.command()
@click.argument("spec_files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--graph-dir", envvar="STEPGRAPH_GRAPH_DIR", default=None, help="Graph artifact directory")
@click.option("--base-url", default=None, help="Base URL joined onto page paths")
@click.option("--compile/--no-compile", "compile_after", default=False, help="Also compile each graph")
@click.option("--concurrency", default=None, type=int, help="Worker count (default: logical CPUs)")
@handle_errors
def build(spec_files, graph_dir, base_url, compile_after, concurrency):
    """
    Build and persist action graphs from normalized YAML documents.

    \b
    Example:
        stepgraph build tests/normalized/login.yaml --compile
    """
    from stepgraph.graph.compiler import compile_action_graph
    from stepgraph.graph.persistence import GraphPersistence
    from stepgraph.graph.spec_loader import graphs_from_spec, load_normalized_spec
    from stepgraph.utils.concurrent import run_concurrent

    persistence = GraphPersistence(graph_dir)

    def build_one(path):
        rows = []
        for graph in graphs_from_spec(load_normalized_spec(path), base_url=base_url):
            graph_path = persistence.write(graph)
            if compile_after:
                compile_action_graph(graph)
            rows.append((graph.metadata.scenario_name, len(graph.nodes), graph_path))
        return rows

    results = run_concurrent([functools.partial(build_one, p) for p in spec_files], limit=concurrency)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Scenario", style="green")
    table.add_column("Nodes", justify="right")
    table.add_column("Graph", style="dim")
    for rows in results:
        for scenario, node_count, graph_path in rows:
            table.add_row(scenario, str(node_count), os.path.relpath(graph_path))
    console.print(table)


@cli.command(name="compile")
@click.argument("graph_files", nargs=-1, type=click.Path(exists=True, dir_okay=False))
@click.option("--spec-id", default=None, help="Compile the latest persisted graph for this spec")
@click.option("--scenario", default=None, help="Scenario name when the spec has several")
@click.option("--graph-dir", envvar="STEPGRAPH_GRAPH_DIR", default=None, help="Graph artifact directory")
@click.option("--feature-dir", default=None, help="Output directory for .feature files")
@click.option("--steps-dir", default=None, help="Output directory for step modules")
@click.option("--dry-run", is_flag=True, help="Render without writing files")
@click.option("--metadata/--no-metadata", default=True, help="Include provenance comments")
@click.option("--concurrency", default=None, type=int, help="Worker count (default: logical CPUs)")
@handle_errors
def compile_graphs(graph_files, spec_id, scenario, graph_dir, feature_dir, steps_dir, dry_run, metadata, concurrency):
    """
    Compile action graphs into feature documents and step modules.

    \b
    Examples:
        stepgraph compile tests/artifacts/graph/login__valid-login__v1.json
        stepgraph compile --spec-id login --scenario "Valid login" --dry-run
    """
    from stepgraph.graph.compiler import compile_action_graph, compile_graph_file
    from stepgraph.graph.persistence import GraphPersistence
    from stepgraph.utils.concurrent import run_concurrent

    options = dict(feature_dir=feature_dir, steps_dir=steps_dir, dry_run=dry_run, include_metadata=metadata)

    if graph_files:
        tasks = [functools.partial(compile_graph_file, path, **options) for path in graph_files]
    elif spec_id:
        graph = GraphPersistence(graph_dir).read(spec_id, scenario)
        if graph is None:
            raise click.UsageError(f"No persisted graph for spec '{spec_id}'")
        tasks = [functools.partial(compile_action_graph, graph, **options)]
    else:
        raise click.UsageError("Pass graph files or --spec-id")

    results = run_concurrent(tasks, limit=concurrency)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Feature", style="green")
    table.add_column("Steps", style="yellow")
    table.add_column("Written", justify="center")
    for result in results:
        table.add_row(
            os.path.relpath(result.feature_path),
            os.path.relpath(result.steps_path),
            "[dim]dry run[/dim]" if result.dry_run else "[green]yes[/green]",
        )
    console.print(table)


@cli.command(name="collect-selectors")
@click.argument("base_url")
@click.option("--route", "routes", multiple=True, default=("/",), help="Route to scan (repeatable)")
@click.option("--output", envvar="STEPGRAPH_REGISTRY_PATH", default=None, help="Registry file")
@handle_errors
def collect_selectors_command(base_url, routes, output):
    """
    Scan application routes into the selector registry.

    \b
    Example:
        stepgraph collect-selectors http://localhost:3000 --route / --route /login
    """
    from stepgraph.selectors.collector import collect_selectors

    registry = collect_selectors(base_url, routes=list(routes), output_path=output)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Id", style="green")
    table.add_column("Type")
    table.add_column("Priority", justify="right")
    table.add_column("Page", style="dim")
    for entry in sorted(registry.selectors.values(), key=lambda e: (e.page, e.priority, e.id)):
        table.add_row(entry.id, entry.type.value, str(entry.priority), entry.page)
    console.print(table)
    console.print(f"[bold green]{len(registry.selectors)} selectors tracked[/bold green]")


@cli.command()
@click.argument("base_url")
@click.option("--route", "routes", multiple=True, default=("/",), help="Route to scan (repeatable)")
@click.option("--registry", "registry_path", envvar="STEPGRAPH_REGISTRY_PATH", default=None, help="Registry file")
@click.option("--report", "report_path", default=None, help="Drift report file")
@click.option("--apply", "apply_updates", is_flag=True, help="Write updated and new entries to the registry")
@click.option("--fail-on-drift", is_flag=True, help="Exit 1 when any drift is found")
@handle_errors
def drift(base_url, routes, registry_path, report_path, apply_updates, fail_on_drift):
    """
    Compare the selector registry with the live application.

    \b
    Example:
        stepgraph drift http://localhost:3000 --route /login --apply
    """
    from stepgraph.selectors.drift import validate_selector_drift

    result = validate_selector_drift(
        base_url,
        routes=list(routes),
        registry_path=registry_path,
        report_path=report_path,
        apply_updates=apply_updates,
    )
    report = result.report
    summary = report.summary()

    console.print(Panel.fit(
        f"[bold]Tracked:[/bold] {summary['totalTracked']}  "
        f"[red]Missing:[/red] {summary['missing']}  "
        f"[yellow]Updated:[/yellow] {summary['updated']}  "
        f"[green]New:[/green] {summary['new']}  "
        f"[dim]Unchanged:[/dim] {summary['unchanged']}",
        title="Selector drift",
        border_style="cyan",
    ))

    if report.missing:
        table = Table(show_header=True, header_style="bold red")
        table.add_column("Missing id", style="red")
        table.add_column("Page", style="dim")
        table.add_column("Suggestion", style="green")
        for missing in report.missing:
            table.add_row(missing.id, missing.page, missing.suggestion.id if missing.suggestion else "-")
        console.print(table)

    console.print(f"[dim]Report: {result.report_path}[/dim]")
    if result.applied:
        console.print("[green]Registry updated[/green]")
    if fail_on_drift and report.has_drift:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
