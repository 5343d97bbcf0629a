"""
CLI interface for the Serverless Cost Calculator.

Connects to MySQL-compatible source databases, runs the estimation engine
and renders the result as text, JSON or YAML.
"""

import json
import sys
from enum import Enum
from typing import List, Optional

import pymysql
import typer
import yaml
from loguru import logger
from rich.console import Console
from rich.table import Table

from serverless_cost_calculator.config.loader import (
    EstimatorSettings,
    SourceConfig,
    load_pricing_catalog,
    load_settings,
    load_sources,
)
from serverless_cost_calculator.core.engine import EstimateRequest, estimate_cost
from serverless_cost_calculator.core.errors import AlreadyServerless, EstimationError, InvalidRegion
from serverless_cost_calculator.core.notes import NoteSeverity
from serverless_cost_calculator.core.pricing import PricingCatalog
from serverless_cost_calculator.core.report import CostEstimate
from serverless_cost_calculator.source.db import connection_factory, get_connection

app = typer.Typer(help="Estimate the cost of TiDB Serverless for your existing MySQL-compatible databases.")
console = Console()
error_console = Console(stderr=True)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DISCLAIMERS = [
    "Request units are estimated from the workload observed while sampling, or from schema "
    "statistics alone without --analyze. Severe fluctuations in the workload, such as ingesting "
    "a large volume of data, can skew the final estimation.",
    "The storage size is estimated from statistical data, which differs from the actual data size.",
    "TiDB Serverless encodes data differently from MySQL, resulting in slightly different storage consumption.",
    "The TiDB Serverless storage size meter does not account for data compression or replicas.",
    "For detailed pricing information, visit https://www.pingcap.com/tidb-serverless-pricing-details",
    "For additional questions, refer to the FAQs on https://docs.pingcap.com/tidbcloud/serverless-faqs",
]

_SEVERITY_STYLE = {
    NoteSeverity.INFO: "green",
    NoteSeverity.WARNING: "yellow",
    NoteSeverity.LOW_CONFIDENCE: "red",
}


class OutputFormat(str, Enum):
    """Supported output formats."""
    HUMAN = "human"
    JSON = "json"
    YAML = "yaml"


def configure_logging(level: str) -> None:
    """Route engine logs to stderr at the requested level."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format="{time:HH:mm:ss} | {level: <8} | {message}")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Serverless Cost Calculator CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Serverless Cost Calculator - Use --help to see available commands")


@app.command()
def estimate(
    database: Optional[str] = typer.Option(
        None, "--database", "-D", envvar="DB_DATABASE", help="Database (schema) to estimate"
    ),
    host: str = typer.Option(
        "localhost", "--host", "-h", envvar="DB_HOST", help="Host of the MySQL server"
    ),
    port: int = typer.Option(3306, "--port", "-P", envvar="DB_PORT", help="Port of the MySQL server"),
    user: str = typer.Option("root", "--user", "-u", envvar="DB_USERNAME", help="Username for the MySQL server"),
    password: str = typer.Option(
        "", "--password", "-p", envvar="DB_PASSWORD", help="Password for the MySQL server"
    ),
    region: str = typer.Option(
        "us-east-1", "--region", "-r", envvar="SERVERLESS_REGION", help="Region of the serverless cluster"
    ),
    analyze: bool = typer.Option(
        False, "--analyze", "-a", envvar="DB_ANALYZE", help="Sample the live workload before estimating"
    ),
    duration: Optional[float] = typer.Option(
        None, "--duration", "-d", help="Sampling window in seconds (with --analyze)"
    ),
    output: OutputFormat = typer.Option(
        OutputFormat.HUMAN, "--output", "-o", envvar="OUTPUT", help="Output format"
    ),
    pricing: Optional[str] = typer.Option(None, "--pricing", help="Pricing catalog YAML file"),
    settings_file: Optional[str] = typer.Option(None, "--settings", help="Estimator settings YAML file"),
    batch: Optional[str] = typer.Option(
        None, "--batch", "-b", help="JSON or YAML list of databases to estimate"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", envvar="LOG_LEVEL", help="Log level"),
):
    """
    Estimate the monthly cost of moving databases to the serverless service.

    Reads table statistics and, with --analyze, samples live statement
    activity. Nothing on the source database is modified.
    """
    configure_logging(log_level)

    try:
        catalog = load_pricing_catalog(pricing)
        settings = load_settings(settings_file)
        catalog.get_region(region)
        if batch:
            sources = load_sources(batch)
        elif database:
            sources = [SourceConfig(database=database, host=host, port=port, user=user, password=password)]
        else:
            raise ValueError("Either --database or --batch is required")
    except (FileNotFoundError, ValueError, yaml.YAMLError, InvalidRegion) as e:
        console.print(f"[bold red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    estimates: List[CostEstimate] = []
    failures: List[str] = []
    for source in sources:
        if output == OutputFormat.HUMAN:
            console.print(
                f"Connecting to the MySQL compatible database at "
                f"[bold green]{source.host}:{source.port}[/] as the user "
                f"[bold green]{source.user}[/] using the database [bold green]{source.database}[/]"
            )
        try:
            estimates.append(_estimate_source(source, region, analyze, duration, catalog, settings))
        except AlreadyServerless as e:
            console.print(f"[bold green]{e}[/]")
        except (EstimationError, pymysql.MySQLError, ValueError) as e:
            # Remaining sources are still estimated; failures are reported after the results
            failures.append(f"[bold red]The cost estimation failed for '{source.database}':[/] {str(e)}")

    if estimates:
        _display(estimates, output)
    for failure in failures:
        error_console.print(failure)
    sys.exit(EXIT_CODE_FAIL if failures else EXIT_CODE_PASS)


@app.command()
def regions(
    pricing: Optional[str] = typer.Option(None, "--pricing", help="Pricing catalog YAML file"),
):
    """List supported regions and their unit prices."""
    try:
        catalog = load_pricing_catalog(pricing)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[bold red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Pricing catalog {catalog.version}")
    table.add_column("Region", style="bold green")
    table.add_column("RU / million", justify="right")
    table.add_column("Storage / GiB-month", justify="right")
    table.add_column("Free credit", justify="right")
    for name in catalog.regions:
        region_pricing = catalog.get_region(name)
        table.add_row(
            name,
            _format_currency(region_pricing.ru_unit_price * 1_000_000),
            _format_currency(region_pricing.storage_price_per_gb_month),
            _format_currency(region_pricing.free_credit),
        )
    console.print(table)


def _estimate_source(
    source: SourceConfig,
    region: str,
    analyze: bool,
    duration: Optional[float],
    catalog: PricingCatalog,
    settings: EstimatorSettings
) -> CostEstimate:
    """Run the engine against one source database."""
    request = EstimateRequest(
        schema=source.database, region=region, analyze=analyze, sampling_duration=duration
    )
    conn = get_connection(source)
    try:
        return estimate_cost(
            conn, request, catalog, settings, connection_factory=connection_factory(source)
        )
    finally:
        conn.close()


def _format_currency(amount) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.2f}"


def _display(estimates: List[CostEstimate], output: OutputFormat) -> None:
    if output == OutputFormat.JSON:
        typer.echo(json.dumps([e.to_dict() for e in estimates], indent=2))
        return
    if output == OutputFormat.YAML:
        typer.echo(yaml.safe_dump([e.to_dict() for e in estimates], sort_keys=False))
        return

    for result in estimates:
        _display_estimate(result, show_schema=len(estimates) > 1)

    console.print("\n[bold green]Notes:[/]")
    for disclaimer in DISCLAIMERS:
        console.print(f"[green]* {disclaimer}[/]")


def _display_estimate(result: CostEstimate, show_schema: bool) -> None:
    """Display one estimate in a clean, financial format."""
    if show_schema:
        console.print(f"\n[bold]Database:[/bold] [bold green]{result.schema}[/]")

    console.print(
        f"The estimated monthly cost for your workload is "
        f"[bold green]{_format_currency(result.billable_total)}[/]"
    )

    table = Table()
    table.add_column("SKU", style="bold green")
    table.add_column("Cost", justify="right", style="bold green")
    table.add_row("Request Units", _format_currency(result.request_units.expected))
    table.add_row("Row-based Storage", _format_currency(result.storage))
    table.add_row("Free Credits", f"-{_format_currency(result.free_credit)}")
    table.add_row("Total", _format_currency(result.billable_total))
    console.print(table)

    if result.request_units.is_range:
        console.print(
            f"Request units range: {_format_currency(result.request_units.low)} - "
            f"{_format_currency(result.request_units.high)}"
        )

    for note in result.notes:
        style = _SEVERITY_STYLE[note.severity]
        console.print(f"[{style}]! {note.message}[/]")


if __name__ == "__main__":
    app()
