"""CLI for drillforge."""

import json
from datetime import date
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from drillforge.compiler.sql_builder import format_sql
from drillforge.errors import http_status_for
from drillforge.log import configure_logging
from drillforge.models.query import (
    DateRange,
    DetailQueryOptions,
    Pagination,
    QueryOptions,
    TableFilter,
)
from drillforge.periods import TimePeriodGenerator
from drillforge.settings import get_settings
from drillforge.store import ReportStore

app = typer.Typer(
    name="drillforge",
    help="drillforge - drill-down SQL builder CLI",
    no_args_is_help=True,
)
console = Console()

CatalogDir = Annotated[
    Path | None, typer.Option("--dir", "-d", help="Extra catalog directory")
]
ParentOpt = Annotated[
    list[str] | None, typer.Option("--parent", "-p", help="Parent filter as dimension=value")
]


@app.callback()
def main(
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="DEBUG shows every built query")
    ] = None,
) -> None:
    configure_logging(log_level or get_settings().log_level)


def get_store(catalog_dir: Path | None = None, db_path: str | None = None) -> ReportStore:
    try:
        return ReportStore(catalog_dir, db_path)
    except Exception as e:
        console.print(f"[red]Error loading catalogs: {e}[/red]")
        raise typer.Exit(1)


def _fail(e: Exception) -> typer.Exit:
    prefix = "Invalid request" if http_status_for(e) == 400 else "Error"
    console.print(f"[red]{prefix}: {e}[/red]")
    return typer.Exit(1)


def _parse_date(value: str) -> date:
    return date.fromisoformat(value)


def _parse_parents(parents: list[str] | None) -> dict[str, str]:
    result = {}
    for item in parents or []:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"Parent filter must look like dimension=value, got {item!r}")
        result[key.strip()] = value
    return result


def _parse_filters(filters: list[str] | None) -> list[TableFilter]:
    # field:operator:value, the value may itself contain colons
    result = []
    for item in filters or []:
        parts = item.split(":", 2)
        if len(parts) < 2:
            raise ValueError(f"Filter must look like field:operator[:value], got {item!r}")
        field, operator = parts[0], parts[1]
        result.append(
            TableFilter(field=field, operator=operator, value=parts[2] if len(parts) > 2 else "")
        )
    return result


def _print_params(label: str, params: list[Any]) -> None:
    console.print(f"{label}: {json.dumps(params, default=str)}", markup=False)


@app.command("dimensions")
def list_dimensions(
    report: Annotated[str | None, typer.Option("--report", "-r", help="Only this report")] = None,
    catalog_dir: CatalogDir = None,
) -> None:
    """List the dimensions each report can drill into."""
    store = get_store(catalog_dir)
    try:
        dims = store.list_dimensions(report)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        raise typer.Exit(1)

    if not dims:
        console.print("[yellow]No dimensions defined[/yellow]")
        return

    table = Table(title="Dimensions")
    table.add_column("Report", style="yellow")
    table.add_column("Id", style="cyan")
    table.add_column("Kind", style="green")
    table.add_column("Label")

    for dim in dims:
        table.add_row(dim["report"], dim["id"], dim["kind"], dim["label"] or "-")

    console.print(table)


def _build_options(
    dimensions: str,
    depth: int,
    start: str,
    end: str,
    parents: list[str] | None,
    filters: list[str] | None,
    sort_by: str | None,
    direction: str,
    limit: int | None,
) -> QueryOptions:
    return QueryOptions(
        date_range=DateRange(start=_parse_date(start), end=_parse_date(end)),
        dimensions=[d.strip() for d in dimensions.split(",")],
        depth=depth,
        parent_filters=_parse_parents(parents),
        filters=_parse_filters(filters),
        sort_by=sort_by,
        sort_direction=direction,
        limit=limit,
    )


@app.command("show-sql")
def show_sql(
    report: Annotated[str, typer.Argument(help="Report name: onpage, marketing, crm")],
    dimensions: Annotated[str, typer.Argument(help="Comma-separated drill path")],
    start: Annotated[str, typer.Option("--start", help="Start date (YYYY-MM-DD)")],
    end: Annotated[str, typer.Option("--end", help="End date (YYYY-MM-DD)")],
    depth: Annotated[int, typer.Option("--depth", help="Level of the drill path")] = 0,
    parents: ParentOpt = None,
    filters: Annotated[
        list[str] | None, typer.Option("--filter", "-f", help="field:operator:value")
    ] = None,
    sort_by: Annotated[str | None, typer.Option("--sort", help="Metric id to sort by")] = None,
    direction: Annotated[str, typer.Option("--direction", help="ASC or DESC")] = "DESC",
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Maximum rows")] = None,
    pretty: Annotated[bool, typer.Option("--pretty", help="Reformat with sqlglot")] = False,
    catalog_dir: CatalogDir = None,
) -> None:
    """Show the aggregate query and params for one drill level."""
    store = get_store(catalog_dir)
    try:
        options = _build_options(
            dimensions, depth, start, end, parents, filters, sort_by, direction, limit
        )
        built = store.get_sql(report, options)
        dialect = store.registry.get_report(report).dialect
    except (ValueError, KeyError) as e:
        raise _fail(e)

    sql = format_sql(built.query, dialect) if pretty else built.query
    console.print(Syntax(sql, "sql", theme="monokai", line_numbers=True))
    _print_params("params", built.params)


@app.command("detail-sql")
def detail_sql(
    metric_id: Annotated[str, typer.Argument(help="Detail metric, e.g. trials, ots")],
    start: Annotated[str, typer.Option("--start", help="Start date (YYYY-MM-DD)")],
    end: Annotated[str, typer.Option("--end", help="End date (YYYY-MM-DD)")],
    parents: ParentOpt = None,
    network: Annotated[str | None, typer.Option("--network", help="Ad network name")] = None,
    exact_date: Annotated[str | None, typer.Option("--date", help="Single day")] = None,
    page: Annotated[int | None, typer.Option("--page", help="Page number")] = None,
    page_size: Annotated[int, typer.Option("--page-size", help="Rows per page")] = 50,
    catalog_dir: CatalogDir = None,
) -> None:
    """Show the row-level detail query and its count query."""
    store = get_store(catalog_dir)
    try:
        parent_filters = _parse_parents(parents)
        options = DetailQueryOptions(
            date_range=DateRange(start=_parse_date(start), end=_parse_date(end)),
            dimensions=list(parent_filters),
            parent_filters=parent_filters,
            network=network,
            exact_date=_parse_date(exact_date) if exact_date else None,
        )
        pagination = Pagination(page=page, page_size=page_size) if page else None
        built = store.detail_sql(metric_id, options, pagination)
    except (ValueError, KeyError) as e:
        raise _fail(e)

    console.print(Syntax(built.query, "sql", theme="monokai", line_numbers=True))
    _print_params("params", built.params)
    console.print()
    console.print(Syntax(built.count_query, "sql", theme="monokai", line_numbers=True))
    _print_params("count params", built.count_params)


@app.command()
def periods(
    start: Annotated[str, typer.Argument(help="Start date (YYYY-MM-DD)")],
    end: Annotated[str, typer.Argument(help="End date (YYYY-MM-DD)")],
    granularity: Annotated[
        str, typer.Option("--granularity", "-g", help="weekly, biweekly or monthly")
    ] = "weekly",
) -> None:
    """Split a date range into period buckets."""
    try:
        buckets = TimePeriodGenerator().generate(
            _parse_date(start), _parse_date(end), granularity
        )
    except ValueError as e:
        raise _fail(e)

    table = Table(title=f"{granularity.capitalize()} periods ({len(buckets)})")
    table.add_column("Key", style="cyan")
    table.add_column("Label", style="green")
    table.add_column("Start")
    table.add_column("End")

    for period in buckets:
        table.add_row(period.key, period.label, period.start_date, period.end_date)

    console.print(table)


@app.command()
def query(
    report: Annotated[str, typer.Argument(help="Report name: onpage, marketing, crm")],
    dimensions: Annotated[str, typer.Argument(help="Comma-separated drill path")],
    start: Annotated[str, typer.Option("--start", help="Start date (YYYY-MM-DD)")],
    end: Annotated[str, typer.Option("--end", help="End date (YYYY-MM-DD)")],
    db_path: Annotated[str | None, typer.Option("--db", help="DuckDB database path")] = None,
    depth: Annotated[int, typer.Option("--depth", help="Level of the drill path")] = 0,
    parents: ParentOpt = None,
    filters: Annotated[
        list[str] | None, typer.Option("--filter", "-f", help="field:operator:value")
    ] = None,
    sort_by: Annotated[str | None, typer.Option("--sort", help="Metric id to sort by")] = None,
    direction: Annotated[str, typer.Option("--direction", help="ASC or DESC")] = "DESC",
    limit: Annotated[int | None, typer.Option("--limit", "-l", help="Maximum rows")] = None,
    output: Annotated[
        str, typer.Option("--output", "-o", help="Output format: table, json")
    ] = "table",
    catalog_dir: CatalogDir = None,
) -> None:
    """Run one drill level against DuckDB."""
    store = get_store(catalog_dir, db_path)
    try:
        options = _build_options(
            dimensions, depth, start, end, parents, filters, sort_by, direction, limit
        )
        result = store.query(report, options)
    except (ValueError, KeyError) as e:
        raise _fail(e)
    except Exception as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()

    if output == "json":
        console.print(json.dumps(result.data, indent=2, default=str), markup=False)
        return

    table = Table(title=f"Query Results ({result.row_count} rows, {result.execution_time_ms}ms)")
    for col in result.columns:
        table.add_column(col)
    for row in result.data:
        table.add_row(*[str(row.get(c, "")) for c in result.columns])
    console.print(table)


@app.command()
def validate(catalog_dir: CatalogDir = None) -> None:
    """Validate every catalog by building a query for each dimension."""
    store = get_store(catalog_dir)
    errors = store.validate()

    if errors:
        console.print("[red]Validation failed:[/red]")
        for error in errors:
            console.print(f"  - {error}", markup=False)
        raise typer.Exit(1)

    report_count = len(store.registry.reports)
    dim_count = len(store.list_dimensions())
    console.print(
        f"[green]Validated {dim_count} dimensions across "
        f"{report_count} reports successfully![/green]"
    )


if __name__ == "__main__":
    app()
