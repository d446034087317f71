#!/usr/bin/env python3
"""
csvql - query CSV datasets through a generated typed query surface.

Loads the datasets described by the metadata file, synthesizes the
query surface and answers root queries from the command line.
"""
import sys
import argparse
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from csvql.catalog import Catalog
from csvql.config import init_config, get_config

logger = logging.getLogger(__name__)


console = Console()


def _catalog(args) -> Catalog:
    return Catalog(get_config())


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]null[/dim]"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def output_rows(rows: List[Dict[str, Any]], columns: List[str], title: Optional[str] = None):
    """Print rows as a rich table."""
    table = Table(title=title)
    for column in columns:
        table.add_column(column, style="cyan" if column == columns[0] else "white")
    for row in rows:
        table.add_row(*[_cell(row.get(column)) for column in columns])
    console.print(table)


def cmd_datasets(args):
    """List loaded datasets."""
    with _catalog(args) as catalog:
        catalog.refresh()
        status = catalog.status()

    if args.output == "json":
        print(json.dumps(status["datasets"], indent=2))
        return

    table = Table(title="Datasets")
    table.add_column("Name", style="cyan")
    table.add_column("Query", style="white")
    table.add_column("Rows", justify="right", style="green")
    table.add_column("Fields", justify="right")
    table.add_column("Relationships", justify="right")

    for dataset in status["datasets"]:
        table.add_row(
            dataset["name"],
            dataset["query"],
            str(dataset["rows"]),
            str(dataset["fields"]),
            str(dataset["relationships"]),
        )
    console.print(table)


def cmd_schema(args):
    """Print the generated query surface as SDL."""
    with _catalog(args) as catalog:
        print(catalog.snapshot.registry.to_sdl(), end="")


def cmd_query(args):
    """Run a root query."""
    try:
        filter = json.loads(args.filter) if args.filter else None
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid filter JSON: {e}[/red]")
        sys.exit(1)
    if filter is not None and not isinstance(filter, dict):
        console.print("[red]Filter must be a JSON object[/red]")
        sys.exit(1)

    pagination = {"offset": args.offset, "limit": args.limit}

    with _catalog(args) as catalog:
        snapshot = catalog.snapshot
        dataset = snapshot.registry.dataset_for_query(args.field)
        if dataset is None:
            console.print(f"[red]Unknown query field: {args.field}[/red]")
            console.print(f"Available: {', '.join(t.query_name for t in snapshot.registry)}")
            sys.exit(1)

        result = snapshot.executor.execute(dataset.name, filter, pagination)

    if args.output == "json":
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return

    output_rows(result.items, dataset.field_names, title=dataset.name)
    console.print(
        f"[dim]{len(result)} of {result.total_count} rows "
        f"(offset {result.offset}, limit {result.limit})[/dim]"
    )


def _convert(current: Any, value: str) -> Any:
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(value)
    return value


def cmd_config(args):
    """Manage configuration."""
    config = get_config()

    if args.action == "show":
        if args.key:
            if not hasattr(config, args.key):
                console.print(f"[red]Unknown config key: {args.key}[/red]")
                sys.exit(1)
            print(getattr(config, args.key))
        else:
            print(json.dumps(asdict(config), indent=2))

    elif args.action == "set":
        if not args.key or args.value is None:
            console.print("[red]Usage: csvql config set KEY VALUE[/red]")
            sys.exit(1)
        if not hasattr(config, args.key):
            console.print(f"[red]Unknown config key: {args.key}[/red]")
            sys.exit(1)
        setattr(config, args.key, _convert(getattr(config, args.key), args.value))
        config.save()
        console.print(f"[green]Set {args.key} = {args.value}[/green]")

    elif args.action == "init":
        config_path = Path.home() / ".config" / "csvql" / "config.toml"
        config.save(config_path)
        console.print(f"[green]Created config at {config_path}[/green]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="csvql",
        description="csvql - query CSV datasets through a generated typed query surface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  csvql datasets
  csvql schema > schema.graphql
  csvql query users --filter '{"orders": {"status": {"eq": "completed"}}}'
  csvql query orders --filter '{"total_amount": {"gte": 50}}' --limit 10 -o json
  csvql config set default_limit 50

Configuration:
  Config file: ./csvql.toml or ~/.config/csvql/config.toml
  Environment: CSVQL_DATA_DIR, CSVQL_METADATA_DIR, CSVQL_DATABASE
        """
    )

    # Global options
    parser.add_argument("--db", help="Database file (default: in-memory)")
    parser.add_argument("--data-dir", help="CSV directory")
    parser.add_argument("--metadata-dir", help="Metadata directory")
    parser.add_argument("--metadata", help="Main metadata file name")
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("-o", "--output", choices=["table", "json"], help="Output format")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Commands")

    datasets_parser = subparsers.add_parser("datasets", help="List datasets")
    datasets_parser.set_defaults(func=cmd_datasets)

    schema_parser = subparsers.add_parser("schema", help="Print the generated schema (SDL)")
    schema_parser.set_defaults(func=cmd_schema)

    query_parser = subparsers.add_parser("query", help="Run a root query")
    query_parser.add_argument("field", help="Root query field (e.g. users)")
    query_parser.add_argument("--filter", "-f", help="Filter expression as JSON")
    query_parser.add_argument("--offset", type=int, help="Skip N rows")
    query_parser.add_argument("--limit", type=int, help="Maximum rows")
    query_parser.set_defaults(func=cmd_query)

    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_parser.add_argument("action", choices=["show", "set", "init"], help="Action")
    config_parser.add_argument("key", nargs="?", help="Config key")
    config_parser.add_argument("value", nargs="?", help="Value to set")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.config:
            get_config(reload=True, config_file=Path(args.config))

        config = init_config(
            database=args.db,
            data_dir=args.data_dir,
            metadata_dir=args.metadata_dir,
            metadata_file=args.metadata,
            output_format=args.output,
        )
        if args.verbose:
            config.log_level = "DEBUG"

        logging.basicConfig(level=config.log_level.upper(), format="%(levelname)s: %(message)s")

        if not args.output:
            args.output = config.output_format

        args.func(args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        logger.error("Command failed: %s", e)
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
